#!/usr/bin/env python3
"""routes_main.py

General HTTP routes. The chat itself is Socket.IO only; these endpoints give
clients their bootstrap config and give operators a health probe.
"""

from __future__ import annotations

from datetime import datetime, timezone

from flask import jsonify

from constants import APP_VERSION, CHAT_MODES


def register_main_routes(app, settings, ctx):
    matchmaker = ctx.matchmaker

    @app.route("/")
    def index():
        return f"""
        <h1>{settings.get('server_name')}</h1>
        <p>Version {APP_VERSION}. Connect with a Socket.IO client to find a partner.</p>
        """

    @app.route("/api/config", methods=["GET"])
    def client_config():
        # Everything here is safe to hand to anonymous browsers.
        return jsonify(
            {
                "success": True,
                "version": APP_VERSION,
                "ice_servers": list(settings.get("ice_servers") or []),
                "chat_modes": list(CHAT_MODES),
                "default_chat_mode": settings.get("default_chat_mode") or CHAT_MODES[0],
                "max_message_length": int(settings.get("max_message_length", 1000) or 0),
                "typing_expiry_seconds": float(settings.get("typing_expiry_seconds", 5.0) or 0),
            }
        )

    # Health check is optional and should be safe for unauthenticated probes.
    if settings.get("enable_health_check_endpoint", True):
        endpoint = settings.get("health_check_endpoint") or "/health"

        @app.route(endpoint, methods=["GET"])
        def health_check():
            return jsonify(
                {
                    "status": "ok",
                    "time": datetime.now(timezone.utc).isoformat(),
                    "stats": matchmaker.stats(),
                }
            )
