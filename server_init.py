#!/usr/bin/env python3
"""
server_init.py
Initialises and runs the PairChat Flask + Socket.IO application.
"""

from __future__ import annotations

import json
import os
import logging

# Optional WebSocket support
# - Default: auto (use eventlet if available, otherwise fall back to threading/polling)
# - Override with: PAIRCHAT_SOCKETIO_ASYNC=threading|eventlet
PAIRCHAT_SOCKETIO_ASYNC = os.environ.get("PAIRCHAT_SOCKETIO_ASYNC", "auto").strip().lower()
_EVENTLET_AVAILABLE = False
if PAIRCHAT_SOCKETIO_ASYNC in {"auto", "eventlet"}:
    try:
        import eventlet  # type: ignore

        eventlet.monkey_patch()
        _EVENTLET_AVAILABLE = True
    except Exception:
        _EVENTLET_AVAILABLE = False
import secrets
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from flask import Flask, request
from flask_cors import CORS
from flask_socketio import SocketIO

from constants import APP_VERSION
from routes_main import register_main_routes
from secrets_policy import persist_secrets_enabled
from socket_handlers import register_socketio_handlers


def _normalize_cors_origins(val):
    """Accept '*', a single origin, a comma-separated string or a list."""
    if val is None:
        return None
    if isinstance(val, str):
        raw = val.strip()
        if not raw:
            return None
        # Support comma-separated strings
        if "," in raw:
            items = [x.strip() for x in raw.split(",") if x.strip()]
            return items or None
        return raw
    if isinstance(val, (list, tuple, set)):
        items = [str(x).strip() for x in val if str(x).strip()]
        return items or None
    return None


def _log_startup_banner(settings: Dict[str, Any], settings_file: Optional[Path] | None) -> None:
    """Log a boot banner that makes 'wrong config' obvious."""
    try:
        cfg_path = Path(settings_file) if settings_file else None
        cfg_exists = bool(cfg_path and cfg_path.exists())
        cfg_mtime = None
        if cfg_exists:
            try:
                cfg_mtime = datetime.fromtimestamp(cfg_path.stat().st_mtime).isoformat(timespec="seconds")
            except Exception:
                cfg_mtime = None

        logging.info("==================== PairChat Boot ====================")
        logging.info("PairChat version: %s", APP_VERSION)
        logging.info("Settings file: %s (exists=%s%s)", str(cfg_path) if cfg_path else "<none>", cfg_exists,
                     f", mtime={cfg_mtime}" if cfg_mtime else "")
        logging.info(
            "Matching: policy=%s default_mode=%s dup_window=%ss",
            settings.get("match_policy"), settings.get("default_chat_mode"), settings.get("duplicate_window_seconds"),
        )
        logging.info("Allowed origins: %s", settings.get("allowed_origins"))
        logging.info("========================================================")
    except Exception as exc:  # pragma: no cover
        # Never block boot on banner failures.
        logging.warning("Could not emit boot banner: %s", exc)


def create_app(
    settings: Dict[str, Any],
    settings_file: Optional[Path] | None = None,
) -> tuple[Flask, SocketIO]:
    """Create and configure the Flask + Socket.IO application.

    This function does **not** start a server. It is safe to import from a
    Gunicorn `wsgi.py` module.
    """

    settings_file = Path(settings_file) if isinstance(settings_file, str) else settings_file

    # ───── Flask App Core ─────
    app = Flask(__name__, static_folder="static", template_folder="templates")
    app.secret_key = _ensure_secret_key(settings, settings_file)

    # ------------------------------------------------------------------
    # CORS
    # ------------------------------------------------------------------
    # No cookies or credentials are involved, so '*' is acceptable here.
    cors_origins = _normalize_cors_origins(settings.get("allowed_origins"))
    if cors_origins is not None:
        CORS(app, origins=cors_origins)

    _log_startup_banner(settings, settings_file)

    # ───── SocketIO Setup ─────
    async_mode = "threading"
    if PAIRCHAT_SOCKETIO_ASYNC == "eventlet" and not _EVENTLET_AVAILABLE:
        print("[socketio] PAIRCHAT_SOCKETIO_ASYNC=eventlet but eventlet is not installed; falling back to threading")
    if (PAIRCHAT_SOCKETIO_ASYNC in {"auto", "eventlet"}) and _EVENTLET_AVAILABLE:
        async_mode = "eventlet"

    app.config["PAIRCHAT_SOCKETIO_ASYNC_MODE"] = async_mode

    socketio = SocketIO(
        app,
        async_mode=async_mode,
        cors_allowed_origins=cors_origins,
        logger=False,
        engineio_logger=False,
        ping_interval=int(settings.get("socketio_ping_interval", 20) or 20),
        ping_timeout=int(settings.get("socketio_ping_timeout", 15) or 15),
    )

    # ───── Global Socket.IO Error Handler ─────
    # Log handler failures without killing the server thread. InvariantViolation
    # lands here too and is logged at error level with a traceback.
    @socketio.on_error_default  # applies to all namespaces
    def _socketio_default_error_handler(e):
        try:
            sid = getattr(request, "sid", None)
        except Exception:
            sid = None
        app.logger.exception("Socket.IO handler error (sid=%s): %s", sid, e)

    # ───── Handlers + Routes ─────
    ctx = register_socketio_handlers(socketio, settings)
    app.config["PAIRCHAT_MATCHMAKER"] = ctx.matchmaker
    register_main_routes(app, settings, ctx)

    return app, socketio


def run_web_server(
    settings: Dict[str, Any],
    settings_file: Optional[Path] | None = None,
) -> None:
    """Bootstrap the Flask-SocketIO app, attach routes & handlers, then run it."""

    app, socketio = create_app(settings, settings_file=settings_file)

    # ───── Run Server (dev / single-process) ─────
    host = settings.get("host") or settings.get("server_host") or "0.0.0.0"
    port = int(settings.get("port") or settings.get("server_port") or 5000)
    debug = bool(settings.get("debug") or settings.get("server_debug") or False)

    # HTTPS support (required for getUserMedia/WebCrypto on non-localhost origins).
    https_enabled = bool(settings.get("https", False))
    ssl_cert = settings.get("ssl_cert_file")
    ssl_key = settings.get("ssl_key_file")
    ssl_context = None

    if https_enabled:
        if ssl_cert and ssl_key and os.path.exists(str(ssl_cert)) and os.path.exists(str(ssl_key)):
            ssl_context = (str(ssl_cert), str(ssl_key))
        else:
            print("⚠️  https=true but ssl_cert_file/ssl_key_file missing or not found. Falling back to HTTP.")
            https_enabled = False

    scheme = "https" if https_enabled else "http"
    print(f"🚀  Starting PairChat on {scheme}://{host}:{port} (debug={debug})")

    # Reduce console spam from long-polling by filtering Werkzeug access logs for /socket.io.
    class _PairChatSocketIOAccessFilter(logging.Filter):
        def filter(self, record: logging.LogRecord) -> bool:  # type: ignore
            try:
                msg = record.getMessage()
            except Exception:
                return True
            return "/socket.io/" not in msg

    logging.getLogger("werkzeug").addFilter(_PairChatSocketIOAccessFilter())

    use_reloader = bool(debug and app.config.get("PAIRCHAT_SOCKETIO_ASYNC_MODE") == "threading")
    run_kwargs: Dict[str, Any] = {}
    if ssl_context is not None:
        run_kwargs["ssl_context"] = ssl_context
    if app.config.get("PAIRCHAT_SOCKETIO_ASYNC_MODE") == "threading":
        # Werkzeug refuses to run in production mode unless told otherwise.
        run_kwargs["allow_unsafe_werkzeug"] = True
    socketio.run(
        app,
        host=host,
        port=port,
        debug=debug,
        use_reloader=use_reloader,
        log_output=False,
        **run_kwargs,
    )


# ───── Helpers ─────
def _ensure_secret_key(
    settings: Dict[str, Any],
    settings_file: Optional[Path],
) -> str:
    key = settings.get("secret_key") or os.getenv("SECRET_KEY")
    if key:
        return key

    key = secrets.token_urlsafe(64)
    settings["secret_key"] = key
    persisted = _persist_generated_key(settings, settings_file)
    if persisted:
        print("✅ secret_key generated and saved to settings.")
    else:
        logging.info("Generated a one-off secret_key (not saved).")
    return key


def _persist_generated_key(settings: Dict[str, Any], settings_file: Optional[Path]) -> bool:
    # If persistence is disabled, never write secrets into server_config.json.
    if not persist_secrets_enabled():
        return False
    if not settings_file:
        return False

    try:
        if settings_file.suffix.lower() != ".json":
            print(f"⚠️  Unsupported settings file format: {settings_file}")
            return False

        # Only write if the settings file is valid JSON or does not exist.
        existing: dict | None = None
        if settings_file.exists():
            try:
                with settings_file.open("r", encoding="utf-8") as fp:
                    existing = json.load(fp)
            except Exception:
                existing = None

        # If the settings file exists but is invalid JSON, back it up and write a fresh JSON file.
        if existing is None and settings_file.exists():
            ts = datetime.now().strftime("%Y%m%d-%H%M%S")
            bad_path = settings_file.with_suffix(settings_file.suffix + f".bad-{ts}")
            try:
                settings_file.rename(bad_path)
                print(f"⚠️  Backed up invalid settings file to: {bad_path}")
            except Exception as exc:
                print(f"⚠️  Could not back up invalid settings file: {exc}")
                return False
            existing = {}

        merged = dict(existing or {})
        merged.update(settings)

        with settings_file.open("w", encoding="utf-8") as fp:
            json.dump(merged, fp, indent=2)
    except Exception as exc:
        print(f"⚠️  Could not persist secret_key to {settings_file}: {exc}", file=sys.stderr)
        return False

    return True
