"""Socket.IO handlers: connect / disconnect.

A connection's sid is its only identity. Connecting registers an idle
profile; disconnecting funnels into the matchmaker teardown, which notifies a
surviving partner exactly once.
"""

import logging

from flask import request


def register(socketio, settings, ctx):
    """Register Socket.IO event handlers for this module."""
    matchmaker = ctx.matchmaker

    @socketio.on("connect")
    def handle_connect(auth=None):
        sid = request.sid
        matchmaker.connect(sid)
        logging.info("User connected: %s", sid)

    @socketio.on("disconnect")
    def handle_disconnect(*args, **kwargs):
        # Socket.IO may pass a reason depending on version.
        reason = args[0] if args else kwargs.get("reason")
        sid = request.sid
        had_partner = matchmaker.disconnect(sid)
        logging.info("User disconnected: %s (reason=%s, had_partner=%s)", sid, reason, had_partner)
