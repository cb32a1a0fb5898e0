#!/usr/bin/env python3
"""
socket_handlers.py

Builds the matchmaking core (matchmaker + relay + Socket.IO notifier) and
registers the split handler modules in realtime/*.py.
"""

from types import SimpleNamespace

from constants import MATCH_POLICY_PREFER_MODE
from matchmaking import Matchmaker
from notifier import SocketIONotifier
from relay import ChatRelay


def register_socketio_handlers(socketio, settings):
    """
    Registers all Socket.IO event handlers. Returns the shared context
    (matchmaker, relay, notifier) so HTTP routes can read live stats.
    """
    namespace = "/"
    notifier = SocketIONotifier(socketio, namespace=namespace)

    def _sid_is_live(sid: str) -> bool:
        """True while Socket.IO still considers the session connected."""
        return socketio.server.manager.is_connected(sid, namespace)

    matchmaker = Matchmaker(
        notifier,
        match_policy=str(settings.get("match_policy") or MATCH_POLICY_PREFER_MODE),
        is_live=_sid_is_live,
        debug_invariants=bool(settings.get("debug_invariants", False)),
    )
    relay = ChatRelay(matchmaker, notifier, settings)

    # ───────────────────────────────────────────────────────────────────
    # Register split handler modules (see realtime/*.py)
    # ───────────────────────────────────────────────────────────────────
    ctx = SimpleNamespace(matchmaker=matchmaker, relay=relay, notifier=notifier)
    from realtime import presence, pairing, chat, signaling
    presence.register(socketio, settings, ctx)
    pairing.register(socketio, settings, ctx)
    chat.register(socketio, settings, ctx)
    signaling.register(socketio, settings, ctx)
    return ctx
