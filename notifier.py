"""notifier.py

Outbound event delivery for the matchmaking core.

The core never calls Socket.IO directly. It hands ``(handle, event, payload)``
triples to a notifier, after releasing its own lock, and the notifier pushes
them over whatever transport is in use.
"""

from __future__ import annotations

import logging
from typing import Any


class Notifier:
    """Fire-and-forget push of one event to one connection handle."""

    def notify(self, handle: str, event: str, payload: Any = None) -> None:
        raise NotImplementedError


class SocketIONotifier(Notifier):
    """Deliver events to a Socket.IO session id (``to=sid``)."""

    def __init__(self, socketio, namespace: str = "/"):
        self._socketio = socketio
        self._namespace = namespace

    def notify(self, handle: str, event: str, payload: Any = None) -> None:
        try:
            if payload is None:
                self._socketio.emit(event, to=handle, namespace=self._namespace)
            else:
                self._socketio.emit(event, payload, to=handle, namespace=self._namespace)
        except Exception as exc:
            # The peer's own disconnect event reconciles state.
            logging.debug("[notify] dropped %s for %s: %s", event, handle, exc)
