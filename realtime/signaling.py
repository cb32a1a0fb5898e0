"""Socket.IO handlers: WebRTC call negotiation + key exchange.

offer / answer / ice-candidate / exchange-key / video-call-request /
video-call-response are relayed verbatim to the sender's current partner,
under the same event name, tagged with the sender's sid and the room id.
The server never looks inside SDP, ICE candidates or public keys.
"""

import logging

from flask import request

from constants import SIGNALING_FIELDS
from relay import parse_signaling


def register(socketio, settings, ctx):
    """Register Socket.IO event handlers for this module."""
    relay = ctx.relay

    def _make_handler(kind: str):
        def handle_signaling(data=None):
            sid = request.sid
            blob = parse_signaling(kind, data)
            if blob is None:
                logging.debug("[signaling] malformed %s from %s", kind, sid)
                return
            relay.relay(sid, blob)

        handle_signaling.__name__ = "handle_" + kind.replace("-", "_")
        return handle_signaling

    for kind in SIGNALING_FIELDS:
        socketio.on(kind)(_make_handler(kind))
