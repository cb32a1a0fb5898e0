"""Socket.IO handlers: chat messages + typing indicators.

Drops (not paired, malformed, duplicate) are silent: the client only ever
learns about a message through message-delivered.
"""

import logging

from flask import request

from constants import EVT_SEND_MESSAGE, EVT_TYPING_START, EVT_TYPING_STOP
from relay import TypingSignal, parse_chat_message


def register(socketio, settings, ctx):
    """Register Socket.IO event handlers for this module."""
    relay = ctx.relay

    @socketio.on(EVT_SEND_MESSAGE)
    def handle_send_message(data=None):
        sid = request.sid
        envelope = parse_chat_message(data)
        if envelope is None:
            logging.debug("[chat] malformed send-message from %s", sid)
            return
        relay.relay(sid, envelope)

    @socketio.on(EVT_TYPING_START)
    def handle_typing_start(data=None):
        relay.relay(request.sid, TypingSignal(active=True))

    @socketio.on(EVT_TYPING_STOP)
    def handle_typing_stop(data=None):
        relay.relay(request.sid, TypingSignal(active=False))
