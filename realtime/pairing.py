"""Socket.IO handlers: find-partner / leave-queue / skip-partner."""

from flask import request

from constants import DEFAULT_CHAT_MODE, EVT_FIND_PARTNER, EVT_LEAVE_QUEUE, EVT_SKIP_PARTNER
from matchmaking import ChatMode, Paired


def register(socketio, settings, ctx):
    """Register Socket.IO event handlers for this module."""
    matchmaker = ctx.matchmaker
    default_mode = ChatMode.parse(settings.get("default_chat_mode")) or ChatMode(DEFAULT_CHAT_MODE)

    @socketio.on(EVT_FIND_PARTNER)
    def handle_find_partner(data=None):
        data = data if isinstance(data, dict) else {}
        # "chatMode" is what older clients send.
        raw_mode = data.get("desiredMode", data.get("chatMode"))
        if raw_mode is None:
            mode = default_mode
        else:
            mode = ChatMode.parse(raw_mode)
            if mode is None:
                return {"success": False, "error": "bad_mode"}

        result = matchmaker.request_match(request.sid, mode)
        if isinstance(result, Paired):
            return {"success": True, "status": "paired", "roomId": result.room_id}
        return {"success": True, "status": "waiting"}

    @socketio.on(EVT_LEAVE_QUEUE)
    def handle_leave_queue(data=None):
        removed = matchmaker.leave_queue(request.sid)
        return {"success": True, "removed": removed}

    @socketio.on(EVT_SKIP_PARTNER)
    def handle_skip_partner(data=None):
        had_partner = matchmaker.skip(request.sid)
        return {"success": True, "hadPartner": had_partner}
