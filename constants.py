#!/usr/bin/env python3

from __future__ import annotations


# Application version (semantic-ish). Used for UI + packaging.
APP_VERSION = "0.4.2"

# Path to the plaintext JSON server configuration file
CONFIG_FILE = "server_config.json"

# Chat modes a client may ask for in find-partner.
CHAT_MODES = ("text", "video")
DEFAULT_CHAT_MODE = "text"

# Matching policies (see matchmaking.Matchmaker)
MATCH_POLICY_PREFER_MODE = "prefer_mode"
MATCH_POLICY_STRICT_MODE = "strict_mode"
MATCH_POLICIES = (MATCH_POLICY_PREFER_MODE, MATCH_POLICY_STRICT_MODE)

# ──────────────────────────────────────────────────────────────────────────────
# Socket.IO event names
# ──────────────────────────────────────────────────────────────────────────────

# Inbound
EVT_FIND_PARTNER = "find-partner"
EVT_LEAVE_QUEUE = "leave-queue"
EVT_SKIP_PARTNER = "skip-partner"
EVT_SEND_MESSAGE = "send-message"
EVT_TYPING_START = "typing-start"
EVT_TYPING_STOP = "typing-stop"

# Outbound
EVT_WAITING = "waiting-for-partner"
EVT_PARTNER_FOUND = "partner-found"
EVT_MESSAGE_RECEIVED = "message-received"
EVT_MESSAGE_DELIVERED = "message-delivered"
EVT_PARTNER_TYPING = "partner-typing"
EVT_PARTNER_DISCONNECTED = "partner-disconnected"

# Call signaling events are relayed under the same name in both directions.
# Value = the payload field that must be present (None: no payload needed).
SIGNALING_FIELDS: dict[str, str | None] = {
    "exchange-key": "publicKey",
    "offer": "offer",
    "answer": "answer",
    "ice-candidate": "candidate",
    "video-call-request": None,
    "video-call-response": "accepted",
}

# WebRTC negotiation steps must name the room they belong to; a missing or
# stale roomId means the blob is left over from an earlier pairing.
SIGNALING_ROOM_REQUIRED = frozenset({"offer", "answer", "ice-candidate"})
