#!/usr/bin/env python3
"""relay.py

Forwarding of per-session traffic between two paired connections.

Inbound payloads are parsed into a small tagged union of envelopes:

  ChatMessage     plaintext chat; the relay owns cleanup + duplicate suppression
  EncryptedChat   E2EE chat blob; forwarded verbatim
  TypingSignal    boolean typing indicator
  SignalingBlob   WebRTC / key-exchange payload; forwarded verbatim

Anything that does not parse is dropped. Nothing is ever delivered to a sid
other than the sender's current partner in the session table.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional, Union

from markupsafe import Markup

from constants import (
    EVT_MESSAGE_DELIVERED,
    EVT_MESSAGE_RECEIVED,
    EVT_PARTNER_TYPING,
    SIGNALING_FIELDS,
    SIGNALING_ROOM_REQUIRED,
)
from matchmaking import Matchmaker, Session
from notifier import Notifier


_MAX_CLIENT_MESSAGE_ID = 64
_MAX_STRIP_PASSES = 8


@dataclass(frozen=True)
class ChatMessage:
    text: str
    client_message_id: Optional[str] = None


@dataclass(frozen=True)
class EncryptedChat:
    cipher: str
    client_message_id: Optional[str] = None


@dataclass(frozen=True)
class TypingSignal:
    active: bool


@dataclass(frozen=True)
class SignalingBlob:
    kind: str
    payload: Any = None
    room_id: Optional[str] = None


Envelope = Union[ChatMessage, EncryptedChat, TypingSignal, SignalingBlob]


# ──────────────────────────────────────────────────────────────────────────────
# Parsing
# ──────────────────────────────────────────────────────────────────────────────


def _client_message_id(data: dict) -> Optional[str]:
    raw = data.get("clientMessageId")
    if raw is None or isinstance(raw, bool):
        return None
    if not isinstance(raw, (str, int)):
        return None
    s = str(raw).strip()
    return s[:_MAX_CLIENT_MESSAGE_ID] or None


def parse_chat_message(data) -> Optional[Union[ChatMessage, EncryptedChat]]:
    """Build a chat envelope from a send-message payload, or None if malformed.

    ``cipher`` wins over ``text``; ``message`` is accepted as an older name for
    ``text``.
    """
    if not isinstance(data, dict):
        return None
    cid = _client_message_id(data)

    cipher = data.get("cipher")
    if cipher is not None:
        if not isinstance(cipher, str) or not cipher:
            return None
        return EncryptedChat(cipher=cipher, client_message_id=cid)

    text = data.get("text")
    if text is None:
        text = data.get("message")
    if not isinstance(text, str):
        return None
    return ChatMessage(text=text, client_message_id=cid)


def parse_signaling(kind: str, data) -> Optional[SignalingBlob]:
    if kind not in SIGNALING_FIELDS:
        return None
    field = SIGNALING_FIELDS[kind]
    data = data if isinstance(data, dict) else {}
    room_id = data.get("roomId")
    if room_id is not None and not isinstance(room_id, str):
        return None
    if room_id is None and kind in SIGNALING_ROOM_REQUIRED:
        return None
    if field is None:
        return SignalingBlob(kind=kind, room_id=room_id)
    if field not in data or data[field] is None:
        return None
    return SignalingBlob(kind=kind, payload=data[field], room_id=room_id)


def clean_chat_text(text: str, max_length: int) -> str:
    """Strip markup, collapse whitespace and clamp to ``max_length``.

    ``striptags`` unescapes entities, so ``&lt;b&gt;`` comes back as a live
    tag. Strip again until nothing changes, then drop any stray angle brackets.
    """
    cleaned = text
    for _ in range(_MAX_STRIP_PASSES):
        stripped = Markup(cleaned).striptags()
        if stripped == cleaned:
            break
        cleaned = stripped
    cleaned = " ".join(cleaned.replace("<", " ").replace(">", " ").split())
    if max_length > 0 and len(cleaned) > max_length:
        cleaned = cleaned[:max_length].rstrip()
    return cleaned


# ──────────────────────────────────────────────────────────────────────────────
# Relay
# ──────────────────────────────────────────────────────────────────────────────


class ChatRelay:
    def __init__(
        self,
        matchmaker: Matchmaker,
        notifier: Notifier,
        settings: dict | None = None,
        clock: Callable[[], float] = time.time,
    ):
        settings = settings or {}
        self._mm = matchmaker
        self._notifier = notifier
        self._clock = clock
        self.max_message_length = int(settings.get("max_message_length", 1000) or 0)
        self.max_cipher_length = int(settings.get("max_cipher_length", 140000) or 0)
        self.duplicate_window = float(settings.get("duplicate_window_seconds", 2.0) or 0)
        self.typing_expiry = float(settings.get("typing_expiry_seconds", 5.0) or 0)

        # sid -> (last cleaned text, epoch)
        self._last_message: dict[str, tuple[str, float]] = {}
        # sid -> epoch of last typing-start
        self._typing: dict[str, float] = {}
        self._lock = threading.Lock()

        matchmaker.add_release_hook(self.forget)

    def forget(self, handle: str) -> None:
        """Drop dedup + typing state for a handle."""
        with self._lock:
            self._last_message.pop(handle, None)
            self._typing.pop(handle, None)

    def is_typing(self, handle: str) -> bool:
        with self._lock:
            return self._typing_active(handle, self._clock())

    def _typing_active(self, handle: str, now: float) -> bool:
        started = self._typing.get(handle)
        if started is None:
            return False
        if self.typing_expiry > 0 and (now - started) > self.typing_expiry:
            del self._typing[handle]
            return False
        return True

    def relay(self, sender: str, envelope: Envelope) -> bool:
        """Forward one envelope to the sender's partner. Returns True if sent.

        Runs inside the matchmaker lock, so the partner cannot skip away and
        re-pair between the lookup and the send.
        """
        sent = self._mm.run_in_session(sender, lambda session: self._dispatch(sender, session, envelope))
        if sent is None:
            logging.debug("[relay] %s is not paired; dropped %s", sender, type(envelope).__name__)
            return False
        return sent

    def _dispatch(self, sender: str, session: Session, envelope: Envelope) -> bool:
        if isinstance(envelope, ChatMessage):
            return self._relay_chat(sender, session.partner, envelope)
        if isinstance(envelope, EncryptedChat):
            return self._relay_cipher(sender, session.partner, envelope)
        if isinstance(envelope, TypingSignal):
            return self._relay_typing(sender, session.partner, envelope)
        if isinstance(envelope, SignalingBlob):
            return self._relay_signaling(sender, session.partner, session.room_id, envelope)
        logging.debug("[relay] unknown envelope %r from %s", envelope, sender)
        return False

    # ------------------------------------------------------------------
    def _relay_chat(self, sender: str, partner: str, msg: ChatMessage) -> bool:
        text = clean_chat_text(msg.text, self.max_message_length)
        if not text:
            logging.debug("[relay] empty message from %s dropped", sender)
            return False

        now = self._clock()
        with self._lock:
            last = self._last_message.get(sender)
            if last and self.duplicate_window > 0 and last[0] == text and (now - last[1]) < self.duplicate_window:
                logging.debug("[relay] duplicate message from %s suppressed", sender)
                return False
            self._last_message[sender] = (text, now)
            was_typing = self._typing_active(sender, now)
            self._typing.pop(sender, None)

        ts = int(now * 1000)
        if was_typing:
            self._notifier.notify(partner, EVT_PARTNER_TYPING, False)
        self._notifier.notify(
            partner,
            EVT_MESSAGE_RECEIVED,
            {"text": text, "senderHandle": sender, "timestamp": ts, "clientMessageId": msg.client_message_id},
        )
        self._notifier.notify(
            sender,
            EVT_MESSAGE_DELIVERED,
            {"clientMessageId": msg.client_message_id, "text": text, "timestamp": ts},
        )
        return True

    def _relay_cipher(self, sender: str, partner: str, msg: EncryptedChat) -> bool:
        if self.max_cipher_length > 0 and len(msg.cipher) > self.max_cipher_length:
            logging.debug("[relay] oversized cipher from %s dropped (%d chars)", sender, len(msg.cipher))
            return False

        now = self._clock()
        with self._lock:
            was_typing = self._typing_active(sender, now)
            self._typing.pop(sender, None)

        ts = int(now * 1000)
        if was_typing:
            self._notifier.notify(partner, EVT_PARTNER_TYPING, False)
        self._notifier.notify(
            partner,
            EVT_MESSAGE_RECEIVED,
            {
                "cipher": msg.cipher,
                "encrypted": True,
                "senderHandle": sender,
                "timestamp": ts,
                "clientMessageId": msg.client_message_id,
            },
        )
        self._notifier.notify(sender, EVT_MESSAGE_DELIVERED, {"clientMessageId": msg.client_message_id, "timestamp": ts})
        return True

    def _relay_typing(self, sender: str, partner: str, sig: TypingSignal) -> bool:
        with self._lock:
            if sig.active:
                self._typing[sender] = self._clock()
            else:
                self._typing.pop(sender, None)
        self._notifier.notify(partner, EVT_PARTNER_TYPING, bool(sig.active))
        return True

    def _relay_signaling(self, sender: str, partner: str, room_id: str, blob: SignalingBlob) -> bool:
        if blob.room_id is None and blob.kind in SIGNALING_ROOM_REQUIRED:
            logging.debug("[relay] %s from %s has no room id; dropped", blob.kind, sender)
            return False
        if blob.room_id is not None and blob.room_id != room_id:
            logging.info("[relay] room id mismatch for %s from %s", blob.kind, sender)
            return False
        payload: dict[str, Any] = {"senderHandle": sender, "roomId": room_id}
        field = SIGNALING_FIELDS.get(blob.kind)
        if field is not None:
            payload[field] = blob.payload
        self._notifier.notify(partner, blob.kind, payload)
        return True
