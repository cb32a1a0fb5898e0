#!/usr/bin/env python3
"""matchmaking.py

In-memory matchmaking for anonymous 1:1 chats.

One ``Matchmaker`` owns every piece of shared state:

  - the session registry (sid -> Profile, or None while idle)
  - the waiting pool (FIFO, at most one entry per sid)
  - the session table (sid -> Session, always reciprocal)

All mutations happen under a single lock. Lifecycle notifications are
collected while the lock is held and pushed to the notifier afterwards. Relay
traffic is the exception: it is sent from inside ``run_in_session`` so it can
never reach a partner that has already moved on. The notifier only queues
packets, so holding the lock across it does not block on the network.
"""

from __future__ import annotations

import logging
import secrets
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Iterator, Optional, TypeVar, Union

from constants import (
    EVT_PARTNER_DISCONNECTED,
    EVT_PARTNER_FOUND,
    EVT_WAITING,
    MATCH_POLICIES,
    MATCH_POLICY_PREFER_MODE,
    MATCH_POLICY_STRICT_MODE,
)
from notifier import Notifier


class InvariantViolation(RuntimeError):
    """Raised when pairing state is structurally broken (self-match, dangling session)."""


class ChatMode(str, Enum):
    TEXT = "text"
    VIDEO = "video"

    @classmethod
    def parse(cls, value) -> Optional["ChatMode"]:
        if isinstance(value, cls):
            return value
        if value is None:
            return None
        v = str(value).strip().lower()
        for mode in cls:
            if mode.value == v:
                return mode
        return None


@dataclass(frozen=True)
class Profile:
    mode: ChatMode
    joined_at: float


@dataclass(frozen=True)
class WaitingEntry:
    handle: str
    profile: Profile


@dataclass(frozen=True)
class Session:
    partner: str
    room_id: str
    started_at: float


@dataclass(frozen=True)
class Paired:
    partner: str
    room_id: str
    partner_mode: ChatMode


@dataclass(frozen=True)
class Waiting:
    pass


MatchResult = Union[Paired, Waiting]

# (handle, event, payload) queued while the lock is held
Outbound = tuple[str, str, Any]

T = TypeVar("T")


def new_room_id() -> str:
    return f"room_{secrets.token_urlsafe(18)}"


# ──────────────────────────────────────────────────────────────────────────────
# Waiting pool
# ──────────────────────────────────────────────────────────────────────────────


class WaitingPool:
    """Ordered set of handles looking for a partner.

    Not thread-safe on its own; the Matchmaker lock guards it.
    """

    def __init__(self, is_live: Callable[[str], bool] | None = None):
        self._entries: "OrderedDict[str, WaitingEntry]" = OrderedDict()
        self._is_live = is_live or (lambda _handle: True)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, handle) -> bool:
        return handle in self._entries

    def __iter__(self) -> Iterator[WaitingEntry]:
        return iter(list(self._entries.values()))

    def enqueue(self, handle: str, profile: Profile) -> WaitingEntry:
        """Insert at the tail, dropping any earlier entry for the same handle."""
        self._entries.pop(handle, None)
        entry = WaitingEntry(handle=handle, profile=profile)
        self._entries[handle] = entry
        return entry

    def remove(self, handle: str) -> bool:
        return self._entries.pop(handle, None) is not None

    def dequeue_compatible(self, profile: Profile, strict: bool = False) -> Optional[WaitingEntry]:
        """Pop the first live entry with the same mode.

        Without ``strict`` the first live entry of any mode is used when no
        same-mode entry exists. Dead entries met during the scan are evicted.
        """
        chosen: Optional[WaitingEntry] = None
        fallback: Optional[WaitingEntry] = None
        stale: list[str] = []

        for handle, entry in self._entries.items():
            if not self._is_live(handle):
                stale.append(handle)
                continue
            if entry.profile.mode == profile.mode:
                chosen = entry
                break
            if fallback is None:
                fallback = entry

        for handle in stale:
            del self._entries[handle]
            logging.info("[match] evicted stale waiting entry %s", handle)

        if chosen is None and not strict:
            chosen = fallback
        if chosen is not None:
            del self._entries[chosen.handle]
        return chosen


# ──────────────────────────────────────────────────────────────────────────────
# Session table
# ──────────────────────────────────────────────────────────────────────────────


class SessionTable:
    """Reciprocal sid -> Session map. Both sides are written and deleted together."""

    def __init__(self):
        self._sessions: dict[str, Session] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, handle) -> bool:
        return handle in self._sessions

    def get(self, handle: str) -> Optional[Session]:
        return self._sessions.get(handle)

    def items(self) -> list[tuple[str, Session]]:
        return list(self._sessions.items())

    def pair(self, a: str, b: str, room_id: str, started_at: float) -> None:
        if a == b:
            raise InvariantViolation(f"refusing to pair {a} with itself")
        for h in (a, b):
            if h in self._sessions:
                raise InvariantViolation(f"{h} already has a session")
        self._sessions[a] = Session(partner=b, room_id=room_id, started_at=started_at)
        self._sessions[b] = Session(partner=a, room_id=room_id, started_at=started_at)

    def unpair(self, handle: str) -> Optional[Session]:
        """Delete ``handle``'s session and its partner's. Returns handle's side."""
        mine = self._sessions.get(handle)
        if mine is None:
            return None
        theirs = self._sessions.get(mine.partner)
        if theirs is None or theirs.partner != handle or theirs.room_id != mine.room_id:
            raise InvariantViolation(f"dangling session {handle} -> {mine.partner}")
        del self._sessions[handle]
        del self._sessions[mine.partner]
        return mine


# ──────────────────────────────────────────────────────────────────────────────
# Matchmaker (pairing engine + lifecycle controller)
# ──────────────────────────────────────────────────────────────────────────────


class Matchmaker:
    """Single owner of registry, waiting pool and session table."""

    def __init__(
        self,
        notifier: Notifier,
        match_policy: str = MATCH_POLICY_PREFER_MODE,
        is_live: Callable[[str], bool] | None = None,
        room_id_factory: Callable[[], str] = new_room_id,
        clock: Callable[[], float] = time.time,
        debug_invariants: bool = False,
    ):
        if match_policy not in MATCH_POLICIES:
            raise ValueError(f"unknown match_policy {match_policy!r}")
        self._notifier = notifier
        self._strict = match_policy == MATCH_POLICY_STRICT_MODE
        self._liveness = is_live
        self._new_room_id = room_id_factory
        self._clock = clock
        self._debug_invariants = debug_invariants

        self._lock = threading.RLock()
        self._profiles: dict[str, Optional[Profile]] = {}
        self._release_hooks: list[Callable[[str], None]] = []
        self.pool = WaitingPool(is_live=self._is_live)
        self.sessions = SessionTable()

    @property
    def match_policy(self) -> str:
        return MATCH_POLICY_STRICT_MODE if self._strict else MATCH_POLICY_PREFER_MODE

    def add_release_hook(self, fn: Callable[[str], None]) -> None:
        """Register a callback run when a handle's per-connection state is released."""
        self._release_hooks.append(fn)

    def _is_live(self, handle: str) -> bool:
        if handle not in self._profiles:
            return False
        return self._liveness is None or bool(self._liveness(handle))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def connect(self, handle: str) -> None:
        with self._lock:
            self._profiles.setdefault(handle, None)

    def disconnect(self, handle: str) -> bool:
        """Tear down everything for a dropped connection. Returns True if it had a partner."""
        outbox: list[Outbound] = []
        with self._lock:
            session = self._teardown(handle, outbox)
            self._profiles.pop(handle, None)
            self._after_mutation()
        self._flush(outbox)
        return session is not None

    def skip(self, handle: str) -> bool:
        """Explicit skip: leave the current partner (or the queue) and go idle."""
        outbox: list[Outbound] = []
        with self._lock:
            session = self._teardown(handle, outbox)
            if handle in self._profiles:
                self._profiles[handle] = None
            self._after_mutation()
        self._flush(outbox)
        return session is not None

    def leave_queue(self, handle: str) -> bool:
        with self._lock:
            removed = self.pool.remove(handle)
            if removed and handle in self._profiles:
                self._profiles[handle] = None
            self._after_mutation()
        if removed:
            logging.info("[match] %s left the queue", handle)
        return removed

    def _teardown(self, handle: str, outbox: list[Outbound]) -> Optional[Session]:
        # Caller holds the lock.
        self.pool.remove(handle)
        session = self.sessions.unpair(handle)
        if session is not None:
            outbox.append((session.partner, EVT_PARTNER_DISCONNECTED, None))
            logging.info("[match] %s left %s (partner %s notified)", handle, session.room_id, session.partner)
        for hook in self._release_hooks:
            hook(handle)
        return session

    # ------------------------------------------------------------------
    # Pairing
    # ------------------------------------------------------------------
    def request_match(self, handle: str, mode: ChatMode) -> MatchResult:
        outbox: list[Outbound] = []
        with self._lock:
            if handle not in self._profiles:
                # find-partner processed after the disconnect; nothing to queue.
                logging.debug("[match] ignoring request from disconnected %s", handle)
                return Waiting()
            if handle in self.sessions:
                # Implicit skip: never hold two sessions at once.
                self._teardown(handle, outbox)
            self.pool.remove(handle)

            now = self._clock()
            profile = Profile(mode=mode, joined_at=now)
            self._profiles[handle] = profile

            entry = self.pool.dequeue_compatible(profile, strict=self._strict)
            if entry is None:
                self.pool.enqueue(handle, profile)
                outbox.append((handle, EVT_WAITING, None))
                result: MatchResult = Waiting()
                logging.info("[match] %s queued (%s, %d waiting)", handle, mode.value, len(self.pool))
            else:
                if entry.handle == handle:
                    raise InvariantViolation(f"{handle} dequeued its own waiting entry")
                room_id = self._new_room_id()
                self.sessions.pair(handle, entry.handle, room_id, now)
                outbox.append((
                    handle,
                    EVT_PARTNER_FOUND,
                    {"partnerHandle": entry.handle, "roomId": room_id, "partnerDesiredMode": entry.profile.mode.value},
                ))
                outbox.append((
                    entry.handle,
                    EVT_PARTNER_FOUND,
                    {"partnerHandle": handle, "roomId": room_id, "partnerDesiredMode": mode.value},
                ))
                result = Paired(partner=entry.handle, room_id=room_id, partner_mode=entry.profile.mode)
                logging.info("[match] paired %s <-> %s in %s", handle, entry.handle, room_id)
            self._after_mutation()
        self._flush(outbox)
        return result

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------
    def run_in_session(self, handle: str, fn: Callable[[Session], T]) -> Optional[T]:
        """Call ``fn(session)`` with the lock held. Returns None if ``handle`` is unpaired."""
        with self._lock:
            session = self.sessions.get(handle)
            if session is None:
                return None
            return fn(session)

    def session_for(self, handle: str) -> Optional[Session]:
        with self._lock:
            return self.sessions.get(handle)

    def profile_for(self, handle: str) -> Optional[Profile]:
        with self._lock:
            return self._profiles.get(handle)

    def is_connected(self, handle: str) -> bool:
        with self._lock:
            return handle in self._profiles

    def state_of(self, handle: str) -> str:
        with self._lock:
            if handle in self.sessions:
                return "paired"
            if handle in self.pool:
                return "queued"
            if handle in self._profiles:
                return "idle"
            return "disconnected"

    def stats(self) -> dict:
        with self._lock:
            waiting: dict[str, int] = {m.value: 0 for m in ChatMode}
            for entry in self.pool:
                waiting[entry.profile.mode.value] += 1
            return {
                "connected": len(self._profiles),
                "waiting": len(self.pool),
                "waiting_by_mode": waiting,
                "active_pairs": len(self.sessions) // 2,
                "match_policy": self.match_policy,
            }

    def check_invariants(self) -> None:
        """Raise InvariantViolation if pairing state is inconsistent."""
        with self._lock:
            for handle, session in self.sessions.items():
                if session.partner == handle:
                    raise InvariantViolation(f"{handle} is paired with itself")
                back = self.sessions.get(session.partner)
                if back is None or back.partner != handle or back.room_id != session.room_id:
                    raise InvariantViolation(f"dangling session {handle} -> {session.partner}")
                if handle in self.pool:
                    raise InvariantViolation(f"{handle} is both queued and paired")

    # ------------------------------------------------------------------
    def _after_mutation(self) -> None:
        if self._debug_invariants:
            self.check_invariants()

    def _flush(self, outbox: list[Outbound]) -> None:
        for handle, event, payload in outbox:
            self._notifier.notify(handle, event, payload)
