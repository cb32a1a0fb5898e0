#!/usr/bin/env python3
"""Smoke test: pairing + chat relay + disconnect notification.

What it checks
- /health answers.
- Two Socket.IO clients that ask for a text partner get paired together
  (same roomId on both sides).
- A chat message from A reaches B, and A gets message-delivered.
- When B disconnects, A receives partner-disconnected.

Usage:
  python tools/smoke_test_matchmaking.py --base http://127.0.0.1:5000

Tip:
  Run the server first in another terminal, and make sure nobody else is
  waiting for a partner on it.
"""

from __future__ import annotations

import argparse
import os
import threading
from dataclasses import dataclass, field

import requests
import socketio


@dataclass
class SioWrap:
    sio: socketio.Client
    received: dict = field(default_factory=dict)
    events: dict = field(default_factory=dict)

    def wait(self, name: str, timeout: float = 10) -> bool:
        return self.events.setdefault(name, threading.Event()).wait(timeout)


_WATCHED = ("waiting-for-partner", "partner-found", "message-received", "message-delivered", "partner-disconnected")


def make_client(base: str) -> SioWrap:
    sio = socketio.Client(logger=False, engineio_logger=False)
    wrap = SioWrap(sio=sio)

    def _watch(name):
        ev = wrap.events.setdefault(name, threading.Event())

        def _on(data=None):
            wrap.received.setdefault(name, []).append(data)
            ev.set()

        sio.on(name, _on)

    for name in _WATCHED:
        _watch(name)

    sio.connect(base, transports=["websocket"], wait_timeout=10)
    return wrap


def main() -> int:
    ap = argparse.ArgumentParser()
    ap.add_argument("--base", default=os.environ.get("PAIRCHAT_BASE", "http://127.0.0.1:5000"))
    args = ap.parse_args()

    base = args.base.rstrip("/")

    # 1) Health
    r = requests.get(f"{base}/health", timeout=10)
    if r.status_code != 200 or r.json().get("status") != "ok":
        print(f"❌ /health failed: {r.status_code} {r.text[:200]}")
        return 1
    print("✅ /health OK")

    A = make_client(base)
    B = make_client(base)

    try:
        # 2) Pairing
        res = A.sio.call("find-partner", {"desiredMode": "text"}, timeout=10)
        if not (isinstance(res, dict) and res.get("success")):
            print(f"❌ find-partner ack failed (A): {res}")
            return 2
        if not A.wait("waiting-for-partner"):
            print("❌ A never got waiting-for-partner")
            return 2

        res = B.sio.call("find-partner", {"desiredMode": "text"}, timeout=10)
        if not (isinstance(res, dict) and res.get("status") == "paired"):
            print(f"❌ B was not paired: {res}")
            return 3
        if not (A.wait("partner-found") and B.wait("partner-found")):
            print("❌ partner-found not received by both sides")
            return 3

        room_a = A.received["partner-found"][-1]["roomId"]
        room_b = B.received["partner-found"][-1]["roomId"]
        if room_a != room_b:
            print(f"❌ room ids differ: {room_a} != {room_b}")
            return 3
        print("✅ Pairing OK")

        # 3) Chat relay
        A.sio.emit("send-message", {"text": "hello", "clientMessageId": "m1"})
        if not B.wait("message-received"):
            print("❌ message not relayed to B")
            return 4
        got = B.received["message-received"][-1]
        if got.get("text") != "hello":
            print(f"❌ B got the wrong message: {got}")
            return 4
        if not A.wait("message-delivered"):
            print("❌ A never got message-delivered")
            return 4
        print("✅ Chat relay OK")

        # 4) Disconnect notification
        B.sio.disconnect()
        if not A.wait("partner-disconnected"):
            print("❌ A never got partner-disconnected")
            return 5
        print("✅ Disconnect notification OK")

        print("\n🎉 Smoke test PASSED")
        return 0

    finally:
        try:
            A.sio.disconnect()
        except Exception:
            pass
        try:
            if B.sio.connected:
                B.sio.disconnect()
        except Exception:
            pass


if __name__ == "__main__":
    raise SystemExit(main())
