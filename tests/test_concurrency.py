"""Many threads hammering one Matchmaker; pairing state must stay consistent."""

import random
import threading
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor

from constants import EVT_PARTNER_FOUND
from matchmaking import ChatMode, Matchmaker

WORKERS = 8
HANDLES = [f"u{i}" for i in range(20)]
OPS_PER_WORKER = 200


class LockedNotifier:
    def __init__(self):
        self.sent = []
        self._lock = threading.Lock()

    def notify(self, handle, event, payload=None):
        with self._lock:
            self.sent.append((handle, event, payload))


def _worker(mm, seed):
    rng = random.Random(seed)
    for _ in range(OPS_PER_WORKER):
        handle = rng.choice(HANDLES)
        op = rng.random()
        if op < 0.45:
            mm.request_match(handle, rng.choice(list(ChatMode)))
        elif op < 0.65:
            mm.skip(handle)
        elif op < 0.75:
            mm.leave_queue(handle)
        elif op < 0.9:
            mm.disconnect(handle)
            mm.connect(handle)
        else:
            mm.connect(handle)


def test_concurrent_lifecycle_keeps_pairs_consistent():
    notifier = LockedNotifier()
    mm = Matchmaker(notifier, debug_invariants=True)
    for h in HANDLES:
        mm.connect(h)

    with ThreadPoolExecutor(max_workers=WORKERS) as pool:
        futures = [pool.submit(_worker, mm, seed) for seed in range(WORKERS)]
        for f in futures:
            f.result()

    mm.check_invariants()

    # Each room was announced to exactly two distinct handles, naming each other.
    rooms = defaultdict(list)
    for handle, event, payload in notifier.sent:
        if event == EVT_PARTNER_FOUND:
            rooms[payload["roomId"]].append((handle, payload["partnerHandle"]))
    assert rooms
    for room_id, found in rooms.items():
        assert len(found) == 2, room_id
        (h1, p1), (h2, p2) = found
        assert h1 != h2
        assert (p1, p2) == (h2, h1)

    # A waiting entry is consumed at most once: no handle sits in two live sessions.
    for handle, session in mm.sessions.items():
        assert session.partner != handle
        assert mm.sessions.get(session.partner).partner == handle
        assert handle not in mm.pool
    assert len(mm.sessions) % 2 == 0
    assert mm.stats()["connected"] == len(HANDLES)
