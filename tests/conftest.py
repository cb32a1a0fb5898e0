"""Shared fixtures for the PairChat test suite.

Socket.IO tests run in threading mode so eventlet never monkey-patches the
test process.
"""

import os

os.environ["PAIRCHAT_SOCKETIO_ASYNC"] = "threading"
os.environ.setdefault("PAIRCHAT_PERSIST_SECRETS", "0")

import pytest

from interactive_setup import get_default_settings
from matchmaking import Matchmaker
from notifier import Notifier
from relay import ChatRelay


class RecordingNotifier(Notifier):
    """Collects every outbound event instead of sending it."""

    def __init__(self):
        self.sent = []

    def notify(self, handle, event, payload=None):
        self.sent.append((handle, event, payload))

    def events_for(self, handle, event=None):
        return [(e, p) for h, e, p in self.sent if h == handle and (event is None or e == event)]

    def clear(self):
        self.sent.clear()


class FakeClock:
    def __init__(self, start=1_700_000_000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def matchmaker(notifier, clock):
    return Matchmaker(notifier, clock=clock, debug_invariants=True)


@pytest.fixture
def relay(matchmaker, notifier, clock):
    return ChatRelay(
        matchmaker,
        notifier,
        {"max_message_length": 50, "duplicate_window_seconds": 2.0, "typing_expiry_seconds": 5.0},
        clock=clock,
    )


@pytest.fixture
def settings(tmp_path):
    s = get_default_settings()
    s["secret_key"] = "test-secret"
    s["debug_invariants"] = True
    s["log_file_path"] = str(tmp_path / "server.log")
    return s


@pytest.fixture
def app_and_socketio(settings):
    from server_init import create_app

    return create_app(settings)


@pytest.fixture
def make_client(app_and_socketio):
    """Factory for connected Socket.IO test clients; all are disconnected at teardown."""
    app, socketio = app_and_socketio
    clients = []

    def _make():
        c = socketio.test_client(app)
        assert c.is_connected()
        clients.append(c)
        return c

    yield _make

    for c in clients:
        if c.is_connected():
            c.disconnect()
