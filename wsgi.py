"""wsgi.py

Gunicorn entrypoint for PairChat.

Run (example):
  PAIRCHAT_SOCKETIO_ASYNC=eventlet \
  gunicorn -c gunicorn_conf.py wsgi:app

Notes:
- The waiting pool and session table live in process memory, so run exactly
  one worker. Two workers would each hold half the users and never pair them.
"""

from __future__ import annotations

import os

# ---- Ensure eventlet monkey_patch happens as early as possible ----
_async = (os.environ.get("PAIRCHAT_SOCKETIO_ASYNC", "auto") or "auto").strip().lower()
if _async in {"auto", "eventlet"}:
    try:
        import eventlet  # type: ignore

        eventlet.monkey_patch()
    except Exception:
        # If eventlet isn't installed, PairChat will fall back to threading.
        pass

from pathlib import Path

from constants import CONFIG_FILE
from main import load_settings, apply_env_overrides, configure_logging
from server_init import create_app


def _resolve_config_path() -> Path:
    # Prefer explicit env path when running under systemd.
    p = (
        os.environ.get("PAIRCHAT_CONFIG")
        or os.environ.get("PAIRCHAT_CONFIG_FILE")
        or CONFIG_FILE
    )
    return Path(p)


_settings_path = _resolve_config_path()
_settings = load_settings(_settings_path)
apply_env_overrides(_settings)
configure_logging(_settings)

# Create the Flask app + Socket.IO integration.
app, socketio = create_app(_settings, settings_file=_settings_path)
