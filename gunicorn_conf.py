"""gunicorn_conf.py

Default Gunicorn config for PairChat + Flask-SocketIO using Eventlet.

Environment variables:
  PAIRCHAT_BIND=0.0.0.0:5000
  PAIRCHAT_GUNICORN_LOGLEVEL=info
  PAIRCHAT_GUNICORN_ACCESSLOG=-
  PAIRCHAT_GUNICORN_ERRORLOG=-
  PAIRCHAT_GUNICORN_TIMEOUT=60

Recommended:
  PAIRCHAT_SOCKETIO_ASYNC=eventlet
"""

from __future__ import annotations

import os

bind = os.environ.get("PAIRCHAT_BIND", "0.0.0.0:5000")
# Matchmaking state is per-process; more workers would split the waiting pool.
workers = 1
worker_class = "eventlet"

# WebSockets keep connections open; avoid overly low timeouts.
timeout = int(os.environ.get("PAIRCHAT_GUNICORN_TIMEOUT", "60"))
keepalive = int(os.environ.get("PAIRCHAT_GUNICORN_KEEPALIVE", "5"))

loglevel = os.environ.get("PAIRCHAT_GUNICORN_LOGLEVEL", "info")
accesslog = os.environ.get("PAIRCHAT_GUNICORN_ACCESSLOG", "-")
errorlog = os.environ.get("PAIRCHAT_GUNICORN_ERRORLOG", "-")

# Important for Socket.IO upgrades through reverse proxies.
forwarded_allow_ips = os.environ.get("PAIRCHAT_FORWARDED_ALLOW_IPS", "*")
