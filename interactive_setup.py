#!/usr/bin/env python3
"""interactive_setup.py

PairChat setup wizard.

The server only needs a handful of settings: bind host/port, allowed origins,
the matching policy and a few relay limits. The wizard asks for those (plus a
few more in advanced mode) and *compacts* the saved JSON to known keys so
server_config.json stays readable.
"""

from __future__ import annotations

import os
from typing import Any, Dict

from constants import CHAT_MODES, DEFAULT_CHAT_MODE, MATCH_POLICIES, MATCH_POLICY_PREFER_MODE


# ──────────────────────────────────────────────────────────────────────────────
# Defaults (compact)
# ──────────────────────────────────────────────────────────────────────────────

DEFAULT_ICE_SERVERS: list[dict] = [
    {"urls": "stun:stun.l.google.com:19302"},
    {"urls": "stun:stun1.l.google.com:19302"},
]


def get_default_settings() -> Dict[str, Any]:
    """Return a compact set of defaults for PairChat.

    Notes:
      - Keep secrets out of JSON when possible; prefer env vars.
      - server_init.py will generate/persist secret_key if missing.
    """
    return {
        # ── Core server ──────────────────────────────────────────────────
        "server_name": "PairChat",
        "server_host": "0.0.0.0",
        "server_port": int(os.getenv("PORT") or 5000),
        # Backwards-compat keys (some code paths still check these first)
        "host": "0.0.0.0",
        "port": int(os.getenv("PORT") or 5000),
        "server_debug": False,
        "debug": False,
        "https": False,
        "ssl_cert_file": "",
        "ssl_key_file": "",
        "allowed_origins": "*",

        # Secrets (server_init.py will generate/persist if missing)
        "secret_key": "",

        # ── Socket.IO ────────────────────────────────────────────────────
        "socketio_ping_interval": 20,
        "socketio_ping_timeout": 15,

        # ── Matching ─────────────────────────────────────────────────────
        # prefer_mode: same-mode partner first, otherwise anyone waiting.
        # strict_mode: only same-mode partners; otherwise keep waiting.
        "match_policy": MATCH_POLICY_PREFER_MODE,
        "default_chat_mode": DEFAULT_CHAT_MODE,
        # Re-check pairing invariants after every mutation (tests / debugging).
        "debug_invariants": False,

        # ── Relay limits ─────────────────────────────────────────────────
        "max_message_length": 1000,
        "max_cipher_length": 140000,
        "duplicate_window_seconds": 2.0,
        "typing_expiry_seconds": 5.0,

        # ── WebRTC (handed to clients via /api/config) ───────────────────
        "ice_servers": list(DEFAULT_ICE_SERVERS),

        # ── Health / logging ─────────────────────────────────────────────
        "enable_health_check_endpoint": True,
        "health_check_endpoint": "/health",
        "log_level": "INFO",
        "log_format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        "log_file_path": "logs/server.log",
    }


def _compact_settings(settings: Dict[str, Any]) -> Dict[str, Any]:
    """Drop unknown keys so server_config.json stays small."""
    template = get_default_settings()
    compact: Dict[str, Any] = {}
    for k in template.keys():
        compact[k] = settings.get(k, template[k])
    return compact


# ──────────────────────────────────────────────────────────────────────────────
# Prompt helpers
# ──────────────────────────────────────────────────────────────────────────────


def _yn(prompt: str, default: bool = True) -> bool:
    suffix = "[Y/n]" if default else "[y/N]"
    while True:
        raw = (input(f"{prompt} {suffix}: ") or "").strip().lower()
        if not raw:
            return default
        if raw in ("y", "yes"):
            return True
        if raw in ("n", "no"):
            return False
        print("❌ Please answer yes or no.")


def _prompt_str(prompt: str, default: str) -> str:
    raw = input(f"{prompt} [{default}]: ")
    return raw.strip() if raw.strip() else default


def _prompt_int(prompt: str, default: int, min_val: int | None = None, max_val: int | None = None) -> int:
    while True:
        raw = input(f"{prompt} [{default}]: ").strip()
        if not raw:
            val = default
        else:
            try:
                val = int(raw)
            except ValueError:
                print("❌ Please enter a valid integer.")
                continue

        if min_val is not None and val < min_val:
            print(f"❌ Must be ≥ {min_val}.")
            continue
        if max_val is not None and val > max_val:
            print(f"❌ Must be ≤ {max_val}.")
            continue
        return val


def _prompt_float(prompt: str, default: float, min_val: float = 0.0) -> float:
    while True:
        raw = input(f"{prompt} [{default}]: ").strip()
        if not raw:
            return default
        try:
            val = float(raw)
        except ValueError:
            print("❌ Please enter a number.")
            continue
        if val < min_val:
            print(f"❌ Must be ≥ {min_val}.")
            continue
        return val


def _prompt_choice(prompt: str, default: str, choices: list[str]) -> str:
    ch = {c.lower(): c for c in choices}
    choices_str = "/".join(choices)
    while True:
        raw = (input(f"{prompt} ({choices_str}) [{default}]: ") or "").strip()
        val = (raw or default).strip().lower()
        if val in ch:
            return val
        print(f"❌ Please choose one of: {choices_str}")


def _parse_csv_urls(raw: str) -> list[dict]:
    """Parse comma-separated STUN/TURN urls into WebRTC iceServers format."""
    urls = [s.strip() for s in raw.split(",") if s.strip()]
    if not urls:
        return []
    return [{"urls": u} for u in urls]


# ──────────────────────────────────────────────────────────────────────────────
# Wizard
# ──────────────────────────────────────────────────────────────────────────────


def interactive_setup(settings: Dict[str, Any]) -> Dict[str, Any]:
    """Run the PairChat setup wizard and return an updated (compacted) settings dict."""

    # Start from compact defaults, but allow existing values to carry forward.
    base = get_default_settings()
    merged = {**base, **(settings or {})}

    advanced = _yn("Advanced mode? (more prompts)", default=False)

    # ── Core server ───────────────────────────────────────────────────────────
    merged["server_name"] = _prompt_str("Server name", str(merged.get("server_name") or base["server_name"]))
    merged["server_host"] = _prompt_str("Bind host", str(merged.get("server_host") or base["server_host"]))
    merged["server_port"] = _prompt_int("Bind port", int(merged.get("server_port") or base["server_port"]), 1, 65535)
    # Keep legacy keys in sync so older code paths don't bind the wrong address.
    merged["host"] = merged["server_host"]
    merged["port"] = merged["server_port"]

    origins = merged.get("allowed_origins")
    if isinstance(origins, (list, tuple)):
        origins = ",".join(str(o) for o in origins)
    merged["allowed_origins"] = _prompt_str("Allowed origins (comma-separated, * for any)", str(origins or "*"))

    # ── HTTPS ─────────────────────────────────────────────────────────────────
    merged["https"] = _yn(
        "Serve HTTPS directly? (browsers need HTTPS for camera access off localhost)",
        default=bool(merged.get("https", False)),
    )
    if merged["https"]:
        merged["ssl_cert_file"] = _prompt_str("TLS certificate file", str(merged.get("ssl_cert_file") or "cert.pem"))
        merged["ssl_key_file"] = _prompt_str("TLS key file", str(merged.get("ssl_key_file") or "key.pem"))

    # ── Matching ──────────────────────────────────────────────────────────────
    print("\n— Matching —")
    merged["match_policy"] = _prompt_choice(
        "When no same-mode partner is waiting",
        str(merged.get("match_policy") or MATCH_POLICY_PREFER_MODE),
        list(MATCH_POLICIES),
    )
    merged["default_chat_mode"] = _prompt_choice(
        "Default chat mode",
        str(merged.get("default_chat_mode") or DEFAULT_CHAT_MODE),
        list(CHAT_MODES),
    )

    if advanced:
        print("\n— Relay limits —")
        merged["max_message_length"] = _prompt_int(
            "Max chat message length", int(merged.get("max_message_length") or 1000), 1, 100000
        )
        merged["duplicate_window_seconds"] = _prompt_float(
            "Duplicate-message window (seconds, 0 disables)", float(merged.get("duplicate_window_seconds") or 0)
        )
        merged["typing_expiry_seconds"] = _prompt_float(
            "Typing indicator expiry (seconds)", float(merged.get("typing_expiry_seconds") or 5.0)
        )

        print("\n— WebRTC —")
        current = ",".join(str(s.get("urls")) for s in (merged.get("ice_servers") or []) if isinstance(s, dict))
        raw = _prompt_str("STUN/TURN urls (comma-separated)", current or "stun:stun.l.google.com:19302")
        merged["ice_servers"] = _parse_csv_urls(raw)

        print("\n— Logging —")
        merged["log_level"] = _prompt_choice(
            "Log level", str(merged.get("log_level") or "INFO").lower(), ["debug", "info", "warning", "error"]
        ).upper()
        merged["log_file_path"] = _prompt_str("Log file", str(merged.get("log_file_path") or base["log_file_path"]))

    return _compact_settings(merged)
