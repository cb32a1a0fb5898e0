#!/usr/bin/env python3
"""main.py

PairChat server entrypoint.

``server_config.json`` is a *plaintext* JSON settings file. Nothing in it is
sensitive apart from ``secret_key``; set ``SECRET_KEY`` in the environment (and
``PAIRCHAT_PERSIST_SECRETS=0``) if you don't want it written to disk.
"""

from __future__ import annotations

import argparse
from datetime import datetime
import json
import logging
import os
import sys
from pathlib import Path

from constants import CHAT_MODES, CONFIG_FILE, MATCH_POLICIES
from interactive_setup import get_default_settings, interactive_setup
from server_init import run_web_server
from secrets_policy import scrub_secrets_for_persist


def configure_logging(settings: dict) -> None:
    """Configure file logging."""
    log_level_str = str(settings.get("log_level", "INFO")).upper()
    log_format = settings.get(
        "log_format",
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    log_file_path = settings.get("log_file_path", "logs/server.log")

    log_dir = os.path.dirname(log_file_path)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)

    log_level = getattr(logging, log_level_str, logging.INFO)
    logging.basicConfig(level=log_level, format=log_format, filename=log_file_path, filemode="a")
    logging.getLogger().addHandler(logging.StreamHandler(sys.stdout))
    logging.info("Logging configured (level=%s)", log_level_str)


def load_settings(path: Path) -> dict:
    """Load settings from JSON, layered over defaults. Returns defaults if missing."""
    defaults = get_default_settings()
    if not path.exists():
        return defaults

    try:
        with path.open("r", encoding="utf-8") as fp:
            loaded = json.load(fp)
        if not isinstance(loaded, dict):
            raise ValueError("top-level JSON value must be an object")
        return {**defaults, **loaded}
    except Exception as exc:
        print(f"⚠️  Could not parse {path} as JSON: {exc}")
        # Back the corrupted file up so a generated secret_key can be
        # persisted into a fresh JSON file.
        ts = datetime.now().strftime("%Y%m%d-%H%M%S")
        bad_path = path.with_suffix(path.suffix + f".bad-{ts}")
        try:
            path.rename(bad_path)
            print(f"⚠️  Backed up invalid settings file to: {bad_path}")
        except Exception as e2:
            print(f"⚠️  Could not back up invalid settings file: {e2}")
        print("⚠️  Falling back to defaults (run with --setup to rewrite config).")
        return defaults


def save_settings(path: Path, settings: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    # If PAIRCHAT_PERSIST_SECRETS=0, keep secret_key out of server_config.json.
    to_save = scrub_secrets_for_persist(settings)
    with path.open("w", encoding="utf-8") as fp:
        json.dump(to_save, fp, indent=2)


def apply_env_overrides(settings: dict) -> None:
    """Apply env overrides for secrets and runtime deployment."""

    def _bool_env(*names: str) -> bool | None:
        for n in names:
            v = os.getenv(n)
            if v is None:
                continue
            v = v.strip().lower()
            if v in ("1", "true", "yes", "y", "on"):
                return True
            if v in ("0", "false", "no", "n", "off"):
                return False
        return None

    def _str_env(*names: str) -> str | None:
        for n in names:
            v = os.getenv(n)
            if v is not None and v.strip() != "":
                return v.strip()
        return None

    def _int_env(*names: str) -> int | None:
        v = _str_env(*names)
        if v is None:
            return None
        try:
            return int(v)
        except ValueError:
            return None

    secret = os.getenv("SECRET_KEY")
    if secret:
        settings["secret_key"] = secret

    host = _str_env("PAIRCHAT_HOST")
    if host:
        settings["host"] = host
        settings["server_host"] = host

    # PORT is what most PaaS platforms hand out.
    port = _int_env("PAIRCHAT_PORT", "PORT")
    if port:
        settings["port"] = port
        settings["server_port"] = port

    origins = _str_env("PAIRCHAT_ALLOWED_ORIGINS")
    if origins:
        settings["allowed_origins"] = origins

    policy = _str_env("PAIRCHAT_MATCH_POLICY")
    if policy:
        if policy.lower() in MATCH_POLICIES:
            settings["match_policy"] = policy.lower()
        else:
            logging.warning("Ignoring PAIRCHAT_MATCH_POLICY=%r (expected one of %s)", policy, MATCH_POLICIES)

    mode = _str_env("PAIRCHAT_DEFAULT_CHAT_MODE")
    if mode:
        if mode.lower() in CHAT_MODES:
            settings["default_chat_mode"] = mode.lower()
        else:
            logging.warning("Ignoring PAIRCHAT_DEFAULT_CHAT_MODE=%r (expected one of %s)", mode, CHAT_MODES)

    log_level = _str_env("PAIRCHAT_LOG_LEVEL")
    if log_level:
        settings["log_level"] = log_level.upper()

    debug_invariants = _bool_env("PAIRCHAT_DEBUG_INVARIANTS")
    if debug_invariants is not None:
        settings["debug_invariants"] = debug_invariants


def parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="PairChat server")
    p.add_argument("--setup", action="store_true", help="run the interactive setup wizard")
    p.add_argument("--config", default=CONFIG_FILE, help="path to server config JSON")
    return p.parse_args()


def main() -> None:
    args = parse_args()
    settings_path = Path(args.config)

    settings = load_settings(settings_path)
    apply_env_overrides(settings)

    if args.setup or not settings_path.exists():
        print("\n=== PairChat Setup Wizard ===\n")
        settings = interactive_setup(settings)
        save_settings(settings_path, settings)
        print(f"✅ Saved settings to {settings_path}\n")

    configure_logging(settings)

    run_web_server(settings, settings_file=settings_path)


if __name__ == "__main__":
    main()
