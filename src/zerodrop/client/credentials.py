"""Client configuration and credential storage.

This module provides:
- Config file handling (~/.zerodrop/config.json: server URL and user identity)
- Bearer token storage in the OS keyring, with the config file as fallback
"""

from __future__ import annotations

import contextlib
import json
import logging
import os
from pathlib import Path

import keyring
from keyring.errors import KeyringError

logger = logging.getLogger(__name__)

KEYRING_SERVICE = "zerodrop"
DEFAULT_SERVER_URL = "http://localhost:8000"


def get_config_dir() -> Path:
    """Get the configuration directory for ZeroDrop.

    Returns:
        Path from ZERODROP_CONFIG_DIR, or ~/.zerodrop.
    """
    override = os.environ.get("ZERODROP_CONFIG_DIR")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".zerodrop"


def get_config_file() -> Path:
    """Get the path to the config file."""
    return get_config_dir() / "config.json"


def load_config() -> dict[str, str]:
    """Load configuration from config file."""
    config_file = get_config_file()
    if config_file.exists():
        return dict(json.loads(config_file.read_text()))
    return {}


def save_config(config: dict[str, str]) -> None:
    """Save configuration to config file."""
    config_file = get_config_file()
    config_file.parent.mkdir(parents=True, exist_ok=True)
    config_file.write_text(json.dumps(config, indent=2))
    config_file.chmod(0o600)


def get_server_url(config: dict[str, str] | None = None) -> str:
    """Server URL from ZERODROP_SERVER_URL, the config file, or the default."""
    config = load_config() if config is None else config
    return os.environ.get("ZERODROP_SERVER_URL") or config.get("server_url") or DEFAULT_SERVER_URL


def save_credentials(
    server_url: str,
    token: str,
    user_id: str,
    user_name: str,
    email: str,
) -> None:
    """Persist the identity of the registered user.

    The token goes to the OS keyring. When no keyring backend is usable it
    is written to the config file instead, readable only by its owner.
    """
    config = load_config()
    config.update(
        server_url=server_url.rstrip("/"),
        user_id=user_id,
        user_name=user_name,
        email=email,
    )
    config.pop("auth_token", None)

    try:
        keyring.set_password(KEYRING_SERVICE, user_id, token)
    except KeyringError as e:
        logger.warning("OS keyring unavailable (%s), storing token in %s", e, get_config_file())
        config["auth_token"] = token

    save_config(config)


def load_token(config: dict[str, str] | None = None) -> str | None:
    """Return the stored bearer token, or None if not registered."""
    config = load_config() if config is None else config
    if config.get("auth_token"):
        return config["auth_token"]

    user_id = config.get("user_id")
    if not user_id:
        return None
    with contextlib.suppress(KeyringError):
        return keyring.get_password(KEYRING_SERVICE, user_id)
    return None

