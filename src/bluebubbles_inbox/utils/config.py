"""Configuration management for BlueBubbles Inbox."""

from __future__ import annotations

import base64
import binascii
import json
import logging
import os
from pathlib import Path
from typing import Any

import keyring
from keyring.backends.fail import Keyring as FailKeyring
from keyring.errors import KeyringError, PasswordDeleteError

from .. import __app_id__

logger = logging.getLogger(__name__)

APP_ID = __app_id__
CONFIG_DIR = Path.home() / ".config" / "bluebubbles-inbox"

DEFAULTS: dict[str, Any] = {
    "default_region": "US",
    "initial_load_target": 100,
    "page_size": 25,
    "debounce_ms": 100,
    "sync_batch_size": 50,
}


def _keyring_available() -> bool:
    """Check if a working keyring backend is available."""
    try:
        backend = keyring.get_keyring()
    except KeyringError:
        return False
    return not isinstance(backend, FailKeyring)


class Config:
    """Manages application configuration with secure credential storage."""

    def __init__(self, config_dir: Path | None = None, use_keyring: bool | None = None) -> None:
        self.config_dir = config_dir or CONFIG_DIR
        self._config: dict[str, Any] = {}
        self._secrets: dict[str, str] = {}
        self._use_keyring = _keyring_available() if use_keyring is None else use_keyring
        self._load()

    @property
    def config_file(self) -> Path:
        return self.config_dir / "config.json"

    @property
    def secrets_file(self) -> Path:
        """Fallback when keyring is unavailable."""
        return self.config_dir / "secrets.json"

    @property
    def db_path(self) -> Path:
        return self.config_dir / "inbox.db"

    def _load(self) -> None:
        """Load configuration from disk."""
        self.config_dir.mkdir(parents=True, exist_ok=True)

        if self.config_file.exists():
            try:
                self._config = json.loads(self.config_file.read_text())
            except json.JSONDecodeError:
                logger.warning("Ignoring unreadable config file %s", self.config_file)
                self._config = {}
        else:
            self._config = {}

        if not self._use_keyring and self.secrets_file.exists():
            try:
                self._secrets = json.loads(self.secrets_file.read_text())
            except json.JSONDecodeError:
                self._secrets = {}

    def _save(self) -> None:
        """Save configuration to disk."""
        self.config_dir.mkdir(parents=True, exist_ok=True)
        self.config_file.write_text(json.dumps(self._config, indent=2))

    def _save_secrets(self) -> None:
        """Save secrets to fallback file (when keyring unavailable)."""
        self.config_dir.mkdir(parents=True, exist_ok=True)
        self.secrets_file.write_text(json.dumps(self._secrets, indent=2))
        os.chmod(self.secrets_file, 0o600)

    @property
    def server_url(self) -> str | None:
        """Get the BlueBubbles server URL."""
        return self._config.get("server_url")

    @server_url.setter
    def server_url(self, value: str) -> None:
        self._config["server_url"] = value.rstrip("/")
        self._save()

    @property
    def password(self) -> str | None:
        """Get the server password from secure storage."""
        if self._use_keyring:
            return keyring.get_password(APP_ID, "server_password")
        # Base64 in a 0600 file; not truly secure, but not plaintext either
        encoded = self._secrets.get("server_password")
        if encoded:
            try:
                return base64.b64decode(encoded).decode("utf-8")
            except (binascii.Error, UnicodeDecodeError):
                return None
        return None

    @password.setter
    def password(self, value: str) -> None:
        if self._use_keyring:
            keyring.set_password(APP_ID, "server_password", value)
        else:
            self._secrets["server_password"] = base64.b64encode(value.encode("utf-8")).decode(
                "ascii"
            )
            self._save_secrets()

    def delete_password(self) -> None:
        """Remove the stored password."""
        if self._use_keyring:
            try:
                keyring.delete_password(APP_ID, "server_password")
            except PasswordDeleteError:
                pass
        else:
            self._secrets.pop("server_password", None)
            self._save_secrets()

    @property
    def is_configured(self) -> bool:
        """Check if the app has been configured with server details."""
        return bool(self.server_url and self.password)

    @property
    def using_secure_storage(self) -> bool:
        return self._use_keyring

    # Engine settings

    @property
    def default_region(self) -> str:
        return str(self.get("default_region")).upper()

    @property
    def initial_load_target(self) -> int:
        return self._positive_int("initial_load_target")

    @property
    def page_size(self) -> int:
        return self._positive_int("page_size")

    @property
    def debounce_ms(self) -> int:
        return self._positive_int("debounce_ms")

    @property
    def sync_batch_size(self) -> int:
        return self._positive_int("sync_batch_size")

    def _positive_int(self, key: str) -> int:
        value = self.get(key)
        try:
            number = int(value)
        except (TypeError, ValueError):
            logger.warning("Invalid %s %r in config, using %s", key, value, DEFAULTS[key])
            return DEFAULTS[key]
        return number if number > 0 else DEFAULTS[key]

    def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration value, falling back to the built-in default."""
        if default is None:
            default = DEFAULTS.get(key)
        return self._config.get(key, default)

    def set(self, key: str, value: Any) -> None:
        """Set a configuration value."""
        self._config[key] = value
        self._save()
