"""Persistence of the single backup configuration record.

`ConfigProvider` is the port the manager consumes (`get()` / `set()`).
`JsonFileConfigProvider` keeps the record as a JSON file. The remote
credential is encrypted at rest when an encryption key is configured;
otherwise it is stored in plain JSON and a warning is logged.

A record that cannot be parsed or validated never aborts the caller:
`get()` logs the problem and falls back to the last configuration it read
successfully, or to defaults.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
import json
import logging
import os
from pathlib import Path
import threading
from typing import Any, Dict, Optional

from pydantic import ValidationError

from backup_lifecycle.api.schemas.backup_config import BackupConfig
from backup_lifecycle.backend.services.lifecycle.config_crypto import (
    ConfigEncryptionError,
    decrypt_secrets,
    encrypt_secrets,
)
from backup_lifecycle.backend.services.lifecycle.errors import ConfigInvalidError

logger = logging.getLogger(__name__)

ENCRYPTED_CREDENTIAL_KEY = "remote_credential_encrypted"


class ConfigProvider(ABC):
    """Reads and writes the persisted backup configuration."""

    @abstractmethod
    def get(self) -> BackupConfig:
        """Return the current configuration."""

    @abstractmethod
    def set(self, config: BackupConfig) -> None:
        """Persist the configuration."""


class InMemoryConfigProvider(ConfigProvider):
    """Non-persistent provider, used when no config path is configured."""

    def __init__(self, config: Optional[BackupConfig] = None):
        self._config = config or BackupConfig()

    def get(self) -> BackupConfig:
        return self._config

    def set(self, config: BackupConfig) -> None:
        self._config = config


class JsonFileConfigProvider(ConfigProvider):
    """Stores the configuration record in a JSON file."""

    def __init__(self, path: Path | str, *, encryption_key: str = ""):
        """Initialize the provider.

        Args:
            path: JSON file path.
            encryption_key: Key used to encrypt the remote credential. Empty
                disables encryption.
        """

        self.path = Path(path)
        self._encryption_key = encryption_key
        self._lock = threading.Lock()
        self._last_known: Optional[BackupConfig] = None

    def get(self) -> BackupConfig:
        with self._lock:
            if not self.path.exists():
                return self._last_known or BackupConfig()
            try:
                config = self._load()
            except ConfigInvalidError as exc:
                fallback = "last-known" if self._last_known is not None else "default"
                logger.error("Invalid backup config in %s, using %s configuration: %s", self.path, fallback, exc)
                return self._last_known or BackupConfig()
            self._last_known = config
            return config

    def _load(self) -> BackupConfig:
        """Read and validate the record.

        Raises:
            ConfigInvalidError: If the file is unreadable, not JSON, or invalid.
        """

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as exc:
            raise ConfigInvalidError("Unable to read backup config", details={"error": str(exc)}) from exc

        if not isinstance(data, dict):
            raise ConfigInvalidError("Backup config is not a JSON object")

        token = data.pop(ENCRYPTED_CREDENTIAL_KEY, None)
        if token:
            try:
                data["remote_credential"] = decrypt_secrets(token, self._encryption_key)
            except ConfigEncryptionError as exc:
                raise ConfigInvalidError("Unable to decrypt remote credential", details={"error": str(exc)}) from exc

        try:
            return BackupConfig.model_validate(data)
        except ValidationError as exc:
            raise ConfigInvalidError("Backup config failed validation", details={"errors": exc.errors()}) from exc

    def _serialize(self, config: BackupConfig) -> Dict[str, Any]:
        data = config.model_dump(mode="json", exclude={"remote_credential"})
        if config.remote_credential is None:
            return data

        secrets = config.remote_credential.model_dump(mode="json")
        if self._encryption_key:
            data[ENCRYPTED_CREDENTIAL_KEY] = encrypt_secrets(secrets, self._encryption_key)
        else:
            logger.warning("CONFIG_ENCRYPTION_KEY is not set; storing remote credential unencrypted")
            data["remote_credential"] = secrets
        return data

    def set(self, config: BackupConfig) -> None:
        """Write the record atomically (temp file + rename).

        Raises:
            OSError: If the file cannot be written.
        """

        data = self._serialize(config)
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            temp_path = self.path.with_name(f".{self.path.name}.tmp")
            with open(temp_path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            os.replace(temp_path, self.path)
            self._last_known = config
