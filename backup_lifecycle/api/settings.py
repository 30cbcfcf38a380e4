"""Process settings for the backup lifecycle service.

Values come from environment variables (or a `.env` file). Secrets can be
supplied either directly (`FOO`) or as a path to a secret file (`FOO_FILE`),
which is how Docker/Swarm secrets are mounted.
"""

from __future__ import annotations

import os

from pydantic_settings import BaseSettings, SettingsConfigDict


def _read_secret(value: str, file_path: str) -> str:
    """Return `value` if set, otherwise the contents of `file_path`.

    Args:
        value: Direct value.
        file_path: Path to a secret file.

    Returns:
        str: Resolved secret (empty string when neither is set).
    """

    if value:
        return value.strip()
    if file_path and os.path.exists(file_path):
        with open(file_path, "r", encoding="utf-8") as f:
            return f.read().strip()
    return ""


class Settings(BaseSettings):
    """Environment-driven settings."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Primary data store and backup locations
    SOURCE_DB_PATH: str = "data/database.db"
    BACKUP_DIR: str = "backups"
    CONFIG_PATH: str = "data/backup-config.json"

    # Remote store
    DRIVE_FOLDER_NAME: str = "Backups"
    DRIVE_MIME_TYPE: str = "application/x-sqlite3"
    GOOGLE_CLIENT_ID: str = ""
    GOOGLE_CLIENT_SECRET: str = ""
    GOOGLE_CLIENT_SECRET_FILE: str = ""
    GOOGLE_TOKEN_URI: str = "https://oauth2.googleapis.com/token"
    GOOGLE_REDIRECT_URI: str = "http://localhost:3000/api/google/callback"

    # Credential encryption at rest
    CONFIG_ENCRYPTION_KEY: str = ""
    CONFIG_ENCRYPTION_KEY_FILE: str = ""

    # Logging
    LOG_DIR: str = "logs"
    LOG_LEVEL: str = "INFO"
    LOG_FILENAME: str = "backup-lifecycle.log"
    DEBUG: bool = False

    def get_config_encryption_key(self) -> str:
        """Return the config encryption key (env value or secret file)."""

        return _read_secret(self.CONFIG_ENCRYPTION_KEY, self.CONFIG_ENCRYPTION_KEY_FILE)

    def get_google_client_secret(self) -> str:
        """Return the OAuth client secret (env value or secret file)."""

        return _read_secret(self.GOOGLE_CLIENT_SECRET, self.GOOGLE_CLIENT_SECRET_FILE)

    def oauth_configured(self) -> bool:
        return bool(self.GOOGLE_CLIENT_ID and self.get_google_client_secret())
