"""Store factory for the backup lifecycle.

Centralizes how process settings turn into concrete stores, so the runner and
tests build them the same way.
"""

from __future__ import annotations

import logging
from typing import Optional

from backup_lifecycle.api.settings import Settings
from backup_lifecycle.backend.services.lifecycle.oauth import OAuthClientConfig, OAuthTokenClient
from backup_lifecycle.backend.services.lifecycle.storage.base import DriveApi
from backup_lifecycle.backend.services.lifecycle.storage.google_drive import GoogleDriveApi
from backup_lifecycle.backend.services.lifecycle.storage.local import LocalConfig, LocalStore
from backup_lifecycle.backend.services.lifecycle.storage.remote_sync import RemoteConfig, RemoteSyncClient

logger = logging.getLogger(__name__)


def build_local_store(settings: Settings) -> LocalStore:
    return LocalStore(LocalConfig(base_path=settings.BACKUP_DIR))


def build_token_client(settings: Settings) -> Optional[OAuthTokenClient]:
    """Build the OAuth token client, or None when no client registration is configured."""

    if not settings.oauth_configured():
        logger.info("GOOGLE_CLIENT_ID/GOOGLE_CLIENT_SECRET not set; token refresh is unavailable")
        return None

    return OAuthTokenClient(
        OAuthClientConfig(
            client_id=settings.GOOGLE_CLIENT_ID,
            client_secret=settings.get_google_client_secret(),
            token_uri=settings.GOOGLE_TOKEN_URI,
            redirect_uri=settings.GOOGLE_REDIRECT_URI,
        )
    )


def build_remote_client(settings: Settings, *, api: Optional[DriveApi] = None) -> RemoteSyncClient:
    """Build the remote mirror client.

    Args:
        settings: Process settings.
        api: Wire adapter override; defaults to the Google Drive adapter.

    Returns:
        RemoteSyncClient: Client with no credential installed yet.
    """

    return RemoteSyncClient(
        api or GoogleDriveApi(),
        build_token_client(settings),
        RemoteConfig(folder_name=settings.DRIVE_FOLDER_NAME, mime_type=settings.DRIVE_MIME_TYPE),
    )
