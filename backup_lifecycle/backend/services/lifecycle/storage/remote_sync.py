"""Remote snapshot mirror with an OAuth2 credential state machine.

Credential states:

    UNCONFIGURED --set_credentials--> VALID --auth rejected--> EXPIRED
    EXPIRED --refresh ok--> VALID
    EXPIRED --refresh failed--> EXPIRED

Expiry is only ever detected lazily, when the remote rejects a call. The
stored expiry timestamp is informational and never checked up front.

Every remote operation runs through `_call()`, an explicit loop that allows at
most `MAX_AUTH_RETRIES` refresh-and-retry cycles. A failure on the retried
attempt propagates to the caller.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import logging
from pathlib import Path
import threading
from typing import Any, Callable, Dict, List, Optional, TypeVar

from backup_lifecycle.backend.services.lifecycle.credentials import (
    CredentialRef,
    CredentialState,
    RemoteCredential,
)
from backup_lifecycle.backend.services.lifecycle.errors import (
    AuthExpiredError,
    AuthFailureError,
    NotFoundError,
)
from backup_lifecycle.backend.services.lifecycle.oauth import OAuthTokenClient
from backup_lifecycle.backend.services.lifecycle.retention import SnapshotArtifact
from backup_lifecycle.backend.services.lifecycle.storage.base import DriveApi, SnapshotStore

logger = logging.getLogger(__name__)

MAX_AUTH_RETRIES = 1
REMOTE_PAGE_SIZE = 20
DEFAULT_FOLDER_NAME = "Backups"
DEFAULT_MIME_TYPE = "application/x-sqlite3"

T = TypeVar("T")


@dataclass(frozen=True)
class RemoteUploadResult:
    """Outcome of a successful upload."""

    remote_id: str
    name: str
    link: Optional[str]
    size: Optional[int]

    def to_dict(self) -> Dict[str, Any]:
        return {"remote_id": self.remote_id, "name": self.name, "link": self.link, "size": self.size}


@dataclass(frozen=True)
class RemoteConfig:
    """Configuration for the remote mirror.

    Attributes:
        folder_name: Name of the managed remote folder.
        mime_type: Content type sent with uploads.
    """

    folder_name: str = DEFAULT_FOLDER_NAME
    mime_type: str = DEFAULT_MIME_TYPE


def _parse_remote_time(raw: Optional[str]) -> datetime:
    if not raw:
        return datetime.fromtimestamp(0, tz=timezone.utc)
    return datetime.fromisoformat(raw.replace("Z", "+00:00")).astimezone(timezone.utc)


class RemoteSyncClient(SnapshotStore):
    """Mirrors snapshots into one remote folder and rotates them there."""

    label = "remote"

    def __init__(
        self,
        api: DriveApi,
        token_client: Optional[OAuthTokenClient],
        config: Optional[RemoteConfig] = None,
        *,
        credential_ref: Optional[CredentialRef] = None,
        on_refresh: Optional[Callable[[RemoteCredential], None]] = None,
    ):
        """Initialize the client.

        Args:
            api: Remote wire adapter.
            token_client: Token endpoint client used for refresh. When None,
                refresh always fails.
            config: Remote configuration.
            credential_ref: Holder of the current credential.
            on_refresh: Called with the new credential after a successful
                refresh, e.g. to persist it.
        """

        self._api = api
        self._token_client = token_client
        self.config = config or RemoteConfig()
        self.credential_ref = credential_ref or CredentialRef()
        self._on_refresh = on_refresh
        self._state_lock = threading.Lock()
        self._state = CredentialState.VALID if self._has_access_token() else CredentialState.UNCONFIGURED
        self._folder_id: Optional[str] = None

    def _has_access_token(self) -> bool:
        credential = self.credential_ref.get()
        return bool(credential and credential.access_token)

    @property
    def state(self) -> CredentialState:
        with self._state_lock:
            return self._state

    def _set_state(self, state: CredentialState) -> None:
        with self._state_lock:
            if self._state != state:
                logger.debug("Remote credential state %s -> %s", self._state.value, state.value)
            self._state = state

    def is_configured(self) -> bool:
        return self.state != CredentialState.UNCONFIGURED

    def set_refresh_listener(self, listener: Optional[Callable[[RemoteCredential], None]]) -> None:
        """Set the callback invoked with each refreshed credential."""

        self._on_refresh = listener

    def exchange_code(self, code: str) -> RemoteCredential:
        """Trade an authorization code for tokens and install them.

        Args:
            code: Authorization code from the consent redirect.

        Returns:
            RemoteCredential: The installed credential.

        Raises:
            AuthFailureError: If no OAuth client is configured or the exchange fails.
        """

        if self._token_client is None:
            raise AuthFailureError("No OAuth client configured for code exchange")
        credential = self._token_client.exchange_code(code)
        self.set_credentials(credential)
        return credential

    def set_credentials(self, tokens: Optional[Dict[str, Any] | RemoteCredential]) -> None:
        """Install a credential.

        A credential without an access token leaves the client unconfigured.

        Args:
            tokens: Token dictionary, credential value, or None to clear.
        """

        if tokens is None:
            credential = None
        elif isinstance(tokens, RemoteCredential):
            credential = tokens
        else:
            credential = RemoteCredential.from_dict(tokens)

        if credential is None or not credential.access_token:
            self.credential_ref.swap(None)
            self._set_state(CredentialState.UNCONFIGURED)
            if credential is not None:
                logger.warning("Ignoring remote credential without an access token")
            return

        self.credential_ref.swap(credential)
        self._set_state(CredentialState.VALID)

    def refresh(self) -> RemoteCredential:
        """Exchange the refresh token for a new access token.

        Returns:
            RemoteCredential: The new credential, already swapped in.

        Raises:
            AuthFailureError: If the client is unconfigured or the exchange fails.
                The credential stays EXPIRED.
        """

        current = self.credential_ref.get()
        if current is None:
            raise AuthFailureError("No remote credential configured")
        if self._token_client is None:
            self._set_state(CredentialState.EXPIRED)
            raise AuthFailureError("No OAuth client configured for token refresh")

        try:
            renewed = self._token_client.refresh(current)
        except AuthFailureError:
            self._set_state(CredentialState.EXPIRED)
            logger.error("Failed to refresh remote access token")
            raise

        self.credential_ref.swap(renewed)
        self._set_state(CredentialState.VALID)
        if self._on_refresh is not None:
            self._on_refresh(renewed)
        return renewed

    def _call(self, operation: Callable[[RemoteCredential], T]) -> T:
        """Run a remote operation with bounded refresh-and-retry.

        Args:
            operation: Callable receiving the credential to use.

        Returns:
            T: The operation's result.

        Raises:
            AuthFailureError: If no credential is configured or refresh fails.
            AuthExpiredError: If the retried attempt is rejected again.
            RemoteUnavailableError: For other remote failures.
        """

        attempt = 0
        while True:
            credential = self.credential_ref.get()
            if credential is None or not credential.access_token:
                raise AuthFailureError("No remote credential configured")
            try:
                return operation(credential)
            except AuthExpiredError:
                self._set_state(CredentialState.EXPIRED)
                if attempt >= MAX_AUTH_RETRIES:
                    logger.error("Remote call rejected again after token refresh; giving up")
                    raise
                attempt += 1
                logger.info("Remote access token rejected; refreshing and retrying once")
                self.refresh()

    def resolve_folder(self) -> str:
        """Find or create the managed remote folder.

        The id is cached for the lifetime of the process. When several
        folders share the name, the first one returned is used.

        Returns:
            str: Folder id.
        """

        if self._folder_id:
            return self._folder_id
        folder_id = self._call(self._find_or_create_folder)
        self._folder_id = folder_id
        return folder_id

    def _find_or_create_folder(self, credential: RemoteCredential) -> str:
        name = self.config.folder_name
        matches = self._api.find_folders(credential, name=name)
        if matches:
            if len(matches) > 1:
                logger.warning("Found %s remote folders named %r; using the first", len(matches), name)
            logger.debug("Using remote folder %r (%s)", name, matches[0]["id"])
            return str(matches[0]["id"])

        created = self._api.create_folder(credential, name=name)
        logger.info("Created remote folder %r (%s)", name, created["id"])
        return str(created["id"])

    def upload(self, local_path: Path, name: str) -> RemoteUploadResult:
        """Upload a local snapshot into the managed folder.

        Args:
            local_path: Snapshot file.
            name: Remote file name.

        Returns:
            RemoteUploadResult: Remote id, name, web link, and size.

        Raises:
            NotFoundError: If `local_path` does not exist.
            AuthFailureError: If refresh fails.
            AuthExpiredError: If the upload is rejected again after refresh.
            RemoteUnavailableError: For other remote failures.
        """

        local_path = Path(local_path)
        if not local_path.is_file():
            raise NotFoundError(f"Local file not found: {local_path}")

        size = local_path.stat().st_size
        logger.info("Uploading %s (%.2f MB) to remote folder %r", name, size / (1024 * 1024), self.config.folder_name)

        def _upload(credential: RemoteCredential) -> Dict[str, Any]:
            folder_id = self._folder_id or self._find_or_create_folder(credential)
            self._folder_id = folder_id
            return self._api.upload_file(
                credential,
                local_path=local_path,
                name=name,
                folder_id=folder_id,
                mime_type=self.config.mime_type,
            )

        created = self._call(_upload)
        result = RemoteUploadResult(
            remote_id=str(created["id"]),
            name=str(created.get("name") or name),
            link=created.get("webViewLink"),
            size=int(created["size"]) if created.get("size") is not None else size,
        )
        logger.info("Uploaded %s to remote (%s)", result.name, result.link or result.remote_id)
        return result

    def list(self) -> List[SnapshotArtifact]:
        """List remote snapshots, newest first.

        Only the first page (`REMOTE_PAGE_SIZE` items) is returned.

        Returns:
            List[SnapshotArtifact]: Remote snapshots.
        """

        folder_id = self.resolve_folder()
        response = self._call(
            lambda credential: self._api.list_files(credential, folder_id=folder_id, page_size=REMOTE_PAGE_SIZE)
        )
        if response.get("nextPageToken"):
            logger.debug("Remote folder has more than %s files; only the first page is managed", REMOTE_PAGE_SIZE)

        artifacts = [
            SnapshotArtifact(
                name=str(item.get("name", "")),
                location=str(item["id"]),
                created_at=_parse_remote_time(item.get("createdTime")),
                size_bytes=int(item["size"]) if item.get("size") is not None else None,
                remote_id=str(item["id"]),
                link=item.get("webViewLink"),
            )
            for item in (response.get("files") or [])[:REMOTE_PAGE_SIZE]
        ]
        artifacts.sort(key=lambda a: (a.created_at, a.name), reverse=True)
        return artifacts

    def _delete(self, artifact: SnapshotArtifact) -> None:
        file_id = artifact.remote_id or artifact.location
        self._call(lambda credential: self._api.delete_file(credential, file_id=file_id))

    def status(self) -> Dict[str, Any]:
        """Describe the credential without touching the network."""

        credential = self.credential_ref.get()
        return {
            "configured": self.is_configured(),
            "state": self.state.value,
            "has_access_token": bool(credential and credential.access_token),
            "has_refresh_token": bool(credential and credential.refresh_token),
            "token_expiry": credential.expiry.isoformat() if credential and credential.expiry else None,
        }

    def close(self) -> None:
        """Release the token client's HTTP connections."""

        if self._token_client is not None:
            self._token_client.close()
