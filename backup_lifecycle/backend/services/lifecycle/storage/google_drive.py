"""Google Drive wire adapter using a user OAuth2 access token.

This module only speaks the Drive v3 API. It does not refresh tokens: a
rejected token surfaces as `AuthExpiredError` and the caller
(`RemoteSyncClient`) decides whether to refresh and retry.
"""

from __future__ import annotations

import logging
from pathlib import Path
import threading
from typing import Any, Callable, Dict, List, Optional, Tuple

from google.auth.exceptions import RefreshError, TransportError
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from googleapiclient.http import MediaFileUpload
import httplib2

from backup_lifecycle.backend.services.lifecycle.credentials import RemoteCredential
from backup_lifecycle.backend.services.lifecycle.errors import AuthExpiredError, RemoteUnavailableError
from backup_lifecycle.backend.services.lifecycle.storage.base import DriveApi

logger = logging.getLogger(__name__)

FOLDER_MIME = "application/vnd.google-apps.folder"
FILE_FIELDS = "id, name, createdTime, size, webViewLink"

ServiceFactory = Callable[[RemoteCredential], Any]


def build_drive_service(credential: RemoteCredential) -> Any:
    """Build a Drive v3 service authenticated with the credential's access token.

    The google-auth credential is built without refresh material
    or expiry, so the client library never refreshes on its own.

    Args:
        credential: Credential to authenticate with.

    Returns:
        Any: Drive service resource.
    """

    creds = Credentials(token=credential.access_token)
    return build("drive", "v3", credentials=creds, cache_discovery=False)


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace("'", "\\'")


class GoogleDriveApi(DriveApi):
    """Drive v3 implementation of the remote wire boundary."""

    def __init__(self, service_factory: Optional[ServiceFactory] = None):
        """Initialize the adapter.

        Args:
            service_factory: Builds a Drive service for a credential.
        """

        self._service_factory = service_factory or build_drive_service
        self._lock = threading.Lock()
        self._service: Optional[Tuple[str, Any]] = None

    def _service_for(self, credential: RemoteCredential) -> Any:
        """Return a service for the credential, reusing it while the token is unchanged."""

        with self._lock:
            if self._service is None or self._service[0] != credential.access_token:
                self._service = (credential.access_token, self._service_factory(credential))
            return self._service[1]

    def _execute(self, request: Any, *, operation: str) -> Dict[str, Any]:
        """Execute a Drive request and translate failures.

        Args:
            request: Drive API request object.
            operation: Short operation name for error details.

        Returns:
            Dict[str, Any]: Response body.

        Raises:
            AuthExpiredError: When the access token was rejected.
            RemoteUnavailableError: For any other failure.
        """

        try:
            return request.execute() or {}
        except HttpError as exc:
            status = int(getattr(exc.resp, "status", 0) or 0)
            if status == 401:
                raise AuthExpiredError(
                    f"Drive rejected the access token during {operation}",
                    details={"status": status},
                ) from exc
            raise RemoteUnavailableError(
                f"Drive {operation} failed",
                details={"status": status, "error": str(exc)},
            ) from exc
        except RefreshError as exc:
            raise AuthExpiredError(
                f"Drive rejected the access token during {operation}",
                details={"error": str(exc)},
            ) from exc
        except (TransportError, httplib2.HttpLib2Error, OSError) as exc:
            raise RemoteUnavailableError(
                f"Drive {operation} failed",
                details={"error": str(exc)},
            ) from exc

    def find_folders(self, credential: RemoteCredential, *, name: str) -> List[Dict[str, Any]]:
        query = f"name = '{_escape(name)}' and mimeType = '{FOLDER_MIME}' and trashed = false"
        service = self._service_for(credential)
        response = self._execute(
            service.files().list(q=query, spaces="drive", fields="files(id, name)"),
            operation="folder lookup",
        )
        return list(response.get("files", []) or [])

    def create_folder(self, credential: RemoteCredential, *, name: str) -> Dict[str, Any]:
        service = self._service_for(credential)
        return self._execute(
            service.files().create(body={"name": name, "mimeType": FOLDER_MIME}, fields="id, name"),
            operation="folder create",
        )

    def upload_file(
        self,
        credential: RemoteCredential,
        *,
        local_path: Path,
        name: str,
        folder_id: str,
        mime_type: str,
    ) -> Dict[str, Any]:
        """Upload a file into a folder.

        Args:
            credential: Credential to authenticate with.
            local_path: File to upload.
            name: Remote file name.
            folder_id: Parent folder id.
            mime_type: Content type sent with the upload.

        Returns:
            Dict[str, Any]: Created file metadata.
        """

        service = self._service_for(credential)
        media = MediaFileUpload(str(local_path), mimetype=mime_type, resumable=False)
        return self._execute(
            service.files().create(
                body={"name": name, "parents": [folder_id]},
                media_body=media,
                fields=FILE_FIELDS,
            ),
            operation="upload",
        )

    def list_files(
        self,
        credential: RemoteCredential,
        *,
        folder_id: str,
        page_size: int,
        page_token: Optional[str] = None,
    ) -> Dict[str, Any]:
        query = f"'{_escape(folder_id)}' in parents and trashed = false and mimeType != '{FOLDER_MIME}'"
        service = self._service_for(credential)
        return self._execute(
            service.files().list(
                q=query,
                spaces="drive",
                orderBy="createdTime desc",
                pageSize=page_size,
                pageToken=page_token,
                fields=f"nextPageToken, files({FILE_FIELDS})",
            ),
            operation="list",
        )

    def delete_file(self, credential: RemoteCredential, *, file_id: str) -> None:
        service = self._service_for(credential)
        self._execute(service.files().delete(fileId=file_id), operation="delete")
