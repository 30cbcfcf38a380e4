"""Error taxonomy for the backup lifecycle.

Failures that happen before a local snapshot exists propagate out of
`BackupManager.run_backup()`. Failures that happen afterwards (the remote leg)
are caught by the manager and attached to the run result instead.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class BackupError(Exception):
    """Base class for backup lifecycle errors.

    Attributes:
        message: Human-readable error message.
        details: Additional error context.
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        """Initialize the error.

        Args:
            message: Human-readable error message.
            details: Additional error context.
        """

        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | details={self.details}"
        return self.message


class SourceMissingError(BackupError):
    """The primary data file does not exist at run time."""


class BackupIOError(BackupError):
    """A local copy or delete failed."""


class NotFoundError(BackupError):
    """A file handed to the remote store does not exist locally."""


class AuthExpiredError(BackupError):
    """The remote store rejected the access token as expired or revoked."""


class AuthFailureError(BackupError):
    """Exchanging the refresh token (or an authorization code) failed."""


class RemoteUnavailableError(BackupError):
    """Any other network or API failure talking to the remote store."""


class ConfigInvalidError(BackupError):
    """Persisted or patched backup configuration failed validation."""
