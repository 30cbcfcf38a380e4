"""OAuth2 credential value and the reference that holds the current value.

`RemoteCredential` is immutable. A refresh never edits it in place: it builds
a new value and swaps it into the `CredentialRef` under a lock, so readers
always see either the old or the new token pair, never a mix.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
import threading
from typing import Any, Dict, Optional


class CredentialState(str, Enum):
    """Lifecycle of the remote credential."""

    UNCONFIGURED = "unconfigured"
    VALID = "valid"
    EXPIRED = "expired"


def _parse_expiry(value: Any) -> Optional[datetime]:
    """Parse an expiry given as ISO string, datetime, or epoch milliseconds.

    Args:
        value: Raw expiry value.

    Returns:
        Optional[datetime]: Timezone-aware UTC expiry, or None.

    Raises:
        ValueError: If the value cannot be interpreted.
    """

    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        # Token endpoints in the wild report epoch milliseconds.
        return datetime.fromtimestamp(float(value) / 1000.0, tz=timezone.utc)
    parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class RemoteCredential:
    """OAuth2 token pair for the remote store."""

    access_token: str
    refresh_token: Optional[str] = None
    expiry: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RemoteCredential":
        """Build a credential from a token dictionary.

        Accepts both `expiry` and the `expiry_date` (epoch ms) spelling.

        Args:
            data: Token dictionary.

        Returns:
            RemoteCredential: Parsed credential.

        Raises:
            ValueError: If the expiry cannot be parsed.
        """

        expiry_raw = data.get("expiry", data.get("expiry_date"))
        return cls(
            access_token=str(data.get("access_token") or ""),
            refresh_token=(str(data["refresh_token"]) if data.get("refresh_token") else None),
            expiry=_parse_expiry(expiry_raw),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expiry": self.expiry.isoformat() if self.expiry else None,
        }

    def refreshed(self, *, access_token: str, expiry: Optional[datetime], refresh_token: Optional[str] = None) -> "RemoteCredential":
        """Return a new credential carrying a refreshed access token.

        The refresh token is kept unless the token endpoint rotated it.
        """

        return RemoteCredential(
            access_token=access_token,
            refresh_token=refresh_token or self.refresh_token,
            expiry=expiry,
        )


class CredentialRef:
    """Thread-safe holder for the current `RemoteCredential`."""

    def __init__(self, credential: Optional[RemoteCredential] = None):
        self._lock = threading.Lock()
        self._credential = credential

    def get(self) -> Optional[RemoteCredential]:
        with self._lock:
            return self._credential

    def swap(self, credential: Optional[RemoteCredential]) -> Optional[RemoteCredential]:
        """Replace the current credential.

        Args:
            credential: New credential, or None to clear.

        Returns:
            Optional[RemoteCredential]: The previous credential.
        """

        with self._lock:
            previous = self._credential
            self._credential = credential
            return previous
