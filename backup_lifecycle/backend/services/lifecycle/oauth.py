"""OAuth2 token endpoint client.

Only the token-exchange contract lives here: trading an authorization code for
a token pair, and trading a refresh token for a new access token. The consent
screen and its redirect are handled elsewhere.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import logging
from typing import Any, Callable, Dict, Optional

import httpx

from backup_lifecycle.backend.services.lifecycle.credentials import RemoteCredential
from backup_lifecycle.backend.services.lifecycle.errors import AuthFailureError

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_URI = "https://oauth2.googleapis.com/token"
DEFAULT_TIMEOUT_SECONDS = 30.0


@dataclass(frozen=True)
class OAuthClientConfig:
    """OAuth2 client registration."""

    client_id: str
    client_secret: str
    token_uri: str = DEFAULT_TOKEN_URI
    redirect_uri: str = "http://localhost:3000/api/google/callback"


class OAuthTokenClient:
    """Performs token exchanges against an OAuth2 token endpoint."""

    def __init__(
        self,
        config: OAuthClientConfig,
        *,
        http_client: Optional[httpx.Client] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        """Initialize the client.

        Args:
            config: Client registration.
            http_client: Optional preconfigured httpx client.
            clock: Source of "now" for computing token expiry.
        """

        self.config = config
        self._http = http_client or httpx.Client(timeout=DEFAULT_TIMEOUT_SECONDS)
        self._clock = clock

    def _post(self, form: Dict[str, str]) -> Dict[str, Any]:
        """POST a form to the token endpoint and return the JSON body.

        Args:
            form: Form fields.

        Returns:
            Dict[str, Any]: Parsed token response.

        Raises:
            AuthFailureError: On transport errors, non-2xx responses, or a
                response without an access token.
        """

        payload = {
            "client_id": self.config.client_id,
            "client_secret": self.config.client_secret,
            **form,
        }
        try:
            response = self._http.post(self.config.token_uri, data=payload)
        except httpx.HTTPError as exc:
            raise AuthFailureError("Token endpoint unreachable", details={"error": str(exc)}) from exc

        if response.status_code >= 400:
            error = _error_code(response)
            raise AuthFailureError(
                "Token exchange rejected",
                details={"status": response.status_code, "error": error},
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise AuthFailureError("Token endpoint returned invalid JSON") from exc

        if not isinstance(body, dict) or not body.get("access_token"):
            raise AuthFailureError("Token endpoint response has no access_token")
        return body

    def _expiry_from(self, body: Dict[str, Any]) -> Optional[datetime]:
        expires_in = body.get("expires_in")
        if expires_in is None:
            return None
        return self._clock() + timedelta(seconds=int(expires_in))

    def refresh(self, credential: RemoteCredential) -> RemoteCredential:
        """Exchange the refresh token for a new access token.

        Args:
            credential: Current credential.

        Returns:
            RemoteCredential: New credential value.

        Raises:
            AuthFailureError: If there is no refresh token or the exchange fails.
        """

        if not credential.refresh_token:
            raise AuthFailureError("No refresh token available")

        body = self._post({"grant_type": "refresh_token", "refresh_token": credential.refresh_token})
        logger.info("Access token refreshed")
        return credential.refreshed(
            access_token=str(body["access_token"]),
            expiry=self._expiry_from(body),
            refresh_token=body.get("refresh_token"),
        )

    def exchange_code(self, code: str) -> RemoteCredential:
        """Exchange an authorization code for a token pair.

        Args:
            code: Authorization code returned by the consent redirect.

        Returns:
            RemoteCredential: New credential.

        Raises:
            AuthFailureError: If the exchange fails.
        """

        body = self._post(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self.config.redirect_uri,
            }
        )
        logger.info("Obtained tokens from authorization code")
        return RemoteCredential(
            access_token=str(body["access_token"]),
            refresh_token=body.get("refresh_token"),
            expiry=self._expiry_from(body),
        )

    def close(self) -> None:
        self._http.close()


def _error_code(response: httpx.Response) -> str:
    """Extract the OAuth `error` field from an error response, if any."""

    try:
        data = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(data, dict):
        return str(data.get("error") or data.get("error_description") or "")
    return ""
