"""Encryption helpers for storing the remote credential at rest.

The persisted backup config keeps non-sensitive fields as plain JSON. The
OAuth token pair is stored as an encrypted token string when a key is
configured via `CONFIG_ENCRYPTION_KEY` or `CONFIG_ENCRYPTION_KEY_FILE`.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import json
from typing import Any, Dict, Optional

from cryptography.fernet import Fernet, InvalidToken


class ConfigEncryptionError(RuntimeError):
    """Raised when configuration encryption or decryption fails."""


def _normalize_fernet_key(raw_key: str) -> bytes:
    """Normalize a user-provided key into a valid Fernet key.

    Accepts either a valid Fernet key or an arbitrary string, which is
    derived into a Fernet key with SHA-256.

    Args:
        raw_key: Key from environment variable or secret file.

    Returns:
        bytes: A Fernet key.

    Raises:
        ConfigEncryptionError: When raw_key is empty.
    """

    if not raw_key:
        raise ConfigEncryptionError(
            "CONFIG_ENCRYPTION_KEY is not configured. Provide CONFIG_ENCRYPTION_KEY or CONFIG_ENCRYPTION_KEY_FILE."
        )

    candidate = raw_key.strip().encode("utf-8")

    try:
        decoded = base64.urlsafe_b64decode(candidate)
        if len(decoded) == 32:
            return candidate
    except (binascii.Error, ValueError):
        pass

    digest = hashlib.sha256(candidate).digest()
    return base64.urlsafe_b64encode(digest)


def get_fernet(raw_key: str) -> Fernet:
    """Create a Fernet instance for the given key.

    Raises:
        ConfigEncryptionError: When no encryption key is configured.
    """

    return Fernet(_normalize_fernet_key(raw_key))


def encrypt_secrets(secrets: Optional[Dict[str, Any]], raw_key: str) -> Optional[str]:
    """Encrypt a secrets dictionary into a token string.

    Args:
        secrets: Secrets dictionary.
        raw_key: Encryption key.

    Returns:
        Optional[str]: Encrypted token, or None when secrets is empty.

    Raises:
        ConfigEncryptionError: When encryption fails or key is missing.
    """

    if not secrets:
        return None

    fernet = get_fernet(raw_key)
    try:
        token = fernet.encrypt(json.dumps(secrets).encode("utf-8"))
    except (TypeError, ValueError) as exc:
        raise ConfigEncryptionError(f"Failed to encrypt secrets: {exc}") from exc
    return token.decode("utf-8")


def decrypt_secrets(token: Optional[str], raw_key: str) -> Dict[str, Any]:
    """Decrypt a token string into a secrets dictionary.

    Args:
        token: Encrypted token.
        raw_key: Encryption key.

    Returns:
        Dict[str, Any]: Decrypted secrets (empty dict when token is empty).

    Raises:
        ConfigEncryptionError: When decryption fails.
    """

    if not token:
        return {}

    fernet = get_fernet(raw_key)
    try:
        raw = fernet.decrypt(token.encode("utf-8"))
    except InvalidToken as exc:
        raise ConfigEncryptionError("Invalid encryption token or wrong CONFIG_ENCRYPTION_KEY") from exc

    try:
        data = json.loads(raw.decode("utf-8"))
    except ValueError as exc:
        raise ConfigEncryptionError(f"Failed to decode decrypted secrets: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigEncryptionError("Decrypted secrets payload is not a JSON object")
    return data
