"""Fernet encryption for provider credentials at rest.

The cipher accepts either a ready Fernet key (44 url-safe base64 chars) or
a passphrase, which is stretched with PBKDF2-HMAC-SHA256.
"""

from __future__ import annotations

import base64
import logging
import os
from pathlib import Path

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

logger = logging.getLogger(__name__)

ENCRYPTED_PREFIX = "enc:"
_PBKDF2_SALT = b"areaflow-credentials-v1"
_PBKDF2_ITERATIONS = 480_000


def _fernet_for(secret: str) -> Fernet:
    if len(secret) == 44:
        try:
            return Fernet(secret.encode())
        except ValueError:
            pass  # Not a Fernet key; treat it as a passphrase
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=_PBKDF2_SALT,
        iterations=_PBKDF2_ITERATIONS,
    )
    return Fernet(base64.urlsafe_b64encode(kdf.derive(secret.encode("utf-8"))))


class CredentialCipher:
    """Encrypts credential blobs with Fernet authenticated encryption."""

    def __init__(self, secret: str):
        if not secret:
            raise ValueError("Credential encryption secret must not be empty")
        self._fernet = _fernet_for(secret)

    def encrypt(self, plaintext: str) -> str:
        """Return ``enc:``-prefixed ciphertext."""
        token = self._fernet.encrypt(plaintext.encode("utf-8"))
        return f"{ENCRYPTED_PREFIX}{token.decode('utf-8')}"

    def decrypt(self, ciphertext: str) -> str:
        """Decrypt a value produced by :meth:`encrypt`.

        Raises:
            ValueError: Missing prefix, tampered data or wrong key
        """
        if not ciphertext.startswith(ENCRYPTED_PREFIX):
            raise ValueError("Value is not encrypted (missing 'enc:' prefix)")
        raw = ciphertext[len(ENCRYPTED_PREFIX) :]
        try:
            return self._fernet.decrypt(raw.encode("utf-8")).decode("utf-8")
        except InvalidToken as e:
            raise ValueError("Decryption failed: invalid token or wrong key") from e


def load_or_create_key(path: Path) -> str:
    """Read a Fernet key file, generating it (mode 0600) on first use."""
    path = Path(path)
    if path.exists():
        return path.read_text().strip()

    path.parent.mkdir(parents=True, exist_ok=True)
    key = Fernet.generate_key().decode("ascii")
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
    with os.fdopen(fd, "w") as f:
        f.write(key)
    logger.warning(
        f"No credentials_key configured; generated {path}. "
        "Back it up: stored credentials cannot be read without it."
    )
    return key
