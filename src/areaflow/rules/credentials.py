"""Owner credential storage.

Credentials are whatever a provider adapter needs to authenticate an owner:
OAuth tokens, bot tokens, API keys. The engine treats them as opaque dicts;
the file store keeps them encrypted at rest.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from areaflow.security import CredentialCipher, load_or_create_key
from areaflow.utils.validation import validate_identifier

logger = logging.getLogger(__name__)


class CredentialStore(ABC):
    """Per-owner, per-provider credential lookup."""

    @abstractmethod
    def get(self, owner_id: str, provider: str) -> dict[str, Any] | None:
        """Return stored credentials or None."""

    @abstractmethod
    def set(self, owner_id: str, provider: str, credentials: dict[str, Any]) -> None:
        """Store credentials, replacing any previous value."""

    @abstractmethod
    def remove(self, owner_id: str, provider: str) -> bool:
        """Remove stored credentials. Returns False if none were stored."""


class InMemoryCredentialStore(CredentialStore):
    """Process-local credential store."""

    def __init__(self, initial: dict[tuple[str, str], dict[str, Any]] | None = None):
        self._data: dict[tuple[str, str], dict[str, Any]] = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, owner_id: str, provider: str) -> dict[str, Any] | None:
        with self._lock:
            creds = self._data.get((owner_id, provider))
            return dict(creds) if creds is not None else None

    def set(self, owner_id: str, provider: str, credentials: dict[str, Any]) -> None:
        with self._lock:
            self._data[(owner_id, provider)] = dict(credentials)

    def remove(self, owner_id: str, provider: str) -> bool:
        with self._lock:
            return self._data.pop((owner_id, provider), None) is not None


class FileCredentialStore(CredentialStore):
    """Encrypted files under ``<base_dir>/<owner_id>/<provider>.enc``, mode 0600.

    Each file holds the Fernet-encrypted JSON of one credentials dict. When no
    ``secret`` is given, a key is generated once into ``<base_dir>/.key``.
    """

    KEY_FILE = ".key"

    def __init__(self, base_dir: Path, secret: str | None = None):
        self._base_dir = Path(base_dir)
        self._base_dir.mkdir(parents=True, exist_ok=True)
        secret = secret or load_or_create_key(self._base_dir / self.KEY_FILE)
        self._cipher = CredentialCipher(secret)
        self._lock = threading.Lock()
        logger.debug(f"FileCredentialStore initialized, base_dir: {self._base_dir}")

    def _path(self, owner_id: str, provider: str) -> Path:
        validate_identifier(owner_id, "owner_id")
        validate_identifier(provider, "provider")
        return self._base_dir / owner_id / f"{provider}.enc"

    def get(self, owner_id: str, provider: str) -> dict[str, Any] | None:
        path = self._path(owner_id, provider)
        if not path.exists():
            return None
        try:
            return json.loads(self._cipher.decrypt(path.read_text()))
        except (ValueError, OSError) as e:
            logger.error(f"Failed to load credentials for {owner_id}/{provider}: {e}")
            return None

    def set(self, owner_id: str, provider: str, credentials: dict[str, Any]) -> None:
        path = self._path(owner_id, provider)
        ciphertext = self._cipher.encrypt(json.dumps(credentials))
        with self._lock:
            path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
            tmp_path = path.with_suffix(".tmp")
            fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "w") as f:
                f.write(ciphertext)
            os.replace(tmp_path, path)
        logger.debug(f"Saved credentials for: {owner_id}/{provider}")

    def remove(self, owner_id: str, provider: str) -> bool:
        path = self._path(owner_id, provider)
        with self._lock:
            if not path.exists():
                return False
            path.unlink()
        logger.debug(f"Cleared credentials for: {owner_id}/{provider}")
        return True
