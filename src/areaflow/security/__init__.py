"""Encryption of stored provider credentials."""

from .encryption import CredentialCipher, load_or_create_key

__all__ = ["CredentialCipher", "load_or_create_key"]
