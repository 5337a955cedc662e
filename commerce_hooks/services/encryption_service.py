"""
AES-256-GCM encryption for tenant credentials stored in the database.

Values are stored as ``iv:authTag:ciphertext`` (all hex). The key is derived
from ``ENCRYPTION_KEY`` with scrypt and the fixed salt ``"salt"`` so that
credentials written by the previous Node.js service still decrypt.
"""

import os
import re
from functools import lru_cache

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from commerce_hooks.config import settings

IV_LENGTH = 16
AUTH_TAG_LENGTH = 16

_HEX_RE = re.compile(r"^[0-9a-f]+$", re.IGNORECASE)


class CredentialError(Exception):
    """Raised when a stored credential cannot be encrypted or decrypted."""


@lru_cache(maxsize=4)
def _derive_key(passphrase: str) -> bytes:
    kdf = Scrypt(salt=b"salt", length=32, n=16384, r=8, p=1)
    return kdf.derive(passphrase.encode("utf-8"))


def _get_key() -> bytes:
    if not settings.ENCRYPTION_KEY:
        raise CredentialError("ENCRYPTION_KEY is not configured")
    return _derive_key(settings.ENCRYPTION_KEY)


def encrypt(text: str) -> str:
    key = _get_key()
    iv = os.urandom(IV_LENGTH)
    sealed = AESGCM(key).encrypt(iv, text.encode("utf-8"), None)
    ciphertext, tag = sealed[:-AUTH_TAG_LENGTH], sealed[-AUTH_TAG_LENGTH:]
    return f"{iv.hex()}:{tag.hex()}:{ciphertext.hex()}"


def decrypt(encrypted_text: str) -> str:
    key = _get_key()
    parts = encrypted_text.split(":")
    if len(parts) != 3:
        raise CredentialError("Invalid encrypted text format")

    try:
        iv, tag, ciphertext = (bytes.fromhex(p) for p in parts)
    except ValueError as exc:
        raise CredentialError("Invalid encrypted text format") from exc

    try:
        plain = AESGCM(key).decrypt(iv, ciphertext + tag, None)
    except InvalidTag as exc:
        raise CredentialError("Credential failed authentication") from exc
    return plain.decode("utf-8")


def decrypt_optional(encrypted_text: str | None) -> str:
    """Decrypt a nullable column, mapping empty values to ``""``."""
    return decrypt(encrypted_text) if encrypted_text else ""


def is_encrypted(text: str) -> bool:
    parts = text.split(":")
    if len(parts) != 3:
        return False
    return all(_HEX_RE.match(part) for part in parts)
