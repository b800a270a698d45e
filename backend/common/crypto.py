"""AES-256-CBC field cipher compatible with the legacy ``iv_hex:ciphertext_hex`` format.

Employee PII (name, email, designation) arrives encrypted at rest. The engine
only ever needs to *read* designations, so ``decrypt`` never raises: on any
failure it hands back the input unchanged and the caller matches on the raw
value.
"""

from __future__ import annotations

import hashlib
import logging
import os
import re
from typing import Optional

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from backend.config import settings

logger = logging.getLogger(__name__)

_HEX_RE = re.compile(r"^[0-9a-fA-F]+$")
_BLOCK_BITS = 128


def derive_key(secret: str) -> bytes:
    """Use the secret as-is when it is exactly 32 bytes, else its SHA-256 digest."""
    raw = secret.encode("utf-8")
    if len(raw) == 32:
        return raw
    return hashlib.sha256(raw).digest()


def looks_encrypted(value: Optional[str]) -> bool:
    """True when *value* has the ``iv:ciphertext`` shape (32 hex chars, colon, hex)."""
    if not value or not isinstance(value, str) or ":" not in value:
        return False
    parts = value.split(":")
    if len(parts) != 2:
        return False
    iv_hex, body_hex = parts
    return (
        len(iv_hex) == 32
        and bool(_HEX_RE.match(iv_hex))
        and len(body_hex) > 0
        and len(body_hex) % 32 == 0
        and bool(_HEX_RE.match(body_hex))
    )


class FieldCipher:
    """Encrypt/decrypt single string fields."""

    def __init__(self, secret: Optional[str] = None) -> None:
        self._key = derive_key(secret if secret is not None else settings.ENCRYPTION_KEY)

    def encrypt(self, text: Optional[str]) -> Optional[str]:
        if not text or looks_encrypted(text):
            return text
        iv = os.urandom(16)
        padder = padding.PKCS7(_BLOCK_BITS).padder()
        padded = padder.update(text.encode("utf-8")) + padder.finalize()
        encryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).encryptor()
        body = encryptor.update(padded) + encryptor.finalize()
        return f"{iv.hex()}:{body.hex()}"

    def decrypt(self, value: Optional[str]) -> Optional[str]:
        if not looks_encrypted(value):
            return value
        iv_hex, body_hex = value.split(":")
        try:
            decryptor = Cipher(
                algorithms.AES(self._key), modes.CBC(bytes.fromhex(iv_hex)),
            ).decryptor()
            padded = decryptor.update(bytes.fromhex(body_hex)) + decryptor.finalize()
            unpadder = padding.PKCS7(_BLOCK_BITS).unpadder()
            plain = unpadder.update(padded) + unpadder.finalize()
            return plain.decode("utf-8")
        except ValueError as exc:
            # Bad padding / wrong key / non-UTF-8 → keep the stored value
            logger.debug("Field decrypt failed, using raw value: %s", exc)
            return value


_default_cipher: Optional[FieldCipher] = None


def get_cipher() -> FieldCipher:
    """Process-wide cipher built from ``settings.ENCRYPTION_KEY``."""
    global _default_cipher
    if _default_cipher is None:
        _default_cipher = FieldCipher()
    return _default_cipher
