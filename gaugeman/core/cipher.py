"""AES-256-GCM encryption of the configuration overlay at rest."""

from __future__ import annotations

import base64
import binascii
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from gaugeman.core.errors import DecryptionFailed, EncryptionUnavailable

KEY_BYTES = 32
NONCE_BYTES = 12


def coerce_key(key: bytes | str) -> bytes:
    """Accept raw key bytes or a base64-encoded key string."""
    if isinstance(key, str):
        try:
            key = base64.b64decode(key, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise EncryptionUnavailable(f"Data key is not valid base64: {exc}") from exc
    if len(key) != KEY_BYTES:
        raise EncryptionUnavailable(f"Data key must be {KEY_BYTES} bytes for AES-256, got {len(key)}")
    return bytes(key)


def generate_data_key() -> str:
    """Return a new base64-encoded 256-bit key."""
    return base64.b64encode(os.urandom(KEY_BYTES)).decode()


class CipherBox:
    """Symmetric cipher bound to one key for its lifetime.

    Ciphertext is ``base64(nonce + ciphertext)`` so the overlay stays a text
    file on disk.
    """

    def __init__(self, key: bytes | str) -> None:
        self._aesgcm = AESGCM(coerce_key(key))

    def encrypt(self, plaintext: bytes) -> bytes:
        nonce = os.urandom(NONCE_BYTES)
        ciphertext = self._aesgcm.encrypt(nonce, plaintext, None)
        return base64.b64encode(nonce + ciphertext)

    def decrypt(self, ciphertext: bytes) -> bytes:
        try:
            raw = base64.b64decode(ciphertext.strip(), validate=True)
        except (binascii.Error, ValueError) as exc:
            raise DecryptionFailed(f"Ciphertext is not valid base64: {exc}") from exc
        if len(raw) <= NONCE_BYTES:
            raise DecryptionFailed("Ciphertext is too short")
        try:
            return self._aesgcm.decrypt(raw[:NONCE_BYTES], raw[NONCE_BYTES:], None)
        except InvalidTag as exc:
            raise DecryptionFailed("Authentication failed: wrong key or corrupt data") from exc
