from __future__ import annotations

import base64
import os

import pytest

from gaugeman.core.cipher import CipherBox, generate_data_key
from gaugeman.core.errors import DecryptionFailed, EncryptionUnavailable


def test_encrypt_uses_fresh_nonce() -> None:
    box = CipherBox(generate_data_key())
    first = box.encrypt(b'{"a": 1}')
    second = box.encrypt(b'{"a": 1}')
    assert first != second
    assert box.decrypt(first) == b'{"a": 1}'


def test_raw_key_bytes_accepted() -> None:
    key = os.urandom(32)
    box = CipherBox(key)
    assert CipherBox(base64.b64encode(key).decode()).decrypt(box.encrypt(b"x")) == b"x"


def test_wrong_key_raises_decryption_failed() -> None:
    ciphertext = CipherBox(generate_data_key()).encrypt(b"payload")
    with pytest.raises(DecryptionFailed):
        CipherBox(generate_data_key()).decrypt(ciphertext)


@pytest.mark.parametrize("ciphertext", [b"not base64!!", base64.b64encode(b"short")])
def test_malformed_ciphertext_raises_decryption_failed(ciphertext: bytes) -> None:
    with pytest.raises(DecryptionFailed):
        CipherBox(generate_data_key()).decrypt(ciphertext)


def test_short_key_rejected() -> None:
    with pytest.raises(EncryptionUnavailable):
        CipherBox(os.urandom(16))
