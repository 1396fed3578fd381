"""Authenticated-encryption envelope for vault artifacts.

Envelope layout:
- 12 bytes: random nonce
- N bytes: AES-256-GCM ciphertext
- 16 bytes: GCM authentication tag

A fresh nonce is drawn from ``os.urandom`` on every call, so encrypting the
same plaintext twice under one key never yields the same envelope.
"""
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from nemovault.core.exceptions import AuthenticationFailureError, InvalidEnvelopeError

NONCE_SIZE = 12
TAG_SIZE = 16
KEY_SIZE = 32


def envelope_overhead() -> int:
    return NONCE_SIZE + TAG_SIZE


def encrypt(plaintext: bytes, key: bytes) -> bytes:
    """Encrypt ``plaintext`` and return ``nonce || ciphertext || tag``."""
    aead = AESGCM(bytes(key))
    nonce = os.urandom(NONCE_SIZE)
    return nonce + aead.encrypt(nonce, plaintext, None)


def decrypt(envelope: bytes, key: bytes) -> bytes:
    """
    Open an envelope produced by :func:`encrypt`.

    Raises:
        InvalidEnvelopeError: the envelope cannot even hold a nonce.
        AuthenticationFailureError: wrong key, or the bytes were altered.
    """
    if len(envelope) < NONCE_SIZE:
        raise InvalidEnvelopeError("Ciphertext too short to contain nonce")

    nonce, ct = envelope[:NONCE_SIZE], envelope[NONCE_SIZE:]
    aead = AESGCM(bytes(key))
    try:
        return aead.decrypt(nonce, ct, None)
    except InvalidTag as exc:
        raise AuthenticationFailureError("Envelope failed authentication") from exc
