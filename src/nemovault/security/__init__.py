"""Security helpers: key derivation, envelope codec, session key and credentials.

This package provides:
- SHA-256 session key derivation and Argon2id passphrase verifiers
- the AES-256-GCM envelope used for vault artifacts
- the in-memory KeyManager
- the keyring-backed CredentialStore with escalating lockout
"""

from .kdf import derive_session_key, hash_verifier, check_verifier
from .crypto import encrypt, decrypt, envelope_overhead, NONCE_SIZE, TAG_SIZE, KEY_SIZE
from .session import KeyManager
from .keystore import BackendAssessment, CredentialStore, assess_backend

__all__ = [
    "derive_session_key",
    "hash_verifier",
    "check_verifier",
    "encrypt",
    "decrypt",
    "envelope_overhead",
    "NONCE_SIZE",
    "TAG_SIZE",
    "KEY_SIZE",
    "KeyManager",
    "CredentialStore",
    "BackendAssessment",
    "assess_backend",
]
