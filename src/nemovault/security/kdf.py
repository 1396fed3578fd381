"""Passphrase handling for NemoVault: session key derivation and verifiers."""
import hashlib

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError

_hasher = PasswordHasher(time_cost=3, memory_cost=65536, parallelism=1)


def _as_bytes(passphrase: bytes | str) -> bytes:
    if isinstance(passphrase, str):
        return passphrase.encode("utf-8")
    return passphrase


def derive_session_key(passphrase: bytes | str) -> bytes:
    """
    Derive the 32-byte session key from a passphrase with SHA-256.

    The derivation is deterministic and unsalted so that the background
    worker can re-derive the same key from the passphrase on its own side.
    """
    return hashlib.sha256(_as_bytes(passphrase)).digest()


def hash_verifier(passphrase: bytes | str) -> str:
    """Return an Argon2id verifier string for storage in the credential store."""
    return _hasher.hash(_as_bytes(passphrase))


def check_verifier(verifier: str, passphrase: bytes | str) -> bool:
    try:
        return _hasher.verify(verifier, _as_bytes(passphrase))
    except (VerificationError, InvalidHashError):
        return False
