"""
Exceptions for the NemoVault engine
Every engine failure derives from NemoVaultError so hosts have a single catcher
"""

from datetime import timedelta


class NemoVaultError(Exception):
    # general container for errors
    pass


class NotUnlockedError(NemoVaultError):
    # raised when key material is requested while the vault is locked
    pass


class CryptoError(NemoVaultError):
    # base for envelope failures
    pass


class InvalidEnvelopeError(CryptoError):
    # raised when an envelope is too short to hold a nonce
    pass


class AuthenticationFailureError(CryptoError):
    # raised on an AEAD tag mismatch (wrong key or tampered data)
    pass


class VaultIOError(NemoVaultError):
    # raised when a read/write/delete on the vault or holding area fails
    pass


class VetoedOperationError(NemoVaultError):
    # raised when a purge is refused because a veto flag is up
    pass


class WorkerNotReadyError(NemoVaultError):
    # raised when work is submitted before the worker handshake completed
    pass


class CredentialStoreError(NemoVaultError):
    # raised when the keyring backend cannot be used
    pass


class LockoutActiveError(NemoVaultError):
    # raised while repeated failures keep the unlock gate closed

    def __init__(self, remaining: timedelta):
        super().__init__(f"Unlock locked out for another {int(remaining.total_seconds())}s")
        self.remaining = remaining
