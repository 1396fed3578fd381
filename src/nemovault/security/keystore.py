"""OS keystore integration for the passphrase verifier and unlock bookkeeping.

Everything the unlock gate must remember across restarts lives in the OS
keyring under one service name:

- ``passphrase_verifier``: Argon2id hash of the passphrase (never the
  passphrase itself, never the session key)
- ``passphrase_hint``: optional user supplied hint
- ``failed_attempts``: consecutive failed unlocks
- ``lockout_until``: ISO 8601 timestamp while a lockout is active

``assess_backend`` tells a real OS keystore apart from plaintext or null
backends; the engine warns at startup when the verifier would land in one.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

import keyring
from keyring.backend import KeyringBackend
from keyring.errors import KeyringError, PasswordDeleteError

from nemovault.core.exceptions import CredentialStoreError, LockoutActiveError

from .kdf import check_verifier, hash_verifier

logger = logging.getLogger(__name__)

VERIFIER_ENTRY = "passphrase_verifier"
HINT_ENTRY = "passphrase_hint"
FAILED_ATTEMPTS_ENTRY = "failed_attempts"
LOCKOUT_UNTIL_ENTRY = "lockout_until"

MAX_ATTEMPTS_BEFORE_LOCK = 5
FIRST_LOCKOUT_AT = 4
FIRST_LOCKOUT = timedelta(minutes=1)
EXTENDED_LOCKOUT = timedelta(minutes=10)


@dataclass(frozen=True)
class BackendAssessment:
    """Verdict on the keyring backend that holds the verifier."""

    backend: str
    secure: bool
    reason: str


# matched against the lowercased module and class name
_UNSAFE_MARKERS = ("plaintext", "uncrypted", "null", "fail")
_PLATFORM_MARKERS = ("windows", "macos", "secretservice", "kwallet", "libsecret")


def assess_backend(backend: KeyringBackend) -> BackendAssessment:
    """Judge whether ``backend`` keeps entries in a real OS keystore."""
    kind = type(backend)
    label = f"{kind.__module__}.{kind.__name__}"
    lowered = label.lower()
    priority = getattr(backend, "priority", None)

    if any(marker in lowered for marker in _UNSAFE_MARKERS):
        return BackendAssessment(label, False, "entries are kept unencrypted or not kept at all")
    if priority is not None and priority <= 0:
        return BackendAssessment(label, False, f"no usable keystore (priority={priority})")
    if any(marker in lowered for marker in _PLATFORM_MARKERS):
        return BackendAssessment(label, True, "platform keystore")
    return BackendAssessment(label, True, f"unrecognized backend (priority={priority})")


class CredentialStore:
    """Durable unlock gate: verifier, hint and escalating lockout."""

    def __init__(
        self,
        service: str = "nemovault",
        backend: Optional[KeyringBackend] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.service = service
        self._backend = backend
        self._clock = clock

    # ------------------------------------------------------------------
    # Raw entry access
    # ------------------------------------------------------------------

    @property
    def backend(self) -> KeyringBackend:
        if self._backend is None:
            self._backend = keyring.get_keyring()
        return self._backend

    def assess(self) -> BackendAssessment:
        return assess_backend(self.backend)

    def _read(self, entry: str) -> Optional[str]:
        try:
            return self.backend.get_password(self.service, entry)
        except KeyringError as exc:
            raise CredentialStoreError(f"keyring read failed for {entry}: {exc}") from exc

    def _write(self, entry: str, value: str) -> None:
        try:
            self.backend.set_password(self.service, entry, value)
        except KeyringError as exc:
            raise CredentialStoreError(f"keyring write failed for {entry}: {exc}") from exc

    def _delete(self, entry: str) -> None:
        try:
            self.backend.delete_password(self.service, entry)
        except PasswordDeleteError:
            # already absent
            pass
        except KeyringError as exc:
            raise CredentialStoreError(f"keyring delete failed for {entry}: {exc}") from exc

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def is_first_time_user(self) -> bool:
        return self._read(VERIFIER_ENTRY) is None

    def get_hint(self) -> Optional[str]:
        return self._read(HINT_ENTRY)

    def get_failed_attempts(self) -> int:
        raw = self._read(FAILED_ATTEMPTS_ENTRY)
        if raw is None:
            return 0
        try:
            return int(raw)
        except ValueError:
            logger.warning("Corrupt failed-attempt counter %r, treating as 0", raw)
            return 0

    def remaining_lockout(self) -> timedelta:
        raw = self._read(LOCKOUT_UNTIL_ENTRY)
        if raw is None:
            return timedelta(0)
        try:
            until = datetime.fromisoformat(raw)
        except ValueError:
            logger.warning("Corrupt lockout timestamp %r, ignoring", raw)
            return timedelta(0)
        now = self._clock()
        if now < until:
            return until - now
        return timedelta(0)

    def attempts_remaining(self) -> int:
        # After the first lockout the user is on their final shot.
        failed = self.get_failed_attempts()
        if failed >= FIRST_LOCKOUT_AT:
            return 1
        return MAX_ATTEMPTS_BEFORE_LOCK - failed

    def check_lockout(self) -> None:
        remaining = self.remaining_lockout()
        if remaining > timedelta(0):
            raise LockoutActiveError(remaining)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def setup(self, passphrase: str, hint: str = "") -> None:
        """Store a verifier and hint for a new passphrase and reset counters."""
        self._write(VERIFIER_ENTRY, hash_verifier(passphrase))
        self._write(HINT_ENTRY, hint)
        self.reset_security_state()
        logger.info("Passphrase verifier stored")

    def verify(self, passphrase: str) -> bool:
        """
        Check ``passphrase`` against the stored verifier.

        While a lockout is active this returns False without consulting the
        verifier and without counting the attempt.
        """
        try:
            self.check_lockout()
        except LockoutActiveError as exc:
            logger.warning("Unlock rejected: %s", exc)
            return False

        verifier = self._read(VERIFIER_ENTRY)
        if verifier is None:
            return False

        if check_verifier(verifier, passphrase):
            self.reset_security_state()
            return True

        self._handle_failed_attempt()
        return False

    def _handle_failed_attempt(self) -> None:
        failures = self.get_failed_attempts() + 1
        self._write(FAILED_ATTEMPTS_ENTRY, str(failures))

        lockout: Optional[timedelta] = None
        if failures == FIRST_LOCKOUT_AT:
            lockout = FIRST_LOCKOUT
        elif failures >= MAX_ATTEMPTS_BEFORE_LOCK:
            lockout = EXTENDED_LOCKOUT

        if lockout is not None:
            until = self._clock() + lockout
            self._write(LOCKOUT_UNTIL_ENTRY, until.isoformat())
            logger.warning("Failed unlock #%d, locked out until %s", failures, until.isoformat())
        else:
            logger.info("Failed unlock #%d", failures)

    def reset_security_state(self) -> None:
        self._delete(FAILED_ATTEMPTS_ENTRY)
        self._delete(LOCKOUT_UNTIL_ENTRY)

    def forget(self) -> None:
        """Remove every entry, returning the store to first-time state."""
        for entry in (VERIFIER_ENTRY, HINT_ENTRY, FAILED_ATTEMPTS_ENTRY, LOCKOUT_UNTIL_ENTRY):
            self._delete(entry)
