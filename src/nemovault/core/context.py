"""Engine context: one object owning the key, flags and both stores."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import ContextManager, Optional

from keyring.backend import KeyringBackend

from ..config import VaultSettings
from ..security.keystore import CredentialStore
from ..security.session import KeyManager
from .exceptions import VetoedOperationError
from .flags import SessionFlags
from .staging import StagingStore
from .storage import VaultStore

logger = logging.getLogger(__name__)


@dataclass
class VaultContext:
    """Container for the runtime objects the engine and its host share.

    Several contexts can live in one process (tests do this); production
    hosts build exactly one with :func:`build_context`.
    """

    settings: VaultSettings
    key_manager: KeyManager
    flags: SessionFlags
    staging: StagingStore
    vault: VaultStore
    credentials: CredentialStore
    first_run: bool = field(default=False)

    def is_unlocked(self) -> bool:
        return self.key_manager.is_unlocked()

    def setup(self, passphrase: str, hint: str = "") -> None:
        """First-time setup: store the verifier and unlock."""
        self.credentials.setup(passphrase, hint)
        self.key_manager.derive_and_activate(passphrase)
        self.first_run = False
        logger.info("Vault initialized and unlocked")

    def unlock(self, passphrase: str) -> bool:
        """Verify ``passphrase`` through the credential store and activate the key."""
        if not self.credentials.verify(passphrase):
            return False
        self.key_manager.derive_and_activate(passphrase)
        logger.info("Vault unlocked")
        return True

    def system_dialog(self) -> ContextManager[None]:
        """Dialog veto for a host-presented OS dialog, lowered after the configured settle."""
        return self.flags.system_dialog(self.settings.dialog_settle)

    def end_dialog(self) -> None:
        self.flags.end_dialog(self.settings.dialog_settle)

    def deep_seal(self) -> None:
        """Wipe the key, then clear residual staged files unless a veto is up."""
        self.key_manager.lock()
        try:
            self.staging.clear_all()
            self.staging.purge_orphans()
        except VetoedOperationError:
            # the worker clears staging itself once the batch ends
            logger.info("Staging purge deferred: %s", self.flags.veto_reason())


def build_context(
    settings: Optional[VaultSettings] = None,
    keyring_backend: Optional[KeyringBackend] = None,
) -> VaultContext:
    """Create directories and wire a fresh, locked engine context."""
    settings = settings or VaultSettings()
    settings.ensure_dirs()
    flags = SessionFlags()
    credentials = CredentialStore(settings.keyring_service, backend=keyring_backend)
    assessment = credentials.assess()
    if assessment.secure:
        logger.debug("Keyring backend %s: %s", assessment.backend, assessment.reason)
    else:
        logger.warning(
            "Keyring backend %s is unsafe for the passphrase verifier: %s",
            assessment.backend,
            assessment.reason,
        )
    return VaultContext(
        settings=settings,
        key_manager=KeyManager(),
        flags=flags,
        staging=StagingStore(settings.holding_dir, flags),
        vault=VaultStore(settings.vault_dir, settings.sealed_extension),
        credentials=credentials,
        first_run=credentials.is_first_time_user(),
    )
