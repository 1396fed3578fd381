"""In-memory holder for the active session key.

The key exists only while the vault is unlocked. ``lock()`` zeroes the key
buffer in place and drops the retained passphrase; nothing here ever touches
durable storage.
"""
from __future__ import annotations

import logging
import time
from typing import Optional

from nemovault.core.exceptions import NotUnlockedError

from .kdf import derive_session_key

logger = logging.getLogger(__name__)


class KeyManager:
    def __init__(self):
        self._key: Optional[bytearray] = None
        self._passphrase: Optional[str] = None
        self._unlocked_since: Optional[float] = None

    def derive_and_activate(self, passphrase: str, retain_passphrase: bool = True) -> None:
        """Derive the session key from ``passphrase`` and make it active.

        Args:
            passphrase: the user passphrase
            retain_passphrase: keep the raw passphrase in memory so the
                background worker can re-derive the key in its own context
        """
        self.lock()
        self._key = bytearray(derive_session_key(passphrase))
        self._passphrase = passphrase if retain_passphrase else None
        self._unlocked_since = time.monotonic()

    def is_unlocked(self) -> bool:
        return self._key is not None

    @property
    def unlocked_since(self) -> Optional[float]:
        return self._unlocked_since

    def active_key_material(self) -> bytes:
        """Return the active key or raise if locked."""
        if self._key is None:
            raise NotUnlockedError("Vault is locked. No encryption key initialized.")
        return bytes(self._key)

    def active_passphrase(self) -> str:
        if self._key is None or self._passphrase is None:
            raise NotUnlockedError("Vault is locked. No passphrase retained.")
        return self._passphrase

    def lock(self) -> None:
        """Zero the key buffer and forget the passphrase. Idempotent."""
        try:
            if self._key is not None:
                for i in range(len(self._key)):
                    self._key[i] = 0
                logger.debug("Session key wiped")
        finally:
            self._key = None
            self._passphrase = None
            self._unlocked_since = None
