"""The background worker: seals batches and reveals artifacts off the primary context.

The worker owns its own KeyManager and VaultStore and shares no mutable state
with the coordinator. It re-derives the session key from the passphrase each
command carries and wipes it again when the command is done.
"""

from __future__ import annotations

import logging
import queue
import threading
from pathlib import Path
from typing import Union

from ..core.exceptions import AuthenticationFailureError, CryptoError, VaultIOError
from ..core.models import StagedItem
from ..core.storage import VaultStore
from ..security.session import KeyManager
from .messages import (
    BatchEnd,
    BatchStart,
    Command,
    Encrypting,
    Event,
    Handshake,
    ItemError,
    Reveal,
    RevealResult,
    RevealStatus,
    Seal,
    Sealed,
    Shutdown,
)

logger = logging.getLogger(__name__)


class BackgroundWorker:
    """Single-consumer worker running on its own daemon thread."""

    def __init__(self, outbox: "queue.Queue[Event]", vault_dir: Union[str, Path], sealed_extension: str = "nemo"):
        self._outbox = outbox
        self._inbox: "queue.Queue[Command]" = queue.Queue()
        self._vault = VaultStore(vault_dir, sealed_extension)
        self._keys = KeyManager()
        self._stopping = threading.Event()
        self._thread = threading.Thread(target=self._run, name="nemovault-worker", daemon=True)

    @property
    def is_alive(self) -> bool:
        return self._thread.is_alive()

    def start(self) -> None:
        self._thread.start()

    def join(self, timeout: float | None = None) -> None:
        self._thread.join(timeout)

    @property
    def stopping(self) -> bool:
        return self._stopping.is_set()

    def request_stop(self) -> int:
        """Stop after the item in hand. Queued commands are dropped unserved.

        Returns the number of commands discarded from the inbox.
        """
        self._stopping.set()
        dropped = 0
        while True:
            try:
                self._inbox.get_nowait()
            except queue.Empty:
                break
            dropped += 1
        self._inbox.put(Shutdown())
        if dropped:
            logger.info("Worker stop: dropped %d queued command(s)", dropped)
        return dropped

    def _emit(self, event: Event) -> None:
        self._outbox.put(event)

    def _run(self) -> None:
        # Hand our inbound address to the coordinator before serving anything.
        self._emit(Handshake(address=self._inbox))
        while True:
            command = self._inbox.get()
            if isinstance(command, Shutdown) or self._stopping.is_set():
                break
            if isinstance(command, Seal):
                self._seal(command)
            elif isinstance(command, Reveal):
                self._reveal(command)
            else:
                logger.error("Worker received unknown command %s", type(command).__name__)
        self._keys.lock()
        logger.debug("Worker loop exited")

    # ------------------------------------------------------------------
    # Seal
    # ------------------------------------------------------------------

    def _seal(self, command: Seal) -> None:
        sealed = failed = 0
        self._emit(BatchStart(command.batch_id, total=len(command.items)))
        try:
            if self._stopping.is_set():
                return
            self._keys.derive_and_activate(command.passphrase, retain_passphrase=False)
            key = self._keys.active_key_material()
            for raw in command.items:
                if self._stopping.is_set():
                    logger.info("Batch %s cut short by stop request", command.batch_id[:8])
                    break
                item_id = raw.get("id", "")
                name = raw.get("display_name", "?")
                try:
                    item = StagedItem.from_dict(raw)
                    self._emit(Encrypting(item.id))
                    self._emit(self._seal_one(item, key))
                    sealed += 1
                except Exception as exc:
                    failed += 1
                    logger.warning("Sealing %s failed: %s", name, exc)
                    self._emit(ItemError(item_id, f"File Error ({name}): {exc}"))
        except Exception:
            logger.exception("Batch %s aborted", command.batch_id)
        finally:
            self._keys.lock()
            # Always fire so the coordinator can lift its processing veto.
            self._emit(BatchEnd(command.batch_id, sealed=sealed, failed=failed))

    def _seal_one(self, item: StagedItem, key: bytes) -> Sealed:
        if not item.source_path.exists():
            logger.info("Ghost file %s skipped", item.display_name)
            return Sealed(item.id, ghost=True)
        try:
            self._vault.store(item, key)
        except FileNotFoundError:
            logger.info("Ghost file %s vanished mid-seal", item.display_name)
            return Sealed(item.id, ghost=True)
        residual = None
        if self._vault.residuals:
            residual = str(self._vault.residuals.pop())
        return Sealed(item.id, residual=residual)

    # ------------------------------------------------------------------
    # Reveal
    # ------------------------------------------------------------------

    def _reveal(self, command: Reveal) -> None:
        if self._stopping.is_set():
            self._emit(RevealResult(command.path, None, RevealStatus.UNAVAILABLE))
            return
        try:
            self._keys.derive_and_activate(command.passphrase, retain_passphrase=False)
            data = self._vault.decrypt(command.path, self._keys.active_key_material())
            result = RevealResult(command.path, data, RevealStatus.OK)
        except FileNotFoundError:
            result = RevealResult(command.path, None, RevealStatus.NOT_FOUND)
        except AuthenticationFailureError:
            result = RevealResult(command.path, None, RevealStatus.AUTH_FAILURE)
        except (CryptoError, VaultIOError) as exc:
            logger.warning("Reveal of %s failed: %s", Path(command.path).name, exc)
            result = RevealResult(command.path, None, RevealStatus.UNREADABLE)
        except Exception:
            logger.exception("Unexpected reveal failure for %s", Path(command.path).name)
            result = RevealResult(command.path, None, RevealStatus.UNREADABLE)
        finally:
            self._keys.lock()
        self._emit(result)
