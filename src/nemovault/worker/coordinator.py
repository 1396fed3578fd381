"""Coordinator: the primary-context side of the worker protocol.

The coordinator spawns a :class:`BackgroundWorker`, waits for its handshake,
then submits seal batches and reveal requests. Worker events are moved onto
the asyncio loop by a pump thread and handled there, so flag changes and
staging updates happen on the same context as the auto-lock policy.
"""

from __future__ import annotations

import asyncio
import logging
import queue
import threading
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Union

from ..core.context import VaultContext
from ..core.exceptions import VetoedOperationError, WorkerNotReadyError
from ..core.models import StagedItem, StagingStatus
from .background import BackgroundWorker
from .messages import (
    BatchEnd,
    BatchStart,
    Encrypting,
    Event,
    Handshake,
    ItemError,
    Reveal,
    RevealResult,
    RevealStatus,
    Seal,
    Sealed,
)

logger = logging.getLogger(__name__)

_STOP = object()

Listener = Callable[[Event], None]


@dataclass
class BatchReport:
    """Outcome of one seal batch as observed by the coordinator."""

    batch_id: str
    sealed: List[str] = field(default_factory=list)
    ghosts: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)

    @property
    def completed(self) -> int:
        return len(self.sealed) + len(self.failed)


class WorkerCoordinator:
    def __init__(self, context: VaultContext):
        self.context = context
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._outbox: Optional[queue.Queue] = None
        self._worker: Optional[BackgroundWorker] = None
        self._inbox: Optional[queue.Queue] = None
        self._ready: Optional[asyncio.Future] = None
        self._listeners: List[Listener] = []
        self._batches: Dict[str, asyncio.Future] = {}
        self._reports: Dict[str, BatchReport] = {}
        self._current_batch: Optional[str] = None
        self._reveals: Dict[str, asyncio.Future] = {}

    @property
    def is_ready(self) -> bool:
        return self._inbox is not None

    @property
    def pending_reveals(self) -> int:
        return len(self._reveals)

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Spawn the worker and wait for its handshake. Idempotent."""
        if self._worker is not None:
            if self._ready is not None:
                await asyncio.shield(self._ready)
            return

        self._loop = asyncio.get_running_loop()
        self._ready = self._loop.create_future()
        outbox: queue.Queue = queue.Queue()
        self._outbox = outbox

        settings = self.context.settings
        self._worker = BackgroundWorker(outbox, settings.vault_dir, settings.sealed_extension)
        pump = threading.Thread(
            target=self._pump_events, args=(outbox, self._loop), name="nemovault-pump", daemon=True
        )
        pump.start()
        self._worker.start()

        try:
            await asyncio.wait_for(asyncio.shield(self._ready), timeout=settings.handshake_timeout)
        except asyncio.TimeoutError as exc:
            self.stop()
            raise WorkerNotReadyError("Worker did not complete its handshake") from exc

    def stop(self) -> None:
        """Detach from the worker immediately.

        Queued commands are dropped and a batch in progress ends after the
        item in hand. The processing veto stays up until the worker thread
        has actually exited.
        """
        worker = self._worker
        if worker is None:
            return
        worker.request_stop()
        if self._outbox is not None:
            self._outbox.put(_STOP)

        busy = bool(self._batches)
        for future in self._batches.values():
            if not future.done():
                future.cancel()
        for path, future in self._reveals.items():
            if not future.done():
                future.set_result(RevealResult(path, None, RevealStatus.UNAVAILABLE))
        if self._ready is not None and not self._ready.done():
            self._ready.cancel()

        if busy:
            threading.Thread(
                target=self._release_after_exit,
                args=(worker, self._loop),
                name="nemovault-reaper",
                daemon=True,
            ).start()

        self._batches.clear()
        self._reports.clear()
        self._reveals.clear()
        self._current_batch = None
        self._worker = None
        self._inbox = None
        self._outbox = None
        self._ready = None
        logger.info("Worker terminated")

    def _release_after_exit(self, worker: BackgroundWorker, loop: Optional[asyncio.AbstractEventLoop]) -> None:
        try:
            worker.join()
        except RuntimeError:
            # never started
            pass
        logger.debug("Detached worker exited")
        try:
            loop.call_soon_threadsafe(self._on_worker_exit)
        except (AttributeError, RuntimeError):
            # no loop left to hand over to
            self._release_processing()

    def _on_worker_exit(self) -> None:
        if self._batches:
            logger.debug("Old worker exited while new batches are queued; veto stays up")
            return
        self._release_processing()

    def _release_processing(self) -> None:
        """Lower the processing veto, purging staging if the vault sealed meanwhile."""
        if self.context.is_unlocked():
            self.context.flags.end_processing(self.context.settings.processing_settle)
            logger.info("Veto released")
            return
        self.context.flags.end_processing()
        try:
            self.context.staging.clear_all()
            self.context.staging.purge_orphans()
        except VetoedOperationError:
            logger.info("Post-batch purge deferred: %s", self.context.flags.veto_reason())

    def _pump_events(self, outbox: queue.Queue, loop: asyncio.AbstractEventLoop) -> None:
        while True:
            event = outbox.get()
            if event is _STOP:
                break
            try:
                loop.call_soon_threadsafe(self._dispatch, outbox, event)
            except RuntimeError:
                # loop closed underneath us
                break

    # ------------------------------------------------------------------
    # Submitting work
    # ------------------------------------------------------------------

    def _require_ready(self) -> "queue.Queue":
        if self._inbox is None:
            raise WorkerNotReadyError("Worker handshake has not completed")
        return self._inbox

    def submit_seal(
        self,
        items: Optional[Iterable[StagedItem]] = None,
        passphrase: Optional[str] = None,
    ) -> str:
        """Queue a seal batch and return its id without waiting.

        With no ``items`` the current staging list is reconciled and sent.
        """
        inbox = self._require_ready()
        if items is None:
            self.context.staging.reconcile()
            items = self.context.staging.list()
        items = list(items)
        if passphrase is None:
            passphrase = self.context.key_manager.active_passphrase()

        batch_id = uuid.uuid4().hex
        self._batches[batch_id] = self._loop.create_future()
        self._reports[batch_id] = BatchReport(batch_id)
        # Raised before the batch leaves so there is no unguarded window.
        self.context.flags.begin_processing()
        inbox.put(Seal(items=tuple(i.to_dict() for i in items), passphrase=passphrase, batch_id=batch_id))
        logger.info("Submitted batch %s with %d item(s)", batch_id[:8], len(items))
        return batch_id

    async def seal(
        self,
        items: Optional[Iterable[StagedItem]] = None,
        passphrase: Optional[str] = None,
    ) -> BatchReport:
        """Submit a batch and wait for its terminal event."""
        batch_id = self.submit_seal(items, passphrase)
        return await self._batches[batch_id]

    async def reveal(self, path: Union[str, Path], passphrase: Optional[str] = None) -> RevealResult:
        """Decrypt one artifact on the worker.

        A request for a path that already has a reveal in flight joins that
        request instead of sending a second one.
        """
        inbox = self._require_ready()
        key = str(Path(path))
        pending = self._reveals.get(key)
        if pending is None:
            if passphrase is None:
                passphrase = self.context.key_manager.active_passphrase()
            pending = self._loop.create_future()
            self._reveals[key] = pending
            inbox.put(Reveal(path=key, passphrase=passphrase))
        return await asyncio.shield(pending)

    # ------------------------------------------------------------------
    # Event handling (runs on the event loop)
    # ------------------------------------------------------------------

    def _dispatch(self, source: queue.Queue, event: Event) -> None:
        if source is not self._outbox:
            # left over from a worker we already detached from
            return

        if isinstance(event, Handshake):
            self._inbox = event.address
            if self._ready is not None and not self._ready.done():
                self._ready.set_result(None)
            logger.info("Worker handshake complete")
        elif isinstance(event, BatchStart):
            self._on_batch_start(event)
        elif isinstance(event, Encrypting):
            self.context.staging.update(event.id, StagingStatus.ENCRYPTING, event.progress)
        elif isinstance(event, Sealed):
            self._on_sealed(event)
        elif isinstance(event, ItemError):
            self._on_item_error(event)
        elif isinstance(event, BatchEnd):
            self._on_batch_end(event)
        elif isinstance(event, RevealResult):
            future = self._reveals.pop(event.path, None)
            if future is not None and not future.done():
                future.set_result(event)
        else:
            logger.error("Unknown worker event %s", type(event).__name__)
            return

        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Progress listener failed on %s", type(event).__name__)

    def _on_batch_start(self, event: BatchStart) -> None:
        self._current_batch = event.batch_id
        self.context.flags.begin_processing()
        logger.info("Veto raised: batch %s started (%d item(s))", event.batch_id[:8], event.total)

    def _on_sealed(self, event: Sealed) -> None:
        report = self._reports.get(self._current_batch or "")
        if report is not None:
            report.sealed.append(event.id)
            if event.ghost:
                report.ghosts.append(event.id)
        if event.residual is not None:
            self.context.vault.residuals.append(Path(event.residual))
        self.context.staging.update(event.id, StagingStatus.SEALED, event.progress)
        self.context.staging.remove(event.id)

    def _on_item_error(self, event: ItemError) -> None:
        report = self._reports.get(self._current_batch or "")
        if report is not None:
            report.failed[event.id] = event.message
        self.context.staging.update(event.id, StagingStatus.ERROR, error_detail=event.message)
        logger.warning("Item %s failed: %s", event.id[:12], event.message)

    def _on_batch_end(self, event: BatchEnd) -> None:
        self._current_batch = None
        report = self._reports.pop(event.batch_id, BatchReport(event.batch_id))
        future = self._batches.pop(event.batch_id, None)
        logger.info(
            "Batch %s ended (%d sealed, %d failed)",
            event.batch_id[:8], event.sealed, event.failed,
        )

        if self._batches:
            logger.debug("%d batch(es) still queued; veto stays up", len(self._batches))
        else:
            self._release_processing()

        if future is not None and not future.done():
            future.set_result(report)
