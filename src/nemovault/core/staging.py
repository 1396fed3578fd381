"""
Staging store: files queued for sealing

Structure Map for reference:
==============================
 - <vault_root>/
      - staging/
          - {original basename}     (one copy per staged item)
      - vault_storage/
          - {display name}.nemo
==============================
> Identity of a staged item is its holding-area path, not its content.
  Staging the same name twice is a no-op.
> The holding area is durable (under the vault root) so copies survive a
  short suspension of the host process.
> Files in the holding area that nothing tracks are orphans, safe to delete.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
import threading
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set, Union

from .exceptions import VetoedOperationError
from .flags import SessionFlags
from .hashing import path_identity
from .models import StagedItem, StagingStatus

logger = logging.getLogger(__name__)


class StagingStore:
    """In-memory set of staged items mirrored by copies in the holding directory."""

    def __init__(self, holding_dir: Union[str, Path], flags: Optional[SessionFlags] = None):
        self.holding_dir = Path(holding_dir).expanduser()
        self.flags = flags if flags is not None else SessionFlags()
        self._items: Dict[str, StagedItem] = {}
        # ids whose copy is still being written
        self._reserved: Set[str] = set()
        self._lock = threading.RLock()

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, item: object) -> bool:
        if isinstance(item, StagedItem):
            return item.id in self._items
        return item in self._items

    def destination_for(self, candidate: Union[str, Path]) -> Path:
        return self.holding_dir / Path(candidate).name

    # ------------------------------------------------------------------
    # Staging
    # ------------------------------------------------------------------

    def stage(self, candidate_paths: Iterable[Union[str, Path]], strip_metadata: bool = True) -> int:
        """Copy candidates into the holding area and track them.

        Returns the number of newly staged items; duplicates and failed
        copies are skipped.
        """
        self.holding_dir.mkdir(parents=True, exist_ok=True)
        staged = 0
        for candidate in candidate_paths:
            src = Path(candidate).expanduser()
            dest = self.destination_for(src)
            item_id = path_identity(dest)

            with self._lock:
                if item_id in self._items or item_id in self._reserved:
                    logger.debug("Skipping duplicate staging of %s", dest.name)
                    continue
                self._reserved.add(item_id)

            try:
                if not (dest.exists() and src.resolve() == dest.resolve()):
                    shutil.copy2(src, dest)
                item = StagedItem.from_path(dest, strip_metadata=strip_metadata)
            except OSError as exc:
                logger.warning("Could not stage %s: %s", src, exc)
                with self._lock:
                    self._reserved.discard(item_id)
                continue

            with self._lock:
                self._reserved.discard(item_id)
                self._items[item.id] = item
            staged += 1
            logger.info("Staged %s (%s)", item.display_name, item.readable_size)
        return staged

    async def stage_async(self, candidate_paths: Iterable[Union[str, Path]], strip_metadata: bool = True) -> int:
        """Run :meth:`stage` on a worker thread so the event loop keeps serving input."""
        return await asyncio.to_thread(self.stage, list(candidate_paths), strip_metadata)

    def restore(self) -> int:
        """Track files already present in the holding directory (after a restart)."""
        if not self.holding_dir.is_dir():
            return 0
        restored = 0
        for entry in sorted(self.holding_dir.iterdir()):
            if not entry.is_file():
                continue
            item = StagedItem.from_path(entry)
            with self._lock:
                if item.id in self._items or item.id in self._reserved:
                    continue
                self._items[item.id] = item
            restored += 1
        if restored:
            logger.info("Restored %d staged item(s) from holding area", restored)
        return restored

    # ------------------------------------------------------------------
    # Queries and updates
    # ------------------------------------------------------------------

    def list(self) -> List[StagedItem]:
        """Snapshot of the staged items in staging order."""
        with self._lock:
            return [item.copy_with() for item in self._items.values()]

    def get(self, item_id: str) -> Optional[StagedItem]:
        with self._lock:
            item = self._items.get(item_id)
            return item.copy_with() if item is not None else None

    def update(
        self,
        item_id: str,
        status: Optional[StagingStatus] = None,
        progress: Optional[float] = None,
        error_detail: Optional[str] = None,
    ) -> Optional[StagedItem]:
        """Apply a worker progress event to a tracked item."""
        with self._lock:
            item = self._items.get(item_id)
            if item is None:
                return None
            if status is not None:
                item.status = status
            if progress is not None:
                item.progress = max(0.0, min(1.0, progress))
            if error_detail is not None:
                item.error_detail = error_detail
            return item.copy_with()

    # ------------------------------------------------------------------
    # Removal
    # ------------------------------------------------------------------

    def remove(self, item: Union[StagedItem, str]) -> None:
        """Forget ``item`` and delete its holding-area copy if still present."""
        item_id = item.id if isinstance(item, StagedItem) else item
        with self._lock:
            tracked = self._items.pop(item_id, None)
        target = tracked if tracked is not None else item
        if isinstance(target, StagedItem):
            self._unlink(target.source_path)

    def reconcile(self) -> int:
        """Drop items whose holding-area file vanished. Returns the number dropped."""
        with self._lock:
            ghosts = [i for i in self._items.values() if not i.source_path.exists()]
            for ghost in ghosts:
                del self._items[ghost.id]
        for ghost in ghosts:
            logger.info("Dropped ghost staged item %s", ghost.display_name)
        return len(ghosts)

    def clear_all(self) -> int:
        """Remove every staged item and its copy. Refused while a veto flag is up."""
        self._check_veto("clear staging")
        with self._lock:
            items = list(self._items.values())
            self._items.clear()
        for item in items:
            self._unlink(item.source_path)
        if items:
            logger.info("Cleared %d staged item(s)", len(items))
        return len(items)

    def purge_orphans(self) -> int:
        """Delete holding-area files that no staged item tracks."""
        self._check_veto("purge orphans")
        if not self.holding_dir.is_dir():
            return 0
        purged = 0
        for entry in self.holding_dir.iterdir():
            if not entry.is_file():
                continue
            # Reserved ids cover copies a concurrent stage() has not tracked yet.
            with self._lock:
                entry_id = path_identity(entry)
                if entry_id in self._items or entry_id in self._reserved:
                    continue
                if self._unlink(entry):
                    purged += 1
        if purged:
            logger.info("Purged %d orphaned file(s) from holding area", purged)
        return purged

    def _check_veto(self, operation: str) -> None:
        reason = self.flags.veto_reason()
        if reason is not None:
            logger.info("Refusing to %s: vetoed by %s", operation, reason)
            raise VetoedOperationError(f"{operation} vetoed by {reason}")

    @staticmethod
    def _unlink(path: Path) -> bool:
        try:
            path.unlink()
            return True
        except FileNotFoundError:
            # removed by the other side already
            return False
        except OSError as exc:
            logger.warning("Could not delete staged copy %s: %s", path, exc)
            return False
