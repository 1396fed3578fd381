"""Veto flags shared by the auto-lock policy, staging purges and the worker.

Both flags are plain booleans read as eventually-consistent hints. Lowering
a flag can be delayed by a settle window so OS focus transitions that follow
a dialog or a batch do not race the auto-lock.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, Optional

logger = logging.getLogger(__name__)

PROCESSING = "is_processing"
SYSTEM_DIALOG = "is_system_dialog_active"


class SessionFlags:
    def __init__(self):
        self.is_processing = False
        self.is_system_dialog_active = False
        self._pending: Dict[str, threading.Timer] = {}
        self._lock = threading.Lock()

    @property
    def vetoed(self) -> bool:
        return self.is_processing or self.is_system_dialog_active

    def veto_reason(self) -> Optional[str]:
        if self.is_processing:
            return "background encryption"
        if self.is_system_dialog_active:
            return "system dialog"
        return None

    def begin_processing(self) -> None:
        self._raise(PROCESSING)

    def end_processing(self, settle: float = 0.0) -> None:
        self._lower(PROCESSING, settle)

    def begin_dialog(self) -> None:
        self._raise(SYSTEM_DIALOG)

    def end_dialog(self, settle: float = 0.0) -> None:
        self._lower(SYSTEM_DIALOG, settle)

    @contextmanager
    def system_dialog(self, settle: float = 0.0) -> Iterator[None]:
        """Hold the dialog veto for the body, lowering it after ``settle`` seconds."""
        self.begin_dialog()
        try:
            yield
        finally:
            self.end_dialog(settle)

    def cancel_pending(self) -> None:
        with self._lock:
            for timer in self._pending.values():
                timer.cancel()
            self._pending.clear()

    def _raise(self, name: str) -> None:
        with self._lock:
            pending = self._pending.pop(name, None)
            if pending is not None:
                pending.cancel()
            setattr(self, name, True)
        logger.debug("Veto raised: %s", name)

    def _lower(self, name: str, settle: float) -> None:
        if settle <= 0:
            with self._lock:
                pending = self._pending.pop(name, None)
                if pending is not None:
                    pending.cancel()
                setattr(self, name, False)
            logger.debug("Veto lowered: %s", name)
            return

        timer = threading.Timer(settle, self._settled, args=(name,))
        timer.daemon = True
        with self._lock:
            previous = self._pending.pop(name, None)
            if previous is not None:
                previous.cancel()
            self._pending[name] = timer
        timer.start()

    def _settled(self, name: str) -> None:
        with self._lock:
            if self._pending.get(name) is None:
                return
            del self._pending[name]
            setattr(self, name, False)
        logger.debug("Veto lowered after settle: %s", name)
