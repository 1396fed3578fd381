"""Auto-lock state machine driven by idle time and app lifecycle signals.

Triggers:
- Idle timer: reset by real input only while the app is resumed (foreground
  and focused). On expiry it locks, unless a veto flag is up, in which case
  the timer simply starts over.
- Backgrounding (paused/hidden/detached) or a native window minimize:
  schedules a lock after a short debounce; resuming inside the window
  cancels it.
- Inactive (focus lost but still visible): ignored, the idle timer keeps
  counting.

Right before locking the veto flags are checked once more; a vetoed lock is
dropped, not rescheduled. The next idle expiry or lifecycle change retries.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Union

from .context import VaultContext

logger = logging.getLogger(__name__)


class AppLifecycle(Enum):
    RESUMED = "resumed"
    INACTIVE = "inactive"
    HIDDEN = "hidden"
    PAUSED = "paused"
    DETACHED = "detached"


BACKGROUNDED = frozenset({AppLifecycle.HIDDEN, AppLifecycle.PAUSED, AppLifecycle.DETACHED})


@dataclass(frozen=True)
class Unlocked:
    active_since: float


@dataclass(frozen=True)
class Locked:
    pass


SessionState = Union[Unlocked, Locked]


class SessionPolicy:
    """Decides when the context must be deep sealed.

    All timers run on the asyncio loop of the primary context.
    """

    def __init__(
        self,
        context: VaultContext,
        on_lock: Optional[Callable[[], None]] = None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        self.context = context
        self._on_lock = on_lock
        self._loop = loop
        self._lifecycle = AppLifecycle.RESUMED
        self._idle_handle: Optional[asyncio.TimerHandle] = None
        self._seal_handle: Optional[asyncio.TimerHandle] = None

    @property
    def lifecycle(self) -> AppLifecycle:
        return self._lifecycle

    @property
    def state(self) -> SessionState:
        since = self.context.key_manager.unlocked_since
        if since is None:
            return Locked()
        return Unlocked(active_since=since)

    @property
    def lock_pending(self) -> bool:
        return self._seal_handle is not None

    @property
    def idle_timer_running(self) -> bool:
        return self._idle_handle is not None

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    # ------------------------------------------------------------------
    # Idle timer
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Arm the idle timer; call once the vault has been unlocked."""
        self._lifecycle = AppLifecycle.RESUMED
        self._restart_idle_timer()

    def record_input(self) -> None:
        """A pointer or key event reached the app."""
        if not self.context.is_unlocked():
            return
        if self._lifecycle is not AppLifecycle.RESUMED:
            # background automation must not keep the vault open
            return
        self._restart_idle_timer()

    def _restart_idle_timer(self) -> None:
        self._cancel_idle()
        self._idle_handle = self._get_loop().call_later(
            self.context.settings.idle_timeout, self._on_idle_timeout
        )

    def _cancel_idle(self) -> None:
        if self._idle_handle is not None:
            self._idle_handle.cancel()
            self._idle_handle = None

    def _on_idle_timeout(self) -> None:
        self._idle_handle = None
        if not self.context.is_unlocked():
            return
        reason = self.context.flags.veto_reason()
        if reason is not None:
            logger.info("Idle timeout reached but vetoed by %s; restarting timer", reason)
            self._restart_idle_timer()
            return
        logger.info("Idle timeout reached; sealing vault")
        self.lock_now()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def on_lifecycle(self, state: AppLifecycle) -> None:
        previous, self._lifecycle = self._lifecycle, state
        logger.debug("Lifecycle %s -> %s", previous.value, state.value)

        if state is AppLifecycle.RESUMED:
            if self._seal_handle is not None:
                self._seal_handle.cancel()
                self._seal_handle = None
                logger.info("App resumed; pending seal cancelled")
            if self.context.is_unlocked():
                self._restart_idle_timer()
        elif state is AppLifecycle.INACTIVE:
            return
        elif state in BACKGROUNDED:
            self._schedule_seal()

    def on_window_minimize(self) -> None:
        """Native minimize event on desktop; same path as backgrounding."""
        self._lifecycle = AppLifecycle.HIDDEN
        self._schedule_seal()

    def _schedule_seal(self) -> None:
        self._cancel_idle()
        if self._seal_handle is not None:
            self._seal_handle.cancel()
        self._seal_handle = self._get_loop().call_later(
            self.context.settings.lock_debounce, self._on_seal_due
        )

    def _on_seal_due(self) -> None:
        self._seal_handle = None
        self.lock_now()

    # ------------------------------------------------------------------
    # Lock transition
    # ------------------------------------------------------------------

    def lock_now(self) -> bool:
        """Deep seal unless vetoed. Returns True when a lock actually happened."""
        if not self.context.is_unlocked():
            # already sealed; re-confirm and do nothing else
            self.context.key_manager.lock()
            logger.debug("Lock requested but vault already sealed")
            return False

        reason = self.context.flags.veto_reason()
        if reason is not None:
            logger.info("Seal vetoed by %s", reason)
            return False

        self.context.deep_seal()
        self._cancel_idle()
        logger.info("Vault sealed")
        if self._on_lock is not None:
            self._on_lock()
        return True

    def dispose(self) -> None:
        self._cancel_idle()
        if self._seal_handle is not None:
            self._seal_handle.cancel()
            self._seal_handle = None
