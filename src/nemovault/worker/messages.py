"""Messages exchanged with the background worker.

Commands flow coordinator -> worker, events flow worker -> coordinator. Each
message is a frozen dataclass; handlers dispatch on the concrete type.
Passphrases are excluded from ``repr`` so they never reach a log line.
"""

from __future__ import annotations

import queue
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union

ENCRYPTING_PROGRESS = 0.1
SEALED_PROGRESS = 1.0


class RevealStatus(Enum):
    OK = "ok"
    NOT_FOUND = "not_found"
    AUTH_FAILURE = "auth_failure"
    UNREADABLE = "unreadable"
    UNAVAILABLE = "unavailable"


# ----------------------------------------------------------------------
# Commands
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class Seal:
    items: Tuple[Dict[str, Any], ...]
    passphrase: str = field(repr=False)
    batch_id: str = ""


@dataclass(frozen=True)
class Reveal:
    path: str
    passphrase: str = field(repr=False)


@dataclass(frozen=True)
class Shutdown:
    pass


# ----------------------------------------------------------------------
# Events
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class Handshake:
    address: "queue.Queue[Command]" = field(repr=False)


@dataclass(frozen=True)
class BatchStart:
    batch_id: str
    total: int = 0


@dataclass(frozen=True)
class BatchEnd:
    batch_id: str
    sealed: int = 0
    failed: int = 0


@dataclass(frozen=True)
class Encrypting:
    id: str
    progress: float = ENCRYPTING_PROGRESS


@dataclass(frozen=True)
class Sealed:
    id: str
    progress: float = SEALED_PROGRESS
    ghost: bool = False
    residual: Optional[str] = None


@dataclass(frozen=True)
class ItemError:
    id: str
    message: str


@dataclass(frozen=True)
class RevealResult:
    path: str
    data: Optional[bytes] = field(default=None, repr=False)
    status: RevealStatus = RevealStatus.OK

    @property
    def ok(self) -> bool:
        return self.data is not None


Command = Union[Seal, Reveal, Shutdown]
Event = Union[Handshake, BatchStart, BatchEnd, Encrypting, Sealed, ItemError, RevealResult]
