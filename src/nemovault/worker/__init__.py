"""Background sealing worker and its coordinator."""

from .coordinator import BatchReport, WorkerCoordinator
from .messages import RevealResult, RevealStatus

__all__ = ["BatchReport", "WorkerCoordinator", "RevealResult", "RevealStatus"]
