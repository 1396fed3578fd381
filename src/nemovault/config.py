"""Runtime settings for a NemoVault engine instance."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path


def _default_root() -> Path:
    return Path.home() / ".nemovault"


@dataclass
class VaultSettings:
    """
    Paths and timings used by one engine instance.

    The holding directory sits under the durable vault root rather than the
    OS temp area so staged copies survive short suspensions.
    """

    root: Path = field(default_factory=_default_root)
    sealed_extension: str = "nemo"
    idle_timeout: float = 60.0
    lock_debounce: float = 0.5
    processing_settle: float = 0.5
    dialog_settle: float = 0.6
    handshake_timeout: float = 5.0
    keyring_service: str = "nemovault"

    def __post_init__(self) -> None:
        self.root = Path(self.root).expanduser()
        self.sealed_extension = self.sealed_extension.lstrip(".")

    @property
    def holding_dir(self) -> Path:
        return self.root / "staging"

    @property
    def vault_dir(self) -> Path:
        return self.root / "vault_storage"

    def ensure_dirs(self) -> None:
        self.holding_dir.mkdir(parents=True, exist_ok=True)
        self.vault_dir.mkdir(parents=True, exist_ok=True)
