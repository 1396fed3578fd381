"""
Data models for staged items and sealed vault artifacts
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

from .hashing import path_identity


class FileCategory(Enum):
    # Category of a file, decided from its extension
    IMAGE = "image"
    VIDEO = "video"
    DOCUMENT = "document"
    UNKNOWN = "unknown"


class StagingStatus(Enum):
    # Where a staged item is in the encryption pipeline
    PENDING = "pending"
    ENCRYPTING = "encrypting"
    SEALED = "sealed"
    ERROR = "error"


IMAGE_EXTENSIONS = frozenset({".jpg", ".jpeg", ".png", ".webp", ".heic"})
VIDEO_EXTENSIONS = frozenset({".mp4", ".mov", ".avi", ".mkv", ".wmv"})
DOCUMENT_EXTENSIONS = frozenset({".pdf", ".txt", ".doc", ".docx", ".xlsx", ".pptx"})


def categorize(path: Path | str) -> FileCategory:
    ext = Path(path).suffix.lower()
    if ext in IMAGE_EXTENSIONS:
        return FileCategory.IMAGE
    if ext in VIDEO_EXTENSIONS:
        return FileCategory.VIDEO
    if ext in DOCUMENT_EXTENSIONS:
        return FileCategory.DOCUMENT
    return FileCategory.UNKNOWN


def readable_size(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    if size < 1048576:
        return f"{size / 1024:.1f} KB"
    if size < 1073741824:
        return f"{size / 1048576:.1f} MB"
    return f"{size / 1073741824:.1f} GB"


class StagedItem:
    """A file copied into the holding area, waiting to be sealed.

    Identity comes from the holding-area path, so an item serialized to the
    worker and rebuilt there compares equal to the original.
    """

    __slots__ = (
        "id",
        "source_path",
        "display_name",
        "size_bytes",
        "category",
        "strip_metadata",
        "status",
        "progress",
        "error_detail",
    )

    def __init__(
        self,
        id: str,
        source_path: Path,
        display_name: str,
        size_bytes: int = 0,
        category: FileCategory = FileCategory.UNKNOWN,
        strip_metadata: bool = True,
        status: StagingStatus = StagingStatus.PENDING,
        progress: float = 0.0,
        error_detail: Optional[str] = None,
    ):
        self.id = id
        self.source_path = Path(source_path)
        self.display_name = display_name
        self.size_bytes = size_bytes
        self.category = category
        self.strip_metadata = strip_metadata
        self.status = status
        self.progress = progress
        self.error_detail = error_detail

    @classmethod
    def from_path(cls, path: Path | str, strip_metadata: bool = True) -> "StagedItem":
        """Build an item for a file already sitting in the holding area."""
        path = Path(path)
        try:
            size = path.stat().st_size
        except FileNotFoundError:
            size = 0
        return cls(
            id=path_identity(path),
            source_path=path,
            display_name=path.name,
            size_bytes=size,
            category=categorize(path),
            strip_metadata=strip_metadata,
        )

    @property
    def readable_size(self) -> str:
        return readable_size(self.size_bytes)

    def copy_with(
        self,
        status: Optional[StagingStatus] = None,
        progress: Optional[float] = None,
        strip_metadata: Optional[bool] = None,
        error_detail: Optional[str] = None,
    ) -> "StagedItem":
        return StagedItem(
            id=self.id,
            source_path=self.source_path,
            display_name=self.display_name,
            size_bytes=self.size_bytes,
            category=self.category,
            strip_metadata=self.strip_metadata if strip_metadata is None else strip_metadata,
            status=status or self.status,
            progress=self.progress if progress is None else progress,
            error_detail=error_detail or self.error_detail,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Plain-data form used to hand items to the background worker."""
        return {
            "id": self.id,
            "source_path": str(self.source_path),
            "display_name": self.display_name,
            "size_bytes": self.size_bytes,
            "category": self.category.value,
            "strip_metadata": self.strip_metadata,
            "status": self.status.value,
            "progress": self.progress,
            "error_detail": self.error_detail,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StagedItem":
        return cls(
            id=data["id"],
            source_path=Path(data["source_path"]),
            display_name=data["display_name"],
            size_bytes=int(data.get("size_bytes", 0)),
            category=FileCategory(data.get("category", FileCategory.UNKNOWN.value)),
            strip_metadata=bool(data.get("strip_metadata", True)),
            status=StagingStatus(data.get("status", StagingStatus.PENDING.value)),
            progress=float(data.get("progress", 0.0)),
            error_detail=data.get("error_detail"),
        )

    def __repr__(self):
        return f"StagedItem(id={self.id[:12]!r}, display_name={self.display_name!r}, status={self.status.value})"

    def __eq__(self, other):
        if not isinstance(other, StagedItem):
            return NotImplemented
        return self.id == other.id

    def __hash__(self):
        return hash(self.id)


class EncryptedArtifact:
    """Metadata of one sealed file in the vault directory."""

    __slots__ = ("path", "size_bytes", "modified_at", "sealed_extension")

    def __init__(self, path: Path, size_bytes: int, modified_at: datetime, sealed_extension: str = "nemo"):
        self.path = Path(path)
        self.size_bytes = size_bytes
        self.modified_at = modified_at
        self.sealed_extension = sealed_extension

    @property
    def name(self) -> str:
        return self.path.name

    @property
    def display_name(self) -> str:
        suffix = f".{self.sealed_extension}"
        if self.name.endswith(suffix):
            return self.name[: -len(suffix)]
        return self.name

    @property
    def category(self) -> FileCategory:
        return categorize(self.display_name)

    @property
    def is_readable(self) -> bool:
        # nonce (12) + GCM tag (16) is the smallest valid envelope
        return self.size_bytes >= 28

    def __repr__(self):
        return f"EncryptedArtifact(name={self.name!r}, size_bytes={self.size_bytes})"

    def __eq__(self, other):
        if not isinstance(other, EncryptedArtifact):
            return NotImplemented
        return self.path == other.path

    def __hash__(self):
        return hash(self.path)
