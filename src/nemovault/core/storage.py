"""
Vault store: durable home of sealed artifacts

Each sealed file is written as ``<display name>.<sealed extension>`` with the
layout ``[12-byte nonce][ciphertext || tag]``. Writes go to a ``.tmp`` sibling
first and are renamed into place, so a crash never leaves a half-written
artifact under the final name.

Once an artifact is written it is authoritative: if the staged original cannot
be purged afterwards the seal still counts as done, and the leftover path is
kept in ``residuals`` for a later retry.
"""

from __future__ import annotations

import asyncio
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Tuple, Union

from ..security import crypto
from .exceptions import VaultIOError
from .hashing import CHUNK_SIZE
from .models import EncryptedArtifact, FileCategory, StagedItem

logger = logging.getLogger(__name__)

TMP_SUFFIX = ".tmp"
# Envelopes up to this size are decrypted inline by decrypt_async.
INLINE_DECRYPT_LIMIT = 64 * 1024


class VaultStore:
    """Encrypted-object store rooted at the vault directory."""

    def __init__(self, vault_dir: Union[str, Path], sealed_extension: str = "nemo"):
        self.root = Path(vault_dir).expanduser()
        self.sealed_extension = sealed_extension.lstrip(".")
        self.residuals: List[Path] = []

    def ensure_root(self) -> Path:
        self.root.mkdir(parents=True, exist_ok=True)
        return self.root

    def artifact_path(self, display_name: str) -> Path:
        return self.root / f"{display_name}.{self.sealed_extension}"

    def clean_name(self, path: Union[str, Path]) -> str:
        """File name without the sealed extension."""
        name = Path(path).name
        suffix = f".{self.sealed_extension}"
        return name[: -len(suffix)] if name.endswith(suffix) else name

    # ------------------------------------------------------------------
    # Sealing
    # ------------------------------------------------------------------

    def store(self, item: StagedItem, key: bytes) -> EncryptedArtifact:
        """
        Encrypt the staged copy of ``item`` into the vault and purge the copy.

        ``FileNotFoundError`` propagates unchanged when the staged copy is gone
        so callers can tell a ghost file from a real failure.
        """
        src = item.source_path
        try:
            data = src.read_bytes()
        except FileNotFoundError:
            raise
        except OSError as exc:
            raise VaultIOError(f"Could not read staged file {src}: {exc}") from exc

        blob = crypto.encrypt(data, key)
        dest = self.artifact_path(item.display_name)
        if dest.exists():
            # one artifact per basename; the newer seal wins
            logger.warning("Replacing existing artifact %s", dest.name)
        self._atomic_write(dest, blob)
        logger.info("Sealed %s -> %s", item.display_name, dest.name)

        if not self.purge_original(src):
            logger.warning("Sealed %s but the staged original remains at %s", item.display_name, src)
            self.residuals.append(src)

        return self._artifact_for(dest)

    def _atomic_write(self, dest: Path, blob: bytes) -> None:
        self.ensure_root()
        tmp = dest.with_name(dest.name + TMP_SUFFIX)
        try:
            with open(tmp, "wb") as f:
                f.write(blob)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, dest)
        except OSError as exc:
            try:
                tmp.unlink()
            except OSError:
                pass
            raise VaultIOError(f"Could not write artifact {dest}: {exc}") from exc

    def purge_original(self, path: Union[str, Path]) -> bool:
        """Best-effort delete of a plaintext original. Never raises."""
        path = Path(path)
        try:
            path.unlink()
            return True
        except FileNotFoundError:
            return True
        except OSError as exc:
            logger.debug("Plain delete of %s failed (%s); truncating first", path, exc)

        # Handle-locked or mapped files: drop the contents, then try once more.
        try:
            with open(path, "r+b") as f:
                f.truncate(0)
            path.unlink()
            return True
        except FileNotFoundError:
            return True
        except OSError as exc:
            logger.error("Could not purge original %s: %s", path, exc)
            return False

    def retry_residuals(self) -> int:
        """Retry purging originals left behind by earlier seals. Returns how many are gone."""
        cleaned = 0
        remaining: List[Path] = []
        for path in self.residuals:
            if self.purge_original(path):
                cleaned += 1
            else:
                remaining.append(path)
        self.residuals = remaining
        return cleaned

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    def _artifact_for(self, path: Path) -> EncryptedArtifact:
        st = path.stat()
        return EncryptedArtifact(
            path=path,
            size_bytes=st.st_size,
            modified_at=datetime.fromtimestamp(st.st_mtime),
            sealed_extension=self.sealed_extension,
        )

    def list_artifacts(self) -> List[EncryptedArtifact]:
        """Artifacts in the vault, newest first."""
        if not self.root.is_dir():
            return []
        artifacts = []
        for entry in self.root.iterdir():
            if entry.name.endswith(TMP_SUFFIX):
                continue
            try:
                if not entry.is_file():
                    continue
                artifacts.append(self._artifact_for(entry))
            except FileNotFoundError:
                # deleted while we were listing
                continue
        artifacts.sort(key=lambda a: a.modified_at, reverse=True)
        return artifacts

    def filter_artifacts(self, category: Optional[FileCategory] = None) -> List[EncryptedArtifact]:
        artifacts = self.list_artifacts()
        if category is None:
            return artifacts
        return [a for a in artifacts if a.category == category]

    def total_secured(self) -> Tuple[int, int]:
        """Return (artifact count, total bytes on disk)."""
        artifacts = self.list_artifacts()
        return len(artifacts), sum(a.size_bytes for a in artifacts)

    # ------------------------------------------------------------------
    # Deletion
    # ------------------------------------------------------------------

    def secure_delete(self, path: Union[str, Path, EncryptedArtifact]) -> None:
        """Overwrite a file with zeros, flush, then delete it.

        If the overwrite fails the file is still deleted plainly.
        """
        path = path.path if isinstance(path, EncryptedArtifact) else Path(path)
        try:
            size = path.stat().st_size
            with open(path, "r+b") as f:
                remaining = size
                zeros = b"\x00" * CHUNK_SIZE
                while remaining > 0:
                    n = min(remaining, CHUNK_SIZE)
                    f.write(zeros[:n])
                    remaining -= n
                f.flush()
                os.fsync(f.fileno())
        except FileNotFoundError:
            logger.debug("Secure delete of %s: already gone", path)
            return
        except OSError as exc:
            logger.warning("Overwrite of %s failed (%s); deleting without wipe", path, exc)

        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            raise VaultIOError(f"Could not delete {path}: {exc}") from exc
        logger.info("Securely deleted %s", path.name)

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def read_artifact(self, path: Union[str, Path, EncryptedArtifact]) -> bytes:
        path = path.path if isinstance(path, EncryptedArtifact) else Path(path)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            raise
        except OSError as exc:
            raise VaultIOError(f"Could not read artifact {path}: {exc}") from exc

    def decrypt(self, artifact: Union[str, Path, EncryptedArtifact], key: bytes) -> bytes:
        """Decrypt one artifact. Raises the codec errors on bad envelopes."""
        return crypto.decrypt(self.read_artifact(artifact), key)

    async def decrypt_async(self, artifact: Union[str, Path, EncryptedArtifact], key: bytes) -> bytes:
        """Like :meth:`decrypt`, but off the event loop for anything non-trivial."""
        path = artifact.path if isinstance(artifact, EncryptedArtifact) else Path(artifact)
        try:
            size = path.stat().st_size
        except FileNotFoundError:
            size = 0
        if size <= INLINE_DECRYPT_LIMIT:
            return self.decrypt(path, key)
        return await asyncio.to_thread(self.decrypt, path, key)
