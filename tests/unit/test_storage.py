"""Unit tests for the VaultStore."""

import asyncio
import logging
import os
import time
from pathlib import Path
from unittest.mock import patch

import pytest

from nemovault.core.exceptions import AuthenticationFailureError, InvalidEnvelopeError, VaultIOError
from nemovault.core.models import FileCategory, StagedItem
from nemovault.core.storage import INLINE_DECRYPT_LIMIT, VaultStore
from nemovault.security import crypto

KEY = b"k" * 32
OTHER_KEY = b"o" * 32


@pytest.fixture
def vault(tmp_path):
    return VaultStore(tmp_path / "vault_storage", "nemo")


@pytest.fixture
def staged(tmp_path):
    holding = tmp_path / "staging"
    holding.mkdir()

    def make(name, data):
        p = holding / name
        p.write_bytes(data)
        return StagedItem.from_path(p)

    return make


# --- store ---

def test_store_writes_envelope_and_purges_copy(vault, staged):
    plaintext = os.urandom(2048)
    item = staged("photo.jpg", plaintext)

    artifact = vault.store(item, KEY)

    assert artifact.path == vault.root / "photo.jpg.nemo"
    assert artifact.size_bytes == crypto.NONCE_SIZE + 2048 + crypto.TAG_SIZE
    assert artifact.display_name == "photo.jpg"
    assert artifact.category is FileCategory.IMAGE
    assert not item.source_path.exists()
    assert vault.residuals == []
    assert vault.decrypt(artifact, KEY) == plaintext


def test_store_leaves_no_tmp_file(vault, staged):
    vault.store(staged("a.txt", b"hello"), KEY)
    assert [p.name for p in vault.root.iterdir()] == ["a.txt.nemo"]


def test_store_missing_copy_raises_file_not_found(vault, staged):
    item = staged("gone.txt", b"x")
    item.source_path.unlink()
    with pytest.raises(FileNotFoundError):
        vault.store(item, KEY)
    assert not vault.artifact_path("gone.txt").exists()


def test_store_unreadable_copy_is_io_error(vault, staged):
    item = staged("dir.txt", b"x")
    item.source_path.unlink()
    item.source_path.mkdir()
    with pytest.raises(VaultIOError):
        vault.store(item, KEY)


def test_store_records_residual_when_purge_fails(vault, staged):
    item = staged("stuck.pdf", b"%PDF")
    with patch.object(VaultStore, "purge_original", return_value=False):
        artifact = vault.store(item, KEY)
    # the artifact still counts
    assert artifact.path.exists()
    assert vault.residuals == [item.source_path]


def test_store_overwrites_existing_artifact(vault, staged, caplog):
    vault.store(staged("same.txt", b"first"), KEY)
    assert "Replacing existing artifact" not in caplog.text
    with caplog.at_level(logging.WARNING, logger="nemovault.core.storage"):
        vault.store(staged("same.txt", b"second"), KEY)
    assert vault.decrypt(vault.artifact_path("same.txt"), KEY) == b"second"
    assert "Replacing existing artifact same.txt.nemo" in caplog.text
    assert [a.display_name for a in vault.list_artifacts()] == ["same.txt"]


# --- purge_original / residuals ---

def test_purge_original_missing_is_success(vault, tmp_path):
    assert vault.purge_original(tmp_path / "nothing") is True


def test_purge_original_truncates_when_first_unlink_fails(vault, tmp_path):
    target = tmp_path / "locked.bin"
    target.write_bytes(b"secret" * 100)
    real_unlink = Path.unlink
    calls = []

    def flaky_unlink(self, *args, **kwargs):
        calls.append(self)
        if len(calls) == 1:
            raise PermissionError("in use")
        return real_unlink(self, *args, **kwargs)

    with patch.object(Path, "unlink", flaky_unlink):
        assert vault.purge_original(target) is True
    assert len(calls) == 2
    assert not target.exists()


def test_purge_original_gives_up_without_raising(vault, tmp_path):
    target = tmp_path / "pinned.bin"
    target.write_bytes(b"secret")
    with patch.object(Path, "unlink", side_effect=PermissionError("in use")):
        assert vault.purge_original(target) is False
    # contents were still dropped
    assert target.read_bytes() == b""


def test_retry_residuals(vault, tmp_path):
    gone = tmp_path / "gone.bin"
    left = tmp_path / "left.bin"
    left.write_bytes(b"x")
    vault.residuals = [gone, left]
    assert vault.retry_residuals() == 2
    assert vault.residuals == []
    assert not left.exists()


# --- listing ---

def test_list_artifacts_newest_first(vault, staged):
    vault.store(staged("old.jpg", b"1"), KEY)
    vault.store(staged("new.mp4", b"2"), KEY)
    old = vault.artifact_path("old.jpg")
    past = time.time() - 100
    os.utime(old, (past, past))

    names = [a.display_name for a in vault.list_artifacts()]
    assert names == ["new.mp4", "old.jpg"]


def test_list_artifacts_skips_tmp_and_dirs(vault, staged):
    vault.store(staged("keep.txt", b"1"), KEY)
    (vault.root / "half.txt.nemo.tmp").write_bytes(b"partial")
    (vault.root / "subdir").mkdir()
    assert [a.name for a in vault.list_artifacts()] == ["keep.txt.nemo"]


def test_list_artifacts_without_root(vault):
    assert vault.list_artifacts() == []


def test_filter_and_totals(vault, staged):
    vault.store(staged("a.jpg", b"1" * 10), KEY)
    vault.store(staged("b.mp3", b"2" * 20), KEY)
    vault.store(staged("c.png", b"3" * 30), KEY)

    images = vault.filter_artifacts(FileCategory.IMAGE)
    assert sorted(a.display_name for a in images) == ["a.jpg", "c.png"]
    assert len(vault.filter_artifacts()) == 3
    assert vault.filter_artifacts(FileCategory.VIDEO) == []

    count, total = vault.total_secured()
    assert count == 3
    assert total == 60 + 3 * crypto.envelope_overhead()


def test_clean_name(vault):
    assert vault.clean_name("/x/report.pdf.nemo") == "report.pdf"
    assert vault.clean_name("plain.txt") == "plain.txt"


# --- secure_delete ---

def test_secure_delete_removes_artifact(vault, staged):
    artifact = vault.store(staged("doomed.txt", b"bye"), KEY)
    vault.secure_delete(artifact)
    assert not artifact.path.exists()
    assert vault.list_artifacts() == []


def test_secure_delete_zeroes_before_unlink(vault, tmp_path):
    target = tmp_path / "wipe.nemo"
    target.write_bytes(b"\xff" * 70000)
    with patch.object(Path, "unlink"):
        vault.secure_delete(target)
    assert target.read_bytes() == b"\x00" * 70000


def test_secure_delete_falls_back_when_overwrite_fails(vault, tmp_path):
    target = tmp_path / "readonly.nemo"
    target.write_bytes(b"data")
    with patch("nemovault.core.storage.open", side_effect=PermissionError("ro"), create=True):
        vault.secure_delete(target)
    assert not target.exists()


def test_secure_delete_missing_is_noop(vault, tmp_path):
    vault.secure_delete(tmp_path / "never.nemo")


def test_secure_delete_unlink_failure_raises(vault, tmp_path):
    target = tmp_path / "stuck.nemo"
    target.write_bytes(b"data")
    with patch.object(Path, "unlink", side_effect=PermissionError("busy")):
        with pytest.raises(VaultIOError):
            vault.secure_delete(target)


# --- decrypt ---

def test_decrypt_wrong_key(vault, staged):
    artifact = vault.store(staged("x.txt", b"secret"), KEY)
    with pytest.raises(AuthenticationFailureError):
        vault.decrypt(artifact, OTHER_KEY)


def test_decrypt_short_file(vault):
    vault.ensure_root()
    short = vault.artifact_path("short.txt")
    short.write_bytes(b"123")
    with pytest.raises(InvalidEnvelopeError):
        vault.decrypt(short, KEY)


def test_decrypt_missing_file(vault):
    with pytest.raises(FileNotFoundError):
        vault.decrypt(vault.artifact_path("absent.txt"), KEY)


@pytest.mark.parametrize("size", [16, INLINE_DECRYPT_LIMIT * 2])
def test_decrypt_async(vault, staged, size):
    plaintext = os.urandom(size)
    artifact = vault.store(staged("blob.bin", plaintext), KEY)
    assert asyncio.run(vault.decrypt_async(artifact, KEY)) == plaintext
