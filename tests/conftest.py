"""Shared fixtures for the NemoVault test-suite."""

from datetime import datetime, timedelta

import pytest
from keyring.backend import KeyringBackend
from keyring.errors import PasswordDeleteError

from nemovault.config import VaultSettings
from nemovault.core.context import build_context


class MemoryKeyring(KeyringBackend):
    """Keyring backend that keeps entries in a dict for the test run."""

    priority = 1

    def __init__(self):
        super().__init__()
        self.entries = {}

    def get_password(self, service, username):
        return self.entries.get((service, username))

    def set_password(self, service, username, password):
        self.entries[(service, username)] = password

    def delete_password(self, service, username):
        try:
            del self.entries[(service, username)]
        except KeyError:
            raise PasswordDeleteError(username)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start=None):
        self.now = start or datetime(2026, 1, 1, 12, 0, 0)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


PASSPHRASE = "abyss123"


@pytest.fixture
def memory_keyring():
    return MemoryKeyring()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings(tmp_path):
    """Settings rooted in tmp_path with timings short enough for tests."""
    return VaultSettings(
        root=tmp_path / "nemo",
        idle_timeout=0.4,
        lock_debounce=0.05,
        processing_settle=0.0,
        dialog_settle=0.0,
        handshake_timeout=5.0,
        keyring_service="nemovault-test",
    )


@pytest.fixture
def context(settings, memory_keyring):
    """A fresh, locked engine context."""
    return build_context(settings, keyring_backend=memory_keyring)


@pytest.fixture
def unlocked_context(context):
    """An engine context set up with PASSPHRASE and unlocked."""
    context.setup(PASSPHRASE, "the deep")
    return context


@pytest.fixture
def source_dir(tmp_path):
    """Directory standing in for the user's picked files."""
    d = tmp_path / "picked"
    d.mkdir()
    return d
