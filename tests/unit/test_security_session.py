"""
Unit tests for the KeyManager.
"""

import pytest

from nemovault.core.exceptions import NotUnlockedError
from nemovault.security.kdf import derive_session_key
from nemovault.security.session import KeyManager


# ==============================================================================
# Fixtures
# ==============================================================================

@pytest.fixture
def key_manager():
    """Returns a fresh, locked KeyManager instance."""
    return KeyManager()


# ==============================================================================
# Tests: Locking & Unlocking
# ==============================================================================

def test_starts_locked(key_manager):
    assert key_manager.is_unlocked() is False
    assert key_manager.unlocked_since is None
    with pytest.raises(NotUnlockedError, match="Vault is locked"):
        key_manager.active_key_material()


def test_derive_and_activate(key_manager):
    key_manager.derive_and_activate("abyss123")
    assert key_manager.is_unlocked()
    assert key_manager.active_key_material() == derive_session_key("abyss123")
    assert key_manager.active_passphrase() == "abyss123"
    assert key_manager.unlocked_since is not None


def test_passphrase_not_retained_when_not_requested(key_manager):
    key_manager.derive_and_activate("abyss123", retain_passphrase=False)
    assert key_manager.is_unlocked()
    with pytest.raises(NotUnlockedError):
        key_manager.active_passphrase()


def test_lock_zeroes_buffer_and_clears(key_manager):
    key_manager.derive_and_activate("abyss123")
    buffer = key_manager._key

    key_manager.lock()

    assert all(b == 0 for b in buffer)
    assert key_manager.is_unlocked() is False
    with pytest.raises(NotUnlockedError):
        key_manager.active_key_material()
    with pytest.raises(NotUnlockedError):
        key_manager.active_passphrase()


def test_lock_is_idempotent(key_manager):
    key_manager.lock()
    key_manager.derive_and_activate("abyss123")
    key_manager.lock()
    key_manager.lock()
    assert key_manager.is_unlocked() is False


def test_reactivation_replaces_key(key_manager):
    key_manager.derive_and_activate("first")
    key_manager.derive_and_activate("second")
    assert key_manager.active_key_material() == derive_session_key("second")


def test_returned_key_is_a_copy(key_manager):
    key_manager.derive_and_activate("abyss123")
    material = key_manager.active_key_material()
    key_manager.lock()
    assert material == derive_session_key("abyss123")
