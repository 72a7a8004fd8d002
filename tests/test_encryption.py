"""Tests for encryption module."""

import os

import pytest

from calendar_mirror.encryption import (
    EncryptionManager,
    decrypt_value,
    encrypt_value,
    generate_encryption_key,
    init_encryption_manager,
)


def test_generate_encryption_key():
    """Test encryption key generation."""
    key = generate_encryption_key()
    assert len(key) == 32
    assert isinstance(key, bytes)


def test_encryption_manager_encrypt_decrypt():
    """Test basic encryption and decryption."""
    key = generate_encryption_key()
    manager = EncryptionManager(key)

    plaintext = "ya29.access-token"
    encrypted = manager.encrypt(plaintext)
    decrypted = manager.decrypt(encrypted)

    assert decrypted == plaintext
    assert plaintext.encode() not in encrypted


def test_encryption_manager_invalid_key():
    """Test that short keys are rejected."""
    with pytest.raises(ValueError):
        EncryptionManager(b"short")


def test_encryption_nonce_uniqueness():
    """Test that each encryption uses a unique nonce."""
    manager = EncryptionManager(generate_encryption_key())

    encrypted1 = manager.encrypt("Same token")
    encrypted2 = manager.encrypt("Same token")

    assert encrypted1 != encrypted2
    assert manager.decrypt(encrypted1) == manager.decrypt(encrypted2) == "Same token"


def test_decryption_with_wrong_key_fails():
    encrypted = EncryptionManager(generate_encryption_key()).encrypt("secret")

    with pytest.raises(Exception):
        EncryptionManager(generate_encryption_key()).decrypt(encrypted)


def test_decryption_invalid_data():
    """Test decryption of invalid data."""
    manager = EncryptionManager(generate_encryption_key())

    with pytest.raises(ValueError):
        manager.decrypt(b"short")


def test_value_helpers_use_global_manager(test_encryption_key):
    init_encryption_manager(test_encryption_key)

    assert decrypt_value(encrypt_value("refresh-token")) == "refresh-token"
    assert decrypt_value(None) is None


def test_generated_key_file_is_reloaded(tmp_path, monkeypatch):
    """A key file created on first start yields the same key on the next load."""
    from calendar_mirror import config

    key_file = tmp_path / "secrets" / "encryption.key"
    monkeypatch.setattr(config.get_settings(), "encryption_key_file", str(key_file))

    first = config.ensure_encryption_key()
    second = config.ensure_encryption_key()

    assert len(first) == 32
    assert first == second
    assert oct(os.stat(key_file).st_mode & 0o777) == "0o600"
