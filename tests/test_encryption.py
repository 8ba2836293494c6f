"""Tests for encryption module."""

import pytest

from calsync.encryption import (
    EncryptionManager,
    decrypt_value,
    encrypt_value,
    generate_encryption_key,
)


def test_generate_encryption_key():
    """Test encryption key generation."""
    key = generate_encryption_key()
    assert len(key) == 32
    assert isinstance(key, bytes)


def test_encryption_manager_encrypt_decrypt():
    """Test basic encryption and decryption."""
    manager = EncryptionManager(generate_encryption_key())

    token = "ya29.access-token"
    encrypted = manager.encrypt(token)

    assert manager.decrypt(encrypted) == token
    assert encrypted != token.encode()


def test_encryption_nonce_uniqueness():
    """Same plaintext encrypts differently each time."""
    manager = EncryptionManager(generate_encryption_key())

    encrypted1 = manager.encrypt("refresh-token")
    encrypted2 = manager.encrypt("refresh-token")

    assert encrypted1 != encrypted2
    assert manager.decrypt(encrypted1) == manager.decrypt(encrypted2) == "refresh-token"


def test_wrong_key_cannot_decrypt():
    encrypted = EncryptionManager(generate_encryption_key()).encrypt("secret")

    with pytest.raises(Exception):
        EncryptionManager(generate_encryption_key()).decrypt(encrypted)


def test_encryption_manager_invalid_key():
    """Test that short keys are rejected."""
    with pytest.raises(ValueError):
        EncryptionManager(b"short")


def test_decryption_invalid_data():
    manager = EncryptionManager(generate_encryption_key())

    with pytest.raises(ValueError):
        manager.decrypt(b"short")

    with pytest.raises(Exception):
        manager.decrypt(b"x" * 100)


def test_module_helpers_use_global_manager(test_encryption_key):
    assert decrypt_value(encrypt_value("token-value")) == "token-value"
