"""
Tests for the join/facilitator code encryption.
"""
import pytest

from services.encryption import EncryptionService, DecryptionError


class TestEncryptionService:
    """Symmetric encryption of game codes."""

    def test_round_trip(self):
        """Encrypted codes decrypt back to the plaintext."""
        service = EncryptionService("secret-one")
        token = service.encrypt("join-me")
        assert token != "join-me"
        assert service.decrypt(token) == "join-me"

    def test_same_secret_derives_same_key(self):
        """Services built from the same secret can read each other's tokens."""
        token = EncryptionService("shared").encrypt("lead-me")
        assert EncryptionService("shared").decrypt(token) == "lead-me"

    def test_wrong_key_raises_decryption_error(self):
        """Tokens from another key are rejected with a ValueError subclass."""
        token = EncryptionService("secret-one").encrypt("join-me")
        with pytest.raises(DecryptionError):
            EncryptionService("secret-two").decrypt(token)

    def test_garbage_ciphertext_raises(self):
        with pytest.raises(ValueError):
            EncryptionService("secret-one").decrypt("not-a-token")

    def test_secret_read_from_environment(self, monkeypatch):
        """POKER_AES_HASHKEY takes precedence over ENCRYPTION_SECRET_KEY."""
        monkeypatch.setenv("POKER_AES_HASHKEY", "from-poker-env")
        monkeypatch.setenv("ENCRYPTION_SECRET_KEY", "from-generic-env")
        token = EncryptionService().encrypt("code")
        assert EncryptionService("from-poker-env").decrypt(token) == "code"

    def test_secret_falls_back_to_generic_key(self, monkeypatch):
        monkeypatch.delenv("POKER_AES_HASHKEY", raising=False)
        monkeypatch.setenv("ENCRYPTION_SECRET_KEY", "from-generic-env")
        token = EncryptionService().encrypt("code")
        assert EncryptionService("from-generic-env").decrypt(token) == "code"
