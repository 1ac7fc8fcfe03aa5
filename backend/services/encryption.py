import os
import base64
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC


DEFAULT_SECRET_KEY = 'poker-default-secret-key-change-in-production'


class DecryptionError(ValueError):
    """Raised when ciphertext was not produced with the configured key"""
    pass


class EncryptionService:
    """Symmetric encryption for game join and facilitator codes"""

    def __init__(self, secret_key: Optional[str] = None):
        if not secret_key:
            secret_key = (
                os.environ.get('POKER_AES_HASHKEY')
                or os.environ.get('ENCRYPTION_SECRET_KEY')
                # Development default (must be set in production)
                or DEFAULT_SECRET_KEY
            )

        # Static salt keeps the derived key stable across restarts
        salt = b'poker_codes_salt_v1'
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=salt,
            iterations=100000,
        )
        key = base64.urlsafe_b64encode(kdf.derive(secret_key.encode()))
        self.fernet = Fernet(key)

    def encrypt(self, plain_text: str) -> str:
        """Encrypt a string and return the Fernet token as text"""
        return self.fernet.encrypt(plain_text.encode()).decode()

    def decrypt(self, encrypted_text: str) -> str:
        """Decrypt a Fernet token and return plain text"""
        try:
            return self.fernet.decrypt(encrypted_text.encode()).decode()
        except InvalidToken as e:
            raise DecryptionError("ciphertext could not be decrypted with the configured key") from e


# Singleton instance
_encryption_service = None


def get_encryption_service() -> EncryptionService:
    global _encryption_service
    if _encryption_service is None:
        _encryption_service = EncryptionService()
    return _encryption_service
