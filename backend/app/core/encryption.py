"""
Encryption at rest for identity provider credentials.
Uses Fernet symmetric encryption with key rotation support.
"""

import base64
import logging
from typing import Optional, Union

from cryptography.fernet import Fernet, InvalidToken, MultiFernet
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from sqlalchemy import String, TypeDecorator

from app.core.config import settings

logger = logging.getLogger("agentradar.encryption")


class EncryptionError(Exception):
    """Raised when encryption/decryption fails."""
    pass


class SecretEncryptor:
    """
    Encrypts provider secrets (OAuth2 client secrets) before they are stored.

    ENCRYPTION_KEY may hold several comma-separated Fernet keys: the first one
    encrypts, any of them decrypts.
    """

    def __init__(self, encryption_key: Optional[str] = None, secret_key: Optional[str] = None):
        encryption_key = encryption_key or settings.ENCRYPTION_KEY

        if not encryption_key:
            if settings.is_production:
                raise EncryptionError("ENCRYPTION_KEY must be set in production.")
            logger.warning(
                "ENCRYPTION_KEY not set. Deriving a key from SECRET_KEY; "
                "set ENCRYPTION_KEY outside development."
            )
            encryption_key = self._derive_key_from_secret(secret_key or settings.SECRET_KEY)

        keys = [k.strip() for k in encryption_key.split(",") if k.strip()]
        try:
            fernets = [Fernet(k.encode()) for k in keys]
        except ValueError as e:
            raise EncryptionError(f"Invalid ENCRYPTION_KEY: {e}")

        self._fernet: Union[Fernet, MultiFernet] = (
            fernets[0] if len(fernets) == 1 else MultiFernet(fernets)
        )
        logger.info(f"Secret encryption initialized with {len(keys)} key(s)")

    @staticmethod
    def _derive_key_from_secret(secret: str) -> str:
        """Derive a Fernet key from SECRET_KEY using PBKDF2."""
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=b"agentradar_sso_dev_salt_v1",
            iterations=100000,
        )
        return base64.urlsafe_b64encode(kdf.derive(secret.encode())).decode()

    def encrypt(self, plaintext: str) -> str:
        if not plaintext:
            return plaintext
        return self._fernet.encrypt(plaintext.encode()).decode()

    def decrypt(self, ciphertext: str) -> str:
        if not ciphertext:
            return ciphertext
        try:
            return self._fernet.decrypt(ciphertext.encode()).decode()
        except InvalidToken:
            logger.error("Decryption failed: invalid token (wrong key or corrupted data)")
            raise EncryptionError("Failed to decrypt secret: invalid encryption key or corrupted data")

    @staticmethod
    def generate_key() -> str:
        """Generate a new Fernet encryption key."""
        return Fernet.generate_key().decode()


_encryptor: Optional[SecretEncryptor] = None


def get_encryptor() -> SecretEncryptor:
    """Get the process-wide encryptor, built from settings on first use."""
    global _encryptor
    if _encryptor is None:
        _encryptor = SecretEncryptor()
    return _encryptor


class EncryptedString(TypeDecorator):
    """
    Column type that stores values Fernet-encrypted and returns plaintext.

    Usage:
        client_secret = Column(EncryptedString(1000), nullable=True)
    """

    impl = String
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        return get_encryptor().encrypt(str(value))

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        return get_encryptor().decrypt(value)
