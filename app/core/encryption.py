"""
Encryption of secrets stored in the database.

OAuth tokens are kept as Fernet tokens under a key derived from
ENCRYPTION_KEY with PBKDF2-HMAC-SHA256. Changing ENCRYPTION_KEY makes
existing connections unreadable; reconnect the integrations afterwards.
"""

import base64
import logging
from functools import lru_cache

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from sqlalchemy import Text
from sqlalchemy.types import TypeDecorator

from app.core import config

logger = logging.getLogger(__name__)

KDF_SALT = b"rto-compliance-hub-token-store"
KDF_ITERATIONS = 100_000
DEV_ENCRYPTION_KEY = "dev-encryption-key-change-in-production"


class DecryptionError(Exception):
    """A stored value could not be decrypted with the configured key."""


@lru_cache(maxsize=1)
def _fernet() -> Fernet:
    secret = config.ENCRYPTION_KEY
    if not secret:
        logger.warning("Using development ENCRYPTION_KEY. Set ENCRYPTION_KEY env var in production!")
        secret = DEV_ENCRYPTION_KEY
    kdf = PBKDF2HMAC(algorithm=hashes.SHA256(), length=32, salt=KDF_SALT, iterations=KDF_ITERATIONS)
    return Fernet(base64.urlsafe_b64encode(kdf.derive(secret.encode())))


def encrypt(plaintext: str) -> str:
    return _fernet().encrypt(plaintext.encode()).decode()


def decrypt(token: str) -> str:
    try:
        return _fernet().decrypt(token.encode()).decode()
    except InvalidToken as e:
        raise DecryptionError("Stored secret cannot be decrypted with the current ENCRYPTION_KEY") from e


class EncryptedText(TypeDecorator):
    """Text column encrypted on write and decrypted on read."""

    impl = Text
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else encrypt(value)

    def process_result_value(self, value, dialect):
        return None if value is None else decrypt(value)
