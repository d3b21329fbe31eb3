"""
Provider access-token encryption at rest using Fernet symmetric encryption.
"""

import base64
from functools import lru_cache

from cryptography.fernet import Fernet
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from config import settings


@lru_cache(maxsize=4)
def _fernet_for(key: str) -> Fernet:
    # Keys that are not exactly 32 bytes are stretched with PBKDF2.
    if len(key) != 32:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=b"eternalme_connection_tokens",
            iterations=100000,
        )
        derived = base64.urlsafe_b64encode(kdf.derive(key.encode()))
    else:
        derived = base64.urlsafe_b64encode(key.encode())
    return Fernet(derived)


def _get_fernet() -> Fernet:
    return _fernet_for(settings.ENCRYPTION_KEY)


def encrypt_token(token: str) -> str:
    """
    Encrypt a provider access token for storage.

    Args:
        token: Plain text token exactly as issued by the provider

    Returns:
        Base64-encoded encrypted token
    """
    return _get_fernet().encrypt(token.encode()).decode()


def decrypt_token(encrypted_token: str) -> str:
    """Decrypt a stored token back to the provider's original string."""
    return _get_fernet().decrypt(encrypted_token.encode()).decode()
