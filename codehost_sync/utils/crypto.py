"""Encryption of credentials stored on integrations."""

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from functools import lru_cache
from typing import Optional
import base64

from codehost_sync.core.config import get_settings
from codehost_sync.integrations.base import ConfigurationError


@lru_cache(maxsize=8)
def derive_key(password: str, salt: str) -> bytes:
    """Derive a Fernet key from the configured secret.

    The salt is fixed per deployment; a random salt would make every stored
    token undecryptable after a restart.
    """
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=salt.encode(),
        iterations=100000,
    )
    return base64.urlsafe_b64encode(kdf.derive(password.encode()))


def _fernet(encryption_key: Optional[str], salt: Optional[str]) -> Fernet:
    settings = get_settings()
    return Fernet(
        derive_key(
            encryption_key or settings.encryption_key,
            salt or settings.encryption_salt,
        )
    )


def encrypt_token(
    token: str,
    encryption_key: Optional[str] = None,
    salt: Optional[str] = None,
) -> str:
    """Encrypt an OAuth token for storage."""
    return _fernet(encryption_key, salt).encrypt(token.encode()).decode()


def decrypt_token(
    encrypted_token: str,
    encryption_key: Optional[str] = None,
    salt: Optional[str] = None,
) -> str:
    """Decrypt a stored OAuth token."""
    try:
        return _fernet(encryption_key, salt).decrypt(encrypted_token.encode()).decode()
    except InvalidToken as e:
        raise ConfigurationError(
            "Stored token could not be decrypted; check ENCRYPTION_KEY and ENCRYPTION_SALT"
        ) from e
