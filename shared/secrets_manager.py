"""
Secrets management for tenant gateway credentials.

Tenant configuration may hold merchant passwords encrypted with the service
master key, written as ``enc:<token>``. Plain values pass through unchanged.
"""

import os
import base64
from typing import Optional
from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
import logging

logger = logging.getLogger(__name__)

ENCRYPTED_PREFIX = "enc:"


class SecretDecryptionError(ValueError):
    """Raised when an encrypted secret cannot be decrypted with the master key."""


class SecretsManager:
    """
    Encrypts and decrypts secrets stored alongside tenant configuration.
    """

    def __init__(self, master_key: Optional[str] = None):
        """
        Initialize the secrets manager.

        Args:
            master_key: Master key for encryption/decryption
        """
        self.master_key = master_key or os.getenv("PAYMENTS_MASTER_KEY")
        if not self.master_key:
            raise ValueError("Master key is required")

        self._fernet = self._create_fernet()

    def _create_fernet(self) -> Fernet:
        """
        Create a Fernet cipher instance.

        Returns:
            Fernet cipher instance
        """
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=b'payments_tenant_secrets',
            iterations=100000,
        )
        key = base64.urlsafe_b64encode(kdf.derive(self.master_key.encode()))
        return Fernet(key)

    def encrypt_secret(self, secret: str) -> str:
        """
        Encrypt a secret into its stored ``enc:`` form.

        Args:
            secret: Secret to encrypt

        Returns:
            Encrypted secret, prefixed
        """
        encrypted = self._fernet.encrypt(secret.encode())
        return f"{ENCRYPTED_PREFIX}{encrypted.decode()}"

    def decrypt_secret(self, stored: str) -> str:
        """
        Decrypt a stored secret. Values without the prefix are returned as-is.

        Raises:
            SecretDecryptionError: if the ciphertext does not match the master key
        """
        if not is_encrypted(stored):
            return stored
        try:
            decrypted = self._fernet.decrypt(stored[len(ENCRYPTED_PREFIX):].encode())
        except InvalidToken as e:
            logger.error("Failed to decrypt secret: invalid token for master key")
            raise SecretDecryptionError("Secret could not be decrypted with the configured master key") from e
        return decrypted.decode()


def is_encrypted(value: Optional[str]) -> bool:
    """Return True if a stored value is in ``enc:`` form."""
    return isinstance(value, str) and value.startswith(ENCRYPTED_PREFIX)
