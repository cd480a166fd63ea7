"""OAuth token encryption.

Tokens are stored in the key-value store encrypted with Fernet symmetric
encryption under DRIVELINK_OAUTH_ENCRYPTION_KEY.
"""

import logging

from cryptography.fernet import Fernet, InvalidToken

from .config import Settings

logger = logging.getLogger(__name__)


class TokenEncryptionError(Exception):
    """Exception raised for token encryption/decryption errors."""

    pass


class TokenEncryptionService:
    """Encrypts and decrypts serialized OAuth tokens."""

    def __init__(self, key: str | None) -> None:
        if not key:
            raise TokenEncryptionError(
                "OAuth encryption key not configured. Set DRIVELINK_OAUTH_ENCRYPTION_KEY environment variable."
            )

        try:
            self.fernet = Fernet(key.encode())
        except Exception as e:
            raise TokenEncryptionError(f"Invalid OAuth encryption key: {e}") from e

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenEncryptionService":
        return cls(settings.oauth_encryption_key)

    def encrypt_token(self, token: str) -> str:
        """Encrypt a serialized token for storage.

        Raises:
            TokenEncryptionError: If the token is empty or encryption fails

        """
        if not token:
            raise TokenEncryptionError("Cannot encrypt empty token")

        try:
            return self.fernet.encrypt(token.encode()).decode()
        except Exception as e:
            logger.error(f"Failed to encrypt OAuth token: {e}")
            raise TokenEncryptionError(f"Token encryption failed: {e}") from e

    def decrypt_token(self, encrypted_token: str) -> str:
        """Decrypt a stored token.

        Raises:
            TokenEncryptionError: If the ciphertext is empty, tampered with,
                or was produced under a different key

        """
        if not encrypted_token:
            raise TokenEncryptionError("Cannot decrypt empty token")

        try:
            return self.fernet.decrypt(encrypted_token.encode()).decode()
        except InvalidToken as e:
            logger.error("Failed to decrypt OAuth token: Invalid token or key")
            raise TokenEncryptionError("Token decryption failed: Invalid token or key") from e
        except Exception as e:
            logger.error(f"Failed to decrypt OAuth token: {e}")
            raise TokenEncryptionError(f"Token decryption failed: {e}") from e
