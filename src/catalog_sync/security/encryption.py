"""
Encryption for tenant-scoped marketplace credentials.

Tenant API keys are stored as Fernet tokens in ``Tenant.api_credential``.
A secondary key may be configured while rotating the master key.
"""

from typing import List, Optional

from cryptography.fernet import Fernet, MultiFernet, InvalidToken

from catalog_sync.utils.config import get_config
from catalog_sync.utils.exceptions import ConfigurationError
from catalog_sync.utils.logger import get_logger

logger = get_logger(__name__)


class CredentialEncryptor:
    """
    Encrypts and decrypts tenant credentials using Fernet.

    Supports key rotation through MultiFernet: tokens written with the
    secondary key stay readable while new tokens use the master key.
    """

    def __init__(self, master_key: Optional[str] = None, secondary_key: Optional[str] = None):
        """
        Initialize encryptor.

        Args:
            master_key: Base64-encoded Fernet key. If None, read from config.
            secondary_key: Previous key still accepted for decryption.
        """
        if master_key is None:
            config = get_config()
            master_key = config.encryption_master_key
            secondary_key = secondary_key or config.encryption_secondary_key

        if not master_key:
            raise ConfigurationError(
                "ENCRYPTION_MASTER_KEY is required to store tenant credentials"
            )

        self.keys = self._load_keys(master_key, secondary_key)
        try:
            self.fernet = MultiFernet([Fernet(key) for key in self.keys])
        except ValueError as e:
            raise ConfigurationError(f"Invalid encryption key: {e}")

        logger.debug(f"Initialized credential encryptor with {len(self.keys)} key(s)")

    @staticmethod
    def _load_keys(master_key: str, secondary_key: Optional[str]) -> List[bytes]:
        keys = [master_key.encode()]
        if secondary_key:
            keys.append(secondary_key.encode())
            logger.info("Secondary encryption key loaded for rotation")
        return keys

    def encrypt(self, plaintext: str) -> str:
        """
        Encrypt plaintext string.

        Args:
            plaintext: String to encrypt

        Returns:
            Fernet token as text
        """
        if not plaintext:
            raise ValueError("Cannot encrypt empty string")
        return self.fernet.encrypt(plaintext.encode()).decode()

    def decrypt(self, ciphertext: str) -> str:
        """
        Decrypt a Fernet token.

        Raises:
            ConfigurationError: If the token cannot be decrypted with any key
        """
        if not ciphertext:
            raise ValueError("Cannot decrypt empty string")

        try:
            return self.fernet.decrypt(ciphertext.encode()).decode()
        except InvalidToken:
            logger.error("Credential decryption failed - invalid token or rotated key")
            raise ConfigurationError("Stored tenant credential could not be decrypted")

    @staticmethod
    def generate_key() -> str:
        """Generate a new Fernet key."""
        return Fernet.generate_key().decode()


# Global encryptor instance
_encryptor: Optional[CredentialEncryptor] = None


def get_encryptor() -> CredentialEncryptor:
    """Get or create global encryptor instance."""
    global _encryptor
    if _encryptor is None:
        _encryptor = CredentialEncryptor()
    return _encryptor


def reset_encryptor() -> None:
    """Drop the cached encryptor, e.g. after keys were reconfigured."""
    global _encryptor
    _encryptor = None


def encrypt_credential(plaintext: str) -> str:
    """Convenience function to encrypt credential."""
    return get_encryptor().encrypt(plaintext)


def decrypt_credential(ciphertext: str) -> str:
    """Convenience function to decrypt credential."""
    return get_encryptor().decrypt(ciphertext)
