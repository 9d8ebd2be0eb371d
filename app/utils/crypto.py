"""Symmetric encryption for provider tokens at rest"""
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from app.config import get_settings


class TokenCipher:
    """Fernet wrapper. Ciphertext is stored as bytes in the database."""

    def __init__(self, key: Optional[str] = None):
        key = key or get_settings().encryption_key
        if not key:
            raise RuntimeError("ENCRYPTION_KEY is not configured")
        self.cipher = Fernet(key.encode() if isinstance(key, str) else key)

    def encrypt(self, plaintext: Optional[str]) -> Optional[bytes]:
        """
        Encrypt a secret

        Args:
            plaintext: Secret to encrypt (None passes through)

        Returns:
            Fernet token bytes or None
        """
        if plaintext is None:
            return None
        return self.cipher.encrypt(plaintext.encode())

    def decrypt(self, ciphertext: Optional[bytes], ttl: Optional[int] = None) -> str:
        """
        Decrypt a secret

        Args:
            ciphertext: Fernet token (bytes or str)
            ttl: Reject tokens older than this many seconds

        Raises:
            InvalidToken: if the ciphertext was not produced with this key, or is too old
        """
        if isinstance(ciphertext, str):
            ciphertext = ciphertext.encode()
        return self.cipher.decrypt(ciphertext, ttl=ttl).decode()


def generate_key() -> str:
    return Fernet.generate_key().decode()


__all__ = ["TokenCipher", "InvalidToken", "generate_key"]
