"""Symmetric encryption of stored third-party access tokens.

AES-256-CBC with PKCS7 padding and a fresh random 16-byte IV per call.
Ciphertext is stored as ``iv_hex:ciphertext_hex``.
"""

import os

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from src.config import Settings
from src.errors import DecryptionFailedError, MalformedCiphertextError

KEY_BYTES = 32
IV_BYTES = 16
SEPARATOR = ":"


class CredentialVault:
    """Encrypts and decrypts token strings with a single configured key.

    The vault holds no state beyond the key.
    """

    def __init__(self, key: bytes) -> None:
        if len(key) != KEY_BYTES:
            msg = f"Encryption key must be {KEY_BYTES} bytes, got {len(key)}"
            raise ValueError(msg)
        self._key = key

    @classmethod
    def from_hex(cls, key_hex: str) -> "CredentialVault":
        try:
            key = bytes.fromhex(key_hex)
        except ValueError as e:
            msg = "Encryption key must be hex-encoded"
            raise ValueError(msg) from e
        return cls(key)

    @classmethod
    def from_settings(cls, settings: Settings) -> "CredentialVault":
        """Build a vault from ENCRYPTION_KEY. Raises if it is not configured."""
        if not settings.encryption_key:
            msg = "Credential vault not configured (ENCRYPTION_KEY is empty)"
            raise ValueError(msg)
        return cls.from_hex(settings.encryption_key)

    def encrypt(self, plaintext: str) -> str:
        iv = os.urandom(IV_BYTES)
        padder = padding.PKCS7(algorithms.AES.block_size).padder()
        padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()
        encryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).encryptor()
        ciphertext = encryptor.update(padded) + encryptor.finalize()
        return f"{iv.hex()}{SEPARATOR}{ciphertext.hex()}"

    def decrypt(self, ciphertext: str) -> str:
        iv_hex, sep, body_hex = ciphertext.partition(SEPARATOR)
        if not sep:
            msg = "Ciphertext is missing the IV separator"
            raise MalformedCiphertextError(msg)
        try:
            iv = bytes.fromhex(iv_hex)
            body = bytes.fromhex(body_hex)
        except ValueError as e:
            msg = "Ciphertext is not valid hex"
            raise MalformedCiphertextError(msg) from e
        if len(iv) != IV_BYTES or not body or len(body) % IV_BYTES:
            msg = "Ciphertext has an invalid IV or block length"
            raise MalformedCiphertextError(msg)

        decryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).decryptor()
        padded = decryptor.update(body) + decryptor.finalize()
        unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
        try:
            raw = unpadder.update(padded) + unpadder.finalize()
            return raw.decode("utf-8")
        except (ValueError, UnicodeDecodeError) as e:
            msg = "Ciphertext could not be decrypted with the configured key"
            raise DecryptionFailedError(msg) from e
