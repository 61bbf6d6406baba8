"""
Cryptographic operations for the credential store.

The key is derived from machine/identity-bound key material, not from a user
secret. It keeps cookies away from casual disk inspection; it does not protect
against an attacker who can run code as the same local user.
"""

import os
import threading
from typing import Dict, Tuple
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.backends import default_backend

from . import config


class DecryptionError(ValueError):
    """Encrypted payload is malformed or cannot be decrypted with the key."""


class CryptoManager:
    """Handles all cryptographic operations for the credential store."""

    # Constants
    KEY_SIZE = config.KEY_SIZE  # 256 bits for AES-256
    IV_SIZE = config.IV_SIZE    # 128 bits, one AES block
    BLOCK_BITS = 128

    # KDF parameters
    SCRYPT_SALT = config.SCRYPT_SALT
    SCRYPT_N = config.SCRYPT_N
    SCRYPT_R = config.SCRYPT_R
    SCRYPT_P = config.SCRYPT_P

    def __init__(self):
        """Initialize the crypto manager."""
        self.backend = default_backend()
        self._keys: Dict[str, bytes] = {}
        self._lock = threading.Lock()

    def generate_iv(self) -> bytes:
        """Generate a fresh random IV. Never reused across payloads."""
        return os.urandom(self.IV_SIZE)

    def derive_key(self, key_material: str) -> bytes:
        """
        Derive the AES-256 key from key material with scrypt and the fixed salt.

        Derivation is deliberately slow, so keys are cached per key material for
        the lifetime of this manager.

        Args:
            key_material: Identity-bound key material

        Returns:
            32-byte encryption key
        """
        with self._lock:
            key = self._keys.get(key_material)
            if key is None:
                kdf = Scrypt(
                    salt=self.SCRYPT_SALT,
                    length=self.KEY_SIZE,
                    n=self.SCRYPT_N,
                    r=self.SCRYPT_R,
                    p=self.SCRYPT_P,
                    backend=self.backend
                )
                key = kdf.derive(key_material.encode('utf-8'))
                self._keys[key_material] = key
            return key

    def encrypt(self, plaintext: bytes, key: bytes) -> Tuple[bytes, bytes]:
        """
        Encrypt data using AES-256-CBC with PKCS7 padding.

        Args:
            plaintext: Data to encrypt
            key: 32-byte encryption key

        Returns:
            Tuple of (ciphertext, iv)
        """
        iv = self.generate_iv()
        padder = padding.PKCS7(self.BLOCK_BITS).padder()
        padded = padder.update(plaintext) + padder.finalize()
        cipher = Cipher(algorithms.AES(key), modes.CBC(iv), backend=self.backend)
        encryptor = cipher.encryptor()
        ciphertext = encryptor.update(padded) + encryptor.finalize()
        return ciphertext, iv

    def decrypt(self, ciphertext: bytes, key: bytes, iv: bytes) -> bytes:
        """
        Decrypt data using AES-256-CBC and strip the PKCS7 padding.

        Raises:
            DecryptionError: If the IV or ciphertext length is wrong or the
                padding is invalid (usually a wrong key)
        """
        if len(iv) != self.IV_SIZE:
            raise DecryptionError(f"Invalid IV length: {len(iv)} bytes")
        if not ciphertext or len(ciphertext) % (self.BLOCK_BITS // 8):
            raise DecryptionError(f"Invalid ciphertext length: {len(ciphertext)} bytes")

        cipher = Cipher(algorithms.AES(key), modes.CBC(iv), backend=self.backend)
        decryptor = cipher.decryptor()
        padded = decryptor.update(ciphertext) + decryptor.finalize()
        unpadder = padding.PKCS7(self.BLOCK_BITS).unpadder()
        try:
            return unpadder.update(padded) + unpadder.finalize()
        except ValueError:
            raise DecryptionError("Bad decrypt: invalid padding") from None

    def encrypt_payload(self, plaintext: str, key_material: str) -> str:
        """Encrypt text and encode it as 'iv_hex:ciphertext_hex'."""
        key = self.derive_key(key_material)
        ciphertext, iv = self.encrypt(plaintext.encode('utf-8'), key)
        return f"{iv.hex()}:{ciphertext.hex()}"

    def decrypt_payload(self, payload: str, key_material: str) -> str:
        """
        Decrypt an 'iv_hex:ciphertext_hex' payload back to text.

        Raises:
            DecryptionError: If the payload is not two hex segments, or
                decryption or UTF-8 decoding fails
        """
        parts = payload.split(':')
        if len(parts) != 2:
            raise DecryptionError("Invalid encrypted data format: missing IV or ciphertext")
        try:
            iv = bytes.fromhex(parts[0])
            ciphertext = bytes.fromhex(parts[1])
        except ValueError:
            raise DecryptionError("Invalid encrypted data format: not hex encoded") from None

        plaintext = self.decrypt(ciphertext, self.derive_key(key_material), iv)
        try:
            return plaintext.decode('utf-8')
        except UnicodeDecodeError:
            raise DecryptionError("Decrypted data is not valid UTF-8") from None

