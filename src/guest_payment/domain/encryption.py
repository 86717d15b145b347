"""Token codec: AES-GCM encryption and keyed hashing of guest payment tokens.

The raw token is a 256-bit random value rendered as 64 hex characters. It is
stored on the order only in encrypted form (IV prepended, base64) together
with an HMAC-SHA256 lookup hash. The hash is an index, never proof of
possession; authenticity is established by decrypting and comparing.

Two independent sub-keys are derived from the configured master key with
HKDF, one for the cipher and one for the lookup hash.
"""

import base64
import binascii
import hashlib
import hmac
import os
import secrets
from typing import NamedTuple

import structlog
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from guest_payment.config import Settings
from guest_payment.domain.exceptions import ConfigurationError

logger = structlog.get_logger(__name__)

RAW_TOKEN_BYTES = 32

# Supported cipher methods and their IV lengths
CIPHER_IV_LENGTHS = {"AES-256-GCM": 12}


class EncryptionError(Exception):
    """Base exception for encryption-related errors."""

    pass


class DecryptionError(Exception):
    """Exception raised when decryption fails."""

    pass


class EncryptedData(NamedTuple):
    """Container for encrypted data and associated metadata."""

    ciphertext: bytes
    nonce: bytes


def derive_subkey(master_key: bytes, purpose: str) -> bytes:
    """Derive a purpose-bound 32 byte key from the master key using HKDF.

    Args:
        master_key: 32 byte master key from configuration
        purpose: Label separating key uses (e.g. "cipher", "lookup")

    Returns:
        32-byte derived key

    Raises:
        ValueError: If master_key is not 32 bytes or purpose is empty
    """
    if len(master_key) != 32:
        raise ValueError(f"Master key must be 32 bytes, got {len(master_key)}")

    if not purpose:
        raise ValueError("purpose cannot be empty")

    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=32,
        salt=None,
        info=b"guest-payment-v1:" + purpose.encode("utf-8"),
    )
    return hkdf.derive(master_key)


def encrypt_with_key(plaintext: bytes, key: bytes, nonce_length: int = 12) -> EncryptedData:
    """Encrypt data using AES-256-GCM with a fresh random nonce.

    Args:
        plaintext: Data to encrypt
        key: 32-byte AES-256 encryption key
        nonce_length: IV length in bytes

    Returns:
        EncryptedData containing ciphertext (with tag) and nonce

    Raises:
        ValueError: If key is not 32 bytes or plaintext is empty
        EncryptionError: If encryption fails
    """
    if len(key) != 32:
        raise ValueError(f"Encryption key must be 32 bytes, got {len(key)}")

    if not plaintext:
        raise ValueError("Plaintext cannot be empty")

    try:
        nonce = os.urandom(nonce_length)
        ciphertext = AESGCM(key).encrypt(nonce, plaintext, associated_data=None)
        return EncryptedData(ciphertext=ciphertext, nonce=nonce)

    except Exception as e:
        logger.error("encryption_failed", error_type=type(e).__name__)
        raise EncryptionError(f"Failed to encrypt data: {type(e).__name__}") from e


def decrypt_with_key(encrypted_data: EncryptedData, key: bytes) -> bytes:
    """Decrypt AES-256-GCM encrypted data.

    Args:
        encrypted_data: EncryptedData containing ciphertext and nonce
        key: 32-byte AES-256 decryption key

    Returns:
        Decrypted plaintext bytes

    Raises:
        ValueError: If key is not 32 bytes or ciphertext is empty
        DecryptionError: If decryption or authentication fails
    """
    if len(key) != 32:
        raise ValueError(f"Decryption key must be 32 bytes, got {len(key)}")

    if not encrypted_data.ciphertext:
        raise ValueError("Ciphertext cannot be empty")

    try:
        return AESGCM(key).decrypt(encrypted_data.nonce, encrypted_data.ciphertext, associated_data=None)

    except Exception as e:
        # Don't expose detailed error messages
        logger.warning("decryption_failed", error_type=type(e).__name__)
        raise DecryptionError("Failed to decrypt data - invalid key or corrupted data") from e


def generate_raw_token() -> str:
    """Generate a new raw token: 256 random bits as 64 lowercase hex characters."""
    return secrets.token_hex(RAW_TOKEN_BYTES)


def parse_master_key(value: str) -> bytes:
    """Decode the hex master key from configuration.

    Raises:
        ConfigurationError: If the key is missing, not hex, or not 32 bytes
    """
    if not value:
        logger.error("encryption_key_missing")
        raise ConfigurationError("Guest payment encryption key is not configured")

    try:
        key = bytes.fromhex(value.strip())
    except ValueError as e:
        logger.error("encryption_key_malformed")
        raise ConfigurationError("Guest payment encryption key must be hex encoded") from e

    if len(key) != 32:
        logger.error("encryption_key_wrong_length", length=len(key))
        raise ConfigurationError(f"Guest payment encryption key must be 32 bytes, got {len(key)}")

    return key


class TokenCodec:
    """Symmetric encrypt/decrypt and keyed hash of raw tokens.

    ``encrypt`` and ``decrypt`` never raise; failure is reported as ``None``.
    """

    def __init__(self, master_key: bytes, method: str = "AES-256-GCM"):
        """Initialize codec from a master key.

        Args:
            master_key: 32 byte master key
            method: Cipher method name

        Raises:
            ConfigurationError: If the method is unsupported or the key unusable
        """
        if method not in CIPHER_IV_LENGTHS:
            logger.error("cipher_method_unsupported", method=method)
            raise ConfigurationError(f"Unsupported cipher method: {method or '(empty)'}")

        try:
            self._cipher_key = derive_subkey(master_key, "cipher")
            self._lookup_key = derive_subkey(master_key, "lookup")
        except ValueError as e:
            logger.error("encryption_key_invalid", error=str(e))
            raise ConfigurationError(str(e)) from e

        self.method = method
        self.iv_length = CIPHER_IV_LENGTHS[method]

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenCodec":
        """Build a codec from application settings."""
        return cls(parse_master_key(settings.encryption_key), settings.encryption_method)

    def encrypt(self, plaintext: str) -> str | None:
        """Encrypt a value, returning base64(iv || ciphertext) or None on failure."""
        try:
            encrypted = encrypt_with_key(plaintext.encode("utf-8"), self._cipher_key, self.iv_length)
        except (ValueError, EncryptionError):
            return None
        return base64.b64encode(encrypted.nonce + encrypted.ciphertext).decode("ascii")

    def decrypt(self, value: str) -> str | None:
        """Decrypt a value produced by :meth:`encrypt`.

        Returns None for malformed base64, payloads not longer than one IV,
        and any authentication or cipher failure.
        """
        if not value:
            return None

        try:
            raw = base64.b64decode(value, validate=True)
        except (binascii.Error, ValueError):
            logger.warning("decryption_rejected", reason="malformed_base64")
            return None

        if len(raw) <= self.iv_length:
            logger.warning("decryption_rejected", reason="too_short")
            return None

        encrypted = EncryptedData(ciphertext=raw[self.iv_length:], nonce=raw[: self.iv_length])
        try:
            plaintext = decrypt_with_key(encrypted, self._cipher_key)
        except (ValueError, DecryptionError):
            return None

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError:
            return None

    def keyed_hash(self, value: str) -> str:
        """Return the hex HMAC-SHA256 of a value under the lookup key."""
        return hmac.new(self._lookup_key, value.encode("utf-8"), hashlib.sha256).hexdigest()
