"""Unit tests for the token codec and key derivation."""

import base64
import os
import re

import pytest

from guest_payment.config import Settings
from guest_payment.domain.encryption import (
    DecryptionError,
    EncryptedData,
    TokenCodec,
    decrypt_with_key,
    derive_subkey,
    encrypt_with_key,
    generate_raw_token,
    parse_master_key,
)
from guest_payment.domain.exceptions import ConfigurationError


class TestDeriveSubkey:
    """Tests for HKDF-based sub-key derivation."""

    def test_derive_subkey_produces_32_bytes(self) -> None:
        """Test that derived key is 32 bytes (AES-256)."""
        assert len(derive_subkey(os.urandom(32), "cipher")) == 32

    def test_derive_subkey_is_deterministic(self) -> None:
        """Test that same inputs produce same output."""
        master = os.urandom(32)

        assert derive_subkey(master, "cipher") == derive_subkey(master, "cipher")

    def test_purposes_produce_independent_keys(self) -> None:
        """Test that the cipher and lookup keys differ."""
        master = os.urandom(32)

        assert derive_subkey(master, "cipher") != derive_subkey(master, "lookup")

    def test_wrong_master_key_length_raises_error(self) -> None:
        with pytest.raises(ValueError, match="Master key must be 32 bytes"):
            derive_subkey(os.urandom(16), "cipher")

    def test_empty_purpose_raises_error(self) -> None:
        with pytest.raises(ValueError, match="purpose cannot be empty"):
            derive_subkey(os.urandom(32), "")


class TestEncryptWithKey:
    """Tests for the AES-256-GCM primitives."""

    def test_encrypt_decrypt_round_trip(self) -> None:
        key = os.urandom(32)

        encrypted = encrypt_with_key(b"secret", key)

        assert len(encrypted.nonce) == 12
        assert decrypt_with_key(encrypted, key) == b"secret"

    def test_decrypt_with_wrong_key_fails(self) -> None:
        """Test that authentication fails under a different key."""
        encrypted = encrypt_with_key(b"secret", os.urandom(32))

        with pytest.raises(DecryptionError):
            decrypt_with_key(encrypted, os.urandom(32))

    def test_tampered_ciphertext_fails(self) -> None:
        key = os.urandom(32)
        encrypted = encrypt_with_key(b"secret", key)
        tampered = EncryptedData(
            ciphertext=bytes([encrypted.ciphertext[0] ^ 0x01]) + encrypted.ciphertext[1:],
            nonce=encrypted.nonce,
        )

        with pytest.raises(DecryptionError):
            decrypt_with_key(tampered, key)

    def test_empty_plaintext_raises_error(self) -> None:
        with pytest.raises(ValueError, match="Plaintext cannot be empty"):
            encrypt_with_key(b"", os.urandom(32))


class TestParseMasterKey:
    def test_valid_hex_key(self) -> None:
        key = os.urandom(32)

        assert parse_master_key(key.hex()) == key

    def test_missing_key_raises_configuration_error(self) -> None:
        with pytest.raises(ConfigurationError, match="not configured"):
            parse_master_key("")

    def test_non_hex_key_raises_configuration_error(self) -> None:
        with pytest.raises(ConfigurationError, match="hex encoded"):
            parse_master_key("not-a-hex-key")

    def test_short_key_raises_configuration_error(self) -> None:
        with pytest.raises(ConfigurationError, match="32 bytes"):
            parse_master_key(os.urandom(16).hex())


class TestTokenCodec:
    """Tests for the token codec used on stored order tokens."""

    @pytest.fixture
    def token_codec(self) -> TokenCodec:
        return TokenCodec(os.urandom(32))

    def test_encrypt_decrypt_round_trip(self, token_codec: TokenCodec) -> None:
        raw_token = generate_raw_token()

        encrypted = token_codec.encrypt(raw_token)

        assert encrypted is not None
        assert raw_token not in encrypted
        assert token_codec.decrypt(encrypted) == raw_token

    def test_stored_value_is_iv_then_ciphertext(self, token_codec: TokenCodec) -> None:
        """Test that the stored value is base64 of a 12 byte IV followed by ciphertext and tag."""
        raw = base64.b64decode(token_codec.encrypt("a" * 64))

        # 12 byte IV + 64 byte plaintext + 16 byte tag
        assert len(raw) == 12 + 64 + 16

    def test_encrypt_uses_fresh_iv(self, token_codec: TokenCodec) -> None:
        assert token_codec.encrypt("value") != token_codec.encrypt("value")

    def test_encrypt_empty_value_returns_none(self, token_codec: TokenCodec) -> None:
        assert token_codec.encrypt("") is None

    def test_decrypt_malformed_base64_returns_none(self, token_codec: TokenCodec) -> None:
        assert token_codec.decrypt("%%% not base64 %%%") is None

    def test_decrypt_payload_not_longer_than_iv_returns_none(self, token_codec: TokenCodec) -> None:
        assert token_codec.decrypt(base64.b64encode(os.urandom(12)).decode()) is None

    def test_decrypt_under_other_key_returns_none(self, token_codec: TokenCodec) -> None:
        other = TokenCodec(os.urandom(32))

        assert other.decrypt(token_codec.encrypt("value")) is None

    def test_decrypt_empty_returns_none(self, token_codec: TokenCodec) -> None:
        assert token_codec.decrypt("") is None

    def test_keyed_hash_is_deterministic_hex(self, token_codec: TokenCodec) -> None:
        digest = token_codec.keyed_hash("value")

        assert digest == token_codec.keyed_hash("value")
        assert re.fullmatch(r"[0-9a-f]{64}", digest)

    def test_keyed_hash_depends_on_key(self, token_codec: TokenCodec) -> None:
        other = TokenCodec(os.urandom(32))

        assert token_codec.keyed_hash("value") != other.keyed_hash("value")

    def test_unsupported_method_raises_configuration_error(self) -> None:
        with pytest.raises(ConfigurationError, match="Unsupported cipher method"):
            TokenCodec(os.urandom(32), method="DES-CBC")

    def test_from_settings_without_key_raises_configuration_error(self) -> None:
        with pytest.raises(ConfigurationError):
            TokenCodec.from_settings(Settings(encryption_key=""))

    def test_from_settings(self, settings: Settings) -> None:
        codec = TokenCodec.from_settings(settings)

        assert codec.method == "AES-256-GCM"
        assert codec.iv_length == 12


class TestGenerateRawToken:
    def test_raw_token_is_64_lowercase_hex(self) -> None:
        assert re.fullmatch(r"[0-9a-f]{64}", generate_raw_token())

    def test_raw_tokens_are_unique(self) -> None:
        assert len({generate_raw_token() for _ in range(50)}) == 50
