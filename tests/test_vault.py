"""Unit tests for the credential vault."""

from typing import Any

import pytest

from src.credentials.vault import CredentialVault
from src.errors import DecryptionFailedError, MalformedCiphertextError


class TestRoundTrip:
    @pytest.mark.parametrize(
        "plaintext",
        ["ghp_abcdef123456", "", "ünïcødé ✓ 令牌", "x" * 1000, "exactly16bytes!!"],
    )
    def test_decrypt_inverts_encrypt(self, vault: CredentialVault, plaintext: str) -> None:
        assert vault.decrypt(vault.encrypt(plaintext)) == plaintext

    def test_encrypt_is_non_deterministic(self, vault: CredentialVault) -> None:
        assert vault.encrypt("same-token") != vault.encrypt("same-token")

    def test_ciphertext_format(self, vault: CredentialVault) -> None:
        iv_hex, sep, body_hex = vault.encrypt("token").partition(":")
        assert sep == ":"
        assert len(bytes.fromhex(iv_hex)) == 16
        assert len(bytes.fromhex(body_hex)) % 16 == 0


class TestMalformedCiphertext:
    def test_missing_separator(self, vault: CredentialVault) -> None:
        with pytest.raises(MalformedCiphertextError):
            vault.decrypt("deadbeef")

    def test_invalid_hex(self, vault: CredentialVault) -> None:
        with pytest.raises(MalformedCiphertextError):
            vault.decrypt("zz" * 16 + ":" + "00" * 16)

    def test_short_iv(self, vault: CredentialVault) -> None:
        with pytest.raises(MalformedCiphertextError):
            vault.decrypt("00" * 8 + ":" + "00" * 16)

    def test_empty_body(self, vault: CredentialVault) -> None:
        with pytest.raises(MalformedCiphertextError):
            vault.decrypt("00" * 16 + ":")

    def test_partial_block(self, vault: CredentialVault) -> None:
        with pytest.raises(MalformedCiphertextError):
            vault.decrypt("00" * 16 + ":" + "00" * 10)


class TestDecryptionFailed:
    def test_wrong_key(self, vault: CredentialVault) -> None:
        ciphertext = vault.encrypt("a reasonably long secret token value")
        other = CredentialVault(bytes(range(32)))
        with pytest.raises(DecryptionFailedError):
            other.decrypt(ciphertext)


class TestConstruction:
    def test_rejects_short_key(self) -> None:
        with pytest.raises(ValueError, match="32 bytes"):
            CredentialVault(b"too-short")

    def test_rejects_non_hex_key(self) -> None:
        with pytest.raises(ValueError, match="hex"):
            CredentialVault.from_hex("not-hex" * 10)

    def test_from_settings_requires_key(self, mock_settings: Any) -> None:
        mock_settings.encryption_key = ""
        with pytest.raises(ValueError, match="ENCRYPTION_KEY"):
            CredentialVault.from_settings(mock_settings)

    def test_from_settings(self, mock_settings: Any) -> None:
        vault = CredentialVault.from_settings(mock_settings)
        assert vault.decrypt(vault.encrypt("ok")) == "ok"
