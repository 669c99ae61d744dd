"""
CredentialVault tests.

Envelope format, lenient open for legacy and tampered values, and the
placeholder convention used by credential updates.
"""

import base64
import os

import pytest
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from fiscal_kernel.services.credential_vault import PLACEHOLDER_CHAR, CredentialVault

KEY = b"vault-test-master-key-abcdefghijklmnop"


@pytest.fixture
def vault():
    return CredentialVault(KEY)


class TestSealOpen:
    @pytest.mark.parametrize(
        "plaintext",
        ["token-123", "ñandutí áéí", "x", "a:b:c:d", "-----BEGIN CERT-----\nMIIB\n"],
    )
    def test_open_returns_sealed_plaintext(self, vault, plaintext):
        assert vault.open(vault.seal(plaintext)) == plaintext

    def test_same_plaintext_seals_differently(self, vault):
        assert vault.seal("secret") != vault.seal("secret")

    @pytest.mark.parametrize("blank", ["", "   ", "\t\n"])
    def test_blank_values_pass_through(self, vault, blank):
        assert vault.seal(blank) == blank
        assert vault.open(blank) == blank

    def test_none_passes_through(self, vault):
        assert vault.seal(None) is None
        assert vault.open(None) is None

    def test_envelope_has_four_base64_segments(self, vault):
        envelope = vault.seal("secret")
        salt, iv, tag, ciphertext = (base64.b64decode(p) for p in envelope.split(":"))

        assert len(salt) == 32
        assert len(iv) == 16
        assert len(tag) == 16
        assert len(ciphertext) == len("secret")

    def test_opens_envelope_built_from_the_documented_format(self, vault):
        """salt:iv:tag:ciphertext, PBKDF2-SHA256 10000, AES-256-GCM, AAD dnit-config."""
        salt, iv = os.urandom(32), os.urandom(16)
        key = PBKDF2HMAC(
            algorithm=hashes.SHA256(), length=32, salt=salt, iterations=10000
        ).derive(KEY[:32])
        sealed = AESGCM(key).encrypt(iv, b"legacy-token", b"dnit-config")
        ciphertext, tag = sealed[:-16], sealed[-16:]
        envelope = ":".join(
            base64.b64encode(p).decode() for p in (salt, iv, tag, ciphertext)
        )

        assert vault.open(envelope) == "legacy-token"


class TestLenientOpen:
    @pytest.mark.parametrize(
        "value",
        ["plain-legacy-token", "a:b", "a:b:c", "a:b:c:d:e", "https://host:443/path"],
    )
    def test_non_envelope_returned_unchanged(self, vault, value):
        assert vault.open(value) == value

    def test_tampered_ciphertext_returned_unchanged(self, vault, captured_logs):
        parts = vault.seal("secret").split(":")
        raw = bytearray(base64.b64decode(parts[3]))
        raw[0] ^= 0xFF
        parts[3] = base64.b64encode(bytes(raw)).decode()
        tampered = ":".join(parts)

        assert vault.open(tampered) == tampered
        failures = [r for r in captured_logs() if r["message"] == "credential_decrypt_failed"]
        assert len(failures) == 1
        assert failures[0]["error_type"] == "InvalidTag"
        assert "secret" not in str(failures[0])

    def test_wrong_key_returned_unchanged(self, vault):
        envelope = vault.seal("secret")
        other = CredentialVault(b"another-master-key-0123456789abcdef")

        assert other.open(envelope) == envelope

    def test_bad_base64_returned_unchanged(self, vault):
        value = "!!!:@@@:###:$$$"
        assert vault.open(value) == value


class TestShapeAndPlaceholder:
    def test_is_sealed(self, vault):
        assert vault.is_sealed(vault.seal("secret"))
        assert not vault.is_sealed("plain")
        assert not vault.is_sealed("")
        assert not vault.is_sealed(None)
        assert not vault.is_sealed("!!!:@@@:###:$$$")

    def test_mask_placeholder(self, vault):
        assert vault.mask_placeholder() == PLACEHOLDER_CHAR * 8
        assert vault.mask_placeholder(3) == PLACEHOLDER_CHAR * 3

    def test_is_placeholder(self):
        assert CredentialVault.is_placeholder("••••••••")
        assert CredentialVault.is_placeholder("•")
        assert not CredentialVault.is_placeholder("")
        assert not CredentialVault.is_placeholder(None)
        assert not CredentialVault.is_placeholder("••x••")


class TestKey:
    def test_short_key_rejected(self):
        with pytest.raises(ValueError):
            CredentialVault(b"too-short")

    def test_key_truncated_to_32_bytes(self):
        a = CredentialVault(KEY[:32] + b"tail-one")
        b = CredentialVault(KEY[:32] + b"tail-two-different")

        assert b.open(a.seal("secret")) == "secret"

    def test_insecure_default_flag(self):
        assert not CredentialVault(KEY).uses_insecure_default
        assert CredentialVault(KEY, insecure_default=True).uses_insecure_default

    @pytest.mark.parametrize("iterations", [1, 9999])
    def test_weak_kdf_rejected(self, iterations):
        with pytest.raises(ValueError, match="kdf_iterations"):
            CredentialVault(KEY, kdf_iterations=iterations)

    @pytest.mark.parametrize("iv_bytes", [0, 7, 129])
    def test_unsupported_iv_length_rejected(self, iv_bytes):
        with pytest.raises(ValueError, match="iv_bytes"):
            CredentialVault(KEY, iv_bytes=iv_bytes)

    def test_nonce_bounds_seal(self):
        for iv_bytes in (8, 12, 128):
            vault = CredentialVault(KEY, iv_bytes=iv_bytes)

            assert vault.open(vault.seal("secret")) == "secret"
