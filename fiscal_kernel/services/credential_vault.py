"""
CredentialVault -- authenticated encryption of integration secrets at rest.

Responsibility:
    Seals secrets (auth tokens, certificate blobs and passwords) before they
    reach storage and opens them when the kernel needs the plaintext.  Also
    owns the display placeholder used by update requests to mean "keep the
    stored secret".

Architecture position:
    Kernel > Services -- stateless, CPU-bound, safe to call concurrently.

Envelope format:
    ``base64(salt):base64(iv):base64(tag):base64(ciphertext)``
    AES-256-GCM, key derived per envelope with PBKDF2-HMAC-SHA256 from the
    master key and a random salt, fixed associated data binding the
    envelope to its context.

Invariants enforced:
    - Empty or whitespace-only input is returned unchanged by both seal
      and open.
    - ``open`` on anything that does not split into exactly four segments
      returns the input unchanged (records written before encryption).
    - Authentication failure during ``open`` is logged and the stored
      value is returned unchanged.  It never raises.
    - Plaintext and key material are never logged.

Failure modes:
    - ValueError from the constructor when the key or the KDF and nonce
      parameters are out of range.
    - None raised by ``open``.  ``seal`` propagates only programming errors.
"""

import base64
import binascii
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from fiscal_kernel.logging_config import get_logger

logger = get_logger("services.credential_vault")

KEY_LENGTH = 32
TAG_LENGTH = 16
MIN_KDF_ITERATIONS = 10000
MIN_IV_BYTES = 8
MAX_IV_BYTES = 128
PLACEHOLDER_CHAR = "•"  # bullet


class CredentialVault:
    """
    Seal / open secrets with a master key.

    Contract:
        ``open(seal(p)) == p`` for every non-blank ``p`` under the same
        master key.

    Guarantees:
        - A fresh random salt and IV per ``seal`` call, so sealing the same
          plaintext twice yields different envelopes.
        - ``uses_insecure_default`` reports whether the master key is the
          built-in development key, so operators can detect it at startup.
    """

    def __init__(
        self,
        master_key: bytes,
        *,
        insecure_default: bool = False,
        kdf_iterations: int = 10000,
        salt_bytes: int = 32,
        iv_bytes: int = 16,
        associated_data: bytes = b"dnit-config",
        placeholder_length: int = 8,
    ):
        if len(master_key) < KEY_LENGTH:
            raise ValueError(f"master key must be at least {KEY_LENGTH} bytes")
        if kdf_iterations < MIN_KDF_ITERATIONS:
            raise ValueError(f"kdf_iterations must be at least {MIN_KDF_ITERATIONS}")
        if not MIN_IV_BYTES <= iv_bytes <= MAX_IV_BYTES:
            raise ValueError(f"iv_bytes must be between {MIN_IV_BYTES} and {MAX_IV_BYTES}")
        self._master_key = master_key[:KEY_LENGTH]
        self._insecure_default = insecure_default
        self._kdf_iterations = kdf_iterations
        self._salt_bytes = salt_bytes
        self._iv_bytes = iv_bytes
        self._associated_data = associated_data
        self._placeholder_length = placeholder_length

    @property
    def uses_insecure_default(self) -> bool:
        return self._insecure_default

    def _derive_key(self, salt: bytes) -> bytes:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=KEY_LENGTH,
            salt=salt,
            iterations=self._kdf_iterations,
        )
        return kdf.derive(self._master_key)

    def seal(self, plaintext: str) -> str:
        """Encrypt ``plaintext`` into a four-segment envelope."""
        if not plaintext or plaintext.strip() == "":
            return plaintext

        salt = os.urandom(self._salt_bytes)
        iv = os.urandom(self._iv_bytes)
        sealed = AESGCM(self._derive_key(salt)).encrypt(
            iv, plaintext.encode("utf-8"), self._associated_data
        )
        # cryptography appends the tag to the ciphertext.
        ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]

        return ":".join(
            base64.b64encode(part).decode("ascii") for part in (salt, iv, tag, ciphertext)
        )

    def open(self, envelope: str) -> str:
        """
        Decrypt an envelope produced by ``seal``.

        Values that are blank or not envelope-shaped are returned as-is.  A
        tampered envelope, or one sealed under a different key, is logged
        and returned as-is.
        """
        if not envelope or envelope.strip() == "":
            return envelope

        parts = envelope.split(":")
        if len(parts) != 4:
            return envelope

        try:
            salt, iv, tag, ciphertext = (
                base64.b64decode(part, validate=True) for part in parts
            )
            plaintext = AESGCM(self._derive_key(salt)).decrypt(
                iv, ciphertext + tag, self._associated_data
            )
            return plaintext.decode("utf-8")
        except (InvalidTag, binascii.Error, ValueError) as exc:
            logger.error(
                "credential_decrypt_failed",
                extra={"error_type": type(exc).__name__},
            )
            return envelope

    def is_sealed(self, value: str | None) -> bool:
        """Whether ``value`` has the envelope shape with decodable segments."""
        if not value or value.strip() == "":
            return False
        parts = value.split(":")
        if len(parts) != 4:
            return False
        try:
            for part in parts:
                base64.b64decode(part, validate=True)
        except binascii.Error:
            return False
        return True

    def mask_placeholder(self, length: int | None = None) -> str:
        return PLACEHOLDER_CHAR * (length or self._placeholder_length)

    @staticmethod
    def is_placeholder(value: str | None) -> bool:
        """A non-empty run of bullet characters means "unchanged"."""
        return bool(value) and all(ch == PLACEHOLDER_CHAR for ch in value)
