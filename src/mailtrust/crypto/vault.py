"""
Secret vault for mailtrust.

Envelope encryption of provider credentials and DKIM private keys using
AES-256-GCM. Envelopes are self-describing::

    v1.<base64url(iv)>.<base64url(ciphertext || tag)>

with unpadded base64url segments. Every call to ``encrypt`` draws a fresh
96-bit IV.
"""

import base64
import binascii
import json
import logging
import os
import re
from typing import Any, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from mailtrust.common.exceptions import (
    EncryptionError,
    InvalidEnvelopeError,
    KeyConfigurationError,
    MissingConfigError,
)

logger = logging.getLogger(__name__)

ENVELOPE_VERSION = "v1"
KEY_LENGTH = 32
IV_LENGTH = 12

_HEX_KEY_RE = re.compile(r"^[0-9a-fA-F]{64}$")
_B64URL_RE = re.compile(r"^[A-Za-z0-9_-]*$")


def _b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _b64url_decode(data: str) -> bytes:
    """Decode unpadded base64url, accepting only the canonical encoding."""
    if not _B64URL_RE.match(data):
        raise ValueError("segment contains characters outside the base64url alphabet")
    padded = data + "=" * (-len(data) % 4)
    decoded = base64.urlsafe_b64decode(padded.encode("ascii"))
    if _b64url_encode(decoded) != data:
        raise ValueError("segment is not canonical base64url")
    return decoded


def _b64_decode_key(value: str) -> bytes:
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as e:
        raise KeyConfigurationError(
            "Encryption key must be 32-byte raw text, base64, base64:<value>, or 64-char hex"
        ) from e


def normalize_key(value: str) -> bytes:
    """
    Turn configured key material into a 32-byte AES key.

    Accepted forms, tried in order: ``base64:<value>``, 64 hex characters,
    32 bytes of UTF-8 text, bare base64.

    Raises:
        KeyConfigurationError: If the value does not resolve to 32 bytes.
    """
    if not isinstance(value, str) or not value.strip():
        raise KeyConfigurationError("Encryption key is empty")
    value = value.strip()

    if value.startswith("base64:"):
        key = _b64_decode_key(value[len("base64:"):])
    elif _HEX_KEY_RE.match(value):
        key = bytes.fromhex(value)
    elif len(value.encode("utf-8")) == KEY_LENGTH:
        key = value.encode("utf-8")
    else:
        key = _b64_decode_key(value)

    if len(key) != KEY_LENGTH:
        raise KeyConfigurationError(
            f"Encryption key must resolve to exactly {KEY_LENGTH} bytes, got {len(key)}"
        )
    return key


def generate_key() -> str:
    """Return a new random key in ``base64:`` form."""
    return "base64:" + base64.b64encode(os.urandom(KEY_LENGTH)).decode("ascii")


class SecretVault:
    """AES-256-GCM envelope encryption with a key fixed at construction."""

    def __init__(self, key_material: str) -> None:
        self._aead = AESGCM(normalize_key(key_material))

    @classmethod
    def from_settings(cls, settings: Any) -> "SecretVault":
        """
        Build a vault from a Settings instance.

        Raises:
            MissingConfigError: If no encryption key is configured.
            KeyConfigurationError: If the key is malformed.
        """
        key: Optional[str] = settings.encryption.key
        if not key:
            raise MissingConfigError("MAILTRUST_ENCRYPTION_KEY")
        return cls(key)

    def encrypt(self, plaintext: str) -> str:
        """Encrypt text into a v1 envelope."""
        if plaintext is None:
            raise EncryptionError("Plaintext cannot be None")
        iv = os.urandom(IV_LENGTH)
        sealed = self._aead.encrypt(iv, plaintext.encode("utf-8"), None)
        return f"{ENVELOPE_VERSION}.{_b64url_encode(iv)}.{_b64url_encode(sealed)}"

    def decrypt(self, envelope: str) -> str:
        """
        Decrypt a v1 envelope.

        Raises:
            InvalidEnvelopeError: If the envelope is malformed, of an unknown
                version, or fails authentication.
        """
        if not isinstance(envelope, str) or not envelope.strip():
            raise InvalidEnvelopeError("Encrypted value cannot be blank")

        parts = envelope.split(".")
        if len(parts) != 3:
            raise InvalidEnvelopeError("Encrypted value has invalid format")
        version, iv_part, sealed_part = parts
        if version != ENVELOPE_VERSION:
            raise InvalidEnvelopeError(f"Unsupported envelope version: {version}")

        try:
            iv = _b64url_decode(iv_part)
            sealed = _b64url_decode(sealed_part)
        except (binascii.Error, ValueError) as e:
            raise InvalidEnvelopeError("Envelope is not valid base64url") from e

        if len(iv) != IV_LENGTH:
            raise InvalidEnvelopeError(f"IV must be {IV_LENGTH} bytes, got {len(iv)}")
        if len(sealed) < 16:
            raise InvalidEnvelopeError("Ciphertext is truncated")

        try:
            plaintext = self._aead.decrypt(iv, sealed, None)
        except InvalidTag as e:
            raise InvalidEnvelopeError("Envelope failed integrity check") from e

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as e:
            raise InvalidEnvelopeError("Decrypted payload is not UTF-8") from e

    def encrypt_json(self, data: dict[str, Any]) -> str:
        """Serialize a mapping to JSON and encrypt it."""
        return self.encrypt(json.dumps(data, sort_keys=True))

    def decrypt_json(self, envelope: str) -> dict[str, Any]:
        """Decrypt an envelope holding a JSON object."""
        plaintext = self.decrypt(envelope)
        try:
            data = json.loads(plaintext)
        except json.JSONDecodeError as e:
            raise InvalidEnvelopeError("Decrypted payload is not JSON") from e
        if not isinstance(data, dict):
            raise InvalidEnvelopeError("Decrypted payload is not a JSON object")
        return data
