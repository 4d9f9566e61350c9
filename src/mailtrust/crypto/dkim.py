"""
DKIM key material for mailtrust.

Key generation and DNS record formatting for DKIM. Signing itself happens in
the external MTA; this module only produces keys and the TXT values that
publish them.
"""

import base64
import logging
from dataclasses import dataclass

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ed25519, rsa

from mailtrust.common.exceptions import EncryptionError, InvalidInputError
from mailtrust.common.models import DkimAlgorithm

logger = logging.getLogger(__name__)

RSA_KEY_SIZE = 2048


@dataclass
class DKIMKeyPair:
    """Container for a generated DKIM key pair."""

    algorithm: DkimAlgorithm
    private_key_b64: str
    public_key_b64: str


def algorithm_tag(algorithm: DkimAlgorithm | str) -> str:
    """Return the DKIM ``k=`` tag for an algorithm."""
    return "rsa" if DkimAlgorithm(algorithm) == DkimAlgorithm.RSA_2048 else "ed25519"


def generate_key_pair(algorithm: DkimAlgorithm | str = DkimAlgorithm.RSA_2048) -> DKIMKeyPair:
    """
    Generate a new key pair for DKIM signing.

    The private key is PKCS8 DER. The public key is SubjectPublicKeyInfo DER
    for RSA and the raw 32-byte key for Ed25519 (RFC 8463), both base64.

    Args:
        algorithm: RSA_2048 or ED25519.

    Returns:
        DKIMKeyPair containing the encoded keys.

    Raises:
        InvalidInputError: If the algorithm is unknown.
        EncryptionError: If key generation fails.
    """
    try:
        algorithm = DkimAlgorithm(algorithm)
    except ValueError:
        raise InvalidInputError("algorithm", algorithm, "must be RSA_2048 or ED25519")

    try:
        if algorithm == DkimAlgorithm.RSA_2048:
            private_key = rsa.generate_private_key(
                public_exponent=65537,
                key_size=RSA_KEY_SIZE,
            )
            public_der = private_key.public_key().public_bytes(
                encoding=serialization.Encoding.DER,
                format=serialization.PublicFormat.SubjectPublicKeyInfo,
            )
        else:
            private_key = ed25519.Ed25519PrivateKey.generate()
            public_der = private_key.public_key().public_bytes(
                encoding=serialization.Encoding.Raw,
                format=serialization.PublicFormat.Raw,
            )

        private_der = private_key.private_bytes(
            encoding=serialization.Encoding.DER,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
    except (ValueError, TypeError) as e:
        raise EncryptionError(f"Failed to generate DKIM key pair: {e}") from e

    logger.info("Generated new DKIM key pair (%s)", algorithm.value)

    return DKIMKeyPair(
        algorithm=algorithm,
        private_key_b64=base64.b64encode(private_der).decode("ascii"),
        public_key_b64=base64.b64encode(public_der).decode("ascii"),
    )


def build_dns_record(algorithm: DkimAlgorithm | str, public_key_b64: str) -> str:
    """Format the TXT value publishing a DKIM public key."""
    return f"v=DKIM1; k={algorithm_tag(algorithm)}; p={public_key_b64}"


def dkim_record_name(selector: str, domain: str) -> str:
    """Return ``<selector>._domainkey.<domain>``."""
    return f"{selector}._domainkey.{domain}"


def parse_dkim_tags(value: str) -> dict[str, str]:
    """
    Parse a DKIM TXT value into its tags.

    Pairs are separated by ``;`` and split at the first ``=``. Tag names are
    lower-cased; values are stripped of surrounding and embedded whitespace.
    """
    tags: dict[str, str] = {}
    for part in value.split(";"):
        if "=" not in part:
            continue
        tag, tag_value = part.split("=", 1)
        tag = tag.strip().lower()
        if tag:
            tags[tag] = "".join(tag_value.split())
    return tags
