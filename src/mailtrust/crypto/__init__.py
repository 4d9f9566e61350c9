"""Cryptography for mailtrust: secret vault and DKIM key material."""

from .dkim import (
    DKIMKeyPair,
    algorithm_tag,
    build_dns_record,
    dkim_record_name,
    generate_key_pair,
    parse_dkim_tags,
)
from .vault import SecretVault, generate_key, normalize_key

__all__ = [
    "DKIMKeyPair",
    "SecretVault",
    "algorithm_tag",
    "build_dns_record",
    "dkim_record_name",
    "generate_key",
    "generate_key_pair",
    "normalize_key",
    "parse_dkim_tags",
]
