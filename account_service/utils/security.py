"""
Security utilities for trust boundaries and input validation.

This module provides:
- Identifier validation (account id, referral code, email, address)
- Address checksum verification (mixed-case keccak checksum)
- Secret masking for logs

All validators are pure and never raise: malformed or non-string input
simply fails validation.
"""

import re
from typing import Any, Optional

from Crypto.Hash import keccak

# ====================================================================================
# INPUT PATTERNS
# ====================================================================================

UUID_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)
REF_CODE_RE = re.compile(r"^[0-9a-f]{8}$", re.IGNORECASE)
EMAIL_RE = re.compile(
    r"^(([^<>()\[\]\\.,;:\s@']+(\.[^<>()\[\]\\.,;:\s@']+)*)|('.+'))"
    r"@((\[[0-9]{1,3}\.[0-9]{1,3}\.[0-9]{1,3}\.[0-9]{1,3}\])|(([a-zA-Z\-0-9]+\.)+[a-zA-Z]{2,}))$"
)
ADDRESS_RE = re.compile(r"^(0x)?[0-9a-f]{40}$", re.IGNORECASE)
LOWER_ADDRESS_RE = re.compile(r"^(0x)?[0-9a-f]{40}$")
UPPER_ADDRESS_RE = re.compile(r"^(0x)?[0-9A-F]{40}$")


def keccak256(data: bytes) -> bytes:
    """Keccak-256 digest (the pre-standard SHA3 used for addresses)."""
    return keccak.new(digest_bits=256, data=data).digest()


def _matches(pattern: re.Pattern, value: Any) -> bool:
    return isinstance(value, str) and pattern.match(value) is not None


def is_uuid_v4(value: Any) -> bool:
    """Check account id shape (UUID, version nibble 1-5, RFC 4122 variant)."""
    return _matches(UUID_RE, value)


def is_ref_code(value: Any) -> bool:
    """Check referral code shape: exactly 8 hex digits."""
    return _matches(REF_CODE_RE, value)


def is_email(value: Any) -> bool:
    """Check email shape. Not a full RFC 5322 parser."""
    return _matches(EMAIL_RE, value)


def is_checksum_address(address: str) -> bool:
    """
    Check the mixed-case checksum of an address.

    The n-th letter must be uppercase if the n-th hex digit of
    keccak256(lowercased address) is greater than 7, lowercase otherwise.

    Args:
        address: 40 hex digits, optionally prefixed with 0x

    Returns:
        True if every position has the expected case
    """
    if address.startswith("0x"):
        address = address[2:]
    address_hash = keccak256(address.lower().encode("ascii")).hex()
    for i in range(40):
        nibble = int(address_hash[i], 16)
        if nibble > 7 and address[i].upper() != address[i]:
            return False
        if nibble <= 7 and address[i].lower() != address[i]:
            return False
    return True


def is_address(value: Any) -> bool:
    """
    Check if the given string is an address.

    All-lowercase and all-uppercase addresses are accepted as is,
    mixed case has to carry a valid checksum.
    """
    if not _matches(ADDRESS_RE, value):
        return False
    if LOWER_ADDRESS_RE.match(value) or UPPER_ADDRESS_RE.match(value):
        return True
    return is_checksum_address(value)


# ====================================================================================
# SECRET & CONFIG SAFETY
# ====================================================================================

def mask_secret(secret: Optional[str], visible_chars: int = 4) -> str:
    """
    Mask secret in logs.

    Args:
        secret: Secret to mask (private key, receipt, api key)
        visible_chars: Number of characters to show at the end

    Returns:
        Masked secret (e.g., "****abcd")
    """
    if not secret:
        return "****"

    if len(secret) <= visible_chars:
        return "****"

    return "*" * (len(secret) - visible_chars) + secret[-visible_chars:]
