"""
Receipt codec.

A receipt is a compact signed assertion used as a bearer credential for a
single operation type. Wire format:

    <body>.<signature>        (both base64url, no padding)

body:
    1 byte   type tag
    4 bytes  creation time, unix seconds, big-endian
    ...      type-specific fields

    CREATE_CONF  16 bytes account id
    RESET_CONF   16 bytes account id + 20 bytes wallet address
    UNLOCK       20 bytes target (proxy) address + 20 bytes new owner

signature:
    65 bytes recoverable secp256k1 signature (r || s || recid) over
    keccak256(body). The signer address is recovered from it, receipts
    are never re-signed.
"""

import base64
import binascii
import re
import struct
import time
import uuid
from dataclasses import dataclass
from enum import IntEnum
from typing import Optional

from coincurve import PrivateKey, PublicKey

from account_service.core.exceptions import ReceiptError, ReceiptSigningError
from account_service.utils.security import keccak256

_HEADER = struct.Struct(">BI")
_SIGNATURE_LENGTH = 65
_B64URL_RE = re.compile(r"^[A-Za-z0-9_-]+$")


class ReceiptType(IntEnum):
    """Operation a receipt authorizes"""
    CREATE_CONF = 1  # email confirmation / first wallet binding
    RESET_CONF = 2  # wallet reset
    UNLOCK = 3  # proxy owner change


# Fixed body length (after the header) per type
_FIELD_LENGTHS = {
    ReceiptType.CREATE_CONF: 16,
    ReceiptType.RESET_CONF: 16 + 20,
    ReceiptType.UNLOCK: 20 + 20,
}


@dataclass(frozen=True)
class Receipt:
    """Decoded receipt"""
    type: ReceiptType
    created: int  # unix seconds
    signer: str  # 0x-prefixed lowercase address
    account_id: Optional[str] = None
    address: Optional[str] = None
    target: Optional[str] = None
    new_owner: Optional[str] = None

    @classmethod
    def parse(cls, text: str) -> "Receipt":
        """
        Decode a receipt and recover its signer.

        Raises:
            ReceiptError: on any malformation or unrecoverable signature
        """
        if not isinstance(text, str) or text.count(".") != 1:
            raise ReceiptError("receipt must have exactly two parts")
        body_part, sig_part = text.split(".")
        body = _b64decode(body_part)
        signature = _b64decode(sig_part)

        if len(body) < _HEADER.size:
            raise ReceiptError("receipt body too short")
        if len(signature) != _SIGNATURE_LENGTH:
            raise ReceiptError(f"signature must be {_SIGNATURE_LENGTH} bytes, got {len(signature)}")

        type_tag, created = _HEADER.unpack_from(body)
        try:
            receipt_type = ReceiptType(type_tag)
        except ValueError:
            raise ReceiptError(f"unknown receipt type {type_tag}") from None

        fields = body[_HEADER.size:]
        if len(fields) != _FIELD_LENGTHS[receipt_type]:
            raise ReceiptError(f"invalid payload length for {receipt_type.name}")

        try:
            public_key = PublicKey.from_signature_and_message(
                signature, keccak256(body), hasher=None
            )
        except Exception as e:
            raise ReceiptError(f"signature not recoverable: {e}") from e
        signer = public_key_to_address(public_key)

        if receipt_type == ReceiptType.CREATE_CONF:
            return cls(receipt_type, created, signer, account_id=_uuid_str(fields))
        if receipt_type == ReceiptType.RESET_CONF:
            return cls(
                receipt_type, created, signer,
                account_id=_uuid_str(fields[:16]),
                address=_address_str(fields[16:]),
            )
        return cls(
            receipt_type, created, signer,
            target=_address_str(fields[:20]),
            new_owner=_address_str(fields[20:]),
        )


class ReceiptBuilder:
    """
    Builds and signs receipts.

    Usage:
        ReceiptBuilder().create_conf(account_id).sign(session_priv)
        ReceiptBuilder(proxy_addr).unlock(new_owner).sign(unlock_priv)
    """

    def __init__(self, target: Optional[str] = None):
        self._target = target
        self._type: Optional[ReceiptType] = None
        self._fields = b""

    def create_conf(self, account_id: str) -> "ReceiptBuilder":
        self._type = ReceiptType.CREATE_CONF
        self._fields = _uuid_bytes(account_id)
        return self

    def reset_conf(self, account_id: str, address: str) -> "ReceiptBuilder":
        self._type = ReceiptType.RESET_CONF
        self._fields = _uuid_bytes(account_id) + _address_bytes(address)
        return self

    def unlock(self, new_owner: str) -> "ReceiptBuilder":
        if self._target is None:
            raise ReceiptError("unlock receipt requires a target address")
        self._type = ReceiptType.UNLOCK
        self._fields = _address_bytes(self._target) + _address_bytes(new_owner)
        return self

    def sign(self, priv: str, created: Optional[int] = None) -> str:
        """
        Seal the receipt with a private key.

        Args:
            priv: 32-byte private key as hex, optional 0x prefix
            created: creation time override (unix seconds), defaults to now

        Returns:
            Encoded receipt string
        """
        if self._type is None:
            raise ReceiptError("receipt type not set")
        if created is None:
            created = int(time.time())
        try:
            body = _HEADER.pack(int(self._type), created) + self._fields
        except struct.error as e:
            raise ReceiptError(f"invalid creation time {created}") from e
        signature = _private_key(priv).sign_recoverable(keccak256(body), hasher=None)
        return f"{_b64encode(body)}.{_b64encode(signature)}"


def private_to_address(priv: str) -> str:
    """Derive the 0x-prefixed lowercase address of a private key."""
    return public_key_to_address(_private_key(priv).public_key)


def public_key_to_address(public_key: PublicKey) -> str:
    # uncompressed key without the 0x04 prefix
    raw = public_key.format(compressed=False)[1:]
    return "0x" + keccak256(raw)[-20:].hex()


def _private_key(priv: str) -> PrivateKey:
    if not priv:
        raise ReceiptSigningError("private key not configured")
    try:
        secret = bytes.fromhex(priv[2:] if priv.startswith("0x") else priv)
    except (ValueError, TypeError) as e:
        raise ReceiptSigningError("private key is not hex") from e
    if len(secret) != 32:
        raise ReceiptSigningError("private key must be 32 bytes")
    try:
        return PrivateKey(secret)
    except ValueError as e:
        raise ReceiptSigningError("private key out of range") from e


def _b64encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _b64decode(text: str) -> bytes:
    if not _B64URL_RE.match(text):
        raise ReceiptError("receipt part is not base64url")
    try:
        return base64.urlsafe_b64decode(text + "=" * (-len(text) % 4))
    except (binascii.Error, ValueError) as e:
        raise ReceiptError(f"receipt part not decodable: {e}") from e


def _uuid_bytes(account_id: str) -> bytes:
    try:
        return uuid.UUID(account_id).bytes
    except (ValueError, AttributeError, TypeError) as e:
        raise ReceiptError(f"invalid account id {account_id}") from e


def _uuid_str(raw: bytes) -> str:
    return str(uuid.UUID(bytes=raw))


def _address_bytes(address: str) -> bytes:
    try:
        raw = bytes.fromhex(address[2:] if address.startswith("0x") else address)
    except (ValueError, AttributeError, TypeError) as e:
        raise ReceiptError(f"invalid address {address}") from e
    if len(raw) != 20:
        raise ReceiptError(f"invalid address {address}")
    return raw


def _address_str(raw: bytes) -> str:
    return "0x" + raw.hex()
