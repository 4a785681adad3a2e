"""
Session Service - Receipt Verification

This module verifies that a receipt presented by a client was issued by the
expected key, asserts the expected operation and falls inside a time window.
All functions are pure computation - no storage, no network.
"""

import json
import time
from typing import Any, Dict, Optional

from account_service.core.exceptions import (
    BadRequest,
    Forbidden,
    ReceiptError,
    Unauthorized,
)
from account_service.core.receipt import Receipt, ReceiptType
from account_service.utils.security import is_address

SECONDS_PER_HOUR = 60 * 60


def check_session(
    session_receipt: str,
    session_addr: str,
    receipt_type: ReceiptType,
    timeout_hours: Optional[float] = None,
    now: Optional[float] = None,
) -> Receipt:
    """
    Verify a session receipt.

    Rules:
    - Receipt must decode and its signer must be the session address
    - timeout_hours > 0: receipt must be younger than timeout_hours;
      created exactly at the cutoff counts as expired
    - timeout_hours < 0: receipt must be older than |timeout_hours|
      (throttles resend requests)
    - Receipt type must match

    Args:
        session_receipt: Encoded receipt
        session_addr: Address the receipt must be signed by
        receipt_type: Expected receipt type
        timeout_hours: Freshness window, sign selects direction
        now: Current unix time (defaults to time.time())

    Returns:
        Parsed receipt

    Raises:
        Unauthorized: Undecodable, foreign signer, expired or too fresh
        Forbidden: Receipt is valid but for another operation
    """
    try:
        session = Receipt.parse(session_receipt)
    except ReceiptError as e:
        raise Unauthorized(f"invalid session: {e}.") from e

    if not session_addr or session.signer != session_addr.lower():
        raise Unauthorized(f"invalid session signer: {session.signer}.")

    if timeout_hours:
        if now is None:
            now = time.time()
        cutoff = now - SECONDS_PER_HOUR * abs(timeout_hours)
        if timeout_hours > 0 and session.created <= cutoff:
            raise Unauthorized(f"session expired since {int(cutoff - session.created)} seconds.")
        if timeout_hours < 0 and session.created >= cutoff:
            raise Unauthorized("session is too fresh.")

    if session.type != receipt_type:
        raise Forbidden(f"Wallet operation forbidden with session type {session.type.name}.")
    return session


def check_wallet(wallet_str: str) -> Dict[str, Any]:
    """
    Parse a wallet keystore and check it carries a valid address.

    Raises:
        BadRequest: Not JSON, not an object, or address invalid
    """
    try:
        wallet = json.loads(wallet_str)
    except (TypeError, ValueError) as e:
        raise BadRequest(f"invalid wallet json: {e}.") from e
    if not isinstance(wallet, dict):
        raise BadRequest("invalid wallet json: expected an object.")
    if not is_address(wallet.get("address")):
        raise BadRequest(f"invalid address {wallet.get('address')} in wallet.")
    return wallet
