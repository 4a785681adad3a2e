"""
Referral Service - Signup Allowance Tracking

This module provides the read side of referral allocation: checking that a
referral code and the global signup quota still have allowance, and picking
the referring account for a new signup.

Consumption (allowance decrement) is not done here. It happens inside the
signup transaction together with the account insert, so that a transactional
store can reject a concurrent signup that read the same allowance.

Rules:
- Allowance is an integer >= 0; a code with allowance < 1 is exhausted
- The global code gates all signups regardless of per-code allowance
- The global code's bound account, if it is an account id, is offered as
  default referral to clients without a code
"""

import asyncio
import logging
import secrets
from typing import Any, Dict, Optional

from account_service.core.exceptions import BadRequest, EnhanceYourCalm, Teapot
from account_service.utils.security import is_ref_code, is_uuid_v4

logger = logging.getLogger(__name__)

GLOBAL_REF_CODE = "00000000"

# Invites granted to every account once its wallet is bound
NEW_ACCOUNT_REF_ALLOWANCE = 3


async def get_ref(db: Any, ref_code: str) -> Dict[str, Any]:
    """
    Check a referral code before signup. Read-only, safe to call speculatively.

    Args:
        db: Storage collaborator (get_ref)
        ref_code: 8-hex referral code

    Returns:
        {"defaultRef": <account id>} when the global code is bound to an
        account, {} otherwise (clients must then bring their own code)

    Raises:
        BadRequest: Malformed code
        EnhanceYourCalm: Global signup allowance exhausted
        Teapot: This code's allowance exhausted
    """
    if not is_ref_code(ref_code):
        raise BadRequest(f"passed refCode {ref_code} not valid.")

    # sentinel code: no lookup of its own
    named = _sentinel_ref() if ref_code == GLOBAL_REF_CODE else db.get_ref(ref_code)
    referral, glob = await asyncio.gather(named, db.get_ref(GLOBAL_REF_CODE))

    if glob.get("allowance", 0) < 1:
        logger.warning(f"REFERRAL_GLOBAL_LIMIT_REACHED [code={ref_code}]")
        raise EnhanceYourCalm("global limit reached")
    if referral.get("allowance", 0) < 1:
        logger.info(f"REFERRAL_CODE_EXHAUSTED [code={ref_code}]")
        raise Teapot("account invite limit reached")

    if is_uuid_v4(glob.get("account")):
        return {"defaultRef": glob["account"]}
    return {}


async def _sentinel_ref() -> Dict[str, Any]:
    return {"allowance": 1}


def referral_account(referral: Dict[str, Any]) -> Optional[Any]:
    """Referring account of a code. Older rows store a list, the first entry wins."""
    account = referral.get("account")
    if isinstance(account, (list, tuple)):
        return account[0] if account else None
    return account


def check_signup_referral(referral: Dict[str, Any], ref_code: str) -> str:
    """
    Validate a fetched referral row for use in a signup.

    Returns:
        Referring account id

    Raises:
        Teapot: No allowance left on this code
        BadRequest: Code is not bound to an account (e.g. unbound global code)
    """
    if referral.get("allowance", 0) < 1:
        raise Teapot("referral invite limit reached.")
    account = referral_account(referral)
    if not is_uuid_v4(account):
        raise BadRequest(f"passed refCode {ref_code} can not be used for signup.")
    return account


def generate_ref_code() -> str:
    """New random referral code: 8 lowercase hex digits from a CSPRNG."""
    code = secrets.token_hex(4)
    while code == GLOBAL_REF_CODE:
        code = secrets.token_hex(4)
    return code
