"""
Referral Service Layer

Finite-allowance referral codes gated by a global signup quota.
"""

from account_service.services.referrals.service import (
    get_ref,
    referral_account,
    check_signup_referral,
    generate_ref_code,
    GLOBAL_REF_CODE,
    NEW_ACCOUNT_REF_ALLOWANCE,
)

__all__ = [
    "get_ref",
    "referral_account",
    "check_signup_referral",
    "generate_ref_code",
    "GLOBAL_REF_CODE",
    "NEW_ACCOUNT_REF_ALLOWANCE",
]
