"""
Account Service Package
"""

from account_service.services.accounts.service import (
    AccountManager,
    decoy_account,
    SESSION_TIMEOUT_HOURS,
    RESEND_TIMEOUT_HOURS,
    UNLOCK_REQUEST_MAX_AGE_SECONDS,
)

__all__ = [
    "AccountManager",
    "decoy_account",
    "SESSION_TIMEOUT_HOURS",
    "RESEND_TIMEOUT_HOURS",
    "UNLOCK_REQUEST_MAX_AGE_SECONDS",
]
