"""
Session Service Package
"""

from account_service.services.session.service import (
    check_session,
    check_wallet,
)

__all__ = [
    "check_session",
    "check_wallet",
]
