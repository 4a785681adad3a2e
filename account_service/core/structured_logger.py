"""
Structured logging for account lifecycle operations.

Single contract for lifecycle logs:
- component (e.g. "accounts", "referrals", "api")
- operation (e.g. "add_account", "set_wallet")
- account_id (optional)
- outcome ("success", "rejected", "failed")
- reason (optional, short and non-PII)

Never pass emails, wallets, receipts or keys.
"""
from logging import Logger
from typing import Optional


def log_event(
    logger: Logger,
    *,
    component: str,
    operation: str,
    outcome: str,
    account_id: Optional[str] = None,
    reason: Optional[str] = None,
    level: str = "info",
) -> None:
    """
    Emit a structured log event.

    The fields are attached as record extras and repeated in the message
    so they survive the plain text formatter.
    """
    extra: dict = {
        "component": component,
        "operation": operation,
        "outcome": outcome,
    }
    parts = [f"{component} {operation} outcome={outcome}"]
    if account_id is not None:
        extra["account_id"] = str(account_id)
        parts.append(f"account_id={account_id}")
    if reason is not None:
        extra["reason"] = reason
        parts.append(f"reason={reason}")

    log_method = getattr(logger, level.lower(), logger.info)
    log_method(" ".join(parts), extra=extra)
