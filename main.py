import asyncio
import logging

# Configure logging FIRST (before any other imports that may log)
# Routes INFO/WARNING → stdout, ERROR/CRITICAL → stderr for correct container classification
import config
from account_service.core.logging_config import setup_logging
setup_logging(
    config.LOG_LEVEL,
    secrets=(config.SESSION_PRIV, config.UNLOCK_PRIV, config.MAIL_API_KEY, config.RECAPTCHA_SECRET),
)

import uvicorn

import database
from account_service.api import create_app
from account_service.clients.mailer import Mailer
from account_service.clients.recaptcha import Recaptcha
from account_service.core.alerts import SlackAlert
from account_service.core.events import RedisPublisher
from account_service.core.redis_client import check_redis_health, close_redis_client
from account_service.core.structured_logger import log_event
from account_service.services.accounts import AccountManager

# ====================================================================================
# LOGGING CONTRACT
# ====================================================================================
# Standard log fields (logical, not enforced by library):
# - component   (api / accounts / infra)
# - operation   (what is happening)
# - outcome     (success | degraded | failed)
# - reason      (short, non-PII explanation)
#
# SECURITY:
# - DO NOT log secrets, private keys, receipts or full payloads
# - Logging configured in account_service.core.logging_config
# ====================================================================================

logger = logging.getLogger(__name__)


def build_manager(storage) -> AccountManager:
    """Wire AccountManager with the configured collaborators."""
    slack_alert = SlackAlert(config.SLACK_WEBHOOK_URL, timeout=config.HTTP_TIMEOUT) if config.SLACK_WEBHOOK_URL else None
    return AccountManager(
        db=storage,
        mailer=Mailer(
            config.MAIL_API_URL,
            config.MAIL_API_KEY,
            config.MAIL_FROM,
            timeout=config.HTTP_TIMEOUT,
        ),
        recaptcha=Recaptcha(
            config.RECAPTCHA_SECRET,
            verify_url=config.RECAPTCHA_URL,
            timeout=config.HTTP_TIMEOUT,
        ),
        publisher=RedisPublisher(config.NOTIFY_CHANNEL),
        session_priv=config.SESSION_PRIV,
        unlock_priv=config.UNLOCK_PRIV or None,
        slack_alert=slack_alert,
        min_proxies_alert_threshold=config.MIN_PROXIES_ALERT_THRESHOLD,
    )


async def main():
    config.validate_config()

    pool = await database.init_db(config.DATABASE_URL)
    manager = build_manager(database.PostgresStorage(pool))
    log_event(
        logger, component="infra", operation="startup", outcome="success",
        reason=f"session_addr={manager.session_addr}",
    )

    if config.REDIS_URL and not await check_redis_health():
        log_event(
            logger, component="infra", operation="redis_health", outcome="degraded",
            reason="redis unreachable, account events will fail", level="warning",
        )

    app = create_app(manager)
    server = uvicorn.Server(uvicorn.Config(
        app,
        host=config.HTTP_HOST,
        port=config.HTTP_PORT,
        log_config=None,
    ))
    logger.info(f"Account service listening on {config.HTTP_HOST}:{config.HTTP_PORT}")

    try:
        await server.serve()
    finally:
        logger.info("Shutting down: draining background notifications")
        await manager.drain()
        await close_redis_client()
        await database.close_pool()


if __name__ == "__main__":
    asyncio.run(main())
