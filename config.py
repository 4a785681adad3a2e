import os
import sys

# ====================================================================================
# ENVIRONMENT CONFIGURATION: PROD / STAGE / LOCAL isolation via prefixes
# ====================================================================================
# All settings are read through env(), which prefixes the key with the
# environment name:
#   - PROD:  PROD_DATABASE_URL,  PROD_SESSION_PRIV, ...
#   - STAGE: STAGE_DATABASE_URL, STAGE_SESSION_PRIV, ...
#   - LOCAL: LOCAL_DATABASE_URL, LOCAL_SESSION_PRIV, ...
#
# A STAGE deployment therefore cannot pick up PROD keys even if both are set.
# Values are read at import; validate_config() enforces required settings
# and is called by main.py at startup.
# ====================================================================================

APP_ENV = os.getenv("APP_ENV", "prod").lower()

IS_LOCAL = APP_ENV == "local"
IS_STAGE = APP_ENV == "stage"
IS_PROD = APP_ENV == "prod"


def env(key: str, default: str = "") -> str:
    """
    Read an environment variable with the environment prefix.

    Example:
        env("DATABASE_URL") -> value of STAGE_DATABASE_URL (if APP_ENV=stage)
        env("HTTP_TIMEOUT", default="5.0") -> "5.0" if not set
    """
    env_key = f"{APP_ENV.upper()}_{key}"
    return os.getenv(env_key, default)


LOG_LEVEL = env("LOG_LEVEL", default="INFO")

# PostgreSQL (accounts, refs, proxies)
DATABASE_URL = env("DATABASE_URL")
DB_POOL_MIN_SIZE = int(env("DB_POOL_MIN_SIZE", default="1"))
DB_POOL_MAX_SIZE = int(env("DB_POOL_MAX_SIZE", default="10"))

# Signing keys (hex, optional 0x prefix). Never logged.
# SESSION_PRIV signs confirmation receipts, UNLOCK_PRIV signs proxy unlock receipts.
SESSION_PRIV = env("SESSION_PRIV")
UNLOCK_PRIV = env("UNLOCK_PRIV")

# Google reCAPTCHA
RECAPTCHA_SECRET = env("RECAPTCHA_SECRET")
RECAPTCHA_URL = env("RECAPTCHA_URL", default="https://www.google.com/recaptcha/api/siteverify")

# Transactional mail HTTP API
MAIL_API_URL = env("MAIL_API_URL")
MAIL_API_KEY = env("MAIL_API_KEY")
MAIL_FROM = env("MAIL_FROM", default="noreply@example.com")

# Timeout for outgoing HTTP calls (seconds)
HTTP_TIMEOUT = float(env("HTTP_TIMEOUT", default="5.0"))

# Redis pub/sub for account events (WalletCreated, ...)
REDIS_URL = env("REDIS_URL", default="")
NOTIFY_CHANNEL = env("NOTIFY_CHANNEL", default="account-events")

# Operator alerts (Slack incoming webhook) for a running-low proxy pool.
# Both must be set for the pool check to run.
SLACK_WEBHOOK_URL = env("SLACK_WEBHOOK_URL")
MIN_PROXIES_ALERT_THRESHOLD = int(env("MIN_PROXIES_ALERT_THRESHOLD", default="0"))

HTTP_HOST = env("HTTP_HOST", default="0.0.0.0")
HTTP_PORT = int(os.getenv("PORT") or env("HTTP_PORT") or "8080")


def validate_config() -> None:
    """
    Fail fast on missing or invalid required settings.

    Exits the process with status 1 and a message on stderr.
    Secrets are reported by name only.
    """
    if APP_ENV not in ("prod", "stage", "local"):
        print(f"ERROR: Invalid APP_ENV={APP_ENV}. Must be one of: prod, stage, local", file=sys.stderr)
        sys.exit(1)

    prefix = APP_ENV.upper()
    if not DATABASE_URL:
        print(f"ERROR: {prefix}_DATABASE_URL environment variable is not set!", file=sys.stderr)
        sys.exit(1)
    if not SESSION_PRIV:
        print(f"ERROR: {prefix}_SESSION_PRIV environment variable is not set!", file=sys.stderr)
        sys.exit(1)

    if not UNLOCK_PRIV:
        print(f"WARNING: {prefix}_UNLOCK_PRIV is not set - unlock receipts are disabled", file=sys.stderr)
    if not RECAPTCHA_SECRET:
        print(f"WARNING: {prefix}_RECAPTCHA_SECRET is not set - all signups will be rejected", file=sys.stderr)
    if not MAIL_API_URL:
        print(f"WARNING: {prefix}_MAIL_API_URL is not set - confirmation emails cannot be sent", file=sys.stderr)
    if not REDIS_URL:
        print(f"WARNING: {prefix}_REDIS_URL is not set - account events are not published", file=sys.stderr)

    print(f"INFO: Config loaded for environment: {prefix}", flush=True)
