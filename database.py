"""
PostgreSQL storage for accounts, referral codes and the proxy pool.

Pool lifecycle (init_db / close_pool) and PostgresStorage, the
storage collaborator used by AccountManager.

Atomicity:
- transaction() yields a connection; methods accepting conn run on it
- set_ref_allowance(expected=...) is a compare-and-set: if another signup
  changed the allowance since it was read, nothing is written and Conflict
  is raised, rolling back the surrounding transaction
- bind_wallet() only updates an account whose wallet is NULL, so two
  concurrent first bindings cannot both succeed
- get_proxy() leases an address with FOR UPDATE SKIP LOCKED, so concurrent
  signups never get the same address; an abandoned lease expires
"""

import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Any, AsyncIterator, Dict, List, Optional

import asyncpg

import config
from account_service.core.exceptions import Conflict, NotFound

logger = logging.getLogger(__name__)

# How long a reserved proxy stays out of the pool if the signup never commits
PROXY_LEASE = timedelta(minutes=10)

_ACCOUNT_COLUMNS = "id, email, pending_email, ref, proxy_addr, wallet, signer_addr"

_pool: Optional[asyncpg.Pool] = None


class ProxyPoolExhausted(RuntimeError):
    """Raised when no proxy address is available for a new account."""
    pass


def _get_pool_config() -> Dict[str, Any]:
    """asyncpg.create_pool kwargs."""
    return {
        "min_size": config.DB_POOL_MIN_SIZE,
        "max_size": config.DB_POOL_MAX_SIZE,
        "command_timeout": 10,
    }


async def init_db(database_url: Optional[str] = None) -> asyncpg.Pool:
    """
    Create the connection pool and apply pending migrations.

    Raises:
        RuntimeError: DATABASE_URL not configured
        asyncpg.PostgresError / OSError: database unreachable or migration failed
    """
    global _pool
    import migrations

    database_url = database_url or config.DATABASE_URL
    if not database_url:
        raise RuntimeError(f"{config.APP_ENV.upper()}_DATABASE_URL is not configured")

    if _pool is None:
        _pool = await asyncpg.create_pool(database_url, **_get_pool_config())
        logger.info("Database pool created")
    await migrations.run_migrations_safe(_pool)
    return _pool


async def close_pool():
    global _pool
    if _pool is not None:
        await _pool.close()
        _pool = None
        logger.info("Database pool closed")


class PostgresStorage:
    """
    Storage collaborator backed by asyncpg.

    Args:
        pool: asyncpg pool (from init_db)
    """

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[asyncpg.Connection]:
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                yield conn

    @asynccontextmanager
    async def _connection(self, conn: Optional[asyncpg.Connection]) -> AsyncIterator[asyncpg.Connection]:
        if conn is not None:
            yield conn
            return
        async with self.pool.acquire() as acquired:
            yield acquired

    # ================================================================================
    # Accounts
    # ================================================================================

    async def get_account(self, account_id: str) -> Dict[str, Any]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_ACCOUNT_COLUMNS} FROM accounts WHERE id = $1", account_id
            )
        if row is None:
            raise NotFound(f"account {account_id} not found.")
        return dict(row)

    async def get_account_by_email(self, email: str) -> Dict[str, Any]:
        """Lookup by confirmed or pending email; a confirmed match wins."""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""SELECT {_ACCOUNT_COLUMNS} FROM accounts
                    WHERE email = $1 OR pending_email = $1
                    ORDER BY (email = $1) DESC NULLS LAST
                    LIMIT 1""",
                email.lower(),
            )
        if row is None:
            raise NotFound("account with this email not found.")
        return dict(row)

    async def get_account_by_signer_addr(self, signer_addr: str) -> Dict[str, Any]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_ACCOUNT_COLUMNS} FROM accounts WHERE signer_addr = $1",
                signer_addr.lower(),
            )
        if row is None:
            raise NotFound(f"account with signer {signer_addr} not found.")
        return dict(row)

    async def check_account_conflict(self, account_id: str, email: str, conn=None) -> None:
        """Raise Conflict if the id or the email (confirmed or pending) is taken."""
        async with self._connection(conn) as c:
            row = await c.fetchrow(
                """SELECT id FROM accounts
                   WHERE id = $1 OR email = $2 OR pending_email = $2
                   LIMIT 1""",
                account_id, email.lower(),
            )
        if row is not None:
            if row["id"] == account_id:
                raise Conflict(f"account with same id {account_id} exists.")
            raise Conflict("account with same email exists.")

    async def put_account(
        self, account_id: str, email: str, ref: str, proxy_addr: str, conn=None
    ) -> None:
        async with self._connection(conn) as c:
            try:
                await c.execute(
                    """INSERT INTO accounts (id, pending_email, ref, proxy_addr)
                       VALUES ($1, $2, $3, $4)""",
                    account_id, email.lower(), ref, proxy_addr,
                )
            except asyncpg.UniqueViolationError as e:
                # lost a race against a concurrent signup for the same id/email
                raise Conflict("account with same id or email exists.") from e

    async def set_wallet(
        self, account_id: str, wallet: str, signer_addr: str, proxy_addr: Optional[str]
    ) -> None:
        async with self.pool.acquire() as conn:
            try:
                result = await conn.execute(
                    """UPDATE accounts SET wallet = $2, signer_addr = $3, proxy_addr = $4
                       WHERE id = $1""",
                    account_id, wallet, signer_addr.lower(), proxy_addr,
                )
            except asyncpg.UniqueViolationError as e:
                raise Conflict("wallet address already bound to another account.") from e
        if result == "UPDATE 0":
            raise NotFound(f"account {account_id} not found.")

    async def bind_wallet(
        self,
        account_id: str,
        wallet: str,
        signer_addr: str,
        proxy_addr: Optional[str],
        conn=None,
    ) -> None:
        """First wallet binding; matches only an account that has no wallet yet."""
        async with self._connection(conn) as c:
            try:
                result = await c.execute(
                    """UPDATE accounts SET wallet = $2, signer_addr = $3, proxy_addr = $4
                       WHERE id = $1 AND wallet IS NULL""",
                    account_id, wallet, signer_addr.lower(), proxy_addr,
                )
            except asyncpg.UniqueViolationError as e:
                raise Conflict("wallet address already bound to another account.") from e
        if result == "UPDATE 0":
            raise Conflict("wallet already set.")

    async def update_email_complete(self, account_id: str, email: str) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                "UPDATE accounts SET email = $2 WHERE id = $1", account_id, email
            )

    # ================================================================================
    # Referral codes
    # ================================================================================

    async def get_ref(self, ref_code: str) -> Dict[str, Any]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT code, account, allowance FROM refs WHERE code = $1", ref_code.lower()
            )
        if row is None:
            raise NotFound(f"refCode {ref_code} not found.")
        return dict(row)

    async def put_ref(self, ref_code: str, account_id: str, allowance: int, conn=None) -> None:
        async with self._connection(conn) as c:
            await c.execute(
                "INSERT INTO refs (code, account, allowance) VALUES ($1, $2, $3)",
                ref_code.lower(), account_id, allowance,
            )

    async def set_ref_allowance(
        self, ref_code: str, allowance: int, expected: Optional[int] = None, conn=None
    ) -> None:
        async with self._connection(conn) as c:
            if expected is None:
                result = await c.execute(
                    "UPDATE refs SET allowance = $2 WHERE code = $1",
                    ref_code.lower(), allowance,
                )
            else:
                result = await c.execute(
                    "UPDATE refs SET allowance = $2 WHERE code = $1 AND allowance = $3",
                    ref_code.lower(), allowance, expected,
                )
        if result == "UPDATE 0":
            if expected is None:
                raise NotFound(f"refCode {ref_code} not found.")
            raise Conflict(f"refCode {ref_code} allowance changed concurrently.")

    async def get_refs_by_account(self, account_id: str) -> List[Dict[str, Any]]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                "SELECT code, account, allowance FROM refs WHERE account = $1 ORDER BY code",
                account_id,
            )
        return [dict(row) for row in rows]

    # ================================================================================
    # Proxy pool
    # ================================================================================

    async def get_proxy(self) -> str:
        """Lease one available address. Raises ProxyPoolExhausted if none is left."""
        async with self.pool.acquire() as conn:
            address = await conn.fetchval(
                """UPDATE proxies SET reserved_until = NOW() + $1::interval
                   WHERE address = (
                       SELECT address FROM proxies
                       WHERE reserved_until IS NULL OR reserved_until < NOW()
                       ORDER BY address
                       LIMIT 1
                       FOR UPDATE SKIP LOCKED
                   )
                   RETURNING address""",
                PROXY_LEASE,
            )
        if address is None:
            logger.error("PROXY_POOL_EXHAUSTED")
            raise ProxyPoolExhausted("no proxy address available.")
        return address

    async def delete_proxy(self, proxy_addr: str, conn=None) -> None:
        async with self._connection(conn) as c:
            await c.execute("DELETE FROM proxies WHERE address = $1", proxy_addr)

    async def add_proxy(self, proxy_addr: str, conn=None) -> None:
        """Return an address to the pool (clears any lease)."""
        async with self._connection(conn) as c:
            await c.execute(
                """INSERT INTO proxies (address, reserved_until) VALUES ($1, NULL)
                   ON CONFLICT (address) DO UPDATE SET reserved_until = NULL""",
                proxy_addr,
            )

    async def get_available_proxies_count(self) -> int:
        async with self.pool.acquire() as conn:
            return await conn.fetchval(
                "SELECT COUNT(*) FROM proxies WHERE reserved_until IS NULL OR reserved_until < NOW()"
            )
