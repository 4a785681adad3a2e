"""
Pytest configuration and shared fixtures for service layer tests.
"""
import json
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

from account_service.core.exceptions import Conflict, NotFound
from account_service.core.receipt import private_to_address
from account_service.services.accounts import AccountManager

SESSION_PRIV = "0x" + "11" * 32
UNLOCK_PRIV = "0x" + "22" * 32
WALLET_PRIV = "0x" + "33" * 32

ACCOUNT_ID = "5a1e6b0c-7d3f-4e2a-9b8c-1d2e3f4a5b6c"
REFERRER_ID = "0f8d2c4e-6a1b-4c3d-8e5f-7a9b0c1d2e3f"
WALLET_ADDR = "0x" + "ab" * 20
OTHER_WALLET_ADDR = "0x" + "cd" * 20
PROXY_ADDR = "0x" + "12" * 20


def make_wallet(address: str = WALLET_ADDR) -> str:
    """Keystore-shaped wallet JSON with the given address"""
    return json.dumps({"address": address, "version": 3, "Crypto": {}})


@pytest.fixture
def wallet_factory():
    """Builds keystore-shaped wallet JSON for an address"""
    return make_wallet


@pytest.fixture
def session_priv():
    return SESSION_PRIV


@pytest.fixture
def session_addr():
    return private_to_address(SESSION_PRIV)


@pytest.fixture
def mock_database():
    """Mock storage collaborator"""
    db = MagicMock()
    db.get_account = AsyncMock()
    db.get_account_by_email = AsyncMock()
    db.get_account_by_signer_addr = AsyncMock()
    db.put_account = AsyncMock()
    db.check_account_conflict = AsyncMock()
    db.set_wallet = AsyncMock()
    db.bind_wallet = AsyncMock()
    db.update_email_complete = AsyncMock()
    db.get_ref = AsyncMock()
    db.put_ref = AsyncMock()
    db.set_ref_allowance = AsyncMock()
    db.get_refs_by_account = AsyncMock(return_value=[])
    db.get_proxy = AsyncMock(return_value=PROXY_ADDR)
    db.delete_proxy = AsyncMock()
    db.add_proxy = AsyncMock()
    db.get_available_proxies_count = AsyncMock(return_value=100)

    db.conn = MagicMock(name="conn")

    @asynccontextmanager
    async def transaction():
        yield db.conn

    db.transaction = transaction
    return db


@pytest.fixture
def mock_mailer():
    mailer = MagicMock()
    mailer.send_confirm = AsyncMock(return_value={"id": "msg-1"})
    mailer.send_reset = AsyncMock(return_value={"id": "msg-2"})
    return mailer


@pytest.fixture
def mock_recaptcha():
    recaptcha = MagicMock()
    recaptcha.verify = AsyncMock(return_value=None)
    return recaptcha


@pytest.fixture
def mock_publisher():
    publisher = MagicMock()
    publisher.publish = AsyncMock(return_value=True)
    return publisher


@pytest.fixture
def mock_slack_alert():
    alert = MagicMock()
    alert.send_alert = AsyncMock(return_value=None)
    return alert


@pytest.fixture
def manager(mock_database, mock_mailer, mock_recaptcha, mock_publisher, mock_slack_alert):
    """AccountManager wired with mock collaborators"""
    return AccountManager(
        mock_database,
        mock_mailer,
        mock_recaptcha,
        publisher=mock_publisher,
        session_priv=SESSION_PRIV,
        unlock_priv=UNLOCK_PRIV,
        slack_alert=mock_slack_alert,
        min_proxies_alert_threshold=10,
    )


# ====================================================================================
# In-memory storage for end-to-end flows
# ====================================================================================

class InMemoryStorage:
    """
    Storage fake with the same semantics as PostgresStorage.

    transaction() snapshots state and restores it if the block raises,
    so aborted signups leave no trace.
    """

    def __init__(self, proxies: Optional[List[str]] = None):
        self.accounts: Dict[str, Dict[str, Any]] = {}
        self.refs: Dict[str, Dict[str, Any]] = {}
        self.proxies: List[str] = list(proxies or [])
        self.reserved: List[str] = []

    @asynccontextmanager
    async def transaction(self):
        snapshot = (
            {k: dict(v) for k, v in self.accounts.items()},
            {k: dict(v) for k, v in self.refs.items()},
            list(self.proxies),
        )
        try:
            yield None
        except Exception:
            self.accounts, self.refs, self.proxies = snapshot
            raise

    async def get_account(self, account_id):
        if account_id not in self.accounts:
            raise NotFound(f"account {account_id} not found.")
        return dict(self.accounts[account_id])

    async def get_account_by_email(self, email):
        for account in self.accounts.values():
            if email.lower() in (account["email"], account["pending_email"]):
                return dict(account)
        raise NotFound("account with this email not found.")

    async def get_account_by_signer_addr(self, signer_addr):
        for account in self.accounts.values():
            if account["signer_addr"] == signer_addr.lower():
                return dict(account)
        raise NotFound(f"account with signer {signer_addr} not found.")

    async def check_account_conflict(self, account_id, email, conn=None):
        if account_id in self.accounts:
            raise Conflict(f"account with same id {account_id} exists.")
        for account in self.accounts.values():
            if email.lower() in (account["email"], account["pending_email"]):
                raise Conflict("account with same email exists.")

    async def put_account(self, account_id, email, ref, proxy_addr, conn=None):
        self.accounts[account_id] = {
            "id": account_id,
            "email": None,
            "pending_email": email.lower(),
            "ref": ref,
            "proxy_addr": proxy_addr,
            "wallet": None,
            "signer_addr": None,
        }

    async def set_wallet(self, account_id, wallet, signer_addr, proxy_addr):
        account = self.accounts[account_id]
        account.update(wallet=wallet, signer_addr=signer_addr.lower(), proxy_addr=proxy_addr)

    async def bind_wallet(self, account_id, wallet, signer_addr, proxy_addr, conn=None):
        account = self.accounts.get(account_id)
        if account is None or account["wallet"] is not None:
            raise Conflict("wallet already set.")
        account.update(wallet=wallet, signer_addr=signer_addr.lower(), proxy_addr=proxy_addr)

    async def update_email_complete(self, account_id, email):
        self.accounts[account_id]["email"] = email

    async def get_ref(self, ref_code):
        if ref_code.lower() not in self.refs:
            raise NotFound(f"refCode {ref_code} not found.")
        return dict(self.refs[ref_code.lower()])

    async def put_ref(self, ref_code, account_id, allowance, conn=None):
        self.refs[ref_code.lower()] = {"code": ref_code.lower(), "account": account_id, "allowance": allowance}

    async def set_ref_allowance(self, ref_code, allowance, expected=None, conn=None):
        ref = self.refs.get(ref_code.lower())
        if ref is None:
            raise NotFound(f"refCode {ref_code} not found.")
        if expected is not None and ref["allowance"] != expected:
            raise Conflict(f"refCode {ref_code} allowance changed concurrently.")
        assert allowance >= 0
        ref["allowance"] = allowance

    async def get_refs_by_account(self, account_id):
        return [dict(r) for r in self.refs.values() if r["account"] == account_id]

    async def get_proxy(self):
        for address in self.proxies:
            if address not in self.reserved:
                self.reserved.append(address)
                return address
        raise RuntimeError("no proxy address available.")

    async def delete_proxy(self, proxy_addr, conn=None):
        if proxy_addr in self.proxies:
            self.proxies.remove(proxy_addr)
        if proxy_addr in self.reserved:
            self.reserved.remove(proxy_addr)

    async def add_proxy(self, proxy_addr, conn=None):
        if proxy_addr in self.reserved:
            self.reserved.remove(proxy_addr)
        if proxy_addr not in self.proxies:
            self.proxies.append(proxy_addr)

    async def get_available_proxies_count(self):
        return len([p for p in self.proxies if p not in self.reserved])


@pytest.fixture
def memory_storage():
    """In-memory storage seeded with a global code, a referrer code and three proxies"""
    storage = InMemoryStorage(proxies=[f"0x{i:040x}" for i in range(1, 4)])
    storage.refs["00000000"] = {"code": "00000000", "account": REFERRER_ID, "allowance": 100}
    storage.refs["abcdef01"] = {"code": "abcdef01", "account": REFERRER_ID, "allowance": 2}
    return storage


@pytest.fixture
def memory_manager(memory_storage, mock_mailer, mock_recaptcha, mock_publisher):
    """AccountManager over the in-memory storage"""
    return AccountManager(
        memory_storage,
        mock_mailer,
        mock_recaptcha,
        publisher=mock_publisher,
        session_priv=SESSION_PRIV,
        unlock_priv=UNLOCK_PRIV,
    )
