"""
Tests for the HTTP surface.

The app is built around a mocked AccountManager; tests check routing,
request body mapping and error serialization.
"""
import pytest
from unittest.mock import AsyncMock, MagicMock

from fastapi.testclient import TestClient

from account_service.api import create_app
from account_service.core.exceptions import (
    BadRequest,
    Conflict,
    EnhanceYourCalm,
    Forbidden,
    NotFound,
    Teapot,
    Unauthorized,
)

ACCOUNT_ID = "5a1e6b0c-7d3f-4e2a-9b8c-1d2e3f4a5b6c"


@pytest.fixture
def api_manager():
    manager = MagicMock()
    for name in (
        "get_account", "add_account", "query_account", "get_ref", "query_ref_codes",
        "confirm_email", "resend_email", "reset_request", "set_wallet", "reset_wallet",
        "query_unlock_receipt",
    ):
        setattr(manager, name, AsyncMock())
    return manager


@pytest.fixture
def client(api_manager):
    return TestClient(create_app(api_manager), raise_server_exceptions=False)


class TestRoutes:
    """Tests for request mapping"""

    def test_health(self, client):
        rsp = client.get("/health")
        assert rsp.status_code == 200
        assert rsp.json() == {"status": "ok"}

    def test_get_account_camel_case(self, client, api_manager):
        """Account rows are returned with camelCase keys"""
        api_manager.get_account.return_value = {
            "id": ACCOUNT_ID,
            "email": "alice@example.com",
            "pending_email": "alice@example.com",
            "proxy_addr": "0x" + "12" * 20,
            "signer_addr": None,
        }

        rsp = client.get(f"/account/{ACCOUNT_ID}")

        assert rsp.status_code == 200
        body = rsp.json()
        assert body["pendingEmail"] == "alice@example.com"
        assert body["proxyAddr"] == "0x" + "12" * 20
        assert "pending_email" not in body
        api_manager.get_account.assert_awaited_once_with(ACCOUNT_ID)

    def test_add_account(self, client, api_manager):
        """Signup body maps onto add_account with the client address"""
        api_manager.add_account.return_value = {"id": "msg-1"}

        rsp = client.post("/account", json={
            "accountId": ACCOUNT_ID,
            "email": "alice@example.com",
            "recapResponse": "captcha",
            "origin": "https://app.example.com",
            "refCode": "abcdef01",
        })

        assert rsp.status_code == 200
        assert rsp.json() == {"result": {"id": "msg-1"}}
        args = api_manager.add_account.call_args.args
        assert args[:4] == (ACCOUNT_ID, "alice@example.com", "captcha", "https://app.example.com")
        assert args[5] == "abcdef01"
        assert args[4] == "testclient"

    def test_query_account(self, client, api_manager):
        api_manager.query_account.return_value = {"id": ACCOUNT_ID, "proxyAddr": "0x", "wallet": None}
        rsp = client.get("/query", params={"email": "alice@example.com"})
        assert rsp.json()["id"] == ACCOUNT_ID
        api_manager.query_account.assert_awaited_once_with("alice@example.com")

    def test_get_ref(self, client, api_manager):
        api_manager.get_ref.return_value = {"defaultRef": ACCOUNT_ID}
        assert client.get("/ref/abcdef01").json() == {"defaultRef": ACCOUNT_ID}

    def test_query_ref_codes(self, client, api_manager):
        api_manager.query_ref_codes.return_value = [{"code": "abcdef01", "account": ACCOUNT_ID, "allowance": 3}]
        assert client.get(f"/refs/{ACCOUNT_ID}").json() == [
            {"code": "abcdef01", "account": ACCOUNT_ID, "allowance": 3}
        ]

    def test_confirm_and_resend(self, client, api_manager):
        api_manager.confirm_email.return_value = True
        api_manager.resend_email.return_value = True

        assert client.post("/confirm", json={"sessionReceipt": "r"}).json() == {"result": True}
        assert client.post("/resend", json={"sessionReceipt": "r", "origin": "o"}).json() == {"result": True}
        api_manager.resend_email.assert_awaited_once_with("r", "o")

    def test_reset_request(self, client, api_manager):
        rsp = client.post("/reset", json={"email": "a@b.co", "recapResponse": "c", "origin": "o"})
        assert rsp.status_code == 200
        api_manager.reset_request.assert_awaited_once_with("a@b.co", "c", "o", "testclient")

    def test_set_and_reset_wallet(self, client, api_manager):
        """POST binds the first wallet, PUT replaces it"""
        client.post("/wallet", json={"sessionReceipt": "r", "wallet": "{}", "proxyAddr": "0xabc"})
        client.put("/wallet", json={"sessionReceipt": "r2", "wallet": "{}"})

        api_manager.set_wallet.assert_awaited_once_with("r", "{}", "0xabc")
        api_manager.reset_wallet.assert_awaited_once_with("r2", "{}")

    def test_set_wallet_proxy_optional(self, client, api_manager):
        client.post("/wallet", json={"sessionReceipt": "r", "wallet": "{}"})
        api_manager.set_wallet.assert_awaited_once_with("r", "{}", None)

    def test_unlock(self, client, api_manager):
        api_manager.query_unlock_receipt.return_value = "body.sig"
        assert client.post("/unlock", json={"unlockRequest": "req"}).json() == {"receipt": "body.sig"}


class TestErrors:
    """Tests for error serialization"""

    @pytest.mark.parametrize("error,status", [
        (BadRequest("bad"), 400),
        (Unauthorized("who"), 401),
        (Forbidden("no"), 403),
        (NotFound("gone"), 404),
        (Conflict("taken"), 409),
        (Teapot("limit"), 418),
        (EnhanceYourCalm("global limit reached"), 420),
    ])
    def test_domain_errors(self, client, api_manager, error, status):
        """Each error kind maps to its status with an errorMessage body"""
        api_manager.get_ref.side_effect = error

        rsp = client.get("/ref/abcdef01")

        assert rsp.status_code == status
        assert rsp.json() == {"errorMessage": str(error)}

    def test_missing_field(self, client, api_manager):
        """Incomplete body is 400 and never reaches the manager"""
        rsp = client.post("/account", json={"accountId": ACCOUNT_ID})

        assert rsp.status_code == 400
        assert "errorMessage" in rsp.json()
        api_manager.add_account.assert_not_awaited()

    def test_unexpected_error(self, client, api_manager):
        """Collaborator failure is a 500 without internals"""
        api_manager.get_account.side_effect = RuntimeError("connection refused")

        rsp = client.get(f"/account/{ACCOUNT_ID}")

        assert rsp.status_code == 500
        assert rsp.json() == {"errorMessage": "internal error"}
