"""
HTTP surface for AccountManager.

create_app(manager) builds the FastAPI app. Request bodies are pydantic
models with the client's camelCase field names; responses use the same
casing. AccountServiceError subclasses map to their status code with a JSON
body {"errorMessage": ...}; anything else is logged and answered with 500.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from account_service.core.exceptions import AccountServiceError

logger = logging.getLogger(__name__)

_CAMEL_KEYS = {
    "pending_email": "pendingEmail",
    "proxy_addr": "proxyAddr",
    "signer_addr": "signerAddr",
}


def _camel(row: Dict[str, Any]) -> Dict[str, Any]:
    return {_CAMEL_KEYS.get(key, key): value for key, value in row.items()}


# ============================================================================
# Request models
# ============================================================================

class AddAccountRequest(BaseModel):
    accountId: str
    email: str
    recapResponse: str
    origin: str
    refCode: str


class SessionRequest(BaseModel):
    sessionReceipt: str


class ResendRequest(BaseModel):
    sessionReceipt: str
    origin: str


class ResetRequest(BaseModel):
    email: str
    recapResponse: str
    origin: str


class SetWalletRequest(BaseModel):
    sessionReceipt: str
    wallet: str
    proxyAddr: Optional[str] = None


class ResetWalletRequest(BaseModel):
    sessionReceipt: str
    wallet: str


class UnlockRequest(BaseModel):
    unlockRequest: str


def _source_ip(request: Request) -> Optional[str]:
    return request.client.host if request.client else None


def create_app(manager) -> FastAPI:
    """
    Build the HTTP app around an AccountManager.

    Args:
        manager: AccountManager (or any object with the same operations)
    """
    app = FastAPI(title="Account Service", version="1.0.0")
    app.state.manager = manager

    @app.exception_handler(AccountServiceError)
    async def account_service_error_handler(request: Request, exc: AccountServiceError):
        logger.info(f"REQUEST_REJECTED [path={request.url.path}, status={exc.status_code}, error={exc}]")
        return JSONResponse(status_code=exc.status_code, content={"errorMessage": str(exc)})

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        fields = ", ".join(".".join(str(p) for p in err.get("loc", ())) for err in exc.errors())
        return JSONResponse(status_code=400, content={"errorMessage": f"invalid request: {fields}."})

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.exception(f"ACCOUNT_API_ERROR [path={request.url.path}]")
        return JSONResponse(status_code=500, content={"errorMessage": "internal error"})

    @app.get("/health")
    async def health_check():
        return {"status": "ok"}

    @app.get("/account/{account_id}")
    async def get_account(account_id: str):
        return _camel(await manager.get_account(account_id))

    @app.post("/account")
    async def add_account(body: AddAccountRequest, request: Request):
        result = await manager.add_account(
            body.accountId,
            body.email,
            body.recapResponse,
            body.origin,
            _source_ip(request),
            body.refCode,
        )
        return {"result": result}

    @app.get("/query")
    async def query_account(email: str):
        return await manager.query_account(email)

    @app.get("/ref/{ref_code}")
    async def get_ref(ref_code: str):
        return await manager.get_ref(ref_code)

    @app.get("/refs/{account_id}")
    async def query_ref_codes(account_id: str):
        return [_camel(ref) for ref in await manager.query_ref_codes(account_id)]

    @app.post("/confirm")
    async def confirm_email(body: SessionRequest):
        return {"result": await manager.confirm_email(body.sessionReceipt)}

    @app.post("/resend")
    async def resend_email(body: ResendRequest):
        return {"result": await manager.resend_email(body.sessionReceipt, body.origin)}

    @app.post("/reset")
    async def reset_request(body: ResetRequest, request: Request):
        await manager.reset_request(body.email, body.recapResponse, body.origin, _source_ip(request))
        return {"result": None}

    @app.post("/wallet")
    async def set_wallet(body: SetWalletRequest):
        await manager.set_wallet(body.sessionReceipt, body.wallet, body.proxyAddr)
        return {"result": None}

    @app.put("/wallet")
    async def reset_wallet(body: ResetWalletRequest):
        await manager.reset_wallet(body.sessionReceipt, body.wallet)
        return {"result": None}

    @app.post("/unlock")
    async def query_unlock_receipt(body: UnlockRequest):
        return {"receipt": await manager.query_unlock_receipt(body.unlockRequest)}

    return app


__all__ = ["create_app"]
