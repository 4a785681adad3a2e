"""
Collaborator contracts for the account service.

AccountManager only talks to these interfaces. Concrete adapters:
- Storage: database.PostgresStorage
- Mailer: account_service.clients.mailer.Mailer
- CaptchaVerifier: account_service.clients.recaptcha.Recaptcha
- Publisher: account_service.core.events.RedisPublisher
- Alerting: account_service.core.alerts.SlackAlert

Account rows are plain dicts with the keys: id, email, pending_email, ref,
proxy_addr, wallet, signer_addr. Referral rows: code, account, allowance.
"""

from typing import Any, AsyncContextManager, Dict, List, Optional, Protocol


class Storage(Protocol):
    """Persistent accounts, referral codes and the proxy pool.

    Lookups of missing rows raise NotFound. Methods taking ``conn`` run on
    that connection when given (inside ``transaction()``).
    """

    async def get_account(self, account_id: str) -> Dict[str, Any]: ...

    async def get_account_by_email(self, email: str) -> Dict[str, Any]: ...

    async def get_account_by_signer_addr(self, signer_addr: str) -> Dict[str, Any]: ...

    async def put_account(
        self, account_id: str, email: str, ref: str, proxy_addr: str, conn: Any = None
    ) -> None: ...

    async def check_account_conflict(self, account_id: str, email: str, conn: Any = None) -> None:
        """Raise Conflict if the id or the email is taken."""

    async def set_wallet(
        self, account_id: str, wallet: str, signer_addr: str, proxy_addr: Optional[str]
    ) -> None: ...

    async def bind_wallet(
        self,
        account_id: str,
        wallet: str,
        signer_addr: str,
        proxy_addr: Optional[str],
        conn: Any = None,
    ) -> None:
        """Set the first wallet; raise Conflict if the account already has one."""

    async def update_email_complete(self, account_id: str, email: str) -> None: ...

    async def get_ref(self, ref_code: str) -> Dict[str, Any]: ...

    async def put_ref(
        self, ref_code: str, account_id: str, allowance: int, conn: Any = None
    ) -> None: ...

    async def set_ref_allowance(
        self, ref_code: str, allowance: int, expected: Optional[int] = None, conn: Any = None
    ) -> None:
        """Write allowance; with ``expected``, raise Conflict if the stored value differs."""

    async def get_refs_by_account(self, account_id: str) -> List[Dict[str, Any]]: ...

    async def get_proxy(self) -> str:
        """Reserve one address from the pool and return it."""

    async def delete_proxy(self, proxy_addr: str, conn: Any = None) -> None: ...

    async def add_proxy(self, proxy_addr: str, conn: Any = None) -> None: ...

    async def get_available_proxies_count(self) -> int: ...

    def transaction(self) -> AsyncContextManager[Any]:
        """Open a transaction; yields the connection to pass as ``conn``."""


class Mailer(Protocol):
    async def send_confirm(self, email: str, receipt: str, origin: str) -> Any: ...

    async def send_reset(self, email: str, receipt: str, origin: str) -> Any: ...


class CaptchaVerifier(Protocol):
    async def verify(self, response: str, source_ip: Optional[str]) -> None:
        """Raise Unauthorized if the captcha response is rejected."""


class Publisher(Protocol):
    async def publish(self, subject: str, payload: Dict[str, Any]) -> Any: ...


class Alerting(Protocol):
    async def send_alert(self, text: str) -> None: ...
