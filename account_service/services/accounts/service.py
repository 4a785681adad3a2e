"""
Account Service - Account Lifecycle

This module provides the account lifecycle operations: referral-gated
signup, email confirmation, wallet binding and reset, and the receipt
queries built on top of them.

AccountManager is constructed once with its collaborators injected
(storage, mailer, captcha verifier, event publisher, alerting). It holds no
account state between calls; storage is the single source of truth.

State transitions per account:
    no wallet --set_wallet--> wallet set --reset_wallet--> wallet set (new)
A wallet is never cleared.

Error policy:
- Validation and protocol failures raise AccountServiceError subclasses
- Collaborator failures propagate unchanged
- Two explicit exceptions: the proxy pool check after signup and the
  WalletCreated notification are best-effort (logged, never raised)
"""

import asyncio
import json
import logging
import time
import uuid
from typing import Any, Dict, List, Optional, Set

from account_service.core.events import Event, EventBuilder
from account_service.core.exceptions import (
    BadRequest,
    Conflict,
    Forbidden,
    NotFound,
    ReceiptError,
    Unauthorized,
)
from account_service.core.receipt import (
    Receipt,
    ReceiptBuilder,
    ReceiptType,
    private_to_address,
)
from account_service.core.structured_logger import log_event
from account_service.services.accounts.contracts import (
    Alerting,
    CaptchaVerifier,
    Mailer,
    Publisher,
    Storage,
)
from account_service.services.referrals import service as referral_service
from account_service.services.session.service import check_session, check_wallet
from account_service.utils.security import (
    is_address,
    is_email,
    is_ref_code,
    is_uuid_v4,
    keccak256,
)

logger = logging.getLogger(__name__)

COMPONENT = "accounts"

# Confirmation receipts are valid for 2 hours
SESSION_TIMEOUT_HOURS = 2
# Resend only once the previous receipt is at least 2 hours old
RESEND_TIMEOUT_HOURS = -2
# Client unlock requests older than this are rejected
UNLOCK_REQUEST_MAX_AGE_SECONDS = 600

# Proxy address stored for accounts that never got one
NO_PROXY_ADDR = "0x"


class AccountManager:
    """
    Account lifecycle operations.

    Args:
        db: Storage collaborator
        mailer: Sends confirmation and reset emails
        recaptcha: Verifies captcha responses on signup and reset requests
        publisher: Publishes account events (optional)
        session_priv: Key signing confirmation receipts; its address is the
            session address every session receipt must recover to
        unlock_priv: Key signing proxy unlock receipts (optional)
        slack_alert: Operator alerting (optional)
        min_proxies_alert_threshold: Alert when fewer spare proxies remain
            (0 disables the check)
    """

    def __init__(
        self,
        db: Storage,
        mailer: Mailer,
        recaptcha: CaptchaVerifier,
        publisher: Optional[Publisher] = None,
        session_priv: Optional[str] = None,
        unlock_priv: Optional[str] = None,
        slack_alert: Optional[Alerting] = None,
        min_proxies_alert_threshold: int = 0,
    ):
        self.db = db
        self.mailer = mailer
        self.recaptcha = recaptcha
        self.publisher = publisher
        self.unlock_priv = unlock_priv
        self.slack_alert = slack_alert
        self.min_proxies_alert_threshold = min_proxies_alert_threshold
        self.session_priv = session_priv
        self.session_addr = private_to_address(session_priv) if session_priv else None
        self._background_tasks: Set[asyncio.Task] = set()

    # ================================================================================
    # Queries
    # ================================================================================

    async def get_account(self, account_id: str) -> Dict[str, Any]:
        account = dict(await self.db.get_account(account_id))
        account["id"] = account_id
        return account

    async def get_ref(self, ref_code: str) -> Dict[str, Any]:
        """Check a referral code before signup. See referral_service.get_ref."""
        return await referral_service.get_ref(self.db, ref_code)

    async def query_ref_codes(self, account_id: str) -> List[Dict[str, Any]]:
        return await self.db.get_refs_by_account(account_id)

    async def query_account(self, email: str) -> Dict[str, Any]:
        """
        Public account data by email.

        Unknown emails get a deterministic decoy with the same shape, so the
        endpoint cannot be used to probe which emails are registered.
        """
        try:
            account = await self.db.get_account_by_email(email.lower())
        except NotFound:
            return decoy_account(email.lower())
        return {
            "id": account["id"],
            "proxyAddr": account.get("proxy_addr"),
            "wallet": account.get("wallet"),
        }

    async def query_unlock_receipt(self, unlock_request: str, now: Optional[float] = None) -> str:
        """
        Exchange a client-signed unlock request for a server unlock receipt.

        The request must be an UNLOCK receipt signed by the account's wallet
        key, at most 10 minutes old. The returned receipt targets the
        account's proxy and carries the requested new owner.

        Raises:
            Unauthorized: Request does not decode
            Forbidden: Wrong receipt type, or unlocking is not configured
            BadRequest: Request outdated or account has no proxy
            NotFound: No account bound to the signer
        """
        try:
            request = Receipt.parse(unlock_request)
        except ReceiptError as e:
            raise Unauthorized(f"invalid unlock request: {e}.") from e
        if request.type != ReceiptType.UNLOCK:
            raise Forbidden(f"unlock forbidden with receipt type {request.type.name}.")
        if not self.unlock_priv:
            raise Forbidden("unlock receipts are not enabled.")

        if now is None:
            now = time.time()
        if now - request.created > UNLOCK_REQUEST_MAX_AGE_SECONDS:
            raise BadRequest("Receipt is outdated")

        account = await self.db.get_account_by_signer_addr(request.signer)
        proxy_addr = account.get("proxy_addr")
        if not proxy_addr or proxy_addr == NO_PROXY_ADDR:
            raise BadRequest(f"Account with signerAddr = {request.signer} has no proxy")

        log_event(
            logger, component=COMPONENT, operation="query_unlock_receipt",
            outcome="success", account_id=account.get("id"),
        )
        return ReceiptBuilder(proxy_addr).unlock(request.new_owner).sign(self.unlock_priv)

    # ================================================================================
    # Signup
    # ================================================================================

    async def add_account(
        self,
        account_id: str,
        email: str,
        recap_response: str,
        origin: str,
        source_ip: Optional[str],
        ref_code: str,
    ) -> Any:
        """
        Create an account and send the confirmation email.

        Order of operations:
        1. Validate id, email and referral code shape
        2. Sign the confirmation receipt
        3. Read referral allowance and verify captcha concurrently
        4. Reserve a proxy address
        5. Check the referral can be used
        6. In one transaction: conflict check, account insert, proxy
           removal from the pool, allowance decrement (compare-and-set
           against the value read in 3)
        7. Best-effort proxy pool check
        8. Send the confirmation email

        Returns:
            Mailer result

        Raises:
            BadRequest: Invalid input or referral not usable for signup
            Unauthorized: Captcha rejected
            Teapot: Referral allowance exhausted
            Conflict: Account id or email taken, or allowance consumed concurrently
        """
        if not is_uuid_v4(account_id):
            raise BadRequest(f"passed accountId {account_id} not uuid v4.")
        if not is_email(email):
            raise BadRequest(f"passed email {email} has invalid format.")
        if not is_ref_code(ref_code):
            raise BadRequest(f"passed refCode {ref_code} has invalid format.")

        # canonical lowercase form, as parsed back out of receipts
        account_id = str(uuid.UUID(account_id))

        receipt = ReceiptBuilder().create_conf(account_id).sign(self.session_priv)

        referral, _ = await asyncio.gather(
            self.db.get_ref(ref_code),
            self.recaptcha.verify(recap_response, source_ip),
        )

        proxy_addr = await self.db.get_proxy()

        ref_account = referral_service.check_signup_referral(referral, ref_code)
        allowance = referral["allowance"]

        async with self.db.transaction() as conn:
            await self.db.check_account_conflict(account_id, email.lower(), conn=conn)
            await self.db.put_account(account_id, email.lower(), ref_account, proxy_addr, conn=conn)
            await self.db.delete_proxy(proxy_addr, conn=conn)
            await self.db.set_ref_allowance(ref_code, allowance - 1, expected=allowance, conn=conn)

        log_event(
            logger, component=COMPONENT, operation="add_account",
            outcome="success", account_id=account_id,
        )

        try:
            await self.check_proxy_pool_size()
        except Exception as e:
            # must not fail a committed signup
            logger.warning(f"Proxy pool size check failed: {e}")

        return await self.mailer.send_confirm(email, receipt, origin)

    async def check_proxy_pool_size(self) -> bool:
        """
        Alert operators when the proxy pool runs low.

        Returns:
            True if an alert was sent
        """
        if not self.slack_alert or not self.min_proxies_alert_threshold:
            return False

        proxies_count = await self.db.get_available_proxies_count()
        if proxies_count >= self.min_proxies_alert_threshold:
            return False

        text = (
            f"Only {proxies_count} spare account proxies available.\n"
            "Create some more to prevent failing signups."
        )
        await self.slack_alert.send_alert(text)
        return True

    # ================================================================================
    # Email confirmation
    # ================================================================================

    async def confirm_email(self, session_receipt: str) -> bool:
        """Promote the pending email to confirmed (no-op if already confirmed)."""
        session = check_session(
            session_receipt, self.session_addr, ReceiptType.CREATE_CONF, SESSION_TIMEOUT_HOURS
        )
        account = await self.db.get_account(session.account_id)
        if not account.get("email"):
            await self.db.update_email_complete(session.account_id, account.get("pending_email"))
            log_event(
                logger, component=COMPONENT, operation="confirm_email",
                outcome="success", account_id=session.account_id,
            )
        return True

    async def resend_email(self, session_receipt: str, origin: str) -> bool:
        """
        Send a fresh confirmation email for an unconfirmed account.

        The presented receipt must be at least 2 hours old, which limits
        resends to one per receipt lifetime.
        """
        session = check_session(
            session_receipt, self.session_addr, ReceiptType.CREATE_CONF, RESEND_TIMEOUT_HOURS
        )
        receipt = ReceiptBuilder().create_conf(session.account_id).sign(self.session_priv)
        account = await self.db.get_account(session.account_id)
        if not account.get("email"):
            await self.mailer.send_confirm(account.get("pending_email"), receipt, origin)
        return True

    # ================================================================================
    # Wallet
    # ================================================================================

    async def reset_request(
        self,
        email: str,
        recap_response: str,
        origin: str,
        source_ip: Optional[str],
    ) -> None:
        """
        Email a wallet reset receipt.

        Unknown emails and accounts without a wallet are answered exactly
        like known ones (nothing is returned either way).
        """
        await self.recaptcha.verify(recap_response, source_ip)
        try:
            account = await self.db.get_account_by_email(email.lower())
        except NotFound:
            logger.info("RESET_REQUEST_UNKNOWN_EMAIL")
            return None
        if not account.get("wallet"):
            logger.info(f"RESET_REQUEST_NO_WALLET [account_id={account['id']}]")
            return None

        wallet = json.loads(account["wallet"])
        receipt = ReceiptBuilder().reset_conf(account["id"], wallet["address"]).sign(self.session_priv)
        await self.mailer.send_reset(email, receipt, origin)
        log_event(
            logger, component=COMPONENT, operation="reset_request",
            outcome="success", account_id=account["id"],
        )
        return None

    async def set_wallet(
        self,
        session_receipt: str,
        wallet_str: str,
        proxy_addr: Optional[str] = None,
    ) -> None:
        """
        Bind the first wallet to an account.

        If the caller brings its own proxy address, the proxy reserved at
        signup goes back to the pool. The account receives its own referral
        code. Binding, referral code and proxy return commit together in one
        transaction; the binding only matches an account with no wallet, so
        of two concurrent calls exactly one wins. A WalletCreated event is
        published in the background.

        Raises:
            Unauthorized/Forbidden: Session receipt rejected
            BadRequest: Invalid wallet or proxy address
            Conflict: Wallet already set
        """
        session = check_session(
            session_receipt, self.session_addr, ReceiptType.CREATE_CONF, SESSION_TIMEOUT_HOURS
        )
        wallet = check_wallet(wallet_str)
        if proxy_addr and not is_address(proxy_addr):
            raise BadRequest(f"invalid proxy address {proxy_addr}.")

        account = await self.db.get_account(session.account_id)
        if account.get("wallet"):
            raise Conflict("wallet already set.")

        reserved_proxy = None
        bound_proxy = account.get("proxy_addr")
        if proxy_addr:
            reserved_proxy = bound_proxy
            bound_proxy = proxy_addr

        async with self.db.transaction() as conn:
            await self.db.bind_wallet(
                session.account_id, wallet_str, wallet["address"], bound_proxy, conn=conn
            )
            await self.db.put_ref(
                referral_service.generate_ref_code(),
                session.account_id,
                referral_service.NEW_ACCOUNT_REF_ALLOWANCE,
                conn=conn,
            )
            if reserved_proxy and reserved_proxy != NO_PROXY_ADDR:
                await self.db.add_proxy(reserved_proxy, conn=conn)

        log_event(
            logger, component=COMPONENT, operation="set_wallet",
            outcome="success", account_id=session.account_id,
        )
        self._notify_in_background(
            EventBuilder.wallet_created(session.account_id, account.get("email"), wallet["address"])
        )

    async def reset_wallet(self, session_receipt: str, wallet_str: str) -> None:
        """
        Replace an existing wallet. The proxy address is kept.

        Raises:
            Unauthorized/Forbidden: Session receipt rejected
            BadRequest: Invalid wallet
            Conflict: No wallet yet, or same address as the current wallet
        """
        session = check_session(
            session_receipt, self.session_addr, ReceiptType.RESET_CONF, SESSION_TIMEOUT_HOURS
        )
        wallet = check_wallet(wallet_str)

        account = await self.db.get_account(session.account_id)
        if not account.get("wallet"):
            raise Conflict("no existing wallet found.")
        existing = json.loads(account["wallet"])
        if str(existing.get("address", "")).lower() == wallet["address"].lower():
            raise Conflict("can not reset wallet with same address.")

        await self.db.set_wallet(
            session.account_id, wallet_str, wallet["address"], account.get("proxy_addr")
        )
        log_event(
            logger, component=COMPONENT, operation="reset_wallet",
            outcome="success", account_id=session.account_id,
        )

    # ================================================================================
    # Notifications
    # ================================================================================

    async def notify(self, subject: str, payload: Dict[str, Any]) -> Any:
        """Publish an account event. Raises on transport errors."""
        if self.publisher is None:
            logger.info(f"EVENT_SKIPPED [subject={subject}, reason=no_publisher]")
            return None
        return await self.publisher.publish(subject, payload)

    def _notify_in_background(self, event: Event) -> None:
        task = asyncio.create_task(self._publish_quietly(event))
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def _publish_quietly(self, event: Event) -> None:
        try:
            await self.notify(event.subject, event.payload)
        except Exception as e:
            # account state is already committed
            logger.error(f"EVENT_PUBLISH_FAILED [subject={event.subject}, error={type(e).__name__}: {e}]")

    async def drain(self) -> None:
        """Wait for pending background notifications (shutdown, tests)."""
        if self._background_tasks:
            await asyncio.gather(*list(self._background_tasks))


# ====================================================================================
# Decoy accounts
# ====================================================================================

def _salted(email: str, salt: str) -> bytes:
    return keccak256(f"{email}{salt}".encode("utf-8"))


def decoy_account(email: str) -> Dict[str, Any]:
    """
    Deterministic fake account data for an unknown email.

    Same shape as a real query_account result: a v4 account id, a proxy
    address and a v3 keystore-shaped wallet. All values derive from the
    email, so repeated queries return the same decoy.
    """
    wallet = {
        "address": "0x" + _salted(email, "addressawobeqw4cq")[:20].hex(),
        "Crypto": {
            "cipher": "aes-128-ctr",
            "cipherparams": {"iv": _salted(email, "cipherparamsivaic4w6b")[:16].hex()},
            "ciphertext": _salted(email, "ciphertextaoc84noq354").hex(),
            "kdf": "scrypt",
            "kdfparams": {
                "dklen": 32,
                "n": 65536,
                "r": 1,
                "p": 8,
                "salt": _salted(email, "kdfparamssalta7c465oa754").hex(),
            },
            "mac": _salted(email, "maco8wb47q5496q38745").hex(),
        },
        "version": 3,
    }
    return {
        "id": str(uuid.UUID(bytes=_salted(email, "fakeid[405723v5")[:16], version=4)),
        "proxyAddr": "0x" + _salted(email, "proxyAddrobeqw4cq")[:20].hex(),
        "wallet": json.dumps(wallet),
    }
