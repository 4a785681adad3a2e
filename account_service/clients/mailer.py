"""
Transactional mail client.

Sends confirmation and wallet-reset emails through an HTTP mail API. The
email carries a link with the signed receipt; following the link lets the
client present the receipt back to the service.

Transport errors are retried with backoff (retry_async); API rejections
(4xx/5xx) are not.
"""
import logging
from typing import Any, Dict, Optional

import httpx

from account_service.utils.retry import retry_async

logger = logging.getLogger(__name__)

CONFIRM_SUBJECT = "Please confirm your email address"
RESET_SUBJECT = "Reset your wallet"


def build_link(origin: str, action: str, receipt: str) -> str:
    """Link to the client app, e.g. https://app.example.com/confirm/<receipt>."""
    return f"{origin.rstrip('/')}/{action}/{receipt}"


class Mailer:
    """
    Args:
        api_url: Mail API send endpoint
        api_key: Bearer token for the mail API
        sender: From address
        timeout: HTTP timeout in seconds
        client: Optional shared httpx.AsyncClient
    """

    def __init__(
        self,
        api_url: str,
        api_key: str,
        sender: str,
        timeout: float = 5.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_url = api_url
        self.api_key = api_key
        self.sender = sender
        self.timeout = timeout
        self._client = client

    async def send_confirm(self, email: str, receipt: str, origin: str) -> Dict[str, Any]:
        link = build_link(origin, "confirm", receipt)
        text = (
            "Welcome!\n\n"
            "Please confirm your email address and set up your wallet:\n"
            f"{link}\n\n"
            "The link is valid for 2 hours."
        )
        return await self._send(email, CONFIRM_SUBJECT, text)

    async def send_reset(self, email: str, receipt: str, origin: str) -> Dict[str, Any]:
        link = build_link(origin, "reset", receipt)
        text = (
            "A wallet reset was requested for your account.\n\n"
            f"Choose a new password here:\n{link}\n\n"
            "The link is valid for 2 hours. If you did not request a reset, ignore this email."
        )
        return await self._send(email, RESET_SUBJECT, text)

    async def _send(self, to: str, subject: str, text: str) -> Dict[str, Any]:
        """
        Send one message.

        Returns:
            Mail API response body

        Raises:
            httpx.HTTPError: API unreachable after retries, or rejected
        """
        message = {"from": self.sender, "to": [to], "subject": subject, "text": text}
        headers = {"Authorization": f"Bearer {self.api_key}"}

        async def post():
            if self._client is not None:
                return await self._client.post(self.api_url, json=message, headers=headers)
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                return await client.post(self.api_url, json=message, headers=headers)

        rsp = await retry_async(post)
        rsp.raise_for_status()
        logger.info(f"MAIL_SENT [subject={subject!r}, status={rsp.status_code}]")
        return rsp.json() if rsp.content else {}
