"""
Operator alerts.

Alerts are for operator visibility and intervention (e.g. the proxy pool
running low). They are delivered to a Slack incoming webhook and always
logged.

IMPORTANT:
- Alerts do NOT affect business logic
- Callers on a request path must isolate alert failures themselves
"""

import logging
from typing import Optional

import httpx

logger = logging.getLogger(__name__)


class SlackAlert:
    """
    Sends alert text to a Slack incoming webhook.

    Args:
        webhook_url: Incoming webhook URL
        timeout: HTTP timeout in seconds
        client: Optional shared httpx.AsyncClient (tests pass one with a
            mock transport)
    """

    def __init__(
        self,
        webhook_url: str,
        timeout: float = 5.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.webhook_url = webhook_url
        self.timeout = timeout
        self._client = client

    async def send_alert(self, text: str) -> None:
        """
        Post alert text.

        Raises:
            httpx.HTTPError: webhook unreachable or answered with an error
        """
        logger.warning(f"[ALERT] {text}")
        if self._client is not None:
            await self._post(self._client, text)
            return
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            await self._post(client, text)

    async def _post(self, client: httpx.AsyncClient, text: str) -> None:
        response = await client.post(self.webhook_url, json={"text": text})
        response.raise_for_status()
