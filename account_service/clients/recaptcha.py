"""
reCAPTCHA verification client.

POSTs the client's captcha response to the siteverify endpoint and rejects
the request unless the provider reports success.
"""
import logging
from typing import Optional

import httpx

from account_service.core.exceptions import Unauthorized

logger = logging.getLogger(__name__)

DEFAULT_VERIFY_URL = "https://www.google.com/recaptcha/api/siteverify"


class Recaptcha:
    """
    Args:
        secret: Server-side reCAPTCHA secret
        verify_url: siteverify endpoint
        timeout: HTTP timeout in seconds
        client: Optional shared httpx.AsyncClient
    """

    def __init__(
        self,
        secret: str,
        verify_url: str = DEFAULT_VERIFY_URL,
        timeout: float = 5.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.secret = secret
        self.verify_url = verify_url
        self.timeout = timeout
        self._client = client

    async def verify(self, response: str, source_ip: Optional[str] = None) -> None:
        """
        Verify a captcha response.

        Raises:
            Unauthorized: Missing response or rejected by the provider
            httpx.HTTPError: Provider unreachable or answered with an error
        """
        if not response:
            raise Unauthorized("missing recaptcha response.")

        form = {"secret": self.secret, "response": response}
        if source_ip:
            form["remoteip"] = source_ip

        if self._client is not None:
            result = await self._post(self._client, form)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                result = await self._post(client, form)

        if not result.get("success"):
            codes = ",".join(result.get("error-codes", [])) or "unknown"
            logger.info(f"RECAPTCHA_REJECTED [source_ip={source_ip}, errors={codes}]")
            raise Unauthorized(f"recaptcha verification failed: {codes}.")

    async def _post(self, client: httpx.AsyncClient, form: dict) -> dict:
        rsp = await client.post(self.verify_url, data=form)
        rsp.raise_for_status()
        return rsp.json()
