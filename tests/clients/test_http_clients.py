"""
Tests for the outbound HTTP adapters (mail, reCAPTCHA, Slack alerts).

Requests are served by httpx.MockTransport, no network involved.
"""
import json
from unittest.mock import AsyncMock, patch
from urllib.parse import parse_qs

import httpx
import pytest

from account_service.clients.mailer import CONFIRM_SUBJECT, RESET_SUBJECT, Mailer, build_link
from account_service.clients.recaptcha import Recaptcha
from account_service.core.alerts import SlackAlert
from account_service.core.exceptions import Unauthorized

MAIL_URL = "https://mail.example.com/send"


def mock_client(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestBuildLink:
    """Tests for build_link function"""

    def test_trailing_slash(self):
        """Origin trailing slash is not doubled"""
        assert build_link("https://app.example.com/", "confirm", "a.b") == "https://app.example.com/confirm/a.b"


class TestMailer:
    """Tests for Mailer"""

    @pytest.mark.asyncio
    async def test_send_confirm(self):
        """Confirmation mail carries the confirm link and bearer auth"""
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"id": "msg-1"})

        async with mock_client(handler) as client:
            mailer = Mailer(MAIL_URL, "key-1", "noreply@example.com", client=client)
            result = await mailer.send_confirm("alice@example.com", "body.sig", "https://app.example.com")

        assert result == {"id": "msg-1"}
        request = seen[0]
        assert request.headers["Authorization"] == "Bearer key-1"
        message = json.loads(request.content)
        assert message["to"] == ["alice@example.com"]
        assert message["from"] == "noreply@example.com"
        assert message["subject"] == CONFIRM_SUBJECT
        assert "https://app.example.com/confirm/body.sig" in message["text"]

    @pytest.mark.asyncio
    async def test_send_reset(self):
        """Reset mail carries the reset link"""
        seen = []

        def handler(request):
            seen.append(json.loads(request.content))
            return httpx.Response(202)

        async with mock_client(handler) as client:
            mailer = Mailer(MAIL_URL, "key-1", "noreply@example.com", client=client)
            result = await mailer.send_reset("alice@example.com", "body.sig", "https://app.example.com")

        assert result == {}
        assert seen[0]["subject"] == RESET_SUBJECT
        assert "https://app.example.com/reset/body.sig" in seen[0]["text"]

    @pytest.mark.asyncio
    async def test_transport_error_retried(self):
        """Connect errors are retried, then the send succeeds"""
        attempts = []

        def handler(request):
            attempts.append(request)
            if len(attempts) < 3:
                raise httpx.ConnectError("refused", request=request)
            return httpx.Response(200, json={"id": "msg-3"})

        with patch("account_service.utils.retry.asyncio.sleep", new=AsyncMock()):
            async with mock_client(handler) as client:
                mailer = Mailer(MAIL_URL, "key-1", "noreply@example.com", client=client)
                result = await mailer.send_confirm("alice@example.com", "r", "https://app.example.com")

        assert result == {"id": "msg-3"}
        assert len(attempts) == 3

    @pytest.mark.asyncio
    async def test_rejection_not_retried(self):
        """API errors raise immediately"""
        attempts = []

        def handler(request):
            attempts.append(request)
            return httpx.Response(422, json={"error": "invalid recipient"})

        async with mock_client(handler) as client:
            mailer = Mailer(MAIL_URL, "key-1", "noreply@example.com", client=client)
            with pytest.raises(httpx.HTTPStatusError):
                await mailer.send_confirm("alice@example.com", "r", "https://app.example.com")

        assert len(attempts) == 1


class TestRecaptcha:
    """Tests for Recaptcha.verify"""

    @pytest.mark.asyncio
    async def test_success(self):
        """Provider success passes; secret, response and remote ip are posted"""
        seen = []

        def handler(request):
            seen.append(parse_qs(request.content.decode()))
            return httpx.Response(200, json={"success": True})

        async with mock_client(handler) as client:
            await Recaptcha("secret-1", client=client).verify("token", "203.0.113.7")

        assert seen[0] == {"secret": ["secret-1"], "response": ["token"], "remoteip": ["203.0.113.7"]}

    @pytest.mark.asyncio
    async def test_rejected(self):
        """Provider failure is Unauthorized with its error codes"""
        def handler(request):
            return httpx.Response(200, json={"success": False, "error-codes": ["timeout-or-duplicate"]})

        async with mock_client(handler) as client:
            with pytest.raises(Unauthorized, match="timeout-or-duplicate"):
                await Recaptcha("secret-1", client=client).verify("token")

    @pytest.mark.asyncio
    async def test_missing_response(self):
        """Empty captcha response is rejected without calling the provider"""
        handler = AsyncMock()
        async with mock_client(handler) as client:
            with pytest.raises(Unauthorized):
                await Recaptcha("secret-1", client=client).verify("")
        handler.assert_not_called()


class TestSlackAlert:
    """Tests for SlackAlert.send_alert"""

    @pytest.mark.asyncio
    async def test_posts_text(self):
        seen = []

        def handler(request):
            seen.append(json.loads(request.content))
            return httpx.Response(200, text="ok")

        async with mock_client(handler) as client:
            await SlackAlert("https://hooks.slack.example/T1", client=client).send_alert("pool low")

        assert seen == [{"text": "pool low"}]

    @pytest.mark.asyncio
    async def test_webhook_error_raised(self):
        """Webhook failures propagate; callers decide whether to isolate them"""
        def handler(request):
            return httpx.Response(500)

        async with mock_client(handler) as client:
            with pytest.raises(httpx.HTTPStatusError):
                await SlackAlert("https://hooks.slack.example/T1", client=client).send_alert("pool low")
