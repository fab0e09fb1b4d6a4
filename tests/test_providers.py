"""Tests for the outbound email and SMS providers and their message templates."""

from datetime import datetime
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from fixit_platform.services.email_service import EmailService, build_notification_html
from fixit_platform.services.sms_service import SMSService, rent_reminder_text, request_update_text, to_e164


@pytest.fixture
def sms_settings(settings):
    return settings.model_copy(update={"sms_username": "fixit", "sms_api_key": "key-123"})


def _gateway(*responses):
    """Patch httpx.AsyncClient so successive posts return ``responses``."""
    client = MagicMock()
    client.post = AsyncMock(side_effect=list(responses))
    ctx_manager = MagicMock()
    ctx_manager.__aenter__ = AsyncMock(return_value=client)
    ctx_manager.__aexit__ = AsyncMock(return_value=False)
    return patch("fixit_platform.services.sms_service.httpx.AsyncClient", return_value=ctx_manager), client


def _response(status_code, body=None):
    resp = MagicMock()
    resp.status_code = status_code
    resp.json.return_value = body or {}
    resp.text = str(body or "")
    return resp


# ---------------------------------------------------------------------------
# SMS
# ---------------------------------------------------------------------------


class TestSMSService:

    async def test_unconfigured_is_noop(self, settings):
        result = await SMSService(settings.model_copy(update={"sms_api_key": ""})).send_sms("+256700000001", "hi")
        assert result["ok"] is False
        assert result["error"] == "sms_not_configured"

    async def test_invalid_phone(self, sms_settings):
        result = await SMSService(sms_settings).send_sms("12", "hi")
        assert result["error"] == "invalid_phone"

    @pytest.mark.parametrize("raw, expected", [
        ("+256 700 000 001", "+256700000001"),
        ("0772 000 111", "+256772000111"),
        ("00447700900123", "+447700900123"),
        ("256772000111", "+256772000111"),
        ("5551234567", "+2565551234567"),
        ("12", None),
        ("", None),
    ])
    def test_to_e164(self, raw, expected):
        assert to_e164(raw, "256") == expected

    async def test_bare_digits_sent_in_e164(self, sms_settings):
        patcher, client = _gateway(_response(201, {}))
        with patcher:
            result = await SMSService(sms_settings).send_sms("5551234567", "hello")
        assert result["ok"] is True
        assert client.post.call_args.kwargs["data"]["to"] == "+2565551234567"

    async def test_sends_form_payload(self, sms_settings):
        patcher, client = _gateway(_response(201, {"SMSMessageData": {"Message": "Sent to 1/1"}}))
        with patcher:
            result = await SMSService(sms_settings).send_sms("+256700000001", "Your request is assigned")
        assert result["ok"] is True
        kwargs = client.post.call_args.kwargs
        assert kwargs["data"]["to"] == "+256700000001"
        assert kwargs["data"]["username"] == "fixit"
        assert kwargs["headers"]["apiKey"] == "key-123"

    async def test_retries_on_gateway_error(self, sms_settings):
        patcher, client = _gateway(_response(503, "busy"), _response(200, {"ok": 1}))
        with patcher, patch("fixit_platform.services.sms_service.asyncio.sleep", new=AsyncMock()):
            result = await SMSService(sms_settings).send_sms("+256700000001", "hello")
        assert result["ok"] is True
        assert client.post.await_count == 2

    async def test_client_error_not_retried(self, sms_settings):
        patcher, client = _gateway(_response(401, "bad key"))
        with patcher:
            result = await SMSService(sms_settings).send_sms("+256700000001", "hello")
        assert result == {"ok": False, "error": "http_401", "status": 401, "message": "hello"}
        assert client.post.await_count == 1


# ---------------------------------------------------------------------------
# Email
# ---------------------------------------------------------------------------


class TestEmailService:

    async def test_unconfigured_is_noop(self, settings):
        service = EmailService(settings.model_copy(update={"sendgrid_api_key": ""}))
        result = await service.send_notification_email("a@test.com", "Subject", "Body")
        assert result == {"ok": False, "error": "sendgrid_not_configured"}

    async def test_send_failure_reported(self, settings):
        service = EmailService(settings.model_copy(update={"sendgrid_api_key": "SG.key"}))
        with patch.object(EmailService, "_send_mail", side_effect=RuntimeError("quota")):
            result = await service.send_notification_email("a@test.com", "Subject", "Body")
        assert result["ok"] is False
        assert "quota" in result["error"]

    def test_html_includes_link(self):
        html = build_notification_html("Request assigned", "A plumber is on the way.", "http://localhost:3000/requests/1")
        assert "A plumber is on the way." in html
        assert 'href="http://localhost:3000/requests/1"' in html


class TestTemplates:

    def test_request_update(self):
        text = request_update_text("Leak", "in_progress", "http://x/requests/1")
        assert text == "Fix-It: 'Leak' is now in progress. Details: http://x/requests/1"

    def test_rent_due_and_overdue(self):
        due = rent_reminder_text("Sunset Apartments", "A1", 850000, datetime(2024, 2, 1))
        overdue = rent_reminder_text("Sunset Apartments", "A1", 850000, datetime(2024, 2, 1), "overdue")
        assert due == "Fix-It: Rent of 850,000 for Sunset Apartments unit A1 is due on 2024-02-01."
        assert overdue.endswith("was due on 2024-02-01 and is now overdue.")
