"""SMS service via the Africa's Talking messaging API.

Endpoints used:
- POST /version1/messaging: send outbound SMS (form-encoded, apiKey header)

Delivery is best-effort: every public method returns a result dict and
never raises, so callers can fire and forget.
"""

import asyncio
import logging
import re

import httpx

from fixit_platform.app.config import Settings, get_settings

logger = logging.getLogger(__name__)

_VALID_PHONE = re.compile(r"^\+\d{7,15}$")


def to_e164(phone: str | None, default_country_code: str) -> str | None:
    """Normalize a stored phone number to +<country><number>.

    Numbers are stored as entered; bare national numbers get the default
    country code, a leading 0 trunk prefix is dropped and 00 becomes +.
    Returns None when the result is still not a plausible E.164 number.
    """
    if not phone:
        return None
    raw = phone.strip()
    digits = re.sub(r"\D", "", raw)
    if raw.startswith("+"):
        candidate = f"+{digits}"
    elif digits.startswith("00"):
        candidate = f"+{digits[2:]}"
    elif digits.startswith("0"):
        candidate = f"+{default_country_code}{digits[1:]}"
    elif digits.startswith(default_country_code) and len(digits) > 10:
        candidate = f"+{digits}"
    else:
        candidate = f"+{default_country_code}{digits}"
    return candidate if _VALID_PHONE.match(candidate) else None


# Gateway status codes worth a second attempt
_RETRY_STATUSES = {429, 500, 502, 503, 504}


class SMSService:
    """Send SMS messages through the configured HTTP gateway."""

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()

    @property
    def _configured(self) -> bool:
        return bool(
            self.settings.sms_gateway_url
            and self.settings.sms_username
            and self.settings.sms_api_key
        )

    async def send_sms(self, to_number: str, message: str) -> dict:
        """Send one outbound SMS."""
        if not self._configured:
            logger.warning("SMS gateway not configured, message not sent to %s", to_number)
            return {"ok": False, "error": "sms_not_configured", "message": message}

        normalized = to_e164(to_number, self.settings.sms_default_country_code)
        if normalized is None:
            logger.warning("Invalid phone number format: %s", to_number)
            return {"ok": False, "error": "invalid_phone", "message": message}
        to_number = normalized

        if not message or not message.strip():
            return {"ok": False, "error": "empty_message", "message": message}

        payload = {
            "username": self.settings.sms_username,
            "to": to_number,
            "message": message,
            "from": self.settings.sms_sender_id,
        }
        headers = {
            "apiKey": self.settings.sms_api_key,
            "Accept": "application/json",
        }

        logger.info("SMS send: to=%s msg_len=%d", to_number, len(message))

        for attempt in range(3):
            try:
                async with httpx.AsyncClient(timeout=30.0) as client:
                    resp = await client.post(
                        self.settings.sms_gateway_url,
                        data=payload,
                        headers=headers,
                    )

                if 200 <= resp.status_code < 300:
                    try:
                        data = resp.json()
                    except Exception:
                        data = {"raw": resp.text}
                    logger.info("SMS sent to %s (status=%d)", to_number, resp.status_code)
                    return {"ok": True, "response": data}

                if resp.status_code in _RETRY_STATUSES and attempt < 2:
                    wait = 2 * (attempt + 1)
                    logger.warning(
                        "SMS gateway %d, retrying in %ds (attempt %d/3): %s",
                        resp.status_code, wait, attempt + 1, resp.text[:300],
                    )
                    await asyncio.sleep(wait)
                    continue

                logger.error("SMS send failed (%d): %s", resp.status_code, resp.text[:300])
                return {"ok": False, "error": f"http_{resp.status_code}", "status": resp.status_code, "message": message}

            except httpx.TimeoutException:
                logger.error("SMS gateway timed out for %s", to_number)
                return {"ok": False, "error": "timeout", "message": message}
            except Exception as e:
                logger.error("SMS gateway error: %s", e)
                return {"ok": False, "error": str(e), "message": message}

        return {"ok": False, "error": "max_retries", "message": message}


# ---------------------------------------------------------------------------
# Message templates
# ---------------------------------------------------------------------------


def request_update_text(request_title: str, status: str, request_link: str | None = None) -> str:
    message = f"Fix-It: '{request_title}' is now {status.replace('_', ' ')}."
    if request_link:
        message += f" Details: {request_link}"
    return message


def rent_reminder_text(
    property_name: str,
    unit_name: str,
    amount_due: float,
    due_date,
    reminder_type: str = "due",
) -> str:
    due = due_date.strftime("%Y-%m-%d") if hasattr(due_date, "strftime") else str(due_date)
    if reminder_type == "overdue":
        return (
            f"Fix-It: Rent of {amount_due:,.0f} for {property_name} unit {unit_name} "
            f"was due on {due} and is now overdue."
        )
    return (
        f"Fix-It: Rent of {amount_due:,.0f} for {property_name} unit {unit_name} "
        f"is due on {due}."
    )
