"""SendGrid email service for Fix-It notifications.

Uses asyncio.to_thread to wrap the synchronous SendGrid client.
"""

import asyncio
import html
import logging

import sendgrid
from sendgrid.helpers.mail import Content, Email, HtmlContent, Mail, To

from fixit_platform.app.config import Settings, get_settings

logger = logging.getLogger(__name__)


def build_notification_html(title: str, message: str, link: str | None = None) -> str:
    """Build the HTML body shared by all notification emails."""
    button = ""
    if link:
        button = f"""
        <tr>
            <td style="padding: 24px 0 0 0;">
                <a href="{html.escape(link, quote=True)}"
                   style="background: #2563eb; color: #ffffff; padding: 12px 20px;
                          border-radius: 6px; text-decoration: none; font-weight: 600;">
                    View details
                </a>
            </td>
        </tr>
        """

    return f"""<!DOCTYPE html>
<html>
<body style="margin: 0; padding: 0; background: #f3f4f6; font-family: Arial, sans-serif;">
    <table width="100%" cellpadding="0" cellspacing="0" style="padding: 32px 0;">
        <tr>
            <td align="center">
                <table width="560" cellpadding="0" cellspacing="0"
                       style="background: #ffffff; border-radius: 8px; padding: 32px;">
                    <tr>
                        <td style="font-size: 20px; font-weight: 700; color: #111827;">
                            {html.escape(title)}
                        </td>
                    </tr>
                    <tr>
                        <td style="padding-top: 12px; color: #4b5563; font-size: 15px; line-height: 1.5;">
                            {html.escape(message)}
                        </td>
                    </tr>
                    {button}
                </table>
            </td>
        </tr>
    </table>
</body>
</html>
"""


class EmailService:
    """Send transactional email via SendGrid."""

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()

    @property
    def _configured(self) -> bool:
        return bool(self.settings.sendgrid_api_key and self.settings.email_from)

    def _send_mail(self, mail: Mail) -> bool:
        """Synchronous send via SendGrid. Returns True on success."""
        client = sendgrid.SendGridAPIClient(api_key=self.settings.sendgrid_api_key)
        response = client.send(mail)
        if response.status_code in (200, 201, 202):
            return True
        logger.error(
            "SendGrid returned status %s: %s",
            response.status_code,
            response.body,
        )
        return False

    async def send(
        self,
        to: str,
        subject: str,
        html_body: str,
        text: str | None = None,
    ) -> dict:
        """Send one email. Never raises; returns {"ok": bool, ...}."""
        if not self._configured:
            logger.warning("SendGrid not configured, email not sent to %s", to)
            return {"ok": False, "error": "sendgrid_not_configured"}

        try:
            mail = Mail(
                from_email=Email(self.settings.email_from, "Fix-It"),
                to_emails=To(to),
                subject=subject,
                html_content=HtmlContent(html_body),
            )
            if text:
                mail.add_content(Content("text/plain", text))
            ok = await asyncio.to_thread(self._send_mail, mail)
            if ok:
                logger.info("Email '%s' sent to %s", subject, to)
            return {"ok": ok}
        except Exception as e:
            logger.exception("Failed to send email to %s", to)
            return {"ok": False, "error": str(e)}

    async def send_notification_email(
        self,
        to: str,
        subject: str,
        message: str,
        link: str | None = None,
    ) -> dict:
        return await self.send(
            to,
            subject,
            build_notification_html(subject, message, link),
            text=f"{message}\n\n{link}" if link else message,
        )
