"""
Transactional email through Resend.

Sending is best effort: callers schedule these as background tasks and a
failed send is logged, never raised. Every interpolated value is
HTML-escaped since names and messages are user supplied.
"""
import html
import logging
from typing import Optional
from urllib.parse import urlparse

import resend

from modelsnapper.core.config import settings

logger = logging.getLogger(__name__)


def _text(value) -> str:
    return html.escape(str(value), quote=True) if value is not None else ""


def _link(url: Optional[str]) -> str:
    """Escaped href; anything but http(s) becomes the app home"""
    if not url or urlparse(url).scheme not in ("http", "https"):
        url = settings.APP_URL
    return html.escape(url, quote=True)


class NotificationService:

    def _send(self, to: Optional[str], subject: str, body: str) -> bool:
        if not to:
            logger.info(f"Skipping email '{subject}': no recipient")
            return False
        if not settings.RESEND_API_KEY:
            logger.info(f"Skipping email '{subject}': RESEND_API_KEY not configured")
            return False

        try:
            resend.api_key = settings.RESEND_API_KEY
            resend.Emails.send({
                "from": settings.EMAIL_FROM,
                "to": to,
                "subject": subject,
                "html": body,
            })
            logger.info(f"Sent email '{subject}' to {to}")
            return True
        except Exception as e:
            logger.error(f"Failed to send email '{subject}' to {to}: {e}")
            return False

    @staticmethod
    def _subject_name(name) -> str:
        # Subjects are plain text; keep them on one line
        return " ".join(str(name or "").split())[:100]

    def send_consent_request_email(self, to: Optional[str], business_name: str, message: Optional[str] = None) -> bool:
        note = f"<blockquote>{_text(message)}</blockquote>" if message else ""
        body = f"""
        <p>Hi,</p>
        <p><strong>{_text(business_name)}</strong> would like to use your likeness for AI fashion renders.</p>
        {note}
        <p><a href="{_link(settings.APP_URL + '/dashboard/model/requests')}">Review the request</a></p>
        """
        subject = f"New Consent Request from {self._subject_name(business_name)} - ModelSnapper.ai"
        return self._send(to, subject, body)

    def send_consent_approved_email(self, to: Optional[str], model_name: str) -> bool:
        body = f"""
        <p>Good news!</p>
        <p><strong>{_text(model_name)}</strong> approved your consent request. You can now generate renders with this model.</p>
        <p><a href="{_link(settings.APP_URL + '/dashboard/business/generate')}">Start generating</a></p>
        """
        return self._send(to, f"Consent Request Approved by {self._subject_name(model_name)} - ModelSnapper.ai", body)

    def send_consent_rejected_email(self, to: Optional[str], model_name: str) -> bool:
        body = f"""
        <p>Hi,</p>
        <p><strong>{_text(model_name)}</strong> declined your consent request.</p>
        <p><a href="{_link(settings.APP_URL + '/dashboard/business/models')}">Browse other models</a></p>
        """
        return self._send(to, f"Consent Request Rejected by {self._subject_name(model_name)} - ModelSnapper.ai", body)

    def send_render_completion_email(self, to: Optional[str], output_url: str) -> bool:
        body = f"""
        <p>Your fashion image is ready.</p>
        <p><a href="{_link(output_url)}">View image</a> or open your <a href="{_link(settings.APP_URL + '/dashboard/business/history')}">history</a>.</p>
        """
        return self._send(to, "Your Fashion Image is Ready! - ModelSnapper.ai", body)

    def send_low_credit_warning_email(self, to: Optional[str], current_credits: int) -> bool:
        body = f"""
        <p>You have <strong>{_text(current_credits)}</strong> credits left.</p>
        <p><a href="{_link(settings.APP_URL + '/dashboard/business/billing')}">Top up credits</a></p>
        """
        return self._send(to, f"Low Credit Warning - {current_credits} Credits Remaining - ModelSnapper.ai", body)


notification_service = NotificationService()
