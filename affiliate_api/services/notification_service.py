"""
Affiliate notification emails.

Messages are delivered through the Resend HTTP API. Delivery is
best-effort: every send returns a bool and failures are logged, never
raised, so an email outage cannot roll back the operation that triggered it.

Idempotency keys name the event (profile or payout id plus a timestamp
or code), so repeats of the same event are deduplicated by the provider
but a later event for the same recipient is not.
"""
import hashlib
import html as html_lib
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

import httpx

from affiliate_api.config import settings

logger = logging.getLogger(__name__)


@dataclass
class EmailMessage:
    """A rendered transactional email."""
    to: str
    subject: str
    html: str
    text: str


def format_amount(minor_units: int) -> str:
    """Render minor currency units as a major-unit amount, e.g. 150050 -> 1,500.50."""
    return f"{minor_units // 100:,}.{minor_units % 100:02d}"


class NotificationService:
    """Sends affiliate lifecycle emails via Resend."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        api_url: Optional[str] = None,
        from_email: Optional[str] = None,
        dashboard_url: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = settings.RESEND_API_KEY if api_key is None else api_key
        self.api_url = api_url or settings.RESEND_API_URL
        self.from_email = from_email or settings.EMAIL_FROM
        self.dashboard_url = dashboard_url or settings.DASHBOARD_URL
        self.timeout = timeout
        self.transport = transport

    async def send(self, message: EmailMessage, idempotency_key: Optional[str] = None) -> bool:
        """
        Deliver one message.

        Args:
            message: Rendered email
            idempotency_key: Stable key so a resend of the same event is
                deduplicated by the provider

        Returns:
            True if the provider accepted the message, False otherwise
        """
        if not self.api_key:
            logger.warning(f"Email not configured. Skipping '{message.subject}' to {message.to}")
            return False

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        if idempotency_key:
            headers["Idempotency-Key"] = hashlib.sha256(idempotency_key.encode()).hexdigest()

        payload = {
            "from": self.from_email,
            "to": [message.to],
            "subject": message.subject,
            "html": message.html,
            "text": message.text,
        }

        try:
            async with httpx.AsyncClient(transport=self.transport) as client:
                response = await client.post(
                    self.api_url,
                    json=payload,
                    headers=headers,
                    timeout=self.timeout
                )
        except httpx.TimeoutException:
            logger.error(f"Email provider timed out sending '{message.subject}' to {message.to}")
            return False
        except httpx.HTTPError as e:
            logger.error(f"Failed to send email to {message.to}: {e}")
            return False

        if response.is_success:
            logger.info(f"Email '{message.subject}' sent to {message.to}")
            return True

        logger.error(f"Email provider rejected message to {message.to}: {response.status_code} {response.text}")
        return False

    # ==================== AFFILIATE EVENTS ====================
    # Every event method takes an event_ref that identifies that one
    # occurrence. User-supplied values are escaped in the HTML bodies.

    async def send_application_received(self, to_email: str, name: str, event_ref: str) -> bool:
        subject = "Affiliate Application Received"
        text = (
            f"Hello {name},\n\n"
            "Thank you for applying to our affiliate program. "
            "We will review your application and get back to you shortly.\n"
        )
        html = f"""
        <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
            <h2>Application Received</h2>
            <p>Hello {html_lib.escape(name)},</p>
            <p>Thank you for applying to our affiliate program. We will review your
            application and get back to you shortly.</p>
        </div>
        """
        return await self.send(
            EmailMessage(to=to_email, subject=subject, html=html, text=text),
            idempotency_key=f"application-received:{event_ref}",
        )

    async def send_application_approved(
        self,
        to_email: str,
        name: str,
        affiliate_code: str,
        commission_rate: Decimal,
        event_ref: str,
    ) -> bool:
        subject = "Affiliate Application Approved"
        text = (
            f"Hello {name},\n\n"
            "Your affiliate application has been approved.\n"
            f"Affiliate code: {affiliate_code}\n"
            f"Commission rate: {commission_rate}%\n"
            f"Dashboard: {self.dashboard_url}\n"
        )
        html = f"""
        <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
            <h2>Welcome to the affiliate program!</h2>
            <p>Hello {html_lib.escape(name)},</p>
            <p>Your affiliate application has been approved.</p>
            <table>
                <tr><td><strong>Affiliate code</strong></td><td>{html_lib.escape(affiliate_code)}</td></tr>
                <tr><td><strong>Commission rate</strong></td><td>{commission_rate}%</td></tr>
            </table>
            <p><a href="{html_lib.escape(self.dashboard_url)}">Open your dashboard</a> to start creating links.</p>
        </div>
        """
        return await self.send(
            EmailMessage(to=to_email, subject=subject, html=html, text=text),
            idempotency_key=f"application-approved:{event_ref}",
        )

    async def send_application_rejected(
        self,
        to_email: str,
        name: str,
        event_ref: str,
        feedback: Optional[str] = None,
    ) -> bool:
        subject = "Affiliate Application Update"
        feedback_text = f"\nFeedback: {feedback}\n" if feedback else ""
        feedback_html = f"<p><strong>Feedback:</strong> {html_lib.escape(feedback)}</p>" if feedback else ""
        text = (
            f"Hello {name},\n\n"
            "Unfortunately we are unable to approve your affiliate application at this time.\n"
            f"{feedback_text}"
        )
        html = f"""
        <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
            <h2>Application Update</h2>
            <p>Hello {html_lib.escape(name)},</p>
            <p>Unfortunately we are unable to approve your affiliate application at this time.</p>
            {feedback_html}
        </div>
        """
        return await self.send(
            EmailMessage(to=to_email, subject=subject, html=html, text=text),
            idempotency_key=f"application-rejected:{event_ref}",
        )

    async def send_payout_processed(
        self,
        to_email: str,
        name: str,
        amount: int,
        transaction_id: Optional[str],
        event_ref: str,
    ) -> bool:
        subject = "Affiliate Payout Processed"
        reference = transaction_id or "-"
        text = (
            f"Hello {name},\n\n"
            f"Your payout of {format_amount(amount)} has been processed.\n"
            f"Transaction reference: {reference}\n"
        )
        html = f"""
        <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
            <h2>Payout Processed</h2>
            <p>Hello {html_lib.escape(name)},</p>
            <p>Your payout of <strong>{format_amount(amount)}</strong> has been processed.</p>
            <p>Transaction reference: {html_lib.escape(reference)}</p>
        </div>
        """
        return await self.send(
            EmailMessage(to=to_email, subject=subject, html=html, text=text),
            idempotency_key=f"payout-processed:{event_ref}",
        )
