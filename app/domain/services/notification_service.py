"""
Notification Service - Deposit confirmations and low balance alerts by e-mail

Sends through the Brevo transactional e-mail API. Sending is best effort:
by the time a notification is sent the wallet change is already committed,
so every failure is logged and reported as ``False``, never raised.
"""
from decimal import Decimal
from html import escape

import httpx

from app.core.config import settings
from app.core.logging import get_logger
from app.core.circuit_breaker import get_email_circuit_breaker
from app.core.exceptions import EmailDeliveryError, ServiceTimeoutError
from app.core.validation import EmailValidator

logger = get_logger(__name__)


def format_money(amount: Decimal | float | int) -> str:
    """Render an amount with the configured currency, e.g. ``LKR 1500.00``"""
    value = Decimal(str(amount)).quantize(Decimal("0.01"))
    return f"{settings.CURRENCY} {value}"


class NotificationService:
    """Service for e-mailing wallet events to users and HR"""

    @staticmethod
    async def send_deposit(email: str, name: str, amount: Decimal | float) -> bool:
        """Tell a user that a deposit has been made to their wallet"""
        if not email:
            return False

        html_content = (
            "<h1>Deposit Received</h1>"
            f"<p>Hello {escape(name)},</p>"
            "<p>We are pleased to inform you that a deposit of "
            f"<strong>{format_money(amount)}</strong> has been made to your wallet.</p>"
            "<p>Thank you.</p>"
        )

        sent = await NotificationService._send_email(
            recipients=[{"email": email, "name": name}],
            subject="Deposit Received",
            html_content=html_content,
        )
        if sent:
            logger.info(
                "Deposit e-mail sent",
                extra_data={"recipient": EmailValidator.mask(email), "amount": str(amount)},
            )
        return sent

    @staticmethod
    async def send_low_balance(
        emails: list[str],
        name: str,
        balance: Decimal | float,
        total_deposited: Decimal | float,
    ) -> bool:
        """Alert HR that a user's expenses exceeded their deposits"""
        recipients = [{"email": e} for e in emails if e]
        if not recipients:
            return False

        html_content = (
            "<h1>Low Balance Alert</h1>"
            f"<p>User <strong>{escape(name)}</strong> has exceeded their deposit amount.</p>"
            f"<p><strong>Current Balance:</strong> {format_money(balance)}</p>"
            f"<p><strong>Total Deposit was:</strong> {format_money(total_deposited)}</p>"
            "<p>Please review and update the deposit amount.</p>"
        )

        sent = await NotificationService._send_email(
            recipients=recipients,
            subject=f"Low Balance Alert: {name}",
            html_content=html_content,
        )
        if sent:
            logger.info(
                "Low balance e-mail sent to HR",
                extra_data={
                    "recipients": [EmailValidator.mask(r["email"]) for r in recipients],
                    "balance": str(balance),
                },
            )
        return sent

    @staticmethod
    async def _send_email(
        recipients: list[dict[str, str]],
        subject: str,
        html_content: str,
    ) -> bool:
        """POST one transactional e-mail; False on any failure"""
        if not settings.BREVO_API_KEY:
            logger.warning(
                "BREVO_API_KEY not configured, e-mail skipped",
                extra_data={"subject": subject},
            )
            return False

        payload = {
            "sender": {"email": settings.EMAIL_FROM, "name": settings.EMAIL_SENDER_NAME},
            "to": recipients,
            "subject": subject,
            "htmlContent": html_content,
        }
        headers = {
            "api-key": settings.BREVO_API_KEY,
            "accept": "application/json",
            "content-type": "application/json",
        }
        timeout = settings.EMAIL_TIMEOUT_SECONDS

        circuit_breaker = get_email_circuit_breaker()

        async def _send() -> bool:
            async with httpx.AsyncClient() as client:
                try:
                    response = await client.post(
                        settings.BREVO_API_URL,
                        json=payload,
                        headers=headers,
                        timeout=timeout,
                    )
                except httpx.TimeoutException as exc:
                    raise ServiceTimeoutError("email", timeout) from exc
                # Brevo answers 201 Created on success
                if response.status_code not in (200, 201, 202):
                    raise EmailDeliveryError.from_response("sendTransacEmail", response)
                return True

        try:
            return await circuit_breaker.execute(_send)
        except Exception as e:
            logger.error(
                "Error sending e-mail",
                extra_data={"subject": subject, "error": str(e)},
                exc_info=True
            )
            return False
