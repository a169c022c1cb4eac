"""
Email notification service for donation receipts.

When SMTP is configured, mail is delivered through it. Otherwise (local
development, tests) emails are logged to a file instead of sent.
"""
import asyncio
import logging
import smtplib
from dataclasses import dataclass, field
from datetime import datetime
from email.message import EmailMessage
from pathlib import Path
from typing import Optional

from app.core.config import settings
from app.schemas.donation import ReceiptData
from app.services.receipt import format_amount, receipt_filename

logger = logging.getLogger(__name__)


@dataclass
class EmailAttachment:
    filename: str
    content: bytes
    content_type: str = "application/pdf"


@dataclass
class EmailResult:
    success: bool
    reason: Optional[str] = None
    error: Optional[str] = None
    attachments: list[str] = field(default_factory=list)


class EmailService:
    """
    Email service for sending donor emails.

    In development mode, emails are logged to a file.
    With SMTP_HOST set, emails are sent over SMTP in a worker thread.
    """

    def __init__(self):
        self.from_email = settings.FROM_EMAIL
        self.from_name = settings.FROM_NAME
        self.site_url = settings.SITE_URL
        self.smtp_host = settings.SMTP_HOST
        self.email_log_path = Path(settings.EMAIL_LOG_PATH)

    def _log_email(
        self,
        to: str,
        subject: str,
        body: str,
        html: Optional[str] = None,
        attachments: Optional[list[EmailAttachment]] = None
    ):
        """Log email to file for development/testing."""
        timestamp = datetime.now().isoformat()
        log_entry = f"""
================================================================================
EMAIL SENT: {timestamp}
================================================================================
TO: {to}
FROM: {self.from_name} <{self.from_email}>
SUBJECT: {subject}
--------------------------------------------------------------------------------
BODY:
{body}
--------------------------------------------------------------------------------
"""
        if html:
            log_entry += f"""
HTML:
{html}
--------------------------------------------------------------------------------
"""
        for attachment in attachments or []:
            log_entry += f"ATTACHMENT: {attachment.filename} ({len(attachment.content)} bytes)\n"

        with open(self.email_log_path, "a") as f:
            f.write(log_entry)

        logger.info("Email logged: to=%s, subject=%s", to, subject)

    def _build_message(
        self,
        to: str,
        subject: str,
        body: str,
        html: Optional[str],
        attachments: list[EmailAttachment]
    ) -> EmailMessage:
        message = EmailMessage()
        message["From"] = f"{self.from_name} <{self.from_email}>"
        message["To"] = to
        message["Subject"] = subject
        message.set_content(body)
        if html:
            message.add_alternative(html, subtype="html")
        for attachment in attachments:
            maintype, _, subtype = attachment.content_type.partition("/")
            message.add_attachment(
                attachment.content,
                maintype=maintype,
                subtype=subtype or "octet-stream",
                filename=attachment.filename,
            )
        return message

    def _send_smtp(self, message: EmailMessage) -> None:
        if settings.SMTP_TLS and settings.SMTP_PORT == 465:
            smtp = smtplib.SMTP_SSL(self.smtp_host, settings.SMTP_PORT, timeout=30)
        else:
            smtp = smtplib.SMTP(self.smtp_host, settings.SMTP_PORT, timeout=30)
        with smtp:
            if settings.SMTP_TLS and settings.SMTP_PORT != 465:
                smtp.starttls()
            if settings.SMTP_USERNAME:
                smtp.login(settings.SMTP_USERNAME, settings.SMTP_PASSWORD or "")
            smtp.send_message(message)

    async def send_email(
        self,
        to: str,
        subject: str,
        body: str,
        html: Optional[str] = None,
        attachments: Optional[list[EmailAttachment]] = None
    ) -> EmailResult:
        """
        Send an email.

        Args:
            to: Recipient email address
            subject: Email subject line
            body: Plain text body
            html: Optional HTML body
            attachments: Optional file attachments

        Returns:
            EmailResult describing whether the email was sent/logged
        """
        if not to:
            return EmailResult(success=False, reason="no_recipient", error="No recipient email address provided")

        attachments = attachments or []
        names = [a.filename for a in attachments]
        try:
            if not self.smtp_host:
                self._log_email(to, subject, body, html, attachments)
                return EmailResult(success=True, attachments=names)

            message = self._build_message(to, subject, body, html, attachments)
            await asyncio.to_thread(self._send_smtp, message)
            logger.info("Email sent: to=%s, subject=%s", to, subject)
            return EmailResult(success=True, attachments=names)

        except (smtplib.SMTPException, OSError) as e:
            logger.error("Failed to send email to %s: %s", to, e)
            return EmailResult(success=False, reason="send_failed", error=str(e))

    async def send_donation_receipt_email(
        self,
        receipt: ReceiptData,
        pdf: Optional[bytes] = None
    ) -> EmailResult:
        """
        Send the thank-you email for a completed donation.

        Args:
            receipt: Receipt view-model of the donation
            pdf: Rendered PDF receipt, attached when present
        """
        if not receipt.donor_email:
            return EmailResult(success=False, reason="no_recipient", error="No donor email address provided")

        org = receipt.organization
        formatted_amount = format_amount(receipt.amount, receipt.currency)
        completed = receipt.completed_at.strftime("%d %B %Y, %I:%M %p")
        project_line = receipt.project_title or "General Fund"

        subject = f"Thank You for Your Donation - Receipt {receipt.receipt_number}"

        body = f"""Dear {receipt.donor_name},

Thank you for your generous donation to {org.name}.

Receipt Number: {receipt.receipt_number}
Amount: {formatted_amount}
Donated To: {project_line}
Payment Reference: {receipt.payment_reference}
Date: {completed}

{'Your official receipt is attached to this email.' if pdf else 'Your official receipt is available on our website.'}

With gratitude,
{org.name}
{org.website or ''}
"""

        html = f"""
<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <style>
        body {{ font-family: 'Segoe UI', Arial, sans-serif; line-height: 1.6; color: #333; }}
        .container {{ max-width: 600px; margin: 0 auto; padding: 20px; }}
        .header {{ text-align: center; padding: 20px 0; }}
        .logo {{ font-size: 24px; font-weight: bold; color: #0d9488; }}
        .content {{ background: #f8fafc; border-radius: 12px; padding: 30px; margin: 20px 0; }}
        .amount {{ font-size: 32px; font-weight: bold; color: #0d9488; text-align: center; }}
        .details {{ background: white; border-radius: 8px; padding: 20px; margin: 20px 0; }}
        .footer {{ text-align: center; color: #64748b; font-size: 14px; padding: 20px 0; }}
    </style>
</head>
<body>
    <div class="container">
        <div class="header">
            <div class="logo">{org.name}</div>
            {f'<p>{org.tagline}</p>' if org.tagline else ''}
        </div>
        <div class="content">
            <h2>Thank You, {receipt.donor_name}!</h2>
            <p class="amount">{formatted_amount}</p>
            <div class="details">
                <p><strong>Receipt Number:</strong> {receipt.receipt_number}</p>
                <p><strong>Donated To:</strong> {project_line}</p>
                <p><strong>Payment Reference:</strong> {receipt.payment_reference}</p>
                <p><strong>Date:</strong> {completed}</p>
            </div>
            {'<p>Your official receipt is attached to this email.</p>' if pdf else ''}
        </div>
        <div class="footer">
            <p>{org.legal_name or org.name}</p>
            {f'<p>{org.website}</p>' if org.website else ''}
        </div>
    </div>
</body>
</html>
"""

        attachments = []
        if pdf:
            attachments.append(EmailAttachment(
                filename=receipt_filename(receipt.receipt_number),
                content=pdf,
            ))

        return await self.send_email(receipt.donor_email, subject, body, html, attachments)


def get_email_service() -> EmailService:
    """FastAPI dependency for the email service."""
    return EmailService()
