"""
Donation receipts.

Receipt numbers, the receipt view-model, PDF rendering and the delivery
routine shared by the webhook, auto-recovery and the resend endpoint.
"""
import asyncio
import logging
import secrets
import string
from datetime import datetime, timezone
from decimal import Decimal
from io import BytesIO
from xml.sax.saxutils import escape
from typing import Optional, TYPE_CHECKING

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import getSampleStyleSheet, ParagraphStyle
from reportlab.lib.units import mm
from reportlab.platypus import SimpleDocTemplate, Paragraph, Spacer, Table, TableStyle
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.models.donation import Donation
from app.models.donation_event import DonationEventType
from app.models.project import Project
from app.models.base import utcnow
from app.schemas.donation import ReceiptData, OrganizationLetterhead
from app.services.donation_events import log_donation_event, RequestMeta
from app.services.errors import DonationNotFoundError, ReceiptNotReadyError
from app.services.settings import get_organization_letterhead

if TYPE_CHECKING:
    from app.services.email import EmailService, EmailResult

logger = logging.getLogger(__name__)

RECEIPT_SUFFIX_ALPHABET = string.ascii_uppercase + string.digits
RECEIPT_SUFFIX_LENGTH = 6
MAX_RECEIPT_NUMBER_ATTEMPTS = 5


def format_amount(amount: Decimal, currency: str) -> str:
    if currency == "MYR":
        return f"RM {amount:,.2f}"
    return f"{currency} {amount:,.2f}"


def receipt_filename(receipt_number: str) -> str:
    return f"{settings.RECEIPT_PREFIX}-Receipt-{receipt_number}.pdf"


def _candidate_receipt_number(now: Optional[datetime] = None) -> str:
    year = (now or datetime.now(timezone.utc)).year
    suffix = "".join(secrets.choice(RECEIPT_SUFFIX_ALPHABET) for _ in range(RECEIPT_SUFFIX_LENGTH))
    return f"{settings.RECEIPT_PREFIX}-{year}-{suffix}"


async def generate_receipt_number(db: AsyncSession) -> str:
    """
    Generate a receipt number of the form `<PREFIX>-<YYYY>-<XXXXXX>`.

    Candidates already in use are regenerated; the unique index on
    `donations.receipt_number` rejects anything that slips through.
    """
    for _ in range(MAX_RECEIPT_NUMBER_ATTEMPTS):
        candidate = _candidate_receipt_number()
        taken = await db.execute(
            select(Donation.id).where(Donation.receipt_number == candidate)
        )
        if taken.scalar_one_or_none() is None:
            return candidate
        logger.warning("Receipt number collision on %s, regenerating", candidate)

    raise RuntimeError("Could not generate a unique receipt number")


def build_receipt_data(
    donation: Donation,
    project_title: Optional[str],
    organization: OrganizationLetterhead,
) -> ReceiptData:
    """Build the receipt view-model for a donation that has a receipt number."""
    return ReceiptData(
        receipt_number=donation.receipt_number,
        donor_name="Anonymous" if donation.is_anonymous else (donation.donor_name or "Donor"),
        donor_email=donation.donor_email,
        donor_phone=None if donation.is_anonymous else donation.donor_phone,
        amount=donation.amount_major,
        currency=donation.currency,
        project_title=project_title,
        payment_reference=donation.payment_reference,
        payment_method=donation.payment_method,
        transaction_id=donation.gateway_transaction_id,
        completed_at=donation.completed_at or donation.updated,
        created_at=donation.created,
        message=donation.message,
        organization=organization,
    )


async def get_project_title(db: AsyncSession, project_id: Optional[str]) -> Optional[str]:
    if not project_id:
        return None
    result = await db.execute(select(Project.title).where(Project.id == project_id))
    return result.scalar_one_or_none()


async def get_receipt_data(db: AsyncSession, reference: str) -> ReceiptData:
    """Look up a donation by payment reference and build its receipt data."""
    result = await db.execute(
        select(Donation).where(Donation.payment_reference == reference)
    )
    donation = result.scalar_one_or_none()
    if not donation:
        raise DonationNotFoundError()
    if not donation.receipt_number:
        raise ReceiptNotReadyError()

    return await receipt_data_for(db, donation)


async def receipt_data_for(db: AsyncSession, donation: Donation) -> ReceiptData:
    return build_receipt_data(
        donation,
        await get_project_title(db, donation.project_id),
        await get_organization_letterhead(db),
    )


class ReceiptRenderer:
    """Renders receipts as A4 PDF documents."""

    def render(self, data: ReceiptData) -> bytes:
        buffer = BytesIO()
        doc = SimpleDocTemplate(
            buffer,
            pagesize=A4,
            leftMargin=20 * mm,
            rightMargin=20 * mm,
            topMargin=20 * mm,
            bottomMargin=20 * mm,
            title=f"Donation Receipt {data.receipt_number}",
            author=data.organization.name,
        )
        styles = getSampleStyleSheet()
        small = ParagraphStyle("small", parent=styles["Normal"], fontSize=8, textColor=colors.grey)
        org = data.organization

        story = [Paragraph(escape(org.name), styles["Title"])]
        if org.legal_name:
            story.append(Paragraph(escape(org.legal_name), styles["Normal"]))
        if org.registration_number:
            story.append(Paragraph(escape(f"Registration No: {org.registration_number}"), small))
        for line in org.address:
            story.append(Paragraph(escape(line), small))
        contact = " | ".join(v for v in (org.phone, org.email, org.website) if v)
        if contact:
            story.append(Paragraph(escape(contact), small))

        story.append(Spacer(1, 10 * mm))
        story.append(Paragraph("OFFICIAL DONATION RECEIPT", styles["Heading2"]))
        story.append(Spacer(1, 4 * mm))

        rows = [
            ["Receipt Number", data.receipt_number],
            ["Date", data.completed_at.strftime("%d %B %Y")],
            ["Received From", data.donor_name],
            ["Amount", format_amount(data.amount, data.currency)],
            ["Donated To", data.project_title or "General Fund"],
            ["Payment Reference", data.payment_reference],
            ["Payment Method", data.payment_method.upper()],
        ]
        if data.transaction_id:
            rows.append(["Transaction ID", data.transaction_id])

        table = Table(rows, colWidths=[50 * mm, 110 * mm])
        table.setStyle(TableStyle([
            ("FONTNAME", (0, 0), (0, -1), "Helvetica-Bold"),
            ("FONTSIZE", (0, 0), (-1, -1), 10),
            ("LINEBELOW", (0, 0), (-1, -1), 0.25, colors.lightgrey),
            ("BOTTOMPADDING", (0, 0), (-1, -1), 6),
            ("TOPPADDING", (0, 0), (-1, -1), 6),
        ]))
        story.append(table)

        story.append(Spacer(1, 10 * mm))
        story.append(Paragraph(escape(f"Thank you for your generous support of {org.name}."), styles["Normal"]))
        if org.tax_exemption_ref:
            story.append(Paragraph(escape(f"Tax exemption reference: {org.tax_exemption_ref}"), small))
        story.append(Spacer(1, 6 * mm))
        story.append(Paragraph("This is a computer-generated receipt. No signature is required.", small))

        doc.build(story)
        return buffer.getvalue()


def get_receipt_renderer() -> ReceiptRenderer:
    """FastAPI dependency for the receipt renderer."""
    return ReceiptRenderer()


async def deliver_receipt(
    db: AsyncSession,
    donation: Donation,
    email_service: "EmailService",
    renderer: ReceiptRenderer,
    meta: Optional[RequestMeta] = None,
    resend: bool = False,
) -> "EmailResult":
    """
    Render and email the receipt for a completed donation.

    A rendering failure still sends the email without the PDF. On success
    `receipt_sent_at` is stamped and a sent/resent event appended; a send
    failure appends `receipt_email_failed`. The caller owns the commit.
    """
    data = await receipt_data_for(db, donation)

    pdf: Optional[bytes] = None
    try:
        pdf = await asyncio.to_thread(renderer.render, data)
    except Exception:
        logger.exception("Failed to render receipt PDF for %s", donation.payment_reference)

    result = await email_service.send_donation_receipt_email(data, pdf)

    if result.success:
        donation.receipt_sent_at = utcnow()
        await log_donation_event(
            db,
            donation.id,
            DonationEventType.RECEIPT_RESENT if resend else DonationEventType.RECEIPT_EMAIL_SENT,
            {
                "email": data.donor_email,
                "receiptNumber": data.receipt_number,
                "hasPdf": pdf is not None,
            },
            meta,
        )
        logger.info("Receipt %s emailed for %s", data.receipt_number, donation.payment_reference)
    else:
        await log_donation_event(
            db,
            donation.id,
            DonationEventType.RECEIPT_EMAIL_FAILED,
            {"reason": result.reason, "error": result.error, "resend": resend},
            meta,
        )
        logger.warning(
            "Receipt email failed for %s: %s", donation.payment_reference, result.error
        )

    return result
