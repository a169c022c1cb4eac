"""
Donation intents.

Records a pending donation and hands the donor to the gateway, or to
bank-transfer instructions when no gateway is configured.
"""
import logging
import secrets
import string
import time
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.models.donation import Donation, DonationStatus
from app.models.donation_event import DonationEventType
from app.models.project import Project
from app.schemas.donation import DonationCreate, BankDetails
from app.services.billing import build_bill_params, resolve_category_code, return_url
from app.services.donation_events import log_donation_event, RequestMeta
from app.services.errors import DonationError, DonationErrorCode
from app.services.gateway import GatewayClient, GatewayError
from app.services.settings import donations_closed

logger = logging.getLogger(__name__)

REFERENCE_SUFFIX_ALPHABET = string.ascii_uppercase + string.digits
SESSION_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits


def generate_payment_reference() -> str:
    """`<PREFIX>-<epoch ms>-<6 upper alnum>`; fixed for the donation's lifetime."""
    suffix = "".join(secrets.choice(REFERENCE_SUFFIX_ALPHABET) for _ in range(6))
    return f"{settings.PAYMENT_REFERENCE_PREFIX}-{int(time.time() * 1000)}-{suffix}"


def generate_session_id() -> str:
    suffix = "".join(secrets.choice(SESSION_SUFFIX_ALPHABET) for _ in range(8))
    return f"sess_{int(time.time() * 1000)}_{suffix}"


@dataclass
class IntentResult:
    donation: Donation
    redirect_url: str
    payment_method: str
    bank_details: Optional[BankDetails] = None


async def create_donation(
    db: AsyncSession,
    gateway: GatewayClient,
    payload: DonationCreate,
    meta: Optional[RequestMeta],
    base_url: str,
) -> IntentResult:
    """
    Create a pending donation and its first gateway bill.

    The donation row is committed before the gateway is called, so a
    gateway failure leaves a pending donation with an `error` event that
    the donor can retry.
    """
    if await donations_closed(db):
        raise DonationError(
            "Donations are currently closed. Please check back later.",
            DonationErrorCode.DONATIONS_CLOSED,
        )

    project: Optional[Project] = None
    if payload.project_id:
        project = await db.get(Project, payload.project_id)
        if not project:
            raise DonationError("Project not found", DonationErrorCode.PROJECT_NOT_FOUND)
        if not project.donation_enabled:
            raise DonationError(
                "Donations are not enabled for this project",
                DonationErrorCode.PROJECT_NOT_ACCEPTING,
            )

    donation = Donation(
        payment_reference=generate_payment_reference(),
        donor_name=payload.donor_name,
        donor_email=str(payload.donor_email) if payload.donor_email else None,
        donor_phone=payload.donor_phone,
        is_anonymous=payload.is_anonymous,
        message=payload.message,
        amount=payload.amount_minor,
        currency=payload.currency,
        project_id=project.id if project else None,
        status=DonationStatus.PENDING,
        environment=gateway.environment,
        payment_attempts=1,
        session_id=generate_session_id(),
        ip_address=meta.ip_address if meta else None,
        user_agent=meta.user_agent if meta else None,
    )
    db.add(donation)
    await db.flush()

    await log_donation_event(
        db,
        donation.id,
        DonationEventType.CREATED,
        {
            "amount": donation.amount,
            "currency": donation.currency,
            "projectId": donation.project_id,
            "program": payload.program,
            "donationType": payload.donation_type,
            "isAnonymous": donation.is_anonymous,
        },
        meta,
    )
    await db.commit()
    logger.info(
        "Donation %s created: %s %s, anonymous=%s",
        donation.payment_reference, donation.currency, donation.amount_major, donation.is_anonymous
    )

    if not gateway.is_configured():
        await log_donation_event(
            db,
            donation.id,
            DonationEventType.MANUAL_PAYMENT,
            {"reason": "Payment gateway not configured"},
            meta,
        )
        await db.commit()
        logger.warning("Gateway not configured, %s falls back to bank transfer", donation.payment_reference)
        return IntentResult(
            donation=donation,
            redirect_url=return_url(donation.payment_reference),
            payment_method="manual",
            bank_details=BankDetails(
                bankName=settings.MANUAL_BANK_NAME,
                accountNumber=settings.MANUAL_BANK_ACCOUNT_NUMBER,
                accountName=settings.MANUAL_BANK_ACCOUNT_NAME,
                reference=donation.payment_reference,
            ),
        )

    try:
        category_code = await resolve_category_code(db, gateway, project)
        params = build_bill_params(
            donation,
            category_code,
            project.title if project else None,
            base_url,
            program=payload.program,
        )
        bill_code = await gateway.create_bill(params)
    except GatewayError as e:
        logger.error(
            "Gateway error creating bill for %s: %s (%s)",
            donation.payment_reference, e.message, e.code.value
        )
        await log_donation_event(
            db,
            donation.id,
            DonationEventType.ERROR,
            {"error": e.message, "code": e.code.value, "details": str(e.details) if e.details else None},
            meta,
        )
        await db.commit()
        raise

    donation.gateway_bill_code = bill_code
    await log_donation_event(
        db,
        donation.id,
        DonationEventType.BILL_CREATED,
        {"billCode": bill_code, "categoryCode": category_code, "gatewayUrl": gateway.base_url},
        meta,
    )
    await db.commit()

    logger.info("Bill %s created for %s", bill_code, donation.payment_reference)
    return IntentResult(
        donation=donation,
        redirect_url=gateway.get_payment_url(bill_code),
        payment_method="toyyibpay",
    )
