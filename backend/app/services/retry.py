"""
Payment retry.

Issues a fresh gateway bill for a donation stuck in `pending` or `failed`
while keeping its payment reference, so the donor never re-enters
their details.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.models.donation import Donation, DonationStatus, RETRYABLE_STATUSES
from app.models.donation_event import DonationEventType
from app.models.project import Project
from app.services.billing import build_bill_params, resolve_category_code
from app.services.donation_events import log_donation_event, RequestMeta
from app.services.donation_state import transition, RetryEvent
from app.services.errors import DonationError, DonationErrorCode, DonationNotFoundError
from app.services.gateway import GatewayClient, GatewayError
from app.services.reconciliation import get_donation_by_reference

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryResult:
    redirect_url: str
    attempt_number: int
    reference: str


def ensure_retryable(donation: Donation) -> None:
    """Raise the DonationError that forbids another attempt, if any."""
    transition(donation.status, RetryEvent())

    max_attempts = settings.DONATION_MAX_PAYMENT_ATTEMPTS
    if donation.payment_attempts >= max_attempts:
        raise DonationError(
            f"Maximum payment attempts ({max_attempts}) exceeded. Please start a new donation.",
            DonationErrorCode.MAX_ATTEMPTS_EXCEEDED,
        )


async def retry_payment(
    db: AsyncSession,
    gateway: GatewayClient,
    reference: Optional[str],
    meta: Optional[RequestMeta],
    base_url: str,
) -> RetryResult:
    """
    Create a new gateway bill for an unpaid donation.

    Raises DonationError for donations that may not be retried and
    GatewayError when the gateway refuses or cannot be reached. A gateway
    failure leaves the donation row untouched apart from a `retry_error`
    event.
    """
    if not reference:
        raise DonationError("Payment reference is required", DonationErrorCode.INVALID_REQUEST)

    donation = await get_donation_by_reference(db, reference)
    if not donation:
        raise DonationNotFoundError()

    ensure_retryable(donation)

    if not gateway.is_configured():
        raise DonationError(
            "Payment gateway is not configured. Please contact support.",
            DonationErrorCode.GATEWAY_NOT_CONFIGURED,
        )

    project = await db.get(Project, donation.project_id) if donation.project_id else None
    previous_status = donation.status
    previous_bill_code = donation.gateway_bill_code
    attempt_number = donation.payment_attempts + 1

    logger.info("Retrying payment for %s, attempt %s", reference, attempt_number)

    try:
        category_code = await resolve_category_code(db, gateway, project)
        params = build_bill_params(
            donation,
            category_code,
            project.title if project else None,
            base_url,
            retry=True,
        )
        bill_code = await gateway.create_bill(params)
    except GatewayError as e:
        logger.error("Retry for %s failed: %s (%s)", reference, e.message, e.code.value)
        await log_donation_event(
            db,
            donation.id,
            DonationEventType.RETRY_ERROR,
            {"code": e.code.value, "message": e.message, "attemptNumber": attempt_number},
            meta,
        )
        await db.commit()
        raise

    # A callback or another retry may have landed while the bill was created
    result = await db.execute(
        update(Donation)
        .where(
            Donation.id == donation.id,
            Donation.status.in_(RETRYABLE_STATUSES),
            Donation.payment_attempts < settings.DONATION_MAX_PAYMENT_ATTEMPTS,
        )
        .values(
            gateway_bill_code=bill_code,
            payment_attempts=Donation.payment_attempts + 1,
            status=DonationStatus.PENDING,
            failure_reason=None,
            ip_address=meta.ip_address if meta else None,
            user_agent=meta.user_agent if meta else None,
        )
        .execution_options(synchronize_session=False)
    )
    await db.refresh(donation)

    if result.rowcount == 0:
        try:
            ensure_retryable(donation)
            error = DonationError("Donation changed during retry", DonationErrorCode.INVALID_REQUEST)
        except DonationError as e:
            error = e
        await log_donation_event(
            db,
            donation.id,
            DonationEventType.RETRY_ERROR,
            {"code": error.code.value, "message": error.message, "billCode": bill_code},
            meta,
        )
        await db.commit()
        raise error

    await log_donation_event(
        db,
        donation.id,
        DonationEventType.RETRY_INITIATED,
        {
            "previousBillCode": previous_bill_code,
            "newBillCode": bill_code,
            "attemptNumber": donation.payment_attempts,
        },
        meta,
    )
    if previous_status != DonationStatus.PENDING:
        await log_donation_event(
            db,
            donation.id,
            DonationEventType.STATUS_UPDATED,
            {
                "previousStatus": previous_status.value,
                "newStatus": DonationStatus.PENDING.value,
                "reason": "Payment retry",
                "source": "retry",
            },
            meta,
        )
    await db.commit()

    logger.info("Retry bill %s created for %s", bill_code, reference)
    return RetryResult(
        redirect_url=gateway.get_payment_url(bill_code),
        attempt_number=donation.payment_attempts,
        reference=donation.payment_reference,
    )
