"""
Payment verification.

Used by the donor's success page and by admins. Besides reporting the
stored status it asks the gateway about the bill, and completes the
donation itself when the gateway has a successful payment the webhook
never delivered.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.donation import Donation, DonationStatus
from app.models.donation_event import DonationEventType
from app.models.project import Project
from app.schemas.donation import DonationPublic, ProjectInfo
from app.services.donation_events import log_donation_event, RequestMeta
from app.services.errors import DonationError, DonationErrorCode, DonationNotFoundError
from app.services.gateway import GatewayClient, GatewayError, GatewayErrorCode, map_payment_status
from app.services.reconciliation import (
    FanoutServices,
    apply_status_transition,
    get_donation_by_reference,
    run_fanout,
)

logger = logging.getLogger(__name__)


@dataclass
class VerifyResult:
    donation: Donation
    status: DonationStatus
    verified: bool
    auto_recovered: bool = False
    gateway_status: Optional[str] = None


async def verify_payment(
    db: AsyncSession,
    gateway: GatewayClient,
    reference: Optional[str],
    fanout: FanoutServices,
    meta: Optional[RequestMeta] = None,
) -> VerifyResult:
    """
    Verify a donation's payment status against the gateway.

    A gateway lookup failure falls back to the stored status with
    `verified=False`; it never marks the donation failed.
    """
    if not reference:
        raise DonationError("Payment reference is required", DonationErrorCode.INVALID_REQUEST)

    donation = await get_donation_by_reference(db, reference)
    if not donation:
        raise DonationNotFoundError()

    if donation.status == DonationStatus.COMPLETED:
        return VerifyResult(donation=donation, status=donation.status, verified=True)

    if not (donation.gateway_bill_code and gateway.is_configured()):
        return VerifyResult(donation=donation, status=donation.status, verified=False)

    try:
        transactions = await gateway.get_bill_transactions(donation.gateway_bill_code)
    except GatewayError as e:
        logger.warning("Could not verify %s with the gateway: %s", reference, e.message)
        return VerifyResult(donation=donation, status=donation.status, verified=False)

    if not transactions:
        return VerifyResult(donation=donation, status=donation.status, verified=False)

    latest = transactions[0]
    mapped = map_payment_status(latest.get("billpaymentStatus"))

    if mapped != DonationStatus.COMPLETED:
        return VerifyResult(
            donation=donation,
            status=donation.status,
            verified=True,
            gateway_status=mapped.value,
        )

    previous = donation.status
    transaction_id = latest.get("transactionId") or None
    applied = await apply_status_transition(
        db,
        donation,
        DonationStatus.COMPLETED,
        transaction_id=transaction_id,
        meta=meta,
        source="verification",
    )
    if applied is None:
        await db.commit()
        return VerifyResult(
            donation=donation,
            status=donation.status,
            verified=True,
            gateway_status=mapped.value,
        )

    await log_donation_event(
        db,
        donation.id,
        DonationEventType.AUTO_RECOVERY_COMPLETED,
        {
            "previousStatus": previous.value,
            "newStatus": DonationStatus.COMPLETED.value,
            "gatewayStatus": mapped.value,
            "transactionId": transaction_id,
            "receiptNumber": donation.receipt_number,
            "reason": "Gateway reports payment completed but no callback was processed",
        },
        meta,
    )
    await db.commit()
    logger.info("Auto-recovered %s, receipt %s", reference, donation.receipt_number)

    await run_fanout(db, donation, applied.effects, fanout, meta)
    return VerifyResult(
        donation=donation,
        status=DonationStatus.COMPLETED,
        verified=True,
        auto_recovered=True,
        gateway_status=mapped.value,
    )


async def build_donation_public(db: AsyncSession, donation: Donation) -> DonationPublic:
    """Donor-facing view of a donation; anonymous donors stay anonymous."""
    project = await db.get(Project, donation.project_id) if donation.project_id else None
    return DonationPublic(
        id=donation.id,
        donorName="Anonymous" if donation.is_anonymous else donation.donor_name,
        donorEmail=None if donation.is_anonymous else donation.donor_email,
        amount=donation.amount_major,
        currency=donation.currency,
        status=donation.status.value,
        reference=donation.payment_reference,
        receiptNumber=donation.receipt_number,
        message=donation.message,
        project=ProjectInfo(id=project.id, title=project.title, slug=project.slug) if project else None,
        failureReason=donation.failure_reason,
        createdAt=donation.created,
        completedAt=donation.completed_at,
    )


@dataclass
class RefreshResult:
    donation: Donation
    previous_status: DonationStatus
    changed: bool
    gateway_status: Optional[str] = None
    transaction_id: Optional[str] = None


async def refresh_payment_status(
    db: AsyncSession,
    gateway: GatewayClient,
    reference: str,
    fanout: FanoutServices,
    admin_id: Optional[str] = None,
    meta: Optional[RequestMeta] = None,
) -> RefreshResult:
    """
    Re-read a donation's payment status from the gateway on an admin's behalf.

    Unlike `verify_payment` this applies a failed payment as well as a
    completed one. Gateway errors propagate to the caller.
    """
    donation = await get_donation_by_reference(db, reference)
    if not donation:
        raise DonationNotFoundError()

    previous = donation.status
    if previous == DonationStatus.COMPLETED:
        return RefreshResult(donation=donation, previous_status=previous, changed=False)

    if not gateway.is_configured():
        raise GatewayError("Payment gateway not configured", GatewayErrorCode.NOT_CONFIGURED)
    if not donation.gateway_bill_code:
        raise DonationError("No gateway bill found for this donation", DonationErrorCode.INVALID_REQUEST)

    transactions = await gateway.get_bill_transactions(donation.gateway_bill_code)
    if not transactions:
        await log_donation_event(
            db,
            donation.id,
            DonationEventType.ADMIN_STATUS_CHECK,
            {"result": "no_transactions", "checkedBy": admin_id},
            meta,
        )
        await db.commit()
        return RefreshResult(donation=donation, previous_status=previous, changed=False)

    latest = transactions[0]
    raw_status = latest.get("billpaymentStatus")
    mapped = map_payment_status(raw_status)
    transaction_id = latest.get("transactionId") or None

    if mapped == previous:
        return RefreshResult(
            donation=donation,
            previous_status=previous,
            changed=False,
            gateway_status=mapped.value,
        )

    applied = await apply_status_transition(
        db,
        donation,
        mapped,
        reason=f"Gateway status: {raw_status}",
        transaction_id=transaction_id,
        meta=meta,
        source="admin_refresh",
    )
    if applied is None:
        await db.commit()
        return RefreshResult(
            donation=donation,
            previous_status=previous,
            changed=False,
            gateway_status=mapped.value,
        )

    await log_donation_event(
        db,
        donation.id,
        DonationEventType.ADMIN_STATUS_REFRESH,
        {
            "previousStatus": previous.value,
            "newStatus": applied.new_status.value,
            "gatewayStatus": raw_status,
            "transactionId": transaction_id,
            "receiptNumber": donation.receipt_number,
            "refreshedBy": admin_id,
        },
        meta,
    )
    await db.commit()
    logger.info(
        "Admin %s refreshed %s: %s -> %s",
        admin_id, reference, previous.value, applied.new_status.value
    )

    await run_fanout(db, donation, applied.effects, fanout, meta)
    return RefreshResult(
        donation=donation,
        previous_status=previous,
        changed=True,
        gateway_status=mapped.value,
        transaction_id=transaction_id,
    )
