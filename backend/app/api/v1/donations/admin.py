"""
Donation admin API.

Views and status refresh for administrators. Tokens are issued by the CMS
and verified here with the shared secret.
"""
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.deps import (
    get_current_admin,
    get_fanout,
    get_gateway_client,
    get_request_meta,
)
from app.db.base import get_db
from app.models.donation import DonationStatus
from app.models.donation_event import DonationEvent
from app.schemas.donation import (
    DonationStatsResponse,
    DonationEventResponse,
    DonationEventListResponse,
    RefreshStatusResponse,
)
from app.services.donation_events import RequestMeta
from app.services.donation_stats import get_donation_stats
from app.services.errors import DonationError
from app.services.gateway import GatewayClient, GatewayError
from app.services.reconciliation import FanoutServices, get_donation_by_reference
from app.services.verification import refresh_payment_status
from app.api.v1.donations.errors import donation_http_error, gateway_http_error

router = APIRouter()


@router.get("/admin/stats", response_model=DonationStatsResponse)
async def donation_stats(
    db: AsyncSession = Depends(get_db),
    admin: dict = Depends(get_current_admin)
):
    """Donation totals and counts per status."""
    return DonationStatsResponse(stats=await get_donation_stats(db))


@router.get("/admin/{reference}/events", response_model=DonationEventListResponse)
async def donation_events(
    reference: str,
    db: AsyncSession = Depends(get_db),
    admin: dict = Depends(get_current_admin)
):
    """
    Event log of a donation, oldest first.

    Includes provider error details that donors never see.
    """
    donation = await get_donation_by_reference(db, reference)
    if not donation:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Donation not found"
        )

    result = await db.execute(
        select(DonationEvent)
        .where(DonationEvent.donation_id == donation.id)
        .order_by(DonationEvent.created, DonationEvent.id)
    )
    events = result.scalars().all()

    return DonationEventListResponse(
        reference=donation.payment_reference,
        status=donation.status.value,
        items=[DonationEventResponse.model_validate(e) for e in events],
    )


@router.post("/admin/{reference}/refresh-status", response_model=RefreshStatusResponse)
async def refresh_donation_status(
    reference: str,
    db: AsyncSession = Depends(get_db),
    gateway: GatewayClient = Depends(get_gateway_client),
    fanout: FanoutServices = Depends(get_fanout),
    meta: RequestMeta = Depends(get_request_meta),
    admin: dict = Depends(get_current_admin)
):
    """
    Pull the latest payment status from the gateway and apply it.

    For donations whose callback never arrived. Completed and failed
    payments are both applied; completion runs the usual notification
    and receipt email.
    """
    try:
        result = await refresh_payment_status(
            db, gateway, reference, fanout, admin_id=admin.get("sub"), meta=meta
        )
    except DonationError as e:
        raise donation_http_error(e)
    except GatewayError as e:
        raise gateway_http_error(e)

    donation = result.donation
    if result.changed:
        message = f"Payment status updated to {donation.status.value}"
    elif result.previous_status == DonationStatus.COMPLETED:
        message = "Payment already completed"
    else:
        message = "Payment status unchanged"

    return RefreshStatusResponse(
        message=message,
        status=donation.status.value,
        previousStatus=result.previous_status.value,
        changed=result.changed,
        gatewayStatus=result.gateway_status,
        receiptNumber=donation.receipt_number,
        transactionId=result.transaction_id,
    )
