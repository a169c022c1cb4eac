"""
Donation receipt API.
"""
import asyncio
import logging
from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.deps import get_request_meta
from app.core.request_guards import donation_rate_limit
from app.db.base import get_db
from app.schemas.donation import ResendReceiptResponse
from app.services.donation_events import RequestMeta
from app.services.email import EmailService, get_email_service
from app.services.errors import DonationError, DonationErrorCode
from app.services.reconciliation import get_donation_by_reference
from app.services.receipt import (
    ReceiptRenderer,
    get_receipt_renderer,
    get_receipt_data,
    receipt_filename,
    deliver_receipt,
)
from app.api.v1.donations.errors import donation_http_error

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/receipt/{reference}")
async def download_receipt(
    reference: str,
    db: AsyncSession = Depends(get_db),
    renderer: ReceiptRenderer = Depends(get_receipt_renderer),
):
    """Download the PDF receipt of a completed donation."""
    try:
        data = await get_receipt_data(db, reference)
    except DonationError as e:
        raise donation_http_error(e)

    pdf = await asyncio.to_thread(renderer.render, data)

    return Response(
        content=pdf,
        media_type="application/pdf",
        headers={
            "Content-Disposition": f'attachment; filename="{receipt_filename(data.receipt_number)}"',
            "Cache-Control": "no-store, no-cache, must-revalidate",
            "Pragma": "no-cache",
        },
    )


@router.post(
    "/receipt/{reference}/resend",
    response_model=ResendReceiptResponse,
    dependencies=[Depends(donation_rate_limit)],
)
async def resend_receipt(
    reference: str,
    db: AsyncSession = Depends(get_db),
    email_service: EmailService = Depends(get_email_service),
    renderer: ReceiptRenderer = Depends(get_receipt_renderer),
    meta: RequestMeta = Depends(get_request_meta),
):
    """Email the receipt again to the donor's address on file."""
    donation = await get_donation_by_reference(db, reference)
    if not donation:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Donation not found"
        )
    if not donation.receipt_number:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Receipt not available. Payment may not be completed."
        )
    if not donation.donor_email:
        raise donation_http_error(DonationError(
            "No email address on file for this donation",
            DonationErrorCode.NO_EMAIL,
        ))

    result = await deliver_receipt(db, donation, email_service, renderer, meta, resend=True)
    await db.commit()

    if not result.success:
        logger.error("Receipt resend failed for %s: %s", reference, result.error)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to send receipt email"
        )

    return ResendReceiptResponse(email=donation.donor_email)
