"""
Payment retry API.
"""
from typing import Optional
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.deps import get_gateway_client, get_request_meta, get_base_url
from app.core.request_guards import enforce_trusted_origin, donation_rate_limit
from app.db.base import get_db
from app.schemas.donation import RetryRequest, RetryResponse
from app.services.donation_events import RequestMeta
from app.services.errors import DonationError
from app.services.gateway import GatewayClient, GatewayError
from app.services.retry import retry_payment
from app.api.v1.donations.errors import donation_http_error, gateway_http_error

router = APIRouter()


@router.post(
    "/retry",
    response_model=RetryResponse,
    dependencies=[Depends(enforce_trusted_origin), Depends(donation_rate_limit)],
)
async def retry_donation_payment(
    data: Optional[RetryRequest] = None,
    db: AsyncSession = Depends(get_db),
    gateway: GatewayClient = Depends(get_gateway_client),
    meta: RequestMeta = Depends(get_request_meta),
    base_url: str = Depends(get_base_url),
):
    """
    Issue a new gateway bill for an unpaid donation.

    The payment reference stays the same; the donor is redirected to the
    new bill.
    """
    try:
        result = await retry_payment(
            db,
            gateway,
            data.reference if data else None,
            meta,
            base_url,
        )
    except DonationError as e:
        raise donation_http_error(e)
    except GatewayError as e:
        raise gateway_http_error(e)

    return RetryResponse(
        redirectUrl=result.redirect_url,
        attemptNumber=result.attempt_number,
        reference=result.reference,
    )
