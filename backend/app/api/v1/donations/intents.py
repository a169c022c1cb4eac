"""
Donation intent and lookup API.
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.deps import (
    get_gateway_client,
    get_request_meta,
    get_base_url,
    get_fanout,
)
from app.core.request_guards import enforce_trusted_origin, donation_rate_limit
from app.db.base import get_db
from app.schemas.donation import (
    DonationCreate,
    DonationCreateResponse,
    DonationLookupResponse,
    VerifyResponse,
)
from app.services.donation_events import RequestMeta
from app.services.donation_intent import create_donation
from app.services.errors import DonationError, DonationNotFoundError
from app.services.gateway import GatewayClient, GatewayError
from app.services.reconciliation import FanoutServices, get_donation_by_reference
from app.services.verification import verify_payment, build_donation_public
from app.api.v1.donations.errors import donation_http_error, gateway_http_error

router = APIRouter()


@router.post(
    "",
    response_model=DonationCreateResponse,
    dependencies=[Depends(enforce_trusted_origin), Depends(donation_rate_limit)],
)
async def create_donation_intent(
    data: DonationCreate,
    db: AsyncSession = Depends(get_db),
    gateway: GatewayClient = Depends(get_gateway_client),
    meta: RequestMeta = Depends(get_request_meta),
    base_url: str = Depends(get_base_url),
):
    """
    Start a donation.

    Returns the gateway payment URL, or bank-transfer details when no
    payment gateway is configured.
    """
    try:
        result = await create_donation(db, gateway, data, meta, base_url)
    except DonationError as e:
        raise donation_http_error(e)
    except GatewayError as e:
        raise gateway_http_error(e)

    manual = result.payment_method == "manual"
    return DonationCreateResponse(
        message="Donation recorded successfully" if manual else "Donation initiated successfully",
        donationId=result.donation.id,
        paymentReference=result.donation.payment_reference,
        redirectUrl=result.redirect_url,
        paymentMethod=result.payment_method,
        bankDetails=result.bank_details,
    )


@router.get("/verify", response_model=VerifyResponse)
async def verify_donation_payment(
    reference: str = Query("", description="Payment reference"),
    db: AsyncSession = Depends(get_db),
    gateway: GatewayClient = Depends(get_gateway_client),
    fanout: FanoutServices = Depends(get_fanout),
    meta: RequestMeta = Depends(get_request_meta),
):
    """
    Verify a payment for the success page.

    Completes the donation when the gateway reports a payment whose
    callback never arrived.
    """
    try:
        result = await verify_payment(db, gateway, reference, fanout, meta)
    except DonationError as e:
        raise donation_http_error(e)

    return VerifyResponse(
        status=result.status.value,
        verified=result.verified,
        autoRecovered=result.auto_recovered,
        gatewayStatus=result.gateway_status,
        donation=await build_donation_public(db, result.donation),
    )


@router.get("/{reference}", response_model=DonationLookupResponse)
async def get_donation(
    reference: str,
    db: AsyncSession = Depends(get_db),
):
    """Public view of a donation by payment reference."""
    donation = await get_donation_by_reference(db, reference)
    if not donation:
        raise donation_http_error(DonationNotFoundError())

    return DonationLookupResponse(donation=await build_donation_public(db, donation))
