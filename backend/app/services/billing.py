"""
Gateway bill construction shared by donation intents and retries.
"""
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.models.donation import Donation
from app.models.project import Project
from app.services.gateway import (
    BillParams,
    GatewayClient,
    MAX_BILL_NAME_LENGTH,
    MAX_BILL_DESCRIPTION_LENGTH,
)
from app.services.receipt import format_amount

ANONYMOUS_PAYER_NAME = "Penderma"
PLACEHOLDER_PHONE = "0123456789"


def callback_url(base_url: str) -> str:
    url = f"{base_url.rstrip('/')}{settings.API_V1_PREFIX}/donations/webhook"
    if settings.GATEWAY_WEBHOOK_SECRET:
        url += f"?token={settings.GATEWAY_WEBHOOK_SECRET}"
    return url


def return_url(reference: str) -> str:
    return f"{settings.SITE_URL.rstrip('/')}/donate/success?ref={reference}"


async def resolve_category_code(
    db: AsyncSession,
    gateway: GatewayClient,
    project: Optional[Project],
) -> str:
    """The project's own category when it has one, else the General Fund."""
    if project and project.gateway_category_code:
        return project.gateway_category_code
    return await gateway.get_or_create_general_fund_category(db)


def build_bill_params(
    donation: Donation,
    category_code: str,
    project_title: Optional[str],
    base_url: str,
    program: Optional[str] = None,
    retry: bool = False,
) -> BillParams:
    """
    Bill parameters for a donation.

    Anonymous donations are billed to a generic payer with placeholder
    contact details and the gateway's payer form switched off; the
    donor's identity never reaches the gateway.
    """
    if project_title:
        bill_name = f"Donation: {project_title}"
        description = f"Donation for {project_title}"
    else:
        bill_name = f"Donation to {settings.PAYMENT_REFERENCE_PREFIX}"
        description = f"Donation to {settings.ORG_NAME}"
    if retry:
        description += " (Retry)"
    elif program:
        description += f" - {program}"

    content_email = (
        f"Thank you for your donation of {format_amount(donation.amount_major, donation.currency)} "
        f"to {settings.ORG_NAME}."
    )
    if project_title:
        content_email += f" This donation supports: {project_title}"

    if donation.is_anonymous:
        payer_name = ANONYMOUS_PAYER_NAME
        payer_email = settings.ORG_EMAIL
        payer_phone = PLACEHOLDER_PHONE
    else:
        payer_name = donation.donor_name or ANONYMOUS_PAYER_NAME
        payer_email = donation.donor_email or settings.ORG_EMAIL
        payer_phone = donation.donor_phone or PLACEHOLDER_PHONE

    return BillParams(
        category_code=category_code,
        bill_name=bill_name[:MAX_BILL_NAME_LENGTH],
        bill_description=description[:MAX_BILL_DESCRIPTION_LENGTH],
        amount=donation.amount,
        return_url=return_url(donation.payment_reference),
        callback_url=callback_url(base_url),
        external_reference=donation.payment_reference,
        payer_name=payer_name,
        payer_email=payer_email,
        payer_phone=payer_phone,
        collect_payor_info=not donation.is_anonymous,
        content_email=content_email,
        payment_channel=settings.GATEWAY_PAYMENT_CHANNEL,
        charge_to_customer=settings.GATEWAY_CHARGE_TO_CUSTOMER,
    )
