"""
Donation audit events and request metadata.
"""
import logging
from dataclasses import dataclass
from typing import Any, Optional

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.donation_event import DonationEvent, DonationEventType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RequestMeta:
    """Client details recorded alongside donation events."""
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    @classmethod
    def from_request(cls, request: Request) -> "RequestMeta":
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            ip_address = forwarded.split(",")[0].strip()
        else:
            ip_address = request.headers.get("x-real-ip") or (
                request.client.host if request.client else None
            )
        user_agent = request.headers.get("user-agent")
        return cls(
            ip_address=ip_address or None,
            user_agent=user_agent[:500] if user_agent else None,
        )


async def log_donation_event(
    db: AsyncSession,
    donation_id: str,
    event_type: DonationEventType,
    event_data: Optional[dict[str, Any]] = None,
    meta: Optional[RequestMeta] = None,
) -> DonationEvent:
    """Append an event row for a donation. The caller owns the commit."""
    event = DonationEvent(
        donation_id=donation_id,
        event_type=event_type.value,
        event_data=event_data,
        ip_address=meta.ip_address if meta else None,
        user_agent=meta.user_agent if meta else None,
    )
    db.add(event)
    await db.flush()
    logger.debug("Donation %s event %s", donation_id, event_type.value)
    return event
