"""
Admin dashboard notifications.
"""
import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.donation import Donation
from app.models.notification import AdminNotification, NotificationType, NotificationPriority
from app.services.receipt import format_amount

logger = logging.getLogger(__name__)


async def notify_donation_received(
    db: AsyncSession,
    donation: Donation,
    project_title: Optional[str] = None,
) -> AdminNotification:
    """
    Tell administrators a donation completed.

    Anonymous donations never carry the donor's name into the notification.
    """
    amount = donation.amount_major
    donor = "An anonymous donor" if donation.is_anonymous else (donation.donor_name or "A donor")
    target = project_title or "the General Fund"

    metadata = {
        "amount": float(amount),
        "currency": donation.currency,
        "projectTitle": project_title,
        "reference": donation.payment_reference,
        "isAnonymous": donation.is_anonymous,
    }
    if not donation.is_anonymous:
        metadata["donorName"] = donation.donor_name

    notification = AdminNotification(
        notification_type=NotificationType.DONATION_RECEIVED,
        title="New Donation Received",
        message=f"{donor} donated {format_amount(amount, donation.currency)} to {target}.",
        priority=NotificationPriority.NORMAL,
        related_type="donation",
        related_id=donation.id,
        notification_metadata=metadata,
    )
    db.add(notification)
    await db.flush()
    logger.info("Admin notified of donation %s", donation.payment_reference)
    return notification
