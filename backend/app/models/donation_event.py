"""
Donation event model - append-only audit trail per donation.
"""
from typing import Optional, TYPE_CHECKING
from datetime import datetime
from enum import Enum
from sqlalchemy import String, ForeignKey, DateTime, JSON
from sqlalchemy.orm import Mapped, mapped_column, relationship
from app.db.base import Base
from app.models.base import generate_id, utcnow

if TYPE_CHECKING:
    from app.models.donation import Donation


class DonationEventType(str, Enum):
    """Known donation event types."""
    CREATED = "created"
    BILL_CREATED = "bill_created"
    MANUAL_PAYMENT = "manual_payment"
    ERROR = "error"
    CALLBACK_RECEIVED = "callback_received"
    STATUS_UPDATED = "status_updated"
    RETRY_INITIATED = "retry_initiated"
    RETRY_ERROR = "retry_error"
    NOTIFICATION_FAILED = "notification_failed"
    RECEIPT_EMAIL_SENT = "receipt_email_sent"
    RECEIPT_EMAIL_FAILED = "receipt_email_failed"
    RECEIPT_EMAIL_ERROR = "receipt_email_error"
    RECEIPT_RESENT = "receipt_resent"
    AUTO_RECOVERY_COMPLETED = "auto_recovery_completed"
    ADMIN_STATUS_CHECK = "admin_status_check"
    ADMIN_STATUS_REFRESH = "admin_status_refresh"


class DonationEvent(Base):
    """
    Immutable event row tied to a donation.

    Rows are only ever inserted, so the table has no `updated` column.
    """
    __tablename__ = "donation_events"

    id: Mapped[str] = mapped_column(String(15), primary_key=True, default=generate_id)
    donation_id: Mapped[str] = mapped_column(
        String(15),
        ForeignKey("donations.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    # Stored as plain text so new event types need no migration
    event_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    event_data: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    ip_address: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    created: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False
    )

    donation: Mapped["Donation"] = relationship("Donation", back_populates="events")

    def __repr__(self) -> str:
        return f"<DonationEvent {self.event_type} {self.donation_id}>"
