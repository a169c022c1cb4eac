"""
Donation model for online donations paid through the payment gateway.
"""
from typing import Optional, TYPE_CHECKING
from datetime import datetime
from decimal import Decimal
from enum import Enum
from sqlalchemy import String, Text, ForeignKey, Integer, Boolean, DateTime, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship
from app.models.base import BaseModel

if TYPE_CHECKING:
    from app.models.project import Project
    from app.models.donation_event import DonationEvent


class DonationStatus(str, Enum):
    """Payment status of a donation."""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


# Statuses no webhook callback may move a donation out of
ABSORBING_STATUSES = (DonationStatus.COMPLETED, DonationStatus.REFUNDED)

# Statuses from which a new gateway bill may be issued
RETRYABLE_STATUSES = (DonationStatus.PENDING, DonationStatus.FAILED)


class Donation(BaseModel):
    """
    Donation model.

    One donor's pledge and its payment attempts. The payment reference is
    generated once and reused for every gateway bill issued for it.
    """
    __tablename__ = "donations"

    payment_reference: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        unique=True,
        index=True
    )

    # Donor
    donor_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    donor_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    donor_phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    is_anonymous: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Amount in minor currency units (cents / sen)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="MYR", nullable=False)

    # Attribution (null means general fund)
    project_id: Mapped[Optional[str]] = mapped_column(
        String(15),
        ForeignKey("projects.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )

    status: Mapped[DonationStatus] = mapped_column(
        SQLEnum(
            DonationStatus,
            name="donationstatus",
            create_constraint=True,
            values_callable=lambda x: [e.value for e in x]
        ),
        default=DonationStatus.PENDING,
        nullable=False,
        index=True
    )

    # Gateway linkage
    gateway_bill_code: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    gateway_transaction_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    payment_method: Mapped[str] = mapped_column(String(20), default="fpx", nullable=False)
    environment: Mapped[str] = mapped_column(String(20), default="production", nullable=False)

    # Retry bookkeeping
    payment_attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    failure_reason: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    # Receipt
    receipt_number: Mapped[Optional[str]] = mapped_column(String(50), nullable=True, unique=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    receipt_sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Request metadata of the latest attempt
    session_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    ip_address: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    # Relationships
    project: Mapped[Optional["Project"]] = relationship(
        "Project",
        foreign_keys=[project_id]
    )
    events: Mapped[list["DonationEvent"]] = relationship(
        "DonationEvent",
        back_populates="donation",
        order_by="DonationEvent.created"
    )

    @property
    def amount_major(self) -> Decimal:
        """Amount in major currency units."""
        return (Decimal(self.amount) / 100).quantize(Decimal("0.01"))

    def __repr__(self) -> str:
        return f"<Donation {self.payment_reference} ({self.status.value})>"
