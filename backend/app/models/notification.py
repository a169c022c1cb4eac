"""
Admin notification model.
"""
from typing import Optional
from sqlalchemy import String, Text, Boolean, JSON, Enum
from sqlalchemy.orm import Mapped, mapped_column
import enum
from app.models.base import BaseModel


class NotificationType(str, enum.Enum):
    """Notification type."""
    DONATION_RECEIVED = "donation_received"
    SYSTEM = "system"


class NotificationPriority(str, enum.Enum):
    """Notification priority."""
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"


class AdminNotification(BaseModel):
    """Notification shown in the admin dashboard."""
    __tablename__ = "notifications"

    notification_type: Mapped[NotificationType] = mapped_column(
        Enum(NotificationType, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        index=True
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    priority: Mapped[NotificationPriority] = mapped_column(
        Enum(NotificationPriority, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=NotificationPriority.NORMAL
    )

    related_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    related_id: Mapped[Optional[str]] = mapped_column(String(15), nullable=True, index=True)

    # Renamed from 'metadata' which is reserved in SQLAlchemy
    notification_metadata: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    def __repr__(self) -> str:
        return f"<AdminNotification {self.notification_type} {self.related_id}>"
