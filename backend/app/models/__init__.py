"""
SQLAlchemy models for the donations service.

- Donations: donations and their append-only event log
- Projects: fundraising projects (raised-amount accumulator)
- Settings: key/value app settings
- Notifications: admin dashboard notifications
"""
from app.models.project import Project
from app.models.donation import Donation, DonationStatus, ABSORBING_STATUSES, RETRYABLE_STATUSES
from app.models.donation_event import DonationEvent, DonationEventType
from app.models.app_setting import AppSetting
from app.models.notification import AdminNotification, NotificationType, NotificationPriority

__all__ = [
    "Project",
    "Donation",
    "DonationStatus",
    "ABSORBING_STATUSES",
    "RETRYABLE_STATUSES",
    "DonationEvent",
    "DonationEventType",
    "AppSetting",
    "AdminNotification",
    "NotificationType",
    "NotificationPriority",
]
