"""
Pydantic schemas for donation endpoints.

Public request/response bodies keep the camelCase field names the donate
pages already send and read.
"""
import re
from typing import Optional, Any
from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel, Field, EmailStr, field_validator, model_validator

from app.core.config import settings

PHONE_PATTERN = re.compile(r"^[\d\s\-+()]{8,20}$")


class OrganizationLetterhead(BaseModel):
    """Organization details printed on receipts and emails."""
    name: str
    legal_name: Optional[str] = None
    tagline: Optional[str] = None
    registration_number: Optional[str] = None
    tax_exemption_ref: Optional[str] = None
    address: list[str] = []
    phone: Optional[str] = None
    email: Optional[str] = None
    website: Optional[str] = None


# ============================================================================
# DONATION INTENT
# ============================================================================

class DonationCreate(BaseModel):
    """Donation intent submitted from the donate page."""
    donor_name: Optional[str] = Field(None, alias="donorName", max_length=200)
    donor_email: Optional[EmailStr] = Field(None, alias="donorEmail")
    donor_phone: Optional[str] = Field(None, alias="donorPhone")
    amount: Decimal = Field(..., gt=0, decimal_places=2)  # major units
    currency: str = Field(default_factory=lambda: settings.DONATION_DEFAULT_CURRENCY, max_length=3)
    project_id: Optional[str] = Field(None, alias="projectId")
    program: Optional[str] = Field(None, max_length=100)
    message: Optional[str] = Field(None, max_length=1000)
    is_anonymous: bool = Field(False, alias="isAnonymous")
    donation_type: str = Field("one-time", alias="donationType")

    class Config:
        populate_by_name = True

    @field_validator("donor_phone")
    @classmethod
    def validate_phone(cls, v: Optional[str]) -> Optional[str]:
        if v and not PHONE_PATTERN.match(v):
            raise ValueError("Invalid phone number format")
        return v or None

    @model_validator(mode="after")
    def validate_amount_and_donor(self) -> "DonationCreate":
        if self.amount < Decimal(str(settings.DONATION_MIN_AMOUNT)):
            raise ValueError(f"Minimum donation amount is RM {settings.DONATION_MIN_AMOUNT:.0f}")
        if self.amount > Decimal(str(settings.DONATION_MAX_AMOUNT)):
            raise ValueError(
                f"Maximum donation amount is RM {settings.DONATION_MAX_AMOUNT:,.0f}. "
                "Please contact us for larger donations."
            )
        if not self.is_anonymous and (not self.donor_name or not self.donor_email):
            raise ValueError("Name and email are required for non-anonymous donations")
        return self

    @property
    def amount_minor(self) -> int:
        return int((self.amount * 100).to_integral_value())


class BankDetails(BaseModel):
    bankName: str
    accountNumber: str
    accountName: str
    reference: str


class DonationCreateResponse(BaseModel):
    success: bool = True
    message: str
    donationId: str
    paymentReference: str
    redirectUrl: str
    paymentMethod: str
    bankDetails: Optional[BankDetails] = None


class ProjectInfo(BaseModel):
    id: str
    title: str
    slug: str


class DonationPublic(BaseModel):
    """Donation as shown on the success/failed pages."""
    id: str
    donorName: Optional[str] = None
    donorEmail: Optional[str] = None
    amount: Decimal
    currency: str
    status: str
    reference: str
    receiptNumber: Optional[str] = None
    message: Optional[str] = None
    project: Optional[ProjectInfo] = None
    failureReason: Optional[str] = None
    createdAt: datetime
    completedAt: Optional[datetime] = None


class DonationLookupResponse(BaseModel):
    success: bool = True
    donation: DonationPublic


class VerifyResponse(BaseModel):
    success: bool = True
    status: str
    verified: bool
    autoRecovered: bool = False
    gatewayStatus: Optional[str] = None
    donation: DonationPublic


# ============================================================================
# RETRY
# ============================================================================

class RetryRequest(BaseModel):
    reference: Optional[str] = None


class RetryResponse(BaseModel):
    success: bool = True
    message: str = "Payment retry initiated"
    redirectUrl: str
    attemptNumber: int
    reference: str


# ============================================================================
# WEBHOOK
# ============================================================================

class WebhookResponse(BaseModel):
    success: bool
    message: str
    status: Optional[str] = None


class WebhookHealthResponse(BaseModel):
    status: str = "ok"
    message: str = "Donation webhook endpoint is active"
    timestamp: datetime
    endpoints: dict[str, str]


# ============================================================================
# RECEIPTS
# ============================================================================

class ReceiptData(BaseModel):
    """Receipt view-model shared by download, resend and automatic send."""
    receipt_number: str
    donor_name: str
    donor_email: Optional[str] = None
    donor_phone: Optional[str] = None
    amount: Decimal  # major units
    currency: str
    project_title: Optional[str] = None
    payment_reference: str
    payment_method: str
    transaction_id: Optional[str] = None
    completed_at: datetime
    created_at: datetime
    message: Optional[str] = None
    organization: OrganizationLetterhead


class ResendReceiptResponse(BaseModel):
    success: bool = True
    message: str = "Receipt email sent successfully"
    email: str


# ============================================================================
# ADMIN
# ============================================================================

class DonationStats(BaseModel):
    totalRaised: Decimal
    totalDonations: int
    completedDonations: int
    pendingDonations: int
    failedDonations: int
    refundedDonations: int
    averageAmount: Decimal
    successRate: float


class DonationStatsResponse(BaseModel):
    success: bool = True
    stats: DonationStats


class DonationEventResponse(BaseModel):
    id: str
    event_type: str
    event_data: Optional[dict[str, Any]] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created: datetime

    class Config:
        from_attributes = True


class DonationEventListResponse(BaseModel):
    reference: str
    status: str
    items: list[DonationEventResponse]


class RefreshStatusResponse(BaseModel):
    success: bool = True
    message: str
    status: str
    previousStatus: str
    changed: bool
    gatewayStatus: Optional[str] = None
    receiptNumber: Optional[str] = None
    transactionId: Optional[str] = None
