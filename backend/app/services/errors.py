"""
Domain errors raised by the donation services.

Routers translate these into HTTP responses; services never build
responses themselves.
"""
from enum import Enum
from typing import Any


class DonationErrorCode(str, Enum):
    NOT_FOUND = "NOT_FOUND"
    NOT_READY = "NOT_READY"
    ALREADY_COMPLETED = "ALREADY_COMPLETED"
    ALREADY_REFUNDED = "ALREADY_REFUNDED"
    MAX_ATTEMPTS_EXCEEDED = "MAX_ATTEMPTS_EXCEEDED"
    GATEWAY_NOT_CONFIGURED = "GATEWAY_NOT_CONFIGURED"
    NO_EMAIL = "NO_EMAIL"
    DONATIONS_CLOSED = "DONATIONS_CLOSED"
    INVALID_REQUEST = "INVALID_REQUEST"
    PROJECT_NOT_FOUND = "PROJECT_NOT_FOUND"
    PROJECT_NOT_ACCEPTING = "PROJECT_NOT_ACCEPTING"


class DonationError(Exception):
    """A donation request that cannot proceed in the current state."""

    def __init__(self, message: str, code: DonationErrorCode, details: Any = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details

    def __repr__(self) -> str:
        return f"<DonationError {self.code.value}: {self.message}>"


class DonationNotFoundError(DonationError):
    def __init__(self, message: str = "Donation not found"):
        super().__init__(message, DonationErrorCode.NOT_FOUND)


class ReceiptNotReadyError(DonationError):
    def __init__(self, message: str = "Receipt not available. Payment may not be completed."):
        super().__init__(message, DonationErrorCode.NOT_READY)
