"""
Translation of service errors into HTTP errors.
"""
from fastapi import HTTPException, status

from app.services.errors import DonationError, DonationErrorCode
from app.services.gateway import GatewayError, GatewayErrorCode

_STATUS_BY_CODE = {
    DonationErrorCode.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    DonationErrorCode.PROJECT_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    DonationErrorCode.DONATIONS_CLOSED: status.HTTP_403_FORBIDDEN,
}

_GATEWAY_STATUS_BY_CODE = {
    GatewayErrorCode.INVALID_PARAMS: status.HTTP_400_BAD_REQUEST,
}

_GATEWAY_MESSAGES = {
    GatewayErrorCode.NOT_CONFIGURED: "Payment system is not configured. Please contact support.",
    GatewayErrorCode.INVALID_PARAMS: "Invalid payment details. Please check your donation and try again.",
    GatewayErrorCode.CATEGORY_CREATE_FAILED: "Unable to create payment. Please try again or contact support.",
    GatewayErrorCode.BILL_CREATE_FAILED: "Unable to create payment. Please try again or contact support.",
    GatewayErrorCode.CONNECTION_ERROR: "Payment gateway is unreachable. Please try again in a moment.",
}


def donation_http_error(error: DonationError) -> HTTPException:
    """Domain errors are donor-presentable; most are 400."""
    return HTTPException(
        status_code=_STATUS_BY_CODE.get(error.code, status.HTTP_400_BAD_REQUEST),
        detail=error.message
    )


def gateway_http_error(error: GatewayError) -> HTTPException:
    """
    Rejected parameters are 400s, every other gateway failure a 500.
    The provider's own message stays in the logs and the event log; the
    donor sees a generic message.
    """
    return HTTPException(
        status_code=_GATEWAY_STATUS_BY_CODE.get(error.code, status.HTTP_500_INTERNAL_SERVER_ERROR),
        detail={
            "error": _GATEWAY_MESSAGES.get(error.code, "Failed to initialize payment gateway. Please try again."),
            "code": error.code.value,
        }
    )
