"""
Tests for the translation of service errors into HTTP errors.
"""
import pytest

from app.api.v1.donations.errors import donation_http_error, gateway_http_error
from app.services.errors import DonationError, DonationErrorCode, DonationNotFoundError
from app.services.gateway import GatewayError, GatewayErrorCode


class TestGatewayHttpError:

    def test_invalid_params_is_bad_request(self):
        error = gateway_http_error(
            GatewayError("Bill name exceeds 30 characters", GatewayErrorCode.INVALID_PARAMS)
        )

        assert error.status_code == 400
        assert error.detail["code"] == "INVALID_PARAMS"
        assert "30 characters" not in error.detail["error"]

    @pytest.mark.parametrize("code", [
        GatewayErrorCode.NOT_CONFIGURED,
        GatewayErrorCode.CATEGORY_CREATE_FAILED,
        GatewayErrorCode.BILL_CREATE_FAILED,
        GatewayErrorCode.CONNECTION_ERROR,
        GatewayErrorCode.UNEXPECTED_RESPONSE,
    ])
    def test_other_failures_are_server_errors(self, code):
        error = gateway_http_error(GatewayError("raw provider text", code))

        assert error.status_code == 500
        assert error.detail["code"] == code.value

    def test_provider_message_never_exposed(self):
        error = gateway_http_error(
            GatewayError("Invalid userSecretKey", GatewayErrorCode.BILL_CREATE_FAILED, details={"msg": "x"})
        )

        assert set(error.detail) == {"error", "code"}
        assert error.detail["error"] == "Unable to create payment. Please try again or contact support."


class TestDonationHttpError:

    def test_not_found(self):
        assert donation_http_error(DonationNotFoundError()).status_code == 404

    def test_donations_closed(self):
        error = donation_http_error(DonationError("Closed", DonationErrorCode.DONATIONS_CLOSED))
        assert error.status_code == 403

    def test_state_errors_are_bad_request(self):
        error = donation_http_error(
            DonationError("This donation has already been completed", DonationErrorCode.ALREADY_COMPLETED)
        )
        assert error.status_code == 400
        assert error.detail == "This donation has already been completed"
