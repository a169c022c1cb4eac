"""
Payment gateway client (ToyyibPay).

All outbound calls to the gateway go through `GatewayClient`. Provider
request/response shapes stay in this module; the rest of the service sees
bill codes, category codes, `GatewayError` and `DonationStatus`.

API reference: https://toyyibpay.com/apireference/
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.models.donation import DonationStatus
from app.services.settings import get_setting, set_setting

logger = logging.getLogger(__name__)

GENERAL_FUND_SETTING_KEY = "gateway_general_fund_category"

# Gateway limits
MAX_BILL_NAME_LENGTH = 30
MAX_BILL_DESCRIPTION_LENGTH = 100
MAX_BILL_TO_LENGTH = 100
MIN_BILL_AMOUNT = 100  # minor units (RM 1.00)


class GatewayStatus:
    """Status codes sent by the gateway."""
    SUCCESS = "1"
    PENDING = "2"
    FAILED = "3"


class PaymentChannel:
    FPX = "0"
    CREDIT_CARD = "1"
    BOTH = "2"


class GatewayErrorCode(str, Enum):
    NOT_CONFIGURED = "NOT_CONFIGURED"
    INVALID_PARAMS = "INVALID_PARAMS"
    CONNECTION_ERROR = "CONNECTION_ERROR"
    CATEGORY_CREATE_FAILED = "CATEGORY_CREATE_FAILED"
    BILL_CREATE_FAILED = "BILL_CREATE_FAILED"
    UNEXPECTED_RESPONSE = "UNEXPECTED_RESPONSE"
    TRANSACTION_FETCH_ERROR = "TRANSACTION_FETCH_ERROR"


class GatewayError(Exception):
    """Error raised for any failed gateway operation."""

    def __init__(self, message: str, code: GatewayErrorCode, details: Any = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details

    def __repr__(self) -> str:
        return f"<GatewayError {self.code.value}: {self.message}>"


@dataclass
class BillParams:
    """Parameters for a new gateway bill."""
    category_code: str
    bill_name: str
    bill_description: str
    amount: int  # minor units
    return_url: str
    callback_url: str
    external_reference: str
    payer_name: str
    payer_email: str
    payer_phone: str = ""
    collect_payor_info: bool = True
    content_email: str = ""
    fixed_price: bool = True
    payment_channel: str = PaymentChannel.FPX
    charge_to_customer: str = "1"

    def validate(self) -> None:
        """Local validation, run before any network call."""
        if not self.category_code:
            raise GatewayError("Category code is required", GatewayErrorCode.INVALID_PARAMS)
        if not self.bill_name or len(self.bill_name) > MAX_BILL_NAME_LENGTH:
            raise GatewayError(
                f"Bill name is required and must be max {MAX_BILL_NAME_LENGTH} characters",
                GatewayErrorCode.INVALID_PARAMS
            )
        if len(self.bill_description or "") > MAX_BILL_DESCRIPTION_LENGTH:
            raise GatewayError(
                f"Bill description must be max {MAX_BILL_DESCRIPTION_LENGTH} characters",
                GatewayErrorCode.INVALID_PARAMS
            )
        if not self.amount or self.amount < MIN_BILL_AMOUNT:
            raise GatewayError("Bill amount must be at least RM 1.00", GatewayErrorCode.INVALID_PARAMS)

    def to_form(self, secret_key: str) -> dict[str, str]:
        return {
            "userSecretKey": secret_key,
            "categoryCode": self.category_code,
            "billName": self.bill_name,
            "billDescription": self.bill_description or "",
            "billPriceSetting": "1" if self.fixed_price else "0",
            "billPayorInfo": "1" if self.collect_payor_info else "0",
            "billAmount": str(self.amount),
            "billReturnUrl": self.return_url,
            "billCallbackUrl": self.callback_url,
            "billExternalReferenceNo": self.external_reference,
            "billTo": self.payer_name[:MAX_BILL_TO_LENGTH],
            "billEmail": self.payer_email,
            "billPhone": self.payer_phone or "0000000000",
            "billContentEmail": self.content_email or "",
            "billPaymentChannel": self.payment_channel,
            "billChargeToCustomer": self.charge_to_customer,
        }


class GatewayClient:
    """
    Thin async client for the gateway's form-encoded HTTP API.

    Every call is bounded by `timeout`; a timeout is a transport failure
    (`CONNECTION_ERROR`), never a payment failure.
    """

    def __init__(
        self,
        base_url: Optional[str],
        secret_key: Optional[str],
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or "").rstrip("/")
        self.secret_key = secret_key or ""
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, transport: Optional[httpx.AsyncBaseTransport] = None) -> "GatewayClient":
        return cls(
            base_url=settings.GATEWAY_URL,
            secret_key=settings.GATEWAY_SECRET_KEY,
            timeout=settings.GATEWAY_TIMEOUT_SECONDS,
            transport=transport,
        )

    def is_configured(self) -> bool:
        return bool(self.base_url and self.secret_key)

    @property
    def environment(self) -> str:
        return "sandbox" if "dev." in self.base_url else "production"

    def get_payment_url(self, bill_code: str) -> str:
        return f"{self.base_url}/{bill_code}"

    def _require_configured(self) -> None:
        if not self.is_configured():
            raise GatewayError("Payment gateway is not configured", GatewayErrorCode.NOT_CONFIGURED)

    async def _post(self, path: str, data: dict[str, str]) -> Any:
        """POST a form to the gateway and return the decoded JSON body."""
        async with httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self._transport,
        ) as client:
            response = await client.post(path, data=data)
        try:
            return response.json()
        except ValueError:
            logger.error(
                "Gateway returned non-JSON response from %s (HTTP %s): %s",
                path, response.status_code, response.text[:500]
            )
            raise GatewayError(
                "Unexpected response from payment gateway",
                GatewayErrorCode.UNEXPECTED_RESPONSE,
                response.text[:500]
            )

    async def _call(self, path: str, data: dict[str, str]) -> Any:
        try:
            return await self._post(path, data)
        except httpx.TimeoutException as e:
            logger.warning("Gateway call to %s timed out after %ss", path, self.timeout)
            raise GatewayError("Payment gateway timed out", GatewayErrorCode.CONNECTION_ERROR, str(e))
        except httpx.HTTPError as e:
            logger.warning("Gateway call to %s failed: %s", path, e)
            raise GatewayError("Failed to connect to payment gateway", GatewayErrorCode.CONNECTION_ERROR, str(e))

    @staticmethod
    def _provider_error(result: Any) -> Optional[str]:
        if isinstance(result, dict) and (result.get("msg") or result.get("error")):
            return str(result.get("msg") or result.get("error"))
        return None

    async def create_category(self, name: str, description: str) -> str:
        """Create a bill category and return its code."""
        self._require_configured()

        result = await self._call(
            "/index.php/api/createCategory",
            {
                "userSecretKey": self.secret_key,
                "catname": name,
                "catdescription": description,
            },
        )

        # The gateway answers with a single-element array
        if isinstance(result, list) and result and isinstance(result[0], dict) and result[0].get("CategoryCode"):
            return result[0]["CategoryCode"]

        provider_message = self._provider_error(result)
        if provider_message:
            logger.error("Gateway rejected category %r: %s", name, result)
            raise GatewayError(provider_message, GatewayErrorCode.CATEGORY_CREATE_FAILED, result)

        logger.error("Unexpected createCategory response: %s", result)
        raise GatewayError("Unexpected response from payment gateway", GatewayErrorCode.UNEXPECTED_RESPONSE, result)

    async def get_or_create_general_fund_category(self, db: AsyncSession) -> str:
        """
        Return the cached General Fund category code, creating it on first use.

        Two concurrent first donations may both create a category; the
        cached value is whichever upsert lands last.
        """
        cached = await get_setting(db, GENERAL_FUND_SETTING_KEY)
        if cached and cached.get("code"):
            return cached["code"]

        code = await self.create_category(
            "General Fund",
            f"General donations to {settings.ORG_NAME}",
        )
        await set_setting(
            db,
            GENERAL_FUND_SETTING_KEY,
            {"code": code, "createdAt": datetime.now(timezone.utc).isoformat()},
        )
        logger.info("Created General Fund category %s", code)
        return code

    async def create_bill(self, params: BillParams) -> str:
        """Create a bill and return its bill code."""
        self._require_configured()
        params.validate()

        result = await self._call("/index.php/api/createBill", params.to_form(self.secret_key))

        if isinstance(result, list) and result and isinstance(result[0], dict) and result[0].get("BillCode"):
            return result[0]["BillCode"]

        provider_message = self._provider_error(result)
        if provider_message:
            logger.error("Gateway rejected bill for %s: %s", params.external_reference, result)
            raise GatewayError(provider_message, GatewayErrorCode.BILL_CREATE_FAILED, result)

        logger.error("Unexpected createBill response for %s: %s", params.external_reference, result)
        raise GatewayError("Unexpected response from payment gateway", GatewayErrorCode.UNEXPECTED_RESPONSE, result)

    async def get_bill_transactions(self, bill_code: str) -> list[dict]:
        """Return the transactions recorded against a bill, newest first."""
        self._require_configured()
        try:
            result = await self._call(
                "/index.php/api/getBillTransactions",
                {"userSecretKey": self.secret_key, "billCode": bill_code},
            )
        except GatewayError as e:
            raise GatewayError("Failed to get bill transactions", GatewayErrorCode.TRANSACTION_FETCH_ERROR, e.details)

        if isinstance(result, list):
            return [t for t in result if isinstance(t, dict)]
        return []


_SUCCESS_STATUSES = {GatewayStatus.SUCCESS, "success", "paid"}
_FAILED_STATUSES = {GatewayStatus.FAILED, "failed", "cancelled"}


def map_payment_status(provider_status: Optional[str]) -> DonationStatus:
    """
    Map a provider status to a donation status.

    Anything not positively recognised (including the gateway's own
    "pending" code) maps to PENDING, never to COMPLETED.
    """
    value = (provider_status or "").strip()
    if value in _SUCCESS_STATUSES:
        return DonationStatus.COMPLETED
    if value in _FAILED_STATUSES:
        return DonationStatus.FAILED
    return DonationStatus.PENDING


FAILURE_REASONS = {
    "Cancelled": "Payment was cancelled by user",
    "Transaction timeout": "Payment session expired",
    "Insufficient funds": "Insufficient funds in account",
    "Bank error": "Bank processing error",
    "Invalid card": "Invalid card details",
}

DEFAULT_FAILURE_REASON = "Payment was not completed"


def get_failure_reason(reason: Optional[str]) -> str:
    """Translate a provider failure reason into donor-presentable text."""
    if not reason:
        return DEFAULT_FAILURE_REASON
    return FAILURE_REASONS.get(reason, reason)
