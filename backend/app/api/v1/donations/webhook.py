"""
Gateway webhook API.

The gateway POSTs payment results here, possibly several times and in
any order. Every response other than a 5xx tells the gateway to stop
redelivering.
"""
import logging
import secrets
import time
import uuid
from datetime import datetime, timezone
from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse, PlainTextResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.deps import get_fanout, get_request_meta
from app.db.base import get_db
from app.schemas.donation import WebhookResponse, WebhookHealthResponse
from app.services.donation_events import RequestMeta
from app.services.errors import DonationError, DonationErrorCode
from app.services.reconciliation import (
    FanoutServices,
    parse_webhook_body,
    extract_callback,
    process_callback,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def _webhook_error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "message": message, "status": None}
    )


@router.post("/webhook", response_model=WebhookResponse)
async def receive_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    fanout: FanoutServices = Depends(get_fanout),
    meta: RequestMeta = Depends(get_request_meta),
):
    """
    Receive a payment callback.

    Accepts JSON, form-urlencoded or raw query-string bodies.
    """
    request_id = uuid.uuid4().hex[:8]
    started = time.perf_counter()

    if settings.GATEWAY_WEBHOOK_SECRET:
        token = request.query_params.get("token") or ""
        if not secrets.compare_digest(token, settings.GATEWAY_WEBHOOK_SECRET):
            logger.warning("[%s] Webhook rejected: bad token", request_id)
            return _webhook_error(status.HTTP_401_UNAUTHORIZED, "Invalid webhook token")

    raw_body = await request.body()
    data = parse_webhook_body(request.headers.get("content-type"), raw_body)
    callback = extract_callback(data)
    logger.info("[%s] Webhook received: %s", request_id, callback.log_fields())

    try:
        outcome = await process_callback(db, callback, meta, fanout, request_id=request_id)
    except DonationError as e:
        logger.warning("[%s] Webhook rejected: %s", request_id, e.message)
        if e.code == DonationErrorCode.NOT_FOUND:
            return _webhook_error(status.HTTP_404_NOT_FOUND, "Donation not found")
        return _webhook_error(status.HTTP_400_BAD_REQUEST, e.message)
    except Exception:
        logger.exception("[%s] Webhook processing failed for %s", request_id, callback.reference)
        await db.rollback()
        return _webhook_error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Webhook processing failed")

    elapsed_ms = (time.perf_counter() - started) * 1000
    logger.info(
        "[%s] Webhook for %s done in %.0fms: %s%s",
        request_id,
        callback.reference,
        elapsed_ms,
        outcome.status.value,
        " (already processed)" if outcome.already_processed else "",
    )

    return WebhookResponse(
        success=True,
        message="Already processed" if outcome.already_processed else "Webhook processed successfully",
        status=outcome.status.value,
    )


@router.get("/webhook")
async def verify_webhook(request: Request):
    """Echo a verification challenge, or report that the endpoint is live."""
    challenge = request.query_params.get("challenge") or request.query_params.get("hub.challenge")
    if challenge:
        return PlainTextResponse(challenge)

    return WebhookHealthResponse(
        timestamp=datetime.now(timezone.utc),
        endpoints={
            "POST": "Receive payment callbacks",
            "GET": "Webhook verification and health check",
        },
    )
