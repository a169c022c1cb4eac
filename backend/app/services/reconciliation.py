"""
Webhook reconciliation.

Turns gateway callbacks into donation state changes exactly once, no
matter how often or in which order the gateway delivers them, then fans
the completion out to the admin notification and the receipt email.

Commit order per callback:
    1. `callback_received` event
    2. status change + `status_updated` event + project total
    3. each fan-out step on its own
A failure in step 3 never undoes step 2.
"""
import json
import logging
from dataclasses import dataclass
from typing import Any, Optional
from urllib.parse import parse_qsl

from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.donation import Donation, DonationStatus, ABSORBING_STATUSES
from app.models.donation_event import DonationEventType
from app.models.project import Project
from app.models.base import utcnow
from app.services.donation_events import log_donation_event, RequestMeta
from app.services.donation_state import transition, CallbackEvent, Effect, Transition
from app.services.email import EmailService
from app.services.errors import DonationError, DonationErrorCode, DonationNotFoundError
from app.services.gateway import map_payment_status, get_failure_reason
from app.services.notifications import notify_donation_received
from app.services.receipt import (
    ReceiptRenderer,
    generate_receipt_number,
    deliver_receipt,
    get_project_title,
)

logger = logging.getLogger(__name__)

# Field aliases in priority order; the gateway and older integrations
# disagree on naming
REFERENCE_FIELDS = ("order_id", "refno", "payment_reference", "reference", "billExternalReferenceNo")
STATUS_FIELDS = ("status", "payment_status")
BILL_CODE_FIELDS = ("billcode", "bill_code")
TRANSACTION_ID_FIELDS = ("transaction_id", "transactionId")


@dataclass(frozen=True)
class CallbackData:
    reference: Optional[str] = None
    status: Optional[str] = None
    bill_code: Optional[str] = None
    transaction_id: Optional[str] = None
    reason: Optional[str] = None
    amount: Optional[str] = None

    def log_fields(self) -> dict[str, Any]:
        """Callback fields safe to log; callbacks carry no donor PII."""
        return {
            "reference": self.reference,
            "status": self.status,
            "billcode": self.bill_code,
            "transactionId": self.transaction_id,
            "reason": self.reason,
            "amount": self.amount,
        }


@dataclass(frozen=True)
class CallbackOutcome:
    status: DonationStatus
    already_processed: bool = False


@dataclass
class FanoutServices:
    """Collaborators used after a transition has been committed."""
    email_service: EmailService
    renderer: ReceiptRenderer


def parse_webhook_body(content_type: Optional[str], raw_body: bytes) -> dict[str, str]:
    """
    Parse a callback body into a flat mapping.

    JSON objects, form-urlencoded bodies and raw query strings are all
    accepted. Unparseable bodies yield an empty mapping.
    """
    text = raw_body.decode("utf-8", errors="replace").strip()
    if not text:
        return {}

    if "application/json" in (content_type or "") or text.startswith("{"):
        try:
            parsed = json.loads(text)
        except ValueError:
            parsed = None
        if isinstance(parsed, dict):
            return {str(k): "" if v is None else str(v) for k, v in parsed.items()}

    return dict(parse_qsl(text, keep_blank_values=True))


def _first(data: dict[str, str], fields: tuple[str, ...]) -> Optional[str]:
    for name in fields:
        value = data.get(name)
        if value:
            return value.strip()
    return None


def extract_callback(data: dict[str, str]) -> CallbackData:
    """Resolve field aliases into a single callback record."""
    return CallbackData(
        reference=_first(data, REFERENCE_FIELDS),
        status=_first(data, STATUS_FIELDS),
        bill_code=_first(data, BILL_CODE_FIELDS),
        transaction_id=_first(data, TRANSACTION_ID_FIELDS),
        reason=_first(data, ("reason",)),
        amount=_first(data, ("amount",)),
    )


async def get_donation_by_reference(db: AsyncSession, reference: str) -> Optional[Donation]:
    result = await db.execute(
        select(Donation).where(Donation.payment_reference == reference)
    )
    return result.scalar_one_or_none()


async def increment_project_raised(db: AsyncSession, project_id: str, amount: int) -> None:
    """Add to a project's raised amount in a single UPDATE."""
    await db.execute(
        update(Project)
        .where(Project.id == project_id)
        .values(donation_raised=func.coalesce(Project.donation_raised, 0) + amount)
        .execution_options(synchronize_session=False)
    )


async def apply_status_transition(
    db: AsyncSession,
    donation: Donation,
    mapped_status: DonationStatus,
    *,
    reason: Optional[str] = None,
    transaction_id: Optional[str] = None,
    meta: Optional[RequestMeta] = None,
    source: str = "webhook",
) -> Optional[Transition]:
    """
    Persist the transition a callback status implies.

    The donation row is changed with one conditional UPDATE that refuses
    to touch completed or refunded rows. Returns None when nothing was
    applied (absorbing status, or a concurrent delivery got there first).
    Does not commit.
    """
    previous = donation.status
    outcome = transition(previous, CallbackEvent(mapped_status))
    if not outcome.changed:
        return None

    values: dict[str, Any] = {"status": outcome.new_status}
    if Effect.ASSIGN_RECEIPT in outcome.effects:
        values["completed_at"] = utcnow()
        values["receipt_number"] = await generate_receipt_number(db)
    if Effect.RECORD_FAILURE_REASON in outcome.effects:
        values["failure_reason"] = get_failure_reason(reason)
    if transaction_id:
        values["gateway_transaction_id"] = transaction_id

    result = await db.execute(
        update(Donation)
        .where(
            Donation.id == donation.id,
            Donation.status.not_in(ABSORBING_STATUSES),
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    await db.refresh(donation)

    if result.rowcount == 0:
        logger.info(
            "Donation %s already %s, transition to %s skipped",
            donation.payment_reference, donation.status.value, outcome.new_status.value
        )
        return None

    await log_donation_event(
        db,
        donation.id,
        DonationEventType.STATUS_UPDATED,
        {
            "previousStatus": previous.value,
            "newStatus": outcome.new_status.value,
            "reason": reason,
            "transactionId": transaction_id,
            "receiptNumber": donation.receipt_number,
            "source": source,
        },
        meta,
    )

    if Effect.INCREMENT_PROJECT_TOTAL in outcome.effects and donation.project_id:
        await increment_project_raised(db, donation.project_id, donation.amount)
        logger.info(
            "Project %s raised amount +%s", donation.project_id, donation.amount
        )

    return outcome


async def _record_fanout_failure(
    db: AsyncSession,
    donation: Donation,
    event_type: DonationEventType,
    error: Exception,
    meta: Optional[RequestMeta],
) -> None:
    """Roll back the failed step and record the failure as an event."""
    donation_id = donation.id
    await db.rollback()
    try:
        await log_donation_event(db, donation_id, event_type, {"error": str(error)}, meta)
        await db.commit()
        await db.refresh(donation)
    except Exception:
        await db.rollback()
        logger.exception("Could not record %s for donation %s", event_type.value, donation_id)


async def run_fanout(
    db: AsyncSession,
    donation: Donation,
    effects: tuple[Effect, ...],
    fanout: FanoutServices,
    meta: Optional[RequestMeta] = None,
) -> None:
    """
    Run the post-commit side effects of a transition.

    Each consumer is isolated: its failure is logged and recorded as an
    event, and the remaining consumers still run.
    """
    reference = donation.payment_reference

    if Effect.NOTIFY_ADMIN in effects:
        try:
            await notify_donation_received(db, donation, await get_project_title(db, donation.project_id))
            await db.commit()
        except Exception as e:
            logger.exception("Admin notification failed for %s", reference)
            await _record_fanout_failure(db, donation, DonationEventType.NOTIFICATION_FAILED, e, meta)

    if Effect.SEND_RECEIPT in effects:
        if not donation.donor_email:
            logger.info("No donor email for %s, receipt email skipped", reference)
            return
        try:
            await deliver_receipt(db, donation, fanout.email_service, fanout.renderer, meta)
            await db.commit()
        except Exception as e:
            logger.exception("Receipt email failed for %s", reference)
            await _record_fanout_failure(db, donation, DonationEventType.RECEIPT_EMAIL_ERROR, e, meta)


async def process_callback(
    db: AsyncSession,
    callback: CallbackData,
    meta: Optional[RequestMeta],
    fanout: FanoutServices,
    request_id: Optional[str] = None,
) -> CallbackOutcome:
    """
    Reconcile one gateway callback.

    Raises DonationError (INVALID_REQUEST) for a callback without a
    reference and DonationNotFoundError for an unknown reference. Any
    other exception means the transition was not recorded and the gateway
    should redeliver.
    """
    if not callback.reference:
        raise DonationError("Missing order reference", DonationErrorCode.INVALID_REQUEST)

    donation = await get_donation_by_reference(db, callback.reference)
    if not donation:
        raise DonationNotFoundError()

    await log_donation_event(
        db,
        donation.id,
        DonationEventType.CALLBACK_RECEIVED,
        {**callback.log_fields(), "requestId": request_id},
        meta,
    )
    await db.commit()

    if donation.status in ABSORBING_STATUSES:
        logger.info(
            "Donation %s already %s, callback ignored",
            donation.payment_reference, donation.status.value
        )
        return CallbackOutcome(status=donation.status, already_processed=True)

    mapped = map_payment_status(callback.status)
    logger.info(
        "Callback for %s: provider status %r mapped to %s",
        donation.payment_reference, callback.status, mapped.value
    )

    applied = await apply_status_transition(
        db,
        donation,
        mapped,
        reason=callback.reason,
        transaction_id=callback.transaction_id,
        meta=meta,
    )
    if applied is None:
        await db.commit()
        return CallbackOutcome(status=donation.status, already_processed=True)

    await db.commit()

    await run_fanout(db, donation, applied.effects, fanout, meta)
    return CallbackOutcome(status=applied.new_status)
