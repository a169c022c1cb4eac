"""
Donation state machine.

`transition` is the single place that decides how a donation's status
moves and which side effects a move triggers. It is pure: persistence and
side effects are carried out by the callers.

    pending ──callback completed──▶ completed   (absorbing)
    pending ──callback failed─────▶ failed
    failed  ──callback completed──▶ completed
    failed  ──retry───────────────▶ pending
    refunded                                    (absorbing)
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Union

from app.models.donation import DonationStatus, ABSORBING_STATUSES, RETRYABLE_STATUSES
from app.services.errors import DonationError, DonationErrorCode


class Effect(str, Enum):
    ASSIGN_RECEIPT = "assign_receipt"
    INCREMENT_PROJECT_TOTAL = "increment_project_total"
    NOTIFY_ADMIN = "notify_admin"
    SEND_RECEIPT = "send_receipt"
    RECORD_FAILURE_REASON = "record_failure_reason"


COMPLETION_EFFECTS = (
    Effect.ASSIGN_RECEIPT,
    Effect.INCREMENT_PROJECT_TOTAL,
    Effect.NOTIFY_ADMIN,
    Effect.SEND_RECEIPT,
)


@dataclass(frozen=True)
class CallbackEvent:
    """A gateway callback, already mapped to a donation status."""
    mapped_status: DonationStatus


@dataclass(frozen=True)
class RetryEvent:
    """A donor asking for a new payment attempt."""


DonationStateEvent = Union[CallbackEvent, RetryEvent]


@dataclass(frozen=True)
class Transition:
    new_status: DonationStatus
    effects: tuple[Effect, ...] = field(default_factory=tuple)
    changed: bool = True


def transition(current: DonationStatus, event: DonationStateEvent) -> Transition:
    """
    Compute the outcome of applying `event` to a donation in `current`.

    Callbacks never move a donation out of an absorbing status; such a
    callback yields an unchanged transition with no effects. A retry from
    an absorbing status is rejected with a DonationError.
    """
    if isinstance(event, RetryEvent):
        if current == DonationStatus.COMPLETED:
            raise DonationError("This donation has already been completed", DonationErrorCode.ALREADY_COMPLETED)
        if current == DonationStatus.REFUNDED:
            raise DonationError("This donation has been refunded", DonationErrorCode.ALREADY_REFUNDED)
        if current not in RETRYABLE_STATUSES:
            raise DonationError(f"Cannot retry a {current.value} donation", DonationErrorCode.INVALID_REQUEST)
        return Transition(new_status=DonationStatus.PENDING)

    if current in ABSORBING_STATUSES:
        return Transition(new_status=current, changed=False)

    target = event.mapped_status
    if target == DonationStatus.COMPLETED:
        return Transition(new_status=target, effects=COMPLETION_EFFECTS)
    if target == DonationStatus.FAILED:
        return Transition(new_status=target, effects=(Effect.RECORD_FAILURE_REASON,))
    if target == DonationStatus.PENDING:
        return Transition(new_status=target)

    # Callbacks never report a refund; treat it as no information
    return Transition(new_status=current, changed=False)
