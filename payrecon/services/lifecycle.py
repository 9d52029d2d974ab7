"""Reconciliation state transitions for a payment activity.

Every transition writes status, linked transaction and confidence together
and validates the triple first. No transition is restricted by the current
state: a reconciled, manual or failed activity can always be confirmed again
or unmatched.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from uuid import UUID

from payrecon.models import LINKED_STATUSES, PaymentActivity, ReconciliationStatus
from payrecon.services.errors import InvariantViolationError

# Confidence written by unmatch; distinguishes "explicitly cleared" from "never scored" (None).
UNMATCHED_CONFIDENCE = 0


class MatchSource(str, Enum):
    """Who decided the match."""

    MANUAL = "manual"
    AUTOMATIC = "automatic"


def check_link_invariant(
    status: ReconciliationStatus,
    transaction_id: UUID | None,
    confidence: int | None,
) -> None:
    """Raise InvariantViolationError unless the triple is a legal state."""
    if confidence is not None and not 0 <= confidence <= 100:
        raise InvariantViolationError(f"Confidence {confidence} is outside 0-100")

    if status in LINKED_STATUSES:
        if transaction_id is None:
            raise InvariantViolationError(f"Status '{status.value}' requires a linked transaction")
        if status is ReconciliationStatus.MANUAL and confidence is not None:
            raise InvariantViolationError("Manual reconciliation does not carry a confidence score")
        if status is ReconciliationStatus.RECONCILED and confidence is None:
            raise InvariantViolationError("Automatic reconciliation requires a confidence score")
        return

    if transaction_id is not None:
        raise InvariantViolationError(f"Status '{status.value}' cannot keep a linked transaction")
    if confidence not in (None, UNMATCHED_CONFIDENCE):
        raise InvariantViolationError(f"Status '{status.value}' cannot keep confidence {confidence}")


def _apply(
    activity: PaymentActivity,
    status: ReconciliationStatus,
    transaction_id: UUID | None,
    confidence: int | None,
) -> None:
    check_link_invariant(status, transaction_id, confidence)
    activity.reconciliation_status = status
    activity.reconciled_transaction_id = transaction_id
    activity.reconciliation_confidence = confidence


def _is_state(
    activity: PaymentActivity,
    status: ReconciliationStatus,
    transaction_id: UUID | None,
    confidence: int | None,
) -> bool:
    return (
        activity.reconciliation_status == status
        and activity.reconciled_transaction_id == transaction_id
        and activity.reconciliation_confidence == confidence
    )


def confirm(
    activity: PaymentActivity,
    transaction_id: UUID,
    source: MatchSource,
    confidence: int | None = None,
    *,
    now: datetime | None = None,
) -> bool:
    """Link the activity to a transaction, overwriting any previous link.

    Manual confirmations drop the confidence; automatic ones keep the score
    that justified them. Returns False when the activity already holds
    exactly this state.
    """
    if source is MatchSource.MANUAL:
        status = ReconciliationStatus.MANUAL
        confidence = None
    else:
        status = ReconciliationStatus.RECONCILED

    if _is_state(activity, status, transaction_id, confidence):
        return False

    _apply(activity, status, transaction_id, confidence)
    activity.reconciliation_failure_reason = None
    activity.reconciled_at = now or datetime.now(UTC)
    return True


def unmatch(activity: PaymentActivity) -> bool:
    """Clear the link and return the activity to pending with confidence 0."""
    if _is_state(activity, ReconciliationStatus.PENDING, None, UNMATCHED_CONFIDENCE):
        return False

    _apply(activity, ReconciliationStatus.PENDING, None, UNMATCHED_CONFIDENCE)
    activity.reconciliation_failure_reason = None
    activity.reconciled_at = None
    return True


def mark_failed(activity: PaymentActivity, reason: str) -> bool:
    """Flag the activity as failed. A linked activity must be unmatched first."""
    if activity.is_linked:
        raise InvariantViolationError("Unmatch the activity before marking it failed")

    if (
        activity.reconciliation_status == ReconciliationStatus.FAILED
        and activity.reconciliation_failure_reason == reason
    ):
        return False

    _apply(activity, ReconciliationStatus.FAILED, None, activity.reconciliation_confidence)
    activity.reconciliation_failure_reason = reason
    return True
