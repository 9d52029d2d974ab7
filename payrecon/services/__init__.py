"""Services package."""

from payrecon.services.errors import (
    ActivityNotFoundError,
    ConcurrentModificationError,
    InvalidReferenceError,
    InvariantViolationError,
    NotFoundError,
    ReconciliationError,
    TransactionAlreadyLinkedError,
    TransactionNotFoundError,
)
from payrecon.services.lifecycle import MatchSource
from payrecon.services.reconciliation import (
    BatchOutcome,
    CandidateResult,
    ReconciliationConfig,
    batch_confirm,
    confirm_match,
    find_candidates,
    get_activity,
    get_stats,
    import_batch,
    list_activities,
    load_batch_transactions,
    load_reconciliation_config,
    mark_failed,
    stage_activities,
    unmatch,
)

__all__ = [
    "ActivityNotFoundError",
    "BatchOutcome",
    "CandidateResult",
    "ConcurrentModificationError",
    "InvalidReferenceError",
    "InvariantViolationError",
    "MatchSource",
    "NotFoundError",
    "ReconciliationConfig",
    "ReconciliationError",
    "TransactionAlreadyLinkedError",
    "TransactionNotFoundError",
    "batch_confirm",
    "confirm_match",
    "find_candidates",
    "get_activity",
    "get_stats",
    "import_batch",
    "list_activities",
    "load_batch_transactions",
    "load_reconciliation_config",
    "mark_failed",
    "stage_activities",
    "unmatch",
]
