"""Typed failures raised by the reconciliation engine."""


class ReconciliationError(Exception):
    """Base exception for reconciliation errors."""


class NotFoundError(ReconciliationError):
    """Referenced record does not exist (or is not visible to the caller)."""


class ActivityNotFoundError(NotFoundError):
    """Payment activity not found."""


class TransactionNotFoundError(NotFoundError):
    """Ledger transaction not found."""


class InvalidReferenceError(ReconciliationError):
    """Transaction belongs to another user or another bank account."""


class TransactionAlreadyLinkedError(InvalidReferenceError):
    """Transaction is already linked to a different payment activity."""


class InvariantViolationError(ReconciliationError):
    """Requested state would break the status/link/confidence invariant."""


class ConcurrentModificationError(ReconciliationError):
    """Payment activity changed or disappeared since it was read."""
