"""HTTP translation of reconciliation failures."""

from typing import NoReturn

from fastapi import HTTPException, status

from payrecon.services.errors import (
    ActivityNotFoundError,
    ConcurrentModificationError,
    InvalidReferenceError,
    InvariantViolationError,
    ReconciliationError,
    TransactionAlreadyLinkedError,
    TransactionNotFoundError,
)

RETRY_DETAIL = "Payment activity was modified by another request; refresh and retry"

# Checked in order, so subclasses come before their bases.
_STATUS_BY_ERROR: tuple[tuple[type[ReconciliationError], int], ...] = (
    (ActivityNotFoundError, status.HTTP_404_NOT_FOUND),
    (TransactionNotFoundError, status.HTTP_404_NOT_FOUND),
    (TransactionAlreadyLinkedError, status.HTTP_409_CONFLICT),
    (InvalidReferenceError, status.HTTP_403_FORBIDDEN),
    (InvariantViolationError, status.HTTP_409_CONFLICT),
    (ConcurrentModificationError, status.HTTP_409_CONFLICT),
)


def raise_not_found(resource_name: str, *, cause: Exception | None = None) -> NoReturn:
    raise HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"{resource_name} not found",
    ) from cause


def raise_bad_request(detail: str, *, cause: Exception | None = None) -> NoReturn:
    raise HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail=detail,
    ) from cause


def status_for(exc: ReconciliationError) -> int:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def raise_for_reconciliation_error(exc: ReconciliationError) -> NoReturn:
    """Raise the HTTPException that matches a service failure.

    Not-found errors use a generic detail so ids of other tenants are not
    echoed back; concurrency conflicts ask the client to reload.
    """
    if isinstance(exc, ActivityNotFoundError):
        raise_not_found("Payment activity", cause=exc)
    if isinstance(exc, TransactionNotFoundError):
        raise_not_found("Transaction", cause=exc)
    if isinstance(exc, ConcurrentModificationError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=RETRY_DETAIL) from exc
    raise HTTPException(status_code=status_for(exc), detail=str(exc)) from exc
