"""Utility functions and helpers."""

from .exceptions import (
    raise_bad_request,
    raise_for_reconciliation_error,
    raise_not_found,
    status_for,
)

__all__ = [
    "raise_bad_request",
    "raise_for_reconciliation_error",
    "raise_not_found",
    "status_for",
]
