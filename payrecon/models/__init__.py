"""SQLAlchemy models package."""

from payrecon.models.payment import (
    LINKED_STATUSES,
    PaymentAccount,
    PaymentActivity,
    PaymentProvider,
    ReconciliationStatus,
)
from payrecon.models.transaction import Transaction, TransactionType
from payrecon.models.user import User

__all__ = [
    "LINKED_STATUSES",
    "PaymentAccount",
    "PaymentActivity",
    "PaymentProvider",
    "ReconciliationStatus",
    "Transaction",
    "TransactionType",
    "User",
]
