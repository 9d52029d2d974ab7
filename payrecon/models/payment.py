"""Payment provider accounts and the activities they report."""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from payrecon.database import Base
from payrecon.models.base import TimestampMixin, UserOwnedMixin, UUIDMixin


class PaymentProvider(str, Enum):
    """Supported payment providers."""

    PAYPAL = "paypal"
    KLARNA = "klarna"
    STRIPE = "stripe"
    SQUARE = "square"
    REVOLUT = "revolut"
    WISE = "wise"
    OTHER = "other"


class ReconciliationStatus(str, Enum):
    """Reconciliation lifecycle of a payment activity."""

    PENDING = "pending"
    RECONCILED = "reconciled"  # accepted by the automatic pass
    MANUAL = "manual"  # confirmed by a person
    FAILED = "failed"


LINKED_STATUSES = frozenset({ReconciliationStatus.RECONCILED, ReconciliationStatus.MANUAL})


class PaymentAccount(UUIDMixin, UserOwnedMixin, TimestampMixin, Base):
    """A user's account at a payment provider (e.g. a PayPal wallet)."""

    __tablename__ = "payment_accounts"

    display_name: Mapped[str] = mapped_column(String(255), nullable=False)
    provider: Mapped[PaymentProvider] = mapped_column(
        SQLEnum(
            PaymentProvider,
            name="payment_provider_enum",
            values_callable=lambda obj: [e.value for e in obj],
        ),
        nullable=False,
        default=PaymentProvider.OTHER,
    )
    # Bank account the provider settles through, matched against Transaction.bank_account.
    linked_bank_account: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class PaymentActivity(UUIDMixin, UserOwnedMixin, TimestampMixin, Base):
    """Normalized event reported by a payment provider."""

    __tablename__ = "payment_activities"
    __table_args__ = (
        UniqueConstraint("user_id", "external_id", name="uq_payment_activities_user_external_id"),
        CheckConstraint(
            "(reconciliation_status IN ('reconciled', 'manual')) = (reconciled_transaction_id IS NOT NULL)",
            name="ck_payment_activities_link_matches_status",
        ),
        CheckConstraint(
            "reconciliation_confidence IS NULL OR reconciliation_confidence BETWEEN 0 AND 100",
            name="ck_payment_activities_confidence_range",
        ),
    )

    payment_account_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("payment_accounts.id", ondelete="SET NULL"), nullable=True, index=True
    )
    external_id: Mapped[str] = mapped_column(String(255), nullable=False)
    merchant_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    merchant_category: Mapped[str | None] = mapped_column(String(255), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    execution_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)

    reconciliation_status: Mapped[ReconciliationStatus] = mapped_column(
        SQLEnum(
            ReconciliationStatus,
            name="reconciliation_status_enum",
            values_callable=lambda obj: [e.value for e in obj],
        ),
        nullable=False,
        default=ReconciliationStatus.PENDING,
        index=True,
    )
    reconciled_transaction_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("transactions.id"), nullable=True, index=True
    )
    reconciliation_confidence: Mapped[int | None] = mapped_column(Integer, nullable=True)
    reconciliation_failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    reconciled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Optimistic lock: every UPDATE carries "AND version = :old", stale writes raise StaleDataError.
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    @property
    def is_linked(self) -> bool:
        return self.reconciled_transaction_id is not None

    def __repr__(self) -> str:
        return f"<PaymentActivity {self.id} {self.reconciliation_status}>"
