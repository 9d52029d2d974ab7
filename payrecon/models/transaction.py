"""Bank ledger transaction model.

Rows are owned by the ledger subsystem; the reconciliation engine only reads them.
"""

from datetime import date
from decimal import Decimal
from enum import Enum

from sqlalchemy import Date, Numeric, String, Text
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from payrecon.database import Base
from payrecon.models.base import TimestampMixin, UserOwnedMixin, UUIDMixin


class TransactionType(str, Enum):
    """Ledger entry direction."""

    INCOME = "income"
    EXPENSE = "expense"


class Transaction(UUIDMixin, UserOwnedMixin, TimestampMixin, Base):
    """Entry in the user's bank ledger."""

    __tablename__ = "transactions"

    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    execution_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    type: Mapped[TransactionType] = mapped_column(
        SQLEnum(
            TransactionType,
            name="transaction_type_enum",
            values_callable=lambda obj: [e.value for e in obj],
        ),
        nullable=False,
    )
    bank_account: Mapped[str | None] = mapped_column(String(255), nullable=True)
    category: Mapped[str | None] = mapped_column(String(255), nullable=True)

    def __repr__(self) -> str:
        return f"<Transaction {self.id} {self.execution_date} {self.amount}>"
