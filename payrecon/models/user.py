"""Owner of payment accounts, activities and ledger transactions."""

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from payrecon.database import Base
from payrecon.models.base import TimestampMixin, UUIDMixin


class User(UUIDMixin, TimestampMixin, Base):
    """Tenant row; tokens are issued by the identity service and carry its id."""

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    display_name: Mapped[str | None] = mapped_column(String(120), nullable=True)
