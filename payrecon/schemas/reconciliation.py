"""Pydantic schemas for reconciliation API."""

from collections import Counter
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from payrecon.models import ReconciliationStatus, TransactionType
from payrecon.schemas.base import BaseRequest, BaseResponse, PageResponse
from payrecon.services.matching import ConfidenceLevel


class TransactionSummary(BaseResponse):
    """Ledger transaction as shown next to a payment activity."""

    id: UUID
    description: str
    amount: Decimal
    execution_date: date
    type: TransactionType
    bank_account: str | None = None
    category: str | None = None


class PaymentActivityResponse(BaseResponse):
    """Payment activity with its reconciliation state."""

    id: UUID
    payment_account_id: UUID | None
    external_id: str
    merchant_name: str | None
    merchant_category: str | None
    description: str | None
    amount: Decimal
    execution_date: date
    reconciliation_status: ReconciliationStatus
    reconciled_transaction_id: UUID | None
    reconciliation_confidence: int | None
    reconciliation_failure_reason: str | None
    reconciled_at: datetime | None
    version: int
    created_at: datetime
    updated_at: datetime


PaymentActivityListResponse = PageResponse[PaymentActivityResponse]


class ScoreBreakdown(BaseModel):
    """Sub-scores that make up a candidate's total."""

    amount: int
    date: int
    description: int
    total: int


class CandidateResponse(BaseModel):
    """A scored candidate transaction."""

    transaction: TransactionSummary
    score: int
    breakdown: ScoreBreakdown
    day_gap: int
    confidence_level: ConfidenceLevel
    high_confidence: bool
    reasons: list[str]


class CandidateListResponse(BaseModel):
    """Ranked candidates for one payment activity."""

    activity_id: UUID
    items: list[CandidateResponse]
    total: int
    # transaction id -> total score
    scores: dict[str, int]
    fallback_used: bool
    high_confidence_threshold: int


class ConfirmMatchRequest(BaseRequest):
    transaction_id: UUID
    expected_version: int | None = Field(default=None, ge=1)


class UnmatchRequest(BaseRequest):
    expected_version: int | None = Field(default=None, ge=1)


class MarkFailedRequest(BaseRequest):
    reason: str = Field(min_length=1, max_length=1000)
    expected_version: int | None = Field(default=None, ge=1)


class PaymentActivityImport(BaseRequest):
    """New activity reported by a payment provider."""

    external_id: str = Field(min_length=1, max_length=255)
    payment_account_id: UUID | None = None
    merchant_name: str | None = Field(default=None, max_length=255)
    merchant_category: str | None = Field(default=None, max_length=255)
    description: str | None = None
    amount: Decimal = Field(max_digits=18, decimal_places=2)
    execution_date: date


class ImportBatchRequest(BaseRequest):
    activities: list[PaymentActivityImport] = Field(min_length=1, max_length=1000)
    # Restrict the ledger pool to these transactions; None uses the user's ledger.
    transaction_ids: list[UUID] | None = None
    auto_accept_threshold: int | None = Field(default=None, ge=0, le=100)

    @field_validator("activities")
    @classmethod
    def reject_duplicate_external_ids(cls, v: list[PaymentActivityImport]) -> list[PaymentActivityImport]:
        """Each provider activity may appear only once per batch."""
        counts = Counter(item.external_id for item in v)
        duplicates = sorted(external_id for external_id, n in counts.items() if n > 1)
        if duplicates:
            raise ValueError(f"Duplicate external_id in batch: {', '.join(duplicates)}")
        return v


class BatchOutcomeEnum(str, Enum):
    ACCEPTED = "accepted"
    LEFT_PENDING = "left-pending"
    SKIPPED = "skipped"


class BatchOutcomeResponse(BaseModel):
    activity_id: UUID
    external_id: str
    outcome: BatchOutcomeEnum
    score: int | None
    transaction_id: UUID | None


class ImportBatchResponse(BaseModel):
    items: list[BatchOutcomeResponse]
    accepted: int
    left_pending: int
    skipped: int


class BatchConfirmItem(BaseRequest):
    activity_id: UUID
    transaction_id: UUID


class BatchConfirmRequest(BaseRequest):
    items: list[BatchConfirmItem] = Field(min_length=1, max_length=500)


class ReconciliationStatsResponse(BaseModel):
    """Reconciliation statistics."""

    total: int
    pending: int
    reconciled: int
    manual: int
    failed: int
    reconciled_percentage: int
    pending_percentage: int
    failed_percentage: int
