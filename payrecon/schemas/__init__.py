"""Pydantic schemas package."""

from payrecon.schemas.base import BaseRequest, BaseResponse, PageResponse
from payrecon.schemas.reconciliation import (
    BatchConfirmItem,
    BatchConfirmRequest,
    BatchOutcomeEnum,
    BatchOutcomeResponse,
    CandidateListResponse,
    CandidateResponse,
    ConfirmMatchRequest,
    ImportBatchRequest,
    ImportBatchResponse,
    MarkFailedRequest,
    PaymentActivityImport,
    PaymentActivityListResponse,
    PaymentActivityResponse,
    ReconciliationStatsResponse,
    ScoreBreakdown,
    TransactionSummary,
    UnmatchRequest,
)

__all__ = [
    "BaseRequest",
    "BaseResponse",
    "BatchConfirmItem",
    "BatchConfirmRequest",
    "BatchOutcomeEnum",
    "BatchOutcomeResponse",
    "CandidateListResponse",
    "CandidateResponse",
    "ConfirmMatchRequest",
    "ImportBatchRequest",
    "ImportBatchResponse",
    "MarkFailedRequest",
    "PageResponse",
    "PaymentActivityImport",
    "PaymentActivityListResponse",
    "PaymentActivityResponse",
    "ReconciliationStatsResponse",
    "ScoreBreakdown",
    "TransactionSummary",
    "UnmatchRequest",
]
