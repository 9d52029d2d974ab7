"""Reconciliation API router."""

from datetime import date
from decimal import Decimal
from typing import NoReturn
from uuid import UUID

from fastapi import APIRouter, Query
from sqlalchemy.ext.asyncio import AsyncSession

from payrecon.deps import CurrentUserId, DbSession, Pagination
from payrecon.logger import get_logger, log_exception
from payrecon.models import PaymentActivity, ReconciliationStatus
from payrecon.schemas.reconciliation import (
    BatchConfirmRequest,
    BatchOutcomeEnum,
    BatchOutcomeResponse,
    CandidateListResponse,
    CandidateResponse,
    ConfirmMatchRequest,
    ImportBatchRequest,
    ImportBatchResponse,
    MarkFailedRequest,
    PaymentActivityListResponse,
    PaymentActivityResponse,
    ReconciliationStatsResponse,
    ScoreBreakdown,
    TransactionSummary,
    UnmatchRequest,
)
from payrecon.services import reconciliation as service
from payrecon.services.errors import ConcurrentModificationError, ReconciliationError
from payrecon.services.matching import CandidateWindow, confidence_level
from payrecon.utils import raise_bad_request, raise_for_reconciliation_error

router = APIRouter(prefix="/reconciliation", tags=["reconciliation"])
logger = get_logger(__name__)


def _raise_http(exc: ReconciliationError) -> NoReturn:
    if isinstance(exc, ConcurrentModificationError):
        log_exception(logger, exc, "Payment activity changed concurrently", level="warning", include_traceback=False)
    else:
        logger.info("Reconciliation request rejected", error=str(exc), error_type=type(exc).__name__)
    raise_for_reconciliation_error(exc)


async def _committed(db: AsyncSession, activity: PaymentActivity) -> PaymentActivityResponse:
    await db.commit()
    await db.refresh(activity)
    return PaymentActivityResponse.model_validate(activity)


@router.get("/activities", response_model=PaymentActivityListResponse)
async def list_activities(
    db: DbSession,
    user_id: CurrentUserId,
    page: Pagination,
    status: ReconciliationStatus | None = Query(default=None),
    payment_account_id: UUID | None = Query(default=None),
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    search: str | None = Query(default=None, max_length=255),
) -> PaymentActivityListResponse:
    if start_date and end_date and start_date > end_date:
        raise_bad_request("start_date must be on or before end_date")

    items, total = await service.list_activities(
        db,
        user_id,
        status=status,
        payment_account_id=payment_account_id,
        start_date=start_date,
        end_date=end_date,
        search=search,
        limit=page.limit,
        offset=page.offset,
    )
    return PaymentActivityListResponse(
        items=[PaymentActivityResponse.model_validate(item) for item in items],
        total=total,
        limit=page.limit,
        offset=page.offset,
    )


@router.get("/stats", response_model=ReconciliationStatsResponse)
async def get_stats(db: DbSession, user_id: CurrentUserId) -> ReconciliationStatsResponse:
    return ReconciliationStatsResponse(**await service.get_stats(db, user_id))


@router.post("/import-batch", response_model=ImportBatchResponse)
async def import_batch(
    payload: ImportBatchRequest,
    db: DbSession,
    user_id: CurrentUserId,
) -> ImportBatchResponse:
    """Stage provider activities and run the automatic reconciliation pass."""
    config = service.load_reconciliation_config()
    try:
        activities = await service.stage_activities(db, user_id, payload.activities)
        transactions = await service.load_batch_transactions(
            db,
            user_id,
            activities,
            transaction_ids=payload.transaction_ids,
            config=config,
        )
        outcomes = await service.import_batch(
            db,
            activities,
            transactions,
            auto_accept_threshold=payload.auto_accept_threshold,
            config=config,
        )
        await db.commit()
    except ReconciliationError as exc:
        await db.rollback()
        _raise_http(exc)

    external_ids = {activity.id: activity.external_id for activity in activities}
    items = [
        BatchOutcomeResponse(
            activity_id=outcome.activity_id,
            external_id=external_ids[outcome.activity_id],
            outcome=BatchOutcomeEnum(outcome.outcome),
            score=outcome.score,
            transaction_id=outcome.transaction_id,
        )
        for outcome in outcomes
    ]
    return ImportBatchResponse(
        items=items,
        accepted=sum(1 for item in items if item.outcome == BatchOutcomeEnum.ACCEPTED),
        left_pending=sum(1 for item in items if item.outcome == BatchOutcomeEnum.LEFT_PENDING),
        skipped=sum(1 for item in items if item.outcome == BatchOutcomeEnum.SKIPPED),
    )


@router.post("/batch-confirm", response_model=list[PaymentActivityResponse])
async def batch_confirm(
    payload: BatchConfirmRequest,
    db: DbSession,
    user_id: CurrentUserId,
) -> list[PaymentActivityResponse]:
    """Confirm several matches at once; nothing is saved if any pair fails."""
    try:
        activities = await service.batch_confirm(
            db,
            [(item.activity_id, item.transaction_id) for item in payload.items],
            user_id=user_id,
        )
        await db.commit()
    except ReconciliationError as exc:
        await db.rollback()
        _raise_http(exc)

    for activity in activities:
        await db.refresh(activity)
    return [PaymentActivityResponse.model_validate(activity) for activity in activities]


@router.get("/{activity_id}", response_model=PaymentActivityResponse)
async def get_activity(
    activity_id: UUID,
    db: DbSession,
    user_id: CurrentUserId,
) -> PaymentActivityResponse:
    try:
        activity = await service.get_activity(db, activity_id, user_id=user_id)
    except ReconciliationError as exc:
        _raise_http(exc)
    return PaymentActivityResponse.model_validate(activity)


@router.get("/{activity_id}/candidates", response_model=CandidateListResponse)
async def get_candidates(
    activity_id: UUID,
    db: DbSession,
    user_id: CurrentUserId,
    date_window_days: int | None = Query(default=None, ge=0, le=365),
    amount_tolerance_percent: Decimal | None = Query(default=None, ge=0, le=1),
    fallback: bool = Query(default=False),
    search: str | None = Query(default=None, max_length=255),
) -> CandidateListResponse:
    """Ranked ledger transactions that could back the activity."""
    config = service.load_reconciliation_config()
    window = CandidateWindow(
        date_window_days=config.date_window_days if date_window_days is None else date_window_days,
        amount_tolerance_percent=(
            config.amount_tolerance_percent if amount_tolerance_percent is None else amount_tolerance_percent
        ),
    )
    try:
        result = await service.find_candidates(
            db,
            activity_id,
            user_id=user_id,
            config=config,
            window=window,
            fallback_to_pool=fallback,
            search=search,
        )
    except ReconciliationError as exc:
        _raise_http(exc)

    items = [
        CandidateResponse(
            transaction=TransactionSummary.model_validate(item.transaction),
            score=item.total,
            breakdown=ScoreBreakdown(**item.score.breakdown()),
            day_gap=item.day_gap,
            confidence_level=confidence_level(item.total, config.high_confidence, config.medium_confidence),
            high_confidence=item.total >= config.high_confidence,
            reasons=item.reasons,
        )
        for item in result.candidates
    ]
    return CandidateListResponse(
        activity_id=result.activity.id,
        items=items,
        total=len(items),
        scores=result.scores,
        fallback_used=result.fallback_used,
        high_confidence_threshold=config.high_confidence,
    )


@router.post("/{activity_id}/confirm", response_model=PaymentActivityResponse)
async def confirm_match(
    activity_id: UUID,
    payload: ConfirmMatchRequest,
    db: DbSession,
    user_id: CurrentUserId,
) -> PaymentActivityResponse:
    try:
        activity = await service.confirm_match(
            db,
            activity_id,
            payload.transaction_id,
            user_id=user_id,
            expected_version=payload.expected_version,
        )
        return await _committed(db, activity)
    except ReconciliationError as exc:
        await db.rollback()
        _raise_http(exc)


@router.post("/{activity_id}/unmatch", response_model=PaymentActivityResponse)
async def unmatch(
    activity_id: UUID,
    db: DbSession,
    user_id: CurrentUserId,
    payload: UnmatchRequest | None = None,
) -> PaymentActivityResponse:
    try:
        activity = await service.unmatch(
            db,
            activity_id,
            user_id=user_id,
            expected_version=payload.expected_version if payload else None,
        )
        return await _committed(db, activity)
    except ReconciliationError as exc:
        await db.rollback()
        _raise_http(exc)


@router.post("/{activity_id}/fail", response_model=PaymentActivityResponse)
async def mark_failed(
    activity_id: UUID,
    payload: MarkFailedRequest,
    db: DbSession,
    user_id: CurrentUserId,
) -> PaymentActivityResponse:
    try:
        activity = await service.mark_failed(
            db,
            activity_id,
            payload.reason,
            user_id=user_id,
            expected_version=payload.expected_version,
        )
        return await _committed(db, activity)
    except ReconciliationError as exc:
        await db.rollback()
        _raise_http(exc)
