"""Reconciliation service: candidate lookup, confirmation and batch import."""

from __future__ import annotations

import os
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field, replace
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal
from pathlib import Path
from typing import Any
from uuid import UUID

import yaml
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from payrecon.logger import get_logger, log_timing
from payrecon.models import (
    PaymentAccount,
    PaymentActivity,
    ReconciliationStatus,
    Transaction,
)
from payrecon.services import lifecycle, matching
from payrecon.services.errors import (
    ActivityNotFoundError,
    ConcurrentModificationError,
    InvalidReferenceError,
    TransactionAlreadyLinkedError,
    TransactionNotFoundError,
)
from payrecon.services.lifecycle import MatchSource
from payrecon.services.matching import CandidateWindow, ScoredCandidate

logger = get_logger(__name__)


@dataclass(frozen=True)
class ReconciliationConfig:
    """Runtime configuration for candidate selection and auto-acceptance."""

    date_window_days: int = 7
    amount_tolerance_percent: Decimal = Decimal("0.10")
    # Ledger rows loaded around the activity date before the window filter runs
    pool_window_days: int = 30
    auto_accept: int = 70
    high_confidence: int = matching.HIGH_CONFIDENCE_THRESHOLD
    medium_confidence: int = matching.MEDIUM_CONFIDENCE_THRESHOLD
    enforce_transaction_exclusivity: bool = False

    @property
    def window(self) -> CandidateWindow:
        return CandidateWindow(
            date_window_days=self.date_window_days,
            amount_tolerance_percent=self.amount_tolerance_percent,
        )


DEFAULT_CONFIG = ReconciliationConfig()

_config_cache: ReconciliationConfig | None = None

_TRUE_VALUES = {"1", "true", "yes", "on"}


def load_reconciliation_config(force_reload: bool = False) -> ReconciliationConfig:
    """Load reconciliation configuration from YAML if available.

    Caches the result to avoid repeated disk I/O.
    """
    global _config_cache
    if _config_cache is not None and not force_reload:
        return _config_cache

    config = DEFAULT_CONFIG
    config_path = Path(__file__).resolve().parents[2] / "config" / "reconciliation.yaml"

    if config_path.exists():
        try:
            raw = yaml.safe_load(config_path.read_text()) or {}
            scoring = raw.get("scoring", {})
            thresholds = scoring.get("thresholds", {})
            tolerances = scoring.get("tolerances", {})
            links = raw.get("links", {})

            config = ReconciliationConfig(
                date_window_days=int(tolerances.get("date_days", config.date_window_days)),
                amount_tolerance_percent=Decimal(
                    str(tolerances.get("amount_percent", config.amount_tolerance_percent))
                ),
                pool_window_days=int(tolerances.get("pool_days", config.pool_window_days)),
                auto_accept=int(thresholds.get("auto_accept", config.auto_accept)),
                high_confidence=int(thresholds.get("high_confidence", config.high_confidence)),
                medium_confidence=int(thresholds.get("medium_confidence", config.medium_confidence)),
                enforce_transaction_exclusivity=bool(
                    links.get("enforce_transaction_exclusivity", config.enforce_transaction_exclusivity)
                ),
            )
        except (OSError, yaml.YAMLError, ValueError, TypeError, ArithmeticError, AttributeError) as e:
            logger.warning(
                "Failed to load reconciliation config - using defaults",
                config_path=str(config_path),
                error=str(e),
                error_type=type(e).__name__,
            )
            config = DEFAULT_CONFIG

    auto_accept_env = os.getenv("RECONCILIATION_AUTO_ACCEPT_THRESHOLD")
    high_confidence_env = os.getenv("RECONCILIATION_HIGH_CONFIDENCE_THRESHOLD")
    exclusivity_env = os.getenv("RECONCILIATION_ENFORCE_EXCLUSIVITY")
    if auto_accept_env:
        config = replace(config, auto_accept=int(auto_accept_env))
    if high_confidence_env:
        config = replace(config, high_confidence=int(high_confidence_env))
    if exclusivity_env:
        config = replace(config, enforce_transaction_exclusivity=exclusivity_env.strip().lower() in _TRUE_VALUES)

    _config_cache = config
    return config


# ---------------------------------------------------------------------------
# Loading and validation helpers
# ---------------------------------------------------------------------------


async def _get_activity(
    db: AsyncSession,
    activity_id: UUID,
    user_id: UUID,
    *,
    for_update: bool = False,
) -> PaymentActivity:
    stmt = select(PaymentActivity).where(
        PaymentActivity.id == activity_id,
        PaymentActivity.user_id == user_id,
    )
    if for_update:
        stmt = stmt.with_for_update()
    activity = (await db.execute(stmt)).scalar_one_or_none()
    if activity is None:
        raise ActivityNotFoundError(f"Payment activity {activity_id} not found")
    return activity


async def _settlement_account(db: AsyncSession, activity: PaymentActivity) -> str | None:
    """Bank account the activity's payment account settles through, if known."""
    if activity.payment_account_id is None:
        return None
    account = await db.get(PaymentAccount, activity.payment_account_id)
    return account.linked_bank_account if account else None


def _same_bank_account(settlement_account: str | None, transaction: Transaction) -> bool:
    # Unknown on either side means the accounts cannot be proven to differ.
    if not settlement_account or not transaction.bank_account:
        return True
    return settlement_account == transaction.bank_account


async def _get_linkable_transaction(
    db: AsyncSession,
    activity: PaymentActivity,
    transaction_id: UUID,
) -> Transaction:
    txn = await db.get(Transaction, transaction_id)
    if txn is None:
        raise TransactionNotFoundError(f"Transaction {transaction_id} not found")
    if txn.user_id != activity.user_id:
        raise InvalidReferenceError(f"Transaction {transaction_id} belongs to another user")
    settlement_account = await _settlement_account(db, activity)
    if not _same_bank_account(settlement_account, txn):
        raise InvalidReferenceError(
            f"Transaction {transaction_id} is on bank account '{txn.bank_account}', "
            f"payment account settles through '{settlement_account}'"
        )
    return txn


def _check_version(activity: PaymentActivity, expected_version: int | None) -> None:
    if expected_version is not None and activity.version != expected_version:
        raise ConcurrentModificationError(
            f"Payment activity {activity.id} is at version {activity.version}, expected {expected_version}"
        )


async def _flush(db: AsyncSession) -> None:
    try:
        await db.flush()
    except StaleDataError as exc:
        raise ConcurrentModificationError("Payment activity was modified or deleted concurrently") from exc


async def _linked_transaction_ids(db: AsyncSession, user_id: UUID) -> dict[UUID, UUID]:
    """Map of transaction id -> activity id for every linked activity of the user."""
    result = await db.execute(
        select(PaymentActivity.reconciled_transaction_id, PaymentActivity.id).where(
            PaymentActivity.user_id == user_id,
            PaymentActivity.reconciled_transaction_id.is_not(None),
        )
    )
    return {txn_id: activity_id for txn_id, activity_id in result.all()}


async def _ensure_exclusive(db: AsyncSession, activity: PaymentActivity, transaction_id: UUID) -> None:
    result = await db.execute(
        select(PaymentActivity.id).where(
            PaymentActivity.reconciled_transaction_id == transaction_id,
            PaymentActivity.id != activity.id,
        )
    )
    other = result.scalars().first()
    if other is not None:
        raise TransactionAlreadyLinkedError(
            f"Transaction {transaction_id} is already linked to payment activity {other}"
        )


async def load_transaction_pool(
    db: AsyncSession,
    user_id: UUID,
    start: date,
    end: date,
) -> list[Transaction]:
    """Load the user's ledger transactions dated within [start, end]."""
    result = await db.execute(
        select(Transaction)
        .where(
            Transaction.user_id == user_id,
            Transaction.execution_date >= start,
            Transaction.execution_date <= end,
        )
        .order_by(Transaction.execution_date, Transaction.id)
    )
    return list(result.scalars().all())


async def get_activity(db: AsyncSession, activity_id: UUID, *, user_id: UUID) -> PaymentActivity:
    return await _get_activity(db, activity_id, user_id)


# ---------------------------------------------------------------------------
# Candidate lookup
# ---------------------------------------------------------------------------


@dataclass
class CandidateResult:
    """Ranked candidates for one activity."""

    activity: PaymentActivity
    candidates: list[ScoredCandidate] = field(default_factory=list)
    fallback_used: bool = False

    @property
    def scores(self) -> dict[str, int]:
        return {str(item.transaction.id): item.total for item in self.candidates}


async def find_candidates(
    db: AsyncSession,
    activity_id: UUID,
    *,
    user_id: UUID,
    config: ReconciliationConfig | None = None,
    window: CandidateWindow | None = None,
    fallback_to_pool: bool = False,
    search: str | None = None,
) -> CandidateResult:
    """Score and rank the ledger transactions that could back an activity.

    With ``fallback_to_pool`` an empty window falls back to every transaction
    in the coarse date pool, so the reviewer still has something to pick from.
    ``search`` narrows the pool by a case-insensitive description substring.
    """
    config = config or load_reconciliation_config()
    window = window or config.window
    activity = await _get_activity(db, activity_id, user_id)

    pool_days = max(config.pool_window_days, window.date_window_days)
    pool = await load_transaction_pool(
        db,
        user_id,
        activity.execution_date - timedelta(days=pool_days),
        activity.execution_date + timedelta(days=pool_days),
    )

    settlement_account = await _settlement_account(db, activity)
    pool = [txn for txn in pool if _same_bank_account(settlement_account, txn)]

    if config.enforce_transaction_exclusivity:
        claimed = await _linked_transaction_ids(db, user_id)
        pool = [txn for txn in pool if claimed.get(txn.id, activity.id) == activity.id]

    if search:
        needle = search.strip().lower()
        pool = [txn for txn in pool if needle in (txn.description or "").lower()]

    candidates = matching.find_candidates(activity, pool, window)
    fallback_used = False
    if not candidates and fallback_to_pool:
        candidates = pool
        fallback_used = bool(pool)

    ranked = matching.rank_candidates(activity, candidates)
    logger.debug(
        "Candidates ranked",
        activity_id=str(activity.id),
        pool_size=len(pool),
        candidates=len(ranked),
        fallback_used=fallback_used,
        top_score=ranked[0].total if ranked else None,
    )
    return CandidateResult(activity=activity, candidates=ranked, fallback_used=fallback_used)


# ---------------------------------------------------------------------------
# Single-activity transitions
# ---------------------------------------------------------------------------


async def confirm_match(
    db: AsyncSession,
    activity_id: UUID,
    transaction_id: UUID,
    *,
    user_id: UUID,
    source: MatchSource = MatchSource.MANUAL,
    confidence: int | None = None,
    expected_version: int | None = None,
    config: ReconciliationConfig | None = None,
) -> PaymentActivity:
    """Link an activity to a ledger transaction.

    Automatic confirmations without an explicit confidence are scored first.
    Re-confirming the same link is a no-op.
    """
    config = config or load_reconciliation_config()
    activity = await _get_activity(db, activity_id, user_id, for_update=True)
    _check_version(activity, expected_version)

    txn = await _get_linkable_transaction(db, activity, transaction_id)
    if config.enforce_transaction_exclusivity:
        await _ensure_exclusive(db, activity, txn.id)

    if source is MatchSource.AUTOMATIC and confidence is None:
        confidence = matching.score(activity, txn)

    if lifecycle.confirm(activity, txn.id, source, confidence):
        await _flush(db)
        logger.info(
            "Payment activity reconciled",
            activity_id=str(activity.id),
            transaction_id=str(txn.id),
            source=source.value,
            confidence=activity.reconciliation_confidence,
        )
    return activity


async def unmatch(
    db: AsyncSession,
    activity_id: UUID,
    *,
    user_id: UUID,
    expected_version: int | None = None,
) -> PaymentActivity:
    """Drop the activity's link and return it to pending."""
    activity = await _get_activity(db, activity_id, user_id, for_update=True)
    _check_version(activity, expected_version)

    previous = activity.reconciled_transaction_id
    if lifecycle.unmatch(activity):
        await _flush(db)
        logger.info(
            "Payment activity unmatched",
            activity_id=str(activity.id),
            previous_transaction_id=str(previous) if previous else None,
        )
    return activity


async def mark_failed(
    db: AsyncSession,
    activity_id: UUID,
    reason: str,
    *,
    user_id: UUID,
    expected_version: int | None = None,
) -> PaymentActivity:
    """Flag an unlinked activity as failed with a reason."""
    activity = await _get_activity(db, activity_id, user_id, for_update=True)
    _check_version(activity, expected_version)

    if lifecycle.mark_failed(activity, reason):
        await _flush(db)
        logger.info("Payment activity marked failed", activity_id=str(activity.id), reason=reason)
    return activity


async def batch_confirm(
    db: AsyncSession,
    pairs: Sequence[tuple[UUID, UUID]],
    *,
    user_id: UUID,
    config: ReconciliationConfig | None = None,
) -> list[PaymentActivity]:
    """Manually confirm several (activity_id, transaction_id) pairs.

    The first failure propagates; the caller rolls the session back so no
    pair is persisted.
    """
    config = config or load_reconciliation_config()
    confirmed: list[PaymentActivity] = []
    for activity_id, transaction_id in pairs:
        activity = await confirm_match(
            db,
            activity_id,
            transaction_id,
            user_id=user_id,
            source=MatchSource.MANUAL,
            config=config,
        )
        confirmed.append(activity)
    return confirmed


# ---------------------------------------------------------------------------
# Batch import
# ---------------------------------------------------------------------------


BATCH_ACCEPTED = "accepted"
BATCH_LEFT_PENDING = "left-pending"
BATCH_SKIPPED = "skipped"


@dataclass(frozen=True)
class BatchOutcome:
    """What the batch import did with one activity."""

    activity_id: UUID
    outcome: str
    score: int | None = None
    transaction_id: UUID | None = None


async def stage_activities(
    db: AsyncSession,
    user_id: UUID,
    items: Iterable[Any],
) -> list[PaymentActivity]:
    """Insert provider activities as pending, keyed by ``external_id``.

    An activity seen before keeps its identity; its details are refreshed only
    while it is still pending. Items are read through their attributes
    (``external_id``, ``payment_account_id``, ``merchant_name``, ...).
    """
    items = list(items)
    external_ids = [item.external_id for item in items]
    if len(set(external_ids)) != len(external_ids):
        raise ValueError("external_id values must be unique within a batch")
    result = await db.execute(
        select(PaymentActivity).where(
            PaymentActivity.user_id == user_id,
            PaymentActivity.external_id.in_(external_ids),
        )
    )
    existing = {activity.external_id: activity for activity in result.scalars().all()}

    account_ids = {item.payment_account_id for item in items if item.payment_account_id is not None}
    if account_ids:
        result = await db.execute(
            select(PaymentAccount.id).where(
                PaymentAccount.id.in_(account_ids),
                PaymentAccount.user_id == user_id,
            )
        )
        missing = account_ids - set(result.scalars().all())
        if missing:
            raise InvalidReferenceError(
                f"Payment account(s) not found for user: {', '.join(sorted(str(m) for m in missing))}"
            )

    staged: list[PaymentActivity] = []
    created = 0
    for item in items:
        activity = existing.get(item.external_id)
        if activity is None:
            activity = PaymentActivity(
                user_id=user_id,
                external_id=item.external_id,
                reconciliation_status=ReconciliationStatus.PENDING,
            )
            db.add(activity)
            existing[item.external_id] = activity
            created += 1
        elif activity.reconciliation_status != ReconciliationStatus.PENDING:
            staged.append(activity)
            continue

        activity.payment_account_id = item.payment_account_id
        activity.merchant_name = item.merchant_name
        activity.merchant_category = item.merchant_category
        activity.description = item.description
        activity.amount = matching.as_decimal(item.amount)
        activity.execution_date = item.execution_date
        staged.append(activity)

    await _flush(db)
    logger.info("Payment activities staged", user_id=str(user_id), total=len(staged), created=created)
    return staged


async def load_batch_transactions(
    db: AsyncSession,
    user_id: UUID,
    activities: Sequence[PaymentActivity],
    *,
    transaction_ids: Sequence[UUID] | None = None,
    config: ReconciliationConfig | None = None,
) -> list[Transaction]:
    """Ledger pool for a batch: the listed transactions, or the user's ledger
    around the batch's date range."""
    config = config or load_reconciliation_config()

    if transaction_ids is not None:
        wanted = set(transaction_ids)
        result = await db.execute(
            select(Transaction).where(Transaction.id.in_(wanted), Transaction.user_id == user_id)
        )
        transactions = list(result.scalars().all())
        missing = wanted - {txn.id for txn in transactions}
        if missing:
            raise TransactionNotFoundError(
                f"Transaction(s) not found: {', '.join(sorted(str(m) for m in missing))}"
            )
        return transactions

    if not activities:
        return []
    pool_days = max(config.pool_window_days, config.date_window_days)
    dates = [activity.execution_date for activity in activities]
    return await load_transaction_pool(
        db,
        user_id,
        min(dates) - timedelta(days=pool_days),
        max(dates) + timedelta(days=pool_days),
    )


async def import_batch(
    db: AsyncSession,
    activities: Sequence[PaymentActivity],
    transactions: Sequence[Transaction],
    *,
    auto_accept_threshold: int | None = None,
    config: ReconciliationConfig | None = None,
) -> list[BatchOutcome]:
    """Run the automatic reconciliation pass over a batch of activities.

    Activities are processed in order. Each pending activity is matched
    against the transactions of its own user (and bank account, where both
    sides know it); the best candidate is accepted when its score reaches the
    threshold, otherwise the activity stays pending. Non-pending activities
    are skipped.
    """
    config = config or load_reconciliation_config()
    threshold = config.auto_accept if auto_accept_threshold is None else auto_accept_threshold
    window = config.window

    account_ids = {a.payment_account_id for a in activities if a.payment_account_id is not None}
    settlement_accounts: dict[UUID, str | None] = {}
    if account_ids:
        result = await db.execute(
            select(PaymentAccount.id, PaymentAccount.linked_bank_account).where(PaymentAccount.id.in_(account_ids))
        )
        settlement_accounts = dict(result.all())

    claimed: dict[UUID, UUID] = {}
    if config.enforce_transaction_exclusivity:
        for user_id in {a.user_id for a in activities}:
            claimed.update(await _linked_transaction_ids(db, user_id))

    outcomes: list[BatchOutcome] = []
    with log_timing("import_batch", logger=logger, activities=len(activities), threshold=threshold) as timing:
        for activity in activities:
            if activity.reconciliation_status != ReconciliationStatus.PENDING:
                outcomes.append(BatchOutcome(activity_id=activity.id, outcome=BATCH_SKIPPED))
                continue

            settlement_account = settlement_accounts.get(activity.payment_account_id)
            pool = [
                txn
                for txn in transactions
                if txn.user_id == activity.user_id
                and _same_bank_account(settlement_account, txn)
                and claimed.get(txn.id, activity.id) == activity.id
            ]
            ranked = matching.rank_candidates(activity, matching.find_candidates(activity, pool, window))
            if not ranked:
                outcomes.append(BatchOutcome(activity_id=activity.id, outcome=BATCH_LEFT_PENDING))
                continue

            best = ranked[0]
            if best.total < threshold:
                outcomes.append(
                    BatchOutcome(activity_id=activity.id, outcome=BATCH_LEFT_PENDING, score=best.total)
                )
                continue

            lifecycle.confirm(activity, best.transaction.id, MatchSource.AUTOMATIC, best.total)
            if config.enforce_transaction_exclusivity:
                claimed[best.transaction.id] = activity.id
            outcomes.append(
                BatchOutcome(
                    activity_id=activity.id,
                    outcome=BATCH_ACCEPTED,
                    score=best.total,
                    transaction_id=best.transaction.id,
                )
            )

        await _flush(db)
        timing["accepted"] = sum(1 for o in outcomes if o.outcome == BATCH_ACCEPTED)
        timing["left_pending"] = sum(1 for o in outcomes if o.outcome == BATCH_LEFT_PENDING)
        timing["skipped"] = sum(1 for o in outcomes if o.outcome == BATCH_SKIPPED)

    return outcomes


# ---------------------------------------------------------------------------
# Listing and statistics
# ---------------------------------------------------------------------------


async def list_activities(
    db: AsyncSession,
    user_id: UUID,
    *,
    status: ReconciliationStatus | None = None,
    payment_account_id: UUID | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    search: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[PaymentActivity], int]:
    """Return one page of the user's activities and the total match count."""
    filters = [PaymentActivity.user_id == user_id]
    if status is not None:
        filters.append(PaymentActivity.reconciliation_status == status)
    if payment_account_id is not None:
        filters.append(PaymentActivity.payment_account_id == payment_account_id)
    if start_date is not None:
        filters.append(PaymentActivity.execution_date >= start_date)
    if end_date is not None:
        filters.append(PaymentActivity.execution_date <= end_date)
    if search:
        pattern = f"%{search.strip()}%"
        filters.append(
            or_(
                PaymentActivity.merchant_name.ilike(pattern),
                PaymentActivity.description.ilike(pattern),
                PaymentActivity.external_id.ilike(pattern),
            )
        )

    total = (await db.execute(select(func.count(PaymentActivity.id)).where(*filters))).scalar_one()
    result = await db.execute(
        select(PaymentActivity)
        .where(*filters)
        .order_by(PaymentActivity.execution_date.desc(), PaymentActivity.id)
        .limit(limit)
        .offset(offset)
    )
    return list(result.scalars().all()), total


def _percentage(part: int, total: int) -> int:
    if total == 0:
        return 0
    return int((Decimal(part) * 100 / Decimal(total)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


async def get_stats(db: AsyncSession, user_id: UUID) -> dict[str, int]:
    """Counts per reconciliation status with rounded percentages."""
    result = await db.execute(
        select(PaymentActivity.reconciliation_status, func.count(PaymentActivity.id))
        .where(PaymentActivity.user_id == user_id)
        .group_by(PaymentActivity.reconciliation_status)
    )
    counts = {status: 0 for status in ReconciliationStatus}
    for status, count in result.all():
        counts[ReconciliationStatus(status)] = count

    total = sum(counts.values())
    return {
        "total": total,
        "pending": counts[ReconciliationStatus.PENDING],
        "reconciled": counts[ReconciliationStatus.RECONCILED],
        "manual": counts[ReconciliationStatus.MANUAL],
        "failed": counts[ReconciliationStatus.FAILED],
        "reconciled_percentage": _percentage(counts[ReconciliationStatus.RECONCILED], total),
        "pending_percentage": _percentage(counts[ReconciliationStatus.PENDING], total),
        "failed_percentage": _percentage(counts[ReconciliationStatus.FAILED], total),
    }
