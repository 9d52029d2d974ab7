"""Candidate window filter and match scorer.

Pure functions shared by the manual review flow and the batch import flow.
Activities and transactions are read through their ``amount``,
``execution_date``, ``merchant_name``/``description`` and ``id`` attributes,
so ORM rows and plain objects both work.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any

# Amount component: (exclusive upper bound on the absolute difference, points)
AMOUNT_TIERS: tuple[tuple[Decimal, int], ...] = (
    (Decimal("0.01"), 50),
    (Decimal("1"), 30),
    (Decimal("5"), 10),
)
# Date component: (exclusive upper bound on the day gap, points)
DATE_TIERS: tuple[tuple[int, int], ...] = (
    (1, 30),
    (3, 20),
    (7, 10),
)
MERCHANT_FULL_POINTS = 20
MERCHANT_TOKEN_POINTS = 10

MAX_SCORE = AMOUNT_TIERS[0][1] + DATE_TIERS[0][1] + MERCHANT_FULL_POINTS
HIGH_CONFIDENCE_THRESHOLD = 70
MEDIUM_CONFIDENCE_THRESHOLD = 50


def as_decimal(value: Decimal | int | float | str) -> Decimal:
    """Coerce an amount to Decimal without binary float artefacts."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def day_gap(first: date, second: date) -> int:
    """Absolute number of calendar days between two dates."""
    return abs((first - second).days)


@dataclass(frozen=True)
class CandidateWindow:
    """Date and amount tolerance used to select candidates."""

    date_window_days: int = 7
    amount_tolerance_percent: Decimal = Decimal("0.10")

    def __post_init__(self) -> None:
        if self.date_window_days < 0:
            raise ValueError("date_window_days must be >= 0")
        tolerance = as_decimal(self.amount_tolerance_percent)
        if tolerance < 0:
            raise ValueError("amount_tolerance_percent must be >= 0")
        object.__setattr__(self, "amount_tolerance_percent", tolerance)

    def amount_bounds(self, amount: Decimal | int | float | str) -> tuple[Decimal, Decimal]:
        """Inclusive bounds for |transaction.amount| around |amount|."""
        base = abs(as_decimal(amount))
        return (
            base * (Decimal("1") - self.amount_tolerance_percent),
            base * (Decimal("1") + self.amount_tolerance_percent),
        )

    def contains(self, activity: Any, transaction: Any) -> bool:
        if day_gap(transaction.execution_date, activity.execution_date) > self.date_window_days:
            return False
        lower, upper = self.amount_bounds(activity.amount)
        return lower <= abs(as_decimal(transaction.amount)) <= upper


DEFAULT_WINDOW = CandidateWindow()


def find_candidates(
    activity: Any,
    transactions: Iterable[Any],
    window: CandidateWindow = DEFAULT_WINDOW,
) -> list[Any]:
    """Return the transactions inside the activity's date and amount window.

    Input order is preserved. An empty result is returned as-is; falling back
    to a wider pool is left to the caller.
    """
    return [txn for txn in transactions if window.contains(activity, txn)]


def score_amount(activity_amount: Decimal | int | float | str, transaction_amount: Decimal | int | float | str) -> int:
    """Score amount closeness (0-50) on absolute values."""
    diff = abs(abs(as_decimal(transaction_amount)) - abs(as_decimal(activity_amount)))
    for bound, points in AMOUNT_TIERS:
        if diff < bound:
            return points
    return 0


def score_date(activity_date: date, transaction_date: date) -> int:
    """Score date proximity (0-30) in whole calendar days."""
    gap = day_gap(activity_date, transaction_date)
    for bound, points in DATE_TIERS:
        if gap < bound:
            return points
    return 0


def score_description(merchant_name: str | None, description: str | None) -> int:
    """Score merchant/description overlap (0-20).

    Full merchant name inside the description scores 20, its first
    whitespace-delimited token scores 10.
    """
    merchant = (merchant_name or "").lower()
    if not merchant:
        return 0
    text = (description or "").lower()
    if merchant in text:
        return MERCHANT_FULL_POINTS
    tokens = merchant.split()
    if tokens and tokens[0] in text:
        return MERCHANT_TOKEN_POINTS
    return 0


@dataclass(frozen=True)
class MatchScore:
    """Composite score with its three sub-scores."""

    amount: int
    date: int
    description: int

    @property
    def total(self) -> int:
        return self.amount + self.date + self.description

    def breakdown(self) -> dict[str, int]:
        return {
            "amount": self.amount,
            "date": self.date,
            "description": self.description,
            "total": self.total,
        }


def score_match(activity: Any, transaction: Any) -> MatchScore:
    return MatchScore(
        amount=score_amount(activity.amount, transaction.amount),
        date=score_date(activity.execution_date, transaction.execution_date),
        description=score_description(activity.merchant_name, transaction.description),
    )


def score(activity: Any, transaction: Any) -> int:
    """Deterministic confidence score in [0, 100]."""
    return score_match(activity, transaction).total


class ConfidenceLevel(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


def confidence_level(
    total: int,
    high: int = HIGH_CONFIDENCE_THRESHOLD,
    medium: int = MEDIUM_CONFIDENCE_THRESHOLD,
) -> ConfidenceLevel:
    if total >= high:
        return ConfidenceLevel.HIGH
    if total >= medium:
        return ConfidenceLevel.MEDIUM
    return ConfidenceLevel.LOW


def match_reasons(match: MatchScore, gap: int) -> list[str]:
    """Human-readable explanation of each non-zero component."""
    reasons: list[str] = []

    if match.amount == 50:
        reasons.append("Exact amount match")
    elif match.amount == 30:
        reasons.append("Amount within 1.00")
    elif match.amount == 10:
        reasons.append("Amount within 5.00")

    if gap == 0:
        reasons.append("Same day")
    elif match.date:
        reasons.append("1 day apart" if gap == 1 else f"{gap} days apart")

    if match.description == MERCHANT_FULL_POINTS:
        reasons.append("Merchant name found in description")
    elif match.description == MERCHANT_TOKEN_POINTS:
        reasons.append("Merchant name partially found in description")

    return reasons


@dataclass(frozen=True)
class ScoredCandidate:
    """A candidate transaction together with its score."""

    transaction: Any
    score: MatchScore
    day_gap: int

    @property
    def total(self) -> int:
        return self.score.total

    @property
    def reasons(self) -> list[str]:
        return match_reasons(self.score, self.day_gap)


def rank_candidates(activity: Any, candidates: Iterable[Any]) -> list[ScoredCandidate]:
    """Score candidates and order them best first.

    Ties on the total are broken by the smaller day gap, then by transaction id.
    """
    scored = [
        ScoredCandidate(
            transaction=txn,
            score=score_match(activity, txn),
            day_gap=day_gap(activity.execution_date, txn.execution_date),
        )
        for txn in candidates
    ]
    scored.sort(key=lambda item: (-item.total, item.day_gap, str(item.transaction.id)))
    return scored
