"""Composite priority scoring for expertise records.

Score = weighted sum of four components, each in [0, 1]:

* classification: foundational > tactical > observational
* recency: exponential decay from ``updated_at`` with a configurable half-life
* confirmation: Laplace-smoothed success rate over the outcome history
  (0.5 with no outcomes, so unconfirmed records are neutral)
* relevance: BM25 score normalized by the best hit of the active query

The scorer holds no mutable state; given the same records, ``now`` and
relevance it always returns the same ranking.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterable, Mapping, Optional

from shared_types import Classification, OutcomeStatus, RecordType

from .models import ExpertiseRecord, utc_now

CLASSIFICATION_SCORES = {
    Classification.FOUNDATIONAL: 1.0,
    Classification.TACTICAL: 0.6,
    Classification.OBSERVATIONAL: 0.3,
}

# Lower index ranks first when composite scores tie
TYPE_PRIORITY = (
    RecordType.CONVENTION,
    RecordType.DECISION,
    RecordType.PATTERN,
    RecordType.GUIDE,
    RecordType.FAILURE,
    RecordType.REFERENCE,
)

CLASSIFICATION_PRIORITY = (
    Classification.FOUNDATIONAL,
    Classification.TACTICAL,
    Classification.OBSERVATIONAL,
)

DEFAULT_WEIGHTS = {
    "classification": 0.4,
    "recency": 0.2,
    "confirmation": 0.2,
    "relevance": 0.2,
}
DEFAULT_HALF_LIFE_DAYS = 30.0

SECONDS_PER_DAY = 86400.0


def type_priority(record_type: RecordType) -> int:
    return TYPE_PRIORITY.index(RecordType(record_type))


def classification_priority(classification: Classification) -> int:
    return CLASSIFICATION_PRIORITY.index(Classification(classification))


def outcome_counts(record: ExpertiseRecord) -> dict[OutcomeStatus, int]:
    counts = {status: 0 for status in OutcomeStatus}
    for outcome in record.outcomes:
        counts[outcome.status] += 1
    return counts


def success_rate(record: ExpertiseRecord) -> float:
    """Raw (success + partial/2) / total; 0.0 when never applied."""
    if not record.outcomes:
        return 0.0
    counts = outcome_counts(record)
    return (counts[OutcomeStatus.SUCCESS] + 0.5 * counts[OutcomeStatus.PARTIAL]) / len(record.outcomes)


@dataclass
class ScoreBreakdown:
    classification: float
    recency: float
    confirmation: float
    relevance: float
    composite: float


@dataclass
class ScoredRecord:
    record: ExpertiseRecord
    score: float
    breakdown: ScoreBreakdown


class PriorityScorer:
    """Weighted composite of classification, recency, confirmation and relevance."""

    def __init__(
        self,
        weights: Optional[Mapping[str, float]] = None,
        half_life_days: float = DEFAULT_HALF_LIFE_DAYS,
        clock: Callable[[], datetime] = utc_now,
    ):
        merged = dict(DEFAULT_WEIGHTS)
        if weights:
            unknown = set(weights) - set(DEFAULT_WEIGHTS)
            if unknown:
                raise ValueError(f"Unknown scoring weights: {sorted(unknown)}")
            merged.update(weights)
        for name, value in merged.items():
            if value < 0:
                raise ValueError(f"Scoring weight '{name}' must be non-negative, got {value}")
        if half_life_days <= 0:
            raise ValueError(f"half_life_days must be positive, got {half_life_days}")
        self.weights = merged
        self.half_life_days = half_life_days
        self._clock = clock

    # ------------------------------------------------------------------
    # Components
    # ------------------------------------------------------------------

    @staticmethod
    def classification_score(record: ExpertiseRecord) -> float:
        return CLASSIFICATION_SCORES[record.classification]

    def recency_score(self, record: ExpertiseRecord, now: datetime) -> float:
        """1.0 when just updated, halving every ``half_life_days``."""
        age_days = max(0.0, (now - record.updated_at).total_seconds() / SECONDS_PER_DAY)
        return 0.5 ** (age_days / self.half_life_days)

    @staticmethod
    def confirmation_score(record: ExpertiseRecord) -> float:
        counts = outcome_counts(record)
        confirmed = counts[OutcomeStatus.SUCCESS] + 0.5 * counts[OutcomeStatus.PARTIAL]
        return (confirmed + 0.5) / (len(record.outcomes) + 1)

    # ------------------------------------------------------------------
    # Composite
    # ------------------------------------------------------------------

    def breakdown(
        self,
        record: ExpertiseRecord,
        now: Optional[datetime] = None,
        relevance: float = 0.0,
    ) -> ScoreBreakdown:
        """Score one record. ``relevance`` must already be normalized to 0..1."""
        now = now or self._clock()
        c = self.classification_score(record)
        r = self.recency_score(record, now)
        k = self.confirmation_score(record)
        w = self.weights
        composite = (
            w["classification"] * c
            + w["recency"] * r
            + w["confirmation"] * k
            + w["relevance"] * relevance
        )
        return ScoreBreakdown(
            classification=c,
            recency=r,
            confirmation=k,
            relevance=relevance,
            composite=composite,
        )

    def score(self, record: ExpertiseRecord, now: Optional[datetime] = None, relevance: float = 0.0) -> float:
        return self.breakdown(record, now, relevance).composite

    def rank(
        self,
        records: Iterable[ExpertiseRecord],
        relevance: Optional[Mapping[str, float]] = None,
        now: Optional[datetime] = None,
    ) -> list[ScoredRecord]:
        """Order records by descending composite score.

        ``relevance`` maps record IDs to raw BM25 scores; they are divided by
        the best score so the top hit contributes 1.0. Ties fall back to type
        priority, classification, confirmation, most recent update and
        finally input order.
        """
        now = now or self._clock()
        relevance = relevance or {}
        top = max(relevance.values(), default=0.0)

        scored = []
        for position, record in enumerate(records):
            raw = relevance.get(record.id, 0.0) if record.id else 0.0
            normalized = raw / top if top > 0 else 0.0
            b = self.breakdown(record, now, normalized)
            scored.append((position, ScoredRecord(record=record, score=b.composite, breakdown=b)))

        scored.sort(
            key=lambda item: (
                -item[1].score,
                type_priority(item[1].record.record_type),
                classification_priority(item[1].record.classification),
                -item[1].breakdown.confirmation,
                -item[1].record.updated_at.timestamp(),
                item[0],
            )
        )
        return [s for _, s in scored]
