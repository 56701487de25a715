"""Token-budgeted selection of prioritized records."""

from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional, Union

import structlog

from .filters import superseded_ids
from .models import ExpertiseRecord, estimate_tokens
from .scoring import ScoredRecord

logger = structlog.get_logger()

DEFAULT_BUDGET = 4000

Candidate = Union[ExpertiseRecord, ScoredRecord]


def _plural(count: int, word: str) -> str:
    return f"{count} {word}" + ("" if count == 1 else "s")


@dataclass
class Selection:
    """Outcome of one selection pass."""

    selected: list[ExpertiseRecord] = field(default_factory=list)
    dropped: list[ExpertiseRecord] = field(default_factory=list)
    used_tokens: int = 0
    budget: Optional[int] = None
    by_domain: dict[str, list[ExpertiseRecord]] = field(default_factory=dict)
    dropped_domain_count: int = 0

    @property
    def truncated(self) -> bool:
        return bool(self.dropped)

    def summary(self) -> str:
        """Footer line shown when the budget cut records, else empty."""
        if not self.dropped:
            return ""
        domains = f" across {_plural(self.dropped_domain_count, 'domain')}" if self.dropped_domain_count else ""
        return f"... and {_plural(len(self.dropped), 'more record')}{domains} (use --budget <n> to show more)"


class BudgetedSelector:
    """Greedy-by-priority packing under a token budget.

    Scored candidates are walked by descending score (ties keep their input
    order); plain records are taken as already ranked, highest first. Each
    one is admitted if it fits what is left of the budget and skipped
    otherwise; a later, smaller record never displaces an earlier one. This
    is not an optimal knapsack: the result is easy to predict
    and identical for identical inputs.
    """

    def __init__(self, estimator: Callable[[ExpertiseRecord], int] = estimate_tokens):
        self.estimator = estimator

    def select(
        self,
        candidates: Iterable[Candidate],
        budget: Optional[int] = DEFAULT_BUDGET,
        exclude_domains: Iterable[str] = (),
        exclude_superseded: bool = True,
    ) -> Selection:
        """Pick records from ``candidates``; ``budget=None`` disables the limit."""
        if budget is not None and budget < 0:
            raise ValueError(f"budget must be non-negative, got {budget}")

        excluded = set(exclude_domains)
        candidates = list(candidates)
        if candidates and all(isinstance(c, ScoredRecord) for c in candidates):
            candidates.sort(key=lambda c: -c.score)
        records = [c.record if isinstance(c, ScoredRecord) else c for c in candidates]
        records = [r for r in records if r.domain not in excluded]
        if exclude_superseded:
            gone = superseded_ids(records)
            records = [r for r in records if r.id not in gone]

        selection = Selection(budget=budget)
        for record in records:
            cost = self.estimator(record)
            if budget is None or selection.used_tokens + cost <= budget:
                selection.used_tokens += cost
                selection.selected.append(record)
                selection.by_domain.setdefault(record.domain or "", []).append(record)
            else:
                selection.dropped.append(record)

        selection.dropped_domain_count = len({r.domain for r in selection.dropped})
        logger.debug(
            "records_selected",
            selected=len(selection.selected),
            dropped=len(selection.dropped),
            used_tokens=selection.used_tokens,
            budget=budget,
        )
        return selection
