"""Context assembly: load, rank and budget records for an agent's prompt."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Optional

import structlog

from .filters import RecordFilter, exclude_superseded
from .project import ExpertiseProject
from .scoring import PriorityScorer, ScoredRecord
from .search import SearchIndex
from .selector import BudgetedSelector, Selection

logger = structlog.get_logger()


@dataclass
class AssembledContext:
    selection: Selection
    ranked: list[ScoredRecord] = field(default_factory=list)
    domains: list[str] = field(default_factory=list)
    query: Optional[str] = None

    @property
    def records(self):
        return self.selection.selected


class ContextAssembler:
    """Wires project → search index → scorer → selector.

    Scorer, index parameters and the default budget come from the project
    config unless overridden.
    """

    def __init__(
        self,
        project: ExpertiseProject,
        scorer: Optional[PriorityScorer] = None,
        selector: Optional[BudgetedSelector] = None,
    ):
        self.project = project
        config = project.config
        if scorer is None:
            scoring = config.scoring_settings()
            scorer = PriorityScorer(
                weights=scoring.weights.model_dump(),
                half_life_days=scoring.half_life_days,
                clock=project.clock,
            )
        self.scorer = scorer
        self.selector = selector or BudgetedSelector()

    def assemble(
        self,
        budget: Optional[int] = None,
        domains: Optional[Iterable[str]] = None,
        exclude_domains: Iterable[str] = (),
        query: Optional[str] = None,
        filters: Optional[RecordFilter] = None,
        include_superseded: bool = False,
        no_limit: bool = False,
        now: Optional[datetime] = None,
    ) -> AssembledContext:
        """Select the records to hand to an agent.

        ``budget`` defaults to the configured token budget; ``no_limit``
        returns every candidate in priority order. With a ``query`` only
        records that match it are candidates, and BM25 relevance feeds into
        their priority.
        """
        exclude_domains = list(exclude_domains)
        snapshots = self.project.read_domains(domains, exclude_domains)
        records = [r for snap in snapshots.values() for r in snap.records]
        if not include_superseded:
            records = exclude_superseded(records)
        if filters is not None:
            records = filters.apply(records)

        relevance = None
        if query and query.strip():
            search = self.project.config.search_settings()
            index = SearchIndex(k1=search.k1, b=search.b).build(records, include_superseded=True)
            relevance = index.scores(query)
            records = [r for r in records if r.id in relevance]

        ranked = self.scorer.rank(records, relevance=relevance, now=now)
        if no_limit:
            effective_budget = None
        elif budget is None:
            effective_budget = self.project.config.budget_settings().default_tokens
        else:
            effective_budget = budget

        selection = self.selector.select(
            ranked,
            budget=effective_budget,
            exclude_domains=exclude_domains,
            exclude_superseded=not include_superseded,
        )
        logger.info(
            "context_assembled",
            domains=len(snapshots),
            candidates=len(ranked),
            selected=len(selection.selected),
            dropped=len(selection.dropped),
            used_tokens=selection.used_tokens,
        )
        return AssembledContext(
            selection=selection,
            ranked=ranked,
            domains=list(snapshots),
            query=query,
        )
