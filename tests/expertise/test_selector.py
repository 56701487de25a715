"""Tests for the greedy token-budgeted selector."""

import pytest

from expertise.models import Convention
from expertise.scoring import PriorityScorer, ScoreBreakdown, ScoredRecord
from expertise.selector import DEFAULT_BUDGET, BudgetedSelector


def _rec(rid, tokens, domain="backend", **kwargs):
    return Convention(id=rid, content="x" * tokens, domain=domain, **kwargs)


@pytest.fixture
def selector():
    # One token per content character keeps the arithmetic obvious
    return BudgetedSelector(estimator=lambda r: len(r.content))


class TestGreedySelection:
    def test_takes_in_priority_order(self, selector):
        candidates = [_rec("mx-1", 10), _rec("mx-2", 10), _rec("mx-3", 10)]
        selection = selector.select(candidates, budget=25)
        assert [r.id for r in selection.selected] == ["mx-1", "mx-2"]
        assert [r.id for r in selection.dropped] == ["mx-3"]
        assert selection.used_tokens == 20

    def test_budget_covering_top_two_returns_exactly_them(self, selector):
        # A smaller, lower-priority record would pack better but must not replace either
        candidates = [_rec("mx-1", 40), _rec("mx-2", 50), _rec("mx-3", 5), _rec("mx-4", 5)]
        selection = selector.select(candidates, budget=90)
        assert [r.id for r in selection.selected] == ["mx-1", "mx-2"]

    def test_skips_oversized_and_continues(self, selector):
        candidates = [_rec("mx-1", 50), _rec("mx-2", 80), _rec("mx-3", 30)]
        selection = selector.select(candidates, budget=100)
        assert [r.id for r in selection.selected] == ["mx-1", "mx-3"]
        assert [r.id for r in selection.dropped] == ["mx-2"]

    def test_deterministic(self, selector):
        candidates = [_rec(f"mx-{i}", 7 + i, domain=f"d{i % 3}") for i in range(20)]
        runs = [selector.select(list(candidates), budget=60) for _ in range(5)]
        first = [r.id for r in runs[0].selected]
        assert all([r.id for r in run.selected] == first for run in runs)

    def test_no_limit_returns_everything(self, selector):
        candidates = [_rec(f"mx-{i}", 1000) for i in range(5)]
        selection = selector.select(candidates, budget=None)
        assert len(selection.selected) == 5
        assert selection.dropped == []
        assert selection.summary() == ""

    def test_zero_budget(self, selector):
        selection = selector.select([_rec("mx-1", 1)], budget=0)
        assert selection.selected == []

    def test_negative_budget_rejected(self, selector):
        with pytest.raises(ValueError):
            selector.select([], budget=-1)

    def test_accepts_scored_records(self, selector, now):
        records = [_rec("mx-1", 10, classification="observational"), _rec("mx-2", 10, classification="foundational")]
        for r in records:
            r.recorded_at = now
            r.updated_at = now
        ranked = PriorityScorer().rank(records, now=now)
        selection = selector.select(ranked, budget=10)
        assert [r.id for r in selection.selected] == ["mx-2"]

    def test_scored_records_sorted_by_score(self, selector):
        def scored(record, score):
            return ScoredRecord(record, score, ScoreBreakdown(0.0, 0.0, 0.0, 0.0, score))

        low, high = _rec("mx-lo", 10), _rec("mx-hi", 10)
        selection = selector.select([scored(low, 0.1), scored(high, 0.9)], budget=10)
        assert [r.id for r in selection.selected] == ["mx-hi"]
        assert [r.id for r in selection.dropped] == ["mx-lo"]

    def test_equal_scores_keep_input_order(self, selector):
        candidates = [
            ScoredRecord(_rec(f"mx-{i}", 10), 0.5, ScoreBreakdown(0.0, 0.0, 0.0, 0.0, 0.5)) for i in range(3)
        ]
        selection = selector.select(candidates, budget=20)
        assert [r.id for r in selection.selected] == ["mx-0", "mx-1"]

    def test_default_budget(self):
        assert DEFAULT_BUDGET == 4000
        selection = BudgetedSelector().select([_rec("mx-1", 10)])
        assert selection.budget == DEFAULT_BUDGET


class TestConstraints:
    def test_excluded_domains_removed_first(self, selector):
        candidates = [_rec("mx-1", 10, domain="noisy"), _rec("mx-2", 10), _rec("mx-3", 10)]
        selection = selector.select(candidates, budget=20, exclude_domains=["noisy"])
        assert [r.id for r in selection.selected] == ["mx-2", "mx-3"]
        assert selection.dropped == []

    def test_superseded_candidates_removed(self, selector):
        old = _rec("mx-1", 10)
        new = _rec("mx-2", 10, supersedes=["mx-1"])
        selection = selector.select([old, new], budget=100)
        assert [r.id for r in selection.selected] == ["mx-2"]

    def test_superseded_kept_on_request(self, selector):
        old = _rec("mx-1", 10)
        new = _rec("mx-2", 10, supersedes=["mx-1"])
        selection = selector.select([old, new], budget=100, exclude_superseded=False)
        assert len(selection.selected) == 2


class TestReporting:
    def test_grouped_by_domain(self, selector):
        candidates = [_rec("mx-1", 5, "api"), _rec("mx-2", 5, "ui"), _rec("mx-3", 5, "api")]
        selection = selector.select(candidates, budget=None)
        assert list(selection.by_domain) == ["api", "ui"]
        assert [r.id for r in selection.by_domain["api"]] == ["mx-1", "mx-3"]

    def test_summary_line(self, selector):
        candidates = [_rec("mx-1", 10, "api"), _rec("mx-2", 10, "api"), _rec("mx-3", 10, "ui"), _rec("mx-4", 10, "db")]
        selection = selector.select(candidates, budget=10)
        assert selection.truncated
        assert selection.dropped_domain_count == 3
        assert selection.summary() == "... and 3 more records across 3 domains (use --budget <n> to show more)"

    def test_summary_singular(self, selector):
        selection = selector.select([_rec("mx-1", 10), _rec("mx-2", 10)], budget=10)
        assert selection.summary() == "... and 1 more record across 1 domain (use --budget <n> to show more)"
