"""Tests for PriorityScorer ordering properties."""

from datetime import timedelta

import pytest

from expertise.models import Convention, Failure, Pattern
from expertise.scoring import DEFAULT_WEIGHTS, PriorityScorer, success_rate
from shared_types import Classification


@pytest.fixture
def scorer(clock):
    return PriorityScorer(clock=clock)


def _conv(rid, now, **kwargs):
    kwargs.setdefault("recorded_at", now)
    return Convention(id=rid, content=f"rule {rid}", **kwargs)


class TestComponents:
    def test_classification_weights(self, scorer, now):
        scores = {
            c: scorer.classification_score(_conv("mx-1", now, classification=c)) for c in Classification
        }
        assert scores[Classification.FOUNDATIONAL] > scores[Classification.TACTICAL] > scores[Classification.OBSERVATIONAL]

    def test_recency_halves_per_half_life(self, now):
        scorer = PriorityScorer(half_life_days=10)
        fresh = _conv("mx-1", now)
        aged = _conv("mx-2", now - timedelta(days=10))
        assert scorer.recency_score(fresh, now) == pytest.approx(1.0)
        assert scorer.recency_score(aged, now) == pytest.approx(0.5)

    def test_future_timestamp_counts_as_fresh(self, scorer, now):
        assert scorer.recency_score(_conv("mx-1", now + timedelta(days=3)), now) == 1.0

    def test_confirmation_neutral_without_outcomes(self, scorer, now):
        assert scorer.confirmation_score(_conv("mx-1", now)) == 0.5

    def test_confirmation_ordering(self, scorer, now):
        success = _conv("mx-1", now, outcomes=[{"status": "success"}])
        partial = _conv("mx-2", now, outcomes=[{"status": "partial"}])
        failure = _conv("mx-3", now, outcomes=[{"status": "failure"}])
        neutral = _conv("mx-4", now)
        s = scorer.confirmation_score
        assert s(success) > s(partial) == s(neutral) > s(failure)

    def test_success_rate(self, now):
        r = _conv("mx-1", now, outcomes=[{"status": "success"}, {"status": "partial"}, {"status": "failure"}])
        assert success_rate(r) == pytest.approx(0.5)
        assert success_rate(_conv("mx-2", now)) == 0.0


class TestComposite:
    def test_default_weights(self, scorer):
        assert scorer.weights == DEFAULT_WEIGHTS

    def test_breakdown_sums_weighted_components(self, scorer, now):
        b = scorer.breakdown(_conv("mx-1", now, classification="foundational"), now, relevance=1.0)
        assert b.composite == pytest.approx(0.4 * 1.0 + 0.2 * 1.0 + 0.2 * 0.5 + 0.2 * 1.0)

    def test_negative_weight_rejected(self):
        with pytest.raises(ValueError):
            PriorityScorer(weights={"recency": -0.1})

    def test_unknown_weight_rejected(self):
        with pytest.raises(ValueError):
            PriorityScorer(weights={"popularity": 0.5})

    def test_non_positive_half_life_rejected(self):
        with pytest.raises(ValueError):
            PriorityScorer(half_life_days=0)

    def test_pure_function_of_inputs(self, scorer, now):
        r = _conv("mx-1", now - timedelta(days=3), outcomes=[{"status": "success"}])
        assert scorer.score(r, now) == scorer.score(r, now)
        assert PriorityScorer().score(r, now) == scorer.score(r, now)

    def test_uses_injected_clock(self, scorer, now):
        r = _conv("mx-1", now - timedelta(days=30))
        assert scorer.score(r) == scorer.score(r, now)


class TestRankInvariants:
    def test_foundational_never_below_observational(self, now):
        for weights in (None, {"classification": 0.0}, {"classification": 0.01, "recency": 5.0}):
            scorer = PriorityScorer(weights=weights)
            obs = _conv("mx-1", now, classification="observational")
            found = _conv("mx-2", now, classification="foundational")
            ranked = scorer.rank([obs, found], now=now)
            assert ranked[0].record.id == "mx-2"

    def test_failure_never_outranks_success(self, now):
        for weights in (None, {"confirmation": 0.0}):
            scorer = PriorityScorer(weights=weights)
            failed = _conv("mx-1", now, outcomes=[{"status": "failure"}])
            succeeded = _conv("mx-2", now, outcomes=[{"status": "success"}])
            ranked = scorer.rank([failed, succeeded], now=now)
            assert ranked[0].record.id == "mx-2"

    def test_type_priority_breaks_ties(self, scorer, now):
        failure = Failure(id="mx-1", description="d", resolution="r", recorded_at=now)
        pattern = Pattern(id="mx-2", name="n", description="d", recorded_at=now)
        convention = _conv("mx-3", now)
        ranked = scorer.rank([failure, pattern, convention], now=now)
        assert [s.record.id for s in ranked] == ["mx-3", "mx-2", "mx-1"]

    def test_input_order_is_final_tiebreak(self, scorer, now):
        records = [_conv(f"mx-{i}", now) for i in range(4)]
        assert [s.record.id for s in scorer.rank(records, now=now)] == ["mx-0", "mx-1", "mx-2", "mx-3"]

    def test_fresher_ranks_higher(self, scorer, now):
        old = _conv("mx-1", now - timedelta(days=60))
        new = _conv("mx-2", now - timedelta(days=1))
        assert scorer.rank([old, new], now=now)[0].record.id == "mx-2"

    def test_relevance_normalized_to_best_hit(self, scorer, now):
        a = _conv("mx-1", now)
        b = _conv("mx-2", now)
        ranked = scorer.rank([a, b], relevance={"mx-1": 2.0, "mx-2": 8.0}, now=now)
        assert ranked[0].record.id == "mx-2"
        assert ranked[0].breakdown.relevance == 1.0
        assert ranked[1].breakdown.relevance == pytest.approx(0.25)

    def test_rank_is_deterministic(self, scorer, now):
        records = [
            _conv("mx-1", now - timedelta(days=5), classification="foundational"),
            _conv("mx-2", now, outcomes=[{"status": "failure"}]),
            _conv("mx-3", now - timedelta(days=1)),
        ]
        first = [s.record.id for s in scorer.rank(records, now=now)]
        second = [s.record.id for s in scorer.rank(list(records), now=now)]
        assert first == second
