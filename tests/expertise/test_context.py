"""End-to-end tests for context assembly across domains."""

from datetime import timedelta

import pytest

from expertise.context import ContextAssembler
from expertise.filters import RecordFilter
from expertise.models import Convention, Decision, Pattern
from expertise.selector import BudgetedSelector
from shared_types import RecordType


@pytest.fixture
def seeded(project, now):
    backend = project.open_domain("backend")
    frontend = project.open_domain("frontend")
    backend.append(Convention(id="mx-b00001", content="Use WAL mode for sqlite", classification="foundational", recorded_at=now))
    backend.append(Decision(id="mx-b00002", title="Postgres in prod", rationale="replication", recorded_at=now - timedelta(days=40)))
    backend.append(
        Convention(
            id="mx-b00003",
            content="Use rollback journal for sqlite",
            classification="observational",
            recorded_at=now - timedelta(days=90),
        )
    )
    frontend.append(Pattern(id="mx-f00001", name="hooks", description="Keep hooks small", recorded_at=now))
    frontend.append(
        Convention(
            id="mx-f00002",
            content="sqlite via wasm for offline mode",
            supersedes=["mx-b00003"],
            recorded_at=now,
        )
    )
    return project


class TestAssemble:
    def test_superseded_excluded_by_default(self, seeded, now):
        ctx = ContextAssembler(seeded).assemble(now=now)
        ids = [r.id for r in ctx.records]
        assert "mx-b00003" not in ids
        assert len(ids) == 4
        assert ctx.domains == ["backend", "frontend"]

    def test_include_superseded(self, seeded, now):
        ctx = ContextAssembler(seeded).assemble(include_superseded=True, now=now)
        assert "mx-b00003" in [r.id for r in ctx.records]

    def test_priority_order(self, seeded, now):
        ctx = ContextAssembler(seeded).assemble(now=now)
        assert ctx.records[0].id == "mx-b00001"

    def test_query_limits_candidates_to_hits(self, seeded, now):
        ctx = ContextAssembler(seeded).assemble(query="sqlite", now=now)
        assert {r.id for r in ctx.records} == {"mx-b00001", "mx-f00002"}
        assert ctx.query == "sqlite"

    def test_exclude_domains(self, seeded, now):
        ctx = ContextAssembler(seeded).assemble(exclude_domains=["backend"], now=now)
        assert {r.domain for r in ctx.records} == {"frontend"}

    def test_domain_scope(self, seeded, now):
        ctx = ContextAssembler(seeded).assemble(domains=["frontend"], now=now)
        assert [r.domain for r in ctx.records] == ["frontend", "frontend"]

    def test_filters(self, seeded, now):
        ctx = ContextAssembler(seeded).assemble(filters=RecordFilter(types=[RecordType.DECISION]), now=now)
        assert [r.id for r in ctx.records] == ["mx-b00002"]

    def test_budget_truncates(self, seeded, now):
        assembler = ContextAssembler(seeded, selector=BudgetedSelector(estimator=lambda r: 10))
        ctx = assembler.assemble(budget=25, now=now)
        assert len(ctx.records) == 2
        assert ctx.selection.truncated
        assert "2 more records" in ctx.selection.summary()

    def test_no_limit(self, seeded, now):
        assembler = ContextAssembler(seeded, selector=BudgetedSelector(estimator=lambda r: 10_000))
        ctx = assembler.assemble(no_limit=True, now=now)
        assert len(ctx.records) == 4

    def test_default_budget_from_config(self, seeded, now):
        from expertise.config_models import BudgetConfig

        seeded.config.budget = BudgetConfig(default_tokens=15)
        assembler = ContextAssembler(seeded, selector=BudgetedSelector(estimator=lambda r: 10))
        ctx = assembler.assemble(now=now)
        assert ctx.selection.budget == 15
        assert len(ctx.records) == 1
