"""Tests for staleness, governance, recent records and project validation."""

from datetime import timedelta

import pytest

from expertise.config_models import GovernanceConfig, ShelfLifeConfig
from expertise.errors import ValidationError
from expertise.health import (
    domain_health,
    governance_level,
    is_record_stale,
    parse_duration,
    recent_records,
    stale_records,
    validate_project,
)
from expertise.models import Convention, Pattern
from shared_types import Classification, GovernanceLevel, RecordType


def _aged(days, now, classification="tactical", content=None):
    return Convention(
        content=content or f"{classification} {days}d",
        classification=classification,
        recorded_at=now - timedelta(days=days),
    )


class TestStaleness:
    def test_foundational_never_stale(self, now):
        assert not is_record_stale(_aged(10_000, now, "foundational"), now)

    @pytest.mark.parametrize(
        "classification,fresh_days,stale_days",
        [("tactical", 14, 15), ("observational", 30, 31)],
    )
    def test_shelf_life_boundaries(self, now, classification, fresh_days, stale_days):
        assert not is_record_stale(_aged(fresh_days, now, classification), now)
        assert is_record_stale(_aged(stale_days, now, classification), now)

    def test_custom_shelf_life(self, now):
        shelf = ShelfLifeConfig(tactical=1, observational=2)
        assert is_record_stale(_aged(2, now), now, shelf)

    def test_stale_records(self, now):
        records = [_aged(1, now), _aged(20, now), _aged(40, now, "foundational")]
        assert stale_records(records, now) == [records[1]]


class TestGovernance:
    @pytest.mark.parametrize(
        "count,level",
        [
            (0, GovernanceLevel.OK),
            (99, GovernanceLevel.OK),
            (100, GovernanceLevel.OVER_MAX),
            (150, GovernanceLevel.WARN),
            (200, GovernanceLevel.HARD_LIMIT),
            (500, GovernanceLevel.HARD_LIMIT),
        ],
    )
    def test_levels(self, count, level):
        assert governance_level(count) == level

    def test_domain_health(self, now):
        records = [
            _aged(1, now),
            _aged(20, now),
            _aged(5, now, "foundational"),
            Pattern(name="p", description="d", recorded_at=now),
        ]
        health = domain_health(records, GovernanceConfig(max_entries=8, warn_entries=10, hard_limit=12), now=now)
        assert health.count == 4
        assert health.utilization == 50
        assert health.stale_count == 1
        assert health.governance == GovernanceLevel.OK
        assert health.type_distribution == {RecordType.CONVENTION: 3, RecordType.PATTERN: 1}
        assert health.classification_distribution[Classification.TACTICAL] == 3
        assert health.oldest == now - timedelta(days=20)
        assert health.newest == now

    def test_empty_domain_health(self, now):
        health = domain_health([], now=now)
        assert health.count == 0
        assert health.oldest is None
        assert health.utilization == 0


class TestRecent:
    @pytest.mark.parametrize(
        "text,expected",
        [
            ("30m", timedelta(minutes=30)),
            ("12h", timedelta(hours=12)),
            ("2d", timedelta(days=2)),
            ("1w", timedelta(weeks=1)),
            (" 3d ", timedelta(days=3)),
        ],
    )
    def test_parse_duration(self, text, expected):
        assert parse_duration(text) == expected

    @pytest.mark.parametrize("text", ["", "d", "2y", "-1d", "1.5h"])
    def test_parse_duration_invalid(self, text):
        with pytest.raises(ValidationError):
            parse_duration(text)

    def test_newest_first_with_window_and_limit(self, now):
        records = [_aged(5, now), _aged(1, now), _aged(3, now), _aged(10, now)]
        recent = recent_records(records, since=timedelta(days=4), now=now)
        assert [r.recorded_at for r in recent] == [now - timedelta(days=1), now - timedelta(days=3)]
        assert len(recent_records(records, limit=2)) == 2


class TestValidateProject:
    def test_clean_project(self, project):
        project.open_domain("backend").append(Convention(content="x"))
        report = validate_project(project)
        assert report.valid
        assert report.total_records == 1
        assert report.warnings == []

    def test_corrupt_and_duplicate_ids_are_errors(self, project):
        path = project.domain_path("backend")
        line = Convention(id="mx-aaaaaa", content="x").to_json_line()
        path.write_text(f"{line}\n{line}\nnot json\n", encoding="utf-8")

        report = validate_project(project)
        assert not report.valid
        assert report.total_records == 3
        messages = [str(e) for e in report.errors]
        assert any(m.startswith("backend:3") for m in messages)
        assert any("mx-aaaaaa" in m for m in messages)

    def test_dangling_references_are_warnings(self, project):
        store = project.open_domain("backend")
        target = store.append(Convention(content="target"))
        project.open_domain("frontend").append(
            Convention(content="cross-domain", relates_to=[target.id, "mx-gone00"])
        )
        report = validate_project(project)
        assert report.valid
        assert len(report.warnings) == 1
        assert "mx-gone00" in report.warnings[0].message
