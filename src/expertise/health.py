"""Record health: staleness, governance, recency and project validation."""

import re
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Iterable, Optional

import structlog

from shared_types import Classification, GovernanceLevel, RecordType

from .config_models import GovernanceConfig, ShelfLifeConfig
from .errors import ValidationError
from .models import ExpertiseRecord, utc_now

if TYPE_CHECKING:
    from .project import ExpertiseProject

logger = structlog.get_logger()

SECONDS_PER_DAY = 86400

_DURATION = re.compile(r"^(\d+)([mhdw])$")
_DURATION_UNITS = {
    "m": timedelta(minutes=1),
    "h": timedelta(hours=1),
    "d": timedelta(days=1),
    "w": timedelta(weeks=1),
}


def record_age_days(record: ExpertiseRecord, now: datetime) -> int:
    """Whole days since the record was created."""
    return int((now - record.recorded_at).total_seconds() / SECONDS_PER_DAY)


def is_record_stale(
    record: ExpertiseRecord,
    now: Optional[datetime] = None,
    shelf_life: Optional[ShelfLifeConfig] = None,
) -> bool:
    """Foundational records never expire; the others outlive their shelf life."""
    if record.classification == Classification.FOUNDATIONAL:
        return False
    now = now or utc_now()
    shelf_life = shelf_life or ShelfLifeConfig()
    limit = shelf_life.tactical if record.classification == Classification.TACTICAL else shelf_life.observational
    return record_age_days(record, now) > limit


def stale_records(
    records: Iterable[ExpertiseRecord],
    now: Optional[datetime] = None,
    shelf_life: Optional[ShelfLifeConfig] = None,
) -> list[ExpertiseRecord]:
    now = now or utc_now()
    return [r for r in records if is_record_stale(r, now, shelf_life)]


def governance_level(count: int, governance: Optional[GovernanceConfig] = None) -> GovernanceLevel:
    g = governance or GovernanceConfig()
    if count >= g.hard_limit:
        return GovernanceLevel.HARD_LIMIT
    if count >= g.warn_entries:
        return GovernanceLevel.WARN
    if count >= g.max_entries:
        return GovernanceLevel.OVER_MAX
    return GovernanceLevel.OK


@dataclass
class DomainHealth:
    """Status summary of one domain."""

    count: int
    utilization: int
    stale_count: int
    governance: GovernanceLevel
    type_distribution: dict[RecordType, int] = field(default_factory=dict)
    classification_distribution: dict[Classification, int] = field(default_factory=dict)
    oldest: Optional[datetime] = None
    newest: Optional[datetime] = None


def domain_health(
    records: list[ExpertiseRecord],
    governance: Optional[GovernanceConfig] = None,
    shelf_life: Optional[ShelfLifeConfig] = None,
    now: Optional[datetime] = None,
) -> DomainHealth:
    governance = governance or GovernanceConfig()
    now = now or utc_now()
    created = [r.recorded_at for r in records]
    return DomainHealth(
        count=len(records),
        utilization=round(len(records) / governance.max_entries * 100),
        stale_count=len(stale_records(records, now, shelf_life)),
        governance=governance_level(len(records), governance),
        type_distribution=dict(Counter(r.record_type for r in records)),
        classification_distribution=dict(Counter(r.classification for r in records)),
        oldest=min(created, default=None),
        newest=max(created, default=None),
    )


def parse_duration(value: str) -> timedelta:
    """Parse ``30m``, ``12h``, ``2d`` or ``1w``."""
    text = value.strip()
    match = _DURATION.match(text)
    if not match:
        raise ValidationError(
            f'Invalid duration "{value}". Use <number><unit> with unit m, h, d or w.',
            field="since",
        )
    return int(match.group(1)) * _DURATION_UNITS[match.group(2)]


def recent_records(
    records: Iterable[ExpertiseRecord],
    since: Optional[timedelta] = None,
    limit: Optional[int] = None,
    now: Optional[datetime] = None,
) -> list[ExpertiseRecord]:
    """Newest-first records, optionally only those created within ``since``."""
    ordered = sorted(records, key=lambda r: r.recorded_at, reverse=True)
    if since is not None:
        cutoff = (now or utc_now()) - since
        ordered = [r for r in ordered if r.recorded_at >= cutoff]
    return ordered[:limit] if limit is not None else ordered


# ---------------------------------------------------------------------------
# Project validation
# ---------------------------------------------------------------------------


@dataclass
class ValidationIssue:
    domain: str
    message: str
    line: Optional[int] = None
    record_id: Optional[str] = None

    def __str__(self) -> str:
        where = f"{self.domain}:{self.line}" if self.line else self.domain
        return f"{where} - {self.message}"


@dataclass
class ValidationReport:
    total_records: int = 0
    errors: list[ValidationIssue] = field(default_factory=list)
    warnings: list[ValidationIssue] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors


def validate_project(project: "ExpertiseProject") -> ValidationReport:
    """Check every configured domain file.

    Unparseable lines and duplicate IDs are errors. Relationship targets
    that match no known record are warnings, since they may point at
    history that has been deleted.
    """
    report = ValidationReport()
    snapshots = project.read_domains()
    known_ids = {r.id for snap in snapshots.values() for r in snap.records if r.id}

    for domain, snapshot in snapshots.items():
        report.total_records += len(snapshot.entries)
        for corrupt in snapshot.corrupt:
            report.errors.append(
                ValidationIssue(domain, f"Schema validation failed: {corrupt.reason}", line=corrupt.line_number)
            )

        counts = Counter(r.id for r in snapshot.records if r.id)
        for record_id, n in counts.items():
            if n > 1:
                report.errors.append(
                    ValidationIssue(domain, f"Duplicate id {record_id} appears {n} times", record_id=record_id)
                )

        for record in snapshot.records:
            for relation in ("relates_to", "supersedes"):
                for target in getattr(record, relation):
                    if target not in known_ids:
                        report.warnings.append(
                            ValidationIssue(
                                domain,
                                f"{record.id} {relation} unknown record {target}",
                                record_id=record.id,
                            )
                        )

    logger.info(
        "project_validated",
        records=report.total_records,
        errors=len(report.errors),
        warnings=len(report.warnings),
    )
    return report
