"""Record filters and duplicate detection."""

from dataclasses import dataclass, field
from typing import Iterable, Optional

from shared_types import Classification, RecordType

from .models import ExpertiseRecord


@dataclass
class RecordFilter:
    """Conjunction of simple predicates. Empty criteria match everything.

    Within one criterion any listed value matches (``tags=["db", "sql"]``
    keeps records tagged with either).
    """

    domains: list[str] = field(default_factory=list)
    types: list[RecordType] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    classifications: list[Classification] = field(default_factory=list)
    file: Optional[str] = None

    def __post_init__(self):
        self.types = [RecordType(t) for t in self.types]
        self.classifications = [Classification(c) for c in self.classifications]

    @property
    def is_empty(self) -> bool:
        return not (self.domains or self.types or self.tags or self.classifications or self.file)

    def matches(self, record: ExpertiseRecord) -> bool:
        if self.domains and record.domain not in self.domains:
            return False
        if self.types and record.record_type not in self.types:
            return False
        if self.tags:
            wanted = {t.lower() for t in self.tags}
            if not wanted & {t.lower() for t in record.tags}:
                return False
        if self.classifications and record.classification not in self.classifications:
            return False
        if self.file and not references_file(record, self.file):
            return False
        return True

    def apply(self, records: Iterable[ExpertiseRecord]) -> list[ExpertiseRecord]:
        return [r for r in records if self.matches(r)]


def references_file(record: ExpertiseRecord, path: str) -> bool:
    """Case-insensitive substring match against files and evidence.file."""
    needle = path.lower()
    return any(needle in f.lower() for f in record.referenced_files())


def filter_by_type(records: Iterable[ExpertiseRecord], record_type: RecordType | str) -> list[ExpertiseRecord]:
    return RecordFilter(types=[record_type]).apply(records)


def filter_by_classification(
    records: Iterable[ExpertiseRecord], classification: Classification | str
) -> list[ExpertiseRecord]:
    return RecordFilter(classifications=[classification]).apply(records)


def filter_by_file(records: Iterable[ExpertiseRecord], path: str) -> list[ExpertiseRecord]:
    return RecordFilter(file=path).apply(records)


def find_duplicate(
    existing: list[ExpertiseRecord], candidate: ExpertiseRecord
) -> Optional[tuple[int, ExpertiseRecord]]:
    """Locate a record of the same type with the same key field."""
    for i, record in enumerate(existing):
        if record.record_type == candidate.record_type and record.key == candidate.key:
            return i, record
    return None


def superseded_ids(records: Iterable[ExpertiseRecord]) -> set[str]:
    """IDs named in any record's ``supersedes``."""
    ids: set[str] = set()
    for r in records:
        ids.update(r.supersedes)
    return ids


def exclude_superseded(records: Iterable[ExpertiseRecord]) -> list[ExpertiseRecord]:
    records = list(records)
    gone = superseded_ids(records)
    return [r for r in records if r.id not in gone]
