"""Domain store: one append-oriented JSONL file of expertise records.

Every mutation follows the same protocol: take the domain's file lock, read
the whole file, change the in-memory list, write the result to a temp file
in the same directory and ``os.replace`` it over the original. Readers never
lock; the rename means they see either the old or the new file, never a torn
one.
"""

import os
import tempfile
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterable, Optional, Union

import structlog

from shared_types import WriteAction

from .errors import (
    AmbiguousIdError,
    CorruptRecordError,
    DuplicateIdError,
    RecordNotFoundError,
    StorageIOError,
    ValidationError,
)
from .filters import find_duplicate
from .lock import DEFAULT_RETRY_INTERVAL, DEFAULT_STALE_AFTER, DEFAULT_TIMEOUT, FileLock
from .models import ID_PREFIX, ExpertiseRecord, generate_record_id, utc_now

logger = structlog.get_logger()

DOMAIN_FILE_SUFFIX = ".jsonl"
TEMP_SUFFIX = ".tmp"

Entry = Union[ExpertiseRecord, CorruptRecordError]
Mutator = Callable[[ExpertiseRecord], Optional[ExpertiseRecord]]


@dataclass
class DomainSnapshot:
    """Parsed contents of a domain file in file order.

    Lines that failed to parse stay in ``entries`` as ``CorruptRecordError``
    so a rewrite puts them back exactly where they were.
    """

    domain: str
    entries: list[Entry] = field(default_factory=list)

    @property
    def records(self) -> list[ExpertiseRecord]:
        return [e for e in self.entries if isinstance(e, ExpertiseRecord)]

    @property
    def corrupt(self) -> list[CorruptRecordError]:
        return [e for e in self.entries if isinstance(e, CorruptRecordError)]

    def position_of(self, record: ExpertiseRecord) -> int:
        for i, entry in enumerate(self.entries):
            if entry is record:
                return i
        raise ValueError(f"record {record.id} is not part of this snapshot")


@dataclass
class DeleteResult:
    record: ExpertiseRecord
    now_empty: bool


def resolve_record_id(
    records: list[ExpertiseRecord], identifier: str, domain: Optional[str] = None
) -> tuple[int, ExpertiseRecord]:
    """Find one record by full ID, bare hash, or unique prefix of either."""
    ident = identifier.strip()
    if not ident:
        raise RecordNotFoundError(identifier, domain)
    bare = ident[len(ID_PREFIX):] if ident.startswith(ID_PREFIX) else ident
    candidates = {ident, ID_PREFIX + bare}

    for i, r in enumerate(records):
        if r.id in candidates:
            return i, r

    matches = [
        (i, r)
        for i, r in enumerate(records)
        if r.id and any(r.id.startswith(c) for c in candidates)
    ]
    if len(matches) == 1:
        return matches[0]
    if not matches:
        raise RecordNotFoundError(identifier, domain)
    raise AmbiguousIdError(identifier, [r.id for _, r in matches], domain)


class DomainStore:
    """Durable, concurrency-safe CRUD over one domain's records."""

    def __init__(
        self,
        path: str | Path,
        domain: Optional[str] = None,
        lock_timeout: float = DEFAULT_TIMEOUT,
        lock_retry_interval: float = DEFAULT_RETRY_INTERVAL,
        lock_stale_after: float = DEFAULT_STALE_AFTER,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.path = Path(path)
        self.domain = domain or self.path.name.removesuffix(DOMAIN_FILE_SUFFIX)
        self.lock_timeout = lock_timeout
        self.lock_retry_interval = lock_retry_interval
        self.lock_stale_after = lock_stale_after
        self._clock = clock
        self.cleanup_stale_temp_files()

    def __repr__(self) -> str:
        return f"DomainStore(domain={self.domain!r}, path={str(self.path)!r})"

    def _lock(self) -> FileLock:
        return FileLock(
            self.path,
            timeout=self.lock_timeout,
            retry_interval=self.lock_retry_interval,
            stale_after=self.lock_stale_after,
        )

    # ------------------------------------------------------------------
    # Read path (lock-free)
    # ------------------------------------------------------------------

    def exists(self) -> bool:
        return self.path.exists()

    def read(self) -> DomainSnapshot:
        """Parse the domain file. A missing file is an empty domain."""
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return DomainSnapshot(self.domain)
        except (OSError, UnicodeDecodeError) as e:
            raise StorageIOError(
                f"Cannot read {self.path}: {e}", path=str(self.path), domain=self.domain
            ) from e

        snapshot = DomainSnapshot(self.domain)
        # split("\n") rather than splitlines(): U+2028 may legally appear inside JSON strings
        for line_number, line in enumerate(text.split("\n"), start=1):
            stripped = line.strip()
            if not stripped:
                continue
            try:
                snapshot.entries.append(ExpertiseRecord.from_json_line(stripped, domain=self.domain))
            except ValidationError as e:
                corrupt = CorruptRecordError(self.domain, line_number, line.rstrip("\r"), str(e))
                logger.warning(
                    "corrupt_record_skipped",
                    domain=self.domain,
                    line=line_number,
                    reason=str(e),
                )
                snapshot.entries.append(corrupt)
        return snapshot

    def read_all(self) -> list[ExpertiseRecord]:
        """All parseable records in file (insertion) order."""
        return self.read().records

    def get(self, identifier: str) -> ExpertiseRecord:
        _, record = resolve_record_id(self.read_all(), identifier, self.domain)
        return record

    def count(self) -> int:
        return len(self.read_all())

    # ------------------------------------------------------------------
    # Write path (locked, whole-file rewrite)
    # ------------------------------------------------------------------

    def ensure_file(self) -> None:
        """Create an empty domain file if none exists."""
        if self.path.exists():
            return
        with self._lock():
            if not self.path.exists():
                self._write([])

    def append(self, record: ExpertiseRecord) -> ExpertiseRecord:
        """Add a new record. Fails with DuplicateIdError if its ID is taken."""
        with self._lock():
            snapshot = self.read()
            record.validate()
            record.ensure_id()
            if any(r.id == record.id for r in snapshot.records):
                raise DuplicateIdError(record.id, self.domain)
            record.domain = self.domain
            snapshot.entries.append(record)
            self._write(snapshot.entries)
        logger.info("record_appended", domain=self.domain, record_id=record.id, type=str(record.record_type))
        return record

    def record(self, record: ExpertiseRecord, force: bool = False) -> WriteAction:
        """Add a record, folding duplicates the way agents expect.

        A duplicate of a named type (pattern, decision, reference, guide)
        replaces the existing record in place; a duplicate convention or
        failure is skipped. ``force`` always appends.
        """
        return self.record_many([record], force=force)[0]

    def record_many(self, records: Iterable[ExpertiseRecord], force: bool = False) -> list[WriteAction]:
        records = list(records)
        for r in records:
            r.validate()
        with self._lock():
            snapshot = self.read()
            actions = [self._merge(snapshot, r, force) for r in records]
            if any(a != WriteAction.SKIPPED for a in actions):
                self._write(snapshot.entries)
        for r, action in zip(records, actions):
            logger.info("record_written", domain=self.domain, record_id=r.id, action=str(action))
        return actions

    def _merge(self, snapshot: DomainSnapshot, record: ExpertiseRecord, force: bool) -> WriteAction:
        existing_records = snapshot.records
        duplicate = None if force else find_duplicate(existing_records, record)

        if duplicate is not None:
            _, existing = duplicate
            if not record.is_named_type:
                record.id = existing.id
                record.domain = self.domain
                return WriteAction.SKIPPED
            record.id = existing.id
            record.recorded_at = existing.recorded_at
            record.domain = self.domain
            record.touch(self._clock())
            snapshot.entries[snapshot.position_of(existing)] = record
            return WriteAction.UPDATED

        taken = {r.id for r in existing_records}
        if record.id is None:
            record.id = _unique_generated_id(record, taken)
        elif record.id in taken:
            raise DuplicateIdError(record.id, self.domain)
        record.domain = self.domain
        snapshot.entries.append(record)
        return WriteAction.CREATED

    def update(self, identifier: str, mutator: Mutator) -> ExpertiseRecord:
        """Resolve a record, apply ``mutator`` and rewrite the file.

        The mutator may edit the record in place (returning None) or return a
        replacement. Variant, ID and creation time cannot change.
        """
        with self._lock():
            snapshot = self.read()
            _, target = resolve_record_id(snapshot.records, identifier, self.domain)
            position = snapshot.position_of(target)
            original_type, original_id, original_created = (
                target.record_type,
                target.id,
                target.recorded_at,
            )

            result = mutator(target)
            updated = target if result is None else result
            if not isinstance(updated, ExpertiseRecord):
                raise ValidationError("mutator must return a record or None", record_id=original_id)
            if updated.record_type != original_type:
                raise ValidationError(
                    f"record type cannot change from {original_type} to {updated.record_type}",
                    field="type",
                    record_id=original_id,
                )
            if updated is not target:
                updated.id = updated.id or original_id
                updated.recorded_at = original_created
            if updated.id != original_id:
                raise ValidationError("record id cannot change", field="id", record_id=original_id)
            if updated.recorded_at != original_created:
                raise ValidationError("recorded_at cannot change", field="recorded_at", record_id=original_id)

            updated.validate()
            updated.domain = self.domain
            updated.touch(self._clock())
            snapshot.entries[position] = updated
            self._write(snapshot.entries)
        logger.info("record_updated", domain=self.domain, record_id=original_id)
        return updated

    def delete(self, identifier: str) -> DeleteResult:
        """Physically remove one record. Reports when the domain is left empty."""
        with self._lock():
            snapshot = self.read()
            _, target = resolve_record_id(snapshot.records, identifier, self.domain)
            del snapshot.entries[snapshot.position_of(target)]
            self._write(snapshot.entries)
            now_empty = not snapshot.entries
        logger.info("record_deleted", domain=self.domain, record_id=target.id, now_empty=now_empty)
        return DeleteResult(record=target, now_empty=now_empty)

    def prune(self, predicate: Callable[[ExpertiseRecord], bool]) -> list[ExpertiseRecord]:
        """Remove every record matching ``predicate`` in a single rewrite."""
        with self._lock():
            snapshot = self.read()
            removed = [r for r in snapshot.records if predicate(r)]
            if removed:
                gone = {id(r) for r in removed}
                snapshot.entries = [e for e in snapshot.entries if id(e) not in gone]
                self._write(snapshot.entries)
        if removed:
            logger.info("records_pruned", domain=self.domain, count=len(removed))
        return removed

    def remove_file(self) -> None:
        """Delete the domain file (e.g. after a delete reported ``now_empty``)."""
        with self._lock():
            try:
                self.path.unlink(missing_ok=True)
            except OSError as e:
                raise StorageIOError(
                    f"Cannot remove {self.path}: {e}", path=str(self.path), domain=self.domain
                ) from e
        logger.info("domain_file_removed", domain=self.domain)

    def _write(self, entries: list[Entry]) -> None:
        """Serialize ``entries`` to a temp file and atomically swap it in."""
        lines = []
        for entry in entries:
            if isinstance(entry, ExpertiseRecord):
                lines.append(entry.to_json_line())
            else:
                lines.append(entry.raw)
        payload = "".join(line + "\n" for line in lines)

        directory = self.path.parent
        try:
            directory.mkdir(parents=True, exist_ok=True)
            mode = self.path.stat().st_mode & 0o777 if self.path.exists() else 0o644
            fd, tmp_name = tempfile.mkstemp(
                dir=directory, prefix=f".{self.path.name}.", suffix=TEMP_SUFFIX
            )
        except OSError as e:
            raise StorageIOError(
                f"Cannot prepare write to {self.path}: {e}", path=str(self.path), domain=self.domain
            ) from e

        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp_path, mode)
            os.replace(tmp_path, self.path)
        except (OSError, ValueError) as e:
            tmp_path.unlink(missing_ok=True)
            raise StorageIOError(
                f"Failed to write {self.path}: {e}", path=str(self.path), domain=self.domain
            ) from e

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    def temp_files(self) -> list[Path]:
        return sorted(self.path.parent.glob(f".{self.path.name}.*{TEMP_SUFFIX}"))

    def cleanup_stale_temp_files(self) -> int:
        """Best-effort removal of temp files left behind by crashed writers.

        Only files older than the lock staleness threshold are touched, so a
        concurrent writer's in-flight temp file survives.
        """
        removed = 0
        now = time.time()
        for tmp in self.temp_files():
            try:
                if now - tmp.stat().st_mtime <= self.lock_stale_after:
                    continue
                tmp.unlink()
                removed += 1
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.warning("temp_cleanup_failed", domain=self.domain, path=str(tmp), error=str(e))
        if removed:
            logger.info("stale_temp_files_removed", domain=self.domain, count=removed)
        return removed


def _unique_generated_id(record: ExpertiseRecord, taken: set[str]) -> str:
    """Content-derived ID, salted until it no longer collides."""
    candidate = generate_record_id(record)
    salt = 1
    while candidate in taken:
        candidate = generate_record_id(record, salt=salt)
        salt += 1
    return candidate
