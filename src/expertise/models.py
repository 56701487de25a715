"""Expertise record model.

Six record variants (convention, pattern, failure, decision, reference, guide)
share one metadata envelope: id, classification, evidence, relationships,
outcome history and lifecycle timestamps. Each variant validates its own
required fields at construction time.

A record serializes to one JSON object per line. Key names and the ``type``
discriminator values are shared with other implementations of the
``.mulch/expertise/*.jsonl`` layout, so unknown keys are preserved verbatim.
"""

import hashlib
import json
import math
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from typing import Any, ClassVar, Optional

from shared_types import Classification, OutcomeStatus, RecordType

from .errors import ValidationError

ID_PREFIX = "mx-"
ID_HASH_LENGTH = 6
CHARS_PER_TOKEN = 4

# Managed by the store; edits go through replace_fields() and never touch these.
IMMUTABLE_FIELDS = frozenset({"id", "recorded_at", "updated_at"})

_SHARED_KEYS = (
    "classification",
    "recorded_at",
    "evidence",
    "tags",
    "relates_to",
    "supersedes",
    "outcomes",
    "updated_at",
)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(dt: datetime) -> str:
    """RFC 3339, UTC, millisecond precision, ``Z`` suffix."""
    dt = dt.astimezone(timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def parse_timestamp(value: str | datetime, field_name: str = "recorded_at") -> datetime:
    """Parse an ISO timestamp into an aware UTC datetime truncated to milliseconds."""
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str):
        try:
            dt = datetime.fromisoformat(value.strip())
        except ValueError:
            raise ValidationError(f"Invalid timestamp for '{field_name}': {value!r}", field=field_name)
    else:
        raise ValidationError(f"Invalid timestamp for '{field_name}': {value!r}", field=field_name)

    try:
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        dt = dt.astimezone(timezone.utc)
    except (OverflowError, ValueError):
        raise ValidationError(
            f"Timestamp out of range for '{field_name}': {value!r}", field=field_name
        ) from None
    return dt.replace(microsecond=(dt.microsecond // 1000) * 1000)


def _require_utf8(value: Any, field_name: str) -> None:
    """Reject lone surrogates and other text that cannot be written as UTF-8."""
    if isinstance(value, str):
        try:
            value.encode("utf-8")
        except UnicodeEncodeError:
            raise ValidationError(
                f"'{field_name}' contains text that cannot be encoded as UTF-8", field=field_name
            ) from None
    elif isinstance(value, dict):
        for k, v in value.items():
            _require_utf8(k, field_name)
            _require_utf8(v, field_name)
    elif isinstance(value, (list, tuple)):
        for v in value:
            _require_utf8(v, field_name)


def _unique_strings(values, field_name: str) -> list[str]:
    if values is None:
        return []
    if isinstance(values, str) or not isinstance(values, (list, tuple, set, frozenset)):
        raise ValidationError(f"'{field_name}' must be a list of strings", field=field_name)
    seen: list[str] = []
    for v in values:
        if not isinstance(v, str):
            raise ValidationError(f"'{field_name}' must be a list of strings", field=field_name)
        v = v.strip()
        if v and v not in seen:
            seen.append(v)
    return seen


@dataclass
class Evidence:
    """Typed references backing a record: commit, issue, file (plus date/bead)."""

    commit: Optional[str] = None
    date: Optional[str] = None
    issue: Optional[str] = None
    file: Optional[str] = None
    bead: Optional[str] = None

    KEYS: ClassVar[tuple[str, ...]] = ("commit", "date", "issue", "file", "bead")

    def references(self) -> list[tuple[str, str]]:
        return [(k, getattr(self, k)) for k in self.KEYS if getattr(self, k)]

    def is_empty(self) -> bool:
        return not self.references()

    def to_dict(self) -> dict:
        return {k: v for k, v in self.references()}

    @classmethod
    def from_dict(cls, data: Any) -> "Evidence":
        if not isinstance(data, dict):
            raise ValidationError("'evidence' must be an object", field="evidence")
        values = {}
        for k in cls.KEYS:
            v = data.get(k)
            if v is not None and not isinstance(v, str):
                raise ValidationError(f"'evidence.{k}' must be a string", field=f"evidence.{k}")
            values[k] = v
        return cls(**values)


@dataclass
class Outcome:
    """Result of applying a record's guidance, reported after the fact."""

    status: OutcomeStatus
    duration: Optional[float] = None
    test_results: Optional[str] = None
    agent: Optional[str] = None
    notes: Optional[str] = None
    recorded_at: Optional[str] = None

    def __post_init__(self):
        try:
            self.status = OutcomeStatus(self.status)
        except ValueError:
            raise ValidationError(
                f"Invalid outcome status: {self.status!r}. "
                f"Must be one of {[s.value for s in OutcomeStatus]}",
                field="outcomes.status",
            )

    def to_dict(self) -> dict:
        data: dict[str, Any] = {"status": self.status.value}
        for key in ("duration", "test_results", "agent", "notes", "recorded_at"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        return data

    @classmethod
    def from_dict(cls, data: Any) -> "Outcome":
        if not isinstance(data, dict) or "status" not in data:
            raise ValidationError("each outcome must be an object with a 'status'", field="outcomes")
        return cls(
            status=data["status"],
            duration=data.get("duration"),
            test_results=data.get("test_results"),
            agent=data.get("agent"),
            notes=data.get("notes"),
            recorded_at=data.get("recorded_at"),
        )


@dataclass(kw_only=True, eq=False)
class ExpertiseRecord:
    """Shared envelope of every record variant.

    Identity is the ``id``: two records with the same ID are equal whatever
    their field values. ``domain`` is assigned by the store that loaded the
    record and is never serialized.
    """

    TYPE: ClassVar[RecordType]
    VARIANT_FIELDS: ClassVar[tuple[str, ...]] = ()
    REQUIRED: ClassVar[tuple[str, ...]] = ()
    LIST_FIELDS: ClassVar[tuple[str, ...]] = ()
    KEY_FIELD: ClassVar[str] = ""
    NAMED: ClassVar[bool] = False

    id: Optional[str] = None
    classification: Classification = Classification.TACTICAL
    recorded_at: datetime = field(default_factory=utc_now)
    updated_at: Optional[datetime] = None
    evidence: Optional[Evidence] = None
    tags: list[str] = field(default_factory=list)
    relates_to: list[str] = field(default_factory=list)
    supersedes: list[str] = field(default_factory=list)
    outcomes: list[Outcome] = field(default_factory=list)
    domain: Optional[str] = None
    extra: dict[str, Any] = field(default_factory=dict, repr=False)

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """Coerce field types and enforce the variant's required fields."""
        for name in self.REQUIRED:
            value = getattr(self, name)
            if not isinstance(value, str) or not value.strip():
                raise ValidationError(
                    f"{self.TYPE} record requires '{name}'", field=name, record_id=self.id
                )

        if self.id is not None and (not isinstance(self.id, str) or not self.id.strip()):
            raise ValidationError("'id' must be a non-empty string", field="id")

        try:
            self.classification = Classification(self.classification)
        except ValueError:
            raise ValidationError(
                f"Invalid classification: {self.classification!r}",
                field="classification",
                record_id=self.id,
            )

        self.recorded_at = parse_timestamp(self.recorded_at, "recorded_at")
        self.updated_at = (
            parse_timestamp(self.updated_at, "updated_at")
            if self.updated_at is not None
            else self.recorded_at
        )

        if self.evidence is not None and not isinstance(self.evidence, Evidence):
            self.evidence = Evidence.from_dict(self.evidence)
        if self.evidence is not None and self.evidence.is_empty():
            self.evidence = None

        self.tags = _unique_strings(self.tags, "tags")
        self.relates_to = _unique_strings(self.relates_to, "relates_to")
        self.supersedes = _unique_strings(self.supersedes, "supersedes")
        for name in self.LIST_FIELDS:
            setattr(self, name, _unique_strings(getattr(self, name), name))

        if self.outcomes is None:
            self.outcomes = []
        if not isinstance(self.outcomes, list):
            raise ValidationError("'outcomes' must be a list", field="outcomes", record_id=self.id)
        self.outcomes = [o if isinstance(o, Outcome) else Outcome.from_dict(o) for o in self.outcomes]

        for key, value in self.to_dict().items():
            _require_utf8(key, key)
            _require_utf8(value, key)

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    def __eq__(self, other):
        if not isinstance(other, ExpertiseRecord):
            return NotImplemented
        if self.id is None or other.id is None:
            return self is other
        return self.id == other.id

    def __hash__(self):
        return hash(self.id) if self.id is not None else object.__hash__(self)

    @property
    def record_type(self) -> RecordType:
        return self.TYPE

    @property
    def key(self) -> str:
        """The field that identifies duplicates of this record."""
        return getattr(self, self.KEY_FIELD)

    @property
    def created_at(self) -> datetime:
        return self.recorded_at

    @property
    def outcome_status(self) -> Optional[OutcomeStatus]:
        return self.outcomes[-1].status if self.outcomes else None

    @property
    def is_named_type(self) -> bool:
        return self.NAMED

    def ensure_id(self) -> str:
        if self.id is None:
            self.id = generate_record_id(self)
        return self.id

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def replace_fields(self, **changes) -> "ExpertiseRecord":
        """Apply field edits and re-validate. The variant never changes."""
        editable = {f.name for f in fields(self)} - IMMUTABLE_FIELDS - {"domain", "extra"}
        for name in changes:
            if name in IMMUTABLE_FIELDS or name == "type":
                raise ValidationError(f"'{name}' cannot be edited", field=name, record_id=self.id)
            if name not in editable:
                raise ValidationError(
                    f"{self.TYPE} records have no field '{name}'", field=name, record_id=self.id
                )

        previous = {name: getattr(self, name) for name in changes}
        for name, value in changes.items():
            setattr(self, name, value)
        try:
            self.validate()
        except ValidationError:
            for name, value in previous.items():
                setattr(self, name, value)
            raise
        return self

    def add_outcome(self, outcome: Outcome | OutcomeStatus | str, **details) -> Outcome:
        """Append an outcome report to the history."""
        if not isinstance(outcome, Outcome):
            outcome = Outcome(status=outcome, **details)
        self.outcomes.append(outcome)
        return outcome

    def touch(self, now: datetime) -> None:
        self.updated_at = parse_timestamp(now, "updated_at")

    # ------------------------------------------------------------------
    # Text views
    # ------------------------------------------------------------------

    def text_fields(self) -> dict[str, str]:
        """Searchable text by field name, variant fields first, then tags."""
        texts: dict[str, str] = {}
        for name in self.VARIANT_FIELDS:
            value = getattr(self, name)
            if isinstance(value, list):
                value = " ".join(value)
            if isinstance(value, str) and value.strip():
                texts[name] = value
        if self.tags:
            texts["tags"] = " ".join(self.tags)
        return texts

    def referenced_files(self) -> list[str]:
        files = list(getattr(self, "files", []) or [])
        if self.evidence and self.evidence.file and self.evidence.file not in files:
            files.append(self.evidence.file)
        return files

    def summary(self, max_length: int = 80) -> str:
        text = " ".join(self.key.split())
        if len(text) > max_length:
            return text[: max_length - 3] + "..."
        return text

    def render_text(self) -> str:
        return f"[{self.TYPE}] " + " ".join(self.text_fields().values())

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": self.TYPE.value}
        if self.id is not None:
            data["id"] = self.id
        for name in self.VARIANT_FIELDS:
            value = getattr(self, name)
            if value in (None, []):
                continue
            data[name] = list(value) if isinstance(value, list) else value
        data["classification"] = self.classification.value
        data["recorded_at"] = format_timestamp(self.recorded_at)
        if self.evidence is not None:
            data["evidence"] = self.evidence.to_dict()
        if self.tags:
            data["tags"] = list(self.tags)
        if self.relates_to:
            data["relates_to"] = list(self.relates_to)
        if self.supersedes:
            data["supersedes"] = list(self.supersedes)
        if self.outcomes:
            data["outcomes"] = [o.to_dict() for o in self.outcomes]
        data["updated_at"] = format_timestamp(self.updated_at)
        for key, value in self.extra.items():
            data.setdefault(key, value)
        return data

    def to_json_line(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False, separators=(",", ":"))

    @staticmethod
    def from_dict(data: Any, domain: Optional[str] = None) -> "ExpertiseRecord":
        if not isinstance(data, dict):
            raise ValidationError("record must be a JSON object", field="type")

        raw_type = data.get("type")
        try:
            cls = RECORD_CLASSES[RecordType(raw_type)]
        except ValueError:
            raise ValidationError(f"Unknown record type: {raw_type!r}", field="type")

        data = dict(data)
        # Older files carried a single `outcome` object instead of a history.
        if "outcome" in data and "outcomes" not in data:
            data["outcomes"] = [data.pop("outcome")]

        known = set(_SHARED_KEYS) | set(cls.VARIANT_FIELDS) | {"id"}
        kwargs = {k: data[k] for k in known if k in data and data[k] is not None}
        extra = {k: v for k, v in data.items() if k not in known and k != "type"}
        return cls(**kwargs, extra=extra, domain=domain)

    @staticmethod
    def from_json_line(line: str, domain: Optional[str] = None) -> "ExpertiseRecord":
        try:
            data = json.loads(line)
        except json.JSONDecodeError as e:
            raise ValidationError(f"invalid JSON: {e.msg} at column {e.colno}")
        return ExpertiseRecord.from_dict(data, domain=domain)


@dataclass(kw_only=True, eq=False)
class Convention(ExpertiseRecord):
    TYPE = RecordType.CONVENTION
    VARIANT_FIELDS = ("content",)
    REQUIRED = ("content",)
    KEY_FIELD = "content"

    content: str = ""


@dataclass(kw_only=True, eq=False)
class Pattern(ExpertiseRecord):
    TYPE = RecordType.PATTERN
    VARIANT_FIELDS = ("name", "description", "files")
    REQUIRED = ("name", "description")
    LIST_FIELDS = ("files",)
    KEY_FIELD = "name"
    NAMED = True

    name: str = ""
    description: str = ""
    files: list[str] = field(default_factory=list)


@dataclass(kw_only=True, eq=False)
class Failure(ExpertiseRecord):
    TYPE = RecordType.FAILURE
    VARIANT_FIELDS = ("description", "resolution")
    REQUIRED = ("description", "resolution")
    KEY_FIELD = "description"

    description: str = ""
    resolution: str = ""


@dataclass(kw_only=True, eq=False)
class Decision(ExpertiseRecord):
    TYPE = RecordType.DECISION
    VARIANT_FIELDS = ("title", "rationale", "date")
    REQUIRED = ("title", "rationale")
    KEY_FIELD = "title"
    NAMED = True

    title: str = ""
    rationale: str = ""
    date: Optional[str] = None

    def text_fields(self) -> dict[str, str]:
        texts = super().text_fields()
        texts.pop("date", None)
        return texts


@dataclass(kw_only=True, eq=False)
class Reference(ExpertiseRecord):
    TYPE = RecordType.REFERENCE
    VARIANT_FIELDS = ("name", "description", "files")
    REQUIRED = ("name", "description")
    LIST_FIELDS = ("files",)
    KEY_FIELD = "name"
    NAMED = True

    name: str = ""
    description: str = ""
    files: list[str] = field(default_factory=list)


@dataclass(kw_only=True, eq=False)
class Guide(ExpertiseRecord):
    TYPE = RecordType.GUIDE
    VARIANT_FIELDS = ("name", "description")
    REQUIRED = ("name", "description")
    KEY_FIELD = "name"
    NAMED = True

    name: str = ""
    description: str = ""


RECORD_CLASSES: dict[RecordType, type[ExpertiseRecord]] = {
    cls.TYPE: cls for cls in (Convention, Pattern, Failure, Decision, Reference, Guide)
}


def create_record(record_type: RecordType | str, **values) -> ExpertiseRecord:
    """Build a record of the given variant, validating its required fields."""
    try:
        cls = RECORD_CLASSES[RecordType(record_type)]
    except ValueError:
        raise ValidationError(f"Unknown record type: {record_type!r}", field="type")
    return cls(**values)


def generate_record_id(record: ExpertiseRecord, salt: int = 0) -> str:
    """Deterministic ID from the record's type and key field.

    A non-zero ``salt`` yields an alternative ID for forced duplicates.
    """
    seed = f"{record.TYPE}:{record.key}"
    if salt:
        seed = f"{seed}:{salt}"
    digest = hashlib.sha256(seed.encode("utf-8")).hexdigest()
    return f"{ID_PREFIX}{digest[:ID_HASH_LENGTH]}"


def serialize(record: ExpertiseRecord) -> str:
    return record.to_json_line()


def deserialize(line: str, domain: Optional[str] = None) -> ExpertiseRecord:
    return ExpertiseRecord.from_json_line(line, domain=domain)


def estimate_tokens(record: ExpertiseRecord) -> int:
    """Approximate token cost of a record (characters / 4, rounded up)."""
    return math.ceil(len(record.render_text()) / CHARS_PER_TOKEN)
