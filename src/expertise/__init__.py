"""Expertise engine: durable, searchable knowledge records for coding agents."""

from .context import AssembledContext, ContextAssembler
from .errors import (
    AmbiguousIdError,
    ConfigError,
    CorruptRecordError,
    DomainExistsError,
    DomainNotFoundError,
    DuplicateIdError,
    ExpertiseError,
    InvalidDomainNameError,
    LockTimeoutError,
    NotInitializedError,
    RecordNotFoundError,
    StorageIOError,
    ValidationError,
)
from .filters import RecordFilter
from .models import (
    Convention,
    Decision,
    Evidence,
    ExpertiseRecord,
    Failure,
    Guide,
    Outcome,
    Pattern,
    Reference,
    create_record,
    deserialize,
    estimate_tokens,
    serialize,
)
from .project import ExpertiseProject
from .scoring import PriorityScorer, ScoredRecord
from .search import SearchHit, SearchIndex
from .selector import BudgetedSelector, Selection
from .storage import DeleteResult, DomainSnapshot, DomainStore

__all__ = [
    "AmbiguousIdError",
    "AssembledContext",
    "BudgetedSelector",
    "ConfigError",
    "ContextAssembler",
    "Convention",
    "CorruptRecordError",
    "Decision",
    "DeleteResult",
    "DomainExistsError",
    "DomainNotFoundError",
    "DomainSnapshot",
    "DomainStore",
    "DuplicateIdError",
    "Evidence",
    "ExpertiseError",
    "ExpertiseProject",
    "ExpertiseRecord",
    "Failure",
    "Guide",
    "InvalidDomainNameError",
    "LockTimeoutError",
    "NotInitializedError",
    "Outcome",
    "Pattern",
    "PriorityScorer",
    "RecordFilter",
    "RecordNotFoundError",
    "Reference",
    "ScoredRecord",
    "SearchHit",
    "SearchIndex",
    "Selection",
    "StorageIOError",
    "ValidationError",
    "create_record",
    "deserialize",
    "estimate_tokens",
    "serialize",
]
