"""In-memory BM25 index over expertise records."""

import math
import re
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Optional

import structlog

from .filters import RecordFilter, exclude_superseded
from .models import ExpertiseRecord
from .scoring import PriorityScorer

logger = structlog.get_logger()

DEFAULT_K1 = 1.2
DEFAULT_B = 0.75

_NON_TOKEN = re.compile(r"[^\w\-]+")


def tokenize(text: str) -> list[str]:
    """Lowercase, turn everything but letters, digits, ``-`` and ``_`` into spaces, split."""
    return _NON_TOKEN.sub(" ", text.lower()).split()


@dataclass
class SearchHit:
    record: ExpertiseRecord
    score: float
    matched_fields: list[str] = field(default_factory=list)


@dataclass
class _Document:
    record: ExpertiseRecord
    position: int
    term_counts: Counter
    length: int
    field_terms: dict[str, set[str]]


class SearchIndex:
    """BM25 ranking over the concatenated text fields of each record.

    ``build`` only tokenizes; corpus statistics (document count, document
    frequencies, average length) are computed per query over the records
    that pass the query's filters.
    """

    def __init__(self, k1: float = DEFAULT_K1, b: float = DEFAULT_B):
        if k1 < 0:
            raise ValueError(f"k1 must be non-negative, got {k1}")
        if not 0.0 <= b <= 1.0:
            raise ValueError(f"b must be within 0..1, got {b}")
        self.k1 = k1
        self.b = b
        self._documents: list[_Document] = []

    def __len__(self) -> int:
        return len(self._documents)

    @property
    def records(self) -> list[ExpertiseRecord]:
        return [d.record for d in self._documents]

    def build(self, records: Iterable[ExpertiseRecord], include_superseded: bool = False) -> "SearchIndex":
        """Index a candidate set, possibly spanning several domains."""
        records = list(records)
        if not include_superseded:
            records = exclude_superseded(records)

        self._documents = []
        for position, record in enumerate(records):
            texts = record.text_fields()
            tokens = tokenize(" ".join(texts.values()))
            self._documents.append(
                _Document(
                    record=record,
                    position=position,
                    term_counts=Counter(tokens),
                    length=len(tokens),
                    field_terms={name: set(tokenize(text)) for name, text in texts.items()},
                )
            )
        logger.debug("search_index_built", documents=len(self._documents))
        return self

    # ------------------------------------------------------------------
    # Query
    # ------------------------------------------------------------------

    def _candidates(self, filters: Optional[RecordFilter]) -> list[_Document]:
        if filters is None or filters.is_empty:
            return list(self._documents)
        return [d for d in self._documents if filters.matches(d.record)]

    def _bm25(self, documents: list[_Document], terms: list[str]) -> list[float]:
        n = len(documents)
        avg_length = sum(d.length for d in documents) / n
        doc_freq = {t: sum(1 for d in documents if t in d.term_counts) for t in set(terms)}
        idf = {t: math.log((n - df + 0.5) / (df + 0.5) + 1.0) for t, df in doc_freq.items()}

        scores = []
        for d in documents:
            norm = 1.0 - self.b + self.b * (d.length / avg_length) if avg_length else 1.0
            score = 0.0
            for term in terms:
                tf = d.term_counts.get(term, 0)
                if tf:
                    score += idf[term] * (tf * (self.k1 + 1.0)) / (tf + self.k1 * norm)
            scores.append(score)
        return scores

    def scores(self, text: str, filters: Optional[RecordFilter] = None) -> dict[str, float]:
        """Raw BM25 score per record ID for the positive hits of ``text``."""
        return {hit.record.id: hit.score for hit in self.query(text, filters) if hit.record.id}

    def query(
        self,
        text: str,
        filters: Optional[RecordFilter] = None,
        scorer: Optional[PriorityScorer] = None,
        now: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> list[SearchHit]:
        """Rank indexed records against ``text``.

        Hits are ordered by score, then most recent ``updated_at``, then
        build order. Query text without any terms returns every filtered
        record in default priority order with a score of 0.0.
        """
        documents = self._candidates(filters)
        terms = tokenize(text or "")

        if not terms:
            scorer = scorer or PriorityScorer()
            ranked = scorer.rank([d.record for d in documents], now=now)
            hits = [SearchHit(record=s.record, score=0.0) for s in ranked]
        elif not documents:
            hits = []
        else:
            query_terms = set(terms)
            scored = [
                (d, score)
                for d, score in zip(documents, self._bm25(documents, terms))
                if score > 0
            ]
            scored.sort(key=lambda item: (-item[1], -item[0].record.updated_at.timestamp(), item[0].position))
            hits = [
                SearchHit(
                    record=d.record,
                    score=score,
                    matched_fields=[name for name, field_terms in d.field_terms.items() if field_terms & query_terms],
                )
                for d, score in scored
            ]

        logger.debug("search_query", terms=len(terms), candidates=len(documents), hits=len(hits))
        return hits[:limit] if limit is not None else hits
