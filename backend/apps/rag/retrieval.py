"""
Vector storage and session-scoped similarity search.

Chunks are stored with their session id, and every search is filtered on
metadata equality so one session's context never reaches another's answer.

Two stores share the same contract:
- PgVectorStore: Postgres + pgvector via the Django ORM (production)
- InMemoryVectorStore: list-backed substitute for tests and local runs

Both rank by cosine similarity, highest first, with ties kept in insertion
order.
"""
import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from django.conf import settings
from django.db import transaction
from pgvector.django import CosineDistance

from apps.indexing.models import DocumentChunk

logger = logging.getLogger(__name__)

# Number of chunks retrieved for question answering
DEFAULT_TOP_K = 15

# Metadata fields a search filter may constrain
FILTERABLE_FIELDS = ('session_id', 'source_name', 'source_type')


@dataclass
class ChunkRecord:
    """A chunk ready for storage: text, vector and metadata."""
    text: str
    embedding: List[float]
    metadata: Dict[str, object] = field(default_factory=dict)


@dataclass
class SearchResult:
    """A stored chunk matched by a search."""
    text: str
    score: float  # Cosine similarity, higher = more similar
    metadata: Dict[str, object] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "text": self.text,
            "score": round(self.score, 4),
            "metadata": self.metadata,
        }


def validate_filter(filter: Optional[Dict[str, object]]) -> Dict[str, object]:
    filter = dict(filter or {})
    unknown = set(filter) - set(FILTERABLE_FIELDS)
    if unknown:
        raise ValueError(f"Unsupported filter fields: {sorted(unknown)}")
    return filter


def cosine_similarity(a: List[float], b: List[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    if norm == 0:
        return 0.0
    return dot / norm


def build_context_block(results: List[SearchResult]) -> str:
    """Join retrieved chunk texts with blank lines, in ranking order."""
    return "\n\n".join(r.text for r in results)


class BaseVectorStore(ABC):
    """Abstract base class for chunk vector stores."""

    @abstractmethod
    def upsert(self, records: List[ChunkRecord]) -> None:
        """Persist records; all or nothing."""
        pass

    @abstractmethod
    def search(
        self,
        query_vector: List[float],
        k: int = DEFAULT_TOP_K,
        filter: Optional[Dict[str, object]] = None,
    ) -> List[SearchResult]:
        """
        Return at most k records matching every filter field, most similar first.

        Raises:
            ValueError: If the filter names an unknown metadata field
        """
        pass

    @abstractmethod
    def delete_session(self, session_id: str) -> int:
        """Delete every chunk owned by a session; returns the number removed."""
        pass


class InMemoryVectorStore(BaseVectorStore):
    """Simple list-backed vector store using cosine similarity."""

    def __init__(self):
        self._records: List[ChunkRecord] = []

    def __len__(self) -> int:
        return len(self._records)

    def upsert(self, records: List[ChunkRecord]) -> None:
        for record in records:
            if not record.embedding:
                raise ValueError("Chunk record is missing its embedding")
        self._records.extend(records)
        logger.info(f"Stored {len(records)} chunks in memory (total: {len(self._records)})")

    def search(
        self,
        query_vector: List[float],
        k: int = DEFAULT_TOP_K,
        filter: Optional[Dict[str, object]] = None,
    ) -> List[SearchResult]:
        filter = validate_filter(filter)

        matches = [
            (cosine_similarity(query_vector, record.embedding), position, record)
            for position, record in enumerate(self._records)
            if all(record.metadata.get(key) == value for key, value in filter.items())
        ]
        # Highest score first; earlier insertion wins ties
        matches.sort(key=lambda m: (-m[0], m[1]))

        return [
            SearchResult(text=record.text, score=score, metadata=dict(record.metadata))
            for score, _, record in matches[:k]
        ]

    def delete_session(self, session_id: str) -> int:
        before = len(self._records)
        self._records = [
            r for r in self._records if r.metadata.get('session_id') != session_id
        ]
        return before - len(self._records)


class PgVectorStore(BaseVectorStore):
    """Vector store backed by the doc_chunks table (pgvector, cosine distance)."""

    def upsert(self, records: List[ChunkRecord]) -> None:
        chunks = [
            DocumentChunk(
                session_id=record.metadata['session_id'],
                source_name=record.metadata.get('source_name', ''),
                source_type=record.metadata.get('source_type', ''),
                chunk_index=record.metadata.get('chunk_index', index),
                text=record.text,
                embedding=record.embedding,
            )
            for index, record in enumerate(records)
        ]

        with transaction.atomic():
            DocumentChunk.objects.bulk_create(chunks)

        logger.info(f"Stored {len(chunks)} chunks in pgvector")

    def search(
        self,
        query_vector: List[float],
        k: int = DEFAULT_TOP_K,
        filter: Optional[Dict[str, object]] = None,
    ) -> List[SearchResult]:
        filter = validate_filter(filter)

        rows = (
            DocumentChunk.objects
            .filter(**filter)
            .annotate(distance=CosineDistance('embedding', query_vector))
            .order_by('distance', 'id')
            .values('text', 'distance', 'session_id', 'source_name',
                    'source_type', 'chunk_index')[:k]
        )

        results = []
        for row in rows:
            distance = row.pop('distance')
            text = row.pop('text')
            results.append(SearchResult(text=text, score=1.0 - float(distance), metadata=row))

        logger.info(f"Retrieved {len(results)} chunks (requested k={k}, filter={filter})")
        return results

    def delete_session(self, session_id: str) -> int:
        deleted, _ = DocumentChunk.objects.filter(session_id=session_id).delete()
        logger.info(f"Deleted {deleted} chunks for session {session_id}")
        return deleted


# =============================================================================
# Store Factory
# =============================================================================

_store_instance: Optional[BaseVectorStore] = None


def get_vector_store() -> BaseVectorStore:
    """
    Get the process-wide vector store selected by VECTOR_STORE_BACKEND.

    - "pgvector" (default): Postgres doc_chunks table
    - "memory": Process-local store, contents lost on restart

    Returns:
        Shared vector store instance
    """
    global _store_instance

    if _store_instance is not None:
        return _store_instance

    backend = getattr(settings, 'VECTOR_STORE_BACKEND', 'pgvector').lower()

    if backend == 'memory':
        logger.info("Using in-memory vector store")
        _store_instance = InMemoryVectorStore()
    else:
        logger.info("Using pgvector store")
        _store_instance = PgVectorStore()

    return _store_instance


def reset_vector_store():
    """Reset the cached store instance. Useful for testing."""
    global _store_instance
    _store_instance = None
