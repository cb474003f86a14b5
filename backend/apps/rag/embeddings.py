"""
Embedding service for RAG queries.

Questions are embedded with the same model as document chunks, but in
query mode.
"""
import logging
import re
from typing import List, Optional

from apps.indexing.embedder import (
    BaseEmbeddingClient,
    EmbeddingTask,
    get_embedding_client,
)

logger = logging.getLogger(__name__)


class QueryValidationError(Exception):
    """Raised when query validation fails."""
    pass


def normalize_query(query: str) -> str:
    """
    Normalize a user query for embedding.

    - Strip leading/trailing whitespace
    - Collapse multiple whitespace to single space
    - Raise if empty

    Args:
        query: Raw user question

    Returns:
        Normalized query string

    Raises:
        QueryValidationError: If query is empty after normalization
    """
    if not query or not isinstance(query, str):
        raise QueryValidationError("Query cannot be empty")

    normalized = re.sub(r'\s+', ' ', query.strip())

    if not normalized:
        raise QueryValidationError("Query cannot be empty")

    return normalized


def embed_query(query: str, client: Optional[BaseEmbeddingClient] = None) -> List[float]:
    """
    Generate a query-mode embedding for a question.

    Raises:
        EmbeddingServiceError: If the embedding call fails
    """
    client = client or get_embedding_client()
    embedding = client.embed(query, EmbeddingTask.QUERY)
    logger.debug(f"Generated query embedding with {len(embedding)} dimensions")
    return embedding
