"""
Embedding generation for document chunks and questions.

Two providers are supported:
- Gemini (default): gemini-embedding-001 through the Generative Language API
- Ollama: nomic-embed-text on a local Ollama server

Hosted embedding models produce different vectors depending on the intended
use, so every call is tagged with an EmbeddingTask: DOCUMENT at ingestion,
QUERY when embedding a question. Mixing the two degrades retrieval.

Failures are never retried here; they surface as EmbeddingServiceError.
"""
import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import List, Optional

import httpx
import requests
from django.conf import settings

logger = logging.getLogger(__name__)

# Embedding model configuration
GEMINI_EMBEDDING_MODEL = "gemini-embedding-001"
OLLAMA_EMBEDDING_MODEL = "nomic-embed-text"
EMBEDDING_DIMENSIONS = 768

# batchEmbedContents accepts at most 100 requests per call
GEMINI_BATCH_SIZE = 100


class EmbeddingTask(str, Enum):
    """Intended use of an embedding."""
    DOCUMENT = "document"
    QUERY = "query"


class EmbeddingServiceError(Exception):
    """Raised when embedding generation fails."""

    def __init__(self, message: str, rate_limited: bool = False,
                 status_code: Optional[int] = None):
        super().__init__(message)
        self.rate_limited = rate_limited
        self.status_code = status_code


def get_embedding_dimensions() -> int:
    return int(getattr(settings, 'EMBEDDING_DIMENSIONS', EMBEDDING_DIMENSIONS))


def _check_text(text: str) -> None:
    if not text or not text.strip():
        raise EmbeddingServiceError("Cannot generate embedding for empty text")


class BaseEmbeddingClient(ABC):
    """Abstract base class for embedding providers."""

    @abstractmethod
    def embed(self, text: str, task: EmbeddingTask) -> List[float]:
        """
        Embed a single text.

        Raises:
            EmbeddingServiceError: If the provider call fails
        """
        pass

    def embed_batch(self, texts: List[str], task: EmbeddingTask) -> List[List[float]]:
        """Embed several texts, preserving order. Providers may override."""
        return [self.embed(text, task) for text in texts]

    @property
    @abstractmethod
    def model_name(self) -> str:
        pass


class GeminiEmbeddingClient(BaseEmbeddingClient):
    """Embedding client for the Gemini API."""

    TASK_TYPES = {
        EmbeddingTask.DOCUMENT: "RETRIEVAL_DOCUMENT",
        EmbeddingTask.QUERY: "RETRIEVAL_QUERY",
    }

    def __init__(self):
        self.api_key = getattr(settings, 'GEMINI_API_KEY', '')
        self.model = getattr(settings, 'EMBEDDING_MODEL', GEMINI_EMBEDDING_MODEL)
        self.timeout = getattr(settings, 'EMBEDDING_TIMEOUT', 120)
        self.base_url = getattr(
            settings, 'GEMINI_BASE_URL',
            'https://generativelanguage.googleapis.com/v1beta'
        )
        self.dimensions = get_embedding_dimensions()

        if not self.api_key:
            raise EmbeddingServiceError("GEMINI_API_KEY not configured")

    @property
    def model_name(self) -> str:
        return self.model

    def _request(self, text: str, task: EmbeddingTask) -> dict:
        return {
            "model": f"models/{self.model}",
            "content": {"parts": [{"text": text}]},
            "taskType": self.TASK_TYPES[task],
            "outputDimensionality": self.dimensions,
        }

    def _post(self, method: str, body: dict) -> dict:
        url = f"{self.base_url}/models/{self.model}:{method}"
        try:
            with httpx.Client(timeout=float(self.timeout)) as client:
                response = client.post(
                    url,
                    json=body,
                    headers={"x-goog-api-key": self.api_key},
                )
                response.raise_for_status()
                return response.json()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.error(f"Gemini embedding HTTP error: {status}")
            raise EmbeddingServiceError(
                f"Embedding service error: {status}",
                rate_limited=status == 429,
                status_code=status,
            )
        except httpx.TimeoutException:
            logger.error("Gemini embedding request timed out")
            raise EmbeddingServiceError("Embedding service timed out")
        except httpx.RequestError as e:
            logger.error(f"Gemini embedding connection error: {e}")
            raise EmbeddingServiceError("Could not connect to embedding service")
        except ValueError:
            raise EmbeddingServiceError("Invalid response from embedding service")

    def embed(self, text: str, task: EmbeddingTask) -> List[float]:
        _check_text(text)
        data = self._post("embedContent", self._request(text, task))

        values = (data.get("embedding") or {}).get("values")
        if not values:
            raise EmbeddingServiceError("No embedding in response")
        return values

    def embed_batch(self, texts: List[str], task: EmbeddingTask) -> List[List[float]]:
        for text in texts:
            _check_text(text)

        vectors: List[List[float]] = []
        for start in range(0, len(texts), GEMINI_BATCH_SIZE):
            batch = texts[start:start + GEMINI_BATCH_SIZE]
            data = self._post(
                "batchEmbedContents",
                {"requests": [self._request(text, task) for text in batch]},
            )
            embeddings = data.get("embeddings") or []
            if len(embeddings) != len(batch):
                raise EmbeddingServiceError(
                    f"Expected {len(batch)} embeddings, got {len(embeddings)}"
                )
            vectors.extend(e.get("values") or [] for e in embeddings)

        if any(not v for v in vectors):
            raise EmbeddingServiceError("Empty embedding in batch response")

        logger.info(f"Generated {len(vectors)} {task.value} embeddings")
        return vectors


class OllamaEmbeddingClient(BaseEmbeddingClient):
    """
    Embedding client for a local Ollama server.

    nomic-embed-text expects the task as a text prefix rather than a
    request parameter.
    """

    TASK_PREFIXES = {
        EmbeddingTask.DOCUMENT: "search_document: ",
        EmbeddingTask.QUERY: "search_query: ",
    }

    def __init__(self):
        self.base_url = getattr(settings, 'OLLAMA_BASE_URL', 'http://ollama:11434')
        self.model = getattr(settings, 'OLLAMA_EMBED_MODEL', OLLAMA_EMBEDDING_MODEL)
        self.timeout = getattr(settings, 'OLLAMA_EMBED_TIMEOUT', 120)

    @property
    def model_name(self) -> str:
        return self.model

    def embed(self, text: str, task: EmbeddingTask) -> List[float]:
        _check_text(text)

        url = f"{self.base_url}/api/embeddings"

        try:
            response = requests.post(
                url,
                json={
                    "model": self.model,
                    "prompt": self.TASK_PREFIXES[task] + text,
                },
                timeout=self.timeout,
            )

            if response.status_code != 200:
                error_detail = response.text[:500] if response.text else "No details"
                raise EmbeddingServiceError(
                    f"Ollama API returned {response.status_code}: {error_detail}",
                    rate_limited=response.status_code == 429,
                    status_code=response.status_code,
                )

            data = response.json()
            embedding = data.get("embedding")

            if not embedding:
                raise EmbeddingServiceError("No embedding in response")

            if len(embedding) != get_embedding_dimensions():
                logger.warning(
                    f"Expected {get_embedding_dimensions()} dimensions, got {len(embedding)}"
                )

            return embedding

        except requests.exceptions.Timeout:
            raise EmbeddingServiceError("Ollama API timed out")
        except requests.exceptions.ConnectionError:
            raise EmbeddingServiceError(f"Cannot connect to Ollama at {self.base_url}")
        except requests.exceptions.RequestException as e:
            raise EmbeddingServiceError(f"Request failed: {e}")
        except ValueError:
            raise EmbeddingServiceError("Invalid response from Ollama")


def get_embedding_client() -> BaseEmbeddingClient:
    """
    Build the embedding client selected by EMBEDDING_PROVIDER.

    - "gemini" (default): Gemini API
    - "ollama": Local Ollama server
    """
    provider = getattr(settings, 'EMBEDDING_PROVIDER', 'gemini').lower()

    if provider == 'ollama':
        logger.info("Using Ollama for embeddings")
        return OllamaEmbeddingClient()

    logger.info("Using Gemini API for embeddings")
    return GeminiEmbeddingClient()
