"""
Ingestion pipeline - turns one uploaded document into stored chunks.

Each call is one unit of work that moves through explicit stages:

    RECEIVED -> EXTRACTED -> LIMIT_CHECKED -> CHUNKED -> EMBEDDED_AND_STORED -> DONE

with ERROR reachable from any stage. Embedding is only allowed from the
CHUNKED stage, and CHUNKED is only reachable through LIMIT_CHECKED, so an
oversized document can never spend embedding calls.

The embedding client and vector store are passed in by the caller; the
pipeline holds no other state between calls.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from apps.indexing.chunker import TextChunk, chunk_text
from apps.indexing.embedder import (
    BaseEmbeddingClient,
    EmbeddingServiceError,
    EmbeddingTask,
    get_embedding_client,
)
from apps.indexing.extractor import (
    DocumentMeta,
    EmptyExtraction,
    TextMeta,
    count_words,
    extract_document,
)
from apps.indexing.limits import IngestionLimits, check_limits, check_pasted_text
from apps.indexing.models import SourceType
from apps.rag.retrieval import BaseVectorStore, ChunkRecord, get_vector_store

logger = logging.getLogger(__name__)

# Characters of extracted text returned to the caller (title generation, previews)
SNIPPET_LENGTH = 1000

PASTED_TEXT_NAME = "Pasted Text"


class IngestionStage(str, Enum):
    RECEIVED = "RECEIVED"
    EXTRACTED = "EXTRACTED"
    LIMIT_CHECKED = "LIMIT_CHECKED"
    CHUNKED = "CHUNKED"
    EMBEDDED_AND_STORED = "EMBEDDED_AND_STORED"
    DONE = "DONE"
    ERROR = "ERROR"


TRANSITIONS = {
    IngestionStage.RECEIVED: {IngestionStage.EXTRACTED},
    IngestionStage.EXTRACTED: {IngestionStage.LIMIT_CHECKED},
    IngestionStage.LIMIT_CHECKED: {IngestionStage.CHUNKED},
    IngestionStage.CHUNKED: {IngestionStage.EMBEDDED_AND_STORED},
    IngestionStage.EMBEDDED_AND_STORED: {IngestionStage.DONE},
    IngestionStage.DONE: set(),
    IngestionStage.ERROR: set(),
}


class InvalidTransition(Exception):
    """Raised when an ingestion run skips or repeats a stage."""
    pass


@dataclass
class IngestionRun:
    """Stage tracker for a single ingestion call."""
    session_id: str
    source_name: str
    source_type: str
    stage: IngestionStage = IngestionStage.RECEIVED
    error: Optional[Exception] = None

    def advance(self, stage: IngestionStage) -> None:
        if stage not in TRANSITIONS[self.stage]:
            raise InvalidTransition(f"Cannot move from {self.stage.value} to {stage.value}")
        logger.debug(f"Ingestion of {self.source_name}: {self.stage.value} -> {stage.value}")
        self.stage = stage

    def fail(self, error: Exception) -> None:
        logger.error(
            f"Ingestion of {self.source_name} for session {self.session_id} "
            f"failed at {self.stage.value}: {error}"
        )
        self.stage = IngestionStage.ERROR
        self.error = error


@dataclass
class IngestionResult:
    """What an ingestion hands back to the caller."""
    chunks: int
    text_snippet: str
    metadata: DocumentMeta
    source_name: str
    source_type: str
    stage: IngestionStage = IngestionStage.DONE

    def to_dict(self) -> dict:
        return {
            "chunks": self.chunks,
            "textSnippet": self.text_snippet,
            "metadata": self.metadata.to_dict(),
            "sourceName": self.source_name,
            "sourceType": self.source_type,
        }


class IngestionPipeline:
    """
    Extract -> limit check -> chunk -> embed -> store.

    Args:
        embedder: Embedding client, called in DOCUMENT mode
        store: Vector store receiving the chunk records
        limits: Size limits checked before any embedding call
    """

    def __init__(
        self,
        embedder: BaseEmbeddingClient,
        store: BaseVectorStore,
        limits: Optional[IngestionLimits] = None,
    ):
        self.embedder = embedder
        self.store = store
        self.limits = limits or IngestionLimits()

    def ingest_document(
        self,
        buffer: bytes,
        declared_format: str,
        session_id: str,
        file_name: str,
    ) -> IngestionResult:
        """
        Ingest an uploaded file into a session.

        Raises:
            UnsupportedFormat, EmptyExtraction, ExtractionError: From extraction
            LimitExceeded: If the document is over its page/word limit
            EmbeddingServiceError: If embedding fails (nothing is stored)
        """
        run = self._start(session_id, file_name, declared_format)

        try:
            extraction = extract_document(buffer, declared_format)
            run.source_type = extraction.source_format
            run.advance(IngestionStage.EXTRACTED)

            check_limits(extraction.metadata, self.limits)
            run.advance(IngestionStage.LIMIT_CHECKED)

            chunks = self._chunk(run, extraction.text)
            stored = self._embed_and_store(run, chunks)
            run.advance(IngestionStage.DONE)
        except Exception as e:
            run.fail(e)
            raise

        return IngestionResult(
            chunks=stored,
            text_snippet=extraction.text[:SNIPPET_LENGTH],
            metadata=extraction.metadata,
            source_name=file_name,
            source_type=run.source_type,
            stage=run.stage,
        )

    def ingest_text(self, text: str, session_id: str) -> IngestionResult:
        """
        Ingest pasted text into a session.

        The character cap is checked before anything else since pasted text
        has no extraction step.

        Raises:
            EmptyExtraction: If the text is empty or whitespace
            LimitExceeded: If the text is over the character cap
            EmbeddingServiceError: If embedding fails (nothing is stored)
        """
        run = self._start(session_id, PASTED_TEXT_NAME, SourceType.TEXT.value)

        try:
            check_pasted_text(text or "", self.limits)
            if not text or not text.strip():
                raise EmptyExtraction(SourceType.TEXT.value)

            metadata = TextMeta(word_count=count_words(text), char_count=len(text))
            run.advance(IngestionStage.EXTRACTED)
            run.advance(IngestionStage.LIMIT_CHECKED)

            chunks = self._chunk(run, text)
            stored = self._embed_and_store(run, chunks)
            run.advance(IngestionStage.DONE)
        except Exception as e:
            run.fail(e)
            raise

        return IngestionResult(
            chunks=stored,
            text_snippet=text[:SNIPPET_LENGTH],
            metadata=metadata,
            source_name=PASTED_TEXT_NAME,
            source_type=SourceType.TEXT.value,
            stage=run.stage,
        )

    def _start(self, session_id: str, source_name: str, source_type: str) -> IngestionRun:
        if not session_id:
            raise ValueError("session_id is required for ingestion")
        logger.info(f"Ingesting {source_name} ({source_type}) into session {session_id}")
        return IngestionRun(
            session_id=session_id,
            source_name=source_name,
            source_type=(source_type or '').lower().lstrip('.'),
        )

    def _chunk(self, run: IngestionRun, text: str) -> List[TextChunk]:
        chunks = chunk_text(text)
        if not chunks:
            raise EmptyExtraction(run.source_type)

        logger.info(f"Created {len(chunks)} chunks from {run.source_name}")
        for chunk in chunks[:3]:
            preview = chunk.text[:100].replace('\n', ' ')
            logger.debug(f"  Chunk {chunk.index}: {preview}...")

        run.advance(IngestionStage.CHUNKED)
        return chunks

    def _embed_and_store(self, run: IngestionRun, chunks: List[TextChunk]) -> int:
        if run.stage is not IngestionStage.CHUNKED:
            raise InvalidTransition(f"Cannot embed from stage {run.stage.value}")

        vectors = self.embedder.embed_batch(
            [chunk.text for chunk in chunks], EmbeddingTask.DOCUMENT
        )
        if len(vectors) != len(chunks):
            raise EmbeddingServiceError(
                f"Expected {len(chunks)} embeddings, got {len(vectors)}"
            )

        records = [
            ChunkRecord(
                text=chunk.text,
                embedding=vector,
                metadata={
                    "session_id": run.session_id,
                    "source_name": run.source_name,
                    "source_type": run.source_type,
                    "chunk_index": chunk.index,
                },
            )
            for chunk, vector in zip(chunks, vectors)
        ]

        self.store.upsert(records)
        run.advance(IngestionStage.EMBEDDED_AND_STORED)

        logger.info(f"Stored {len(records)} chunks for session {run.session_id}")
        return len(records)


def build_ingestion_pipeline() -> IngestionPipeline:
    """Wire the pipeline from the configured embedding client, store and limits."""
    return IngestionPipeline(
        embedder=get_embedding_client(),
        store=get_vector_store(),
        limits=IngestionLimits.from_settings(),
    )
