"""
Query pipeline - one question in, grounded answer out.

    rewrite (history-aware) -> embed (query mode) -> session-filtered search
    -> context assembly -> grounded answer

The rewritten query only steers retrieval: the answer is generated for the
user's original question. A failed rewrite falls back to the original
question instead of failing the request.

New chat turns are returned to the caller for persistence; nothing here
writes chat history.
"""
import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Tuple, Union

from django.conf import settings

from apps.indexing.embedder import BaseEmbeddingClient, get_embedding_client
from apps.rag.chat import generate_answer
from apps.rag.embeddings import embed_query
from apps.rag.llm_client import BaseLLMClient
from apps.rag.query_rewriter import (
    ConversationTurn,
    recent_turns,
    rewrite_query,
)
from apps.rag.retrieval import (
    DEFAULT_TOP_K,
    BaseVectorStore,
    SearchResult,
    build_context_block,
    get_vector_store,
)

logger = logging.getLogger(__name__)


class NoContextFound:
    """
    Sentinel: retrieval found no chunks for the session.

    Not an error. It is falsy so callers can write `if not context:`.
    """

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "NO_CONTEXT"


NO_CONTEXT = NoContextFound()


@dataclass
class RetrievedContext:
    """Context block assembled from a session's most similar chunks."""
    text: str
    results: List[SearchResult]
    standalone_question: str

    def __bool__(self) -> bool:
        return bool(self.results)


@dataclass
class AnswerResult:
    """Answer plus what the caller needs to persist the exchange."""
    answer: str
    question: str
    standalone_question: str
    context_found: bool
    chunk_count: int
    new_turns: List[ConversationTurn] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "answer": self.answer,
            "standaloneQuestion": self.standalone_question,
            "contextFound": self.context_found,
            "chunkCount": self.chunk_count,
            "messages": [turn.to_dict() for turn in self.new_turns],
        }


class QueryPipeline:
    """
    Answers questions against one session's chunks.

    Args:
        embedder: Embedding client, called in QUERY mode
        store: Vector store searched with a session_id filter
        llm: Chat client for rewriting and answering (configured one if None)
        top_k: Chunks retrieved per question
    """

    def __init__(
        self,
        embedder: BaseEmbeddingClient,
        store: BaseVectorStore,
        llm: Optional[BaseLLMClient] = None,
        top_k: int = DEFAULT_TOP_K,
    ):
        self.embedder = embedder
        self.store = store
        self.llm = llm
        self.top_k = top_k

    def standalone_question(self, question: str, history: List[ConversationTurn]) -> str:
        """Rewrite the question, falling back to it unchanged on any rewrite failure."""
        try:
            return rewrite_query(question, history, client=self.llm)
        except Exception as e:
            logger.warning(f"Query rewrite failed, using original question: {e}")
            return question

    def _search(
        self,
        question: str,
        session_id: str,
        history: Iterable[ConversationTurn],
    ) -> Tuple[str, List[SearchResult]]:
        """Rewrite, embed and search; returns (search query, results)."""
        if not session_id:
            raise ValueError("session_id is required for retrieval")

        turns = recent_turns(history)
        search_query = self.standalone_question(question, turns)

        query_vector = embed_query(search_query, client=self.embedder)
        results = self.store.search(
            query_vector,
            k=self.top_k,
            filter={"session_id": session_id},
        )

        logger.info(
            f"Retrieved {len(results)} chunks for session {session_id} "
            f"(query='{search_query[:100]}')"
        )
        return search_query, results

    def retrieve_context(
        self,
        question: str,
        session_id: str,
        history: Iterable[ConversationTurn] = (),
    ) -> Union[RetrievedContext, NoContextFound]:
        """
        Retrieve the context block for a question.

        Returns:
            RetrievedContext, or NO_CONTEXT when the session has no matching chunks

        Raises:
            EmbeddingServiceError: If the question cannot be embedded
        """
        search_query, results = self._search(question, session_id, history)
        if not results:
            return NO_CONTEXT

        return RetrievedContext(
            text=build_context_block(results),
            results=results,
            standalone_question=search_query,
        )

    def ask(
        self,
        question: str,
        session_id: str,
        history: Iterable[ConversationTurn] = (),
    ) -> AnswerResult:
        """
        Full RAG cycle for one question.

        The answer generator is called even when no context was found; its
        instructions produce the refusal sentence in that case.

        Raises:
            EmbeddingServiceError: If the question cannot be embedded
            GenerationError: If answer generation fails
        """
        standalone, results = self._search(question, session_id, history)

        if results:
            context_text = build_context_block(results)
        else:
            logger.info(f"No context for session {session_id}, generating anyway")
            context_text = ""

        answer = generate_answer(question, context_text, client=self.llm)

        return AnswerResult(
            answer=answer,
            question=question,
            standalone_question=standalone,
            context_found=bool(results),
            chunk_count=len(results),
            new_turns=[
                ConversationTurn(role="user", content=question),
                ConversationTurn(role="assistant", content=answer),
            ],
        )


def build_query_pipeline() -> QueryPipeline:
    """Wire the pipeline from the configured embedding client and store."""
    return QueryPipeline(
        embedder=get_embedding_client(),
        store=get_vector_store(),
        top_k=getattr(settings, 'RAG_TOP_K', DEFAULT_TOP_K),
    )
