"""
Query Rewriter module for RAG.

Turns a follow-up question into a standalone search query by resolving
pronouns and elliptical references against recent conversation turns.
The rewrite only steers retrieval; the answer is generated for the
original question.

Key features:
- No model call when there is no history
- Low temperature for near-deterministic output
- Errors are raised, and the query pipeline falls back to the original
  question
"""
import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional

from django.conf import settings

from apps.rag.llm_client import BaseLLMClient, chat_completion

logger = logging.getLogger(__name__)

REWRITE_TEMPERATURE = 0.1
REWRITE_MAX_TOKENS = 200

# Most recent turns considered when rewriting
MAX_HISTORY_TURNS = 6

VALID_ROLES = ("user", "assistant")


class QueryRewriterError(Exception):
    """Raised when query rewriting produces no usable query."""
    pass


@dataclass(frozen=True)
class ConversationTurn:
    """One message of the chat history."""
    role: str  # "user" or "assistant"
    content: str

    def __post_init__(self):
        if self.role not in VALID_ROLES:
            raise ValueError(f"Invalid role {self.role!r}, expected one of {VALID_ROLES}")

    @classmethod
    def from_dict(cls, data: dict) -> 'ConversationTurn':
        return cls(role=str(data.get("role", "")), content=str(data.get("content", "")))

    def to_dict(self) -> dict:
        return {"role": self.role, "content": self.content}


CONTEXTUALIZE_PROMPT = """Given a chat history and the latest user question which might reference context in the chat history, formulate a standalone question which can be understood without the chat history.

Rules:
1. REPLACE specific pronouns (it, this, he, she, they) with the actual nouns they refer to from the history.
2. If the user asks "how much?", "what is the total?", "who is he?", SPECIFY what they are asking about based on previous messages.
3. If the question is already standalone, return it exactly as is.
4. Do NOT answer the question.

Chat History:
{history}

Latest Question: {question}

Standalone Question:"""


def get_history_limit() -> int:
    return getattr(settings, 'REWRITE_HISTORY_TURNS', MAX_HISTORY_TURNS)


def recent_turns(history: Iterable[ConversationTurn], limit: Optional[int] = None) -> List[ConversationTurn]:
    """Keep the last `limit` turns, still in chronological order."""
    turns = list(history)
    limit = get_history_limit() if limit is None else limit
    return turns[-limit:] if limit > 0 else []


def format_history(history: Iterable[ConversationTurn]) -> str:
    return "\n".join(f"{turn.role}: {turn.content}" for turn in history)


def clean_rewrite(text: str) -> str:
    """Strip whitespace, a 'Standalone Question:' echo and wrapping quotes."""
    text = text.strip()
    prefix = "standalone question:"
    if text.lower().startswith(prefix):
        text = text[len(prefix):].strip()
    if len(text) >= 2 and text[0] == text[-1] and text[0] in ('"', "'"):
        text = text[1:-1].strip()
    return text


def rewrite_query(
    question: str,
    history: Iterable[ConversationTurn],
    client: Optional[BaseLLMClient] = None,
) -> str:
    """
    Rewrite a follow-up question into a standalone query.

    Args:
        question: The user's latest question
        history: Previous turns in chronological order
        client: LLM client to use instead of the configured one

    Returns:
        The standalone question, or `question` unchanged when there is no
        history

    Raises:
        GenerationError: If the LLM call fails
        QueryRewriterError: If the LLM returns nothing usable
    """
    turns = recent_turns(history)
    if not turns:
        return question

    prompt = CONTEXTUALIZE_PROMPT.format(
        history=format_history(turns),
        question=question,
    )

    content = chat_completion(
        [{"role": "user", "content": prompt}],
        temperature=REWRITE_TEMPERATURE,
        max_tokens=REWRITE_MAX_TOKENS,
        client=client,
    )

    rewritten = clean_rewrite(content)
    if not rewritten:
        raise QueryRewriterError("Empty rewrite from LLM")

    # Truncate for safe logging
    logger.info(f"Query rewritten: '{question[:100]}' -> '{rewritten[:100]}'")
    return rewritten
