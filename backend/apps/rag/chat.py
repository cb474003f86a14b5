"""
Grounded answer generation for RAG.

Handles prompt construction for context-only answers, plus the short
title helper used when a session gets its first document.
"""
import logging
from typing import Optional

from django.conf import settings

from apps.rag.llm_client import BaseLLMClient, chat_completion

logger = logging.getLogger(__name__)

# Default chat parameters
DEFAULT_TEMPERATURE = 0.2  # Low for factuality
DEFAULT_MAX_TOKENS = 2048

# Fixed answer when the context does not contain the answer
REFUSAL_ANSWER = "I don't know based on the provided document."

# Rendered in place of an empty context block
EMPTY_CONTEXT_PLACEHOLDER = "(No relevant context found)"

TITLE_INPUT_CHARS = 1000
TITLE_MAX_TOKENS = 20
FALLBACK_TITLE = "New Analysis"


ANSWER_PROMPT = """You are an expert document analyst and helpful AI assistant designed to extract insights from user documents.

Instructions:
1. Answer the question using ONLY the provided context below.
2. If the answer is not present in the context, say: "{refusal}"
3. Do not make up information or use outside knowledge.
4. Format your answer nicely using Markdown. Use bullet points for lists, bold text for key terms, and code blocks if relevant.
5. Be concise but thorough.

Context:
{context}

Question:
{question}
"""


TITLE_PROMPT = """Generate a very short, professional title (max 4-5 words) for the following text.
Return ONLY the title, no quotes or prefix.

Text:
{text}
"""


def build_prompt(question: str, context: str) -> str:
    """Build the grounded-answer prompt for a question and context block."""
    return ANSWER_PROMPT.format(
        refusal=REFUSAL_ANSWER,
        context=context.strip() or EMPTY_CONTEXT_PLACEHOLDER,
        question=question,
    )


def generate_answer(
    question: str,
    context: str,
    client: Optional[BaseLLMClient] = None,
    temperature: float = DEFAULT_TEMPERATURE,
    max_tokens: Optional[int] = None,
) -> str:
    """
    Answer a question using only the supplied context.

    The model is called even when the context is empty; its instructions
    make it reply with REFUSAL_ANSWER in that case.

    Args:
        question: The user's original question
        context: Retrieved chunk texts joined with blank lines
        client: LLM client to use instead of the configured one
        temperature: Sampling temperature
        max_tokens: Maximum response tokens

    Returns:
        Markdown-formatted answer

    Raises:
        GenerationError: If the LLM call fails (rate_limited set on 429)
    """
    if max_tokens is None:
        max_tokens = getattr(settings, 'ANSWER_MAX_TOKENS', DEFAULT_MAX_TOKENS)

    prompt = build_prompt(question, context)
    logger.debug(f"Answer prompt length: {len(prompt)} chars")

    answer = chat_completion(
        [{"role": "user", "content": prompt}],
        temperature=temperature,
        max_tokens=max_tokens,
        client=client,
    )
    return answer.strip()


def generate_title(text: str, client: Optional[BaseLLMClient] = None) -> str:
    """
    Generate a short title for a document.

    Never raises: any failure yields FALLBACK_TITLE.
    """
    try:
        content = chat_completion(
            [{"role": "user", "content": TITLE_PROMPT.format(text=text[:TITLE_INPUT_CHARS])}],
            max_tokens=TITLE_MAX_TOKENS,
            client=client,
        )
    except Exception as e:
        logger.warning(f"Failed to generate title: {e}")
        return FALLBACK_TITLE

    title = content.strip().strip('"').strip()
    return title or FALLBACK_TITLE
