"""
RAG API views.

Provides endpoints for:
- Context retrieval (rewrite + search, no generation)
- Ask endpoint (full RAG with LLM)
- Title generation for new sessions
"""
import logging
import json

from django.http import JsonResponse
from django.views import View
from django.views.decorators.csrf import csrf_exempt
from django.utils.decorators import method_decorator

from apps.indexing.embedder import EmbeddingServiceError
from apps.indexing.views import service_error_response
from apps.rag.chat import generate_title
from apps.rag.embeddings import normalize_query, QueryValidationError
from apps.rag.llm_client import GenerationError
from apps.rag.pipeline import build_query_pipeline
from apps.rag.query_rewriter import ConversationTurn

logger = logging.getLogger(__name__)


class RequestError(Exception):
    """Raised for a malformed request body; rendered as a 400."""
    pass


def parse_body(request) -> dict:
    try:
        body = json.loads(request.body)
    except json.JSONDecodeError:
        raise RequestError("Invalid JSON")
    if not isinstance(body, dict):
        raise RequestError("Request body must be a JSON object")
    return body


def parse_history(raw_history) -> list:
    """Convert [{"role": ..., "content": ...}] into ConversationTurns."""
    if raw_history is None:
        return []
    if not isinstance(raw_history, list):
        raise RequestError("history must be a list of messages")
    try:
        return [ConversationTurn.from_dict(item) for item in raw_history]
    except (AttributeError, ValueError) as e:
        raise RequestError(f"Invalid history message: {e}")


def parse_question_request(request):
    """Shared validation for context/ask: (question, session_id, history)."""
    body = parse_body(request)

    try:
        question = normalize_query(body.get("question", ""))
    except QueryValidationError as e:
        raise RequestError(str(e))

    session_id = str(body.get("sessionId", "")).strip()
    if not session_id:
        raise RequestError("sessionId is required")

    return question, session_id, parse_history(body.get("history"))


@method_decorator(csrf_exempt, name='dispatch')
class ContextView(View):
    """
    POST /api/rag/context

    Retrieve the context block a question would be answered from.

    Request body:
        {
            "question": "How much does it cost?",
            "sessionId": "...",
            "history": [{"role": "user", "content": "..."}, ...]   // optional
        }

    Response:
        {"context": "chunk one\\n\\nchunk two"}  or  {"context": null}
    """

    def post(self, request):
        try:
            question, session_id, history = parse_question_request(request)
        except RequestError as e:
            return JsonResponse({"error": str(e)}, status=400)

        try:
            pipeline = build_query_pipeline()
            context = pipeline.retrieve_context(question, session_id, history)
        except EmbeddingServiceError as e:
            logger.error(f"Embedding failed: {e}")
            return service_error_response(e)

        if not context:
            return JsonResponse({"context": None})

        return JsonResponse({
            "context": context.text,
            "standaloneQuestion": context.standalone_question,
        })


@method_decorator(csrf_exempt, name='dispatch')
class AskView(View):
    """
    POST /api/rag/ask

    Full RAG pipeline: rewrite + retrieve + grounded generation.

    Request body: same as /api/rag/context

    Response:
        {
            "answer": "The document says...",
            "standaloneQuestion": "...",
            "contextFound": true,
            "chunkCount": 7,
            "messages": [
                {"role": "user", "content": "..."},
                {"role": "assistant", "content": "..."}
            ]
        }

    "messages" are the new turns for the caller to persist.
    """

    def post(self, request):
        try:
            question, session_id, history = parse_question_request(request)
        except RequestError as e:
            return JsonResponse({"error": str(e)}, status=400)

        try:
            pipeline = build_query_pipeline()
            result = pipeline.ask(question, session_id, history)
        except EmbeddingServiceError as e:
            logger.error(f"Embedding failed: {e}")
            return service_error_response(e)
        except GenerationError as e:
            logger.error(f"Answer generation failed: {e}")
            return service_error_response(e)

        logger.info(
            f"Answered question for session {session_id} "
            f"(context_found={result.context_found}, chunks={result.chunk_count})"
        )
        return JsonResponse(result.to_dict())


@method_decorator(csrf_exempt, name='dispatch')
class TitleView(View):
    """
    POST /api/rag/title

    Request body: {"text": "..."}
    Response: {"title": "Quarterly Sales Report"}

    Always succeeds; falls back to a fixed title when the LLM fails.
    """

    def post(self, request):
        try:
            body = parse_body(request)
        except RequestError as e:
            return JsonResponse({"error": str(e)}, status=400)

        text = body.get("text", "")
        if not isinstance(text, str) or not text.strip():
            return JsonResponse({"error": "text is required"}, status=400)

        return JsonResponse({"title": generate_title(text)})
