"""
Ingestion views.

Provides endpoints for:
- POST /api/ingest/upload - Extract, chunk and embed an uploaded file into a session
- POST /api/ingest/text - Same for pasted text

Session ownership is checked upstream; these views only receive the id.
"""
import json
import logging
from pathlib import Path

from django.conf import settings
from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_http_methods

from apps.indexing.embedder import EmbeddingServiceError
from apps.indexing.extractor import EmptyExtraction, ExtractionError, UnsupportedFormat
from apps.indexing.limits import LimitExceeded
from apps.indexing.pipeline import build_ingestion_pipeline
from apps.rag.chat import generate_title

logger = logging.getLogger(__name__)

# Seconds clients are told to wait after an upstream 429
RETRY_AFTER_SECONDS = 30

# File names that say nothing about the content get an LLM title instead
GENERIC_NAME_MARKERS = ('document', 'resume')
MIN_DESCRIPTIVE_NAME_LENGTH = 5


def get_extension(filename: str) -> str:
    """Extract file extension from filename."""
    return Path(filename).suffix.lower()


def validate_extension(filename: str) -> bool:
    """Check if file extension is allowed."""
    return get_extension(filename) in settings.ALLOWED_EXTENSIONS


def needs_generated_title(filename: str) -> bool:
    """True when a file name is too generic to serve as a session title."""
    stem = Path(filename).stem.lower()
    if len(stem) < MIN_DESCRIPTIVE_NAME_LENGTH:
        return True
    return any(marker in stem for marker in GENERIC_NAME_MARKERS)


def extraction_error_response(e: Exception) -> JsonResponse:
    """Map document errors (caller's fault) to a 400 with a machine-readable code."""
    if isinstance(e, LimitExceeded):
        return JsonResponse(
            {'error': str(e), 'code': 'LIMIT_EXCEEDED', **e.to_dict()},
            status=400
        )
    if isinstance(e, UnsupportedFormat):
        code = 'UNSUPPORTED_FORMAT'
    elif isinstance(e, EmptyExtraction):
        code = 'EMPTY_EXTRACTION'
    else:
        code = 'EXTRACTION_FAILED'
    return JsonResponse({'error': str(e), 'code': code}, status=400)


def service_error_response(e: Exception) -> JsonResponse:
    """
    Map an embedding/LLM provider failure to 429 (rate limited) or 503.

    Nothing is retried here; the client decides whether to try again.
    """
    if getattr(e, 'rate_limited', False):
        response = JsonResponse(
            {
                'error': 'The AI service is busy. Please try again shortly.',
                'code': 'RATE_LIMITED',
                'retryable': True,
            },
            status=429
        )
        response['Retry-After'] = str(RETRY_AFTER_SECONDS)
        return response

    return JsonResponse(
        {'error': 'AI service temporarily unavailable', 'code': 'SERVICE_UNAVAILABLE'},
        status=503
    )


@csrf_exempt
@require_http_methods(["POST"])
def upload_document(request):
    """
    Ingest an uploaded document into a session.

    POST /api/ingest/upload

    Accepts multipart/form-data with a 'file' field and a 'sessionId' field.

    Returns:
        {
            "chunks": 12,
            "textSnippet": "...",
            "metadata": {"pageCount": 3},
            "sourceName": "report.pdf",
            "sourceType": "pdf",
            "title": "Quarterly Sales Report"   // only for generic file names
        }
    """
    session_id = request.POST.get('sessionId', '').strip()
    if not session_id:
        return JsonResponse(
            {'error': 'sessionId is required', 'code': 'MISSING_SESSION'},
            status=400
        )

    if 'file' not in request.FILES:
        return JsonResponse(
            {'error': 'No file provided', 'code': 'MISSING_FILE'},
            status=400
        )

    uploaded_file = request.FILES['file']
    filename = uploaded_file.name
    size_bytes = uploaded_file.size

    logger.info(f"Upload request: {filename}, {size_bytes} bytes for session {session_id}")

    if size_bytes > settings.MAX_UPLOAD_SIZE:
        max_mb = settings.MAX_UPLOAD_SIZE // (1024 * 1024)
        return JsonResponse(
            {
                'error': f'File too large. Maximum size is {max_mb}MB',
                'code': 'FILE_TOO_LARGE',
            },
            status=400
        )

    if not validate_extension(filename):
        return JsonResponse(
            {
                'error': f'Invalid file extension. Allowed: {", ".join(settings.ALLOWED_EXTENSIONS)}',
                'code': 'INVALID_FILE_TYPE',
            },
            status=400
        )

    try:
        pipeline = build_ingestion_pipeline()
        result = pipeline.ingest_document(
            buffer=uploaded_file.read(),
            declared_format=get_extension(filename),
            session_id=session_id,
            file_name=filename,
        )
    except (ExtractionError, LimitExceeded) as e:
        return extraction_error_response(e)
    except EmbeddingServiceError as e:
        return service_error_response(e)

    data = result.to_dict()
    if needs_generated_title(filename):
        data['title'] = generate_title(result.text_snippet)

    return JsonResponse(data, status=201)


@csrf_exempt
@require_http_methods(["POST"])
def ingest_text(request):
    """
    Ingest pasted text into a session.

    POST /api/ingest/text

    Request body:
        {"text": "...", "sessionId": "..."}

    Returns the ingestion result plus a generated "title".
    """
    try:
        body = json.loads(request.body)
    except json.JSONDecodeError:
        return JsonResponse({'error': 'Invalid JSON'}, status=400)

    text = body.get('text', '')
    session_id = str(body.get('sessionId', '')).strip()

    if not isinstance(text, str):
        return JsonResponse({'error': 'text must be a string'}, status=400)
    if not session_id:
        return JsonResponse(
            {'error': 'sessionId is required', 'code': 'MISSING_SESSION'},
            status=400
        )

    try:
        pipeline = build_ingestion_pipeline()
        result = pipeline.ingest_text(text, session_id)
    except (ExtractionError, LimitExceeded) as e:
        return extraction_error_response(e)
    except EmbeddingServiceError as e:
        return service_error_response(e)

    data = result.to_dict()
    data['title'] = generate_title(result.text_snippet)
    return JsonResponse(data, status=201)
