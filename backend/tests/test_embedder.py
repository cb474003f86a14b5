"""
Tests for the embedding clients (Gemini over httpx, Ollama over requests).
"""
from unittest.mock import patch, MagicMock

import httpx
import pytest
import requests

from apps.indexing.embedder import (
    GEMINI_BATCH_SIZE,
    EmbeddingServiceError,
    EmbeddingTask,
    GeminiEmbeddingClient,
    OllamaEmbeddingClient,
    get_embedding_client,
)


def mock_httpx_client(mock_client_class, json_data=None, side_effect=None):
    """Wire a patched httpx.Client class to return `json_data` from post()."""
    mock_response = MagicMock()
    mock_response.json.return_value = json_data
    mock_response.raise_for_status = MagicMock()

    mock_client = MagicMock()
    if side_effect is not None:
        mock_client.post.side_effect = side_effect
    else:
        mock_client.post.return_value = mock_response
    mock_client.__enter__ = MagicMock(return_value=mock_client)
    mock_client.__exit__ = MagicMock(return_value=False)
    mock_client_class.return_value = mock_client
    return mock_client


def http_status_error(status):
    response = MagicMock()
    response.status_code = status
    return httpx.HTTPStatusError("error", request=MagicMock(), response=response)


@pytest.fixture
def gemini_settings(settings):
    settings.GEMINI_API_KEY = "test-key"
    settings.EMBEDDING_MODEL = "gemini-embedding-001"
    settings.EMBEDDING_DIMENSIONS = 768
    return settings


# ============================================================================
# Gemini Client Tests
# ============================================================================

class TestGeminiEmbeddingClient:
    """Tests for the Gemini embedding client."""

    def test_requires_api_key(self, settings):
        """Should refuse to build without GEMINI_API_KEY."""
        settings.GEMINI_API_KEY = ""
        with pytest.raises(EmbeddingServiceError):
            GeminiEmbeddingClient()

    @patch('apps.indexing.embedder.httpx.Client')
    def test_query_embedding_request(self, mock_client_class, gemini_settings):
        """Should send a RETRIEVAL_QUERY request for query mode."""
        mock_client = mock_httpx_client(
            mock_client_class, {"embedding": {"values": [0.1, 0.2, 0.3]}}
        )

        vector = GeminiEmbeddingClient().embed("What is it?", EmbeddingTask.QUERY)

        assert vector == [0.1, 0.2, 0.3]
        url = mock_client.post.call_args.args[0]
        kwargs = mock_client.post.call_args.kwargs
        assert url.endswith("/models/gemini-embedding-001:embedContent")
        assert kwargs["headers"]["x-goog-api-key"] == "test-key"
        assert kwargs["json"]["taskType"] == "RETRIEVAL_QUERY"
        assert kwargs["json"]["outputDimensionality"] == 768
        assert kwargs["json"]["content"]["parts"][0]["text"] == "What is it?"

    @patch('apps.indexing.embedder.httpx.Client')
    def test_batch_uses_document_task_type(self, mock_client_class, gemini_settings):
        """Should embed batches as RETRIEVAL_DOCUMENT."""
        mock_client = mock_httpx_client(
            mock_client_class,
            {"embeddings": [{"values": [1.0]}, {"values": [2.0]}]},
        )

        vectors = GeminiEmbeddingClient().embed_batch(["a", "b"], EmbeddingTask.DOCUMENT)

        assert vectors == [[1.0], [2.0]]
        body = mock_client.post.call_args.kwargs["json"]
        assert mock_client.post.call_args.args[0].endswith(":batchEmbedContents")
        assert [r["taskType"] for r in body["requests"]] == ["RETRIEVAL_DOCUMENT"] * 2

    @patch('apps.indexing.embedder.httpx.Client')
    def test_batch_split_into_requests_of_100(self, mock_client_class, gemini_settings):
        """Should split large batches into requests of 100."""
        texts = [f"chunk {i}" for i in range(GEMINI_BATCH_SIZE + 5)]

        def respond(url, json, headers):
            response = MagicMock()
            response.json.return_value = {
                "embeddings": [{"values": [float(i)]} for i in range(len(json["requests"]))]
            }
            return response

        mock_client = mock_httpx_client(mock_client_class, side_effect=respond)

        vectors = GeminiEmbeddingClient().embed_batch(texts, EmbeddingTask.DOCUMENT)

        assert len(vectors) == len(texts)
        sizes = [len(c.kwargs["json"]["requests"]) for c in mock_client.post.call_args_list]
        assert sizes == [GEMINI_BATCH_SIZE, 5]

    @patch('apps.indexing.embedder.httpx.Client')
    def test_rate_limit_flagged(self, mock_client_class, gemini_settings):
        """Should flag HTTP 429 as rate limited."""
        mock_httpx_client(mock_client_class, side_effect=http_status_error(429))

        with pytest.raises(EmbeddingServiceError) as exc_info:
            GeminiEmbeddingClient().embed("text", EmbeddingTask.QUERY)

        assert exc_info.value.rate_limited is True
        assert exc_info.value.status_code == 429

    @patch('apps.indexing.embedder.httpx.Client')
    def test_server_error_not_rate_limited(self, mock_client_class, gemini_settings):
        """Should not flag other HTTP errors as rate limited."""
        mock_httpx_client(mock_client_class, side_effect=http_status_error(500))

        with pytest.raises(EmbeddingServiceError) as exc_info:
            GeminiEmbeddingClient().embed("text", EmbeddingTask.QUERY)

        assert exc_info.value.rate_limited is False

    @patch('apps.indexing.embedder.httpx.Client')
    def test_timeout(self, mock_client_class, gemini_settings):
        """Should wrap timeouts in EmbeddingServiceError."""
        mock_httpx_client(mock_client_class, side_effect=httpx.TimeoutException("slow"))

        with pytest.raises(EmbeddingServiceError):
            GeminiEmbeddingClient().embed("text", EmbeddingTask.QUERY)

    @patch('apps.indexing.embedder.httpx.Client')
    def test_empty_text_rejected_without_call(self, mock_client_class, gemini_settings):
        """Should reject blank text before any request."""
        with pytest.raises(EmbeddingServiceError):
            GeminiEmbeddingClient().embed("   ", EmbeddingTask.QUERY)

        mock_client_class.assert_not_called()

    @patch('apps.indexing.embedder.httpx.Client')
    def test_missing_values(self, mock_client_class, gemini_settings):
        """Should fail when the response has no vector values."""
        mock_httpx_client(mock_client_class, {"embedding": {}})

        with pytest.raises(EmbeddingServiceError):
            GeminiEmbeddingClient().embed("text", EmbeddingTask.DOCUMENT)


# ============================================================================
# Ollama Client Tests
# ============================================================================

class TestOllamaEmbeddingClient:
    """Tests for the Ollama embedding client."""

    @pytest.mark.parametrize("task,prefix", [
        (EmbeddingTask.DOCUMENT, "search_document: "),
        (EmbeddingTask.QUERY, "search_query: "),
    ])
    @patch('apps.indexing.embedder.requests.post')
    def test_task_prefix(self, mock_post, task, prefix):
        """Should prefix the prompt according to the task."""
        mock_post.return_value = MagicMock(status_code=200, json=lambda: {"embedding": [0.5] * 768})

        vector = OllamaEmbeddingClient().embed("hello", task)

        assert len(vector) == 768
        assert mock_post.call_args.kwargs["json"]["prompt"] == prefix + "hello"

    @patch('apps.indexing.embedder.requests.post')
    def test_non_200(self, mock_post):
        """Should flag a 429 from Ollama as rate limited."""
        mock_post.return_value = MagicMock(status_code=429, text="slow down")

        with pytest.raises(EmbeddingServiceError) as exc_info:
            OllamaEmbeddingClient().embed("hello", EmbeddingTask.QUERY)

        assert exc_info.value.rate_limited is True

    @patch('apps.indexing.embedder.requests.post')
    def test_connection_error(self, mock_post):
        """Should wrap connection errors in EmbeddingServiceError."""
        mock_post.side_effect = requests.exceptions.ConnectionError()

        with pytest.raises(EmbeddingServiceError):
            OllamaEmbeddingClient().embed("hello", EmbeddingTask.QUERY)


# ============================================================================
# Factory
# ============================================================================

class TestEmbeddingClientFactory:
    """Tests for get_embedding_client."""

    def test_default_is_gemini(self, gemini_settings):
        """Should build the Gemini client by default."""
        gemini_settings.EMBEDDING_PROVIDER = "gemini"
        assert isinstance(get_embedding_client(), GeminiEmbeddingClient)

    def test_ollama(self, settings):
        """Should build the Ollama client when selected."""
        settings.EMBEDDING_PROVIDER = "ollama"
        assert isinstance(get_embedding_client(), OllamaEmbeddingClient)
