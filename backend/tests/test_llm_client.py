"""
Tests for the LLM provider clients and factory.
"""
from unittest.mock import patch, MagicMock

import httpx
import pytest

from apps.rag.llm_client import (
    GeminiClient,
    GenerationError,
    LLMMessage,
    OllamaClient,
    OpenAICompatibleClient,
    chat_completion,
    get_llm_client,
)


def mock_httpx_client(mock_client_class, json_data=None, side_effect=None):
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


def http_status_error(status, body=None):
    response = MagicMock()
    response.status_code = status
    response.json.return_value = body or {}
    return httpx.HTTPStatusError("error", request=MagicMock(), response=response)


@pytest.fixture
def gemini_settings(settings):
    settings.GEMINI_API_KEY = "test-key"
    settings.GEMINI_MODEL = "gemini-2.0-flash"
    return settings


# ============================================================================
# Gemini
# ============================================================================

class TestGeminiClient:
    """Tests for the Gemini chat client."""

    def test_requires_api_key(self, settings):
        """Should refuse to build without GEMINI_API_KEY."""
        settings.GEMINI_API_KEY = ""
        with pytest.raises(GenerationError):
            GeminiClient()

    @patch('apps.rag.llm_client.httpx.Client')
    def test_request_and_response(self, mock_client_class, gemini_settings):
        """Should map roles and system prompt, then join reply parts."""
        mock_client = mock_httpx_client(mock_client_class, {
            "candidates": [{"content": {"parts": [{"text": "Hello "}, {"text": "there"}]}}],
            "usageMetadata": {"promptTokenCount": 5, "candidatesTokenCount": 2, "totalTokenCount": 7},
        })

        response = GeminiClient().chat(
            [LLMMessage("system", "Be brief."), LLMMessage("user", "Hi"),
             LLMMessage("assistant", "Hello"), LLMMessage("user", "Again")],
            temperature=0.1,
            max_tokens=50,
        )

        assert response.content == "Hello there"
        assert response.usage["total_tokens"] == 7

        url = mock_client.post.call_args.args[0]
        body = mock_client.post.call_args.kwargs["json"]
        headers = mock_client.post.call_args.kwargs["headers"]
        assert url.endswith("/models/gemini-2.0-flash:generateContent")
        assert headers["x-goog-api-key"] == "test-key"
        assert body["systemInstruction"] == {"parts": [{"text": "Be brief."}]}
        assert [c["role"] for c in body["contents"]] == ["user", "model", "user"]
        assert body["generationConfig"]["maxOutputTokens"] == 50

    @patch('apps.rag.llm_client.httpx.Client')
    def test_rate_limit(self, mock_client_class, gemini_settings):
        """Should flag HTTP 429 as rate limited with the provider message."""
        mock_httpx_client(
            mock_client_class,
            side_effect=http_status_error(429, {"error": {"message": "Quota exceeded"}}),
        )

        with pytest.raises(GenerationError) as exc_info:
            GeminiClient().chat([LLMMessage("user", "Hi")])

        assert exc_info.value.rate_limited is True
        assert "Quota exceeded" in str(exc_info.value)

    @patch('apps.rag.llm_client.httpx.Client')
    def test_blocked_prompt(self, mock_client_class, gemini_settings):
        """Should surface the block reason for blocked prompts."""
        mock_httpx_client(mock_client_class, {"promptFeedback": {"blockReason": "SAFETY"}})

        with pytest.raises(GenerationError, match="SAFETY"):
            GeminiClient().chat([LLMMessage("user", "Hi")])

    @patch('apps.rag.llm_client.httpx.Client')
    def test_timeout(self, mock_client_class, gemini_settings):
        """Should wrap timeouts without the rate limit flag."""
        mock_httpx_client(mock_client_class, side_effect=httpx.TimeoutException("slow"))

        with pytest.raises(GenerationError) as exc_info:
            GeminiClient().chat([LLMMessage("user", "Hi")])

        assert exc_info.value.rate_limited is False

    @patch('apps.rag.llm_client.httpx.Client')
    def test_non_object_body(self, mock_client_class, gemini_settings):
        """Should raise GenerationError when the body is JSON but not an object."""
        mock_httpx_client(mock_client_class, ["not", "an", "object"])

        with pytest.raises(GenerationError, match="Unexpected response shape"):
            GeminiClient().chat([LLMMessage("user", "Hi")])


# ============================================================================
# OpenAI-compatible and Ollama
# ============================================================================

class TestOtherProviders:
    """Tests for the OpenAI-compatible and Ollama clients."""

    @patch('apps.rag.llm_client.httpx.Client')
    def test_openai(self, mock_client_class, settings):
        """Should send a bearer token and read the first choice."""
        settings.OPENAI_API_KEY = "sk-test"
        mock_client = mock_httpx_client(mock_client_class, {
            "choices": [{"message": {"content": "Answer"}}],
        })

        response = OpenAICompatibleClient().chat([LLMMessage("user", "Q")])

        assert response.content == "Answer"
        headers = mock_client.post.call_args.kwargs["headers"]
        assert headers["Authorization"] == "Bearer sk-test"

    @patch('apps.rag.llm_client.httpx.Client')
    def test_openai_server_error(self, mock_client_class, settings):
        """Should keep the status code of server errors."""
        settings.OPENAI_API_KEY = "sk-test"
        mock_httpx_client(mock_client_class, side_effect=http_status_error(500))

        with pytest.raises(GenerationError) as exc_info:
            OpenAICompatibleClient().chat([LLMMessage("user", "Q")])

        assert exc_info.value.status_code == 500
        assert exc_info.value.rate_limited is False

    @patch('apps.rag.llm_client.httpx.Client')
    def test_ollama(self, mock_client_class):
        """Should disable streaming and pass the token budget."""
        mock_client = mock_httpx_client(mock_client_class, {"message": {"content": "Local"}})

        response = OllamaClient().chat([LLMMessage("user", "Q")], max_tokens=10)

        assert response.content == "Local"
        body = mock_client.post.call_args.kwargs["json"]
        assert body["stream"] is False
        assert body["options"]["num_predict"] == 10

    @patch('apps.rag.llm_client.httpx.Client')
    def test_ollama_empty(self, mock_client_class):
        """Should raise GenerationError for an empty reply."""
        mock_httpx_client(mock_client_class, {"message": {"content": ""}})

        with pytest.raises(GenerationError):
            OllamaClient().chat([LLMMessage("user", "Q")])

    @pytest.mark.parametrize("body", [["a", "b"], "plain text", 42, None])
    @patch('apps.rag.llm_client.httpx.Client')
    def test_non_object_bodies_rejected(self, mock_client_class, body, settings):
        """Should turn list, string, number and null bodies into GenerationError."""
        settings.OPENAI_API_KEY = "sk-test"
        mock_httpx_client(mock_client_class, body)

        for client in (OpenAICompatibleClient(), OllamaClient()):
            with pytest.raises(GenerationError):
                client.chat([LLMMessage("user", "Q")])


# ============================================================================
# Factory and Convenience Function
# ============================================================================

class TestFactory:
    """Tests for client selection and chat_completion."""

    def test_provider_selection(self, settings):
        """Should build and cache the selected provider."""
        settings.LLM_PROVIDER = "ollama"
        client = get_llm_client()

        assert isinstance(client, OllamaClient)
        assert get_llm_client() is client

    def test_openai_provider(self, settings):
        """Should build the OpenAI-compatible client when selected."""
        settings.LLM_PROVIDER = "openai"
        settings.OPENAI_API_KEY = "sk-test"
        assert isinstance(get_llm_client(), OpenAICompatibleClient)

    def test_chat_completion_converts_messages(self):
        """Should convert message dicts into LLMMessages."""
        client = MagicMock()
        client.chat.return_value = MagicMock(content="done")

        assert chat_completion([{"role": "user", "content": "Hi"}], client=client) == "done"
        messages = client.chat.call_args.args[0]
        assert messages == [LLMMessage(role="user", content="Hi")]
