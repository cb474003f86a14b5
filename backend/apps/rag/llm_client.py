"""
LLM Client Abstraction Layer.

Provides a unified interface for chat calls that can switch between:
- Gemini API (Google's cloud API, default)
- OpenAI-compatible APIs
- Ollama (local inference)

Every provider failure is raised as GenerationError. Quota and rate-limit
responses (HTTP 429) set `rate_limited` so callers can tell the user to try
again shortly instead of showing a generic failure. Nothing is retried here.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Dict, Any, Optional

import httpx
from django.conf import settings

logger = logging.getLogger(__name__)


@dataclass
class LLMMessage:
    """A message in a chat conversation."""
    role: str  # "system", "user", or "assistant"
    content: str


@dataclass
class LLMResponse:
    """Response from an LLM call."""
    content: str
    model: str
    usage: Optional[Dict[str, int]] = None  # token usage if available


class GenerationError(Exception):
    """Raised when an LLM call fails."""

    def __init__(self, message: str, rate_limited: bool = False,
                 status_code: Optional[int] = None):
        super().__init__(message)
        self.rate_limited = rate_limited
        self.status_code = status_code


def _error_detail(response) -> str:
    """Pull the provider's error message out of an error body, if any."""
    try:
        error = response.json().get("error", "")
    except Exception:
        return ""
    if isinstance(error, dict):
        return str(error.get("message", ""))
    return str(error)


def _post_json(provider: str, url: str, body: dict, timeout: float,
               headers: Optional[Dict[str, str]] = None) -> dict:
    """
    POST a JSON body and return the decoded response.

    Raises:
        GenerationError: On HTTP errors (rate_limited for 429), timeouts,
            connection failures, undecodable bodies and non-object JSON
    """
    try:
        with httpx.Client(timeout=float(timeout)) as client:
            response = client.post(url, json=body, headers=headers or {})
            response.raise_for_status()
            data = response.json()
    except httpx.HTTPStatusError as e:
        status = e.response.status_code
        detail = _error_detail(e.response)
        logger.error(f"{provider} HTTP error {status}: {detail}")
        raise GenerationError(
            f"{provider} API error: {detail or status}",
            rate_limited=status == 429,
            status_code=status,
        )
    except httpx.TimeoutException:
        logger.error(f"{provider} request timed out")
        raise GenerationError(f"{provider} API timed out")
    except httpx.RequestError as e:
        logger.error(f"{provider} connection error: {e}")
        raise GenerationError(f"Could not connect to {provider}")
    except ValueError:
        raise GenerationError(f"Invalid JSON from {provider}")

    if not isinstance(data, dict):
        logger.error(f"{provider} returned a JSON {type(data).__name__}, expected an object")
        raise GenerationError(f"Unexpected response shape from {provider}")
    return data


class BaseLLMClient(ABC):
    """Abstract base class for LLM clients."""

    @abstractmethod
    def chat(
        self,
        messages: List[LLMMessage],
        temperature: float = 0.2,
        max_tokens: int = 500,
    ) -> LLMResponse:
        """
        Send a chat completion request.

        Args:
            messages: List of messages in the conversation
            temperature: Sampling temperature (0-1)
            max_tokens: Maximum tokens in response

        Returns:
            LLMResponse with the model's response

        Raises:
            GenerationError: If the request fails
        """
        pass

    @property
    @abstractmethod
    def model_name(self) -> str:
        """Return the model name being used."""
        pass


class GeminiClient(BaseLLMClient):
    """
    LLM client for the Gemini generateContent API.

    System prompts travel in `systemInstruction`; the assistant role is
    called "model".
    """

    def __init__(self):
        self.api_key = getattr(settings, 'GEMINI_API_KEY', '')
        self.model = getattr(settings, 'GEMINI_MODEL', 'gemini-2.0-flash')
        self.timeout = getattr(settings, 'GEMINI_TIMEOUT', 120)
        self.base_url = getattr(
            settings, 'GEMINI_BASE_URL',
            'https://generativelanguage.googleapis.com/v1beta'
        )

        if not self.api_key:
            raise GenerationError("GEMINI_API_KEY not configured")

    @property
    def model_name(self) -> str:
        return self.model

    def _build_body(self, messages: List[LLMMessage], temperature: float,
                    max_tokens: int) -> Dict[str, Any]:
        system_parts = [{"text": m.content} for m in messages if m.role == "system"]
        contents = [
            {
                "role": "model" if m.role == "assistant" else "user",
                "parts": [{"text": m.content}],
            }
            for m in messages if m.role != "system"
        ]

        body: Dict[str, Any] = {
            "contents": contents,
            "generationConfig": {
                "temperature": temperature,
                "maxOutputTokens": max_tokens,
                "topP": 0.95,
            },
        }
        if system_parts:
            body["systemInstruction"] = {"parts": system_parts}
        return body

    def chat(
        self,
        messages: List[LLMMessage],
        temperature: float = 0.2,
        max_tokens: int = 500,
    ) -> LLMResponse:
        logger.info(f"Calling Gemini API: model={self.model}, temp={temperature}")

        data = _post_json(
            "Gemini",
            f"{self.base_url}/models/{self.model}:generateContent",
            self._build_body(messages, temperature, max_tokens),
            self.timeout,
            headers={"x-goog-api-key": self.api_key},
        )

        candidates = data.get("candidates") or []
        if not candidates:
            reason = (data.get("promptFeedback") or {}).get("blockReason")
            if reason:
                raise GenerationError(f"Request blocked by Gemini: {reason}")
            raise GenerationError("No response from Gemini API")

        parts = (candidates[0].get("content") or {}).get("parts") or []
        content = "".join(part.get("text", "") for part in parts)
        if not content:
            raise GenerationError("Empty response from Gemini API")

        usage = None
        meta = data.get("usageMetadata")
        if meta:
            usage = {
                "prompt_tokens": meta.get("promptTokenCount", 0),
                "completion_tokens": meta.get("candidatesTokenCount", 0),
                "total_tokens": meta.get("totalTokenCount", 0),
            }

        logger.info(f"Gemini response: {len(content)} chars")
        return LLMResponse(content=content, model=self.model, usage=usage)


class OpenAICompatibleClient(BaseLLMClient):
    """
    LLM client for OpenAI-compatible chat completion APIs.

    Works with: OpenAI, Azure OpenAI, Groq, Together, local servers, etc.
    """

    def __init__(self):
        self.api_key = getattr(settings, 'OPENAI_API_KEY', '')
        self.base_url = getattr(settings, 'OPENAI_BASE_URL', 'https://api.openai.com/v1')
        self.model = getattr(settings, 'OPENAI_MODEL', 'gpt-4o-mini')
        self.timeout = getattr(settings, 'OPENAI_TIMEOUT', 120)

        if not self.api_key:
            raise GenerationError("OPENAI_API_KEY not configured")

    @property
    def model_name(self) -> str:
        return self.model

    def chat(
        self,
        messages: List[LLMMessage],
        temperature: float = 0.2,
        max_tokens: int = 500,
    ) -> LLMResponse:
        logger.info(f"Calling OpenAI API: model={self.model}, temp={temperature}")

        data = _post_json(
            "OpenAI",
            f"{self.base_url}/chat/completions",
            {
                "model": self.model,
                "messages": [{"role": m.role, "content": m.content} for m in messages],
                "temperature": temperature,
                "max_tokens": max_tokens,
            },
            self.timeout,
            headers={"Authorization": f"Bearer {self.api_key}"},
        )

        choices = data.get("choices") or []
        content = (choices[0].get("message") or {}).get("content") if choices else None
        if not content:
            raise GenerationError("Empty response from OpenAI")

        return LLMResponse(content=content, model=self.model, usage=data.get("usage"))


class OllamaClient(BaseLLMClient):
    """LLM client for Ollama local inference (non-streaming /api/chat)."""

    def __init__(self):
        self.base_url = getattr(settings, 'OLLAMA_BASE_URL', 'http://ollama:11434')
        self.model = getattr(settings, 'OLLAMA_CHAT_MODEL', 'llama3.2')
        self.timeout = getattr(settings, 'OLLAMA_CHAT_TIMEOUT', 600)

    @property
    def model_name(self) -> str:
        return self.model

    def chat(
        self,
        messages: List[LLMMessage],
        temperature: float = 0.2,
        max_tokens: int = 500,
    ) -> LLMResponse:
        logger.info(f"Calling Ollama chat: model={self.model}, temp={temperature}")

        data = _post_json(
            "Ollama",
            f"{self.base_url}/api/chat",
            {
                "model": self.model,
                "messages": [{"role": m.role, "content": m.content} for m in messages],
                "stream": False,
                "options": {"temperature": temperature, "num_predict": max_tokens},
            },
            self.timeout,
        )

        content = (data.get("message") or {}).get("content")
        if not content:
            raise GenerationError("Empty response from Ollama")

        return LLMResponse(content=content, model=self.model)


# =============================================================================
# Client Factory
# =============================================================================

PROVIDERS = {
    'gemini': GeminiClient,
    'openai': OpenAICompatibleClient,
    'ollama': OllamaClient,
}

_client_instance: Optional[BaseLLMClient] = None


def get_llm_client() -> BaseLLMClient:
    """
    Get the configured LLM client instance.

    Uses LLM_PROVIDER ("gemini" default, "openai" or "ollama"). The client
    is cached once built; a construction failure is not cached.

    Raises:
        GenerationError: If the selected provider is missing its API key
    """
    global _client_instance

    if _client_instance is None:
        provider = getattr(settings, 'LLM_PROVIDER', 'gemini').lower()
        client_class = PROVIDERS.get(provider, GeminiClient)
        logger.info(f"Using {client_class.__name__} for LLM inference")
        _client_instance = client_class()

    return _client_instance


def reset_llm_client():
    """Reset the cached client instance. Useful for testing."""
    global _client_instance
    _client_instance = None


def chat_completion(
    messages: List[Dict[str, str]],
    temperature: float = 0.2,
    max_tokens: int = 500,
    client: Optional[BaseLLMClient] = None,
) -> str:
    """
    Convenience function for simple chat completions.

    Args:
        messages: List of message dicts with 'role' and 'content' keys
        temperature: Sampling temperature
        max_tokens: Maximum tokens in response
        client: Client to use instead of the configured one

    Returns:
        The model's response text

    Raises:
        GenerationError: If the request fails
    """
    client = client or get_llm_client()
    llm_messages = [LLMMessage(role=m["role"], content=m["content"]) for m in messages]
    response = client.chat(llm_messages, temperature=temperature, max_tokens=max_tokens)
    return response.content
