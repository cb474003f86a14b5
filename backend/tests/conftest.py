"""
Shared fixtures: deterministic stand-ins for the embedding and LLM providers.
"""
import re

import pytest

from apps.indexing.embedder import BaseEmbeddingClient
from apps.rag.llm_client import BaseLLMClient, LLMResponse, reset_llm_client
from apps.rag.retrieval import InMemoryVectorStore, reset_vector_store

FAKE_DIMENSIONS = 32


class FakeEmbedder(BaseEmbeddingClient):
    """
    Bag-of-words embedder: each word adds 1 to a bucket chosen from its
    characters, so texts that share words have positive cosine similarity.
    """

    def __init__(self, error=None):
        self.error = error
        self.calls = []
        self.batch_calls = []

    @property
    def model_name(self) -> str:
        return "fake-embedder"

    def embed(self, text, task):
        self.calls.append((text, task))
        if self.error:
            raise self.error
        vector = [0.0] * FAKE_DIMENSIONS
        for word in re.findall(r"[a-z0-9]+", text.lower()):
            vector[sum(ord(c) for c in word) % FAKE_DIMENSIONS] += 1.0
        if not any(vector):
            vector[0] = 1.0
        return vector

    def embed_batch(self, texts, task):
        self.batch_calls.append((list(texts), task))
        return [self.embed(text, task) for text in texts]


class FakeLLM(BaseLLMClient):
    """
    Scripted chat client.

    `responder` receives the last message's content and returns the reply;
    `error` is raised instead when set.
    """

    def __init__(self, responder=None, error=None):
        self.responder = responder or (lambda prompt: "ok")
        self.error = error
        self.calls = []

    @property
    def model_name(self) -> str:
        return "fake-llm"

    def chat(self, messages, temperature=0.2, max_tokens=500):
        self.calls.append({
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        })
        if self.error:
            raise self.error
        return LLMResponse(content=self.responder(messages[-1].content), model=self.model_name)

    @property
    def prompts(self):
        return [call["messages"][-1].content for call in self.calls]


@pytest.fixture
def fake_embedder():
    return FakeEmbedder()


@pytest.fixture
def memory_store():
    return InMemoryVectorStore()


@pytest.fixture
def make_llm():
    """Factory fixture: make_llm(responder=..., error=...)."""
    return FakeLLM


@pytest.fixture
def make_embedder():
    return FakeEmbedder


@pytest.fixture(autouse=True)
def reset_cached_clients():
    reset_llm_client()
    reset_vector_store()
    yield
    reset_llm_client()
    reset_vector_store()
