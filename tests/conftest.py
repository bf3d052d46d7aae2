"""Shared fixtures for all test modules."""
import os
from types import SimpleNamespace

import pytest


class FakeEmbeddings:
    """Stands in for ``client.embeddings`` of the OpenAI SDK.

    ``vectors`` maps a lowercase keyword to a vector; the first keyword
    found in an input text decides its vector, otherwise ``default`` is
    used.  Any input containing a ``fail_on`` marker makes the whole call
    raise.
    """

    def __init__(self, vectors=None, dimension=3, fail_on=(), default=None):
        self.vectors = vectors or {}
        self.dimension = dimension
        self.fail_on = tuple(fail_on)
        self.default = default or [1.0] + [0.0] * (dimension - 1)
        self.calls = []

    def _vector(self, text):
        lowered = text.lower()
        for key, vec in self.vectors.items():
            if key in lowered:
                return list(vec)
        return list(self.default)

    def create(self, model, input, **kwargs):
        self.calls.append(list(input))
        for text in input:
            if any(marker in text for marker in self.fail_on):
                raise RuntimeError(f"provider rejected input: {text[:30]}")
        data = [SimpleNamespace(embedding=self._vector(t), index=i) for i, t in enumerate(input)]
        # Providers may return items out of order.
        return SimpleNamespace(data=list(reversed(data)))


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch, tmp_path):
    """Keep real config files, API keys and log dirs out of every test."""
    for key in list(os.environ):
        if key.startswith("KGCORE_") or key in ("OPENAI_API_KEY", "OPENAI_BASE_URL"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    monkeypatch.setenv("KGCORE_LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def fake_embeddings():
    """Factory: ``fake_embeddings(vectors, dimension=3, fail_on=())`` -> client."""
    def _make(vectors=None, dimension=3, fail_on=(), default=None):
        return SimpleNamespace(
            embeddings=FakeEmbeddings(vectors, dimension, fail_on, default)
        )
    return _make


@pytest.fixture
def store():
    from knowledge_core.kb.store import Store
    s = Store(":memory:", dimension=3)
    yield s
    s.close()


@pytest.fixture
def make_embedder():
    from knowledge_core.kb.embedder import Embedder

    def _make(client, dimension=3, **kwargs):
        kwargs.setdefault("chunk_pause", 0)
        kwargs.setdefault("retry_delay", 0)
        return Embedder(client=client, dimension=dimension, **kwargs)
    return _make
