"""Shared fixtures and fakes for the unit tests."""
import asyncio
from typing import Dict, List, Optional, Tuple, Union

import pytest

from vault_rag.errors import ProviderError, ProviderErrorKind, SourceReadError
from vault_rag.rag.cache import EmbeddingCache
from vault_rag.rag.types import Chunk, SourceRef
from vault_rag.settings import load_settings

VOCABULARY = ("cat", "dog", "python", "coffee")


def keyword_vector(text: str) -> List[float]:
    """Count vocabulary words in the text; one dimension per word."""
    lowered = text.lower()
    return [float(lowered.count(word)) for word in VOCABULARY]


class FakeEmbedder:
    """Deterministic embedder; fails for any text containing a marker."""

    def __init__(self, fail_marker: Optional[str] = None, kind=ProviderErrorKind.OTHER):
        self.fail_marker = fail_marker
        self.kind = kind
        self.calls: List[Tuple[str, str]] = []

    async def embed(self, model: str, text: str) -> List[float]:
        self.calls.append((model, text))
        if self.fail_marker and self.fail_marker in text:
            raise ProviderError(self.kind, "embedding failed", model=model)
        return keyword_vector(text)


class GatedEmbedder(FakeEmbedder):
    """Blocks on texts containing a marker until the gate is opened."""

    def __init__(self, gate_marker: str):
        super().__init__()
        self.gate_marker = gate_marker
        self.reached = asyncio.Event()
        self.gate = asyncio.Event()

    async def embed(self, model: str, text: str) -> List[float]:
        if self.gate_marker in text:
            self.reached.set()
            await self.gate.wait()
        return await super().embed(model, text)


class ScriptedGenerator:
    """Plays back a list of outcomes: strings are returned, exceptions raised."""

    def __init__(self, outcomes: Optional[List[Union[str, Exception]]] = None):
        self.outcomes = list(outcomes or ["generated answer"])
        self.calls: List[Tuple[str, str]] = []

    async def generate(self, model: str, prompt: str) -> str:
        self.calls.append((model, prompt))
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    @property
    def models(self) -> List[str]:
        return [model for model, _ in self.calls]


class InMemorySource:
    """Document source backed by a dict of source_id -> (label, text)."""

    def __init__(self, documents: Optional[Dict[str, Tuple[str, str]]] = None, unreadable=()):
        self.documents = dict(documents or {})
        self.unreadable = set(unreadable)

    async def list_sources(self) -> List[SourceRef]:
        return [SourceRef(source_id=sid, label=label) for sid, (label, _) in self.documents.items()]

    async def read_source(self, source_id: str) -> str:
        if source_id in self.unreadable or source_id not in self.documents:
            raise SourceReadError(source_id)
        return self.documents[source_id][1]


class SleepRecorder:
    """Stands in for asyncio.sleep and records requested delays."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def transient(model: str = "chat-test") -> ProviderError:
    return ProviderError(ProviderErrorKind.TRANSIENT_UNAVAILABLE, "model overloaded", model=model)


def make_chunk(content: str, source_id: str = "note.md", vector=None) -> Chunk:
    return Chunk(
        content=content,
        source_id=source_id,
        source_label=source_id.rsplit("/", 1)[-1],
        vector=keyword_vector(content) if vector is None else vector,
    )


@pytest.fixture
def settings():
    return load_settings(
        embedding_model="embed-test",
        generative_model="chat-test",
        fallback_models=("backup-model", "second-backup"),
        max_results=3,
        similarity_threshold=0.5,
        chunk_size=200,
        chunk_overlap=20,
        min_chunk_length=10,
        ingest_concurrency=1,
    )


@pytest.fixture
def cache(tmp_path, settings):
    return EmbeddingCache(path=tmp_path / "embeddings.json", embedding_model=settings.embedding_model)


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def generator():
    return ScriptedGenerator()


@pytest.fixture
def sleep():
    return SleepRecorder()


@pytest.fixture
def documents():
    return {
        "pets/cats.md": (
            "cats.md",
            "My cat sleeps all day. The cat likes the sunny window and ignores the dog.",
        ),
        "code/python.md": (
            "python.md",
            "Python notes: use a virtualenv for every python project and pin versions.",
        ),
        "morning.md": (
            "morning.md",
            "Coffee first. A strong coffee before reading anything about work or code.",
        ),
    }


@pytest.fixture
def source(documents):
    return InMemorySource(documents)
