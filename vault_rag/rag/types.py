"""Core data types and collaborator protocols for the RAG engine."""
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import List, Optional, Protocol, runtime_checkable


@dataclass
class Chunk:
    """A piece of a source document, optionally embedded.

    ``score`` is only set on search results and is never persisted.
    """

    content: str
    source_id: str
    source_label: str
    vector: Optional[List[float]] = None
    score: Optional[float] = None

    def with_score(self, score: float) -> "Chunk":
        """Return a copy carrying a similarity score."""
        return replace(self, score=score)

    def to_dict(self) -> dict:
        return {
            "content": self.content,
            "source_id": self.source_id,
            "source_label": self.source_label,
            "vector": self.vector,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Chunk":
        return cls(
            content=data["content"],
            source_id=data["source_id"],
            source_label=data["source_label"],
            vector=data.get("vector"),
        )


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SourceEmbeddingRecord:
    """All embedded chunks of one source, replaced wholesale on re-ingestion."""

    source_id: str
    chunks: List[Chunk] = field(default_factory=list)
    last_updated: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "source_id": self.source_id,
            "last_updated": self.last_updated.isoformat(),
            "chunks": [chunk.to_dict() for chunk in self.chunks],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SourceEmbeddingRecord":
        return cls(
            source_id=data["source_id"],
            chunks=[Chunk.from_dict(c) for c in data["chunks"]],
            last_updated=datetime.fromisoformat(data["last_updated"]),
        )


@dataclass(frozen=True)
class SourceRef:
    """Identity and display label of a document in the collection."""

    source_id: str
    label: str


@runtime_checkable
class Embedder(Protocol):
    """Turns text into a vector. Failures raise ProviderError."""

    async def embed(self, model: str, text: str) -> List[float]: ...


@runtime_checkable
class Generator(Protocol):
    """Turns a prompt into text. Failures raise ProviderError."""

    async def generate(self, model: str, prompt: str) -> str: ...


@runtime_checkable
class DocumentSource(Protocol):
    """The document collection the engine indexes."""

    async def list_sources(self) -> List[SourceRef]: ...

    async def read_source(self, source_id: str) -> str: ...
