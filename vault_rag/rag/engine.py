"""Retrieval engine: the single owner of the cache and settings.

Wires the ingestion pipeline and the orchestrator to one embedding cache
and serializes rebuilds. Queries never wait on a rebuild; they read the
snapshot that was current when they started.
"""
import asyncio
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import structlog

from vault_rag.errors import CacheCorruptError
from vault_rag.rag.cache import EmbeddingCache
from vault_rag.rag.ingest import IngestionReport, IngestPipeline, ProgressCallback
from vault_rag.rag.orchestrator import Answer, RetrievalOrchestrator, RetryPolicy
from vault_rag.rag.similarity import LinearScanIndex
from vault_rag.rag.types import Chunk, DocumentSource, Embedder, Generator
from vault_rag.settings import Settings

logger = structlog.get_logger()


class RetrievalEngine:
    """Explicitly constructed RAG engine for one document collection."""

    def __init__(
        self,
        settings: Settings,
        embedder: Embedder,
        generator: Generator,
        source: DocumentSource,
        cache_path: Optional[Path] = None,
        index: Optional[LinearScanIndex] = None,
        retry_policy: Optional[RetryPolicy] = None,
        sleep=asyncio.sleep,
    ):
        """Initialize the engine.

        Args:
            settings: Validated settings
            embedder: Embedding capability
            generator: Generation capability
            source: Document collection
            cache_path: Where the embedding cache is saved (default from config)
            index: Similarity index (default: linear scan)
            retry_policy: Generation retry policy
            sleep: Awaitable used for retry backoff
        """
        self.settings = settings
        self.source = source
        self.cache = EmbeddingCache(path=cache_path, embedding_model=settings.embedding_model)
        self.pipeline = IngestPipeline(
            source=source,
            embedder=embedder,
            cache=self.cache,
            settings=settings,
        )
        self.orchestrator = RetrievalOrchestrator(
            embedder=embedder,
            generator=generator,
            cache=self.cache,
            settings=settings,
            index=index,
            retry_policy=retry_policy,
            sleep=sleep,
        )
        self._rebuild_lock = asyncio.Lock()
        self.last_load_error: Optional[CacheCorruptError] = None

        logger.info(
            "retrieval_engine_initialized",
            embedding_model=settings.embedding_model,
            generative_model=settings.generative_model,
            max_results=settings.max_results,
            similarity_threshold=settings.similarity_threshold,
        )

    @property
    def is_rebuilding(self) -> bool:
        return self._rebuild_lock.locked()

    async def load(self) -> Optional[CacheCorruptError]:
        """Load the saved cache, recovering to empty if it is unusable."""
        async with self._rebuild_lock:
            self.last_load_error = await asyncio.to_thread(self.cache.load)
        return self.last_load_error

    async def rebuild(self, progress_callback: Optional[ProgressCallback] = None) -> IngestionReport:
        """Rebuild the whole cache. Concurrent rebuilds run one after another."""
        async with self._rebuild_lock:
            return await self.pipeline.ingest_all(progress_callback=progress_callback)

    async def reindex(self, source_ids: Iterable[str]) -> IngestionReport:
        """Rebuild the given sources only."""
        async with self._rebuild_lock:
            return await self.pipeline.reindex(source_ids)

    async def search(self, query: str) -> List[Chunk]:
        return await self.orchestrator.search(query)

    async def answer(self, query: str) -> Answer:
        return await self.orchestrator.answer(query)

    def get_stats(self) -> Dict[str, Any]:
        stats = self.cache.get_stats()
        stats["rebuilding"] = self.is_rebuilding
        stats["generative_model"] = self.settings.generative_model
        stats["last_load_error"] = str(self.last_load_error) if self.last_load_error else None
        return stats
