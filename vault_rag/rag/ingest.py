"""Ingest pipeline for indexing the document collection.

Orchestrates:
- Source discovery
- Text chunking
- Embedding generation
- Embedding cache population and a single batch save
"""
import asyncio
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

import structlog

from vault_rag.errors import IngestionPartialFailure, ProviderError, ProviderErrorKind
from vault_rag.rag.cache import EmbeddingCache
from vault_rag.rag.chunker import TextChunker
from vault_rag.rag.types import (
    Chunk,
    DocumentSource,
    Embedder,
    SourceEmbeddingRecord,
    SourceRef,
)
from vault_rag.settings import Settings

logger = structlog.get_logger()

ProgressCallback = Callable[[int, int, SourceRef], None]


@dataclass
class IngestionReport:
    """Outcome of an ingestion run."""

    sources_processed: int = 0
    sources_failed: int = 0
    sources_removed: int = 0
    chunks_created: int = 0
    chunks_too_short: int = 0
    embeddings_failed: int = 0
    failures: List[Tuple[str, str]] = field(default_factory=list)

    @property
    def partial_failure(self) -> Optional[IngestionPartialFailure]:
        """The skipped sources as a typed error, or None if none were skipped."""
        if not self.failures:
            return None
        return IngestionPartialFailure(self.failures)

    def record_failure(self, source_id: str, error: Exception) -> None:
        self.sources_failed += 1
        self.failures.append((source_id, f"{type(error).__name__}: {error}"))

    def as_dict(self) -> Dict[str, Any]:
        return {
            "sources_processed": self.sources_processed,
            "sources_failed": self.sources_failed,
            "sources_removed": self.sources_removed,
            "chunks_created": self.chunks_created,
            "chunks_too_short": self.chunks_too_short,
            "embeddings_failed": self.embeddings_failed,
            "failed_sources": [source_id for source_id, _ in self.failures],
        }


class IngestPipeline:
    """Pipeline for ingesting documents into the embedding cache."""

    def __init__(
        self,
        source: DocumentSource,
        embedder: Embedder,
        cache: EmbeddingCache,
        settings: Settings,
    ):
        """Initialize the ingest pipeline.

        Args:
            source: Document collection to read from
            embedder: Embedding capability
            cache: Cache to populate
            settings: Chunking, embedding model and concurrency settings
        """
        self.source = source
        self.embedder = embedder
        self.cache = cache
        self.settings = settings
        self.chunker = TextChunker(
            chunk_size=settings.chunk_size,
            chunk_overlap=settings.chunk_overlap,
        )

    async def ingest_source(
        self, ref: SourceRef, report: Optional[IngestionReport] = None
    ) -> SourceEmbeddingRecord:
        """Chunk and embed a single source.

        Chunks shorter than ``min_chunk_length`` are dropped before embedding.
        A chunk whose embedding fails is logged and skipped; the record holds
        whatever succeeded, possibly nothing.

        Args:
            ref: Source to ingest
            report: Report to add chunk counts to

        Returns:
            A fresh record for the source (not yet written to the cache)

        Raises:
            SourceReadError: If the source cannot be read
        """
        report = report if report is not None else IngestionReport()

        text = await self.source.read_source(ref.source_id)
        pieces = self.chunker.chunk_text(text)

        kept = [p for p in pieces if len(p) >= self.settings.min_chunk_length]
        report.chunks_too_short += len(pieces) - len(kept)

        chunks = []
        for piece in kept:
            try:
                vector = await self.embedder.embed(self.settings.embedding_model, piece)
            except Exception as e:
                kind = e.kind if isinstance(e, ProviderError) else ProviderErrorKind.OTHER
                report.embeddings_failed += 1
                logger.warning(
                    "chunk_embedding_failed",
                    source_id=ref.source_id,
                    kind=kind.value,
                    error=str(e),
                    text_preview=piece[:100],
                )
                continue

            chunks.append(
                Chunk(
                    content=piece,
                    source_id=ref.source_id,
                    source_label=ref.label,
                    vector=list(vector),
                )
            )

        report.chunks_created += len(chunks)
        report.sources_processed += 1

        logger.info(
            "source_ingested",
            source_id=ref.source_id,
            chunks_created=len(chunks),
            **self.chunker.get_chunk_stats(kept),
        )

        return SourceEmbeddingRecord(source_id=ref.source_id, chunks=chunks)

    async def _ingest_many(
        self,
        refs: List[SourceRef],
        report: IngestionReport,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> Dict[str, SourceEmbeddingRecord]:
        """Ingest sources independently; failures are recorded, never raised."""
        semaphore = asyncio.Semaphore(self.settings.ingest_concurrency)
        records: Dict[str, SourceEmbeddingRecord] = {}
        total = len(refs)

        async def run(idx: int, ref: SourceRef) -> None:
            async with semaphore:
                if progress_callback:
                    progress_callback(idx, total, ref)
                try:
                    records[ref.source_id] = await self.ingest_source(ref, report)
                except Exception as e:
                    logger.error(
                        "source_ingestion_failed",
                        source_id=ref.source_id,
                        error=str(e),
                        error_type=type(e).__name__,
                    )
                    report.record_failure(ref.source_id, e)

        await asyncio.gather(*(run(idx, ref) for idx, ref in enumerate(refs, 1)))

        # Keep listing order regardless of completion order
        return {ref.source_id: records[ref.source_id] for ref in refs if ref.source_id in records}

    async def ingest_all(
        self, progress_callback: Optional[ProgressCallback] = None
    ) -> IngestionReport:
        """Rebuild the cache from every source in the collection.

        The new mapping is swapped into the cache in one step once every
        source has been processed, then saved once. A source that fails
        keeps its previous record, if any; sources no longer listed are
        dropped.

        Args:
            progress_callback: Optional callback(current, total, source_ref)

        Returns:
            Ingestion report

        Raises:
            CacheSaveError: If the rebuilt cache cannot be written
        """
        logger.info("starting_ingest_all")

        refs = await self.source.list_sources()
        report = IngestionReport()
        previous = self.cache.snapshot()

        records = await self._ingest_many(refs, report, progress_callback)

        for source_id, _ in report.failures:
            if source_id in previous:
                records[source_id] = previous[source_id]

        report.sources_removed = len(set(previous) - {ref.source_id for ref in refs})

        self.cache.replace_all(records)
        await asyncio.to_thread(self.cache.save)

        logger.info("ingest_all_completed", **report.as_dict())
        return report

    async def reindex(self, source_ids: Iterable[str]) -> IngestionReport:
        """Rebuild specific sources and save once.

        Each rebuilt record replaces the old one in a single write. A source
        that is no longer in the collection is dropped from the cache.

        Args:
            source_ids: Ids of the sources to rebuild

        Returns:
            Ingestion report
        """
        wanted = list(dict.fromkeys(source_ids))
        listing = {ref.source_id: ref for ref in await self.source.list_sources()}
        report = IngestionReport()

        logger.info("reindexing_sources", count=len(wanted), source_ids=wanted)

        present = [listing[sid] for sid in wanted if sid in listing]
        for source_id in wanted:
            if source_id not in listing and self.cache.discard(source_id):
                report.sources_removed += 1

        records = await self._ingest_many(present, report)
        for record in records.values():
            self.cache.put_record(record)

        if records or report.sources_removed:
            await asyncio.to_thread(self.cache.save)

        logger.info("reindex_completed", **report.as_dict())
        return report
