"""Embedding cache: durable mapping from source id to embedded chunks.

Handles:
- Per-source record replacement (never merged)
- Snapshot reads that are safe during a rebuild
- JSON persistence with versioned reload
"""
import json
import os
from datetime import datetime, timezone
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Iterator, List, Mapping, Optional

import structlog

from vault_rag import config
from vault_rag.errors import CacheCorruptError, CacheSaveError
from vault_rag.rag.types import Chunk, SourceEmbeddingRecord, utcnow

logger = structlog.get_logger()

CACHE_FORMAT_VERSION = 1


def _check_chunk(chunk: Chunk) -> None:
    """Raise ValueError unless a loaded chunk is searchable as stored."""
    for name in ("content", "source_id", "source_label"):
        if not isinstance(getattr(chunk, name), str):
            raise ValueError(f"chunk {name} is not a string")

    vector = chunk.vector
    if vector is None:
        return
    if not isinstance(vector, list) or not all(
        isinstance(v, (int, float)) and not isinstance(v, bool) for v in vector
    ):
        raise ValueError(f"chunk vector is not a list of numbers in {chunk.source_id!r}")


class EmbeddingCache:
    """In-memory embedding cache with explicit save/load.

    The mapping is never mutated in place: every write builds a new dict
    and swaps the reference, so a reader holding a snapshot never sees a
    half-written record or a partially rebuilt cache.
    """

    def __init__(
        self,
        path: Optional[Path] = None,
        embedding_model: Optional[str] = None,
    ):
        """Initialize an empty cache.

        Args:
            path: JSON file used by save()/load() (default from config)
            embedding_model: Model the vectors come from; a saved cache built
                with a different model is not reloaded
        """
        self.path = Path(path) if path is not None else config.CACHE_PATH
        self.embedding_model = embedding_model or config.EMBEDDING_MODEL
        self._records: Mapping[str, SourceEmbeddingRecord] = MappingProxyType({})

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, source_id: str) -> bool:
        return source_id in self._records

    def snapshot(self) -> Mapping[str, SourceEmbeddingRecord]:
        """Current read-only mapping. Later writes do not affect it."""
        return self._records

    def put(self, source_id: str, chunks: List[Chunk]) -> SourceEmbeddingRecord:
        """Replace the record for a source with the given chunks."""
        record = SourceEmbeddingRecord(source_id=source_id, chunks=list(chunks))
        self.put_record(record)
        return record

    def put_record(self, record: SourceEmbeddingRecord) -> None:
        records = dict(self._records)
        records[record.source_id] = record
        self._records = MappingProxyType(records)

        logger.debug(
            "cache_record_replaced",
            source_id=record.source_id,
            chunk_count=len(record.chunks),
        )

    def get(self, source_id: str) -> Optional[SourceEmbeddingRecord]:
        return self._records.get(source_id)

    def discard(self, source_id: str) -> bool:
        """Drop a source's record. Returns True if one existed."""
        if source_id not in self._records:
            return False

        records = dict(self._records)
        del records[source_id]
        self._records = MappingProxyType(records)

        logger.info("cache_record_discarded", source_id=source_id)
        return True

    def replace_all(self, records: Mapping[str, SourceEmbeddingRecord]) -> None:
        """Swap in a complete new mapping in one step."""
        self._records = MappingProxyType(dict(records))
        logger.info("cache_replaced", source_count=len(records))

    def all_chunks(self) -> Iterator[Chunk]:
        """Lazily yield every cached chunk.

        Each call iterates the snapshot current at the time of the call.
        """
        records = self._records
        for record in records.values():
            yield from record.chunks

    def total_chunks(self) -> int:
        return sum(len(r.chunks) for r in self._records.values())

    def save(self) -> None:
        """Write the full mapping to disk.

        The file is written next to its final path and renamed into place,
        so an interrupted save leaves the previous file intact.

        Raises:
            CacheSaveError: If the file cannot be written
        """
        records = self._records
        payload = {
            "version": CACHE_FORMAT_VERSION,
            "embedding_model": self.embedding_model,
            "saved_at": utcnow().isoformat(),
            "sources": {sid: rec.to_dict() for sid, rec in records.items()},
        }

        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(payload, f)
            os.replace(tmp_path, self.path)
        except OSError as e:
            logger.error("cache_save_failed", path=str(self.path), error=str(e))
            raise CacheSaveError(f"Failed to save embedding cache: {e}") from e

        logger.info(
            "cache_saved",
            path=str(self.path),
            source_count=len(records),
            chunk_count=sum(len(r.chunks) for r in records.values()),
        )

    def load(self) -> Optional[CacheCorruptError]:
        """Replace the in-memory mapping with the saved one.

        A missing file leaves the cache empty. An unreadable, malformed,
        wrong-version or wrong-model file also leaves it empty; the problem
        is logged and returned rather than raised.

        Returns:
            None on success or when nothing was saved yet, otherwise the
            CacheCorruptError describing why the file was ignored
        """
        if not self.path.exists():
            self._records = MappingProxyType({})
            logger.info("no_cache_found", path=str(self.path))
            return None

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                payload = json.load(f)
            records = self._parse_payload(payload)
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            self._records = MappingProxyType({})
            error = CacheCorruptError(f"Ignoring unusable cache {self.path}: {e}")
            logger.warning(
                "cache_corrupt",
                path=str(self.path),
                error=str(e),
                error_type=type(e).__name__,
            )
            return error

        self._records = MappingProxyType(records)

        logger.info(
            "cache_loaded",
            path=str(self.path),
            source_count=len(records),
            chunk_count=self.total_chunks(),
        )
        return None

    def _parse_payload(self, payload: Any) -> Dict[str, SourceEmbeddingRecord]:
        if not isinstance(payload, dict):
            raise ValueError("cache payload is not an object")

        version = payload.get("version")
        if version != CACHE_FORMAT_VERSION:
            raise ValueError(f"unsupported cache version: {version!r}")

        stored_model = payload.get("embedding_model")
        if stored_model != self.embedding_model:
            raise ValueError(
                f"cache was built with {stored_model!r}, "
                f"current embedding model is {self.embedding_model!r}"
            )

        records = {}
        for source_id, data in payload["sources"].items():
            record = SourceEmbeddingRecord.from_dict(data)
            if record.source_id != source_id:
                raise ValueError(f"record key mismatch for {source_id!r}")
            for chunk in record.chunks:
                _check_chunk(chunk)
            if record.last_updated.tzinfo is None:
                record.last_updated = record.last_updated.replace(tzinfo=timezone.utc)
            records[source_id] = record

        return records

    def get_stats(self) -> Dict[str, Any]:
        """Get statistics about the cache."""
        records = self._records
        last_updated: Optional[datetime] = max(
            (r.last_updated for r in records.values()), default=None
        )
        return {
            "source_count": len(records),
            "chunk_count": sum(len(r.chunks) for r in records.values()),
            "embedding_model": self.embedding_model,
            "path": str(self.path),
            "exists_on_disk": self.path.exists(),
            "last_updated": last_updated.isoformat() if last_updated else None,
        }
