"""Text chunking with overlap for the RAG pipeline.

Implements character-based chunking to avoid tokenizer dependencies.
"""
from typing import List, Optional

import structlog

from vault_rag import config
from vault_rag.errors import ConfigurationError

logger = structlog.get_logger()

# A boundary is only used if it falls past this fraction of the window
BOUNDARY_MIN_FRACTION = 0.7


def validate_chunk_params(chunk_size: int, chunk_overlap: int) -> None:
    """Reject parameters that would stall or break the chunk walk.

    Raises:
        ConfigurationError: If size is not positive, overlap is negative,
            or overlap is not smaller than size
    """
    if chunk_size <= 0:
        raise ConfigurationError(f"Chunk size must be positive, got {chunk_size}")
    if chunk_overlap < 0:
        raise ConfigurationError(f"Overlap must be non-negative, got {chunk_overlap}")
    if chunk_overlap >= chunk_size:
        raise ConfigurationError(
            f"Overlap ({chunk_overlap}) must be less than chunk size ({chunk_size})"
        )


def split_text(text: str, chunk_size: int, chunk_overlap: int) -> List[str]:
    """Split text into overlapping, boundary-aware chunks.

    Each window of ``chunk_size`` characters that does not reach the end of
    the text is cut after its last period or newline, provided that break
    falls past 70% of the window; otherwise the full window is kept. The
    next window starts ``chunk_overlap`` characters before the cut. Chunks
    are trimmed and empty ones dropped.

    Args:
        text: Text to chunk
        chunk_size: Window size in characters
        chunk_overlap: Characters shared between consecutive windows

    Returns:
        List of chunk strings, each at most ``chunk_size`` characters

    Raises:
        ConfigurationError: If the parameters are invalid
    """
    validate_chunk_params(chunk_size, chunk_overlap)

    chunks = []
    text_length = len(text)
    start = 0

    while start < text_length:
        end = min(start + chunk_size, text_length)

        if end < text_length:
            window = text[start:end]
            break_point = start + max(window.rfind("."), window.rfind("\n"))

            if break_point > start + chunk_size * BOUNDARY_MIN_FRACTION:
                end = break_point + 1

            next_start = end - chunk_overlap
            # A late boundary with a large overlap could step backwards
            if next_start <= start:
                next_start = end
        else:
            next_start = text_length

        chunk = text[start:end].strip()
        if chunk:
            chunks.append(chunk)

        start = next_start

    return chunks


class TextChunker:
    """Character-based text chunker with overlap support."""

    def __init__(
        self,
        chunk_size: Optional[int] = None,
        chunk_overlap: Optional[int] = None,
    ):
        """Initialize the text chunker.

        Args:
            chunk_size: Size of each chunk in characters (default from config)
            chunk_overlap: Overlap between chunks in characters (default from config)

        Raises:
            ConfigurationError: If overlap is not smaller than chunk size
        """
        self.chunk_size = config.CHUNK_SIZE if chunk_size is None else chunk_size
        self.chunk_overlap = config.CHUNK_OVERLAP if chunk_overlap is None else chunk_overlap

        validate_chunk_params(self.chunk_size, self.chunk_overlap)

        logger.debug(
            "chunker_initialized",
            chunk_size=self.chunk_size,
            chunk_overlap=self.chunk_overlap,
        )

    def chunk_text(self, text: str) -> List[str]:
        """Split text into overlapping chunks.

        Args:
            text: Text to chunk

        Returns:
            List of trimmed, non-empty chunk strings
        """
        if not text:
            return []

        chunks = split_text(text, self.chunk_size, self.chunk_overlap)

        if chunks:
            logger.debug(
                "text_chunked",
                text_length=len(text),
                chunk_count=len(chunks),
                avg_chunk_size=sum(len(c) for c in chunks) // len(chunks),
            )

        return chunks

    def get_chunk_stats(self, chunks: List[str]) -> dict:
        """Get statistics about a set of chunks.

        Args:
            chunks: List of chunk strings

        Returns:
            Dictionary with chunk statistics
        """
        if not chunks:
            return {
                "chunk_count": 0,
                "total_chars": 0,
                "avg_chunk_size": 0,
                "min_chunk_size": 0,
                "max_chunk_size": 0,
            }

        chunk_sizes = [len(c) for c in chunks]

        return {
            "chunk_count": len(chunks),
            "total_chars": sum(chunk_sizes),
            "avg_chunk_size": sum(chunk_sizes) // len(chunks),
            "min_chunk_size": min(chunk_sizes),
            "max_chunk_size": max(chunk_sizes),
            "overlap": self.chunk_overlap,
        }
