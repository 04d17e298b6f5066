"""Cosine similarity search over cached chunk vectors.

Similarity is raw cosine in [-1, 1] and is compared to the threshold
directly; there is no distance conversion anywhere in the engine.

The search is a full linear scan. A personal vault is small enough that
building an ANN index is not worth it; ``LinearScanIndex`` is the object
to replace for larger corpora, as long as the replacement keeps returning a
deterministic, thresholded, ranked top-K.
"""
from typing import Iterable, List, Sequence

import numpy as np
import structlog

from vault_rag.rag.types import Chunk

logger = structlog.get_logger()


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two vectors.

    Returns 0.0 if either vector has zero magnitude.

    Raises:
        ValueError: If the vectors differ in dimension
    """
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)

    if va.shape != vb.shape:
        raise ValueError(f"Dimension mismatch: {va.shape[0]} vs {vb.shape[0]}")

    norm = np.linalg.norm(va) * np.linalg.norm(vb)
    if norm == 0.0:
        return 0.0

    return float(np.dot(va, vb) / norm)


def search_chunks(
    query_vector: Sequence[float],
    chunks: Iterable[Chunk],
    threshold: float,
    max_results: int,
) -> List[Chunk]:
    """Rank chunks by cosine similarity to a query vector.

    Args:
        query_vector: Embedded query
        chunks: Candidate chunks, in a stable iteration order
        threshold: Minimum similarity to keep a chunk
        max_results: Maximum number of chunks to return

    Returns:
        Copies of the matching chunks with ``score`` set, best first.
        Equal scores keep their iteration order.
    """
    query = np.asarray(query_vector, dtype=np.float64)
    query_norm = np.linalg.norm(query)
    dimension = query.shape[0]

    scored = []
    skipped = 0

    for chunk in chunks:
        if not chunk.vector:
            continue

        vector = np.asarray(chunk.vector, dtype=np.float64)
        if vector.shape[0] != dimension:
            skipped += 1
            continue

        norm = query_norm * np.linalg.norm(vector)
        similarity = float(np.dot(query, vector) / norm) if norm else 0.0

        if similarity >= threshold:
            scored.append(chunk.with_score(similarity))

    if skipped:
        logger.warning("chunks_skipped_dimension_mismatch", count=skipped, dimension=dimension)

    # sorted() is stable, so ties stay in iteration order
    scored = sorted(scored, key=lambda c: c.score, reverse=True)

    return scored[:max_results]


class LinearScanIndex:
    """Similarity index that scans every cached vector per query."""

    def search(
        self,
        query_vector: Sequence[float],
        chunks: Iterable[Chunk],
        threshold: float,
        max_results: int,
    ) -> List[Chunk]:
        results = search_chunks(query_vector, chunks, threshold, max_results)

        logger.debug(
            "vector_search_completed",
            max_results=max_results,
            results_found=len(results),
            top_score=results[0].score if results else None,
        )

        return results
