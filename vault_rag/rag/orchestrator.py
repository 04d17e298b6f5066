"""Retrieval orchestrator: answer questions from the embedding cache.

Handles:
- Query embedding
- Similarity search over a cache snapshot
- Context and prompt assembly
- Generation with retry and model fallback on transient overloads
"""
import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, List, Mapping, Optional

import structlog

from vault_rag.errors import ProviderError, ProviderErrorKind, ServiceUnavailableError
from vault_rag.rag.cache import EmbeddingCache
from vault_rag.rag.similarity import LinearScanIndex
from vault_rag.rag.types import Chunk, Embedder, Generator, SourceEmbeddingRecord
from vault_rag.settings import Settings

logger = structlog.get_logger()

NO_RELEVANT_CONTENT = "No relevant content found in your vault for this query."

CONTEXT_DELIMITER = "\n\n---\n\n"

PROMPT_TEMPLATE = """Based on the following content from the user's notes, please answer their question:

Context:
{context}

Question: {query}

Please provide a comprehensive answer based on the provided context. If the context doesn't contain enough information to fully answer the question, mention that and provide what information is available."""


class QueryState(str, Enum):
    """Lifecycle of a single query."""

    IDLE = "idle"
    EMBEDDING = "embedding"
    SEARCHING = "searching"
    GENERATING = "generating"
    DONE = "done"
    NO_RELEVANT_CONTENT = "no-relevant-content"
    FAILED = "failed"


@dataclass(frozen=True)
class RetryPolicy:
    """Retry settings for the generation call.

    Only transient overloads are retried. The wait before the retry that
    follows attempt ``n`` (0-based) is ``2 ** n * base_delay`` seconds, and
    the retry at ``switch_at_attempt`` moves to the first fallback model.
    """

    max_attempts: int = 3
    base_delay: float = 2.0
    switch_at_attempt: int = 1

    def delay_for(self, attempt: int) -> float:
        return (2 ** attempt) * self.base_delay


@dataclass
class Answer:
    """Result of a query."""

    text: str
    state: QueryState
    sources: List[Chunk] = field(default_factory=list)
    model: Optional[str] = None
    attempts: int = 0
    model_switches: int = 0
    trace: List[QueryState] = field(default_factory=list)

    @property
    def found_content(self) -> bool:
        return self.state is QueryState.DONE


def build_context(chunks: List[Chunk]) -> str:
    """Join ranked chunks, each prefixed with its source label."""
    return CONTEXT_DELIMITER.join(
        f'From "{chunk.source_label}":\n{chunk.content}' for chunk in chunks
    )


def build_prompt(query: str, chunks: List[Chunk]) -> str:
    return PROMPT_TEMPLATE.format(context=build_context(chunks), query=query)


class RetrievalOrchestrator:
    """Answers questions with retrieved context.

    Queries are independent: each one reads a single cache snapshot and
    keeps its state locally, so any number can run concurrently.
    """

    def __init__(
        self,
        embedder: Embedder,
        generator: Generator,
        cache: EmbeddingCache,
        settings: Settings,
        index: Optional[LinearScanIndex] = None,
        retry_policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """Initialize the orchestrator.

        Args:
            embedder: Embedding capability
            generator: Generation capability
            cache: Embedding cache to search (read-only here)
            settings: Models, threshold, result count and fallback models
            index: Similarity index (default: linear scan)
            retry_policy: Generation retry policy
            sleep: Awaitable used for backoff waits
        """
        self.embedder = embedder
        self.generator = generator
        self.cache = cache
        self.settings = settings
        self.index = index or LinearScanIndex()
        self.retry_policy = retry_policy or RetryPolicy()
        self._sleep = sleep

    async def _embed_query(self, query: str) -> List[float]:
        try:
            return await self.embedder.embed(self.settings.embedding_model, query)
        except ProviderError:
            raise
        except Exception as e:
            raise ProviderError(
                ProviderErrorKind.OTHER, str(e), model=self.settings.embedding_model
            ) from e

    async def search(self, query: str) -> List[Chunk]:
        """Retrieve the chunks most relevant to a query.

        Args:
            query: User query text

        Returns:
            Ranked chunks with scores, possibly empty

        Raises:
            ProviderError: If the query cannot be embedded
        """
        if not query or not query.strip():
            logger.warning("empty_query_provided")
            return []

        snapshot = self.cache.snapshot()
        if not snapshot:
            logger.info("empty_cache_no_results")
            return []

        query_vector = await self._embed_query(query)
        return self._search_snapshot(snapshot, query_vector)

    def _search_snapshot(
        self, snapshot: Mapping[str, SourceEmbeddingRecord], query_vector: List[float]
    ) -> List[Chunk]:
        chunks = (chunk for record in snapshot.values() for chunk in record.chunks)
        return self.index.search(
            query_vector,
            chunks,
            threshold=self.settings.similarity_threshold,
            max_results=self.settings.max_results,
        )

    async def answer(self, query: str) -> Answer:
        """Answer a question from the cached notes.

        Args:
            query: User question

        Returns:
            Answer in state DONE, or NO_RELEVANT_CONTENT when nothing in the
            cache clears the similarity threshold (generation is skipped)

        Raises:
            ProviderError: Embedding failed, or generation failed with an
                auth, rate-limit or other non-retryable error
            ServiceUnavailableError: Generation stayed overloaded for every attempt
        """
        trace = [QueryState.IDLE]

        def transition(state: QueryState) -> None:
            trace.append(state)
            logger.debug("query_state", state=state.value)

        logger.info("query_started", query_length=len(query or ""))

        def no_content() -> Answer:
            transition(QueryState.NO_RELEVANT_CONTENT)
            return Answer(
                text=NO_RELEVANT_CONTENT,
                state=QueryState.NO_RELEVANT_CONTENT,
                trace=trace,
            )

        if not query or not query.strip():
            logger.warning("empty_query_provided")
            return no_content()

        snapshot = self.cache.snapshot()
        if not snapshot:
            logger.info("empty_cache_no_results")
            return no_content()

        try:
            transition(QueryState.EMBEDDING)
            query_vector = await self._embed_query(query)

            transition(QueryState.SEARCHING)
            results = self._search_snapshot(snapshot, query_vector)

            if not results:
                logger.info("no_relevant_content", source_count=len(snapshot))
                return no_content()

            transition(QueryState.GENERATING)
            prompt = build_prompt(query, results)
            answer = await self._generate_with_retry(prompt)

        except ProviderError as e:
            transition(QueryState.FAILED)
            logger.error("query_failed", kind=e.kind.value, model=e.model, error=str(e))
            raise

        transition(QueryState.DONE)
        answer.sources = results
        answer.trace = trace

        logger.info(
            "query_completed",
            sources=len(results),
            model=answer.model,
            attempts=answer.attempts,
            response_length=len(answer.text),
        )
        return answer

    async def _generate_with_retry(self, prompt: str) -> Answer:
        """Call the generator under the retry policy.

        Auth, rate-limit and unclassified failures are raised on the spot.
        Transient overloads are retried after an exponential wait, switching
        to the first fallback model for the second attempt.
        """
        policy = self.retry_policy
        model = self.settings.generative_model
        switches = 0
        last_error: Optional[ProviderError] = None

        for attempt in range(policy.max_attempts):
            try:
                text = await self.generator.generate(model, prompt)
                return Answer(
                    text=text,
                    state=QueryState.DONE,
                    model=model,
                    attempts=attempt + 1,
                    model_switches=switches,
                )
            except ProviderError as e:
                if not e.retryable:
                    raise
                last_error = e
            except Exception as e:
                raise ProviderError(ProviderErrorKind.OTHER, str(e), model=model) from e

            logger.warning(
                "generation_overloaded",
                attempt=attempt + 1,
                max_attempts=policy.max_attempts,
                model=model,
            )

            if attempt + 1 >= policy.max_attempts:
                break

            await self._sleep(policy.delay_for(attempt))

            if attempt + 1 == policy.switch_at_attempt and self.settings.fallback_models:
                fallback = self.settings.fallback_models[0]
                logger.info("generation_model_switched", from_model=model, to_model=fallback)
                model = fallback
                switches += 1

        raise ServiceUnavailableError(
            f"Generation unavailable after {policy.max_attempts} attempts: {last_error}",
            model=model,
            attempts=policy.max_attempts,
        )
