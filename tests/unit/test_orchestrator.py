"""Tests for the retrieval orchestrator: search, prompt assembly and retry policy."""
import asyncio

import pytest

from vault_rag.errors import ProviderError, ProviderErrorKind, ServiceUnavailableError
from vault_rag.rag.orchestrator import (
    CONTEXT_DELIMITER,
    NO_RELEVANT_CONTENT,
    QueryState,
    RetrievalOrchestrator,
    RetryPolicy,
    build_context,
)
from vault_rag.rag.types import Chunk
from vault_rag.settings import load_settings

from .conftest import FakeEmbedder, ScriptedGenerator, keyword_vector, transient

CAT_QUESTION = "Where does my cat sleep?"


@pytest.fixture
def filled_cache(cache, documents):
    for source_id, (label, text) in documents.items():
        cache.put(
            source_id,
            [Chunk(content=text, source_id=source_id, source_label=label, vector=keyword_vector(text))],
        )
    return cache


def make_orchestrator(embedder, generator, cache, settings, sleep):
    return RetrievalOrchestrator(
        embedder=embedder,
        generator=generator,
        cache=cache,
        settings=settings,
        sleep=sleep,
    )


async def test_answer_uses_retrieved_context(embedder, generator, filled_cache, settings, sleep):
    """Test the happy path: one generation call with the matching note as context."""
    orchestrator = make_orchestrator(embedder, generator, filled_cache, settings, sleep)

    answer = await orchestrator.answer(CAT_QUESTION)

    assert answer.state is QueryState.DONE
    assert answer.found_content
    assert answer.text == "generated answer"
    assert answer.model == "chat-test"
    assert answer.attempts == 1
    assert answer.model_switches == 0
    assert [c.source_id for c in answer.sources] == ["pets/cats.md"]
    assert answer.sources[0].score == pytest.approx(2 / 5 ** 0.5)
    assert generator.models == ["chat-test"]
    assert sleep.delays == []


async def test_prompt_contains_labelled_context_and_question(
    embedder, generator, filled_cache, settings, sleep, documents
):
    orchestrator = make_orchestrator(embedder, generator, filled_cache, settings, sleep)

    answer = await orchestrator.answer("cat and coffee")

    # morning.md scores 0.707, cats.md 0.632
    assert [c.source_id for c in answer.sources] == ["morning.md", "pets/cats.md"]
    prompt = generator.calls[0][1]
    expected_context = (
        f'From "morning.md":\n{documents["morning.md"][1]}'
        + CONTEXT_DELIMITER
        + f'From "cats.md":\n{documents["pets/cats.md"][1]}'
    )
    assert build_context(answer.sources) == expected_context
    assert expected_context in prompt
    assert "Question: cat and coffee" in prompt
    assert prompt.startswith("Based on the following content from the user's notes")


async def test_trace_for_successful_query(embedder, generator, filled_cache, settings, sleep):
    orchestrator = make_orchestrator(embedder, generator, filled_cache, settings, sleep)

    answer = await orchestrator.answer(CAT_QUESTION)

    assert answer.trace == [
        QueryState.IDLE,
        QueryState.EMBEDDING,
        QueryState.SEARCHING,
        QueryState.GENERATING,
        QueryState.DONE,
    ]


async def test_transient_failures_back_off_and_switch_to_fallback(
    embedder, filled_cache, settings, sleep
):
    """Test the retry schedule: 2s then 4s, fallback model from the second attempt."""
    generator = ScriptedGenerator([
        transient("chat-test"),
        transient("backup-model"),
        "answer from backup",
    ])
    orchestrator = make_orchestrator(embedder, generator, filled_cache, settings, sleep)

    answer = await orchestrator.answer(CAT_QUESTION)

    assert answer.text == "answer from backup"
    assert answer.state is QueryState.DONE
    assert generator.models == ["chat-test", "backup-model", "backup-model"]
    assert sleep.delays == [2.0, 4.0]
    assert answer.attempts == 3
    assert answer.model_switches == 1
    assert answer.model == "backup-model"


async def test_single_transient_failure_recovers_on_fallback(embedder, filled_cache, settings, sleep):
    generator = ScriptedGenerator([transient(), "recovered"])
    orchestrator = make_orchestrator(embedder, generator, filled_cache, settings, sleep)

    answer = await orchestrator.answer(CAT_QUESTION)

    assert answer.text == "recovered"
    assert generator.models == ["chat-test", "backup-model"]
    assert sleep.delays == [2.0]
    assert answer.attempts == 2


async def test_exhausted_retries_raise_service_unavailable(embedder, filled_cache, settings, sleep):
    """Test that three transient failures surface as service-unavailable."""
    generator = ScriptedGenerator([transient()])
    orchestrator = make_orchestrator(embedder, generator, filled_cache, settings, sleep)

    with pytest.raises(ServiceUnavailableError) as exc_info:
        await orchestrator.answer(CAT_QUESTION)

    error = exc_info.value
    assert error.kind is ProviderErrorKind.SERVICE_UNAVAILABLE
    assert error.attempts == 3
    assert error.user_message != transient().user_message
    assert len(generator.calls) == 3
    assert sleep.delays == [2.0, 4.0]


@pytest.mark.parametrize(
    "kind",
    [ProviderErrorKind.AUTH, ProviderErrorKind.RATE_LIMITED, ProviderErrorKind.OTHER],
)
async def test_non_transient_failures_fail_fast(embedder, filled_cache, settings, sleep, kind):
    """Test that auth, rate-limit and other errors are never retried."""
    generator = ScriptedGenerator([ProviderError(kind, "nope", model="chat-test")])
    orchestrator = make_orchestrator(embedder, generator, filled_cache, settings, sleep)

    with pytest.raises(ProviderError) as exc_info:
        await orchestrator.answer(CAT_QUESTION)

    assert exc_info.value.kind is kind
    assert len(generator.calls) == 1
    assert sleep.delays == []


async def test_rate_limit_after_transient_stops_retrying(embedder, filled_cache, settings, sleep):
    generator = ScriptedGenerator([
        transient(),
        ProviderError(ProviderErrorKind.RATE_LIMITED, "slow down", model="backup-model"),
        "never reached",
    ])
    orchestrator = make_orchestrator(embedder, generator, filled_cache, settings, sleep)

    with pytest.raises(ProviderError) as exc_info:
        await orchestrator.answer(CAT_QUESTION)

    assert exc_info.value.kind is ProviderErrorKind.RATE_LIMITED
    assert generator.models == ["chat-test", "backup-model"]
    assert sleep.delays == [2.0]


async def test_unexpected_generator_exception_is_classified_other(
    embedder, filled_cache, settings, sleep
):
    generator = ScriptedGenerator([RuntimeError("socket closed")])
    orchestrator = make_orchestrator(embedder, generator, filled_cache, settings, sleep)

    with pytest.raises(ProviderError) as exc_info:
        await orchestrator.answer(CAT_QUESTION)

    assert exc_info.value.kind is ProviderErrorKind.OTHER
    assert len(generator.calls) == 1


async def test_no_fallback_models_retries_same_model(embedder, filled_cache, settings, sleep):
    settings = load_settings(**{**settings.model_dump(), "fallback_models": ()})
    generator = ScriptedGenerator([transient(), transient(), "third time lucky"])
    orchestrator = make_orchestrator(embedder, generator, filled_cache, settings, sleep)

    answer = await orchestrator.answer(CAT_QUESTION)

    assert generator.models == ["chat-test", "chat-test", "chat-test"]
    assert answer.model_switches == 0
    assert answer.text == "third time lucky"


async def test_custom_retry_policy(embedder, filled_cache, settings, sleep):
    generator = ScriptedGenerator([transient()])
    orchestrator = RetrievalOrchestrator(
        embedder=embedder,
        generator=generator,
        cache=filled_cache,
        settings=settings,
        retry_policy=RetryPolicy(max_attempts=2, base_delay=0.5),
        sleep=sleep,
    )

    with pytest.raises(ServiceUnavailableError):
        await orchestrator.answer(CAT_QUESTION)

    assert sleep.delays == [0.5]
    assert len(generator.calls) == 2


def test_retry_policy_delays():
    policy = RetryPolicy()
    assert [policy.delay_for(n) for n in range(3)] == [2.0, 4.0, 8.0]


async def test_empty_cache_skips_embedding_and_generation(embedder, generator, cache, settings, sleep):
    """Test that an empty cache answers with no-relevant-content and makes no calls."""
    orchestrator = make_orchestrator(embedder, generator, cache, settings, sleep)

    answer = await orchestrator.answer(CAT_QUESTION)

    assert answer.state is QueryState.NO_RELEVANT_CONTENT
    assert answer.text == NO_RELEVANT_CONTENT
    assert not answer.found_content
    assert answer.trace == [QueryState.IDLE, QueryState.NO_RELEVANT_CONTENT]
    assert embedder.calls == []
    assert generator.calls == []


async def test_nothing_above_threshold_skips_generation(
    embedder, generator, filled_cache, settings, sleep
):
    orchestrator = make_orchestrator(embedder, generator, filled_cache, settings, sleep)

    answer = await orchestrator.answer("What is the weather forecast?")

    assert answer.state is QueryState.NO_RELEVANT_CONTENT
    assert answer.sources == []
    assert answer.trace == [
        QueryState.IDLE,
        QueryState.EMBEDDING,
        QueryState.SEARCHING,
        QueryState.NO_RELEVANT_CONTENT,
    ]
    assert len(embedder.calls) == 1
    assert generator.calls == []


@pytest.mark.parametrize("query", ["", "   "])
async def test_blank_query_has_no_relevant_content(
    embedder, generator, filled_cache, settings, sleep, query
):
    orchestrator = make_orchestrator(embedder, generator, filled_cache, settings, sleep)

    answer = await orchestrator.answer(query)

    assert answer.state is QueryState.NO_RELEVANT_CONTENT
    assert embedder.calls == []


async def test_query_embedding_failure_propagates(generator, filled_cache, settings, sleep):
    embedder = FakeEmbedder(fail_marker="cat", kind=ProviderErrorKind.AUTH)
    orchestrator = make_orchestrator(embedder, generator, filled_cache, settings, sleep)

    with pytest.raises(ProviderError) as exc_info:
        await orchestrator.answer(CAT_QUESTION)

    assert exc_info.value.kind is ProviderErrorKind.AUTH
    assert generator.calls == []


async def test_search_returns_ranked_chunks(embedder, generator, filled_cache, settings, sleep):
    orchestrator = make_orchestrator(embedder, generator, filled_cache, settings, sleep)

    results = await orchestrator.search("cat and coffee")

    assert [c.source_id for c in results] == ["morning.md", "pets/cats.md"]
    assert results[0].score > results[1].score
    assert generator.calls == []


async def test_search_blank_query(embedder, generator, filled_cache, settings, sleep):
    orchestrator = make_orchestrator(embedder, generator, filled_cache, settings, sleep)

    assert await orchestrator.search("  ") == []
    assert embedder.calls == []


async def test_concurrent_queries_are_independent(filled_cache, settings, sleep):
    """Test that overlapping queries each get their own sources and state."""

    class SlowEmbedder(FakeEmbedder):
        async def embed(self, model, text):
            await asyncio.sleep(0.01 if "cat" in text else 0)
            return await super().embed(model, text)

    orchestrator = make_orchestrator(
        SlowEmbedder(), ScriptedGenerator(), filled_cache, settings, sleep
    )

    cat, python, nothing = await asyncio.gather(
        orchestrator.answer(CAT_QUESTION),
        orchestrator.answer("python virtualenv tips"),
        orchestrator.answer("weather"),
    )

    assert [c.source_id for c in cat.sources] == ["pets/cats.md"]
    assert [c.source_id for c in python.sources] == ["code/python.md"]
    assert nothing.state is QueryState.NO_RELEVANT_CONTENT
