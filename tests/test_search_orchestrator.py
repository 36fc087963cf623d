"""
Tests for the search orchestrator: fast path, slow path, scope enforcement,
conversation ownership and non-fatal cache/event-log failures.
"""
import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from langchain_core.messages import HumanMessage

from apps.orchestrator.gateway import GatewayAnswer
from apps.orchestrator.graph import (
    NO_RESUMES_EXPLANATION,
    DeliveryMode,
    SearchOrchestrator,
    estimate_tokens,
)
from apps.orchestrator.prompt_builder import HISTORY_TEXT_LIMIT
from apps.orchestrator.stream import DONE_FRAME
from shared.schemas import Principal, Role, SearchRequest, StreamSearchRequest
from src.services.cache import CacheBackend, SearchCache
from src.services.exceptions import Forbidden, PersistenceUnavailable, ReasoningUnavailable
from src.services.resume_store import InMemoryResumeStore
from tests.conftest import ScriptedGateway


async def _collect(frames):
    return [frame async for frame in frames]


class TestBlockingSearch:
    """Slow path: scope, prompt, gateway, reconciliation, conversation, event."""

    @pytest.mark.asyncio
    async def test_returns_reconciled_results_in_answer_order(self, orchestrator, principal, gateway):
        result = await orchestrator.search(principal, SearchRequest(query="backend engineers"))

        assert [c.id for c in result.results] == ["r2", "r1"]
        assert result.explanation == "Alice and Bob know backend."
        assert result.cached is False
        assert result.conversation_id is not None
        assert len(gateway.complete_calls) == 1

    @pytest.mark.asyncio
    async def test_foreign_ids_are_dropped(self, candidates, cache, conversations, event_log, principal):
        store = InMemoryResumeStore(candidates, permissions={"u1": ["r1", "r2"]})
        gateway = ScriptedGateway(answer=GatewayAnswer(matched_ids=["r1", "r3"], explanation="Two matches"))
        orchestrator = SearchOrchestrator(cache, store, conversations, event_log, gateway)

        result = await orchestrator.search(principal, SearchRequest(query="anyone"))

        assert [c.id for c in result.results] == ["r1"]

    @pytest.mark.asyncio
    async def test_prompt_enumerates_only_visible_resumes(self, candidates, cache, conversations, event_log, principal):
        store = InMemoryResumeStore(candidates, permissions={"u1": ["r1"]})
        gateway = ScriptedGateway()
        orchestrator = SearchOrchestrator(cache, store, conversations, event_log, gateway)

        await orchestrator.search(principal, SearchRequest(query="anyone"))

        prompt = gateway.complete_calls[0]
        assert prompt.candidate_ids == ["r1"]
        assert "Bob Jones" not in "".join(m.content for m in prompt.messages)

    @pytest.mark.asyncio
    async def test_creates_thread_with_turn_pair(self, orchestrator, principal, conversations):
        result = await orchestrator.search(principal, SearchRequest(query="backend engineers"))

        thread = await conversations.get(result.conversation_id, principal.id)
        assert [t.role.value for t in thread.turns] == ["user", "assistant"]
        assert thread.turns[0].text == "backend engineers"
        assert thread.turns[1].text == "Alice and Bob know backend."
        assert thread.context.last_query == "backend engineers"
        assert [r.id for r in thread.context.last_results] == ["r2", "r1"]
        assert thread.title == "backend engineers"

    @pytest.mark.asyncio
    async def test_follow_up_uses_stored_history(self, orchestrator, principal, gateway, conversations):
        first = await orchestrator.search(principal, SearchRequest(query="backend engineers"))
        second = await orchestrator.search(
            principal,
            SearchRequest(query="only those in Berlin", conversation_id=first.conversation_id),
        )

        assert second.conversation_id == first.conversation_id
        follow_up_prompt = gateway.complete_calls[1]
        human_texts = [m.content for m in follow_up_prompt.messages if isinstance(m, HumanMessage)]
        assert human_texts == ["backend engineers", "only those in Berlin"]

        thread = await conversations.get(first.conversation_id, principal.id)
        assert len(thread.turns) == 4

    @pytest.mark.asyncio
    async def test_client_history_seeds_new_thread(self, orchestrator, principal, gateway, conversations):
        request = SearchRequest(
            query="and who knows Go?",
            history=[
                {"role": "user", "content": "show me engineers"},
                {"role": "assistant", "content": "Here are three engineers."},
            ],
        )
        result = await orchestrator.search(principal, request)

        thread = await conversations.get(result.conversation_id, principal.id)
        assert [t.text for t in thread.turns][:2] == ["show me engineers", "Here are three engineers."]
        assert len(gateway.complete_calls[0].messages) == 5

    @pytest.mark.asyncio
    async def test_client_history_kept_for_thread_without_turns(self, orchestrator, principal, gateway, conversations):
        thread = await conversations.create(principal.id, "engineers")
        request = SearchRequest(
            query="and who knows Go?",
            conversation_id=thread.id,
            history=[
                {"role": "user", "content": "show me engineers"},
                {"role": "assistant", "content": "Here are three engineers."},
            ],
        )
        await orchestrator.search(principal, request)

        stored = await conversations.get(thread.id, principal.id)
        assert [t.text for t in stored.turns] == [
            "show me engineers",
            "Here are three engineers.",
            "and who knows Go?",
            "Alice and Bob know backend.",
        ]
        assert len(gateway.complete_calls[0].messages) == 5

    @pytest.mark.asyncio
    async def test_oversized_client_history_is_bounded_in_prompt(self, orchestrator, principal, gateway):
        request = SearchRequest(
            query="python",
            history=[{"role": "user", "content": "x" * 4000} for _ in range(20)],
        )
        await orchestrator.search(principal, request)

        history = gateway.complete_calls[0].messages[2:-1]
        assert len(history) == 20
        assert all(len(m.content) <= HISTORY_TEXT_LIMIT for m in history)

    @pytest.mark.asyncio
    async def test_writes_one_search_event(self, orchestrator, principal, event_log):
        result = await orchestrator.search(principal, SearchRequest(query="backend engineers"))

        assert len(event_log.events) == 1
        event = event_log.events[0]
        assert event.principal_id == "u1"
        assert event.query == "backend engineers"
        assert event.conversation_id == result.conversation_id
        assert event.result_count == 2
        assert event.cache_hit is False
        assert event.tokens_used == estimate_tokens("Alice and Bob know backend.")

    @pytest.mark.asyncio
    async def test_latency_measured_from_request_start(self, cache, resume_store, conversations, event_log, gateway, principal):
        clock = MagicMock(side_effect=[100.0, 100.25])
        orchestrator = SearchOrchestrator(cache, resume_store, conversations, event_log, gateway, clock=clock)

        await orchestrator.search(principal, SearchRequest(query="backend engineers"))

        assert event_log.events[0].latency_ms == 250

    @pytest.mark.asyncio
    async def test_gateway_failure_surfaces(self, cache, resume_store, conversations, event_log, principal):
        gateway = ScriptedGateway(error=ReasoningUnavailable())
        orchestrator = SearchOrchestrator(cache, resume_store, conversations, event_log, gateway)

        with pytest.raises(ReasoningUnavailable):
            await orchestrator.search(principal, SearchRequest(query="backend engineers"))

        assert await cache.get_search(principal.id, "backend engineers") is None
        assert event_log.events == []


class TestCacheFastPath:
    """Repeat queries short-circuit through the cache."""

    @pytest.mark.asyncio
    async def test_repeat_query_skips_gateway(self, orchestrator, principal, gateway, event_log):
        first = await orchestrator.search(principal, SearchRequest(query="Backend engineers"))
        second = await orchestrator.search(principal, SearchRequest(query="  backend ENGINEERS "))

        assert len(gateway.complete_calls) == 1
        assert second.cached is True
        assert [c.id for c in second.results] == [c.id for c in first.results]
        assert second.explanation == first.explanation

        assert [e.cache_hit for e in event_log.events] == [False, True]
        assert event_log.events[1].tokens_used == 0

    @pytest.mark.asyncio
    async def test_cache_is_per_principal(self, candidates, cache, conversations, event_log, gateway, principal, other_principal):
        store = InMemoryResumeStore(candidates, permissions={"u1": ["r1", "r2"], "u2": ["r1", "r2"]})
        orchestrator = SearchOrchestrator(cache, store, conversations, event_log, gateway)

        await orchestrator.search(principal, SearchRequest(query="backend engineers"))
        result = await orchestrator.search(other_principal, SearchRequest(query="backend engineers"))

        assert result.cached is False
        assert len(gateway.complete_calls) == 2

    @pytest.mark.asyncio
    async def test_revoked_resume_invalidates_cached_answer(self, orchestrator, principal, resume_store, gateway, cache):
        await orchestrator.search(principal, SearchRequest(query="backend engineers"))
        resume_store.revoke("u1", "r2")

        result = await orchestrator.search(principal, SearchRequest(query="backend engineers"))

        assert result.cached is False
        assert len(gateway.complete_calls) == 2
        assert gateway.complete_calls[1].candidate_ids == ["r1", "r3"]
        assert [c.id for c in result.results] == ["r1"]
        cached = await cache.get_search(principal.id, "backend engineers")
        assert cached.matched_ids == ["r1"]

    @pytest.mark.asyncio
    async def test_cache_hit_does_not_touch_conversation(self, orchestrator, principal, conversations):
        first = await orchestrator.search(principal, SearchRequest(query="backend engineers"))
        await orchestrator.search(
            principal,
            SearchRequest(query="backend engineers", conversation_id=first.conversation_id),
        )

        thread = await conversations.get(first.conversation_id, principal.id)
        assert len(thread.turns) == 2

    @pytest.mark.asyncio
    async def test_cache_errors_are_non_fatal(self, resume_store, conversations, event_log, gateway, principal):
        backend = MagicMock(spec=CacheBackend)
        backend.get = AsyncMock(side_effect=ConnectionError("redis down"))
        backend.set = AsyncMock(side_effect=ConnectionError("redis down"))
        orchestrator = SearchOrchestrator(SearchCache(backend), resume_store, conversations, event_log, gateway)

        result = await orchestrator.search(principal, SearchRequest(query="backend engineers"))

        assert [c.id for c in result.results] == ["r2", "r1"]
        assert result.cached is False
        backend.set.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_cached_value_written_after_slow_path(self, orchestrator, principal, cache):
        await orchestrator.search(principal, SearchRequest(query="Backend Engineers"))

        raw = await cache.backend.get("search:u1:backend engineers")
        assert json.loads(raw)["value"]["matched_ids"] == ["r2", "r1"]
        assert json.loads(raw)["ttl"] == 3600


class TestScopeAndOwnership:
    """Empty scopes, foreign threads and persistence failures."""

    @pytest.mark.asyncio
    async def test_empty_scope_short_circuits(self, orchestrator, gateway, cache, conversations, event_log):
        stranger = Principal(id="nobody", role=Role.VIEWER)

        result = await orchestrator.search(stranger, SearchRequest(query="backend engineers"))

        assert result.results == []
        assert result.explanation == NO_RESUMES_EXPLANATION
        assert result.cached is False
        assert gateway.complete_calls == []
        assert await cache.get_search(stranger.id, "backend engineers") is None
        assert len(event_log.events) == 1
        assert event_log.events[0].result_count == 0

    @pytest.mark.asyncio
    async def test_foreign_thread_is_forbidden(self, candidates, cache, conversations, event_log, gateway, principal, other_principal):
        store = InMemoryResumeStore(candidates, permissions={"u1": ["r1", "r2"], "u2": ["r3"]})
        orchestrator = SearchOrchestrator(cache, store, conversations, event_log, gateway)
        owned = await orchestrator.search(principal, SearchRequest(query="backend engineers"))

        with pytest.raises(Forbidden):
            await orchestrator.search(
                other_principal,
                SearchRequest(query="what did they ask?", conversation_id=owned.conversation_id),
            )

        assert len(gateway.complete_calls) == 1
        thread = await conversations.get(owned.conversation_id, principal.id)
        assert len(thread.turns) == 2

    @pytest.mark.asyncio
    async def test_foreign_thread_forbidden_on_cache_hit(self, candidates, cache, conversations, event_log, gateway, principal, other_principal):
        store = InMemoryResumeStore(candidates, permissions={"u1": ["r1"], "u2": ["r1"]})
        orchestrator = SearchOrchestrator(cache, store, conversations, event_log, gateway)
        owned = await orchestrator.search(principal, SearchRequest(query="backend engineers"))
        await orchestrator.search(other_principal, SearchRequest(query="backend engineers"))

        with pytest.raises(Forbidden):
            await orchestrator.search(
                other_principal,
                SearchRequest(query="backend engineers", conversation_id=owned.conversation_id),
            )

    @pytest.mark.asyncio
    async def test_unknown_thread_is_forbidden(self, orchestrator, principal):
        with pytest.raises(Forbidden):
            await orchestrator.search(principal, SearchRequest(query="hello", conversation_id="missing"))

    @pytest.mark.asyncio
    async def test_resume_store_failure_is_fatal(self, cache, conversations, event_log, gateway, principal):
        store = MagicMock()
        store.list_visible = AsyncMock(side_effect=RuntimeError("connection reset"))
        orchestrator = SearchOrchestrator(cache, store, conversations, event_log, gateway)

        with pytest.raises(PersistenceUnavailable):
            await orchestrator.search(principal, SearchRequest(query="backend engineers"))

        assert gateway.complete_calls == []

    @pytest.mark.asyncio
    async def test_event_log_failure_is_non_fatal(self, cache, resume_store, conversations, gateway, principal):
        event_log = MagicMock()
        event_log.append = AsyncMock(side_effect=RuntimeError("disk full"))
        orchestrator = SearchOrchestrator(cache, resume_store, conversations, event_log, gateway)

        result = await orchestrator.search(principal, SearchRequest(query="backend engineers"))

        assert [c.id for c in result.results] == ["r2", "r1"]
        event_log.append.assert_awaited_once()


class TestDeliveryModes:
    """run() dispatches on delivery mode; streaming skips post-processing."""

    @pytest.mark.asyncio
    async def test_blocking_mode_returns_result(self, orchestrator, principal):
        result = await orchestrator.run(principal, StreamSearchRequest(query="backend engineers"))

        assert [c.id for c in result.results] == ["r2", "r1"]

    @pytest.mark.asyncio
    async def test_streaming_mode_yields_frames(self, cache, resume_store, conversations, event_log, principal):
        gateway = ScriptedGateway(fragments=["Alice ", "fits."])
        orchestrator = SearchOrchestrator(cache, resume_store, conversations, event_log, gateway)

        frames = await orchestrator.run(
            principal,
            StreamSearchRequest(query="backend engineers"),
            DeliveryMode.STREAMING,
        )
        collected = await _collect(frames)

        assert collected == [
            'data: {"content": "Alice "}\n\n',
            'data: {"content": "fits."}\n\n',
            DONE_FRAME,
        ]
        assert event_log.events == []
        assert await cache.get_search(principal.id, "backend engineers") is None
        assert gateway.stream_closed is True

    @pytest.mark.asyncio
    async def test_streaming_empty_scope_skips_gateway(self, orchestrator, gateway):
        stranger = Principal(id="nobody", role=Role.VIEWER)

        frames = await orchestrator.run(stranger, StreamSearchRequest(query="anyone"), DeliveryMode.STREAMING)
        collected = await _collect(frames)

        assert collected == [
            'data: {"content": "No resumes available for search."}\n\n',
            DONE_FRAME,
        ]
        assert gateway.stream_calls == []

    @pytest.mark.asyncio
    async def test_streaming_scope_failure_raises_before_first_frame(self, cache, conversations, event_log, gateway, principal):
        store = MagicMock()
        store.list_visible = AsyncMock(side_effect=OSError("db down"))
        orchestrator = SearchOrchestrator(cache, store, conversations, event_log, gateway)

        with pytest.raises(PersistenceUnavailable):
            await orchestrator.run(principal, StreamSearchRequest(query="anyone"), DeliveryMode.STREAMING)
