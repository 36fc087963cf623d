"""
LangGraph orchestrator for conversational resume search.

One blocking search runs through:

    cache_check -> (hit)  -> log
                -> (miss) -> resolve_scope -> (empty) -> log
                                           -> build_prompt -> invoke_gateway
                                              -> reconcile -> update_conversation -> log

Streaming searches share scope resolution and prompt assembly, then hand
the gateway's fragments to the stream transcoder. They are not cached, do
not update conversations and are not logged.
"""
import math
import time
from enum import Enum
from typing import AsyncIterator, Awaitable, Callable, List, Optional, TypedDict, Union

import structlog
from langgraph.graph import StateGraph, END

from apps.orchestrator.gateway import GatewayAnswer, ReasoningGateway
from apps.orchestrator.prompt_builder import PromptContext, build_search_prompt, build_stream_prompt
from apps.orchestrator.reconciliation import reconcile
from apps.orchestrator.stream import transcode
from shared.schemas import (
    CandidateRecord,
    ConversationContext,
    ConversationThread,
    Principal,
    ResultSummary,
    SearchEvent,
    SearchRequest,
    SearchResult,
    StreamSearchRequest,
    Turn,
    TurnRole,
)
from src.services.cache import SearchCache
from src.services.conversation_store import ConversationStore
from src.services.event_log import EventLog, record_event
from src.services.exceptions import Forbidden, PersistenceUnavailable, SearchServiceError
from src.services.resume_store import ResumeStore

logger = structlog.get_logger()

NO_RESUMES_EXPLANATION = "No resumes available for search."


class DeliveryMode(str, Enum):
    BLOCKING = "blocking"
    STREAMING = "streaming"


class SearchState(TypedDict, total=False):
    """State for the search graph."""
    principal: Principal
    request: SearchRequest
    started_at: float
    cache_hit: bool
    scope: List[CandidateRecord]
    thread: Optional[ConversationThread]
    history: List[Turn]
    prompt: Optional[PromptContext]
    answer: Optional[GatewayAnswer]
    results: List[CandidateRecord]
    explanation: str
    conversation_id: Optional[str]
    cacheable: bool
    latency_ms: int


def estimate_tokens(text: str) -> int:
    """Rough token estimate: one token per four characters."""
    return math.ceil(len(text) / 4)


async def _single_fragment(text: str) -> AsyncIterator[str]:
    yield text


class SearchOrchestrator:
    """
    Ties one search request to cache, scope, prompt, gateway, conversation
    and event log. Collaborators are constructed once per process and
    injected here.
    """

    def __init__(
        self,
        cache: SearchCache,
        resume_store: ResumeStore,
        conversations: ConversationStore,
        event_log: EventLog,
        gateway: ReasoningGateway,
        max_history_turns: int = 20,
        candidate_text_limit: int = 400,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.cache = cache
        self.resume_store = resume_store
        self.conversations = conversations
        self.event_log = event_log
        self.gateway = gateway
        self.max_history_turns = max_history_turns
        self.candidate_text_limit = candidate_text_limit
        self._clock = clock
        self.graph = self._build_graph()

    # ------------------------------------------------------------------
    # Graph
    # ------------------------------------------------------------------

    def _build_graph(self):
        workflow = StateGraph(SearchState)

        workflow.add_node("cache_check", self.cache_check_node)
        workflow.add_node("resolve_scope", self.resolve_scope_node)
        workflow.add_node("build_prompt", self.build_prompt_node)
        workflow.add_node("invoke_gateway", self.invoke_gateway_node)
        workflow.add_node("reconcile", self.reconcile_node)
        workflow.add_node("update_conversation", self.update_conversation_node)
        workflow.add_node("log", self.log_node)

        workflow.set_entry_point("cache_check")
        workflow.add_conditional_edges(
            "cache_check",
            self.route_after_cache,
            {"hit": "log", "miss": "resolve_scope"},
        )
        workflow.add_conditional_edges(
            "resolve_scope",
            self.route_after_scope,
            {"empty": "log", "resolved": "build_prompt"},
        )
        workflow.add_edge("build_prompt", "invoke_gateway")
        workflow.add_edge("invoke_gateway", "reconcile")
        workflow.add_edge("reconcile", "update_conversation")
        workflow.add_edge("update_conversation", "log")
        workflow.add_edge("log", END)

        return workflow.compile()

    @staticmethod
    def route_after_cache(state: SearchState) -> str:
        return "hit" if state.get("cache_hit") else "miss"

    @staticmethod
    def route_after_scope(state: SearchState) -> str:
        return "resolved" if state.get("scope") else "empty"

    async def _resolve_scope(self, principal: Principal) -> List[CandidateRecord]:
        try:
            return await self.resume_store.list_visible(principal.id)
        except SearchServiceError:
            raise
        except Exception as e:
            logger.error("resume_store_error", error=str(e), error_type=type(e).__name__)
            raise PersistenceUnavailable() from e

    async def _owned_thread(self, principal: Principal, thread_id: str) -> ConversationThread:
        try:
            thread = await self.conversations.get(thread_id, principal.id)
        except SearchServiceError:
            raise
        except Exception as e:
            logger.error("conversation_store_error", error=str(e), error_type=type(e).__name__)
            raise PersistenceUnavailable() from e
        if thread is None:
            logger.warning("conversation_access_denied", principal_id=principal.id)
            raise Forbidden("Invalid conversation")
        return thread

    async def cache_check_node(self, state: SearchState) -> SearchState:
        principal = state["principal"]
        request = state["request"]

        cached = await self.cache.get_search(principal.id, request.query)
        if cached is None:
            logger.info("search_cache_miss", principal_id=principal.id)
            return {"cache_hit": False}

        if request.conversation_id:
            await self._owned_thread(principal, request.conversation_id)

        # Re-resolve against the current scope so revoked resumes never resurface.
        scope = await self._resolve_scope(principal)
        results = reconcile(cached.matched_ids, scope)
        if len(results) < len(cached.matched_ids):
            # The cached explanation may name a resume the caller can no longer see.
            logger.info("search_cache_stale", principal_id=principal.id)
            return {"cache_hit": False}

        logger.info("search_cache_hit", principal_id=principal.id, result_count=len(results))
        return {
            "cache_hit": True,
            "results": results,
            "explanation": cached.explanation,
            "conversation_id": request.conversation_id,
        }

    async def resolve_scope_node(self, state: SearchState) -> SearchState:
        principal = state["principal"]
        request = state["request"]

        thread = None
        if request.conversation_id:
            thread = await self._owned_thread(principal, request.conversation_id)

        scope = await self._resolve_scope(principal)
        logger.info("search_scope_resolved", principal_id=principal.id, scope_size=len(scope))
        if not scope:
            return {
                "scope": [],
                "results": [],
                "explanation": NO_RESUMES_EXPLANATION,
                "conversation_id": request.conversation_id,
            }
        return {"scope": scope, "thread": thread}

    async def build_prompt_node(self, state: SearchState) -> SearchState:
        request = state["request"]
        thread = state.get("thread")
        history = thread.turns if thread is not None and thread.turns else [m.to_turn() for m in request.history]
        prompt = build_search_prompt(
            state["scope"],
            history,
            request.query,
            max_history_turns=self.max_history_turns,
            text_limit=self.candidate_text_limit,
        )
        return {"thread": thread, "history": history, "prompt": prompt}

    async def invoke_gateway_node(self, state: SearchState) -> SearchState:
        answer = await self.gateway.complete(state["prompt"])
        logger.info("reasoning_answer_received", matched=len(answer.matched_ids))
        return {"answer": answer}

    async def reconcile_node(self, state: SearchState) -> SearchState:
        answer = state["answer"]
        results = reconcile(answer.matched_ids, state["scope"])
        return {"results": results, "explanation": answer.explanation}

    async def update_conversation_node(self, state: SearchState) -> SearchState:
        principal = state["principal"]
        request = state["request"]
        thread = state.get("thread")

        if thread is None:
            thread = await self.conversations.create(principal.id, request.query)
        base_turns = list(state.get("history", []))

        context = ConversationContext(
            turns=[
                *base_turns,
                Turn(role=TurnRole.USER, text=request.query),
                Turn(role=TurnRole.ASSISTANT, text=state["explanation"]),
            ],
            last_query=request.query,
            last_results=[ResultSummary(id=c.id, name=c.name) for c in state["results"]],
        )
        updated = await self.conversations.update(thread.id, principal.id, context)
        if updated is None:
            logger.warning("conversation_update_denied", principal_id=principal.id)
            raise Forbidden("Invalid conversation")

        return {"conversation_id": updated.id, "cacheable": True}

    async def log_node(self, state: SearchState) -> SearchState:
        principal = state["principal"]
        request = state["request"]
        cache_hit = bool(state.get("cache_hit"))
        explanation = state.get("explanation", "")
        results = state.get("results", [])

        latency_ms = int((self._clock() - state["started_at"]) * 1000)
        event = SearchEvent(
            principal_id=principal.id,
            query=request.query,
            conversation_id=state.get("conversation_id"),
            result_count=len(results),
            response_text=explanation,
            tokens_used=0 if cache_hit else estimate_tokens(explanation),
            latency_ms=latency_ms,
            cache_hit=cache_hit,
        )
        await record_event(self.event_log, event)

        if state.get("cacheable"):
            await self.cache.put_search(
                principal.id,
                request.query,
                [c.id for c in results],
                explanation,
            )

        logger.info(
            "search_completed",
            principal_id=principal.id,
            cache_hit=cache_hit,
            result_count=len(results),
            latency_ms=latency_ms,
        )
        return {"latency_ms": latency_ms}

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def run(
        self,
        principal: Principal,
        request: Union[SearchRequest, StreamSearchRequest],
        delivery_mode: DeliveryMode = DeliveryMode.BLOCKING,
        is_disconnected: Optional[Callable[[], Awaitable[bool]]] = None,
    ) -> Union[SearchResult, AsyncIterator[str]]:
        """
        Run one search.

        Returns:
            SearchResult for BLOCKING, an async iterator of SSE frames for STREAMING
        """
        if delivery_mode == DeliveryMode.STREAMING:
            return await self.stream(principal, request, is_disconnected=is_disconnected)
        if not isinstance(request, SearchRequest):
            request = SearchRequest(query=request.query, history=request.history)
        return await self.search(principal, request)

    async def search(self, principal: Principal, request: SearchRequest) -> SearchResult:
        """Run a blocking search through the graph."""
        logger.info(
            "search_requested",
            principal_id=principal.id,
            query_length=len(request.query),
            has_conversation=request.conversation_id is not None,
        )
        initial_state: SearchState = {
            "principal": principal,
            "request": request,
            "started_at": self._clock(),
            "cache_hit": False,
            "results": [],
            "cacheable": False,
        }
        final_state = await self.graph.ainvoke(initial_state)

        return SearchResult(
            results=final_state.get("results", []),
            explanation=final_state.get("explanation", ""),
            cached=bool(final_state.get("cache_hit")),
            conversation_id=final_state.get("conversation_id"),
        )

    async def stream(
        self,
        principal: Principal,
        request: StreamSearchRequest,
        is_disconnected: Optional[Callable[[], Awaitable[bool]]] = None,
    ) -> AsyncIterator[str]:
        """
        Prepare a streamed search and return its SSE frames.

        Scope is resolved before the first frame so persistence failures
        surface as a regular error response.
        """
        logger.info("stream_search_requested", principal_id=principal.id, query_length=len(request.query))
        scope = await self._resolve_scope(principal)
        prompt = build_stream_prompt(
            scope,
            [m.to_turn() for m in request.history],
            request.query,
            max_history_turns=self.max_history_turns,
            text_limit=self.candidate_text_limit,
        )
        if prompt is None:
            fragments = _single_fragment(NO_RESUMES_EXPLANATION)
        else:
            fragments = self.gateway.stream(prompt)
        return transcode(fragments, is_disconnected=is_disconnected)
