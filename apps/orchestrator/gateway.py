"""
Reasoning gateway: sends assembled prompts to the LLM agents.

complete() returns a structured but untrusted answer; stream() yields text
fragments. Every failure, including a timeout, surfaces once as
ReasoningUnavailable. Scope is not enforced here.
"""
import asyncio
import json
import re
from typing import Any, AsyncIterator, List, Optional

import structlog
from pydantic import BaseModel, Field

from apps.orchestrator.agents.base import BaseAgent
from apps.orchestrator.prompt_builder import PromptContext
from shared.config import Settings
from src.services.exceptions import ReasoningUnavailable

logger = structlog.get_logger()

DEFAULT_EXPLANATION = "No explanation provided"

SEARCH_AGENT = "resume_search"
STREAM_AGENT = "resume_stream"


class GatewayAnswer(BaseModel):
    """Answer of a blocking gateway call, before reconciliation."""
    matched_ids: List[str] = Field(default_factory=list)
    explanation: str = DEFAULT_EXPLANATION


def _clean_json_response(text: str) -> str:
    cleaned = re.sub(r"^```(?:json)?\s*\n?", "", text.strip())
    return re.sub(r"\n?```\s*$", "", cleaned)


def _coerce_id(item: Any) -> Optional[str]:
    if isinstance(item, dict):
        item = item.get("id")
    if item is None or isinstance(item, (dict, list, bool)):
        return None
    value = str(item).strip()
    return value or None


def parse_answer(raw_text: str) -> GatewayAnswer:
    """
    Parse the model's JSON answer defensively.

    Accepts markdown-wrapped JSON and result items given either as ids or as
    objects with an "id" field. Anything unparseable yields an empty answer.
    """
    try:
        data = json.loads(_clean_json_response(raw_text or ""))
    except json.JSONDecodeError as e:
        logger.warning("gateway_answer_unparseable", error=str(e), response_length=len(raw_text or ""))
        return GatewayAnswer()

    if not isinstance(data, dict):
        logger.warning("gateway_answer_not_object", answer_type=type(data).__name__)
        return GatewayAnswer()

    results = data.get("results")
    if not isinstance(results, list):
        results = []

    matched_ids: List[str] = []
    for item in results:
        candidate_id = _coerce_id(item)
        if candidate_id is not None and candidate_id not in matched_ids:
            matched_ids.append(candidate_id)

    explanation = data.get("explanation")
    if not isinstance(explanation, str) or not explanation.strip():
        explanation = DEFAULT_EXPLANATION

    return GatewayAnswer(matched_ids=matched_ids, explanation=explanation.strip())


class ReasoningGateway:
    """Entry point to the external reasoning service."""

    def __init__(self, search_agent: BaseAgent, stream_agent: BaseAgent, timeout_seconds: float = 60.0):
        self.search_agent = search_agent
        self.stream_agent = stream_agent
        self.timeout_seconds = timeout_seconds

    @classmethod
    def from_settings(cls, settings: Settings) -> "ReasoningGateway":
        return cls(
            search_agent=BaseAgent(SEARCH_AGENT, settings=settings),
            stream_agent=BaseAgent(STREAM_AGENT, settings=settings),
            timeout_seconds=settings.reasoning_timeout_seconds,
        )

    async def complete(self, prompt: PromptContext) -> GatewayAnswer:
        """
        Run a blocking search completion.

        Raises:
            ReasoningUnavailable: On provider error or timeout
        """
        try:
            response = await asyncio.wait_for(
                self.search_agent.invoke(prompt.messages, json_mode=True),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            logger.error("reasoning_gateway_timeout", timeout_seconds=self.timeout_seconds)
            raise ReasoningUnavailable() from e
        except Exception as e:
            logger.error("reasoning_gateway_failed", error=str(e), error_type=type(e).__name__)
            raise ReasoningUnavailable() from e

        content = response.content if hasattr(response, "content") else str(response)
        if not isinstance(content, str):
            content = json.dumps(content) if content is not None else ""
        return parse_answer(content)

    async def stream(self, prompt: PromptContext) -> AsyncIterator[str]:
        """
        Stream answer fragments. Finite and not restartable.

        Raises:
            ReasoningUnavailable: On provider error or when no fragment arrives within the timeout
        """
        fragments = self.stream_agent.stream(prompt.messages)
        try:
            while True:
                try:
                    fragment = await asyncio.wait_for(fragments.__anext__(), timeout=self.timeout_seconds)
                except StopAsyncIteration:
                    return
                yield fragment
        except asyncio.TimeoutError as e:
            logger.error("reasoning_stream_timeout", timeout_seconds=self.timeout_seconds)
            raise ReasoningUnavailable() from e
        except ReasoningUnavailable:
            raise
        except Exception as e:
            logger.error("reasoning_stream_failed", error=str(e), error_type=type(e).__name__)
            raise ReasoningUnavailable() from e
        finally:
            aclose = getattr(fragments, "aclose", None)
            if aclose is not None:
                try:
                    await aclose()
                except Exception as e:
                    logger.debug("reasoning_stream_close_failed", error=str(e))
