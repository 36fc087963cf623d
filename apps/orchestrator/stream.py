"""
Stream transcoder: turns answer fragments into Server-Sent Events.

Frames:
    data: {"content": "<fragment>"}          one per fragment
    event: error / data: {"code", "message"}  when the fragment source fails
    data: [DONE]                              always last
"""
import json
from typing import AsyncIterator, Awaitable, Callable, Dict, Optional

import structlog

from src.services.exceptions import SearchServiceError

logger = structlog.get_logger()

DONE_FRAME = "data: [DONE]\n\n"

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",  # Disable nginx buffering
}


def sse_data(payload: Dict[str, str]) -> str:
    return f"data: {json.dumps(payload)}\n\n"


def sse_event(event_type: str, payload: Dict[str, str]) -> str:
    """
    Format a named Server-Sent Event.

    Format:
        event: <type>
        data: <json>

        (blank line terminates event)
    """
    return f"event: {event_type}\ndata: {json.dumps(payload)}\n\n"


async def _close(fragments: AsyncIterator[str]) -> None:
    aclose = getattr(fragments, "aclose", None)
    if aclose is None:
        return
    try:
        await aclose()
    except Exception as e:
        logger.debug("fragment_source_close_failed", error=str(e))


async def transcode(
    fragments: AsyncIterator[str],
    is_disconnected: Optional[Callable[[], Awaitable[bool]]] = None,
) -> AsyncIterator[str]:
    """
    Yield one SSE frame per fragment and finish with the [DONE] sentinel.

    The sentinel is emitted after normal completion, after a source error
    (preceded by an error frame) and when is_disconnected() reports that the
    client went away. The fragment source is closed on every exit path,
    including task cancellation.
    """
    sent = 0
    try:
        async for fragment in fragments:
            if is_disconnected is not None and await is_disconnected():
                logger.info("stream_client_disconnected", fragments_sent=sent)
                break
            if not fragment:
                continue
            yield sse_data({"content": fragment})
            sent += 1
    except SearchServiceError as e:
        logger.warning("stream_source_failed", code=e.code, fragments_sent=sent)
        yield sse_event("error", {"code": e.code, "message": e.message})
    except Exception as e:
        logger.error("stream_source_error", error=str(e), error_type=type(e).__name__, fragments_sent=sent)
        yield sse_event("error", {"code": "internal_error", "message": "Stream search failed"})
    finally:
        await _close(fragments)

    logger.info("stream_completed", fragments_sent=sent)
    yield DONE_FRAME
