"""
Resume search API endpoints.
"""
import structlog
from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from apps.orchestrator.graph import DeliveryMode, SearchOrchestrator
from apps.orchestrator.stream import SSE_HEADERS
from shared.schemas import Principal, SearchRequest, SearchResult, StreamSearchRequest
from src.api.v1.dependencies import get_orchestrator, get_principal

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1/search", tags=["search"])


@router.post("", response_model=SearchResult)
async def search(
    body: SearchRequest,
    principal: Principal = Depends(get_principal),
    orchestrator: SearchOrchestrator = Depends(get_orchestrator),
) -> SearchResult:
    """
    Conversational resume search.

    Returns the matched candidates (always a subset of the resumes the
    caller may see), an explanation and the conversation thread id.
    """
    return await orchestrator.run(principal, body, DeliveryMode.BLOCKING)


@router.post("/stream")
async def search_stream(
    body: StreamSearchRequest,
    request: Request,
    principal: Principal = Depends(get_principal),
    orchestrator: SearchOrchestrator = Depends(get_orchestrator),
):
    """
    Streaming resume search over Server-Sent Events.

    Frames are `data: {"content": ...}`; a failure mid-stream is reported
    as an `error` event. The stream always ends with `data: [DONE]`.
    """
    frames = await orchestrator.run(
        principal,
        body,
        DeliveryMode.STREAMING,
        is_disconnected=request.is_disconnected,
    )
    return StreamingResponse(
        frames,
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )
