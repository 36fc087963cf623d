"""Shared modules for resume-search system."""
from shared.schemas import (
    CandidateRecord,
    ConversationThread,
    Principal,
    Role,
    SearchEvent,
    SearchRequest,
    SearchResult,
    StreamSearchRequest,
)

__all__ = [
    "CandidateRecord",
    "ConversationThread",
    "Principal",
    "Role",
    "SearchEvent",
    "SearchRequest",
    "SearchResult",
    "StreamSearchRequest",
]
