"""
Shared Pydantic schemas for the resume-search system.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, List, Dict, Any
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator


MAX_QUERY_LENGTH = 500
MAX_HISTORY_CONTENT_LENGTH = 4000


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Role(str, Enum):
    """Principal role, ordered viewer < manager < admin."""

    VIEWER = "viewer"
    MANAGER = "manager"
    ADMIN = "admin"

    @property
    def rank(self) -> int:
        return ROLE_HIERARCHY[self]


ROLE_HIERARCHY = {
    Role.VIEWER: 0,
    Role.MANAGER: 1,
    Role.ADMIN: 2,
}


class Principal(BaseModel):
    """Authenticated identity making a request."""
    id: str = Field(..., description="Principal identifier")
    role: Role = Field(Role.VIEWER, description="Principal role")

    model_config = {"frozen": True}


class ExperienceEntry(BaseModel):
    """One position held by a candidate."""
    organization: str = Field("", description="Employer name")
    title: str = Field("", description="Position title")
    period: str = Field("", description="Free-form employment period, e.g. '2019 - 2023'")
    description: str = Field("", description="What the candidate did in this role")


class EducationEntry(BaseModel):
    """One education record of a candidate."""
    institution: str = Field("", description="School or university")
    credential: str = Field("", description="Degree or certificate")
    field: str = Field("", description="Field of study")


class CandidateRecord(BaseModel):
    """Resume record owned by the resume store; read-only to search."""
    id: str = Field(..., description="Opaque, stable resume identifier")
    name: str = Field(..., description="Candidate full name")
    email: Optional[str] = Field(None, description="Contact email")
    phone: Optional[str] = Field(None, description="Contact phone")
    location: Optional[str] = Field(None, description="Candidate location")
    skills: List[str] = Field(default_factory=list, description="Skills in resume order")
    experience: List[ExperienceEntry] = Field(default_factory=list, description="Work history in resume order")
    education: List[EducationEntry] = Field(default_factory=list, description="Education in resume order")
    salary_expectation: Optional[float] = Field(None, ge=0, description="Expected salary")
    summary: Optional[str] = Field(None, description="Free-text resume summary")


class TurnRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class Turn(BaseModel):
    """One message of a conversation."""
    role: TurnRole
    text: str = Field(..., description="Message text")


class ResultSummary(BaseModel):
    """Compact reference to a matched candidate kept in conversation context."""
    id: str
    name: str


class ConversationContext(BaseModel):
    """Full context of a thread, replaced wholesale on every update."""
    turns: List[Turn] = Field(default_factory=list)
    last_query: Optional[str] = None
    last_results: List[ResultSummary] = Field(default_factory=list)


class ConversationThread(BaseModel):
    """Conversation thread owned by a single principal."""
    id: str = Field(default_factory=lambda: str(uuid4()))
    owner_id: str = Field(..., description="Principal id of the thread owner")
    title: str = Field("", description="First query of the thread")
    context: ConversationContext = Field(default_factory=ConversationContext)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def turns(self) -> List[Turn]:
        return self.context.turns


class SearchEvent(BaseModel):
    """Append-only analytics record, one per completed blocking search."""
    principal_id: str
    query: str
    conversation_id: Optional[str] = None
    result_count: int = 0
    response_text: str = ""
    tokens_used: int = 0
    latency_ms: int = 0
    cache_hit: bool = False
    timestamp: datetime = Field(default_factory=utc_now)


class CachedSearch(BaseModel):
    """Value stored in the cache layer for a search key."""
    matched_ids: List[str] = Field(default_factory=list)
    explanation: str = ""


class HistoryMessage(BaseModel):
    """Client-supplied prior turn used to rehydrate context."""
    role: TurnRole
    content: str = Field(..., max_length=MAX_HISTORY_CONTENT_LENGTH)

    def to_turn(self) -> Turn:
        return Turn(role=self.role, text=self.content)


class StreamSearchRequest(BaseModel):
    """Streaming search request schema."""
    query: str = Field(..., min_length=1, max_length=MAX_QUERY_LENGTH, description="Natural language query")
    history: List[HistoryMessage] = Field(default_factory=list, description="Prior turns for context")

    @field_validator("query")
    @classmethod
    def query_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("query must not be blank")
        return v


class SearchRequest(StreamSearchRequest):
    """Blocking search request schema."""
    conversation_id: Optional[str] = Field(None, description="Existing conversation thread id")


class SearchResult(BaseModel):
    """Result bundle returned by the orchestrator."""
    results: List[CandidateRecord] = Field(default_factory=list, description="Matched candidates")
    explanation: str = Field(..., description="Natural-language explanation of the matches")
    cached: bool = Field(False, description="Whether the result came from the cache")
    conversation_id: Optional[str] = Field(None, description="Conversation thread id")


class AnalyticsReport(BaseModel):
    """Admin analytics payload."""
    report_type: str
    window_days: int
    daily: List[Dict[str, Any]] = Field(default_factory=list)
    popular: List[Dict[str, Any]] = Field(default_factory=list)
    summary: Optional[Dict[str, Any]] = None
