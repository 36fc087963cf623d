"""
Shared fixtures: in-memory collaborators and a scripted reasoning gateway.
"""
import sys
from pathlib import Path
from typing import Iterable, List, Optional

import pytest

# Add project root to path
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from apps.orchestrator.gateway import GatewayAnswer
from apps.orchestrator.graph import SearchOrchestrator
from shared.schemas import CandidateRecord, ExperienceEntry, Principal, Role
from src.services.cache import InMemoryCacheBackend, SearchCache
from src.services.conversation_store import InMemoryConversationStore
from src.services.event_log import InMemoryEventLog
from src.services.resume_store import InMemoryResumeStore


class ScriptedGateway:
    """Stands in for ReasoningGateway; records every call."""

    def __init__(
        self,
        answer: Optional[GatewayAnswer] = None,
        fragments: Iterable[str] = (),
        error: Optional[Exception] = None,
    ):
        self.answer = answer or GatewayAnswer()
        self.fragments = list(fragments)
        self.error = error
        self.complete_calls: List = []
        self.stream_calls: List = []
        self.stream_closed = False

    async def complete(self, prompt):
        self.complete_calls.append(prompt)
        if self.error is not None:
            raise self.error
        return self.answer

    async def stream(self, prompt):
        self.stream_calls.append(prompt)
        try:
            for fragment in self.fragments:
                yield fragment
            if self.error is not None:
                raise self.error
        finally:
            self.stream_closed = True


def make_candidate(candidate_id: str, name: str, skills=("Python",)) -> CandidateRecord:
    return CandidateRecord(
        id=candidate_id,
        name=name,
        location="Berlin",
        skills=list(skills),
        experience=[ExperienceEntry(organization="Acme", title="Engineer", period="2019 - 2023")],
        summary=f"{name} builds backend services.",
    )


@pytest.fixture
def candidates():
    return [
        make_candidate("r1", "Alice Smith", ["Python", "FastAPI"]),
        make_candidate("r2", "Bob Jones", ["Go", "Kubernetes"]),
        make_candidate("r3", "Carol White", ["React", "TypeScript"]),
    ]


@pytest.fixture
def principal():
    return Principal(id="u1", role=Role.MANAGER)


@pytest.fixture
def other_principal():
    return Principal(id="u2", role=Role.MANAGER)


@pytest.fixture
def admin():
    return Principal(id="admin-1", role=Role.ADMIN)


@pytest.fixture
def resume_store(candidates):
    return InMemoryResumeStore(candidates, permissions={"u1": ["r1", "r2", "r3"]})


@pytest.fixture
def cache():
    return SearchCache(InMemoryCacheBackend())


@pytest.fixture
def conversations():
    return InMemoryConversationStore()


@pytest.fixture
def event_log():
    return InMemoryEventLog()


@pytest.fixture
def gateway():
    return ScriptedGateway(answer=GatewayAnswer(matched_ids=["r2", "r1"], explanation="Alice and Bob know backend."))


@pytest.fixture
def orchestrator(cache, resume_store, conversations, event_log, gateway):
    return SearchOrchestrator(
        cache=cache,
        resume_store=resume_store,
        conversations=conversations,
        event_log=event_log,
        gateway=gateway,
    )
