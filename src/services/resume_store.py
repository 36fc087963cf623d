"""
Permission-scoped resume store.

Given a principal id, returns exactly the resumes that principal may see.
"""
import json
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set

import structlog

from shared.schemas import CandidateRecord
from src.services.exceptions import PersistenceUnavailable

logger = structlog.get_logger()


class ResumeStore(ABC):
    """Read-only access to resumes visible to a principal."""

    @abstractmethod
    async def list_visible(self, principal_id: str) -> List[CandidateRecord]:
        """
        Return every resume the principal may search, newest first.

        Raises:
            PersistenceUnavailable: If the store cannot be reached
        """


class InMemoryResumeStore(ResumeStore):
    """Resume store backed by dictionaries; used in tests and local runs."""

    def __init__(
        self,
        resumes: Iterable[CandidateRecord] = (),
        permissions: Optional[Mapping[str, Iterable[str]]] = None,
    ):
        resumes = list(resumes)
        self._resumes: Dict[str, CandidateRecord] = {r.id: r for r in resumes}
        self._order: List[str] = [r.id for r in resumes]
        self._permissions: Dict[str, Set[str]] = {
            principal_id: set(ids) for principal_id, ids in (permissions or {}).items()
        }

    def add(self, resume: CandidateRecord, visible_to: Iterable[str] = ()) -> None:
        if resume.id not in self._resumes:
            self._order.insert(0, resume.id)
        self._resumes[resume.id] = resume
        for principal_id in visible_to:
            self.grant(principal_id, resume.id)

    def grant(self, principal_id: str, resume_id: str) -> None:
        self._permissions.setdefault(principal_id, set()).add(resume_id)

    def revoke(self, principal_id: str, resume_id: str) -> None:
        self._permissions.get(principal_id, set()).discard(resume_id)

    async def list_visible(self, principal_id: str) -> List[CandidateRecord]:
        allowed = self._permissions.get(principal_id, set())
        return [self._resumes[rid] for rid in self._order if rid in allowed]


def _load_json_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError:
            return []
    return value if isinstance(value, list) else []


def row_to_candidate(row: Mapping[str, Any]) -> CandidateRecord:
    """
    Convert a resumes row to a CandidateRecord.

    Stored experience entries use company/position/start_date/end_date;
    education entries use degree for the credential.
    """
    experience = []
    for item in _load_json_list(row.get("experience")):
        if not isinstance(item, dict):
            continue
        start = item.get("start_date") or ""
        end = item.get("end_date") or ("present" if start else "")
        period = item.get("period") or (f"{start} - {end}" if start else "")
        experience.append({
            "organization": item.get("organization") or item.get("company") or "",
            "title": item.get("title") or item.get("position") or "",
            "period": period,
            "description": item.get("description") or "",
        })

    education = []
    for item in _load_json_list(row.get("education")):
        if not isinstance(item, dict):
            continue
        education.append({
            "institution": item.get("institution") or "",
            "credential": item.get("credential") or item.get("degree") or "",
            "field": item.get("field") or "",
        })

    salary = row.get("salary_expectation")
    return CandidateRecord(
        id=str(row["id"]),
        name=row["name"],
        email=row.get("email"),
        phone=row.get("phone"),
        location=row.get("location"),
        skills=[str(s) for s in _load_json_list(row.get("skills"))],
        experience=experience,
        education=education,
        salary_expectation=float(salary) if salary is not None else None,
        summary=row.get("summary"),
    )


class PostgresResumeStore(ResumeStore):
    """Resume store reading resumes joined with resume_permissions."""

    _QUERY = """
        SELECT r.id, r.name, r.email, r.phone, r.summary, r.skills, r.experience,
               r.education, r.location, r.salary_expectation
        FROM resumes r
        JOIN resume_permissions rp ON r.id = rp.resume_id
        WHERE rp.user_id::text = $1
        ORDER BY r.created_at DESC
    """

    def __init__(self, pool):
        self.pool = pool

    async def list_visible(self, principal_id: str) -> List[CandidateRecord]:
        try:
            async with self.pool.acquire() as conn:
                rows = await conn.fetch(self._QUERY, principal_id)
        except Exception as e:
            logger.error("resume_store_unavailable", error=str(e), error_type=type(e).__name__)
            raise PersistenceUnavailable() from e
        return [row_to_candidate(dict(row)) for row in rows]
