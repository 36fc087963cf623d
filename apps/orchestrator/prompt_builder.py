"""
Prompt assembly for resume search.

Builds the bounded context sent to the reasoning gateway from the
principal's visible resumes, the conversation so far and the new query.
"""
from dataclasses import dataclass
from typing import List, Optional, Sequence

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from shared.schemas import CandidateRecord, EducationEntry, Turn, TurnRole

SEARCH_OUTPUT_INSTRUCTION = """Respond with a single JSON object with exactly these keys:
- "results": an array of the IDs of the matching candidates, chosen only from the resumes listed below (an empty array if nobody matches)
- "explanation": a brief explanation of your search logic and why each listed candidate matches

Never include an ID that does not appear in the list of available resumes."""

HISTORY_TEXT_LIMIT = 2000

STREAM_INSTRUCTION = """Provide helpful, conversational responses about the candidates listed below.
Refer to candidates by name."""


@dataclass
class PromptContext:
    """Messages for one gateway call plus the candidate ids they enumerate."""
    messages: List[BaseMessage]
    candidate_ids: List[str]
    query: str


def _truncate(text: Optional[str], limit: int) -> str:
    if not text:
        return ""
    text = " ".join(text.split())
    if len(text) <= limit:
        return text
    return text[: limit - 3].rstrip() + "..."


def _format_education(entry: EducationEntry) -> str:
    text = entry.credential or "Studies"
    if entry.field:
        text += f" in {entry.field}"
    if entry.institution:
        text += f" ({entry.institution})"
    return text


def format_candidate(index: int, candidate: CandidateRecord, text_limit: int, detailed: bool = True) -> str:
    """Render one resume as a prompt block."""
    experience = "; ".join(
        f"{e.title or 'Role'} at {e.organization or 'unknown'}" + (f" ({e.period})" if e.period else "")
        for e in candidate.experience
    ) or "Not specified"

    lines = [
        f"Resume {index} (ID: {candidate.id}):",
        f"Name: {candidate.name}",
        f"Skills: {', '.join(candidate.skills) or 'Not specified'}",
        f"Experience: {experience}",
    ]
    if not detailed:
        return "\n".join(lines)

    lines.insert(2, f"Location: {candidate.location or 'Not specified'}")
    descriptions = [
        _truncate(e.description, text_limit) for e in candidate.experience if e.description
    ]
    if descriptions:
        lines.append(f"Experience details: {' | '.join(descriptions)}")
    education = "; ".join(_format_education(e) for e in candidate.education)
    lines.append(f"Education: {education or 'Not specified'}")
    salary = candidate.salary_expectation
    lines.append(f"Salary Expectation: {f'${salary:,.0f}' if salary is not None else 'Not specified'}")
    if candidate.summary:
        lines.append(f"Summary: {_truncate(candidate.summary, text_limit)}")
    return "\n".join(lines)


def _history_messages(history: Sequence[Turn], max_turns: int, text_limit: int = HISTORY_TEXT_LIMIT) -> List[BaseMessage]:
    recent = list(history)[-max_turns:] if max_turns > 0 else []
    messages: List[BaseMessage] = []
    for turn in recent:
        if turn.role == TurnRole.USER:
            messages.append(HumanMessage(content=_truncate(turn.text, text_limit)))
        else:
            messages.append(AIMessage(content=_truncate(turn.text, text_limit)))
    return messages


def _build(
    instruction: str,
    candidates: Sequence[CandidateRecord],
    history: Sequence[Turn],
    query: str,
    max_history_turns: int,
    text_limit: int,
    detailed: bool,
) -> Optional[PromptContext]:
    if not candidates:
        return None

    resume_context = "\n\n".join(
        format_candidate(i, c, text_limit, detailed=detailed) for i, c in enumerate(candidates, start=1)
    )
    history_messages = _history_messages(history, max_history_turns)
    messages: List[BaseMessage] = [
        SystemMessage(content=f"{instruction}\n\nYou have access to {len(candidates)} resumes."),
        SystemMessage(content=f"Available resumes:\n{resume_context}"),
        *history_messages,
        HumanMessage(content=query),
    ]
    return PromptContext(
        messages=messages,
        candidate_ids=[c.id for c in candidates],
        query=query,
    )


def build_search_prompt(
    candidates: Sequence[CandidateRecord],
    history: Sequence[Turn],
    query: str,
    max_history_turns: int = 20,
    text_limit: int = 400,
) -> Optional[PromptContext]:
    """
    Build the prompt for a blocking search.

    Returns:
        PromptContext, or None when there are no candidates to search
    """
    return _build(SEARCH_OUTPUT_INSTRUCTION, candidates, history, query, max_history_turns, text_limit, detailed=True)


def build_stream_prompt(
    candidates: Sequence[CandidateRecord],
    history: Sequence[Turn],
    query: str,
    max_history_turns: int = 20,
    text_limit: int = 400,
) -> Optional[PromptContext]:
    """Build the prompt for a streamed conversational answer, or None for an empty scope."""
    return _build(STREAM_INSTRUCTION, candidates, history, query, max_history_turns, text_limit, detailed=False)
