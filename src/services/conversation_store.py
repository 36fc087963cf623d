"""
Conversation thread storage.

Ownership is part of every lookup: a thread belonging to another principal
is reported as absent, never returned.
"""
import json
from abc import ABC, abstractmethod
from typing import Dict, Optional

import structlog

from shared.schemas import ConversationContext, ConversationThread, utc_now
from src.services.exceptions import PersistenceUnavailable

logger = structlog.get_logger()


class ConversationStore(ABC):
    """Per-principal conversation threads."""

    @abstractmethod
    async def create(self, principal_id: str, first_query: str) -> ConversationThread:
        """Create an empty thread titled with the first query."""

    @abstractmethod
    async def get(self, thread_id: str, principal_id: str) -> Optional[ConversationThread]:
        """Return the thread if it exists and belongs to principal_id, else None."""

    @abstractmethod
    async def update(
        self, thread_id: str, principal_id: str, context: ConversationContext
    ) -> Optional[ConversationThread]:
        """
        Replace the stored context wholesale.

        Returns:
            The updated thread, or None if the thread does not exist or is not
            owned by principal_id
        """


class InMemoryConversationStore(ConversationStore):
    """Conversation store kept in process memory."""

    def __init__(self):
        self._threads: Dict[str, ConversationThread] = {}

    async def create(self, principal_id: str, first_query: str) -> ConversationThread:
        thread = ConversationThread(owner_id=principal_id, title=first_query)
        self._threads[thread.id] = thread
        return thread.model_copy(deep=True)

    async def get(self, thread_id: str, principal_id: str) -> Optional[ConversationThread]:
        thread = self._threads.get(thread_id)
        if thread is None or thread.owner_id != principal_id:
            return None
        return thread.model_copy(deep=True)

    async def update(
        self, thread_id: str, principal_id: str, context: ConversationContext
    ) -> Optional[ConversationThread]:
        thread = self._threads.get(thread_id)
        if thread is None or thread.owner_id != principal_id:
            return None
        updated = thread.model_copy(update={
            "context": context.model_copy(deep=True),
            "updated_at": utc_now(),
        })
        self._threads[thread_id] = updated
        return updated.model_copy(deep=True)


class PostgresConversationStore(ConversationStore):
    """Conversation store backed by the conversations table."""

    def __init__(self, pool):
        self.pool = pool

    @staticmethod
    def _row_to_thread(row) -> ConversationThread:
        context = row["context"]
        if isinstance(context, str):
            context = json.loads(context or "{}")
        return ConversationThread(
            id=str(row["id"]),
            owner_id=str(row["user_id"]),
            title=row["title"] or "",
            context=ConversationContext.model_validate(context or {}),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    async def _fetchrow(self, query: str, *args):
        try:
            async with self.pool.acquire() as conn:
                return await conn.fetchrow(query, *args)
        except Exception as e:
            logger.error("conversation_store_unavailable", error=str(e), error_type=type(e).__name__)
            raise PersistenceUnavailable() from e

    async def create(self, principal_id: str, first_query: str) -> ConversationThread:
        thread = ConversationThread(owner_id=principal_id, title=first_query)
        row = await self._fetchrow(
            """
            INSERT INTO conversations (id, user_id, title, context)
            VALUES ($1, $2, $3, $4::jsonb)
            RETURNING id, user_id, title, context, created_at, updated_at
            """,
            thread.id,
            principal_id,
            first_query,
            thread.context.model_dump_json(),
        )
        return self._row_to_thread(row)

    async def get(self, thread_id: str, principal_id: str) -> Optional[ConversationThread]:
        row = await self._fetchrow(
            """
            SELECT id, user_id, title, context, created_at, updated_at
            FROM conversations
            WHERE id::text = $1 AND user_id::text = $2
            """,
            thread_id,
            principal_id,
        )
        return self._row_to_thread(row) if row else None

    async def update(
        self, thread_id: str, principal_id: str, context: ConversationContext
    ) -> Optional[ConversationThread]:
        row = await self._fetchrow(
            """
            UPDATE conversations
            SET context = $3::jsonb, updated_at = NOW()
            WHERE id::text = $1 AND user_id::text = $2
            RETURNING id, user_id, title, context, created_at, updated_at
            """,
            thread_id,
            principal_id,
            context.model_dump_json(),
        )
        return self._row_to_thread(row) if row else None
