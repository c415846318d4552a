from __future__ import annotations

"""Append-only conversation ledger.

  append(timestamp, transcript, n8n_response) -> id
  list_all() -> rows, newest first
  ping() -> bool

The ledger never updates or deletes rows.
"""

from sqlalchemy import select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from voicenotes.db.base import session_scope
from voicenotes.db.models import Conversation
from voicenotes.services.logging import get_logger


class ConversationLedger:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._factory = session_factory

    async def append(self, *, timestamp: str, transcript: str, n8n_response: str) -> int:
        """Insert one row and return its id. Storage errors propagate."""

        row = Conversation(timestamp=timestamp, transcript=transcript, n8n_response=n8n_response)
        async with session_scope(self._factory) as session:
            session.add(row)
            await session.flush()
            return row.id

    async def list_all(self) -> list[Conversation]:
        stmt = select(Conversation).order_by(Conversation.timestamp.desc(), Conversation.id.desc())
        async with self._factory() as session:
            return list((await session.execute(stmt)).scalars().all())

    async def ping(self) -> bool:
        try:
            async with self._factory() as session:
                await session.execute(text("SELECT 1"))
        except (SQLAlchemyError, OSError) as exc:
            get_logger().warning("ledger_ping_failed", error=str(exc))
            return False
        return True
