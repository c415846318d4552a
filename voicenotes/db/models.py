from __future__ import annotations

"""SQLAlchemy ORM models for the conversation ledger."""

from sqlalchemy import Index, Integer, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class Conversation(Base):
    """One transcript and the webhook reply it produced. Rows are append-only."""

    __tablename__ = "conversations"
    __table_args__ = (Index("ix_conversations_timestamp", "timestamp"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    timestamp: Mapped[str] = mapped_column(Text, nullable=False)
    transcript: Mapped[str] = mapped_column(Text, nullable=False)
    # JSON-serialized webhook reply, or the raw body under the lenient policy
    n8n_response: Mapped[str] = mapped_column(Text, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "transcript": self.transcript,
            "n8n_response": self.n8n_response,
        }
