from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum as PyEnum
from typing import Optional

from sqlalchemy import (
    Text,
    Enum as SAEnum,
    ForeignKey,
    UniqueConstraint,
    Index,
    Uuid,
)
from sqlalchemy import DateTime as SADateTime
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from db.session import engine, Session


class Base(DeclarativeBase):
    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------- Enums ----------
class MessageRole(str, PyEnum):
    user = "user"
    assistant = "assistant"


# ---------- Models ----------
class Conversation(Base):
    __tablename__ = "conversations"
    __table_args__ = (UniqueConstraint("session_id", name="uq_conversations_session"),)
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    org_id: Mapped[str] = mapped_column(Text)
    tenant_id: Mapped[str] = mapped_column(Text)
    session_id: Mapped[str] = mapped_column(Text)
    phone_number: Mapped[Optional[str]] = mapped_column(Text)
    started_at: Mapped[datetime] = mapped_column(SADateTime(timezone=True), default=utcnow)
    ended_at: Mapped[Optional[datetime]] = mapped_column(SADateTime(timezone=True))


class ConversationMessage(Base):
    __tablename__ = "conversation_messages"
    __table_args__ = (UniqueConstraint("conversation_id", "item_id", name="uq_conversation_item"),)
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    conversation_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("conversations.id", ondelete="CASCADE"))
    item_id: Mapped[str] = mapped_column(Text)
    role: Mapped[MessageRole] = mapped_column(SAEnum(MessageRole, name="message_role", create_constraint=False))
    content: Mapped[str] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(SADateTime(timezone=True), default=utcnow)


Index("ix_conversations_tenant", Conversation.org_id, Conversation.tenant_id)


async def init_db() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


__all__ = [
    "engine",
    "Session",
    "Base",
    "Conversation",
    "ConversationMessage",
    "MessageRole",
    "utcnow",
    "init_db",
]
