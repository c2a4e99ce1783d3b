import enum
from datetime import datetime
from sqlalchemy import DateTime, Enum, ForeignKey, Index, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column
from wa_checkpoints.core.clock import utcnow
from wa_checkpoints.db.base import Base

class ConversationStatus(str, enum.Enum):
    active = "active"
    waiting = "waiting"
    finished = "finished"

OPEN_STATUSES = (ConversationStatus.active, ConversationStatus.waiting)

_OPEN_ROWS = text("status IN ('active', 'waiting')")

class Conversation(Base):
    __tablename__ = "conversations"
    __table_args__ = (
        # at most one non-finished conversation per phone
        Index(
            "uq_conversations_open_phone",
            "phone_number",
            unique=True,
            postgresql_where=_OPEN_ROWS,
            sqlite_where=_OPEN_ROWS,
        ),
        Index("ix_conversations_status_timeout", "status", "timeout_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    phone_number: Mapped[str] = mapped_column(String(32), index=True)
    instance_name: Mapped[str] = mapped_column(ForeignKey("gateway_instances.instance_name"), index=True)
    flow_id: Mapped[str] = mapped_column(String(120))
    current_step: Mapped[str] = mapped_column(String(120), default="start")
    status: Mapped[ConversationStatus] = mapped_column(
        Enum(ConversationStatus, name="conversation_status"), default=ConversationStatus.active
    )
    first_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    timeout_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
