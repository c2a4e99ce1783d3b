import enum
from datetime import datetime
from sqlalchemy import CheckConstraint, DateTime, Enum, Integer, String
from sqlalchemy.orm import Mapped, mapped_column
from wa_checkpoints.db.base import Base

class InstanceStatus(str, enum.Enum):
    online = "online"
    offline = "offline"
    connecting = "connecting"

class GatewayInstance(Base):
    __tablename__ = "gateway_instances"
    __table_args__ = (CheckConstraint("current_conversations >= 0", name="ck_instance_load_non_negative"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    instance_name: Mapped[str] = mapped_column(String(120), unique=True, index=True)
    # Evolution API identifier, used in the send URL and as the apikey header
    instance_id: Mapped[str] = mapped_column(String(255), unique=True)
    status: Mapped[InstanceStatus] = mapped_column(Enum(InstanceStatus, name="instance_status"), default=InstanceStatus.offline)
    current_conversations: Mapped[int] = mapped_column(Integer, default=0)
    max_conversations: Mapped[int] = mapped_column(Integer, default=50)
    last_ping: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
