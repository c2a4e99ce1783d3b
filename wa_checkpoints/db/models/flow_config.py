from sqlalchemy import JSON, String
from sqlalchemy.orm import Mapped, mapped_column
from wa_checkpoints.db.base import Base

class FlowConfig(Base):
    __tablename__ = "flow_configs"

    id: Mapped[int] = mapped_column(primary_key=True)
    flow_name: Mapped[str] = mapped_column(String(120), unique=True, index=True)
    # instance_name values eligible to serve this flow
    instance_pool: Mapped[list[str]] = mapped_column(JSON, default=list)
