import uuid
from enum import Enum
from datetime import datetime
from sqlalchemy import String, Text, ForeignKey, BigInteger, DateTime, Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func
from ..db.base import Base

class ProjectStatusEnum(str, Enum):
    planning = "planning"
    in_progress = "in-progress"
    completed = "completed"
    on_hold = "on-hold"

class Project(Base):
    __tablename__ = "projects"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    owner_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    address: Mapped[str | None] = mapped_column(String(512), nullable=True)
    project_type: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # stored as VARCHAR values ('in-progress', 'on-hold', ...) to match the API payloads
    status: Mapped[ProjectStatusEnum] = mapped_column(
        SAEnum(ProjectStatusEnum, name="project_status", values_callable=lambda e: [m.value for m in e], native_enum=False, length=16),
        nullable=False,
        default=ProjectStatusEnum.planning,
        server_default=ProjectStatusEnum.planning.value,
    )
    total_budget: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
