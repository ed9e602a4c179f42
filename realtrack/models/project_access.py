import uuid
from enum import Enum
from datetime import datetime
from sqlalchemy import String, ForeignKey, DateTime, Enum as SAEnum, Index
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func
from ..db.base import Base

class PermissionEnum(str, Enum):
    read = "read"
    write = "write"

class ProjectAccess(Base):
    """
    Partner grant on a project. A row starts life as a pending invitation
    (user_id NULL, invitation_token set) and becomes an active grant once
    accepted. Revocation sets deleted_at.
    """
    __tablename__ = "project_access"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    project_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=True
    )
    invited_by: Mapped[str | None] = mapped_column(String(36), ForeignKey("users.id"), nullable=True)
    invited_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    permission: Mapped[PermissionEnum] = mapped_column(
        SAEnum(PermissionEnum, name="access_permission", native_enum=False, length=16),
        nullable=False,
        default=PermissionEnum.read,
    )

    invitation_token: Mapped[str | None] = mapped_column(String(64), unique=True, nullable=True)
    invited_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    accepted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

Index("idx_project_access_project_user", ProjectAccess.project_id, ProjectAccess.user_id)
