"""
Workspace model for multi-tenant SaaS.

Each workspace represents a separate tenant/customer.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import Boolean, DateTime, Integer, String
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from locall.models.base import Base, utc_now


class Workspace(Base):
    """
    Workspace (Tenant) model.

    All data is isolated by workspace_id.
    """

    __tablename__ = "workspaces"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)

    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    slug: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)

    # Subscription
    plan: Mapped[str] = mapped_column(String(50), default="trial")  # trial, starter, professional, enterprise
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)

    # Limits and quotas
    max_users: Mapped[int] = mapped_column(Integer, default=10)
    max_teams: Mapped[int] = mapped_column(Integer, default=5)

    contact_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    contact_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    teams: Mapped[list["Team"]] = relationship(
        "Team", back_populates="workspace", cascade="all, delete-orphan"
    )
    users: Mapped[list["User"]] = relationship(
        "User", back_populates="workspace", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<Workspace(id={self.id}, name={self.name}, plan={self.plan})>"

    @property
    def is_deleted(self) -> bool:
        """Check if workspace is soft-deleted."""
        return self.deleted_at is not None

    def soft_delete(self) -> None:
        """Soft delete the workspace."""
        self.deleted_at = utc_now()
        self.is_active = False
