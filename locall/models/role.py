"""
RBAC models: roles, permissions and user-role assignments.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import Boolean, DateTime, ForeignKey, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from locall.models.base import Base, utc_now


class Role(Base):
    """
    Role model for RBAC.

    Roles can be:
    - System roles: admin, manager, agent, viewer (workspace_id is null)
    - Custom roles: created by workspace admins
    """

    __tablename__ = "roles"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)

    name: Mapped[str] = mapped_column(String(100), nullable=False)
    slug: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_system_role: Mapped[bool] = mapped_column(Boolean, default=False)

    workspace_id: Mapped[Optional[UUID]] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("workspaces.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    permissions: Mapped[list["Permission"]] = relationship(
        "Permission", back_populates="role", cascade="all, delete-orphan"
    )
    assignments: Mapped[list["UserRoleAssignment"]] = relationship(
        "UserRoleAssignment", back_populates="role", cascade="all, delete-orphan"
    )

    __table_args__ = (UniqueConstraint("workspace_id", "slug", name="uq_workspace_role_slug"),)

    def __repr__(self) -> str:
        return f"<Role(id={self.id}, name={self.name}, system={self.is_system_role})>"


class Permission(Base):
    """
    A (resource, action) grant on a role.

    An action of ``*`` matches every action on the resource.
    """

    __tablename__ = "permissions"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)

    role_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("roles.id", ondelete="CASCADE"), nullable=False, index=True
    )

    resource: Mapped[str] = mapped_column(String(100), nullable=False)  # users, teams, compliance, ...
    action: Mapped[str] = mapped_column(String(50), nullable=False)  # create, read, update, delete, *

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, nullable=False)

    role: Mapped["Role"] = relationship("Role", back_populates="permissions")

    __table_args__ = (UniqueConstraint("role_id", "resource", "action", name="uq_role_resource_action"),)

    @property
    def name(self) -> str:
        return f"{self.resource}:{self.action}"

    def grants(self, resource: str, action: str) -> bool:
        """Check whether this permission covers ``resource:action``."""
        return self.resource == resource and (self.action == action or self.action == "*")

    def __repr__(self) -> str:
        return f"<Permission(role_id={self.role_id}, {self.action} {self.resource})>"


class UserRoleAssignment(Base):
    """Links a user to a role within a workspace."""

    __tablename__ = "user_role_assignments"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)

    user_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    role_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("roles.id", ondelete="CASCADE"), nullable=False, index=True
    )
    workspace_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("workspaces.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    assigned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, nullable=False)
    assigned_by: Mapped[Optional[UUID]] = mapped_column(PG_UUID(as_uuid=True), nullable=True)

    user: Mapped["User"] = relationship("User", back_populates="roles")
    role: Mapped["Role"] = relationship("Role", back_populates="assignments")

    __table_args__ = (
        UniqueConstraint("user_id", "role_id", "workspace_id", name="uq_user_role_workspace"),
    )

    def __repr__(self) -> str:
        return f"<UserRoleAssignment(user_id={self.user_id}, role_id={self.role_id})>"
