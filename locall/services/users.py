"""
User management service: roles and permissions, teams, sessions,
preferences and activity history. Every mutation is written to the audit log.
"""

import logging
from datetime import timedelta
from typing import Any, Iterable, Optional
from uuid import UUID

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from locall.config.settings import get_settings
from locall.exceptions import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from locall.models import (
    Permission,
    Role,
    Team,
    TeamMember,
    User,
    UserActivity,
    UserPreferences,
    UserRoleAssignment,
    UserSession,
    Workspace,
)
from locall.models.base import as_utc, utc_now
from locall.models.team import TEAM_MEMBER_ROLES
from locall.security import generate_session_token
from locall.services.audit import AuditService, RequestContext

logger = logging.getLogger(__name__)

PREFERENCE_FIELDS = ("theme", "language", "timezone", "notifications", "dashboard_layout", "call_settings")

# Built-in roles shared by every workspace: slug -> (name, description, grants)
SYSTEM_ROLES: dict[str, tuple[str, str, tuple[tuple[str, str], ...]]] = {
    "owner": (
        "Owner",
        "Workspace owner with full access",
        (
            ("workspaces", "*"),
            ("users", "*"),
            ("roles", "*"),
            ("teams", "*"),
            ("compliance", "*"),
            ("audit", "*"),
            ("security", "*"),
            ("integrations", "*"),
            ("notifications", "*"),
            ("webforms", "*"),
        ),
    ),
    "admin": (
        "Admin",
        "Workspace administration",
        (
            ("users", "*"),
            ("roles", "*"),
            ("teams", "*"),
            ("compliance", "*"),
            ("audit", "read"),
            ("security", "*"),
            ("integrations", "*"),
            ("notifications", "send"),
            ("webforms", "*"),
        ),
    ),
    "manager": (
        "Manager",
        "Team and reporting access",
        (
            ("users", "read"),
            ("teams", "*"),
            ("compliance", "read"),
            ("audit", "read"),
            ("integrations", "read"),
            ("notifications", "send"),
            ("webforms", "read"),
        ),
    ),
    "agent": (
        "Agent",
        "Call handling access",
        (("users", "read"), ("teams", "read"), ("integrations", "read")),
    ),
    "viewer": ("Viewer", "Read-only access", (("users", "read"), ("teams", "read"))),
}


class UserManagementService:
    """RBAC, team, session and preference operations scoped to a workspace."""

    def __init__(self, db: AsyncSession, audit: Optional[AuditService] = None):
        self.db = db
        self.audit = audit or AuditService(db)
        self.settings = get_settings()

    # Roles

    async def ensure_system_roles(self) -> dict[str, Role]:
        """Create any missing built-in role; returns all of them by slug."""
        result = await self.db.execute(
            select(Role).options(selectinload(Role.permissions)).where(Role.is_system_role.is_(True))
        )
        roles = {role.slug: role for role in result.scalars().all()}

        created = []
        for slug, (name, description, grants) in SYSTEM_ROLES.items():
            if slug in roles:
                continue
            role = Role(name=name, slug=slug, description=description, is_system_role=True, workspace_id=None)
            role.permissions = [Permission(resource=r, action=a) for r, a in grants]
            self.db.add(role)
            roles[slug] = role
            created.append(slug)

        if created:
            await self.db.commit()
            logger.info(f"Created system roles: {', '.join(created)}")
        return roles

    async def create_role(
        self,
        workspace_id: UUID,
        name: str,
        slug: str,
        permissions: Iterable[tuple[str, str]] = (),
        description: Optional[str] = None,
        created_by: Optional[UUID] = None,
    ) -> Role:
        existing = (
            await self.db.execute(select(Role).where(Role.workspace_id == workspace_id, Role.slug == slug))
        ).scalar_one_or_none()
        if existing:
            raise ConflictError(f"Role with slug '{slug}' already exists in this workspace")

        role = Role(workspace_id=workspace_id, name=name, slug=slug, description=description)
        role.permissions = [Permission(resource=r, action=a) for r, a in dict.fromkeys(permissions)]
        self.db.add(role)
        await self.db.commit()
        role = await self.get_role(role.id)

        await self.audit.log_event(
            "create_role",
            "role",
            "authorization",
            workspace_id=workspace_id,
            user_id=created_by,
            entity_id=str(role.id),
            new_values={"name": name, "slug": slug, "permissions": [p.name for p in role.permissions]},
            severity="medium",
        )
        return role

    async def get_role(self, role_id: UUID) -> Role:
        role = (
            await self.db.execute(
                select(Role).options(selectinload(Role.permissions)).where(Role.id == role_id)
            )
        ).scalar_one_or_none()
        if role is None:
            raise NotFoundError(f"Role {role_id} not found")
        return role

    async def list_roles(self, workspace_id: UUID) -> list[Role]:
        """System roles plus the workspace's custom roles."""
        result = await self.db.execute(
            select(Role)
            .options(selectinload(Role.permissions))
            .where(or_(Role.workspace_id == workspace_id, Role.is_system_role.is_(True)))
            .order_by(Role.name)
        )
        return list(result.scalars().all())

    async def assign_role(
        self, user_id: UUID, role_id: UUID, workspace_id: UUID, assigned_by: Optional[UUID] = None
    ) -> UserRoleAssignment:
        role = await self.get_role(role_id)
        if not role.is_system_role and role.workspace_id != workspace_id:
            raise PermissionDeniedError("Role belongs to a different workspace")
        await self._get_workspace_user(user_id, workspace_id)

        existing = (
            await self.db.execute(
                select(UserRoleAssignment).where(
                    UserRoleAssignment.user_id == user_id,
                    UserRoleAssignment.role_id == role_id,
                    UserRoleAssignment.workspace_id == workspace_id,
                )
            )
        ).scalar_one_or_none()
        if existing:
            raise ConflictError(f"User already has role '{role.slug}'")

        assignment = UserRoleAssignment(
            user_id=user_id, role_id=role_id, workspace_id=workspace_id, assigned_by=assigned_by
        )
        self.db.add(assignment)
        await self.db.commit()
        await self.db.refresh(assignment)

        await self.audit.log_event(
            "assign_role",
            "user",
            "authorization",
            workspace_id=workspace_id,
            user_id=assigned_by,
            entity_id=str(user_id),
            new_values={"role_id": str(role_id), "role": role.slug},
            severity="medium",
        )
        return assignment

    async def remove_role(
        self, user_id: UUID, role_id: UUID, workspace_id: UUID, removed_by: Optional[UUID] = None
    ) -> None:
        result = await self.db.execute(
            delete(UserRoleAssignment).where(
                UserRoleAssignment.user_id == user_id,
                UserRoleAssignment.role_id == role_id,
                UserRoleAssignment.workspace_id == workspace_id,
            )
        )
        if result.rowcount == 0:
            raise NotFoundError("Role assignment not found")
        await self.db.commit()

        await self.audit.log_event(
            "remove_role",
            "user",
            "authorization",
            workspace_id=workspace_id,
            user_id=removed_by,
            entity_id=str(user_id),
            old_values={"role_id": str(role_id)},
            severity="medium",
        )

    async def get_user_permissions(self, user_id: UUID, workspace_id: UUID) -> list[str]:
        """Distinct ``resource:action`` grants from every role of the user in the workspace."""
        result = await self.db.execute(
            select(Permission.resource, Permission.action)
            .join(Role, Role.id == Permission.role_id)
            .join(UserRoleAssignment, UserRoleAssignment.role_id == Role.id)
            .where(
                UserRoleAssignment.user_id == user_id,
                UserRoleAssignment.workspace_id == workspace_id,
            )
        )
        return sorted({f"{resource}:{action}" for resource, action in result.all()})

    async def has_permission(self, user_id: UUID, workspace_id: UUID, resource: str, action: str) -> bool:
        for grant in await self.get_user_permissions(user_id, workspace_id):
            granted_resource, granted_action = grant.split(":", 1)
            if granted_resource == resource and granted_action in (action, "*"):
                return True
        return False

    # Teams

    async def create_team(
        self,
        workspace_id: UUID,
        name: str,
        slug: str,
        description: Optional[str] = None,
        team_lead_id: Optional[UUID] = None,
        created_by: Optional[UUID] = None,
    ) -> Team:
        workspace = await self.db.get(Workspace, workspace_id)
        if workspace is None or workspace.is_deleted:
            raise NotFoundError(f"Workspace {workspace_id} not found")

        team_count = (
            await self.db.execute(
                select(func.count(Team.id)).where(Team.workspace_id == workspace_id, Team.deleted_at.is_(None))
            )
        ).scalar_one()
        if team_count >= workspace.max_teams:
            raise PermissionDeniedError(f"Workspace has reached maximum teams limit ({workspace.max_teams})")

        existing = (
            await self.db.execute(
                select(Team).where(
                    Team.workspace_id == workspace_id, Team.slug == slug, Team.deleted_at.is_(None)
                )
            )
        ).scalar_one_or_none()
        if existing:
            raise ConflictError(f"Team with slug '{slug}' already exists in this workspace")

        if team_lead_id:
            await self._get_workspace_user(team_lead_id, workspace_id)

        team = Team(
            workspace_id=workspace_id,
            name=name,
            slug=slug,
            description=description,
            team_lead_id=team_lead_id,
            created_by=created_by,
        )
        self.db.add(team)
        await self.db.flush()
        if team_lead_id:
            self.db.add(TeamMember(team_id=team.id, user_id=team_lead_id, role="lead", added_by=created_by))
        await self.db.commit()
        await self.db.refresh(team)

        await self.audit.log_event(
            "create_team",
            "team",
            "data_modification",
            workspace_id=workspace_id,
            user_id=created_by,
            entity_id=str(team.id),
            new_values={"name": name, "slug": slug},
        )
        return team

    async def get_team(self, team_id: UUID, workspace_id: Optional[UUID] = None) -> Team:
        team = await self.db.get(Team, team_id)
        if team is None or team.is_deleted:
            raise NotFoundError(f"Team {team_id} not found")
        if workspace_id and team.workspace_id != workspace_id:
            raise PermissionDeniedError("Access denied: You do not belong to this team's workspace")
        return team

    async def add_team_member(
        self,
        team_id: UUID,
        user_id: UUID,
        role: str = "member",
        permissions: Optional[list[str]] = None,
        added_by: Optional[UUID] = None,
    ) -> TeamMember:
        if role not in TEAM_MEMBER_ROLES:
            raise ValidationError(f"Invalid team role: {role}")
        team = await self.get_team(team_id)
        await self._get_workspace_user(user_id, team.workspace_id)

        existing = await self._get_membership(team_id, user_id)
        if existing:
            raise ConflictError("User is already a member of this team")

        member = TeamMember(
            team_id=team_id, user_id=user_id, role=role, permissions=permissions or [], added_by=added_by
        )
        self.db.add(member)
        await self.db.commit()
        await self.db.refresh(member)

        await self.audit.log_event(
            "add_team_member",
            "team",
            "data_modification",
            workspace_id=team.workspace_id,
            user_id=added_by,
            entity_id=str(team_id),
            new_values={"user_id": str(user_id), "role": role},
        )
        return member

    async def remove_team_member(self, team_id: UUID, user_id: UUID, removed_by: Optional[UUID] = None) -> None:
        team = await self.get_team(team_id)
        member = await self._get_membership(team_id, user_id)
        if member is None:
            raise NotFoundError("Team member not found")

        await self.db.delete(member)
        if team.team_lead_id == user_id:
            team.team_lead_id = None
        await self.db.commit()

        await self.audit.log_event(
            "remove_team_member",
            "team",
            "data_modification",
            workspace_id=team.workspace_id,
            user_id=removed_by,
            entity_id=str(team_id),
            old_values={"user_id": str(user_id), "role": member.role},
        )

    async def update_team_member_role(
        self, team_id: UUID, user_id: UUID, role: str, updated_by: Optional[UUID] = None
    ) -> TeamMember:
        if role not in TEAM_MEMBER_ROLES:
            raise ValidationError(f"Invalid team role: {role}")
        team = await self.get_team(team_id)
        member = await self._get_membership(team_id, user_id)
        if member is None:
            raise NotFoundError("Team member not found")

        old_role = member.role
        member.role = role
        await self.db.commit()
        await self.db.refresh(member)

        await self.audit.log_event(
            "update_team_member_role",
            "team",
            "authorization",
            workspace_id=team.workspace_id,
            user_id=updated_by,
            entity_id=str(team_id),
            old_values={"user_id": str(user_id), "role": old_role},
            new_values={"user_id": str(user_id), "role": role},
            severity="medium",
        )
        return member

    async def list_team_members(self, team_id: UUID) -> list[TeamMember]:
        result = await self.db.execute(
            select(TeamMember).where(TeamMember.team_id == team_id).order_by(TeamMember.joined_at)
        )
        return list(result.scalars().all())

    async def _get_membership(self, team_id: UUID, user_id: UUID) -> Optional[TeamMember]:
        return (
            await self.db.execute(
                select(TeamMember).where(TeamMember.team_id == team_id, TeamMember.user_id == user_id)
            )
        ).scalar_one_or_none()

    async def _get_workspace_user(self, user_id: UUID, workspace_id: UUID) -> User:
        user = await self.db.get(User, user_id)
        if user is None or user.is_deleted:
            raise NotFoundError(f"User {user_id} not found")
        if user.workspace_id != workspace_id:
            raise PermissionDeniedError("User belongs to a different workspace")
        return user

    # Sessions

    async def create_session(
        self, user_id: UUID, workspace_id: UUID, request_context: Optional[RequestContext] = None
    ) -> UserSession:
        ctx = request_context or RequestContext()
        now = utc_now()
        session = UserSession(
            user_id=user_id,
            workspace_id=workspace_id,
            session_token=generate_session_token(),
            ip_address=ctx.ip_address,
            user_agent=ctx.user_agent,
            is_active=True,
            expires_at=now + timedelta(hours=self.settings.session_ttl_hours),
            last_activity=now,
        )
        self.db.add(session)
        await self.db.commit()
        await self.db.refresh(session)

        await self.audit.log_authentication(
            "login",
            user_id,
            True,
            workspace_id=workspace_id,
            details={"session_id": str(session.id)},
            request_context=request_context,
        )
        return session

    async def get_active_session(self, session_token: str) -> Optional[UserSession]:
        """The session for ``session_token`` if it is active and unexpired."""
        session = (
            await self.db.execute(
                select(UserSession).where(
                    UserSession.session_token == session_token, UserSession.is_active.is_(True)
                )
            )
        ).scalar_one_or_none()
        if session is None or as_utc(session.expires_at) <= utc_now():
            return None
        return session

    async def update_session_activity(self, session_token: str) -> bool:
        result = await self.db.execute(
            update(UserSession)
            .where(UserSession.session_token == session_token, UserSession.is_active.is_(True))
            .values(last_activity=utc_now())
        )
        await self.db.commit()
        return result.rowcount > 0

    async def end_session(self, session_token: str, request_context: Optional[RequestContext] = None) -> bool:
        session = (
            await self.db.execute(select(UserSession).where(UserSession.session_token == session_token))
        ).scalar_one_or_none()
        if session is None or not session.is_active:
            return False

        session.is_active = False
        session.ended_at = utc_now()
        await self.db.commit()

        await self.audit.log_authentication(
            "logout",
            session.user_id,
            True,
            workspace_id=session.workspace_id,
            details={"session_id": str(session.id)},
            request_context=request_context,
        )
        return True

    async def end_all_user_sessions(
        self, user_id: UUID, workspace_id: Optional[UUID] = None, request_context: Optional[RequestContext] = None
    ) -> int:
        result = await self.db.execute(
            update(UserSession)
            .where(UserSession.user_id == user_id, UserSession.is_active.is_(True))
            .values(is_active=False, ended_at=utc_now())
        )
        ended = result.rowcount
        await self.db.commit()

        await self.audit.log_event(
            "logout_all_sessions",
            "user",
            "authentication",
            workspace_id=workspace_id,
            user_id=user_id,
            entity_id=str(user_id),
            severity="medium",
            context_data={"sessions_ended": ended},
            request_context=request_context,
        )
        return ended

    # Preferences

    async def get_user_preferences(self, user_id: UUID) -> Optional[UserPreferences]:
        return (
            await self.db.execute(select(UserPreferences).where(UserPreferences.user_id == user_id))
        ).scalar_one_or_none()

    async def update_user_preferences(
        self, user_id: UUID, workspace_id: Optional[UUID] = None, **fields: Any
    ) -> UserPreferences:
        """Upsert preferences; dict-valued fields are merged into the stored value."""
        unknown = set(fields) - set(PREFERENCE_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown preference fields: {sorted(unknown)}")

        prefs = await self.get_user_preferences(user_id)
        if prefs is None:
            prefs = UserPreferences(user_id=user_id)
            self.db.add(prefs)
            await self.db.flush()

        old_values = {key: getattr(prefs, key) for key in fields}
        for key, value in fields.items():
            current = getattr(prefs, key)
            if isinstance(value, dict) and isinstance(current, dict):
                value = {**current, **value}
            setattr(prefs, key, value)
        await self.db.commit()
        await self.db.refresh(prefs)

        await self.audit.log_data_modification(
            "update",
            "user_preferences",
            str(prefs.id),
            workspace_id=workspace_id,
            user_id=user_id,
            old_values=old_values,
            new_values=fields,
        )
        return prefs

    # Activity

    async def log_activity(
        self,
        user_id: UUID,
        workspace_id: UUID,
        activity_type: str,
        description: Optional[str] = None,
        metadata: Optional[dict] = None,
        request_context: Optional[RequestContext] = None,
    ) -> UserActivity:
        ctx = request_context or RequestContext()
        activity = UserActivity(
            user_id=user_id,
            workspace_id=workspace_id,
            activity_type=activity_type,
            description=description,
            activity_metadata=metadata,
            ip_address=ctx.ip_address,
            user_agent=ctx.user_agent,
        )
        self.db.add(activity)
        await self.db.commit()
        await self.db.refresh(activity)
        return activity

    async def get_user_activity(self, user_id: UUID, limit: int = 50, offset: int = 0) -> list[UserActivity]:
        result = await self.db.execute(
            select(UserActivity)
            .where(UserActivity.user_id == user_id)
            .order_by(UserActivity.created_at.desc())
            .offset(offset)
            .limit(limit)
        )
        return list(result.scalars().all())
