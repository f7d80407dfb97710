"""
Seed data script for local development.

Creates sample workspaces, system roles, users, teams, a webform and a few
calls for exercising the dashboard.
"""

import asyncio
from datetime import timedelta
from uuid import uuid4

from sqlalchemy import select

from locall.database import AsyncSessionLocal, init_db
from locall.models import Call, Team, TeamMember, User, UserRoleAssignment, WebformConfig, Workspace
from locall.models.base import utc_now
from locall.security import hash_password
from locall.services.users import UserManagementService
from locall.services.webforms import generate_tracking_id


async def seed_database():
    """Create seed data for development."""

    print("🌱 Seeding database with sample data...")

    async with AsyncSessionLocal() as db:
        # Check if data already exists
        result = await db.execute(select(Workspace))
        if result.scalars().first():
            print("⚠️  Database already has data. Skipping seed.")
            return

        # Create Workspaces
        print("\n📦 Creating workspaces...")
        acme = Workspace(
            id=uuid4(),
            name="Acme Plumbing",
            slug="acme-plumbing",
            plan="professional",
            is_active=True,
            max_users=50,
            max_teams=10,
            contact_email="owner@acme-plumbing.com",
            contact_name="John Doe",
        )

        brightsmile = Workspace(
            id=uuid4(),
            name="BrightSmile Dental",
            slug="brightsmile",
            plan="starter",
            is_active=True,
            max_users=10,
            max_teams=3,
            contact_email="office@brightsmile.example",
            contact_name="Jane Smith",
        )

        db.add_all([acme, brightsmile])
        await db.commit()
        print(f"  ✅ Created {acme.name}")
        print(f"  ✅ Created {brightsmile.name}")

        # Create System Roles
        print("\n🔐 Creating system roles...")
        roles = await UserManagementService(db).ensure_system_roles()
        for role in roles.values():
            print(f"  ✅ {role.name}: {', '.join(sorted(p.name for p in role.permissions))}")

        # Create Users
        print("\n👤 Creating users...")
        acme_owner = User(
            id=uuid4(),
            workspace_id=acme.id,
            email="owner@acme-plumbing.com",
            full_name="John Doe",
            hashed_password=hash_password("password123"),
            is_active=True,
            is_verified=True,
        )

        acme_agent = User(
            id=uuid4(),
            workspace_id=acme.id,
            email="agent@acme-plumbing.com",
            full_name="Bob Johnson",
            hashed_password=hash_password("password123"),
            is_active=True,
            is_verified=True,
        )

        brightsmile_admin = User(
            id=uuid4(),
            workspace_id=brightsmile.id,
            email="admin@brightsmile.example",
            full_name="Jane Smith",
            hashed_password=hash_password("password123"),
            is_active=True,
            is_verified=True,
        )

        db.add_all([acme_owner, acme_agent, brightsmile_admin])
        await db.commit()
        print(f"  ✅ Created {acme_owner.email} (Acme Owner)")
        print(f"  ✅ Created {acme_agent.email} (Acme Agent)")
        print(f"  ✅ Created {brightsmile_admin.email} (BrightSmile Admin)")

        # Assign Roles to Users
        print("\n🎭 Assigning roles...")
        assignments = [
            UserRoleAssignment(user_id=acme_owner.id, role_id=roles["owner"].id, workspace_id=acme.id),
            UserRoleAssignment(user_id=acme_agent.id, role_id=roles["agent"].id, workspace_id=acme.id),
            UserRoleAssignment(
                user_id=brightsmile_admin.id, role_id=roles["admin"].id, workspace_id=brightsmile.id
            ),
        ]
        db.add_all(assignments)
        await db.commit()
        print(f"  ✅ Assigned roles to {len(assignments)} users")

        # Create Teams
        print("\n👥 Creating teams...")
        acme_dispatch = Team(
            id=uuid4(),
            workspace_id=acme.id,
            name="Dispatch",
            slug="dispatch",
            description="Inbound call handling",
            team_lead_id=acme_owner.id,
            created_by=acme_owner.id,
        )
        db.add(acme_dispatch)
        await db.commit()
        db.add_all(
            [
                TeamMember(team_id=acme_dispatch.id, user_id=acme_owner.id, role="lead", added_by=acme_owner.id),
                TeamMember(team_id=acme_dispatch.id, user_id=acme_agent.id, role="member", added_by=acme_owner.id),
            ]
        )
        await db.commit()
        print(f"  ✅ Created {acme_dispatch.name} ({acme.name}) with 2 members")

        # Create Webform
        print("\n📝 Creating webform...")
        contact_form = WebformConfig(
            workspace_id=acme.id,
            name="Website contact form",
            tracking_id=generate_tracking_id(),
            form_selector="#contact-form",
            domains=["acme-plumbing.com"],
            conversion_goals=["quote_requested"],
            notification_emails=["owner@acme-plumbing.com"],
            spam_protection=True,
        )
        db.add(contact_form)
        await db.commit()
        print(f"  ✅ Created {contact_form.name} (tracking id {contact_form.tracking_id})")

        # Create Calls
        print("\n📞 Creating calls...")
        now = utc_now()
        calls = [
            Call(
                workspace_id=acme.id,
                user_id=acme_agent.id,
                caller_number=f"+1555010{i:04d}",
                callee_number="+15550199999",
                status=status,
                duration=duration,
                value=value,
                started_at=now - timedelta(days=i),
                ended_at=now - timedelta(days=i) + timedelta(seconds=duration),
                created_at=now - timedelta(days=i),
            )
            for i, (status, duration, value) in enumerate(
                [
                    ("completed", 320, 150.0),
                    ("completed", 95, None),
                    ("missed", 0, None),
                    ("completed", 610, 480.0),
                    ("voicemail", 45, None),
                ]
            )
        ]
        db.add_all(calls)
        await db.commit()
        print(f"  ✅ Created {len(calls)} calls")

    print("\n✅ Database seeded successfully!")
    print("\n📊 Summary:")
    print("  - 2 workspaces")
    print(f"  - {len(roles)} system roles")
    print("  - 3 users")
    print("  - 1 team")
    print("  - 1 webform")
    print(f"  - {len(calls)} calls")
    print("\n🔑 Test Credentials:")
    print("  - owner@acme-plumbing.com / password123")
    print("  - agent@acme-plumbing.com / password123")
    print("  - admin@brightsmile.example / password123")


async def main():
    """Main entry point."""
    # Initialize database schema
    print("🔧 Initializing database schema...")
    await init_db()
    print("✅ Database schema created")

    # Seed data
    await seed_database()


if __name__ == "__main__":
    asyncio.run(main())
