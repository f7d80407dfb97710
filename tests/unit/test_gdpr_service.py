"""
Unit tests for GDPR consent, export, deletion and retention workflows.
"""

from datetime import timedelta
from uuid import uuid4

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from locall.exceptions import NotFoundError, ValidationError
from locall.models import (
    Call,
    ConsentRecord,
    User,
    UserActivity,
    UserPreferences,
    WebformConfig,
    WebformSubmission,
    Workspace,
)
from locall.models.base import utc_now
from locall.services.gdpr import GDPRService

pytestmark = pytest.mark.unit


async def add_call(db: AsyncSession, user: User, days_old: int = 0, recording: bool = True) -> Call:
    created = utc_now() - timedelta(days=days_old)
    call = Call(
        workspace_id=user.workspace_id,
        user_id=user.id,
        caller_number="+15550100001",
        status="completed",
        duration=120,
        recording_url="https://recordings.example/abc.mp3" if recording else None,
        transcript="Hello, I need a plumber.",
        created_at=created,
    )
    db.add(call)
    await db.commit()
    return call


async def add_submission(db: AsyncSession, user: User, workspace_id=None) -> WebformSubmission:
    workspace_id = workspace_id or user.workspace_id
    form = WebformConfig(workspace_id=workspace_id, name="Contact", tracking_id=f"track_{uuid4().hex[:16]}")
    db.add(form)
    await db.flush()
    submission = WebformSubmission(
        workspace_id=workspace_id,
        form_id=form.id,
        user_id=user.id,
        visitor_id="visitor-42",
        form_data={"email": "agent@testworkspace.com"},
        user_journey=[{"event_type": "page_view", "timestamp": "2026-10-01T10:00:00Z"}],
        ip_address="198.51.100.4",
        user_agent="Mozilla/5.0",
    )
    db.add(submission)
    await db.commit()
    return submission


async def count(db: AsyncSession, model, *conditions) -> int:
    return (await db.execute(select(func.count()).select_from(model).where(*conditions))).scalar_one()


class TestConsent:
    @pytest.mark.asyncio
    async def test_record_consent(self, test_db: AsyncSession, test_user_agent: User):
        service = GDPRService(test_db)

        record = await service.record_consent(
            test_user_agent.id,
            test_user_agent.workspace_id,
            "call_recording",
            True,
            "Record calls for quality assurance",
            data_categories=["audio"],
        )

        assert record.granted is True
        assert record.withdrawn_at is None
        assert record.legal_basis == "consent"
        assert await service.is_processing_compliant(test_user_agent.id, "call_recording") is True
        assert await service.is_processing_compliant(test_user_agent.id, "Record calls for quality assurance")
        assert await service.is_processing_compliant(test_user_agent.id, "marketing") is False

    @pytest.mark.asyncio
    async def test_denied_consent_is_withdrawn_immediately(self, test_db: AsyncSession, test_user_agent: User):
        record = await GDPRService(test_db).record_consent(
            test_user_agent.id, test_user_agent.workspace_id, "marketing", False, "Newsletter"
        )

        assert record.withdrawn_at is not None

    @pytest.mark.asyncio
    async def test_invalid_consent_type(self, test_db: AsyncSession, test_user_agent: User):
        service = GDPRService(test_db)

        with pytest.raises(ValidationError):
            await service.record_consent(test_user_agent.id, test_user_agent.workspace_id, "telepathy", True, "x")
        with pytest.raises(ValidationError):
            await service.record_consent(
                test_user_agent.id, test_user_agent.workspace_id, "marketing", True, "x", legal_basis="whim"
            )

    @pytest.mark.asyncio
    async def test_withdraw_call_recording_clears_recordings(self, test_db: AsyncSession, test_user_agent: User):
        service = GDPRService(test_db)
        await service.record_consent(
            test_user_agent.id, test_user_agent.workspace_id, "call_recording", True, "Quality assurance"
        )
        call = await add_call(test_db, test_user_agent)

        withdrawn = await service.withdraw_consent(test_user_agent.id, "call_recording")

        assert withdrawn == 1
        await test_db.refresh(call)
        assert call.recording_url is None
        assert await service.is_processing_compliant(test_user_agent.id, "call_recording") is False

    @pytest.mark.asyncio
    async def test_withdraw_marketing_disables_notification_channels(
        self, test_db: AsyncSession, test_user_agent: User
    ):
        test_db.add(UserPreferences(user_id=test_user_agent.id, notifications={"email": True, "sms": True}))
        await test_db.commit()
        service = GDPRService(test_db)
        await service.record_consent(test_user_agent.id, test_user_agent.workspace_id, "marketing", True, "Offers")

        await service.withdraw_consent(test_user_agent.id, "marketing")

        prefs = (
            await test_db.execute(select(UserPreferences).where(UserPreferences.user_id == test_user_agent.id))
        ).scalar_one()
        assert prefs.notifications["email"] is False
        assert prefs.notifications["sms"] is False

    @pytest.mark.asyncio
    async def test_withdraw_analytics_anonymizes_submissions(self, test_db: AsyncSession, test_user_agent: User):
        service = GDPRService(test_db)
        await service.record_consent(test_user_agent.id, test_user_agent.workspace_id, "analytics", True, "Stats")
        submission = await add_submission(test_db, test_user_agent)

        await service.withdraw_consent(test_user_agent.id, "analytics")

        await test_db.refresh(submission)
        assert submission.ip_address is None
        assert submission.user_agent is None
        assert submission.visitor_id.startswith("anon-")
        assert submission.visitor_id != "visitor-42"
        assert submission.user_journey == []
        assert submission.user_id is None
        assert submission.form_data == {"email": "agent@testworkspace.com"}

    @pytest.mark.asyncio
    async def test_withdraw_scoped_to_workspace(
        self, test_db: AsyncSession, test_user_agent: User, other_workspace: Workspace
    ):
        service = GDPRService(test_db)
        await service.record_consent(test_user_agent.id, other_workspace.id, "call_recording", True, "QA")
        foreign_call = Call(
            workspace_id=other_workspace.id,
            user_id=test_user_agent.id,
            status="completed",
            recording_url="https://recordings.example/other.mp3",
        )
        test_db.add(foreign_call)
        await test_db.commit()
        foreign_submission = await add_submission(test_db, test_user_agent, workspace_id=other_workspace.id)

        assert await service.withdraw_consent(
            test_user_agent.id, "call_recording", workspace_id=test_user_agent.workspace_id
        ) == 0
        await service.withdraw_consent(test_user_agent.id, "analytics", workspace_id=test_user_agent.workspace_id)

        await test_db.refresh(foreign_call)
        await test_db.refresh(foreign_submission)
        assert foreign_call.recording_url == "https://recordings.example/other.mp3"
        assert foreign_submission.ip_address == "198.51.100.4"
        assert await service.is_processing_compliant(test_user_agent.id, "call_recording") is True

    @pytest.mark.asyncio
    async def test_get_user_consent_filters_by_type(self, test_db: AsyncSession, test_user_agent: User):
        service = GDPRService(test_db)
        await service.record_consent(test_user_agent.id, test_user_agent.workspace_id, "marketing", True, "Offers")
        await service.record_consent(test_user_agent.id, test_user_agent.workspace_id, "analytics", True, "Stats")

        assert len(await service.get_user_consent(test_user_agent.id)) == 2
        records = await service.get_user_consent(test_user_agent.id, "analytics")
        assert [r.consent_type for r in records] == ["analytics"]


class TestDataExport:
    @pytest.mark.asyncio
    async def test_user_export_completes(self, test_db: AsyncSession, test_user_agent: User, test_user_owner: User):
        service = GDPRService(test_db)
        await service.record_consent(test_user_agent.id, test_user_agent.workspace_id, "analytics", True, "Stats")
        await add_call(test_db, test_user_agent)

        request = await service.request_data_export(
            test_user_agent.workspace_id,
            test_user_agent.id,
            ["user_data", "calls", "recordings", "consents"],
            requested_by=test_user_owner.id,
        )

        assert request.status == "completed"
        assert request.file_url.endswith(f"/api/v1/compliance/exports/{request.id}/download")
        assert request.expires_at is not None
        data = request.export_data
        assert data["user_data"]["profile"]["email"] == test_user_agent.email
        assert "hashed_password" not in data["user_data"]["profile"]
        assert len(data["calls"]) == 1
        assert data["recordings"][0]["recording_url"] == "https://recordings.example/abc.mp3"
        assert data["consents"][0]["consent_type"] == "analytics"

    @pytest.mark.asyncio
    async def test_workspace_export(self, test_db: AsyncSession, test_user_agent: User):
        await add_call(test_db, test_user_agent)

        request = await GDPRService(test_db).request_data_export(
            test_user_agent.workspace_id, None, ["calls", "transcripts"]
        )

        assert request.status == "completed"
        assert request.export_data["transcripts"][0]["transcript"] == "Hello, I need a plumber."

    @pytest.mark.asyncio
    async def test_invalid_export_types(self, test_db: AsyncSession, test_user_agent: User):
        service = GDPRService(test_db)

        with pytest.raises(ValidationError):
            await service.request_data_export(test_user_agent.workspace_id, test_user_agent.id, ["passwords"])
        with pytest.raises(ValidationError):
            await service.request_data_export(test_user_agent.workspace_id, test_user_agent.id, [])
        # transcripts are workspace-level only
        with pytest.raises(ValidationError):
            await service.request_data_export(test_user_agent.workspace_id, test_user_agent.id, ["transcripts"])

    @pytest.mark.asyncio
    async def test_failed_export_is_recorded(self, test_db: AsyncSession, test_user_agent: User, monkeypatch):
        async def broken(self, user_id, data_types):
            raise RuntimeError("storage unavailable")

        monkeypatch.setattr(GDPRService, "_collect_user_export", broken)

        request = await GDPRService(test_db).request_data_export(
            test_user_agent.workspace_id, test_user_agent.id, ["calls"]
        )

        assert request.status == "failed"
        assert request.error_message == "storage unavailable"
        assert request.export_data is None

    @pytest.mark.asyncio
    async def test_download_export(
        self, test_db: AsyncSession, test_user_agent: User, other_workspace: Workspace
    ):
        service = GDPRService(test_db)
        request = await service.request_data_export(test_user_agent.workspace_id, test_user_agent.id, ["calls"])

        payload = await service.download_export(request.id, test_user_agent.workspace_id)
        assert payload["calls"] == []
        assert "generated_at" in payload

        with pytest.raises(NotFoundError):
            await service.download_export(request.id, other_workspace.id)
        with pytest.raises(NotFoundError):
            await service.download_export(uuid4())

    @pytest.mark.asyncio
    async def test_download_expired_export(self, test_db: AsyncSession, test_user_agent: User):
        service = GDPRService(test_db)
        request = await service.request_data_export(test_user_agent.workspace_id, test_user_agent.id, ["calls"])
        request.expires_at = utc_now() - timedelta(days=1)
        await test_db.commit()

        with pytest.raises(ValidationError, match="expired"):
            await service.download_export(request.id)


class TestDataDeletion:
    @pytest.mark.asyncio
    async def test_complete_deletion(self, test_db: AsyncSession, test_user_agent: User, test_user_owner: User):
        service = GDPRService(test_db)
        user_id = test_user_agent.id
        await service.record_consent(user_id, test_user_agent.workspace_id, "analytics", True, "Stats")
        await add_call(test_db, test_user_agent)

        request = await service.request_data_deletion(
            test_user_agent.workspace_id, user_id, "complete", requested_by=test_user_owner.id
        )

        assert request.status == "completed"
        assert request.deleted_counts["users"] == 1
        assert request.deleted_counts["calls"] == 1
        assert request.deleted_counts["consent_records"] == 1
        assert request.deleted_counts["role_assignments"] == 1
        assert await count(test_db, User, User.id == user_id) == 0
        assert await count(test_db, Call, Call.user_id == user_id) == 0

    @pytest.mark.asyncio
    async def test_partial_deletion(self, test_db: AsyncSession, test_user_agent: User):
        service = GDPRService(test_db)
        call = await add_call(test_db, test_user_agent)
        submission = await add_submission(test_db, test_user_agent)
        test_db.add(
            UserActivity(
                user_id=test_user_agent.id, workspace_id=test_user_agent.workspace_id, activity_type="page_view"
            )
        )
        await test_db.commit()

        request = await service.request_data_deletion(
            test_user_agent.workspace_id, test_user_agent.id, "partial", ["recordings", "analytics"]
        )

        assert request.status == "completed"
        assert request.deleted_counts == {"recordings": 1, "analytics": 2}
        await test_db.refresh(call)
        assert call.recording_url is None
        await test_db.refresh(submission)
        assert submission.ip_address is None
        assert submission.visitor_id.startswith("anon-")
        assert await count(test_db, UserActivity, UserActivity.user_id == test_user_agent.id) == 0
        assert await count(test_db, User, User.id == test_user_agent.id) == 1

    @pytest.mark.asyncio
    async def test_deletion_failure_rolls_back_everything(
        self, test_db: AsyncSession, test_user_agent: User, monkeypatch
    ):
        service = GDPRService(test_db)
        user_id = test_user_agent.id
        await service.record_consent(user_id, test_user_agent.workspace_id, "analytics", True, "Stats")
        await add_call(test_db, test_user_agent)

        original = GDPRService._delete_rows
        calls = {"n": 0}

        async def failing_delete(self, model, *conditions):
            calls["n"] += 1
            if calls["n"] == 4:
                raise RuntimeError("disk full")
            return await original(self, model, *conditions)

        monkeypatch.setattr(GDPRService, "_delete_rows", failing_delete)

        request = await service.request_data_deletion(test_user_agent.workspace_id, user_id, "complete")

        assert request.status == "failed"
        assert request.error_message == "disk full"
        assert request.deleted_counts is None
        # Rows deleted before the failure are restored
        assert await count(test_db, ConsentRecord, ConsentRecord.user_id == user_id) == 1
        assert await count(test_db, Call, Call.user_id == user_id) == 1
        assert await count(test_db, User, User.id == user_id) == 1

    @pytest.mark.asyncio
    async def test_invalid_deletion_requests(self, test_db: AsyncSession, test_user_agent: User):
        service = GDPRService(test_db)

        with pytest.raises(ValidationError):
            await service.request_data_deletion(test_user_agent.workspace_id, test_user_agent.id, "some")
        with pytest.raises(ValidationError):
            await service.request_data_deletion(test_user_agent.workspace_id, test_user_agent.id, "partial")

    @pytest.mark.asyncio
    async def test_requests_are_listed_per_workspace(
        self, test_db: AsyncSession, test_user_agent: User, other_workspace: Workspace
    ):
        service = GDPRService(test_db)
        await service.request_data_deletion(test_user_agent.workspace_id, test_user_agent.id, "partial", ["calls"])

        assert len(await service.get_data_deletion_requests(test_user_agent.workspace_id)) == 1
        assert await service.get_data_deletion_requests(other_workspace.id) == []


class TestRetention:
    @pytest.mark.asyncio
    async def test_defaults_apply_without_workspace_policies(self, test_db: AsyncSession, test_user_agent: User):
        old_call = await add_call(test_db, test_user_agent, days_old=400)
        new_call = await add_call(test_db, test_user_agent, days_old=10)

        results = await GDPRService(test_db).run_retention_cleanup(test_user_agent.workspace_id)

        assert results == {"call_recordings": 1, "analytics": 0}
        await test_db.refresh(old_call)
        await test_db.refresh(new_call)
        assert old_call.recording_url is None
        assert new_call.recording_url is not None

    @pytest.mark.asyncio
    async def test_legal_hold_skips_cleanup(self, test_db: AsyncSession, test_user_agent: User):
        service = GDPRService(test_db)
        call = await add_call(test_db, test_user_agent, days_old=400)
        await service.set_retention_policy(
            test_user_agent.workspace_id, "call_recordings", 30, auto_delete=True, legal_hold=True
        )

        results = await service.run_retention_cleanup(test_user_agent.workspace_id)

        assert results == {}
        await test_db.refresh(call)
        assert call.recording_url is not None

    @pytest.mark.asyncio
    async def test_set_retention_policy_upserts(self, test_db: AsyncSession, test_workspace: Workspace):
        service = GDPRService(test_db)

        first = await service.set_retention_policy(test_workspace.id, "calls", 90, auto_delete=True)
        second = await service.set_retention_policy(test_workspace.id, "calls", 180)

        assert first.id == second.id
        assert second.retention_days == 180
        assert second.auto_delete is False
        assert len(await service.get_workspace_retention_policies(test_workspace.id)) == 1

        with pytest.raises(ValidationError):
            await service.set_retention_policy(test_workspace.id, "calls", 0)

    @pytest.mark.asyncio
    async def test_default_policies(self, test_db: AsyncSession):
        rules = {rule.data_type: rule for rule in GDPRService(test_db).get_retention_policies()}

        assert rules["call_recordings"].retention_days == 365
        assert rules["user_data"].retention_days == 2555
        assert rules["form_submissions"].auto_delete is False


class TestComplianceSettings:
    @pytest.mark.asyncio
    async def test_settings_created_with_defaults(self, test_db: AsyncSession, test_workspace: Workspace):
        settings_row = await GDPRService(test_db).get_compliance_settings(test_workspace.id)

        assert settings_row.gdpr_enabled is True
        assert settings_row.ccpa_enabled is False
        assert settings_row.default_retention_days == 365

    @pytest.mark.asyncio
    async def test_update_settings(self, test_db: AsyncSession, test_workspace: Workspace):
        service = GDPRService(test_db)

        updated = await service.update_compliance_settings(
            test_workspace.id, ccpa_enabled=True, dpo_email="dpo@testworkspace.com"
        )

        assert updated.ccpa_enabled is True
        assert updated.dpo_email == "dpo@testworkspace.com"

    @pytest.mark.asyncio
    async def test_unknown_setting_rejected(self, test_db: AsyncSession, test_workspace: Workspace):
        service = GDPRService(test_db)

        with pytest.raises(ValidationError):
            await service.update_compliance_settings(test_workspace.id, ccpa_enabled=True, favourite_colour="red")

        settings_row = await service.get_compliance_settings(test_workspace.id)
        assert settings_row.ccpa_enabled is False
