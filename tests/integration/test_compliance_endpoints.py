"""
Integration tests for GDPR, audit and security endpoints.
"""

from datetime import timedelta

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from locall.models import Call, ConsentRecord, User, Workspace
from locall.models.base import utc_now

pytestmark = pytest.mark.integration


class TestConsentEndpoints:
    @pytest.mark.asyncio
    async def test_record_and_withdraw_own_consent(self, client: AsyncClient, agent_headers: dict, test_user_agent: User):
        response = await client.post(
            "/api/v1/compliance/consents",
            headers=agent_headers,
            json={"consent_type": "call_recording", "granted": True, "purpose": "Quality assurance"},
        )
        assert response.status_code == 201
        data = response.json()
        assert data["user_id"] == str(test_user_agent.id)
        assert data["granted"] is True

        response = await client.post(
            "/api/v1/compliance/consents/withdraw", headers=agent_headers, json={"consent_type": "call_recording"}
        )
        assert response.status_code == 200
        assert response.json() == {"withdrawn": 1}

        response = await client.get("/api/v1/compliance/consents", headers=agent_headers)
        assert [c["granted"] for c in response.json()] == [False]

    @pytest.mark.asyncio
    async def test_consent_for_other_user_requires_manage(
        self, client: AsyncClient, agent_headers: dict, owner_headers: dict, test_user_owner: User, test_user_agent: User
    ):
        payload = {"consent_type": "marketing", "granted": True, "purpose": "Newsletter"}

        response = await client.post(
            "/api/v1/compliance/consents",
            headers=agent_headers,
            json={**payload, "user_id": str(test_user_owner.id)},
        )
        assert response.status_code == 403

        response = await client.post(
            "/api/v1/compliance/consents",
            headers=owner_headers,
            json={**payload, "user_id": str(test_user_agent.id)},
        )
        assert response.status_code == 201
        assert response.json()["user_id"] == str(test_user_agent.id)

    @pytest.mark.asyncio
    async def test_consent_for_other_workspace_user_not_found(
        self,
        client: AsyncClient,
        test_db: AsyncSession,
        owner_headers: dict,
        other_owner_headers: dict,
        test_user_agent: User,
    ):
        call = Call(
            workspace_id=test_user_agent.workspace_id,
            user_id=test_user_agent.id,
            status="completed",
            recording_url="https://recordings.example.com/call-1.mp3",
        )
        test_db.add(call)
        await test_db.commit()
        call_id = call.id
        payload = {"consent_type": "call_recording", "granted": True, "purpose": "Quality assurance"}
        response = await client.post(
            "/api/v1/compliance/consents", headers=owner_headers, json={**payload, "user_id": str(test_user_agent.id)}
        )
        assert response.status_code == 201

        response = await client.post(
            "/api/v1/compliance/consents/withdraw",
            headers=other_owner_headers,
            json={"consent_type": "call_recording", "user_id": str(test_user_agent.id)},
        )
        assert response.status_code == 404

        response = await client.post(
            "/api/v1/compliance/consents",
            headers=other_owner_headers,
            json={**payload, "user_id": str(test_user_agent.id)},
        )
        assert response.status_code == 404

        response = await client.get(
            "/api/v1/compliance/consents", headers=other_owner_headers, params={"user_id": str(test_user_agent.id)}
        )
        assert response.status_code == 404

        stored = (
            await test_db.execute(select(Call).where(Call.id == call_id).execution_options(populate_existing=True))
        ).scalar_one()
        assert stored.recording_url == "https://recordings.example.com/call-1.mp3"
        consents = (await test_db.execute(select(ConsentRecord))).scalars().all()
        assert [(c.granted, c.workspace_id) for c in consents] == [(True, test_user_agent.workspace_id)]

    @pytest.mark.asyncio
    async def test_invalid_consent_type(self, client: AsyncClient, agent_headers: dict):
        response = await client.post(
            "/api/v1/compliance/consents",
            headers=agent_headers,
            json={"consent_type": "telepathy", "granted": True, "purpose": "x"},
        )

        assert response.status_code == 422

        response = await client.post(
            "/api/v1/compliance/consents/withdraw", headers=agent_headers, json={"consent_type": "telepathy"}
        )

        assert response.status_code == 400


class TestExportEndpoints:
    @pytest.mark.asyncio
    async def test_export_own_data_and_download(self, client: AsyncClient, agent_headers: dict, test_user_agent: User):
        response = await client.post(
            "/api/v1/compliance/exports",
            headers=agent_headers,
            json={"user_id": str(test_user_agent.id), "data_types": ["user_data", "consents"]},
        )
        assert response.status_code == 201
        export = response.json()
        assert export["status"] == "completed"
        assert export["file_url"].endswith(f"/api/v1/compliance/exports/{export['id']}/download")

        response = await client.get(f"/api/v1/compliance/exports/{export['id']}/download", headers=agent_headers)
        assert response.status_code == 200
        payload = response.json()
        assert payload["user_data"]["profile"]["email"] == "agent@testworkspace.com"
        assert "hashed_password" not in payload["user_data"]["profile"]
        assert payload["consents"] == []

    @pytest.mark.asyncio
    async def test_workspace_export_requires_manage(self, client: AsyncClient, agent_headers: dict, owner_headers: dict):
        response = await client.post(
            "/api/v1/compliance/exports", headers=agent_headers, json={"data_types": ["calls"]}
        )
        assert response.status_code == 403

        response = await client.post(
            "/api/v1/compliance/exports", headers=owner_headers, json={"data_types": ["calls", "form_submissions"]}
        )
        assert response.status_code == 201
        assert response.json()["user_id"] is None

    @pytest.mark.asyncio
    async def test_invalid_export_types(self, client: AsyncClient, agent_headers: dict, test_user_agent: User):
        response = await client.post(
            "/api/v1/compliance/exports",
            headers=agent_headers,
            json={"user_id": str(test_user_agent.id), "data_types": ["everything"]},
        )

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_export_other_workspace_user_not_found(
        self, client: AsyncClient, owner_headers: dict, other_user_owner: User
    ):
        response = await client.post(
            "/api/v1/compliance/exports",
            headers=owner_headers,
            json={"user_id": str(other_user_owner.id), "data_types": ["user_data"]},
        )

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_download_from_other_workspace(
        self, client: AsyncClient, owner_headers: dict, other_owner_headers: dict, test_user_owner: User
    ):
        response = await client.post(
            "/api/v1/compliance/exports",
            headers=owner_headers,
            json={"user_id": str(test_user_owner.id), "data_types": ["user_data"]},
        )
        export_id = response.json()["id"]

        response = await client.get(f"/api/v1/compliance/exports/{export_id}/download", headers=other_owner_headers)

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_download_requires_read_unless_own_export(
        self, client: AsyncClient, agent_headers: dict, owner_headers: dict, test_user_owner: User
    ):
        response = await client.post(
            "/api/v1/compliance/exports", headers=owner_headers, json={"data_types": ["calls", "form_submissions"]}
        )
        workspace_export_id = response.json()["id"]
        response = await client.post(
            "/api/v1/compliance/exports",
            headers=owner_headers,
            json={"user_id": str(test_user_owner.id), "data_types": ["user_data"]},
        )
        owner_export_id = response.json()["id"]

        for export_id in (workspace_export_id, owner_export_id):
            response = await client.get(f"/api/v1/compliance/exports/{export_id}/download", headers=agent_headers)
            assert response.status_code == 403

        response = await client.get(
            f"/api/v1/compliance/exports/{workspace_export_id}/download", headers=owner_headers
        )
        assert response.status_code == 200
        assert set(response.json()) >= {"calls", "form_submissions"}

    @pytest.mark.asyncio
    async def test_list_exports_requires_read(self, client: AsyncClient, agent_headers: dict, owner_headers: dict):
        response = await client.get("/api/v1/compliance/exports", headers=agent_headers)
        assert response.status_code == 403

        response = await client.get("/api/v1/compliance/exports", headers=owner_headers)
        assert response.status_code == 200


class TestDeletionEndpoints:
    @pytest.mark.asyncio
    async def test_partial_deletion_by_owner(self, client: AsyncClient, owner_headers: dict, test_user_agent: User):
        response = await client.post(
            "/api/v1/compliance/deletions",
            headers=owner_headers,
            json={"user_id": str(test_user_agent.id), "deletion_type": "partial", "data_types": ["consents"]},
        )

        assert response.status_code == 201
        data = response.json()
        assert data["status"] == "completed"
        assert data["deleted_counts"] == {"consents": 0}

        response = await client.get("/api/v1/compliance/deletions", headers=owner_headers)
        assert len(response.json()) == 1

    @pytest.mark.asyncio
    async def test_agent_cannot_erase_others(self, client: AsyncClient, agent_headers: dict, test_user_owner: User):
        response = await client.post(
            "/api/v1/compliance/deletions",
            headers=agent_headers,
            json={"user_id": str(test_user_owner.id), "deletion_type": "complete"},
        )

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_other_workspace_subject_not_found(
        self, client: AsyncClient, owner_headers: dict, other_user_owner: User
    ):
        response = await client.post(
            "/api/v1/compliance/deletions",
            headers=owner_headers,
            json={"user_id": str(other_user_owner.id), "deletion_type": "complete"},
        )

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_partial_without_types_rejected(self, client: AsyncClient, agent_headers: dict, test_user_agent: User):
        response = await client.post(
            "/api/v1/compliance/deletions",
            headers=agent_headers,
            json={"user_id": str(test_user_agent.id), "deletion_type": "partial"},
        )

        assert response.status_code == 400


class TestRetentionAndSettings:
    @pytest.mark.asyncio
    async def test_retention_defaults_then_override(self, client: AsyncClient, owner_headers: dict):
        response = await client.get("/api/v1/compliance/retention-policies", headers=owner_headers)
        assert response.status_code == 200
        defaults = {p["data_type"]: p["retention_days"] for p in response.json()}
        assert defaults["call_recordings"] == 365

        response = await client.put(
            "/api/v1/compliance/retention-policies",
            headers=owner_headers,
            json={"data_type": "call_recordings", "retention_days": 30, "auto_delete": True, "legal_hold": True},
        )
        assert response.status_code == 200

        response = await client.get("/api/v1/compliance/retention-policies", headers=owner_headers)
        assert response.json() == [
            {"data_type": "call_recordings", "retention_days": 30, "auto_delete": True, "legal_hold": True}
        ]

        response = await client.post("/api/v1/compliance/retention-policies/cleanup", headers=owner_headers)
        assert response.status_code == 200
        assert response.json() == {"affected": {}}

    @pytest.mark.asyncio
    async def test_retention_requires_manage(self, client: AsyncClient, agent_headers: dict):
        response = await client.put(
            "/api/v1/compliance/retention-policies",
            headers=agent_headers,
            json={"data_type": "analytics", "retention_days": 30},
        )

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_settings(self, client: AsyncClient, owner_headers: dict, agent_headers: dict, test_workspace: Workspace):
        response = await client.get("/api/v1/compliance/settings", headers=agent_headers)
        assert response.status_code == 200
        assert response.json()["workspace_id"] == str(test_workspace.id)
        assert response.json()["gdpr_enabled"] is True

        response = await client.put(
            "/api/v1/compliance/settings", headers=agent_headers, json={"dpo_email": "dpo@example.com"}
        )
        assert response.status_code == 403

        response = await client.put(
            "/api/v1/compliance/settings",
            headers=owner_headers,
            json={"dpo_email": "dpo@example.com", "ccpa_enabled": True},
        )
        assert response.status_code == 200
        assert response.json()["dpo_email"] == "dpo@example.com"
        assert response.json()["ccpa_enabled"] is True


class TestAuditAndSecurityEndpoints:
    @pytest.mark.asyncio
    async def test_audit_log_search(self, client: AsyncClient, owner_headers: dict, agent_headers: dict):
        await client.put("/api/v1/compliance/settings", headers=owner_headers, json={"ccpa_enabled": True})

        response = await client.get(
            "/api/v1/compliance/audit-logs", headers=owner_headers, params={"category": "compliance"}
        )
        assert response.status_code == 200
        page = response.json()
        assert page["total"] >= 1
        assert {item["category"] for item in page["items"]} == {"compliance"}

        response = await client.get("/api/v1/compliance/audit-logs", headers=agent_headers)
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_security_events_and_resolve(
        self, client: AsyncClient, owner_headers: dict, other_owner_headers: dict, test_user_owner: User
    ):
        await client.post(
            "/api/v1/auth/login", json={"email": "owner@testworkspace.com", "password": "wrongpassword"}
        )

        response = await client.get(
            "/api/v1/compliance/security-events", headers=owner_headers, params={"resolved": False}
        )
        assert response.status_code == 200
        events = response.json()
        assert [e["event_type"] for e in events] == ["failed_login"]
        event_id = events[0]["id"]

        response = await client.post(
            f"/api/v1/compliance/security-events/{event_id}/resolve", headers=other_owner_headers
        )
        assert response.status_code == 404

        response = await client.post(f"/api/v1/compliance/security-events/{event_id}/resolve", headers=owner_headers)
        assert response.status_code == 200
        assert response.json()["resolved"] is True

    @pytest.mark.asyncio
    async def test_security_report(self, client: AsyncClient, owner_headers: dict):
        await client.post(
            "/api/v1/auth/login", json={"email": "owner@testworkspace.com", "password": "wrongpassword"}
        )
        now = utc_now()

        response = await client.post(
            "/api/v1/compliance/reports",
            headers=owner_headers,
            json={
                "report_type": "security",
                "start_date": (now - timedelta(days=1)).isoformat(),
                "end_date": (now + timedelta(days=1)).isoformat(),
            },
        )

        assert response.status_code == 201
        report = response.json()
        assert report["report_type"] == "security"
        assert report["data"]["failed_login_attempts"] == 1
        assert report["data"]["total_security_events"] == 1

    @pytest.mark.asyncio
    async def test_report_period_must_be_ordered(self, client: AsyncClient, owner_headers: dict):
        now = utc_now()

        response = await client.post(
            "/api/v1/compliance/reports",
            headers=owner_headers,
            json={"report_type": "audit", "start_date": now.isoformat(), "end_date": now.isoformat()},
        )

        assert response.status_code == 400
