"""
Unit tests for webform tracking and analytics.
"""

from datetime import timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from locall.api.webforms import WebformConfigResponse
from locall.exceptions import NotFoundError, ValidationError
from locall.models import RealtimeNotification, WebformConfig, Workspace
from locall.models.base import utc_now
from locall.realtime import LocalBroker
from locall.services.audit import RequestContext
from locall.services.notifications import NotificationService
from locall.services.webforms import WebformService, journey_seconds, range_start

pytestmark = pytest.mark.unit


class FailingBroker(LocalBroker):
    async def publish(self, channel: str, message: dict) -> int:
        raise ConnectionError("broker down")


@pytest.fixture
def service_factory(test_db: AsyncSession, broker: LocalBroker):
    def factory(realtime=None) -> WebformService:
        return WebformService(test_db, NotificationService(test_db, realtime or broker))

    return factory


async def make_form(service: WebformService, workspace: Workspace, **fields) -> WebformConfig:
    return await service.create_webform_config(
        workspace.id, "Contact form", form_selector="#contact", domains=["example.com"], **fields
    )


JOURNEY = [
    {"event_type": "page_view", "timestamp": "2026-10-01T10:00:00Z"},
    {"event_type": "page_view", "timestamp": "2026-10-01T10:01:30Z"},
    {"event_type": "form_submit", "timestamp": "2026-10-01T10:02:00Z"},
]


class TestWebformConfig:
    @pytest.mark.asyncio
    async def test_create_and_update(self, test_workspace: Workspace, service_factory):
        service = service_factory()

        config = await make_form(service, test_workspace)
        assert config.tracking_id.startswith("track_")
        assert len(config.tracking_id) == len("track_") + 16
        assert config.spam_protection is True

        updated = await service.update_webform_config(
            config.id, test_workspace.id, name="Quote form", spam_protection=False, tracking_id="hijack"
        )
        assert updated.name == "Quote form"
        assert updated.spam_protection is False
        assert updated.tracking_id == config.tracking_id

    @pytest.mark.asyncio
    async def test_response_model_reads_orm_rows(self, test_workspace: Workspace, service_factory):
        config = await make_form(service_factory(), test_workspace)

        response = WebformConfigResponse.model_validate(config)

        assert WebformConfigResponse.model_config["from_attributes"] is True
        assert response.tracking_id == config.tracking_id
        assert response.domains == ["example.com"]

    @pytest.mark.asyncio
    async def test_config_scoped_to_workspace(
        self, test_workspace: Workspace, other_workspace: Workspace, service_factory
    ):
        service = service_factory()
        config = await make_form(service, test_workspace)

        with pytest.raises(NotFoundError):
            await service.get_webform_config(config.id, other_workspace.id)
        assert await service.get_webform_configs(other_workspace.id) == []
        assert len(await service.get_webform_configs(test_workspace.id)) == 1


class TestSubmissions:
    @pytest.mark.asyncio
    async def test_valid_submission_notifies(self, test_db: AsyncSession, test_workspace: Workspace, service_factory):
        service = service_factory()
        config = await make_form(service, test_workspace)

        submission = await service.process_submission(
            config.tracking_id,
            "visitor-1",
            {"email": "pat@example.com", "message": "Leaking tap"},
            utm_data={"utm_source": "google"},
            spam_score=10,
            request_context=RequestContext(ip_address="198.51.100.4", user_agent="Mozilla/5.0"),
        )

        assert submission.is_spam is False
        assert submission.workspace_id == test_workspace.id
        assert submission.ip_address == "198.51.100.4"
        notification = (await test_db.execute(select(RealtimeNotification))).scalar_one()
        assert notification.type == "form_submission"
        assert notification.data["submission_id"] == str(submission.id)
        assert notification.data["contact_info"] == "pat@example.com"

    @pytest.mark.asyncio
    async def test_spam_threshold(self, test_db: AsyncSession, test_workspace: Workspace, service_factory):
        service = service_factory()
        config = await make_form(service, test_workspace)

        at_threshold = await service.process_submission(config.tracking_id, "v-1", {}, spam_score=70)
        over_threshold = await service.process_submission(config.tracking_id, "v-2", {}, spam_score=71)

        assert at_threshold.is_spam is False
        assert over_threshold.is_spam is True
        notifications = (await test_db.execute(select(RealtimeNotification))).scalars().all()
        assert len(notifications) == 1

    @pytest.mark.asyncio
    async def test_spam_protection_off(self, test_workspace: Workspace, service_factory):
        service = service_factory()
        config = await make_form(service, test_workspace, spam_protection=False)

        submission = await service.process_submission(config.tracking_id, "v-1", {}, spam_score=99)

        assert submission.is_spam is False

    @pytest.mark.asyncio
    async def test_unknown_or_inactive_form(self, test_workspace: Workspace, service_factory):
        service = service_factory()
        config = await make_form(service, test_workspace, is_active=False)

        with pytest.raises(NotFoundError):
            await service.process_submission("track_missing", "v-1", {})
        with pytest.raises(NotFoundError):
            await service.process_submission(config.tracking_id, "v-1", {})

    @pytest.mark.asyncio
    async def test_notification_failure_keeps_submission(self, test_workspace: Workspace, service_factory):
        service = service_factory(FailingBroker())
        config = await make_form(service, test_workspace)

        submission = await service.process_submission(config.tracking_id, "v-1", {"name": "Pat"})

        assert submission.id is not None
        _, total = await service.get_submissions(test_workspace.id)
        assert total == 1

    @pytest.mark.asyncio
    async def test_get_submissions_excludes_spam(self, test_workspace: Workspace, service_factory):
        service = service_factory()
        config = await make_form(service, test_workspace)
        for score in (0, 5, 95):
            await service.process_submission(config.tracking_id, "v", {}, spam_score=score)

        page, total = await service.get_submissions(test_workspace.id, limit=1)
        assert total == 2
        assert len(page) == 1

        _, total = await service.get_submissions(test_workspace.id, form_id=config.id, include_spam=True)
        assert total == 3


class TestConversions:
    @pytest.mark.asyncio
    async def test_conversion_recorded(self, test_workspace: Workspace, service_factory):
        service = service_factory()
        config = await make_form(service, test_workspace)

        conversion = await service.process_conversion(config.tracking_id, "v-1", "quote_requested", 250.0)

        assert conversion.form_id == config.id
        assert conversion.value == 250.0

    @pytest.mark.asyncio
    async def test_unknown_tracking_id_ignored(self, service_factory):
        assert await service_factory().process_conversion("track_missing", "v-1", "goal") is None


class TestAnalytics:
    @pytest.mark.asyncio
    async def test_analytics_breakdown(self, test_workspace: Workspace, service_factory):
        service = service_factory()
        config = await make_form(service, test_workspace)
        await service.process_submission(
            config.tracking_id,
            "v-1",
            {},
            utm_data={"utm_source": "google"},
            user_journey=JOURNEY,
            page_url="https://example.com/contact",
        )
        await service.process_submission(
            config.tracking_id, "v-2", {}, utm_data={"utm_source": "google"}, spam_score=90,
            page_url="https://example.com/contact",
        )
        await service.process_submission(config.tracking_id, "v-3", {}, page_url="https://example.com/quote")

        analytics = await service.get_analytics(test_workspace.id, time_range="7d")

        assert analytics["total_submissions"] == 3
        assert analytics["valid_submissions"] == 2
        assert analytics["spam_submissions"] == 1
        assert analytics["conversion_rate"] == pytest.approx(200 / 3)
        assert analytics["top_sources"][0] == {"source": "google", "count": 2, "conversion_rate": 50.0}
        assert analytics["top_sources"][1]["source"] == "direct"
        assert analytics["top_pages"][0] == {"page": "https://example.com/contact", "submissions": 2, "avg_time": 120}
        insights = analytics["user_journey_insights"]
        assert insights["avg_pages_before_conversion"] == 2.0
        assert insights["avg_time_to_conversion"] == 120

    @pytest.mark.asyncio
    async def test_empty_analytics(self, test_workspace: Workspace, service_factory):
        analytics = await service_factory().get_analytics(test_workspace.id)

        assert analytics["total_submissions"] == 0
        assert analytics["conversion_rate"] == 0
        assert analytics["top_sources"] == []

    @pytest.mark.asyncio
    async def test_invalid_time_range(self, test_workspace: Workspace, service_factory):
        with pytest.raises(ValidationError):
            await service_factory().get_analytics(test_workspace.id, time_range="2w")


class TestHelpers:
    def test_range_start(self):
        start = range_start("24h")

        assert utc_now() - start >= timedelta(hours=24)
        assert utc_now() - start < timedelta(hours=24, minutes=1)

    def test_journey_seconds(self):
        assert journey_seconds(JOURNEY) == 120
        assert journey_seconds([]) is None
        assert journey_seconds([{"event_type": "page_view"}]) is None
        assert journey_seconds([{"timestamp": "garbage"}, {"timestamp": "2026-10-01T10:00:00Z"}]) is None
