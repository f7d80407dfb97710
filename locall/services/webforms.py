"""
Webform tracking: form configuration, public submission and conversion
intake, and attribution analytics.
"""

import logging
import secrets
from datetime import datetime, timedelta
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from locall.config.settings import get_settings
from locall.exceptions import NotFoundError, ValidationError
from locall.models import WebformConfig, WebformConversion, WebformSubmission
from locall.models.base import utc_now
from locall.services.audit import RequestContext
from locall.services.notifications import NotificationService

logger = logging.getLogger(__name__)

TIME_RANGES = {
    "24h": timedelta(hours=24),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
    "90d": timedelta(days=90),
    "1y": timedelta(days=365),
}
CONFIG_FIELDS = (
    "name",
    "form_selector",
    "domains",
    "conversion_goals",
    "notification_emails",
    "spam_protection",
    "is_active",
)
TOP_N = 10


def generate_tracking_id() -> str:
    return f"track_{secrets.token_hex(8)}"


def range_start(time_range: str) -> datetime:
    if time_range not in TIME_RANGES:
        raise ValidationError(f"Invalid time range. Must be one of: {', '.join(TIME_RANGES)}")
    return utc_now() - TIME_RANGES[time_range]


def _step_time(step: Any) -> Optional[datetime]:
    if not isinstance(step, dict) or not isinstance(step.get("timestamp"), str):
        return None
    try:
        return datetime.fromisoformat(step["timestamp"].replace("Z", "+00:00"))
    except ValueError:
        return None


def journey_seconds(journey: Optional[list]) -> Optional[float]:
    """Seconds between the first and last journey step, or None without timestamps."""
    if not journey:
        return None
    first, last = _step_time(journey[0]), _step_time(journey[-1])
    if first is None or last is None:
        return None
    if (first.tzinfo is None) != (last.tzinfo is None):
        first, last = first.replace(tzinfo=None), last.replace(tzinfo=None)
    return (last - first).total_seconds()


def _contact_info(form_data: dict) -> Optional[str]:
    for key in ("email", "name", "phone"):
        if form_data.get(key):
            return str(form_data[key])
    return None


class WebformService:
    def __init__(self, db: AsyncSession, notifications: Optional[NotificationService] = None):
        self.db = db
        self.settings = get_settings()
        self.notifications = notifications or NotificationService(db)

    # Configuration

    async def create_webform_config(self, workspace_id: UUID, name: str, **fields) -> WebformConfig:
        config = WebformConfig(
            workspace_id=workspace_id,
            name=name,
            tracking_id=generate_tracking_id(),
            **{k: v for k, v in fields.items() if k in CONFIG_FIELDS and k != "name"},
        )
        self.db.add(config)
        await self.db.commit()
        await self.db.refresh(config)
        logger.info(f"Webform config created: {config.name} ({config.tracking_id})")
        return config

    async def get_webform_config(self, config_id: UUID, workspace_id: UUID) -> WebformConfig:
        config = await self.db.get(WebformConfig, config_id)
        if config is None or config.workspace_id != workspace_id:
            raise NotFoundError(f"Webform {config_id} not found")
        return config

    async def update_webform_config(self, config_id: UUID, workspace_id: UUID, **fields) -> WebformConfig:
        config = await self.get_webform_config(config_id, workspace_id)
        for key, value in fields.items():
            if key in CONFIG_FIELDS and value is not None:
                setattr(config, key, value)
        await self.db.commit()
        await self.db.refresh(config)
        return config

    async def get_webform_configs(self, workspace_id: UUID) -> list[WebformConfig]:
        result = await self.db.execute(
            select(WebformConfig)
            .where(WebformConfig.workspace_id == workspace_id)
            .order_by(WebformConfig.created_at.desc())
        )
        return list(result.scalars().all())

    # Public intake

    async def process_submission(
        self,
        tracking_id: str,
        visitor_id: str,
        form_data: dict,
        *,
        utm_data: Optional[dict] = None,
        user_journey: Optional[list] = None,
        spam_score: float = 0,
        page_url: Optional[str] = None,
        referrer: Optional[str] = None,
        request_context: Optional[RequestContext] = None,
    ) -> WebformSubmission:
        """
        Store a submission from the tracking script.

        The submission is spam when the form has spam protection on and the
        client-computed score exceeds the configured threshold. Non-spam
        submissions raise a form_submission notification.
        """
        config = (
            await self.db.execute(
                select(WebformConfig).where(
                    WebformConfig.tracking_id == tracking_id,
                    WebformConfig.is_active.is_(True),
                )
            )
        ).scalar_one_or_none()
        if config is None:
            raise NotFoundError("Invalid tracking ID or inactive form")

        ctx = request_context or RequestContext()
        is_spam = bool(config.spam_protection and spam_score > self.settings.spam_score_threshold)
        submission = WebformSubmission(
            workspace_id=config.workspace_id,
            form_id=config.id,
            visitor_id=visitor_id,
            form_data=form_data,
            utm_data=utm_data or {},
            user_journey=user_journey or [],
            page_url=page_url,
            referrer=referrer,
            ip_address=ctx.ip_address,
            user_agent=ctx.user_agent,
            spam_score=int(spam_score),
            is_spam=is_spam,
        )
        self.db.add(submission)
        await self.db.commit()
        await self.db.refresh(submission)

        if is_spam:
            logger.info(f"Webform submission {submission.id} flagged as spam (score {spam_score})")
        else:
            try:
                await self.notifications.send_form_notification(
                    config.workspace_id,
                    config.id,
                    config.name,
                    submission.id,
                    contact_info=_contact_info(form_data),
                )
            except Exception as e:
                logger.error(f"Failed to send form notification for submission {submission.id}: {e}")
        return submission

    async def process_conversion(
        self,
        tracking_id: str,
        visitor_id: str,
        goal: str,
        value: float = 0,
        conversion_data: Optional[dict] = None,
        submission_id: Optional[UUID] = None,
    ) -> Optional[WebformConversion]:
        """Record a conversion; unknown tracking ids are ignored."""
        config = (
            await self.db.execute(select(WebformConfig).where(WebformConfig.tracking_id == tracking_id))
        ).scalar_one_or_none()
        if config is None:
            logger.info(f"Ignoring conversion for unknown tracking id {tracking_id}")
            return None

        conversion = WebformConversion(
            workspace_id=config.workspace_id,
            form_id=config.id,
            submission_id=submission_id,
            visitor_id=visitor_id,
            goal=goal,
            value=value,
            conversion_data=conversion_data or {},
        )
        self.db.add(conversion)
        await self.db.commit()
        await self.db.refresh(conversion)
        return conversion

    # Reporting

    async def get_submissions(
        self,
        workspace_id: UUID,
        form_id: Optional[UUID] = None,
        include_spam: bool = False,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[WebformSubmission], int]:
        conditions = [WebformSubmission.workspace_id == workspace_id]
        if form_id:
            conditions.append(WebformSubmission.form_id == form_id)
        if not include_spam:
            conditions.append(WebformSubmission.is_spam.is_(False))

        total = (await self.db.execute(select(func.count(WebformSubmission.id)).where(*conditions))).scalar_one()
        result = await self.db.execute(
            select(WebformSubmission)
            .where(*conditions)
            .order_by(WebformSubmission.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all()), total

    async def get_analytics(
        self, workspace_id: UUID, form_id: Optional[UUID] = None, time_range: str = "30d"
    ) -> dict:
        start = range_start(time_range)
        stmt = select(WebformSubmission).where(
            WebformSubmission.workspace_id == workspace_id,
            WebformSubmission.created_at >= start,
        )
        if form_id:
            stmt = stmt.where(WebformSubmission.form_id == form_id)
        submissions = list((await self.db.execute(stmt)).scalars().all())

        total = len(submissions)
        valid = sum(1 for s in submissions if not s.is_spam)

        sources: dict[str, dict[str, int]] = {}
        pages: dict[str, dict[str, float]] = {}
        for submission in submissions:
            source = (submission.utm_data or {}).get("utm_source") or "direct"
            stats = sources.setdefault(source, {"count": 0, "valid": 0})
            stats["count"] += 1
            if not submission.is_spam:
                stats["valid"] += 1

            page = pages.setdefault(submission.page_url or "unknown", {"submissions": 0, "time": 0.0, "timed": 0})
            page["submissions"] += 1
            seconds = journey_seconds(submission.user_journey)
            if seconds is not None:
                page["time"] += seconds
                page["timed"] += 1

        top_sources = sorted(
            (
                {
                    "source": source,
                    "count": stats["count"],
                    "conversion_rate": stats["valid"] / stats["count"] * 100 if stats["count"] else 0,
                }
                for source, stats in sources.items()
            ),
            key=lambda item: item["count"],
            reverse=True,
        )[:TOP_N]
        top_pages = sorted(
            (
                {
                    "page": page,
                    "submissions": int(stats["submissions"]),
                    "avg_time": round(stats["time"] / stats["timed"]) if stats["timed"] else 0,
                }
                for page, stats in pages.items()
            ),
            key=lambda item: item["submissions"],
            reverse=True,
        )[:TOP_N]

        journeys = [s.user_journey for s in submissions if s.user_journey and not s.is_spam]
        if journeys:
            avg_pages = sum(
                sum(1 for step in journey if isinstance(step, dict) and step.get("event_type") == "page_view")
                for journey in journeys
            ) / len(journeys)
            avg_time = sum(journey_seconds(journey) or 0 for journey in journeys) / len(journeys)
        else:
            avg_pages = avg_time = 0

        return {
            "time_range": time_range,
            "total_submissions": total,
            "valid_submissions": valid,
            "spam_submissions": total - valid,
            "conversion_rate": valid / total * 100 if total else 0,
            "top_sources": top_sources,
            "top_pages": top_pages,
            "user_journey_insights": {
                "avg_pages_before_conversion": round(avg_pages, 1),
                "avg_time_to_conversion": round(avg_time),
                "common_paths": [],
            },
        }
