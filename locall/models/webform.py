"""
Webform tracking models.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Boolean, DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import Mapped, mapped_column

from locall.models.base import Base, utc_now


class WebformConfig(Base):
    """A tracked form embedded on a customer site."""

    __tablename__ = "webform_configs"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)

    workspace_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("workspaces.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    tracking_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    form_selector: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    domains: Mapped[list] = mapped_column(JSON, default=list)
    conversion_goals: Mapped[list] = mapped_column(JSON, default=list)
    notification_emails: Mapped[list] = mapped_column(JSON, default=list)
    spam_protection: Mapped[bool] = mapped_column(Boolean, default=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    def __repr__(self) -> str:
        return f"<WebformConfig(id={self.id}, name={self.name}, tracking_id={self.tracking_id})>"


class WebformSubmission(Base):
    """A captured form submission with attribution data."""

    __tablename__ = "webform_submissions"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)

    workspace_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("workspaces.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    form_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("webform_configs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    # Known dashboard user behind the submission, if any
    user_id: Mapped[Optional[UUID]] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    visitor_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)

    form_data: Mapped[dict] = mapped_column(JSON, default=dict)
    utm_data: Mapped[dict] = mapped_column(JSON, default=dict)
    user_journey: Mapped[list] = mapped_column(JSON, default=list)
    page_url: Mapped[Optional[str]] = mapped_column(String(2000), nullable=True)
    referrer: Mapped[Optional[str]] = mapped_column(String(2000), nullable=True)
    ip_address: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    spam_score: Mapped[int] = mapped_column(Integer, default=0)
    is_spam: Mapped[bool] = mapped_column(Boolean, default=False, index=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False, index=True
    )


class WebformConversion(Base):
    """Conversion goal reached by a visitor."""

    __tablename__ = "webform_conversions"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)

    workspace_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("workspaces.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    form_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("webform_configs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    submission_id: Mapped[Optional[UUID]] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("webform_submissions.id", ondelete="SET NULL"),
        nullable=True,
    )
    visitor_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    goal: Mapped[str] = mapped_column(String(100), nullable=False)
    value: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    conversion_data: Mapped[dict] = mapped_column(JSON, default=dict)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False, index=True
    )
