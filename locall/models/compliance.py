"""
GDPR compliance models: consent, export/deletion requests, retention policies
and per-workspace compliance settings.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import Mapped, mapped_column

from locall.models.base import Base, utc_now

CONSENT_TYPES = ("call_recording", "data_processing", "marketing", "analytics")
LEGAL_BASES = (
    "consent",
    "contract",
    "legal_obligation",
    "vital_interests",
    "public_task",
    "legitimate_interests",
)
REQUEST_STATUSES = ("pending", "processing", "completed", "failed")


class ConsentRecord(Base):
    """
    GDPR consent given (or refused) by a user for one processing purpose.

    Withdrawal never deletes the row: ``granted`` flips to false and
    ``withdrawn_at`` is stamped.
    """

    __tablename__ = "consent_records"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)

    user_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    workspace_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("workspaces.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    consent_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    granted: Mapped[bool] = mapped_column(Boolean, nullable=False)
    legal_basis: Mapped[str] = mapped_column(String(50), default="consent")
    purpose: Mapped[str] = mapped_column(Text, nullable=False)
    data_categories: Mapped[list] = mapped_column(JSON, default=list)
    retention_period: Mapped[int] = mapped_column(Integer, default=365)  # days

    ip_address: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    granted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, nullable=False)
    withdrawn_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<ConsentRecord(user_id={self.user_id}, type={self.consent_type}, granted={self.granted})>"


class DataExportRequest(Base):
    """Right-of-access export request and its generated payload."""

    __tablename__ = "data_export_requests"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)

    workspace_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("workspaces.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    # Data subject; null for a workspace-wide export
    user_id: Mapped[Optional[UUID]] = mapped_column(PG_UUID(as_uuid=True), nullable=True, index=True)
    requested_by: Mapped[Optional[UUID]] = mapped_column(PG_UUID(as_uuid=True), nullable=True)

    data_types: Mapped[list] = mapped_column(JSON, default=list)
    status: Mapped[str] = mapped_column(String(20), default="pending", index=True)
    export_data: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    file_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    requested_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, nullable=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<DataExportRequest(id={self.id}, status={self.status})>"


class DataDeletionRequest(Base):
    """Right-to-erasure request. ``user_id`` outlives the user row it names."""

    __tablename__ = "data_deletion_requests"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)

    workspace_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("workspaces.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), nullable=False, index=True)
    requested_by: Mapped[Optional[UUID]] = mapped_column(PG_UUID(as_uuid=True), nullable=True)

    deletion_type: Mapped[str] = mapped_column(String(20), nullable=False)  # partial, complete
    data_types: Mapped[list] = mapped_column(JSON, default=list)
    status: Mapped[str] = mapped_column(String(20), default="pending", index=True)
    deleted_counts: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    requested_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, nullable=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<DataDeletionRequest(id={self.id}, type={self.deletion_type}, status={self.status})>"


class DataRetentionPolicy(Base):
    """Workspace retention policy for one data type."""

    __tablename__ = "data_retention_policies"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)

    workspace_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("workspaces.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    data_type: Mapped[str] = mapped_column(String(50), nullable=False)
    retention_days: Mapped[int] = mapped_column(Integer, nullable=False)
    auto_delete: Mapped[bool] = mapped_column(Boolean, default=False)
    legal_hold: Mapped[bool] = mapped_column(Boolean, default=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    __table_args__ = (UniqueConstraint("workspace_id", "data_type", name="uq_workspace_retention_type"),)

    def __repr__(self) -> str:
        return f"<DataRetentionPolicy({self.data_type}, {self.retention_days}d, hold={self.legal_hold})>"


class ComplianceSettings(Base):
    """Per-workspace GDPR/CCPA switches."""

    __tablename__ = "compliance_settings"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)

    workspace_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("workspaces.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )

    gdpr_enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    ccpa_enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    call_recording_consent_required: Mapped[bool] = mapped_column(Boolean, default=True)
    data_processing_consent_required: Mapped[bool] = mapped_column(Boolean, default=True)
    cookie_consent_enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    default_retention_days: Mapped[int] = mapped_column(Integer, default=365)
    privacy_policy_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    dpo_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )
