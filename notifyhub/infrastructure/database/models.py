# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""SQLAlchemy ORM models for preferences and notification instances.

Channel lists, metadata, recipient addresses and the status log are JSON
columns. ``template_type`` is stored as an empty string for type-wide
records so the unique constraint also covers them.
"""

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import JSON, Boolean, DateTime, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from notifyhub.utils.datetime import utc_now

# Stored template_type meaning "every template of the type".
ANY_TEMPLATE = ""


class Base(DeclarativeBase):
    """Declarative base for notifyhub tables."""

    pass


class NotificationPreferenceModel(Base):
    """Explicit per-user preference record."""

    __tablename__ = "notification_preferences"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    notification_type: Mapped[str] = mapped_column(String(32), nullable=False)
    template_type: Mapped[str] = mapped_column(String(64), nullable=False, default=ANY_TEMPLATE)
    is_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    delivery_channels: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    quiet_hours_start: Mapped[Optional[str]] = mapped_column(String(5), nullable=True)
    quiet_hours_end: Mapped[Optional[str]] = mapped_column(String(5), nullable=True)
    timezone: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    frequency: Mapped[str] = mapped_column(String(16), nullable=False, default="immediate")
    extra_data: Mapped[dict[str, Any]] = mapped_column("metadata", JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        UniqueConstraint(
            "user_id", "notification_type", "template_type", name="uq_notification_pref__key"
        ),
    )


class TenantDefaultPreferenceModel(Base):
    """Tenant-wide default preference for one notification type."""

    __tablename__ = "notification_tenant_defaults"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    notification_type: Mapped[str] = mapped_column(String(32), nullable=False)
    is_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    delivery_channels: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    quiet_hours_start: Mapped[Optional[str]] = mapped_column(String(5), nullable=True)
    quiet_hours_end: Mapped[Optional[str]] = mapped_column(String(5), nullable=True)
    timezone: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    frequency: Mapped[str] = mapped_column(String(16), nullable=False, default="immediate")
    extra_data: Mapped[dict[str, Any]] = mapped_column("metadata", JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        UniqueConstraint("tenant_id", "notification_type", name="uq_tenant_default__type"),
    )


class NotificationModel(Base):
    """A notification instance and its delivery history."""

    __tablename__ = "notifications"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    notification_type: Mapped[str] = mapped_column(String(32), nullable=False)
    priority: Mapped[str] = mapped_column(String(16), nullable=False, default="normal")
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    subject: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    recipient: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    template_type: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    template_ref: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    requested_channels: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    allowed_channels: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    channel: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    scheduled_for: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    scheduled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    delivered_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    read_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    last_attempt_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    failure_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    timezone: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    digest_bucket: Mapped[Optional[str]] = mapped_column(String(160), nullable=True)
    extra_data: Mapped[dict[str, Any]] = mapped_column("metadata", JSON, nullable=False, default=dict)
    status_log: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_notifications__user_created", "user_id", "created_at"),
        Index("ix_notifications__tenant_status_created", "tenant_id", "status", "created_at"),
        Index("ix_notifications__due", "status", "scheduled_for"),
    )
