"""
Provider availability models for the week/template/default hierarchy.

A provider's schedule for an ISO week is resolved from, in order: a specific
week record (ProviderWeekAvailability), the provider's saved template
(ProviderAvailabilityTemplate), or the hard-coded default schedule. Both
tables store the weekly schedule as JSON in the
{weekday: {"enabled": bool, "slots": [{"start", "end"}]}} shape.
"""

from datetime import datetime
from typing import Any, Dict, Optional
from sqlalchemy import JSON, String, Text, TIMESTAMP, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from core.database import Base


class ProviderWeekAvailability(Base):
    """
    Specific-week availability for one provider.

    Created on the first explicit save, copy or template application for the
    week and deleted to revert the week to the template/default.
    """

    __tablename__ = "provider_week_availability"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    """Unique identifier for the week record."""

    provider_id: Mapped[int] = mapped_column(ForeignKey("resources.id", ondelete="CASCADE"))
    """Reference to the provider resource."""

    year: Mapped[int] = mapped_column()
    """ISO year of the week."""

    week: Mapped[int] = mapped_column()
    """ISO week number (1-53)."""

    availability: Mapped[Dict[str, Any]] = mapped_column(JSON)
    """Weekly schedule JSON."""

    source: Mapped[str] = mapped_column(String(20))
    """How the record was produced: 'manual', 'copied' or 'template'."""

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    """Optional notes shown next to the week."""

    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    """Timestamp when the record was created."""

    updated_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    """Timestamp when the record was last updated."""

    __table_args__ = (
        UniqueConstraint('provider_id', 'year', 'week', name='uq_provider_week_availability'),
        Index('idx_provider_week_availability_provider', 'provider_id'),
    )

    def __repr__(self) -> str:
        return f"<ProviderWeekAvailability(provider_id={self.provider_id}, {self.year}-W{self.week:02d}, source={self.source})>"


class ProviderAvailabilityTemplate(Base):
    """
    Saved weekly template for one provider.

    Persists until overwritten. Saving a template never changes week records
    that were already materialized.
    """

    __tablename__ = "provider_availability_templates"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    """Unique identifier for the template."""

    provider_id: Mapped[int] = mapped_column(ForeignKey("resources.id", ondelete="CASCADE"), unique=True)
    """Reference to the provider resource (one template per provider)."""

    availability: Mapped[Dict[str, Any]] = mapped_column(JSON)
    """Weekly schedule JSON."""

    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    """Timestamp when the template was created."""

    updated_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    """Timestamp when the template was last overwritten."""

    def __repr__(self) -> str:
        return f"<ProviderAvailabilityTemplate(provider_id={self.provider_id})>"
