"""
Resource model representing machines and providers.

Machines (e.g. a treatment bed or a laser) are either exclusive, allowing one
appointment at a time, or overlappable, allowing concurrent appointments (e.g.
a waiting chair). Providers are the practitioners whose weekly availability is
resolved by the availability service.
"""

from datetime import datetime
from sqlalchemy import String, TIMESTAMP, Boolean, Index
from sqlalchemy.orm import Mapped, mapped_column

from core.database import Base

RESOURCE_KIND_MACHINE = "machine"
RESOURCE_KIND_PROVIDER = "provider"


class Resource(Base):
    """
    Resource entity: a machine or a provider.

    Inactive resources are kept for history but excluded from filter lists and
    default availability checks.
    """

    __tablename__ = "resources"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    """Unique identifier for the resource."""

    kind: Mapped[str] = mapped_column(String(20))
    """Resource kind: 'machine' or 'provider'."""

    name: Mapped[str] = mapped_column(String(255))
    """Display name of the resource."""

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    """False once the resource is retired."""

    is_overlappable: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    """True if the machine may be used by several appointments at once. Always False for providers."""

    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    """Timestamp when the resource was created."""

    updated_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    """Timestamp when the resource was last updated."""

    __table_args__ = (
        Index('idx_resources_kind_active', 'kind', 'is_active'),
    )

    def __repr__(self) -> str:
        return f"<Resource(id={self.id}, kind={self.kind}, name={self.name!r})>"
