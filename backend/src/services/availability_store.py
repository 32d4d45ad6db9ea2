"""
Availability store: persistence of specific-week records and templates.

AvailabilityStore is the collaborator contract used by AvailabilityService.
SqlAvailabilityStore implements it on the ProviderWeekAvailability and
ProviderAvailabilityTemplate tables. Records are returned raw
(StoredAvailability); parsing and validation belong to the service.
"""

import logging
from typing import Any, Dict, Optional, Protocol

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from models import ProviderAvailabilityTemplate, ProviderWeekAvailability
from shared_types.availability import AvailabilitySource, StoredAvailability

logger = logging.getLogger(__name__)


class AvailabilityStore(Protocol):
    async def get_week(self, provider_id: int, year: int, week: int) -> Optional[StoredAvailability]:
        ...

    async def upsert_week(
        self,
        provider_id: int,
        year: int,
        week: int,
        availability: Dict[str, Any],
        source: AvailabilitySource,
        notes: Optional[str] = None
    ) -> None:
        ...

    async def delete_week(self, provider_id: int, year: int, week: int) -> bool:
        ...

    async def get_template(self, provider_id: int) -> Optional[StoredAvailability]:
        ...

    async def upsert_template(self, provider_id: int, availability: Dict[str, Any]) -> None:
        ...


class SqlAvailabilityStore:
    """AvailabilityStore backed by SQLAlchemy. Each mutation commits."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_week(self, provider_id: int, year: int, week: int) -> Optional[StoredAvailability]:
        record = await self._find_week(provider_id, year, week)
        if record is None:
            return None
        return StoredAvailability(
            provider_id=record.provider_id,
            availability=record.availability,
            source=record.source,
            year=record.year,
            week=record.week,
            notes=record.notes,
        )

    async def upsert_week(
        self,
        provider_id: int,
        year: int,
        week: int,
        availability: Dict[str, Any],
        source: AvailabilitySource,
        notes: Optional[str] = None
    ) -> None:
        record = await self._find_week(provider_id, year, week)
        if record is None:
            record = ProviderWeekAvailability(
                provider_id=provider_id,
                year=year,
                week=week,
                availability=availability,
                source=source.value,
                notes=notes,
            )
            self.db.add(record)
        else:
            record.availability = availability
            record.source = source.value
            record.notes = notes
        await self.db.commit()

    async def delete_week(self, provider_id: int, year: int, week: int) -> bool:
        result = await self.db.execute(
            delete(ProviderWeekAvailability).where(
                ProviderWeekAvailability.provider_id == provider_id,
                ProviderWeekAvailability.year == year,
                ProviderWeekAvailability.week == week,
            )
        )
        await self.db.commit()
        return (result.rowcount or 0) > 0  # type: ignore[attr-defined]

    async def get_template(self, provider_id: int) -> Optional[StoredAvailability]:
        record = await self._find_template(provider_id)
        if record is None:
            return None
        return StoredAvailability(
            provider_id=record.provider_id,
            availability=record.availability,
            source=AvailabilitySource.TEMPLATE.value,
        )

    async def upsert_template(self, provider_id: int, availability: Dict[str, Any]) -> None:
        record = await self._find_template(provider_id)
        if record is None:
            self.db.add(ProviderAvailabilityTemplate(provider_id=provider_id, availability=availability))
        else:
            record.availability = availability
        await self.db.commit()

    async def _find_week(self, provider_id: int, year: int, week: int) -> Optional[ProviderWeekAvailability]:
        result = await self.db.execute(
            select(ProviderWeekAvailability).where(
                ProviderWeekAvailability.provider_id == provider_id,
                ProviderWeekAvailability.year == year,
                ProviderWeekAvailability.week == week,
            )
        )
        return result.scalar_one_or_none()

    async def _find_template(self, provider_id: int) -> Optional[ProviderAvailabilityTemplate]:
        result = await self.db.execute(
            select(ProviderAvailabilityTemplate).where(
                ProviderAvailabilityTemplate.provider_id == provider_id
            )
        )
        return result.scalar_one_or_none()
