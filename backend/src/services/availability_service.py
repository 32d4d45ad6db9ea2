"""
Availability service for provider weekly schedules.

Resolves a provider's schedule for an ISO week from a three-level hierarchy:
a specific-week record (saved, copied or template-applied), then the
provider's saved template, then the default schedule injected at
construction. Resolution never fails on "not found"; a stored record that
cannot be parsed is logged and treated as absent, falling back one level.

Effective availability for a date is the resolved day schedule intersected
with clinic operating hours.
"""

import json
import logging
from datetime import date
from typing import Any, Dict, List, Optional, Protocol, Union

from core.config import CLINIC_OPERATING_HOURS
from core.constants import DEFAULT_CLINIC_OPERATING_HOURS, DEFAULT_WEEKLY_AVAILABILITY
from core.exceptions import CorruptAvailabilityRecord, InvalidTimeRange
from services.availability_store import AvailabilityStore
from shared_types.availability import (
    AvailabilitySource,
    EffectiveAvailability,
    ResolvedAvailability,
    StoredAvailability,
    TimeRange,
    WeeklyAvailability,
    merge_ranges,
)
from utils.calendar_math import (
    DateLike,
    current_week,
    iso_week_of,
    previous_week,
    to_date,
    validate_iso_week,
)

logger = logging.getLogger(__name__)

WeeklyInput = Union[WeeklyAvailability, Dict[str, Any]]


class ClinicHours(Protocol):
    """Clinic-wide operating hours for a date (external collaborator)."""

    async def hours_for(self, day: date) -> List[TimeRange]:
        ...


class ConfiguredClinicHours:
    """
    Clinic hours from a weekly schedule.

    Reads CLINIC_OPERATING_HOURS (JSON, WeeklyAvailability shape) when set,
    otherwise the built-in Monday-Saturday 08:00-20:00 schedule.
    """

    def __init__(self, schedule: Optional[WeeklyAvailability] = None):
        self.schedule = schedule if schedule is not None else self.load_configured()

    @staticmethod
    def load_configured(raw: Optional[str] = None) -> WeeklyAvailability:
        """
        Parse the configured operating hours.

        Args:
            raw: JSON string; defaults to the CLINIC_OPERATING_HOURS setting

        Raises:
            InvalidTimeRange: If the configured schedule is malformed
        """
        raw = CLINIC_OPERATING_HOURS if raw is None else raw
        if not raw.strip():
            return WeeklyAvailability.from_dict(DEFAULT_CLINIC_OPERATING_HOURS).validate()
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise InvalidTimeRange(f"CLINIC_OPERATING_HOURS is not valid JSON: {e}") from e
        return WeeklyAvailability.from_dict(data).validate()

    async def hours_for(self, day: date) -> List[TimeRange]:
        return self.schedule.for_date(day).open_slots


class AvailabilityService:
    """
    Service class for provider availability resolution and editing.

    The default schedule is a constant passed in at construction so that
    tests and other clinics can use alternate defaults.
    """

    def __init__(
        self,
        store: AvailabilityStore,
        clinic_hours: ClinicHours,
        default_availability: Optional[WeeklyAvailability] = None
    ):
        self.store = store
        self.clinic_hours = clinic_hours
        self.default_availability = (
            default_availability if default_availability is not None
            else WeeklyAvailability.from_dict(DEFAULT_WEEKLY_AVAILABILITY).validate()
        )

    async def resolve(self, provider_id: int, year: int, week: int) -> ResolvedAvailability:
        """
        Resolve a provider's schedule for an ISO week.

        Args:
            provider_id: Provider resource ID
            year: ISO year
            week: ISO week number

        Returns:
            ResolvedAvailability with the schedule, its source, and whether a
            specific-week record exists

        Raises:
            InvalidDate: If (year, week) is not a valid ISO week
        """
        validate_iso_week(year, week)

        stored = await self.store.get_week(provider_id, year, week)
        if stored is not None:
            try:
                availability = self._parse(stored, year, week)
                return ResolvedAvailability(
                    provider_id=provider_id,
                    year=year,
                    week=week,
                    availability=availability,
                    source=self._stored_source(stored, year, week),
                    has_specific_entry=True,
                    notes=stored.notes,
                )
            except CorruptAvailabilityRecord as e:
                logger.warning(f"{e.message}; falling back to template")

        template = await self._load_template(provider_id)
        if template is not None:
            return ResolvedAvailability(
                provider_id=provider_id,
                year=year,
                week=week,
                availability=template,
                source=AvailabilitySource.TEMPLATE,
                has_specific_entry=False,
            )

        return ResolvedAvailability(
            provider_id=provider_id,
            year=year,
            week=week,
            availability=self.default_availability,
            source=AvailabilitySource.DEFAULT,
            has_specific_entry=False,
        )

    async def save(
        self,
        provider_id: int,
        year: int,
        week: int,
        availability: WeeklyInput,
        notes: Optional[str] = None
    ) -> ResolvedAvailability:
        """
        Save a specific-week schedule (source = manual).

        Every TimeRange is validated before anything is persisted.

        Raises:
            InvalidDate: If (year, week) is not a valid ISO week
            InvalidTimeRange: If any range is malformed or has start >= end
        """
        validate_iso_week(year, week)
        weekly = self._coerce(availability).validate()

        await self.store.upsert_week(
            provider_id, year, week, weekly.to_dict(), AvailabilitySource.MANUAL, notes
        )
        logger.info(f"Saved availability for provider {provider_id} week {year}-W{week:02d}")
        return ResolvedAvailability(
            provider_id=provider_id,
            year=year,
            week=week,
            availability=weekly,
            source=AvailabilitySource.MANUAL,
            has_specific_entry=True,
            notes=notes,
        )

    async def copy_from(
        self,
        provider_id: int,
        target_year: int,
        target_week: int,
        source_year: int,
        source_week: int
    ) -> ResolvedAvailability:
        """
        Copy the resolved source week onto the target week (source = copied).

        The source week is resolved through the full hierarchy, so copying a
        week with no record copies the template or default schedule.
        """
        validate_iso_week(target_year, target_week)
        resolved_source = await self.resolve(provider_id, source_year, source_week)

        await self.store.upsert_week(
            provider_id,
            target_year,
            target_week,
            resolved_source.availability.to_dict(),
            AvailabilitySource.COPIED,
            resolved_source.notes,
        )
        logger.info(
            f"Copied availability for provider {provider_id} from {source_year}-W{source_week:02d} "
            f"({resolved_source.source.value}) to {target_year}-W{target_week:02d}"
        )
        return ResolvedAvailability(
            provider_id=provider_id,
            year=target_year,
            week=target_week,
            availability=resolved_source.availability,
            source=AvailabilitySource.COPIED,
            has_specific_entry=True,
            notes=resolved_source.notes,
        )

    async def copy_from_previous(self, provider_id: int, year: int, week: int) -> ResolvedAvailability:
        """Copy the preceding ISO week, rolling back across the year boundary."""
        source = previous_week(year, week)
        return await self.copy_from(provider_id, year, week, source.year, source.week)

    async def get_template(self, provider_id: int) -> ResolvedAvailability:
        """
        Get the provider's template, or the default schedule if none is saved.

        year/week of the result are those of the current week.
        """
        current = current_week()
        template = await self._load_template(provider_id)
        return ResolvedAvailability(
            provider_id=provider_id,
            year=current.year,
            week=current.week,
            availability=template if template is not None else self.default_availability,
            source=AvailabilitySource.TEMPLATE if template is not None else AvailabilitySource.DEFAULT,
            has_specific_entry=False,
        )

    async def save_as_template(self, provider_id: int, availability: WeeklyInput) -> WeeklyAvailability:
        """
        Save the provider's template.

        Week records that were already materialized are not touched.

        Raises:
            InvalidTimeRange: If any range is malformed or has start >= end
        """
        weekly = self._coerce(availability).validate()
        await self.store.upsert_template(provider_id, weekly.to_dict())
        logger.info(f"Saved availability template for provider {provider_id}")
        return weekly

    async def apply_template(self, provider_id: int, year: int, week: int) -> ResolvedAvailability:
        """
        Materialize the current template as the week's record (source = template).

        With no saved template the default schedule is materialized instead,
        still tagged as template. Applying twice yields the same schedule.
        """
        validate_iso_week(year, week)
        template = await self._load_template(provider_id)
        weekly = template if template is not None else self.default_availability

        await self.store.upsert_week(
            provider_id, year, week, weekly.to_dict(), AvailabilitySource.TEMPLATE, None
        )
        logger.info(f"Applied template for provider {provider_id} to week {year}-W{week:02d}")
        return ResolvedAvailability(
            provider_id=provider_id,
            year=year,
            week=week,
            availability=weekly,
            source=AvailabilitySource.TEMPLATE,
            has_specific_entry=True,
        )

    async def delete_week(self, provider_id: int, year: int, week: int) -> ResolvedAvailability:
        """
        Delete the week's specific record.

        Returns:
            The week as it now resolves (template or default)
        """
        validate_iso_week(year, week)
        deleted = await self.store.delete_week(provider_id, year, week)
        if deleted:
            logger.info(f"Deleted availability for provider {provider_id} week {year}-W{week:02d}")
        return await self.resolve(provider_id, year, week)

    async def effective_availability(self, provider_id: int, day: DateLike) -> EffectiveAvailability:
        """
        Intersect the provider's resolved day schedule with clinic hours.

        Ranges that share no overlap with any clinic range are dropped, and
        overlapping or touching results are merged so a window spanning two
        adjacent ranges counts as covered.
        """
        target = to_date(day)
        iso = iso_week_of(target)
        resolved = await self.resolve(provider_id, iso.year, iso.week)
        clinic_ranges = await self.clinic_hours.hours_for(target)

        open_ranges: List[TimeRange] = []
        for provider_range in resolved.availability.for_date(target).open_slots:
            for clinic_range in clinic_ranges:
                overlap = provider_range.intersect(clinic_range)
                if overlap is not None:
                    open_ranges.append(overlap)

        return EffectiveAvailability(
            provider_id=provider_id,
            date=target,
            source=resolved.source,
            slots=tuple(merge_ranges(open_ranges)),
        )

    async def is_available(self, provider_id: int, day: DateLike, start_time: str, end_time: str) -> bool:
        """
        Check a window lies entirely within the provider's effective availability.

        Raises:
            InvalidTimeRange: If the window is malformed
        """
        window = TimeRange(start_time, end_time).validate()
        effective = await self.effective_availability(provider_id, day)
        return effective.covers(window)

    async def _load_template(self, provider_id: int) -> Optional[WeeklyAvailability]:
        stored = await self.store.get_template(provider_id)
        if stored is None:
            return None
        try:
            return self._parse(stored, None, None)
        except CorruptAvailabilityRecord as e:
            logger.warning(f"{e.message}; falling back to default schedule")
            return None

    @staticmethod
    def _parse(stored: StoredAvailability, year: Optional[int], week: Optional[int]) -> WeeklyAvailability:
        raw = stored.availability
        try:
            if isinstance(raw, str):
                raw = json.loads(raw)
            return WeeklyAvailability.from_dict(raw).validate()
        except (InvalidTimeRange, ValueError, TypeError) as e:
            reason = e.message if isinstance(e, InvalidTimeRange) else str(e)
            raise CorruptAvailabilityRecord(stored.provider_id, year, week, reason) from e

    @staticmethod
    def _stored_source(stored: StoredAvailability, year: int, week: int) -> AvailabilitySource:
        try:
            source = AvailabilitySource(stored.source)
        except ValueError as e:
            raise CorruptAvailabilityRecord(
                stored.provider_id, year, week, f"unknown source {stored.source!r}"
            ) from e
        if source == AvailabilitySource.DEFAULT:
            raise CorruptAvailabilityRecord(stored.provider_id, year, week, "week record tagged as default")
        return source

    @staticmethod
    def _coerce(availability: WeeklyInput) -> WeeklyAvailability:
        if isinstance(availability, WeeklyAvailability):
            return availability
        return WeeklyAvailability.from_dict(availability)
