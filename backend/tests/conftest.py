"""
Test configuration and shared fixtures for the Clinic Planning test suite.

Services are tested against in-memory fakes of their collaborators (stores,
slot-computation service, clinic hours). SQL stores are tested against an
in-memory SQLite database (aiosqlite), created fresh for each test.
"""

import asyncio
import os
from dataclasses import replace
from datetime import date
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple, Union

# Configure the database before any application module is imported
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import models  # noqa: F401  (register tables on Base.metadata)
from core.constants import INACTIVE_APPOINTMENT_STATUSES, STATUS_CANCELLED
from core.database import Base
from core.exceptions import AppointmentNotFound, SlotNoLongerAvailable
from shared_types.availability import AvailabilitySource, StoredAvailability, TimeRange, WeeklyAvailability
from shared_types.scheduling import (
    AppointmentChange,
    AppointmentRecord,
    NewAppointment,
    OverlapCheck,
    ResourceInfo,
    ResourceListing,
    SlotCandidate,
    Treatment,
)
from utils.datetime_utils import parse_hhmm


# ===== Database =====

@pytest_asyncio.fixture
async def db_engine():
    """Fresh in-memory SQLite engine with every table created."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as connection:
        await connection.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(db_engine):
    """Database session bound to the test engine."""
    session_factory = async_sessionmaker(bind=db_engine, autoflush=False, expire_on_commit=False)
    async with session_factory() as session:
        yield session


# ===== Fakes =====

class FakeAvailabilityStore:
    """In-memory AvailabilityStore. Records can be seeded raw to simulate corruption."""

    def __init__(self):
        self.weeks: Dict[Tuple[int, int, int], StoredAvailability] = {}
        self.templates: Dict[int, StoredAvailability] = {}

    async def get_week(self, provider_id: int, year: int, week: int) -> Optional[StoredAvailability]:
        return self.weeks.get((provider_id, year, week))

    async def upsert_week(
        self,
        provider_id: int,
        year: int,
        week: int,
        availability: Dict[str, Any],
        source: AvailabilitySource,
        notes: Optional[str] = None
    ) -> None:
        self.weeks[(provider_id, year, week)] = StoredAvailability(
            provider_id=provider_id,
            availability=availability,
            source=source.value,
            year=year,
            week=week,
            notes=notes,
        )

    async def delete_week(self, provider_id: int, year: int, week: int) -> bool:
        return self.weeks.pop((provider_id, year, week), None) is not None

    async def get_template(self, provider_id: int) -> Optional[StoredAvailability]:
        return self.templates.get(provider_id)

    async def upsert_template(self, provider_id: int, availability: Dict[str, Any]) -> None:
        self.templates[provider_id] = StoredAvailability(
            provider_id=provider_id,
            availability=availability,
            source=AvailabilitySource.TEMPLATE.value,
        )


class FakeClinicHours:
    """Clinic hours: the same ranges every open weekday (Monday-Saturday by default)."""

    def __init__(self, ranges: Sequence[Tuple[str, str]] = (("08:00", "20:00"),), closed_weekdays=(6,)):
        self.ranges = [TimeRange(start, end) for start, end in ranges]
        self.closed_weekdays = set(closed_weekdays)

    async def hours_for(self, day: date) -> List[TimeRange]:
        if day.weekday() in self.closed_weekdays:
            return []
        return list(self.ranges)


class FakeAppointmentStore:
    """
    In-memory AppointmentStore.

    Exclusive machines conflict on overlap unless listed in
    overlappable_machines. Failures can be injected per create call.
    """

    def __init__(self):
        self.appointments: Dict[int, AppointmentRecord] = {}
        self.patients: Dict[int, str] = {}
        self.overlappable_machines: Set[int] = set()
        self.unavailable_providers: Set[int] = set()
        self.fail_on_create: Dict[int, Exception] = {}
        self.fail_on_delete = False
        self.create_calls = 0
        self.calls: List[str] = []
        self._next_id = 1

    def add(self, **fields: Any) -> AppointmentRecord:
        """Seed an existing appointment."""
        fields.setdefault("id", self._next_id)
        fields.setdefault("treatment_id", 1)
        fields.setdefault("status", "scheduled")
        record = AppointmentRecord(**fields)
        self.appointments[record.id] = record
        self._next_id = max(self._next_id, record.id + 1)
        return record

    async def create_appointment(self, data: NewAppointment) -> AppointmentRecord:
        self.calls.append("create_appointment")
        self.create_calls += 1
        if self.create_calls in self.fail_on_create:
            raise self.fail_on_create[self.create_calls]
        if data.machine_id is not None and data.machine_id not in self.overlappable_machines:
            for other in self._active_on(data.date):
                if other.machine_id == data.machine_id and _overlaps(other, data.start_time, data.end_time):
                    raise SlotNoLongerAvailable(machine_id=data.machine_id)
        record = AppointmentRecord(
            id=self._next_id,
            patient_id=data.patient_id,
            date=data.date,
            start_time=data.start_time,
            end_time=data.end_time,
            treatment_id=data.treatment_id,
            status=data.status,
            machine_id=data.machine_id,
            provider_id=data.provider_id,
            linked_appointment_id=data.linked_appointment_id,
            link_sequence=data.link_sequence,
            treatment_title=data.treatment_title,
            duration=data.duration,
            priority=data.priority,
            notes=data.notes,
        )
        self._next_id += 1
        self.appointments[record.id] = record
        return record

    async def get_appointment(self, appointment_id: int) -> Optional[AppointmentRecord]:
        return self.appointments.get(appointment_id)

    async def set_link(self, appointment_id: int, linked_appointment_id: int, link_sequence: int) -> AppointmentRecord:
        self.calls.append("set_link")
        record = replace(
            self._require(appointment_id),
            linked_appointment_id=linked_appointment_id,
            link_sequence=link_sequence,
        )
        self.appointments[appointment_id] = record
        return record

    async def delete_appointment(self, appointment_id: int) -> None:
        self.calls.append("delete_appointment")
        if self.fail_on_delete:
            raise RuntimeError("delete failed")
        self._require(appointment_id)
        del self.appointments[appointment_id]

    async def get_appointment_group(self, group_id: int) -> List[AppointmentRecord]:
        members = [
            record for record in self.appointments.values()
            if record.linked_appointment_id == group_id or record.id == group_id
        ]
        return sorted(members, key=lambda record: (record.link_sequence or 0, record.id))

    async def update_appointment_group(self, changes: Sequence[AppointmentChange]) -> List[AppointmentRecord]:
        self.calls.append("update_appointment_group")
        updated = []
        for change in changes:
            record = replace(
                self._require(change.appointment_id),
                date=change.date,
                start_time=change.start_time,
                end_time=change.end_time,
                status=change.status,
                priority=change.priority,
                notes=change.notes,
            )
            updated.append(record)
        for record in updated:
            self.appointments[record.id] = record
        return updated

    async def cancel_appointment_group(self, group_id: int) -> List[AppointmentRecord]:
        self.calls.append("cancel_appointment_group")
        members = await self.get_appointment_group(group_id)
        if not members:
            raise AppointmentNotFound(group_id)
        cancelled = [replace(member, status=STATUS_CANCELLED) for member in members]
        for record in cancelled:
            self.appointments[record.id] = record
        return cancelled

    async def check_patient_overlap(
        self,
        patient_id: int,
        day: date,
        start_time: str,
        end_time: str,
        exclude_ids: Sequence[int] = ()
    ) -> OverlapCheck:
        self.calls.append("check_patient_overlap")
        for other in self._active_on(day):
            if other.patient_id == patient_id and other.id not in exclude_ids and _overlaps(other, start_time, end_time):
                return OverlapCheck(has_overlap=True, conflicting_appointment_id=other.id)
        return OverlapCheck(has_overlap=False)

    async def check_provider_availability(
        self,
        provider_id: int,
        day: date,
        start_time: str,
        end_time: str,
        exclude_ids: Sequence[int] = ()
    ) -> bool:
        self.calls.append("check_provider_availability")
        if provider_id in self.unavailable_providers:
            return False
        return not any(
            other.provider_id == provider_id and other.id not in exclude_ids and _overlaps(other, start_time, end_time)
            for other in self._active_on(day)
        )

    async def get_patient_name(self, patient_id: int) -> Optional[str]:
        return self.patients.get(patient_id)

    def _active_on(self, day: date) -> List[AppointmentRecord]:
        return [
            record for record in self.appointments.values()
            if record.date == day and record.status not in INACTIVE_APPOINTMENT_STATUSES
        ]

    def _require(self, appointment_id: int) -> AppointmentRecord:
        record = self.appointments.get(appointment_id)
        if record is None:
            raise AppointmentNotFound(appointment_id)
        return record


def _overlaps(record: AppointmentRecord, start_time: str, end_time: str) -> bool:
    return parse_hhmm(record.start_time) < parse_hhmm(end_time) and parse_hhmm(record.end_time) > parse_hhmm(start_time)


DayResponse = Union[List[SlotCandidate], Exception]


class FakeSlotService:
    """
    In-memory SlotComputationService.

    `slots` answers strict searches and `after_hours_slots` relaxed ones
    (falling back to `slots`). A response may be an exception to raise.
    `delays` holds per-day latencies in seconds.
    """

    def __init__(self):
        self.slots: Dict[date, DayResponse] = {}
        self.after_hours_slots: Dict[date, DayResponse] = {}
        self.delays: Dict[date, float] = {}
        self.calls: List[Tuple[str, date, bool]] = []

    async def get_slots(
        self,
        day: date,
        treatment_id: int,
        duration: int,
        allow_after_hours: bool
    ) -> List[SlotCandidate]:
        self.calls.append(("single", day, allow_after_hours))
        return await self._respond(day, allow_after_hours)

    async def get_multi_treatment_slots(
        self,
        day: date,
        treatments: Sequence[Treatment],
        allow_after_hours: bool
    ) -> List[SlotCandidate]:
        self.calls.append(("multi", day, allow_after_hours))
        return await self._respond(day, allow_after_hours)

    async def _respond(self, day: date, allow_after_hours: bool) -> List[SlotCandidate]:
        delay = self.delays.get(day)
        if delay:
            await asyncio.sleep(delay)
        response: DayResponse = self.slots.get(day, [])
        if allow_after_hours and day in self.after_hours_slots:
            response = self.after_hours_slots[day]
        if isinstance(response, Exception):
            raise response
        return list(response)


class FakeResourceDirectory:
    def __init__(self, providers: Sequence[ResourceInfo] = (), machines: Sequence[ResourceInfo] = ()):
        self.listing = ResourceListing(machines=tuple(machines), providers=tuple(providers))

    async def get_resources(self) -> ResourceListing:
        return self.listing


@pytest.fixture
def availability_store() -> FakeAvailabilityStore:
    return FakeAvailabilityStore()


@pytest.fixture
def clinic_hours() -> FakeClinicHours:
    return FakeClinicHours()


@pytest.fixture
def appointment_store() -> FakeAppointmentStore:
    return FakeAppointmentStore()


@pytest.fixture
def slot_service() -> FakeSlotService:
    return FakeSlotService()


@pytest.fixture
def default_week() -> WeeklyAvailability:
    """Default schedule used by availability tests: weekdays 09:00-12:00 and 14:00-18:00."""
    return WeeklyAvailability.from_dict({
        name: {
            "enabled": name not in ("saturday", "sunday"),
            "slots": [{"start": "09:00", "end": "12:00"}, {"start": "14:00", "end": "18:00"}],
        }
        for name in ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")
    }).validate()
