"""
Unit tests for the SQLAlchemy-backed stores.

Runs against an in-memory SQLite database (see the db_session fixture), or a
file-backed one where sessions must hold separate connections.
"""

import pytest
import pytest_asyncio
from datetime import date, timedelta
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from core.exceptions import AppointmentNotFound, SlotNoLongerAvailable
from models import Patient, Resource
from models.resource import RESOURCE_KIND_MACHINE, RESOURCE_KIND_PROVIDER
from core.database import Base
from services.appointment_store import SessionScopedProviderChecker, SqlAppointmentStore
from services.availability_service import AvailabilityService
from services.availability_store import SqlAvailabilityStore
from shared_types.availability import AvailabilitySource
from services.slot_search_service import SlotSearchService
from shared_types.scheduling import AppointmentChange, NewAppointment, SearchFilters, SimpleSlot, Treatment
from tests.conftest import FakeClinicHours, FakeSlotService


MONDAY = date(2025, 3, 3)
WEEK_JSON = {"monday": {"enabled": True, "slots": [{"start": "10:00", "end": "12:00"}]}}


@pytest.fixture
def availability_store(db_session):
    return SqlAvailabilityStore(db_session)


@pytest.fixture
def store(db_session, availability_store):
    return SqlAppointmentStore(db_session, AvailabilityService(availability_store, FakeClinicHours()))


async def _add_machine(db_session, machine_id: int, is_overlappable: bool = False) -> None:
    db_session.add(Resource(
        id=machine_id, kind=RESOURCE_KIND_MACHINE, name=f"Machine {machine_id}", is_overlappable=is_overlappable
    ))
    await db_session.commit()


def _new(start: str, end: str, **fields) -> NewAppointment:
    values = dict(patient_id=1, date=MONDAY, start_time=start, end_time=end, treatment_id=1)
    values.update(fields)
    return NewAppointment(**values)


class TestSqlAvailabilityStore:
    """Test week and template persistence."""

    @pytest.mark.asyncio
    async def test_week_upsert_and_get(self, availability_store):
        """Test that a second save overwrites the same week record."""
        await availability_store.upsert_week(3, 2025, 10, WEEK_JSON, AvailabilitySource.MANUAL, notes="first")
        await availability_store.upsert_week(3, 2025, 10, {}, AvailabilitySource.COPIED)

        stored = await availability_store.get_week(3, 2025, 10)

        assert stored.availability == {}
        assert stored.source == "copied"
        assert stored.notes is None
        assert (stored.year, stored.week) == (2025, 10)

    @pytest.mark.asyncio
    async def test_missing_week(self, availability_store):
        """Test that an unknown week returns None."""
        assert await availability_store.get_week(3, 2025, 11) is None

    @pytest.mark.asyncio
    async def test_delete_week(self, availability_store):
        """Test that delete reports whether a record existed."""
        await availability_store.upsert_week(3, 2025, 10, WEEK_JSON, AvailabilitySource.MANUAL)

        assert await availability_store.delete_week(3, 2025, 10) is True
        assert await availability_store.delete_week(3, 2025, 10) is False
        assert await availability_store.get_week(3, 2025, 10) is None

    @pytest.mark.asyncio
    async def test_template_upsert(self, availability_store):
        """Test that a template is overwritten in place."""
        await availability_store.upsert_template(3, {})
        await availability_store.upsert_template(3, WEEK_JSON)

        stored = await availability_store.get_template(3)

        assert stored.availability == WEEK_JSON
        assert stored.source == "template"
        assert await availability_store.get_template(4) is None


class TestSqlAppointmentStore:
    """Test appointment persistence and conflict checks."""

    @pytest.mark.asyncio
    async def test_create_and_get(self, store):
        """Test that a created appointment reads back with HH:MM times."""
        created = await store.create_appointment(_new("09:00", "09:30", treatment_title="Massage", duration=30))

        fetched = await store.get_appointment(created.id)

        assert fetched == created
        assert (fetched.start_time, fetched.end_time) == ("09:00", "09:30")
        assert fetched.status == "scheduled"
        assert await store.get_appointment(999) is None

    @pytest.mark.asyncio
    async def test_exclusive_machine_conflict(self, db_session, store):
        """Test that an exclusive machine cannot be double booked."""
        await _add_machine(db_session, 5)
        await store.create_appointment(_new("09:00", "10:00", machine_id=5))

        with pytest.raises(SlotNoLongerAvailable) as exc_info:
            await store.create_appointment(_new("09:30", "10:30", patient_id=2, machine_id=5))

        assert exc_info.value.machine_id == 5

    @pytest.mark.asyncio
    async def test_exclusive_machine_back_to_back(self, db_session, store):
        """Test that touching appointments share an exclusive machine."""
        await _add_machine(db_session, 5)
        await store.create_appointment(_new("09:00", "10:00", machine_id=5))

        created = await store.create_appointment(_new("10:00", "10:30", patient_id=2, machine_id=5))

        assert created.machine_id == 5

    @pytest.mark.asyncio
    async def test_overlappable_machine_allows_concurrent_use(self, db_session, store):
        """Test that an overlappable machine accepts overlapping bookings."""
        await _add_machine(db_session, 6, is_overlappable=True)
        await store.create_appointment(_new("09:00", "10:00", machine_id=6))

        created = await store.create_appointment(_new("09:00", "10:00", patient_id=2, machine_id=6))

        assert created.machine_id == 6

    @pytest.mark.asyncio
    async def test_cancelled_appointment_frees_machine(self, db_session, store):
        """Test that a cancelled booking no longer blocks its machine."""
        await _add_machine(db_session, 5)
        first = await store.create_appointment(_new("09:00", "10:00", machine_id=5))
        await store.cancel_appointment_group(first.id)

        created = await store.create_appointment(_new("09:00", "10:00", patient_id=2, machine_id=5))

        assert created.id != first.id

    @pytest.mark.asyncio
    async def test_group_rows_sorted_by_sequence(self, store):
        """Test that the group is returned parent first, by link_sequence."""
        parent = await store.create_appointment(_new("09:00", "09:30"))
        await store.set_link(parent.id, parent.id, 1)
        third = await store.create_appointment(
            _new("10:00", "10:30", linked_appointment_id=parent.id, link_sequence=3)
        )
        second = await store.create_appointment(
            _new("09:30", "10:00", linked_appointment_id=parent.id, link_sequence=2)
        )

        group = await store.get_appointment_group(parent.id)

        assert [member.id for member in group] == [parent.id, second.id, third.id]

    @pytest.mark.asyncio
    async def test_update_group_applies_every_change(self, store):
        """Test that a group update moves every member."""
        parent = await store.create_appointment(_new("09:00", "09:30"))
        child = await store.create_appointment(_new("09:30", "10:00", linked_appointment_id=parent.id, link_sequence=2))
        moved_to = date(2025, 3, 4)

        updated = await store.update_appointment_group([
            AppointmentChange(parent.id, moved_to, "14:00", "14:30", "confirmed", "high", "moved"),
            AppointmentChange(child.id, moved_to, "14:30", "15:00", "confirmed", "high", "moved"),
        ])

        assert [(member.date, member.start_time) for member in updated] == [(moved_to, "14:00"), (moved_to, "14:30")]
        assert (await store.get_appointment(child.id)).status == "confirmed"

    @pytest.mark.asyncio
    async def test_update_group_machine_conflict_changes_nothing(self, db_session, store):
        """Test that a machine conflict rolls back the whole group update."""
        await _add_machine(db_session, 5)
        await store.create_appointment(_new("14:00", "15:00", patient_id=2, machine_id=5))
        parent = await store.create_appointment(_new("09:00", "09:30"))
        child = await store.create_appointment(
            _new("09:30", "10:00", machine_id=5, linked_appointment_id=parent.id, link_sequence=2)
        )

        with pytest.raises(SlotNoLongerAvailable):
            await store.update_appointment_group([
                AppointmentChange(parent.id, MONDAY, "14:00", "14:30", "scheduled", "normal", None),
                AppointmentChange(child.id, MONDAY, "14:30", "15:00", "scheduled", "normal", None),
            ])

        assert (await store.get_appointment(parent.id)).start_time == "09:00"
        assert (await store.get_appointment(child.id)).start_time == "09:30"

    @pytest.mark.asyncio
    async def test_update_group_missing_member(self, store):
        """Test that updating a deleted member raises AppointmentNotFound."""
        with pytest.raises(AppointmentNotFound):
            await store.update_appointment_group([
                AppointmentChange(404, MONDAY, "09:00", "09:30", "scheduled", "normal", None),
            ])

    @pytest.mark.asyncio
    async def test_cancel_group(self, store):
        """Test that cancelling a group cancels every member."""
        parent = await store.create_appointment(_new("09:00", "09:30"))
        await store.create_appointment(_new("09:30", "10:00", linked_appointment_id=parent.id, link_sequence=2))

        cancelled = await store.cancel_appointment_group(parent.id)

        assert [member.status for member in cancelled] == ["cancelled", "cancelled"]
        with pytest.raises(AppointmentNotFound):
            await store.cancel_appointment_group(404)

    @pytest.mark.asyncio
    async def test_delete_appointment(self, store):
        """Test hard deletion used by group rollback."""
        created = await store.create_appointment(_new("09:00", "09:30"))

        await store.delete_appointment(created.id)

        assert await store.get_appointment(created.id) is None
        with pytest.raises(AppointmentNotFound):
            await store.delete_appointment(created.id)

    @pytest.mark.asyncio
    async def test_patient_overlap(self, store):
        """Test patient overlap with half-open intervals and exclusions."""
        existing = await store.create_appointment(_new("09:00", "10:00"))

        overlap = await store.check_patient_overlap(1, MONDAY, "09:30", "10:30")
        touching = await store.check_patient_overlap(1, MONDAY, "10:00", "10:30")
        excluded = await store.check_patient_overlap(1, MONDAY, "09:30", "10:30", exclude_ids=[existing.id])
        other_patient = await store.check_patient_overlap(2, MONDAY, "09:30", "10:30")

        assert overlap.has_overlap is True
        assert overlap.conflicting_appointment_id == existing.id
        assert touching.has_overlap is False
        assert excluded.has_overlap is False
        assert other_patient.has_overlap is False

    @pytest.mark.asyncio
    async def test_provider_availability(self, store):
        """Test the provider check against the default schedule and bookings."""
        await store.create_appointment(_new("09:00", "10:00", patient_id=2, provider_id=3))

        assert await store.check_provider_availability(3, MONDAY, "10:00", "11:00") is True
        assert await store.check_provider_availability(3, MONDAY, "09:30", "10:30") is False
        assert await store.check_provider_availability(3, MONDAY, "12:00", "13:00") is False
        assert await store.check_provider_availability(3, date(2025, 3, 8), "10:00", "11:00") is False

    @pytest.mark.asyncio
    async def test_provider_availability_uses_week_record(self, store, availability_store):
        """Test that a specific-week record overrides the default schedule."""
        await availability_store.upsert_week(3, 2025, 10, WEEK_JSON, AvailabilitySource.MANUAL)

        assert await store.check_provider_availability(3, MONDAY, "09:00", "10:00") is False
        assert await store.check_provider_availability(3, MONDAY, "10:00", "11:00") is True

    @pytest.mark.asyncio
    async def test_patient_name(self, db_session, store):
        """Test patient name lookup."""
        db_session.add(Patient(id=11, full_name="Ana Costa"))
        await db_session.commit()

        assert await store.get_patient_name(11) == "Ana Costa"
        assert await store.get_patient_name(12) is None


@pytest_asyncio.fixture
async def file_session_factory(tmp_path):
    """Session factory on a file-backed SQLite database; every session gets its own connection."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'clinic.db'}", poolclass=NullPool)
    async with engine.begin() as connection:
        await connection.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    await engine.dispose()


class TestSessionScopedProviderChecker:
    """Test provider filtering during a concurrent multi-day search."""

    @pytest.mark.asyncio
    async def test_provider_filtered_search_checks_every_day(self, file_session_factory):
        """Test that per-day provider checks run side by side without failing any day."""
        clinic_hours = FakeClinicHours()
        async with file_session_factory() as db:
            store = SqlAppointmentStore(db, AvailabilityService(SqlAvailabilityStore(db), clinic_hours))
            await store.create_appointment(_new("10:00", "10:30", provider_id=3))

        window = [MONDAY + timedelta(days=offset) for offset in range(6)]
        slot_service = FakeSlotService()
        for day in window:
            slot_service.slots[day] = [
                SimpleSlot(start_time="10:00", end_time="10:30"),
                SimpleSlot(start_time="19:00", end_time="19:30"),
            ]
        search_service = SlotSearchService(
            slot_service,
            provider_checker=SessionScopedProviderChecker(file_session_factory, clinic_hours),
        )

        result = await search_service.search([Treatment(1, 30)], window, SearchFilters(provider_id=3))

        assert result.diagnostics.failed_days == 0
        # Monday is taken by the booking; Saturday is off in the default schedule
        assert list(result.slots_by_date) == window[1:5]
        assert all(
            [slot.start_time for slot in slots] == ["10:00"] for slots in result.slots_by_date.values()
        )

    @pytest.mark.asyncio
    async def test_checker_respects_exclusions(self, file_session_factory):
        """Test that excluded appointments do not block the provider."""
        clinic_hours = FakeClinicHours()
        async with file_session_factory() as db:
            store = SqlAppointmentStore(db, AvailabilityService(SqlAvailabilityStore(db), clinic_hours))
            booked = await store.create_appointment(_new("10:00", "10:30", provider_id=3))
        checker = SessionScopedProviderChecker(file_session_factory, clinic_hours)

        assert await checker.check_provider_availability(3, MONDAY, "10:00", "10:30") is False
        assert await checker.check_provider_availability(3, MONDAY, "10:00", "10:30", [booked.id]) is True
