"""
Appointment store: persistence and conflict checks for appointments.

AppointmentStore is the collaborator contract used by BookingService and
DuplicationService. SqlAppointmentStore implements it on the Appointment
table and is the authoritative place where exclusive-machine conflicts are
detected, so a slot found by search can still fail to book here.

SessionScopedProviderChecker runs the same provider check for slot search,
which calls it from one task per day.
"""

import logging
from datetime import date
from typing import List, Optional, Protocol, Sequence

from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.constants import INACTIVE_APPOINTMENT_STATUSES, STATUS_CANCELLED
from core.exceptions import AppointmentNotFound, SlotNoLongerAvailable
from models import Appointment, Patient, Resource
from services.availability_service import AvailabilityService, ClinicHours
from services.availability_store import SqlAvailabilityStore
from shared_types.scheduling import AppointmentChange, AppointmentRecord, NewAppointment, OverlapCheck
from utils.datetime_utils import hhmm_to_time, time_to_hhmm

logger = logging.getLogger(__name__)


class AppointmentStore(Protocol):
    async def create_appointment(self, data: NewAppointment) -> AppointmentRecord:
        ...

    async def get_appointment(self, appointment_id: int) -> Optional[AppointmentRecord]:
        ...

    async def set_link(self, appointment_id: int, linked_appointment_id: int, link_sequence: int) -> AppointmentRecord:
        ...

    async def delete_appointment(self, appointment_id: int) -> None:
        ...

    async def get_appointment_group(self, group_id: int) -> List[AppointmentRecord]:
        ...

    async def update_appointment_group(self, changes: Sequence[AppointmentChange]) -> List[AppointmentRecord]:
        ...

    async def cancel_appointment_group(self, group_id: int) -> List[AppointmentRecord]:
        ...

    async def check_patient_overlap(
        self,
        patient_id: int,
        day: date,
        start_time: str,
        end_time: str,
        exclude_ids: Sequence[int] = ()
    ) -> OverlapCheck:
        ...

    async def check_provider_availability(
        self,
        provider_id: int,
        day: date,
        start_time: str,
        end_time: str,
        exclude_ids: Sequence[int] = ()
    ) -> bool:
        ...

    async def get_patient_name(self, patient_id: int) -> Optional[str]:
        ...


def to_record(appointment: Appointment) -> AppointmentRecord:
    """Convert an Appointment row to the shared AppointmentRecord."""
    return AppointmentRecord(
        id=appointment.id,
        patient_id=appointment.patient_id,
        date=appointment.date,
        start_time=time_to_hhmm(appointment.start_time) or "",
        end_time=time_to_hhmm(appointment.end_time) or "",
        treatment_id=appointment.treatment_id,
        status=appointment.status,
        machine_id=appointment.machine_id,
        provider_id=appointment.provider_id,
        linked_appointment_id=appointment.linked_appointment_id,
        link_sequence=appointment.link_sequence,
        treatment_title=appointment.treatment_title,
        duration=appointment.duration,
        priority=appointment.priority,
        notes=appointment.notes,
    )


class SqlAppointmentStore:
    """
    AppointmentStore backed by SQLAlchemy.

    Single creates and deletes commit individually. Group updates and group
    cancels run in one transaction and either apply to every member or none.
    """

    def __init__(self, db: AsyncSession, availability_service: AvailabilityService):
        self.db = db
        self.availability_service = availability_service

    async def create_appointment(self, data: NewAppointment) -> AppointmentRecord:
        """
        Insert an appointment.

        Raises:
            SlotNoLongerAvailable: If the exclusive machine is already booked
                for an overlapping window
        """
        if data.machine_id is not None:
            await self._ensure_machine_free(data.machine_id, data.date, data.start_time, data.end_time, ())

        appointment = Appointment(
            patient_id=data.patient_id,
            date=data.date,
            start_time=hhmm_to_time(data.start_time),
            end_time=hhmm_to_time(data.end_time),
            treatment_id=data.treatment_id,
            treatment_title=data.treatment_title,
            duration=data.duration,
            machine_id=data.machine_id,
            provider_id=data.provider_id,
            status=data.status,
            priority=data.priority,
            notes=data.notes,
            linked_appointment_id=data.linked_appointment_id,
            link_sequence=data.link_sequence,
        )
        self.db.add(appointment)
        await self.db.commit()
        return to_record(appointment)

    async def get_appointment(self, appointment_id: int) -> Optional[AppointmentRecord]:
        appointment = await self.db.get(Appointment, appointment_id)
        return to_record(appointment) if appointment is not None else None

    async def set_link(self, appointment_id: int, linked_appointment_id: int, link_sequence: int) -> AppointmentRecord:
        appointment = await self._require(appointment_id)
        appointment.linked_appointment_id = linked_appointment_id
        appointment.link_sequence = link_sequence
        await self.db.commit()
        return to_record(appointment)

    async def delete_appointment(self, appointment_id: int) -> None:
        appointment = await self._require(appointment_id)
        await self.db.delete(appointment)
        await self.db.commit()

    async def get_appointment_group(self, group_id: int) -> List[AppointmentRecord]:
        """Members of a linked group (the parent included), sorted by link_sequence."""
        return [to_record(row) for row in await self._group_rows(group_id)]

    async def update_appointment_group(self, changes: Sequence[AppointmentChange]) -> List[AppointmentRecord]:
        """
        Apply per-member changes in one transaction.

        Raises:
            AppointmentNotFound: If any member no longer exists
            SlotNoLongerAvailable: If a member's exclusive machine is taken at the new time
        """
        member_ids = [change.appointment_id for change in changes]
        try:
            rows = []
            for change in changes:
                row = await self._require(change.appointment_id)
                if row.machine_id is not None and change.status not in INACTIVE_APPOINTMENT_STATUSES:
                    await self._ensure_machine_free(
                        row.machine_id, change.date, change.start_time, change.end_time, member_ids
                    )
                row.date = change.date
                row.start_time = hhmm_to_time(change.start_time)
                row.end_time = hhmm_to_time(change.end_time)
                row.status = change.status
                row.priority = change.priority
                row.notes = change.notes
                rows.append(row)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise
        return [to_record(row) for row in rows]

    async def cancel_appointment_group(self, group_id: int) -> List[AppointmentRecord]:
        rows = await self._group_rows(group_id)
        if not rows:
            raise AppointmentNotFound(group_id)
        try:
            for row in rows:
                row.status = STATUS_CANCELLED
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise
        return [to_record(row) for row in rows]

    async def check_patient_overlap(
        self,
        patient_id: int,
        day: date,
        start_time: str,
        end_time: str,
        exclude_ids: Sequence[int] = ()
    ) -> OverlapCheck:
        conditions = [Appointment.patient_id == patient_id]
        conflict = await self._first_overlapping(conditions, day, start_time, end_time, exclude_ids)
        if conflict is None:
            return OverlapCheck(has_overlap=False)
        return OverlapCheck(has_overlap=True, conflicting_appointment_id=conflict.id)

    async def check_provider_availability(
        self,
        provider_id: int,
        day: date,
        start_time: str,
        end_time: str,
        exclude_ids: Sequence[int] = ()
    ) -> bool:
        """
        A provider is available when the window lies within their effective
        availability and overlaps none of their other active appointments.
        """
        if not await self.availability_service.is_available(provider_id, day, start_time, end_time):
            return False
        conditions = [Appointment.provider_id == provider_id]
        conflict = await self._first_overlapping(conditions, day, start_time, end_time, exclude_ids)
        return conflict is None

    async def get_patient_name(self, patient_id: int) -> Optional[str]:
        patient = await self.db.get(Patient, patient_id)
        return patient.full_name if patient is not None else None

    async def _ensure_machine_free(
        self,
        machine_id: int,
        day: date,
        start_time: str,
        end_time: str,
        exclude_ids: Sequence[int]
    ) -> None:
        machine = await self.db.get(Resource, machine_id)
        if machine is not None and machine.is_overlappable:
            return
        conditions = [Appointment.machine_id == machine_id]
        conflict = await self._first_overlapping(conditions, day, start_time, end_time, exclude_ids)
        if conflict is not None:
            logger.warning(
                f"Machine {machine_id} already booked by appointment {conflict.id} on "
                f"{day.isoformat()} {start_time}-{end_time}"
            )
            raise SlotNoLongerAvailable(
                f"Machine {machine_id} is no longer available on {day.isoformat()} {start_time}-{end_time}",
                machine_id=machine_id,
            )

    async def _first_overlapping(
        self,
        conditions: list,
        day: date,
        start_time: str,
        end_time: str,
        exclude_ids: Sequence[int]
    ) -> Optional[Appointment]:
        query = select(Appointment).where(
            and_(
                *conditions,
                Appointment.date == day,
                Appointment.status.notin_(INACTIVE_APPOINTMENT_STATUSES),
                Appointment.start_time < hhmm_to_time(end_time),
                Appointment.end_time > hhmm_to_time(start_time),
            )
        )
        if exclude_ids:
            query = query.where(Appointment.id.notin_(list(exclude_ids)))
        result = await self.db.execute(query.order_by(Appointment.start_time, Appointment.id).limit(1))
        return result.scalars().first()

    async def _group_rows(self, group_id: int) -> List[Appointment]:
        result = await self.db.execute(
            select(Appointment)
            .where((Appointment.linked_appointment_id == group_id) | (Appointment.id == group_id))
            .order_by(Appointment.link_sequence, Appointment.id)
        )
        return list(result.scalars().all())

    async def _require(self, appointment_id: int) -> Appointment:
        appointment = await self.db.get(Appointment, appointment_id)
        if appointment is None:
            raise AppointmentNotFound(appointment_id)
        return appointment


class SessionScopedProviderChecker:
    """
    Provider availability checks that open a fresh session per check.

    Slot search checks every day of its window from concurrent tasks, and
    an AsyncSession must not be shared between tasks, so each check gets
    its own session and its own store.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], clinic_hours: ClinicHours):
        self.session_factory = session_factory
        self.clinic_hours = clinic_hours

    async def check_provider_availability(
        self,
        provider_id: int,
        day: date,
        start_time: str,
        end_time: str,
        exclude_ids: Sequence[int] = ()
    ) -> bool:
        async with self.session_factory() as db:
            store = SqlAppointmentStore(db, AvailabilityService(SqlAvailabilityStore(db), self.clinic_hours))
            return await store.check_provider_availability(provider_id, day, start_time, end_time, exclude_ids)
