"""
Booking service: single and linked-group appointment commits.

Slots found by a search are never treated as reserved. Every booking
re-checks patient overlap and provider availability against the store
before writing, and the store itself rejects exclusive-machine conflicts,
so a slot taken in the meantime fails with a typed BookingConflict.

A linked group is exposed as all-or-nothing: if any member cannot be
created, the members already created are deleted before the error is
re-raised. Group updates and cancels validate every member first and are
then applied by the store in a single transaction.
"""

import logging
from datetime import date
from typing import Dict, List, Optional, Sequence

from core.constants import (
    APPOINTMENT_PRIORITIES,
    DEFAULT_APPOINTMENT_PRIORITY,
    INACTIVE_APPOINTMENT_STATUSES,
    STATUS_CANCELLED,
    STATUS_SCHEDULED,
    STATUS_TRANSITIONS,
)
from core.exceptions import (
    AppointmentNotFound,
    GroupBookingPartialFailure,
    InvalidRequest,
    InvalidStatusTransition,
    InvalidTimeRange,
    PatientOverlap,
    ProviderUnavailable,
)
from core.sentinels import is_set
from services.appointment_store import AppointmentStore
from shared_types.availability import TimeRange
from shared_types.scheduling import (
    AppointmentChange,
    AppointmentRecord,
    GroupPatch,
    MultiSegmentSlot,
    NewAppointment,
    SimpleSlot,
    SlotSegment,
)
from utils.datetime_utils import format_hhmm, parse_hhmm

logger = logging.getLogger(__name__)


def assigned_machine(machine_id: Optional[int], is_overlappable: bool) -> Optional[int]:
    """Overlappable machines are never exclusively assigned."""
    return None if is_overlappable else machine_id


def validate_priority(priority: str) -> str:
    if priority not in APPOINTMENT_PRIORITIES:
        raise InvalidRequest(
            f"Invalid priority '{priority}' (expected one of: {', '.join(APPOINTMENT_PRIORITIES)})"
        )
    return priority


def validate_status_transition(current_status: str, requested_status: str) -> None:
    """
    Raises:
        InvalidRequest: If the requested status is unknown
        InvalidStatusTransition: If the change is not allowed from the current status
    """
    if requested_status not in STATUS_TRANSITIONS:
        raise InvalidRequest(f"Unknown appointment status '{requested_status}'")
    if requested_status == current_status:
        return
    if requested_status not in STATUS_TRANSITIONS.get(current_status, ()):
        raise InvalidStatusTransition(current_status, requested_status)


def validate_contiguous_segments(segments: Sequence[SlotSegment]) -> None:
    """
    Check a multi-segment slot is well-formed: each segment valid, ordered and contiguous.

    Raises:
        InvalidTimeRange: If a segment's times are malformed or inverted
        InvalidRequest: If there are no segments or they are not contiguous
    """
    if not segments:
        raise InvalidRequest("A multi-treatment slot needs at least one segment")
    for segment in segments:
        TimeRange(segment.start_time, segment.end_time).validate()
    for previous, current in zip(segments, segments[1:]):
        if parse_hhmm(previous.end_time) != parse_hhmm(current.start_time):
            raise InvalidRequest(
                f"Segments are not contiguous: {previous.start_time}-{previous.end_time} "
                f"then {current.start_time}-{current.end_time}"
            )


class BookingService:
    """Service class for committing and managing appointments."""

    def __init__(self, store: AppointmentStore):
        self.store = store

    async def book(
        self,
        patient_id: int,
        day: date,
        slot: SimpleSlot,
        treatment_id: int,
        provider_id: Optional[int] = None,
        notes: Optional[str] = None,
        priority: str = DEFAULT_APPOINTMENT_PRIORITY,
        treatment_title: Optional[str] = None
    ) -> AppointmentRecord:
        """
        Book a single-treatment appointment.

        Args:
            patient_id: Patient ID
            day: Appointment date
            slot: Chosen slot; its machine is assigned only if not overlappable
            treatment_id: Treatment ID
            provider_id: Optional provider to assign
            notes: Optional notes
            priority: Appointment priority
            treatment_title: Treatment display name stored with the appointment

        Returns:
            The created appointment

        Raises:
            InvalidTimeRange: If the slot times are malformed or inverted
            PatientOverlap: If the patient already has an active appointment at that time
            ProviderUnavailable: If the provider is not available for the window
            SlotNoLongerAvailable: If the exclusive machine was booked in the meantime
        """
        window = TimeRange(slot.start_time, slot.end_time).validate()
        validate_priority(priority)

        await self._ensure_no_patient_overlap(patient_id, day, [window])
        if provider_id is not None:
            await self._ensure_provider_available(provider_id, day, window)

        appointment = await self.store.create_appointment(NewAppointment(
            patient_id=patient_id,
            date=day,
            start_time=window.start,
            end_time=window.end,
            treatment_id=treatment_id,
            machine_id=assigned_machine(slot.machine_id, slot.is_overlappable),
            provider_id=provider_id,
            status=STATUS_SCHEDULED,
            priority=priority,
            notes=notes,
            treatment_title=treatment_title,
            duration=window.duration_minutes,
        ))
        logger.info(
            f"Booked appointment {appointment.id} for patient {patient_id} on "
            f"{day.isoformat()} {window.start}-{window.end}"
        )
        return appointment

    async def book_group(
        self,
        patient_id: int,
        day: date,
        slot: MultiSegmentSlot,
        provider_id: Optional[int] = None,
        notes: Optional[str] = None,
        priority: str = DEFAULT_APPOINTMENT_PRIORITY,
        treatment_titles: Optional[Dict[int, str]] = None
    ) -> List[AppointmentRecord]:
        """
        Book a linked group: one appointment per segment, in segment order.

        The first appointment is the parent; every member (the parent too)
        gets linked_appointment_id = parent id and link_sequence 1..n.

        Returns:
            The group's appointments, sorted by link_sequence

        Raises:
            InvalidRequest: If the segments are missing or not contiguous
            InvalidTimeRange: If a segment's times are malformed or inverted
            PatientOverlap: If the patient already has an active appointment at that time
            ProviderUnavailable: If the provider is not available for the whole visit
            SlotNoLongerAvailable: If a segment's exclusive machine was booked in the meantime
            GroupBookingPartialFailure: Only if rolling back created members failed
        """
        segments = list(slot.segments)
        validate_contiguous_segments(segments)
        validate_priority(priority)
        titles = treatment_titles or {}

        windows = [TimeRange(segment.start_time, segment.end_time).validate() for segment in segments]
        await self._ensure_no_patient_overlap(patient_id, day, windows)
        if provider_id is not None:
            span = TimeRange(windows[0].start, windows[-1].end)
            await self._ensure_provider_available(provider_id, day, span)

        created: List[AppointmentRecord] = []
        try:
            for sequence, (segment, window) in enumerate(zip(segments, windows), start=1):
                parent_id = created[0].id if created else None
                record = await self.store.create_appointment(NewAppointment(
                    patient_id=patient_id,
                    date=day,
                    start_time=window.start,
                    end_time=window.end,
                    treatment_id=segment.treatment_id,
                    machine_id=assigned_machine(segment.machine_id, segment.is_overlappable),
                    provider_id=provider_id,
                    status=STATUS_SCHEDULED,
                    priority=priority,
                    notes=notes,
                    treatment_title=titles.get(segment.treatment_id),
                    duration=window.duration_minutes,
                    linked_appointment_id=parent_id,
                    link_sequence=sequence,
                ))
                created.append(record)
                if parent_id is None:
                    created[0] = await self.store.set_link(record.id, record.id, sequence)
        except Exception as e:
            failure = GroupBookingPartialFailure([record.id for record in created], e)
            if created:
                logger.warning(f"{failure.message}; rolling back")
                await self._rollback(failure)
            raise

        logger.info(
            f"Booked linked group {created[0].id} ({len(created)} appointments) for patient "
            f"{patient_id} on {day.isoformat()} {windows[0].start}-{windows[-1].end}"
        )
        return created

    async def get_group(self, group_id: int) -> List[AppointmentRecord]:
        """
        Get every member of a linked group, sorted by link_sequence.

        Raises:
            AppointmentNotFound: If the group does not exist
        """
        members = await self.store.get_appointment_group(group_id)
        if not members:
            raise AppointmentNotFound(group_id)
        return sorted(members, key=lambda member: (member.link_sequence or 0, member.id))

    async def update_group(self, group_id: int, patch: GroupPatch) -> List[AppointmentRecord]:
        """
        Apply the same patch to every member of a group.

        A new start time is laid out contiguously: each member keeps its own
        duration and starts where the previous member ends.

        Raises:
            AppointmentNotFound: If the group does not exist
            InvalidTimeRange: If the new start time is malformed or the visit would pass midnight
            InvalidRequest: If the priority or status is invalid
            InvalidStatusTransition: If any member cannot take the new status
            PatientOverlap: If the moved visit overlaps another of the patient's appointments
            ProviderUnavailable: If the provider is not available for the moved visit
            SlotNoLongerAvailable: If a member's exclusive machine is taken at the new time
        """
        members = await self.get_group(group_id)
        if patch.is_empty():
            return members

        if is_set(patch.status):
            for member in members:
                validate_status_transition(member.status, patch.status)
        if is_set(patch.priority):
            validate_priority(patch.priority)

        changes = self._plan_changes(members, patch)
        first = changes[0]
        moved = is_set(patch.date) or is_set(patch.start_time)
        reactivated = is_set(patch.status) and any(
            member.status in INACTIVE_APPOINTMENT_STATUSES and patch.status not in INACTIVE_APPOINTMENT_STATUSES
            for member in members
        )
        if (moved or reactivated) and first.status not in INACTIVE_APPOINTMENT_STATUSES:
            group_ids = [member.id for member in members]
            windows = [TimeRange(change.start_time, change.end_time) for change in changes]
            await self._ensure_no_patient_overlap(members[0].patient_id, first.date, windows, group_ids)
            provider_id = members[0].provider_id
            if provider_id is not None:
                span = TimeRange(changes[0].start_time, changes[-1].end_time)
                await self._ensure_provider_available(provider_id, first.date, span, group_ids)

        updated = await self.store.update_appointment_group(changes)
        logger.info(f"Updated linked group {group_id} ({len(updated)} appointments)")
        return sorted(updated, key=lambda member: (member.link_sequence or 0, member.id))

    async def cancel_group(self, group_id: int) -> List[AppointmentRecord]:
        """
        Cancel every member of a group. Members already cancelled stay cancelled.

        Raises:
            AppointmentNotFound: If the group does not exist
            InvalidStatusTransition: If any member cannot be cancelled (e.g. completed)
        """
        members = await self.get_group(group_id)
        for member in members:
            validate_status_transition(member.status, STATUS_CANCELLED)

        cancelled = await self.store.cancel_appointment_group(group_id)
        logger.info(f"Cancelled linked group {group_id} ({len(cancelled)} appointments)")
        return sorted(cancelled, key=lambda member: (member.link_sequence or 0, member.id))

    async def cancel_appointment(self, appointment_id: int) -> List[AppointmentRecord]:
        """
        Cancel an appointment. A linked appointment cancels its whole group.

        Raises:
            AppointmentNotFound: If the appointment does not exist
            InvalidStatusTransition: If it (or a group member) cannot be cancelled
        """
        appointment = await self.store.get_appointment(appointment_id)
        if appointment is None:
            raise AppointmentNotFound(appointment_id)
        return await self.cancel_group(appointment.group_id)

    @staticmethod
    def _plan_changes(members: List[AppointmentRecord], patch: GroupPatch) -> List[AppointmentChange]:
        cursor: Optional[int] = None
        if is_set(patch.start_time):
            if not isinstance(patch.start_time, str):
                raise InvalidTimeRange("Start time is required", start=None)
            try:
                cursor = parse_hhmm(patch.start_time)
            except ValueError as e:
                raise InvalidTimeRange(str(e), start=patch.start_time) from e

        changes: List[AppointmentChange] = []
        for member in members:
            start_time, end_time = member.start_time, member.end_time
            if cursor is not None:
                try:
                    start_time = format_hhmm(cursor)
                    cursor += member.duration_minutes
                    end_time = format_hhmm(cursor)
                except ValueError as e:
                    raise InvalidTimeRange(
                        f"Visit starting at {patch.start_time} would end after midnight",
                        start=patch.start_time,
                    ) from e
            changes.append(AppointmentChange(
                appointment_id=member.id,
                date=patch.date if is_set(patch.date) else member.date,
                start_time=start_time,
                end_time=end_time,
                status=patch.status if is_set(patch.status) else member.status,
                priority=patch.priority if is_set(patch.priority) else member.priority,
                notes=patch.notes if is_set(patch.notes) else member.notes,
            ))
        return changes

    async def _ensure_no_patient_overlap(
        self,
        patient_id: int,
        day: date,
        windows: Sequence[TimeRange],
        exclude_ids: Sequence[int] = ()
    ) -> None:
        for window in windows:
            check = await self.store.check_patient_overlap(
                patient_id, day, window.start, window.end, exclude_ids
            )
            if check.has_overlap:
                logger.warning(
                    f"Patient {patient_id} overlap on {day.isoformat()} {window.start}-{window.end} "
                    f"with appointment {check.conflicting_appointment_id}"
                )
                raise PatientOverlap(patient_id, check.conflicting_appointment_id)

    async def _ensure_provider_available(
        self,
        provider_id: int,
        day: date,
        window: TimeRange,
        exclude_ids: Sequence[int] = ()
    ) -> None:
        available = await self.store.check_provider_availability(
            provider_id, day, window.start, window.end, exclude_ids
        )
        if not available:
            logger.warning(f"Provider {provider_id} unavailable on {day.isoformat()} {window.start}-{window.end}")
            raise ProviderUnavailable(provider_id, day, window.start, window.end)

    async def _rollback(self, failure: GroupBookingPartialFailure) -> None:
        """Delete created members in reverse order; escalate if that fails."""
        for appointment_id in reversed(failure.created_ids):
            try:
                await self.store.delete_appointment(appointment_id)
            except Exception as rollback_error:
                logger.exception(
                    f"Rollback of appointment {appointment_id} failed; group left partially created"
                )
                raise failure from rollback_error
        logger.info(f"Rolled back {len(failure.created_ids)} appointment(s) of failed group booking")
