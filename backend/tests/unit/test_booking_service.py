"""
Unit tests for BookingService.

Covers single bookings, linked-group bookings with rollback, group updates
with contiguous re-layout, and cancellation.
"""

import pytest
from datetime import date

from core.exceptions import (
    AppointmentNotFound,
    GroupBookingPartialFailure,
    InvalidRequest,
    InvalidStatusTransition,
    InvalidTimeRange,
    PatientOverlap,
    ProviderUnavailable,
    SlotNoLongerAvailable,
)
from core.sentinels import MISSING
from services.booking_service import BookingService, validate_status_transition
from shared_types.scheduling import GroupPatch, MultiSegmentSlot, SimpleSlot, SlotSegment


DAY = date(2025, 3, 3)
PATIENT_ID = 11


def _group_slot(*segments) -> MultiSegmentSlot:
    return MultiSegmentSlot(segments=tuple(
        SlotSegment(
            treatment_id=tid,
            start_time=start,
            end_time=end,
            duration=0,
            machine_id=machine_id,
            is_overlappable=overlappable,
        )
        for tid, start, end, machine_id, overlappable in segments
    ))


THREE_SEGMENTS = _group_slot(
    (1, "09:00", "09:30", 5, False),
    (2, "09:30", "10:15", 6, False),
    (3, "10:15", "10:45", None, False),
)


@pytest.fixture
def booking(appointment_store):
    return BookingService(appointment_store)


class TestBook:
    """Test single appointment booking."""

    @pytest.mark.asyncio
    async def test_book_exclusive_machine(self, booking, appointment_store):
        """Test that an exclusive machine is assigned to the appointment."""
        slot = SimpleSlot("09:00", "09:30", machine_id=5)

        appointment = await booking.book(PATIENT_ID, DAY, slot, treatment_id=1, treatment_title="Massage")

        assert appointment.machine_id == 5
        assert appointment.status == "scheduled"
        assert appointment.duration == 30
        assert appointment.treatment_title == "Massage"
        assert appointment.id in appointment_store.appointments

    @pytest.mark.asyncio
    async def test_book_overlappable_machine_is_not_assigned(self, booking):
        """Test that an overlappable machine is never assigned."""
        slot = SimpleSlot("09:00", "09:30", machine_id=5, is_overlappable=True)

        appointment = await booking.book(PATIENT_ID, DAY, slot, treatment_id=1)

        assert appointment.machine_id is None

    @pytest.mark.asyncio
    async def test_machine_taken_since_search(self, booking, appointment_store):
        """Test that a machine booked in the meantime raises SlotNoLongerAvailable."""
        appointment_store.add(patient_id=99, date=DAY, start_time="09:15", end_time="09:45", machine_id=5)

        with pytest.raises(SlotNoLongerAvailable):
            await booking.book(PATIENT_ID, DAY, SimpleSlot("09:00", "09:30", machine_id=5), treatment_id=1)

    @pytest.mark.asyncio
    async def test_patient_overlap_checked_before_any_write(self, booking, appointment_store):
        """Test that a patient overlap is reported without creating anything."""
        existing = appointment_store.add(patient_id=PATIENT_ID, date=DAY, start_time="09:00", end_time="10:00")

        with pytest.raises(PatientOverlap) as exc_info:
            await booking.book(PATIENT_ID, DAY, SimpleSlot("09:30", "10:30"), treatment_id=1)

        assert exc_info.value.conflicting_appointment_id == existing.id
        assert "create_appointment" not in appointment_store.calls

    @pytest.mark.asyncio
    async def test_touching_appointments_do_not_overlap(self, booking, appointment_store):
        """Test that back-to-back appointments are allowed."""
        appointment_store.add(patient_id=PATIENT_ID, date=DAY, start_time="09:00", end_time="09:30")

        appointment = await booking.book(PATIENT_ID, DAY, SimpleSlot("09:30", "10:00"), treatment_id=1)

        assert appointment.start_time == "09:30"

    @pytest.mark.asyncio
    async def test_cancelled_appointment_does_not_block(self, booking, appointment_store):
        """Test that a cancelled appointment is ignored by the overlap check."""
        appointment_store.add(
            patient_id=PATIENT_ID, date=DAY, start_time="09:00", end_time="10:00", status="cancelled"
        )

        appointment = await booking.book(PATIENT_ID, DAY, SimpleSlot("09:00", "09:30"), treatment_id=1)

        assert appointment.status == "scheduled"

    @pytest.mark.asyncio
    async def test_provider_unavailable(self, booking, appointment_store):
        """Test that an unavailable provider rejects the booking before writing."""
        appointment_store.unavailable_providers.add(3)

        with pytest.raises(ProviderUnavailable):
            await booking.book(PATIENT_ID, DAY, SimpleSlot("09:00", "09:30"), treatment_id=1, provider_id=3)

        assert appointment_store.appointments == {}

    @pytest.mark.asyncio
    async def test_rejects_inverted_slot(self, booking):
        """Test that start >= end is rejected."""
        with pytest.raises(InvalidTimeRange):
            await booking.book(PATIENT_ID, DAY, SimpleSlot("10:00", "09:30"), treatment_id=1)

    @pytest.mark.asyncio
    async def test_rejects_unknown_priority(self, booking):
        """Test that an unknown priority is rejected."""
        with pytest.raises(InvalidRequest):
            await booking.book(PATIENT_ID, DAY, SimpleSlot("09:00", "09:30"), treatment_id=1, priority="asap")


class TestBookGroup:
    """Test linked multi-treatment bookings."""

    @pytest.mark.asyncio
    async def test_group_links_every_member_to_parent(self, booking):
        """Test parent and children share linked_appointment_id and sequence 1..n."""
        members = await booking.book_group(PATIENT_ID, DAY, THREE_SEGMENTS, treatment_titles={2: "Sauna"})

        parent_id = members[0].id
        assert [member.linked_appointment_id for member in members] == [parent_id] * 3
        assert [member.link_sequence for member in members] == [1, 2, 3]
        assert [member.start_time for member in members] == ["09:00", "09:30", "10:15"]
        assert [member.duration for member in members] == [30, 45, 30]
        assert members[1].treatment_title == "Sauna"

    @pytest.mark.asyncio
    async def test_overlappable_segment_machine_is_not_assigned(self, booking):
        """Test per-segment machine assignment."""
        slot = _group_slot((1, "09:00", "09:30", 5, True), (2, "09:30", "10:00", 6, False))

        members = await booking.book_group(PATIENT_ID, DAY, slot)

        assert [member.machine_id for member in members] == [None, 6]

    @pytest.mark.asyncio
    async def test_failure_on_second_segment_rolls_back(self, booking, appointment_store):
        """Test that a failed second segment leaves zero appointments."""
        appointment_store.fail_on_create[2] = SlotNoLongerAvailable(machine_id=6)

        with pytest.raises(SlotNoLongerAvailable):
            await booking.book_group(PATIENT_ID, DAY, THREE_SEGMENTS)

        assert appointment_store.appointments == {}
        assert appointment_store.calls.count("delete_appointment") == 1

    @pytest.mark.asyncio
    async def test_failure_on_last_segment_deletes_in_reverse(self, booking, appointment_store):
        """Test that every created member is deleted when the last segment fails."""
        appointment_store.fail_on_create[3] = SlotNoLongerAvailable()

        with pytest.raises(SlotNoLongerAvailable):
            await booking.book_group(PATIENT_ID, DAY, THREE_SEGMENTS)

        assert appointment_store.appointments == {}
        assert appointment_store.calls.count("delete_appointment") == 2

    @pytest.mark.asyncio
    async def test_failed_rollback_raises_partial_failure(self, booking, appointment_store):
        """Test that a rollback error surfaces as GroupBookingPartialFailure."""
        appointment_store.fail_on_create[2] = SlotNoLongerAvailable()
        appointment_store.fail_on_delete = True

        with pytest.raises(GroupBookingPartialFailure) as exc_info:
            await booking.book_group(PATIENT_ID, DAY, THREE_SEGMENTS)

        assert len(exc_info.value.created_ids) == 1
        assert isinstance(exc_info.value.cause, SlotNoLongerAvailable)

    @pytest.mark.asyncio
    async def test_patient_overlap_before_any_write(self, booking, appointment_store):
        """Test that an overlap with any segment is detected before creating members."""
        appointment_store.add(patient_id=PATIENT_ID, date=DAY, start_time="10:30", end_time="11:00")

        with pytest.raises(PatientOverlap):
            await booking.book_group(PATIENT_ID, DAY, THREE_SEGMENTS)

        assert "create_appointment" not in appointment_store.calls

    @pytest.mark.asyncio
    async def test_non_contiguous_segments_rejected(self, booking):
        """Test that a gap between segments is rejected."""
        slot = _group_slot((1, "09:00", "09:30", None, False), (2, "09:45", "10:15", None, False))

        with pytest.raises(InvalidRequest):
            await booking.book_group(PATIENT_ID, DAY, slot)

    @pytest.mark.asyncio
    async def test_provider_checked_over_whole_visit(self, booking, appointment_store):
        """Test that the provider must cover the span of the visit."""
        appointment_store.add(patient_id=99, date=DAY, start_time="10:30", end_time="11:00", provider_id=3)

        with pytest.raises(ProviderUnavailable) as exc_info:
            await booking.book_group(PATIENT_ID, DAY, THREE_SEGMENTS, provider_id=3)

        assert exc_info.value.start_time == "09:00"
        assert exc_info.value.end_time == "10:45"


class TestUpdateGroup:
    """Test group-wide updates."""

    @pytest.mark.asyncio
    async def test_move_start_time_keeps_segments_contiguous(self, booking):
        """Test moving a 30/45/30 group to 14:00."""
        members = await booking.book_group(PATIENT_ID, DAY, THREE_SEGMENTS)

        updated = await booking.update_group(members[0].id, GroupPatch(start_time="14:00"))

        assert [(member.start_time, member.end_time) for member in updated] == [
            ("14:00", "14:30"), ("14:30", "15:15"), ("15:15", "15:45"),
        ]

    @pytest.mark.asyncio
    async def test_move_date_applies_to_every_member(self, booking):
        """Test that a new date moves the whole group."""
        members = await booking.book_group(PATIENT_ID, DAY, THREE_SEGMENTS)

        updated = await booking.update_group(members[0].id, GroupPatch(date=date(2025, 3, 4)))

        assert {member.date for member in updated} == {date(2025, 3, 4)}
        assert [member.start_time for member in updated] == ["09:00", "09:30", "10:15"]

    @pytest.mark.asyncio
    async def test_notes_and_priority_apply_uniformly(self, booking):
        """Test that notes and priority are written on every member."""
        members = await booking.book_group(PATIENT_ID, DAY, THREE_SEGMENTS, notes="old")

        updated = await booking.update_group(members[0].id, GroupPatch(notes=None, priority="urgent"))

        assert {member.notes for member in updated} == {None}
        assert {member.priority for member in updated} == {"urgent"}

    @pytest.mark.asyncio
    async def test_move_past_midnight_rejected(self, booking, appointment_store):
        """Test that a visit ending after midnight is rejected without writing."""
        members = await booking.book_group(PATIENT_ID, DAY, THREE_SEGMENTS)

        with pytest.raises(InvalidTimeRange):
            await booking.update_group(members[0].id, GroupPatch(start_time="23:30"))

        assert "update_appointment_group" not in appointment_store.calls

    @pytest.mark.asyncio
    async def test_move_onto_own_time_is_not_an_overlap(self, booking):
        """Test that the group's own members are excluded from the overlap check."""
        members = await booking.book_group(PATIENT_ID, DAY, THREE_SEGMENTS)

        updated = await booking.update_group(members[0].id, GroupPatch(start_time="09:15"))

        assert updated[0].start_time == "09:15"

    @pytest.mark.asyncio
    async def test_move_onto_other_appointment_rejected(self, booking, appointment_store):
        """Test that a move colliding with another appointment raises PatientOverlap."""
        members = await booking.book_group(PATIENT_ID, DAY, THREE_SEGMENTS)
        appointment_store.add(patient_id=PATIENT_ID, date=DAY, start_time="14:30", end_time="15:00")

        with pytest.raises(PatientOverlap):
            await booking.update_group(members[0].id, GroupPatch(start_time="14:00"))

    @pytest.mark.asyncio
    async def test_invalid_status_transition(self, booking):
        """Test that a completed appointment cannot be rescheduled."""
        members = await booking.book_group(PATIENT_ID, DAY, THREE_SEGMENTS)

        with pytest.raises(InvalidStatusTransition):
            await booking.update_group(members[0].id, GroupPatch(status="completed"))

    @pytest.mark.asyncio
    async def test_empty_patch_returns_members(self, booking, appointment_store):
        """Test that an empty patch changes nothing."""
        members = await booking.book_group(PATIENT_ID, DAY, THREE_SEGMENTS)

        result = await booking.update_group(members[0].id, GroupPatch(start_time=MISSING))

        assert result == members
        assert "update_appointment_group" not in appointment_store.calls

    @pytest.mark.asyncio
    async def test_unknown_group(self, booking):
        """Test that updating a missing group raises AppointmentNotFound."""
        with pytest.raises(AppointmentNotFound):
            await booking.update_group(404, GroupPatch(notes="x"))


class TestCancel:
    """Test cancellation."""

    @pytest.mark.asyncio
    async def test_cancel_child_cancels_whole_group(self, booking):
        """Test that cancelling any member cancels every member."""
        members = await booking.book_group(PATIENT_ID, DAY, THREE_SEGMENTS)

        cancelled = await booking.cancel_appointment(members[1].id)

        assert [member.status for member in cancelled] == ["cancelled"] * 3

    @pytest.mark.asyncio
    async def test_cancel_single_appointment(self, booking):
        """Test that an unlinked appointment is cancelled alone."""
        appointment = await booking.book(PATIENT_ID, DAY, SimpleSlot("09:00", "09:30"), treatment_id=1)

        cancelled = await booking.cancel_appointment(appointment.id)

        assert [member.id for member in cancelled] == [appointment.id]
        assert cancelled[0].status == "cancelled"

    @pytest.mark.asyncio
    async def test_cancel_completed_rejected(self, booking, appointment_store):
        """Test that a completed appointment cannot be cancelled."""
        completed = appointment_store.add(
            patient_id=PATIENT_ID, date=DAY, start_time="09:00", end_time="09:30", status="completed"
        )

        with pytest.raises(InvalidStatusTransition):
            await booking.cancel_appointment(completed.id)

    @pytest.mark.asyncio
    async def test_cancel_missing_appointment(self, booking):
        """Test that cancelling an unknown appointment raises AppointmentNotFound."""
        with pytest.raises(AppointmentNotFound):
            await booking.cancel_appointment(404)


class TestStatusTransitions:
    """Test the appointment status machine."""

    def test_allowed_transitions(self):
        """Test a few allowed transitions."""
        validate_status_transition("scheduled", "confirmed")
        validate_status_transition("cancelled", "scheduled")
        validate_status_transition("completed", "completed")

    def test_unknown_status(self):
        """Test that an unknown status is an invalid request."""
        with pytest.raises(InvalidRequest):
            validate_status_transition("scheduled", "archived")
