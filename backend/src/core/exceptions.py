"""
Scheduling error taxonomy.

Every failure the availability, search and booking services raise derives from
SchedulingError so the HTTP layer (and any other caller) can tell actionable
business failures apart from transport errors.
"""

from datetime import date
from typing import Optional, Sequence


class SchedulingError(Exception):
    """Base class for availability, search and booking failures."""

    code = "scheduling_error"
    retryable = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


# Validation errors: raised synchronously, before any I/O

class InvalidDate(SchedulingError):
    """A calendar date, ISO week or weekday is out of range or malformed."""

    code = "invalid_date"


class InvalidTimeRange(SchedulingError):
    """A time range is malformed (not HH:MM) or does not satisfy start < end."""

    code = "invalid_time_range"

    def __init__(self, message: str, start: Optional[str] = None, end: Optional[str] = None):
        super().__init__(message)
        self.start = start
        self.end = end


class InvalidRequest(SchedulingError):
    """Malformed search or booking input."""

    code = "invalid_request"


class InvalidStatusTransition(SchedulingError):
    """A well-formed status change that the appointment's current status does not allow."""

    code = "invalid_status_transition"

    def __init__(self, current_status: str, requested_status: str):
        super().__init__(f"Cannot change appointment status from '{current_status}' to '{requested_status}'")
        self.current_status = current_status
        self.requested_status = requested_status


class AppointmentNotFound(SchedulingError):
    """The appointment or linked group does not exist."""

    code = "appointment_not_found"

    def __init__(self, appointment_id: int):
        super().__init__(f"Appointment {appointment_id} not found")
        self.appointment_id = appointment_id


# Availability resolution

class CorruptAvailabilityRecord(SchedulingError):
    """A stored availability record cannot be parsed. Resolution falls back one level."""

    code = "corrupt_availability_record"

    def __init__(self, provider_id: int, year: Optional[int], week: Optional[int], reason: str):
        scope = f"week {year}-W{week:02d}" if year is not None and week is not None else "template"
        super().__init__(f"Corrupt availability {scope} for provider {provider_id}: {reason}")
        self.provider_id = provider_id
        self.year = year
        self.week = week


# Booking-time conflicts: actionable, the caller should offer another slot

class BookingConflict(SchedulingError):
    """Base class for conflicts detected when a booking is committed."""

    code = "booking_conflict"


class PatientOverlap(BookingConflict):
    """The patient already has an active appointment intersecting the new one."""

    code = "patient_overlap"

    def __init__(self, patient_id: int, conflicting_appointment_id: Optional[int]):
        super().__init__(
            f"Patient {patient_id} already has appointment {conflicting_appointment_id} at this time"
        )
        self.patient_id = patient_id
        self.conflicting_appointment_id = conflicting_appointment_id


class SlotNoLongerAvailable(BookingConflict):
    """The slot was taken (e.g. an exclusive machine) between search and booking."""

    code = "slot_no_longer_available"

    def __init__(self, message: str = "This slot is no longer available", machine_id: Optional[int] = None):
        super().__init__(message)
        self.machine_id = machine_id


class ProviderUnavailable(BookingConflict):
    """The requested provider is not available for the whole booking window."""

    code = "provider_unavailable"

    def __init__(self, provider_id: int, booking_date: date, start_time: str, end_time: str):
        super().__init__(
            f"Provider {provider_id} is not available on {booking_date.isoformat()} {start_time}-{end_time}"
        )
        self.provider_id = provider_id
        self.date = booking_date
        self.start_time = start_time
        self.end_time = end_time


class GroupBookingPartialFailure(SchedulingError):
    """
    A linked-group booking failed after some members were created.

    Never a terminal state: the booking service rolls the created members back
    and re-raises the underlying cause. It only escapes when the rollback
    itself fails.
    """

    code = "group_booking_partial_failure"

    def __init__(self, created_ids: Sequence[int], cause: BaseException):
        super().__init__(
            f"Group booking failed after creating {len(created_ids)} appointment(s): {cause}"
        )
        self.created_ids = list(created_ids)
        self.cause = cause


# Search

class PerDayFetchFailure(SchedulingError):
    """One day of a multi-day search failed or timed out. Non-fatal."""

    code = "per_day_fetch_failure"

    def __init__(self, day: date, cause: BaseException):
        reason = str(cause).strip() or type(cause).__name__
        super().__init__(f"Slot fetch failed for {day.isoformat()}: {reason}")
        self.day = day
        self.cause = cause


class SlotServiceUnavailable(SchedulingError):
    """Every day of a non-empty search window failed: the slot service is down."""

    code = "slot_service_unavailable"
    retryable = True

    def __init__(self, failed_days: int):
        super().__init__(f"Slot service unavailable: all {failed_days} day fetch(es) failed")
        self.failed_days = failed_days


class StaleSearchGeneration(SchedulingError):
    """A completion arrived for a search that a newer search superseded. Internal."""

    code = "stale_search_generation"

    def __init__(self, generation: int, current_generation: int):
        super().__init__(f"Search generation {generation} superseded by {current_generation}")
        self.generation = generation
        self.current_generation = current_generation
