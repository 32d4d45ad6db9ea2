"""
Shared types for slot search, booking and duplication.

Slot candidates are a tagged variant: SimpleSlot for single-treatment queries
and MultiSegmentSlot for multi-treatment queries. Consumers branch on `kind`.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Literal, Optional, Union

from core.sentinels import MISSING, Maybe, is_set
from utils.datetime_utils import parse_hhmm


@dataclass(frozen=True)
class Treatment:
    """A treatment segment to search for: duration in minutes (> 0)."""
    treatment_id: int
    duration: int
    title: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"treatmentId": self.treatment_id, "duration": self.duration, "title": self.title}


@dataclass(frozen=True)
class SimpleSlot:
    """A single-treatment slot as returned by the slot-computation service."""
    start_time: str
    end_time: str
    machine_id: Optional[int] = None
    is_overlappable: bool = False
    after_hours: bool = False
    kind: Literal["simple"] = "simple"

    @property
    def start_minutes(self) -> int:
        return parse_hhmm(self.start_time)

    @property
    def end_minutes(self) -> int:
        return parse_hhmm(self.end_time)

    def machine_ids(self) -> List[int]:
        return [self.machine_id] if self.machine_id is not None else []

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "startTime": self.start_time,
            "endTime": self.end_time,
            "machineId": self.machine_id,
            "isOverlappable": self.is_overlappable,
            "afterHours": self.after_hours,
        }


@dataclass(frozen=True)
class SlotSegment:
    """One treatment's part of a multi-segment slot."""
    treatment_id: int
    start_time: str
    end_time: str
    duration: int
    machine_id: Optional[int] = None
    is_overlappable: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "treatmentId": self.treatment_id,
            "startTime": self.start_time,
            "endTime": self.end_time,
            "duration": self.duration,
            "machineId": self.machine_id,
            "isOverlappable": self.is_overlappable,
        }


@dataclass(frozen=True)
class MultiSegmentSlot:
    """
    Contiguous segments ordered by start time, covering the sum of the
    requested treatment durations.
    """
    segments: tuple[SlotSegment, ...]
    after_hours: bool = False
    kind: Literal["multi"] = "multi"

    @property
    def start_time(self) -> str:
        return self.segments[0].start_time

    @property
    def end_time(self) -> str:
        return self.segments[-1].end_time

    @property
    def start_minutes(self) -> int:
        return parse_hhmm(self.start_time)

    @property
    def end_minutes(self) -> int:
        return parse_hhmm(self.end_time)

    def machine_ids(self) -> List[int]:
        return [segment.machine_id for segment in self.segments if segment.machine_id is not None]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "startTime": self.start_time,
            "endTime": self.end_time,
            "afterHours": self.after_hours,
            "segments": [segment.to_dict() for segment in self.segments],
        }


SlotCandidate = Union[SimpleSlot, MultiSegmentSlot]


@dataclass(frozen=True)
class SearchFilters:
    machine_id: Optional[int] = None
    provider_id: Optional[int] = None


@dataclass(frozen=True)
class DaySlots:
    """Event published by a running search when one day's slots are ready."""
    day: date
    slots: tuple[SlotCandidate, ...]
    generation: int


@dataclass
class SearchDiagnostics:
    days_searched: int = 0
    days_with_slots: int = 0
    total_slots: int = 0
    failed_days: int = 0
    failures: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "daysSearched": self.days_searched,
            "daysWithSlots": self.days_with_slots,
            "totalSlots": self.total_slots,
            "failedDays": self.failed_days,
        }


@dataclass
class SearchResult:
    """Aggregated slots keyed by date (chronological), omitting empty days."""
    slots_by_date: Dict[date, List[SlotCandidate]] = field(default_factory=dict)
    diagnostics: SearchDiagnostics = field(default_factory=SearchDiagnostics)
    allow_after_hours: bool = False

    @property
    def is_empty(self) -> bool:
        return not self.slots_by_date

    def to_dict(self) -> Dict[str, Any]:
        return {
            "slots": {
                day.isoformat(): [slot.to_dict() for slot in slots]
                for day, slots in self.slots_by_date.items()
            },
            "diagnostics": self.diagnostics.to_dict(),
            "afterHours": self.allow_after_hours,
        }


@dataclass(frozen=True)
class AppointmentRecord:
    """An appointment as seen through the appointment store."""
    id: int
    patient_id: int
    date: date
    start_time: str
    end_time: str
    treatment_id: Optional[int]
    status: str
    machine_id: Optional[int] = None
    provider_id: Optional[int] = None
    linked_appointment_id: Optional[int] = None
    link_sequence: Optional[int] = None
    treatment_title: Optional[str] = None
    duration: Optional[int] = None
    priority: str = "normal"
    notes: Optional[str] = None

    @property
    def is_linked(self) -> bool:
        return self.linked_appointment_id is not None or (self.link_sequence or 0) > 1

    @property
    def group_id(self) -> int:
        return self.linked_appointment_id if self.linked_appointment_id is not None else self.id

    @property
    def duration_minutes(self) -> int:
        """Own duration, falling back to the stored time span."""
        if self.duration:
            return self.duration
        return parse_hhmm(self.end_time) - parse_hhmm(self.start_time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "patientId": self.patient_id,
            "date": self.date.isoformat(),
            "startTime": self.start_time,
            "endTime": self.end_time,
            "treatmentId": self.treatment_id,
            "treatmentTitle": self.treatment_title,
            "duration": self.duration,
            "machineId": self.machine_id,
            "providerId": self.provider_id,
            "status": self.status,
            "priority": self.priority,
            "notes": self.notes,
            "linkedAppointmentId": self.linked_appointment_id,
            "linkSequence": self.link_sequence,
        }


@dataclass(frozen=True)
class NewAppointment:
    """Fields for an appointment create call."""
    patient_id: int
    date: date
    start_time: str
    end_time: str
    treatment_id: Optional[int]
    machine_id: Optional[int] = None
    provider_id: Optional[int] = None
    status: str = "scheduled"
    priority: str = "normal"
    notes: Optional[str] = None
    treatment_title: Optional[str] = None
    duration: Optional[int] = None
    linked_appointment_id: Optional[int] = None
    link_sequence: Optional[int] = None


@dataclass(frozen=True)
class AppointmentChange:
    """Resolved per-member update computed from a GroupPatch."""
    appointment_id: int
    date: date
    start_time: str
    end_time: str
    status: str
    priority: str
    notes: Optional[str]


@dataclass(frozen=True)
class GroupPatch:
    """
    Fields applied uniformly to every member of a linked group.

    MISSING leaves a field unchanged; notes may be cleared with an explicit None.
    """
    date: Maybe[date] = MISSING
    start_time: Maybe[str] = MISSING
    notes: Maybe[Optional[str]] = MISSING
    priority: Maybe[str] = MISSING
    status: Maybe[str] = MISSING

    def is_empty(self) -> bool:
        return not any(
            is_set(value) for value in (self.date, self.start_time, self.notes, self.priority, self.status)
        )


@dataclass(frozen=True)
class OverlapCheck:
    has_overlap: bool
    conflicting_appointment_id: Optional[int] = None


@dataclass(frozen=True)
class DuplicationSignature:
    """What is needed to search for and rebook a copy of an appointment (or group)."""
    treatments: tuple[Treatment, ...]
    patient_id: int
    patient_name: str = ""
    provider_id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "treatments": [treatment.to_dict() for treatment in self.treatments],
            "patientId": self.patient_id,
            "patientName": self.patient_name,
            "providerId": self.provider_id,
        }


@dataclass(frozen=True)
class RebookOutcome:
    """Per-slot result of a bulk rebooking."""
    date: date
    start_time: str
    appointments: tuple[AppointmentRecord, ...] = ()
    error: Optional[str] = None
    error_type: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "startTime": self.start_time,
            "success": self.succeeded,
            "appointments": [appointment.to_dict() for appointment in self.appointments],
            "error": self.error,
            "type": self.error_type,
        }


@dataclass(frozen=True)
class ResourceInfo:
    """A machine or provider as listed by the resource directory."""
    id: int
    name: str
    is_active: bool = True
    is_overlappable: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "isActive": self.is_active,
            "isOverlappable": self.is_overlappable,
        }


@dataclass(frozen=True)
class ResourceListing:
    machines: tuple[ResourceInfo, ...] = ()
    providers: tuple[ResourceInfo, ...] = ()

    def active_provider_ids(self) -> List[int]:
        return [provider.id for provider in self.providers if provider.is_active]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "machines": [machine.to_dict() for machine in self.machines],
            "providers": [provider.to_dict() for provider in self.providers],
        }
