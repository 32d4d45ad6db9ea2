# pyright: reportMissingTypeStubs=false
"""
Request models for the availability and planning API.

Wire names are camelCase (aliases); Python attributes are snake_case.
"""

from datetime import date as date_type
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from core.constants import DEFAULT_APPOINTMENT_PRIORITY, DEFAULT_TREATMENT_DURATION_MINUTES
from core.sentinels import MISSING
from shared_types.availability import DayAvailability, TimeRange, WeeklyAvailability
from shared_types.scheduling import (
    DuplicationSignature,
    GroupPatch,
    MultiSegmentSlot,
    SimpleSlot,
    SlotCandidate,
    SlotSegment,
    Treatment,
)
from utils.datetime_utils import parse_hhmm


class CamelModel(BaseModel):
    """Base model accepting both camelCase and snake_case field names."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ===== Availability =====

class TimeRangeModel(CamelModel):
    """Time range in "HH:MM" format."""
    start: str
    end: str


class DayAvailabilityModel(CamelModel):
    enabled: bool = False
    slots: List[TimeRangeModel] = []


class WeeklyAvailabilityModel(CamelModel):
    """Weekly schedule keyed by weekday name (monday..sunday)."""
    availability: Dict[str, DayAvailabilityModel]

    def to_weekly(self) -> WeeklyAvailability:
        return WeeklyAvailability(days={
            name: DayAvailability(
                enabled=day.enabled,
                slots=tuple(TimeRange(slot.start, slot.end) for slot in day.slots),
            )
            for name, day in self.availability.items()
        })


class SaveWeekRequest(WeeklyAvailabilityModel):
    notes: Optional[str] = None


class SaveTemplateRequest(WeeklyAvailabilityModel):
    pass


# ===== Planning =====

class TreatmentModel(CamelModel):
    treatment_id: int
    duration: int = DEFAULT_TREATMENT_DURATION_MINUTES
    title: str = ""

    def to_treatment(self) -> Treatment:
        return Treatment(treatment_id=self.treatment_id, duration=self.duration, title=self.title)


class SegmentModel(CamelModel):
    treatment_id: int
    start_time: str
    end_time: str
    duration: Optional[int] = None
    machine_id: Optional[int] = None
    is_overlappable: bool = False

    def to_segment(self) -> SlotSegment:
        duration = self.duration
        if duration is None:
            duration = parse_hhmm(self.end_time) - parse_hhmm(self.start_time)
        return SlotSegment(
            treatment_id=self.treatment_id,
            start_time=self.start_time,
            end_time=self.end_time,
            duration=duration,
            machine_id=self.machine_id,
            is_overlappable=self.is_overlappable,
        )


class SlotModel(CamelModel):
    """A slot as returned by search: simple, or multi with segments."""
    kind: Optional[Literal["simple", "multi"]] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    machine_id: Optional[int] = None
    is_overlappable: bool = False
    after_hours: bool = False
    segments: Optional[List[SegmentModel]] = None

    def to_candidate(self) -> SlotCandidate:
        """
        Raises:
            ValueError: If a simple slot has no start or end time
        """
        if self.kind == "multi" or (self.kind is None and self.segments):
            return MultiSegmentSlot(
                segments=tuple(segment.to_segment() for segment in self.segments or []),
                after_hours=self.after_hours,
            )
        if not self.start_time or not self.end_time:
            raise ValueError("Slot startTime and endTime are required")
        return SimpleSlot(
            start_time=self.start_time,
            end_time=self.end_time,
            machine_id=self.machine_id,
            is_overlappable=self.is_overlappable,
            after_hours=self.after_hours,
        )


class SlotSearchRequest(CamelModel):
    """
    Slot search request.

    The window is either explicit `dates`, or `days` workdays from
    `startDate` (tomorrow by default).
    """
    treatments: List[TreatmentModel]
    dates: Optional[List[date_type]] = None
    start_date: Optional[date_type] = None
    days: Optional[int] = Field(default=None, ge=0, le=31)
    machine_id: Optional[int] = None
    provider_id: Optional[int] = None
    relax: bool = False


class BookAppointmentRequest(CamelModel):
    patient_id: int
    date: date_type
    start_time: str
    end_time: str
    treatment_id: int
    treatment_title: Optional[str] = None
    machine_id: Optional[int] = None
    is_overlappable: bool = False
    provider_id: Optional[int] = None
    notes: Optional[str] = None
    priority: str = DEFAULT_APPOINTMENT_PRIORITY

    def to_slot(self) -> SimpleSlot:
        return SimpleSlot(
            start_time=self.start_time,
            end_time=self.end_time,
            machine_id=self.machine_id,
            is_overlappable=self.is_overlappable,
        )


class BookGroupRequest(CamelModel):
    patient_id: int
    date: date_type
    segments: List[SegmentModel]
    provider_id: Optional[int] = None
    notes: Optional[str] = None
    priority: str = DEFAULT_APPOINTMENT_PRIORITY
    treatment_titles: Dict[int, str] = {}

    def to_slot(self) -> MultiSegmentSlot:
        return MultiSegmentSlot(segments=tuple(segment.to_segment() for segment in self.segments))


class GroupUpdateRequest(CamelModel):
    """Fields left out of the request are not changed; notes may be cleared with null."""
    date: Optional[date_type] = None
    start_time: Optional[str] = None
    notes: Optional[str] = None
    priority: Optional[str] = None
    status: Optional[str] = None

    def to_patch(self) -> GroupPatch:
        sent = self.model_fields_set

        def pick(name: str):
            value = getattr(self, name)
            if name not in sent or (value is None and name != "notes"):
                return MISSING
            return value

        return GroupPatch(
            date=pick("date"),
            start_time=pick("start_time"),
            notes=pick("notes"),
            priority=pick("priority"),
            status=pick("status"),
        )


class SignatureModel(CamelModel):
    treatments: List[TreatmentModel]
    patient_id: int
    patient_name: str = ""
    provider_id: Optional[int] = None

    def to_signature(self) -> DuplicationSignature:
        return DuplicationSignature(
            treatments=tuple(treatment.to_treatment() for treatment in self.treatments),
            patient_id=self.patient_id,
            patient_name=self.patient_name,
            provider_id=self.provider_id,
        )


class DuplicationSearchRequest(CamelModel):
    signature: SignatureModel
    week_offset: int = Field(default=0, ge=0)
    machine_id: Optional[int] = None
    relax: bool = False


class SlotSelectionModel(CamelModel):
    date: date_type
    slot: SlotModel


class RebookRequest(CamelModel):
    signature: SignatureModel
    selections: List[SlotSelectionModel]
    provider_id: Optional[int] = None
    notes: Optional[str] = None
