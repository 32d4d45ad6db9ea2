"""
Shared type definitions for the clinic planning backend.

This module contains dataclasses and types that are used across multiple services.
"""

from shared_types.availability import (
    AvailabilitySource,
    DayAvailability,
    EffectiveAvailability,
    ResolvedAvailability,
    StoredAvailability,
    TimeRange,
    WeeklyAvailability,
)
from shared_types.scheduling import (
    AppointmentChange,
    AppointmentRecord,
    DaySlots,
    DuplicationSignature,
    GroupPatch,
    MultiSegmentSlot,
    NewAppointment,
    OverlapCheck,
    RebookOutcome,
    ResourceInfo,
    ResourceListing,
    SearchDiagnostics,
    SearchFilters,
    SearchResult,
    SimpleSlot,
    SlotCandidate,
    SlotSegment,
    Treatment,
)

__all__ = [
    "AppointmentChange",
    "AppointmentRecord",
    "AvailabilitySource",
    "DayAvailability",
    "DaySlots",
    "DuplicationSignature",
    "EffectiveAvailability",
    "GroupPatch",
    "MultiSegmentSlot",
    "NewAppointment",
    "OverlapCheck",
    "RebookOutcome",
    "ResolvedAvailability",
    "ResourceInfo",
    "ResourceListing",
    "SearchDiagnostics",
    "SearchFilters",
    "SearchResult",
    "SimpleSlot",
    "SlotCandidate",
    "SlotSegment",
    "StoredAvailability",
    "TimeRange",
    "Treatment",
    "WeeklyAvailability",
]
