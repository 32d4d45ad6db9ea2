"""
Services package for shared business logic.

This package contains the availability resolution, slot search, booking and
duplication services, and the stores and clients they run against.
"""

from .availability_service import AvailabilityService, ConfiguredClinicHours
from .availability_store import SqlAvailabilityStore
from .appointment_store import SqlAppointmentStore
from .resource_service import ResourceService
from .scheduling_client import SchedulingServiceClient
from .slot_search_service import SlotSearchService
from .after_hours_service import AfterHoursEscalation
from .booking_service import BookingService
from .duplication_service import DuplicationService

__all__ = [
    "AvailabilityService",
    "ConfiguredClinicHours",
    "SqlAvailabilityStore",
    "SqlAppointmentStore",
    "ResourceService",
    "SchedulingServiceClient",
    "SlotSearchService",
    "AfterHoursEscalation",
    "BookingService",
    "DuplicationService",
]
