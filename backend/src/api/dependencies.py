# pyright: reportMissingTypeStubs=false
"""
FastAPI dependencies wiring the services to a request.

Stores and services are built per request around the request's database
session. The slot-computation client is shared by the application and
created in the lifespan (see main.py).
"""

from functools import lru_cache

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from core.database import SessionLocal, get_db
from services.after_hours_service import AfterHoursEscalation
from services.appointment_store import SessionScopedProviderChecker, SqlAppointmentStore
from services.availability_service import AvailabilityService, ConfiguredClinicHours
from services.availability_store import SqlAvailabilityStore
from services.booking_service import BookingService
from services.duplication_service import DuplicationService
from services.resource_service import ResourceService
from services.scheduling_client import SchedulingServiceClient, SlotComputationService
from services.slot_search_service import SlotSearchService


@lru_cache(maxsize=1)
def get_clinic_hours() -> ConfiguredClinicHours:
    """Clinic operating hours, parsed once from configuration."""
    return ConfiguredClinicHours()


def get_slot_computation_service(request: Request) -> SlotComputationService:
    client = getattr(request.app.state, "scheduling_client", None)
    if client is None:
        client = SchedulingServiceClient()
        request.app.state.scheduling_client = client
    return client


def get_availability_service(
    db: AsyncSession = Depends(get_db),
    clinic_hours: ConfiguredClinicHours = Depends(get_clinic_hours)
) -> AvailabilityService:
    return AvailabilityService(SqlAvailabilityStore(db), clinic_hours)


def get_appointment_store(
    db: AsyncSession = Depends(get_db),
    availability_service: AvailabilityService = Depends(get_availability_service)
) -> SqlAppointmentStore:
    return SqlAppointmentStore(db, availability_service)


def get_resource_service(db: AsyncSession = Depends(get_db)) -> ResourceService:
    return ResourceService(db)


def get_booking_service(store: SqlAppointmentStore = Depends(get_appointment_store)) -> BookingService:
    return BookingService(store)


def get_slot_search_service(
    slot_service: SlotComputationService = Depends(get_slot_computation_service),
    clinic_hours: ConfiguredClinicHours = Depends(get_clinic_hours)
) -> SlotSearchService:
    # Per-day provider checks run concurrently; each opens its own session
    return SlotSearchService(slot_service, provider_checker=SessionScopedProviderChecker(SessionLocal, clinic_hours))


def get_escalation(search_service: SlotSearchService = Depends(get_slot_search_service)) -> AfterHoursEscalation:
    return AfterHoursEscalation(search_service)


def get_duplication_service(
    store: SqlAppointmentStore = Depends(get_appointment_store),
    escalation: AfterHoursEscalation = Depends(get_escalation),
    booking: BookingService = Depends(get_booking_service),
    resources: ResourceService = Depends(get_resource_service)
) -> DuplicationService:
    return DuplicationService(store, escalation, booking, resources=resources)
