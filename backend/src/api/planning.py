# pyright: reportMissingTypeStubs=false
"""
Planning API endpoints: resources, slot search, booking and duplication.

Slot searches run strict (clinic hours) first; `relax: true` also runs the
after-hours search in the same request. Booking conflicts and validation
errors are mapped to HTTP responses by the application's exception handlers.
"""

import logging
from datetime import timedelta
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, Query, Request, status

from api.dependencies import (
    get_booking_service,
    get_duplication_service,
    get_escalation,
    get_resource_service,
)
from api.schemas import (
    BookAppointmentRequest,
    BookGroupRequest,
    DuplicationSearchRequest,
    GroupUpdateRequest,
    RebookRequest,
    SlotSearchRequest,
)
from core.config import SEARCH_WINDOW_DAYS
from services.after_hours_service import AfterHoursEscalation
from services.booking_service import BookingService
from services.duplication_service import (
    DuplicationService,
    parse_signature_params,
    serialize_signature_params,
)
from services.resource_service import ResourceService
from shared_types.scheduling import AppointmentRecord, SearchFilters
from utils.calendar_math import workdays_from
from utils.datetime_utils import clinic_today

logger = logging.getLogger(__name__)

router = APIRouter()


def _appointments_payload(appointments: List[AppointmentRecord]) -> Dict[str, Any]:
    return {"appointments": [appointment.to_dict() for appointment in appointments]}


# ===== Resources =====

@router.get("/resources", summary="List machines and providers")
async def list_resources(
    include_inactive: bool = Query(False, alias="includeInactive"),
    resources: ResourceService = Depends(get_resource_service)
) -> Dict[str, Any]:
    listing = await resources.get_resources(include_inactive=include_inactive)
    return listing.to_dict()


# ===== Slot search =====

@router.post("/slots/search", summary="Search available slots over a date window")
async def search_slots(
    request: SlotSearchRequest,
    escalation: AfterHoursEscalation = Depends(get_escalation)
) -> Dict[str, Any]:
    """
    Search the window for the requested treatments.

    The window is the explicit `dates`, or `days` workdays (default
    SEARCH_WINDOW_DAYS) from `startDate` (default tomorrow).
    """
    if request.dates:
        window = sorted(set(request.dates))
    else:
        start = request.start_date or clinic_today() + timedelta(days=1)
        window = workdays_from(start, request.days if request.days is not None else SEARCH_WINDOW_DAYS)

    outcome = await escalation.search_with_escalation(
        [treatment.to_treatment() for treatment in request.treatments],
        window,
        SearchFilters(machine_id=request.machine_id, provider_id=request.provider_id),
        relax=request.relax,
    )
    return outcome.to_dict()


# ===== Appointments =====

@router.post("/appointments", status_code=status.HTTP_201_CREATED, summary="Book a single appointment")
async def create_appointment(
    request: BookAppointmentRequest,
    booking: BookingService = Depends(get_booking_service)
) -> Dict[str, Any]:
    appointment = await booking.book(
        request.patient_id,
        request.date,
        request.to_slot(),
        request.treatment_id,
        provider_id=request.provider_id,
        notes=request.notes,
        priority=request.priority,
        treatment_title=request.treatment_title,
    )
    return appointment.to_dict()


@router.post(
    "/appointments/multi-treatment",
    status_code=status.HTTP_201_CREATED,
    summary="Book a linked multi-treatment group"
)
async def create_appointment_group(
    request: BookGroupRequest,
    booking: BookingService = Depends(get_booking_service)
) -> Dict[str, Any]:
    appointments = await booking.book_group(
        request.patient_id,
        request.date,
        request.to_slot(),
        provider_id=request.provider_id,
        notes=request.notes,
        priority=request.priority,
        treatment_titles=request.treatment_titles,
    )
    return _appointments_payload(appointments)


@router.get("/appointments/group/{group_id}", summary="Get a linked appointment group")
async def get_appointment_group(
    group_id: int,
    booking: BookingService = Depends(get_booking_service)
) -> Dict[str, Any]:
    return _appointments_payload(await booking.get_group(group_id))


@router.put("/appointments/group/{group_id}", summary="Update a linked appointment group")
async def update_appointment_group(
    group_id: int,
    request: GroupUpdateRequest,
    booking: BookingService = Depends(get_booking_service)
) -> Dict[str, Any]:
    """Moving the group keeps its segments contiguous from the new start time."""
    return _appointments_payload(await booking.update_group(group_id, request.to_patch()))


@router.delete("/appointments/group/{group_id}", summary="Cancel a linked appointment group")
async def cancel_appointment_group(
    group_id: int,
    booking: BookingService = Depends(get_booking_service)
) -> Dict[str, Any]:
    return _appointments_payload(await booking.cancel_group(group_id))


@router.delete("/appointments/{appointment_id}", summary="Cancel an appointment and its linked group")
async def cancel_appointment(
    appointment_id: int,
    booking: BookingService = Depends(get_booking_service)
) -> Dict[str, Any]:
    return _appointments_payload(await booking.cancel_appointment(appointment_id))


# ===== Duplication =====

@router.get("/appointments/{appointment_id}/duplicate", summary="Get the duplication signature of an appointment")
async def get_duplication_signature(
    appointment_id: int,
    duplication: DuplicationService = Depends(get_duplication_service)
) -> Dict[str, Any]:
    signature = await duplication.extract_signature(appointment_id)
    return {
        "signature": signature.to_dict(),
        "params": serialize_signature_params(signature),
    }


@router.get("/duplicate/signature", summary="Decode duplication query parameters")
async def decode_duplication_signature(request: Request) -> Dict[str, Any]:
    """Returns `signature: null` when the parameters are missing or malformed."""
    signature = parse_signature_params(request.query_params)
    return {"signature": signature.to_dict() if signature is not None else None}


@router.post("/duplicate/search", summary="Search slots to rebook a signature")
async def search_duplication_slots(
    request: DuplicationSearchRequest,
    duplication: DuplicationService = Depends(get_duplication_service)
) -> Dict[str, Any]:
    signature = request.signature.to_signature()
    window = duplication.search_window(request.week_offset)
    outcome = await duplication.search(
        signature, week_offset=request.week_offset, machine_id=request.machine_id, relax=request.relax
    )
    data = outcome.to_dict()
    data["window"] = [day.isoformat() for day in window]
    data["weekOffset"] = request.week_offset
    return data


@router.post("/duplicate/book", summary="Book the selected slots for a signature")
async def book_duplication_slots(
    request: RebookRequest,
    duplication: DuplicationService = Depends(get_duplication_service)
) -> Dict[str, Any]:
    """Each selected slot is booked independently; failures are reported per slot."""
    selections = [(selection.date, selection.slot.to_candidate()) for selection in request.selections]
    outcomes = await duplication.rebook_selected(
        request.signature.to_signature(),
        selections,
        provider_id=request.provider_id,
        notes=request.notes,
    )
    return {
        "results": [outcome.to_dict() for outcome in outcomes],
        "succeeded": sum(1 for outcome in outcomes if outcome.succeeded),
        "failed": sum(1 for outcome in outcomes if not outcome.succeeded),
    }
