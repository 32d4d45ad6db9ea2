# pyright: reportMissingTypeStubs=false
"""
Provider availability API endpoints.

Week schedules resolve through the specific-week record, the provider's
template and the default schedule. Errors raised by the service are mapped
to HTTP responses by the application's exception handlers.
"""

import logging
from datetime import date as date_type
from typing import Any, Dict

from fastapi import APIRouter, Depends

from api.dependencies import get_availability_service
from api.schemas import SaveTemplateRequest, SaveWeekRequest
from services.availability_service import AvailabilityService
from shared_types.availability import AvailabilitySource
from utils.calendar_math import current_week, days_of_week, shift_week, validate_iso_week, weekday_name

logger = logging.getLogger(__name__)

router = APIRouter()


def _week_info(year: int, week: int) -> Dict[str, Any]:
    validate_iso_week(year, week)
    previous = shift_week(year, week, -1)
    following = shift_week(year, week, 1)
    return {
        "year": year,
        "week": week,
        "days": [
            {"date": day.isoformat(), "weekday": weekday_name(day)}
            for day in days_of_week(year, week)
        ],
        "previous": {"year": previous.year, "week": previous.week},
        "next": {"year": following.year, "week": following.week},
    }


# ===== Calendar helpers =====

@router.get("/weeks/current", summary="Get the current ISO week")
async def get_current_week() -> Dict[str, Any]:
    current = current_week()
    return _week_info(current.year, current.week)


@router.get("/weeks/{year}/{week}", summary="Get the dates of an ISO week")
async def get_week_info(year: int, week: int) -> Dict[str, Any]:
    return _week_info(year, week)


# ===== Week schedules =====

@router.get("/{provider_id}/week/{year}/{week}", summary="Get a provider's resolved week schedule")
async def get_week_availability(
    provider_id: int,
    year: int,
    week: int,
    service: AvailabilityService = Depends(get_availability_service)
) -> Dict[str, Any]:
    resolved = await service.resolve(provider_id, year, week)
    return resolved.to_dict()


@router.put("/{provider_id}/week/{year}/{week}", summary="Save a provider's week schedule")
async def save_week_availability(
    provider_id: int,
    year: int,
    week: int,
    request: SaveWeekRequest,
    service: AvailabilityService = Depends(get_availability_service)
) -> Dict[str, Any]:
    resolved = await service.save(provider_id, year, week, request.to_weekly(), notes=request.notes)
    return resolved.to_dict()


@router.delete("/{provider_id}/week/{year}/{week}", summary="Delete a provider's week schedule")
async def delete_week_availability(
    provider_id: int,
    year: int,
    week: int,
    service: AvailabilityService = Depends(get_availability_service)
) -> Dict[str, Any]:
    """Returns the week as it resolves after the deletion."""
    resolved = await service.delete_week(provider_id, year, week)
    return resolved.to_dict()


@router.post(
    "/{provider_id}/week/{year}/{week}/copy-from/{source_year}/{source_week}",
    summary="Copy another week's schedule"
)
async def copy_week_availability(
    provider_id: int,
    year: int,
    week: int,
    source_year: int,
    source_week: int,
    service: AvailabilityService = Depends(get_availability_service)
) -> Dict[str, Any]:
    resolved = await service.copy_from(provider_id, year, week, source_year, source_week)
    return resolved.to_dict()


@router.post("/{provider_id}/week/{year}/{week}/copy-previous", summary="Copy the previous week's schedule")
async def copy_previous_week_availability(
    provider_id: int,
    year: int,
    week: int,
    service: AvailabilityService = Depends(get_availability_service)
) -> Dict[str, Any]:
    resolved = await service.copy_from_previous(provider_id, year, week)
    return resolved.to_dict()


# ===== Template =====

@router.get("/{provider_id}/template", summary="Get a provider's availability template")
async def get_availability_template(
    provider_id: int,
    service: AvailabilityService = Depends(get_availability_service)
) -> Dict[str, Any]:
    resolved = await service.get_template(provider_id)
    return resolved.to_dict()


@router.put("/{provider_id}/template", summary="Save a provider's availability template")
async def save_availability_template(
    provider_id: int,
    request: SaveTemplateRequest,
    service: AvailabilityService = Depends(get_availability_service)
) -> Dict[str, Any]:
    weekly = await service.save_as_template(provider_id, request.to_weekly())
    return {
        "providerId": provider_id,
        "availability": weekly.to_dict(),
        "source": AvailabilitySource.TEMPLATE.value,
    }


@router.post("/{provider_id}/apply-template/{year}/{week}", summary="Apply the template to a week")
async def apply_availability_template(
    provider_id: int,
    year: int,
    week: int,
    service: AvailabilityService = Depends(get_availability_service)
) -> Dict[str, Any]:
    resolved = await service.apply_template(provider_id, year, week)
    return resolved.to_dict()


# ===== Effective availability =====

@router.get("/{provider_id}/effective/{day}", summary="Get a provider's open hours on a date")
async def get_effective_availability(
    provider_id: int,
    day: date_type,
    service: AvailabilityService = Depends(get_availability_service)
) -> Dict[str, Any]:
    effective = await service.effective_availability(provider_id, day)
    return effective.to_dict()
