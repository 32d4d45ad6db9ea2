"""
HTTP client for the external slot-computation service.

The service owns the geometric slot generation (free windows for a duration
within a day's open intervals). This client only queries it and converts its
camelCase payloads into SimpleSlot / MultiSegmentSlot values.
"""

import logging
from datetime import date
from typing import Any, Dict, List, Optional, Protocol, Sequence

import httpx

from core.config import SCHEDULING_SERVICE_TOKEN, SCHEDULING_SERVICE_URL, SLOT_FETCH_TIMEOUT_SECONDS
from shared_types.scheduling import MultiSegmentSlot, SimpleSlot, SlotSegment, Treatment
from utils.datetime_utils import normalize_hhmm, parse_hhmm

logger = logging.getLogger(__name__)


class SlotComputationService(Protocol):
    """Slot-computation capability. Returns [] (not an error) when a day has no slots."""

    async def get_slots(
        self,
        day: date,
        treatment_id: int,
        duration: int,
        allow_after_hours: bool
    ) -> List[SimpleSlot]:
        ...

    async def get_multi_treatment_slots(
        self,
        day: date,
        treatments: Sequence[Treatment],
        allow_after_hours: bool
    ) -> List[MultiSegmentSlot]:
        ...


class SchedulingServiceClient:
    """
    SlotComputationService over HTTP (httpx.AsyncClient).

    Transport errors and non-2xx responses propagate as httpx exceptions; the
    slot search treats them as per-day failures.
    """

    def __init__(
        self,
        base_url: str = SCHEDULING_SERVICE_URL,
        token: str = SCHEDULING_SERVICE_TOKEN,
        timeout: float = SLOT_FETCH_TIMEOUT_SECONDS,
        client: Optional[httpx.AsyncClient] = None
    ):
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(base_url=base_url, headers=headers, timeout=timeout)

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def __aenter__(self) -> "SchedulingServiceClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def get_slots(
        self,
        day: date,
        treatment_id: int,
        duration: int,
        allow_after_hours: bool
    ) -> List[SimpleSlot]:
        response = await self.client.get(
            "/slots",
            params={
                "date": day.isoformat(),
                "category": "treatment",
                "treatmentId": str(treatment_id),
                "duration": str(duration),
                "allowAfterHours": "true" if allow_after_hours else "false",
            },
        )
        response.raise_for_status()
        slots = [parse_simple_slot(item) for item in extract_slot_list(response.json())]
        logger.debug(f"Fetched {len(slots)} slot(s) for {day.isoformat()} treatment {treatment_id}")
        return slots

    async def get_multi_treatment_slots(
        self,
        day: date,
        treatments: Sequence[Treatment],
        allow_after_hours: bool
    ) -> List[MultiSegmentSlot]:
        response = await self.client.post(
            "/slots/multi-treatment",
            json={
                "date": day.isoformat(),
                "treatments": [
                    {"treatmentId": treatment.treatment_id, "duration": treatment.duration}
                    for treatment in treatments
                ],
                "allowAfterHours": allow_after_hours,
            },
        )
        response.raise_for_status()
        slots = [parse_multi_segment_slot(item) for item in extract_slot_list(response.json())]
        logger.debug(f"Fetched {len(slots)} multi-treatment slot(s) for {day.isoformat()}")
        return slots


def extract_slot_list(payload: Any) -> List[Dict[str, Any]]:
    """
    Pull the slot array out of a response body.

    Accepts a bare array, {"data": ...} envelopes, and {"slots"|"allSlots": [...]}
    objects. An envelope with success=false means no slots for the day.
    """
    if isinstance(payload, dict) and "success" in payload and not payload.get("success"):
        logger.debug(f"Slot service reported no result: {payload.get('message')}")
        return []
    if isinstance(payload, dict) and "data" in payload:
        payload = payload["data"]
    if payload is None:
        return []
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        slots = payload.get("slots") or payload.get("allSlots") or []
        if isinstance(slots, list):
            return slots
    raise ValueError(f"Unexpected slot payload shape: {type(payload).__name__}")


def _optional_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    return int(value)


def _time_field(item: Dict[str, Any], name: str, fallback: str) -> str:
    value = item.get(name) or item.get(fallback)
    if value is None:
        raise ValueError(f"Slot is missing {name}: {item!r}")
    return normalize_hhmm(value)


def parse_simple_slot(item: Dict[str, Any]) -> SimpleSlot:
    return SimpleSlot(
        start_time=_time_field(item, "startTime", "start"),
        end_time=_time_field(item, "endTime", "end"),
        machine_id=_optional_int(item.get("machineId")),
        is_overlappable=bool(item.get("isOverlappable", False)),
        after_hours=bool(item.get("afterHours", False)),
    )


def parse_multi_segment_slot(item: Dict[str, Any]) -> MultiSegmentSlot:
    """
    Parse a multi-segment slot, ordering its segments by start time.

    Raises:
        ValueError: If the slot has no segments
    """
    raw_segments = item.get("segments") or []
    if not raw_segments:
        raise ValueError(f"Multi-treatment slot has no segments: {item!r}")
    segments = [_parse_segment(segment) for segment in raw_segments]
    segments.sort(key=lambda segment: segment.start_time)
    return MultiSegmentSlot(segments=tuple(segments), after_hours=bool(item.get("afterHours", False)))


def _parse_segment(segment: Dict[str, Any]) -> SlotSegment:
    start_time = _time_field(segment, "startTime", "start")
    end_time = _time_field(segment, "endTime", "end")
    duration = segment.get("duration") or parse_hhmm(end_time) - parse_hhmm(start_time)
    return SlotSegment(
        treatment_id=int(segment["treatmentId"]),
        start_time=start_time,
        end_time=end_time,
        duration=int(duration),
        machine_id=_optional_int(segment.get("machineId")),
        is_overlappable=bool(segment.get("isOverlappable", False)),
    )
