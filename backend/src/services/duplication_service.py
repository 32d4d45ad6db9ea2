"""
Duplication service: rebook an existing appointment (or linked group) on a new date.

The signature of an appointment (its treatments, patient and provider) is
extracted, linked groups being resolved to every member's treatment in
link_sequence order. The signature is then searched through the after-hours
escalation over a window of workdays starting after today, and each chosen
slot is committed through the booking service.
"""

import json
import logging
from datetime import date, timedelta
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from core.config import SEARCH_WINDOW_DAYS
from core.constants import DEFAULT_TREATMENT_DURATION_MINUTES, DUPLICATION_PAGE_DAYS
from core.exceptions import AppointmentNotFound, InvalidRequest, SchedulingError
from services.after_hours_service import AfterHoursEscalation, EscalationOutcome
from services.appointment_store import AppointmentStore
from services.booking_service import BookingService
from services.resource_service import ResourceDirectory
from shared_types.scheduling import (
    AppointmentRecord,
    DuplicationSignature,
    RebookOutcome,
    SearchFilters,
    SlotCandidate,
    Treatment,
)
from utils.calendar_math import workdays_from
from utils.datetime_utils import clinic_today

logger = logging.getLogger(__name__)


def serialize_signature_params(signature: DuplicationSignature) -> Dict[str, str]:
    """Encode a signature as query parameters for navigation to the booking screen."""
    params = {
        "duplicate": "1",
        "patientId": str(signature.patient_id),
        "patientName": signature.patient_name or "",
    }
    if signature.provider_id is not None:
        params["providerId"] = str(signature.provider_id)
    params["treatments"] = json.dumps([
        {"id": treatment.treatment_id, "title": treatment.title, "duration": treatment.duration}
        for treatment in signature.treatments
    ])
    return params


def parse_signature_params(params: Mapping[str, str]) -> Optional[DuplicationSignature]:
    """
    Decode signature query parameters.

    Returns None when duplicate != "1", or the treatments are missing,
    malformed or empty.
    """
    if params.get("duplicate") != "1":
        return None
    try:
        raw_treatments = json.loads(params.get("treatments") or "[]")
        if not isinstance(raw_treatments, list) or not raw_treatments:
            return None
        treatments = tuple(
            Treatment(
                treatment_id=int(item["id"]),
                duration=int(item.get("duration") or DEFAULT_TREATMENT_DURATION_MINUTES),
                title=str(item.get("title") or ""),
            )
            for item in raw_treatments
        )
        patient_id = int(params.get("patientId") or "")
        provider_raw = params.get("providerId")
        provider_id = int(provider_raw) if provider_raw else None
    except (ValueError, TypeError, KeyError, AttributeError):
        return None
    return DuplicationSignature(
        treatments=treatments,
        patient_id=patient_id,
        patient_name=params.get("patientName") or "",
        provider_id=provider_id,
    )


def _treatment_of(appointment: AppointmentRecord) -> Treatment:
    return Treatment(
        treatment_id=appointment.treatment_id,  # type: ignore[arg-type]
        duration=appointment.duration or DEFAULT_TREATMENT_DURATION_MINUTES,
        title=appointment.treatment_title or "",
    )


class DuplicationService:
    """Extracts duplication signatures and drives search and rebooking for them."""

    def __init__(
        self,
        store: AppointmentStore,
        escalation: AfterHoursEscalation,
        booking: BookingService,
        resources: Optional[ResourceDirectory] = None,
        today: Callable[[], date] = clinic_today
    ):
        self.store = store
        self.escalation = escalation
        self.booking = booking
        self.resources = resources
        self.today = today

    async def extract_signature(self, appointment: Union[AppointmentRecord, int]) -> DuplicationSignature:
        """
        Extract the treatments, patient and provider of an appointment.

        For a linked appointment the whole group is fetched and each member
        with treatment data contributes its treatment, in link_sequence
        order. If no member has treatment data (or the group cannot be
        found) the appointment itself is used.

        Raises:
            AppointmentNotFound: If given an id that does not exist
            InvalidRequest: If there is no treatment to duplicate
        """
        if isinstance(appointment, int):
            record = await self.store.get_appointment(appointment)
            if record is None:
                raise AppointmentNotFound(appointment)
            appointment = record

        treatments: List[Treatment] = []
        if appointment.is_linked:
            group = sorted(
                await self.store.get_appointment_group(appointment.group_id),
                key=lambda member: member.link_sequence or 0,
            )
            treatments = [_treatment_of(member) for member in group if member.treatment_id is not None]
            if not treatments:
                logger.warning(
                    f"Linked group {appointment.group_id} has no treatment data; "
                    f"using appointment {appointment.id}"
                )

        if not treatments:
            if appointment.treatment_id is None:
                raise InvalidRequest(f"Appointment {appointment.id} has no treatment to duplicate")
            treatments = [_treatment_of(appointment)]

        patient_name = await self.store.get_patient_name(appointment.patient_id)
        return DuplicationSignature(
            treatments=tuple(treatments),
            patient_id=appointment.patient_id,
            patient_name=patient_name or "",
            provider_id=appointment.provider_id,
        )

    def search_window(self, week_offset: int = 0) -> List[date]:
        """
        Workdays to search: starting the day after today, shifted by whole weeks.

        Raises:
            InvalidRequest: If week_offset is negative
        """
        if week_offset < 0:
            raise InvalidRequest("Cannot search before tomorrow")
        start = self.today() + timedelta(days=1 + DUPLICATION_PAGE_DAYS * week_offset)
        return workdays_from(start, SEARCH_WINDOW_DAYS)

    async def search(
        self,
        signature: DuplicationSignature,
        week_offset: int = 0,
        machine_id: Optional[int] = None,
        relax: bool = False
    ) -> EscalationOutcome:
        """Search the signature's treatments over the duplication window."""
        window = self.search_window(week_offset)
        logger.info(
            f"Duplication search for patient {signature.patient_id}: {len(signature.treatments)} treatment(s) "
            f"over {len(window)} workday(s), week offset {week_offset}"
        )
        return await self.escalation.search_with_escalation(
            list(signature.treatments),
            window,
            SearchFilters(machine_id=machine_id),
            relax=relax,
        )

    async def default_provider(self, signature: DuplicationSignature) -> Optional[int]:
        """The signature's provider, unless it is no longer active."""
        if signature.provider_id is None or self.resources is None:
            return signature.provider_id
        listing = await self.resources.get_resources()
        if signature.provider_id in listing.active_provider_ids():
            return signature.provider_id
        logger.info(f"Provider {signature.provider_id} is inactive; rebooking without provider")
        return None

    async def rebook(
        self,
        signature: DuplicationSignature,
        day: date,
        slot: SlotCandidate,
        provider_id: Optional[int] = None,
        notes: Optional[str] = None
    ) -> List[AppointmentRecord]:
        """
        Book one chosen slot for the signature.

        A multi-segment slot becomes a linked group, a simple slot a single
        appointment for the signature's only treatment.

        Raises:
            InvalidRequest: If the slot shape does not match the signature
            BookingConflict: If the slot can no longer be booked
        """
        if slot.kind == "multi":
            titles = {treatment.treatment_id: treatment.title for treatment in signature.treatments}
            return await self.booking.book_group(
                signature.patient_id, day, slot, provider_id=provider_id, notes=notes, treatment_titles=titles
            )
        if len(signature.treatments) != 1:
            raise InvalidRequest(
                f"A single slot cannot hold {len(signature.treatments)} treatments; choose a multi-treatment slot"
            )
        treatment = signature.treatments[0]
        appointment = await self.booking.book(
            signature.patient_id,
            day,
            slot,
            treatment.treatment_id,
            provider_id=provider_id,
            notes=notes,
            treatment_title=treatment.title or None,
        )
        return [appointment]

    async def rebook_selected(
        self,
        signature: DuplicationSignature,
        selections: Sequence[Tuple[date, SlotCandidate]],
        provider_id: Optional[int] = None,
        notes: Optional[str] = None,
        use_default_provider: bool = True
    ) -> List[RebookOutcome]:
        """
        Book several chosen slots one after another.

        Each slot is an independent booking; a failed slot is reported and the
        remaining slots are still attempted.
        """
        if provider_id is None and use_default_provider:
            provider_id = await self.default_provider(signature)

        outcomes: List[RebookOutcome] = []
        for day, slot in selections:
            try:
                appointments = await self.rebook(signature, day, slot, provider_id=provider_id, notes=notes)
                outcomes.append(RebookOutcome(date=day, start_time=slot.start_time, appointments=tuple(appointments)))
            except SchedulingError as e:
                logger.warning(f"Rebooking {day.isoformat()} {slot.start_time} failed: {e.message}")
                outcomes.append(RebookOutcome(
                    date=day, start_time=slot.start_time, error=e.message, error_type=e.code
                ))

        succeeded = sum(1 for outcome in outcomes if outcome.succeeded)
        logger.info(f"Rebooked {succeeded}/{len(outcomes)} slot(s) for patient {signature.patient_id}")
        return outcomes
