"""
Slot search service: multi-day fan-out over the slot-computation service.

A search queries every day of its window concurrently, applies the machine
and provider filters to each day's slots, and publishes each day as a
DaySlots event as soon as that day is ready. The final SearchResult holds
the days with at least one slot, in date order.

Each day carries its own timeout. A failed or timed-out day is counted in
the diagnostics and left out of the result; it never aborts the other days.
Only when every day of a non-empty window fails is the search reported as
SlotServiceUnavailable (retryable).

Starting a new search on the same service supersedes the running one: its
tasks are cancelled and any completion that still arrives for the old
generation is dropped.
"""

import asyncio
import logging
from datetime import date
from typing import AsyncIterator, Callable, Dict, List, Optional, Protocol, Sequence

from core.config import PROVIDER_CHECK_TIMEOUT_SECONDS, SLOT_FETCH_TIMEOUT_SECONDS
from core.exceptions import (
    InvalidRequest,
    PerDayFetchFailure,
    SlotServiceUnavailable,
    StaleSearchGeneration,
)
from services.scheduling_client import SlotComputationService
from shared_types.scheduling import (
    DaySlots,
    SearchDiagnostics,
    SearchFilters,
    SearchResult,
    SlotCandidate,
    Treatment,
)

logger = logging.getLogger(__name__)


class ProviderAvailabilityChecker(Protocol):
    async def check_provider_availability(
        self,
        provider_id: int,
        day: date,
        start_time: str,
        end_time: str,
        exclude_ids: Sequence[int] = ()
    ) -> bool:
        ...


def validate_treatments(treatments: Sequence[Treatment]) -> None:
    """
    Raises:
        InvalidRequest: If there are no treatments or a duration is not positive
    """
    if not treatments:
        raise InvalidRequest("At least one treatment is required to search for slots")
    for treatment in treatments:
        if not isinstance(treatment.duration, int) or treatment.duration <= 0:
            raise InvalidRequest(
                f"Treatment {treatment.treatment_id} has invalid duration {treatment.duration!r} (must be > 0)"
            )


def filter_by_machine(slots: Sequence[SlotCandidate], machine_id: Optional[int]) -> List[SlotCandidate]:
    """Keep slots using the machine; a multi-segment slot matches if any segment does."""
    if machine_id is None:
        return list(slots)
    return [slot for slot in slots if machine_id in slot.machine_ids()]


class SlotSearch:
    """
    One running search: its generation, event channel and accumulator.

    Consume `events()` for incremental per-day results and/or await
    `result()` for the final aggregate.
    """

    def __init__(
        self,
        generation: int,
        days: Sequence[date],
        allow_after_hours: bool,
        current_generation: Callable[[], int]
    ):
        self.generation = generation
        self.days = list(days)
        self.allow_after_hours = allow_after_hours
        self.superseded = False
        self._current_generation = current_generation
        self._queue: "asyncio.Queue[Optional[DaySlots]]" = asyncio.Queue()
        self._slots_by_date: Dict[date, List[SlotCandidate]] = {}
        self._diagnostics = SearchDiagnostics(days_searched=len(self.days))
        self._runner: Optional["asyncio.Task[SearchResult]"] = None

    @property
    def is_current(self) -> bool:
        return not self.superseded and self.generation == self._current_generation()

    def publish(self, day: date, slots: List[SlotCandidate]) -> None:
        """
        Record one day's slots and emit a DaySlots event.

        Re-publishing a day replaces its slots. Empty days are not emitted.

        Raises:
            StaleSearchGeneration: If a newer search has superseded this one
        """
        if not self.is_current:
            raise StaleSearchGeneration(self.generation, self._current_generation())
        if not slots:
            self._slots_by_date.pop(day, None)
            return
        ordered = sorted(slots, key=lambda slot: slot.start_minutes)
        self._slots_by_date[day] = ordered
        self._queue.put_nowait(DaySlots(day=day, slots=tuple(ordered), generation=self.generation))

    def record_failure(self, failure: PerDayFetchFailure) -> None:
        if not self.is_current:
            return
        self._diagnostics.failed_days += 1
        self._diagnostics.failures.append(failure.message)
        logger.warning(failure.message)

    def finish(self) -> SearchResult:
        """Close the event channel and build the final result."""
        self._queue.put_nowait(None)
        slots_by_date = {day: self._slots_by_date[day] for day in sorted(self._slots_by_date)}
        self._diagnostics.days_with_slots = len(slots_by_date)
        self._diagnostics.total_slots = sum(len(slots) for slots in slots_by_date.values())
        return SearchResult(
            slots_by_date=slots_by_date,
            diagnostics=self._diagnostics,
            allow_after_hours=self.allow_after_hours,
        )

    def cancel(self) -> None:
        """Supersede this search: stop its fetches and close its channel."""
        self.superseded = True
        if self._runner is not None and not self._runner.done():
            self._runner.cancel()
        self._queue.put_nowait(None)

    async def events(self) -> AsyncIterator[DaySlots]:
        """Yield per-day results in arrival order until the search ends."""
        while True:
            event = await self._queue.get()
            if event is None:
                return
            yield event

    async def result(self) -> SearchResult:
        """
        Wait for every day to finish.

        Raises:
            SlotServiceUnavailable: If every day of a non-empty window failed
            StaleSearchGeneration: If the search was superseded before finishing
        """
        if self._runner is None:
            raise RuntimeError("Search was not started")
        try:
            return await self._runner
        except asyncio.CancelledError:
            if self.superseded:
                raise StaleSearchGeneration(self.generation, self._current_generation()) from None
            raise


class SlotSearchService:
    """
    Orchestrates slot searches against a slot-computation service.

    One instance is one search context (e.g. one booking dialog): starting a
    search supersedes the previous one started on the same instance.
    """

    def __init__(
        self,
        slot_service: SlotComputationService,
        provider_checker: Optional[ProviderAvailabilityChecker] = None,
        fetch_timeout: float = SLOT_FETCH_TIMEOUT_SECONDS,
        check_timeout: float = PROVIDER_CHECK_TIMEOUT_SECONDS
    ):
        self.slot_service = slot_service
        self.provider_checker = provider_checker
        self.fetch_timeout = fetch_timeout
        self.check_timeout = check_timeout
        self._generation = 0
        self._active: Optional[SlotSearch] = None

    @property
    def generation(self) -> int:
        return self._generation

    def start(
        self,
        treatments: Sequence[Treatment],
        window: Sequence[date],
        filters: Optional[SearchFilters] = None,
        allow_after_hours: bool = False
    ) -> SlotSearch:
        """
        Validate the request and start fetching every day of the window.

        Must be called from a running event loop.

        Raises:
            InvalidRequest: If treatments are missing or a duration is not positive
            InvalidRequest: If a provider filter is given without a provider checker
        """
        validate_treatments(treatments)
        filters = filters or SearchFilters()
        if filters.provider_id is not None and self.provider_checker is None:
            raise InvalidRequest("Provider filtering requires a provider availability checker")

        if self._active is not None:
            logger.debug(f"Superseding search generation {self._active.generation}")
            self._active.cancel()

        self._generation += 1
        search = SlotSearch(self._generation, window, allow_after_hours, lambda: self._generation)
        search._runner = asyncio.create_task(self._run(search, list(treatments), filters))
        self._active = search
        return search

    async def search(
        self,
        treatments: Sequence[Treatment],
        window: Sequence[date],
        filters: Optional[SearchFilters] = None,
        allow_after_hours: bool = False
    ) -> SearchResult:
        """
        Search every day of the window and return the aggregated result.

        Returns:
            SearchResult keyed by date (chronological), days without slots omitted

        Raises:
            InvalidRequest: If treatments are missing or a duration is not positive
            SlotServiceUnavailable: If every day of a non-empty window failed
        """
        return await self.start(treatments, window, filters, allow_after_hours).result()

    async def _run(self, search: SlotSearch, treatments: List[Treatment], filters: SearchFilters) -> SearchResult:
        tasks = [
            asyncio.create_task(self._search_day(search, day, treatments, filters))
            for day in search.days
        ]
        try:
            await asyncio.gather(*tasks, return_exceptions=True)
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            raise

        result = search.finish()
        diagnostics = result.diagnostics
        if search.days and diagnostics.failed_days == len(search.days):
            raise SlotServiceUnavailable(diagnostics.failed_days)
        logger.info(
            f"Search generation {search.generation}: {diagnostics.days_with_slots}/{diagnostics.days_searched} "
            f"day(s), {diagnostics.total_slots} slot(s), {diagnostics.failed_days} failure(s)"
        )
        return result

    async def _search_day(
        self,
        search: SlotSearch,
        day: date,
        treatments: List[Treatment],
        filters: SearchFilters
    ) -> None:
        try:
            slots = await asyncio.wait_for(
                self._fetch_day(day, treatments, search.allow_after_hours),
                timeout=self.fetch_timeout,
            )
            slots = filter_by_machine(slots, filters.machine_id)
            if filters.provider_id is not None:
                slots = await self._filter_by_provider(slots, day, filters.provider_id)
            search.publish(day, slots)
        except asyncio.CancelledError:
            raise
        except StaleSearchGeneration as e:
            logger.debug(f"Dropping stale result for {day.isoformat()}: {e.message}")
        except Exception as e:
            search.record_failure(PerDayFetchFailure(day, e))

    async def _fetch_day(
        self,
        day: date,
        treatments: List[Treatment],
        allow_after_hours: bool
    ) -> List[SlotCandidate]:
        if len(treatments) == 1:
            treatment = treatments[0]
            return list(await self.slot_service.get_slots(
                day, treatment.treatment_id, treatment.duration, allow_after_hours
            ))
        return list(await self.slot_service.get_multi_treatment_slots(day, treatments, allow_after_hours))

    async def _filter_by_provider(
        self,
        slots: List[SlotCandidate],
        day: date,
        provider_id: int
    ) -> List[SlotCandidate]:
        """Check each slot's full window in slot order; a failed check fails the day."""
        checker = self.provider_checker
        if checker is None:
            raise InvalidRequest("Provider filtering requires a provider availability checker")
        kept: List[SlotCandidate] = []
        for slot in slots:
            available = await asyncio.wait_for(
                checker.check_provider_availability(
                    provider_id, day, slot.start_time, slot.end_time
                ),
                timeout=self.check_timeout,
            )
            if available:
                kept.append(slot)
        return kept
