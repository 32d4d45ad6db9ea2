"""
After-hours escalation around the slot search.

Phase 1 searches within clinic hours only. An empty strict result is
reported as EMPTY_STRICT so the caller can offer after-hours slots; the
relaxed search (phase 2) only runs when the caller asks for it, and at most
once per search action.

    IDLE -> SEARCHING_STRICT -> FOUND | EMPTY_STRICT
         -> SEARCHING_RELAXED -> FOUND | EMPTY_RELAXED
"""

import logging
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import List, Optional, Sequence

from core.exceptions import InvalidRequest
from services.slot_search_service import SlotSearchService
from shared_types.scheduling import SearchFilters, SearchResult, Treatment

logger = logging.getLogger(__name__)


class EscalationState(str, Enum):
    IDLE = "idle"
    SEARCHING_STRICT = "searching_strict"
    FOUND = "found"
    EMPTY_STRICT = "empty_strict"
    SEARCHING_RELAXED = "searching_relaxed"
    EMPTY_RELAXED = "empty_relaxed"


@dataclass
class EscalationOutcome:
    """
    What the caller shows after a search action.

    result is the relaxed result when relaxation ran, otherwise the strict one.
    """
    state: EscalationState
    result: SearchResult
    strict_result: SearchResult
    relaxed: bool = False

    @property
    def can_relax(self) -> bool:
        """True while the after-hours search may still be offered."""
        return not self.relaxed

    def to_dict(self) -> dict:
        data = self.result.to_dict()
        data.update({
            "state": self.state.value,
            "relaxed": self.relaxed,
            "canRelax": self.can_relax,
            "strictEmpty": self.strict_result.is_empty,
        })
        return data


class AfterHoursEscalation:
    """
    Two-phase search policy for one search context.

    Call `search()` for a new user search action, then optionally `relax()`
    once to re-run the same request with after-hours slots allowed.
    """

    def __init__(self, search_service: SlotSearchService):
        self.search_service = search_service
        self.state = EscalationState.IDLE
        self._request: Optional[tuple[List[Treatment], List[date], SearchFilters]] = None
        self._strict_result: Optional[SearchResult] = None
        self._relaxed = False

    async def search(
        self,
        treatments: Sequence[Treatment],
        window: Sequence[date],
        filters: Optional[SearchFilters] = None
    ) -> EscalationOutcome:
        """
        Start a new search action with the strict (clinic hours) search.

        Raises:
            InvalidRequest: If the treatments are invalid
            SlotServiceUnavailable: If every day failed
        """
        self._request = (list(treatments), list(window), filters or SearchFilters())
        self._strict_result = None
        self._relaxed = False
        self.state = EscalationState.SEARCHING_STRICT
        try:
            result = await self.search_service.search(
                self._request[0], self._request[1], self._request[2], allow_after_hours=False
            )
        except Exception:
            self.state = EscalationState.IDLE
            raise

        self._strict_result = result
        self.state = EscalationState.EMPTY_STRICT if result.is_empty else EscalationState.FOUND
        if result.is_empty:
            logger.info("No slots within clinic hours; after-hours search can be offered")
        return EscalationOutcome(state=self.state, result=result, strict_result=result)

    async def relax(self) -> EscalationOutcome:
        """
        Re-run the current search action allowing after-hours slots.

        Raises:
            InvalidRequest: If no strict search has completed, or this search
                action was already relaxed
        """
        if self._request is None or self._strict_result is None:
            raise InvalidRequest("Run a search before requesting after-hours slots")
        if self._relaxed:
            raise InvalidRequest("After-hours search was already performed for this search")

        self._relaxed = True
        previous_state = self.state
        self.state = EscalationState.SEARCHING_RELAXED
        try:
            result = await self.search_service.search(
                self._request[0], self._request[1], self._request[2], allow_after_hours=True
            )
        except Exception:
            self.state = previous_state
            self._relaxed = False
            raise

        self.state = EscalationState.EMPTY_RELAXED if result.is_empty else EscalationState.FOUND
        logger.info(
            f"After-hours search: {result.diagnostics.total_slots} slot(s) over "
            f"{result.diagnostics.days_with_slots} day(s)"
        )
        return EscalationOutcome(
            state=self.state, result=result, strict_result=self._strict_result, relaxed=True
        )

    async def search_with_escalation(
        self,
        treatments: Sequence[Treatment],
        window: Sequence[date],
        filters: Optional[SearchFilters] = None,
        relax: bool = False
    ) -> EscalationOutcome:
        """
        Strict search, followed by the relaxed search when the caller asked for it.

        An empty strict result without relax=True is returned as EMPTY_STRICT;
        relaxation is never performed without the caller's request.
        """
        outcome = await self.search(treatments, window, filters)
        if relax:
            return await self.relax()
        return outcome
