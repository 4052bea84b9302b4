# SAP B1 Query MCP Server
# File: pagination.py
# Version: v2

"""End-of-data detection for Service Layer paging.

The Service Layer does not reliably report a total count and may silently
cap page sizes below what was asked for. Termination is therefore modelled
as a small state machine: every page produces an event, and the transition
table decides whether paging continues.

    PROBING --rows--> PROBING
    PROBING --empty--> DRAINING_TAIL --empty (tolerance spent)--> EXHAUSTED
    DRAINING_TAIL --rows--> PROBING
    any live state --limit--> LIMIT_REACHED
    any live state --count met--> COUNT_SATISFIED
    any live state --ceiling--> SAFETY_CEILING
    any live state --no array--> SINGLE_OBJECT
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .config import B1Config
from .models import Row

logger = logging.getLogger(__name__)

# Spellings the Service Layer has been seen to use for the inline count.
TOTAL_COUNT_FIELDS = ("@odata.count", "odata.count", "count", "odata.totalCount")


class PageState(str, enum.Enum):
    PROBING = "probing"
    DRAINING_TAIL = "draining_tail"
    EXHAUSTED = "exhausted"
    LIMIT_REACHED = "limit_reached"
    COUNT_SATISFIED = "count_satisfied"
    SAFETY_CEILING = "safety_ceiling"
    SINGLE_OBJECT = "single_object"


class PageEvent(str, enum.Enum):
    ROWS = "rows"
    EMPTY = "empty"
    EMPTY_TOLERANCE_SPENT = "empty_tolerance_spent"
    LIMIT = "limit"
    COUNT_MET = "count_met"
    CEILING = "ceiling"
    NO_ARRAY = "no_array"


LIVE_STATES = frozenset({PageState.PROBING, PageState.DRAINING_TAIL})

TRANSITIONS: Dict[Tuple[PageState, PageEvent], PageState] = {
    (PageState.PROBING, PageEvent.ROWS): PageState.PROBING,
    (PageState.PROBING, PageEvent.EMPTY): PageState.DRAINING_TAIL,
    (PageState.DRAINING_TAIL, PageEvent.ROWS): PageState.PROBING,
    (PageState.DRAINING_TAIL, PageEvent.EMPTY): PageState.DRAINING_TAIL,
}
for _state in LIVE_STATES:
    TRANSITIONS[(_state, PageEvent.EMPTY_TOLERANCE_SPENT)] = PageState.EXHAUSTED
    TRANSITIONS[(_state, PageEvent.LIMIT)] = PageState.LIMIT_REACHED
    TRANSITIONS[(_state, PageEvent.COUNT_MET)] = PageState.COUNT_SATISFIED
    TRANSITIONS[(_state, PageEvent.CEILING)] = PageState.SAFETY_CEILING
    TRANSITIONS[(_state, PageEvent.NO_ARRAY)] = PageState.SINGLE_OBJECT


def transition(state: PageState, event: PageEvent) -> PageState:
    try:
        return TRANSITIONS[(state, event)]
    except KeyError:
        raise ValueError(f"No transition from {state.value} on {event.value}") from None


def read_total_count(payload: Mapping[str, Any]) -> Optional[int]:
    """Return the first usable total-count hint in a page payload."""
    for key in TOTAL_COUNT_FIELDS:
        raw = payload.get(key)
        if raw is None:
            continue
        try:
            return int(str(raw).strip())
        except ValueError:
            continue
    return None


@dataclass(frozen=True)
class PaginationPolicy:
    page_size: int = 1000
    max_total_rows: int = 100000
    empty_page_tolerance: int = 3
    same_count_warn_streak: int = 5
    empty_page_probe_stride: int = 20

    @classmethod
    def from_config(cls, config: B1Config) -> "PaginationPolicy":
        return cls(
            page_size=config.page_size,
            max_total_rows=config.max_total_rows,
            empty_page_tolerance=config.empty_page_tolerance,
            same_count_warn_streak=config.same_count_warn_streak,
            empty_page_probe_stride=config.empty_page_probe_stride,
        )


@dataclass
class PaginationState:
    """Transient per-run state; one instance per fetch."""

    policy: PaginationPolicy
    row_limit: Optional[int] = None

    rows: List[Row] = field(default_factory=list)
    next_offset: int = 0
    total_count: Optional[int] = None
    consecutive_empty_pages: int = 0
    last_page_row_count: int = -1
    same_count_streak: int = 0
    pages_fetched: int = 0
    state: PageState = PageState.PROBING

    @property
    def done(self) -> bool:
        return self.state not in LIVE_STATES

    def _remaining(self) -> Optional[int]:
        if self.row_limit is None:
            return None
        return max(self.row_limit - len(self.rows), 0)

    def records_to_fetch(self) -> int:
        remaining = self._remaining()
        if remaining is None:
            return self.policy.page_size
        return min(self.policy.page_size, remaining)

    def check_limit(self) -> bool:
        """Move to LIMIT_REACHED before issuing a request that is not needed."""
        if not self.done and self._remaining() == 0:
            self._apply(PageEvent.LIMIT)
        return self.done

    def observe_page(self, page_rows: List[Row], total_count_hint: Optional[int] = None) -> PageState:
        """Fold one page of rows into the state and return the new state."""
        received = len(page_rows)
        self.pages_fetched += 1

        remaining = self._remaining()
        self.rows.extend(page_rows if remaining is None else page_rows[:remaining])

        if self.pages_fetched == 1 and total_count_hint is not None:
            self.total_count = total_count_hint
            logger.info("Server reports total records: %d", total_count_hint)
        elif self.pages_fetched == 1:
            logger.info("No total count in first response; probing until empty pages.")

        logger.info(
            "Page %d: received %d records at offset %d, total so far: %d",
            self.pages_fetched, received, self.next_offset, len(self.rows),
        )

        if self.row_limit is not None and len(self.rows) >= self.row_limit:
            return self._apply(PageEvent.LIMIT)

        if self._count_satisfied(received):
            return self._apply(PageEvent.COUNT_MET)

        if received == 0:
            self.consecutive_empty_pages += 1
            if self.consecutive_empty_pages >= self.policy.empty_page_tolerance:
                return self._apply(PageEvent.EMPTY_TOLERANCE_SPENT)
            # Never re-request an offset: probe past it.
            self.next_offset += self.policy.empty_page_probe_stride
            event = PageEvent.EMPTY
        else:
            self.consecutive_empty_pages = 0
            self._track_same_count(received)
            self.next_offset += received
            event = PageEvent.ROWS

        if self.next_offset >= self.policy.max_total_rows or len(self.rows) >= self.policy.max_total_rows:
            del self.rows[self.policy.max_total_rows:]
            logger.warning("Reached safety limit of %d records", self.policy.max_total_rows)
            return self._apply(PageEvent.CEILING)

        return self._apply(event)

    def observe_single_object(self, obj: Row) -> PageState:
        """A payload without a row array is the final page."""
        self.pages_fetched += 1
        if self._remaining() != 0:
            self.rows.append(obj)
        return self._apply(PageEvent.NO_ARRAY)

    def _count_satisfied(self, received: int) -> bool:
        total = self.total_count
        if total is None:
            return False
        # A zero hint is only believed when the page agrees.
        if total == 0:
            return received == 0
        return len(self.rows) >= total

    def _track_same_count(self, received: int) -> None:
        if received == self.last_page_row_count:
            self.same_count_streak += 1
            if self.same_count_streak > self.policy.same_count_warn_streak:
                logger.warning(
                    "Same record count (%d) for %d consecutive pages; likely an "
                    "upstream page cap, continuing.",
                    received, self.same_count_streak,
                )
        else:
            self.same_count_streak = 0
            self.last_page_row_count = received

    def _apply(self, event: PageEvent) -> PageState:
        self.state = transition(self.state, event)
        if self.done:
            logger.info("Pagination finished: %s (%d records)", self.state.value, len(self.rows))
        return self.state
