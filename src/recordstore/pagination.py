"""Range pagination planning shared by both DataStore backends.

Positions are 0-indexed in the requested sort order and ranges are
inclusive. A page can be reached by scanning from either end of the result
set, or from either side of a cursor left on a previously returned page; the
planner picks whichever skips the fewest rows.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Sequence, TypeVar

from recordstore.query import Cursor, PageInfo

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ScanDirection(str, Enum):
    """Scan direction relative to the requested sort order."""

    FORWARD = "forward"
    REVERSE = "reverse"


@dataclass(frozen=True)
class ScanPlan:
    direction: ScanDirection
    offset: int
    limit: int
    anchor: Cursor | None = None

    @property
    def reverse(self) -> bool:
        return self.direction is ScanDirection.REVERSE


@dataclass(frozen=True)
class Page:
    range_start: int
    range_end: int
    plan: ScanPlan | None

    @property
    def empty(self) -> bool:
        return self.plan is None


def clamp(total: int, start: int | None, end: int | None) -> tuple[int, int]:
    """Default and clamp an inclusive range into ``[0, total-1]``.

    An empty result set yields ``(start, start - 1)``.
    """
    start = 0 if start is None else start
    if total <= 0:
        return start, start - 1
    end = total - 1 if end is None else end
    last = total - 1
    return min(start, last), min(end, last)


def plan(total: int, start: int, end: int, page_info: PageInfo | None = None) -> list[ScanPlan]:
    """Return candidate scan plans for ``[start, end]``, cheapest first."""
    limit = end - start + 1
    ranked: list[tuple[int, int, ScanPlan]] = [
        (start, 0, ScanPlan(ScanDirection.FORWARD, start, limit)),
        (total - 1 - end, 0, ScanPlan(ScanDirection.REVERSE, total - 1 - end, limit)),
    ]
    if page_info is not None:
        for cursor in (page_info.last_visible, page_info.first_visible):
            if cursor is None:
                continue
            p = cursor.position
            if start >= p + 1:
                offset = start - (p + 1)
                ranked.append((offset, 1, ScanPlan(ScanDirection.FORWARD, offset, limit, cursor)))
            if end <= p - 1:
                offset = (p - 1) - end
                ranked.append((offset, 1, ScanPlan(ScanDirection.REVERSE, offset, limit, cursor)))
    ranked.sort(key=lambda item: (item[0], item[1]))
    return [p for _, _, p in ranked]


def choose(plans: Sequence[ScanPlan], resolve: Callable[[str], int | None]) -> ScanPlan:
    """Pick the first usable plan.

    ``resolve`` maps a record id to its current position in the filtered,
    sorted result (or None when it is no longer there). Cursor plans are only
    used when the cursor still sits at the position it claims.
    """
    positions: dict[str, int | None] = {}
    for candidate in plans:
        cursor = candidate.anchor
        if cursor is None:
            return candidate
        if cursor.id not in positions:
            positions[cursor.id] = resolve(cursor.id)
        actual = positions[cursor.id]
        if actual == cursor.position:
            return candidate
        logger.warning(
            "Discarding stale cursor id='%s' position=%d (current position: %s)",
            cursor.id,
            cursor.position,
            actual,
        )
    raise ValueError("No scan plan without a cursor was supplied")


def paginate(
    total: int,
    start: int | None,
    end: int | None,
    page_info: PageInfo | None,
    resolve: Callable[[str], int | None],
) -> Page:
    range_start, range_end = clamp(total, start, end)
    if range_end < range_start:
        return Page(range_start, range_end, None)
    chosen = choose(plan(total, range_start, range_end, page_info), resolve)
    logger.debug(
        "Page [%d, %d] of %d via %s offset=%d anchor=%s",
        range_start,
        range_end,
        total,
        chosen.direction.value,
        chosen.offset,
        chosen.anchor.id if chosen.anchor else None,
    )
    return Page(range_start, range_end, chosen)


def reconcile(rows: Sequence[T], scan: ScanPlan) -> list[T]:
    """Put the rows of a scan back into the requested order."""
    return list(reversed(rows)) if scan.reverse else list(rows)


def slice_plan(items: Sequence[T], scan: ScanPlan) -> list[T]:
    """Execute ``scan`` over a materialised list already in requested order."""
    if scan.reverse:
        source = list(reversed(items))
        begin = 0 if scan.anchor is None else len(items) - scan.anchor.position
    else:
        source = list(items)
        begin = 0 if scan.anchor is None else scan.anchor.position + 1
    begin += scan.offset
    return reconcile(source[begin : begin + scan.limit], scan)
