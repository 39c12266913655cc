"""Occupancy calendar geometry.

Turns batches into column positions on a biweekly (half month) or monthly
grid, one lane per workshop plus lane ``0`` for internal production.  Pixel
layout and overlap inside a lane are left to the client.
"""

import calendar
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Optional

from .errors import ValidationError
from .models import BatchStatus

BIWEEKLY = "biweekly"
MONTHLY = "monthly"
MODES = (BIWEEKLY, MONTHLY)

INTERNAL_LANE = 0


@dataclass(frozen=True)
class Window:
    period_start: date
    period_end: date

    @property
    def day_count(self):
        return (self.period_end - self.period_start).days + 1

    def to_dict(self):
        return {
            "periodStart": self.period_start.isoformat(),
            "periodEnd": self.period_end.isoformat(),
            "dayCount": self.day_count,
        }


@dataclass(frozen=True)
class Placement:
    start_column: int
    span: int


def _last_day(year, month):
    return calendar.monthrange(year, month)[1]


def compute_window(reference_date, mode=BIWEEKLY) -> Window:
    """Window containing ``reference_date``.

    Monthly windows cover the whole calendar month.  Biweekly windows are the
    1st-15th or the 16th-last day, depending on which half the date is in.
    """
    if mode not in MODES:
        raise ValidationError(f"Unknown calendar mode {mode!r}", modes=list(MODES))
    year, month = reference_date.year, reference_date.month
    last = _last_day(year, month)
    if mode == MONTHLY:
        return Window(date(year, month, 1), date(year, month, last))
    if reference_date.day <= 15:
        return Window(date(year, month, 1), date(year, month, 15))
    return Window(date(year, month, 16), date(year, month, last))


def step_window(window, mode=BIWEEKLY, direction=1) -> Window:
    """Next (``direction=1``) or previous (``direction=-1``) window."""
    if direction not in (1, -1):
        raise ValidationError("direction must be 1 or -1")
    if direction == 1:
        return compute_window(window.period_end + timedelta(days=1), mode)
    return compute_window(window.period_start - timedelta(days=1), mode)


def effective_end(batch):
    if batch.status == BatchStatus.RETURNED and batch.actual_return_date is not None:
        return batch.actual_return_date
    if batch.expected_return_date is not None:
        return batch.expected_return_date
    return batch.cut_date + timedelta(days=1)


def layout_batch(batch, window) -> Optional[Placement]:
    """Columns covered by ``batch`` inside ``window``, or ``None`` if it is not visible.

    The bar starts on the cut date and runs up to, not including, the return
    day; it always covers at least one column and never leaves the window.
    """
    end = effective_end(batch)
    if batch.cut_date > window.period_end or end < window.period_start:
        return None
    last_column = window.day_count - 1
    start_column = min(max((batch.cut_date - window.period_start).days, 0), last_column)
    end_column = min(max((end - window.period_start).days, 0), last_column)
    return Placement(start_column=start_column, span=max(1, end_column - start_column))


def group_by_lane(batches):
    lanes = {}
    for batch in batches:
        lanes.setdefault(batch.workshop_id or INTERNAL_LANE, []).append(batch)
    for lane in lanes.values():
        lane.sort(key=lambda b: (b.cut_date, b.id or 0))
    return lanes


def render_window(reference_date, mode, batches):
    window = compute_window(reference_date, mode)
    placed = []
    placements = {}
    for batch in batches:
        placement = layout_batch(batch, window)
        if placement is not None:
            placed.append(batch)
            placements[batch.id] = placement

    lanes = group_by_lane(placed)

    def lane_order(key):
        if key == INTERNAL_LANE:
            return (0, 0, 0)
        workshop = lanes[key][0].workshop
        return (1, workshop.schedule_order if workshop is not None else 0, key)

    payload = window.to_dict()
    payload["mode"] = mode
    payload["lanes"] = [
        {
            "laneKey": key,
            "batches": [
                {
                    "batchId": b.id,
                    "code": b.code,
                    "status": b.status,
                    "startColumn": placements[b.id].start_column,
                    "span": placements[b.id].span,
                }
                for b in lanes[key]
            ],
        }
        for key in sorted(lanes, key=lane_order)
    ]
    return payload
