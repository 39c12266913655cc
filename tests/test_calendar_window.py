from datetime import date, timedelta
from types import SimpleNamespace

import pytest

from cutflow.calendar_window import (
    Placement, Window, compute_window, group_by_lane, layout_batch, render_window, step_window,
)
from cutflow.errors import ValidationError


def batch(id, cut, expected=None, actual=None, status="external_workshop", workshop_id=1, schedule_order=1):
    workshop = SimpleNamespace(schedule_order=schedule_order) if workshop_id else None
    return SimpleNamespace(
        id=id, code=f"{id:03d}", cut_date=cut, expected_return_date=expected,
        actual_return_date=actual, status=status, workshop_id=workshop_id, workshop=workshop,
    )


def test_biweekly_second_half():
    w = compute_window(date(2025, 3, 20), "biweekly")
    assert (w.period_start, w.period_end, w.day_count) == (date(2025, 3, 16), date(2025, 3, 31), 16)


def test_biweekly_first_half_includes_the_15th():
    w = compute_window(date(2025, 3, 15), "biweekly")
    assert (w.period_start, w.period_end, w.day_count) == (date(2025, 3, 1), date(2025, 3, 15), 15)


def test_monthly_leap_february():
    w = compute_window(date(2024, 2, 10), "monthly")
    assert (w.period_start, w.period_end, w.day_count) == (date(2024, 2, 1), date(2024, 2, 29), 29)


def test_unknown_mode():
    with pytest.raises(ValidationError):
        compute_window(date(2025, 3, 1), "weekly")


def test_navigation_crosses_year_boundary():
    second_half = compute_window(date(2024, 12, 20), "biweekly")
    nxt = step_window(second_half, "biweekly", 1)
    assert (nxt.period_start, nxt.period_end) == (date(2025, 1, 1), date(2025, 1, 15))
    assert step_window(nxt, "biweekly", -1) == second_half

    jan = compute_window(date(2025, 1, 31), "monthly")
    assert step_window(jan, "monthly", 1) == Window(date(2025, 2, 1), date(2025, 2, 28))
    assert step_window(jan, "monthly", -1) == Window(date(2024, 12, 1), date(2024, 12, 31))


def test_batch_without_return_date_takes_one_column():
    w = compute_window(date(2025, 1, 15), "monthly")
    assert layout_batch(batch(1, date(2025, 1, 5)), w) == Placement(start_column=4, span=1)


def test_batch_runs_up_to_its_return_day():
    w = compute_window(date(2025, 3, 1), "monthly")
    placed = layout_batch(batch(1, date(2025, 3, 10), expected=date(2025, 3, 12)), w)
    assert placed == Placement(start_column=9, span=2)


def test_returned_batch_uses_actual_return_date():
    w = compute_window(date(2025, 3, 1), "monthly")
    b = batch(1, date(2025, 3, 10), expected=date(2025, 3, 20), actual=date(2025, 3, 13), status="returned")
    assert layout_batch(b, w) == Placement(start_column=9, span=3)


def test_batch_is_clipped_to_window():
    w = compute_window(date(2025, 3, 20), "biweekly")
    b = batch(1, date(2025, 3, 1), expected=date(2025, 4, 30))
    assert layout_batch(b, w) == Placement(start_column=0, span=15)


def test_batch_outside_window_is_not_placed():
    w = compute_window(date(2025, 3, 20), "biweekly")
    assert layout_batch(batch(1, date(2025, 4, 1)), w) is None
    assert layout_batch(batch(2, date(2025, 3, 1), expected=date(2025, 3, 15)), w) is None


def test_placements_never_leave_the_window():
    for mode in ("biweekly", "monthly"):
        w = compute_window(date(2025, 2, 20), mode)
        for offset in range(-20, 40):
            cut = w.period_start + timedelta(days=offset)
            for length in (0, 1, 3, 30):
                placed = layout_batch(batch(1, cut, expected=cut + timedelta(days=length)), w)
                if placed is None:
                    continue
                assert 0 <= placed.start_column <= w.day_count - 1
                assert placed.span >= 1
                assert placed.start_column + placed.span <= w.day_count


def test_group_by_lane_sorts_by_cut_date():
    a = batch(1, date(2025, 3, 9), workshop_id=2)
    b = batch(2, date(2025, 3, 3), workshop_id=2)
    c = batch(3, date(2025, 3, 5), workshop_id=None, status="internal_production")
    lanes = group_by_lane([a, b, c])
    assert [x.id for x in lanes[2]] == [2, 1]
    assert [x.id for x in lanes[0]] == [3]


def test_render_window_orders_lanes_and_skips_hidden_batches():
    batches = [
        batch(1, date(2025, 3, 17), expected=date(2025, 3, 19), workshop_id=7, schedule_order=2),
        batch(2, date(2025, 3, 18), workshop_id=4, schedule_order=1),
        batch(3, date(2025, 3, 20), workshop_id=None, status="internal_production"),
        batch(4, date(2025, 2, 1), workshop_id=4, schedule_order=1),
    ]
    payload = render_window(date(2025, 3, 20), "biweekly", batches)
    assert payload["periodStart"] == "2025-03-16"
    assert payload["periodEnd"] == "2025-03-31"
    assert [lane["laneKey"] for lane in payload["lanes"]] == [0, 4, 7]
    assert payload["lanes"][2]["batches"] == [
        {"batchId": 1, "code": "001", "status": "external_workshop", "startColumn": 1, "span": 2}
    ]
    assert [b["batchId"] for lane in payload["lanes"] for b in lane["batches"]] == [3, 2, 1]
