from datetime import date

import pytest

from cutflow import db
from cutflow.calendar_window import compute_window, layout_batch
from cutflow.conflicts import ConflictDetector
from cutflow.errors import NotFoundError, ValidationError
from cutflow.models import Batch
from cutflow.registry import BatchRegistry


@pytest.fixture()
def registry(app):
    return BatchRegistry()


def send_out(registry, seed, cut, back, workshop="w1"):
    return registry.create_batch(
        cut, [{"product_id": seed["shirt"], "quantity": 10}], status="external_workshop",
        workshop_id=seed[workshop], expected_return_date=back,
    )


def test_new_cut_before_return_is_a_conflict(registry, seed):
    a = send_out(registry, seed, date(2025, 3, 10), date(2025, 3, 12))
    conflict = ConflictDetector().check_conflict(seed["w1"], date(2025, 3, 11))
    assert conflict is not None
    assert conflict.batch_id == a.id
    assert conflict.expected_return_date == date(2025, 3, 12)
    assert "001" in conflict.message and "2025-03-12" in conflict.message


def test_cut_on_return_day_is_not_a_conflict(registry, seed):
    send_out(registry, seed, date(2025, 3, 10), date(2025, 3, 12))
    assert ConflictDetector().check_conflict(seed["w1"], date(2025, 3, 12)) is None


def test_other_workshops_and_returned_batches_do_not_conflict(registry, seed):
    a = send_out(registry, seed, date(2025, 3, 10), date(2025, 3, 20))
    detector = ConflictDetector()
    assert detector.check_conflict(seed["w2"], date(2025, 3, 11)) is None
    assert detector.check_conflict(None, date(2025, 3, 11)) is None
    registry.update_status(a.id, "returned")
    assert detector.check_conflict(seed["w1"], date(2025, 3, 11)) is None


def test_batches_without_expected_return_never_conflict(registry, seed):
    registry.create_batch(date(2025, 3, 10), [{"product_id": seed["shirt"], "quantity": 1}],
                          status="external_workshop", workshop_id=seed["w1"])
    assert ConflictDetector().check_conflict(seed["w1"], date(2025, 3, 11)) is None


def test_earliest_expected_return_is_reported(registry, seed):
    late = Batch(code="050", cut_date=date(2025, 3, 1), status="external_workshop",
                 workshop_id=seed["w1"], expected_return_date=date(2025, 3, 25))
    early = Batch(code="051", cut_date=date(2025, 3, 2), status="waiting",
                  workshop_id=seed["w1"], expected_return_date=date(2025, 3, 15))
    db.session.add_all([late, early])
    db.session.commit()
    conflict = ConflictDetector().check_conflict(seed["w1"], date(2025, 3, 10))
    assert conflict.code == "051"


def test_resolve_closes_blocking_batch_and_unblocks_creation(registry, seed):
    a = send_out(registry, seed, date(2025, 3, 10), date(2025, 3, 12))
    resolved = ConflictDetector().resolve_conflict(a.id, date(2025, 3, 11), user_id=2)
    assert resolved.status == "returned"
    assert resolved.expected_return_date == date(2025, 3, 10)
    assert resolved.actual_return_date == date(2025, 3, 10)
    assert resolved.history and any("conflict resolved" in (h.notes or "") for h in resolved.history)

    b = send_out(registry, seed, date(2025, 3, 11), date(2025, 3, 14))
    assert b.code == "002"


def test_resolve_unknown_batch(app, seed):
    with pytest.raises(NotFoundError):
        ConflictDetector().resolve_conflict(999, date(2025, 3, 11))


def test_resolved_batch_ends_before_the_new_cut_on_the_calendar(registry, seed):
    a = send_out(registry, seed, date(2025, 3, 10), date(2025, 3, 12))
    ConflictDetector().resolve_conflict(a.id, date(2025, 3, 11))
    resolved = db.session.get(Batch, a.id)

    march = compute_window(date(2025, 3, 1), "monthly")
    assert layout_batch(resolved, march).start_column == 9
    assert layout_batch(resolved, march).span == 1
    assert layout_batch(resolved, compute_window(date(2025, 4, 1), "monthly")) is None


@pytest.mark.parametrize("new_cut", [date(2025, 3, 10), date(2025, 3, 9)])
def test_resolve_rejects_cut_date_not_after_blocking_cut(registry, seed, new_cut):
    a = send_out(registry, seed, date(2025, 3, 10), date(2025, 3, 12))
    with pytest.raises(ValidationError):
        ConflictDetector().resolve_conflict(a.id, new_cut)
    unchanged = db.session.get(Batch, a.id)
    assert unchanged.status == "external_workshop"
    assert unchanged.expected_return_date == date(2025, 3, 12)
    assert unchanged.actual_return_date is None
