"""Scheduling conflict detection and manual resolution.

A conflict exists when a workshop would receive a new batch before it has
returned an earlier one: an open (not returned) batch for the same workshop
whose expected return date falls after the new cut date.  Resolution is
always a human decision; nothing in here resolves a conflict on its own.
"""

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Optional

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from . import db
from .catalog import WorkshopDirectory
from .errors import NotFoundError, PersistenceError, ValidationError
from .history import HistoryLog, transition_action
from .locks import workshop_lock
from .models import Batch, BatchStatus


@dataclass
class Conflict:
    batch_id: int
    code: str
    expected_return_date: date
    cut_date: date

    @property
    def message(self):
        return (
            f"Batch {self.code} is expected back on {self.expected_return_date.isoformat()}, "
            f"after the new cut date {self.cut_date.isoformat()}"
        )

    def to_dict(self):
        return {
            "batchId": self.batch_id,
            "code": self.code,
            "expectedReturnDate": self.expected_return_date.isoformat(),
            "message": self.message,
        }


class ConflictDetector:
    def __init__(self, history=None, workshops=None):
        self.history = history or HistoryLog()
        self.workshops = workshops or WorkshopDirectory()

    def check_conflict(self, workshop_id, candidate_cut_date) -> Optional[Conflict]:
        if workshop_id is None:
            return None
        if candidate_cut_date is None:
            raise ValidationError("cutDate is required")
        blocking = (
            Batch.query.filter(
                Batch.workshop_id == workshop_id,
                Batch.status != BatchStatus.RETURNED,
                Batch.expected_return_date.isnot(None),
                Batch.expected_return_date > candidate_cut_date,
            )
            .order_by(Batch.expected_return_date.asc(), Batch.id.asc())
            .first()
        )
        if blocking is None:
            return None
        conflict = Conflict(
            batch_id=blocking.id,
            code=blocking.code,
            expected_return_date=blocking.expected_return_date,
            cut_date=candidate_cut_date,
        )
        current_app.logger.warning(
            "Scheduling conflict for workshop %s: %s", workshop_id, conflict.message
        )
        return conflict

    def resolve_conflict(self, conflicting_batch_id, new_cut_date, user_id=None):
        """Close the blocking batch so a batch cut on ``new_cut_date`` can be created.

        The batch gets an expected and actual return date of the day before
        the new cut and is marked returned.  Only ever called after a person
        confirmed it.
        """
        if new_cut_date is None:
            raise ValidationError("cutDate is required")
        batch = db.session.get(Batch, conflicting_batch_id)
        if batch is None:
            raise NotFoundError("Batch not found", batchId=conflicting_batch_id)

        with workshop_lock(batch.workshop_id):
            try:
                db.session.refresh(batch)
                if batch.workshop_id is not None:
                    self.workshops.lock_workshop(batch.workshop_id)
                if new_cut_date <= batch.cut_date:
                    db.session.rollback()
                    raise ValidationError(
                        "cutDate must be after the blocking batch's cut date",
                        batchId=batch.id, cutDate=new_cut_date.isoformat(),
                    )
                old_status = batch.status
                batch.expected_return_date = new_cut_date - timedelta(days=1)
                batch.status = BatchStatus.RETURNED
                # the bar must end where the new cut begins
                batch.actual_return_date = batch.expected_return_date
                self.history.append(
                    batch.id,
                    transition_action(old_status, BatchStatus.RETURNED),
                    user_id=user_id,
                    notes=f"conflict resolved for cut date {new_cut_date.isoformat()}",
                )
                db.session.commit()
            except SQLAlchemyError as exc:
                db.session.rollback()
                current_app.logger.error("Conflict resolution failed for batch %s: %s", batch.id, exc)
                raise PersistenceError("Could not resolve conflict", batchId=conflicting_batch_id) from exc

        current_app.logger.info(
            "Batch %s marked returned to free workshop %s for %s",
            batch.code, batch.workshop_id, new_cut_date.isoformat(),
        )
        return batch
