"""Batch registry: creation, status transitions and deletion of batches.

Batch codes are derived from the batches already stored (highest numeric
code plus one) inside the creating transaction, so they survive restarts and
a concurrent writer taking the same code only costs a retry.
"""

from datetime import date

from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from . import db
from .catalog import ProductCatalog, WorkshopDirectory
from .conflicts import ConflictDetector
from .errors import ConflictError, NotFoundError, PersistenceError, ValidationError
from .history import HistoryLog, transition_action
from .locks import workshop_lock
from .models import Batch, BatchLineItem, BatchStatus, InvoiceBatch

# returned -> waiting is the manual correction path, everything else moves forward
TRANSITIONS = {
    BatchStatus.WAITING: {BatchStatus.INTERNAL_PRODUCTION, BatchStatus.EXTERNAL_WORKSHOP},
    BatchStatus.INTERNAL_PRODUCTION: {BatchStatus.RETURNED},
    BatchStatus.EXTERNAL_WORKSHOP: {BatchStatus.RETURNED},
    BatchStatus.RETURNED: {BatchStatus.WAITING},
}

CODE_RETRIES = 3


def next_batch_code(width=3):
    """Highest numeric batch code plus one, zero padded; ``001`` when none is numeric."""
    numbers = [int(code) for (code,) in db.session.query(Batch.code).all() if code and code.isdigit()]
    return str(max(numbers) + 1 if numbers else 1).zfill(width)


class BatchRegistry:
    def __init__(self, history=None, products=None, workshops=None, conflicts=None):
        self.history = history or HistoryLog()
        self.products = products or ProductCatalog()
        self.workshops = workshops or WorkshopDirectory()
        self.conflicts = conflicts or ConflictDetector(history=self.history, workshops=self.workshops)

    def get_batch(self, batch_id):
        batch = db.session.get(Batch, batch_id)
        if batch is None:
            raise NotFoundError("Batch not found", batchId=batch_id)
        return batch

    def list_batches(self):
        return Batch.query.order_by(Batch.id.desc()).all()

    def list_history(self, batch_id):
        self.get_batch(batch_id)
        return self.history.entries(batch_id)

    def create_batch(self, cut_date, line_items, status=BatchStatus.WAITING, workshop_id=None,
                     expected_return_date=None, observations=None, user_id=None):
        items = self._validate_new_batch(cut_date, line_items, status, workshop_id, expected_return_date)

        with workshop_lock(workshop_id):
            if workshop_id is not None:
                self.workshops.lock_workshop(workshop_id)
            conflict = self.conflicts.check_conflict(workshop_id, cut_date)
            if conflict is not None:
                db.session.rollback()
                raise ConflictError(conflict.message, conflict=conflict.to_dict())

            width = current_app.config.get("BATCH_CODE_WIDTH", 3)
            for attempt in range(1, CODE_RETRIES + 1):
                batch = Batch(
                    code=next_batch_code(width),
                    cut_date=cut_date,
                    status=status,
                    workshop_id=workshop_id,
                    expected_return_date=expected_return_date,
                    actual_return_date=date.today() if status == BatchStatus.RETURNED else None,
                    observations=observations,
                    paid=False,
                )
                for item in items:
                    batch.line_items.append(BatchLineItem(**item))
                db.session.add(batch)
                try:
                    db.session.flush()
                    self.history.append(batch.id, HistoryLog.CREATED, user_id=user_id)
                    db.session.commit()
                    break
                except IntegrityError:
                    db.session.rollback()
                    current_app.logger.warning("Batch code collision, retrying (attempt %s)", attempt)
                except SQLAlchemyError as exc:
                    db.session.rollback()
                    current_app.logger.error("Batch creation failed: %s", exc)
                    raise PersistenceError("Could not create batch") from exc
            else:
                raise PersistenceError("Could not allocate a batch code")

        current_app.logger.info(
            "Batch %s created (%s, workshop=%s, cut %s)",
            batch.code, status, workshop_id, cut_date.isoformat(),
        )
        return batch

    def update_status(self, batch_id, new_status, workshop_id=None, observations=None, user_id=None):
        batch = self.get_batch(batch_id)
        if new_status not in BatchStatus.ALL:
            raise ValidationError(f"Unknown status {new_status!r}")
        old_status = batch.status
        if new_status != old_status and new_status not in TRANSITIONS[old_status]:
            raise ValidationError(
                f"Cannot move batch {batch.code} from {old_status} to {new_status}",
                batchId=batch.id,
            )

        if workshop_id is not None:
            self.workshops.get_workshop(workshop_id)
        if new_status == BatchStatus.EXTERNAL_WORKSHOP:
            target = workshop_id if workshop_id is not None else batch.workshop_id
            if target is None:
                raise ValidationError("external_workshop requires a workshopId", batchId=batch.id)
            batch.workshop_id = target
        elif new_status == BatchStatus.INTERNAL_PRODUCTION:
            if workshop_id is not None:
                raise ValidationError("internal_production cannot have a workshopId", batchId=batch.id)
            batch.workshop_id = None
        elif workshop_id is not None:
            batch.workshop_id = workshop_id

        batch.status = new_status
        if new_status == BatchStatus.RETURNED and batch.actual_return_date is None:
            batch.actual_return_date = date.today()
        elif old_status == BatchStatus.RETURNED and new_status == BatchStatus.WAITING:
            batch.actual_return_date = None
        if observations is not None:
            batch.observations = observations

        self.history.append(batch.id, transition_action(old_status, new_status), user_id=user_id, notes=observations)
        try:
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            current_app.logger.error("Status update failed for batch %s: %s", batch_id, exc)
            raise PersistenceError("Could not update batch", batchId=batch_id) from exc

        current_app.logger.info("Batch %s: %s -> %s", batch.code, old_status, new_status)
        return batch

    def delete_batch(self, batch_id):
        batch = self.get_batch(batch_id)
        linked = db.session.query(InvoiceBatch.id).filter_by(batch_id=batch.id).first()
        if linked is not None or batch.paid:
            raise ConflictError(
                f"Batch {batch.code} is linked to an invoice and cannot be deleted",
                batchId=batch.id,
            )
        code = batch.code
        db.session.delete(batch)
        try:
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise PersistenceError("Could not delete batch", batchId=batch_id) from exc
        current_app.logger.info("Batch %s deleted", code)

    def set_image_url(self, batch_id, image_url):
        batch = self.get_batch(batch_id)
        batch.image_url = image_url
        db.session.commit()
        return batch

    def _validate_new_batch(self, cut_date, line_items, status, workshop_id, expected_return_date):
        if cut_date is None:
            raise ValidationError("cutDate is required")
        if not line_items:
            raise ValidationError("A batch needs at least one line item")
        if status not in BatchStatus.ALL:
            raise ValidationError(f"Unknown status {status!r}")
        if status == BatchStatus.EXTERNAL_WORKSHOP and workshop_id is None:
            raise ValidationError("external_workshop requires a workshopId")
        if status == BatchStatus.INTERNAL_PRODUCTION and workshop_id is not None:
            raise ValidationError("internal_production cannot have a workshopId")
        if expected_return_date is not None and expected_return_date < cut_date:
            raise ValidationError("expectedReturnDate cannot be before cutDate")
        if workshop_id is not None:
            self.workshops.get_workshop(workshop_id)

        items = []
        for index, raw in enumerate(line_items):
            quantity = raw.get("quantity")
            if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
                raise ValidationError("quantity must be a positive integer", lineItem=index)
            product_id = raw.get("product_id")
            if product_id is None:
                raise ValidationError("productId is required", lineItem=index)
            if not self.products.exists(product_id):
                raise NotFoundError("Product not found", productId=product_id)
            items.append({
                "product_id": product_id,
                "quantity": quantity,
                "selected_color": raw.get("selected_color"),
                "selected_size": raw.get("selected_size"),
            })
        return items
