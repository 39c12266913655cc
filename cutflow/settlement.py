"""Workshop settlement: batch valuation, unbilled listings and invoicing.

Invoice numbers look like ``ATE-160325-1000``: the first three letters of the
workshop name, the issue day as ``DDMMYY`` and a suffix that starts at
``INVOICE_SEQUENCE_START`` for every prefix.  The suffix comes from a locked
``InvoiceSequence`` row and the number itself is unique in the database, so
two writers racing for the same prefix end with one retry, never with a
duplicate.

Invoice generation is all-or-nothing: the invoice, its batch links and the
``paid`` flags on the batches are committed together or not at all.
"""

import unicodedata
from decimal import Decimal, InvalidOperation

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from . import db
from .catalog import ProductCatalog, WorkshopDirectory
from .errors import ConflictError, CutflowError, NotFoundError, PersistenceError, ValidationError
from .locks import keyed_lock, workshop_lock
from .models import Batch, Invoice, InvoiceBatch, InvoiceSequence, InvoiceStatus, utcnow

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def name_prefix(workshop_name):
    """First three letters of the name, upper-cased ASCII, padded with ``X``."""
    ascii_name = unicodedata.normalize("NFKD", workshop_name or "").encode("ascii", "ignore").decode()
    letters = "".join(ch for ch in ascii_name if ch.isalpha()).upper()
    return letters[:3].ljust(3, "X")


def invoice_prefix(workshop_name, issued_on):
    return f"{name_prefix(workshop_name)}-{issued_on.strftime('%d%m%y')}"


def _check_range(start_date, end_date):
    if start_date is None or end_date is None:
        raise ValidationError("startDate and endDate are required")
    if start_date > end_date:
        raise ValidationError("startDate must not be after endDate")


class SettlementEngine:
    def __init__(self, products=None, workshops=None):
        self.products = products or ProductCatalog()
        self.workshops = workshops or WorkshopDirectory()

    # -- valuation ---------------------------------------------------------

    def valuate_batch(self, batch) -> Decimal:
        """Sum of quantity x production value over the batch's line items.

        Billed line items use the value frozen at issue time.  Line items
        whose product or price cannot be found count as zero.
        """
        total = ZERO
        for item in batch.line_items:
            total += self._item_value(item) * (item.quantity or 0)
        return total.quantize(CENT)

    def _item_value(self, item):
        if item.unit_value is not None:
            return Decimal(item.unit_value)
        return self._unit_value(item.product_id)

    def _unit_value(self, product_id):
        value = self.products.get_production_value(product_id)
        if value is None:
            return ZERO
        try:
            return Decimal(value)
        except (InvalidOperation, TypeError, ValueError):
            current_app.logger.warning("Unusable production value for product %s: %r", product_id, value)
            return ZERO

    # -- read side ---------------------------------------------------------

    def list_unbilled(self, workshop_id, start_date, end_date):
        _check_range(start_date, end_date)
        self.workshops.get_workshop(workshop_id)
        return self._unbilled_query(workshop_id, start_date, end_date).order_by(
            Batch.cut_date.desc(), Batch.id.desc()
        ).all()

    def _unbilled_query(self, workshop_id, start_date, end_date):
        return Batch.query.filter(
            Batch.workshop_id == workshop_id,
            Batch.paid.is_(False),
            Batch.cut_date >= start_date,
            Batch.cut_date <= end_date,
        )

    def summarize_all_workshops(self, start_date, end_date):
        _check_range(start_date, end_date)
        summary = []
        for workshop in self.workshops.all_in_schedule_order():
            unbilled = self._unbilled_query(workshop.id, start_date, end_date).all()
            paid_count = (
                db.session.query(func.count(func.distinct(Batch.id)))
                .join(InvoiceBatch, InvoiceBatch.batch_id == Batch.id)
                .join(Invoice, Invoice.id == InvoiceBatch.invoice_id)
                .filter(
                    Batch.workshop_id == workshop.id,
                    Invoice.status == InvoiceStatus.PAID,
                    Batch.cut_date >= start_date,
                    Batch.cut_date <= end_date,
                )
                .scalar()
            )
            unpaid_value = sum((self.valuate_batch(b) for b in unbilled), ZERO)
            summary.append({
                "workshopId": workshop.id,
                "workshopName": workshop.name,
                "pendingBatchCount": len(unbilled),
                "paidBatchCount": paid_count or 0,
                "totalUnpaidValue": str(unpaid_value.quantize(CENT)),
            })
        return summary

    def get_invoice(self, invoice_id):
        invoice = db.session.get(Invoice, invoice_id)
        if invoice is None:
            raise NotFoundError("Invoice not found", invoiceId=invoice_id)
        return invoice

    def list_invoices(self, workshop_id=None):
        query = Invoice.query
        if workshop_id is not None:
            query = query.filter(Invoice.workshop_id == workshop_id)
        return query.order_by(Invoice.issue_date.desc(), Invoice.id.desc()).all()

    def invoice_detail(self, invoice_id):
        """Invoice with its billed batches and their line items, for print and export."""
        invoice = self.get_invoice(invoice_id)
        payload = invoice.to_dict()
        payload["workshopName"] = invoice.workshop.name if invoice.workshop else None
        payload["batches"] = []
        for link in invoice.links:
            batch = link.batch
            payload["batches"].append({
                "batchId": batch.id,
                "code": batch.code,
                "cutDate": batch.cut_date.isoformat(),
                "amount": str(link.amount),
                "lineItems": [
                    {
                        **item.to_dict(),
                        "unitValue": str(self._item_value(item).quantize(CENT)),
                    }
                    for item in batch.line_items
                ],
            })
        return payload

    # -- write side --------------------------------------------------------

    def generate_invoice(self, workshop_id, batch_ids, due_date, notes=None):
        if not batch_ids:
            raise ValidationError("batchIds must not be empty")
        if len(set(batch_ids)) != len(batch_ids):
            raise ValidationError("batchIds contains duplicates")
        if due_date is None:
            raise ValidationError("dueDate is required")

        retries = current_app.config.get("INVOICE_NUMBER_RETRIES", 3)
        with workshop_lock(workshop_id):
            for attempt in range(1, retries + 1):
                try:
                    invoice = self._issue(workshop_id, batch_ids, due_date, notes)
                    db.session.commit()
                except IntegrityError as exc:
                    db.session.rollback()
                    current_app.logger.warning(
                        "Invoice number collision for workshop %s (attempt %s): %s",
                        workshop_id, attempt, exc.orig,
                    )
                    continue
                except CutflowError:
                    db.session.rollback()
                    raise
                except SQLAlchemyError as exc:
                    db.session.rollback()
                    current_app.logger.error("Invoice generation failed for workshop %s: %s", workshop_id, exc)
                    raise PersistenceError("Could not generate invoice", workshopId=workshop_id) from exc
                current_app.logger.info(
                    "Invoice %s issued to workshop %s for %s batches, total %s",
                    invoice.invoice_number, workshop_id, len(batch_ids), invoice.total_amount,
                )
                return invoice
        raise PersistenceError("Could not allocate a unique invoice number", workshopId=workshop_id)

    def _issue(self, workshop_id, batch_ids, due_date, notes):
        workshop = self.workshops.lock_workshop(workshop_id)
        batches = (
            Batch.query.filter(Batch.id.in_(batch_ids))
            .order_by(Batch.id)
            .with_for_update()
            .all()
        )
        found = {b.id for b in batches}
        missing = [bid for bid in batch_ids if bid not in found]
        if missing:
            raise NotFoundError("Batch not found", batchIds=missing)
        foreign = [b.id for b in batches if b.workshop_id != workshop_id]
        if foreign:
            raise ConflictError("Batches belong to another workshop", batchIds=foreign, workshopId=workshop_id)
        already_paid = [b.id for b in batches if b.paid]
        if already_paid:
            raise ConflictError("Batches have already been billed", batchIds=already_paid)

        issued_at = utcnow()
        invoice_number = self._allocate_number(invoice_prefix(workshop.name, issued_at.date()))
        for batch in batches:
            for item in batch.line_items:
                item.unit_value = self._unit_value(item.product_id).quantize(CENT)
        amounts = {b.id: self.valuate_batch(b) for b in batches}

        invoice = Invoice(
            workshop_id=workshop_id,
            invoice_number=invoice_number,
            issue_date=issued_at,
            due_date=due_date,
            total_amount=sum(amounts.values(), ZERO),
            status=InvoiceStatus.PENDING,
            notes=notes,
        )
        db.session.add(invoice)
        db.session.flush()
        for batch in batches:
            db.session.add(InvoiceBatch(invoice_id=invoice.id, batch_id=batch.id, amount=amounts[batch.id]))
            batch.paid = True
        db.session.flush()
        return invoice

    def _allocate_number(self, prefix):
        # one lock per three-letter name part, shared across issue days
        with keyed_lock("invoice_prefix", prefix.split("-", 1)[0]):
            sequence = (
                db.session.query(InvoiceSequence)
                .filter(InvoiceSequence.prefix == prefix)
                .with_for_update()
                .populate_existing()
                .first()
            )
            if sequence is None:
                sequence = InvoiceSequence(prefix=prefix, current_value=self._first_suffix(prefix))
                db.session.add(sequence)
            else:
                sequence.current_value += 1
            db.session.flush()
            return f"{prefix}-{sequence.current_value}"

    def _first_suffix(self, prefix):
        start = current_app.config.get("INVOICE_SEQUENCE_START", 1000)
        numbers = db.session.query(Invoice.invoice_number).filter(
            Invoice.invoice_number.like(f"{prefix}-%")
        ).all()
        suffixes = [int(n.rsplit("-", 1)[1]) for (n,) in numbers if n.rsplit("-", 1)[1].isdigit()]
        return max(suffixes) + 1 if suffixes else start

    def mark_invoice_paid(self, invoice_id):
        invoice = self.get_invoice(invoice_id)
        if invoice.status == InvoiceStatus.PAID:
            return invoice
        invoice.status = InvoiceStatus.PAID
        invoice.paid_date = utcnow()
        try:
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise PersistenceError("Could not mark invoice paid", invoiceId=invoice_id) from exc
        current_app.logger.info("Invoice %s marked paid", invoice.invoice_number)
        return invoice
