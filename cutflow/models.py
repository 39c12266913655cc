"""Database models for batch scheduling and workshop settlement.

Workshops and products are master data owned by other parts of the system;
only the columns the scheduling and settlement code reads are kept here.
Calendar dates (cut, expected return, actual return, due) are stored as
plain ``Date`` columns so no timezone shift can move a batch to another day.
"""

from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import CheckConstraint, func

from . import db


class BatchStatus:
    WAITING = "waiting"
    INTERNAL_PRODUCTION = "internal_production"
    EXTERNAL_WORKSHOP = "external_workshop"
    RETURNED = "returned"

    ALL = (WAITING, INTERNAL_PRODUCTION, EXTERNAL_WORKSHOP, RETURNED)


class InvoiceStatus:
    PENDING = "pending"
    PAID = "paid"


def utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Workshop(db.Model):
    """An external subcontractor that sews or finishes batches.

    ``schedule_order`` controls the order of calendar lanes and of the
    financial summary; ``color`` is only passed through to the calendar client.
    """

    __tablename__ = "workshops"
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    manager = db.Column(db.String(120))
    phone = db.Column(db.String(50))
    color = db.Column(db.String(20), nullable=False, default="#64748b")
    schedule_order = db.Column(db.Integer, nullable=False, default=1)

    batches = db.relationship("Batch", backref="workshop", lazy=True)
    invoices = db.relationship("Invoice", backref="workshop", lazy=True)


class Product(db.Model):
    __tablename__ = "products"
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    code = db.Column(db.String(50), unique=True, nullable=False)
    production_value = db.Column(db.Numeric(10, 2), default=Decimal("0"))


class Batch(db.Model):
    """A cut production run moving between internal production and workshops.

    ``workshop_id`` is null only while the work is internal.  ``paid`` is
    flipped exclusively by invoice generation and mirrors the existence of an
    ``InvoiceBatch`` row for this batch.
    """

    __tablename__ = "batches"
    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(20), unique=True, nullable=False)
    cut_date = db.Column(db.Date, nullable=False, index=True)
    status = db.Column(db.String(30), nullable=False, default=BatchStatus.WAITING)
    workshop_id = db.Column(db.Integer, db.ForeignKey("workshops.id"), nullable=True, index=True)
    expected_return_date = db.Column(db.Date, nullable=True)
    actual_return_date = db.Column(db.Date, nullable=True)
    observations = db.Column(db.Text)
    image_url = db.Column(db.String(512))
    paid = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, default=func.now())

    line_items = db.relationship(
        "BatchLineItem", backref="batch", lazy=True, cascade="all, delete-orphan",
        order_by="BatchLineItem.id",
    )
    history = db.relationship(
        "BatchHistory", backref="batch", lazy=True, cascade="all, delete-orphan",
    )

    @property
    def lane_key(self):
        return self.workshop_id or 0

    def to_dict(self):
        return {
            "id": self.id,
            "code": self.code,
            "cutDate": self.cut_date.isoformat(),
            "status": self.status,
            "workshopId": self.workshop_id,
            "expectedReturnDate": _iso(self.expected_return_date),
            "actualReturnDate": _iso(self.actual_return_date),
            "observations": self.observations,
            "imageUrl": self.image_url,
            "paid": self.paid,
            "lineItems": [li.to_dict() for li in self.line_items],
        }


class BatchLineItem(db.Model):
    __tablename__ = "batch_line_items"
    __table_args__ = (CheckConstraint("quantity >= 1", name="ck_line_item_quantity"),)
    id = db.Column(db.Integer, primary_key=True)
    batch_id = db.Column(db.Integer, db.ForeignKey("batches.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    selected_color = db.Column(db.String(50))
    selected_size = db.Column(db.String(20))
    # production value frozen when the batch is billed; null until then
    unit_value = db.Column(db.Numeric(10, 2), nullable=True)

    def to_dict(self):
        return {
            "productId": self.product_id,
            "quantity": self.quantity,
            "selectedColor": self.selected_color,
            "selectedSize": self.selected_size,
        }


class BatchHistory(db.Model):
    """Append-only audit row for a batch (creation and each transition)."""

    __tablename__ = "batch_history"
    id = db.Column(db.Integer, primary_key=True)
    batch_id = db.Column(db.Integer, db.ForeignKey("batches.id"), nullable=False, index=True)
    action = db.Column(db.String(200), nullable=False)
    user_id = db.Column(db.Integer, nullable=True)
    timestamp = db.Column(db.DateTime, default=utcnow, nullable=False, index=True)
    notes = db.Column(db.Text)

    def to_dict(self):
        return {
            "id": self.id,
            "batchId": self.batch_id,
            "action": self.action,
            "userId": self.user_id,
            "timestamp": self.timestamp.isoformat(),
            "notes": self.notes,
        }


class Invoice(db.Model):
    """A settlement document for one workshop.

    ``total_amount`` is fixed when the invoice is issued and is never
    recomputed from current product prices.
    """

    __tablename__ = "invoices"
    id = db.Column(db.Integer, primary_key=True)
    workshop_id = db.Column(db.Integer, db.ForeignKey("workshops.id"), nullable=False, index=True)
    invoice_number = db.Column(db.String(100), unique=True, nullable=False)
    issue_date = db.Column(db.DateTime, default=utcnow, nullable=False)
    due_date = db.Column(db.Date, nullable=False)
    total_amount = db.Column(db.Numeric(10, 2), nullable=False)
    status = db.Column(db.String(20), nullable=False, default=InvoiceStatus.PENDING)
    paid_date = db.Column(db.DateTime, nullable=True)
    notes = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=func.now())

    links = db.relationship("InvoiceBatch", backref="invoice", lazy=True, order_by="InvoiceBatch.id")

    def to_dict(self):
        return {
            "id": self.id,
            "workshopId": self.workshop_id,
            "invoiceNumber": self.invoice_number,
            "issueDate": self.issue_date.isoformat(),
            "dueDate": self.due_date.isoformat(),
            "totalAmount": str(self.total_amount),
            "status": self.status,
            "paidDate": _iso(self.paid_date),
            "notes": self.notes,
            "batches": [link.to_dict() for link in self.links],
        }


class InvoiceBatch(db.Model):
    """Links a batch to the invoice that billed it.

    The unique constraint on ``batch_id`` backs the rule that a batch is
    billed at most once.
    """

    __tablename__ = "invoice_batches"
    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)
    batch_id = db.Column(db.Integer, db.ForeignKey("batches.id"), nullable=False, unique=True)
    amount = db.Column(db.Numeric(10, 2), nullable=False)

    batch = db.relationship("Batch", lazy=True)

    def to_dict(self):
        return {"batchId": self.batch_id, "amount": str(self.amount)}


class InvoiceSequence(db.Model):
    """Reserved sequence row per invoice prefix (``ABC-DDMMYY``).

    Locked with ``SELECT ... FOR UPDATE`` while a number is allocated.
    """

    __tablename__ = "invoice_sequences"
    id = db.Column(db.Integer, primary_key=True)
    prefix = db.Column(db.String(20), unique=True, nullable=False)
    current_value = db.Column(db.Integer, nullable=False)


def _iso(value):
    return value.isoformat() if value is not None else None
