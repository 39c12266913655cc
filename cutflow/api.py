from datetime import date
from io import BytesIO

from flask import Blueprint, request, jsonify, current_app, send_file

from .calendar_window import render_window
from .errors import CutflowError, PersistenceError, ValidationError
from .exports import export_statement
from .registry import BatchRegistry
from .settlement import SettlementEngine

api = Blueprint("api", __name__)

registry = BatchRegistry()
conflicts = registry.conflicts
settlement = SettlementEngine()


@api.errorhandler(CutflowError)
def handle_cutflow_error(exc):
    if isinstance(exc, PersistenceError):
        current_app.logger.error("%s %s failed: %s", request.method, request.path, exc.message)
    return jsonify(exc.to_dict()), exc.status_code


def parse_date(value, field, required=True):
    if value in (None, ""):
        if required:
            raise ValidationError(f"{field} is required")
        return None
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        raise ValidationError(f"{field} must be an ISO date (YYYY-MM-DD)", field=field)


def parse_int(value, field, required=True):
    if value in (None, ""):
        if required:
            raise ValidationError(f"{field} is required")
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer", field=field)
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer", field=field)


def line_items_from(payload):
    raw = payload.get("lineItems")
    if raw is None:
        raw = payload.get("products") or []
    if not isinstance(raw, list):
        raise ValidationError("lineItems must be a list")
    items = []
    for entry in raw:
        if not isinstance(entry, dict):
            raise ValidationError("each line item must be an object")
        quantity = entry.get("quantity")
        items.append({
            "product_id": parse_int(entry.get("productId"), "productId"),
            # a non-integer quantity is left for the registry to reject
            "quantity": _maybe_int(quantity),
            "selected_color": entry.get("selectedColor") or None,
            "selected_size": entry.get("selectedSize") or None,
        })
    return items


def _maybe_int(value):
    if not isinstance(value, str):
        return value
    try:
        return int(value)
    except (TypeError, ValueError):
        return value


# -- batches ---------------------------------------------------------------

@api.post("/batches")
def create_batch():
    data = request.get_json(silent=True) or {}
    batch = registry.create_batch(
        cut_date=parse_date(data.get("cutDate"), "cutDate"),
        line_items=line_items_from(data),
        status=data.get("status") or "waiting",
        workshop_id=parse_int(data.get("workshopId"), "workshopId", required=False),
        expected_return_date=parse_date(data.get("expectedReturnDate"), "expectedReturnDate", required=False),
        observations=data.get("observations") or None,
        user_id=parse_int(data.get("userId"), "userId", required=False),
    )
    return jsonify(batch.to_dict()), 201


@api.get("/batches")
def list_batches():
    return jsonify([b.to_dict() for b in registry.list_batches()])


@api.get("/batches/<int:batch_id>")
def get_batch(batch_id):
    return jsonify(registry.get_batch(batch_id).to_dict())


@api.patch("/batches/<int:batch_id>/status")
def update_batch_status(batch_id):
    data = request.get_json(silent=True) or {}
    if not data.get("status"):
        raise ValidationError("status is required")
    batch = registry.update_status(
        batch_id,
        data["status"],
        workshop_id=parse_int(data.get("workshopId"), "workshopId", required=False),
        observations=data.get("observations"),
        user_id=parse_int(data.get("userId"), "userId", required=False),
    )
    return jsonify(batch.to_dict())


@api.delete("/batches/<int:batch_id>")
def delete_batch(batch_id):
    registry.delete_batch(batch_id)
    return "", 204


@api.get("/batches/<int:batch_id>/history")
def batch_history(batch_id):
    return jsonify([h.to_dict() for h in registry.list_history(batch_id)])


@api.put("/batches/<int:batch_id>/image")
def set_batch_image(batch_id):
    data = request.get_json(silent=True) or {}
    image_url = (data.get("imageUrl") or "").strip()
    if not image_url:
        raise ValidationError("imageUrl is required")
    return jsonify(registry.set_image_url(batch_id, image_url).to_dict())


# -- calendar and conflicts ------------------------------------------------

@api.get("/calendar")
def calendar_window():
    reference = parse_date(request.args.get("date"), "date", required=False) or date.today()
    mode = request.args.get("mode", "biweekly")
    return jsonify(render_window(reference, mode, registry.list_batches()))


@api.get("/conflicts/check")
def check_conflict():
    workshop_id = parse_int(request.args.get("workshopId"), "workshopId")
    cut_date = parse_date(request.args.get("cutDate"), "cutDate")
    conflict = conflicts.check_conflict(workshop_id, cut_date)
    return jsonify({"conflict": conflict.to_dict() if conflict else None})


@api.post("/conflicts/resolve")
def resolve_conflict():
    data = request.get_json(silent=True) or {}
    batch = conflicts.resolve_conflict(
        parse_int(data.get("batchId"), "batchId"),
        parse_date(data.get("cutDate"), "cutDate"),
        user_id=parse_int(data.get("userId"), "userId", required=False),
    )
    return jsonify(batch.to_dict())


# -- settlement ------------------------------------------------------------

@api.get("/workshops/<int:workshop_id>/unbilled")
def unbilled_batches(workshop_id):
    batches = settlement.list_unbilled(
        workshop_id,
        parse_date(request.args.get("startDate"), "startDate"),
        parse_date(request.args.get("endDate"), "endDate"),
    )
    return jsonify([
        dict(b.to_dict(), value=str(settlement.valuate_batch(b))) for b in batches
    ])


@api.get("/financial/summary")
def workshop_summary():
    return jsonify(settlement.summarize_all_workshops(
        parse_date(request.args.get("startDate"), "startDate"),
        parse_date(request.args.get("endDate"), "endDate"),
    ))


@api.post("/invoices")
def generate_invoice():
    data = request.get_json(silent=True) or {}
    batch_ids = data.get("batchIds")
    if not isinstance(batch_ids, list) or not batch_ids:
        raise ValidationError("batchIds must be a non-empty list")
    invoice = settlement.generate_invoice(
        parse_int(data.get("workshopId"), "workshopId"),
        [parse_int(b, "batchIds") for b in batch_ids],
        parse_date(data.get("dueDate"), "dueDate"),
        notes=data.get("notes") or None,
    )
    return jsonify(invoice.to_dict()), 201


@api.get("/invoices")
def list_invoices():
    workshop_id = parse_int(request.args.get("workshopId"), "workshopId", required=False)
    return jsonify([i.to_dict() for i in settlement.list_invoices(workshop_id)])


@api.get("/invoices/<int:invoice_id>")
def get_invoice(invoice_id):
    return jsonify(settlement.invoice_detail(invoice_id))


@api.post("/invoices/<int:invoice_id>/pay")
def mark_invoice_paid(invoice_id):
    return jsonify(settlement.mark_invoice_paid(invoice_id).to_dict())


@api.get("/invoices/<int:invoice_id>/export")
def export_invoice(invoice_id):
    detail = settlement.invoice_detail(invoice_id)
    content, mimetype, filename = export_statement(detail, request.args.get("format", "csv"))
    return send_file(BytesIO(content), mimetype=mimetype, as_attachment=True, download_name=filename)
