"""Invoice statement exports (CSV or Excel) for the print/export side.

Reads an invoice detail and flattens it to one row per billed line item.
Nothing here writes to the database.
"""

from io import BytesIO

import pandas as pd

from .errors import ValidationError

EXPORT_FORMATS = {
    "csv": "text/csv",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
}

COLUMNS = [
    "invoice_number", "batch_code", "cut_date", "product_id", "color", "size",
    "quantity", "unit_value", "line_value", "batch_amount",
]


def statement_frame(detail) -> pd.DataFrame:
    rows = []
    for batch in detail["batches"]:
        for item in batch["lineItems"]:
            rows.append({
                "invoice_number": detail["invoiceNumber"],
                "batch_code": batch["code"],
                "cut_date": batch["cutDate"],
                "product_id": item["productId"],
                "color": item["selectedColor"],
                "size": item["selectedSize"],
                "quantity": item["quantity"],
                "unit_value": float(item["unitValue"]),
                "line_value": round(float(item["unitValue"]) * item["quantity"], 2),
                "batch_amount": float(batch["amount"]),
            })
    return pd.DataFrame(rows, columns=COLUMNS)


def export_statement(detail, fmt="csv"):
    """Return ``(bytes, mimetype, filename)`` for the invoice statement."""
    fmt = (fmt or "csv").lower()
    if fmt not in EXPORT_FORMATS:
        raise ValidationError(f"Unsupported export format {fmt!r}", formats=sorted(EXPORT_FORMATS))
    df = statement_frame(detail)
    buf = BytesIO()
    if fmt == "xlsx":
        with pd.ExcelWriter(buf, engine="openpyxl") as writer:
            df.to_excel(writer, index=False, sheet_name="statement")
    else:
        buf.write(df.to_csv(index=False).encode("utf-8"))
    filename = f"{detail['invoiceNumber']}.{fmt}"
    return buf.getvalue(), EXPORT_FORMATS[fmt], filename
