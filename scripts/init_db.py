from datetime import date, timedelta
from decimal import Decimal

from cutflow import create_app, db
from cutflow.models import Workshop, Product
from cutflow.registry import BatchRegistry

app = create_app()

with app.app_context():
    db.drop_all()
    db.create_all()

    # Sample workshops, in calendar lane order
    workshops = [
        Workshop(name="Atelier Costura Fina", manager="Marta", phone="11 9999-0001", color="#2563eb", schedule_order=1),
        Workshop(name="Oficina Bela Vista", manager="Joana", phone="11 9999-0002", color="#16a34a", schedule_order=2),
        Workshop(name="Confecções Rocha", manager="Paulo", phone="11 9999-0003", color="#dc2626", schedule_order=3),
    ]
    db.session.add_all(workshops)

    products = [
        Product(name="Camisa social", code="CAMISA-001", production_value=Decimal("12.00")),
        Product(name="Calça jeans", code="CALCA-002", production_value=Decimal("3.50")),
        Product(name="Vestido midi", code="VESTIDO-003", production_value=Decimal("18.75")),
    ]
    db.session.add_all(products)
    db.session.commit()

    # A few batches spread over the current fortnight
    registry = BatchRegistry()
    start = date.today().replace(day=1)
    for i, workshop in enumerate(workshops):
        cut = start + timedelta(days=2 * i)
        registry.create_batch(
            cut_date=cut,
            line_items=[
                {"product_id": products[i].id, "quantity": 10 + i * 5, "selected_color": "preto", "selected_size": "M"},
            ],
            status="external_workshop",
            workshop_id=workshop.id,
            expected_return_date=cut + timedelta(days=5),
        )
    # follow-up batches for the first workshop, each cut after the previous return
    for cut in (start + timedelta(days=6), start + timedelta(days=12)):
        registry.create_batch(
            cut_date=cut,
            line_items=[{"product_id": products[1].id, "quantity": 23}],
            status="external_workshop",
            workshop_id=workshops[0].id,
            expected_return_date=cut + timedelta(days=5),
        )
    registry.create_batch(
        cut_date=start + timedelta(days=1),
        line_items=[{"product_id": products[0].id, "quantity": 40}],
        status="internal_production",
    )

    print("Database initialized.")
