from decimal import Decimal

import pytest

from cutflow import create_app, db
from cutflow.models import Workshop, Product


@pytest.fixture()
def app():
    app = create_app(testing=True)
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def seed(app):
    w1 = Workshop(name="Atelier Um", color="#2563eb", schedule_order=2)
    w2 = Workshop(name="Bordados Dois", color="#16a34a", schedule_order=1)
    shirt = Product(name="Camisa", code="CAMISA-001", production_value=Decimal("12.00"))
    jeans = Product(name="Calça", code="CALCA-002", production_value=Decimal("3.50"))
    db.session.add_all([w1, w2, shirt, jeans])
    db.session.commit()
    return {"w1": w1.id, "w2": w2.id, "shirt": shirt.id, "jeans": jeans.id}
