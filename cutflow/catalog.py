"""Read-only lookups into master data owned elsewhere.

The scheduling and settlement code only needs a product's production value
and a workshop's identity, so that is all these classes expose.
"""

from decimal import Decimal

from . import db
from .errors import NotFoundError
from .models import Product, Workshop


class ProductCatalog:
    def get_production_value(self, product_id):
        """Unit production value for ``product_id``, or ``None`` when unknown."""
        product = db.session.get(Product, product_id)
        if product is None or product.production_value is None:
            return None
        return Decimal(product.production_value)

    def exists(self, product_id):
        return db.session.get(Product, product_id) is not None


class WorkshopDirectory:
    def get_workshop(self, workshop_id):
        workshop = db.session.get(Workshop, workshop_id)
        if workshop is None:
            raise NotFoundError("Workshop not found", workshopId=workshop_id)
        return workshop

    def lock_workshop(self, workshop_id):
        """Fetch the workshop row with ``FOR UPDATE`` (a no-op on SQLite)."""
        workshop = (
            db.session.query(Workshop)
            .filter(Workshop.id == workshop_id)
            .with_for_update()
            .first()
        )
        if workshop is None:
            raise NotFoundError("Workshop not found", workshopId=workshop_id)
        return workshop

    def all_in_schedule_order(self):
        return Workshop.query.order_by(Workshop.schedule_order, Workshop.id).all()
