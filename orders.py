"""
Order persistence and the order/plant join.

``join_orders`` is a pure function over already fetched orders and plants.
The list operations fetch the orders for one customer or seller, fetch the
referenced plants in one query and join them in process. An order whose
``plantId`` does not resolve to a plant (deleted plant or malformed id) is
left out of the result rather than reported as an error.
"""
import logging
from typing import Any, Dict, Iterable, List, Mapping

from database import DeleteSummary, DocumentCollection, InsertSummary, UpdateSummary
from errors import ConflictError, ForbiddenError, NotFoundError
from schemas import DELIVERED, PENDING, OrderCreate
from stores import PlantStore, parse_object_id, to_object_id, utcnow

logger = logging.getLogger(__name__)

# order field -> plant field
CUSTOMER_VIEW = {"plantName": "plantName", "plantImage": "image", "plantCategory": "category"}
SELLER_VIEW = {"plantName": "plantName"}


def join_orders(orders: Iterable[dict], plants: Iterable[dict], projection: Mapping[str, str]) -> List[dict]:
    by_id = {p["_id"]: p for p in plants}
    joined = []
    for order in orders:
        plant_id = parse_object_id(order.get("plantId"))
        plant = by_id.get(plant_id) if plant_id is not None else None
        if plant is None:
            continue
        view = dict(order)
        view["plantId"] = plant_id
        for out_field, plant_field in projection.items():
            view[out_field] = plant.get(plant_field)
        joined.append(view)
    return joined


class OrderService:
    def __init__(self, collection: DocumentCollection, plants: PlantStore):
        self.collection = collection
        self.plants = plants

    def create(self, order: OrderCreate, identity: str) -> InsertSummary:
        if order.customer.email != identity:
            raise ForbiddenError("Forbidden Access! Email not Match")
        doc = order.model_dump()
        # every order starts Pending; only the seller moves it on
        doc["status"] = PENDING
        doc.update({"created_at": utcnow(), "updated_at": utcnow()})
        return self.collection.insert_one(doc)

    def checkout(self, order: OrderCreate, identity: str) -> InsertSummary:
        """Take the stock and record the order; the stock is put back if the insert fails."""
        if order.customer.email != identity:
            raise ForbiddenError("Forbidden Access! Email not Match")
        self.plants.adjust_quantity(order.plantId, -order.quantity)
        try:
            return self.create(order, identity)
        except Exception:
            logger.exception("Order insert failed, restocking plant %s", order.plantId)
            self.plants.adjust_quantity(order.plantId, order.quantity)
            raise

    def list_for_customer(self, email: str) -> List[dict]:
        return self._joined({"customer.email": email}, CUSTOMER_VIEW)

    def list_for_seller(self, email: str) -> List[dict]:
        return self._joined({"seller": email}, SELLER_VIEW)

    def update_status(self, order_id: Any, status: str, seller_email: str) -> UpdateSummary:
        order = self._get(order_id)
        if order.get("seller") != seller_email:
            raise ForbiddenError("Forbidden Access! Not your order")
        return self.collection.update_one({"_id": order["_id"]}, {"status": status, "updated_at": utcnow()})

    def cancel_by_seller(self, order_id: Any, seller_email: str) -> DeleteSummary:
        order = self._get(order_id)
        if order.get("seller") != seller_email:
            raise ForbiddenError("Forbidden Access! Not your order")
        return self.collection.delete_one({"_id": order["_id"]})

    def cancel_by_customer(self, order_id: Any, customer_email: str) -> DeleteSummary:
        order = self._get(order_id)
        if (order.get("customer") or {}).get("email") != customer_email:
            raise ForbiddenError("Forbidden Access! Not your order")
        if order.get("status") == DELIVERED:
            raise ConflictError("Cannot Cancel Once The Product is Delivered")
        # status is part of the filter so a delivery landing in between is not deleted
        res = self.collection.delete_one({"_id": order["_id"], "status": {"$ne": DELIVERED}})
        if res.deleted_count == 0:
            raise ConflictError("Cannot Cancel Once The Product is Delivered")
        return res

    def _get(self, order_id: Any) -> dict:
        order = self.collection.find_one({"_id": to_object_id(order_id)})
        if not order:
            raise NotFoundError("Order not found")
        return order

    def _joined(self, query: Dict[str, Any], projection: Mapping[str, str]) -> List[dict]:
        orders = self.collection.find(query)
        ids = {oid for oid in (parse_object_id(o.get("plantId")) for o in orders) if oid is not None}
        plants = self.plants.find_by_ids(list(ids))
        return join_orders(orders, plants, projection)
