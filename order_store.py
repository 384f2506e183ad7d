import logging
from typing import Dict, FrozenSet, List, Optional, Tuple

from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import next_sequence, now_utc, reset_sequence_if_empty, serialize_doc
from errors import InvalidStatusTransition, OrderNotFound
from schemas import COD_PAID, Order

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    "Pending": frozenset({"Paid", "Shipped", "Delivered", "Cancelled"}),
    "Paid": frozenset({"Shipped", "Delivered", "Cancelled"}),
    "Shipped": frozenset({"Delivered", "Cancelled"}),
    "Delivered": frozenset(),
    "Cancelled": frozenset(),
}


class OrderStore:
    def __init__(self, db: Database):
        self.db = db
        self.orders = db["order"]

    def create(self, order: Order) -> Tuple[dict, bool]:
        """Insert an order, or return the existing row for the same business orderId.

        Returns the stored order and whether this call created it.
        """
        existing = self.orders.find_one({"orderId": order.orderId})
        if existing:
            logger.warning("Order %s already exists as #%s, not creating it again", order.orderId, existing["_id"])
            return serialize_doc(existing), False

        doc = order.model_dump()
        doc["status"] = doc.get("status") or "Pending"
        doc["_id"] = next_sequence(self.db, "order")
        doc["created_at"] = now_utc()
        doc["updated_at"] = doc["created_at"]
        try:
            self.orders.insert_one(doc)
        except DuplicateKeyError:
            # Another request stored the same orderId between our read and insert
            existing = self.orders.find_one({"orderId": order.orderId})
            if existing is None:
                raise
            return serialize_doc(existing), False
        logger.info("Order %s created as #%s (%s)", order.orderId, doc["_id"], order.payment_method)
        return serialize_doc(doc), True

    def get(self, order_id: int) -> dict:
        doc = self.orders.find_one({"_id": order_id})
        if not doc:
            raise OrderNotFound(id=order_id)
        return serialize_doc(doc)

    def find_by_order_id(self, business_id: str) -> Optional[dict]:
        return serialize_doc(self.orders.find_one({"orderId": business_id}))

    def list(self) -> List[dict]:
        return [serialize_doc(d) for d in self.orders.find({}).sort("_id", -1)]

    def list_for_user(self, email: str) -> List[dict]:
        return [serialize_doc(d) for d in self.orders.find({"userEmail": email}).sort("_id", -1)]

    def update_status(self, order_id: int, new_status: str) -> dict:
        current = self.orders.find_one({"_id": order_id})
        if not current:
            raise OrderNotFound(id=order_id)

        old_status = current.get("status", "Pending")
        if new_status not in ALLOWED_TRANSITIONS.get(old_status, frozenset()):
            raise InvalidStatusTransition(f"Cannot move order from {old_status} to {new_status}", id=order_id)

        update = {"status": new_status, "updated_at": now_utc()}
        # Delivery is the only point where a COD order becomes paid
        if new_status == "Delivered" and current.get("payment_method") in ("cod", COD_PAID):
            update["payment_method"] = COD_PAID
            update["payment_status"] = "Paid"

        result = self.orders.update_one({"_id": order_id, "status": old_status}, {"$set": update})
        if result.matched_count == 0:
            raise InvalidStatusTransition(f"Order #{order_id} changed while updating, please reload", id=order_id)
        logger.info("Order #%s moved %s -> %s", order_id, old_status, new_status)
        return serialize_doc({**current, **update})

    def remove(self, order_id: int) -> bool:
        """Delete an order. Returns True when the id sequence was reset."""
        result = self.orders.delete_one({"_id": order_id})
        if result.deleted_count == 0:
            raise OrderNotFound(id=order_id)
        reset = reset_sequence_if_empty(self.db, "order")
        if reset:
            logger.info("All orders removed, order ids restart at 1")
        return reset

    def delete_by_order_id(self, business_id: str) -> None:
        self.orders.delete_one({"orderId": business_id})
        reset_sequence_if_empty(self.db, "order")
