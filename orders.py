"""
Order headers and their line items.

An order lives in two collections: the header in "order" and one
"orderdetail" document per line item, tagged with the header id in
`orderId`. Every write touching both runs inside a single transaction so
a reader never sees a header without its line items or the reverse.

`totalAmount` is stored exactly as submitted; it is not checked against
the line items.
"""
import logging
from typing import Any, Dict, Iterable, List, Optional

from pymongo import ReturnDocument
from pymongo.client_session import ClientSession

from auth import public_user
from database import Database, guard_storage, serialize_doc, to_decimal128, to_object_id, utcnow
from errors import NotFoundError
from schemas import OrderDetailIn, OrderIn

logger = logging.getLogger(__name__)


def _header_fields(data: OrderIn) -> Dict[str, Any]:
    return data.model_dump(by_alias=True, exclude={"order_details"})


class OrderStore:
    orders = "order"
    details = "orderdetail"

    def __init__(self, db: Database):
        self.db = db

    def _insert_details(self, order_id: str, details: Iterable[OrderDetailIn],
                        session: Optional[ClientSession]) -> List[Dict[str, Any]]:
        docs = [
            {
                "orderId": order_id,
                "productId": d.product_id,
                "quantity": d.quantity,
                "price": to_decimal128(d.price),
            }
            for d in details
        ]
        self.db[self.details].insert_many(docs, session=session)
        return docs

    def _users_by_id(self, refs: Iterable[str]) -> Dict[str, Dict[str, Any]]:
        oids = []
        for ref in set(refs):
            try:
                oids.append(to_object_id(ref, "User"))
            except NotFoundError:
                continue
        if not oids:
            return {}
        users = self.db.get_documents("user", {"_id": {"$in": oids}})
        return {str(u["_id"]): public_user(u) for u in users}

    def _with_details(self, order: Dict[str, Any], details: List[Dict[str, Any]],
                      users: Dict[str, Dict[str, Any]]) -> Dict[str, Any]:
        out = serialize_doc(order)
        out["user"] = users.get(order["user"], order["user"])
        out["details"] = serialize_doc(details)
        return out

    @guard_storage
    def create_order(self, data: OrderIn) -> Dict[str, Any]:
        with self.db.transaction() as session:
            order = self.db.create_document(self.orders, _header_fields(data), session=session)
            details = self._insert_details(str(order["_id"]), data.order_details, session)
        logger.info("Order created", extra={"order_id": str(order["_id"]), "details": len(details)})
        return {"order": serialize_doc(order), "orderDetails": serialize_doc(details)}

    @guard_storage
    def get_all_orders(self) -> List[Dict[str, Any]]:
        orders = self.db.get_documents(self.orders)
        details = self.db.get_documents(self.details)
        users = self._users_by_id(o["user"] for o in orders)
        return [
            self._with_details(o, [d for d in details if d["orderId"] == str(o["_id"])], users)
            for o in orders
        ]

    @guard_storage
    def get_order_by_id(self, order_id: str) -> Dict[str, Any]:
        order = self.db[self.orders].find_one({"_id": to_object_id(order_id, "Order")})
        if not order:
            raise NotFoundError("Order not found")
        details = self.get_order_details(str(order["_id"]))
        return self._with_details(order, details, self._users_by_id([order["user"]]))

    @guard_storage
    def get_order_details(self, order_id: str) -> List[Dict[str, Any]]:
        return serialize_doc(self.db.get_documents(self.details, {"orderId": order_id}))

    @guard_storage
    def update_order_with_detail(self, order_id: str, data: OrderIn) -> Dict[str, Any]:
        oid = to_object_id(order_id, "Order")
        fields = _header_fields(data)
        fields["updatedAt"] = utcnow()
        with self.db.transaction() as session:
            order = self.db[self.orders].find_one_and_update(
                {"_id": oid}, {"$set": fields}, return_document=ReturnDocument.AFTER, session=session
            )
            if not order:
                raise NotFoundError("Order not found")
            self.db[self.details].delete_many({"orderId": str(oid)}, session=session)
            details = self._insert_details(str(oid), data.order_details, session)
        logger.info("Order updated", extra={"order_id": str(oid), "details": len(details)})
        return {"order": serialize_doc(order), "orderDetails": serialize_doc(details)}

    @guard_storage
    def delete_order(self, order_id: str) -> None:
        oid = to_object_id(order_id, "Order")
        with self.db.transaction() as session:
            order = self.db[self.orders].find_one_and_delete({"_id": oid}, session=session)
            if not order:
                raise NotFoundError("Order not found")
            result = self.db[self.details].delete_many({"orderId": str(oid)}, session=session)
        logger.info("Order deleted", extra={"order_id": str(oid), "details": result.deleted_count})
