"""
Order lifecycle.

Orders move forward through new -> picking -> shipped -> completed, and may be
cancelled from any state that is not completed or cancelled. Creation takes
stock out and cancellation puts it back; both happen inside a single
transaction together with the order write, so stock and order status never
disagree after a failure.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import HTTPException

from database import Database, parse_object_id, serialize_doc
from schemas import (
    ORDER_PROGRESSION,
    ORDER_STATUSES,
    ORDER_TERMINAL_STATUSES,
    Order,
    OrderItem,
)

logger = logging.getLogger(__name__)


class OrderConflict(Exception):
    """Raised inside a transaction when the order changed under us."""


def _now():
    return datetime.now(timezone.utc)


def load_order(db: Database, order_id: str, session=None) -> Dict[str, Any]:
    order = db["order"].find_one({"_id": parse_object_id(order_id, "order")}, session=session)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    return order


def is_participant(order: Dict[str, Any], user: Dict[str, Any]) -> bool:
    return user.get("role") == "admin" or user.get("id") in (order.get("consumer_id"), order.get("producer_id"))


def create_order(db: Database, consumer_id: str, producer_id: str, items: List[Dict[str, Any]], total: float) -> Dict[str, Any]:
    """Check stock, take it out and insert the order, all in one transaction.

    ``items`` are ``{"product_id", "quantity"}`` dicts; name and unit price
    are copied from the product document so the order keeps the price the
    consumer actually saw.
    """
    if not items:
        raise HTTPException(status_code=400, detail="An order needs at least one item")
    parse_object_id(producer_id, "producer")

    with db.transaction() as session:
        snapshot: List[OrderItem] = []
        for item in items:
            product_oid = parse_object_id(item["product_id"], "product")
            product = db["product"].find_one({"_id": product_oid}, session=session)
            if not product:
                raise HTTPException(status_code=404, detail=f"Product {item.get('name') or item['product_id']} not found")
            if str(product.get("producer_id")) != producer_id:
                raise HTTPException(status_code=400, detail=f"Product {product.get('name')} is not sold by this producer")
            quantity = int(item["quantity"])
            if int(product.get("stock", 0)) < quantity:
                raise HTTPException(
                    status_code=400,
                    detail=f"Insufficient stock for {product.get('name')}. Available: {product.get('stock', 0)}, requested: {quantity}",
                )
            snapshot.append(OrderItem(
                product_id=str(product["_id"]),
                name=product.get("name"),
                quantity=quantity,
                unit_price=float(product.get("price", 0)),
            ))

        expected = round(sum(i.unit_price * i.quantity for i in snapshot), 2)
        if abs(expected - round(float(total), 2)) >= 0.01:
            raise HTTPException(status_code=400, detail=f"Order total {total:.2f} does not match items total {expected:.2f}")

        for oi in snapshot:
            res = db["product"].update_one(
                {"_id": parse_object_id(oi.product_id, "product"), "stock": {"$gte": oi.quantity}},
                {"$inc": {"stock": -oi.quantity}, "$set": {"updated_at": _now()}},
                session=session,
            )
            if res.modified_count == 0:
                raise HTTPException(status_code=409, detail=f"Stock for {oi.name} changed, please retry")

        order = Order(
            consumer_id=consumer_id,
            producer_id=producer_id,
            items=snapshot,
            total=expected,
            status="new",
        )
        order_id = db.create_document("order", order, session=session)

    logger.info("Order %s created by consumer %s for producer %s (total %.2f)", order_id, consumer_id, producer_id, expected)
    return serialize_doc(load_order(db, order_id))


def list_orders(db: Database, consumer_id: Optional[str] = None, producer_id: Optional[str] = None) -> List[Dict[str, Any]]:
    query: Dict[str, Any] = {}
    if consumer_id:
        query["consumer_id"] = consumer_id
    if producer_id:
        query["producer_id"] = producer_id
    return [serialize_doc(d) for d in db.get_documents("order", query)]


def advance_status(db: Database, order_id: str, target: str) -> Dict[str, Any]:
    """Move an order one step forward along the status progression.

    The write is conditioned on the status we read, so of two concurrent
    advances only one can succeed.
    """
    if target not in ORDER_STATUSES:
        raise HTTPException(status_code=400, detail=f"Unknown status '{target}'. Allowed: {', '.join(ORDER_STATUSES)}")
    if target == "cancelled":
        raise HTTPException(status_code=400, detail="Use the cancel endpoint to cancel an order")

    order = load_order(db, order_id)
    current = order.get("status")
    if current in ORDER_TERMINAL_STATUSES:
        raise HTTPException(status_code=409, detail=f"Order is already {current}")
    if current not in ORDER_PROGRESSION:
        raise HTTPException(status_code=409, detail=f"Order has unrecognised status '{current}' and cannot be advanced")
    allowed = ORDER_PROGRESSION[ORDER_PROGRESSION.index(current) + 1]
    if target != allowed:
        raise HTTPException(status_code=409, detail=f"Cannot move order from {current} to {target}; next status is {allowed}")

    res = db["order"].update_one(
        {"_id": order["_id"], "status": current},
        {"$set": {"status": target, "updated_at": _now()}},
    )
    if res.modified_count == 0:
        raise HTTPException(status_code=409, detail="Order was updated by someone else, reload and retry")
    logger.info("Order %s moved from %s to %s", order_id, current, target)
    return serialize_doc(load_order(db, order_id))


def cancel_order(db: Database, order_id: str, cancelled_by: str, reason: str) -> Dict[str, Any]:
    if cancelled_by not in ("producer", "consumer"):
        raise HTTPException(status_code=400, detail="cancelled_by must be producer or consumer")
    if not reason or not reason.strip():
        raise HTTPException(status_code=400, detail="A cancellation reason is required")

    order = load_order(db, order_id)
    if order.get("status") == "completed":
        raise HTTPException(status_code=409, detail="A completed order cannot be cancelled")
    if order.get("status") == "cancelled":
        raise HTTPException(status_code=409, detail="This order has already been cancelled")

    try:
        with db.transaction() as session:
            now = _now()
            res = db["order"].update_one(
                {"_id": order["_id"], "status": {"$nin": list(ORDER_TERMINAL_STATUSES)}},
                {"$set": {
                    "status": "cancelled",
                    "cancelled_by": cancelled_by,
                    "cancellation_reason": reason,
                    "cancelled_at": now,
                    "updated_at": now,
                }},
                session=session,
            )
            if res.modified_count == 0:
                raise OrderConflict()
            for item in order.get("items", []):
                db["product"].update_one(
                    {"_id": parse_object_id(item["product_id"], "product")},
                    {"$inc": {"stock": int(item["quantity"])}, "$set": {"updated_at": now}},
                    session=session,
                )
    except OrderConflict:
        raise HTTPException(status_code=409, detail="Order was completed or cancelled in the meantime")

    logger.info("Order %s cancelled by %s: %s", order_id, cancelled_by, reason)
    return {"message": "Order cancelled", "order": serialize_doc(load_order(db, order_id))}


def review_order(db: Database, order_id: str, score: int, comment: Optional[str] = None) -> Dict[str, Any]:
    if isinstance(score, bool) or not isinstance(score, int) or score < 1 or score > 5:
        raise HTTPException(status_code=400, detail="Score must be between 1 and 5")
    order = load_order(db, order_id)
    if order.get("status") != "completed":
        raise HTTPException(status_code=400, detail="Only completed orders can be reviewed")
    if order.get("review"):
        raise HTTPException(status_code=409, detail="Order has already been reviewed")

    review = {"score": score, "comment": comment, "reviewed_at": _now()}
    res = db["order"].update_one(
        {"_id": order["_id"], "status": "completed", "review": None},
        {"$set": {"review": review, "updated_at": review["reviewed_at"]}},
    )
    if res.modified_count == 0:
        raise HTTPException(status_code=409, detail="Order has already been reviewed")
    logger.info("Order %s reviewed with score %d", order_id, score)
    return serialize_doc(load_order(db, order_id))
