"""
Order workflow: checkout from the cart, customer cancellation, and admin status
progression.

Checkout and cancellation touch several documents (plants, the order, the
cart). They run as a sequence of single-document atomic updates, and every
completed step is undone if a later one fails, so a failed call leaves stock,
cart and orders as they were.

    pending --(cancel)--> cancelled
    pending --> processing --> shipped --> delivered
"""
import logging
import re
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from pymongo import DESCENDING, ReturnDocument
from pymongo.errors import PyMongoError

from auth import get_current_user, require_admin
from cart import load_cart
from catalog import InsufficientStock, release_all, release_stock, reserve_stock
from database import db, create_document, get_documents, now, serialize, to_object_id
from schemas import DeliveryAddress, Order, OrderItem, OrderStatus, Role

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/orders", tags=["orders"])

ALLOWED_TRANSITIONS = {
    OrderStatus.pending: {OrderStatus.processing, OrderStatus.cancelled},
    OrderStatus.processing: {OrderStatus.shipped},
    OrderStatus.shipped: {OrderStatus.delivered},
    OrderStatus.delivered: set(),
    OrderStatus.cancelled: set(),
}


class PlaceOrderPayload(BaseModel):
    delivery_address: DeliveryAddress


class StatusChange(BaseModel):
    status: str


def find_order(order_id: str) -> dict:
    oid = to_object_id(order_id)
    order = db["order"].find_one({"_id": oid}) if oid else None
    if not order:
        raise HTTPException(404, "Order not found")
    return order


def check_access(order: dict, user: dict, allow_admin: bool = False):
    if order["user_id"] == user["id"]:
        return
    if allow_admin and user["role"] == Role.admin.value:
        return
    raise HTTPException(403, "Access denied")


def place_order(user: dict, address: DeliveryAddress) -> dict:
    """Turn the user's cart into a pending COD order and take the stock."""
    cart, plants = load_cart(user["id"])
    if not cart or not cart["items"]:
        raise HTTPException(400, "Cart is empty")

    items = []
    for line in cart["items"]:
        plant = plants.get(line["plant_id"])
        if not plant or not plant.get("is_active") or plant["stock"] < line["quantity"]:
            name = plant["name"] if plant else "unknown plant"
            raise HTTPException(400, f"Insufficient stock for {name}")
        items.append(OrderItem(
            plant_id=line["plant_id"],
            plant_name=plant["name"],
            quantity=line["quantity"],
            price=plant["price"],
        ))

    order = Order(
        user_id=user["id"],
        customer_name=user["name"],
        customer_email=user["email"],
        items=items,
        delivery_address=address,
        total=sum(item.price * item.quantity for item in items),
    )

    # The check above was only a read; another checkout may have taken the
    # units since. reserve_stock re-checks and decrements in one update.
    reserved = []
    try:
        for item in order.items:
            reserve_stock(item.plant_id, item.quantity)
            reserved.append((item.plant_id, item.quantity))
    except InsufficientStock as exc:
        release_all(reserved)
        raise HTTPException(400, f"Insufficient stock for {plants[exc.plant_id]['name']}")
    except PyMongoError:
        logger.exception("Stock reservation failed for user %s", user["id"])
        release_all(reserved)
        raise

    try:
        order_id = create_document("order", order)
    except PyMongoError:
        logger.exception("Order insert failed for user %s", user["id"])
        release_all(reserved)
        raise

    try:
        db["cart"].delete_one({"_id": cart["_id"]})
    except PyMongoError:
        logger.exception("Cart delete failed after order %s, rolling back", order_id)
        try:
            db["order"].delete_one({"_id": to_object_id(order_id)})
        finally:
            release_all(reserved)
        raise

    logger.info("Order %s placed by %s, total %s", order_id, user["id"], order.total)
    return db["order"].find_one({"_id": to_object_id(order_id)})


def _cancel(order: dict) -> dict:
    cancelled = db["order"].find_one_and_update(
        {"_id": order["_id"], "status": OrderStatus.pending.value},
        {"$set": {"status": OrderStatus.cancelled.value, "updated_at": now()}},
        return_document=ReturnDocument.AFTER,
    )
    if cancelled is None:
        current = db["order"].find_one({"_id": order["_id"]}, {"status": 1})
        raise HTTPException(400, f"Cannot cancel order with status: {current['status']}")

    restored = []
    try:
        for item in cancelled["items"]:
            release_stock(item["plant_id"], item["quantity"])
            restored.append(item)
    except PyMongoError:
        logger.exception("Stock restore failed for order %s, reverting cancellation", order["_id"])
        try:
            for item in restored:
                try:
                    reserve_stock(item["plant_id"], item["quantity"])
                except (InsufficientStock, PyMongoError):
                    logger.exception("Could not take back %s units of plant %s", item["quantity"], item["plant_id"])
        finally:
            db["order"].update_one(
                {"_id": order["_id"]},
                {"$set": {"status": OrderStatus.pending.value, "updated_at": now()}},
            )
        raise

    logger.info("Order %s cancelled, stock restored", order["_id"])
    return cancelled


def cancel_order(order_id: str, user: dict) -> dict:
    order = find_order(order_id)
    check_access(order, user)
    if order["status"] != OrderStatus.pending.value:
        raise HTTPException(400, f"Cannot cancel order with status: {order['status']}")
    return _cancel(order)


def update_order_status(order_id: str, new_status: str) -> dict:
    try:
        target = OrderStatus(new_status)
    except ValueError:
        raise HTTPException(400, "Invalid status")

    order = find_order(order_id)
    current = OrderStatus(order["status"])
    if target == current:
        return order
    if target not in ALLOWED_TRANSITIONS[current]:
        raise HTTPException(400, f"Cannot change order status from {current.value} to {target.value}")
    if target == OrderStatus.cancelled:
        return _cancel(order)

    updated = db["order"].find_one_and_update(
        {"_id": order["_id"], "status": current.value},
        {"$set": {"status": target.value, "updated_at": now()}},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise HTTPException(400, "Order status changed meanwhile, reload and retry")
    logger.info("Order %s moved from %s to %s", order_id, current.value, target.value)
    return updated


def order_stats() -> dict:
    revenue = list(db["order"].aggregate([
        {"$match": {"status": {"$ne": OrderStatus.cancelled.value}}},
        {"$group": {"_id": None, "total": {"$sum": "$total"}}},
    ]))
    by_status = list(db["order"].aggregate([
        {"$group": {"_id": "$status", "count": {"$sum": 1}}},
    ]))
    recent = list(db["order"].find({}).sort("created_at", DESCENDING).limit(5))
    return {
        "totalOrders": db["order"].count_documents({}),
        "totalRevenue": revenue[0]["total"] if revenue else 0,
        "ordersByStatus": [{"status": s["_id"], "count": s["count"]} for s in by_status],
        "recentOrders": serialize(recent),
    }


@router.post("", status_code=201)
def create_order(payload: PlaceOrderPayload, user=Depends(get_current_user)):
    order = place_order(user, payload.delivery_address)
    return {"success": True, "message": "Order placed successfully", "order": serialize(order)}


@router.get("")
def list_my_orders(user=Depends(get_current_user)):
    orders = get_documents("order", {"user_id": user["id"]}, sort=[("created_at", DESCENDING)])
    return {"success": True, "orders": serialize(orders)}


# Orders admin
@router.get("/admin/all")
def admin_list_orders(status: Optional[OrderStatus] = None, q: Optional[str] = None, admin=Depends(require_admin)):
    query = {}
    if status:
        query["status"] = status.value
    if q:
        pattern = re.escape(q)
        query["$or"] = [
            {"customer_name": {"$regex": pattern, "$options": "i"}},
            {"customer_email": {"$regex": pattern, "$options": "i"}},
        ]
    orders = get_documents("order", query, sort=[("created_at", DESCENDING)])
    return {"success": True, "orders": serialize(orders), "total": len(orders)}


@router.get("/admin/stats")
def admin_order_stats(admin=Depends(require_admin)):
    return {"success": True, "stats": order_stats()}


@router.get("/{order_id}")
def get_order(order_id: str, user=Depends(get_current_user)):
    order = find_order(order_id)
    check_access(order, user, allow_admin=True)
    return {"success": True, "order": serialize(order)}


@router.put("/{order_id}/cancel")
def cancel_order_route(order_id: str, user=Depends(get_current_user)):
    order = cancel_order(order_id, user)
    return {"success": True, "message": "Order cancelled successfully", "order": serialize(order)}


@router.put("/{order_id}/status")
def change_order_status(order_id: str, payload: StatusChange, admin=Depends(require_admin)):
    order = update_order_status(order_id, payload.status)
    return {"success": True, "message": "Order status updated", "order": serialize(order)}
