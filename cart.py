from fastapi import APIRouter, Body, Depends, HTTPException

from auth import get_current_user
from catalog import get_active_plant, plants_by_id
from database import db, now
from schemas import CartItem

router = APIRouter(prefix="/cart", tags=["cart"])

EMPTY_CART = {"items": [], "total": 0}


def load_cart(user_id: str):
    """Return (cart document, {plant_id: plant document}) or (None, {})."""
    cart = db["cart"].find_one({"user_id": user_id})
    if not cart:
        return None, {}
    return cart, plants_by_id(item["plant_id"] for item in cart["items"])


def cart_view(user_id: str) -> dict:
    """Cart lines with live plant data.

    Lines whose plant was withdrawn from the catalog stay in the view marked
    `unavailable` so the customer can remove them; they do not count toward
    the total and checkout rejects them.
    """
    cart, plants = load_cart(user_id)
    if not cart or not cart["items"]:
        return dict(EMPTY_CART)
    items = []
    for item in cart["items"]:
        plant = plants.get(item["plant_id"])
        line = {"plant_id": item["plant_id"], "quantity": item["quantity"], "plant": None, "unavailable": True}
        if plant:
            line["plant"] = {
                "id": str(plant["_id"]),
                "name": plant["name"],
                "price": plant["price"],
                "image": plant.get("image", ""),
                "stock": plant["stock"],
            }
            line["unavailable"] = not plant.get("is_active")
        items.append(line)
    total = sum(it["plant"]["price"] * it["quantity"] for it in items if not it["unavailable"])
    return {"items": items, "total": total}


def _save_items(user_id: str, items: list):
    db["cart"].update_one(
        {"user_id": user_id},
        {"$set": {"items": items, "updated_at": now()}, "$setOnInsert": {"created_at": now()}},
        upsert=True,
    )


@router.get("")
def get_cart(user=Depends(get_current_user)):
    return {"success": True, "cart": cart_view(user["id"])}


@router.post("/add")
def add_to_cart(payload: CartItem, user=Depends(get_current_user)):
    plant = get_active_plant(payload.plant_id)
    if plant["stock"] < payload.quantity:
        raise HTTPException(400, "Insufficient stock")

    cart = db["cart"].find_one({"user_id": user["id"]})
    items = cart["items"] if cart else []
    existing = next((it for it in items if it["plant_id"] == payload.plant_id), None)
    if existing:
        new_quantity = existing["quantity"] + payload.quantity
        if plant["stock"] < new_quantity:
            raise HTTPException(400, "Insufficient stock")
        existing["quantity"] = new_quantity
    else:
        items.append({"plant_id": payload.plant_id, "quantity": payload.quantity})

    _save_items(user["id"], items)
    return {"success": True, "message": "Item added to cart", "cart": cart_view(user["id"])}


@router.put("/update/{plant_id}")
def update_cart_item(plant_id: str, quantity: int = Body(..., embed=True), user=Depends(get_current_user)):
    if quantity < 1:
        raise HTTPException(400, "Quantity must be at least 1")
    plant = get_active_plant(plant_id)
    if plant["stock"] < quantity:
        raise HTTPException(400, "Insufficient stock")

    cart = db["cart"].find_one({"user_id": user["id"]})
    if not cart:
        raise HTTPException(404, "Cart not found")
    item = next((it for it in cart["items"] if it["plant_id"] == plant_id), None)
    if item is None:
        raise HTTPException(404, "Item not found in cart")
    item["quantity"] = quantity

    _save_items(user["id"], cart["items"])
    return {"success": True, "message": "Cart updated", "cart": cart_view(user["id"])}


@router.delete("/remove/{plant_id}")
def remove_cart_item(plant_id: str, user=Depends(get_current_user)):
    res = db["cart"].update_one(
        {"user_id": user["id"]},
        {"$pull": {"items": {"plant_id": plant_id}}, "$set": {"updated_at": now()}},
    )
    if res.matched_count == 0:
        raise HTTPException(404, "Cart not found")
    return {"success": True, "message": "Item removed from cart", "cart": cart_view(user["id"])}


@router.delete("/clear")
def clear_cart(user=Depends(get_current_user)):
    db["cart"].delete_one({"user_id": user["id"]})
    return {"success": True, "message": "Cart cleared", "cart": dict(EMPTY_CART)}
