"""
Ratings for plants in delivered orders.

A rating is unique per (user, plant, order); submitting again updates the score.
The plant's aggregate `rating` and `review_count` are derived data, recomputed
from all of its ratings in a background task once the response is sent.
"""
import logging
import math
import time

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from pydantic import BaseModel
from pymongo import DESCENDING
from pymongo.errors import DuplicateKeyError, PyMongoError

from auth import get_current_user
from catalog import plants_by_id
from database import db, now, serialize, to_object_id
from orders import check_access, find_order
from schemas import OrderStatus

logger = logging.getLogger(__name__)

DEFAULT_PLANT_RATING = 5.0
RECALC_ATTEMPTS = 3
RECALC_BACKOFF_SECONDS = 0.5

router = APIRouter(prefix="/ratings", tags=["ratings"])


class RatingPayload(BaseModel):
    plant_id: str
    order_id: str
    rating: int


def validate_rating_input(plant_id: str, order_id: str, score: int):
    if not plant_id or not order_id:
        return "Plant ID and Order ID are required"
    if score < 1 or score > 5:
        return "Rating must be between 1 and 5"
    if to_object_id(plant_id) is None:
        return "Invalid plant ID"
    if to_object_id(order_id) is None:
        return "Invalid order ID"
    return None


def submit_rating(user: dict, plant_id: str, order_id: str, score: int):
    """Create or update the user's rating. Returns (rating document, is_update)."""
    error = validate_rating_input(plant_id, order_id, score)
    if error:
        raise HTTPException(400, error)

    order = db["order"].find_one({
        "_id": to_object_id(order_id),
        "user_id": user["id"],
        "status": OrderStatus.delivered.value,
        "items.plant_id": plant_id,
    })
    if not order:
        raise HTTPException(404, "Order not found, not delivered, or plant not in order")

    key = {"user_id": user["id"], "plant_id": plant_id, "order_id": order_id}
    changes = {"$set": {"rating": score, "updated_at": now()}}
    try:
        res = db["rating"].update_one(key, {**changes, "$setOnInsert": {"created_at": now()}}, upsert=True)
        is_update = res.upserted_id is None
    except DuplicateKeyError:
        # a concurrent first submission for the same order item inserted it
        db["rating"].update_one(key, changes)
        is_update = True

    if not is_update:
        try:
            db["order"].update_one(
                {"_id": order["_id"], "items.plant_id": plant_id},
                {"$set": {"items.$.rated": True, "updated_at": now()}},
            )
        except PyMongoError:
            logger.exception("Could not flag item %s of order %s as rated, removing rating", plant_id, order_id)
            db["rating"].delete_one({"_id": res.upserted_id})
            raise

    return db["rating"].find_one(key), is_update


def recalculate_plant_rating(plant_id: str) -> dict:
    scores = [r["rating"] for r in db["rating"].find({"plant_id": plant_id}, {"rating": 1})]
    if scores:
        mean = sum(scores) / len(scores)
        update = {"rating": math.floor(mean * 10 + 0.5) / 10, "review_count": len(scores)}
    else:
        update = {"rating": DEFAULT_PLANT_RATING, "review_count": 0}
    db["plant"].update_one({"_id": to_object_id(plant_id)}, {"$set": {**update, "updated_at": now()}})
    return update


def refresh_plant_rating(plant_id: str):
    """Background entry point: recalculate with a few retries, never raise."""
    for attempt in range(1, RECALC_ATTEMPTS + 1):
        try:
            return recalculate_plant_rating(plant_id)
        except PyMongoError:
            logger.warning(
                "Rating recalculation for plant %s failed (attempt %s/%s)",
                plant_id, attempt, RECALC_ATTEMPTS, exc_info=True,
            )
            if attempt < RECALC_ATTEMPTS:
                time.sleep(RECALC_BACKOFF_SECONDS * attempt)
    logger.error("Giving up on rating recalculation for plant %s", plant_id)
    return None


@router.post("")
def create_rating(payload: RatingPayload, background_tasks: BackgroundTasks, user=Depends(get_current_user)):
    rating, is_update = submit_rating(user, payload.plant_id, payload.order_id, payload.rating)
    background_tasks.add_task(refresh_plant_rating, payload.plant_id)
    return {
        "success": True,
        "message": "Rating updated successfully" if is_update else "Rating submitted successfully",
        "rating": serialize(rating),
        "isUpdate": is_update,
    }


@router.get("/plant/{plant_id}")
def list_plant_ratings(plant_id: str):
    if to_object_id(plant_id) is None:
        raise HTTPException(400, "Invalid plant ID")
    ratings = list(db["rating"].find({"plant_id": plant_id}).sort("created_at", DESCENDING))
    user_ids = [to_object_id(r["user_id"]) for r in ratings]
    names = {str(u["_id"]): u["name"] for u in db["user"].find({"_id": {"$in": user_ids}}, {"name": 1})}
    out = []
    for r in ratings:
        doc = serialize(r)
        doc["user_name"] = names.get(r["user_id"], "Anonymous")
        out.append(doc)
    return {"success": True, "ratings": out}


@router.get("/user/existing/{order_id}/{plant_id}")
def get_existing_rating(order_id: str, plant_id: str, user=Depends(get_current_user)):
    if to_object_id(order_id) is None or to_object_id(plant_id) is None:
        raise HTTPException(400, "Invalid plant ID or order ID")
    order = find_order(order_id)
    check_access(order, user)
    rating = db["rating"].find_one({"user_id": user["id"], "plant_id": plant_id, "order_id": order_id})
    if not rating:
        raise HTTPException(404, "Rating not found")
    return {"success": True, "rating": serialize(rating)}


@router.get("/user/eligible/{order_id}")
def list_eligible_ratings(order_id: str, user=Depends(get_current_user)):
    order = find_order(order_id)
    check_access(order, user)

    eligible = []
    if order["status"] == OrderStatus.delivered.value:
        pending = [item for item in order["items"] if not item.get("rated")]
        plants = plants_by_id(item["plant_id"] for item in pending)
        for item in pending:
            plant = plants.get(item["plant_id"], {})
            eligible.append({
                "plant_id": item["plant_id"],
                "plant_name": item["plant_name"],
                "plant_image": plant.get("image", ""),
                "quantity": item["quantity"],
            })

    return {"success": True, "eligibleItems": eligible, "orderStatus": order["status"]}
