"""
Plant catalog: public listing plus admin management, and the stock helpers the
order workflow uses to move units in and out of a plant.

Orders move stock through `reserve_stock` and `release_stock`, both single
atomic `$inc` updates on one plant document. Admins can also overwrite `stock`
through `update_plant`.
"""
import logging
import math
import re
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pymongo import ReturnDocument
from pymongo.errors import PyMongoError

from auth import require_admin
from database import db, create_document, next_sequence, now, serialize, to_object_id
from schemas import Plant, PlantCategory, PlantUpdate

logger = logging.getLogger(__name__)

MAX_ITEMS_PER_PAGE = 50
SORT_FIELDS = {"name", "price", "rating", "stock", "created_at"}

router = APIRouter(prefix="/plants", tags=["plants"])


class InsufficientStock(Exception):
    def __init__(self, plant_id: str):
        super().__init__(plant_id)
        self.plant_id = plant_id


# Stock helpers

def reserve_stock(plant_id: str, quantity: int) -> dict:
    """Take `quantity` units from an active plant, only if that many are left.

    Raises InsufficientStock without touching the document otherwise.
    """
    plant = db["plant"].find_one_and_update(
        {"_id": to_object_id(plant_id), "is_active": True, "stock": {"$gte": quantity}},
        {"$inc": {"stock": -quantity}, "$set": {"updated_at": now()}},
        return_document=ReturnDocument.AFTER,
    )
    if plant is None:
        raise InsufficientStock(plant_id)
    return plant


def release_stock(plant_id: str, quantity: int):
    db["plant"].update_one(
        {"_id": to_object_id(plant_id)},
        {"$inc": {"stock": quantity}, "$set": {"updated_at": now()}},
    )


def release_all(reserved: List[tuple]):
    """Undo reservations, e.g. when a later step of a checkout fails."""
    for plant_id, quantity in reversed(reserved):
        try:
            release_stock(plant_id, quantity)
        except PyMongoError:
            logger.exception("Could not release %s units of plant %s", quantity, plant_id)


def get_active_plant(plant_id: str) -> dict:
    oid = to_object_id(plant_id)
    if oid is None:
        raise HTTPException(400, "Invalid plant ID")
    plant = db["plant"].find_one({"_id": oid})
    if not plant or not plant.get("is_active"):
        raise HTTPException(404, "Plant not found")
    return plant


def plants_by_id(plant_ids) -> dict:
    oids = [oid for oid in (to_object_id(pid) for pid in plant_ids) if oid is not None]
    return {str(p["_id"]): p for p in db["plant"].find({"_id": {"$in": oids}})}


# Public catalog endpoints
@router.get("")
def list_plants(
    search: Optional[str] = None,
    category: Optional[PlantCategory] = None,
    min_price: Optional[int] = None,
    max_price: Optional[int] = None,
    min_rating: Optional[float] = None,
    in_stock: bool = False,
    sort_by: str = "name",
    sort_order: str = "asc",
    page: int = 1,
    limit: int = 12,
):
    page = max(1, page)
    limit = min(max(1, limit), MAX_ITEMS_PER_PAGE)
    if sort_by not in SORT_FIELDS:
        raise HTTPException(400, f"Cannot sort by {sort_by}")

    query = {"is_active": True}
    if search:
        pattern = re.escape(search)
        query["$or"] = [
            {"name": {"$regex": pattern, "$options": "i"}},
            {"description": {"$regex": pattern, "$options": "i"}},
        ]
    if category:
        query["categories"] = {"$in": [category.value]}
    if min_price is not None or max_price is not None:
        query["price"] = {}
        if min_price is not None:
            query["price"]["$gte"] = max(0, min_price)
        if max_price is not None:
            query["price"]["$lte"] = max(0, max_price)
    if min_rating is not None:
        query["rating"] = {"$gte": max(0, min_rating)}
    if in_stock:
        query["stock"] = {"$gt": 0}

    skip = (page - 1) * limit
    direction = -1 if sort_order == "desc" else 1
    plants = list(db["plant"].find(query).sort(sort_by, direction).skip(skip).limit(limit))
    total = db["plant"].count_documents(query)

    return {
        "success": True,
        "plants": serialize(plants),
        "pagination": {
            "currentPage": page,
            "totalPages": math.ceil(total / limit),
            "totalPlants": total,
            "hasNext": skip + limit < total,
            "hasPrev": page > 1,
        },
    }


@router.get("/categories/list")
def list_categories():
    categories = db["plant"].distinct("categories", {"is_active": True})
    return {"success": True, "categories": sorted(categories)}


@router.get("/stats/count")
def plant_stats():
    total = db["plant"].count_documents({"is_active": True})
    in_stock = db["plant"].count_documents({"is_active": True, "stock": {"$gt": 0}})
    return {
        "success": True,
        "stats": {
            "totalPlants": total,
            "inStockPlants": in_stock,
            "outOfStockPlants": total - in_stock,
            "stockPercentage": round(in_stock / total * 100) if total else 0,
        },
    }


@router.get("/{plant_id}")
def get_plant(plant_id: str):
    return {"success": True, "plant": serialize(get_active_plant(plant_id))}


# Admin plant management
@router.post("", status_code=201)
def create_plant(plant: Plant, admin=Depends(require_admin)):
    data = plant.model_dump(mode="json")
    data["name"] = data["name"].strip()
    data["description"] = data["description"].strip()
    data["plant_code"] = f"PLT-{next_sequence('plant_code'):06d}"
    pid = create_document("plant", data)
    logger.info("Plant %s created as %s", data["plant_code"], pid)
    return {"success": True, "message": "Plant created successfully", "plant": serialize(db["plant"].find_one({"_id": to_object_id(pid)}))}


@router.put("/{plant_id}")
def update_plant(plant_id: str, payload: PlantUpdate, admin=Depends(require_admin)):
    oid = to_object_id(plant_id)
    if oid is None:
        raise HTTPException(400, "Invalid plant ID format")
    existing = db["plant"].find_one({"_id": oid})
    if not existing:
        raise HTTPException(404, "Plant not found")

    data = payload.model_dump(mode="json", exclude_none=True)
    price = data.get("price", existing["price"])
    original_price = data.get("original_price", existing.get("original_price"))
    if original_price is not None and original_price < price:
        raise HTTPException(400, "Original price must be greater than or equal to the current price")

    data["updated_at"] = now()
    plant = db["plant"].find_one_and_update({"_id": oid}, {"$set": data}, return_document=ReturnDocument.AFTER)
    return {"success": True, "message": "Plant updated successfully", "plant": serialize(plant)}


@router.delete("/{plant_id}")
def delete_plant(plant_id: str, admin=Depends(require_admin)):
    oid = to_object_id(plant_id)
    if oid is None:
        raise HTTPException(400, "Invalid plant ID format")
    res = db["plant"].update_one({"_id": oid}, {"$set": {"is_active": False, "updated_at": now()}})
    if res.matched_count == 0:
        raise HTTPException(404, "Plant not found")
    logger.info("Plant %s deactivated", plant_id)
    return {"success": True, "message": "Plant deleted successfully"}
