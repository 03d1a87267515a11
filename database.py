"""
MongoDB access for the Greenify store.

`db` is None until DATABASE_URL is configured. Collections are named after the
lowercase schema class (Plant -> "plant").
"""
import logging
import os
from datetime import datetime, timezone
from typing import Optional, Union

from bson import ObjectId
from dotenv import load_dotenv
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient, ReturnDocument

load_dotenv()

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME", "greenify")

db = None
if DATABASE_URL:
    client = MongoClient(DATABASE_URL)
    db = client[DATABASE_NAME]


def now():
    return datetime.now(timezone.utc)


def create_document(collection_name: str, data: Union[BaseModel, dict]) -> str:
    """Insert a document with timestamps and return its id as a string."""
    if isinstance(data, BaseModel):
        data = data.model_dump(mode="json")
    doc = dict(data)
    doc["created_at"] = now()
    doc["updated_at"] = now()
    result = db[collection_name].insert_one(doc)
    return str(result.inserted_id)


def get_documents(collection_name: str, filter_dict: Optional[dict] = None, limit: Optional[int] = None,
                  sort: Optional[list] = None):
    cursor = db[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def to_object_id(value: str) -> Optional[ObjectId]:
    """Parse a hex id; None when malformed."""
    if isinstance(value, ObjectId):
        return value
    if not value or not ObjectId.is_valid(value):
        return None
    return ObjectId(value)


def serialize(doc):
    """Make a Mongo document JSON friendly: _id -> id, ObjectId -> str."""
    if isinstance(doc, list):
        return [serialize(d) for d in doc]
    if isinstance(doc, ObjectId):
        return str(doc)
    if not isinstance(doc, dict):
        return doc
    out = {}
    for key, value in doc.items():
        if key == "_id":
            out["id"] = str(value)
        elif key == "password_hash":
            continue
        else:
            out[key] = serialize(value)
    return out


def next_sequence(name: str) -> int:
    counter = db["counter"].find_one_and_update(
        {"_id": name},
        {"$inc": {"sequence_value": 1}},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )
    return counter["sequence_value"]


def ensure_indexes():
    if db is None:
        return
    db["user"].create_index([("email", ASCENDING)], unique=True)
    db["plant"].create_index([("plant_code", ASCENDING)], unique=True, sparse=True)
    db["plant"].create_index([("categories", ASCENDING)])
    db["cart"].create_index([("user_id", ASCENDING)], unique=True)
    db["order"].create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
    db["rating"].create_index(
        [("user_id", ASCENDING), ("plant_id", ASCENDING), ("order_id", ASCENDING)], unique=True
    )
    db["rating"].create_index([("plant_id", ASCENDING), ("created_at", DESCENDING)])
    logger.info("Indexes ensured on %s", db.name)
