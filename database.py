"""
MongoDB access helpers.

Collections are named after the lowercase model name (Product -> "product").
Route code reaches the store through `collection()` so tests can swap `db`.
"""
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

from bson import ObjectId
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient

import config

client = MongoClient(config.DATABASE_URL)
db = client[config.DATABASE_NAME]


def collection(name: str):
    return db[name]


def now() -> datetime:
    """Naive UTC at millisecond precision, i.e. exactly what the store hands back."""
    ts = datetime.now(timezone.utc).replace(tzinfo=None)
    return ts.replace(microsecond=ts.microsecond // 1000 * 1000)


def create_document(collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    if isinstance(data, BaseModel):
        doc = data.model_dump()
    else:
        doc = dict(data)
    ts = now()
    doc.setdefault("created_at", ts)
    doc["updated_at"] = ts
    inserted_id = collection(collection_name).insert_one(doc).inserted_id
    return str(inserted_id)


def to_object_id(value) -> Optional[ObjectId]:
    if isinstance(value, ObjectId):
        return value
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    return None


def serialize(value):
    """Recursively turn ObjectIds and datetimes into JSON friendly strings."""
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: serialize(v) for k, v in value.items()}
    if isinstance(value, list):
        return [serialize(v) for v in value]
    return value


def serialize_doc(doc):
    if not doc:
        return doc
    doc = dict(doc)
    _id = doc.pop("_id", None)
    if _id is not None:
        doc["id"] = str(_id)
    return serialize(doc)


def ensure_indexes():
    db["user"].create_index("email", unique=True)
    db["product"].create_index("product_code", unique=True)
    db["product"].create_index("variants.sku", unique=True, sparse=True)
    db["product"].create_index([("main_category", ASCENDING), ("sub_category", ASCENDING)])
    db["product"].create_index("is_active")
    db["cart"].create_index("user_id", unique=True)
    # abandoned carts are removed by the store itself
    db["cart"].create_index("expires_at", expireAfterSeconds=0)
    db["order"].create_index("order_id", unique=True)
    db["order"].create_index("user_id")
    db["order"].create_index("status")
    db["order"].create_index([("created_at", DESCENDING)])
    db["wishlist"].create_index("user_id", unique=True)
    db["review"].create_index("product_id")
