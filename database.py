"""
Database helpers

A single process-wide MongoDB connection. Collections are named after the
lower-cased schema model (Order -> "order", SubscriptionPlan ->
"subscription_plan"). Documents are created through `create_document`, which
stamps `created_at`/`updated_at`.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import MongoClient

from config import DATABASE_URL, DATABASE_NAME
from errors import NotFound, ValidationFailed

logger = logging.getLogger("marketplace.database")

db = None


def get_db():
    global db
    if db is None:
        client = MongoClient(DATABASE_URL, tz_aware=True)
        db = client[DATABASE_NAME]
        logger.info("Connected to MongoDB database %s", DATABASE_NAME)
        ensure_indexes(db)
    return db


def ensure_indexes(database) -> None:
    database["coupon"].create_index("code", unique=True)
    database["order"].create_index("payment.razorpay_order_id")


def now() -> datetime:
    return datetime.now(timezone.utc)


def create_document(collection_name: str, data: Union[BaseModel, dict]) -> str:
    if isinstance(data, BaseModel):
        doc = data.model_dump()
    else:
        doc = dict(data)
    stamp = now()
    doc.setdefault("created_at", stamp)
    doc["updated_at"] = stamp
    result = get_db()[collection_name].insert_one(doc)
    return str(result.inserted_id)


def get_documents(collection_name: str, filter_dict: Optional[dict] = None, limit: Optional[int] = None):
    cursor = get_db()[collection_name].find(filter_dict or {}).sort("created_at", -1)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def parse_object_id(value: str, field: str = "id") -> ObjectId:
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        raise ValidationFailed(f"Invalid {field}")


def find_or_404(collection_name: str, doc_id: str, label: str) -> Dict[str, Any]:
    doc = get_db()[collection_name].find_one({"_id": parse_object_id(doc_id, f"{label.lower()} id")})
    if not doc:
        raise NotFound(f"{label} not found")
    return doc


def serialize_doc(doc: dict) -> dict:
    """Make a Mongo document JSON friendly: ObjectIds become strings, `_id` becomes `id`."""
    if not doc:
        return doc
    return jsonable(dict(doc))


def jsonable(value):
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        out = {}
        for k, v in value.items():
            out["id" if k == "_id" else k] = jsonable(v)
        return out
    if isinstance(value, list):
        return [jsonable(v) for v in value]
    return value


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Mongo may hand back naive datetimes; they are always stored as UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)
