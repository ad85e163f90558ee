"""
MongoDB access for the FurniShop API.

`db` is None when DATABASE_URL is not configured; callers check for that
before touching a collection. Collection names are the lowercase schema
class names ("user", "product", "order").
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Union

from bson import ObjectId
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient

import settings

logger = logging.getLogger(__name__)

client = MongoClient(settings.DATABASE_URL) if settings.DATABASE_URL else None
db = client[settings.DATABASE_NAME] if client is not None else None


def create_document(collection_name: str, data: Union[BaseModel, dict]) -> str:
    """Insert a document, stamping created_at/updated_at, and return its id."""
    if db is None:
        raise RuntimeError("Database not configured")
    doc = data.model_dump() if isinstance(data, BaseModel) else dict(data)
    now = datetime.now(timezone.utc)
    doc.setdefault("created_at", now)
    doc["updated_at"] = now
    result = db[collection_name].insert_one(doc)
    return str(result.inserted_id)


def ensure_indexes(database=None) -> None:
    database = database if database is not None else db
    if database is None:
        return
    database["user"].create_index([("email", ASCENDING)], unique=True)
    database["order"].create_index([("order_number", ASCENDING)], unique=True)
    database["order"].create_index([("user_id", ASCENDING), ("created_at", ASCENDING)])
    database["product"].create_index([("category", ASCENDING), ("is_active", ASCENDING)])
    logger.info("Database indexes ensured")


def serialize_doc(doc: Any) -> Any:
    """Make a Mongo document JSON friendly: _id -> id, ObjectId -> str, datetime -> isoformat."""
    if isinstance(doc, list):
        return [serialize_doc(d) for d in doc]
    if isinstance(doc, dict):
        out: Dict[str, Any] = {}
        for k, v in doc.items():
            if k == "_id":
                out["id"] = str(v) if isinstance(v, ObjectId) else v
            else:
                out[k] = serialize_doc(v)
        return out
    if isinstance(doc, ObjectId):
        return str(doc)
    if isinstance(doc, datetime):
        if doc.tzinfo is None:
            doc = doc.replace(tzinfo=timezone.utc)
        return doc.isoformat()
    return doc
