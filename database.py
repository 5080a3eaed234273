"""
Database helpers

Thin wrappers around pymongo used by the API and the cart/OTP components.
Collections are named after the schema they store: "product", "category",
"user", "cart", "otp", "form_data", "newsletter", "order".
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    # Mongo hands back naive datetimes unless the client is tz aware
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def connect(url: str, name: str) -> Database:
    client = MongoClient(url, tz_aware=True)
    return client[name]


def parse_object_id(value: str) -> Optional[ObjectId]:
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return None


def to_str_id(doc: Optional[dict]):
    if not doc:
        return doc
    d = {**doc}
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    return d


def create_document(db: Database, collection_name: str, data: Union[BaseModel, dict]) -> str:
    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = dict(data)
    now = utcnow()
    data_dict.setdefault("created_at", now)
    data_dict.setdefault("updated_at", now)
    result = db[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def get_documents(db: Database, collection_name: str, filter_dict: Optional[dict] = None,
                  limit: Optional[int] = None, sort: Optional[List] = None) -> List[Dict[str, Any]]:
    cursor = db[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def ensure_indexes(db: Database, otp_expiry_minutes: int = 10):
    """Create the indexes the application relies on.

    Failures are logged and ignored so the API still starts against a store
    that refuses index creation.
    """
    specs = [
        ("user", [("email", ASCENDING)], {"unique": True}),
        ("category", [("name", ASCENDING)], {}),
        ("newsletter", [("email", ASCENDING)], {"unique": True}),
        ("order", [("order_id", ASCENDING)], {"unique": True}),
        ("otp", [("email", ASCENDING)], {}),
        ("otp", [("created_at", ASCENDING)], {"expireAfterSeconds": otp_expiry_minutes * 60}),
        ("cart", [("user_id", ASCENDING)], {
            "unique": True,
            "name": "one_active_cart_per_user",
            "partialFilterExpression": {"status": "active"},
        }),
    ]
    for collection_name, keys, options in specs:
        try:
            db[collection_name].create_index(keys, **options)
        except Exception as e:
            logger.warning("Unable to ensure index on %s %s: %s", collection_name, keys, e)
