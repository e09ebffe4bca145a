"""
MongoDB connection and document helpers.

The connection is configured from DATABASE_URL / DATABASE_NAME. When no URL
is set, `db` stays None and the API reports the database as not configured.
"""
import os
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from bson import ObjectId
from dotenv import load_dotenv
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database

from errors import ValidationError

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME", "leather_walk")

_client: Optional[MongoClient] = None
db: Optional[Database] = None

if DATABASE_URL:
    _client = MongoClient(DATABASE_URL, tz_aware=True)
    db = _client[DATABASE_NAME]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def is_object_id(value: Any) -> bool:
    return isinstance(value, str) and ObjectId.is_valid(value)


def validate_object_id(value: Any, label: str = "ID") -> str:
    """Return `value` unchanged if it is a valid ObjectId string, else raise."""
    if not value:
        raise ValidationError(f"{label} is required.")
    if not is_object_id(value):
        raise ValidationError(f"Invalid {label} format for {value}.")
    return value


def serialize_doc(doc: Optional[Dict[str, Any]]):
    if not doc:
        return doc
    doc = dict(doc)
    doc["id"] = str(doc.pop("_id"))
    return doc


def ensure_indexes(database: Database) -> None:
    # One cart per user
    database["cart"].create_index([("user", ASCENDING)], unique=True)
    database["order"].create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
    database["order"].create_index([("order_status", ASCENDING)])
    for field in ("username", "email", "phone"):
        database["user"].create_index([(field, ASCENDING)], unique=True)
    for field in ("username", "email"):
        database["admin"].create_index([(field, ASCENDING)], unique=True)
