"""
MongoDB access for the Diagnostic Center API.

One MongoClient per process, created on first use. Handlers receive the
database handle through the get_db dependency so tests can swap it out.
"""
from datetime import datetime, timezone
from typing import Optional

from bson import ObjectId
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database

from config import DATABASE_NAME, DATABASE_URL
from errors import ValidationFailed
from logging_config import get_logger

logger = get_logger(__name__)

USERS = "users"
TESTS = "tests"
APPOINTMENTS = "appointments"
PAYMENTS = "payments"
BANNERS = "banners"

_client: Optional[MongoClient] = None


def get_client() -> MongoClient:
    global _client
    if _client is None:
        _client = MongoClient(DATABASE_URL)
        logger.info("mongo_client_created", database=DATABASE_NAME)
    return _client


def get_db() -> Database:
    """FastAPI dependency returning the process-wide database handle."""
    return get_client()[DATABASE_NAME]


def ensure_indexes(db: Database):
    db[USERS].create_index("email", unique=True)
    db[TESTS].create_index("slug", unique=True)
    db[APPOINTMENTS].create_index([("test_slug", ASCENDING), ("booking_date", ASCENDING)])
    db[APPOINTMENTS].create_index([("user_email", ASCENDING), ("start_appointment", ASCENDING)])
    logger.info("indexes_ensured")


def object_id(value: str) -> ObjectId:
    if not ObjectId.is_valid(value):
        raise ValidationFailed(f"Invalid id: {value}")
    return ObjectId(value)


def serialize(doc):
    """Make a document JSON friendly: ObjectIds become strings."""
    if doc is None:
        return None
    if isinstance(doc, list):
        return [serialize(d) for d in doc]
    if isinstance(doc, dict):
        return {k: serialize(v) for k, v in doc.items()}
    if isinstance(doc, ObjectId):
        return str(doc)
    return doc


def utcnow() -> datetime:
    """Naive UTC, the form pymongo hands back on reads."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def create_document(db: Database, collection_name: str, data: dict) -> str:
    now = utcnow()
    doc = dict(data)
    doc.setdefault("created_at", now)
    doc["updated_at"] = now
    result = db[collection_name].insert_one(doc)
    return str(result.inserted_id)


def get_documents(db: Database, collection_name: str, filter_dict: Optional[dict] = None,
                  sort: Optional[list] = None, limit: int = 0):
    cursor = db[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return [serialize(d) for d in cursor]


def write_result(result) -> dict:
    """Summarize a pymongo write result for the response envelope."""
    summary = {"acknowledged": result.acknowledged}
    for attr in ("inserted_id", "matched_count", "modified_count", "deleted_count", "upserted_id"):
        if hasattr(result, attr):
            summary[attr] = serialize(getattr(result, attr))
    return summary
