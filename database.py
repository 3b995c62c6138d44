"""
Database helpers for the StudyHub backend.

Collections are flat mappings from generated id to a document; the domain
modules only talk to MongoDB through the helpers below so that every write
also publishes a change notification for live subscriptions.
"""
import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from bson import ObjectId
from dotenv import load_dotenv
from pymongo import ASCENDING, DESCENDING, MongoClient

from live import feed

load_dotenv()

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME", "studyhub")

COLLECTIONS = ["users", "projects", "tasks", "milestones", "meetings", "sessions"]
LIVE_COLLECTIONS = ["projects", "tasks", "milestones", "meetings"]

client = None
db = None

if DATABASE_URL:
    client = MongoClient(DATABASE_URL)
    db = client[DATABASE_NAME]


def collection(name: str):
    if db is None:
        raise RuntimeError("Database not initialized; set DATABASE_URL")
    return db[name]


def oid(id_str: Optional[str]) -> Optional[ObjectId]:
    if not id_str or not ObjectId.is_valid(id_str):
        return None
    return ObjectId(id_str)


def serialize(doc: Optional[dict]) -> Optional[dict]:
    if not doc:
        return doc
    doc["id"] = str(doc.get("_id"))
    doc.pop("_id", None)
    return doc


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# --------- Reads ---------

def get_document(collection_name: str, doc_id: str) -> Optional[dict]:
    key = oid(doc_id)
    if key is None:
        return None
    return serialize(collection(collection_name).find_one({"_id": key}))


def get_documents(collection_name: str, filter_dict: Optional[dict] = None, sort: Optional[list] = None, limit: int = 0) -> List[dict]:
    cursor = collection(collection_name).find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return [serialize(d) for d in cursor]


# --------- Writes (each one notifies live subscribers) ---------

def create_document(collection_name: str, data: Dict[str, Any]) -> dict:
    payload = dict(data)
    new_id = collection(collection_name).insert_one(payload).inserted_id
    feed.publish_local(collection_name)
    return serialize(collection(collection_name).find_one({"_id": new_id}))


def update_document(collection_name: str, doc_id: str, fields: Dict[str, Any]) -> bool:
    key = oid(doc_id)
    if key is None:
        return False
    res = collection(collection_name).update_one({"_id": key}, {"$set": fields})
    feed.publish_local(collection_name)
    return res.matched_count > 0


def add_to_set(collection_name: str, doc_id: str, field: str, value: Any) -> bool:
    key = oid(doc_id)
    if key is None:
        return False
    res = collection(collection_name).update_one({"_id": key}, {"$addToSet": {field: value}})
    feed.publish_local(collection_name)
    return res.matched_count > 0


def delete_document(collection_name: str, doc_id: str) -> bool:
    key = oid(doc_id)
    if key is None:
        return False
    res = collection(collection_name).delete_one({"_id": key})
    feed.publish_local(collection_name)
    return res.deleted_count > 0


def ensure_indexes():
    """Create the indexes needed by the filtered + ordered queries."""
    collection("tasks").create_index([("projectId", ASCENDING), ("createdAt", DESCENDING)])
    collection("tasks").create_index([("assignedTo", ASCENDING), ("createdAt", DESCENDING)])
    collection("projects").create_index("inviteCode")
    collection("projects").create_index("members")
    collection("users").create_index("email", unique=True)
    collection("users").create_index("username")
    collection("sessions").create_index("token", unique=True)
    collection("milestones").create_index("projectId")
    collection("meetings").create_index("projectId")
    logger.info("Indexes ensured on %s", db.name)


def index_status() -> dict:
    """Index names per collection, as reported by the server."""
    status = {}
    for name in COLLECTIONS:
        status[name] = sorted(collection(name).index_information().keys())
    return status
