from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient, ReturnDocument
from pymongo.database import Database

from config import settings

client = MongoClient(settings.DATABASE_URL, serverSelectionTimeoutMS=5000)
db: Database = client[settings.DATABASE_NAME]


def get_db() -> Database:
    return db


def ensure_indexes(database: Database) -> None:
    # One order row per business orderId
    database["order"].create_index([("orderId", ASCENDING)], unique=True)
    database["order"].create_index([("userEmail", ASCENDING)])
    database["user"].create_index([("email", ASCENDING)], unique=True)
    database["cart"].create_index([("owner", ASCENDING)], unique=True)
    database["wishlist"].create_index([("owner", ASCENDING)], unique=True)
    database["review"].create_index([("productId", ASCENDING), ("userEmail", ASCENDING)], unique=True)


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def serialize_doc(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not doc:
        return doc
    d = dict(doc)
    if "_id" in d:
        _id = d.pop("_id")
        d["id"] = str(_id) if isinstance(_id, ObjectId) else _id
    for k, v in list(d.items()):
        if isinstance(v, datetime):
            d[k] = v.isoformat()
    return d


def to_object_id(value: str) -> Optional[ObjectId]:
    return ObjectId(value) if ObjectId.is_valid(value) else None


def create_document(database: Database, collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    payload = data.model_dump() if isinstance(data, BaseModel) else dict(data)
    now = now_utc()
    payload.setdefault("created_at", now)
    payload["updated_at"] = now
    result = database[collection_name].insert_one(payload)
    return str(result.inserted_id)


def get_documents(database: Database, collection_name: str, filter_dict: Optional[Dict[str, Any]] = None, limit: int = 100) -> List[Dict[str, Any]]:
    cursor = database[collection_name].find(filter_dict or {}).limit(limit)
    return [serialize_doc(d) for d in cursor]


def next_sequence(database: Database, name: str) -> int:
    counter = database["counter"].find_one_and_update(
        {"_id": name},
        {"$inc": {"seq": 1}},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )
    return counter["seq"]


def reset_sequence_if_empty(database: Database, name: str) -> bool:
    """Restart the integer id sequence once its collection has no rows left."""
    if database[name].count_documents({}) == 0:
        database["counter"].delete_one({"_id": name})
        return True
    return False
