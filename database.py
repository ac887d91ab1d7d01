"""
MongoDB access.

The client is created by connect() at application startup and closed by
close() at shutdown; routes reach the database through the get_db
dependency rather than a module global.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple, Union

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import Request
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database
from pymongo.errors import OperationFailure

from errors import ValidationError

logger = logging.getLogger(__name__)

USERS = "users"
VIDEOS = "videos"
COMMENTS = "comments"
LIKES = "likes"
SUBSCRIPTIONS = "subscriptions"
TWEETS = "tweets"
PLAYLISTS = "playlists"

INDEXES = {
    USERS: [
        ([("userName", ASCENDING)], {"unique": True, "name": "userName_unique_idx"}),
        ([("email", ASCENDING)], {"unique": True, "name": "email_unique_idx"}),
    ],
    VIDEOS: [
        ([("owner", ASCENDING), ("createdAt", DESCENDING)], {"name": "owner_created_idx"}),
        ([("createdAt", DESCENDING), ("_id", DESCENDING)], {"name": "created_idx"}),
    ],
    COMMENTS: [
        ([("video", ASCENDING), ("createdAt", DESCENDING)], {"name": "video_created_idx"}),
    ],
    LIKES: [
        (
            [("likedBy", ASCENDING), ("targetType", ASCENDING), ("targetId", ASCENDING)],
            {"unique": True, "name": "liker_target_unique_idx"},
        ),
        ([("targetType", ASCENDING), ("targetId", ASCENDING)], {"name": "target_idx"}),
    ],
    SUBSCRIPTIONS: [
        (
            [("subscriber", ASCENDING), ("channel", ASCENDING)],
            {"unique": True, "name": "subscriber_channel_unique_idx"},
        ),
        ([("channel", ASCENDING)], {"name": "channel_idx"}),
    ],
    TWEETS: [
        ([("owner", ASCENDING), ("createdAt", DESCENDING)], {"name": "owner_created_idx"}),
    ],
    PLAYLISTS: [
        ([("owner", ASCENDING)], {"name": "owner_idx"}),
    ],
}


def connect(database_url: str, database_name: str, timeout_ms: int = 5000) -> Tuple[MongoClient, Database]:
    client = MongoClient(database_url, serverSelectionTimeoutMS=timeout_ms, tz_aware=True)
    db = client[database_name]
    logger.info("MongoDB client created for database %s", database_name)
    return client, db


def close(client: Optional[MongoClient]) -> None:
    if client is not None:
        client.close()
        logger.info("MongoDB connection closed")


def ensure_indexes(db: Database) -> None:
    """Create the indexes the uniqueness and toggle guarantees rely on."""
    for collection, specs in INDEXES.items():
        for keys, options in specs:
            try:
                db[collection].create_index(keys, **options)
            except OperationFailure as e:
                if "already exists" in str(e) or "IndexOptionsConflict" in str(e):
                    logger.warning("Index %s on %s already exists with other options", options.get("name"), collection)
                else:
                    raise


def get_db(request: Request) -> Database:
    return request.app.state.db


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_object_id(value: Optional[str], name: str = "id") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    if not value:
        raise ValidationError(f"{name} is required")
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise ValidationError(f"Invalid {name}")


def create_document(db: Database, collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> dict:
    """Insert a document with createdAt/updatedAt and return it with its _id."""
    if isinstance(data, BaseModel):
        doc = data.model_dump(by_alias=True)
    else:
        doc = dict(data)
    now = utcnow()
    doc["createdAt"] = now
    doc["updatedAt"] = now
    result = db[collection_name].insert_one(doc)
    doc["_id"] = result.inserted_id
    return doc


def get_documents(
    db: Database,
    collection_name: str,
    filter_dict: Optional[dict] = None,
    sort: Optional[List[Tuple[str, int]]] = None,
    limit: int = 0,
) -> List[dict]:
    cursor = db[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def touch(update: dict) -> dict:
    """Add updatedAt to an update document's $set."""
    update = dict(update)
    update["$set"] = {**update.get("$set", {}), "updatedAt": utcnow()}
    return update
