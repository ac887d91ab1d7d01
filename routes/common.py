from typing import Iterable, Optional

from bson import ObjectId
from fastapi import Query
from pymongo import ReturnDocument
from pymongo.collection import Collection
from pymongo.database import Database

from database import VIDEOS, touch
from errors import AuthorizationError, ConflictError, NotFoundError
from pagination import DEFAULT_SORT_BY, PageRequest

MAX_FLIP_ATTEMPTS = 5


def page_query(allowed_sort: Iterable[str] = (DEFAULT_SORT_BY,)):
    """Dependency factory reading page/limit/sortBy/sortType from the query string."""
    allowed_sort = tuple(allowed_sort)

    def dependency(
        page: Optional[int] = Query(None),
        limit: Optional[int] = Query(None),
        sort_by: Optional[str] = Query(None, alias="sortBy"),
        sort_type: Optional[str] = Query(None, alias="sortType"),
    ) -> PageRequest:
        return PageRequest.from_query(page, limit, sort_by, sort_type, allowed_sort)

    return dependency


def find_owned(db: Database, collection: str, doc_id: ObjectId, principal_id: ObjectId, label: str) -> dict:
    """Load a document the principal must own."""
    doc = db[collection].find_one({"_id": doc_id})
    if not doc:
        raise NotFoundError(f"{label} does not exist")
    if doc.get("owner") != principal_id:
        raise AuthorizationError(f"You are not the owner of this {label.lower()}")
    return doc


def find_visible_video(db: Database, video_id: ObjectId, viewer_id: Optional[ObjectId]) -> dict:
    """A video the viewer may see: published, or their own."""
    video = db[VIDEOS].find_one({"_id": video_id})
    if not video or (not video.get("isPublished") and video.get("owner") != viewer_id):
        raise NotFoundError("Video does not exist")
    return video


def flip_published(collection: Collection, doc_id: ObjectId, owner_id: ObjectId) -> Optional[dict]:
    """Invert isPublished with a compare-and-swap on its current value."""
    for _ in range(MAX_FLIP_ATTEMPTS):
        current = collection.find_one({"_id": doc_id, "owner": owner_id}, {"isPublished": 1})
        if current is None:
            return None
        published = bool(current.get("isPublished"))
        expected = True if published else {"$ne": True}
        updated = collection.find_one_and_update(
            {"_id": doc_id, "owner": owner_id, "isPublished": expected},
            touch({"$set": {"isPublished": not published}}),
            return_document=ReturnDocument.AFTER,
        )
        if updated is not None:
            return updated
    raise ConflictError("Too many concurrent changes, try again")
