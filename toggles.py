"""
Atomic toggles for likes and subscriptions.

A (principal, target) pair is either Absent or Present. A toggle is a
conditional delete followed, when nothing was deleted, by an insert that the
unique index on the pair guards. An insert that hits the index means a
concurrent toggle made the pair Present in between, so the delete is retried.
"""

import logging
from typing import Callable, NamedTuple

from bson import ObjectId
from pymongo.collection import Collection
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

import database as store
from errors import ConflictError
from schemas import Like, LikeTarget, Subscription

logger = logging.getLogger(__name__)

ADDED = "added"
REMOVED = "removed"

MAX_TOGGLE_ATTEMPTS = 5


class ToggleResult(NamedTuple):
    state: str
    record: dict

    @property
    def present(self) -> bool:
        return self.state == ADDED


def toggle(collection: Collection, key: dict, create: Callable[[], dict]) -> ToggleResult:
    """Flip the existence of the record matching key.

    create() inserts the record and returns it; it must raise
    DuplicateKeyError when the unique index already holds the pair.
    """
    for attempt in range(1, MAX_TOGGLE_ATTEMPTS + 1):
        removed = collection.find_one_and_delete(key)
        if removed is not None:
            return ToggleResult(REMOVED, removed)
        try:
            return ToggleResult(ADDED, create())
        except DuplicateKeyError:
            logger.info("Concurrent toggle on %s, retrying (attempt %d)", collection.name, attempt)
    raise ConflictError("Too many concurrent changes, try again")


def toggle_like(db: Database, principal: ObjectId, target: LikeTarget) -> ToggleResult:
    key = {"likedBy": principal, **target.as_filter()}
    return toggle(
        db[store.LIKES],
        key,
        lambda: store.create_document(db, store.LIKES, Like.for_target(principal, target)),
    )


def toggle_subscription(db: Database, subscriber: ObjectId, channel: ObjectId) -> ToggleResult:
    key = {"subscriber": subscriber, "channel": channel}
    return toggle(
        db[store.SUBSCRIPTIONS],
        key,
        lambda: store.create_document(db, store.SUBSCRIPTIONS, Subscription(subscriber=subscriber, channel=channel)),
    )
