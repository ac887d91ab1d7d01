"""
Background reconciliation of records whose parent is gone.

Comments of deleted videos and likes of deleted videos, comments or tweets
are never removed as a side effect of a read. This job finds and purges
them on a schedule.
"""

import logging
from typing import Dict, List, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from bson import ObjectId
from pymongo.collection import Collection
from pymongo.database import Database

import database as store
from schemas import TargetKind

logger = logging.getLogger(__name__)


def _orphan_ids(collection: Collection, local_field: str, parent: str, match: Optional[dict] = None) -> List[ObjectId]:
    pipeline = []
    if match:
        pipeline.append({"$match": match})
    pipeline += [
        {"$lookup": {"from": parent, "localField": local_field, "foreignField": "_id", "as": "parent"}},
        {"$match": {"parent": {"$size": 0}}},
        {"$project": {"_id": 1}},
    ]
    return [doc["_id"] for doc in collection.aggregate(pipeline)]


def purge_orphans(db: Database) -> Dict[str, int]:
    """Delete comments and likes whose parent record no longer exists."""
    counts = {}

    comment_ids = _orphan_ids(db[store.COMMENTS], "video", store.VIDEOS)
    if comment_ids:
        db[store.COMMENTS].delete_many({"_id": {"$in": comment_ids}})
    counts["comments"] = len(comment_ids)

    # after the comment purge, so likes of just-purged comments go too
    like_ids: List[ObjectId] = []
    for kind in TargetKind:
        like_ids += _orphan_ids(db[store.LIKES], "targetId", kind.collection, {"targetType": kind.value})
    if like_ids:
        db[store.LIKES].delete_many({"_id": {"$in": like_ids}})
    counts["likes"] = len(like_ids)

    if any(counts.values()):
        logger.info("Purged orphans: %s", counts)
    return counts


def _run(db: Database) -> None:
    try:
        purge_orphans(db)
    except Exception:
        logger.exception("Orphan reconciliation failed")


def start_scheduler(db: Database, interval_minutes: int) -> BackgroundScheduler:
    scheduler = BackgroundScheduler()
    scheduler.add_job(_run, "interval", minutes=interval_minutes, args=[db], id="purge_orphans", max_instances=1, coalesce=True)
    scheduler.start()
    logger.info("Orphan reconciliation scheduled every %d minutes", interval_minutes)
    return scheduler
