"""
Aggregation stage builders used to assemble denormalized views.

Two families live here:

- relationship resolution: $lookup stages that embed referenced records,
  to-one references collapsed to a single value (or null when missing)
- viewer-scoped fields: live counts over reverse relationships and
  isLiked / isSubscribed flags for the viewing principal

Stages target MongoDB 5.0+ ($lookup with localField and a sub-pipeline).
"""

from typing import List, Optional

from bson import ObjectId

from projection import owner_projection
from schemas import TargetKind


# -------------------- Relationship resolution --------------------

def lookup_many(
    from_collection: str,
    local_field: str,
    foreign_field: str,
    as_field: str,
    pipeline: Optional[List[dict]] = None,
) -> dict:
    stage = {
        "from": from_collection,
        "localField": local_field,
        "foreignField": foreign_field,
        "as": as_field,
    }
    if pipeline:
        stage["pipeline"] = pipeline
    return {"$lookup": stage}


def lookup_one(
    from_collection: str,
    local_field: str,
    as_field: Optional[str] = None,
    pipeline: Optional[List[dict]] = None,
    foreign_field: str = "_id",
) -> List[dict]:
    """Embed a to-one reference as a single value, null when it is gone."""
    as_field = as_field or local_field
    return [
        lookup_many(from_collection, local_field, foreign_field, as_field, pipeline),
        {"$addFields": {as_field: {"$ifNull": [{"$first": f"${as_field}"}, None]}}},
    ]


def with_owner(local_field: str = "owner", as_field: Optional[str] = None, include_id: bool = False) -> List[dict]:
    """Replace a user reference with {userName, fullName, avatar}."""
    return lookup_one(
        "users",
        local_field,
        as_field=as_field,
        pipeline=[{"$project": owner_projection(include_id=include_id)}],
    )


def lookup_ordered(
    from_collection: str,
    local_field: str,
    as_field: str,
    pipeline: Optional[List[dict]] = None,
) -> List[dict]:
    """Resolve an array of ids, keeping the array's order.

    $lookup returns matches in collection order, so the matches are mapped
    back onto the id array; ids with no match are dropped.
    """
    resolved = f"{as_field}__resolved"
    return [
        lookup_many(from_collection, local_field, "_id", resolved, pipeline),
        {
            "$addFields": {
                as_field: {
                    "$filter": {
                        "input": {
                            "$map": {
                                "input": {"$ifNull": [f"${local_field}", []]},
                                "as": "ref",
                                "in": {
                                    "$first": {
                                        "$filter": {
                                            "input": f"${resolved}",
                                            "as": "doc",
                                            "cond": {"$eq": ["$$doc._id", "$$ref"]},
                                        }
                                    }
                                },
                            }
                        },
                        "as": "item",
                        "cond": {"$ne": [{"$ifNull": ["$$item", None]}, None]},
                    }
                }
            }
        },
        {"$project": {resolved: 0}},
    ]


# -------------------- Viewer-scoped fields --------------------

def count_of(array_field: str) -> dict:
    return {"$size": {"$ifNull": [f"${array_field}", []]}}


def viewer_flag(members_path: str, viewer_id: Optional[ObjectId]) -> dict:
    """True iff viewer_id is in the array at members_path.

    An anonymous viewer always gets a literal false.
    """
    if viewer_id is None:
        return {"$literal": False}
    return {"$in": [viewer_id, {"$ifNull": [f"${members_path}", []]}]}


def with_likes(kind: TargetKind, viewer_id: Optional[ObjectId], local_field: str = "_id") -> List[dict]:
    """Attach likesCount and isLiked for records of the given kind."""
    kind = TargetKind(kind)
    return [
        lookup_many(
            "likes",
            local_field,
            "targetId",
            "likes",
            pipeline=[
                {"$match": {"targetType": kind.value}},
                {"$project": {"_id": 0, "likedBy": 1}},
            ],
        ),
        {
            "$addFields": {
                "likesCount": count_of("likes"),
                "isLiked": viewer_flag("likes.likedBy", viewer_id),
            }
        },
        {"$project": {"likes": 0}},
    ]


def with_subscriptions(viewer_id: Optional[ObjectId], local_field: str = "_id") -> List[dict]:
    """Attach subscribersCount, channelsSubscribedToCount and isSubscribed to users."""
    return [
        lookup_many(
            "subscriptions", local_field, "channel", "subscribers",
            pipeline=[{"$project": {"_id": 0, "subscriber": 1}}],
        ),
        lookup_many(
            "subscriptions", local_field, "subscriber", "subscribedTo",
            pipeline=[{"$project": {"_id": 0, "channel": 1}}],
        ),
        {
            "$addFields": {
                "subscribersCount": count_of("subscribers"),
                "channelsSubscribedToCount": count_of("subscribedTo"),
                "isSubscribed": viewer_flag("subscribers.subscriber", viewer_id),
            }
        },
        {"$project": {"subscribers": 0, "subscribedTo": 0}},
    ]


def visible_to(viewer_id: Optional[ObjectId], owner_field: str = "owner") -> dict:
    """$match predicate: published, or owned by the viewer."""
    if viewer_id is None:
        return {"isPublished": True}
    return {"$or": [{"isPublished": True}, {owner_field: viewer_id}]}
