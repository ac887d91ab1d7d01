"""
Denormalized views served by the list and profile endpoints.

Each *_pipeline function only builds stages; the matching function with
the plain name runs it against the database.
"""

import logging
import re
from typing import List, Optional, Tuple

from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.database import Database

import database as store
from aggregations import lookup_ordered, visible_to, with_likes, with_owner, with_subscriptions
from errors import NotFoundError
from pagination import PageRequest, paginate
from schemas import LikeTarget, TargetKind

logger = logging.getLogger(__name__)

VIDEO_SORT_FIELDS = ("createdAt", "updatedAt", "views", "duration", "title")
COMMENT_SORT_FIELDS = ("createdAt", "updatedAt")
TWEET_SORT_FIELDS = ("createdAt", "updatedAt")
SUBSCRIPTION_SORT_FIELDS = ("createdAt",)
LIKE_SORT_FIELDS = ("createdAt",)

MAX_WATCH_ATTEMPTS = 5

VIDEO_CARD_FIELDS = ("_id", "title", "thumbnail", "duration", "views", "createdAt", "owner")


def _search_predicate(query: str) -> dict:
    regex = {"$regex": re.escape(query.strip()), "$options": "i"}
    return {
        "$or": [
            {"title": regex},
            {"description": regex},
            {"owner.userName": regex},
            {"owner.fullName": regex},
        ]
    }


def _published_videos_pipeline(viewer_id: Optional[ObjectId]) -> List[dict]:
    """Sub-pipeline for resolving video references a viewer may see."""
    return [{"$match": visible_to(viewer_id)}] + with_owner()


# -------------------- Videos --------------------

def video_feed_pipeline(
    viewer_id: Optional[ObjectId],
    query: Optional[str] = None,
    owner_id: Optional[ObjectId] = None,
) -> Tuple[List[dict], List[dict]]:
    """Return (filter stages, post-window stages) for the video feed."""
    match = visible_to(viewer_id)
    if owner_id is not None:
        match = {"$and": [{"owner": owner_id}, match]}
    filter_stages = [{"$match": match}]

    owner_stages = with_owner(include_id=True)
    post_stages = []
    if query and query.strip():
        # owner names are searchable, so owners resolve before the count
        filter_stages += owner_stages + [{"$match": _search_predicate(query)}]
    else:
        post_stages += owner_stages
    post_stages += with_likes(TargetKind.VIDEO, viewer_id)
    return filter_stages, post_stages


def video_feed(
    db: Database,
    page: PageRequest,
    viewer_id: Optional[ObjectId] = None,
    query: Optional[str] = None,
    owner_id: Optional[ObjectId] = None,
) -> dict:
    filter_stages, post_stages = video_feed_pipeline(viewer_id, query, owner_id)
    return paginate(db[store.VIDEOS], filter_stages, page, post_stages)


def lookup_subscriber_flags(channel_field: str, viewer_id: Optional[ObjectId]) -> List[dict]:
    """Put subscribersCount / isSubscribed of an embedded user under it.

    A user that no longer exists stays null.
    """
    prefix = channel_field.rsplit(".", 1)[0]
    # with_subscriptions writes top level fields, move them under the user
    return with_subscriptions(viewer_id, local_field=channel_field) + [
        {
            "$addFields": {
                prefix: {
                    "$cond": [
                        {"$eq": [{"$ifNull": [f"${prefix}", None]}, None]},
                        None,
                        {
                            "$mergeObjects": [
                                f"${prefix}",
                                {"subscribersCount": "$subscribersCount", "isSubscribed": "$isSubscribed"},
                            ]
                        },
                    ]
                }
            }
        },
        {"$project": {"subscribersCount": 0, "isSubscribed": 0, "channelsSubscribedToCount": 0}},
    ]


def open_video(db: Database, video_id: ObjectId, viewer_id: Optional[ObjectId] = None) -> dict:
    """Count a view and return the video with its channel and like state.

    The view is only counted when the viewer may see the video; the
    increment and the visibility check are one conditional write.
    """
    video = db[store.VIDEOS].find_one_and_update(
        {"$and": [{"_id": video_id}, visible_to(viewer_id)]},
        {"$inc": {"views": 1}},
        return_document=ReturnDocument.AFTER,
    )
    if not video:
        raise NotFoundError("Video does not exist")

    owner_id = video.get("owner")
    channel = db[store.USERS].find_one({"_id": owner_id}, {"userName": 1, "fullName": 1, "avatar": 1})
    if channel is not None:
        subscriptions = db[store.SUBSCRIPTIONS]
        channel["subscribersCount"] = subscriptions.count_documents({"channel": owner_id})
        channel["isSubscribed"] = viewer_id is not None and subscriptions.find_one(
            {"channel": owner_id, "subscriber": viewer_id}
        ) is not None
    video["owner"] = channel

    target = LikeTarget.video(video_id).as_filter()
    likes = db[store.LIKES]
    video["likesCount"] = likes.count_documents(target)
    video["isLiked"] = viewer_id is not None and likes.find_one({**target, "likedBy": viewer_id}) is not None

    if viewer_id is not None:
        record_watch(db, viewer_id, video_id)
    return video


def record_watch(db: Database, user_id: ObjectId, video_id: ObjectId) -> bool:
    """Move video_id to the end of the user's watch history.

    The new history is written only if the stored one is still the one it
    was computed from, so concurrent opens never duplicate or lose entries.
    Returns False when the user is gone or every attempt lost a race.
    """
    users = db[store.USERS]
    for _ in range(MAX_WATCH_ATTEMPTS):
        user = users.find_one({"_id": user_id}, {"watchHistory": 1})
        if user is None:
            return False
        current = user.get("watchHistory")
        history = [v for v in current or [] if v != video_id] + [video_id]
        if history == current:
            return True
        expected = current if current is not None else {"$exists": False}
        result = users.update_one({"_id": user_id, "watchHistory": expected}, {"$set": {"watchHistory": history}})
        if result.matched_count:
            return True
    logger.warning("Watch history of user %s not updated after %d attempts", user_id, MAX_WATCH_ATTEMPTS)
    return False


# -------------------- Comments --------------------

def comment_list_pipeline(video_id: ObjectId, viewer_id: Optional[ObjectId]) -> Tuple[List[dict], List[dict]]:
    filter_stages = [{"$match": {"video": video_id}}]
    post_stages = with_owner() + with_likes(TargetKind.COMMENT, viewer_id) + [
        {
            "$project": {
                "content": 1,
                "video": 1,
                "createdAt": 1,
                "updatedAt": 1,
                "owner": 1,
                "likesCount": 1,
                "isLiked": 1,
            }
        }
    ]
    return filter_stages, post_stages


def comment_list(db: Database, video_id: ObjectId, page: PageRequest, viewer_id: Optional[ObjectId] = None) -> dict:
    filter_stages, post_stages = comment_list_pipeline(video_id, viewer_id)
    return paginate(db[store.COMMENTS], filter_stages, page, post_stages)


# -------------------- Users --------------------

def channel_profile_pipeline(user_name: str, viewer_id: Optional[ObjectId]) -> List[dict]:
    return [{"$match": {"userName": user_name.strip().lower()}}] + with_subscriptions(viewer_id) + [
        {
            "$project": {
                "fullName": 1,
                "userName": 1,
                "email": 1,
                "avatar": 1,
                "coverImage": 1,
                "createdAt": 1,
                "subscribersCount": 1,
                "channelsSubscribedToCount": 1,
                "isSubscribed": 1,
            }
        }
    ]


def channel_profile(db: Database, user_name: str, viewer_id: Optional[ObjectId] = None) -> dict:
    found = list(db[store.USERS].aggregate(channel_profile_pipeline(user_name, viewer_id)))
    if not found:
        raise NotFoundError("Channel does not exist")
    return found[0]


def watch_history_pipeline(user_id: ObjectId) -> List[dict]:
    return (
        [{"$match": {"_id": user_id}}, {"$project": {"watchHistory": 1}}]
        + lookup_ordered("videos", "watchHistory", "history", pipeline=_published_videos_pipeline(user_id))
        + [{"$project": {"_id": 0, "history": 1}}]
    )


def watch_history(db: Database, user_id: ObjectId) -> List[dict]:
    """Videos the user watched, most recent first."""
    found = list(db[store.USERS].aggregate(watch_history_pipeline(user_id)))
    if not found:
        return []
    # history is appended to, so the newest entry is last
    return list(reversed(found[0].get("history", [])))


# -------------------- Likes --------------------

def liked_videos_pipeline(user_id: ObjectId) -> Tuple[List[dict], List[dict]]:
    filter_stages = [
        {"$match": {"likedBy": user_id, "targetType": TargetKind.VIDEO.value}},
        # deleted or hidden videos drop out here, before the count
        {
            "$lookup": {
                "from": "videos",
                "localField": "targetId",
                "foreignField": "_id",
                "pipeline": _published_videos_pipeline(user_id),
                "as": "video",
            }
        },
        {"$unwind": "$video"},
    ]
    post_stages = [
        {
            "$project": {
                "_id": "$video._id",
                **{name: f"$video.{name}" for name in VIDEO_CARD_FIELDS if name != "_id"},
                "likedAt": "$createdAt",
            }
        }
    ]
    return filter_stages, post_stages


def liked_videos(db: Database, user_id: ObjectId, page: PageRequest) -> dict:
    filter_stages, post_stages = liked_videos_pipeline(user_id)
    return paginate(db[store.LIKES], filter_stages, page, post_stages)


# -------------------- Subscriptions --------------------

def channel_subscribers_pipeline(channel_id: ObjectId, viewer_id: Optional[ObjectId]) -> Tuple[List[dict], List[dict]]:
    filter_stages = [{"$match": {"channel": channel_id}}]
    post_stages = (
        with_owner("subscriber", include_id=True)
        + lookup_subscriber_flags("subscriber._id", viewer_id)
        + [{"$project": {"_id": 0, "subscriber": 1, "subscribedAt": "$createdAt"}}]
    )
    return filter_stages, post_stages


def channel_subscribers(db: Database, channel_id: ObjectId, page: PageRequest, viewer_id: Optional[ObjectId] = None) -> dict:
    filter_stages, post_stages = channel_subscribers_pipeline(channel_id, viewer_id)
    return paginate(db[store.SUBSCRIPTIONS], filter_stages, page, post_stages)


def subscribed_channels_pipeline(subscriber_id: ObjectId) -> Tuple[List[dict], List[dict]]:
    filter_stages = [{"$match": {"subscriber": subscriber_id}}]
    post_stages = with_owner("channel", include_id=True) + [
        {"$project": {"_id": 0, "channel": 1, "subscribedAt": "$createdAt"}}
    ]
    return filter_stages, post_stages


def subscribed_channels(db: Database, subscriber_id: ObjectId, page: PageRequest) -> dict:
    filter_stages, post_stages = subscribed_channels_pipeline(subscriber_id)
    return paginate(db[store.SUBSCRIPTIONS], filter_stages, page, post_stages)


# -------------------- Tweets --------------------

def tweet_list_pipeline(owner_id: ObjectId, viewer_id: Optional[ObjectId]) -> Tuple[List[dict], List[dict]]:
    filter_stages = [{"$match": {"owner": owner_id}}]
    post_stages = with_owner() + with_likes(TargetKind.TWEET, viewer_id)
    return filter_stages, post_stages


def tweet_list(db: Database, owner_id: ObjectId, page: PageRequest, viewer_id: Optional[ObjectId] = None) -> dict:
    filter_stages, post_stages = tweet_list_pipeline(owner_id, viewer_id)
    return paginate(db[store.TWEETS], filter_stages, page, post_stages)


# -------------------- Playlists --------------------

def playlist_detail_pipeline(playlist_id: ObjectId, viewer_id: Optional[ObjectId]) -> List[dict]:
    return (
        [{"$match": {"$and": [{"_id": playlist_id}, visible_to(viewer_id)]}}]
        + lookup_ordered("videos", "videos", "videos", pipeline=_published_videos_pipeline(viewer_id))
        + with_owner(include_id=True)
        + [
            {
                "$addFields": {
                    "totalVideos": {"$size": "$videos"},
                    "totalViews": {"$sum": "$videos.views"},
                }
            }
        ]
    )


def playlist_detail(db: Database, playlist_id: ObjectId, viewer_id: Optional[ObjectId] = None) -> dict:
    found = list(db[store.PLAYLISTS].aggregate(playlist_detail_pipeline(playlist_id, viewer_id)))
    if not found:
        raise NotFoundError("Playlist does not exist")
    return found[0]
