from bson import ObjectId
from fastapi import APIRouter, Depends
from pymongo.database import Database

import views
from auth import get_current_user
from database import get_db, parse_object_id
from errors import NotFoundError, api_response
from pagination import PageRequest
from routes.common import find_visible_video, page_query
from schemas import LikeTarget, TargetKind
from toggles import toggle_like

router = APIRouter()


def _toggle(db: Database, user_id: ObjectId, target: LikeTarget):
    label = target.kind.value.capitalize()
    if target.kind == TargetKind.VIDEO:
        find_visible_video(db, target.id, user_id)
    elif db[target.kind.collection].find_one({"_id": target.id}, {"_id": 1}) is None:
        raise NotFoundError(f"{label} does not exist")

    result = toggle_like(db, user_id, target)
    verb = "liked" if result.present else "unliked"
    return api_response(
        {"isLiked": result.present, "like": result.record},
        f"{label} {verb} successfully",
    )


@router.post("/toggle/v/{video_id}")
def toggle_video_like(
    video_id: str,
    current_user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    target = LikeTarget.video(parse_object_id(video_id, "videoId"))
    return _toggle(db, current_user["_id"], target)


@router.post("/toggle/c/{comment_id}")
def toggle_comment_like(
    comment_id: str,
    current_user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    target = LikeTarget.comment(parse_object_id(comment_id, "commentId"))
    return _toggle(db, current_user["_id"], target)


@router.post("/toggle/t/{tweet_id}")
def toggle_tweet_like(
    tweet_id: str,
    current_user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    target = LikeTarget.tweet(parse_object_id(tweet_id, "tweetId"))
    return _toggle(db, current_user["_id"], target)


@router.get("/videos")
def get_liked_videos(
    page: PageRequest = Depends(page_query(views.LIKE_SORT_FIELDS)),
    current_user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    result = views.liked_videos(db, current_user["_id"], page)
    return api_response(result, "Liked videos fetched successfully")
