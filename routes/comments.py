import logging
from typing import Optional

from bson import ObjectId
from fastapi import APIRouter, Depends
from pymongo import ReturnDocument
from pymongo.database import Database

import database as store
import views
from auth import get_current_user, get_optional_user_id
from database import get_db, parse_object_id
from errors import NotFoundError, api_response
from pagination import PageRequest
from routes.common import find_owned, find_visible_video, page_query
from schemas import Comment, CommentRequest, LikeTarget

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/{video_id}")
def get_video_comments(
    video_id: str,
    page: PageRequest = Depends(page_query(views.COMMENT_SORT_FIELDS)),
    viewer_id: Optional[ObjectId] = Depends(get_optional_user_id),
    db: Database = Depends(get_db),
):
    vid = parse_object_id(video_id, "videoId")
    find_visible_video(db, vid, viewer_id)
    result = views.comment_list(db, vid, page, viewer_id)
    return api_response(result, "Comments fetched successfully")


@router.post("/{video_id}")
def add_comment(
    video_id: str,
    payload: CommentRequest,
    current_user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    vid = parse_object_id(video_id, "videoId")
    find_visible_video(db, vid, current_user["_id"])
    comment = Comment(content=payload.content.strip(), video=vid, owner=current_user["_id"])
    created = store.create_document(db, store.COMMENTS, comment)
    return api_response(created, "Comment added successfully", 201)


@router.patch("/c/{comment_id}")
def update_comment(
    comment_id: str,
    payload: CommentRequest,
    current_user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    cid = parse_object_id(comment_id, "commentId")
    find_owned(db, store.COMMENTS, cid, current_user["_id"], "Comment")
    comment = db[store.COMMENTS].find_one_and_update(
        {"_id": cid, "owner": current_user["_id"]},
        store.touch({"$set": {"content": payload.content.strip()}}),
        return_document=ReturnDocument.AFTER,
    )
    if comment is None:
        raise NotFoundError("Comment does not exist")
    return api_response(comment, "Comment updated successfully")


@router.delete("/c/{comment_id}")
def delete_comment(
    comment_id: str,
    current_user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    cid = parse_object_id(comment_id, "commentId")
    find_owned(db, store.COMMENTS, cid, current_user["_id"], "Comment")
    if db[store.COMMENTS].delete_one({"_id": cid, "owner": current_user["_id"]}).deleted_count == 0:
        raise NotFoundError("Comment does not exist")
    removed = db[store.LIKES].delete_many(LikeTarget.comment(cid).as_filter()).deleted_count
    logger.debug("Deleted comment %s and %d likes", cid, removed)
    return api_response({"_id": cid}, "Comment deleted successfully")
