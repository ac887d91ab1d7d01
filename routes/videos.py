import logging
from typing import Optional

from bson import ObjectId
from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from fastapi.concurrency import run_in_threadpool
from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import PyMongoError

import database as store
import views
from auth import get_current_user, get_optional_user_id
from database import get_db, parse_object_id
from errors import DependencyFailure, NotFoundError, ValidationError, api_response
from logging_config import log_extra
from media import MediaHost, get_media, upload_files
from pagination import PageRequest
from routes.common import find_owned, flip_published, page_query
from schemas import TargetKind, Video
from settings import Settings, get_settings

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/")
def list_videos(
    query: Optional[str] = Query(None),
    user_id: Optional[str] = Query(None, alias="userId"),
    page: PageRequest = Depends(page_query(views.VIDEO_SORT_FIELDS)),
    viewer_id: Optional[ObjectId] = Depends(get_optional_user_id),
    db: Database = Depends(get_db),
):
    owner_id = parse_object_id(user_id, "userId") if user_id else None
    result = views.video_feed(db, page, viewer_id=viewer_id, query=query, owner_id=owner_id)
    return api_response(result, "Videos fetched successfully")


@router.post("/")
async def upload_video(
    title: str = Form(..., min_length=1, max_length=120),
    description: str = Form(..., min_length=1),
    is_published: bool = Form(True, alias="isPublished"),
    video_file: Optional[UploadFile] = File(None, alias="videoFile"),
    thumbnail_file: Optional[UploadFile] = File(None, alias="thumbnailFile"),
    current_user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
    media: MediaHost = Depends(get_media),
    settings: Settings = Depends(get_settings),
):
    if not title.strip() or not description.strip():
        raise ValidationError("All fields are required")
    if video_file is None:
        raise ValidationError("Video file is required")
    if thumbnail_file is None:
        raise ValidationError("Thumbnail is required")

    video_asset, thumbnail_asset = await upload_files(
        media, [(video_file, "videos"), (thumbnail_file, "thumbnails")], settings.upload_dir
    )
    if video_asset is None or thumbnail_asset is None:
        raise DependencyFailure("Error while uploading video")

    video = Video(
        owner=current_user["_id"],
        title=title.strip(),
        description=description.strip(),
        video_file=video_asset.url,
        thumbnail=thumbnail_asset.url,
        duration=video_asset.duration or 0,
        is_published=is_published,
    )
    try:
        created = await run_in_threadpool(store.create_document, db, store.VIDEOS, video)
    except PyMongoError:
        await run_in_threadpool(media.delete, video_asset.public_id)
        await run_in_threadpool(media.delete, thumbnail_asset.public_id)
        raise

    log_extra(logger, logging.INFO, "Video uploaded", video_id=str(created["_id"]), owner_id=str(current_user["_id"]))
    return api_response(created, "Video published successfully", 201)


@router.get("/{video_id}")
def get_video(
    video_id: str,
    viewer_id: Optional[ObjectId] = Depends(get_optional_user_id),
    db: Database = Depends(get_db),
):
    video = views.open_video(db, parse_object_id(video_id, "videoId"), viewer_id)
    return api_response(video, "Video fetched successfully")


def _apply_video_update(db: Database, video_id: ObjectId, owner_id: ObjectId, changes: dict) -> Optional[dict]:
    """Update an owned video, returning it as it was before."""
    return db[store.VIDEOS].find_one_and_update(
        {"_id": video_id, "owner": owner_id},
        store.touch({"$set": changes}),
        return_document=ReturnDocument.BEFORE,
    )


@router.patch("/{video_id}")
async def update_video(
    video_id: str,
    title: str = Form(..., min_length=1, max_length=120),
    description: str = Form(..., min_length=1),
    thumbnail_file: Optional[UploadFile] = File(None, alias="thumbnailFile"),
    current_user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
    media: MediaHost = Depends(get_media),
    settings: Settings = Depends(get_settings),
):
    vid = parse_object_id(video_id, "videoId")
    if not title.strip() or not description.strip():
        raise ValidationError("Title and description are required")
    await run_in_threadpool(find_owned, db, store.VIDEOS, vid, current_user["_id"], "Video")

    changes = {"title": title.strip(), "description": description.strip()}
    new_thumbnail = None
    if thumbnail_file is not None:
        (new_thumbnail,) = await upload_files(media, [(thumbnail_file, "thumbnails")], settings.upload_dir)
        if new_thumbnail is None:
            raise DependencyFailure("Error while uploading thumbnail")
        changes["thumbnail"] = new_thumbnail.url

    before = await run_in_threadpool(_apply_video_update, db, vid, current_user["_id"], changes)
    if before is None:
        if new_thumbnail is not None:
            await run_in_threadpool(media.delete, new_thumbnail.public_id)
        raise NotFoundError("Video does not exist")

    # the old thumbnail goes only once the record points at the new one
    if new_thumbnail is not None and before.get("thumbnail") and before["thumbnail"] != new_thumbnail.url:
        if await run_in_threadpool(media.delete_url, before["thumbnail"]) is None:
            logger.warning("Old thumbnail of video %s was not removed from the media host", vid)

    return api_response({**before, **changes}, "Video updated successfully")


@router.delete("/{video_id}")
def delete_video(
    video_id: str,
    current_user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
    media: MediaHost = Depends(get_media),
):
    vid = parse_object_id(video_id, "videoId")
    find_owned(db, store.VIDEOS, vid, current_user["_id"], "Video")

    video = db[store.VIDEOS].find_one_and_delete({"_id": vid, "owner": current_user["_id"]})
    if video is None:
        raise NotFoundError("Video does not exist")

    comment_ids = [c["_id"] for c in db[store.COMMENTS].find({"video": vid}, {"_id": 1})]
    db[store.COMMENTS].delete_many({"video": vid})
    db[store.LIKES].delete_many({"targetType": TargetKind.VIDEO.value, "targetId": vid})
    if comment_ids:
        db[store.LIKES].delete_many({"targetType": TargetKind.COMMENT.value, "targetId": {"$in": comment_ids}})
    db[store.PLAYLISTS].update_many({"videos": vid}, {"$pull": {"videos": vid}})
    db[store.USERS].update_many({"watchHistory": vid}, {"$pull": {"watchHistory": vid}})

    for url in (video.get("videoFile"), video.get("thumbnail")):
        if url and media.delete_url(url) is None:
            logger.warning("Media %s of deleted video %s was not removed", url, vid)

    return api_response({"_id": vid}, "Video deleted successfully")


@router.patch("/toggle/publish/{video_id}")
def toggle_publish_status(
    video_id: str,
    current_user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    vid = parse_object_id(video_id, "videoId")
    find_owned(db, store.VIDEOS, vid, current_user["_id"], "Video")
    video = flip_published(db[store.VIDEOS], vid, current_user["_id"])
    if video is None:
        raise NotFoundError("Video does not exist")
    state = "published" if video["isPublished"] else "unpublished"
    return api_response(video, f"Video {state} successfully")
