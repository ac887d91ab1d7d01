from typing import Optional

from bson import ObjectId
from fastapi import APIRouter, Depends
from pymongo import DESCENDING, ReturnDocument
from pymongo.database import Database

import database as store
import views
from auth import get_current_user, get_optional_user_id
from database import get_db, get_documents, parse_object_id
from errors import NotFoundError, ValidationError, api_response
from projection import owner_projection, public_owner
from routes.common import find_owned, find_visible_video, flip_published
from schemas import Playlist, PlaylistRequest, PlaylistUpdateRequest

router = APIRouter()


@router.post("/")
def create_playlist(
    payload: PlaylistRequest,
    current_user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    if not payload.name.strip():
        raise ValidationError("Playlist name is required")
    playlist = Playlist(
        name=payload.name.strip(),
        description=payload.description.strip(),
        owner=current_user["_id"],
    )
    created = store.create_document(db, store.PLAYLISTS, playlist)
    return api_response(created, "Playlist created successfully", 201)


@router.get("/user/{user_id}")
def get_user_playlists(
    user_id: str,
    viewer_id: Optional[ObjectId] = Depends(get_optional_user_id),
    db: Database = Depends(get_db),
):
    owner_id = parse_object_id(user_id, "userId")
    owner = db[store.USERS].find_one({"_id": owner_id}, owner_projection(include_id=True))
    if owner is None:
        raise NotFoundError("User does not exist")

    query = {"owner": owner_id}
    if viewer_id != owner_id:
        query["isPublished"] = True
    playlists = get_documents(db, store.PLAYLISTS, query, sort=[("createdAt", DESCENDING), ("_id", DESCENDING)])

    shaped_owner = public_owner(owner, include_id=True)
    for playlist in playlists:
        playlist["owner"] = shaped_owner
        playlist["totalVideos"] = len(playlist.get("videos", []))
    return api_response(playlists, "Playlists fetched successfully")


@router.get("/{playlist_id}")
def get_playlist(
    playlist_id: str,
    viewer_id: Optional[ObjectId] = Depends(get_optional_user_id),
    db: Database = Depends(get_db),
):
    playlist = views.playlist_detail(db, parse_object_id(playlist_id, "playlistId"), viewer_id)
    return api_response(playlist, "Playlist fetched successfully")


@router.patch("/add/{video_id}/{playlist_id}")
def add_video_to_playlist(
    video_id: str,
    playlist_id: str,
    current_user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    vid = parse_object_id(video_id, "videoId")
    pid = parse_object_id(playlist_id, "playlistId")
    find_owned(db, store.PLAYLISTS, pid, current_user["_id"], "Playlist")
    find_visible_video(db, vid, current_user["_id"])

    playlist = db[store.PLAYLISTS].find_one_and_update(
        {"_id": pid, "owner": current_user["_id"]},
        store.touch({"$addToSet": {"videos": vid}}),
        return_document=ReturnDocument.AFTER,
    )
    if playlist is None:
        raise NotFoundError("Playlist does not exist")
    return api_response(playlist, "Video added to playlist successfully")


@router.patch("/remove/{video_id}/{playlist_id}")
def remove_video_from_playlist(
    video_id: str,
    playlist_id: str,
    current_user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    vid = parse_object_id(video_id, "videoId")
    pid = parse_object_id(playlist_id, "playlistId")
    find_owned(db, store.PLAYLISTS, pid, current_user["_id"], "Playlist")

    playlist = db[store.PLAYLISTS].find_one_and_update(
        {"_id": pid, "owner": current_user["_id"], "videos": vid},
        store.touch({"$pull": {"videos": vid}}),
        return_document=ReturnDocument.AFTER,
    )
    if playlist is None:
        raise NotFoundError("Video is not in this playlist")
    return api_response(playlist, "Video removed from playlist successfully")


@router.patch("/toggle/publish/{playlist_id}")
def toggle_playlist_publish(
    playlist_id: str,
    current_user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    pid = parse_object_id(playlist_id, "playlistId")
    find_owned(db, store.PLAYLISTS, pid, current_user["_id"], "Playlist")
    playlist = flip_published(db[store.PLAYLISTS], pid, current_user["_id"])
    if playlist is None:
        raise NotFoundError("Playlist does not exist")
    state = "published" if playlist["isPublished"] else "unpublished"
    return api_response(playlist, f"Playlist {state} successfully")


@router.patch("/{playlist_id}")
def update_playlist(
    playlist_id: str,
    payload: PlaylistUpdateRequest,
    current_user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    pid = parse_object_id(playlist_id, "playlistId")
    changes = {}
    if payload.name is not None and payload.name.strip():
        changes["name"] = payload.name.strip()
    if payload.description is not None:
        changes["description"] = payload.description.strip()
    if not changes:
        raise ValidationError("Name or description is required")

    find_owned(db, store.PLAYLISTS, pid, current_user["_id"], "Playlist")
    playlist = db[store.PLAYLISTS].find_one_and_update(
        {"_id": pid, "owner": current_user["_id"]},
        store.touch({"$set": changes}),
        return_document=ReturnDocument.AFTER,
    )
    if playlist is None:
        raise NotFoundError("Playlist does not exist")
    return api_response(playlist, "Playlist updated successfully")


@router.delete("/{playlist_id}")
def delete_playlist(
    playlist_id: str,
    current_user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    pid = parse_object_id(playlist_id, "playlistId")
    find_owned(db, store.PLAYLISTS, pid, current_user["_id"], "Playlist")
    if db[store.PLAYLISTS].delete_one({"_id": pid, "owner": current_user["_id"]}).deleted_count == 0:
        raise NotFoundError("Playlist does not exist")
    return api_response({"_id": pid}, "Playlist deleted successfully")
