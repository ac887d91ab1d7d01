import logging
from typing import Optional

from bson import ObjectId
from fastapi import APIRouter, Depends, File, Form, Request, UploadFile
from fastapi.concurrency import run_in_threadpool
from pydantic import EmailStr
from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError

import database as store
import views
from auth import (
    PRIVATE_USER_FIELDS,
    REFRESH_COOKIE,
    clear_auth_cookies,
    decode_token,
    get_current_user,
    get_optional_user_id,
    hash_password,
    issue_tokens,
    set_auth_cookies,
    verify_password,
)
from database import get_db
from errors import (
    AuthenticationError,
    ConflictError,
    DependencyFailure,
    NotFoundError,
    ValidationError,
    api_response,
)
from logging_config import log_extra
from media import MediaHost, get_media, upload_files
from projection import TOKEN_RESPONSE_HIDDEN, public_user
from schemas import ChangePasswordRequest, LoginRequest, RefreshRequest, UpdateAccountRequest, User
from settings import Settings, get_settings

logger = logging.getLogger(__name__)

router = APIRouter()


# -------------------- Registration & session --------------------

def _create_user(db: Database, user: User) -> dict:
    try:
        return store.create_document(db, store.USERS, user)
    except DuplicateKeyError:
        raise ConflictError("User with this email or userName already exists")


@router.post("/register")
async def register(
    user_name: str = Form(..., alias="userName", min_length=3, max_length=30),
    full_name: str = Form(..., alias="fullName", min_length=1, max_length=80),
    email: EmailStr = Form(...),
    password: str = Form(..., min_length=6),
    avatar: Optional[UploadFile] = File(None),
    cover_image: Optional[UploadFile] = File(None, alias="coverImage"),
    db: Database = Depends(get_db),
    media: MediaHost = Depends(get_media),
    settings: Settings = Depends(get_settings),
):
    if any(not v.strip() for v in (user_name, full_name, password)):
        raise ValidationError("All fields are required")
    if avatar is None:
        raise ValidationError("Avatar file is required")

    user_name = user_name.strip().lower()
    email = str(email).strip().lower()
    existing = await run_in_threadpool(
        db[store.USERS].find_one, {"$or": [{"email": email}, {"userName": user_name}]}
    )
    if existing:
        raise ConflictError("User with this email or userName already exists")

    files = [(avatar, "avatars")]
    if cover_image is not None:
        files.append((cover_image, "covers"))
    assets = await upload_files(media, files, settings.upload_dir)
    if not all(assets):
        raise DependencyFailure("Error while uploading avatar")

    user = User(
        user_name=user_name,
        full_name=full_name.strip(),
        email=email,
        password=await run_in_threadpool(hash_password, password),
        avatar=assets[0].url,
        cover_image=assets[1].url if len(assets) > 1 else "",
    )
    try:
        created = await run_in_threadpool(_create_user, db, user)
    except (ConflictError, PyMongoError):
        for asset in assets:
            await run_in_threadpool(media.delete, asset.public_id)
        raise

    log_extra(logger, logging.INFO, "User registered", user_id=str(created["_id"]), user_name=created["userName"])
    return api_response(public_user(created), "User registered successfully", 201)


@router.post("/login")
def login(
    payload: LoginRequest,
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    conditions = []
    if payload.user_name:
        conditions.append({"userName": payload.user_name.strip().lower()})
    if payload.email:
        conditions.append({"email": str(payload.email).lower()})
    if not conditions:
        raise ValidationError("userName or email is required")

    user = db[store.USERS].find_one({"$or": conditions})
    if not user:
        raise NotFoundError("User does not exist")
    if not verify_password(payload.password, user.get("password", "")):
        raise AuthenticationError("Invalid user credentials")

    access_token, refresh_token = issue_tokens(db, user, settings)
    response = api_response(
        {"user": public_user(user), "accessToken": access_token, "refreshToken": refresh_token},
        "User logged in successfully",
        hidden=TOKEN_RESPONSE_HIDDEN,
    )
    set_auth_cookies(response, access_token, refresh_token, settings)
    return response


@router.post("/logout")
def logout(
    current_user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    db[store.USERS].update_one({"_id": current_user["_id"]}, store.touch({"$unset": {"refreshToken": ""}}))
    response = api_response({}, "User logged out")
    clear_auth_cookies(response, settings)
    return response


@router.post("/refresh-token")
def refresh_access_token(
    request: Request,
    payload: Optional[RefreshRequest] = None,
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    incoming = request.cookies.get(REFRESH_COOKIE) or (payload.refresh_token if payload else None)
    if not incoming:
        raise AuthenticationError("Unauthorized request")

    user_id = decode_token(incoming, settings.refresh_token_secret, "refresh")
    user = db[store.USERS].find_one({"_id": user_id})
    if not user:
        raise AuthenticationError("Invalid refresh token")
    if incoming != user.get("refreshToken"):
        raise AuthenticationError("Refresh token is expired or used")

    access_token, refresh_token = issue_tokens(db, user, settings)
    response = api_response(
        {"accessToken": access_token, "refreshToken": refresh_token},
        "Access token refreshed",
        hidden=TOKEN_RESPONSE_HIDDEN,
    )
    set_auth_cookies(response, access_token, refresh_token, settings)
    return response


# -------------------- Account --------------------

@router.post("/change-password")
def change_password(
    payload: ChangePasswordRequest,
    current_user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    user = db[store.USERS].find_one({"_id": current_user["_id"]}, {"password": 1})
    if not user or not verify_password(payload.old_password, user.get("password", "")):
        raise ValidationError("Invalid old password")
    db[store.USERS].update_one(
        {"_id": current_user["_id"]},
        store.touch({"$set": {"password": hash_password(payload.new_password)}}),
    )
    return api_response({}, "Password changed successfully")


@router.get("/current-user")
def current_user_view(current_user: dict = Depends(get_current_user)):
    return api_response(public_user(current_user), "Current user fetched successfully")


@router.patch("/update-account")
def update_account(
    payload: UpdateAccountRequest,
    current_user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    try:
        user = db[store.USERS].find_one_and_update(
            {"_id": current_user["_id"]},
            store.touch({"$set": {"fullName": payload.full_name.strip(), "email": str(payload.email).lower()}}),
            projection=PRIVATE_USER_FIELDS,
            return_document=ReturnDocument.AFTER,
        )
    except DuplicateKeyError:
        raise ConflictError("Email is already in use")
    if not user:
        raise NotFoundError("User not found")
    return api_response(public_user(user), "Account details updated successfully")


def _replace_user_image(db: Database, user_id: ObjectId, field: str, url: str) -> Optional[dict]:
    """Point field at url, returning the user as it was before."""
    return db[store.USERS].find_one_and_update(
        {"_id": user_id},
        store.touch({"$set": {field: url}}),
        projection=PRIVATE_USER_FIELDS,
        return_document=ReturnDocument.BEFORE,
    )


async def _update_image(
    field: str,
    folder: str,
    upload: Optional[UploadFile],
    user: dict,
    db: Database,
    media: MediaHost,
    settings: Settings,
) -> dict:
    if upload is None:
        raise ValidationError(f"{field} file is missing")

    # new file first, then the record, then the old file
    assets = await upload_files(media, [(upload, folder)], settings.upload_dir)
    asset = assets[0]
    if asset is None:
        raise DependencyFailure(f"Error while uploading {field}")

    before = await run_in_threadpool(_replace_user_image, db, user["_id"], field, asset.url)
    if before is None:
        await run_in_threadpool(media.delete, asset.public_id)
        raise NotFoundError("User not found")

    old_url = before.get(field)
    if old_url and old_url != asset.url:
        if await run_in_threadpool(media.delete_url, old_url) is None:
            logger.warning("Old %s of user %s was not removed from the media host", field, user["_id"])
    return {**before, field: asset.url}


@router.patch("/update-avatar")
async def update_avatar(
    avatar: Optional[UploadFile] = File(None),
    current_user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
    media: MediaHost = Depends(get_media),
    settings: Settings = Depends(get_settings),
):
    user = await _update_image("avatar", "avatars", avatar, current_user, db, media, settings)
    return api_response(public_user(user), "Avatar updated successfully")


@router.patch("/update-coverImage")
async def update_cover_image(
    cover_image: Optional[UploadFile] = File(None, alias="coverImage"),
    current_user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
    media: MediaHost = Depends(get_media),
    settings: Settings = Depends(get_settings),
):
    user = await _update_image("coverImage", "covers", cover_image, current_user, db, media, settings)
    return api_response(public_user(user), "Cover image updated successfully")


# -------------------- Channel views --------------------

@router.get("/c/{user_name}")
def channel_profile(
    user_name: str,
    viewer_id: Optional[ObjectId] = Depends(get_optional_user_id),
    db: Database = Depends(get_db),
):
    if not user_name.strip():
        raise ValidationError("userName is missing")
    channel = views.channel_profile(db, user_name, viewer_id)
    return api_response(channel, "User channel fetched successfully")


@router.get("/history")
def watch_history(
    current_user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    history = views.watch_history(db, current_user["_id"])
    return api_response(history, "Watch history fetched successfully")
