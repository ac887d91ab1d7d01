from typing import Optional

from bson import ObjectId
from fastapi import APIRouter, Depends
from pymongo.database import Database

import database as store
import views
from auth import get_current_user, get_optional_user_id
from database import get_db, parse_object_id
from errors import NotFoundError, ValidationError, api_response
from pagination import PageRequest
from routes.common import page_query
from toggles import toggle_subscription

router = APIRouter()


def _require_user(db: Database, user_id: ObjectId, label: str) -> None:
    if db[store.USERS].find_one({"_id": user_id}, {"_id": 1}) is None:
        raise NotFoundError(f"{label} does not exist")


@router.post("/c/{channel_id}")
def toggle_channel_subscription(
    channel_id: str,
    current_user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    channel = parse_object_id(channel_id, "channelId")
    if channel == current_user["_id"]:
        raise ValidationError("You cannot subscribe to your own channel")
    _require_user(db, channel, "Channel")

    result = toggle_subscription(db, current_user["_id"], channel)
    message = "Subscribed successfully" if result.present else "Unsubscribed successfully"
    return api_response({"isSubscribed": result.present, "subscription": result.record}, message)


@router.get("/c/{channel_id}")
def get_channel_subscribers(
    channel_id: str,
    page: PageRequest = Depends(page_query(views.SUBSCRIPTION_SORT_FIELDS)),
    viewer_id: Optional[ObjectId] = Depends(get_optional_user_id),
    db: Database = Depends(get_db),
):
    channel = parse_object_id(channel_id, "channelId")
    _require_user(db, channel, "Channel")
    result = views.channel_subscribers(db, channel, page, viewer_id)
    return api_response(result, "Subscribers fetched successfully")


@router.get("/u/{subscriber_id}")
def get_subscribed_channels(
    subscriber_id: str,
    page: PageRequest = Depends(page_query(views.SUBSCRIPTION_SORT_FIELDS)),
    db: Database = Depends(get_db),
):
    subscriber = parse_object_id(subscriber_id, "subscriberId")
    _require_user(db, subscriber, "User")
    result = views.subscribed_channels(db, subscriber, page)
    return api_response(result, "Subscribed channels fetched successfully")
