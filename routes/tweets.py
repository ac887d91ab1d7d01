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
from routes.common import find_owned, page_query
from schemas import LikeTarget, Tweet, TweetRequest

router = APIRouter()


@router.post("/")
def create_tweet(
    payload: TweetRequest,
    current_user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    tweet = Tweet(content=payload.content.strip(), owner=current_user["_id"])
    created = store.create_document(db, store.TWEETS, tweet)
    return api_response(created, "Tweet created successfully", 201)


@router.get("/user/{user_id}")
def get_user_tweets(
    user_id: str,
    page: PageRequest = Depends(page_query(views.TWEET_SORT_FIELDS)),
    viewer_id: Optional[ObjectId] = Depends(get_optional_user_id),
    db: Database = Depends(get_db),
):
    owner = parse_object_id(user_id, "userId")
    if db[store.USERS].find_one({"_id": owner}, {"_id": 1}) is None:
        raise NotFoundError("User does not exist")
    result = views.tweet_list(db, owner, page, viewer_id)
    return api_response(result, "Tweets fetched successfully")


@router.patch("/{tweet_id}")
def update_tweet(
    tweet_id: str,
    payload: TweetRequest,
    current_user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    tid = parse_object_id(tweet_id, "tweetId")
    find_owned(db, store.TWEETS, tid, current_user["_id"], "Tweet")
    tweet = db[store.TWEETS].find_one_and_update(
        {"_id": tid, "owner": current_user["_id"]},
        store.touch({"$set": {"content": payload.content.strip()}}),
        return_document=ReturnDocument.AFTER,
    )
    if tweet is None:
        raise NotFoundError("Tweet does not exist")
    return api_response(tweet, "Tweet updated successfully")


@router.delete("/{tweet_id}")
def delete_tweet(
    tweet_id: str,
    current_user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    tid = parse_object_id(tweet_id, "tweetId")
    find_owned(db, store.TWEETS, tid, current_user["_id"], "Tweet")
    if db[store.TWEETS].delete_one({"_id": tid, "owner": current_user["_id"]}).deleted_count == 0:
        raise NotFoundError("Tweet does not exist")
    db[store.LIKES].delete_many(LikeTarget.tweet(tid).as_filter())
    return api_response({"_id": tid}, "Tweet deleted successfully")
