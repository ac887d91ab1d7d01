"""
Database Schemas for the video platform

Each Pydantic model maps to a MongoDB collection. Attributes are snake_case
in Python and stored camelCase (userName, isPublished, likedBy, ...), the
same names the public views use.

Collections:
- User -> users
- Video -> videos
- Comment -> comments
- Like -> likes
- Subscription -> subscriptions
- Tweet -> tweets
- Playlist -> playlists
"""

from enum import Enum
from typing import List, NamedTuple, Optional

from bson import ObjectId
from pydantic import AliasChoices, BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel


class MongoModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        arbitrary_types_allowed=True,
        use_enum_values=True,
    )


# -------------------- Collections --------------------

class User(MongoModel):
    user_name: str = Field(..., min_length=3, max_length=30)
    full_name: str = Field(..., min_length=1, max_length=80)
    email: EmailStr
    password: str = Field(..., description="Bcrypt hash")
    avatar: str
    cover_image: str = ""
    watch_history: List[ObjectId] = Field(default_factory=list)

    @field_validator("user_name", "email")
    @classmethod
    def _lowercase(cls, v: str) -> str:
        return v.strip().lower()


class Video(MongoModel):
    owner: ObjectId
    title: str = Field(..., min_length=1, max_length=120)
    description: str = Field(..., min_length=1)
    video_file: str
    thumbnail: str
    duration: float = 0
    views: int = 0
    is_published: bool = True


class Comment(MongoModel):
    content: str = Field(..., min_length=1, max_length=1000)
    video: ObjectId
    owner: ObjectId


class TargetKind(str, Enum):
    VIDEO = "video"
    COMMENT = "comment"
    TWEET = "tweet"

    @property
    def collection(self) -> str:
        return f"{self.value}s"


class LikeTarget(NamedTuple):
    """What a Like points at: exactly one video, comment or tweet."""
    kind: TargetKind
    id: ObjectId

    @classmethod
    def video(cls, video_id: ObjectId) -> "LikeTarget":
        return cls(TargetKind.VIDEO, video_id)

    @classmethod
    def comment(cls, comment_id: ObjectId) -> "LikeTarget":
        return cls(TargetKind.COMMENT, comment_id)

    @classmethod
    def tweet(cls, tweet_id: ObjectId) -> "LikeTarget":
        return cls(TargetKind.TWEET, tweet_id)

    def as_filter(self) -> dict:
        return {"targetType": self.kind.value, "targetId": self.id}


class Like(MongoModel):
    liked_by: ObjectId
    target_type: TargetKind
    target_id: ObjectId

    @classmethod
    def for_target(cls, liked_by: ObjectId, target: LikeTarget) -> "Like":
        return cls(liked_by=liked_by, target_type=target.kind, target_id=target.id)


class Subscription(MongoModel):
    subscriber: ObjectId = Field(..., description="The user doing the subscribing")
    channel: ObjectId = Field(..., description="The user being subscribed to")


class Tweet(MongoModel):
    content: str = Field(..., min_length=1, max_length=280)
    owner: ObjectId


class Playlist(MongoModel):
    name: str = Field(..., min_length=1, max_length=120)
    description: str = ""
    videos: List[ObjectId] = Field(default_factory=list)
    owner: ObjectId
    is_published: bool = False


# -------------------- Request bodies --------------------

class LoginRequest(MongoModel):
    user_name: Optional[str] = None
    email: Optional[EmailStr] = None
    password: str = Field(..., min_length=1)


class RefreshRequest(MongoModel):
    refresh_token: Optional[str] = None


def _required_text(v: str) -> str:
    v = v.strip()
    if not v:
        raise ValueError("must not be blank")
    return v


class ChangePasswordRequest(MongoModel):
    old_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=6)


class UpdateAccountRequest(MongoModel):
    full_name: str = Field(..., min_length=1, max_length=80)
    email: EmailStr

    @field_validator("full_name")
    @classmethod
    def _full_name_required(cls, v: str) -> str:
        return _required_text(v)


class CommentRequest(BaseModel):
    content: str = Field(
        ..., min_length=1, max_length=1000,
        validation_alias=AliasChoices("content", "commentContent"),
    )

    @field_validator("content")
    @classmethod
    def _content_required(cls, v: str) -> str:
        return _required_text(v)


class TweetRequest(BaseModel):
    content: str = Field(
        ..., min_length=1, max_length=280,
        validation_alias=AliasChoices("content", "tweetContent"),
    )

    @field_validator("content")
    @classmethod
    def _content_required(cls, v: str) -> str:
        return _required_text(v)


class PlaylistRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    description: str = ""


class PlaylistUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=120)
    description: Optional[str] = None
