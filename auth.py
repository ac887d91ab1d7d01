"""
Password hashing, JWT issuing and the dependencies that resolve the
viewing principal of a request.
"""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

import jwt
from bson import ObjectId
from bson.errors import InvalidId
from fastapi import Depends, Request
from fastapi.responses import Response
from passlib.context import CryptContext
from pymongo.database import Database

import database as store
from database import get_db
from errors import AuthenticationError
from settings import Settings, get_settings

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

ALGORITHM = "HS256"
ACCESS_COOKIE = "accessToken"
REFRESH_COOKIE = "refreshToken"

# Excluded whenever the current user is loaded
PRIVATE_USER_FIELDS = {"password": 0, "refreshToken": 0}


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    if not hashed:
        return False
    return pwd_context.verify(password, hashed)


# -------------------- Tokens --------------------

def create_access_token(user: dict, settings: Settings) -> str:
    now = datetime.now(timezone.utc)
    claims = {
        "sub": str(user["_id"]),
        "email": user.get("email"),
        "userName": user.get("userName"),
        "fullName": user.get("fullName"),
        "type": "access",
        "iat": now,
        "exp": now + timedelta(minutes=settings.access_token_expiry_minutes),
    }
    return jwt.encode(claims, settings.access_token_secret, algorithm=ALGORITHM)


def create_refresh_token(user_id: ObjectId, settings: Settings) -> str:
    now = datetime.now(timezone.utc)
    claims = {
        "sub": str(user_id),
        "type": "refresh",
        "jti": uuid.uuid4().hex,
        "iat": now,
        "exp": now + timedelta(days=settings.refresh_token_expiry_days),
    }
    return jwt.encode(claims, settings.refresh_token_secret, algorithm=ALGORITHM)


def decode_token(token: str, secret: str, expected_type: str) -> ObjectId:
    """Return the user id a token was issued for."""
    try:
        claims = jwt.decode(token, secret, algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Token expired")
    except jwt.InvalidTokenError:
        raise AuthenticationError("Invalid token")
    if claims.get("type") != expected_type:
        raise AuthenticationError("Invalid token")
    try:
        return ObjectId(claims.get("sub"))
    except (InvalidId, TypeError):
        raise AuthenticationError("Invalid token")


def issue_tokens(db: Database, user: dict, settings: Settings) -> Tuple[str, str]:
    """Create an access/refresh pair and store the refresh token on the user."""
    access_token = create_access_token(user, settings)
    refresh_token = create_refresh_token(user["_id"], settings)
    db[store.USERS].update_one(
        {"_id": user["_id"]},
        store.touch({"$set": {"refreshToken": refresh_token}}),
    )
    return access_token, refresh_token


def set_auth_cookies(response: Response, access_token: str, refresh_token: str, settings: Settings) -> None:
    options = {"httponly": True, "secure": settings.is_production, "samesite": "lax"}
    response.set_cookie(ACCESS_COOKIE, access_token, max_age=settings.access_token_expiry_minutes * 60, **options)
    response.set_cookie(REFRESH_COOKIE, refresh_token, max_age=settings.refresh_token_expiry_days * 86400, **options)


def clear_auth_cookies(response: Response, settings: Settings) -> None:
    options = {"httponly": True, "secure": settings.is_production, "samesite": "lax"}
    response.delete_cookie(ACCESS_COOKIE, **options)
    response.delete_cookie(REFRESH_COOKIE, **options)


# -------------------- Dependencies --------------------

def token_from_request(request: Request) -> Optional[str]:
    header = request.headers.get("Authorization", "")
    scheme, _, value = header.partition(" ")
    if scheme.lower() == "bearer" and value.strip():
        return value.strip()
    return request.cookies.get(ACCESS_COOKIE) or None


def get_current_user(
    request: Request,
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> dict:
    """The authenticated user, without password or refresh token."""
    token = token_from_request(request)
    if not token:
        raise AuthenticationError("Unauthorized request")
    user_id = decode_token(token, settings.access_token_secret, "access")
    user = db[store.USERS].find_one({"_id": user_id}, PRIVATE_USER_FIELDS)
    if not user:
        raise AuthenticationError("Invalid access token")
    request.state.user_id = str(user_id)
    return user


def get_optional_user_id(
    request: Request,
    settings: Settings = Depends(get_settings),
) -> Optional[ObjectId]:
    """The caller's id on public routes; anonymous when no valid token is sent."""
    token = token_from_request(request)
    if not token:
        return None
    try:
        user_id = decode_token(token, settings.access_token_secret, "access")
    except AuthenticationError:
        return None
    request.state.user_id = str(user_id)
    return user_id
