"""
Shared fixtures: a mongomock database, an in-memory media host and an
HTTP client wired to both.
"""

import os

import mongomock
import pytest
from fastapi.testclient import TestClient

import database as store
from auth import create_access_token, hash_password
from database import ensure_indexes, get_db
from main import app
from media import MediaAsset, MediaHost, discard, get_media
from schemas import User
from settings import Settings, get_settings


class FakeMediaHost(MediaHost):
    """Media host that keeps uploads in memory."""

    def __init__(self):
        super().__init__(client=None, bucket="test-bucket", public_url="https://media.test/test-bucket")
        self.uploaded = []
        self.deleted = []
        self.fail_uploads = False

    def upload(self, local_path, folder="media"):
        try:
            if self.fail_uploads or not local_path:
                return None
            public_id = f"{folder}/{os.path.basename(local_path)}"
            self.uploaded.append(public_id)
            return MediaAsset(url=self.url_for(public_id), public_id=public_id)
        finally:
            discard(local_path)

    def delete(self, public_id):
        if not public_id:
            return None
        self.deleted.append(public_id)
        return {"result": "ok", "publicId": public_id}


@pytest.fixture
def db():
    client = mongomock.MongoClient()
    database = client["videotube_test"]
    ensure_indexes(database)
    yield database
    client.close()


@pytest.fixture
def media():
    return FakeMediaHost()


@pytest.fixture
def settings(tmp_path):
    return Settings(upload_dir=str(tmp_path / "uploads"), access_token_expiry_minutes=15)


@pytest.fixture
def client(db, media, settings):
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_media] = lambda: media
    app.dependency_overrides[get_settings] = lambda: settings
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db, settings):
    """Factory inserting a user and returning (user, auth headers)."""

    def _make(user_name, password="secret123"):
        user = User(
            user_name=user_name,
            full_name=user_name.title(),
            email=f"{user_name}@example.com",
            password=hash_password(password),
            avatar=f"https://media.test/test-bucket/avatars/{user_name}.png",
        )
        doc = store.create_document(db, store.USERS, user)
        token = create_access_token(doc, settings)
        return doc, {"Authorization": f"Bearer {token}"}

    return _make


@pytest.fixture
def make_video(db):
    def _make(owner_id, title="A video", published=True, **extra):
        doc = {
            "owner": owner_id,
            "title": title,
            "description": f"About {title}",
            "videoFile": f"https://media.test/test-bucket/videos/{title}.mp4",
            "thumbnail": f"https://media.test/test-bucket/thumbnails/{title}.png",
            "duration": 0,
            "views": 0,
            "isPublished": published,
        }
        doc.update(extra)
        return store.create_document(db, store.VIDEOS, doc)

    return _make
