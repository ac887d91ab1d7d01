"""
HTTP tests for the video routes.
"""

from bson import ObjectId

VIDEOS = "/api/v1/videos"


def _upload(client, headers, **data):
    form = {"title": "My video", "description": "Something to watch"}
    form.update(data)
    return client.post(
        VIDEOS + "/",
        headers=headers,
        data=form,
        files={
            "videoFile": ("clip.mp4", b"video-bytes", "video/mp4"),
            "thumbnailFile": ("thumb.png", b"thumb-bytes", "image/png"),
        },
    )


class TestUploadVideo:
    """Tests for POST /videos."""

    def test_publishes_video(self, client, db, media, make_user):
        user, headers = make_user("ann")

        response = _upload(client, headers)

        assert response.status_code == 201
        data = response.json()["data"]
        assert data["owner"] == str(user["_id"])
        assert data["isPublished"] is True
        assert data["views"] == 0
        assert data["videoFile"].startswith("https://media.test/test-bucket/videos/")
        assert db["videos"].count_documents({}) == 1
        assert len(media.uploaded) == 2

    def test_can_upload_unpublished(self, client, make_user):
        _, headers = make_user("ann")

        response = _upload(client, headers, isPublished="false")

        assert response.status_code == 201
        assert response.json()["data"]["isPublished"] is False

    def test_requires_auth(self, client):
        response = _upload(client, {})

        assert response.status_code == 401

    def test_requires_video_file(self, client, make_user):
        _, headers = make_user("ann")

        response = client.post(
            VIDEOS + "/", headers=headers,
            data={"title": "t", "description": "d"},
            files={"thumbnailFile": ("thumb.png", b"x", "image/png")},
        )

        assert response.status_code == 400

    def test_upload_failure_stores_nothing(self, client, db, media, make_user):
        _, headers = make_user("ann")
        media.fail_uploads = True

        response = _upload(client, headers)

        assert response.status_code == 502
        assert db["videos"].count_documents({}) == 0


class TestVideoVisibility:
    """Tests for reading and publishing videos."""

    def test_unpublished_video_becomes_visible_after_publish(self, client, db, make_user, make_video):
        owner, owner_headers = make_user("ann")
        _, viewer_headers = make_user("bob")
        video = make_video(owner["_id"], published=False)
        url = f"{VIDEOS}/{video['_id']}"

        hidden = client.get(url, headers=viewer_headers)
        toggled = client.patch(f"{VIDEOS}/toggle/publish/{video['_id']}", headers=owner_headers)
        visible = client.get(url, headers=viewer_headers)

        assert hidden.status_code == 404
        assert toggled.status_code == 200
        assert toggled.json()["data"]["isPublished"] is True
        assert visible.status_code == 200
        assert visible.json()["data"]["views"] == 1
        assert visible.json()["data"]["owner"]["userName"] == "ann"

    def test_owner_sees_own_unpublished(self, client, make_user, make_video):
        owner, headers = make_user("ann")
        video = make_video(owner["_id"], published=False)

        response = client.get(f"{VIDEOS}/{video['_id']}", headers=headers)

        assert response.status_code == 200

    def test_anonymous_view(self, client, make_user, make_video):
        owner, _ = make_user("ann")
        video = make_video(owner["_id"])

        response = client.get(f"{VIDEOS}/{video['_id']}")

        assert response.status_code == 200
        assert response.json()["data"]["isLiked"] is False
        assert response.json()["data"]["owner"]["isSubscribed"] is False

    def test_toggle_twice_restores_state(self, client, db, make_user, make_video):
        owner, headers = make_user("ann")
        video = make_video(owner["_id"])

        for _ in range(2):
            client.patch(f"{VIDEOS}/toggle/publish/{video['_id']}", headers=headers)

        assert db["videos"].find_one({"_id": video["_id"]})["isPublished"] is True

    def test_only_owner_toggles(self, client, make_user, make_video):
        owner, _ = make_user("ann")
        _, other_headers = make_user("bob")
        video = make_video(owner["_id"])

        response = client.patch(f"{VIDEOS}/toggle/publish/{video['_id']}", headers=other_headers)

        assert response.status_code == 403

    def test_missing_video(self, client):
        response = client.get(f"{VIDEOS}/{ObjectId()}")

        assert response.status_code == 404


class TestUpdateVideo:
    """Tests for PATCH /videos/{videoId}."""

    def test_updates_text_and_thumbnail(self, client, db, media, make_user, make_video):
        owner, headers = make_user("ann")
        video = make_video(owner["_id"], title="old")

        response = client.patch(
            f"{VIDEOS}/{video['_id']}", headers=headers,
            data={"title": "new", "description": "fresh"},
            files={"thumbnailFile": ("thumb.png", b"x", "image/png")},
        )

        assert response.status_code == 200
        stored = db["videos"].find_one({"_id": video["_id"]})
        assert stored["title"] == "new"
        assert stored["thumbnail"] == media.url_for(media.uploaded[0])
        assert media.deleted == ["thumbnails/old.png"]

    def test_non_owner_forbidden(self, client, db, make_user, make_video):
        owner, _ = make_user("ann")
        _, other_headers = make_user("bob")
        video = make_video(owner["_id"], title="old")

        response = client.patch(
            f"{VIDEOS}/{video['_id']}", headers=other_headers,
            data={"title": "new", "description": "fresh"},
        )

        assert response.status_code == 403
        assert db["videos"].find_one({"_id": video["_id"]})["title"] == "old"


class TestDeleteVideo:
    """Tests for DELETE /videos/{videoId}."""

    def test_removes_dependents(self, client, db, media, make_user, make_video):
        owner, headers = make_user("ann")
        video = make_video(owner["_id"], title="gone")
        comment_id = db["comments"].insert_one(
            {"content": "hi", "video": video["_id"], "owner": owner["_id"]}
        ).inserted_id
        db["likes"].insert_many([
            {"likedBy": owner["_id"], "targetType": "video", "targetId": video["_id"]},
            {"likedBy": owner["_id"], "targetType": "comment", "targetId": comment_id},
        ])
        db["playlists"].insert_one({"name": "p", "owner": owner["_id"], "videos": [video["_id"]], "isPublished": False})
        db["users"].update_one({"_id": owner["_id"]}, {"$set": {"watchHistory": [video["_id"]]}})

        response = client.delete(f"{VIDEOS}/{video['_id']}", headers=headers)

        assert response.status_code == 200
        assert db["videos"].count_documents({}) == 0
        assert db["comments"].count_documents({}) == 0
        assert db["likes"].count_documents({}) == 0
        assert db["playlists"].find_one({})["videos"] == []
        assert db["users"].find_one({"_id": owner["_id"]})["watchHistory"] == []
        assert sorted(media.deleted) == ["thumbnails/gone.png", "videos/gone.mp4"]

    def test_non_owner_forbidden(self, client, db, make_user, make_video):
        owner, _ = make_user("ann")
        _, other_headers = make_user("bob")
        video = make_video(owner["_id"])

        response = client.delete(f"{VIDEOS}/{video['_id']}", headers=other_headers)

        assert response.status_code == 403
        assert db["videos"].count_documents({}) == 1
