"""
Listing routes against a real MongoDB server.

The view pipelines use $lookup sub-pipelines, $first and $mergeObjects,
which mongomock does not run. Set MONGODB_TEST_URL (for example
mongodb://localhost:27017) to run these; each test gets its own database,
dropped afterwards. MongoDB 5.0+ is required.
"""

import os

import pytest
from bson import ObjectId

import database as store
from database import close, connect, ensure_indexes

MONGODB_TEST_URL = os.environ.get("MONGODB_TEST_URL")

pytestmark = [
    pytest.mark.integration,
    pytest.mark.skipif(not MONGODB_TEST_URL, reason="MONGODB_TEST_URL is not set"),
]

API = "/api/v1"


@pytest.fixture
def db():
    name = f"videotube_test_{ObjectId()}"
    client, database = connect(MONGODB_TEST_URL, name)
    ensure_indexes(database)
    yield database
    client.drop_database(name)
    close(client)


def _data(response):
    assert response.status_code == 200, response.json()
    return response.json()["data"]


class TestVideoFeed:
    """Tests for GET /videos."""

    def test_anonymous_viewer_is_never_liked(self, client, make_user, make_video):
        owner, headers = make_user("ann")
        video = make_video(owner["_id"])
        client.post(f"{API}/likes/toggle/v/{video['_id']}", headers=headers)

        anonymous = _data(client.get(f"{API}/videos/"))
        signed_in = _data(client.get(f"{API}/videos/", headers=headers))

        assert anonymous["docs"][0]["likesCount"] == 1
        assert anonymous["docs"][0]["isLiked"] is False
        assert signed_in["docs"][0]["isLiked"] is True

    def test_owner_is_embedded(self, client, make_user, make_video):
        owner, _ = make_user("ann")
        make_video(owner["_id"])

        doc = _data(client.get(f"{API}/videos/"))["docs"][0]

        assert doc["owner"] == {
            "_id": str(owner["_id"]),
            "userName": "ann",
            "fullName": "Ann",
            "avatar": owner["avatar"],
        }

    def test_second_page(self, client, make_user, make_video):
        owner, _ = make_user("ann")
        for rank in range(1, 13):
            make_video(owner["_id"], title=f"video {rank}", views=rank)

        page = _data(client.get(f"{API}/videos/", params={"page": 2, "limit": 5, "sortBy": "views", "sortType": "asc"}))

        assert [doc["views"] for doc in page["docs"]] == [6, 7, 8, 9, 10]
        assert page["totalDocs"] == 12
        assert page["totalPages"] == 3
        assert page["hasNextPage"] is True
        assert page["prevPage"] == 1

    def test_search_narrows_the_count(self, client, make_user, make_video):
        ann, _ = make_user("ann")
        bob, _ = make_user("bob")
        make_video(ann["_id"], title="Cats at home")
        make_video(ann["_id"], title="Dogs outside")
        make_video(bob["_id"], title="More dogs")

        by_title = _data(client.get(f"{API}/videos/", params={"query": "dogs"}))
        by_owner = _data(client.get(f"{API}/videos/", params={"query": "bob"}))

        assert by_title["totalDocs"] == 2
        assert {doc["title"] for doc in by_title["docs"]} == {"Dogs outside", "More dogs"}
        assert by_owner["totalDocs"] == 1
        assert by_owner["docs"][0]["owner"]["userName"] == "bob"

    def test_unpublished_hidden_from_others(self, client, make_user, make_video):
        owner, headers = make_user("ann")
        make_video(owner["_id"], title="public")
        make_video(owner["_id"], title="draft", published=False)

        anonymous = _data(client.get(f"{API}/videos/"))
        as_owner = _data(client.get(f"{API}/videos/", headers=headers))

        assert [doc["title"] for doc in anonymous["docs"]] == ["public"]
        assert anonymous["totalDocs"] == 1
        assert as_owner["totalDocs"] == 2


class TestCommentList:
    """Tests for GET /comments/{videoId}."""

    def test_like_state_follows_toggles(self, client, make_user, make_video):
        owner, headers = make_user("ann")
        _, bob_headers = make_user("bob")
        video = make_video(owner["_id"])
        comment_id = client.post(
            f"{API}/comments/{video['_id']}", headers=headers, json={"content": "first"}
        ).json()["data"]["_id"]

        client.post(f"{API}/likes/toggle/c/{comment_id}", headers=bob_headers)
        liked = _data(client.get(f"{API}/comments/{video['_id']}", headers=bob_headers))["docs"][0]
        client.post(f"{API}/likes/toggle/c/{comment_id}", headers=bob_headers)
        unliked = _data(client.get(f"{API}/comments/{video['_id']}", headers=bob_headers))["docs"][0]

        assert liked["likesCount"] == 1
        assert liked["isLiked"] is True
        assert liked["owner"]["userName"] == "ann"
        assert "_id" not in liked["owner"]
        assert unliked["likesCount"] == 0
        assert unliked["isLiked"] is False


class TestChannelViews:
    """Tests for the channel profile and watch history."""

    def test_profile_subscription_state(self, client, make_user):
        channel, _ = make_user("ann")
        _, bob_headers = make_user("bob")
        client.post(f"{API}/subscriptions/c/{channel['_id']}", headers=bob_headers)

        as_subscriber = _data(client.get(f"{API}/users/c/Ann", headers=bob_headers))
        anonymous = _data(client.get(f"{API}/users/c/ann"))

        assert as_subscriber["subscribersCount"] == 1
        assert as_subscriber["channelsSubscribedToCount"] == 0
        assert as_subscriber["isSubscribed"] is True
        assert anonymous["isSubscribed"] is False
        assert "password" not in anonymous
        assert "watchHistory" not in anonymous

    def test_watch_history_newest_first(self, client, make_user, make_video):
        owner, _ = make_user("ann")
        _, bob_headers = make_user("bob")
        first = make_video(owner["_id"], title="first")
        second = make_video(owner["_id"], title="second")
        for video in (first, second, first, second):
            client.get(f"{API}/videos/{video['_id']}", headers=bob_headers)

        history = _data(client.get(f"{API}/users/history", headers=bob_headers))

        assert [video["title"] for video in history] == ["second", "first"]
        assert history[0]["owner"]["userName"] == "ann"

    def test_watch_history_drops_hidden_videos(self, client, db, make_user, make_video):
        owner, _ = make_user("ann")
        _, bob_headers = make_user("bob")
        video = make_video(owner["_id"])
        client.get(f"{API}/videos/{video['_id']}", headers=bob_headers)
        db["videos"].update_one({"_id": video["_id"]}, {"$set": {"isPublished": False}})

        assert _data(client.get(f"{API}/users/history", headers=bob_headers)) == []


class TestLikedVideos:
    """Tests for GET /likes/videos."""

    def test_lists_visible_liked_videos(self, client, db, make_user, make_video):
        owner, _ = make_user("ann")
        _, bob_headers = make_user("bob")
        kept = make_video(owner["_id"], title="kept")
        hidden = make_video(owner["_id"], title="hidden")
        for video in (kept, hidden):
            client.post(f"{API}/likes/toggle/v/{video['_id']}", headers=bob_headers)
        db["videos"].update_one({"_id": hidden["_id"]}, {"$set": {"isPublished": False}})

        page = _data(client.get(f"{API}/likes/videos", headers=bob_headers))

        assert page["totalDocs"] == 1
        assert page["docs"][0]["_id"] == str(kept["_id"])
        assert page["docs"][0]["owner"]["userName"] == "ann"
        assert "likedAt" in page["docs"][0]


class TestTweetList:
    """Tests for GET /tweets/user/{userId}."""

    def test_like_state(self, client, make_user):
        owner, headers = make_user("ann")
        _, bob_headers = make_user("bob")
        tweet_id = client.post(f"{API}/tweets/", headers=headers, json={"content": "hello"}).json()["data"]["_id"]
        client.post(f"{API}/likes/toggle/t/{tweet_id}", headers=bob_headers)

        as_liker = _data(client.get(f"{API}/tweets/user/{owner['_id']}", headers=bob_headers))
        as_owner = _data(client.get(f"{API}/tweets/user/{owner['_id']}", headers=headers))

        assert as_liker["docs"][0]["likesCount"] == 1
        assert as_liker["docs"][0]["isLiked"] is True
        assert as_owner["docs"][0]["isLiked"] is False
        assert as_owner["docs"][0]["owner"]["userName"] == "ann"


class TestSubscriptionLists:
    """Tests for the subscriber and subscription listings."""

    def test_subscribers_carry_their_own_counts(self, client, make_user):
        channel, _ = make_user("ann")
        bob, bob_headers = make_user("bob")
        _, cat_headers = make_user("cat")
        client.post(f"{API}/subscriptions/c/{channel['_id']}", headers=bob_headers)
        client.post(f"{API}/subscriptions/c/{bob['_id']}", headers=cat_headers)

        page = _data(client.get(f"{API}/subscriptions/c/{channel['_id']}", headers=cat_headers))

        subscriber = page["docs"][0]["subscriber"]
        assert page["totalDocs"] == 1
        assert subscriber["userName"] == "bob"
        assert subscriber["subscribersCount"] == 1
        assert subscriber["isSubscribed"] is True
        assert "subscribersCount" not in page["docs"][0]

    def test_deleted_subscriber_stays_null(self, client, db, make_user):
        channel, _ = make_user("ann")
        bob, bob_headers = make_user("bob")
        client.post(f"{API}/subscriptions/c/{channel['_id']}", headers=bob_headers)
        db["users"].delete_one({"_id": bob["_id"]})

        page = _data(client.get(f"{API}/subscriptions/c/{channel['_id']}"))

        assert page["totalDocs"] == 1
        assert page["docs"][0]["subscriber"] is None

    def test_subscribed_channels(self, client, make_user):
        ann, _ = make_user("ann")
        bob, bob_headers = make_user("bob")
        client.post(f"{API}/subscriptions/c/{ann['_id']}", headers=bob_headers)

        page = _data(client.get(f"{API}/subscriptions/u/{bob['_id']}"))

        assert page["docs"][0]["channel"]["_id"] == str(ann["_id"])
        assert page["docs"][0]["channel"]["userName"] == "ann"
        assert "subscribedAt" in page["docs"][0]


class TestPlaylistDetail:
    """Tests for GET /playlist/{playlistId}."""

    @pytest.fixture
    def playlist(self, db, make_user, make_video):
        owner, headers = make_user("ann")
        first = make_video(owner["_id"], title="first", views=3)
        second = make_video(owner["_id"], title="second", views=4)
        draft = make_video(owner["_id"], title="draft", published=False, views=10)
        doc = store.create_document(db, store.PLAYLISTS, {
            "name": "Mix",
            "description": "",
            "videos": [second["_id"], draft["_id"], first["_id"]],
            "owner": owner["_id"],
            "isPublished": True,
        })
        return doc, headers

    def test_keeps_order_and_totals(self, client, playlist):
        doc, _ = playlist

        detail = _data(client.get(f"{API}/playlist/{doc['_id']}"))

        assert [video["title"] for video in detail["videos"]] == ["second", "first"]
        assert detail["totalVideos"] == 2
        assert detail["totalViews"] == 7
        assert detail["owner"]["userName"] == "ann"

    def test_owner_sees_own_drafts(self, client, playlist):
        doc, headers = playlist

        detail = _data(client.get(f"{API}/playlist/{doc['_id']}", headers=headers))

        assert [video["title"] for video in detail["videos"]] == ["second", "draft", "first"]
        assert detail["totalViews"] == 17

    def test_unpublished_playlist_hidden(self, client, db, playlist):
        doc, headers = playlist
        db["playlists"].update_one({"_id": doc["_id"]}, {"$set": {"isPublished": False}})

        assert client.get(f"{API}/playlist/{doc['_id']}").status_code == 404
        assert client.get(f"{API}/playlist/{doc['_id']}", headers=headers).status_code == 200
