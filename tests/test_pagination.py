"""
Tests for page requests, page envelopes and windowed aggregation.
"""

from datetime import datetime, timedelta, timezone

import pytest
from pymongo import ASCENDING, DESCENDING

from errors import ValidationError
from pagination import DEFAULT_LIMIT, MAX_LIMIT, PageRequest, page_envelope, paginate


class TestPageRequest:
    """Tests for PageRequest.from_query."""

    def test_defaults(self):
        """Test defaults when nothing is passed."""
        page = PageRequest.from_query()

        assert page.page == 1
        assert page.limit == DEFAULT_LIMIT
        assert page.sort_by == "createdAt"
        assert page.sort_type == "desc"
        assert page.direction == DESCENDING

    def test_clamps_page_and_limit(self):
        """Test page below 1 and out of range limits are clamped."""
        assert PageRequest.from_query(page=0).page == 1
        assert PageRequest.from_query(page=-3).page == 1
        assert PageRequest.from_query(limit=500).limit == MAX_LIMIT
        assert PageRequest.from_query(limit=0).limit == 1

    def test_rejects_unknown_sort_field(self):
        with pytest.raises(ValidationError):
            PageRequest.from_query(sort_by="password", allowed_sort=("createdAt", "views"))

    def test_rejects_bad_sort_type(self):
        with pytest.raises(ValidationError):
            PageRequest.from_query(sort_type="sideways")

    def test_sort_stage_breaks_ties_on_id(self):
        """Test the sort stage orders by _id after the sort field."""
        page = PageRequest.from_query(sort_by="views", sort_type="asc", allowed_sort=("views",))

        assert page.sort_stage() == {"$sort": {"views": ASCENDING, "_id": ASCENDING}}

    def test_window(self):
        page = PageRequest.from_query(page=3, limit=5)

        assert page.skip == 10
        assert page.window_stages() == [{"$skip": 10}, {"$limit": 5}]


class TestPageEnvelope:
    """Tests for page_envelope."""

    def test_middle_page(self):
        envelope = page_envelope([{}] * 5, 12, PageRequest(page=2, limit=5))

        assert envelope["totalDocs"] == 12
        assert envelope["totalPages"] == 3
        assert envelope["pagingCounter"] == 6
        assert envelope["hasPrevPage"] is True
        assert envelope["hasNextPage"] is True
        assert envelope["prevPage"] == 1
        assert envelope["nextPage"] == 3

    def test_empty(self):
        envelope = page_envelope([], 0, PageRequest())

        assert envelope["docs"] == []
        assert envelope["totalPages"] == 0
        assert envelope["hasNextPage"] is False
        assert envelope["nextPage"] is None


class TestPaginate:
    """Tests for paginate against a database."""

    @pytest.fixture
    def videos(self, db):
        start = datetime(2024, 1, 1, tzinfo=timezone.utc)
        docs = [
            {"title": f"video {i}", "isPublished": True, "createdAt": start + timedelta(minutes=i)}
            for i in range(1, 13)
        ]
        db["videos"].insert_many(docs)
        return db["videos"]

    def test_second_page_holds_ranks_six_to_ten(self, videos):
        """Test 12 videos, limit 5, page 2, newest first."""
        result = paginate(videos, [{"$match": {"isPublished": True}}], PageRequest(page=2, limit=5))

        assert [doc["title"] for doc in result["docs"]] == [f"video {i}" for i in (7, 6, 5, 4, 3)]
        assert result["totalDocs"] == 12
        assert result["page"] == 2

    def test_pages_concatenate_without_gaps(self, videos):
        """Test pages 1..3 equal the unwindowed ordering."""
        seen = []
        for number in (1, 2, 3):
            result = paginate(videos, [{"$match": {}}], PageRequest(page=number, limit=5))
            seen += [doc["_id"] for doc in result["docs"]]

        expected = [doc["_id"] for doc in videos.find().sort([("createdAt", DESCENDING), ("_id", DESCENDING)])]
        assert seen == expected
        assert len(set(seen)) == 12

    def test_page_past_the_end_is_empty(self, videos):
        result = paginate(videos, [{"$match": {}}], PageRequest(page=4, limit=5))

        assert result["docs"] == []
        assert result["totalDocs"] == 12
        assert result["hasNextPage"] is False

    def test_ties_do_not_overlap(self, db):
        """Test records sharing a sort value split cleanly across pages."""
        same = datetime(2024, 1, 1, tzinfo=timezone.utc)
        db["tweets"].insert_many([{"content": str(i), "createdAt": same} for i in range(6)])

        first = paginate(db["tweets"], [{"$match": {}}], PageRequest(page=1, limit=3))
        second = paginate(db["tweets"], [{"$match": {}}], PageRequest(page=2, limit=3))

        ids = [d["_id"] for d in first["docs"]] + [d["_id"] for d in second["docs"]]
        assert len(set(ids)) == 6

    def test_post_stages_run_on_window(self, videos):
        result = paginate(
            videos,
            [{"$match": {}}],
            PageRequest(page=1, limit=2),
            post_stages=[{"$project": {"title": 1}}],
        )

        assert all(set(doc) == {"_id", "title"} for doc in result["docs"])
