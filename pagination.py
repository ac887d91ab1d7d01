"""
Sorting and page windows over aggregation pipelines.

One policy for every listing: page is 1-indexed and clamped to >= 1, limit
defaults to 10 and is clamped to 1..20, sortBy comes from a per-listing
allowlist and defaults to createdAt, sortType defaults to desc. Ties are
broken on _id in the sort direction, so windows never overlap or skip.
"""

import math
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence

from pymongo import ASCENDING, DESCENDING
from pymongo.collection import Collection

from errors import ValidationError

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 10
MAX_LIMIT = 20
DEFAULT_SORT_BY = "createdAt"


@dataclass(frozen=True)
class PageRequest:
    page: int = DEFAULT_PAGE
    limit: int = DEFAULT_LIMIT
    sort_by: str = DEFAULT_SORT_BY
    sort_type: str = "desc"

    @classmethod
    def from_query(
        cls,
        page: Optional[int] = None,
        limit: Optional[int] = None,
        sort_by: Optional[str] = None,
        sort_type: Optional[str] = None,
        allowed_sort: Iterable[str] = (DEFAULT_SORT_BY,),
    ) -> "PageRequest":
        page = DEFAULT_PAGE if page is None else max(1, page)
        limit = DEFAULT_LIMIT if limit is None else min(MAX_LIMIT, max(1, limit))

        sort_by = sort_by or DEFAULT_SORT_BY
        if sort_by not in set(allowed_sort) | {DEFAULT_SORT_BY}:
            raise ValidationError(f"Cannot sort by {sort_by}")

        sort_type = (sort_type or "desc").lower()
        if sort_type not in ("asc", "desc"):
            raise ValidationError("sortType must be asc or desc")

        return cls(page=page, limit=limit, sort_by=sort_by, sort_type=sort_type)

    @property
    def direction(self) -> int:
        return ASCENDING if self.sort_type == "asc" else DESCENDING

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.limit

    def sort_stage(self) -> dict:
        keys = {self.sort_by: self.direction}
        if self.sort_by != "_id":
            keys["_id"] = self.direction
        return {"$sort": keys}

    def window_stages(self) -> List[dict]:
        return [{"$skip": self.skip}, {"$limit": self.limit}]


def page_envelope(docs: List[dict], total: int, request: PageRequest) -> dict:
    """Page metadata in the shape of mongoose-aggregate-paginate responses."""
    total_pages = math.ceil(total / request.limit) if total else 0
    has_prev = request.page > 1
    has_next = request.page < total_pages
    return {
        "docs": docs,
        "totalDocs": total,
        "limit": request.limit,
        "page": request.page,
        "totalPages": total_pages,
        "pagingCounter": request.skip + 1,
        "hasPrevPage": has_prev,
        "hasNextPage": has_next,
        "prevPage": request.page - 1 if has_prev else None,
        "nextPage": request.page + 1 if has_next else None,
    }


def paginate(
    collection: Collection,
    filter_stages: Sequence[dict],
    request: PageRequest,
    post_stages: Sequence[dict] = (),
) -> dict:
    """Run filter -> sort -> window -> post stages and wrap in a page envelope.

    Every stage that can drop records belongs in filter_stages, so the
    total and the windows are computed over the same set. post_stages run
    on the window only and must keep its size and order.
    """
    filter_stages = list(filter_stages)
    counted = list(collection.aggregate(filter_stages + [{"$count": "totalDocs"}]))
    total = counted[0]["totalDocs"] if counted else 0

    docs: List[dict] = []
    if total and request.skip < total:
        pipeline = filter_stages + [request.sort_stage()] + request.window_stages() + list(post_stages)
        docs = list(collection.aggregate(pipeline))

    return page_envelope(docs, total, request)
