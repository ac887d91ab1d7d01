"""
Projection shaping: turns stored records into their public shape.

Every response passes through to_public(), so sensitive fields never leave
the API whatever pipeline produced the record. Token responses are the one
place a refreshToken is emitted; they hide only passwords, and the user
they embed is shaped by public_user() first.
"""

from datetime import datetime
from typing import AbstractSet, Any, Dict, Iterable, Optional

from bson import ObjectId


# Never emitted by entity views, at any nesting depth
SENSITIVE_FIELDS = frozenset({"password", "refreshToken"})

# Hidden in login / refresh responses, which return the issued tokens
TOKEN_RESPONSE_HIDDEN = frozenset({"password"})

# Public shape of an embedded owner / channel
OWNER_FIELDS = ("userName", "fullName", "avatar")

# Internal arrays a user view does not need
USER_PRIVATE_FIELDS = frozenset({"watchHistory"})


def owner_projection(include_id: bool = False) -> Dict[str, int]:
    """$project spec for an embedded user."""
    spec = {name: 1 for name in OWNER_FIELDS}
    if not include_id:
        spec["_id"] = 0
    return spec


def to_public(value: Any, hidden: AbstractSet[str] = SENSITIVE_FIELDS) -> Any:
    """Strip hidden fields and convert BSON types to JSON friendly values.

    Idempotent: to_public(to_public(x)) == to_public(x).
    """
    if isinstance(value, dict):
        return {
            k: to_public(v, hidden)
            for k, v in value.items()
            if k not in hidden
        }
    if isinstance(value, (list, tuple)):
        return [to_public(v, hidden) for v in value]
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def public_user(doc: Optional[dict], hidden: Iterable[str] = USER_PRIVATE_FIELDS) -> Optional[dict]:
    """Public view of a user document."""
    if not doc:
        return doc
    hidden = set(hidden)
    return to_public({k: v for k, v in doc.items() if k not in hidden})


def public_owner(doc: Optional[dict], include_id: bool = False) -> Optional[dict]:
    """Reduce a user to {userName, fullName, avatar} (and _id if asked)."""
    if not doc:
        return None
    shaped = {name: doc.get(name) for name in OWNER_FIELDS}
    if include_id and "_id" in doc:
        shaped = {"_id": doc["_id"], **shaped}
    return to_public(shaped)
