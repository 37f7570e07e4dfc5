"""
FastAPI dependencies (DB session, owner identity, aggregation cache)
"""
from fastapi import Header, HTTPException, Request, status

from fintrack.infrastructure.db.session import get_db as _get_db


# Re-export get_db for routers
get_db = _get_db


def get_owner_id(x_owner_id: int | None = Header(default=None)) -> int:
    """
    Owner of the request, taken from the X-Owner-Id header.

    Authentication happens in front of this service; the header is trusted.

    Raises:
        HTTPException(401): header missing or not a positive integer
    """
    if x_owner_id is None or x_owner_id < 1:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-Owner-Id header"
        )
    return x_owner_id


def get_cache(request: Request):
    """Application-wide AggregationCache (None when the app runs without one)."""
    return getattr(request.app.state, "aggregation_cache", None)
