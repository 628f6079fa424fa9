"""
auth/dependencies.py -- FastAPI Depends() helpers for authenticated routes.

The gate middleware (api/main.py) has already run by the time a route
executes. It leaves request.state.user_id set to the admitted principal, or
None for requests that carried no Authorization header at all. Malformed and
rejected requests never reach a route.

try_get_current_user_id() is the soft variant (returns None).
get_current_user_id() wraps it and raises HTTP 403 if unauthenticated.
"""

from __future__ import annotations

from fastapi import HTTPException, Request


def try_get_current_user_id(request: Request) -> int | None:
    """Return the admitted user id, or None for an unauthenticated request."""
    return getattr(request.state, "user_id", None)


def get_current_user_id(request: Request) -> int:
    """Require an admitted principal. Raises HTTP 403 otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(user_id: int = Depends(get_current_user_id)): ...
    """
    user_id = try_get_current_user_id(request)
    if user_id is None:
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "Authentication required."},
        )
    return user_id
