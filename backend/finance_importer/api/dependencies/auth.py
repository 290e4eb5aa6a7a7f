"""Request identity dependency."""

from fastapi import Header, HTTPException, status


def get_current_user_id(x_user_id: str | None = Header(default=None)) -> str:
    """
    DEV AUTH: the gateway forwards the authenticated user as X-User-Id.
    The value is the owner id of import jobs and the tenant scope of records.
    """
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id header",
        )
    return x_user_id.strip()
