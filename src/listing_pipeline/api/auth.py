"""Bearer token authentication for the admin API."""

from fastapi import Header, HTTPException

from .config import get_settings


async def verify_admin_token(authorization: str = Header(...)) -> None:
    """Validate the admin bearer token."""
    expected = f"Bearer {get_settings().ADMIN_API_KEY}"
    if authorization != expected:
        raise HTTPException(status_code=401, detail="Invalid or missing bearer token")
