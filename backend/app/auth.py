"""
Bearer-token guard for control routes.

When API_KEY is unset every request is allowed; the builder then relies
on running inside a private network.
"""
import secrets

from fastapi import Depends, Header, HTTPException

from app.config import Settings, get_settings


async def require_api_key(
    authorization: str | None = Header(default=None),
    settings: Settings = Depends(get_settings),
) -> None:
    if not settings.api_key:
        return

    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not secrets.compare_digest(token, settings.api_key):
        raise HTTPException(status_code=401, detail="Unauthorized")
