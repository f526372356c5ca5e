"""
Shared dependencies for the Fast! API
"""
import logging
from typing import Annotated

from fastapi import Depends, Header, HTTPException, status
from slowapi import Limiter
from slowapi.util import get_remote_address

from settings import Settings, get_settings
from store import ProfileStore, get_supabase_client

logger = logging.getLogger(__name__)

# Shared rate limiter, registered on app.state in main
limiter = Limiter(key_func=get_remote_address)


def get_store() -> ProfileStore:
    return ProfileStore(get_supabase_client())


def get_current_user(
    store: Annotated[ProfileStore, Depends(get_store)],
    authorization: Annotated[str | None, Header()] = None,
) -> dict:
    """
    Security dependency that validates the Supabase access token.
    Returns {"id", "email"} of the signed-in user.
    """
    if not authorization:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")

    token_type, _, token = authorization.partition(' ')
    if token_type.lower() != 'bearer' or not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")

    try:
        user = store.get_auth_user(token)
    except Exception as e:
        logger.warning(f"Auth Error: {e}")
        user = None

    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    return user


def require_admin(
    user: Annotated[dict, Depends(get_current_user)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> dict:
    """Dependency that verifies the user is on the configured admin allowlist."""
    if not settings.is_admin(user.get("email")):
        logger.warning(f"Admin access denied for user {user.get('id')}")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not authorized")

    logger.info(f"Admin endpoint accessed by user {user.get('id')}")
    return user
