import logging
from typing import Annotated, Any, cast
from uuid import UUID

from fastapi import Cookie, Depends, Header
from sqlalchemy.orm import Session

from app.auth.models.user import User
from app.core import security
from app.core.exceptions import ForbiddenError, UnauthorizedError
from app.db.session import get_db

logger = logging.getLogger(__name__)


async def get_access_token(
    authorization: Annotated[str | None, Header()] = None,
    access_token: Annotated[str | None, Cookie()] = None,
) -> str:
    """Extract the access token from the bearer header, falling back to the cookie"""
    if authorization and authorization.lower().startswith("bearer "):
        return authorization[7:].strip()
    if access_token:
        return access_token
    raise UnauthorizedError("Missing credentials")


async def get_validated_token_payload(token: str) -> dict[str, Any]:
    """Decode and validate an access JWT"""
    payload = security.decode_token(token)

    if payload is None:
        raise UnauthorizedError("Could not validate credentials")

    if payload.get("type") != "access":
        raise UnauthorizedError("Invalid token type, expected access")

    return payload


async def get_current_user(
    access_token: str = Depends(get_access_token),
    db: Session = Depends(get_db),
) -> User:
    """Resolve the caller. Everything downstream trusts this identity."""
    payload = await get_validated_token_payload(access_token)

    subject: str | None = payload.get("sub")
    try:
        user_id = UUID(subject) if subject else None
    except ValueError:
        user_id = None
    if user_id is None:
        raise UnauthorizedError("Could not validate credentials")

    user = db.query(User).filter(User.id == user_id).first()
    if user is None:
        raise UnauthorizedError("User not found")

    if not user.is_active:
        logger.info("Inactive user %s rejected", user_id)
        raise ForbiddenError("Account is inactive")

    return cast(User, user)
