"""
FastAPI dependencies resolving the authenticated identity.
"""
from typing import Annotated, Optional
from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.core.errors import Unauthenticated
from app.features.users.auth import verify_jwt_token
from app.features.users.models import User
from app.features.users.schemas import Identity
from app.utils import get_logger


log = get_logger(__name__)

# auto_error=False so a missing header becomes our own 401, not a 403
security = HTTPBearer(auto_error=False)


async def resolve_identity(db: AsyncSession, token: str) -> Identity:
    """Map a bearer token to the local user's identity."""
    payload = verify_jwt_token(token)
    user_id = payload.get("sub")
    if not isinstance(user_id, str) or not user_id:
        raise Unauthenticated("Invalid token payload")

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if user is None:
        log.info("Token for unknown user %s rejected", user_id)
        raise Unauthenticated("Unknown user")
    if not user.is_active:
        raise Unauthenticated("User account is deactivated")
    return Identity.model_validate(user)


async def identity_for_request(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials],
    db: AsyncSession
) -> Optional[Identity]:
    """
    Resolve the caller's identity once per request.

    The result is cached on ``request.state`` so route enforcement and the
    handler's own dependencies share one lookup.
    """
    if hasattr(request.state, "identity"):
        return request.state.identity
    identity = None
    if credentials is not None:
        identity = await resolve_identity(db, credentials.credentials)
    request.state.identity = identity
    return identity


async def get_optional_identity(
    request: Request,
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
    db: Annotated[AsyncSession, Depends(get_db)]
) -> Optional[Identity]:
    return await identity_for_request(request, credentials, db)


async def get_current_identity(
    identity: Annotated[Optional[Identity], Depends(get_optional_identity)]
) -> Identity:
    """
    Require an authenticated identity.
    
    Usage:
        @router.get("/me")
        async def get_me(identity: Identity = Depends(get_current_identity)):
            return identity
    """
    if identity is None:
        raise Unauthenticated()
    return identity


def get_authorization_header(request) -> str:
    """
    Extract authorization header for rate limiting.
    Used with slowapi Limiter.
    """
    auth = request.headers.get("Authorization", "")
    return auth or "anonymous"
