"""
FastAPI dependencies enforcing permissions.

- ``enforce_route_permissions``: installed once on the application; checks
  every request against the route map before its handler runs.
- ``require_permissions``: explicit per-route check for requirements that do
  not fit the method+path model.
- ``require_admin``: gate for permission management endpoints.

Unauthenticated callers get 401, authenticated callers lacking permissions
get 403. The 403 body never names the missing keys.
"""
from typing import Annotated, Optional
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.core.errors import Forbidden, Unauthenticated
from app.features.permissions.catalog import PermissionKey, parse_keys
from app.features.permissions.engine import authorize, authorize_explicit, is_admin
from app.features.permissions.route_map import DEFAULT_ROUTE_MAP, Policy, RouteMap
from app.features.permissions.service import RequestMeta
from app.features.users.dependencies import get_current_identity, identity_for_request, security
from app.features.users.schemas import Identity
from app.utils import get_logger


log = get_logger(__name__)


def get_route_map() -> RouteMap:
    """Route map used for enforcement; overridable in tests."""
    return DEFAULT_ROUTE_MAP


async def enforce_route_permissions(
    request: Request,
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
    db: Annotated[AsyncSession, Depends(get_db)],
    route_map: Annotated[RouteMap, Depends(get_route_map)]
) -> None:
    """
    Application-wide pre-handler check.

    Usage:
        app = FastAPI(dependencies=[Depends(enforce_route_permissions)])

    Requests whose method+path match no rule pass untouched, and the token
    is not even inspected for them.
    """
    if route_map.required_keys_for(request.method, request.url.path) is None:
        return

    identity = await identity_for_request(request, credentials, db)
    if identity is None:
        raise Unauthenticated()

    decision = await authorize(db, identity, request.method, request.url.path, route_map)
    if not decision.allowed:
        raise Forbidden()


def require_permissions(*keys: PermissionKey | str, policy: Policy = Policy.ANY):
    """
    FastAPI dependency factory requiring ANY (default) or ALL of ``keys``.

    Usage:
        @router.post("/{application_id}/head-approve")
        async def head_approve(
            identity: Identity = Depends(require_permissions(PermissionKey.IPR_APPROVE))
        ):
            ...

    Returns:
        Dependency returning the current identity if the check passes
    """
    if not keys:
        raise ValueError("require_permissions needs at least one permission key")
    required = parse_keys(keys)

    async def permission_dependency(
        db: Annotated[AsyncSession, Depends(get_db)],
        identity: Annotated[Identity, Depends(get_current_identity)]
    ) -> Identity:
        decision = await authorize_explicit(db, identity, required, policy)
        if not decision.allowed:
            raise Forbidden()
        return identity

    return permission_dependency


async def require_admin(
    identity: Annotated[Identity, Depends(get_current_identity)]
) -> Identity:
    """
    Require the administrative capability.

    Usage:
        @router.post("/grant")
        async def grant(admin: Identity = Depends(require_admin)):
            ...
    """
    if not is_admin(identity):
        log.info(f"User {identity.id} ({identity.role.value}) refused admin endpoint")
        raise Forbidden("Admin privileges required")
    return identity


def get_request_meta(request: Request) -> RequestMeta:
    return RequestMeta(
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )
