"""
Permission management API routes.

Provides the catalog, per-user permission views, self checks, the
administrator grant/revoke/replace mutations, and the audit log.
"""
import math
from datetime import datetime
from typing import Annotated, List, Optional
from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.core.database.engine import get_db
from app.core.errors import Forbidden, NotFound
from app.core.rate_limit import limiter
from app.features.modules.models import Module
from app.features.permissions import audit, store
from app.features.permissions.catalog import CATALOG_VERSION, defaults_for, is_valid_key, list_for_presentation
from app.features.permissions.dependencies import get_request_meta, require_admin
from app.features.permissions.engine import authorize_explicit, effective_permissions, is_admin
from app.features.permissions.schemas import (
    AuditLogListResponse,
    AuditLogResponse,
    CatalogResponse,
    Envelope,
    GrantedPermissionResponse,
    MutationResponse,
    PermissionCheckRequest,
    PermissionCheckResponse,
    PermissionMutationRequest,
    UserPermissionsListResponse,
    UserPermissionsResponse,
    UserWithPermissionsResponse,
)
from app.features.permissions.service import PermissionService, RequestMeta
from app.features.users.dependencies import get_current_identity
from app.features.users.models import Role, User
from app.features.users.schemas import Identity
from app.utils import get_logger


log = get_logger(__name__)
router = APIRouter()


async def _user_permissions(db: AsyncSession, user: User) -> UserPermissionsResponse:
    identity = Identity.model_validate(user)
    rows = await store.get_granted_rows(db, user.id)
    effective = await effective_permissions(db, identity)
    return UserPermissionsResponse(
        user_id=user.id,
        role=user.role,
        defaults=sorted(k.value for k in defaults_for(user.role)),
        granted=[GrantedPermissionResponse.model_validate(row) for row in rows if is_valid_key(row.permission_key)],
        effective=sorted(k.value for k in effective),
    )


# ============================================================================
# Catalog
# ============================================================================

@router.get("/catalog", response_model=Envelope[CatalogResponse])
async def get_catalog(
    db: Annotated[AsyncSession, Depends(get_db)],
    identity: Annotated[Identity, Depends(get_current_identity)]
):
    """Permission definitions grouped by category, hiding inactive modules."""
    result = await db.execute(select(Module.slug).where(Module.is_active.is_(True)))
    active = set(result.scalars().all())
    return Envelope(
        data=CatalogResponse(version=CATALOG_VERSION, categories=list_for_presentation(active))
    )


# ============================================================================
# User Permissions
# ============================================================================

@router.get("/me", response_model=Envelope[UserPermissionsResponse])
async def get_my_permissions(
    db: Annotated[AsyncSession, Depends(get_db)],
    identity: Annotated[Identity, Depends(get_current_identity)]
):
    user = await db.get(User, identity.id)
    return Envelope(data=await _user_permissions(db, user))


@router.get("/users", response_model=Envelope[UserPermissionsListResponse])
async def list_users_with_permissions(
    db: Annotated[AsyncSession, Depends(get_db)],
    admin: Annotated[Identity, Depends(require_admin)],
    role: Optional[Role] = None,
    page: Annotated[int, Query(ge=1)] = 1,
    page_size: Annotated[int, Query(ge=1, le=200)] = 50
):
    """Users with their role, stored grants and effective set, newest first (admin only)."""
    query = select(User)
    count_query = select(func.count()).select_from(User)
    if role is not None:
        query = query.where(User.role == role)
        count_query = count_query.where(User.role == role)

    total = (await db.execute(count_query)).scalar_one()
    query = query.order_by(User.created_at.desc(), User.id).offset((page - 1) * page_size).limit(page_size)
    result = await db.execute(query)

    items = []
    for user in result.scalars().all():
        permissions = await _user_permissions(db, user)
        items.append(
            UserWithPermissionsResponse(
                **permissions.model_dump(),
                email=user.email,
                name=user.name,
                is_active=user.is_active,
            )
        )
    return Envelope(
        data=UserPermissionsListResponse(
            items=items,
            total=total,
            page=page,
            page_size=page_size,
            pages=math.ceil(total / page_size) if total else 0,
        )
    )


@router.get("/users/{user_id}", response_model=Envelope[UserPermissionsResponse])
async def get_user_permissions(
    user_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    identity: Annotated[Identity, Depends(get_current_identity)]
):
    """Defaults, stored grants and effective set of a user (self or admin)."""
    if identity.id != user_id and not is_admin(identity):
        raise Forbidden("Not authorized to view these permissions")

    user = await db.get(User, user_id)
    if user is None:
        raise NotFound("User not found")
    return Envelope(data=await _user_permissions(db, user))


@router.post("/check", response_model=Envelope[PermissionCheckResponse])
async def check_permission(
    body: PermissionCheckRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
    identity: Annotated[Identity, Depends(get_current_identity)]
):
    """Check the caller's own effective permissions against a key set."""
    decision = await authorize_explicit(db, identity, body.keys, body.policy)
    return Envelope(data=PermissionCheckResponse(has_permission=decision.allowed))


# ============================================================================
# Grant / Revoke / Replace (admin only)
# ============================================================================

@router.post("/grant", response_model=Envelope[MutationResponse])
@limiter.limit(config.RATE_LIMIT)
async def grant_permissions(
    request: Request,
    body: PermissionMutationRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
    admin: Annotated[Identity, Depends(require_admin)],
    meta: Annotated[RequestMeta, Depends(get_request_meta)]
):
    result = await PermissionService(db).grant(admin, body.user_id, body.keys, meta)
    return Envelope(
        message=f"{result.count} permissions granted successfully",
        data=MutationResponse(**result.as_dict()),
    )


@router.post("/revoke", response_model=Envelope[MutationResponse])
@limiter.limit(config.RATE_LIMIT)
async def revoke_permissions(
    request: Request,
    body: PermissionMutationRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
    admin: Annotated[Identity, Depends(require_admin)],
    meta: Annotated[RequestMeta, Depends(get_request_meta)]
):
    result = await PermissionService(db).revoke(admin, body.user_id, body.keys, meta)
    return Envelope(
        message=f"{result.count} permissions revoked successfully",
        data=MutationResponse(**result.as_dict()),
    )


@router.put("/replace", response_model=Envelope[MutationResponse])
@limiter.limit(config.RATE_LIMIT)
async def replace_permissions(
    request: Request,
    body: PermissionMutationRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
    admin: Annotated[Identity, Depends(require_admin)],
    meta: Annotated[RequestMeta, Depends(get_request_meta)]
):
    """Set the user's stored permissions to exactly the given keys."""
    result = await PermissionService(db).replace(admin, body.user_id, body.keys, meta)
    return Envelope(
        message="Permissions updated successfully",
        data=MutationResponse(**result.as_dict()),
    )


# ============================================================================
# Audit Log (admin only)
# ============================================================================

@router.get("/audit-logs", response_model=Envelope[AuditLogListResponse])
async def list_audit_logs(
    db: Annotated[AsyncSession, Depends(get_db)],
    admin: Annotated[Identity, Depends(require_admin)],
    target_user_id: Optional[str] = None,
    actor_id: Optional[str] = None,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
    page: Annotated[int, Query(ge=1)] = 1,
    page_size: Annotated[int, Query(ge=1, le=200)] = 50
):
    """Audit records for a target user and/or actor, oldest first."""
    total = await audit.count_for(db, target_user_id, actor_id, since, until)
    items: List[AuditLogResponse] = [
        AuditLogResponse.model_validate(record)
        async for record in audit.query_for(
            db, target_user_id, actor_id, since, until,
            offset=(page - 1) * page_size, limit=page_size
        )
    ]
    return Envelope(
        data=AuditLogListResponse(
            items=items,
            total=total,
            page=page,
            page_size=page_size,
            pages=math.ceil(total / page_size) if total else 0,
        )
    )
