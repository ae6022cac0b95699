"""
Module API routes.
"""
from typing import Annotated, List
from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.core.errors import NotFound
from app.features.modules.models import Module
from app.features.modules.schemas import ModuleResponse, ModuleUpdate
from app.features.modules.service import get_module_by_slug, update_module
from app.features.permissions.catalog import get_definition, keys_for_module
from app.features.permissions.dependencies import get_request_meta, require_admin
from app.features.permissions.engine import is_admin
from app.features.permissions.schemas import Envelope, PermissionDefinitionResponse
from app.features.permissions.service import RequestMeta
from app.features.users.dependencies import get_current_identity
from app.features.users.schemas import Identity


router = APIRouter()


@router.get("", response_model=Envelope[List[ModuleResponse]])
async def list_modules(
    db: Annotated[AsyncSession, Depends(get_db)],
    identity: Annotated[Identity, Depends(get_current_identity)],
    include_inactive: bool = False
):
    """Modules in display order. Only admins may list inactive ones."""
    stmt = select(Module).order_by(Module.display_order, Module.name)
    if not (include_inactive and is_admin(identity)):
        stmt = stmt.where(Module.is_active.is_(True))
    result = await db.execute(stmt)
    return Envelope(data=[ModuleResponse.model_validate(m) for m in result.scalars().all()])


@router.get("/{slug}", response_model=Envelope[ModuleResponse])
async def get_module(
    slug: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    identity: Annotated[Identity, Depends(get_current_identity)]
):
    module = await get_module_by_slug(db, slug)
    if not module.is_active and not is_admin(identity):
        raise NotFound("Module not found")
    return Envelope(data=ModuleResponse.model_validate(module))


@router.get("/{slug}/permissions", response_model=Envelope[List[PermissionDefinitionResponse]])
async def get_module_permissions(
    slug: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    identity: Annotated[Identity, Depends(get_current_identity)]
):
    module = await get_module_by_slug(db, slug)
    if not module.is_active and not is_admin(identity):
        raise NotFound("Module not found")
    return Envelope(data=[get_definition(key).as_dict() for key in keys_for_module(slug)])


@router.patch("/{slug}", response_model=Envelope[ModuleResponse])
async def patch_module(
    slug: str,
    body: ModuleUpdate,
    db: Annotated[AsyncSession, Depends(get_db)],
    admin: Annotated[Identity, Depends(require_admin)],
    meta: Annotated[RequestMeta, Depends(get_request_meta)]
):
    """Reorder or (de)activate a module (admin only)."""
    module = await update_module(db, admin, slug, body, meta)
    return Envelope(message="Module updated successfully", data=ModuleResponse.model_validate(module))
