"""
Module persistence helpers.
"""
from datetime import datetime, timezone
from typing import Any, Dict, List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import NotFound
from app.features.modules.models import Module
from app.features.modules.schemas import ModuleUpdate
from app.features.permissions import audit, store
from app.features.permissions.catalog import MODULES
from app.features.permissions.models import AuditAction
from app.features.permissions.service import RequestMeta
from app.features.users.schemas import Identity
from app.utils import get_logger


log = get_logger(__name__)


async def ensure_catalog_modules(db: AsyncSession) -> List[Module]:
    """
    Insert catalog modules missing from the table.

    Existing rows are left alone so administrator changes to ordering and
    activation survive restarts.
    """
    result = await db.execute(select(Module))
    existing = {module.slug: module for module in result.scalars().all()}
    created = []
    for definition in MODULES:
        if definition.slug in existing:
            log.debug(f"Module '{definition.slug}' already exists, skipping")
            continue
        module = Module(
            slug=definition.slug,
            name=definition.name,
            description=definition.description,
            display_order=definition.display_order,
        )
        db.add(module)
        created.append(module)
        log.info(f"Created module: {definition.slug}")
    await db.commit()
    return created


async def get_module_by_slug(db: AsyncSession, slug: str) -> Module:
    result = await db.execute(select(Module).where(Module.slug == slug))
    module = result.scalar_one_or_none()
    if module is None:
        raise NotFound("Module not found")
    return module


async def update_module(
    db: AsyncSession,
    actor: Identity,
    slug: str,
    update: ModuleUpdate,
    meta: RequestMeta = RequestMeta()
) -> Module:
    """Apply an admin update and record it in the permission audit log."""
    changes: Dict[str, Any] = update.model_dump(exclude_unset=True, exclude_none=True)
    async with store.transaction(db):
        module = await get_module_by_slug(db, slug)
        before = {key: getattr(module, key) for key in changes}
        for key, value in changes.items():
            setattr(module, key, value)
        module.updated_at = datetime.now(timezone.utc)
        await audit.append(
            db,
            actor_id=actor.id,
            action=AuditAction.MODULE_UPDATE,
            target_user_id=None,
            affected_keys=[],
            details={"module": slug, "before": before, "after": changes},
            ip_address=meta.ip_address,
            user_agent=meta.user_agent,
        )
    return module
