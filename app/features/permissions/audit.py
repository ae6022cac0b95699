"""
Append-only audit trail for permission mutations.

``append`` is only called by the permission service inside its mutation
transaction and never commits on its own. Reads are plain queries with no
coupling to in-flight writes.
"""
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, Iterable, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import InvalidArgument
from app.features.permissions.models import AuditAction, PermissionAuditLog
from app.utils import get_logger


log = get_logger(__name__)


async def append(
    db: AsyncSession,
    actor_id: str,
    action: AuditAction,
    target_user_id: Optional[str],
    affected_keys: Iterable[str],
    details: Optional[Dict[str, Any]] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None
) -> PermissionAuditLog:
    """
    Stage an audit record in the caller's transaction.

    The record is flushed so a failing insert aborts the surrounding
    transaction before the caller commits.
    """
    record = PermissionAuditLog(
        actor_id=actor_id,
        action=action,
        target_user_id=target_user_id,
        affected_keys=sorted(affected_keys),
        details=details,
        ip_address=ip_address,
        user_agent=user_agent[:255] if user_agent else None,
        created_at=datetime.now(timezone.utc),
    )
    db.add(record)
    await db.flush()

    log.info(
        f"Audit: actor={actor_id} action={action.value} target={target_user_id} "
        f"keys={record.affected_keys}"
    )
    return record


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # Stored timestamps are UTC; naive bounds are read as UTC
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _filtered(
    stmt,
    target_user_id: Optional[str],
    actor_id: Optional[str],
    since: Optional[datetime],
    until: Optional[datetime]
):
    if target_user_id is None and actor_id is None:
        raise InvalidArgument("Provide a target user or an actor to query the audit log")
    since, until = _as_utc(since), _as_utc(until)
    if since is not None and until is not None and since > until:
        raise InvalidArgument("'since' must not be after 'until'")
    if target_user_id is not None:
        stmt = stmt.where(PermissionAuditLog.target_user_id == target_user_id)
    if actor_id is not None:
        stmt = stmt.where(PermissionAuditLog.actor_id == actor_id)
    if since is not None:
        stmt = stmt.where(PermissionAuditLog.created_at >= since)
    if until is not None:
        stmt = stmt.where(PermissionAuditLog.created_at <= until)
    return stmt


async def query_for(
    db: AsyncSession,
    target_user_id: Optional[str] = None,
    actor_id: Optional[str] = None,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
    offset: int = 0,
    limit: Optional[int] = None
) -> AsyncIterator[PermissionAuditLog]:
    """
    Stream audit records for a target and/or actor, oldest first.

    Usage:
        async for record in query_for(db, target_user_id=user_id):
            ...
    """
    stmt = _filtered(select(PermissionAuditLog), target_user_id, actor_id, since, until)
    stmt = stmt.order_by(PermissionAuditLog.created_at, PermissionAuditLog.id).offset(offset)
    if limit is not None:
        stmt = stmt.limit(limit)

    result = await db.stream_scalars(stmt)
    async for record in result:
        yield record


async def count_for(
    db: AsyncSession,
    target_user_id: Optional[str] = None,
    actor_id: Optional[str] = None,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None
) -> int:
    stmt = _filtered(
        select(func.count()).select_from(PermissionAuditLog),
        target_user_id, actor_id, since, until
    )
    result = await db.execute(stmt)
    return result.scalar_one()
