"""
Administrator mutations of the user permission relation.

Each operation:
1. checks the actor holds the administrative capability,
2. validates the whole key batch against the catalog,
3. opens one transaction that locks the target user, mutates the relation
   and appends exactly one audit record, then commits.

Steps 1 and 2 happen before any database access. A failure in step 3 rolls
everything back, so neither a partial mutation nor an orphan audit record is
ever persisted.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Collection, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import Forbidden
from app.features.permissions import audit, store
from app.features.permissions.catalog import parse_keys
from app.features.permissions.engine import is_admin
from app.features.permissions.models import AuditAction
from app.features.users.schemas import Identity
from app.utils import get_logger


log = get_logger(__name__)


@dataclass(frozen=True)
class RequestMeta:
    """Client context recorded alongside each audit record."""
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


@dataclass(frozen=True)
class MutationResult:
    target_user_id: str
    audit_id: str
    added: frozenset[str] = field(default_factory=frozenset)
    removed: frozenset[str] = field(default_factory=frozenset)
    count: int = 0

    def as_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.target_user_id,
            "audit_id": self.audit_id,
            "added": sorted(self.added),
            "removed": sorted(self.removed),
            "count": self.count,
        }


class PermissionService:
    """Grant, revoke and replace a user's stored permissions."""

    def __init__(self, db: AsyncSession):
        self.db = db

    @staticmethod
    def _check_actor(actor: Identity, operation: str) -> None:
        if not is_admin(actor):
            log.info(f"User {actor.id} ({actor.role.value}) refused {operation}: not an admin")
            raise Forbidden(f"Not authorized to {operation} permissions")

    async def grant(
        self,
        actor: Identity,
        target_user_id: str,
        keys: Collection[str],
        meta: RequestMeta = RequestMeta()
    ) -> MutationResult:
        """Insert each key if absent. Re-granting a held key is a no-op."""
        self._check_actor(actor, "grant")
        requested = parse_keys(keys)
        now = datetime.now(timezone.utc)

        async with store.transaction(self.db):
            await store.lock_user(self.db, target_user_id)
            granted = set()
            for key in sorted(requested):
                if await store.insert_if_absent(self.db, target_user_id, key.value, actor.id, now):
                    granted.add(key.value)
            record = await audit.append(
                self.db,
                actor_id=actor.id,
                action=AuditAction.GRANT,
                target_user_id=target_user_id,
                affected_keys=granted,
                details={"requested": sorted(k.value for k in requested), "granted": sorted(granted)},
                ip_address=meta.ip_address,
                user_agent=meta.user_agent,
            )

        log.info(f"User {actor.id} granted {sorted(granted)} to {target_user_id}")
        return MutationResult(
            target_user_id=target_user_id,
            audit_id=record.id,
            added=frozenset(granted),
            count=len(granted),
        )

    async def revoke(
        self,
        actor: Identity,
        target_user_id: str,
        keys: Collection[str],
        meta: RequestMeta = RequestMeta()
    ) -> MutationResult:
        """Delete matching grants. Keys not currently held are skipped."""
        self._check_actor(actor, "revoke")
        requested = parse_keys(keys)

        async with store.transaction(self.db):
            await store.lock_user(self.db, target_user_id)
            revoked = await store.delete_keys(self.db, target_user_id, [k.value for k in requested])
            record = await audit.append(
                self.db,
                actor_id=actor.id,
                action=AuditAction.REVOKE,
                target_user_id=target_user_id,
                affected_keys=revoked,
                details={"requested": sorted(k.value for k in requested), "revoked": sorted(revoked)},
                ip_address=meta.ip_address,
                user_agent=meta.user_agent,
            )

        log.info(f"User {actor.id} revoked {sorted(revoked)} from {target_user_id}")
        return MutationResult(
            target_user_id=target_user_id,
            audit_id=record.id,
            removed=revoked,
            count=len(revoked),
        )

    async def replace(
        self,
        actor: Identity,
        target_user_id: str,
        keys: Collection[str],
        meta: RequestMeta = RequestMeta()
    ) -> MutationResult:
        """
        Set the user's stored permissions to exactly ``keys``.

        Delete-all and insert-all run in one transaction under the target
        lock, so no observer sees the intermediate empty state. ``count`` is
        the size of the new set; the audit record lists the keys whose
        membership changed.
        """
        self._check_actor(actor, "replace")
        new_keys = frozenset(k.value for k in parse_keys(keys))
        now = datetime.now(timezone.utc)

        async with store.transaction(self.db):
            await store.lock_user(self.db, target_user_id)
            previous = await store.delete_all(self.db, target_user_id)
            await store.insert_all(self.db, target_user_id, new_keys, actor.id, now)
            added = new_keys - previous
            removed = previous - new_keys
            record = await audit.append(
                self.db,
                actor_id=actor.id,
                action=AuditAction.REPLACE,
                target_user_id=target_user_id,
                affected_keys=added | removed,
                details={
                    "count": len(new_keys),
                    "added": sorted(added),
                    "removed": sorted(removed),
                },
                ip_address=meta.ip_address,
                user_agent=meta.user_agent,
            )

        log.info(f"User {actor.id} replaced permissions of {target_user_id} with {sorted(new_keys)}")
        return MutationResult(
            target_user_id=target_user_id,
            audit_id=record.id,
            added=added,
            removed=removed,
            count=len(new_keys),
        )
