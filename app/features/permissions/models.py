"""
Persisted state of the permission subsystem.

Only two tables belong to this feature:
- ``user_permissions``: the many-to-many relation between users and catalog
  permission keys, with provenance (who granted, when). The catalog itself is
  static, so ``permission_key`` is validated against it in code rather than
  through a foreign key.
- ``permission_audit_logs``: append-only record of every mutation of the
  relation, written in the same transaction as the mutation.
"""
import enum
from datetime import datetime
from typing import Any, Dict, List
from sqlalchemy import String, ForeignKey, JSON, DateTime, Enum, UniqueConstraint, Index, func
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database.base import Base, generate_ulid


class AuditAction(str, enum.Enum):
    GRANT = "GRANT"
    REVOKE = "REVOKE"
    REPLACE = "REPLACE"
    MODULE_UPDATE = "MODULE_UPDATE"


class GrantedPermission(Base):
    """
    One permission key held by one user.

    Rows are never updated in place: a grant inserts, a revoke deletes, and a
    replace deletes and re-inserts, so ``granted_at``/``granted_by_id`` always
    describe the current period of validity.
    """
    __tablename__ = "user_permissions"
    __table_args__ = (
        UniqueConstraint("user_id", "permission_key", name="uq_user_permissions_user_key"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    user_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    permission_key: Mapped[str] = mapped_column(String(64), nullable=False)
    granted_by_id: Mapped[str | None] = mapped_column(
        String(26),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True
    )
    granted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<GrantedPermission(user_id={self.user_id}, key={self.permission_key!r})>"


class PermissionAuditLog(Base):
    """
    Audit record for one permission mutation.

    ``affected_keys`` holds the keys whose state actually changed, which may be
    a subset of what was requested (re-grants and revokes of unheld keys are
    no-ops). ``details`` carries the action-specific payload.
    """
    __tablename__ = "permission_audit_logs"
    __table_args__ = (
        Index("ix_permission_audit_logs_target_created", "target_user_id", "created_at"),
        Index("ix_permission_audit_logs_actor_created", "actor_id", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    # Actor and target are plain ids: the trail must outlive account deletion
    actor_id: Mapped[str] = mapped_column(String(26), nullable=False)
    action: Mapped[AuditAction] = mapped_column(
        Enum(AuditAction, native_enum=False, length=20),
        nullable=False,
        index=True
    )
    target_user_id: Mapped[str | None] = mapped_column(String(26), nullable=True)
    affected_keys: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    details: Mapped[Dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    # Request context
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    def __repr__(self) -> str:
        return (
            f"<PermissionAuditLog(id={self.id}, actor_id={self.actor_id}, action={self.action.value}, "
            f"target={self.target_user_id})>"
        )
