"""
Data access for the ``user_permissions`` relation.

Functions here never commit; callers wrap them in ``transaction()`` so a
store mutation and its audit record land together or not at all.
"""
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Iterable, List

from sqlalchemy import delete, insert, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.base import generate_ulid
from app.core.errors import Conflict, NotFound, StorageFailure
from app.features.permissions.models import GrantedPermission
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)

user_permissions = GrantedPermission.__table__


@asynccontextmanager
async def transaction(db: AsyncSession) -> AsyncIterator[AsyncSession]:
    """
    Commit on success, roll back on any failure.

    Unique-constraint violations surface as Conflict, other database errors
    as StorageFailure. Nothing is retried.
    """
    try:
        yield db
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        log.warning(f"Permission transaction conflict: {e.orig}")
        raise Conflict() from e
    except SQLAlchemyError as e:
        await db.rollback()
        log.error("Permission transaction failed, rolled back", exc_info=True)
        raise StorageFailure() from e
    except BaseException:
        await db.rollback()
        raise


async def lock_user(db: AsyncSession, user_id: str) -> User:
    """
    Load the target user, locking the row until the transaction ends.

    All permission mutations for one user take this lock first, which
    serialises grant/revoke/replace on the same target. SQLite ignores
    FOR UPDATE; its single-writer lock gives the same guarantee.
    """
    result = await db.execute(select(User).where(User.id == user_id).with_for_update())
    user = result.scalar_one_or_none()
    if user is None:
        raise NotFound("User not found")
    return user


async def get_granted_keys(db: AsyncSession, user_id: str) -> frozenset[str]:
    result = await db.execute(
        select(GrantedPermission.permission_key).where(GrantedPermission.user_id == user_id)
    )
    return frozenset(result.scalars().all())


async def get_granted_rows(db: AsyncSession, user_id: str) -> List[GrantedPermission]:
    result = await db.execute(
        select(GrantedPermission)
        .where(GrantedPermission.user_id == user_id)
        .order_by(GrantedPermission.granted_at, GrantedPermission.permission_key)
    )
    return list(result.scalars().all())


def _conditional_insert(db: AsyncSession):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(user_permissions)
    if dialect == "sqlite":
        return sqlite.insert(user_permissions)
    raise StorageFailure(f"Unsupported database dialect: {dialect}")


async def insert_if_absent(
    db: AsyncSession,
    user_id: str,
    permission_key: str,
    granted_by_id: str,
    granted_at: datetime
) -> bool:
    """
    Insert one grant unless the (user, key) pair already exists.

    Returns True when a row was inserted. Concurrent grants of the same pair
    resolve through the unique constraint instead of raising.
    """
    stmt = (
        _conditional_insert(db)
        .values(
            id=generate_ulid(),
            user_id=user_id,
            permission_key=permission_key,
            granted_by_id=granted_by_id,
            granted_at=granted_at,
        )
        .on_conflict_do_nothing(index_elements=["user_id", "permission_key"])
        .returning(user_permissions.c.permission_key)
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none() is not None


async def insert_all(
    db: AsyncSession,
    user_id: str,
    permission_keys: Iterable[str],
    granted_by_id: str,
    granted_at: datetime
) -> None:
    """Plain insert; a duplicate pair raises IntegrityError (Conflict)."""
    rows = [
        {
            "id": generate_ulid(),
            "user_id": user_id,
            "permission_key": key,
            "granted_by_id": granted_by_id,
            "granted_at": granted_at,
        }
        for key in sorted(permission_keys)
    ]
    if rows:
        await db.execute(insert(user_permissions), rows)


async def delete_keys(db: AsyncSession, user_id: str, permission_keys: Iterable[str]) -> frozenset[str]:
    """Delete the given grants; returns the keys that were actually held."""
    keys = list(permission_keys)
    if not keys:
        return frozenset()
    result = await db.execute(
        delete(user_permissions)
        .where(
            user_permissions.c.user_id == user_id,
            user_permissions.c.permission_key.in_(keys),
        )
        .returning(user_permissions.c.permission_key)
    )
    return frozenset(result.scalars().all())


async def delete_all(db: AsyncSession, user_id: str) -> frozenset[str]:
    result = await db.execute(
        delete(user_permissions)
        .where(user_permissions.c.user_id == user_id)
        .returning(user_permissions.c.permission_key)
    )
    return frozenset(result.scalars().all())
