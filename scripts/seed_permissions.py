"""
Seed script for the access control database.

Run this script after deployment to:
- create tables
- insert the catalog's modules (existing rows are kept as-is)
- optionally provision a bootstrap administrator

Permission definitions themselves are static configuration in
``app.features.permissions.catalog`` and are not stored.

Usage:
    BOOTSTRAP_ADMIN_EMAIL=it-head@example.edu python -m scripts.seed_permissions
"""
import asyncio
import os
from typing import Optional
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db, init_db
from app.features.modules.service import ensure_catalog_modules
from app.features.permissions.catalog import CATEGORIES, defaults_for
from app.features.users.models import Role, User
from app.features.users.schemas import UserCreate
from app.utils import get_logger


log = get_logger(__name__)


async def seed_admin(db: AsyncSession, email: str, name: str) -> Optional[User]:
    """
    Create the first administrator if no user has that email yet.

    The admin receives no operational permissions; grant them explicitly if
    the account should also file or review.
    """
    payload = UserCreate(email=email, name=name, role=Role.ADMIN)
    result = await db.execute(select(User).where(User.email == payload.email))
    if result.scalars().first():
        log.debug(f"User '{payload.email}' already exists, skipping")
        return None

    user = User(email=payload.email, name=payload.name, role=payload.role)
    db.add(user)
    await db.commit()
    log.info(f"Created admin user {payload.email} with id {user.id}")
    return user


async def main():
    """Main function to seed modules and the bootstrap admin."""
    log.info("Starting access control seeding...")

    log.info("Initializing database tables...")
    await init_db()

    async for db in get_db():
        try:
            created = await ensure_catalog_modules(db)
            log.info(f"Created {len(created)} modules")

            admin_email = os.environ.get("BOOTSTRAP_ADMIN_EMAIL")
            if admin_email:
                await seed_admin(db, admin_email, os.environ.get("BOOTSTRAP_ADMIN_NAME", "Administrator"))

            log.info("Seeding completed successfully!")
            log.info("")
            log.info("Permission catalog:")
            for group in CATEGORIES:
                log.info(f"  - {group.category}: {', '.join(p.key.value for p in group.permissions)}")
            log.info("Role defaults:")
            for role in Role:
                log.info(f"  - {role.value}: {sorted(k.value for k in defaults_for(role)) or 'none'}")

        except Exception as e:
            log.error(f"Error seeding access control data: {e}", exc_info=True)
            await db.rollback()
            raise

        break  # Only use first session


if __name__ == "__main__":
    asyncio.run(main())
