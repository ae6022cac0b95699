"""
Module model: a feature area grouping related permission keys.

Modules are declared in the permission catalog and seeded into this table;
administrators may reorder or deactivate them. Deactivating a module hides
its permissions from presentation listings only, it never invalidates keys.
"""
from sqlalchemy import String, Boolean, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database.base import Base, TimestampMixin, generate_ulid


class Module(Base, TimestampMixin):
    __tablename__ = "modules"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    slug: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    display_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<Module(slug={self.slug!r}, order={self.display_order}, active={self.is_active})>"
