"""
User model with ULID primary keys.

Accounts are provisioned by the authentication service; the access control
service only reads ``id``, ``role`` and ``is_active``.
"""
import enum
from sqlalchemy import String, Boolean, Enum
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database.base import Base, TimestampMixin, generate_ulid


class Role(str, enum.Enum):
    """Closed set of account roles."""
    STUDENT = "student"
    FACULTY = "faculty"
    STAFF = "staff"
    ADMIN = "admin"


class User(Base, TimestampMixin):
    """
    User model representing authenticated users.
    
    Uses ULID instead of auto-incrementing integers for better distributed systems support.
    """
    __tablename__ = "users"
    
    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    
    # User information
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[Role] = mapped_column(
        Enum(Role, native_enum=False, values_callable=lambda roles: [r.value for r in roles], length=20),
        nullable=False,
        index=True,
    )
    
    # Status flags
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    
    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email!r}, role={self.role.value})>"
