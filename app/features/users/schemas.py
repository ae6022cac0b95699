"""
Pydantic schemas for user-related requests and responses.
"""
from pydantic import BaseModel, ConfigDict, EmailStr, Field

from app.features.users.models import Role


class Identity(BaseModel):
    """The authenticated caller as seen by the authorization layer."""
    id: str
    role: Role

    model_config = ConfigDict(frozen=True, from_attributes=True)


class UserBase(BaseModel):
    """Base user schema with common fields."""
    email: EmailStr
    name: str = Field(..., min_length=1, max_length=255)


class UserCreate(UserBase):
    """Schema for provisioning a user (seed script)."""
    role: Role

