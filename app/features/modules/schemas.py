"""
Pydantic schemas for modules.
"""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field, model_validator


class ModuleResponse(BaseModel):
    slug: str
    name: str
    description: Optional[str]
    display_order: int
    is_active: bool
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ModuleUpdate(BaseModel):
    """Schema for updating a module (admin only)."""
    display_order: Optional[int] = Field(None, ge=0)
    is_active: Optional[bool] = None

    @model_validator(mode="after")
    def at_least_one_field(self) -> "ModuleUpdate":
        if self.display_order is None and self.is_active is None:
            raise ValueError("Provide display_order or is_active")
        return self
