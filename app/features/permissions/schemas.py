"""
Pydantic schemas for permission management.

Every endpoint answers with the ``{success, message, data}`` envelope.
Permission keys arrive as plain strings and are validated against the
catalog by the service, so unknown keys produce a domain error naming them.
"""
from datetime import datetime
from typing import Any, Dict, Generic, List, Optional, TypeVar
from pydantic import BaseModel, Field, ConfigDict, field_validator

from app.features.permissions.models import AuditAction
from app.features.permissions.route_map import Policy
from app.features.users.models import Role


T = TypeVar("T")


class Envelope(BaseModel, Generic[T]):
    success: bool = True
    message: str = "OK"
    data: Optional[T] = None


# ============================================================================
# Catalog Schemas
# ============================================================================

class PermissionDefinitionResponse(BaseModel):
    key: str
    category: str
    label: str
    description: str
    module: str


class PermissionCategoryResponse(BaseModel):
    group_key: str
    category: str
    module: str
    permissions: List[PermissionDefinitionResponse]


class CatalogResponse(BaseModel):
    version: str
    categories: List[PermissionCategoryResponse]


# ============================================================================
# Mutation Schemas
# ============================================================================

class PermissionMutationRequest(BaseModel):
    """Body of grant, revoke and replace."""
    user_id: str = Field(..., min_length=1, max_length=26, description="Target user ID")
    keys: List[str] = Field(..., description="Permission keys from the catalog")

    @field_validator("user_id")
    @classmethod
    def user_id_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("User ID is required")
        return v.strip()


class MutationResponse(BaseModel):
    user_id: str
    audit_id: str
    added: List[str] = []
    removed: List[str] = []
    count: int


# ============================================================================
# User Permission Schemas
# ============================================================================

class GrantedPermissionResponse(BaseModel):
    permission_key: str
    granted_by_id: Optional[str]
    granted_at: datetime

    model_config = ConfigDict(from_attributes=True)


class UserPermissionsResponse(BaseModel):
    user_id: str
    role: Role
    defaults: List[str] = []
    granted: List[GrantedPermissionResponse] = []
    effective: List[str] = []


class UserWithPermissionsResponse(UserPermissionsResponse):
    """One row of the admin permission panel."""
    email: str
    name: str
    is_active: bool


class UserPermissionsListResponse(BaseModel):
    """Schema for paginated user list with permissions."""
    items: List[UserWithPermissionsResponse]
    total: int
    page: int
    page_size: int
    pages: int


# ============================================================================
# Permission Check Schemas
# ============================================================================

class PermissionCheckRequest(BaseModel):
    keys: List[str] = Field(..., min_length=1, description="Permission keys to check")
    policy: Policy = Policy.ANY


class PermissionCheckResponse(BaseModel):
    has_permission: bool


# ============================================================================
# Audit Log Schemas
# ============================================================================

class AuditLogResponse(BaseModel):
    id: str
    actor_id: str
    action: AuditAction
    target_user_id: Optional[str]
    affected_keys: List[str]
    details: Optional[Dict[str, Any]]
    ip_address: Optional[str]
    user_agent: Optional[str]
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AuditLogListResponse(BaseModel):
    """Schema for paginated audit log list."""
    items: List[AuditLogResponse]
    total: int
    page: int
    page_size: int
    pages: int
