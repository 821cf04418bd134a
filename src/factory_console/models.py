from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Generic, Literal, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

T = TypeVar("T")


# --- Pydantic models (external boundaries) ---


class BackendModel(BaseModel):
    """Backend payloads use camelCase; snake_case input is accepted too."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )


class ApiResponse(BaseModel):
    success: bool
    data: Any = None
    error: str | None = None
    status: int | None = None
    meta: dict[str, Any] | None = None


class EntityRecord(BackendModel):
    id: str
    code: str = ""
    name: str = ""
    description: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class Department(EntityRecord):
    department_type: str = "HEAD_OFFICE"
    parent_id: str | None = None


class DepartmentTreeNode(BackendModel):
    id: str
    code: str = ""
    name: str = ""
    department_type: str = "HEAD_OFFICE"
    children: list[DepartmentTreeNode] = []


class Factory(EntityRecord):
    address: str | None = None
    phone: str | None = None
    department_id: str | None = None
    managing_department_id: str | None = None
    is_active: bool = True


class Line(EntityRecord):
    factory_id: str = ""
    capacity: int = 0
    status: str = "ACTIVE"


class Team(EntityRecord):
    line_id: str = ""


class Role(EntityRecord):
    level: int | None = None
    is_system: bool = False


class RoleRelations(Role):
    """A role with the users and permissions the backend links to it."""

    users: list[dict[str, Any]] = []
    permissions: list[dict[str, Any]] = []


class ManagerRecord(BackendModel):
    user_id: str
    full_name: str | None = None
    is_primary: bool = False
    start_date: datetime | None = None
    end_date: datetime | None = None


class DepartmentCreate(BackendModel):
    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    code: str = Field(min_length=2)
    name: str = Field(min_length=3)
    description: str | None = None
    department_type: Literal["HEAD_OFFICE", "FACTORY_OFFICE"] = "HEAD_OFFICE"
    parent_id: str | None = None


class FactoryCreate(BackendModel):
    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    code: str = Field(min_length=2)
    name: str = Field(min_length=2)
    description: str | None = None
    address: str | None = None
    phone: str | None = Field(default=None, pattern=r"^[0-9+\-\s()]{10,15}$")
    department_id: str | None = None
    managing_department_id: str | None = None


class LineCreate(BackendModel):
    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    code: str = Field(min_length=2)
    name: str = Field(min_length=2)
    description: str | None = None
    factory_id: str = Field(min_length=1)
    capacity: int = Field(default=0, ge=0)


class TeamCreate(BackendModel):
    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    code: str = Field(min_length=2)
    name: str = Field(min_length=2)
    description: str | None = None
    line_id: str = Field(min_length=1)


class RoleCreate(BackendModel):
    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    code: str = Field(min_length=2)
    name: str = Field(min_length=2)
    description: str | None = None
    level: int | None = Field(default=None, ge=0)
    is_system: bool = False


class PermissionGrant(BackendModel):
    code: str
    is_active: bool = True


class UserPermissionsPayload(BackendModel):
    permissions: list[PermissionGrant] = []
    page_access: list[str] = []
    feature_access: list[str] = []
    data_access: list[str] = []


class PermissionRecord(BackendModel):
    id: str
    code: str
    name: str = ""
    type: str | None = None
    description: str | None = None
    is_active: bool = True


class AuthUser(BackendModel):
    id: str
    username: str
    full_name: str | None = None
    email: str | None = None
    role: str | None = None
    roles: list[str] = []


class LoginCredentials(BaseModel):
    username: str
    password: str
    remember_me: bool = False


# --- Dataclasses (internal state) ---


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    key: str
    value: T
    fetched_at: float
    ttl_seconds: float

    def is_fresh(self, now: float) -> bool:
        return now - self.fetched_at < self.ttl_seconds
