"""Pydantic schemas for the Role Store."""

from datetime import datetime

from pydantic import BaseModel, Field, field_validator


class RoleSummary(BaseModel):
    id: str
    name: str
    display_name: str
    description: str | None = None
    is_template: bool
    is_system: bool
    permission_count: int

    model_config = {"from_attributes": True}


class RoleDetail(RoleSummary):
    permission_keys: list[str]
    created_at: datetime
    updated_at: datetime


class RoleCreate(BaseModel):
    name: str = Field(min_length=2, max_length=100, pattern=r"^[a-z][a-z0-9_]*$")
    display_name: str = Field(min_length=1, max_length=255)
    description: str | None = None
    is_template: bool = True
    permission_keys: list[str] = Field(default_factory=list)


class RoleUpdate(BaseModel):
    display_name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    is_template: bool | None = None
    permission_keys: list[str] | None = None

    @field_validator("display_name", "is_template")
    @classmethod
    def not_null(cls, v):
        # Omit the field to leave it unchanged; these columns are NOT NULL
        if v is None:
            raise ValueError("may be omitted but not null")
        return v


class RoleClone(BaseModel):
    name: str = Field(min_length=2, max_length=100, pattern=r"^[a-z][a-z0-9_]*$")
    display_name: str | None = Field(default=None, max_length=255)
