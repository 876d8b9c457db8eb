from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, field_validator, model_validator

Role = Literal["ADMIN", "VIEWER"]


class LoginIn(BaseModel):
    email: EmailStr
    password: str

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "email": "admin@example.com",
                "password": "password123",
            }
        }
    )


class TokenOut(BaseModel):
    access_token: str
    token_type: str = "bearer"
    role: Role


class UserCreateIn(BaseModel):
    email: EmailStr
    name: str
    password: str
    role: Role = "VIEWER"

    @field_validator("name")
    @classmethod
    def validate_name(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("name is required")
        return cleaned

    @field_validator("password")
    @classmethod
    def validate_password(cls, value: str) -> str:
        if len(value) < 8:
            raise ValueError("password must be at least 8 characters")
        return value

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "email": "viewer@example.com",
                "name": "Gudang Viewer",
                "password": "password123",
                "role": "VIEWER",
            }
        }
    )


class UserUpdateIn(BaseModel):
    email: Optional[EmailStr] = None
    name: Optional[str] = None
    password: Optional[str] = None
    role: Optional[Role] = None
    is_active: Optional[bool] = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, value: str | None) -> str | None:
        if value is None:
            return None
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("name cannot be empty")
        return cleaned

    @field_validator("password")
    @classmethod
    def validate_password(cls, value: str | None) -> str | None:
        if value is not None and len(value) < 8:
            raise ValueError("password must be at least 8 characters")
        return value

    @model_validator(mode="after")
    def validate_any_field_present(self) -> "UserUpdateIn":
        if not self.model_fields_set:
            raise ValueError("At least one field must be provided")
        return self


class UserOut(BaseModel):
    id: str
    email: str
    name: Optional[str] = None
    role: Role
    is_active: bool
    visible_category_ids: list[int] = []
    created_at: datetime


class UserListOut(BaseModel):
    items: list[UserOut]


class CategoryVisibilityIn(BaseModel):
    category_ids: list[int]
