from datetime import datetime
from typing import Literal, Optional
from pydantic import BaseModel, Field, field_validator

from medbill.schemas.common import reject_null

Role = Literal["superadmin", "admin", "biller", "auditor", "reports", "rips", "custom"]

EMAIL_PATTERN = r"^[^\s@]+@[^\s@]+\.[^\s@]+$"


class CustomPermission(BaseModel):
    module: str
    actions: list[str] = []


class LoginRequest(BaseModel):
    username: str
    password: str


class ForgotPasswordRequest(BaseModel):
    email: str


class ResetPasswordRequest(BaseModel):
    token: str
    new_password: str


class PasswordChange(BaseModel):
    current_password: Optional[str] = None
    new_password: str


class UserCreate(BaseModel):
    username: str = Field(min_length=3, max_length=50)
    email: str = Field(pattern=EMAIL_PATTERN)
    password: str
    full_name: str = Field(min_length=1, max_length=200)
    role: Role = "biller"
    custom_permissions: list[CustomPermission] = []
    assigned_companies: list[int] = []
    can_view_all_companies: bool = False
    department: Optional[str] = None
    phone: Optional[str] = None

    @field_validator("username", "email")
    @classmethod
    def lowercase(cls, v: str) -> str:
        return v.strip().lower()


class UserUpdate(BaseModel):
    email: Optional[str] = Field(default=None, max_length=200, pattern=EMAIL_PATTERN)
    full_name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    role: Optional[Role] = None
    custom_permissions: Optional[list[CustomPermission]] = None
    assigned_companies: Optional[list[int]] = None
    can_view_all_companies: Optional[bool] = None
    department: Optional[str] = None
    phone: Optional[str] = None
    active: Optional[bool] = None

    @field_validator("email")
    @classmethod
    def lowercase(cls, v: Optional[str]) -> Optional[str]:
        return v.strip().lower() if v else v

    @field_validator(
        "email", "full_name", "role", "custom_permissions", "assigned_companies", "can_view_all_companies", "active"
    )
    @classmethod
    def not_null(cls, v):
        return reject_null(v)


class UserResponse(BaseModel):
    id: int
    username: str
    email: str
    full_name: str
    role: str
    custom_permissions: list[CustomPermission] = []
    assigned_companies: list[int] = []
    can_view_all_companies: bool = False
    department: Optional[str] = None
    phone: Optional[str] = None
    active: bool
    is_locked: bool = False
    login_attempts: int = 0
    last_login: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True
