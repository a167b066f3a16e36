import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

from .enums import Role, UserStatus


class RegisterRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    email: EmailStr
    password: str
    student_id: Optional[str] = Field(default=None, max_length=20)
    phone: Optional[str] = Field(default=None, max_length=20)

    @field_validator('student_id', 'phone', mode='before')
    @classmethod
    def empty_to_none(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None


class LoginRequest(BaseModel):
    email: str
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    must_change_password: bool = False


class ChangePasswordRequest(BaseModel):
    current_password: Optional[str] = None
    new_password: str


class MeResponse(BaseModel):
    id: uuid.UUID
    name: str
    email: str
    role: Role
    status: UserStatus
    laboratory_id: Optional[uuid.UUID] = None
    student_id: Optional[str] = None
    force_password_change_on_next_login: bool = False
    last_login_at: Optional[datetime] = None

    class Config:
        from_attributes = True
