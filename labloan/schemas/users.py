import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

from .enums import Role, UserStatus


class UserCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    email: EmailStr
    password: str
    role: Role = Role.student
    laboratory_id: Optional[uuid.UUID] = None
    student_id: Optional[str] = Field(default=None, max_length=20)
    phone: Optional[str] = Field(default=None, max_length=20)

    @field_validator('student_id', 'phone', mode='before')
    @classmethod
    def empty_to_none(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None


class UserUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(default=None, max_length=20)
    student_id: Optional[str] = Field(default=None, max_length=20)
    # admin only
    role: Optional[Role] = None
    laboratory_id: Optional[uuid.UUID] = None


class UserStatusUpdate(BaseModel):
    status: UserStatus
    laboratory_id: Optional[uuid.UUID] = None


class UserResponse(BaseModel):
    id: uuid.UUID
    name: str
    email: str
    role: Role
    status: UserStatus
    laboratory_id: Optional[uuid.UUID] = None
    student_id: Optional[str] = None
    phone: Optional[str] = None
    force_password_change_on_next_login: bool = False
    created_at: Optional[datetime] = None
    last_login_at: Optional[datetime] = None

    class Config:
        from_attributes = True
