import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr

from .enums import PasswordResetStatus


class PasswordResetCreate(BaseModel):
    email: EmailStr
    requester_notes: Optional[str] = None


class PasswordResetDecision(BaseModel):
    approval_notes: Optional[str] = None


class PasswordResetResponse(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    status: PasswordResetStatus
    requester_notes: Optional[str] = None
    approver_id: Optional[uuid.UUID] = None
    approval_notes: Optional[str] = None
    expires_at: datetime
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class PasswordResetApproved(BaseModel):
    request: PasswordResetResponse
    temporary_password: str  # shown once, never stored in clear text
