import uuid
from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, Field

from .enums import LoanStatus


class LoanRequestCreate(BaseModel):
    equipment_id: uuid.UUID
    quantity_requested: int = Field(default=1, ge=1)
    requested_start_date: date
    requested_end_date: date
    purpose: str = Field(min_length=1)
    notes: Optional[str] = None


class LoanRequestUpdate(BaseModel):
    quantity_requested: Optional[int] = Field(default=None, ge=1)
    requested_start_date: Optional[date] = None
    requested_end_date: Optional[date] = None
    purpose: Optional[str] = None
    notes: Optional[str] = None


class LoanRequestTransition(BaseModel):
    status: LoanStatus
    rejection_reason: Optional[str] = None
    notes: Optional[str] = None


class LoanRequestResponse(BaseModel):
    id: uuid.UUID
    request_number: str
    user_id: uuid.UUID
    equipment_id: uuid.UUID
    laboratory_id: uuid.UUID
    quantity_requested: int
    requested_start_date: date
    requested_end_date: date
    purpose: str
    status: LoanStatus
    rejection_reason: Optional[str] = None
    approved_by: Optional[uuid.UUID] = None
    approved_at: Optional[datetime] = None
    borrowed_at: Optional[datetime] = None
    returned_at: Optional[datetime] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True
