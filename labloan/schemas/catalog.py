import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from .enums import LaboratoryStatus, EquipmentCondition, EquipmentStatus


class LaboratoryBase(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    code: str = Field(min_length=1, max_length=10)
    description: Optional[str] = None
    location: Optional[str] = None
    status: LaboratoryStatus = LaboratoryStatus.active

    @field_validator('code', mode='before')
    @classmethod
    def upper_code(cls, v):
        return str(v).strip().upper() if v is not None else v


class LaboratoryCreate(LaboratoryBase):
    pass


class LaboratoryUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    code: Optional[str] = Field(default=None, min_length=1, max_length=10)
    description: Optional[str] = None
    location: Optional[str] = None
    status: Optional[LaboratoryStatus] = None

    @field_validator('code', mode='before')
    @classmethod
    def upper_code(cls, v):
        return str(v).strip().upper() if v is not None else v


class LaboratoryResponse(LaboratoryBase):
    id: uuid.UUID
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class EquipmentCreate(BaseModel):
    laboratory_id: Optional[uuid.UUID] = None  # defaults to the lab assistant's own laboratory
    name: str = Field(min_length=1, max_length=255)
    code: str = Field(min_length=1, max_length=20)
    description: Optional[str] = None
    brand: Optional[str] = None
    model: Optional[str] = None
    total_quantity: int = Field(default=1, ge=0)
    available_quantity: Optional[int] = Field(default=None, ge=0)
    condition: EquipmentCondition = EquipmentCondition.good
    status: EquipmentStatus = EquipmentStatus.active
    notes: Optional[str] = None


class EquipmentUpdate(BaseModel):
    laboratory_id: Optional[uuid.UUID] = None
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    code: Optional[str] = Field(default=None, min_length=1, max_length=20)
    description: Optional[str] = None
    brand: Optional[str] = None
    model: Optional[str] = None
    total_quantity: Optional[int] = Field(default=None, ge=0)
    condition: Optional[EquipmentCondition] = None
    status: Optional[EquipmentStatus] = None
    notes: Optional[str] = None


class EquipmentResponse(BaseModel):
    id: uuid.UUID
    laboratory_id: uuid.UUID
    name: str
    code: str
    description: Optional[str] = None
    brand: Optional[str] = None
    model: Optional[str] = None
    total_quantity: int
    available_quantity: int
    condition: EquipmentCondition
    status: EquipmentStatus
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True
