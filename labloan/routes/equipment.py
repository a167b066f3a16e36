import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from ..auth.security import get_current_actor
from ..db import get_db
from ..schemas.catalog import EquipmentCreate, EquipmentUpdate, EquipmentResponse
from ..schemas.enums import EquipmentStatus
from ..services import catalog
from ..services.audit import RequestMeta
from ..services.permissions import Actor


router = APIRouter(prefix="/equipment", tags=["equipment"])


@router.get("")
def list_equipment(
    laboratory_id: Optional[uuid.UUID] = None,
    status: Optional[EquipmentStatus] = None,
    q: Optional[str] = None,
    available_only: bool = False,
    page: int = 1,
    limit: int = 10,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return catalog.list_equipment(
        db, actor,
        laboratory_id=laboratory_id, status=status, q=q, available_only=available_only,
        page=page, limit=limit, serialize=EquipmentResponse.model_validate,
    )


@router.post("", response_model=EquipmentResponse, status_code=201)
def create_equipment(
    payload: EquipmentCreate,
    request: Request,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    equipment = catalog.create_equipment(db, actor, payload.dict(), meta=RequestMeta.from_request(request))
    db.commit()
    db.refresh(equipment)
    return equipment


@router.get("/{equipment_id}", response_model=EquipmentResponse)
def get_equipment(equipment_id: uuid.UUID, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    return catalog.get_equipment(db, actor, equipment_id)


@router.patch("/{equipment_id}", response_model=EquipmentResponse)
def update_equipment(
    equipment_id: uuid.UUID,
    payload: EquipmentUpdate,
    request: Request,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    equipment = catalog.update_equipment(
        db, actor, equipment_id, payload.dict(exclude_unset=True), meta=RequestMeta.from_request(request)
    )
    db.commit()
    db.refresh(equipment)
    return equipment


@router.delete("/{equipment_id}", status_code=204)
def delete_equipment(
    equipment_id: uuid.UUID,
    request: Request,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    catalog.delete_equipment(db, actor, equipment_id, meta=RequestMeta.from_request(request))
    db.commit()
