import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from ..auth.security import get_current_actor
from ..db import get_db
from ..schemas.catalog import LaboratoryCreate, LaboratoryUpdate, LaboratoryResponse
from ..schemas.enums import LaboratoryStatus
from ..services import catalog
from ..services.audit import RequestMeta
from ..services.permissions import Actor


router = APIRouter(prefix="/laboratories", tags=["laboratories"])


@router.get("")
def list_laboratories(
    status: Optional[LaboratoryStatus] = None,
    q: Optional[str] = None,
    page: int = 1,
    limit: int = 10,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return catalog.list_laboratories(
        db, actor, status=status, q=q, page=page, limit=limit,
        serialize=LaboratoryResponse.model_validate,
    )


@router.post("", response_model=LaboratoryResponse, status_code=201)
def create_laboratory(
    payload: LaboratoryCreate,
    request: Request,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    lab = catalog.create_laboratory(db, actor, payload.dict(), meta=RequestMeta.from_request(request))
    db.commit()
    db.refresh(lab)
    return lab


@router.get("/{laboratory_id}", response_model=LaboratoryResponse)
def get_laboratory(laboratory_id: uuid.UUID, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    return catalog.get_laboratory(db, actor, laboratory_id)


@router.patch("/{laboratory_id}", response_model=LaboratoryResponse)
def update_laboratory(
    laboratory_id: uuid.UUID,
    payload: LaboratoryUpdate,
    request: Request,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    lab = catalog.update_laboratory(
        db, actor, laboratory_id, payload.dict(exclude_unset=True), meta=RequestMeta.from_request(request)
    )
    db.commit()
    db.refresh(lab)
    return lab


@router.delete("/{laboratory_id}", status_code=204)
def delete_laboratory(
    laboratory_id: uuid.UUID,
    request: Request,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    catalog.delete_laboratory(db, actor, laboratory_id, meta=RequestMeta.from_request(request))
    db.commit()
