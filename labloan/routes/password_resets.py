import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from ..auth.security import get_current_actor
from ..db import get_db
from ..schemas.enums import PasswordResetStatus
from ..schemas.password_resets import (
    PasswordResetCreate,
    PasswordResetDecision,
    PasswordResetResponse,
    PasswordResetApproved,
)
from ..services import accounts
from ..services.audit import RequestMeta
from ..services.permissions import Actor


router = APIRouter(prefix="/password-reset-requests", tags=["password-reset-requests"])


@router.post("", status_code=202)
def create_password_reset_request(payload: PasswordResetCreate, request: Request, db: Session = Depends(get_db)):
    # Unauthenticated on purpose: locked-out users ask staff for help here
    accounts.create_password_reset_request(
        db, payload.email, requester_notes=payload.requester_notes, meta=RequestMeta.from_request(request)
    )
    db.commit()
    return {"status": "submitted", "message": "An administrator will review your request."}


@router.get("")
def list_password_reset_requests(
    status: Optional[PasswordResetStatus] = None,
    page: int = 1,
    limit: int = 10,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return accounts.list_password_reset_requests(
        db, actor, status=status, page=page, limit=limit,
        serialize=PasswordResetResponse.model_validate,
    )


@router.get("/{reset_id}", response_model=PasswordResetResponse)
def get_password_reset_request(reset_id: uuid.UUID, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    return accounts.get_password_reset_request(db, actor, reset_id)


@router.post("/{reset_id}/approve", response_model=PasswordResetApproved)
def approve_password_reset_request(
    reset_id: uuid.UUID,
    payload: PasswordResetDecision,
    request: Request,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    reset, temporary_password = accounts.approve_password_reset(
        db, actor, reset_id, approval_notes=payload.approval_notes, meta=RequestMeta.from_request(request)
    )
    db.commit()
    db.refresh(reset)
    return PasswordResetApproved(
        request=PasswordResetResponse.model_validate(reset),
        temporary_password=temporary_password,
    )


@router.post("/{reset_id}/reject", response_model=PasswordResetResponse)
def reject_password_reset_request(
    reset_id: uuid.UUID,
    payload: PasswordResetDecision,
    request: Request,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    reset = accounts.reject_password_reset(
        db, actor, reset_id, approval_notes=payload.approval_notes, meta=RequestMeta.from_request(request)
    )
    db.commit()
    db.refresh(reset)
    return reset
