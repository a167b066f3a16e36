import uuid
from typing import Optional, List

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from ..auth.security import get_current_actor
from ..db import get_db
from ..schemas.enums import LoanStatus
from ..schemas.loans import (
    LoanRequestCreate,
    LoanRequestUpdate,
    LoanRequestTransition,
    LoanRequestResponse,
)
from ..services import loans
from ..services.audit import RequestMeta
from ..services.permissions import Actor


router = APIRouter(prefix="/loan-requests", tags=["loan-requests"])


@router.get("")
def list_loan_requests(
    status: Optional[LoanStatus] = None,
    q: Optional[str] = None,
    laboratory_id: Optional[uuid.UUID] = None,
    page: int = 1,
    limit: int = 10,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return loans.list_loan_requests(
        db, actor, status=status, q=q, laboratory_id=laboratory_id,
        page=page, limit=limit, serialize=LoanRequestResponse.model_validate,
    )


# Declared before /{request_id} so "overdue" is not parsed as an id
@router.get("/overdue", response_model=List[LoanRequestResponse])
def list_overdue(db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    return loans.list_overdue_loan_requests(db, actor)


@router.post("", response_model=LoanRequestResponse, status_code=201)
def create_loan_request(
    payload: LoanRequestCreate,
    request: Request,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    req = loans.create_loan_request(db, actor, **payload.dict(), meta=RequestMeta.from_request(request))
    db.commit()
    db.refresh(req)
    return req


@router.get("/{request_id}", response_model=LoanRequestResponse)
def get_loan_request(request_id: uuid.UUID, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    return loans.get_loan_request(db, actor, request_id)


@router.patch("/{request_id}", response_model=LoanRequestResponse)
def update_loan_request(
    request_id: uuid.UUID,
    payload: LoanRequestUpdate,
    request: Request,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    req = loans.update_loan_request(
        db, actor, request_id, payload.dict(exclude_unset=True), meta=RequestMeta.from_request(request)
    )
    db.commit()
    db.refresh(req)
    return req


@router.post("/{request_id}/transition", response_model=LoanRequestResponse)
def transition_loan_request(
    request_id: uuid.UUID,
    payload: LoanRequestTransition,
    request: Request,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    req = loans.transition_loan_request(
        db, actor, request_id,
        status=payload.status,
        rejection_reason=payload.rejection_reason,
        notes=payload.notes,
        meta=RequestMeta.from_request(request),
    )
    db.commit()
    db.refresh(req)
    return req


@router.delete("/{request_id}", status_code=204)
def delete_loan_request(
    request_id: uuid.UUID,
    request: Request,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    loans.delete_loan_request(db, actor, request_id, meta=RequestMeta.from_request(request))
    db.commit()
