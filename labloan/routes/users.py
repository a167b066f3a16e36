import uuid
from typing import Optional, List

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from ..auth.security import get_current_actor
from ..db import get_db
from ..schemas.enums import Role, UserStatus
from ..schemas.users import UserCreate, UserUpdate, UserStatusUpdate, UserResponse
from ..services import accounts
from ..services.audit import RequestMeta
from ..services.permissions import Actor


router = APIRouter(prefix="/users", tags=["users"])


@router.get("")
def list_users(
    role: Optional[Role] = None,
    status: Optional[UserStatus] = None,
    q: Optional[str] = None,
    page: int = 1,
    limit: int = 10,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return accounts.list_users(
        db, actor, role=role, status=status, q=q, page=page, limit=limit,
        serialize=UserResponse.model_validate,
    )


@router.get("/pending-verification", response_model=List[UserResponse])
def pending_verification(db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    return accounts.list_pending_verification(db, actor)


@router.post("", response_model=UserResponse, status_code=201)
def create_user(
    payload: UserCreate,
    request: Request,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    user = accounts.create_user(db, actor, **payload.dict(), meta=RequestMeta.from_request(request))
    db.commit()
    db.refresh(user)
    return user


@router.get("/{user_id}", response_model=UserResponse)
def get_user(user_id: uuid.UUID, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    return accounts.get_user(db, actor, user_id)


@router.patch("/{user_id}", response_model=UserResponse)
def update_user(
    user_id: uuid.UUID,
    payload: UserUpdate,
    request: Request,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    user = accounts.update_user(
        db, actor, user_id, payload.dict(exclude_unset=True), meta=RequestMeta.from_request(request)
    )
    db.commit()
    db.refresh(user)
    return user


@router.patch("/{user_id}/status", response_model=UserResponse)
def update_user_status(
    user_id: uuid.UUID,
    payload: UserStatusUpdate,
    request: Request,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    user = accounts.set_user_status(
        db, actor, user_id, payload.status,
        laboratory_id=payload.laboratory_id,
        meta=RequestMeta.from_request(request),
    )
    db.commit()
    db.refresh(user)
    return user


@router.delete("/{user_id}", status_code=204)
def delete_user(
    user_id: uuid.UUID,
    request: Request,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    accounts.delete_user(db, actor, user_id, meta=RequestMeta.from_request(request))
    db.commit()
