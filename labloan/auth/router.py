from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from ..db import get_db
from ..models.models import User
from ..schemas.auth import (
    RegisterRequest,
    LoginRequest,
    TokenResponse,
    ChangePasswordRequest,
    MeResponse,
)
from ..services import accounts
from ..services.audit import RequestMeta
from .security import get_current_user


router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/register", response_model=MeResponse, status_code=201)
def register(req: RegisterRequest, request: Request, db: Session = Depends(get_db)):
    # No token: the account has to be verified by staff first
    user = accounts.register(
        db,
        name=req.name,
        email=req.email,
        password=req.password,
        student_id=req.student_id,
        phone=req.phone,
        meta=RequestMeta.from_request(request),
    )
    db.commit()
    db.refresh(user)
    return user


@router.post("/login", response_model=TokenResponse)
def login(req: LoginRequest, request: Request, db: Session = Depends(get_db)):
    user, access = accounts.login(db, req.email, req.password, meta=RequestMeta.from_request(request))
    db.commit()
    return TokenResponse(access_token=access, must_change_password=bool(user.force_password_change_on_next_login))


@router.post("/logout", status_code=204)
def logout(request: Request, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    accounts.logout(db, user, meta=RequestMeta.from_request(request))
    db.commit()


@router.post("/change-password", response_model=MeResponse)
def change_password(
    req: ChangePasswordRequest,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    accounts.change_password(
        db,
        user,
        new_password=req.new_password,
        current_password=req.current_password,
        meta=RequestMeta.from_request(request),
    )
    db.commit()
    db.refresh(user)
    return user


@router.get("/me", response_model=MeResponse)
def me(user: User = Depends(get_current_user)):
    return user
