from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth.security import get_current_actor
from ..db import get_db
from ..services import dashboard
from ..services.permissions import Actor


router = APIRouter(prefix="/dashboard", tags=["dashboard"])


@router.get("")
def get_dashboard(db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    return dashboard.summary(db, actor)
