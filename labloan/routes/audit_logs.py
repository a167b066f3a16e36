import uuid
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth.security import get_current_actor
from ..db import get_db
from ..schemas.audit import AuditLogResponse
from ..services import audit
from ..services.permissions import Actor, Action, Resource, authorize


router = APIRouter(prefix="/audit-logs", tags=["audit-logs"])


@router.get("")
def list_audit_logs(
    target_type: Optional[str] = None,
    target_id: Optional[uuid.UUID] = None,
    action: Optional[str] = None,
    actor_id: Optional[uuid.UUID] = None,
    page: int = 1,
    limit: int = 50,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    authorize(actor, Action.list, Resource.audit_log)
    page = max(1, page)
    limit = max(1, min(100, limit))
    items, total = audit.get_audit_logs(
        db,
        target_type=target_type,
        target_id=target_id,
        action=action,
        actor_id=actor_id,
        limit=limit,
        offset=(page - 1) * limit,
    )
    total_pages = (total + limit - 1) // limit if total > 0 else 1
    return {
        "items": [AuditLogResponse.model_validate(i) for i in items],
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": total_pages,
    }
