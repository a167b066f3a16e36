from datetime import date
from typing import Optional, Dict, Any

from sqlalchemy.orm import Session

from ..models.models import Equipment, LoanRequest, User, Laboratory, PasswordResetRequest
from ..schemas.enums import Role, LoanStatus, UserStatus, EquipmentStatus, PasswordResetStatus
from .clock import today as today_of
from .loans import overdue_query
from .permissions import Actor


def _count_loans(query, status: LoanStatus) -> int:
    return query.filter(LoanRequest.status == status.value).count()


def summary(db: Session, actor: Actor, today: Optional[date] = None) -> Dict[str, Any]:
    """Role-specific counters for the landing page."""
    today = today or today_of()
    available_equipment = db.query(Equipment).filter(
        Equipment.status == EquipmentStatus.active.value,
        Equipment.available_quantity > 0,
    )

    if actor.is_admin:
        loans = db.query(LoanRequest)
        return {
            "role": actor.role.value,
            "laboratories": db.query(Laboratory).count(),
            "equipment": db.query(Equipment).count(),
            "users": db.query(User).count(),
            "pending_verifications": db.query(User).filter(User.status == UserStatus.pending_verification.value).count(),
            "pending_password_resets": db.query(PasswordResetRequest).filter(
                PasswordResetRequest.status == PasswordResetStatus.pending.value
            ).count(),
            "pending_requests": _count_loans(loans, LoanStatus.pending),
            "borrowed_requests": _count_loans(loans, LoanStatus.borrowed),
            "overdue_requests": overdue_query(db, today).count(),
        }

    if actor.role in (Role.lab_assistant, Role.kepala_lab):
        loans = db.query(LoanRequest).filter(LoanRequest.laboratory_id == actor.laboratory_id)
        equipment = db.query(Equipment).filter(Equipment.laboratory_id == actor.laboratory_id)
        return {
            "role": actor.role.value,
            "laboratory_id": actor.laboratory_id,
            "equipment": equipment.count(),
            "available_equipment": equipment.filter(
                Equipment.status == EquipmentStatus.active.value,
                Equipment.available_quantity > 0,
            ).count(),
            "pending_requests": _count_loans(loans, LoanStatus.pending),
            "borrowed_requests": _count_loans(loans, LoanStatus.borrowed),
            "overdue_requests": overdue_query(db, today).filter(LoanRequest.laboratory_id == actor.laboratory_id).count(),
            "pending_verifications": db.query(User).filter(
                User.status == UserStatus.pending_verification.value,
                User.laboratory_id == actor.laboratory_id,
            ).count(),
        }

    # Students and lecturers only see their own requests
    mine = db.query(LoanRequest).filter(LoanRequest.user_id == actor.id)
    return {
        "role": actor.role.value,
        "pending_requests": _count_loans(mine, LoanStatus.pending),
        "approved_requests": _count_loans(mine, LoanStatus.approved),
        "borrowed_requests": _count_loans(mine, LoanStatus.borrowed),
        "overdue_requests": overdue_query(db, today).filter(LoanRequest.user_id == actor.id).count(),
        "available_equipment": available_equipment.count(),
    }
