"""
Loan request lifecycle.

Creation and pending edits validate the requested quantity against current
availability. Stock is held from approval until return (see inventory.py).
All transitions go through LOAN_REQUEST_MACHINE; actor checks go through
the policy in permissions.py before any state is touched.
"""
import uuid
from datetime import date, datetime
from typing import Optional, Dict, Any

import structlog
from sqlalchemy import select, or_
from sqlalchemy.orm import Session, joinedload

from ..config import settings
from ..errors import ValidationError, NotFound, StateConflict
from ..models.models import LoanRequest, Equipment, SequenceCounter
from ..schemas.enums import LoanStatus, EquipmentStatus, OUTSTANDING_LOAN_STATUSES
from . import audit, inventory
from .audit import RequestMeta, NO_META
from .clock import utcnow, today as today_of
from .paging import paginate
from .permissions import (
    Actor,
    Action,
    Resource,
    LOAN_TRANSITION_ACTIONS,
    authorize,
    can,
    scope_loan_requests,
)
from .workflow import LOAN_REQUEST_MACHINE


log = structlog.get_logger(__name__)

REQUEST_NUMBER_SEQUENCE = "loan_request"

EDITABLE_FIELDS = ("quantity_requested", "requested_start_date", "requested_end_date", "purpose", "notes")

AUDIT_ACTIONS = {
    LoanStatus.approved: "loan_request_approved",
    LoanStatus.rejected: "loan_request_rejected",
    LoanStatus.borrowed: "loan_request_borrowed",
    LoanStatus.returned: "loan_request_returned",
    LoanStatus.overdue: "loan_request_marked_overdue",
}


def next_request_number(db: Session) -> str:
    """Hand out the next request number; numbers are never reused."""
    stmt = select(SequenceCounter).where(SequenceCounter.name == REQUEST_NUMBER_SEQUENCE).with_for_update()
    counter = db.execute(stmt).scalar_one_or_none()
    if counter is None:
        counter = SequenceCounter(name=REQUEST_NUMBER_SEQUENCE, value=0)
        db.add(counter)
    counter.value += 1
    db.flush()
    return f"{settings.request_number_prefix}{counter.value:0{settings.request_number_width}d}"


def _validate_dates(start: Optional[date], end: Optional[date], on: date) -> None:
    if start is None:
        raise ValidationError("requested_start_date", "Start date is required.")
    if end is None:
        raise ValidationError("requested_end_date", "End date is required.")
    if start < on:
        raise ValidationError("requested_start_date", "Start date cannot be in the past.")
    if end <= start:
        raise ValidationError("requested_end_date", "End date must be after the start date.")


def _validate_purpose(purpose: Optional[str]) -> str:
    purpose = (purpose or "").strip()
    if not purpose:
        raise ValidationError("purpose", "Purpose is required.")
    return purpose


def _state(req: LoanRequest) -> Dict[str, Any]:
    return audit.snapshot(
        req,
        "request_number", "status", "equipment_id", "laboratory_id", "quantity_requested",
        "requested_start_date", "requested_end_date", "purpose", "notes", "rejection_reason",
    )


def _load(db: Session, request_id: uuid.UUID) -> LoanRequest:
    req = (
        db.query(LoanRequest)
        .options(joinedload(LoanRequest.equipment))
        .filter(LoanRequest.id == request_id)
        .first()
    )
    if not req:
        raise NotFound("Loan request")
    return req


def create_loan_request(
    db: Session,
    actor: Actor,
    equipment_id: uuid.UUID,
    quantity_requested: int,
    requested_start_date: date,
    requested_end_date: date,
    purpose: str,
    notes: Optional[str] = None,
    meta: RequestMeta = NO_META,
    today: Optional[date] = None,
) -> LoanRequest:
    authorize(actor, Action.create, Resource.loan_request)

    equipment = db.get(Equipment, equipment_id)
    if not equipment:
        raise ValidationError("equipment_id", "Selected equipment does not exist.")
    if equipment.status != EquipmentStatus.active.value:
        raise ValidationError("equipment_id", "Selected equipment is not available for loan.")
    purpose = _validate_purpose(purpose)
    _validate_dates(requested_start_date, requested_end_date, today or today_of())
    inventory.ensure_available(equipment, quantity_requested)

    req = LoanRequest(
        request_number=next_request_number(db),
        user_id=actor.id,
        equipment_id=equipment.id,
        laboratory_id=equipment.laboratory_id,
        quantity_requested=quantity_requested,
        requested_start_date=requested_start_date,
        requested_end_date=requested_end_date,
        purpose=purpose,
        notes=notes,
        status=LoanStatus.pending.value,
    )
    db.add(req)
    db.flush()

    audit.record(db, actor.id, "loan_request_created", "loan_request", req.id, None, _state(req), meta)
    log.info("loan_request_created", request_number=req.request_number, equipment_id=str(equipment.id), quantity=quantity_requested)
    return req


def get_loan_request(db: Session, actor: Actor, request_id: uuid.UUID) -> LoanRequest:
    req = _load(db, request_id)
    # Requests outside the actor's visibility look the same as missing ones
    if not can(actor, Action.view, Resource.loan_request, req):
        raise NotFound("Loan request")
    return req


def list_loan_requests(
    db: Session,
    actor: Actor,
    status: Optional[LoanStatus] = None,
    q: Optional[str] = None,
    laboratory_id: Optional[uuid.UUID] = None,
    page: int = 1,
    limit: int = 10,
    serialize=None,
) -> Dict[str, Any]:
    authorize(actor, Action.list, Resource.loan_request)
    query = scope_loan_requests(db.query(LoanRequest).join(LoanRequest.equipment), actor)

    if status:
        query = query.filter(LoanRequest.status == LoanStatus(status).value)
    if laboratory_id:
        query = query.filter(LoanRequest.laboratory_id == laboratory_id)
    if q:
        query = query.filter(or_(LoanRequest.request_number.ilike(f"%{q}%"), Equipment.name.ilike(f"%{q}%")))

    query = query.order_by(LoanRequest.created_at.desc())
    return paginate(query, page, limit, serialize)


def update_loan_request(
    db: Session,
    actor: Actor,
    request_id: uuid.UUID,
    changes: Dict[str, Any],
    meta: RequestMeta = NO_META,
    today: Optional[date] = None,
) -> LoanRequest:
    """Edit details of a pending request. Only the requester may do this."""
    req = _load(db, request_id)
    authorize(actor, Action.update, Resource.loan_request, req)
    if req.status != LoanStatus.pending.value:
        raise StateConflict("Only pending loan requests can be edited.", current=req.status)

    unknown = set(changes) - set(EDITABLE_FIELDS)
    if unknown:
        raise ValidationError(sorted(unknown)[0], "This field cannot be changed.")
    changes = {k: v for k, v in changes.items() if v is not None or k == "notes"}

    before = _state(req)
    start = changes.get("requested_start_date", req.requested_start_date)
    end = changes.get("requested_end_date", req.requested_end_date)
    if "requested_start_date" in changes or "requested_end_date" in changes:
        _validate_dates(start, end, today or today_of())
    if "purpose" in changes:
        changes["purpose"] = _validate_purpose(changes["purpose"])
    if "quantity_requested" in changes:
        inventory.ensure_available(req.equipment, changes["quantity_requested"])

    for key, value in changes.items():
        setattr(req, key, value)
    req.updated_at = utcnow()
    db.flush()

    old_values, new_values = audit.compute_diff(before, _state(req))
    audit.record(db, actor.id, "loan_request_updated", "loan_request", req.id, old_values, new_values, meta)
    return req


def transition_loan_request(
    db: Session,
    actor: Actor,
    request_id: uuid.UUID,
    status: LoanStatus,
    rejection_reason: Optional[str] = None,
    notes: Optional[str] = None,
    meta: RequestMeta = NO_META,
    now: Optional[datetime] = None,
) -> LoanRequest:
    """
    Move a loan request along its lifecycle.

    Order of checks: actor authority (Unauthorized), legal edge
    (StateConflict), then input for the specific edge (ValidationError).
    Inventory effects and the audit entry share the caller's transaction.
    """
    try:
        target = LoanStatus(status)
    except ValueError:
        raise ValidationError("status", f"Unknown loan request status '{status}'.")
    now = now or utcnow()

    req = _load(db, request_id)
    # No edge leads back to pending; gate it like any staff transition
    authorize(actor, LOAN_TRANSITION_ACTIONS.get(target, Action.approve), Resource.loan_request, req)
    LOAN_REQUEST_MACHINE.check(req.status, target)

    before = _state(req)
    if target is LoanStatus.rejected:
        reason = (rejection_reason or "").strip()
        if not reason:
            raise ValidationError("rejection_reason", "A rejection reason is required.")
        req.rejection_reason = reason
    elif target is LoanStatus.approved:
        inventory.reserve(db, req.equipment, req.quantity_requested)
        req.approved_by = actor.id
        req.approved_at = now
    elif target is LoanStatus.borrowed:
        req.borrowed_at = now
    elif target is LoanStatus.returned:
        inventory.release(db, req.equipment, req.quantity_requested)
        req.returned_at = now
    elif target is LoanStatus.overdue:
        if today_of(now) <= req.requested_end_date:
            raise StateConflict(
                "Loan request is not past its end date yet.",
                current=req.status,
                requested=target.value,
            )

    if notes is not None:
        req.notes = notes
    req.status = target.value
    req.updated_at = now
    db.flush()

    old_values, new_values = audit.compute_diff(before, _state(req))
    audit.record(db, actor.id, AUDIT_ACTIONS[target], "loan_request", req.id, old_values, new_values, meta)
    log.info("loan_request_transitioned", request_number=req.request_number, from_status=before["status"], to_status=target.value)
    return req


def delete_loan_request(db: Session, actor: Actor, request_id: uuid.UUID, meta: RequestMeta = NO_META) -> None:
    req = _load(db, request_id)
    authorize(actor, Action.delete, Resource.loan_request, req)
    if req.status != LoanStatus.pending.value:
        raise StateConflict("Only pending loan requests can be deleted.", current=req.status)

    before = _state(req)
    target_id = req.id
    db.delete(req)
    db.flush()
    audit.record(db, actor.id, "loan_request_deleted", "loan_request", target_id, before, None, meta)


def overdue_query(db: Session, on: date):
    """Outstanding requests whose end date has passed as of ``on``."""
    return db.query(LoanRequest).filter(
        LoanRequest.status.in_([s.value for s in OUTSTANDING_LOAN_STATUSES]),
        LoanRequest.requested_end_date < on,
    )


def list_overdue_loan_requests(db: Session, actor: Actor, today: Optional[date] = None) -> list:
    authorize(actor, Action.list, Resource.loan_request)
    query = scope_loan_requests(overdue_query(db, today or today_of()), actor)
    return query.order_by(LoanRequest.requested_end_date.asc()).all()
