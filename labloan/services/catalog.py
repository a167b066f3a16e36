"""Laboratory and equipment records."""
import uuid
from typing import Optional, Dict, Any

import structlog
from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..errors import ValidationError, NotFound, StateConflict
from ..models.models import Laboratory, Equipment, LoanRequest
from ..schemas.enums import LaboratoryStatus, EquipmentStatus, OUTSTANDING_LOAN_STATUSES
from . import audit, inventory
from .audit import RequestMeta, NO_META
from .clock import utcnow
from .paging import paginate
from .permissions import Actor, Action, Resource, authorize, scope_equipment


log = structlog.get_logger(__name__)

LABORATORY_FIELDS = ("name", "code", "description", "location", "status")
EQUIPMENT_FIELDS = (
    "laboratory_id", "name", "code", "description", "brand", "model",
    "total_quantity", "available_quantity", "condition", "status", "notes",
)


NOT_NULL_FIELDS = frozenset({"name", "code", "status", "laboratory_id", "total_quantity", "condition"})


def _enum_values(data: Dict[str, Any]) -> Dict[str, Any]:
    # Explicit nulls on required columns mean "leave unchanged"
    return {
        k: (v.value if hasattr(v, "value") else v)
        for k, v in data.items()
        if not (v is None and k in NOT_NULL_FIELDS)
    }


# ---------- laboratories ----------

def _lab_state(lab: Laboratory) -> Dict[str, Any]:
    return audit.snapshot(lab, *LABORATORY_FIELDS)


def _check_lab_code(db: Session, code: str, exclude: Optional[uuid.UUID] = None) -> None:
    query = db.query(Laboratory).filter(Laboratory.code == code)
    if exclude:
        query = query.filter(Laboratory.id != exclude)
    if query.first():
        raise ValidationError("code", "Laboratory code is already in use.")


def get_laboratory(db: Session, actor: Actor, laboratory_id: uuid.UUID) -> Laboratory:
    authorize(actor, Action.view, Resource.laboratory)
    lab = db.get(Laboratory, laboratory_id)
    if not lab:
        raise NotFound("Laboratory")
    return lab


def list_laboratories(
    db: Session,
    actor: Actor,
    status: Optional[LaboratoryStatus] = None,
    q: Optional[str] = None,
    page: int = 1,
    limit: int = 10,
    serialize=None,
) -> Dict[str, Any]:
    authorize(actor, Action.list, Resource.laboratory)
    query = db.query(Laboratory)
    if status:
        query = query.filter(Laboratory.status == LaboratoryStatus(status).value)
    if q:
        query = query.filter(or_(Laboratory.name.ilike(f"%{q}%"), Laboratory.code.ilike(f"%{q}%")))
    return paginate(query.order_by(Laboratory.name.asc()), page, limit, serialize)


def create_laboratory(db: Session, actor: Actor, data: Dict[str, Any], meta: RequestMeta = NO_META) -> Laboratory:
    authorize(actor, Action.create, Resource.laboratory)
    data = _enum_values(data)
    _check_lab_code(db, data["code"])

    lab = Laboratory(**data)
    db.add(lab)
    db.flush()
    audit.record(db, actor.id, "laboratory_created", "laboratory", lab.id, None, _lab_state(lab), meta)
    return lab


def update_laboratory(
    db: Session, actor: Actor, laboratory_id: uuid.UUID, changes: Dict[str, Any], meta: RequestMeta = NO_META
) -> Laboratory:
    lab = get_laboratory(db, actor, laboratory_id)
    authorize(actor, Action.update, Resource.laboratory, lab)
    changes = _enum_values(changes)
    if "code" in changes:
        _check_lab_code(db, changes["code"], exclude=lab.id)

    before = _lab_state(lab)
    for key, value in changes.items():
        setattr(lab, key, value)
    lab.updated_at = utcnow()
    db.flush()

    old_values, new_values = audit.compute_diff(before, _lab_state(lab))
    audit.record(db, actor.id, "laboratory_updated", "laboratory", lab.id, old_values, new_values, meta)
    return lab


def delete_laboratory(db: Session, actor: Actor, laboratory_id: uuid.UUID, meta: RequestMeta = NO_META) -> None:
    """Removes the laboratory with its equipment and loan requests; affiliated users are detached.

    Refused while a loan against the laboratory or its equipment still holds stock.
    """
    lab = get_laboratory(db, actor, laboratory_id)
    authorize(actor, Action.delete, Resource.laboratory, lab)
    outstanding = db.query(LoanRequest).join(Equipment, LoanRequest.equipment_id == Equipment.id).filter(
        or_(LoanRequest.laboratory_id == lab.id, Equipment.laboratory_id == lab.id),
        LoanRequest.status.in_([s.value for s in OUTSTANDING_LOAN_STATUSES]),
    ).count()
    if outstanding:
        raise StateConflict("Laboratory has outstanding loans and cannot be deleted.")

    before = _lab_state(lab)
    target_id = lab.id
    for user in list(lab.users):
        user.laboratory_id = None
    db.delete(lab)
    db.flush()
    audit.record(db, actor.id, "laboratory_deleted", "laboratory", target_id, before, None, meta)
    log.info("laboratory_deleted", laboratory_id=str(target_id))


# ---------- equipment ----------

def _equipment_state(equipment: Equipment) -> Dict[str, Any]:
    return audit.snapshot(equipment, *EQUIPMENT_FIELDS)


def _check_equipment_code(db: Session, code: str, exclude: Optional[uuid.UUID] = None) -> None:
    query = db.query(Equipment).filter(Equipment.code == code)
    if exclude:
        query = query.filter(Equipment.id != exclude)
    if query.first():
        raise ValidationError("code", "Equipment code is already in use.")


def _load_equipment(db: Session, equipment_id: uuid.UUID) -> Equipment:
    equipment = db.get(Equipment, equipment_id)
    if not equipment:
        raise NotFound("Equipment")
    return equipment


def get_equipment(db: Session, actor: Actor, equipment_id: uuid.UUID) -> Equipment:
    equipment = _load_equipment(db, equipment_id)
    authorize(actor, Action.view, Resource.equipment, equipment)
    return equipment


def list_equipment(
    db: Session,
    actor: Actor,
    laboratory_id: Optional[uuid.UUID] = None,
    status: Optional[EquipmentStatus] = None,
    q: Optional[str] = None,
    available_only: bool = False,
    page: int = 1,
    limit: int = 10,
    serialize=None,
) -> Dict[str, Any]:
    authorize(actor, Action.list, Resource.equipment)
    query = scope_equipment(db.query(Equipment), actor)
    if laboratory_id:
        query = query.filter(Equipment.laboratory_id == laboratory_id)
    if status:
        query = query.filter(Equipment.status == EquipmentStatus(status).value)
    if available_only:
        query = query.filter(Equipment.available_quantity > 0, Equipment.status == EquipmentStatus.active.value)
    if q:
        query = query.filter(or_(
            Equipment.name.ilike(f"%{q}%"),
            Equipment.code.ilike(f"%{q}%"),
            Equipment.brand.ilike(f"%{q}%"),
        ))
    return paginate(query.order_by(Equipment.name.asc()), page, limit, serialize)


def create_equipment(db: Session, actor: Actor, data: Dict[str, Any], meta: RequestMeta = NO_META) -> Equipment:
    data = _enum_values(data)
    if actor.is_lab_assistant and not data.get("laboratory_id"):
        data["laboratory_id"] = actor.laboratory_id
    authorize(actor, Action.create, Resource.equipment, Equipment(laboratory_id=data.get("laboratory_id")))

    if not data.get("laboratory_id") or not db.get(Laboratory, data["laboratory_id"]):
        raise ValidationError("laboratory_id", "Selected laboratory does not exist.")
    _check_equipment_code(db, data["code"])

    total = data.get("total_quantity", 1)
    if total is None or total < 0:
        raise ValidationError("total_quantity", "Total quantity cannot be negative.")
    if data.get("available_quantity") is None:
        data["available_quantity"] = total
    if not 0 <= data["available_quantity"] <= total:
        raise ValidationError("available_quantity", "Available quantity must be between 0 and the total quantity.")

    equipment = Equipment(**data)
    db.add(equipment)
    db.flush()
    audit.record(db, actor.id, "equipment_created", "equipment", equipment.id, None, _equipment_state(equipment), meta)
    return equipment


def update_equipment(
    db: Session, actor: Actor, equipment_id: uuid.UUID, changes: Dict[str, Any], meta: RequestMeta = NO_META
) -> Equipment:
    equipment = _load_equipment(db, equipment_id)
    authorize(actor, Action.update, Resource.equipment, equipment)
    changes = _enum_values(changes)

    if "available_quantity" in changes:
        # Availability moves only with total stock and loan transitions
        raise ValidationError("available_quantity", "Available quantity cannot be set directly.")
    if "laboratory_id" in changes and changes["laboratory_id"] != equipment.laboratory_id:
        # Moving equipment requires authority over the destination as well
        authorize(actor, Action.update, Resource.equipment, Equipment(laboratory_id=changes["laboratory_id"]))
        if not db.get(Laboratory, changes["laboratory_id"]):
            raise ValidationError("laboratory_id", "Selected laboratory does not exist.")
    if "code" in changes:
        _check_equipment_code(db, changes["code"], exclude=equipment.id)

    before = _equipment_state(equipment)
    if "total_quantity" in changes:
        inventory.resize(equipment, changes.pop("total_quantity"))
    for key, value in changes.items():
        setattr(equipment, key, value)
    equipment.updated_at = utcnow()
    db.flush()

    old_values, new_values = audit.compute_diff(before, _equipment_state(equipment))
    audit.record(db, actor.id, "equipment_updated", "equipment", equipment.id, old_values, new_values, meta)
    return equipment


def delete_equipment(db: Session, actor: Actor, equipment_id: uuid.UUID, meta: RequestMeta = NO_META) -> None:
    equipment = _load_equipment(db, equipment_id)
    authorize(actor, Action.delete, Resource.equipment, equipment)
    outstanding = db.query(LoanRequest).filter(
        LoanRequest.equipment_id == equipment.id,
        LoanRequest.status.in_([s.value for s in OUTSTANDING_LOAN_STATUSES]),
    ).count()
    if outstanding:
        raise StateConflict("Equipment has outstanding loans and cannot be deleted.")

    before = _equipment_state(equipment)
    target_id = equipment.id
    db.delete(equipment)
    db.flush()
    audit.record(db, actor.id, "equipment_deleted", "equipment", target_id, before, None, meta)
