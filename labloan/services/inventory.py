"""
Inventory ledger.

Stock is held out of ``available_quantity`` when a loan request is approved
and handed back when it is returned. Both operations re-read the equipment row
under ``SELECT ... FOR UPDATE`` (a no-op on SQLite) so concurrent approvals
cannot both pass the availability check.
"""
import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from ..errors import InsufficientInventory, ValidationError
from ..models.models import Equipment
from .clock import utcnow


log = structlog.get_logger(__name__)


def _locked(db: Session, equipment: Equipment) -> Equipment:
    stmt = select(Equipment).where(Equipment.id == equipment.id).with_for_update()
    return db.execute(stmt.execution_options(populate_existing=True)).scalar_one()


def _check_quantity(qty: int) -> None:
    if qty is None or qty < 1:
        raise ValidationError("quantity", "Quantity must be at least 1.")


def ensure_available(equipment: Equipment, qty: int) -> None:
    """Validate a request quantity against current availability without holding stock."""
    _check_quantity(qty)
    if qty > equipment.available_quantity:
        raise InsufficientInventory(available=equipment.available_quantity, requested=qty)


def reserve(db: Session, equipment: Equipment, qty: int) -> Equipment:
    _check_quantity(qty)
    row = _locked(db, equipment)
    if row.available_quantity - qty < 0:
        raise InsufficientInventory(available=row.available_quantity, requested=qty)
    row.available_quantity -= qty
    row.updated_at = utcnow()
    db.flush()
    log.info("inventory_reserved", equipment_id=str(row.id), quantity=qty, available=row.available_quantity)
    return row


def release(db: Session, equipment: Equipment, qty: int) -> Equipment:
    _check_quantity(qty)
    row = _locked(db, equipment)
    if row.available_quantity + qty > row.total_quantity:
        raise InsufficientInventory(available=row.available_quantity, requested=-qty)
    row.available_quantity += qty
    row.updated_at = utcnow()
    db.flush()
    log.info("inventory_released", equipment_id=str(row.id), quantity=qty, available=row.available_quantity)
    return row


def resize(equipment: Equipment, new_total: int) -> None:
    """Change total stock, shifting availability by the same delta."""
    if new_total is None or new_total < 0:
        raise ValidationError("total_quantity", "Total quantity cannot be negative.")
    delta = new_total - equipment.total_quantity
    new_available = equipment.available_quantity + delta
    if new_available < 0:
        # More units are out on loan than the new total allows
        raise InsufficientInventory(available=equipment.available_quantity, requested=-delta)
    equipment.total_quantity = new_total
    equipment.available_quantity = new_available
