"""
Audit recorder.
Append-only audit log with integrity hashing.

Rows are added to the caller's session and flushed, never committed here:
the audit entry commits or rolls back together with the mutation it describes.
"""
import hashlib
import json
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Dict, Any, Tuple

import structlog
from fastapi import Request
from fastapi.encoders import jsonable_encoder
from sqlalchemy.orm import Session

from ..models.models import AuditLog
from ..config import settings
from .clock import utcnow, as_utc


log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class RequestMeta:
    """Request metadata stored alongside each audit entry."""
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    @classmethod
    def from_request(cls, request: Request) -> "RequestMeta":
        forwarded = request.headers.get("x-forwarded-for")
        ip = forwarded.split(",")[0].strip() if forwarded else (request.client.host if request.client else None)
        agent = request.headers.get("user-agent")
        return cls(ip_address=ip, user_agent=agent[:255] if agent else None)


NO_META = RequestMeta()


def _integrity_secret() -> str:
    return settings.audit_integrity_secret or settings.jwt_secret


def compute_integrity_hash(
    actor_id: Optional[uuid.UUID],
    action: str,
    target_type: str,
    target_id: Optional[uuid.UUID],
    old_values: Optional[Dict[str, Any]],
    new_values: Optional[Dict[str, Any]],
    created_at: datetime,
) -> str:
    canonical_data = {
        "actor_id": str(actor_id) if actor_id else None,
        "action": action,
        "target_type": target_type,
        "target_id": str(target_id) if target_id else None,
        "old_values": old_values,
        "new_values": new_values,
        "created_at": as_utc(created_at).isoformat(),
    }
    # Remove None values and sort keys for consistency
    canonical_data = {k: v for k, v in canonical_data.items() if v is not None}
    canonical_json = json.dumps(canonical_data, sort_keys=True, default=str)
    hash_input = f"{canonical_json}:{_integrity_secret()}"
    return hashlib.sha256(hash_input.encode()).hexdigest()


def record(
    db: Session,
    actor_id: Optional[uuid.UUID],
    action: str,
    target_type: str,
    target_id: Optional[uuid.UUID] = None,
    old_values: Optional[Dict[str, Any]] = None,
    new_values: Optional[Dict[str, Any]] = None,
    meta: RequestMeta = NO_META,
) -> None:
    """
    Append an audit entry to the current transaction.

    Args:
        db: Session of the mutation being audited
        actor_id: User who performed the action (None for system actions)
        action: Event name (user_logged_in|loan_request_approved|...)
        target_type: user|loan_request|equipment|laboratory|password_reset_request
        target_id: Target entity id
        old_values: Snapshot before the change
        new_values: Snapshot after the change
        meta: Client IP and user agent
    """
    created_at = utcnow()
    old_values = jsonable_encoder(old_values) if old_values is not None else None
    new_values = jsonable_encoder(new_values) if new_values is not None else None

    entry = AuditLog(
        actor_id=actor_id,
        action=action,
        target_type=target_type,
        target_id=target_id,
        old_values=old_values,
        new_values=new_values,
        ip_address=meta.ip_address,
        user_agent=meta.user_agent,
        created_at=created_at,
        integrity_hash=compute_integrity_hash(
            actor_id, action, target_type, target_id, old_values, new_values, created_at
        ),
    )
    db.add(entry)
    db.flush()
    log.info("audit_recorded", action=action, target_type=target_type, target_id=str(target_id) if target_id else None)


def verify_integrity(entry: AuditLog) -> bool:
    """Recompute the hash of a stored entry and compare it."""
    expected = compute_integrity_hash(
        entry.actor_id,
        entry.action,
        entry.target_type,
        entry.target_id,
        entry.old_values,
        entry.new_values,
        entry.created_at,
    )
    return entry.integrity_hash == expected


def get_audit_logs(
    db: Session,
    target_type: Optional[str] = None,
    target_id: Optional[uuid.UUID] = None,
    action: Optional[str] = None,
    actor_id: Optional[uuid.UUID] = None,
    limit: int = 100,
    offset: int = 0,
) -> Tuple[list, int]:
    """Filtered audit entries, newest first, with the unpaginated total."""
    query = db.query(AuditLog)

    if target_type:
        query = query.filter(AuditLog.target_type == target_type)
    if target_id:
        query = query.filter(AuditLog.target_id == target_id)
    if action:
        query = query.filter(AuditLog.action == action)
    if actor_id:
        query = query.filter(AuditLog.actor_id == actor_id)

    total = query.count()
    items = query.order_by(AuditLog.created_at.desc()).limit(limit).offset(offset).all()
    return items, total


def compute_diff(before: Dict[str, Any], after: Dict[str, Any]) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    """
    Split two snapshots into (old_values, new_values) for changed fields only.
    """
    old_values: Dict[str, Any] = {}
    new_values: Dict[str, Any] = {}
    for key in set(before.keys()) | set(after.keys()):
        before_val = before.get(key)
        after_val = after.get(key)
        if before_val != after_val:
            old_values[key] = before_val
            new_values[key] = after_val
    return old_values, new_values


def snapshot(obj: Any, *fields: str) -> Dict[str, Any]:
    return {f: getattr(obj, f) for f in fields}
