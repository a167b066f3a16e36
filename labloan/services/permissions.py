"""
Authorization policy.

``can(actor, action, resource, target)`` is a pure decision over the actor's
role, status and laboratory affiliation and the target's state. Every
(resource, action) pair has a defined answer; anything not granted by a rule
below is denied. Route handlers and services call ``authorize`` which raises
``Unauthorized`` on deny.
"""
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Query

from ..errors import Unauthorized
from ..models.models import LoanRequest, User, Equipment, PasswordResetRequest
from ..schemas.enums import Role, UserStatus, LoanStatus


@dataclass(frozen=True)
class Actor:
    """Authenticated caller context passed explicitly into every check."""
    id: uuid.UUID
    role: Role
    status: UserStatus
    laboratory_id: Optional[uuid.UUID] = None

    @classmethod
    def from_user(cls, user: User) -> "Actor":
        return cls(
            id=user.id,
            role=Role(user.role),
            status=UserStatus(user.status),
            laboratory_id=user.laboratory_id,
        )

    @property
    def is_admin(self) -> bool:
        return self.role is Role.admin

    @property
    def is_lab_assistant(self) -> bool:
        return self.role is Role.lab_assistant

    def in_laboratory(self, laboratory_id: Optional[uuid.UUID]) -> bool:
        return self.laboratory_id is not None and laboratory_id == self.laboratory_id


class Resource(str, Enum):
    equipment = "equipment"
    laboratory = "laboratory"
    loan_request = "loan_request"
    user = "user"
    password_reset_request = "password_reset_request"
    audit_log = "audit_log"


class Action(str, Enum):
    view = "view"
    list = "list"
    create = "create"
    update = "update"
    delete = "delete"
    approve = "approve"
    reject = "reject"
    borrow = "borrow"
    return_ = "return"
    mark_overdue = "mark_overdue"
    change_status = "change_status"
    change_role = "change_role"
    assign_laboratory = "assign_laboratory"


# Loan transitions performed by laboratory staff, keyed by target status
LOAN_TRANSITION_ACTIONS: Dict[LoanStatus, Action] = {
    LoanStatus.approved: Action.approve,
    LoanStatus.rejected: Action.reject,
    LoanStatus.borrowed: Action.borrow,
    LoanStatus.returned: Action.return_,
    LoanStatus.overdue: Action.mark_overdue,
}

_CRUD_WRITE = frozenset({Action.create, Action.update, Action.delete})


def _equipment_rule(actor: Actor, action: Action, target: Any) -> bool:
    if action in (Action.view, Action.list):
        return True
    if action in _CRUD_WRITE:
        if actor.is_admin:
            return True
        if actor.is_lab_assistant and target is not None:
            return actor.in_laboratory(target.laboratory_id)
    return False


def _laboratory_rule(actor: Actor, action: Action, target: Any) -> bool:
    return actor.is_admin and action in (Action.view, Action.list, *_CRUD_WRITE)


def _loan_request_rule(actor: Actor, action: Action, target: Any) -> bool:
    if action in (Action.create, Action.list):
        return True
    if target is None:
        return False
    is_requester = target.user_id == actor.id
    same_lab = actor.in_laboratory(target.laboratory_id)
    if action is Action.view:
        return actor.is_admin or is_requester or (
            actor.role in (Role.lab_assistant, Role.kepala_lab) and same_lab
        )
    if action is Action.update:
        # Only the requester edits the request details
        return is_requester
    if action is Action.delete:
        return actor.is_admin or is_requester or (actor.is_lab_assistant and same_lab)
    if action in LOAN_TRANSITION_ACTIONS.values():
        return actor.is_admin or (actor.is_lab_assistant and same_lab)
    return False


def _user_rule(actor: Actor, action: Action, target: Any) -> bool:
    if actor.is_admin:
        if action in (Action.change_status, Action.change_role, Action.delete):
            # No self-lockout
            return target is None or target.id != actor.id
        return action in (
            Action.view, Action.list, Action.create, Action.update, Action.assign_laboratory,
        )
    if action is Action.list:
        return actor.is_lab_assistant
    if target is None:
        return False
    is_self = target.id == actor.id
    if action is Action.view and is_self:
        return True
    if action is Action.update and is_self:
        return True
    if not actor.is_lab_assistant:
        return False
    # Lab assistants manage students of their own laboratory only
    same_lab = actor.in_laboratory(target.laboratory_id)
    is_student = target.role == Role.student.value
    if action is Action.view:
        return same_lab or (is_student and target.laboratory_id is None)
    if action in (Action.create, Action.update, Action.delete):
        return is_student and same_lab and not is_self
    if action is Action.change_status:
        return is_student and not is_self and (same_lab or target.laboratory_id is None)
    return False


def _password_reset_rule(actor: Actor, action: Action, target: Any) -> bool:
    if action is Action.list:
        return actor.is_admin or actor.is_lab_assistant
    if action not in (Action.view, Action.approve, Action.reject):
        return False
    if actor.is_admin:
        return True
    if actor.is_lab_assistant and target is not None:
        return actor.in_laboratory(target.user.laboratory_id)
    return False


def _audit_log_rule(actor: Actor, action: Action, target: Any) -> bool:
    return actor.is_admin and action in (Action.view, Action.list)


_RULES: Dict[Resource, Callable[[Actor, Action, Any], bool]] = {
    Resource.equipment: _equipment_rule,
    Resource.laboratory: _laboratory_rule,
    Resource.loan_request: _loan_request_rule,
    Resource.user: _user_rule,
    Resource.password_reset_request: _password_reset_rule,
    Resource.audit_log: _audit_log_rule,
}


def can(actor: Optional[Actor], action: Action, resource: Resource, target: Any = None) -> bool:
    """Return True if ``actor`` may perform ``action`` on ``resource``/``target``."""
    # Anonymous help requests are how a locked-out user asks for a reset
    if resource is Resource.password_reset_request and action is Action.create:
        return True
    if actor is None or actor.status is not UserStatus.active:
        return False
    rule = _RULES.get(resource)
    if rule is None:
        return False
    return bool(rule(actor, action, target))


def authorize(actor: Optional[Actor], action: Action, resource: Resource, target: Any = None) -> None:
    if not can(actor, action, resource, target):
        raise Unauthorized()


def visible_laboratory_ids(actor: Actor) -> Optional[List[uuid.UUID]]:
    """Laboratories whose data the actor may browse; None means all."""
    if actor.is_admin:
        return None
    if actor.role in (Role.lab_assistant, Role.kepala_lab) and actor.laboratory_id:
        return [actor.laboratory_id]
    return []


# ---------- query scoping ----------

def scope_loan_requests(query: Query, actor: Actor) -> Query:
    labs = visible_laboratory_ids(actor)
    if labs is None:
        return query
    if labs:
        return query.filter(or_(LoanRequest.laboratory_id.in_(labs), LoanRequest.user_id == actor.id))
    return query.filter(LoanRequest.user_id == actor.id)


def scope_equipment(query: Query, actor: Actor) -> Query:
    # Lab assistants work within their own inventory; everyone else browses all
    if actor.is_lab_assistant:
        return query.filter(Equipment.laboratory_id == actor.laboratory_id)
    return query


def scope_users(query: Query, actor: Actor) -> Query:
    if actor.is_admin:
        return query
    return query.filter(or_(User.laboratory_id == actor.laboratory_id, User.id == actor.id))


def scope_password_resets(query: Query, actor: Actor) -> Query:
    if actor.is_admin:
        return query
    return query.join(PasswordResetRequest.user).filter(User.laboratory_id == actor.laboratory_id)
