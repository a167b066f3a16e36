"""
Account lifecycle: registration, sign-in, password changes, user management
and the staff-approved password reset flow.
"""
import secrets
import string
import uuid
from datetime import datetime, timedelta
from typing import Optional, Dict, Any, Tuple, List

import structlog
from sqlalchemy import or_
from sqlalchemy.orm import Session, joinedload

from ..auth.security import (
    get_password_hash,
    verify_password,
    validate_password_strength,
    create_access_token,
)
from ..config import settings
from ..errors import (
    ValidationError,
    NotFound,
    StateConflict,
    Unauthorized,
    AuthenticationFailed,
    LoginRefused,
)
from ..models.models import User, Laboratory, LoanRequest, PasswordResetRequest
from ..schemas.enums import Role, UserStatus, PasswordResetStatus, OUTSTANDING_LOAN_STATUSES
from . import audit
from .audit import RequestMeta, NO_META
from .clock import utcnow, as_utc
from .paging import paginate
from .permissions import Actor, Action, Resource, authorize, can, scope_users, scope_password_resets
from .workflow import ACCOUNT_MACHINE, PASSWORD_RESET_MACHINE


log = structlog.get_logger(__name__)

INACTIVE_MESSAGE = "Your account has been deactivated. Please contact an administrator."
PENDING_MESSAGE = "Your account is pending verification. Please wait for an administrator to activate your account."

PROFILE_FIELDS = ("name", "email", "phone", "student_id")


# ---------- helpers ----------

def _normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def _check_email_domain(email: str, role: Role) -> None:
    domain = settings.student_email_domain if role is Role.student else settings.staff_email_domain
    if domain and not email.endswith("@" + domain.lower()):
        raise ValidationError("email", f"Email must use the @{domain} domain.")


def _check_unique(db: Session, email: Optional[str] = None, student_id: Optional[str] = None, exclude: Optional[uuid.UUID] = None) -> None:
    if email:
        query = db.query(User).filter(User.email == email)
        if exclude:
            query = query.filter(User.id != exclude)
        if query.first():
            raise ValidationError("email", "This email is already registered.")
    if student_id:
        query = db.query(User).filter(User.student_id == student_id)
        if exclude:
            query = query.filter(User.id != exclude)
        if query.first():
            raise ValidationError("student_id", "This student ID is already registered.")


def _require_laboratory(db: Session, laboratory_id: Optional[uuid.UUID]) -> None:
    if laboratory_id and not db.get(Laboratory, laboratory_id):
        raise ValidationError("laboratory_id", "Selected laboratory does not exist.")


def _user_state(user: User) -> Dict[str, Any]:
    return audit.snapshot(user, "name", "email", "role", "status", "laboratory_id", "student_id", "phone")


def _load_user(db: Session, user_id: uuid.UUID) -> User:
    user = db.get(User, user_id)
    if not user:
        raise NotFound("User")
    return user


def generate_temporary_password(length: Optional[int] = None) -> str:
    """Random password that passes the strength rules."""
    length = max(8, length or settings.temporary_password_length)
    alphabet = string.ascii_letters + string.digits
    while True:
        candidate = "".join(secrets.choice(alphabet) for _ in range(length))
        if (any(c.islower() for c in candidate)
                and any(c.isupper() for c in candidate)
                and any(c.isdigit() for c in candidate)):
            return candidate


# ---------- self service ----------

def register(
    db: Session,
    name: str,
    email: str,
    password: str,
    student_id: Optional[str] = None,
    phone: Optional[str] = None,
    meta: RequestMeta = NO_META,
) -> User:
    """Self-registration. Accounts start unverified and cannot sign in yet."""
    email = _normalize_email(email)
    _check_email_domain(email, Role.student)
    validate_password_strength(password)
    _check_unique(db, email=email, student_id=student_id)

    user = User(
        name=name.strip(),
        email=email,
        password_hash=get_password_hash(password),
        role=Role.student.value,
        status=UserStatus.pending_verification.value,
        student_id=student_id,
        phone=phone,
    )
    db.add(user)
    db.flush()

    audit.record(db, user.id, "user_self_registered", "user", user.id, None, _user_state(user), meta)
    log.info("user_registered", user_id=str(user.id))
    return user


def login(db: Session, email: str, password: str, meta: RequestMeta = NO_META) -> Tuple[User, str]:
    """
    Verify credentials and issue an access token.

    Raises:
        AuthenticationFailed: unknown email or wrong password
        LoginRefused: correct credentials on an inactive or unverified account;
            no token is issued
    """
    user = db.query(User).filter(User.email == _normalize_email(email)).first()
    if not user or not verify_password(password, user.password_hash):
        log.info("login_failed")
        raise AuthenticationFailed()

    if user.status == UserStatus.inactive.value:
        log.info("login_refused", user_id=str(user.id), reason="inactive")
        raise LoginRefused(INACTIVE_MESSAGE, code="ACCOUNT_INACTIVE")
    if user.status == UserStatus.pending_verification.value:
        log.info("login_refused", user_id=str(user.id), reason="pending_verification")
        raise LoginRefused(PENDING_MESSAGE, code="ACCOUNT_PENDING_VERIFICATION")

    user.last_login_at = utcnow()
    db.flush()
    audit.record(
        db, user.id, "user_logged_in", "user", user.id, None,
        {"must_change_password": bool(user.force_password_change_on_next_login)}, meta,
    )
    return user, create_access_token(user)


def logout(db: Session, user: User, meta: RequestMeta = NO_META) -> None:
    audit.record(db, user.id, "user_logged_out", "user", user.id, None, None, meta)


def change_password(
    db: Session,
    user: User,
    new_password: str,
    current_password: Optional[str] = None,
    meta: RequestMeta = NO_META,
) -> User:
    forced = bool(user.force_password_change_on_next_login)
    if not forced or current_password is not None:
        if not verify_password(current_password or "", user.password_hash):
            raise ValidationError("current_password", "The current password is incorrect.")
    validate_password_strength(new_password, field="new_password")
    if verify_password(new_password, user.password_hash):
        raise ValidationError("new_password", "The new password must differ from the current one.")

    user.password_hash = get_password_hash(new_password)
    user.force_password_change_on_next_login = False
    user.updated_at = utcnow()
    db.flush()

    action = "forced_password_changed" if forced else "password_changed"
    audit.record(
        db, user.id, action, "user", user.id,
        {"force_password_change": forced}, {"force_password_change": False}, meta,
    )
    return user


# ---------- user management ----------

def create_user(
    db: Session,
    actor: Actor,
    name: str,
    email: str,
    password: str,
    role: Role = Role.student,
    laboratory_id: Optional[uuid.UUID] = None,
    student_id: Optional[str] = None,
    phone: Optional[str] = None,
    meta: RequestMeta = NO_META,
) -> User:
    """Staff-created accounts are active immediately."""
    role = Role(role)
    if actor.is_lab_assistant:
        # Students created by an assistant join the assistant's laboratory
        laboratory_id = actor.laboratory_id
    authorize(actor, Action.create, Resource.user, User(role=role.value, laboratory_id=laboratory_id))

    if role in (Role.lab_assistant, Role.kepala_lab) and not laboratory_id:
        raise ValidationError("laboratory_id", "Laboratory is required for this role.")
    _require_laboratory(db, laboratory_id)
    email = _normalize_email(email)
    _check_email_domain(email, role)
    validate_password_strength(password)
    _check_unique(db, email=email, student_id=student_id)

    user = User(
        name=name.strip(),
        email=email,
        password_hash=get_password_hash(password),
        role=role.value,
        status=UserStatus.active.value,
        laboratory_id=laboratory_id,
        student_id=student_id,
        phone=phone,
    )
    db.add(user)
    db.flush()

    audit.record(db, actor.id, "user_created", "user", user.id, None, _user_state(user), meta)
    return user


def get_user(db: Session, actor: Actor, user_id: uuid.UUID) -> User:
    user = _load_user(db, user_id)
    if not can(actor, Action.view, Resource.user, user):
        raise NotFound("User")
    return user


def list_users(
    db: Session,
    actor: Actor,
    role: Optional[Role] = None,
    status: Optional[UserStatus] = None,
    q: Optional[str] = None,
    page: int = 1,
    limit: int = 10,
    serialize=None,
) -> Dict[str, Any]:
    authorize(actor, Action.list, Resource.user)
    query = scope_users(db.query(User), actor)
    if role:
        query = query.filter(User.role == Role(role).value)
    if status:
        query = query.filter(User.status == UserStatus(status).value)
    if q:
        query = query.filter(or_(User.name.ilike(f"%{q}%"), User.email.ilike(f"%{q}%"), User.student_id.ilike(f"%{q}%")))
    return paginate(query.order_by(User.created_at.desc()), page, limit, serialize)


def list_pending_verification(db: Session, actor: Actor) -> List[User]:
    authorize(actor, Action.list, Resource.user)
    query = db.query(User).filter(User.status == UserStatus.pending_verification.value)
    if not actor.is_admin:
        query = query.filter(or_(User.laboratory_id == actor.laboratory_id, User.laboratory_id.is_(None)))
    return query.order_by(User.created_at.asc()).all()


def update_user(
    db: Session,
    actor: Actor,
    user_id: uuid.UUID,
    changes: Dict[str, Any],
    meta: RequestMeta = NO_META,
) -> User:
    user = _load_user(db, user_id)
    authorize(actor, Action.update, Resource.user, user)
    changes = dict(changes)
    for required in ("name", "email", "role"):
        if required in changes and changes[required] is None:
            changes.pop(required)
    if "role" in changes:
        authorize(actor, Action.change_role, Resource.user, user)
    if "laboratory_id" in changes:
        authorize(actor, Action.assign_laboratory, Resource.user, user)

    unknown = set(changes) - set(PROFILE_FIELDS) - {"role", "laboratory_id"}
    if unknown:
        raise ValidationError(sorted(unknown)[0], "This field cannot be changed.")

    role = Role(changes.get("role", user.role))
    if "email" in changes:
        changes["email"] = _normalize_email(changes["email"])
    if "email" in changes or "role" in changes:
        _check_email_domain(changes.get("email", user.email), role)
    _check_unique(db, email=changes.get("email"), student_id=changes.get("student_id"), exclude=user.id)
    if "laboratory_id" in changes:
        _require_laboratory(db, changes["laboratory_id"])
    if "role" in changes:
        changes["role"] = role.value

    lab = changes.get("laboratory_id", user.laboratory_id)
    if role in (Role.lab_assistant, Role.kepala_lab) and not lab:
        raise ValidationError("laboratory_id", "Laboratory is required for this role.")

    before = _user_state(user)
    for key, value in changes.items():
        setattr(user, key, value)
    user.updated_at = utcnow()
    db.flush()

    old_values, new_values = audit.compute_diff(before, _user_state(user))
    audit.record(db, actor.id, "user_updated", "user", user.id, old_values, new_values, meta)
    return user


def set_user_status(
    db: Session,
    actor: Actor,
    user_id: uuid.UUID,
    status: UserStatus,
    laboratory_id: Optional[uuid.UUID] = None,
    meta: RequestMeta = NO_META,
) -> User:
    """Activate or deactivate an account, optionally assigning a laboratory on activation."""
    status = UserStatus(status)
    user = _load_user(db, user_id)
    authorize(actor, Action.change_status, Resource.user, user)
    ACCOUNT_MACHINE.check(user.status, status)

    old_values = {"status": user.status, "laboratory_id": user.laboratory_id}
    new_values: Dict[str, Any] = {"status": status.value}

    if status is UserStatus.active:
        if laboratory_id and actor.is_lab_assistant and laboratory_id != actor.laboratory_id:
            raise Unauthorized()
        if not laboratory_id and actor.is_lab_assistant and user.laboratory_id is None:
            laboratory_id = actor.laboratory_id
        if laboratory_id:
            _require_laboratory(db, laboratory_id)
            user.laboratory_id = laboratory_id
            new_values["laboratory_id"] = laboratory_id

    user.status = status.value
    user.updated_at = utcnow()
    db.flush()

    audit.record(db, actor.id, "user_status_updated", "user", user.id, old_values, new_values, meta)
    log.info("user_status_updated", user_id=str(user.id), status=status.value)
    return user


def delete_user(db: Session, actor: Actor, user_id: uuid.UUID, meta: RequestMeta = NO_META) -> None:
    user = _load_user(db, user_id)
    authorize(actor, Action.delete, Resource.user, user)
    outstanding = db.query(LoanRequest).filter(
        LoanRequest.user_id == user.id,
        LoanRequest.status.in_([s.value for s in OUTSTANDING_LOAN_STATUSES]),
    ).count()
    if outstanding:
        raise StateConflict("User still has equipment on loan.")

    before = _user_state(user)
    target_id = user.id
    db.delete(user)
    db.flush()
    audit.record(db, actor.id, "user_deleted", "user", target_id, before, None, meta)


# ---------- password reset requests ----------

def _load_reset(db: Session, reset_id: uuid.UUID) -> PasswordResetRequest:
    reset = (
        db.query(PasswordResetRequest)
        .options(joinedload(PasswordResetRequest.user))
        .filter(PasswordResetRequest.id == reset_id)
        .first()
    )
    if not reset:
        raise NotFound("Password reset request")
    return reset


def is_expired(reset: PasswordResetRequest, now: Optional[datetime] = None) -> bool:
    return as_utc(reset.expires_at) <= (now or utcnow())


def create_password_reset_request(
    db: Session,
    email: str,
    requester_notes: Optional[str] = None,
    meta: RequestMeta = NO_META,
    now: Optional[datetime] = None,
) -> PasswordResetRequest:
    """Unauthenticated: the way a locked-out user asks staff for a new password."""
    now = now or utcnow()
    authorize(None, Action.create, Resource.password_reset_request)
    user = db.query(User).filter(User.email == _normalize_email(email)).first()
    if not user or user.status == UserStatus.inactive.value:
        raise ValidationError("email", "No active account is registered with this email.")

    pending = db.query(PasswordResetRequest).filter(
        PasswordResetRequest.user_id == user.id,
        PasswordResetRequest.status == PasswordResetStatus.pending.value,
    ).all()
    if any(not is_expired(r, now) for r in pending):
        raise ValidationError("email", "You already have a pending password reset request.")

    reset = PasswordResetRequest(
        user_id=user.id,
        token=secrets.token_urlsafe(32),
        status=PasswordResetStatus.pending.value,
        requester_notes=requester_notes,
        expires_at=now + timedelta(days=settings.password_reset_ttl_days),
        created_at=now,
    )
    db.add(reset)
    db.flush()

    audit.record(
        db, user.id, "password_reset_request_created", "password_reset_request", reset.id,
        None, {"requester_notes": requester_notes, "expires_at": reset.expires_at}, meta,
    )
    log.info("password_reset_requested", user_id=str(user.id), reset_id=str(reset.id))
    return reset


def get_password_reset_request(db: Session, actor: Actor, reset_id: uuid.UUID) -> PasswordResetRequest:
    reset = _load_reset(db, reset_id)
    if not can(actor, Action.view, Resource.password_reset_request, reset):
        raise NotFound("Password reset request")
    return reset


def list_password_reset_requests(
    db: Session,
    actor: Actor,
    status: Optional[PasswordResetStatus] = None,
    page: int = 1,
    limit: int = 10,
    serialize=None,
) -> Dict[str, Any]:
    authorize(actor, Action.list, Resource.password_reset_request)
    query = scope_password_resets(db.query(PasswordResetRequest), actor)
    if status:
        query = query.filter(PasswordResetRequest.status == PasswordResetStatus(status).value)
    return paginate(query.order_by(PasswordResetRequest.created_at.desc()), page, limit, serialize)


def _check_processable(reset: PasswordResetRequest, requested: PasswordResetStatus, now: datetime) -> None:
    PASSWORD_RESET_MACHINE.check(reset.status, requested)
    if is_expired(reset, now):
        raise StateConflict("This password reset request has expired.", current=reset.status, requested=requested.value)


def approve_password_reset(
    db: Session,
    actor: Actor,
    reset_id: uuid.UUID,
    approval_notes: Optional[str] = None,
    meta: RequestMeta = NO_META,
    now: Optional[datetime] = None,
) -> Tuple[PasswordResetRequest, str]:
    """
    Approve a reset, issue a temporary password and force a change on next login.

    Returns the request and the clear-text temporary password. The password is
    handed back exactly once; only its hash is stored.
    """
    now = now or utcnow()
    reset = _load_reset(db, reset_id)
    authorize(actor, Action.approve, Resource.password_reset_request, reset)
    _check_processable(reset, PasswordResetStatus.approved, now)

    old_values = {"status": reset.status, "approver_id": reset.approver_id}
    temporary_password = generate_temporary_password()
    temporary_hash = get_password_hash(temporary_password)

    reset.status = PasswordResetStatus.approved.value
    reset.approver_id = actor.id
    reset.approval_notes = approval_notes
    reset.temporary_password = temporary_hash
    # Issuing the temporary password completes the request
    PASSWORD_RESET_MACHINE.check(reset.status, PasswordResetStatus.completed)
    reset.status = PasswordResetStatus.completed.value
    reset.updated_at = now

    user = reset.user
    user.password_hash = temporary_hash
    user.force_password_change_on_next_login = True
    user.updated_at = now
    db.flush()

    audit.record(
        db, actor.id, "password_reset_approved", "password_reset_request", reset.id, old_values,
        {"status": reset.status, "approver_id": actor.id, "approval_notes": approval_notes, "temporary_password_set": True},
        meta,
    )
    audit.record(
        db, actor.id, "temporary_password_set", "user", user.id,
        {"force_password_change": False}, {"force_password_change": True}, meta,
    )
    log.info("password_reset_approved", reset_id=str(reset.id), user_id=str(user.id))
    return reset, temporary_password


def reject_password_reset(
    db: Session,
    actor: Actor,
    reset_id: uuid.UUID,
    approval_notes: Optional[str] = None,
    meta: RequestMeta = NO_META,
    now: Optional[datetime] = None,
) -> PasswordResetRequest:
    now = now or utcnow()
    reset = _load_reset(db, reset_id)
    authorize(actor, Action.reject, Resource.password_reset_request, reset)
    _check_processable(reset, PasswordResetStatus.rejected, now)

    old_values = {"status": reset.status, "approver_id": reset.approver_id}
    reset.status = PasswordResetStatus.rejected.value
    reset.approver_id = actor.id
    reset.approval_notes = approval_notes
    reset.updated_at = now
    db.flush()

    audit.record(
        db, actor.id, "password_reset_rejected", "password_reset_request", reset.id, old_values,
        {"status": reset.status, "approver_id": actor.id, "approval_notes": approval_notes}, meta,
    )
    log.info("password_reset_rejected", reset_id=str(reset.id))
    return reset
