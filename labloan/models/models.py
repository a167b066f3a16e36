import uuid
from datetime import date, datetime, timezone
from typing import Optional

from sqlalchemy import (
    String,
    DateTime,
    Date,
    Boolean,
    ForeignKey,
    Integer,
    JSON,
    Text,
    Index,
    CheckConstraint,
    Uuid,
)
from sqlalchemy.orm import relationship, Mapped, mapped_column

from ..db import Base


def uuid_pk() -> Mapped[uuid.UUID]:
    return mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SequenceCounter(Base):
    """Holds the last value handed out for a named sequence."""
    __tablename__ = "sequence_counters"

    name: Mapped[str] = mapped_column(String(50), primary_key=True)
    value: Mapped[int] = mapped_column(Integer, default=0, nullable=False)


class Laboratory(Base):
    __tablename__ = "laboratories"

    id: Mapped[uuid.UUID] = uuid_pk()
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    code: Mapped[str] = mapped_column(String(10), unique=True, nullable=False, index=True)  # e.g. LAB001
    description: Mapped[Optional[str]] = mapped_column(Text)
    location: Mapped[Optional[str]] = mapped_column(String(255))
    status: Mapped[str] = mapped_column(String(20), default="active", index=True)  # active|inactive
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, index=True)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    equipment = relationship("Equipment", back_populates="laboratory", cascade="all, delete-orphan")
    loan_requests = relationship("LoanRequest", back_populates="laboratory", cascade="all, delete-orphan")
    # Affiliated users are detached (laboratory_id nulled) when the laboratory goes away
    users = relationship("User", back_populates="laboratory")


class User(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = uuid_pk()
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(String(20), default="student", index=True)  # student|lab_assistant|kepala_lab|dosen|admin
    status: Mapped[str] = mapped_column(String(30), default="pending_verification", index=True)  # pending_verification|active|inactive
    force_password_change_on_next_login: Mapped[bool] = mapped_column(Boolean, default=False)
    laboratory_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("laboratories.id", ondelete="SET NULL"), index=True
    )
    student_id: Mapped[Optional[str]] = mapped_column(String(20), unique=True)  # Student/Staff ID
    phone: Mapped[Optional[str]] = mapped_column(String(20))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    last_login_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    laboratory = relationship("Laboratory", back_populates="users")
    loan_requests = relationship(
        "LoanRequest",
        back_populates="user",
        foreign_keys="LoanRequest.user_id",
        cascade="all, delete-orphan",
    )
    password_reset_requests = relationship(
        "PasswordResetRequest",
        back_populates="user",
        foreign_keys="PasswordResetRequest.user_id",
        cascade="all, delete-orphan",
    )


class Equipment(Base):
    __tablename__ = "equipment"

    id: Mapped[uuid.UUID] = uuid_pk()
    laboratory_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("laboratories.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    code: Mapped[str] = mapped_column(String(20), unique=True, nullable=False, index=True)
    description: Mapped[Optional[str]] = mapped_column(Text)
    brand: Mapped[Optional[str]] = mapped_column(String(255))
    model: Mapped[Optional[str]] = mapped_column(String(255))
    total_quantity: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    available_quantity: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    condition: Mapped[str] = mapped_column(String(20), default="good")  # excellent|good|fair|poor
    status: Mapped[str] = mapped_column(String(20), default="active", index=True)  # active|maintenance|retired
    notes: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, index=True)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    laboratory = relationship("Laboratory", back_populates="equipment")
    loan_requests = relationship("LoanRequest", back_populates="equipment", cascade="all, delete-orphan")

    __table_args__ = (
        CheckConstraint(
            "available_quantity >= 0 AND available_quantity <= total_quantity",
            name="ck_equipment_available_quantity",
        ),
        Index('idx_equipment_lab_status', 'laboratory_id', 'status'),
    )


class LoanRequest(Base):
    __tablename__ = "loan_requests"

    id: Mapped[uuid.UUID] = uuid_pk()
    request_number: Mapped[str] = mapped_column(String(20), unique=True, nullable=False, index=True)  # REQ000001
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    equipment_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("equipment.id", ondelete="CASCADE"), nullable=False, index=True
    )
    # Snapshot of equipment.laboratory_id at submission: the approving authority
    laboratory_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("laboratories.id", ondelete="CASCADE"), nullable=False, index=True
    )
    quantity_requested: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    requested_start_date: Mapped[date] = mapped_column(Date, nullable=False)
    requested_end_date: Mapped[date] = mapped_column(Date, nullable=False)
    purpose: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="pending", index=True)  # pending|approved|rejected|borrowed|returned|overdue
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text)
    approved_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL")
    )
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    borrowed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    returned_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    notes: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, index=True)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    user = relationship("User", back_populates="loan_requests", foreign_keys=[user_id])
    approver = relationship("User", foreign_keys=[approved_by])
    equipment = relationship("Equipment", back_populates="loan_requests")
    laboratory = relationship("Laboratory", back_populates="loan_requests")

    __table_args__ = (
        Index('idx_loan_lab_status', 'laboratory_id', 'status'),
        Index('idx_loan_user_status', 'user_id', 'status'),
        Index('idx_loan_status_start', 'status', 'requested_start_date'),
    )


class PasswordResetRequest(Base):
    __tablename__ = "password_reset_requests"

    id: Mapped[uuid.UUID] = uuid_pk()
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    token: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(20), default="pending", index=True)  # pending|approved|rejected|completed
    requester_notes: Mapped[Optional[str]] = mapped_column(Text)
    approver_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL")
    )
    approval_notes: Mapped[Optional[str]] = mapped_column(Text)
    temporary_password: Mapped[Optional[str]] = mapped_column(String(255))  # hashed, never clear text
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, index=True)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    user = relationship("User", back_populates="password_reset_requests", foreign_keys=[user_id])
    approver = relationship("User", foreign_keys=[approver_id])

    __table_args__ = (
        Index('idx_reset_user_status', 'user_id', 'status'),
    )


class AuditLog(Base):
    """Append-only audit log for account and loan actions"""
    __tablename__ = "audit_logs"

    id: Mapped[uuid.UUID] = uuid_pk()
    # No FK: rows must outlive the users they name
    actor_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), index=True)  # None for system actions
    action: Mapped[str] = mapped_column(String(64), nullable=False, index=True)  # user_logged_in|loan_request_approved|...
    target_type: Mapped[str] = mapped_column(String(50), nullable=False)  # user|loan_request|equipment|laboratory|password_reset_request
    target_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True))
    old_values: Mapped[Optional[dict]] = mapped_column(JSON)
    new_values: Mapped[Optional[dict]] = mapped_column(JSON)
    ip_address: Mapped[Optional[str]] = mapped_column(String(45))
    user_agent: Mapped[Optional[str]] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False, index=True)
    integrity_hash: Mapped[Optional[str]] = mapped_column(String(64))  # SHA256 hash for integrity verification

    __table_args__ = (
        Index('idx_audit_target', 'target_type', 'target_id'),
        Index('idx_audit_actor', 'actor_id', 'created_at'),
    )
