from enum import Enum


class Role(str, Enum):
    student = "student"
    lab_assistant = "lab_assistant"
    kepala_lab = "kepala_lab"
    dosen = "dosen"
    admin = "admin"


STAFF_ROLES = frozenset({Role.lab_assistant, Role.kepala_lab, Role.dosen, Role.admin})


class UserStatus(str, Enum):
    pending_verification = "pending_verification"
    active = "active"
    inactive = "inactive"


class LaboratoryStatus(str, Enum):
    active = "active"
    inactive = "inactive"


class EquipmentCondition(str, Enum):
    excellent = "excellent"
    good = "good"
    fair = "fair"
    poor = "poor"


class EquipmentStatus(str, Enum):
    active = "active"
    maintenance = "maintenance"
    retired = "retired"


class LoanStatus(str, Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"
    borrowed = "borrowed"
    returned = "returned"
    overdue = "overdue"


# Statuses in which the requested quantity is held out of available stock
OUTSTANDING_LOAN_STATUSES = frozenset({LoanStatus.approved, LoanStatus.borrowed, LoanStatus.overdue})


class PasswordResetStatus(str, Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"
    completed = "completed"
