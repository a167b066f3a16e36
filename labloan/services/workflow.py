"""
Status machines for loan requests, accounts and password reset requests.

Each machine is an explicit table of legal (from, to) edges. Anything not in
the table is refused with ``StateConflict`` before any side effect happens.
"""
from enum import Enum
from typing import Dict, FrozenSet, Iterable, Tuple, Type, Union

from ..errors import StateConflict
from ..schemas.enums import LoanStatus, UserStatus, PasswordResetStatus


StatusLike = Union[str, Enum]


def _value(status: StatusLike) -> str:
    return status.value if isinstance(status, Enum) else str(status)


class StateMachine:
    def __init__(self, name: str, states: Type[Enum], edges: Iterable[Tuple[Enum, Enum]]):
        self.name = name
        self.states = states
        self._edges: Dict[str, FrozenSet[str]] = {}
        for source, target in edges:
            current = self._edges.get(source.value, frozenset())
            self._edges[source.value] = current | {target.value}

    def allowed_from(self, status: StatusLike) -> FrozenSet[str]:
        return self._edges.get(_value(status), frozenset())

    def can(self, current: StatusLike, requested: StatusLike) -> bool:
        return _value(requested) in self.allowed_from(current)

    def is_terminal(self, status: StatusLike) -> bool:
        return not self.allowed_from(status)

    def check(self, current: StatusLike, requested: StatusLike) -> None:
        cur, req = _value(current), _value(requested)
        if req not in {s.value for s in self.states}:
            raise StateConflict(f"Unknown {self.name} status '{req}'", current=cur, requested=req)
        if not self.can(cur, req):
            raise StateConflict(
                f"Cannot move {self.name} from '{cur}' to '{req}'",
                current=cur,
                requested=req,
            )


LOAN_REQUEST_MACHINE = StateMachine(
    "loan request",
    LoanStatus,
    [
        (LoanStatus.pending, LoanStatus.approved),
        (LoanStatus.pending, LoanStatus.rejected),
        (LoanStatus.approved, LoanStatus.borrowed),
        (LoanStatus.approved, LoanStatus.overdue),
        (LoanStatus.borrowed, LoanStatus.returned),
        (LoanStatus.borrowed, LoanStatus.overdue),
        (LoanStatus.overdue, LoanStatus.returned),
    ],
)

ACCOUNT_MACHINE = StateMachine(
    "account",
    UserStatus,
    [
        (UserStatus.pending_verification, UserStatus.active),
        (UserStatus.pending_verification, UserStatus.inactive),
        (UserStatus.active, UserStatus.inactive),
        (UserStatus.inactive, UserStatus.active),
    ],
)

PASSWORD_RESET_MACHINE = StateMachine(
    "password reset request",
    PasswordResetStatus,
    [
        (PasswordResetStatus.pending, PasswordResetStatus.approved),
        (PasswordResetStatus.pending, PasswordResetStatus.rejected),
        (PasswordResetStatus.approved, PasswordResetStatus.completed),
    ],
)
