"""
Authorization policy tests: (role, affiliation, resource state) -> allow/deny.
"""
import uuid
from types import SimpleNamespace

import pytest

from labloan.errors import Unauthorized
from labloan.schemas.enums import Role, UserStatus
from labloan.services.permissions import (
    Actor,
    Action,
    Resource,
    can,
    authorize,
    visible_laboratory_ids,
)

LAB_X = uuid.uuid4()
LAB_Y = uuid.uuid4()


def make_actor(role: Role, lab=None, status: UserStatus = UserStatus.active) -> Actor:
    return Actor(id=uuid.uuid4(), role=role, status=status, laboratory_id=lab)


ADMIN = make_actor(Role.admin)
ASSISTANT_X = make_actor(Role.lab_assistant, LAB_X)
HEAD_X = make_actor(Role.kepala_lab, LAB_X)
STUDENT = make_actor(Role.student)
OTHER_STUDENT = make_actor(Role.student)
LECTURER = make_actor(Role.dosen)


def equipment_in(lab):
    return SimpleNamespace(laboratory_id=lab)


def loan(owner: Actor, lab=LAB_X):
    return SimpleNamespace(user_id=owner.id, laboratory_id=lab)


def user_target(role: str, lab=None, status: str = 'active', id=None):
    return SimpleNamespace(id=id or uuid.uuid4(), role=role, laboratory_id=lab, status=status)


def reset_for(lab):
    return SimpleNamespace(user=SimpleNamespace(laboratory_id=lab))


class TestEquipmentRules:
    """Equipment: admin full, lab assistant own lab, others read-only"""

    @pytest.mark.parametrize('actor', [ADMIN, ASSISTANT_X, HEAD_X, STUDENT, LECTURER])
    def test_everyone_can_view(self, actor):
        assert can(actor, Action.view, Resource.equipment, equipment_in(LAB_Y))
        assert can(actor, Action.list, Resource.equipment)

    @pytest.mark.parametrize('action', [Action.create, Action.update, Action.delete])
    @pytest.mark.parametrize('actor,lab,expected', [
        (ADMIN, LAB_X, True),
        (ADMIN, LAB_Y, True),
        (ASSISTANT_X, LAB_X, True),
        (ASSISTANT_X, LAB_Y, False),
        (HEAD_X, LAB_X, False),
        (STUDENT, LAB_X, False),
        (LECTURER, LAB_X, False),
    ])
    def test_mutations(self, action, actor, lab, expected):
        assert can(actor, action, Resource.equipment, equipment_in(lab)) is expected

    def test_assistant_without_target_is_denied(self):
        assert not can(ASSISTANT_X, Action.create, Resource.equipment)


class TestLaboratoryRules:
    @pytest.mark.parametrize('action', [Action.view, Action.list, Action.create, Action.update, Action.delete])
    def test_admin_only(self, action):
        assert can(ADMIN, action, Resource.laboratory)
        for actor in (ASSISTANT_X, HEAD_X, STUDENT, LECTURER):
            assert not can(actor, action, Resource.laboratory)


class TestLoanRequestRules:
    @pytest.mark.parametrize('actor', [ADMIN, ASSISTANT_X, HEAD_X, STUDENT, LECTURER])
    def test_any_active_actor_can_create(self, actor):
        assert can(actor, Action.create, Resource.loan_request)

    @pytest.mark.parametrize('actor,target,expected', [
        (ADMIN, loan(STUDENT, LAB_Y), True),
        (STUDENT, loan(STUDENT), True),
        (OTHER_STUDENT, loan(STUDENT), False),
        (ASSISTANT_X, loan(STUDENT, LAB_X), True),
        (ASSISTANT_X, loan(STUDENT, LAB_Y), False),
        (HEAD_X, loan(STUDENT, LAB_X), True),
        (HEAD_X, loan(STUDENT, LAB_Y), False),
        (LECTURER, loan(STUDENT), False),
    ])
    def test_view(self, actor, target, expected):
        assert can(actor, Action.view, Resource.loan_request, target) is expected

    def test_only_requester_edits(self):
        target = loan(STUDENT)
        assert can(STUDENT, Action.update, Resource.loan_request, target)
        assert not can(OTHER_STUDENT, Action.update, Resource.loan_request, target)
        assert not can(ASSISTANT_X, Action.update, Resource.loan_request, target)
        assert not can(ADMIN, Action.update, Resource.loan_request, target)

    @pytest.mark.parametrize('action', [
        Action.approve, Action.reject, Action.borrow, Action.return_, Action.mark_overdue,
    ])
    @pytest.mark.parametrize('actor,lab,expected', [
        (ADMIN, LAB_Y, True),
        (ASSISTANT_X, LAB_X, True),
        (ASSISTANT_X, LAB_Y, False),
        (HEAD_X, LAB_X, False),
        (STUDENT, LAB_X, False),
    ])
    def test_processing(self, action, actor, lab, expected):
        assert can(actor, action, Resource.loan_request, loan(STUDENT, lab)) is expected

    def test_requester_cannot_approve_own_request(self):
        assert not can(STUDENT, Action.approve, Resource.loan_request, loan(STUDENT))

    @pytest.mark.parametrize('actor,lab,expected', [
        (STUDENT, LAB_X, True),
        (OTHER_STUDENT, LAB_X, False),
        (ASSISTANT_X, LAB_X, True),
        (ASSISTANT_X, LAB_Y, False),
        (ADMIN, LAB_Y, True),
    ])
    def test_delete(self, actor, lab, expected):
        assert can(actor, Action.delete, Resource.loan_request, loan(STUDENT, lab)) is expected


class TestUserRules:
    def test_admin_manages_everyone_but_cannot_lock_out_self(self):
        other = user_target('lab_assistant', LAB_Y)
        myself = user_target('admin', id=ADMIN.id)
        for action in (Action.view, Action.update, Action.change_role, Action.assign_laboratory,
                       Action.change_status, Action.delete):
            assert can(ADMIN, action, Resource.user, other)
        assert can(ADMIN, Action.update, Resource.user, myself)
        assert not can(ADMIN, Action.change_status, Resource.user, myself)
        assert not can(ADMIN, Action.delete, Resource.user, myself)
        assert not can(ADMIN, Action.change_role, Resource.user, myself)

    @pytest.mark.parametrize('action,target,expected', [
        (Action.view, user_target('student', LAB_X), True),
        (Action.view, user_target('student', LAB_Y), False),
        (Action.view, user_target('student', None, 'pending_verification'), True),
        (Action.update, user_target('student', LAB_X), True),
        (Action.update, user_target('lab_assistant', LAB_X), False),
        (Action.delete, user_target('student', LAB_X), True),
        (Action.delete, user_target('student', LAB_Y), False),
        (Action.change_status, user_target('student', None, 'pending_verification'), True),
        (Action.change_status, user_target('student', LAB_Y), False),
        (Action.change_status, user_target('kepala_lab', LAB_X), False),
        (Action.change_role, user_target('student', LAB_X), False),
        (Action.assign_laboratory, user_target('student', LAB_X), False),
        (Action.create, user_target('student', LAB_X), True),
        (Action.create, user_target('lab_assistant', LAB_X), False),
    ])
    def test_lab_assistant_scope(self, action, target, expected):
        assert can(ASSISTANT_X, action, Resource.user, target) is expected

    def test_self_service(self):
        myself = user_target('student', id=STUDENT.id)
        assert can(STUDENT, Action.view, Resource.user, myself)
        assert can(STUDENT, Action.update, Resource.user, myself)
        assert not can(STUDENT, Action.change_role, Resource.user, myself)
        assert not can(STUDENT, Action.assign_laboratory, Resource.user, myself)
        assert not can(STUDENT, Action.change_status, Resource.user, myself)
        assert not can(STUDENT, Action.view, Resource.user, user_target('student'))

    def test_assistant_cannot_change_own_status(self):
        myself = user_target('lab_assistant', LAB_X, id=ASSISTANT_X.id)
        assert not can(ASSISTANT_X, Action.change_status, Resource.user, myself)


class TestPasswordResetRules:
    def test_creation_is_open_to_anonymous_callers(self):
        assert can(None, Action.create, Resource.password_reset_request)

    @pytest.mark.parametrize('action', [Action.view, Action.approve, Action.reject])
    @pytest.mark.parametrize('actor,lab,expected', [
        (ADMIN, LAB_Y, True),
        (ADMIN, None, True),
        (ASSISTANT_X, LAB_X, True),
        (ASSISTANT_X, LAB_Y, False),
        (ASSISTANT_X, None, False),
        (HEAD_X, LAB_X, False),
        (STUDENT, LAB_X, False),
    ])
    def test_processing_scope(self, action, actor, lab, expected):
        assert can(actor, action, Resource.password_reset_request, reset_for(lab)) is expected


class TestDefaults:
    @pytest.mark.parametrize('resource', list(Resource))
    @pytest.mark.parametrize('status', [UserStatus.inactive, UserStatus.pending_verification])
    def test_non_active_actor_denied_everything(self, resource, status):
        actor = make_actor(Role.admin, status=status)
        for action in Action:
            if resource is Resource.password_reset_request and action is Action.create:
                continue
            assert not can(actor, action, resource, SimpleNamespace(
                id=uuid.uuid4(), user_id=uuid.uuid4(), laboratory_id=None, role='student',
                user=SimpleNamespace(laboratory_id=None),
            ))

    def test_anonymous_denied_everything_else(self):
        assert not can(None, Action.view, Resource.equipment)
        assert not can(None, Action.approve, Resource.password_reset_request, reset_for(LAB_X))

    def test_audit_log_admin_only(self):
        assert can(ADMIN, Action.list, Resource.audit_log)
        assert not can(ASSISTANT_X, Action.list, Resource.audit_log)
        assert not can(ADMIN, Action.delete, Resource.audit_log)

    def test_authorize_raises_unauthorized(self):
        with pytest.raises(Unauthorized):
            authorize(STUDENT, Action.delete, Resource.laboratory)

    def test_visible_laboratories(self):
        assert visible_laboratory_ids(ADMIN) is None
        assert visible_laboratory_ids(ASSISTANT_X) == [LAB_X]
        assert visible_laboratory_ids(HEAD_X) == [LAB_X]
        assert visible_laboratory_ids(STUDENT) == []
