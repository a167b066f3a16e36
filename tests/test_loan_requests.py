"""
Loan request lifecycle tests (service layer)
"""
import re
from datetime import date, datetime, timedelta, timezone

import pytest

from conftest import actor_of
from labloan.errors import (
    InsufficientInventory,
    NotFound,
    StateConflict,
    Unauthorized,
    ValidationError,
)
from labloan.models.models import AuditLog, LoanRequest
from labloan.services import loans

TODAY = date(2026, 3, 2)
NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


def submit(db, user, equipment, quantity=1, start=None, end=None, purpose='Spectroscopy lab work'):
    start = start or TODAY + timedelta(days=1)
    return loans.create_loan_request(
        db,
        actor_of(user),
        equipment_id=equipment.id,
        quantity_requested=quantity,
        requested_start_date=start,
        requested_end_date=end or start + timedelta(days=2),
        purpose=purpose,
        today=TODAY,
    )


class TestCreate:
    def test_student_submission_is_pending_with_request_number(self, db, student, lab_x, make_equipment):
        """Student asks for 2 of 3 available units"""
        equipment = make_equipment(lab_x, total=3)
        req = submit(db, student, equipment, quantity=2)
        db.commit()

        assert req.status == 'pending'
        assert re.fullmatch(r'REQ\d{6}', req.request_number)
        assert req.laboratory_id == lab_x.id
        assert req.user_id == student.id
        # Submission validates but does not hold stock
        assert equipment.available_quantity == 3

    def test_request_numbers_are_sequential_and_not_reused(self, db, student, lab_x, make_equipment):
        equipment = make_equipment(lab_x, total=5)
        first = submit(db, student, equipment)
        db.commit()
        loans.delete_loan_request(db, actor_of(student), first.id)
        db.commit()
        second = submit(db, student, equipment)
        assert first.request_number == 'REQ000001'
        assert second.request_number == 'REQ000002'

    def test_quantity_above_available_creates_nothing(self, db, student, lab_x, make_equipment):
        equipment = make_equipment(lab_x, total=3, available=1)
        with pytest.raises(InsufficientInventory):
            submit(db, student, equipment, quantity=2)
        assert db.query(LoanRequest).count() == 0
        assert db.query(AuditLog).count() == 0

    def test_inactive_equipment_rejected(self, db, student, lab_x, make_equipment):
        equipment = make_equipment(lab_x, status='maintenance')
        with pytest.raises(ValidationError) as exc:
            submit(db, student, equipment)
        assert exc.value.field == 'equipment_id'

    def test_end_must_follow_start(self, db, student, lab_x, make_equipment):
        equipment = make_equipment(lab_x)
        start = TODAY + timedelta(days=3)
        with pytest.raises(ValidationError) as exc:
            submit(db, student, equipment, start=start, end=start)
        assert exc.value.field == 'requested_end_date'

    def test_start_cannot_be_in_the_past(self, db, student, lab_x, make_equipment):
        equipment = make_equipment(lab_x)
        with pytest.raises(ValidationError) as exc:
            submit(db, student, equipment, start=TODAY - timedelta(days=1), end=TODAY + timedelta(days=1))
        assert exc.value.field == 'requested_start_date'

    def test_start_today_is_allowed(self, db, student, lab_x, make_equipment):
        equipment = make_equipment(lab_x)
        req = submit(db, student, equipment, start=TODAY)
        assert req.requested_start_date == TODAY

    def test_blank_purpose_rejected(self, db, student, lab_x, make_equipment):
        equipment = make_equipment(lab_x)
        with pytest.raises(ValidationError):
            submit(db, student, equipment, purpose='   ')

    def test_laboratory_snapshot_survives_equipment_move(self, db, student, lab_x, lab_y, make_equipment):
        equipment = make_equipment(lab_x)
        req = submit(db, student, equipment)
        db.commit()
        equipment.laboratory_id = lab_y.id
        db.commit()
        db.refresh(req)
        assert req.laboratory_id == lab_x.id


class TestTransitions:
    def test_happy_path_moves_stock(self, db, student, assistant_x, lab_x, make_equipment):
        equipment = make_equipment(lab_x, total=3)
        req = submit(db, student, equipment, quantity=2)
        staff = actor_of(assistant_x)

        loans.transition_loan_request(db, staff, req.id, 'approved', now=NOW)
        assert req.approved_by == assistant_x.id
        assert req.approved_at == NOW
        assert equipment.available_quantity == 1

        loans.transition_loan_request(db, staff, req.id, 'borrowed', now=NOW)
        assert req.borrowed_at == NOW
        assert equipment.available_quantity == 1

        loans.transition_loan_request(db, staff, req.id, 'returned', now=NOW)
        assert req.status == 'returned'
        assert req.returned_at == NOW
        assert equipment.available_quantity == 3

    def test_cross_lab_approval_is_unauthorized(self, db, student, assistant_x, lab_y, make_equipment):
        """Lab X assistant approving a Lab Y request"""
        equipment = make_equipment(lab_y)
        req = submit(db, student, equipment)
        with pytest.raises(Unauthorized):
            loans.transition_loan_request(db, actor_of(assistant_x), req.id, 'approved', now=NOW)
        assert req.status == 'pending'
        assert equipment.available_quantity == equipment.total_quantity

    def test_admin_may_process_any_lab(self, db, student, admin, lab_y, make_equipment):
        equipment = make_equipment(lab_y)
        req = submit(db, student, equipment)
        loans.transition_loan_request(db, actor_of(admin), req.id, 'approved', now=NOW)
        assert req.status == 'approved'

    def test_requester_cannot_approve(self, db, student, lab_x, make_equipment):
        equipment = make_equipment(lab_x)
        req = submit(db, student, equipment)
        with pytest.raises(Unauthorized):
            loans.transition_loan_request(db, actor_of(student), req.id, 'approved', now=NOW)

    def test_reject_requires_reason(self, db, student, assistant_x, lab_x, make_equipment):
        equipment = make_equipment(lab_x)
        req = submit(db, student, equipment)
        for reason in (None, '', '   '):
            with pytest.raises(ValidationError) as exc:
                loans.transition_loan_request(db, actor_of(assistant_x), req.id, 'rejected', rejection_reason=reason)
            assert exc.value.field == 'rejection_reason'
        assert req.status == 'pending'

        loans.transition_loan_request(db, actor_of(assistant_x), req.id, 'rejected', rejection_reason='Under calibration')
        assert req.status == 'rejected'
        assert req.rejection_reason == 'Under calibration'
        assert equipment.available_quantity == equipment.total_quantity

    def test_returned_cannot_go_back_to_pending(self, db, student, admin, lab_x, make_equipment, make_loan):
        equipment = make_equipment(lab_x)
        req = make_loan(student, equipment, status='returned')
        with pytest.raises(StateConflict):
            loans.transition_loan_request(db, actor_of(admin), req.id, 'pending')

    def test_approving_rejected_request_conflicts(self, db, student, admin, lab_x, make_equipment, make_loan):
        equipment = make_equipment(lab_x)
        req = make_loan(student, equipment, status='rejected')
        with pytest.raises(StateConflict):
            loans.transition_loan_request(db, actor_of(admin), req.id, 'approved')

    def test_approval_rechecks_stock(self, db, student, admin, lab_x, make_equipment):
        equipment = make_equipment(lab_x, total=2)
        first = submit(db, student, equipment, quantity=2)
        second = submit(db, student, equipment, quantity=2)
        loans.transition_loan_request(db, actor_of(admin), first.id, 'approved', now=NOW)
        with pytest.raises(InsufficientInventory):
            loans.transition_loan_request(db, actor_of(admin), second.id, 'approved', now=NOW)
        assert second.status == 'pending'
        assert equipment.available_quantity == 0

    def test_overdue_only_after_end_date(self, db, student, admin, lab_x, make_equipment):
        equipment = make_equipment(lab_x)
        req = submit(db, student, equipment, start=TODAY, end=TODAY + timedelta(days=2))
        loans.transition_loan_request(db, actor_of(admin), req.id, 'approved', now=NOW)
        loans.transition_loan_request(db, actor_of(admin), req.id, 'borrowed', now=NOW)

        with pytest.raises(StateConflict):
            loans.transition_loan_request(db, actor_of(admin), req.id, 'overdue', now=NOW + timedelta(days=2))

        late = NOW + timedelta(days=3)
        loans.transition_loan_request(db, actor_of(admin), req.id, 'overdue', now=late)
        assert req.status == 'overdue'

        loans.transition_loan_request(db, actor_of(admin), req.id, 'returned', now=late)
        assert req.status == 'returned'
        assert equipment.available_quantity == equipment.total_quantity

    def test_each_transition_is_audited_once(self, db, student, assistant_x, lab_x, make_equipment):
        equipment = make_equipment(lab_x)
        req = submit(db, student, equipment)
        loans.transition_loan_request(db, actor_of(assistant_x), req.id, 'approved', now=NOW)
        entries = db.query(AuditLog).filter(AuditLog.action == 'loan_request_approved').all()
        assert len(entries) == 1
        assert entries[0].actor_id == assistant_x.id
        assert entries[0].target_id == req.id
        assert entries[0].old_values == {'status': 'pending'}
        assert entries[0].new_values == {'status': 'approved'}

    def test_unknown_status_is_validation_error(self, db, student, admin, lab_x, make_equipment):
        equipment = make_equipment(lab_x)
        req = submit(db, student, equipment)
        with pytest.raises(ValidationError):
            loans.transition_loan_request(db, actor_of(admin), req.id, 'lost')


class TestEditAndDelete:
    def test_requester_edits_pending(self, db, student, lab_x, make_equipment):
        equipment = make_equipment(lab_x, total=3)
        req = submit(db, student, equipment)
        loans.update_loan_request(db, actor_of(student), req.id, {'quantity_requested': 3, 'purpose': 'Bigger class'}, today=TODAY)
        assert req.quantity_requested == 3
        assert req.purpose == 'Bigger class'

    def test_edit_revalidates_quantity(self, db, student, lab_x, make_equipment):
        equipment = make_equipment(lab_x, total=3)
        req = submit(db, student, equipment)
        with pytest.raises(InsufficientInventory):
            loans.update_loan_request(db, actor_of(student), req.id, {'quantity_requested': 4}, today=TODAY)
        assert req.quantity_requested == 1

    def test_edit_not_allowed_after_approval(self, db, student, admin, lab_x, make_equipment):
        equipment = make_equipment(lab_x)
        req = submit(db, student, equipment)
        loans.transition_loan_request(db, actor_of(admin), req.id, 'approved', now=NOW)
        with pytest.raises(StateConflict):
            loans.update_loan_request(db, actor_of(student), req.id, {'purpose': 'Changed'}, today=TODAY)

    def test_staff_cannot_edit_details(self, db, student, assistant_x, lab_x, make_equipment):
        equipment = make_equipment(lab_x)
        req = submit(db, student, equipment)
        with pytest.raises(Unauthorized):
            loans.update_loan_request(db, actor_of(assistant_x), req.id, {'purpose': 'Changed'}, today=TODAY)

    def test_status_cannot_be_edited(self, db, student, lab_x, make_equipment):
        equipment = make_equipment(lab_x)
        req = submit(db, student, equipment)
        with pytest.raises(ValidationError):
            loans.update_loan_request(db, actor_of(student), req.id, {'status': 'approved'}, today=TODAY)

    def test_delete_only_while_pending(self, db, student, admin, lab_x, make_equipment):
        equipment = make_equipment(lab_x)
        req = submit(db, student, equipment)
        loans.transition_loan_request(db, actor_of(admin), req.id, 'approved', now=NOW)
        with pytest.raises(StateConflict):
            loans.delete_loan_request(db, actor_of(admin), req.id)

    def test_other_student_cannot_delete(self, db, student, make_user, lab_x, make_equipment):
        equipment = make_equipment(lab_x)
        req = submit(db, student, equipment)
        with pytest.raises(Unauthorized):
            loans.delete_loan_request(db, actor_of(make_user('student')), req.id)


class TestVisibility:
    def test_student_cannot_see_other_students_request(self, db, student, make_user, lab_x, make_equipment):
        equipment = make_equipment(lab_x)
        req = submit(db, student, equipment)
        other = actor_of(make_user('student'))
        with pytest.raises(NotFound):
            loans.get_loan_request(db, other, req.id)
        assert loans.list_loan_requests(db, other)['total'] == 0

    def test_listing_is_scoped_by_laboratory(self, db, student, admin, assistant_x, lab_x, lab_y, make_equipment):
        submit(db, student, make_equipment(lab_x))
        submit(db, student, make_equipment(lab_y))

        assert loans.list_loan_requests(db, actor_of(admin))['total'] == 2
        assert loans.list_loan_requests(db, actor_of(student))['total'] == 2
        scoped = loans.list_loan_requests(db, actor_of(assistant_x))
        assert scoped['total'] == 1
        assert scoped['items'][0].laboratory_id == lab_x.id

    def test_search_and_filter(self, db, student, admin, lab_x, make_equipment):
        req = submit(db, student, make_equipment(lab_x))
        admin_actor = actor_of(admin)
        assert loans.list_loan_requests(db, admin_actor, q=req.request_number)['total'] == 1
        assert loans.list_loan_requests(db, admin_actor, q='Microscope')['total'] == 1
        assert loans.list_loan_requests(db, admin_actor, status='approved')['total'] == 0

    def test_overdue_query(self, db, student, admin, assistant_y, lab_x, make_equipment, make_loan):
        equipment = make_equipment(lab_x)
        past = date.today() - timedelta(days=10)
        late = make_loan(student, equipment, status='borrowed', start=past, end=past + timedelta(days=2))
        make_loan(student, equipment, status='returned', start=past, end=past + timedelta(days=2))
        make_loan(student, equipment, status='borrowed')

        overdue = loans.list_overdue_loan_requests(db, actor_of(admin), today=date.today())
        assert [r.id for r in overdue] == [late.id]
        assert loans.list_overdue_loan_requests(db, actor_of(assistant_y), today=date.today()) == []
