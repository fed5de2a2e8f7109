import datetime
import pytest
from unittest.mock import patch
from kitroom.core.loans import LoanManager
from kitroom.core.models import LoanStatus, LoanType, UnitState, TicketKind, TicketStatus
from kitroom.core.exceptions import ValidationError, ConflictError, NotFoundError
from kitroom.core.utils import late_days
from conftest import TODAY, make_item, make_user, unit_of

DAY = datetime.timedelta(days=1)


def lend(db, user, item, start=TODAY, end=TODAY + DAY, unit=None):
    return LoanManager.create_direct(db, item.id, user.id, start, end,
                                     unit_id=unit.id if unit else None)


def test_direct_loan_checks_out_the_pinned_unit(db_session, user, admin):
    item = make_item(db_session, units=2)
    unit = unit_of(db_session, item, 1)
    loan = LoanManager.create_direct(db_session, item.id, user.id, TODAY, TODAY + DAY,
                                     unit_id=unit.id, note="Field trip", created_by=admin.id)
    db_session.refresh(unit)
    assert unit.state == UnitState.LOANED
    assert unit.current_loan_id == loan.id
    assert loan.request_id is None
    assert loan.created_by == admin.id

def test_direct_loans_skip_usage_rules(db_session, user):
    item = make_item(db_session, loan_type=LoanType.INTERNAL_ONLY)
    loan = lend(db_session, user, item, start=TODAY - 2 * DAY, end=TODAY + 5 * DAY)
    assert loan.unit_id == unit_of(db_session, item).id
    with pytest.raises(ValidationError):
        lend(db_session, user, make_item(db_session, name="Gimbal"), start=TODAY, end=TODAY - DAY)

def test_direct_loan_on_a_busy_unit(db_session, user):
    item = make_item(db_session)
    unit = unit_of(db_session, item)
    lend(db_session, user, item, unit=unit)
    with pytest.raises(ConflictError):
        lend(db_session, user, item, unit=unit)
    assert len(LoanManager.list_loans(db_session)) == 1

def test_direct_loan_for_unknown_borrower(db_session):
    item = make_item(db_session)
    with pytest.raises(NotFoundError):
        LoanManager.create_direct(db_session, item.id, 42, TODAY, TODAY)

def test_on_time_return_frees_the_unit(db_session, user):
    item = make_item(db_session)
    loan = lend(db_session, user, item)
    result = LoanManager.return_loan(db_session, loan.id, returned_on=TODAY)

    assert result["late_days"] == 0
    assert result["repair_ticket"] is None
    assert result["loan"].status == LoanStatus.RETURNED
    assert result["loan"].returned_at is not None
    assert unit_of(db_session, item).state == UnitState.AVAILABLE

def test_late_return_counts_whole_days(db_session, user):
    item = make_item(db_session)
    loan = lend(db_session, user, item, start=datetime.date(2025, 1, 8), end=datetime.date(2025, 1, 10))
    result = LoanManager.return_loan(db_session, loan.id, returned_on=datetime.date(2025, 1, 15))
    assert result["late_days"] == 5

def test_return_uses_the_same_calendar_day_as_overdue(db_session, user):
    item = make_item(db_session)
    loan = lend(db_session, user, item, start=TODAY - DAY, end=TODAY)
    # Early morning east of UTC: the UTC clock still reads the due date
    utc_clock = datetime.datetime(2025, 1, 6, 14, 0, tzinfo=datetime.timezone.utc)
    with patch("kitroom.core.loans.current_day", return_value=TODAY + DAY), \
            patch("kitroom.core.loans.utcnow", return_value=utc_clock):
        assert [l.id for l in LoanManager.overdue(db_session)] == [loan.id]
        result = LoanManager.return_loan(db_session, loan.id)
    assert result["late_days"] == 1
    assert result["loan"].returned_at.date() == TODAY + DAY

def test_returning_twice(db_session, user):
    item = make_item(db_session)
    loan = lend(db_session, user, item)
    LoanManager.return_loan(db_session, loan.id)
    with pytest.raises(ConflictError):
        LoanManager.return_loan(db_session, loan.id)

def test_damaged_return_goes_into_repair(db_session, user, admin):
    item = make_item(db_session)
    loan = lend(db_session, user, item)
    result = LoanManager.return_loan(db_session, loan.id, damage="Cracked lens hood",
                                     returned_by=admin.id)

    unit = unit_of(db_session, item)
    ticket = result["repair_ticket"]
    assert unit.state == UnitState.IN_REPAIR
    assert unit.repair_ticket_id == ticket.id
    assert ticket.unit_ids == [unit.id]
    assert ticket.kind == TicketKind.FAULT
    assert ticket.status == TicketStatus.IN_PROGRESS
    assert result["loan"].status == LoanStatus.RETURNED

def test_due_date_projections(db_session, user):
    item = make_item(db_session, units=4)
    overdue = lend(db_session, user, item, start=TODAY - 3 * DAY, end=TODAY - 2 * DAY)
    due_today = lend(db_session, user, item, end=TODAY)
    due_tomorrow = lend(db_session, user, item, end=TODAY + DAY)
    returned = lend(db_session, user, item, start=TODAY - 3 * DAY, end=TODAY - 2 * DAY)
    LoanManager.return_loan(db_session, returned.id)

    assert [l.id for l in LoanManager.overdue(db_session, today=TODAY)] == [overdue.id]
    assert [l.id for l in LoanManager.due_today(db_session, today=TODAY)] == [due_today.id]
    assert [l.id for l in LoanManager.due_tomorrow(db_session, today=TODAY)] == [due_tomorrow.id]

def test_list_loans(db_session, user):
    item = make_item(db_session, units=2)
    other = make_user(db_session, email="other@example.edu")
    mine = lend(db_session, user, item)
    theirs = lend(db_session, other, item)
    LoanManager.return_loan(db_session, theirs.id)

    assert [l.id for l in LoanManager.list_loans(db_session, borrower_id=user.id)] == [mine.id]
    assert [l.id for l in LoanManager.list_loans(db_session, active_only=True)] == [mine.id]
    assert len(LoanManager.list_loans(db_session)) == 2

@pytest.mark.parametrize("due, returned, expected", [
    (datetime.date(2025, 1, 10), datetime.date(2025, 1, 10), 0),
    (datetime.date(2025, 1, 10), datetime.date(2025, 1, 9), 0),
    (datetime.date(2025, 1, 10), datetime.date(2025, 1, 11), 1),
    (datetime.date(2025, 1, 10), datetime.datetime(2025, 1, 15, 18, 30), 5),
])
def test_late_days(due, returned, expected):
    assert late_days(due, returned) == expected
