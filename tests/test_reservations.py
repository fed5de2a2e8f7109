import datetime
import pytest
from kitroom.core.reservations import ReservationManager
from kitroom.core.decisions import DecisionProcessor
from kitroom.core.penalties import PenaltyEngine
from kitroom.core.models import Request, RequestStatus, LoanType, UnitState, UsageType
from kitroom.core.exceptions import (
    ValidationError, NotFoundError, ForbiddenError, ConflictError,
    UnitUnavailableError, UserBlockedError
)
from conftest import TODAY, TOMORROW, make_item, make_user, unit_of

DAY = datetime.timedelta(days=1)


def create(db, user, item, start, end, **kwargs):
    return ReservationManager.create_request(
        db, user.id, item_id=item.id, start_date=start, end_date=end, today=TODAY, **kwargs)


def test_external_loans_start_tomorrow_and_last_three_days(db_session, user):
    item = make_item(db_session)
    with pytest.raises(ValidationError):
        create(db_session, user, item, TODAY, TODAY + DAY)
    with pytest.raises(ValidationError):
        create(db_session, user, item, TOMORROW, TOMORROW + 3 * DAY)

    request = create(db_session, user, item, TOMORROW, TOMORROW + 2 * DAY)
    assert request.status == RequestStatus.PENDING
    assert request.usage_type is None

def test_generic_date_rules(db_session, user):
    item = make_item(db_session, loan_type=LoanType.INTERNAL_ONLY)
    with pytest.raises(ValidationError):
        create(db_session, user, item, TODAY - DAY, TODAY - DAY)
    with pytest.raises(ValidationError):
        create(db_session, user, item, TOMORROW, TODAY)

def test_internal_use_is_same_day(db_session, user):
    item = make_item(db_session, loan_type=LoanType.INTERNAL_ONLY)
    with pytest.raises(ValidationError):
        create(db_session, user, item, TODAY, TOMORROW)
    assert create(db_session, user, item, TODAY, TODAY).id

def test_either_items_need_a_usage_type(db_session, user):
    item = make_item(db_session, loan_type=LoanType.EITHER)
    with pytest.raises(ValidationError):
        create(db_session, user, item, TODAY, TODAY)
    with pytest.raises(ValidationError):
        create(db_session, user, item, TODAY, TODAY, usage_type="outdoor")
    # external rules apply once external use is chosen
    with pytest.raises(ValidationError):
        create(db_session, user, item, TODAY, TODAY, usage_type="external")

    request = create(db_session, user, item, TODAY, TODAY, usage_type="internal")
    assert request.usage_type == UsageType.INTERNAL

def test_pinned_unit_is_reserved(db_session, user):
    item = make_item(db_session)
    unit = unit_of(db_session, item)
    request = create(db_session, user, item, TOMORROW, TOMORROW, unit_id=unit.id)

    db_session.refresh(unit)
    assert unit.state == UnitState.RESERVED
    assert unit.reserved_request_id == request.id

    other = make_user(db_session, email="other@example.edu")
    with pytest.raises(UnitUnavailableError):
        create(db_session, other, item, TOMORROW, TOMORROW, unit_id=unit.id)
    assert db_session.query(Request).count() == 1

def test_item_is_taken_from_the_unit(db_session, user):
    item = make_item(db_session)
    unit = unit_of(db_session, item)
    request = ReservationManager.create_request(
        db_session, user.id, unit_id=unit.id, start_date=TOMORROW, end_date=TOMORROW,
        today=TODAY)
    assert request.item_id == item.id

def test_unit_of_another_item(db_session, user):
    item = make_item(db_session)
    other = make_item(db_session, name="Boom Mic")
    with pytest.raises(ValidationError):
        create(db_session, user, item, TOMORROW, TOMORROW, unit_id=unit_of(db_session, other).id)

def test_unknown_item_or_unit(db_session, user):
    with pytest.raises(NotFoundError):
        ReservationManager.create_request(db_session, user.id, item_id=99,
                                          start_date=TOMORROW, end_date=TOMORROW, today=TODAY)
    with pytest.raises(NotFoundError):
        ReservationManager.create_request(db_session, user.id, unit_id=99,
                                          start_date=TOMORROW, end_date=TOMORROW, today=TODAY)

def test_blocked_user_cannot_request(db_session, user):
    item = make_item(db_session)
    PenaltyEngine.assign_manual(db_session, user.id, 3, reason="Lost a lens cap")

    with pytest.raises(UserBlockedError) as excinfo:
        create(db_session, user, item, TOMORROW, TOMORROW, unit_id=unit_of(db_session, item).id)
    assert excinfo.value.strikes == 3
    assert excinfo.value.reason
    assert db_session.query(Request).count() == 0
    assert unit_of(db_session, item).state == UnitState.AVAILABLE

def test_course_gate(db_session, user):
    item = make_item(db_session, courses=["Photography"])
    with pytest.raises(ForbiddenError):
        create(db_session, user, item, TOMORROW, TOMORROW, course="Film")
    assert create(db_session, user, item, TOMORROW, TOMORROW, course="Photography").id
    assert create(db_session, user, item, TOMORROW, TOMORROW).id

def test_owner_cancels_pending_request(db_session, user):
    item = make_item(db_session)
    unit = unit_of(db_session, item)
    request = create(db_session, user, item, TOMORROW, TOMORROW, unit_id=unit.id)

    stranger = make_user(db_session, email="stranger@example.edu")
    with pytest.raises(ForbiddenError):
        ReservationManager.cancel_request(db_session, request.id, stranger.id)

    assert ReservationManager.cancel_request(db_session, request.id, user.id)
    assert db_session.get(Request, request.id) is None
    assert unit_of(db_session, item).state == UnitState.AVAILABLE

def test_owner_cannot_cancel_decided_request(db_session, user, admin):
    item = make_item(db_session)
    request = create(db_session, user, item, TOMORROW, TOMORROW, unit_id=unit_of(db_session, item).id)
    DecisionProcessor.decide(db_session, request.id, "rejected", admin.id)
    with pytest.raises(ForbiddenError):
        ReservationManager.cancel_request(db_session, request.id, user.id)

def test_admin_cancels_approved_request(db_session, user, admin):
    item = make_item(db_session)
    request = create(db_session, user, item, TOMORROW, TOMORROW, unit_id=unit_of(db_session, item).id)
    DecisionProcessor.decide(db_session, request.id, "approved", admin.id)

    assert ReservationManager.cancel_request(db_session, request.id, admin.id, caller_is_admin=True)
    assert db_session.get(Request, request.id) is None
    # the unit now belongs to the loan and stays out
    assert unit_of(db_session, item).state == UnitState.LOANED

def test_cancel_pending_request_with_stolen_unit_fails(db_session, user, admin):
    item = make_item(db_session)
    unit = unit_of(db_session, item)
    request = create(db_session, user, item, TOMORROW, TOMORROW, unit_id=unit.id)
    unit.reserved_request_id = request.id + 100
    db_session.commit()

    with pytest.raises(ConflictError):
        ReservationManager.cancel_request(db_session, request.id, admin.id, caller_is_admin=True)
    assert db_session.get(Request, request.id) is not None

def test_list_requests(db_session, user):
    item = make_item(db_session, units=2)
    create(db_session, user, item, TOMORROW, TOMORROW)
    other = make_user(db_session, email="other@example.edu")
    create(db_session, other, item, TOMORROW, TOMORROW)

    assert len(ReservationManager.list_requests(db_session)) == 2
    mine = ReservationManager.list_requests(db_session, user_id=user.id, status="pending")
    assert [r.user_id for r in mine] == [user.id]
    assert ReservationManager.list_requests(db_session, status="approved") == []
