import pytest
from sqlalchemy import delete, update, select, func
from kitroom.core.repairs import RepairWorkflow
from kitroom.core.reservations import ReservationManager
from kitroom.core.loans import LoanManager
from kitroom.core.models import (
    RepairTicket, RepairTicketUnit, TicketStatus, TicketPriority, TicketKind, Unit, UnitState,
    ReportStatus
)
from kitroom.core.exceptions import (
    ConflictError, ValidationError, NotFoundError, ForbiddenError, IntegrityRecoverableError
)
from conftest import TODAY, TOMORROW, make_item, make_user, unit_of


def test_open_moves_units_into_repair(db_session, admin):
    item = make_item(db_session, units=3)
    ids = [unit_of(db_session, item, i).id for i in (0, 2)]
    ticket = RepairWorkflow.open(db_session, item.id, ids, description="Loose mounts",
                                 priority="high", opened_by=admin.id)

    assert ticket.status == TicketStatus.IN_PROGRESS
    assert ticket.priority == TicketPriority.HIGH
    assert ticket.unit_ids == sorted(ids)
    for i in (0, 2):
        unit = unit_of(db_session, item, i)
        assert unit.state == UnitState.IN_REPAIR
        assert unit.repair_ticket_id == ticket.id
    assert unit_of(db_session, item, 1).state == UnitState.AVAILABLE

def test_unit_already_in_repair(db_session):
    item = make_item(db_session)
    unit_id = unit_of(db_session, item).id
    RepairWorkflow.open(db_session, item.id, [unit_id])
    with pytest.raises(ConflictError):
        RepairWorkflow.open(db_session, item.id, [unit_id])
    assert len(RepairWorkflow.list_tickets(db_session)) == 1

def test_reserved_unit_cannot_be_repaired(db_session, user):
    item = make_item(db_session)
    unit = unit_of(db_session, item)
    ReservationManager.create_request(db_session, user.id, unit_id=unit.id,
                                      start_date=TOMORROW, end_date=TOMORROW, today=TODAY)
    with pytest.raises(ConflictError):
        RepairWorkflow.open(db_session, item.id, [unit.id])
    assert db_session.scalar(select(func.count(RepairTicket.id))) == 0
    assert unit_of(db_session, item).state == UnitState.RESERVED

def test_open_validates_units(db_session):
    item = make_item(db_session)
    other = make_item(db_session, name="Light Stand")
    with pytest.raises(ValidationError):
        RepairWorkflow.open(db_session, item.id, [])
    with pytest.raises(ValidationError):
        RepairWorkflow.open(db_session, item.id, [unit_of(db_session, other).id])
    with pytest.raises(NotFoundError):
        RepairWorkflow.open(db_session, item.id, [999])
    with pytest.raises(ValidationError):
        RepairWorkflow.open(db_session, item.id, [unit_of(db_session, item).id], priority="asap")

def test_close_returns_units(db_session, admin):
    item = make_item(db_session, units=2)
    ids = [unit_of(db_session, item, i).id for i in (0, 1)]
    ticket = RepairWorkflow.open(db_session, item.id, ids)

    closed = RepairWorkflow.close(db_session, ticket.id, "completed", closed_by=admin.id)
    assert closed.status == TicketStatus.COMPLETED
    assert closed.closed_by == admin.id
    assert closed.closed_at is not None
    assert all(unit_of(db_session, item, i).state == UnitState.AVAILABLE for i in (0, 1))

    with pytest.raises(ConflictError):
        RepairWorkflow.close(db_session, ticket.id, "cancelled")

def test_cancelled_tickets_also_return_units(db_session):
    item = make_item(db_session)
    ticket = RepairWorkflow.open(db_session, item.id, [unit_of(db_session, item).id])
    assert RepairWorkflow.close(db_session, ticket.id, "cancelled").status == TicketStatus.CANCELLED
    assert unit_of(db_session, item).state == UnitState.AVAILABLE

def test_close_needs_a_closing_outcome(db_session):
    item = make_item(db_session)
    ticket = RepairWorkflow.open(db_session, item.id, [unit_of(db_session, item).id])
    with pytest.raises(ValidationError):
        RepairWorkflow.close(db_session, ticket.id, "in_progress")

def test_close_recovers_from_missing_unit_links(db_session):
    item = make_item(db_session, units=2)
    ids = [unit_of(db_session, item, i).id for i in (0, 1)]
    ticket = RepairWorkflow.open(db_session, item.id, ids)
    db_session.execute(delete(RepairTicketUnit).where(RepairTicketUnit.ticket_id == ticket.id))
    db_session.commit()
    db_session.expire_all()

    RepairWorkflow.close(db_session, ticket.id, "completed")
    assert all(unit_of(db_session, item, i).state == UnitState.AVAILABLE for i in (0, 1))

def test_close_recovers_from_dangling_unit_links(db_session):
    item = make_item(db_session)
    unit_id = unit_of(db_session, item).id
    ticket = RepairWorkflow.open(db_session, item.id, [unit_id])
    db_session.add(RepairTicketUnit(ticket_id=ticket.id, unit_id=4040))
    db_session.commit()

    RepairWorkflow.close(db_session, ticket.id)
    assert unit_of(db_session, item).state == UnitState.AVAILABLE

def test_recovery_leaves_other_open_tickets_alone(db_session):
    item = make_item(db_session, units=2)
    first = RepairWorkflow.open(db_session, item.id, [unit_of(db_session, item, 0).id])
    RepairWorkflow.open(db_session, item.id, [unit_of(db_session, item, 1).id])
    db_session.execute(delete(RepairTicketUnit).where(RepairTicketUnit.ticket_id == first.id))
    db_session.commit()
    db_session.expire_all()

    RepairWorkflow.close(db_session, first.id)
    assert unit_of(db_session, item, 0).state == UnitState.AVAILABLE
    assert unit_of(db_session, item, 1).state == UnitState.IN_REPAIR

def test_close_fails_when_recovery_finds_nothing(db_session):
    item = make_item(db_session)
    unit_id = unit_of(db_session, item).id
    ticket = RepairWorkflow.open(db_session, item.id, [unit_id])
    db_session.execute(delete(RepairTicketUnit).where(RepairTicketUnit.ticket_id == ticket.id))
    db_session.execute(update(Unit).where(Unit.id == unit_id).values(
        state=UnitState.AVAILABLE, repair_ticket_id=None))
    db_session.commit()
    db_session.expire_all()

    with pytest.raises(IntegrityRecoverableError):
        RepairWorkflow.close(db_session, ticket.id)
    assert RepairWorkflow.get(db_session, ticket.id).status == TicketStatus.IN_PROGRESS

def test_list_tickets(db_session):
    item = make_item(db_session, units=2)
    done = RepairWorkflow.open(db_session, item.id, [unit_of(db_session, item, 0).id])
    RepairWorkflow.open(db_session, item.id, [unit_of(db_session, item, 1).id])
    RepairWorkflow.close(db_session, done.id)

    assert len(RepairWorkflow.list_tickets(db_session)) == 2
    assert [t.id for t in RepairWorkflow.list_tickets(db_session, status="completed")] == [done.id]


def test_borrower_reports_a_fault_on_their_loan(db_session, user, admin):
    item = make_item(db_session, units=2)
    loan = LoanManager.create_direct(db_session, item.id, user.id, TODAY, TOMORROW)
    report = RepairWorkflow.report_fault(db_session, user.id, " Shutter sticks ", loan_id=loan.id)

    assert report.status == ReportStatus.OPEN
    assert report.message == "Shutter sticks"
    assert (report.item_id, report.unit_id, report.loan_id) == (item.id, loan.unit_id, loan.id)
    assert [r.id for r in RepairWorkflow.list_reports(db_session, user_id=user.id)] == [report.id]
    assert RepairWorkflow.list_reports(db_session, status="closed") == []

def test_fault_reports_on_someone_elses_loan(db_session, user, admin):
    item = make_item(db_session)
    loan = LoanManager.create_direct(db_session, item.id, user.id, TODAY, TOMORROW)
    other = make_user(db_session, email="other@example.edu")
    with pytest.raises(ForbiddenError):
        RepairWorkflow.report_fault(db_session, other.id, "Broken", loan_id=loan.id)
    assert RepairWorkflow.report_fault(db_session, admin.id, "Broken", loan_id=loan.id,
                                       on_behalf=True).user_id == admin.id

def test_fault_report_needs_a_target_and_a_message(db_session, user):
    item = make_item(db_session)
    other = make_item(db_session, name="Gimbal")
    with pytest.raises(ValidationError):
        RepairWorkflow.report_fault(db_session, user.id, "  ", item_id=item.id)
    with pytest.raises(ValidationError):
        RepairWorkflow.report_fault(db_session, user.id, "Broken")
    with pytest.raises(ValidationError):
        RepairWorkflow.report_fault(db_session, user.id, "Broken", item_id=item.id,
                                    unit_id=unit_of(db_session, other).id)
    with pytest.raises(NotFoundError):
        RepairWorkflow.report_fault(db_session, user.id, "Broken", loan_id=404)

def test_closing_a_report_into_a_fault_ticket(db_session, user, admin):
    item = make_item(db_session)
    unit = unit_of(db_session, item)
    report = RepairWorkflow.report_fault(db_session, user.id, "Flickers", item_id=item.id,
                                         unit_id=unit.id)
    closed = RepairWorkflow.close_report(db_session, report.id, handled_by=admin.id,
                                         open_ticket=True, priority="high")

    assert closed.status == ReportStatus.CLOSED
    assert closed.handled_by == admin.id
    ticket = RepairWorkflow.get(db_session, closed.ticket_id)
    assert ticket.kind == TicketKind.FAULT
    assert ticket.priority == TicketPriority.HIGH
    assert ticket.description == "Flickers"
    assert unit_of(db_session, item).state == UnitState.IN_REPAIR

    with pytest.raises(ConflictError):
        RepairWorkflow.close_report(db_session, report.id)

def test_report_on_a_unit_still_out_stays_open(db_session, user, admin):
    item = make_item(db_session)
    loan = LoanManager.create_direct(db_session, item.id, user.id, TODAY, TOMORROW)
    report = RepairWorkflow.report_fault(db_session, user.id, "Cracked", loan_id=loan.id)
    with pytest.raises(ConflictError):
        RepairWorkflow.close_report(db_session, report.id, handled_by=admin.id, open_ticket=True)

    report = RepairWorkflow.get_report(db_session, report.id)
    assert report.status == ReportStatus.OPEN
    assert report.ticket_id is None
    assert unit_of(db_session, item).state == UnitState.LOANED

    # dismissing needs no unit work
    assert RepairWorkflow.close_report(db_session, report.id).status == ReportStatus.CLOSED
