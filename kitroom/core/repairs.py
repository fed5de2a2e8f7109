#!/usr/bin/env python

"""
    Repair Workflow for Kitroom.

    A repair ticket takes one or more units of an item out of circulation
    and brings them back when it is closed, whatever its outcome.

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

import logging
from sqlalchemy import select, update, exists, and_
from kitroom.core.db import atomic
from kitroom.core.models import (
    RepairTicket, RepairTicketUnit, TicketStatus, TicketPriority, TicketKind,
    InventoryItem, Unit, UnitState, FaultReport, ReportStatus, Loan, User
)
from kitroom.core.units import UnitRegistry
from kitroom.core.exceptions import (
    ValidationError, NotFoundError, ConflictError, ForbiddenError,
    IntegrityRecoverableError
)
from kitroom.core.utils import utcnow

logger = logging.getLogger(__name__)

CLOSING_OUTCOMES = {TicketStatus.COMPLETED, TicketStatus.CANCELLED}


def _choice(enum_cls, value, field):
    try:
        return enum_cls(getattr(value, 'value', value))
    except ValueError:
        allowed = ", ".join(e.value for e in enum_cls)
        raise ValidationError(f"{field} must be one of: {allowed}.")


class RepairWorkflow:

    @classmethod
    def get(cls, db, ticket_id):
        if ticket := db.get(RepairTicket, ticket_id):
            return ticket
        raise NotFoundError(f"Repair ticket {ticket_id} not found.")

    @classmethod
    def list_tickets(cls, db, status=None, item_id=None):
        q = select(RepairTicket).order_by(RepairTicket.opened_at.desc(), RepairTicket.id.desc())
        if status is not None:
            q = q.where(RepairTicket.status == _choice(TicketStatus, status, 'status'))
        if item_id is not None:
            q = q.where(RepairTicket.item_id == item_id)
        return db.execute(q).scalars().all()

    @classmethod
    def open(cls, db, item_id, unit_ids, description=None, priority=TicketPriority.NORMAL,
             kind=TicketKind.REPAIR, opened_by=None, from_loan_id=None):
        """Opens a ticket and moves each listed unit to InRepair."""
        with atomic(db):
            ticket = cls.open_in_transaction(
                db, item_id, unit_ids, description=description, priority=priority,
                kind=kind, opened_by=opened_by, from_loan_id=from_loan_id)
        logger.info(f"repair ticket {ticket.id} opened for units {ticket.unit_ids}")
        return ticket

    @classmethod
    def open_in_transaction(cls, db, item_id, unit_ids, description=None,
                            priority=TicketPriority.NORMAL, kind=TicketKind.REPAIR,
                            opened_by=None, from_loan_id=None):
        """Same as `open`, but leaves committing to the caller.

        With `from_loan_id` the units are expected to be Loaned under that
        loan; this is how a damaged return goes straight into repair.
        """
        if db.get(InventoryItem, item_id) is None:
            raise NotFoundError(f"Item {item_id} not found.")
        unit_ids = list(dict.fromkeys(unit_ids or ()))
        if not unit_ids:
            raise ValidationError("A repair ticket needs at least one unit.")
        priority = _choice(TicketPriority, priority, 'priority')
        kind = _choice(TicketKind, kind, 'kind')

        units = {u.id: u for u in db.execute(
            select(Unit).where(Unit.id.in_(unit_ids))).scalars()}
        missing = [i for i in unit_ids if i not in units]
        if missing:
            raise NotFoundError(f"Units not found: {', '.join(map(str, missing))}.")
        foreign = [units[i].code for i in unit_ids if units[i].item_id != item_id]
        if foreign:
            raise ValidationError(f"Units {', '.join(foreign)} do not belong to item {item_id}.")
        in_repair = [units[i].code for i in unit_ids if units[i].state == UnitState.IN_REPAIR]
        if in_repair:
            raise ConflictError(f"Units already in repair: {', '.join(in_repair)}.")

        ticket = RepairTicket(
            item_id=item_id,
            status=TicketStatus.IN_PROGRESS,
            priority=priority,
            kind=kind,
            description=description,
            opened_by=opened_by,
        )
        ticket.unit_links = [RepairTicketUnit(unit_id=i) for i in unit_ids]
        db.add(ticket)
        db.flush()
        for unit_id in unit_ids:
            UnitRegistry.send_to_repair(db, unit_id, ticket.id, expected_loan_id=from_loan_id)
        return ticket

    @classmethod
    def _linked_units(cls, db, ticket):
        """The units a ticket holds, as recorded in its join rows.

        Raises IntegrityRecoverableError when the rows cannot be trusted.
        """
        unit_ids = ticket.unit_ids
        if not unit_ids:
            raise IntegrityRecoverableError(f"Repair ticket {ticket.id} lists no units.")
        units = db.execute(select(Unit).where(Unit.id.in_(unit_ids))).scalars().all()
        if len(units) != len(unit_ids):
            raise IntegrityRecoverableError(
                f"Repair ticket {ticket.id} references missing units.")
        for unit in units:
            if unit.item_id != ticket.item_id:
                raise IntegrityRecoverableError(
                    f"Repair ticket {ticket.id} references unit {unit.code} of another item.")
            if unit.state != UnitState.IN_REPAIR or unit.repair_ticket_id != ticket.id:
                raise IntegrityRecoverableError(
                    f"Unit {unit.code} is not in repair under ticket {ticket.id}.")
        return units

    @classmethod
    def _correlated_units(cls, db, ticket):
        """Units of the ticket's item sitting in repair with no other open ticket."""
        other_open = exists().where(
            RepairTicketUnit.unit_id == Unit.id,
            RepairTicketUnit.ticket_id != ticket.id,
            RepairTicketUnit.ticket_id == RepairTicket.id,
            RepairTicket.status == TicketStatus.IN_PROGRESS,
        )
        held_elsewhere = exists().where(and_(
            RepairTicket.id == Unit.repair_ticket_id,
            RepairTicket.id != ticket.id,
            RepairTicket.status == TicketStatus.IN_PROGRESS,
        ))
        return db.execute(
            select(Unit).where(
                Unit.item_id == ticket.item_id,
                Unit.state == UnitState.IN_REPAIR,
                ~other_open,
                ~held_elsewhere,
            ).order_by(Unit.code)
        ).scalars().all()

    @classmethod
    def close(cls, db, ticket_id, outcome=TicketStatus.COMPLETED, closed_by=None):
        """Closes an InProgress ticket and returns its units to Available."""
        outcome = _choice(TicketStatus, outcome, 'outcome')
        if outcome not in CLOSING_OUTCOMES:
            raise ValidationError("A ticket closes as 'completed' or 'cancelled'.")
        ticket = cls.get(db, ticket_id)
        if ticket.status != TicketStatus.IN_PROGRESS:
            raise ConflictError(f"Repair ticket {ticket_id} is already {ticket.status.value}.")

        try:
            units = cls._linked_units(db, ticket)
        except IntegrityRecoverableError as e:
            logger.error(f"{e} Falling back to units of item {ticket.item_id} in repair.")
            units = cls._correlated_units(db, ticket)
            if not units:
                raise

        with atomic(db):
            for unit in units:
                # Correlated units may carry no ticket pointer, or a stale one
                UnitRegistry.return_from_repair(db, unit.id, unit.repair_ticket_id)
            ticket.status = outcome
            ticket.closed_by = closed_by
            ticket.closed_at = utcnow()
        logger.info(f"repair ticket {ticket_id} {outcome.value}; released {len(units)} units")
        return ticket

    # Fault reports

    @classmethod
    def get_report(cls, db, report_id):
        if report := db.get(FaultReport, report_id):
            return report
        raise NotFoundError(f"Fault report {report_id} not found.")

    @classmethod
    def report_fault(cls, db, reporter_id, message, loan_id=None, item_id=None,
                     unit_id=None, on_behalf=False):
        """Records a user's fault report against one of their loans or an item.

        Borrowers may only report on their own loans unless `on_behalf`.
        """
        message = (message or '').strip()
        if not message:
            raise ValidationError("Describe the fault.")
        if db.get(User, reporter_id) is None:
            raise NotFoundError(f"User {reporter_id} not found.")
        if loan_id is not None:
            loan = db.get(Loan, loan_id)
            if loan is None:
                raise NotFoundError(f"Loan {loan_id} not found.")
            if loan.borrower_id != reporter_id and not on_behalf:
                raise ForbiddenError(f"Loan {loan_id} belongs to another user.")
            item_id, unit_id = loan.item_id, loan.unit_id
        elif item_id is None:
            raise ValidationError("A fault report names a loan or an item.")
        elif db.get(InventoryItem, item_id) is None:
            raise NotFoundError(f"Item {item_id} not found.")
        elif unit_id is not None:
            unit = db.get(Unit, unit_id)
            if unit is None or unit.item_id != item_id:
                raise ValidationError(f"Unit {unit_id} does not belong to item {item_id}.")

        with atomic(db):
            report = FaultReport(user_id=reporter_id, item_id=item_id, unit_id=unit_id,
                                 loan_id=loan_id, message=message, status=ReportStatus.OPEN)
            db.add(report)
        logger.info(f"fault report {report.id} filed by user {reporter_id} on item {item_id}")
        return report

    @classmethod
    def list_reports(cls, db, status=None, user_id=None):
        q = select(FaultReport).order_by(FaultReport.created_at.desc(), FaultReport.id.desc())
        if status is not None:
            q = q.where(FaultReport.status == _choice(ReportStatus, status, 'status'))
        if user_id is not None:
            q = q.where(FaultReport.user_id == user_id)
        return db.execute(q).scalars().all()

    @classmethod
    def close_report(cls, db, report_id, handled_by=None, open_ticket=False,
                     priority=TicketPriority.NORMAL):
        """Closes an open report, optionally sending its unit into repair.

        A unit still out on an active loan comes back through a damaged
        return instead.
        """
        report = cls.get_report(db, report_id)
        ticket = None
        with atomic(db):
            claimed = db.execute(
                update(FaultReport)
                .where(FaultReport.id == report_id, FaultReport.status == ReportStatus.OPEN)
                .values(status=ReportStatus.CLOSED, handled_by=handled_by,
                        handled_at=utcnow())
                .execution_options(synchronize_session='fetch')
            ).rowcount
            if claimed != 1:
                raise ConflictError(f"Fault report {report_id} is already closed.")
            if open_ticket:
                if report.unit_id is None:
                    raise ValidationError(f"Fault report {report_id} names no unit.")
                unit = db.get(Unit, report.unit_id)
                if unit is not None and unit.state == UnitState.LOANED:
                    raise ConflictError(
                        f"Unit {unit.code} is still on loan; record the fault when it is returned.")
                ticket = cls.open_in_transaction(
                    db, report.item_id, [report.unit_id], description=report.message,
                    priority=priority, kind=TicketKind.FAULT, opened_by=handled_by)
                report.ticket_id = ticket.id
        logger.info(f"fault report {report_id} closed"
                    + (f" into repair ticket {ticket.id}" if ticket else ""))
        return report
