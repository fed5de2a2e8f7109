#!/usr/bin/env python

"""
    Loan Lifecycle Manager for Kitroom.

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

import logging
from sqlalchemy import select, update
from kitroom.core.db import atomic
from kitroom.core.models import (
    Loan, LoanStatus, InventoryItem, Unit, User, TicketKind, TicketPriority
)
from kitroom.core.units import UnitRegistry
from kitroom.core.repairs import RepairWorkflow
from kitroom.core.decisions import allocate_unit
from kitroom.core.exceptions import ValidationError, NotFoundError, ConflictError
from kitroom.core.utils import (
    as_date, utcnow, today as current_day, skip_sunday, late_days, ONE_DAY
)

logger = logging.getLogger(__name__)


class LoanManager:

    @classmethod
    def get(cls, db, loan_id):
        if loan := db.get(Loan, loan_id):
            return loan
        raise NotFoundError(f"Loan {loan_id} not found.")

    @classmethod
    def create_direct(cls, db, item_id, borrower_id, start_date, end_date,
                      unit_id=None, note=None, created_by=None):
        """Lends an item on the spot, without a prior request."""
        item = db.get(InventoryItem, item_id)
        if item is None:
            raise NotFoundError(f"Item {item_id} not found.")
        borrower = db.get(User, borrower_id)
        if borrower is None:
            raise NotFoundError(f"User {borrower_id} not found.")
        if unit_id is not None:
            unit = db.get(Unit, unit_id)
            if unit is None:
                raise NotFoundError(f"Unit {unit_id} not found.")
            if unit.item_id != item.id:
                raise ValidationError(f"Unit {unit.code} does not belong to {item.name}.")
        start, end = as_date(start_date), as_date(end_date)
        if end < start:
            raise ValidationError("The end date cannot precede the start date.")

        with atomic(db):
            loan = Loan(
                item_id=item.id,
                unit_id=unit_id,
                borrower_id=borrower.id,
                borrower_name=borrower.display_name,
                checkout_date=start,
                due_date=skip_sunday(end),
                status=LoanStatus.ACTIVE,
                note=note,
                created_by=created_by,
            )
            db.add(loan)
            db.flush()
            if unit_id is not None:
                UnitRegistry.checkout(db, unit_id, loan.id)
            else:
                unit = allocate_unit(db, item.id, loan.id)
                loan.unit_id = unit.id if unit else None
        logger.info(f"direct loan {loan.id} of item {item.id} to user {borrower.id}")
        return loan

    @classmethod
    def return_loan(cls, db, loan_id, returned_on=None, damage=None,
                    returned_by=None, priority=TicketPriority.NORMAL):
        """Closes an active loan.

        The unit goes back to Available, or straight into a repair ticket
        when a `damage` description is given. Returns a dict with the
        `loan`, its `late_days` and the `repair_ticket` opened, if any.
        """
        loan = cls.get(db, loan_id)
        # Lateness is judged on the desk's calendar day, the one overdue() uses
        returned_on = as_date(returned_on) if returned_on is not None else current_day()
        returned_at = utcnow().replace(
            year=returned_on.year, month=returned_on.month, day=returned_on.day)

        ticket = None
        with atomic(db):
            closed = db.execute(
                update(Loan)
                .where(Loan.id == loan_id, Loan.status == LoanStatus.ACTIVE)
                .values(status=LoanStatus.RETURNED, returned_at=returned_at)
                .execution_options(synchronize_session='fetch')
            ).rowcount
            if closed != 1:
                raise ConflictError(f"Loan {loan_id} is not active.")
            if loan.unit_id is not None:
                if damage:
                    ticket = RepairWorkflow.open_in_transaction(
                        db, loan.item_id, [loan.unit_id], description=damage,
                        priority=priority, kind=TicketKind.FAULT,
                        opened_by=returned_by, from_loan_id=loan.id)
                else:
                    UnitRegistry.free_from_loan(db, loan.unit_id, loan.id)
        delay = late_days(loan.due_date, returned_at)
        logger.info(f"loan {loan_id} returned, {delay} day(s) late")
        return {"loan": loan, "late_days": delay, "repair_ticket": ticket}

    @classmethod
    def list_loans(cls, db, borrower_id=None, active_only=False):
        q = select(Loan).order_by(Loan.due_date, Loan.id)
        if borrower_id is not None:
            q = q.where(Loan.borrower_id == borrower_id)
        if active_only:
            q = q.where(Loan.is_active)
        return db.execute(q).scalars().all()

    @classmethod
    def _active_where(cls, db, *criteria):
        return db.execute(
            select(Loan)
            .where(Loan.status == LoanStatus.ACTIVE, *criteria)
            .order_by(Loan.due_date, Loan.id)
        ).scalars().all()

    @classmethod
    def overdue(cls, db, today=None):
        return cls._active_where(db, Loan.due_date < (today or current_day()))

    @classmethod
    def due_today(cls, db, today=None):
        return cls._active_where(db, Loan.due_date == (today or current_day()))

    @classmethod
    def due_tomorrow(cls, db, today=None):
        return cls._active_where(db, Loan.due_date == (today or current_day()) + ONE_DAY)
