#!/usr/bin/env python

"""
    Unit Registry for Kitroom.

    Owns `Unit.state` and the three pointer columns that go with it. Every
    mutator is one conditional UPDATE keyed on the state being left (and on
    the pointer the caller expects); when no row matches the caller gets a
    ConflictError. The registry never commits, it runs inside the caller's
    transaction.

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

import logging
from sqlalchemy import select, update, func
from kitroom.core.models import Unit, UnitState
from kitroom.core.exceptions import ConflictError, NotFoundError

logger = logging.getLogger(__name__)

CLEARED = {
    'reserved_request_id': None,
    'current_loan_id': None,
    'repair_ticket_id': None,
}


class UnitRegistry:

    @classmethod
    def get(cls, db, unit_id):
        if unit := db.get(Unit, unit_id):
            return unit
        raise NotFoundError(f"Unit {unit_id} not found.")

    @classmethod
    def _transition(cls, db, unit_id, source, target, guard=(), **pointers):
        stmt = (
            update(Unit)
            .where(Unit.id == unit_id, Unit.state == source, *guard)
            .values(state=target, **{**CLEARED, **pointers})
            .execution_options(synchronize_session='fetch')
        )
        if db.execute(stmt).rowcount == 1:
            logger.info(f"unit {unit_id}: {source.value} -> {target.value}")
            return

        row = db.execute(
            select(Unit.code, Unit.state).where(Unit.id == unit_id)
        ).first()
        if row is None:
            raise NotFoundError(f"Unit {unit_id} not found.")
        raise ConflictError(
            f"Unit {row.code} is {row.state.value}; cannot move it "
            f"from {source.value} to {target.value}."
        )

    @classmethod
    def reserve(cls, db, unit_id, request_id):
        cls._transition(db, unit_id, UnitState.AVAILABLE, UnitState.RESERVED,
                        reserved_request_id=request_id)

    @classmethod
    def release(cls, db, unit_id, expected_request_id):
        cls._transition(db, unit_id, UnitState.RESERVED, UnitState.AVAILABLE,
                        guard=(Unit.reserved_request_id == expected_request_id,))

    @classmethod
    def commit_loan(cls, db, unit_id, expected_request_id, loan_id):
        cls._transition(db, unit_id, UnitState.RESERVED, UnitState.LOANED,
                        guard=(Unit.reserved_request_id == expected_request_id,),
                        current_loan_id=loan_id)

    @classmethod
    def checkout(cls, db, unit_id, loan_id):
        cls._transition(db, unit_id, UnitState.AVAILABLE, UnitState.LOANED,
                        current_loan_id=loan_id)

    @classmethod
    def checkout_any(cls, db, item_id, loan_id):
        """Loans out the first available unit of an item.

        Candidates lost to a concurrent caller are skipped. Returns the unit,
        or None when nothing is left.
        """
        for unit_id in cls.available_ids(db, item_id):
            try:
                cls.checkout(db, unit_id, loan_id)
            except ConflictError:
                continue
            return db.get(Unit, unit_id)
        return None

    @classmethod
    def free_from_loan(cls, db, unit_id, expected_loan_id):
        cls._transition(db, unit_id, UnitState.LOANED, UnitState.AVAILABLE,
                        guard=(Unit.current_loan_id == expected_loan_id,))

    @classmethod
    def send_to_repair(cls, db, unit_id, ticket_id, expected_loan_id=None):
        if expected_loan_id is None:
            cls._transition(db, unit_id, UnitState.AVAILABLE, UnitState.IN_REPAIR,
                            repair_ticket_id=ticket_id)
        else:
            cls._transition(db, unit_id, UnitState.LOANED, UnitState.IN_REPAIR,
                            guard=(Unit.current_loan_id == expected_loan_id,),
                            repair_ticket_id=ticket_id)

    @classmethod
    def return_from_repair(cls, db, unit_id, expected_ticket_id):
        cls._transition(db, unit_id, UnitState.IN_REPAIR, UnitState.AVAILABLE,
                        guard=(Unit.repair_ticket_id == expected_ticket_id,))

    @classmethod
    def available_ids(cls, db, item_id):
        return db.execute(
            select(Unit.id)
            .where(Unit.item_id == item_id, Unit.state == UnitState.AVAILABLE)
            .order_by(Unit.code)
        ).scalars().all()

    @classmethod
    def available_for_item(cls, db, item_id):
        return db.execute(
            select(Unit)
            .where(Unit.item_id == item_id, Unit.state == UnitState.AVAILABLE)
            .order_by(Unit.code)
        ).scalars().all()

    @classmethod
    def count_by_state(cls, db, item_id):
        rows = db.execute(
            select(Unit.state, func.count(Unit.id))
            .where(Unit.item_id == item_id)
            .group_by(Unit.state)
        ).all()
        counts = {state: 0 for state in UnitState}
        counts.update({state: n for state, n in rows})
        return counts
