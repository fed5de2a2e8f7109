#!/usr/bin/env python

"""
    Consistency Sweeper for Kitroom.

    Puts back into circulation units whose state points at something that
    no longer holds them. Each sweep is a single conditional UPDATE, so it
    can run repeatedly and alongside live traffic.

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

import logging
from sqlalchemy import update, exists
from kitroom.core.db import atomic
from kitroom.core.models import (
    Unit, UnitState, RepairTicket, RepairTicketUnit, TicketStatus,
    Request, RequestStatus, Loan, LoanStatus
)
from kitroom.core.units import CLEARED

logger = logging.getLogger(__name__)


class Sweeper:

    @classmethod
    def _free(cls, db, state, *orphaned):
        with atomic(db):
            freed = db.execute(
                update(Unit)
                .where(Unit.state == state, *orphaned)
                .values(state=UnitState.AVAILABLE, **CLEARED)
                .execution_options(synchronize_session=False)
            ).rowcount
        if freed:
            logger.warning(f"sweeper freed {freed} orphaned {state.value} unit(s)")
        return freed

    @classmethod
    def sweep_orphaned_units(cls, db):
        """InRepair units that no InProgress ticket holds go back to Available."""
        held_by_link = exists().where(
            RepairTicketUnit.unit_id == Unit.id,
            RepairTicketUnit.ticket_id == RepairTicket.id,
            RepairTicket.status == TicketStatus.IN_PROGRESS,
        )
        held_by_pointer = exists().where(
            RepairTicket.id == Unit.repair_ticket_id,
            RepairTicket.status == TicketStatus.IN_PROGRESS,
        )
        return cls._free(db, UnitState.IN_REPAIR, ~held_by_link, ~held_by_pointer)

    @classmethod
    def sweep_orphaned_reservations(cls, db):
        """Reserved units whose request is gone or no longer pending."""
        pending = exists().where(
            Request.id == Unit.reserved_request_id,
            Request.status == RequestStatus.PENDING,
        )
        return cls._free(db, UnitState.RESERVED, ~pending)

    @classmethod
    def sweep_orphaned_loans(cls, db):
        """Loaned units whose loan is gone or already returned."""
        active = exists().where(
            Loan.id == Unit.current_loan_id,
            Loan.status == LoanStatus.ACTIVE,
        )
        return cls._free(db, UnitState.LOANED, ~active)

    @classmethod
    def sweep_all(cls, db):
        return {
            "repair": cls.sweep_orphaned_units(db),
            "reserved": cls.sweep_orphaned_reservations(db),
            "loaned": cls.sweep_orphaned_loans(db),
        }
