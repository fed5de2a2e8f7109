#!/usr/bin/env python

"""
    Approval Decision Processor for Kitroom.

    Pending requests are approved or rejected exactly once. Approval turns
    the request into a Loan and moves its unit to Loaned in the same
    transaction.

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

import logging
from sqlalchemy import update, select, func
from kitroom.core.db import atomic
from kitroom.core.models import Request, RequestStatus, Loan, LoanStatus, Unit, User
from kitroom.core.units import UnitRegistry
from kitroom.core.penalties import PenaltyEngine
from kitroom.core.exceptions import (
    ValidationError, ConflictError, AlreadyDecidedError, NotFoundError,
    UnitUnavailableError
)
from kitroom.core.utils import utcnow, skip_sunday

logger = logging.getLogger(__name__)

OUTCOMES = {
    'approved': RequestStatus.APPROVED,
    'approve': RequestStatus.APPROVED,
    'rejected': RequestStatus.REJECTED,
    'reject': RequestStatus.REJECTED,
}


def allocate_unit(db, item_id, loan_id):
    """Checks out the first available unit of an item for a loan.

    Items tracked without units are loaned as a whole and return None.
    """
    unit = UnitRegistry.checkout_any(db, item_id, loan_id)
    if unit is None and db.scalar(
            select(func.count(Unit.id)).where(Unit.item_id == item_id)):
        raise UnitUnavailableError(f"No unit of item {item_id} is available.")
    return unit


class DecisionProcessor:

    @classmethod
    def parse_outcome(cls, outcome):
        key = getattr(outcome, 'value', outcome)
        if key not in OUTCOMES:
            raise ValidationError("outcome must be 'approved' or 'rejected'.")
        return OUTCOMES[key]

    @classmethod
    def _claim(cls, db, request_id, status, decider_id, note):
        """Moves a pending request to `status`; loses to any earlier decision."""
        claimed = db.execute(
            update(Request)
            .where(Request.id == request_id, Request.status == RequestStatus.PENDING)
            .values(status=status, decided_by=decider_id,
                    decided_at=utcnow(), decision_note=note)
            .execution_options(synchronize_session='fetch')
        ).rowcount
        if claimed != 1:
            raise AlreadyDecidedError(f"Request {request_id} has already been decided.")

    @classmethod
    def decide(cls, db, request_id, outcome, decider_id=None, note=None):
        """Approves or rejects a pending request.

        Returns a dict with the decided `request` and, on approval, the new
        `loan`.
        """
        status = cls.parse_outcome(outcome)
        request = db.get(Request, request_id)
        if request is None:
            raise NotFoundError(f"Request {request_id} not found.")
        if request.status != RequestStatus.PENDING:
            raise AlreadyDecidedError(f"Request {request_id} has already been decided.")

        if status == RequestStatus.REJECTED:
            with atomic(db):
                cls._claim(db, request_id, status, decider_id, note)
                if request.unit_id is not None:
                    UnitRegistry.release(db, request.unit_id, request.id)
            logger.info(f"request {request_id} rejected by {decider_id}")
            return {"request": request, "loan": None}

        PenaltyEngine.ensure_not_blocked(db, request.user_id)
        borrower = db.get(User, request.user_id)
        try:
            with atomic(db):
                cls._claim(db, request_id, status, decider_id, note)
                loan = Loan(
                    item_id=request.item_id,
                    unit_id=request.unit_id,
                    borrower_id=request.user_id,
                    borrower_name=borrower.display_name if borrower else '',
                    checkout_date=request.start_date,
                    due_date=skip_sunday(request.end_date),
                    status=LoanStatus.ACTIVE,
                    note=request.note,
                    created_by=decider_id,
                    request_id=request.id,
                )
                db.add(loan)
                db.flush()
                if request.unit_id is not None:
                    UnitRegistry.commit_loan(db, request.unit_id, request.id, loan.id)
                else:
                    unit = allocate_unit(db, request.item_id, loan.id)
                    loan.unit_id = unit.id if unit else None
        except (AlreadyDecidedError, UnitUnavailableError):
            raise
        except ConflictError as e:
            logger.warning(f"approval of request {request_id} lost its unit: {e}")
            raise ConflictError(f"Request {request_id} already decided.") from e
        logger.info(f"request {request_id} approved by {decider_id} as loan {loan.id}")
        return {"request": request, "loan": loan}
