#!/usr/bin/env python

"""
    Penalty/Block Engine for Kitroom.

    Late returns earn strikes; reaching BLOCK_THRESHOLD strikes blocks the
    user from borrowing until an administrator lifts the block. A penalty
    record, the strike increment and the block it may trigger are always
    written in one transaction.

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

import logging
from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError
from kitroom.core.db import atomic
from kitroom.core.models import (
    PenaltyRecord, PenaltyKind, UserAccountStatus, User, Loan, LoanStatus
)
from kitroom.core.exceptions import (
    DuplicatePenaltyError, NotFoundError, ValidationError, UserBlockedError
)
from kitroom.core.utils import utcnow, late_days
from kitroom.configs import BLOCK_THRESHOLD

logger = logging.getLogger(__name__)

BLOCK_REASON = f"Blocked after accumulating {BLOCK_THRESHOLD} or more penalty strikes"


def calculate_strikes(delay_days: int) -> int:
    if delay_days <= 0:
        return 0
    if delay_days <= 3:
        return 1
    if delay_days <= 7:
        return 2
    return 3


class PenaltyEngine:

    @classmethod
    def account_status(cls, db, user_id):
        """The user's strike/block status; users never penalized read as clean."""
        return UserAccountStatus.for_user(db, user_id) or UserAccountStatus(
            user_id=user_id, strikes=0, blocked=False)

    @classmethod
    def ensure_not_blocked(cls, db, user_id):
        status = UserAccountStatus.for_user(db, user_id)
        if status is not None and status.blocked:
            raise UserBlockedError(status.strikes, status.blocked_reason)

    @classmethod
    def list_penalties(cls, db, user_id):
        return db.execute(
            select(PenaltyRecord)
            .where(PenaltyRecord.user_id == user_id)
            .order_by(PenaltyRecord.created_at.desc(), PenaltyRecord.id.desc())
        ).scalars().all()

    @classmethod
    def _add_strikes(cls, db, user_id, strikes, assigned_by):
        """Atomically bumps the counter and blocks the user at the threshold."""
        UserAccountStatus.for_user(db, user_id, create=True)
        db.execute(
            update(UserAccountStatus)
            .where(UserAccountStatus.user_id == user_id)
            .values(strikes=UserAccountStatus.strikes + strikes)
            .execution_options(synchronize_session=False)
        )
        db.execute(
            update(UserAccountStatus)
            .where(UserAccountStatus.user_id == user_id,
                   UserAccountStatus.strikes >= BLOCK_THRESHOLD,
                   UserAccountStatus.blocked.is_(False))
            .values(blocked=True, blocked_reason=BLOCK_REASON,
                    blocked_at=utcnow(), blocked_by=assigned_by)
            .execution_options(synchronize_session=False)
        )
        status = db.get(UserAccountStatus, user_id)
        db.refresh(status)
        return status

    @classmethod
    def _check_target(cls, db, user_id, loan_id=None):
        if db.get(User, user_id) is None:
            raise NotFoundError(f"User {user_id} not found.")
        if loan_id is None:
            return None
        loan = db.get(Loan, loan_id)
        if loan is None:
            raise NotFoundError(f"Loan {loan_id} not found.")
        if loan.borrower_id != user_id:
            raise ValidationError(f"Loan {loan_id} was not borrowed by user {user_id}.")
        if cls._penalized(db, loan_id):
            raise DuplicatePenaltyError(f"Loan {loan_id} has already been penalized.")
        return loan

    @classmethod
    def _penalized(cls, db, loan_id):
        return db.execute(
            select(PenaltyRecord.id).where(PenaltyRecord.loan_id == loan_id)
        ).first() is not None

    @classmethod
    def _record(cls, db, fields, assigned_by, attempts=2):
        """Writes a penalty record and its strikes.

        A unique violation on the loan means another assignment got there
        first. Any other one is the account status row being created by a
        concurrent penalty, and the write is tried again.
        """
        for attempt in range(1, attempts + 1):
            record = PenaltyRecord(assigned_by=assigned_by, **fields)
            try:
                with atomic(db):
                    db.add(record)
                    db.flush()
                    status = cls._add_strikes(db, record.user_id, record.strikes, assigned_by)
                    result = {
                        "penalty_id": record.id,
                        "strikes_assigned": record.strikes,
                        "total_strikes": status.strikes,
                        "blocked": status.blocked,
                        "reason": record.reason,
                    }
                break
            except IntegrityError:
                loan_id = fields.get("loan_id")
                if loan_id is not None and cls._penalized(db, loan_id):
                    raise DuplicatePenaltyError(f"Loan {loan_id} has already been penalized.")
                if attempt == attempts:
                    raise
                logger.info(f"retrying penalty for user {fields['user_id']}")
        if result["blocked"]:
            logger.warning(f"user {fields['user_id']} blocked at {result['total_strikes']} strikes")
        return result

    @classmethod
    def assign_penalty(cls, db, user_id, loan_id, delay_days, assigned_by=None):
        if delay_days is None or delay_days < 0:
            raise ValidationError("delay_days must be zero or more.")
        cls._check_target(db, user_id, loan_id)
        return cls._record(db, {
            "user_id": user_id,
            "loan_id": loan_id,
            "kind": PenaltyKind.LATE_RETURN,
            "delay_days": delay_days,
            "strikes": calculate_strikes(delay_days),
            "reason": f"Returned {delay_days} day(s) late",
        }, assigned_by)

    @classmethod
    def assign_manual(cls, db, user_id, strikes, reason=None, assigned_by=None, loan_id=None):
        if strikes not in (1, 2, 3):
            raise ValidationError("A manual penalty carries between 1 and 3 strikes.")
        cls._check_target(db, user_id, loan_id)
        return cls._record(db, {
            "user_id": user_id,
            "loan_id": loan_id,
            "kind": PenaltyKind.MANUAL,
            "delay_days": 0,
            "strikes": strikes,
            "reason": reason or "Penalty assigned by an administrator",
        }, assigned_by)

    @classmethod
    def check_and_assign(cls, db, loan_id, assigned_by=None, today=None):
        """Penalizes a loan's borrower for whatever lateness the loan shows."""
        loan = db.get(Loan, loan_id)
        if loan is None:
            raise NotFoundError(f"Loan {loan_id} not found.")
        if loan.borrower_id is None:
            raise ValidationError(f"Loan {loan_id} has no registered borrower.")
        returned_on = loan.returned_at if loan.status == LoanStatus.RETURNED else today
        delay = late_days(loan.due_date, returned_on)
        if delay <= 0:
            return {"delay_days": 0, "strikes_assigned": 0}
        result = cls.assign_penalty(db, loan.borrower_id, loan.id, delay, assigned_by)
        return {"delay_days": delay, **result}

    @classmethod
    def remove_penalty(cls, db, penalty_id):
        """Deletes a penalty and gives its strikes back.

        Dropping below the threshold lifts an automatic block.
        """
        record = db.get(PenaltyRecord, penalty_id)
        if record is None:
            raise NotFoundError(f"Penalty {penalty_id} not found.")
        user_id, strikes = record.user_id, record.strikes
        with atomic(db):
            db.delete(record)
            status = UserAccountStatus.for_user(db, user_id, create=True)
            status.strikes = max(0, status.strikes - strikes)
            unblocked = status.blocked and status.strikes < BLOCK_THRESHOLD
            if unblocked:
                cls._clear_block(status)
            result = {
                "strikes_removed": strikes,
                "total_strikes": status.strikes,
                "unblocked": unblocked,
            }
        return result

    @classmethod
    def _clear_block(cls, status):
        status.blocked = False
        status.blocked_reason = None
        status.blocked_at = None
        status.blocked_by = None

    @classmethod
    def unblock(cls, db, user_id, reset_strikes=False):
        if db.get(User, user_id) is None:
            raise NotFoundError(f"User {user_id} not found.")
        with atomic(db):
            status = UserAccountStatus.for_user(db, user_id, create=True)
            cls._clear_block(status)
            if reset_strikes:
                status.strikes = 0
        logger.info(f"user {user_id} unblocked (strikes reset: {reset_strikes})")
        return status

    @classmethod
    def stats(cls, db):
        return {
            "users_with_strikes": db.scalar(select(func.count()).select_from(
                UserAccountStatus).where(UserAccountStatus.strikes > 0)) or 0,
            "blocked_users": db.scalar(select(func.count()).select_from(
                UserAccountStatus).where(UserAccountStatus.blocked.is_(True))) or 0,
            "total_penalties": db.scalar(select(func.count(PenaltyRecord.id))) or 0,
            "total_strikes_assigned": db.scalar(select(func.sum(PenaltyRecord.strikes))) or 0,
            "avg_delay_days": float(db.scalar(select(func.avg(PenaltyRecord.delay_days))) or 0),
        }
