#!/usr/bin/env python

"""
    Request/Reservation Manager for Kitroom.

    A request asks for an item over a date range and may pin one specific
    unit, which is then held as Reserved until the request is decided or
    cancelled.

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

import logging
from sqlalchemy import select
from kitroom.core.db import atomic
from kitroom.core.models import (
    Request, RequestStatus, InventoryItem, LoanType, UsageType, Unit, User
)
from kitroom.core.units import UnitRegistry
from kitroom.core.penalties import PenaltyEngine
from kitroom.core.exceptions import (
    ValidationError, NotFoundError, ForbiddenError, ConflictError,
    UnitUnavailableError
)
from kitroom.core.utils import as_date, span_days, today as current_day, ONE_DAY
from kitroom.configs import EXTERNAL_MAX_DAYS

logger = logging.getLogger(__name__)


def resolve_usage(item, usage_type):
    """The usage a request will be validated against, given the item's policy."""
    if item.loan_type == LoanType.INTERNAL_ONLY:
        return UsageType.INTERNAL
    if item.loan_type == LoanType.EXTERNAL_ONLY:
        return UsageType.EXTERNAL
    if not usage_type:
        raise ValidationError(f"{item.name} can be used internally or externally; usage_type is required.")
    try:
        return UsageType(usage_type)
    except ValueError:
        raise ValidationError("usage_type must be 'internal' or 'external'.")


def validate_dates(item, usage, start, end, today=None):
    today = today or current_day()
    if start < today:
        raise ValidationError("The start date cannot be in the past.")
    if end < start:
        raise ValidationError("The end date cannot precede the start date.")
    if usage == UsageType.INTERNAL:
        if start != end:
            raise ValidationError("Internal use must start and end on the same day.")
    else:
        if start < today + ONE_DAY:
            raise ValidationError("External loans can start tomorrow at the earliest.")
        if span_days(start, end) > EXTERNAL_MAX_DAYS:
            raise ValidationError(f"External loans last at most {EXTERNAL_MAX_DAYS} days.")


class ReservationManager:

    @classmethod
    def get(cls, db, request_id):
        if request := db.get(Request, request_id):
            return request
        raise NotFoundError(f"Request {request_id} not found.")

    @classmethod
    def list_requests(cls, db, user_id=None, status=None):
        q = select(Request).order_by(Request.created_at.desc(), Request.id.desc())
        if user_id is not None:
            q = q.where(Request.user_id == user_id)
        if status is not None:
            q = q.where(Request.status == RequestStatus(status))
        return db.execute(q).scalars().all()

    @classmethod
    def create_request(cls, db, user_id, item_id=None, unit_id=None, start_date=None,
                       end_date=None, usage_type=None, note=None, course=None, today=None):
        PenaltyEngine.ensure_not_blocked(db, user_id)
        if db.get(User, user_id) is None:
            raise NotFoundError(f"User {user_id} not found.")

        unit = None
        if unit_id is not None:
            unit = db.get(Unit, unit_id)
            if unit is None:
                raise NotFoundError(f"Unit {unit_id} not found.")
            if item_id is None:
                item_id = unit.item_id
            elif unit.item_id != item_id:
                raise ValidationError(f"Unit {unit.code} does not belong to item {item_id}.")
        if item_id is None:
            raise ValidationError("Either an item or a unit must be requested.")
        item = db.get(InventoryItem, item_id)
        if item is None:
            raise NotFoundError(f"Item {item_id} not found.")

        if course and item.course_names and course not in item.course_names:
            raise ForbiddenError(f"{item.name} is not available to the {course} course.")

        if start_date is None or end_date is None:
            raise ValidationError("Both a start and an end date are required.")
        start, end = as_date(start_date), as_date(end_date)
        usage = resolve_usage(item, usage_type)
        validate_dates(item, usage, start, end, today=today)

        with atomic(db):
            request = Request(
                user_id=user_id,
                item_id=item.id,
                unit_id=unit_id,
                start_date=start,
                end_date=end,
                usage_type=usage if item.loan_type == LoanType.EITHER else None,
                note=note,
                status=RequestStatus.PENDING,
            )
            db.add(request)
            db.flush()
            if unit_id is not None:
                try:
                    UnitRegistry.reserve(db, unit_id, request.id)
                except ConflictError as e:
                    raise UnitUnavailableError(str(e)) from e
        logger.info(f"request {request.id} created by user {user_id} for item {item.id}")
        return request

    @classmethod
    def cancel_request(cls, db, request_id, caller_id, caller_is_admin=False):
        """Withdraws a request, freeing the unit it pinned.

        Owners may only withdraw pending requests; administrators may
        remove a request in any status.
        """
        request = cls.get(db, request_id)
        if not caller_is_admin:
            if request.user_id != caller_id:
                raise ForbiddenError("Only the requester or an administrator can cancel this request.")
            if request.status != RequestStatus.PENDING:
                raise ForbiddenError("Only pending requests can be cancelled.")

        with atomic(db):
            if request.unit_id is not None:
                try:
                    UnitRegistry.release(db, request.unit_id, request.id)
                except ConflictError:
                    if request.status == RequestStatus.PENDING:
                        raise
                    logger.info(f"request {request.id} is {request.status.value}; "
                                f"unit {request.unit_id} was already released")
            db.delete(request)
        logger.info(f"request {request_id} cancelled by user {caller_id}")
        return True
