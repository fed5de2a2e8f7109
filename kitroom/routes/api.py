#!/usr/bin/env python

"""
    API routes for Kitroom,
    exposing the lending desk over HTTP.

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

import logging
from functools import wraps
from typing import Optional, List
from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session
from kitroom.core import auth
from kitroom.core.api import KitroomAPI
from kitroom.core.db import get_db
from kitroom.core.exceptions import (
    KitroomError,
    ValidationError,
    ForbiddenError,
    NotFoundError,
    ConflictError,
    UserBlockedError,
    DuplicatePenaltyError,
    IntegrityRecoverableError,
)
from kitroom.routes import schemas
from kitroom.schemas.item import Item, LowStock
from kitroom.schemas.request import Request as RequestOut
from kitroom.schemas.loan import Loan
from kitroom.schemas.repair import RepairTicket, FaultReport
from kitroom.schemas.user import User
from kitroom.schemas.penalty import Penalty, AccountStatus, PenaltyResult

logger = logging.getLogger(__name__)

router = APIRouter()

# First match wins, so subclasses come before their bases
STATUS_CODES = (
    (UserBlockedError, status.HTTP_403_FORBIDDEN),
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (ForbiddenError, status.HTTP_403_FORBIDDEN),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ConflictError, status.HTTP_409_CONFLICT),
    (DuplicatePenaltyError, status.HTTP_409_CONFLICT),
    (IntegrityRecoverableError, status.HTTP_500_INTERNAL_SERVER_ERROR),
)


def to_http(e: KitroomError) -> HTTPException:
    code = next((c for cls, c in STATUS_CODES if isinstance(e, cls)),
                status.HTTP_500_INTERNAL_SERVER_ERROR)
    if isinstance(e, UserBlockedError):
        return HTTPException(status_code=code, detail={
            "error": "user_blocked", "strikes": e.strikes, "reason": e.reason})
    if code >= 500:
        logger.error(f"{type(e).__name__}: {e}")
    return HTTPException(status_code=code, detail=str(e))


def handles_errors(func):
    """Turns core errors raised by a route into HTTP errors."""
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except KitroomError as e:
            raise to_http(e) from e
    return wrapper


def get_identity(request: Request) -> auth.Identity:
    """Reads the caller's identity from an `Authorization: Bearer` token."""
    token = None
    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        token = auth_header.split(" ", 1)[1]
    if identity := auth.verify_token(token):
        return identity
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED,
                        detail="Authentication required")


def get_member(identity: auth.Identity = Depends(get_identity),
               db: Session = Depends(get_db)) -> auth.Identity:
    """The caller, with their local user row created or brought up to date."""
    try:
        KitroomAPI.sync_identity(db, identity)
    except KitroomError as e:
        raise to_http(e) from e
    return identity


def require_admin(identity: auth.Identity = Depends(get_identity)) -> auth.Identity:
    if not identity.is_privileged:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN,
                            detail="Administrator privileges required")
    return identity


def require_self_or_admin(user_id: int, identity: auth.Identity):
    if identity.user_id != user_id and not identity.is_privileged:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN,
                            detail="Not allowed to view another user's records")


# Items

@router.get("/items", response_model=List[Item])
@handles_errors
def get_items(course: Optional[str] = None, db: Session = Depends(get_db),
              identity: auth.Identity = Depends(get_identity)):
    return KitroomAPI.list_items(db, course=course)

@router.get("/items/low-stock", response_model=List[LowStock])
@handles_errors
def get_low_stock(threshold: Optional[int] = None, db: Session = Depends(get_db),
                  identity: auth.Identity = Depends(require_admin)):
    if threshold is None:
        return KitroomAPI.low_stock_items(db)
    return KitroomAPI.low_stock_items(db, threshold=threshold)

@router.get("/items/{item_id}", response_model=Item)
@handles_errors
def get_item(item_id: int, db: Session = Depends(get_db),
             identity: auth.Identity = Depends(get_identity)):
    return KitroomAPI.get_item(db, item_id)

@router.post("/items", response_model=Item, status_code=status.HTTP_201_CREATED)
@handles_errors
def create_item(body: schemas.ItemCreate, db: Session = Depends(get_db),
                identity: auth.Identity = Depends(require_admin)):
    return KitroomAPI.create_item(db, **body.model_dump())

@router.patch("/items/{item_id}", response_model=Item)
@handles_errors
def update_item(item_id: int, body: schemas.ItemUpdate, db: Session = Depends(get_db),
                identity: auth.Identity = Depends(require_admin)):
    fields = body.model_dump(exclude_unset=True)
    courses = fields.pop("courses", None)
    return KitroomAPI.update_item(db, item_id, courses=courses, **fields)

@router.delete("/items/{item_id}")
@handles_errors
def delete_item(item_id: int, db: Session = Depends(get_db),
                identity: auth.Identity = Depends(require_admin)):
    return {"success": KitroomAPI.delete_item(db, item_id)}


# Requests

@router.post("/requests", response_model=RequestOut, status_code=status.HTTP_201_CREATED)
@handles_errors
def create_request(body: schemas.RequestCreate, db: Session = Depends(get_db),
                   identity: auth.Identity = Depends(get_member)):
    return KitroomAPI.create_request(
        db, identity.user_id, course=identity.course, **body.model_dump())

@router.get("/requests", response_model=List[RequestOut])
@handles_errors
def get_requests(user_id: Optional[int] = None, status: Optional[str] = None,
                 db: Session = Depends(get_db),
                 identity: auth.Identity = Depends(get_identity)):
    if not identity.is_privileged:
        user_id = identity.user_id
    try:
        return KitroomAPI.list_requests(db, user_id=user_id, status=status)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unknown request status '{status}'")

@router.delete("/requests/{request_id}")
@handles_errors
def cancel_request(request_id: int, db: Session = Depends(get_db),
                   identity: auth.Identity = Depends(get_identity)):
    KitroomAPI.cancel_request(db, request_id, identity.user_id, identity.is_privileged)
    return {"success": True}

@router.post("/requests/{request_id}/decision")
@handles_errors
def decide_request(request_id: int, body: schemas.Decision, db: Session = Depends(get_db),
                   identity: auth.Identity = Depends(require_admin)):
    result = KitroomAPI.decide(db, request_id, body.outcome, identity.user_id, body.note)
    loan = result["loan"]
    return {
        "request": RequestOut.model_validate(result["request"]),
        "loan": Loan.model_validate(loan) if loan else None,
    }


# Loans

@router.post("/loans", response_model=Loan, status_code=status.HTTP_201_CREATED)
@handles_errors
def create_direct_loan(body: schemas.DirectLoan, db: Session = Depends(get_db),
                       identity: auth.Identity = Depends(require_admin)):
    return KitroomAPI.create_direct_loan(db, created_by=identity.user_id, **body.model_dump())

@router.get("/loans", response_model=List[Loan])
@handles_errors
def get_loans(borrower_id: Optional[int] = None, active_only: bool = False,
              db: Session = Depends(get_db),
              identity: auth.Identity = Depends(get_identity)):
    if not identity.is_privileged:
        borrower_id = identity.user_id
    return KitroomAPI.list_loans(db, borrower_id=borrower_id, active_only=active_only)

@router.get("/loans/overdue", response_model=List[Loan])
@handles_errors
def get_overdue_loans(db: Session = Depends(get_db),
                      identity: auth.Identity = Depends(require_admin)):
    return KitroomAPI.overdue_loans(db)

@router.get("/loans/due-today", response_model=List[Loan])
@handles_errors
def get_loans_due_today(db: Session = Depends(get_db),
                        identity: auth.Identity = Depends(require_admin)):
    return KitroomAPI.loans_due_today(db)

@router.get("/loans/due-tomorrow", response_model=List[Loan])
@handles_errors
def get_loans_due_tomorrow(db: Session = Depends(get_db),
                           identity: auth.Identity = Depends(require_admin)):
    return KitroomAPI.loans_due_tomorrow(db)

@router.post("/loans/{loan_id}/return")
@handles_errors
def return_loan(loan_id: int, body: schemas.LoanReturn, db: Session = Depends(get_db),
                identity: auth.Identity = Depends(require_admin)):
    result = KitroomAPI.return_loan(
        db, loan_id, returned_on=body.returned_on, damage=body.damage,
        returned_by=identity.user_id, apply_penalty=body.apply_penalty)
    ticket = result["repair_ticket"]
    return {
        "loan": Loan.model_validate(result["loan"]),
        "late_days": result["late_days"],
        "repair_ticket": RepairTicket.model_validate(ticket) if ticket else None,
        "penalty": result["penalty"],
    }

@router.post("/loans/{loan_id}/penalty", response_model=PenaltyResult)
@handles_errors
def check_loan_penalty(loan_id: int, db: Session = Depends(get_db),
                       identity: auth.Identity = Depends(require_admin)):
    return KitroomAPI.check_and_assign_penalty(db, loan_id, assigned_by=identity.user_id)


# Repairs

@router.get("/repairs", response_model=List[RepairTicket])
@handles_errors
def get_repairs(status: Optional[str] = None, item_id: Optional[int] = None,
                db: Session = Depends(get_db),
                identity: auth.Identity = Depends(require_admin)):
    return KitroomAPI.list_repairs(db, status=status, item_id=item_id)

@router.post("/repairs", response_model=RepairTicket, status_code=status.HTTP_201_CREATED)
@handles_errors
def open_repair(body: schemas.RepairOpen, db: Session = Depends(get_db),
                identity: auth.Identity = Depends(require_admin)):
    return KitroomAPI.open_repair(db, opened_by=identity.user_id, **body.model_dump())

@router.post("/repairs/{ticket_id}/close", response_model=RepairTicket)
@handles_errors
def close_repair(ticket_id: int, body: schemas.RepairClose, db: Session = Depends(get_db),
                 identity: auth.Identity = Depends(require_admin)):
    return KitroomAPI.close_repair(db, ticket_id, outcome=body.outcome,
                                   closed_by=identity.user_id)


# Fault reports

@router.post("/fault-reports", response_model=FaultReport, status_code=status.HTTP_201_CREATED)
@handles_errors
def report_fault(body: schemas.FaultReportCreate, db: Session = Depends(get_db),
                 identity: auth.Identity = Depends(get_member)):
    return KitroomAPI.report_fault(db, identity.user_id, on_behalf=identity.is_privileged,
                                   **body.model_dump())

@router.get("/fault-reports", response_model=List[FaultReport])
@handles_errors
def get_fault_reports(status: Optional[str] = None, db: Session = Depends(get_db),
                      identity: auth.Identity = Depends(get_identity)):
    user_id = None if identity.is_privileged else identity.user_id
    return KitroomAPI.list_fault_reports(db, status=status, user_id=user_id)

@router.post("/fault-reports/{report_id}/close", response_model=FaultReport)
@handles_errors
def close_fault_report(report_id: int, body: schemas.FaultReportClose,
                       db: Session = Depends(get_db),
                       identity: auth.Identity = Depends(require_admin)):
    return KitroomAPI.close_fault_report(db, report_id, handled_by=identity.user_id,
                                         open_ticket=body.open_ticket, priority=body.priority)


# Penalties

@router.post("/penalties", response_model=PenaltyResult, status_code=status.HTTP_201_CREATED)
@handles_errors
def assign_penalty(body: schemas.PenaltyAssign, db: Session = Depends(get_db),
                   identity: auth.Identity = Depends(require_admin)):
    return KitroomAPI.assign_penalty(db, body.user_id, body.loan_id, body.delay_days,
                                     assigned_by=identity.user_id)

@router.post("/penalties/manual", response_model=PenaltyResult,
             status_code=status.HTTP_201_CREATED)
@handles_errors
def assign_manual_penalty(body: schemas.ManualPenalty, db: Session = Depends(get_db),
                          identity: auth.Identity = Depends(require_admin)):
    return KitroomAPI.assign_manual_penalty(
        db, body.user_id, body.strikes, reason=body.reason,
        assigned_by=identity.user_id, loan_id=body.loan_id)

@router.get("/penalties/stats")
@handles_errors
def get_penalty_stats(db: Session = Depends(get_db),
                      identity: auth.Identity = Depends(require_admin)):
    return KitroomAPI.penalty_stats(db)

@router.delete("/penalties/{penalty_id}")
@handles_errors
def remove_penalty(penalty_id: int, db: Session = Depends(get_db),
                   identity: auth.Identity = Depends(require_admin)):
    return KitroomAPI.remove_penalty(db, penalty_id)

@router.put("/users/{user_id}", response_model=User)
@handles_errors
def save_user(user_id: int, body: schemas.UserProfile, db: Session = Depends(get_db),
              identity: auth.Identity = Depends(require_admin)):
    return KitroomAPI.ensure_user(db, user_id, **body.model_dump())

@router.get("/users/{user_id}/penalties", response_model=List[Penalty])
@handles_errors
def get_user_penalties(user_id: int, db: Session = Depends(get_db),
                       identity: auth.Identity = Depends(get_identity)):
    require_self_or_admin(user_id, identity)
    return KitroomAPI.list_penalties(db, user_id)

@router.get("/users/{user_id}/status", response_model=AccountStatus)
@handles_errors
def get_user_status(user_id: int, db: Session = Depends(get_db),
                    identity: auth.Identity = Depends(get_identity)):
    require_self_or_admin(user_id, identity)
    return KitroomAPI.account_status(db, user_id)

@router.post("/users/{user_id}/unblock", response_model=AccountStatus)
@handles_errors
def unblock_user(user_id: int, body: schemas.Unblock, db: Session = Depends(get_db),
                 identity: auth.Identity = Depends(require_admin)):
    return KitroomAPI.unblock(db, user_id, reset_strikes=body.reset_strikes)


# Maintenance

@router.post("/maintenance/sweep")
@handles_errors
def sweep(db: Session = Depends(get_db),
          identity: auth.Identity = Depends(require_admin)):
    return KitroomAPI.sweep_all(db)
