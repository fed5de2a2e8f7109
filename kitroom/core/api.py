#!/usr/bin/env python

"""
    Public operations of the Kitroom lending desk.

    KitroomAPI is the one entry point the routes and scripts call. Each
    operation commits its own unit of work; notifications go out only after
    that work is committed and can never undo it.

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

import logging
from kitroom.core.catalog import Catalog
from kitroom.core.reservations import ReservationManager
from kitroom.core.decisions import DecisionProcessor
from kitroom.core.loans import LoanManager
from kitroom.core.repairs import RepairWorkflow
from kitroom.core.penalties import PenaltyEngine
from kitroom.core.sweeper import Sweeper
from kitroom.core.users import UserDirectory
from kitroom.core.notify import Notifier
from kitroom.core.models import RequestStatus, TicketStatus, TicketPriority, TicketKind, User
from kitroom.core.exceptions import DuplicatePenaltyError
from kitroom.configs import LOW_STOCK_THRESHOLD

logger = logging.getLogger(__name__)


class KitroomAPI:

    notifier = Notifier()

    @classmethod
    def _notify(cls, event, **payload):
        try:
            cls.notifier.notify(event, payload)
        except Exception as e:
            logger.error(f"Notification '{event}' failed: {e}")

    # Users

    @classmethod
    def ensure_user(cls, db, user_id, email=None, name=None, surname=None, role=None,
                    course=None):
        return UserDirectory.ensure_user(db, user_id, email=email, name=name,
                                         surname=surname, role=role, course=course)

    @classmethod
    def sync_identity(cls, db, identity):
        """Keeps the local user row in step with a verified identity."""
        if identity.email is None and db.get(User, identity.user_id) is None:
            return None
        return UserDirectory.ensure_user(
            db, identity.user_id, email=identity.email, name=identity.name,
            role=identity.role, course=identity.course)

    # Catalog

    @classmethod
    def create_item(cls, db, name, loan_type, total_units=None, unit_codes=None,
                    courses=(), category=None, location=None, note=None):
        return Catalog.create_item(
            db, name, loan_type, total_units=total_units, unit_codes=unit_codes,
            courses=courses, category=category, location=location, note=note)

    @classmethod
    def update_item(cls, db, item_id, courses=None, **fields):
        return Catalog.update_item(db, item_id, courses=courses, **fields)

    @classmethod
    def delete_item(cls, db, item_id):
        return Catalog.delete_item(db, item_id)

    @classmethod
    def get_item(cls, db, item_id):
        return Catalog.get_item(db, item_id)

    @classmethod
    def list_items(cls, db, course=None):
        return Catalog.list_items(db, course=course)

    @classmethod
    def low_stock_items(cls, db, threshold=LOW_STOCK_THRESHOLD):
        return Catalog.low_stock(db, threshold=threshold)

    # Requests

    @classmethod
    def create_request(cls, db, user_id, item_id=None, unit_id=None, start_date=None,
                       end_date=None, usage_type=None, note=None, course=None):
        request = ReservationManager.create_request(
            db, user_id, item_id=item_id, unit_id=unit_id, start_date=start_date,
            end_date=end_date, usage_type=usage_type, note=note, course=course)
        cls._notify('request_created', request_id=request.id, user_id=user_id,
                    item_id=request.item_id, unit_id=request.unit_id,
                    start_date=str(request.start_date), end_date=str(request.end_date))
        return request

    @classmethod
    def cancel_request(cls, db, request_id, caller_id, caller_is_admin=False):
        return ReservationManager.cancel_request(db, request_id, caller_id, caller_is_admin)

    @classmethod
    def list_requests(cls, db, user_id=None, status=None):
        return ReservationManager.list_requests(db, user_id=user_id, status=status)

    @classmethod
    def decide(cls, db, request_id, outcome, decider_id=None, note=None):
        result = DecisionProcessor.decide(db, request_id, outcome, decider_id, note)
        request, loan = result["request"], result["loan"]
        if request.status == RequestStatus.APPROVED:
            cls._notify('request_approved', request_id=request.id, user_id=request.user_id,
                        loan_id=loan.id, due_date=str(loan.due_date))
        else:
            cls._notify('request_rejected', request_id=request.id, user_id=request.user_id,
                        note=note)
        return result

    # Loans

    @classmethod
    def create_direct_loan(cls, db, item_id, borrower_id, start_date, end_date,
                           unit_id=None, note=None, created_by=None):
        return LoanManager.create_direct(
            db, item_id, borrower_id, start_date, end_date,
            unit_id=unit_id, note=note, created_by=created_by)

    @classmethod
    def return_loan(cls, db, loan_id, returned_on=None, damage=None, returned_by=None,
                    apply_penalty=False):
        """Returns a loan and, when asked to, penalizes a late return.

        The penalty is its own transaction, committed after the return.
        """
        result = LoanManager.return_loan(
            db, loan_id, returned_on=returned_on, damage=damage, returned_by=returned_by)
        result["penalty"] = None
        loan = result["loan"]
        if apply_penalty and result["late_days"] > 0 and loan.borrower_id is not None:
            try:
                result["penalty"] = cls.assign_penalty(
                    db, loan.borrower_id, loan.id, result["late_days"], assigned_by=returned_by)
            except DuplicatePenaltyError:
                logger.info(f"loan {loan.id} was already penalized")
        return result

    @classmethod
    def list_loans(cls, db, borrower_id=None, active_only=False):
        return LoanManager.list_loans(db, borrower_id=borrower_id, active_only=active_only)

    @classmethod
    def overdue_loans(cls, db, today=None):
        return LoanManager.overdue(db, today=today)

    @classmethod
    def loans_due_today(cls, db, today=None):
        return LoanManager.due_today(db, today=today)

    @classmethod
    def loans_due_tomorrow(cls, db, today=None):
        return LoanManager.due_tomorrow(db, today=today)

    @classmethod
    def send_due_reminders(cls, db, today=None):
        """Reminds borrowers of loans due tomorrow; returns how many were sent."""
        sent = 0
        for loan in LoanManager.due_tomorrow(db, today=today):
            if loan.borrower_id is None:
                continue
            cls._notify('loan_due_reminder', loan_id=loan.id, user_id=loan.borrower_id,
                        borrower_name=loan.borrower_name, item_id=loan.item_id,
                        due_date=str(loan.due_date))
            sent += 1
        return sent

    # Repairs

    @classmethod
    def open_repair(cls, db, item_id, unit_ids, description=None,
                    priority=TicketPriority.NORMAL, kind=TicketKind.REPAIR, opened_by=None):
        return RepairWorkflow.open(db, item_id, unit_ids, description=description,
                                   priority=priority, kind=kind, opened_by=opened_by)

    @classmethod
    def close_repair(cls, db, ticket_id, outcome=TicketStatus.COMPLETED, closed_by=None):
        return RepairWorkflow.close(db, ticket_id, outcome=outcome, closed_by=closed_by)

    @classmethod
    def list_repairs(cls, db, status=None, item_id=None):
        return RepairWorkflow.list_tickets(db, status=status, item_id=item_id)

    @classmethod
    def report_fault(cls, db, reporter_id, message, loan_id=None, item_id=None,
                     unit_id=None, on_behalf=False):
        report = RepairWorkflow.report_fault(
            db, reporter_id, message, loan_id=loan_id, item_id=item_id,
            unit_id=unit_id, on_behalf=on_behalf)
        cls._notify('fault_reported', report_id=report.id, user_id=reporter_id,
                    item_id=report.item_id, unit_id=report.unit_id, loan_id=report.loan_id)
        return report

    @classmethod
    def list_fault_reports(cls, db, status=None, user_id=None):
        return RepairWorkflow.list_reports(db, status=status, user_id=user_id)

    @classmethod
    def close_fault_report(cls, db, report_id, handled_by=None, open_ticket=False,
                           priority=TicketPriority.NORMAL):
        return RepairWorkflow.close_report(db, report_id, handled_by=handled_by,
                                           open_ticket=open_ticket, priority=priority)

    # Penalties

    @classmethod
    def _penalized(cls, user_id, result):
        cls._notify('penalty_assigned', user_id=user_id, **result)
        return result

    @classmethod
    def assign_penalty(cls, db, user_id, loan_id, delay_days, assigned_by=None):
        result = PenaltyEngine.assign_penalty(db, user_id, loan_id, delay_days, assigned_by)
        return cls._penalized(user_id, result)

    @classmethod
    def assign_manual_penalty(cls, db, user_id, strikes, reason=None, assigned_by=None,
                              loan_id=None):
        result = PenaltyEngine.assign_manual(
            db, user_id, strikes, reason=reason, assigned_by=assigned_by, loan_id=loan_id)
        return cls._penalized(user_id, result)

    @classmethod
    def check_and_assign_penalty(cls, db, loan_id, assigned_by=None, today=None):
        result = PenaltyEngine.check_and_assign(db, loan_id, assigned_by, today=today)
        if result.get("strikes_assigned"):
            loan = LoanManager.get(db, loan_id)
            cls._penalized(loan.borrower_id, result)
        return result

    @classmethod
    def remove_penalty(cls, db, penalty_id):
        return PenaltyEngine.remove_penalty(db, penalty_id)

    @classmethod
    def unblock(cls, db, user_id, reset_strikes=False):
        return PenaltyEngine.unblock(db, user_id, reset_strikes=reset_strikes)

    @classmethod
    def account_status(cls, db, user_id):
        return PenaltyEngine.account_status(db, user_id)

    @classmethod
    def list_penalties(cls, db, user_id):
        return PenaltyEngine.list_penalties(db, user_id)

    @classmethod
    def penalty_stats(cls, db):
        return PenaltyEngine.stats(db)

    # Maintenance

    @classmethod
    def sweep_orphaned_units(cls, db):
        return Sweeper.sweep_orphaned_units(db)

    @classmethod
    def sweep_all(cls, db):
        return Sweeper.sweep_all(db)
