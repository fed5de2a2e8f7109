#!/usr/bin/env python

"""
    Models for Kitroom,
    including inventory items, their individually tracked units and
    everything that moves a unit between availability states.

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

from sqlalchemy import (
    Column, String, Boolean, Integer, Date, DateTime, Text, ForeignKey,
    UniqueConstraint, Enum as SQLAlchemyEnum, select
)
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from sqlalchemy.ext.hybrid import hybrid_property
from kitroom.core.db import Base
import enum


class LoanType(str, enum.Enum):
    EXTERNAL_ONLY = "external_only"
    INTERNAL_ONLY = "internal_only"
    EITHER = "either"

class UsageType(str, enum.Enum):
    INTERNAL = "internal"
    EXTERNAL = "external"

class UnitState(str, enum.Enum):
    AVAILABLE = "available"
    RESERVED = "reserved"
    LOANED = "loaned"
    IN_REPAIR = "in_repair"

class RequestStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"

class LoanStatus(str, enum.Enum):
    ACTIVE = "active"
    RETURNED = "returned"

class TicketStatus(str, enum.Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

class TicketPriority(str, enum.Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"

class TicketKind(str, enum.Enum):
    FAULT = "fault"
    REPAIR = "repair"

class PenaltyKind(str, enum.Enum):
    LATE_RETURN = "late_return"
    MANUAL = "manual"

class ReportStatus(str, enum.Enum):
    OPEN = "open"
    CLOSED = "closed"


def _enum(cls):
    return SQLAlchemyEnum(cls, native_enum=False, length=20,
                          values_callable=lambda e: [m.value for m in e])


class User(Base):
    __tablename__ = 'users'

    id = Column(Integer, primary_key=True)
    email = Column(String(255), unique=True, nullable=False)
    name = Column(String(100), nullable=False, default='')
    surname = Column(String(100), nullable=False, default='')
    role = Column(String(20), nullable=False, default='user')
    course = Column(String(100))
    created_at = Column(DateTime(timezone=True), default=func.now())

    @property
    def display_name(self):
        full = f"{self.name or ''} {self.surname or ''}".strip()
        return full or self.email


class InventoryItem(Base):
    __tablename__ = 'items'

    id = Column(Integer, primary_key=True)
    name = Column(String(200), unique=True, nullable=False)
    total_units = Column(Integer, nullable=False, default=1)
    loan_type = Column(_enum(LoanType), nullable=False, default=LoanType.EXTERNAL_ONLY)
    category = Column(String(100))
    location = Column(String(200))
    note = Column(Text)
    created_at = Column(DateTime(timezone=True), default=func.now())
    updated_at = Column(DateTime(timezone=True), default=func.now(), onupdate=func.now())

    units = relationship('Unit', back_populates='item', order_by='Unit.code',
                         cascade='all, delete-orphan')
    courses = relationship('ItemCourse', cascade='all, delete-orphan')
    requests = relationship('Request', back_populates='item', cascade='all, delete-orphan')
    loans = relationship('Loan', back_populates='item', cascade='all, delete-orphan')
    repair_tickets = relationship('RepairTicket', back_populates='item',
                                  cascade='all, delete-orphan')
    fault_reports = relationship('FaultReport', back_populates='item',
                                 cascade='all, delete-orphan')

    @property
    def course_names(self):
        return sorted(c.course for c in self.courses)

    @property
    def available_units(self):
        return sum(1 for u in self.units if u.state == UnitState.AVAILABLE)

    @classmethod
    def by_name(cls, db, name):
        return db.execute(select(cls).where(cls.name == name)).scalar_one_or_none()


class ItemCourse(Base):
    __tablename__ = 'item_courses'

    id = Column(Integer, primary_key=True)
    item_id = Column(Integer, ForeignKey('items.id', ondelete='CASCADE'), nullable=False)
    course = Column(String(100), nullable=False)
    __table_args__ = (UniqueConstraint('item_id', 'course', name='unique_item_course'),)


class Unit(Base):
    """One physical copy of an item.

    At most one of the three pointer columns is set, and which one is set
    follows from `state`. The pointers are plain integers rather than foreign
    keys; they are kept honest by the compare-and-set updates in
    `kitroom.core.units` and repaired by `kitroom.core.sweeper`.
    """
    __tablename__ = 'units'

    id = Column(Integer, primary_key=True)
    item_id = Column(Integer, ForeignKey('items.id', ondelete='CASCADE'), nullable=False, index=True)
    code = Column(String(100), unique=True, nullable=False)
    state = Column(_enum(UnitState), nullable=False, default=UnitState.AVAILABLE, index=True)
    reserved_request_id = Column(Integer, index=True)
    current_loan_id = Column(Integer, index=True)
    repair_ticket_id = Column(Integer, index=True)
    note = Column(Text)
    updated_at = Column(DateTime(timezone=True), default=func.now(), onupdate=func.now())

    item = relationship('InventoryItem', back_populates='units')


class Request(Base):
    __tablename__ = 'requests'

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    item_id = Column(Integer, ForeignKey('items.id', ondelete='CASCADE'), nullable=False)
    unit_id = Column(Integer, ForeignKey('units.id', ondelete='SET NULL'))
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    usage_type = Column(_enum(UsageType))
    note = Column(Text)
    status = Column(_enum(RequestStatus), nullable=False, default=RequestStatus.PENDING, index=True)
    decided_by = Column(Integer)
    decided_at = Column(DateTime(timezone=True))
    decision_note = Column(Text)
    created_at = Column(DateTime(timezone=True), default=func.now())

    item = relationship('InventoryItem', back_populates='requests')
    unit = relationship('Unit')
    user = relationship('User')


class Loan(Base):
    __tablename__ = 'loans'

    id = Column(Integer, primary_key=True)
    item_id = Column(Integer, ForeignKey('items.id', ondelete='CASCADE'), nullable=False)
    unit_id = Column(Integer, ForeignKey('units.id', ondelete='SET NULL'))
    borrower_id = Column(Integer, ForeignKey('users.id', ondelete='SET NULL'), index=True)
    # Display copy of the borrower's name at checkout time
    borrower_name = Column(String(255), nullable=False, default='')
    checkout_date = Column(Date, nullable=False)
    due_date = Column(Date, nullable=False, index=True)
    status = Column(_enum(LoanStatus), nullable=False, default=LoanStatus.ACTIVE, index=True)
    returned_at = Column(DateTime(timezone=True))
    note = Column(Text)
    created_by = Column(Integer)
    request_id = Column(Integer, ForeignKey('requests.id', ondelete='SET NULL'), unique=True)
    created_at = Column(DateTime(timezone=True), default=func.now())

    item = relationship('InventoryItem', back_populates='loans')
    unit = relationship('Unit')
    borrower = relationship('User')
    request = relationship('Request')

    @hybrid_property
    def is_active(self):
        return self.status == LoanStatus.ACTIVE


class RepairTicket(Base):
    __tablename__ = 'repair_tickets'

    id = Column(Integer, primary_key=True)
    item_id = Column(Integer, ForeignKey('items.id', ondelete='CASCADE'), nullable=False)
    status = Column(_enum(TicketStatus), nullable=False, default=TicketStatus.IN_PROGRESS, index=True)
    priority = Column(_enum(TicketPriority), nullable=False, default=TicketPriority.NORMAL)
    kind = Column(_enum(TicketKind), nullable=False, default=TicketKind.REPAIR)
    description = Column(Text)
    opened_by = Column(Integer)
    closed_by = Column(Integer)
    opened_at = Column(DateTime(timezone=True), default=func.now())
    closed_at = Column(DateTime(timezone=True))

    item = relationship('InventoryItem', back_populates='repair_tickets')
    unit_links = relationship('RepairTicketUnit', back_populates='ticket',
                              cascade='all, delete-orphan')

    @property
    def unit_ids(self):
        return sorted(link.unit_id for link in self.unit_links)


class RepairTicketUnit(Base):
    __tablename__ = 'repair_ticket_units'

    ticket_id = Column(Integer, ForeignKey('repair_tickets.id', ondelete='CASCADE'), primary_key=True)
    unit_id = Column(Integer, ForeignKey('units.id', ondelete='CASCADE'), primary_key=True)

    ticket = relationship('RepairTicket', back_populates='unit_links')
    unit = relationship('Unit')


class FaultReport(Base):
    """A user's note that something they borrowed or found is broken.

    The desk closes it, opening a fault ticket when the unit needs work.
    """
    __tablename__ = 'fault_reports'

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    item_id = Column(Integer, ForeignKey('items.id', ondelete='CASCADE'), nullable=False)
    unit_id = Column(Integer, ForeignKey('units.id', ondelete='SET NULL'))
    loan_id = Column(Integer, ForeignKey('loans.id', ondelete='SET NULL'))
    message = Column(Text, nullable=False)
    status = Column(_enum(ReportStatus), nullable=False, default=ReportStatus.OPEN, index=True)
    handled_by = Column(Integer)
    handled_at = Column(DateTime(timezone=True))
    ticket_id = Column(Integer, ForeignKey('repair_tickets.id', ondelete='SET NULL'))
    created_at = Column(DateTime(timezone=True), default=func.now())

    item = relationship('InventoryItem', back_populates='fault_reports')


class PenaltyRecord(Base):
    __tablename__ = 'penalty_records'

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    loan_id = Column(Integer, ForeignKey('loans.id', ondelete='SET NULL'), unique=True)
    kind = Column(_enum(PenaltyKind), nullable=False, default=PenaltyKind.LATE_RETURN)
    delay_days = Column(Integer, nullable=False, default=0)
    strikes = Column(Integer, nullable=False)
    reason = Column(Text)
    assigned_by = Column(Integer)
    created_at = Column(DateTime(timezone=True), default=func.now())


class UserAccountStatus(Base):
    __tablename__ = 'user_account_status'

    user_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), primary_key=True)
    strikes = Column(Integer, nullable=False, default=0)
    blocked = Column(Boolean, nullable=False, default=False)
    blocked_reason = Column(Text)
    blocked_at = Column(DateTime(timezone=True))
    blocked_by = Column(Integer)

    @classmethod
    def for_user(cls, db, user_id, create=False):
        status = db.get(cls, user_id)
        if status is None and create:
            status = cls(user_id=user_id, strikes=0, blocked=False)
            db.add(status)
            db.flush()
        return status
