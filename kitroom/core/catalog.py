import logging
from sqlalchemy import select, delete, func, case, exists
from kitroom.core.db import atomic
from kitroom.core.models import (
    InventoryItem, ItemCourse, Unit, UnitState, LoanType, Loan, LoanStatus,
    Request, RequestStatus, RepairTicket, TicketStatus
)
from kitroom.core.exceptions import ValidationError, NotFoundError, ConflictError
from kitroom.configs import LOW_STOCK_THRESHOLD

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = {'name', 'category', 'location', 'note', 'loan_type'}


class Catalog:

    @classmethod
    def get_item(cls, db, item_id):
        if item := db.get(InventoryItem, item_id):
            return item
        raise NotFoundError(f"Item {item_id} not found.")

    @classmethod
    def list_items(cls, db, course=None):
        q = select(InventoryItem).order_by(InventoryItem.name)
        if course:
            q = q.where(exists().where(
                ItemCourse.item_id == InventoryItem.id,
                ItemCourse.course == course,
            ))
        return db.execute(q).scalars().all()

    @classmethod
    def parse_loan_type(cls, loan_type):
        try:
            return LoanType(loan_type)
        except ValueError:
            allowed = ", ".join(t.value for t in LoanType)
            raise ValidationError(f"loan_type must be one of: {allowed}.")

    @classmethod
    def create_item(cls, db, name, loan_type=LoanType.EXTERNAL_ONLY, total_units=None,
                    unit_codes=None, courses=(), category=None, location=None, note=None):
        """Provisions an item together with one Unit per code.

        When no codes are given, `total_units` codes are generated as
        `<name>-001`, `<name>-002`, ...
        """
        name = (name or '').strip()
        if not name:
            raise ValidationError("Item name is required.")
        loan_type = cls.parse_loan_type(loan_type)

        codes = [c.strip() for c in (unit_codes or []) if c and c.strip()]
        if not codes:
            total_units = total_units or 1
            if total_units < 1:
                raise ValidationError("An item needs at least one unit.")
            codes = [f"{name}-{i:03d}" for i in range(1, total_units + 1)]

        duplicates = sorted({c for c in codes if codes.count(c) > 1})
        if duplicates:
            raise ValidationError(f"Duplicate unit codes: {', '.join(duplicates)}.")
        if InventoryItem.by_name(db, name):
            raise ConflictError(f"An item named '{name}' already exists.")
        taken = db.execute(select(Unit.code).where(Unit.code.in_(codes))).scalars().all()
        if taken:
            raise ConflictError(f"Unit codes already in use: {', '.join(sorted(taken))}.")

        with atomic(db):
            item = InventoryItem(
                name=name,
                total_units=len(codes),
                loan_type=loan_type,
                category=category,
                location=location,
                note=note,
            )
            item.units = [Unit(code=code, state=UnitState.AVAILABLE) for code in codes]
            item.courses = [ItemCourse(course=c) for c in sorted(set(courses or ()))]
            db.add(item)
        logger.info(f"item {item.id} '{name}' provisioned with {len(codes)} units")
        return item

    @classmethod
    def update_item(cls, db, item_id, courses=None, total_units=None, **fields):
        """Edits an item.

        Raising `total_units` adds new `<name>-NNN` units; lowering it
        removes Available units, newest codes first, and fails when too
        few are free.
        """
        item = cls.get_item(db, item_id)
        unknown = set(fields) - EDITABLE_FIELDS
        if unknown:
            raise ValidationError(f"Cannot edit: {', '.join(sorted(unknown))}.")
        if 'loan_type' in fields:
            fields['loan_type'] = cls.parse_loan_type(fields['loan_type'])
        if 'name' in fields:
            fields['name'] = (fields['name'] or '').strip()
            if not fields['name']:
                raise ValidationError("Item name is required.")
            other = InventoryItem.by_name(db, fields['name'])
            if other is not None and other.id != item.id:
                raise ConflictError(f"An item named '{fields['name']}' already exists.")
        if total_units is not None and total_units < 1:
            raise ValidationError("An item needs at least one unit.")
        with atomic(db):
            for k, v in fields.items():
                setattr(item, k, v)
            if courses is not None:
                wanted = set(courses)
                for link in list(item.courses):
                    if link.course not in wanted:
                        item.courses.remove(link)
                for course in sorted(wanted - set(item.course_names)):
                    item.courses.append(ItemCourse(course=course))
            if total_units is not None:
                cls._resize(db, item, total_units)
        return item

    @classmethod
    def _new_codes(cls, db, item, count):
        prefix = f"{item.name}-"
        taken = set(db.execute(
            select(Unit.code).where(Unit.code.like(f"{prefix}%"))).scalars())
        codes, n = [], 0
        while len(codes) < count:
            n += 1
            if (code := f"{prefix}{n:03d}") not in taken:
                codes.append(code)
        return codes

    @classmethod
    def _resize(cls, db, item, target):
        current = db.scalar(select(func.count(Unit.id)).where(Unit.item_id == item.id))
        if target > current:
            for code in cls._new_codes(db, item, target - current):
                item.units.append(Unit(code=code, state=UnitState.AVAILABLE))
        elif target < current:
            surplus = current - target
            spare = db.execute(
                select(Unit.id)
                .where(Unit.item_id == item.id, Unit.state == UnitState.AVAILABLE)
                .order_by(Unit.code.desc())
                .limit(surplus)
            ).scalars().all()
            if len(spare) < surplus:
                raise ConflictError(
                    f"Cannot remove {surplus} units of {item.name}: only {len(spare)} are available.")
            removed = db.execute(
                delete(Unit)
                .where(Unit.id.in_(spare), Unit.state == UnitState.AVAILABLE)
                .execution_options(synchronize_session='fetch')
            ).rowcount
            if removed != surplus:
                raise ConflictError(f"Units of {item.name} changed state while being removed.")
            db.expire(item, ['units'])
        item.total_units = target
        logger.info(f"item {item.id} resized from {current} to {target} units")

    @classmethod
    def delete_item(cls, db, item_id):
        """Deletes an item and, with it, its units and history.

        Refused while the item is still in circulation.
        """
        item = cls.get_item(db, item_id)
        busy = {
            "active loans": db.scalar(select(func.count(Loan.id)).where(
                Loan.item_id == item_id, Loan.status == LoanStatus.ACTIVE)),
            "pending requests": db.scalar(select(func.count(Request.id)).where(
                Request.item_id == item_id, Request.status == RequestStatus.PENDING)),
            "open repair tickets": db.scalar(select(func.count(RepairTicket.id)).where(
                RepairTicket.item_id == item_id,
                RepairTicket.status == TicketStatus.IN_PROGRESS)),
        }
        blockers = [f"{n} {what}" for what, n in busy.items() if n]
        if blockers:
            raise ConflictError(f"Item {item.name} still has {', '.join(blockers)}.")
        with atomic(db):
            db.delete(item)
        logger.info(f"item {item_id} deleted")
        return True

    @classmethod
    def low_stock(cls, db, threshold=LOW_STOCK_THRESHOLD):
        """Items with fewer than `threshold` available units."""
        available = func.coalesce(func.sum(
            case((Unit.state == UnitState.AVAILABLE, 1), else_=0)), 0)
        rows = db.execute(
            select(InventoryItem, available.label('available'))
            .outerjoin(Unit, Unit.item_id == InventoryItem.id)
            .group_by(InventoryItem.id)
            .having(available < threshold)
            .order_by(InventoryItem.name)
        ).all()
        return [
            {
                "item_id": item.id,
                "name": item.name,
                "available": int(n),
                "total": item.total_units,
                "percent_available": round(100.0 * int(n) / item.total_units, 2)
                if item.total_units else 0.0,
            }
            for item, n in rows
        ]
