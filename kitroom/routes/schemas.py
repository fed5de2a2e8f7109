from pydantic import BaseModel
from typing import List, Optional
from datetime import date

class ItemCreate(BaseModel):
    name: str
    loan_type: str = "external_only"
    total_units: Optional[int] = None
    unit_codes: Optional[List[str]] = None
    courses: List[str] = []
    category: Optional[str] = None
    location: Optional[str] = None
    note: Optional[str] = None

class ItemUpdate(BaseModel):
    name: Optional[str] = None
    total_units: Optional[int] = None
    loan_type: Optional[str] = None
    category: Optional[str] = None
    location: Optional[str] = None
    note: Optional[str] = None
    courses: Optional[List[str]] = None

class RequestCreate(BaseModel):
    item_id: Optional[int] = None
    unit_id: Optional[int] = None
    start_date: date
    end_date: date
    usage_type: Optional[str] = None
    note: Optional[str] = None

class Decision(BaseModel):
    outcome: str
    note: Optional[str] = None

class DirectLoan(BaseModel):
    item_id: int
    borrower_id: int
    start_date: date
    end_date: date
    unit_id: Optional[int] = None
    note: Optional[str] = None

class LoanReturn(BaseModel):
    returned_on: Optional[date] = None
    damage: Optional[str] = None
    apply_penalty: bool = True

class RepairOpen(BaseModel):
    item_id: int
    unit_ids: List[int]
    description: Optional[str] = None
    priority: str = "normal"
    kind: str = "repair"

class RepairClose(BaseModel):
    outcome: str = "completed"

class PenaltyAssign(BaseModel):
    user_id: int
    loan_id: int
    delay_days: int

class ManualPenalty(BaseModel):
    user_id: int
    strikes: int
    reason: Optional[str] = None
    loan_id: Optional[int] = None

class Unblock(BaseModel):
    reset_strikes: bool = False

class UserProfile(BaseModel):
    email: Optional[str] = None
    name: Optional[str] = None
    surname: Optional[str] = None
    role: Optional[str] = None
    course: Optional[str] = None

class FaultReportCreate(BaseModel):
    message: str
    loan_id: Optional[int] = None
    item_id: Optional[int] = None
    unit_id: Optional[int] = None

class FaultReportClose(BaseModel):
    open_ticket: bool = False
    priority: str = "normal"
