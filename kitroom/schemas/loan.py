from pydantic import BaseModel
from typing import Optional
from datetime import date, datetime
from kitroom.core.models import LoanStatus

class Loan(BaseModel):
    id: int
    item_id: int
    unit_id: Optional[int] = None
    borrower_id: Optional[int] = None
    borrower_name: str
    checkout_date: date
    due_date: date
    status: LoanStatus
    returned_at: Optional[datetime] = None
    note: Optional[str] = None
    request_id: Optional[int] = None

    class Config:
        from_attributes = True
