from pydantic import BaseModel
from typing import Optional
from datetime import date, datetime
from kitroom.core.models import RequestStatus, UsageType

class Request(BaseModel):
    id: int
    user_id: int
    item_id: int
    unit_id: Optional[int] = None
    start_date: date
    end_date: date
    usage_type: Optional[UsageType] = None
    note: Optional[str] = None
    status: RequestStatus
    decided_by: Optional[int] = None
    decided_at: Optional[datetime] = None
    decision_note: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
