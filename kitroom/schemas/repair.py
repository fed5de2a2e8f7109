from pydantic import BaseModel
from typing import Optional, List
from datetime import datetime
from kitroom.core.models import TicketStatus, TicketPriority, TicketKind, ReportStatus

class RepairTicket(BaseModel):
    id: int
    item_id: int
    status: TicketStatus
    priority: TicketPriority
    kind: TicketKind
    description: Optional[str] = None
    unit_ids: List[int] = []
    opened_by: Optional[int] = None
    closed_by: Optional[int] = None
    opened_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class FaultReport(BaseModel):
    id: int
    user_id: int
    item_id: int
    unit_id: Optional[int] = None
    loan_id: Optional[int] = None
    message: str
    status: ReportStatus
    handled_by: Optional[int] = None
    handled_at: Optional[datetime] = None
    ticket_id: Optional[int] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
