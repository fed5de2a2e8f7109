#!/usr/bin/env python
"""
    Item Schemas for Kitroom,
    including inventory items and the units that make them up.

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

from pydantic import BaseModel
from typing import Optional, List
from datetime import datetime
from kitroom.core.models import UnitState, LoanType

class Unit(BaseModel):
    id: int
    item_id: int
    code: str
    state: UnitState
    reserved_request_id: Optional[int] = None
    current_loan_id: Optional[int] = None
    repair_ticket_id: Optional[int] = None

    class Config:
        from_attributes = True

class Item(BaseModel):
    id: int
    name: str
    total_units: int
    available_units: int
    loan_type: LoanType
    category: Optional[str] = None
    location: Optional[str] = None
    note: Optional[str] = None
    course_names: List[str] = []
    units: List[Unit] = []
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
        json_schema_extra = {
            "example": {
                "id": 1,
                "name": "Canon EOS R6",
                "total_units": 2,
                "available_units": 1,
                "loan_type": "external_only",
                "category": "Cameras",
                "course_names": ["Photography"],
                "units": [
                    {"id": 1, "item_id": 1, "code": "Canon EOS R6-001", "state": "available"},
                    {"id": 2, "item_id": 1, "code": "Canon EOS R6-002", "state": "loaned",
                     "current_loan_id": 7},
                ],
            }
        }

class LowStock(BaseModel):
    item_id: int
    name: str
    available: int
    total: int
    percent_available: float
