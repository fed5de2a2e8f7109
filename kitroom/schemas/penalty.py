#!/usr/bin/env python
"""
    Penalty Schemas for Kitroom,
    covering strike records and a user's borrowing status.

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

from pydantic import BaseModel
from typing import Optional
from datetime import datetime
from kitroom.core.models import PenaltyKind

class Penalty(BaseModel):
    id: int
    user_id: int
    loan_id: Optional[int] = None
    kind: PenaltyKind
    delay_days: int
    strikes: int
    reason: Optional[str] = None
    assigned_by: Optional[int] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class AccountStatus(BaseModel):
    user_id: int
    strikes: int = 0
    blocked: bool = False
    blocked_reason: Optional[str] = None
    blocked_at: Optional[datetime] = None
    blocked_by: Optional[int] = None

    class Config:
        from_attributes = True

class PenaltyResult(BaseModel):
    penalty_id: Optional[int] = None
    delay_days: Optional[int] = None
    strikes_assigned: int = 0
    total_strikes: Optional[int] = None
    blocked: bool = False
    reason: Optional[str] = None
