from pydantic import BaseModel
from typing import Optional
from datetime import datetime

class User(BaseModel):
    id: int
    email: str
    name: str = ''
    surname: str = ''
    role: str = 'user'
    course: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
