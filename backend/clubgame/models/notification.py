from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel


class Notification(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    uid: str = Field(index=True)
    title: str
    sub_title: Optional[str] = None
    routing: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
