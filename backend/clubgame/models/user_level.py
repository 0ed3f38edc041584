from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel


class UserLevel(SQLModel, table=True):
    """Append-only audit row: one per (player, match) rating change."""

    id: Optional[int] = Field(default=None, primary_key=True)
    uid: str = Field(index=True)
    schedule_id: int = Field(foreign_key="schedule.id", index=True)
    table_id: int
    fluctuation: float
    original: float  # level before the match
    created_at: datetime = Field(default_factory=datetime.utcnow)
