from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import UniqueConstraint as SAUniqueConstraint
from sqlmodel import Field, Relationship, SQLModel

if TYPE_CHECKING:
    from clubgame.models.schedule import Schedule

BYE_UID_PREFIX = "bye:"


class ScheduleMember(SQLModel, table=True):
    __table_args__ = (SAUniqueConstraint("schedule_id", "uid", name="uq_schedule_member_uid"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    schedule_id: int = Field(foreign_key="schedule.id", index=True)
    uid: str  # user uid, or a synthetic "bye:<schedule>:<slot>" placeholder
    approval: bool = Field(default=False)
    team_name: Optional[str] = Field(default=None)
    member_index: Optional[int] = Field(default=None)  # 1-based seed, set once at draw time
    is_walk_over: bool = Field(default=False)

    # Written once when the tournament is finalized
    score: int = Field(default=0)
    win_point: int = Field(default=0)
    ranking: Optional[int] = Field(default=None)

    created_at: datetime = Field(default_factory=datetime.utcnow)

    schedule: "Schedule" = Relationship(back_populates="members")


def bye_uid(schedule_id: int, slot: int) -> str:
    return f"{BYE_UID_PREFIX}{schedule_id}:{slot}"
