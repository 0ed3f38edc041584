from datetime import datetime
from enum import IntEnum
from typing import TYPE_CHECKING, List, Optional

from sqlmodel import Field, Relationship, SQLModel

if TYPE_CHECKING:
    from clubgame.models.game_table import GameTable
    from clubgame.models.schedule_member import ScheduleMember

GAME_TAG = "game"


class LifecycleState(IntEnum):
    """Ordinal tournament state. Only ever moves forward."""

    OPEN = 0
    REGISTRATION_CLOSED = 1
    DRAWN = 2
    IN_PROGRESS = 3
    FINISHED = 4


class Schedule(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    uid: str = Field(index=True)  # creator
    title: str
    tag: str = Field(default=GAME_TAG)
    is_kdk: bool = Field(default=False)  # round-robin (KDK) vs elimination
    is_single: bool = Field(default=True)
    final_score: int = Field(default=21)
    state: int = Field(default=LifecycleState.OPEN)
    # Elimination only: the round whose results are awaited. Advanced atomically
    # together with the next round's seating.
    current_round: int = Field(default=1)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow, sa_column_kwargs={"onupdate": datetime.utcnow})

    # Relationships
    members: List["ScheduleMember"] = Relationship(back_populates="schedule")
    game_tables: List["GameTable"] = Relationship(back_populates="schedule")

    @property
    def lifecycle(self) -> LifecycleState:
        return LifecycleState(self.state)
