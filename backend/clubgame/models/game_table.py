from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Optional, Tuple, Union

from sqlalchemy import UniqueConstraint as SAUniqueConstraint
from sqlmodel import Field, Relationship, SQLModel

if TYPE_CHECKING:
    from clubgame.models.schedule import Schedule

ROUND_STRIDE = 1000


@dataclass(frozen=True)
class SinglesLineup:
    player1: Optional[str]
    player2: Optional[str]

    def side(self, index: int) -> Tuple[str, ...]:
        uid = self.player1 if index == 1 else self.player2
        return (uid,) if uid else ()


@dataclass(frozen=True)
class DoublesLineup:
    """A side is empty (placeholder or bye), a one-person team, or a pair."""

    team1: Tuple[str, ...]
    team2: Tuple[str, ...]

    def __post_init__(self):
        for team in (self.team1, self.team2):
            if len(team) > 2 or len(set(team)) != len(team):
                raise ValueError(f"Invalid doubles side: {team!r}")
        if set(self.team1) & set(self.team2):
            raise ValueError("A player cannot be on both sides")

    def side(self, index: int) -> Tuple[str, ...]:
        return self.team1 if index == 1 else self.team2


Lineup = Union[SinglesLineup, DoublesLineup]


def make_table_id(round_number: int, position: int) -> int:
    """Elimination address (round, position) -> table_id."""
    return round_number * ROUND_STRIDE + position


def round_of(table_id: int) -> int:
    return table_id // ROUND_STRIDE


class GameTable(SQLModel, table=True):
    __table_args__ = (SAUniqueConstraint("schedule_id", "table_id", name="uq_game_table_schedule_table"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    schedule_id: int = Field(foreign_key="schedule.id", index=True)
    table_id: int  # round*1000+position for elimination, 1..N for KDK

    player1_0: Optional[str] = Field(default=None)
    player1_1: Optional[str] = Field(default=None)
    player2_0: Optional[str] = Field(default=None)
    player2_1: Optional[str] = Field(default=None)

    score1: Optional[int] = Field(default=None)
    score2: Optional[int] = Field(default=None)
    walk_over: bool = Field(default=False)
    court: Optional[str] = Field(default=None)
    updated_at: datetime = Field(default_factory=datetime.utcnow, sa_column_kwargs={"onupdate": datetime.utcnow})

    schedule: "Schedule" = Relationship(back_populates="game_tables")

    @property
    def round_number(self) -> int:
        return round_of(self.table_id)

    @property
    def position(self) -> int:
        return self.table_id % ROUND_STRIDE

    def lineup(self, is_single: bool) -> Lineup:
        if is_single:
            return SinglesLineup(self.player1_0, self.player2_0)
        return DoublesLineup(
            tuple(p for p in (self.player1_0, self.player1_1) if p),
            tuple(p for p in (self.player2_0, self.player2_1) if p),
        )

    def seat(self, lineup: Lineup) -> None:
        if isinstance(lineup, SinglesLineup):
            self.player1_0, self.player2_0 = lineup.player1, lineup.player2
            self.player1_1 = self.player2_1 = None
        else:
            self.player1_0, self.player1_1 = _pair(lineup.team1)
            self.player2_0, self.player2_1 = _pair(lineup.team2)

    def is_empty(self) -> bool:
        return not any((self.player1_0, self.player1_1, self.player2_0, self.player2_1))


def _pair(team: Tuple[str, ...]) -> Tuple[Optional[str], Optional[str]]:
    padded = tuple(team) + (None, None)
    return padded[0], padded[1]
