"""
Tournament finalization: ratings, ranking, close.

One transaction, IN_PROGRESS -> FINISHED. Ratings are applied to every played
match in table_id order so a player's level accumulates across the
tournament; the ranking is then written onto ScheduleMember rows.
"""
import logging
from dataclasses import dataclass, field
from typing import List

from sqlmodel import Session, select

from clubgame.models.game_table import GameTable
from clubgame.models.schedule import LifecycleState, Schedule
from clubgame.models.schedule_member import ScheduleMember
from clubgame.models.user_level import UserLevel
from clubgame.services.game_errors import GameNotFoundError
from clubgame.services.game_state_service import lock_schedule, move_state, require_state
from clubgame.services.ranking_service import (
    MatchResult,
    RankingEntry,
    RosterEntry,
    calculate_ranking,
    match_result_from_table,
)
from clubgame.services.rating_engine import LevelChange, apply_match_levels

logger = logging.getLogger(__name__)


@dataclass
class FinalizeResult:
    schedule_id: int
    ranking: List[RankingEntry] = field(default_factory=list)
    level_changes: List[LevelChange] = field(default_factory=list)


def is_rated(match: MatchResult, is_single: bool) -> bool:
    """Only matches that were actually played move levels."""
    if match.walk_over or not match.has_scores():
        return False
    if is_single:
        return len(match.side1) == 1 and len(match.side2) == 1
    return bool(match.side1) and bool(match.side2)


def _load_matches(session: Session, schedule: Schedule) -> List[MatchResult]:
    tables = session.exec(
        select(GameTable).where(GameTable.schedule_id == schedule.id).order_by(GameTable.table_id)
    ).all()
    return [match_result_from_table(t, schedule.is_single) for t in tables]


def _roster_members(session: Session, schedule_id: int) -> List[ScheduleMember]:
    return list(session.exec(
        select(ScheduleMember)
        .where(
            ScheduleMember.schedule_id == schedule_id,
            ScheduleMember.approval == True,  # noqa: E712
            ScheduleMember.is_walk_over == False,  # noqa: E712
        )
        .order_by(ScheduleMember.uid)
    ).all())


def compute_ranking(session: Session, schedule: Schedule) -> List[RankingEntry]:
    members = _roster_members(session, schedule.id)
    roster = [RosterEntry(m.uid, m.team_name) for m in members]
    return calculate_ranking(
        schedule.is_kdk, schedule.is_single, _load_matches(session, schedule), roster, schedule.final_score
    )


def preview_ranking(session: Session, schedule_id: int) -> List[RankingEntry]:
    """Ranking of the stored results, without writing anything."""
    schedule = session.get(Schedule, schedule_id)
    if schedule is None:
        raise GameNotFoundError(f"Tournament {schedule_id} not found")
    return compute_ranking(session, schedule)


def finalize_tournament(session: Session, schedule_id: int) -> FinalizeResult:
    try:
        schedule = lock_schedule(session, schedule_id)
        require_state(schedule, (LifecycleState.IN_PROGRESS,), "finish the tournament")

        result = FinalizeResult(schedule_id=schedule_id)
        for match in _load_matches(session, schedule):
            if not is_rated(match, schedule.is_single):
                continue
            try:
                result.level_changes.extend(apply_match_levels(
                    session,
                    schedule_id,
                    match.table_id,
                    match.side1,
                    match.side2,
                    match.score1,
                    match.score2,
                    schedule.final_score,
                ))
            except LookupError as e:
                raise GameNotFoundError(str(e)) from e

        result.ranking = compute_ranking(session, schedule)
        members = {m.uid: m for m in _roster_members(session, schedule_id)}
        for entry in result.ranking:
            member = members[entry.uid]
            member.score = entry.score
            member.win_point = entry.win_point
            member.ranking = entry.ranking
            session.add(member)

        move_state(schedule, LifecycleState.FINISHED)
        session.add(schedule)
        session.commit()
    except Exception:
        session.rollback()
        raise

    logger.info(
        "Tournament %s finished: ranked=%d level_changes=%d",
        schedule_id,
        len(result.ranking),
        len(result.level_changes),
    )
    return result


def list_level_history(session: Session, schedule_id: int, uid: str) -> List[UserLevel]:
    return list(session.exec(
        select(UserLevel)
        .where(UserLevel.schedule_id == schedule_id, UserLevel.uid == uid)
        .order_by(UserLevel.table_id, UserLevel.id)
    ).all())
