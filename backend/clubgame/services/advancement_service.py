"""
Round advancement: when an elimination round is complete, seat its winners
into the next round's placeholder matches.

Destinations are found by address (round, position), never by following
references: winners of matches 2k-1 and 2k of round R meet in match k of
round R+1. Schedule.current_round serializes calls: advancing round R
requires current_round == R and moves it to R+1 in the same transaction.
"""
import logging
from typing import Dict, List, Tuple

from sqlmodel import Session, select

from clubgame.models.game_table import GameTable, make_table_id
from clubgame.models.schedule import LifecycleState, Schedule
from clubgame.services.game_errors import BracketStructureError, GameConflictError, GameValidationError
from clubgame.services.game_state_service import lock_schedule, require_state
from clubgame.services.match_table_service import lineup_for
from clubgame.services.ranking_service import higher_score_winner, match_result_from_table, walkover_winner

logger = logging.getLogger(__name__)


def _round_tables(session: Session, schedule_id: int, round_number: int) -> List[GameTable]:
    return list(session.exec(
        select(GameTable)
        .where(
            GameTable.schedule_id == schedule_id,
            GameTable.table_id >= make_table_id(round_number, 0),
            GameTable.table_id < make_table_id(round_number + 1, 0),
        )
        .order_by(GameTable.table_id)
    ).all())


def round_winners(tables: List[GameTable], is_single: bool) -> List[Tuple[str, ...]]:
    """
    Winning side of every match, in position order.

    Raises:
        BracketStructureError if a match is undecided (null score, tie, or a
        walkover with nobody present)
    """
    winners = []
    for table in tables:
        match = match_result_from_table(table, is_single)
        winner = walkover_winner(match) if match.walk_over else higher_score_winner(match)
        if winner is None:
            raise BracketStructureError(
                f"Match {table.table_id} has no winner (score {table.score1}-{table.score2})"
            )
        winners.append(match.side1 if winner == 1 else match.side2)
    return winners


def advance_round(session: Session, schedule_id: int, round_number: int) -> Dict:
    """
    Seat the winners of round_number into round_number + 1.

    Returns:
        Dict with:
        - round: the round that was completed
        - next_round: the round that was filled
        - matches_filled: number of next-round matches seated
    """
    try:
        schedule = lock_schedule(session, schedule_id)
        require_state(schedule, (LifecycleState.IN_PROGRESS,), "advance a round")
        if schedule.is_kdk:
            raise GameValidationError("KDK tournaments have no rounds to advance")
        if schedule.current_round != round_number:
            raise GameConflictError(
                f"Tournament {schedule_id} is waiting on round {schedule.current_round}, not {round_number}"
            )

        filled = _seat_next_round(session, schedule, round_number)

        schedule.current_round = round_number + 1
        session.add(schedule)
        session.commit()
    except BracketStructureError as e:
        logger.error("Bracket corrupted: tournament=%s round=%s: %s", schedule_id, round_number, e)
        session.rollback()
        raise
    except Exception:
        session.rollback()
        raise

    logger.info("Tournament %s: round %d advanced, %d matches seated", schedule_id, round_number, filled)
    return {"round": round_number, "next_round": round_number + 1, "matches_filled": filled}


def _seat_next_round(session: Session, schedule: Schedule, round_number: int) -> int:
    current = _round_tables(session, schedule.id, round_number)
    if not current:
        raise BracketStructureError(f"Round {round_number} has no matches")

    upcoming = _round_tables(session, schedule.id, round_number + 1)
    if not upcoming:
        if len(current) == 1:
            raise GameValidationError(f"Round {round_number} is the final; nothing to advance")
        raise BracketStructureError(f"Round {round_number + 1} placeholders are missing")

    winners = round_winners(current, schedule.is_single)
    if len(winners) % 2 or len(upcoming) != len(winners) // 2:
        raise BracketStructureError(
            f"{len(winners)} winners cannot fill {len(upcoming)} matches of round {round_number + 1}"
        )

    for position, table in enumerate(upcoming, start=1):
        if table.table_id != make_table_id(round_number + 1, position):
            raise BracketStructureError(f"Round {round_number + 1} is missing match {position}")
        if not table.is_empty():
            raise BracketStructureError(f"Match {table.table_id} is already seated")
        table.seat(lineup_for(schedule.is_single, winners[2 * position - 2], winners[2 * position - 1]))
        session.add(table)
    return len(upcoming)
