"""
Match table builder and per-match updates.

build_match_table() runs once, DRAWN -> IN_PROGRESS:

- KDK: one GameTable per pairing-table entry for the exact member count,
  table_id 1..N in table order.
- Elimination: table_id = round*1000 + position. Round one pairs seed 2k-1
  with seed 2k; a side holding a bye makes the match a walkover (present side
  scored 0, bye side null). Rounds 2..total are empty placeholders that the
  round advancer fills.
"""
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from sqlmodel import Session, select

from clubgame.models.game_table import DoublesLineup, GameTable, SinglesLineup, make_table_id
from clubgame.models.schedule import LifecycleState, Schedule
from clubgame.models.schedule_member import ScheduleMember
from clubgame.services.game_errors import GameNotFoundError, GameValidationError
from clubgame.services.game_state_service import lock_schedule, move_state, require_state
from clubgame.services.seeding_service import (
    MIN_ELIMINATION_ENTRIES,
    next_power_of_two,
    validate_roster,
)
from clubgame.utils.kdk_rules import KdkRuleset, wire_kdk_pairings

logger = logging.getLogger(__name__)


@dataclass
class TableBuildResult:
    schedule_id: int
    match_count: int
    rounds: int


def total_rounds(slot_count: int) -> int:
    """ceil(log2(slot_count)), at least one round."""
    return max(1, (slot_count - 1).bit_length())


def lineup_for(is_single: bool, side1: Tuple[str, ...], side2: Tuple[str, ...]):
    if is_single:
        return SinglesLineup(side1[0] if side1 else None, side2[0] if side2 else None)
    return DoublesLineup(side1, side2)


def _seeded_members(session: Session, schedule_id: int) -> List[ScheduleMember]:
    return list(session.exec(
        select(ScheduleMember)
        .where(
            ScheduleMember.schedule_id == schedule_id,
            ScheduleMember.approval == True,  # noqa: E712
            ScheduleMember.member_index.is_not(None),
        )
        .order_by(ScheduleMember.member_index, ScheduleMember.id)
    ).all())


def _build_kdk(session: Session, schedule: Schedule, members: List[ScheduleMember], ruleset: KdkRuleset) -> int:
    players = [m for m in members if not m.is_walk_over]
    validate_roster(schedule, players, ruleset)

    indexes = [m.member_index for m in players]
    if indexes != list(range(1, len(players) + 1)):
        raise GameValidationError(f"Seed indexes must be exactly 1..{len(players)}, got {indexes}")

    pairings = wire_kdk_pairings(ruleset, schedule.is_single, [m.uid for m in players])
    for number, (side1, side2) in enumerate(pairings, start=1):
        table = GameTable(schedule_id=schedule.id, table_id=number)
        table.seat(lineup_for(schedule.is_single, side1, side2))
        session.add(table)
    return len(pairings)


def _slot_sides(schedule: Schedule, members: List[ScheduleMember]) -> Dict[int, Tuple[str, ...]]:
    """member_index -> tuple of real uids in that slot (empty for a bye)."""
    slots: Dict[int, List[str]] = defaultdict(list)
    for member in members:
        uids = slots[member.member_index]
        if not member.is_walk_over:
            uids.append(member.uid)

    limit = 1 if schedule.is_single else 2
    for slot, uids in slots.items():
        if len(uids) > limit:
            raise GameValidationError(f"Seed {slot} holds {len(uids)} players (maximum {limit})")
    return {slot: tuple(sorted(uids)) for slot, uids in slots.items()}


def _build_elimination(session: Session, schedule: Schedule, members: List[ScheduleMember]) -> Tuple[int, int]:
    sides = _slot_sides(schedule, members)
    entries = sum(1 for side in sides.values() if side)
    if entries < MIN_ELIMINATION_ENTRIES:
        raise GameValidationError(f"Tournament needs at least {MIN_ELIMINATION_ENTRIES} entries, got {entries}")

    slot_count = next_power_of_two(max(sides))
    if sorted(sides) != list(range(1, slot_count + 1)):
        raise GameValidationError(f"Seed indexes must cover 1..{slot_count}; run the draw again")

    rounds = total_rounds(slot_count)
    created = 0
    for position in range(1, slot_count // 2 + 1):
        side1, side2 = sides[2 * position - 1], sides[2 * position]
        if not side1 and not side2:
            raise GameValidationError(f"Round 1 match {position} has byes on both sides")
        walk_over = not side1 or not side2
        table = GameTable(
            schedule_id=schedule.id,
            table_id=make_table_id(1, position),
            walk_over=walk_over,
            score1=(0 if side1 else None) if walk_over else None,
            score2=(0 if side2 else None) if walk_over else None,
        )
        table.seat(lineup_for(schedule.is_single, side1, side2))
        session.add(table)
        created += 1

    for round_number in range(2, rounds + 1):
        for position in range(1, (slot_count >> round_number) + 1):
            session.add(GameTable(schedule_id=schedule.id, table_id=make_table_id(round_number, position)))
            created += 1
    return created, rounds


def build_match_table(session: Session, schedule_id: int, ruleset: KdkRuleset) -> TableBuildResult:
    """Materialize every match of a drawn tournament and move it to IN_PROGRESS."""
    try:
        schedule = lock_schedule(session, schedule_id)
        require_state(schedule, (LifecycleState.DRAWN,), "build the match table")

        existing = session.exec(select(GameTable.id).where(GameTable.schedule_id == schedule_id)).first()
        if existing is not None:
            raise GameValidationError(f"Tournament {schedule_id} already has a match table")

        members = _seeded_members(session, schedule_id)
        if schedule.is_kdk:
            match_count, rounds = _build_kdk(session, schedule, members, ruleset), 1
        else:
            match_count, rounds = _build_elimination(session, schedule, members)

        move_state(schedule, LifecycleState.IN_PROGRESS)
        schedule.current_round = 1
        session.add(schedule)
        session.commit()
    except Exception:
        session.rollback()
        raise

    logger.info("Tournament %s table built: matches=%d rounds=%d", schedule_id, match_count, rounds)
    return TableBuildResult(schedule_id=schedule_id, match_count=match_count, rounds=rounds)


def list_tables(session: Session, schedule_id: int) -> List[GameTable]:
    return list(session.exec(
        select(GameTable).where(GameTable.schedule_id == schedule_id).order_by(GameTable.table_id)
    ).all())


def _get_table(session: Session, schedule_id: int, table_id: int) -> GameTable:
    table = session.exec(
        select(GameTable).where(GameTable.schedule_id == schedule_id, GameTable.table_id == table_id)
    ).first()
    if table is None:
        raise GameNotFoundError(f"Match {table_id} not found in tournament {schedule_id}")
    return table


def update_score(session: Session, schedule_id: int, table_id: int, side: int, score: Optional[int]) -> GameTable:
    """Report one side's score. Only while the tournament is IN_PROGRESS."""
    if side not in (1, 2):
        raise GameValidationError(f"Side must be 1 or 2, got {side}")
    if score is not None and score < 0:
        raise GameValidationError(f"Score cannot be negative: {score}")

    try:
        schedule = lock_schedule(session, schedule_id)
        require_state(schedule, (LifecycleState.IN_PROGRESS,), "report a score")
        # ranking and ratings both read the winner off the target score
        if score is not None and score > schedule.final_score:
            raise GameValidationError(f"Score {score} is above the target score {schedule.final_score}")
        table = _get_table(session, schedule_id, table_id)
        if table.walk_over:
            raise GameValidationError(f"Match {table_id} is a walkover")
        if table.is_empty():
            raise GameValidationError(f"Match {table_id} has no players seated yet")
        if side == 1:
            table.score1 = score
        else:
            table.score2 = score
        session.add(table)
        session.commit()
    except Exception:
        session.rollback()
        raise
    session.refresh(table)
    return table


def update_court(session: Session, schedule_id: int, table_id: int, court: Optional[str]) -> GameTable:
    table = _get_table(session, schedule_id, table_id)
    table.court = court
    session.add(table)
    session.commit()
    session.refresh(table)
    return table
