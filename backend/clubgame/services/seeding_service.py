"""
Bracket seeder: the draw.

Runs once per tournament (OPEN/REGISTRATION_CLOSED -> DRAWN):

1. Validate the approved roster against the format before any write.
2. Purge unapproved registrations.
3. Assign 1-based seed indexes (member_index).
   - KDK: uniform shuffle of 1..N.
   - Elimination: pad the field (players, or teams for doubles) to the next
     power of two. Real entries are ordered by a close-random permutation and
     laid into the odd slot of every match; the even slot holds the next real
     entry or, for evenly spread matches, a synthetic bye member. Two byes
     never meet in round one.
"""
import logging
import random
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from sqlmodel import Session, select

from clubgame.models.schedule import LifecycleState, Schedule
from clubgame.models.schedule_member import ScheduleMember, bye_uid
from clubgame.services.game_errors import GameValidationError
from clubgame.services.game_state_service import lock_schedule, move_state, require_state
from clubgame.utils.kdk_rules import KdkRuleset

logger = logging.getLogger(__name__)

MIN_ELIMINATION_ENTRIES = 2
MIN_KDK_SINGLE_MEMBERS = 4
MIN_KDK_DOUBLE_MEMBERS = 5
MAX_ELIMINATION_SINGLE_MEMBERS = 64
MAX_ELIMINATION_DOUBLE_TEAMS = 32
MAX_TEAM_SIZE = 2

SOLO_TEAM_PREFIX = "solo:"
BYE_TEAM_PREFIX = "bye:"


# ============================================================================
# Pure helpers
# ============================================================================


def next_power_of_two(n: int) -> int:
    slots = 1
    while slots < n:
        slots *= 2
    return slots


def shuffled_indexes(count: int, rng: random.Random) -> List[int]:
    """Uniform random permutation of 1..count (Fisher-Yates)."""
    indexes = list(range(1, count + 1))
    rng.shuffle(indexes)
    return indexes


def close_random_indexes(count: int, rng: random.Random) -> List[int]:
    """
    Permutation of 1..count that tends to keep neighbours near each other.

    Full shuffle, then one left-to-right pass swapping any adjacent pair whose
    values differ by more than 1. Best effort only: the pass is local and
    gives no global guarantee on how far apart neighbours end up.
    """
    indexes = shuffled_indexes(count, rng)
    for i in range(1, len(indexes)):
        if abs(indexes[i] - indexes[i - 1]) > 1:
            indexes[i], indexes[i - 1] = indexes[i - 1], indexes[i]
    return indexes


def bye_match_positions(slot_count: int, bye_count: int) -> List[int]:
    """1-based round-one match numbers whose second slot is a bye, spread evenly."""
    match_count = slot_count // 2
    if bye_count > match_count:
        raise ValueError(f"{bye_count} byes cannot fit into {match_count} matches")
    return [(i * match_count) // bye_count + 1 for i in range(bye_count)]


def plan_elimination_slots(entries: Sequence[str], rng: random.Random) -> Dict[int, Optional[str]]:
    """
    Lay entries (uids or team names) into bracket slots 1..slot_count.

    Returns slot -> entry, with None marking a bye slot.
    """
    field_size = len(entries)
    slot_count = next_power_of_two(field_size)
    order = close_random_indexes(field_size, rng)
    ranked = [entry for _, entry in sorted(zip(order, entries))]
    bye_matches = set(bye_match_positions(slot_count, slot_count - field_size))

    slots: Dict[int, Optional[str]] = {}
    queue = iter(ranked)
    for match in range(1, slot_count // 2 + 1):
        slots[2 * match - 1] = next(queue)
        slots[2 * match] = None if match in bye_matches else next(queue)
    return slots


def group_teams(members: Sequence[ScheduleMember]) -> "OrderedDict[str, List[ScheduleMember]]":
    """
    Group doubles members by team name, in registration order. A member with no
    team name becomes a one-person team.
    """
    teams: "OrderedDict[str, List[ScheduleMember]]" = OrderedDict()
    for member in members:
        name = member.team_name or f"{SOLO_TEAM_PREFIX}{member.uid}"
        teams.setdefault(name, []).append(member)
    for name, team in teams.items():
        if len(team) > MAX_TEAM_SIZE:
            raise GameValidationError(f"Team '{name}' has {len(team)} members (maximum {MAX_TEAM_SIZE})")
    return teams


def validate_roster(schedule: Schedule, members: Sequence[ScheduleMember], ruleset: KdkRuleset) -> None:
    """Fail fast with GameValidationError when the field cannot be drawn."""
    count = len(members)
    if schedule.is_kdk:
        minimum = MIN_KDK_SINGLE_MEMBERS if schedule.is_single else MIN_KDK_DOUBLE_MEMBERS
        label = "KDK singles" if schedule.is_single else "KDK doubles"
        if count < minimum:
            raise GameValidationError(f"{label} needs at least {minimum} members, got {count}")
        table = ruleset.singles_table(count) if schedule.is_single else ruleset.doubles_table(count)
        if table is None:
            supported = ", ".join(str(n) for n in ruleset.supported_counts(schedule.is_single))
            raise GameValidationError(f"No {label} rules for {count} members. Supported: {supported}")
        return

    if schedule.is_single:
        if count < MIN_ELIMINATION_ENTRIES:
            raise GameValidationError(f"Tournament needs at least {MIN_ELIMINATION_ENTRIES} members, got {count}")
        if count > MAX_ELIMINATION_SINGLE_MEMBERS:
            raise GameValidationError(
                f"Too many members for a singles tournament: {count} (maximum {MAX_ELIMINATION_SINGLE_MEMBERS})"
            )
        return

    teams = group_teams(members)
    if len(teams) < MIN_ELIMINATION_ENTRIES:
        raise GameValidationError(f"Doubles tournament needs at least {MIN_ELIMINATION_ENTRIES} teams, got {len(teams)}")
    if len(teams) > MAX_ELIMINATION_DOUBLE_TEAMS:
        raise GameValidationError(
            f"Too many teams for a doubles tournament: {len(teams)} (maximum {MAX_ELIMINATION_DOUBLE_TEAMS})"
        )


# ============================================================================
# Draw operation
# ============================================================================


@dataclass
class SeedingResult:
    schedule_id: int
    field_size: int
    slot_count: int
    bye_count: int = 0
    seeds: Dict[str, int] = field(default_factory=dict)  # uid -> member_index


def _approved_members(session: Session, schedule_id: int) -> List[ScheduleMember]:
    return list(session.exec(
        select(ScheduleMember)
        .where(
            ScheduleMember.schedule_id == schedule_id,
            ScheduleMember.approval == True,  # noqa: E712
            ScheduleMember.is_walk_over == False,  # noqa: E712
        )
        .order_by(ScheduleMember.id)
    ).all())


def _purge_unapproved(session: Session, schedule_id: int) -> int:
    pending = session.exec(
        select(ScheduleMember).where(
            ScheduleMember.schedule_id == schedule_id,
            ScheduleMember.approval == False,  # noqa: E712
        )
    ).all()
    for member in pending:
        session.delete(member)
    return len(pending)


def _seed_kdk(members: List[ScheduleMember], rng: random.Random) -> SeedingResult:
    indexes = shuffled_indexes(len(members), rng)
    result = SeedingResult(schedule_id=0, field_size=len(members), slot_count=len(members))
    for member, index in zip(members, indexes):
        member.member_index = index
        result.seeds[member.uid] = index
    return result


def _seed_elimination(
    session: Session, schedule: Schedule, members: List[ScheduleMember], rng: random.Random
) -> SeedingResult:
    if schedule.is_single:
        groups: "OrderedDict[str, List[ScheduleMember]]" = OrderedDict((m.uid, [m]) for m in members)
    else:
        groups = group_teams(members)

    slots = plan_elimination_slots(list(groups), rng)
    result = SeedingResult(
        schedule_id=schedule.id,
        field_size=len(groups),
        slot_count=len(slots),
        bye_count=sum(1 for entry in slots.values() if entry is None),
    )

    for slot, entry in slots.items():
        if entry is None:
            session.add(ScheduleMember(
                schedule_id=schedule.id,
                uid=bye_uid(schedule.id, slot),
                approval=True,
                is_walk_over=True,
                member_index=slot,
                team_name=None if schedule.is_single else f"{BYE_TEAM_PREFIX}{slot}",
            ))
            continue
        for member in groups[entry]:
            member.member_index = slot
            if not schedule.is_single:
                member.team_name = entry
            session.add(member)
            result.seeds[member.uid] = slot
    return result


def start_tournament(
    session: Session,
    schedule_id: int,
    ruleset: KdkRuleset,
    rng: Optional[random.Random] = None,
) -> SeedingResult:
    """
    Draw the tournament: validate, purge unapproved members, assign seeds and
    move the tournament to DRAWN. One transaction; nothing is written when
    validation fails.
    """
    rng = rng or random.Random()
    try:
        schedule = lock_schedule(session, schedule_id)
        require_state(schedule, (LifecycleState.OPEN, LifecycleState.REGISTRATION_CLOSED), "start the draw")

        members = _approved_members(session, schedule_id)
        validate_roster(schedule, members, ruleset)

        purged = _purge_unapproved(session, schedule_id)
        if schedule.is_kdk:
            result = _seed_kdk(members, rng)
            result.schedule_id = schedule_id
            for member in members:
                session.add(member)
        else:
            result = _seed_elimination(session, schedule, members, rng)

        move_state(schedule, LifecycleState.DRAWN)
        session.add(schedule)
        session.commit()
    except Exception:
        session.rollback()
        raise

    logger.info(
        "Tournament %s drawn: field=%d slots=%d byes=%d purged=%d",
        schedule_id,
        result.field_size,
        result.slot_count,
        result.bye_count,
        purged,
    )
    return result


def update_member_indexes(session: Session, schedule_id: int, indexes: Dict[str, int]) -> int:
    """
    Organiser override of seed indexes while the tournament is DRAWN.
    All-or-nothing: any unknown uid or invalid index aborts the whole update.
    """
    if not indexes:
        raise GameValidationError("No member indexes to update")
    for uid, index in indexes.items():
        if isinstance(index, bool) or not isinstance(index, int) or index < 1:
            raise GameValidationError(f"Invalid member index for {uid}: {index!r}")

    try:
        schedule = lock_schedule(session, schedule_id)
        require_state(schedule, (LifecycleState.DRAWN,), "change seeds")
        for uid, index in indexes.items():
            member = session.exec(
                select(ScheduleMember).where(
                    ScheduleMember.schedule_id == schedule_id,
                    ScheduleMember.uid == uid,
                )
            ).first()
            if member is None:
                raise GameValidationError(f"Member {uid} is not part of tournament {schedule_id}")
            member.member_index = index
            session.add(member)
        session.commit()
    except Exception:
        session.rollback()
        raise
    return len(indexes)
