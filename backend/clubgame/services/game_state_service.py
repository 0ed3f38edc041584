"""
Tournament lifecycle guard.

Every score-mutating operation starts by re-reading its Schedule row under a
row lock (SELECT ... FOR UPDATE) and checking the lifecycle state it expects.
The state ordinal only moves forward.
"""
import logging
from typing import Iterable

from sqlmodel import Session, select

from clubgame.models.schedule import GAME_TAG, LifecycleState, Schedule
from clubgame.services.game_errors import GameConflictError, GameNotFoundError, GameValidationError

logger = logging.getLogger(__name__)

# States an organiser may set directly through update_state()
MANUAL_STATES = (LifecycleState.REGISTRATION_CLOSED,)


def lock_schedule(session: Session, schedule_id: int) -> Schedule:
    """Load a game schedule with a row lock held until the transaction ends."""
    schedule = session.exec(
        select(Schedule).where(Schedule.id == schedule_id).with_for_update()
    ).first()
    if schedule is None:
        raise GameNotFoundError(f"Tournament {schedule_id} not found")
    if schedule.tag != GAME_TAG:
        raise GameValidationError(f"Schedule {schedule_id} is not a game")
    return schedule


def require_state(schedule: Schedule, allowed: Iterable[LifecycleState], action: str) -> None:
    allowed = tuple(allowed)
    if schedule.state not in allowed:
        names = ", ".join(s.name for s in allowed)
        raise GameConflictError(
            f"Cannot {action}: tournament {schedule.id} is {schedule.lifecycle.name} (expected {names})"
        )


def move_state(schedule: Schedule, new_state: LifecycleState) -> None:
    """Advance the lifecycle; moving backwards (or staying put) is a conflict."""
    if new_state <= schedule.state:
        raise GameConflictError(
            f"Tournament {schedule.id} is already {schedule.lifecycle.name}; cannot move to {new_state.name}"
        )
    logger.info("Tournament %s: %s -> %s", schedule.id, schedule.lifecycle.name, new_state.name)
    schedule.state = int(new_state)


def update_state(session: Session, schedule_id: int, new_state: int) -> Schedule:
    """
    Explicit organiser-driven state step: closing registration only.

    DRAWN, IN_PROGRESS and FINISHED are owned by the draw, the table build and
    finalize; reaching them here would skip seeding, matches or ratings.
    """
    try:
        target = LifecycleState(new_state)
    except ValueError as exc:
        raise GameValidationError(f"Unknown state: {new_state}") from exc
    if target not in MANUAL_STATES:
        raise GameConflictError(f"State {target.name} can only be reached through its tournament operation")

    try:
        schedule = lock_schedule(session, schedule_id)
        move_state(schedule, target)
        session.add(schedule)
        session.commit()
    except Exception:
        session.rollback()
        raise
    session.refresh(schedule)
    return schedule
