"""
Level (skill rating) adjustment after a single match.

compute_level_delta() is pure. apply_match_levels() runs inside the finalize
transaction: it reads current levels, appends one UserLevel audit row per
player and writes the new level back to the User row.
"""
import logging
import math
from dataclasses import dataclass
from typing import Dict, Iterable, List, Sequence, Tuple

from sqlmodel import Session, func, select

from clubgame.models.user import LEVEL_CEILING, LEVEL_FLOOR, User
from clubgame.models.user_level import UserLevel

logger = logging.getLogger(__name__)

# A player with this many recorded matches (or more) is no longer provisional
PROVISIONAL_MATCH_LIMIT = 11

BASE_UNIT = 0.001
PROVISIONAL_BASE_UNIT = 0.003
BUCKET_WEIGHT = 0.0003
PROVISIONAL_BUCKET_WEIGHT = 0.0009

# (upper bound on level gap, multiple of the base unit); first match wins.
# Gap = opponent level - own level, so a positive gap means an upset.
WIN_STEPS: Tuple[Tuple[float, int], ...] = (
    (-2, 0),
    (1, 1),
    (2, 2),
    (3, 3),
    (4, 4),
    (5, 5),
    (math.inf, 10),
)
LOSS_STEPS: Tuple[Tuple[float, int], ...] = (
    (-2, -10),
    (-1, -5),
    (0, -3),
    (1, -2),
    (4, -1),
    (math.inf, 0),
)


def margin_bucket(score_diff: int, final_score: int) -> int:
    """1..4, by how decisive the margin was relative to the target score."""
    ratio = abs(score_diff) / max(final_score, 1)
    if ratio < 0.35:
        return 1
    if ratio < 0.70:
        return 2
    if ratio < 0.90:
        return 3
    return 4


def _step(steps: Sequence[Tuple[float, int]], level_gap: float) -> int:
    for bound, multiple in steps:
        if level_gap < bound:
            return multiple
    return steps[-1][1]


def compute_level_delta(score_diff: int, level_gap: float, is_provisional: bool, final_score: int) -> float:
    """
    Signed level change for one player after one match.

    Args:
        score_diff: own score minus opponent score (>= 0 counts as a win)
        level_gap: opponent (average) level minus own level
        is_provisional: fewer than PROVISIONAL_MATCH_LIMIT prior rated matches
        final_score: target score of the tournament
    """
    unit = PROVISIONAL_BASE_UNIT if is_provisional else BASE_UNIT
    weight = PROVISIONAL_BUCKET_WEIGHT if is_provisional else BUCKET_WEIGHT
    bucket = margin_bucket(score_diff, final_score)

    if score_diff >= 0:
        delta = _step(WIN_STEPS, level_gap) * unit
        # Provisional players beating much weaker opponents gain less, not more
        if is_provisional and level_gap < -1 and bucket < 4:
            delta -= (4 - bucket) * weight
        else:
            delta += bucket * weight
    else:
        delta = _step(LOSS_STEPS, level_gap) * unit
        delta -= bucket * weight
    return delta


def clamp_level(origin_level: float, delta: float) -> Tuple[float, float]:
    """
    Returns (delta, new_level) with new_level inside [LEVEL_FLOOR, LEVEL_CEILING].

    A player already at the ceiling cannot gain and one at the floor cannot
    lose: delta becomes exactly 0 and the level is untouched.
    """
    if (origin_level >= LEVEL_CEILING and delta > 0) or (origin_level <= LEVEL_FLOOR and delta < 0):
        return 0.0, origin_level
    return delta, min(LEVEL_CEILING, max(LEVEL_FLOOR, origin_level + delta))


@dataclass(frozen=True)
class LevelChange:
    uid: str
    table_id: int
    original: float
    fluctuation: float
    new_level: float


def is_provisional(session: Session, uid: str) -> bool:
    count = session.exec(select(func.count()).select_from(UserLevel).where(UserLevel.uid == uid)).one()
    return int(count) < PROVISIONAL_MATCH_LIMIT


def _average(values: Iterable[float]) -> float:
    values = list(values)
    return sum(values) / len(values)


def apply_match_levels(
    session: Session,
    schedule_id: int,
    table_id: int,
    side1: Sequence[str],
    side2: Sequence[str],
    score1: int,
    score2: int,
    final_score: int,
) -> List[LevelChange]:
    """
    Rate every player of one played match. Levels are snapshotted before any
    player is updated so teammates and opponents see the same pre-match values.
    Caller owns the transaction.
    """
    users: Dict[str, User] = {}
    for uid in list(side1) + list(side2):
        user = session.get(User, uid)
        if user is None:
            raise LookupError(f"User {uid} not found")
        users[uid] = user

    before = {uid: user.level for uid, user in users.items()}
    provisional = {uid: is_provisional(session, uid) for uid in users}

    changes: List[LevelChange] = []
    for own, opponents, diff in ((side1, side2, score1 - score2), (side2, side1, score2 - score1)):
        opponent_level = _average(before[uid] for uid in opponents)
        for uid in own:
            raw = compute_level_delta(diff, opponent_level - before[uid], provisional[uid], final_score)
            delta, new_level = clamp_level(before[uid], raw)
            session.add(UserLevel(
                uid=uid,
                schedule_id=schedule_id,
                table_id=table_id,
                fluctuation=delta,
                original=before[uid],
            ))
            users[uid].level = new_level
            session.add(users[uid])
            changes.append(LevelChange(uid, table_id, before[uid], delta, new_level))
            logger.debug("Level %s: %.4f -> %.4f (table %d)", uid, before[uid], new_level, table_id)

    # Keep the provisional count query in this transaction accurate for the next match
    session.flush()
    return changes
