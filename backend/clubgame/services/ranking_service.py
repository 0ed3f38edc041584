"""
Ranking calculators.

Pure functions of (matches, roster). Four variants:

- round-robin singles / doubles: win count, then accumulated score margin
- elimination singles / doubles: furthest round reached, then score margin

Ties always fall back to the participant uid (ascending), so the output is
a total order and identical for identical input. Elimination doubles ranks
teams and gives both members the team's rank.
"""
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from clubgame.models.game_table import GameTable, round_of
from clubgame.services.game_errors import BracketStructureError


@dataclass(frozen=True)
class MatchResult:
    table_id: int
    side1: Tuple[str, ...]
    side2: Tuple[str, ...]
    score1: Optional[int]
    score2: Optional[int]
    walk_over: bool = False

    @property
    def round_number(self) -> int:
        return round_of(self.table_id)

    @property
    def margin(self) -> int:
        return abs((self.score1 or 0) - (self.score2 or 0))

    def has_scores(self) -> bool:
        return self.score1 is not None and self.score2 is not None


@dataclass(frozen=True)
class RosterEntry:
    uid: str
    team_name: Optional[str] = None


@dataclass(frozen=True)
class RankingEntry:
    uid: str
    win_point: int
    score: int
    ranking: int
    team_name: Optional[str] = None


def match_result_from_table(table: GameTable, is_single: bool) -> MatchResult:
    lineup = table.lineup(is_single)
    return MatchResult(
        table_id=table.table_id,
        side1=lineup.side(1),
        side2=lineup.side(2),
        score1=table.score1,
        score2=table.score2,
        walk_over=table.walk_over,
    )


def target_score_winner(match: MatchResult, final_score: int) -> Optional[int]:
    """1 or 2 when exactly one side reached the target score, else None."""
    reached1 = match.score1 == final_score
    reached2 = match.score2 == final_score
    if reached1 == reached2:
        return None
    return 1 if reached1 else 2


def higher_score_winner(match: MatchResult) -> Optional[int]:
    """1 or 2 for the side with the higher score; None if unplayed or level."""
    if not match.has_scores() or match.score1 == match.score2:
        return None
    return 1 if match.score1 > match.score2 else 2


def walkover_winner(match: MatchResult) -> Optional[int]:
    if match.side1 and not match.side2:
        return 1
    if match.side2 and not match.side1:
        return 2
    return None


class _Board:
    def __init__(self, keys: Iterable[str]):
        keys = list(keys)
        self.win_point: Dict[str, int] = {k: 0 for k in keys}
        self.score: Dict[str, int] = {k: 0 for k in keys}

    def _check(self, key: str) -> None:
        if key not in self.win_point:
            raise BracketStructureError(f"Match references '{key}', who is not on the roster")

    def add_win(self, key: str) -> None:
        self._check(key)
        self.win_point[key] += 1

    def reach(self, key: str, round_number: int) -> None:
        self._check(key)
        self.win_point[key] = max(self.win_point[key], round_number)

    def add_score(self, key: str, amount: int) -> None:
        self._check(key)
        self.score[key] += amount

    def order(self, tiebreak: Dict[str, str]) -> List[str]:
        return sorted(self.win_point, key=lambda k: (-self.win_point[k], -self.score[k], tiebreak[k]))


def _unique_roster(roster: Sequence[RosterEntry]) -> List[RosterEntry]:
    seen = {}
    for entry in roster:
        seen.setdefault(entry.uid, entry)
    return list(seen.values())


def rank_round_robin(matches: Sequence[MatchResult], roster: Sequence[RosterEntry], final_score: int) -> List[RankingEntry]:
    """KDK ranking; works for singles and doubles (each side member is credited alike)."""
    roster = _unique_roster(roster)
    board = _Board(e.uid for e in roster)

    for match in matches:
        winner = target_score_winner(match, final_score)
        if winner is None:
            continue
        winners, losers = (match.side1, match.side2) if winner == 1 else (match.side2, match.side1)
        for uid in winners:
            board.add_win(uid)
            board.add_score(uid, match.margin)
        for uid in losers:
            board.add_score(uid, -match.margin)

    teams = {e.uid: e.team_name for e in roster}
    ordered = board.order({e.uid: e.uid for e in roster})
    return [
        RankingEntry(uid, board.win_point[uid], board.score[uid], i + 1, teams[uid])
        for i, uid in enumerate(ordered)
    ]


def _play_elimination(board: _Board, matches: Sequence[MatchResult], key_of) -> None:
    for match in sorted(matches, key=lambda m: m.table_id):
        round_number = match.round_number
        side_keys = {1: _side_key(match.side1, key_of), 2: _side_key(match.side2, key_of)}

        if match.walk_over:
            winner = walkover_winner(match)
            if winner is not None:
                board.reach(side_keys[winner], round_number + 1)
            continue

        winner = higher_score_winner(match)
        if winner is None or side_keys[1] is None or side_keys[2] is None:
            continue
        loser = 2 if winner == 1 else 1
        board.reach(side_keys[winner], round_number + 1)
        board.reach(side_keys[loser], round_number)
        board.add_score(side_keys[winner], match.margin)
        board.add_score(side_keys[loser], -match.margin)


def _side_key(side: Tuple[str, ...], key_of) -> Optional[str]:
    if not side:
        return None
    keys = {key_of(uid) for uid in side}
    if len(keys) != 1:
        raise BracketStructureError(f"Players {side} are seated together but belong to different teams")
    return keys.pop()


def rank_elimination_singles(matches: Sequence[MatchResult], roster: Sequence[RosterEntry]) -> List[RankingEntry]:
    roster = _unique_roster(roster)
    board = _Board(e.uid for e in roster)
    _play_elimination(board, matches, lambda uid: uid)

    ordered = board.order({e.uid: e.uid for e in roster})
    return [
        RankingEntry(uid, board.win_point[uid], board.score[uid], i + 1)
        for i, uid in enumerate(ordered)
    ]


def rank_elimination_doubles(matches: Sequence[MatchResult], roster: Sequence[RosterEntry]) -> List[RankingEntry]:
    """Rank teams, then give every member the team's result and rank."""
    roster = _unique_roster(roster)
    team_of = {e.uid: e.team_name or e.uid for e in roster}
    members: Dict[str, List[str]] = defaultdict(list)
    for e in roster:
        members[team_of[e.uid]].append(e.uid)

    board = _Board(members)

    def key_of(uid: str) -> str:
        if uid not in team_of:
            raise BracketStructureError(f"Match references '{uid}', who is not on the roster")
        return team_of[uid]

    _play_elimination(board, matches, key_of)

    ordered = board.order({team: min(uids) for team, uids in members.items()})
    entries: List[RankingEntry] = []
    for i, team in enumerate(ordered):
        for uid in sorted(members[team]):
            entries.append(RankingEntry(uid, board.win_point[team], board.score[team], i + 1, team))
    return entries


def calculate_ranking(
    is_kdk: bool,
    is_single: bool,
    matches: Sequence[MatchResult],
    roster: Sequence[RosterEntry],
    final_score: int,
) -> List[RankingEntry]:
    if is_kdk:
        return rank_round_robin(matches, roster, final_score)
    if is_single:
        return rank_elimination_singles(matches, roster)
    return rank_elimination_doubles(matches, roster)
