"""Round advancer: winners of round R are seated into round R+1 by position."""
import pytest
from sqlmodel import Session, select

from clubgame.models.game_table import GameTable, make_table_id
from clubgame.models.schedule import Schedule
from clubgame.services.advancement_service import advance_round
from clubgame.services.game_errors import BracketStructureError, GameConflictError, GameValidationError
from clubgame.services.match_table_service import build_match_table, list_tables
from clubgame.services.seeding_service import start_tournament


def _bracket(session, make_game, ruleset, rng, uids, **kwargs) -> Schedule:
    schedule = make_game(uids, **kwargs)
    start_tournament(session, schedule.id, ruleset, rng)
    build_match_table(session, schedule.id, ruleset)
    return schedule


def _round(session: Session, schedule_id: int, round_number: int):
    session.expire_all()
    return [t for t in list_tables(session, schedule_id) if t.round_number == round_number]


def _play_round(session: Session, schedule_id: int, round_number: int, side1_wins: bool = True):
    """Score every played match of a round; returns the expected winners in order."""
    winners = []
    for table in _round(session, schedule_id, round_number):
        if table.walk_over:
            winners.append((table.player1_0, table.player1_1) if table.player1_0 else (table.player2_0, table.player2_1))
            continue
        table.score1, table.score2 = (21, 12) if side1_wins else (9, 21)
        session.add(table)
        if side1_wins:
            winners.append((table.player1_0, table.player1_1))
        else:
            winners.append((table.player2_0, table.player2_1))
    session.commit()
    return winners


def test_five_player_round_one_fills_round_two_in_order(session, make_game, ruleset, rng):
    schedule = _bracket(session, make_game, ruleset, rng, ["a", "b", "c", "d", "e"])
    winners = _play_round(session, schedule.id, 1)

    result = advance_round(session, schedule.id, 1)

    assert result == {"round": 1, "next_round": 2, "matches_filled": 2}
    round2 = _round(session, schedule.id, 2)
    assert [(t.player1_0, t.player2_0) for t in round2] == [
        (winners[0][0], winners[1][0]),
        (winners[2][0], winners[3][0]),
    ]
    assert all(t.score1 is None and t.score2 is None for t in round2)
    assert all(t.is_empty() for t in _round(session, schedule.id, 3))
    assert session.get(Schedule, schedule.id).current_round == 2


def test_full_bracket_reaches_the_final(session, make_game, ruleset, rng):
    schedule = _bracket(session, make_game, ruleset, rng, [f"p{i}" for i in range(8)])
    _play_round(session, schedule.id, 1)
    advance_round(session, schedule.id, 1)
    winners = _play_round(session, schedule.id, 2, side1_wins=False)
    advance_round(session, schedule.id, 2)

    final = _round(session, schedule.id, 3)
    assert len(final) == 1
    assert (final[0].player1_0, final[0].player2_0) == (winners[0][0], winners[1][0])

    with pytest.raises(GameValidationError):
        advance_round(session, schedule.id, 3)


def test_doubles_advances_both_teammates(session, make_game, ruleset, rng):
    schedule = _bracket(
        session, make_game, ruleset, rng,
        ["a", "b", "c", "d", "e", "f", "g", "h"],
        is_single=False,
        teams=["T1", "T1", "T2", "T2", "T3", "T3", "T4", "T4"],
    )
    winners = _play_round(session, schedule.id, 1)

    advance_round(session, schedule.id, 1)

    final = _round(session, schedule.id, 2)[0]
    assert (final.player1_0, final.player1_1) == winners[0]
    assert (final.player2_0, final.player2_1) == winners[1]


def test_repeated_advance_is_a_conflict(session, make_game, ruleset, rng):
    schedule = _bracket(session, make_game, ruleset, rng, ["a", "b", "c", "d"])
    _play_round(session, schedule.id, 1)
    advance_round(session, schedule.id, 1)

    with pytest.raises(GameConflictError):
        advance_round(session, schedule.id, 1)


def test_out_of_order_advance_is_a_conflict(session, make_game, ruleset, rng):
    schedule = _bracket(session, make_game, ruleset, rng, [f"p{i}" for i in range(8)])
    with pytest.raises(GameConflictError):
        advance_round(session, schedule.id, 2)


def test_incomplete_round_raises_and_rolls_back(session, make_game, ruleset, rng):
    schedule = _bracket(session, make_game, ruleset, rng, ["a", "b", "c", "d"])
    first = _round(session, schedule.id, 1)[0]
    first.score1, first.score2 = 21, 15
    session.add(first)
    session.commit()

    with pytest.raises(BracketStructureError):
        advance_round(session, schedule.id, 1)

    assert all(t.is_empty() for t in _round(session, schedule.id, 2))
    assert session.get(Schedule, schedule.id).current_round == 1


def test_tied_match_is_a_structure_error(session, make_game, ruleset, rng):
    schedule = _bracket(session, make_game, ruleset, rng, ["a", "b", "c", "d"])
    for table in _round(session, schedule.id, 1):
        table.score1, table.score2 = 20, 20
        session.add(table)
    session.commit()

    with pytest.raises(BracketStructureError):
        advance_round(session, schedule.id, 1)


def test_missing_placeholder_is_a_structure_error(session, make_game, ruleset, rng):
    schedule = _bracket(session, make_game, ruleset, rng, [f"p{i}" for i in range(8)])
    _play_round(session, schedule.id, 1)
    placeholder = session.exec(
        select(GameTable).where(
            GameTable.schedule_id == schedule.id,
            GameTable.table_id == make_table_id(2, 2),
        )
    ).one()
    session.delete(placeholder)
    session.commit()

    with pytest.raises(BracketStructureError):
        advance_round(session, schedule.id, 1)
    assert session.get(Schedule, schedule.id).current_round == 1


def test_kdk_has_no_rounds(session, make_game, ruleset, rng):
    schedule = _bracket(session, make_game, ruleset, rng, ["a", "b", "c", "d"], is_kdk=True)
    with pytest.raises(GameValidationError):
        advance_round(session, schedule.id, 1)
