"""Bracket seeder: slot layout helpers and the draw operation."""
import random

import pytest
from sqlmodel import Session, select

from clubgame.models.schedule import LifecycleState, Schedule
from clubgame.models.schedule_member import BYE_UID_PREFIX, ScheduleMember
from clubgame.services.game_errors import GameConflictError, GameNotFoundError, GameValidationError
from clubgame.services.seeding_service import (
    bye_match_positions,
    close_random_indexes,
    next_power_of_two,
    plan_elimination_slots,
    start_tournament,
    update_member_indexes,
)
from clubgame.utils.kdk_rules import build_ruleset


def _members(session: Session, schedule_id: int):
    session.expire_all()
    return session.exec(
        select(ScheduleMember).where(ScheduleMember.schedule_id == schedule_id).order_by(ScheduleMember.id)
    ).all()


# ============================================================================
# Pure helpers
# ============================================================================


@pytest.mark.parametrize("n,expected", [(1, 1), (2, 2), (3, 4), (5, 8), (8, 8), (33, 64)])
def test_next_power_of_two(n, expected):
    assert next_power_of_two(n) == expected


def test_close_random_is_a_permutation(rng):
    for count in (1, 2, 7, 16):
        assert sorted(close_random_indexes(count, rng)) == list(range(1, count + 1))


def test_bye_positions_are_spread():
    assert bye_match_positions(8, 3) == [1, 2, 3]
    assert bye_match_positions(16, 5) == [1, 2, 4, 5, 7]
    assert bye_match_positions(8, 0) == []


def test_bye_positions_reject_overflow():
    with pytest.raises(ValueError):
        bye_match_positions(4, 3)


@pytest.mark.parametrize("field_size", range(2, 34))
def test_slot_plan_never_pairs_two_byes(field_size):
    entries = [f"p{i}" for i in range(field_size)]
    slots = plan_elimination_slots(entries, random.Random(field_size))

    assert len(slots) == next_power_of_two(field_size)
    assert sorted(e for e in slots.values() if e is not None) == sorted(entries)
    for slot, entry in slots.items():
        if entry is None:
            assert slot % 2 == 0
            assert slots[slot - 1] is not None


# ============================================================================
# start_tournament
# ============================================================================


def test_kdk_singles_draw_assigns_one_to_n(session, make_game, ruleset, rng):
    schedule = make_game(["a", "b", "c", "d", "e"], is_kdk=True, pending=["late"])

    result = start_tournament(session, schedule.id, ruleset, rng)

    assert sorted(result.seeds.values()) == [1, 2, 3, 4, 5]
    members = _members(session, schedule.id)
    assert sorted(m.uid for m in members) == ["a", "b", "c", "d", "e"]
    assert sorted(m.member_index for m in members) == [1, 2, 3, 4, 5]
    assert session.get(Schedule, schedule.id).state == LifecycleState.DRAWN


def test_elimination_five_players_pads_to_eight(session, make_game, ruleset, rng):
    schedule = make_game(["a", "b", "c", "d", "e"])

    result = start_tournament(session, schedule.id, ruleset, rng)

    assert (result.field_size, result.slot_count, result.bye_count) == (5, 8, 3)
    members = _members(session, schedule.id)
    byes = [m for m in members if m.is_walk_over]
    assert len(byes) == 3
    assert all(m.uid.startswith(BYE_UID_PREFIX) and m.member_index % 2 == 0 for m in byes)
    assert sorted(m.member_index for m in members) == list(range(1, 9))


def test_elimination_doubles_seeds_teams(session, make_game, ruleset, rng):
    schedule = make_game(
        ["a", "b", "c", "d", "e"],
        is_single=False,
        teams=["T1", "T1", "T2", "T2", None],
    )

    result = start_tournament(session, schedule.id, ruleset, rng)

    assert (result.field_size, result.slot_count, result.bye_count) == (3, 4, 1)
    by_uid = {m.uid: m for m in _members(session, schedule.id)}
    assert by_uid["a"].member_index == by_uid["b"].member_index
    assert by_uid["c"].member_index == by_uid["d"].member_index
    assert by_uid["e"].team_name == "solo:e"
    assert len({by_uid[u].member_index for u in "ace"}) == 3


def test_team_of_three_is_rejected_before_any_write(session, make_game, ruleset, rng):
    schedule = make_game(
        ["a", "b", "c", "d"],
        is_single=False,
        teams=["T1", "T1", "T1", "T2"],
        pending=["late"],
    )

    with pytest.raises(GameValidationError):
        start_tournament(session, schedule.id, ruleset, rng)

    members = _members(session, schedule.id)
    assert "late" in {m.uid for m in members}
    assert all(m.member_index is None for m in members)
    assert session.get(Schedule, schedule.id).state == LifecycleState.OPEN


def test_kdk_doubles_without_rules_for_count_is_rejected(session, make_game, rng):
    # three two-person teams = 6 members; this ruleset only knows 5
    ruleset = build_ruleset({}, {"5": [{"team1": [0, 1], "team2": [2, 3]}]})
    schedule = make_game(
        ["a", "b", "c", "d", "e", "f"],
        is_kdk=True,
        is_single=False,
        teams=["T1", "T1", "T2", "T2", "T3", "T3"],
    )

    with pytest.raises(GameValidationError, match="No KDK doubles rules for 6"):
        start_tournament(session, schedule.id, ruleset, rng)

    assert all(m.member_index is None for m in _members(session, schedule.id))
    assert session.get(Schedule, schedule.id).state == LifecycleState.OPEN


@pytest.mark.parametrize(
    "uids,is_kdk,is_single",
    [(["a"], False, True), (["a", "b", "c"], True, True), (["a", "b", "c", "d"], True, False)],
)
def test_too_small_field_is_rejected(session, make_game, ruleset, rng, uids, is_kdk, is_single):
    schedule = make_game(uids, is_kdk=is_kdk, is_single=is_single)
    with pytest.raises(GameValidationError):
        start_tournament(session, schedule.id, ruleset, rng)


def test_registration_closed_can_still_be_drawn(session, make_game, ruleset, rng):
    schedule = make_game(["a", "b"], state=LifecycleState.REGISTRATION_CLOSED)
    start_tournament(session, schedule.id, ruleset, rng)
    assert session.get(Schedule, schedule.id).state == LifecycleState.DRAWN


def test_second_draw_is_a_conflict(session, make_game, ruleset, rng):
    schedule = make_game(["a", "b", "c"])
    start_tournament(session, schedule.id, ruleset, rng)
    with pytest.raises(GameConflictError):
        start_tournament(session, schedule.id, ruleset, rng)


def test_unknown_tournament(session, ruleset, rng):
    with pytest.raises(GameNotFoundError):
        start_tournament(session, 999, ruleset, rng)


def test_non_game_schedule_is_rejected(session, ruleset, rng):
    schedule = Schedule(uid="host", title="Practice", tag="practice")
    session.add(schedule)
    session.commit()
    with pytest.raises(GameValidationError):
        start_tournament(session, schedule.id, ruleset, rng)


# ============================================================================
# update_member_indexes
# ============================================================================


def test_manual_reseed_while_drawn(session, make_game, ruleset, rng):
    schedule = make_game(["a", "b", "c", "d"], is_kdk=True)
    start_tournament(session, schedule.id, ruleset, rng)

    updated = update_member_indexes(session, schedule.id, {"a": 4, "d": 1})

    assert updated == 2
    by_uid = {m.uid: m for m in _members(session, schedule.id)}
    assert (by_uid["a"].member_index, by_uid["d"].member_index) == (4, 1)


def test_manual_reseed_is_all_or_nothing(session, make_game, ruleset, rng):
    schedule = make_game(["a", "b", "c", "d"], is_kdk=True)
    start_tournament(session, schedule.id, ruleset, rng)
    before = {m.uid: m.member_index for m in _members(session, schedule.id)}

    with pytest.raises(GameValidationError):
        update_member_indexes(session, schedule.id, {"a": 3, "ghost": 1})

    assert {m.uid: m.member_index for m in _members(session, schedule.id)} == before


def test_manual_reseed_rejects_bad_index(session, make_game):
    schedule = make_game(["a", "b"], state=LifecycleState.DRAWN)
    with pytest.raises(GameValidationError):
        update_member_indexes(session, schedule.id, {"a": 0})


def test_manual_reseed_outside_drawn_is_a_conflict(session, make_game):
    schedule = make_game(["a", "b"])
    with pytest.raises(GameConflictError):
        update_member_indexes(session, schedule.id, {"a": 1})
