"""
Tournament (game) endpoints: draw, match table, scoring, rounds, finish.

Handlers stay thin: services raise GameError subclasses, translated here into
HTTPException. Realtime broadcasts and member notifications are queued as
background tasks so they only run after the service has committed.
"""
import logging
from datetime import datetime
from typing import Dict, List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request, Response
from pydantic import BaseModel, ConfigDict, field_validator
from sqlmodel import Session, func, select

from clubgame.database import get_session
from clubgame.models.schedule import GAME_TAG, LifecycleState, Schedule
from clubgame.models.schedule_member import ScheduleMember
from clubgame.services.advancement_service import advance_round
from clubgame.services.finalize_service import finalize_tournament, list_level_history, preview_ranking
from clubgame.services.game_errors import GameError
from clubgame.services.game_state_service import update_state
from clubgame.services.match_table_service import build_match_table, list_tables, update_court, update_score
from clubgame.services.notification_service import MESSAGE_DRAWN, MESSAGE_FINISHED, notify_in_background
from clubgame.services.realtime import (
    EVENT_CHANGED_STATE,
    EVENT_COURT,
    EVENT_REFRESH_GAME,
    EVENT_REFRESH_MEMBER,
    EVENT_SCORE,
    get_connection_manager,
    tournament_channel,
)
from clubgame.services.seeding_service import start_tournament, update_member_indexes
from clubgame.utils.kdk_rules import KdkRuleset, load_kdk_ruleset

logger = logging.getLogger(__name__)

router = APIRouter()


def get_kdk_ruleset(request: Request) -> KdkRuleset:
    """Ruleset loaded once at startup and kept on app.state."""
    ruleset = getattr(request.app.state, "kdk_ruleset", None)
    if ruleset is None:
        ruleset = load_kdk_ruleset()
        request.app.state.kdk_ruleset = ruleset
    return ruleset


def _http_error(exc: GameError) -> HTTPException:
    if exc.status_code >= 500:
        logger.error("Game operation failed: %s", exc)
    return HTTPException(status_code=exc.status_code, detail=str(exc))


def _broadcast(background_tasks: BackgroundTasks, schedule_id: int, event: str, payload: Optional[dict] = None):
    manager = get_connection_manager()
    background_tasks.add_task(manager.broadcast, tournament_channel(schedule_id), event, payload or {})


def _notify(background_tasks: BackgroundTasks, session: Session, schedule_id: int, message: str):
    background_tasks.add_task(notify_in_background, session.get_bind(), schedule_id, message)


# ============================================================================
# Request / response models
# ============================================================================


class GameSummary(BaseModel):
    schedule_id: int
    title: str
    is_kdk: bool
    is_single: bool
    state: int
    member_count: int
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


class GameTableResponse(BaseModel):
    table_id: int
    player1_0: Optional[str] = None
    player1_1: Optional[str] = None
    player2_0: Optional[str] = None
    player2_1: Optional[str] = None
    score1: Optional[int] = None
    score2: Optional[int] = None
    walk_over: bool
    court: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class TableBuildResponse(BaseModel):
    match_count: int
    rounds: int


class AdvanceResponse(BaseModel):
    round: int
    next_round: int
    matches_filled: int


class RankingEntryResponse(BaseModel):
    uid: str
    win_point: int
    score: int
    ranking: int
    team_name: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class FinalizeResponse(BaseModel):
    schedule_id: int
    ranking: List[RankingEntryResponse]
    level_changes: int


class UserLevelResponse(BaseModel):
    uid: str
    schedule_id: int
    table_id: int
    fluctuation: float
    original: float
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ScoreUpdate(BaseModel):
    schedule_id: int
    table_id: int
    side: int
    score: Optional[int] = None

    @field_validator("side")
    @classmethod
    def validate_side(cls, v):
        if v not in (1, 2):
            raise ValueError("side must be 1 or 2")
        return v


class CourtUpdate(BaseModel):
    schedule_id: int
    table_id: int
    court: Optional[str] = None


class MemberIndexUpdate(BaseModel):
    schedule_id: int
    indexes: Dict[str, int]


class StateUpdate(BaseModel):
    schedule_id: int
    state: int


# ============================================================================
# Reads
# ============================================================================


@router.get("/games/profile/{uid}", response_model=List[GameSummary])
def list_games_for_user(uid: str, session: Session = Depends(get_session)):
    """Tournaments the user takes part in, newest first, with member counts."""
    schedules = session.exec(
        select(Schedule)
        .join(ScheduleMember, ScheduleMember.schedule_id == Schedule.id)
        .where(Schedule.tag == GAME_TAG, ScheduleMember.uid == uid)
        .order_by(Schedule.created_at.desc(), Schedule.id.desc())
    ).all()

    summaries = []
    for schedule in schedules:
        member_count = session.exec(
            select(func.count()).select_from(ScheduleMember).where(
                ScheduleMember.schedule_id == schedule.id,
                ScheduleMember.is_walk_over == False,  # noqa: E712
            )
        ).one()
        summaries.append(GameSummary(
            schedule_id=schedule.id,
            title=schedule.title,
            is_kdk=schedule.is_kdk,
            is_single=schedule.is_single,
            state=schedule.state,
            member_count=member_count,
            start_date=schedule.start_date,
            end_date=schedule.end_date,
        ))
    return summaries


@router.get("/games/{schedule_id}/table", response_model=List[GameTableResponse])
def get_game_tables(schedule_id: int, session: Session = Depends(get_session)):
    if session.get(Schedule, schedule_id) is None:
        raise HTTPException(status_code=404, detail="Tournament not found")
    return list_tables(session, schedule_id)


@router.get("/games/{schedule_id}/ranking", response_model=List[RankingEntryResponse])
def get_ranking_preview(schedule_id: int, session: Session = Depends(get_session)):
    """Ranking from the stored results; nothing is written."""
    try:
        return preview_ranking(session, schedule_id)
    except GameError as e:
        raise _http_error(e)


@router.get("/games/{schedule_id}/levels", response_model=List[UserLevelResponse])
def get_level_history(schedule_id: int, uid: str, session: Session = Depends(get_session)):
    return list_level_history(session, schedule_id, uid)


# ============================================================================
# Lifecycle operations
# ============================================================================


@router.put("/games/start/{schedule_id}")
def start_game(
    schedule_id: int,
    background_tasks: BackgroundTasks,
    session: Session = Depends(get_session),
    ruleset: KdkRuleset = Depends(get_kdk_ruleset),
):
    """Validate the roster and run the draw (seed indexes). 200 with no body."""
    try:
        start_tournament(session, schedule_id, ruleset)
    except GameError as e:
        raise _http_error(e)

    _broadcast(background_tasks, schedule_id, EVENT_REFRESH_MEMBER)
    _broadcast(background_tasks, schedule_id, EVENT_CHANGED_STATE, {"state": int(LifecycleState.DRAWN)})
    _notify(background_tasks, session, schedule_id, MESSAGE_DRAWN)
    return Response(status_code=200)


@router.post("/games/{schedule_id}/table", response_model=TableBuildResponse)
def create_game_table(
    schedule_id: int,
    background_tasks: BackgroundTasks,
    session: Session = Depends(get_session),
    ruleset: KdkRuleset = Depends(get_kdk_ruleset),
):
    try:
        result = build_match_table(session, schedule_id, ruleset)
    except GameError as e:
        raise _http_error(e)

    _broadcast(background_tasks, schedule_id, EVENT_REFRESH_MEMBER)
    _broadcast(background_tasks, schedule_id, EVENT_REFRESH_GAME)
    _broadcast(background_tasks, schedule_id, EVENT_CHANGED_STATE, {"state": int(LifecycleState.IN_PROGRESS)})
    return TableBuildResponse(match_count=result.match_count, rounds=result.rounds)


@router.put("/games/{schedule_id}/rounds/{round_number}/advance", response_model=AdvanceResponse)
def advance_game_round(
    schedule_id: int,
    round_number: int,
    background_tasks: BackgroundTasks,
    session: Session = Depends(get_session),
):
    try:
        result = advance_round(session, schedule_id, round_number)
    except GameError as e:
        raise _http_error(e)

    _broadcast(background_tasks, schedule_id, EVENT_REFRESH_GAME)
    return AdvanceResponse(**result)


@router.post("/games/{schedule_id}/end", response_model=FinalizeResponse)
def end_game(
    schedule_id: int,
    background_tasks: BackgroundTasks,
    session: Session = Depends(get_session),
):
    """Apply ratings, write the ranking and close the tournament."""
    try:
        result = finalize_tournament(session, schedule_id)
    except GameError as e:
        raise _http_error(e)

    _broadcast(background_tasks, schedule_id, EVENT_CHANGED_STATE, {"state": int(LifecycleState.FINISHED)})
    _broadcast(background_tasks, schedule_id, EVENT_REFRESH_MEMBER)
    _notify(background_tasks, session, schedule_id, MESSAGE_FINISHED)
    return FinalizeResponse(
        schedule_id=schedule_id,
        ranking=[RankingEntryResponse.model_validate(e) for e in result.ranking],
        level_changes=len(result.level_changes),
    )


@router.put("/games/state")
def change_game_state(
    payload: StateUpdate,
    background_tasks: BackgroundTasks,
    session: Session = Depends(get_session),
):
    """Close registration. Later states belong to start, table and end."""
    try:
        schedule = update_state(session, payload.schedule_id, payload.state)
    except GameError as e:
        raise _http_error(e)

    _broadcast(background_tasks, schedule.id, EVENT_CHANGED_STATE, {"state": schedule.state})
    return {"schedule_id": schedule.id, "state": schedule.state}


# ============================================================================
# Match and member edits
# ============================================================================


@router.put("/games/score", response_model=GameTableResponse)
def report_score(
    payload: ScoreUpdate,
    background_tasks: BackgroundTasks,
    session: Session = Depends(get_session),
):
    try:
        table = update_score(session, payload.schedule_id, payload.table_id, payload.side, payload.score)
    except GameError as e:
        raise _http_error(e)

    _broadcast(background_tasks, payload.schedule_id, EVENT_SCORE, payload.model_dump())
    return table


@router.put("/games/court", response_model=GameTableResponse)
def change_court(
    payload: CourtUpdate,
    background_tasks: BackgroundTasks,
    session: Session = Depends(get_session),
):
    try:
        table = update_court(session, payload.schedule_id, payload.table_id, payload.court)
    except GameError as e:
        raise _http_error(e)

    _broadcast(background_tasks, payload.schedule_id, EVENT_COURT, {"table_id": payload.table_id, "court": payload.court})
    return table


@router.put("/games/member/index-update")
def change_member_indexes(
    payload: MemberIndexUpdate,
    background_tasks: BackgroundTasks,
    session: Session = Depends(get_session),
):
    """Organiser override of seed indexes while the tournament is DRAWN."""
    try:
        updated = update_member_indexes(session, payload.schedule_id, payload.indexes)
    except GameError as e:
        raise _http_error(e)

    _broadcast(background_tasks, payload.schedule_id, EVENT_REFRESH_MEMBER)
    return {"updated": updated}
