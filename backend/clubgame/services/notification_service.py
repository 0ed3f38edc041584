"""
Member notifications for tournament milestones (draw, finish).

Best effort and post-commit only: every failure is logged, nothing is
re-raised into the operation that triggered it.
"""
import logging
from typing import Callable, Dict, List, Optional

from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from clubgame.database import session_scope
from clubgame.models.notification import Notification
from clubgame.models.schedule import Schedule
from clubgame.models.schedule_member import ScheduleMember
from clubgame.models.user import User
from clubgame.services.game_errors import PushDeliveryError, PushTokenInvalidError
from clubgame.services.push_service import PushService, get_push_service
from clubgame.services.realtime import get_connection_manager

logger = logging.getLogger(__name__)

MESSAGE_DRAWN = "The draw is out. Check your first match!"
MESSAGE_FINISHED = "The tournament has ended. Check the results!"


def schedule_routing(schedule_id: int) -> str:
    return f"/schedule/{schedule_id}"


def _recipients(session: Session, schedule: Schedule) -> List[User]:
    """Registered users of the tournament, creator excluded."""
    return list(session.exec(
        select(User)
        .join(ScheduleMember, ScheduleMember.uid == User.uid)
        .where(
            ScheduleMember.schedule_id == schedule.id,
            ScheduleMember.is_walk_over == False,  # noqa: E712
            User.uid != schedule.uid,
        )
        .order_by(User.uid)
    ).all())


def clear_push_token(session: Session, uid: str) -> None:
    user = session.get(User, uid)
    if user is None or user.fcm_token is None:
        return
    user.fcm_token = None
    session.add(user)
    session.commit()
    logger.info("Cleared rejected push token for %s", uid)


def notify_game_members(
    session: Session,
    schedule_id: int,
    message: str,
    push: Optional[PushService] = None,
    is_online: Optional[Callable[[str], bool]] = None,
) -> Dict[str, int]:
    """
    Write a Notification row for every member except the creator, then push.

    Members connected to the realtime layer get a data-only message; everyone
    else gets a visible notification.

    Returns:
        dict with keys: total, sent, failed, cleared
    """
    push = push or get_push_service()
    is_online = is_online or get_connection_manager().is_online

    schedule = session.get(Schedule, schedule_id)
    if schedule is None:
        logger.warning("Skipping notifications: tournament %s not found", schedule_id)
        return {"total": 0, "sent": 0, "failed": 0, "cleared": 0}

    users = _recipients(session, schedule)
    sub_title = f"Take a look at {schedule.title}"
    routing = schedule_routing(schedule_id)
    for user in users:
        session.add(Notification(uid=user.uid, title=message, sub_title=sub_title, routing=routing))
    session.commit()

    sent = failed = cleared = 0
    data = {"scheduleId": str(schedule_id), "routing": routing, "alarm": "1", "type": "schedule"}
    for user in users:
        if not user.fcm_token:
            continue
        try:
            push.send(
                user.fcm_token,
                title=message,
                body=sub_title,
                data=data,
                visible=not is_online(user.uid),
                tag=str(schedule_id),
            )
            sent += 1
        except PushTokenInvalidError:
            clear_push_token(session, user.uid)
            cleared += 1
            failed += 1
        except PushDeliveryError as e:
            logger.warning("Push to %s failed: %s", user.uid, e)
            failed += 1

    logger.info(
        "Tournament %s notifications: members=%d sent=%d failed=%d cleared=%d",
        schedule_id, len(users), sent, failed, cleared,
    )
    return {"total": len(users), "sent": sent, "failed": failed, "cleared": cleared}


def notify_in_background(bind: Engine, schedule_id: int, message: str) -> None:
    """BackgroundTasks entry point: runs after the response, on its own session."""
    try:
        with session_scope(bind) as session:
            notify_game_members(session, schedule_id, message)
    except Exception:
        logger.exception("Notification run for tournament %s failed", schedule_id)
