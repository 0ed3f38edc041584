"""Push delivery (dry-run and stubbed provider) and member notifications."""
import pytest
from firebase_admin import exceptions, messaging
from sqlmodel import Session, select

from clubgame.models.notification import Notification
from clubgame.models.user import User
from clubgame.services.game_errors import PushDeliveryError, PushTokenInvalidError
from clubgame.services.notification_service import notify_game_members, notify_in_background
from clubgame.services.push_service import MAX_SEND_ATTEMPTS, PushService, build_message


class StubSender:
    """Stands in for messaging.send: pops one outcome per call."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.messages = []

    def __call__(self, message):
        self.messages.append(message)
        outcome = self.outcomes.pop(0) if self.outcomes else "msg-id"
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def test_dry_run_without_key(monkeypatch):
    monkeypatch.delenv("FIREBASE_KEY_LOCATION", raising=False)
    push = PushService()

    assert push.dry_run is True
    assert push.is_configured is False
    assert push.send("token-abcdef", "Title", "Body").startswith("DRY_RUN_")


def test_visible_message_carries_android_channel():
    message = build_message("tok", "Draw is out", "Check it", {"scheduleId": 7}, visible=True, channel_id="chan")
    assert message.notification.title == "Draw is out"
    assert message.android.notification.channel_id == "chan"
    assert message.data == {"scheduleId": "7"}


def test_data_only_message_for_online_users():
    message = build_message("tok", "Draw is out", "Check it", {"routing": "/schedule/7"}, visible=False)
    assert message.notification is None
    assert message.data["title"] == "Draw is out"
    assert message.data["routing"] == "/schedule/7"


def test_unregistered_token_is_reported():
    push = PushService(sender=StubSender(messaging.UnregisteredError("gone")))
    with pytest.raises(PushTokenInvalidError) as info:
        push.send("dead-token", "t", "b")
    assert info.value.token == "dead-token"


def test_transient_errors_are_retried_with_linear_backoff():
    delays = []
    sender = StubSender(exceptions.UnavailableError("busy"), exceptions.InternalError("oops"), "msg-42")
    push = PushService(sender=sender, retry_delay=1.0, sleep=delays.append)

    assert push.send("token", "t", "b") == "msg-42"
    assert delays == [1.0, 2.0]
    assert len(sender.messages) == 3


def test_retries_give_up_after_max_attempts():
    sender = StubSender(*[exceptions.DeadlineExceededError("slow")] * MAX_SEND_ATTEMPTS)
    push = PushService(sender=sender, sleep=lambda _: None)

    with pytest.raises(PushDeliveryError):
        push.send("token", "t", "b")
    assert len(sender.messages) == MAX_SEND_ATTEMPTS


def test_permanent_error_is_not_retried():
    sender = StubSender(exceptions.PermissionDeniedError("no"))
    push = PushService(sender=sender, sleep=lambda _: None)

    with pytest.raises(PushDeliveryError):
        push.send("token", "t", "b")
    assert len(sender.messages) == 1


def test_empty_token_is_invalid():
    with pytest.raises(PushTokenInvalidError):
        PushService(sender=StubSender()).send("", "t", "b")


def test_notify_members_writes_inbox_and_pushes(session: Session, make_game):
    # the creator plays too but is never notified
    schedule = make_game(["host", "a", "b", "c"], creator="host")
    sender = StubSender()
    push = PushService(sender=sender)

    summary = notify_game_members(session, schedule.id, "The draw is out", push=push, is_online=lambda uid: uid == "b")

    assert summary == {"total": 3, "sent": 3, "failed": 0, "cleared": 0}
    notes = session.exec(select(Notification)).all()
    assert sorted(n.uid for n in notes) == ["a", "b", "c"]
    by_token = {m.token: m for m in sender.messages}
    assert by_token["token-b"].notification is None
    assert by_token["token-a"].notification.title == "The draw is out"


def test_rejected_token_is_cleared(session: Session, make_game):
    schedule = make_game(["a", "b"])
    push = PushService(sender=StubSender(messaging.UnregisteredError("gone"), "ok"))

    summary = notify_game_members(session, schedule.id, "Finished", push=push, is_online=lambda uid: False)

    assert summary["cleared"] == 1
    session.expire_all()
    tokens = {u.uid: u.fcm_token for u in session.exec(select(User).where(User.uid.in_(["a", "b"]))).all()}
    assert tokens == {"a": None, "b": "token-b"}


def test_push_failure_does_not_stop_other_members(session: Session, make_game):
    schedule = make_game(["a", "b"])
    push = PushService(sender=StubSender(exceptions.PermissionDeniedError("no"), "ok"))

    summary = notify_game_members(session, schedule.id, "Finished", push=push, is_online=lambda uid: False)

    assert (summary["sent"], summary["failed"]) == (1, 1)
    assert len(session.exec(select(Notification)).all()) == 2


def test_members_without_token_get_inbox_only(session: Session, make_game):
    schedule = make_game(["a"])
    user = session.get(User, "a")
    user.fcm_token = None
    session.add(user)
    session.commit()
    sender = StubSender()

    summary = notify_game_members(session, schedule.id, "Finished", push=PushService(sender=sender), is_online=lambda uid: False)

    assert summary["total"] == 1 and summary["sent"] == 0
    assert sender.messages == []
    assert len(session.exec(select(Notification)).all()) == 1


def test_background_run_uses_its_own_session(session: Session, make_game):
    schedule = make_game(["host", "a", "b"], creator="host")

    notify_in_background(session.get_bind(), schedule.id, "Finished")

    notes = session.exec(select(Notification).order_by(Notification.uid)).all()
    assert [n.uid for n in notes] == ["a", "b"]
