from clubgame.models.game_table import DoublesLineup, GameTable, SinglesLineup
from clubgame.models.notification import Notification
from clubgame.models.schedule import LifecycleState, Schedule
from clubgame.models.schedule_member import ScheduleMember
from clubgame.models.user import User
from clubgame.models.user_level import UserLevel

__all__ = [
    "User",
    "Schedule",
    "LifecycleState",
    "ScheduleMember",
    "GameTable",
    "SinglesLineup",
    "DoublesLineup",
    "UserLevel",
    "Notification",
]
