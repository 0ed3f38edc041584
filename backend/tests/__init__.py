# Force SQLModel table registration at test discovery time
# This ensures all models are registered before any test database creation
from clubgame.models.game_table import GameTable  # noqa: F401
from clubgame.models.notification import Notification  # noqa: F401
from clubgame.models.schedule import Schedule  # noqa: F401
from clubgame.models.schedule_member import ScheduleMember  # noqa: F401
from clubgame.models.user import User  # noqa: F401
from clubgame.models.user_level import UserLevel  # noqa: F401
