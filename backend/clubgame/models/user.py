from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel

LEVEL_FLOOR = 1.0
LEVEL_CEILING = 10.0


class User(SQLModel, table=True):
    uid: str = Field(primary_key=True)
    nickname: Optional[str] = None
    level: float = Field(default=LEVEL_FLOOR)
    fcm_token: Optional[str] = Field(default=None)  # cleared when the push provider rejects it
    created_at: datetime = Field(default_factory=datetime.utcnow)
