import os
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Iterator, Optional

from dotenv import load_dotenv
from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, create_engine

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./clubgame.db")
SQL_ECHO = os.getenv("SQL_ECHO", "false").lower() in ("true", "1", "yes")


def build_engine(url: str, echo: bool = False) -> Engine:
    """
    Engine for the tournament store.

    SQLite (local dev, tests) gets a thread-agnostic connection and its parent
    directory created; FOR UPDATE is a no-op there. MySQL/Postgres URLs are
    passed through with pre-ping so pooled connections survive idle timeouts.
    """
    if url.startswith("sqlite"):
        path = url.replace("sqlite:///", "", 1)
        if path and path != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        return create_engine(url, echo=echo, connect_args={"check_same_thread": False})
    return create_engine(url, echo=echo, pool_pre_ping=True)


engine: Engine = build_engine(DATABASE_URL, SQL_ECHO)


def get_session() -> Generator[Session, None, None]:
    """Request-scoped session (FastAPI dependency)"""
    with Session(engine) as session:
        yield session


@contextmanager
def session_scope(bind: Optional[Engine] = None) -> Iterator[Session]:
    """Session for work outside a request, e.g. post-commit background tasks."""
    with Session(bind or engine) as session:
        yield session


def init_db() -> None:
    """Create all tournament tables"""
    from clubgame.models import (  # noqa: F401
        GameTable,
        Notification,
        Schedule,
        ScheduleMember,
        User,
        UserLevel,
    )

    SQLModel.metadata.create_all(engine)
