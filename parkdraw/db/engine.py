import os
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from dotenv import load_dotenv
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from .utils import resolve_sqlite_url

load_dotenv()
# Repo root; relative SQLite files are created here.
ROOT_DIR = Path(__file__).resolve().parents[2]
DEFAULT_DB_URL = "sqlite:///./parkdraw.db"


def resolve_database_url(url: Optional[str] = None) -> str:
    """Return ``url``, else ``DB_URL``, else the local ``parkdraw.db`` file."""
    return resolve_sqlite_url(url or os.getenv("DB_URL") or DEFAULT_DB_URL, ROOT_DIR)


def make_engine(database_url: Optional[str] = None, echo: bool = False) -> Engine:
    url = resolve_database_url(database_url)
    engine = create_engine(url, echo=echo, future=True)
    if url.startswith("sqlite"):
        # result rows cascade with their session only when SQLite enforces FKs
        @event.listens_for(engine, "connect")
        def _set_sqlite_pragma(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return engine


def get_sessionmaker(engine: Engine) -> sessionmaker:
    # lottery records are read back for export and publishing after commit
    return sessionmaker(bind=engine, expire_on_commit=False, future=True)


@contextmanager
def session_scope(engine: Optional[Engine] = None) -> Iterator[Session]:
    """Yield a session that commits on success and rolls back on error."""
    Session_ = get_sessionmaker(engine or make_engine())
    with Session_.begin() as session:
        yield session


__all__ = ["ROOT_DIR", "resolve_database_url", "make_engine", "get_sessionmaker", "session_scope"]
