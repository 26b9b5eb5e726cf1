from __future__ import annotations

from contextlib import contextmanager
from typing import Callable, Iterator, TypeVar

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase, Session

from .config import settings

T = TypeVar("T")


class Base(DeclarativeBase):
    pass


def _connect_args(url: str) -> dict:
    # FastAPI runs sync handlers in a threadpool
    if url.startswith("sqlite"):
        return {"check_same_thread": False}
    return {}


engine = create_engine(
    settings.database_url,
    pool_pre_ping=True,
    future=True,
    connect_args=_connect_args(settings.database_url),
)

SessionLocal = sessionmaker(
    bind=engine,
    autoflush=False,
    autocommit=False,
    future=True,
)


def get_db() -> Iterator[Session]:
    """
    One session per request. Coordinator calls commit through atomic(); any
    exception escaping the handler rolls back whatever is still pending so a
    failed statement never leaks into the next use of the connection.
    """
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@contextmanager
def atomic(db: Session) -> Iterator[Session]:
    """
    One all-or-nothing unit of work on an explicitly passed session.

    Commits when the block exits cleanly; on any exception every change made
    inside the block (and anything pending before it) is rolled back and the
    exception propagates unchanged.
    """
    try:
        yield db
        db.commit()
    except BaseException:
        db.rollback()
        raise


def run_in_transaction(db: Session, fn: Callable[[Session], T]) -> T:
    with atomic(db):
        return fn(db)
