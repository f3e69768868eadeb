from contextlib import contextmanager
from typing import Any, Callable, Iterator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from config import get_settings

SessionFactory = Callable[[], Session]


def build_engine(database_url: str, **engine_kwargs: Any) -> Engine:
    """Engine for ``database_url``; SQLite connections get WAL and FK enforcement."""
    if not database_url.startswith("sqlite"):
        engine_kwargs.setdefault("pool_pre_ping", True)
        return create_engine(database_url, **engine_kwargs)

    connect_args = engine_kwargs.pop("connect_args", {})
    # Owner batches run on worker threads, each with its own session.
    connect_args.setdefault("check_same_thread", False)
    eng = create_engine(database_url, connect_args=connect_args, **engine_kwargs)
    in_memory = database_url in ("sqlite://", "sqlite:///:memory:")
    event.listen(eng, "connect", _sqlite_pragmas(wal=not in_memory))
    return eng


def _sqlite_pragmas(wal: bool):
    def _apply(dbapi_conn, _record):
        cursor = dbapi_conn.cursor()
        if wal:
            cursor.execute("PRAGMA journal_mode=WAL;")
        cursor.execute("PRAGMA foreign_keys=ON;")
        cursor.close()

    return _apply


engine = build_engine(get_settings().database_url)
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


@contextmanager
def session_scope(factory: Optional[SessionFactory] = None) -> Iterator[Session]:
    session: Session = (factory or SessionLocal)()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
