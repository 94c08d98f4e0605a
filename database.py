import threading
from contextlib import contextmanager
from typing import Iterable, Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from config import get_settings


_engines: dict[str, Engine] = {}
_sessionmakers: dict[str, sessionmaker] = {}
_registry_lock = threading.Lock()


def _build_engine(database_url: str) -> Engine:
    settings = get_settings()
    connect_args: dict[str, object] = {}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
        connect_args["timeout"] = settings.sqlite_busy_timeout_secs
    eng = create_engine(database_url, connect_args=connect_args)
    if database_url.startswith("sqlite"):
        event.listen(eng, "connect", _enable_sqlite_pragmas)
    return eng


def get_engine(database_url: str) -> Engine:
    """One engine per tenant store, created on first use and reused across runs."""
    with _registry_lock:
        eng = _engines.get(database_url)
        if eng is None:
            eng = _engines[database_url] = _build_engine(database_url)
        return eng


def _enable_sqlite_pragmas(dbapi_conn, _record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL;")
    cursor.execute("PRAGMA foreign_keys=ON;")
    cursor.close()


def get_sessionmaker(database_url: str) -> sessionmaker:
    eng = get_engine(database_url)
    with _registry_lock:
        factory = _sessionmakers.get(database_url)
        if factory is None:
            factory = _sessionmakers[database_url] = sessionmaker(
                bind=eng, autoflush=False, expire_on_commit=False
            )
        return factory


def dispose_engines(keep: Iterable[str]) -> list[str]:
    """Disposes the engines of stores not in ``keep``; returns their URLs."""
    keep = set(keep)
    with _registry_lock:
        stale = [url for url in _engines if url not in keep]
        for url in stale:
            _sessionmakers.pop(url, None)
            _engines.pop(url).dispose()
    return stale


class Base(DeclarativeBase):
    pass


@contextmanager
def tenant_session_scope(database_url: str) -> Iterator[Session]:
    session: Session = get_sessionmaker(database_url)()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
