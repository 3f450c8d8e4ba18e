"""SQLAlchemy base declarations and session helpers."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from importlib import import_module

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import DeclarativeBase, Session, close_all_sessions, sessionmaker

from ..utils.config import get_settings

DEFAULT_DATABASE_URL = "sqlite:///./feed_courier.db"


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""


_ENGINES: dict[str, Engine] = {}
_SESSION_FACTORIES: dict[str, sessionmaker[Session]] = {}
_MODELS_IMPORTED = False


def _load_models() -> None:
    """Import model modules so metadata is aware of mapped classes."""

    global _MODELS_IMPORTED
    if _MODELS_IMPORTED:
        return

    import_module("feed_courier.models.document")
    _MODELS_IMPORTED = True


def _resolve_url(database_url: str | None) -> str:
    if database_url:
        return database_url
    return get_settings().database_url or DEFAULT_DATABASE_URL


def _create_engine(database_url: str) -> Engine:
    """Instantiate an SQLAlchemy engine for ``database_url``."""

    connect_args: dict[str, object] = {}
    if database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}

    return create_engine(
        database_url,
        echo=False,
        future=True,
        connect_args=connect_args,
        pool_pre_ping=not database_url.startswith("sqlite"),
    )


def get_engine(database_url: str | None = None) -> Engine:
    """Return (and lazily initialize) the engine for ``database_url``.

    Without an explicit URL the configured state database is used.
    """

    url = _resolve_url(database_url)
    engine = _ENGINES.get(url)
    if engine is None:
        engine = _create_engine(url)
        _load_models()
        Base.metadata.create_all(bind=engine)
        _ENGINES[url] = engine
    return engine


def get_session_factory(database_url: str | None = None) -> sessionmaker[Session]:
    """Return the session factory bound to the engine for ``database_url``."""

    url = _resolve_url(database_url)
    factory = _SESSION_FACTORIES.get(url)
    if factory is None:
        factory = sessionmaker(
            bind=get_engine(url),
            autoflush=False,
            autocommit=False,
            expire_on_commit=False,
            future=True,
        )
        _SESSION_FACTORIES[url] = factory
    return factory


def get_session(database_url: str | None = None) -> Session:
    """Retrieve a new SQLAlchemy session instance."""

    return get_session_factory(database_url)()


@contextmanager
def session_scope(database_url: str | None = None) -> Iterator[Session]:
    """Provide a transactional scope around a series of operations."""

    session = get_session(database_url)
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def reset_engine() -> None:
    """Dispose cached engines and session factories (useful for testing)."""

    global _MODELS_IMPORTED
    if _SESSION_FACTORIES:
        close_all_sessions()
    for engine in _ENGINES.values():
        engine.dispose()
    _ENGINES.clear()
    _SESSION_FACTORIES.clear()
    _MODELS_IMPORTED = False
