"""
Database engine, sessions and the transactional scope.

Every balance-affecting operation runs inside ``session_scope()``: the
session commits when the block exits normally and rolls back on any
exception, so a balance update, its history entry and the request status
change are persisted together or not at all.

PostgreSQL serializes writers through ``SELECT ... FOR UPDATE`` on the
affected rows. SQLite has no row locks, so SQLite engines open every
transaction with ``BEGIN IMMEDIATE`` and writers queue on the database lock.
"""

from contextlib import contextmanager
from typing import Iterator, Optional

from loguru import logger
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from .config import get_settings

Base = declarative_base()

_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker] = None


def normalize_database_url(url: str) -> str:
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+psycopg://", 1)
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+psycopg://", 1)
    return url


def build_engine(database_url: str, echo: bool = False) -> Engine:
    url = normalize_database_url(database_url)

    if url.startswith("sqlite"):
        engine = create_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False, "timeout": 30},
        )
        _begin_immediate(engine)
        return engine

    return create_engine(url, echo=echo, pool_pre_ping=True)


def _begin_immediate(engine: Engine) -> None:
    # Let SQLAlchemy emit BEGIN itself instead of pysqlite's deferred one.
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(
        bind=engine,
        autoflush=False,
        expire_on_commit=False,
    )


def get_session_factory() -> sessionmaker:
    """Process-wide session factory, built lazily from settings."""
    global _engine, _session_factory

    if _session_factory is None:
        settings = get_settings()
        _engine = build_engine(settings.database_url, echo=settings.database_echo)
        _session_factory = build_session_factory(_engine)

    return _session_factory


def create_tables(session_factory: sessionmaker) -> None:
    # Table classes register themselves on Base when imported.
    from . import tables  # noqa: F401

    with session_factory() as session:
        Base.metadata.create_all(bind=session.get_bind())
    logger.info("Database tables ensured")


@contextmanager
def session_scope(session_factory: Optional[sessionmaker] = None) -> Iterator[Session]:
    """
    Session as a transaction:

        with session_scope(factory) as session:
            ...

    Commits on success, rolls back on any exception, always closes.
    """
    factory = session_factory or get_session_factory()
    session: Session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
