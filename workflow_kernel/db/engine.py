"""
Module: workflow_kernel.db.engine
Responsibility: the process-wide SQLAlchemy engine and session factory.
Architecture position: Kernel > DB.  MUST NOT import services or outer
    layers; ``create_tables`` imports the models package only so that every
    table is registered on ``Base.metadata``.

Invariants enforced:
    - Callers get a factory, not a session: each transition attempt opens
      its own session, so concurrent callers never share a unit of work.
    - In-memory SQLite is pinned to one connection (StaticPool), otherwise
      every session would see a different empty database.

Failure modes:
    - RuntimeError from get_engine/get_session_factory before
      init_engine_from_url().
"""

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from workflow_kernel.logging_config import get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None

_NOT_INITIALIZED = "Engine not initialized. Call init_engine_from_url() first."


def _engine_options(database_url: str, pool_size: int, max_overflow: int) -> dict:
    url = make_url(database_url)
    if url.get_backend_name() != "sqlite":
        return {
            "pool_size": pool_size,
            "max_overflow": max_overflow,
            "pool_pre_ping": True,
            "isolation_level": "READ COMMITTED",
        }
    options: dict = {"connect_args": {"check_same_thread": False}}
    if url.database in (None, "", ":memory:"):
        options["poolclass"] = StaticPool
    return options


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 10,
    max_overflow: int = 10,
) -> Engine:
    """
    Create the engine for ``database_url`` and a session factory bound to it.

    Any SQLAlchemy URL works; the version CAS needs no dialect-specific
    locking.  A second call replaces the first.

    Args:
        database_url: e.g. ``sqlite://``, ``sqlite:///workflow.db`` or a
            server URL for whichever driver is installed.
        echo: Log every SQL statement.
        pool_size: Pooled connections (server backends only).
        max_overflow: Connections beyond ``pool_size`` (server backends only).
    """
    global _engine, _SessionFactory

    _engine = create_engine(
        database_url, echo=echo, **_engine_options(database_url, pool_size, max_overflow),
    )
    _SessionFactory = sessionmaker(bind=_engine, expire_on_commit=False)

    logger.info(
        "engine_initialized",
        extra={"dialect": _engine.dialect.name, "echo": echo},
    )
    return _engine


def get_engine() -> Engine:
    """
    Raises:
        RuntimeError: If the engine has not been initialized.
    """
    if _engine is None:
        raise RuntimeError(_NOT_INITIALIZED)
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    """
    Raises:
        RuntimeError: If the engine has not been initialized.
    """
    if _SessionFactory is None:
        raise RuntimeError(_NOT_INITIALIZED)
    return _SessionFactory


def _metadata():
    from workflow_kernel.db.base import Base

    import workflow_kernel.models  # noqa: F401

    return Base.metadata


def create_tables() -> None:
    _metadata().create_all(get_engine())
    logger.info("tables_created")


def drop_tables() -> None:
    """Drop every workflow table.  Tests only."""
    _metadata().drop_all(get_engine())


def reset_engine() -> None:
    """Dispose the engine and forget the session factory."""
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionFactory = None
