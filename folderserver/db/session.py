"""
Database session management for the folder server.

Provides engine initialization and a transactional session scope. Each
store owns its engine and session factory; nothing is kept at module level.
"""

from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterator, Union

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from .models import Base

DB_FILENAME = 'folders.db'


def database_url(location: Union[str, Path]) -> str:
    """
    Turn a store location into a SQLAlchemy URL.

    Args:
        location: Directory holding ``folders.db``, or a full database URL

    Returns:
        Database URL
    """
    if isinstance(location, str) and '://' in location:
        return location

    store_path = Path(location)
    store_path.mkdir(parents=True, exist_ok=True)
    return f'sqlite:///{store_path / DB_FILENAME}'


def init_db(location: Union[str, Path], echo: bool = False) -> Engine:
    """
    Initialize database and create all tables.

    Args:
        location: Store directory or database URL
        echo: If True, log all SQL statements (debug mode)

    Returns:
        SQLAlchemy engine; the caller owns it and disposes it
    """
    db_url = database_url(location)
    connect_args = {}
    if db_url.startswith('sqlite'):
        # Requests are served from a thread pool
        connect_args['check_same_thread'] = False

    engine = create_engine(db_url, echo=echo, connect_args=connect_args)

    if db_url.startswith('sqlite'):
        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_conn, connection_record):
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    Base.metadata.create_all(engine)
    return engine


@contextmanager
def session_scope(factory: Callable[[], Session]) -> Iterator[Session]:
    """
    Provide a transactional scope around a series of operations.

    Usage:
        with session_scope(store.session_factory) as session:
            session.add(grant)
            # Automatically commits or rolls back
    """
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
