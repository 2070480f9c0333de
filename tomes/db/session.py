"""
Database session management for tomes.

Provides engine creation, schema initialization and session helpers. The
engine and session factory are owned by the caller (see Library), never
stored at module level.
"""

from pathlib import Path

from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.engine import Engine

from .models import Base

DB_FILENAME = 'tomes.db'


def init_db(library_path: Path, echo: bool = False) -> Engine:
    """
    Create the database engine and all tables.

    Args:
        library_path: Path to library directory
        echo: If True, log all SQL statements (debug mode)

    Returns:
        SQLAlchemy engine
    """
    library_path = Path(library_path)
    library_path.mkdir(parents=True, exist_ok=True)

    db_path = library_path / DB_FILENAME
    db_url = f'sqlite:///{db_path}'

    # Requests are served from a thread pool; each thread gets its own session
    engine = create_engine(db_url, echo=echo, connect_args={"check_same_thread": False})

    # Enable foreign keys for SQLite
    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    Base.metadata.create_all(engine)

    return engine


def make_session_factory(engine: Engine) -> sessionmaker:
    """Build the session factory bound to ``engine``."""
    return sessionmaker(bind=engine, expire_on_commit=False)


def get_or_create(session: Session, model, **kwargs):
    """
    Get existing instance or create new one.

    Args:
        session: Database session
        model: SQLAlchemy model class
        **kwargs: Filter criteria and/or values to set

    Returns:
        Tuple of (instance, created: bool)
    """
    instance = session.query(model).filter_by(**kwargs).first()
    if instance:
        return instance, False
    else:
        instance = model(**kwargs)
        session.add(instance)
        session.flush()
        return instance, True
