import os
import sqlite3
from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, declarative_base


DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./library.db")

def make_engine(url):
    """
    Build an engine for the given database URL.

    SQLite connections may be handed between threads by the pool, and a
    writer waits up to 30 seconds for a competing writer to commit instead
    of failing with "database is locked".
    """
    return create_engine(
        url,
        connect_args=(
            {"check_same_thread": False, "timeout": 30} if "sqlite" in url else {}
        ),
    )


engine = make_engine(DATABASE_URL)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


@event.listens_for(Engine, "connect")
def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    """
    SQLite ignores FOREIGN KEY constraints unless asked per connection.

    Loans reference members and books, so a member or book that still has
    loan rows must not be deletable on SQLite either.
    """
    if isinstance(dbapi_connection, sqlite3.Connection):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def get_db():
    """
    Dependency function that provides a database session.

    This generator function:
    1. Creates a new SQLAlchemy session
    2. Yields it to the caller (FastAPI endpoint)
    3. Ensures the session is closed after use (in finally block)
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def transaction(db):
    """
    Unit of work around a group of statements.

    Commits when the block finishes and rolls back when it raises, so a
    failed operation never leaves part of its writes behind.
    """
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
