"""Database engine and helpers.

This module configures the SQLModel/SQLAlchemy engine from
`settings.DATABASE_URL` (a local SQLite file by default) and exposes the
process-wide `DocumentStore` used by the application. Tests build their
own store with `create_store`.
"""

from sqlmodel import SQLModel, create_engine

from .config import settings
from .store import DocumentStore


def make_engine(url: str):
    """Create an engine for `url`.

    SQLite connections are shared across FastAPI's worker threads, so
    the same-thread check is disabled for them.
    """
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, echo=False, connect_args=connect_args)


def create_store(url: str) -> DocumentStore:
    """Return a `DocumentStore` for `url` with all tables created."""
    eng = make_engine(url)
    SQLModel.metadata.create_all(eng)
    return DocumentStore(eng)


engine = make_engine(settings.DATABASE_URL)
store = DocumentStore(engine)


def create_db_and_tables():
    """Create database tables using SQLModel metadata.

    The document table is schemaless inside its JSON column, so adding a
    field to a collection never needs a migration.
    """
    SQLModel.metadata.create_all(engine)


def get_store() -> DocumentStore:
    """Return the shared `DocumentStore` for FastAPI dependency injection."""
    return store
