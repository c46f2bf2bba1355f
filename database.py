"""Database configuration and utilities."""
from contextlib import contextmanager
from pathlib import Path

from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, create_engine

from models import Photo, User


def make_engine(db_path: Path) -> Engine:
    """Create a SQLite engine for one database file."""
    return create_engine(
        f"sqlite:///{db_path}", connect_args={"check_same_thread": False}
    )


@contextmanager
def get_session(engine: Engine):
    """Get a database session context manager."""
    with Session(engine) as session:
        yield session


def init_credentials_db(engine: Engine) -> None:
    """Create the users table in the credential index."""
    SQLModel.metadata.create_all(engine, tables=[User.__table__])


def init_realm_db(engine: Engine) -> None:
    """Create the photos table in a realm's metadata index."""
    SQLModel.metadata.create_all(engine, tables=[Photo.__table__])
