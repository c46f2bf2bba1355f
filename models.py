"""Database models for Photo Vault."""
from sqlalchemy import Index, func
from sqlmodel import Field, SQLModel

from utils import now_ms


class User(SQLModel, table=True):
    """Account row in the shared credential index."""
    __tablename__ = "users"

    id: str = Field(primary_key=True)
    username: str = Field(index=True, unique=True)
    password_salt: str
    password_hash: str
    created_at: int = Field(default_factory=now_ms)


# Usernames are unique regardless of case
Index("uq_users_username_lower", func.lower(User.__table__.c.username), unique=True)


class Photo(SQLModel, table=True):
    """One stored asset inside a user's realm."""
    __tablename__ = "photos"

    id: str = Field(primary_key=True)
    name: str = Field(description="Display name")
    filename: str = Field(index=True, unique=True, description="Stored filename")
    mime_type: str
    size: int = 0
    created_at: int = Field(default_factory=now_ms, index=True)
