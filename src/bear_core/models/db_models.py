"""SQLAlchemy models mirroring the Bear note database.

Bear stores notes in a Core Data SQLite file: tables and columns carry the
``Z`` prefix and timestamps are REAL seconds since 2001-01-01 UTC.
Only the columns the search core reads or writes are mapped.
"""
import datetime
from datetime import timezone
from typing import Optional

from sqlalchemy import (Column, Float, ForeignKey, Integer, String, Table,
                        Text, create_engine, event)
from sqlalchemy.orm import declarative_base, relationship, sessionmaker

# Create base class for SQLAlchemy models
Base = declarative_base()

CORE_DATA_EPOCH = datetime.datetime(2001, 1, 1, tzinfo=timezone.utc)

# Association table for tags and notes
note_tags = Table(
    "Z_5TAGS",
    Base.metadata,
    Column("Z_5NOTES", Integer, ForeignKey("ZSFNOTE.Z_PK"), primary_key=True),
    Column("Z_13TAGS", Integer, ForeignKey("ZSFNOTETAG.Z_PK"), primary_key=True),
)


def to_core_data(value: datetime.datetime) -> float:
    """Convert a datetime to a Core Data timestamp (naive values are UTC)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return (value - CORE_DATA_EPOCH).total_seconds()


def from_core_data(value: Optional[float]) -> datetime.datetime:
    """Convert a Core Data timestamp to a UTC datetime."""
    return CORE_DATA_EPOCH + datetime.timedelta(seconds=value or 0.0)


class DBNote(Base):
    """Database model for a Bear note."""
    __tablename__ = "ZSFNOTE"
    id = Column("Z_PK", Integer, primary_key=True, autoincrement=True)
    title = Column("ZTITLE", String, nullable=True)
    text = Column("ZTEXT", Text, nullable=True)
    creation_date = Column("ZCREATIONDATE", Float, nullable=False, default=0.0)
    modification_date = Column("ZMODIFICATIONDATE", Float, nullable=False,
                               default=0.0, index=True)
    trashed = Column("ZTRASHED", Integer, nullable=False, default=0)
    archived = Column("ZARCHIVED", Integer, nullable=False, default=0)
    pinned = Column("ZPINNED", Integer, nullable=False, default=0)
    encrypted = Column("ZENCRYPTED", Integer, nullable=False, default=0)
    unique_identifier = Column("ZUNIQUEIDENTIFIER", String, nullable=True)

    # Relationships
    tags = relationship(
        "DBTag", secondary=note_tags, back_populates="notes"
    )

    def __repr__(self) -> str:
        """Return string representation of note."""
        return f"<Note(id={self.id}, title='{self.title}')>"


class DBTag(Base):
    """Database model for a Bear tag."""
    __tablename__ = "ZSFNOTETAG"
    id = Column("Z_PK", Integer, primary_key=True, autoincrement=True)
    title = Column("ZTITLE", String, unique=True, nullable=False)

    # Relationships
    notes = relationship(
        "DBNote", secondary=note_tags, back_populates="tags"
    )

    def __repr__(self) -> str:
        """Return string representation of tag."""
        return f"<Tag(id={self.id}, title='{self.title}')>"


def create_engine_for(url: str, read_only: bool = False):
    """Create an engine for a Bear database URL.

    Read-only engines set ``query_only`` on every connection so that a
    misdirected write fails instead of touching the user's notes.
    """
    engine = create_engine(url, pool_pre_ping=True)

    if read_only:
        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA query_only=ON")
            cursor.close()

    return engine


def create_tables(engine) -> None:
    """Create the Bear tables on an empty database (fixtures and tests)."""
    Base.metadata.create_all(engine)


def get_session_factory(engine):
    """Get a session factory for the database."""
    return sessionmaker(bind=engine, expire_on_commit=False)
