"""Note store backed by a Bear-shaped SQLite database via SQLAlchemy."""

import datetime
import logging
from collections import defaultdict
from typing import Any, Dict, List, Sequence

from sqlalchemy import delete, insert, literal_column, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from bear_core.exceptions import (
    ErrorCode,
    RecordNotFoundError,
    StoreUnavailableError,
)
from bear_core.models.db_models import (
    DBNote,
    DBTag,
    from_core_data,
    get_session_factory,
    note_tags,
    to_core_data,
)
from bear_core.models.schema import Record, StoreFilter, utc_now

logger = logging.getLogger(__name__)

# Smallest step between successive modification dates of one note
_MIN_STEP_SECONDS = 0.001

_FIELD_COLUMNS = {
    "title": "title",
    "body": "text",
    "trashed": "trashed",
    "archived": "archived",
    "pinned": "pinned",
}


class SqlNoteStore:
    """Reads and writes notes in ``ZSFNOTE`` and its tag tables.

    Only the trashed/archived/encrypted flags are pushed down into SQL;
    date ranges are left to the scanner, which re-applies every filter.
    A note's tags come back in the order they were attached, which is the
    order of its rows in the association table.
    """

    def __init__(self, engine, clock=utc_now):
        """Initialize the store.

        Args:
            engine: SQLAlchemy engine bound to a Bear database.
            clock: Source of modification timestamps for mutations.
        """
        self.engine = engine
        self.session_factory = get_session_factory(engine)
        self.clock = clock

    def fetch_batch(
        self, store_filter: StoreFilter, offset: int, limit: int
    ) -> Sequence[Record]:
        stmt = select(DBNote)
        if not store_filter.include_trashed:
            stmt = stmt.where(DBNote.trashed == 0)
        if not store_filter.include_archived:
            stmt = stmt.where(DBNote.archived == 0)
        if not store_filter.include_encrypted:
            stmt = stmt.where(DBNote.encrypted == 0)
        stmt = stmt.order_by(DBNote.id).offset(offset).limit(limit)

        try:
            with self.session_factory() as session:
                rows = session.scalars(stmt).all()
                tags = self._tags_in_display_order(session, [row.id for row in rows])
                return [self._db_note_to_record(row, tags[row.id]) for row in rows]
        except SQLAlchemyError as e:
            raise StoreUnavailableError(
                f"Failed to fetch notes: {e}",
                operation="fetch_batch",
                code=ErrorCode.STORE_READ_FAILED,
                original_error=e,
            ) from e

    def get_modification_timestamp(self, record_id: int) -> datetime.datetime:
        try:
            with self.session_factory() as session:
                value = session.scalar(
                    select(DBNote.modification_date).where(DBNote.id == record_id)
                )
        except SQLAlchemyError as e:
            raise StoreUnavailableError(
                f"Failed to read modification date: {e}",
                operation="get_modification_timestamp",
                code=ErrorCode.STORE_READ_FAILED,
                original_error=e,
            ) from e
        if value is None:
            raise RecordNotFoundError(record_id)
        return from_core_data(value)

    def apply_mutation(
        self, record_id: int, changes: Dict[str, Any]
    ) -> datetime.datetime:
        try:
            with self.session_factory() as session:
                db_note = session.get(DBNote, record_id)
                if db_note is None:
                    raise RecordNotFoundError(record_id)

                for field_name, column in _FIELD_COLUMNS.items():
                    if field_name in changes:
                        value = changes[field_name]
                        if isinstance(value, bool):
                            value = int(value)
                        setattr(db_note, column, value)
                if "tags" in changes:
                    self._replace_tags(session, record_id, changes["tags"])

                stamp = to_core_data(self.clock())
                if stamp <= db_note.modification_date:
                    stamp = db_note.modification_date + _MIN_STEP_SECONDS
                db_note.modification_date = stamp
                session.commit()
        except SQLAlchemyError as e:
            raise StoreUnavailableError(
                f"Failed to update note {record_id}: {e}",
                operation="apply_mutation",
                code=ErrorCode.STORE_WRITE_FAILED,
                original_error=e,
            ) from e

        logger.debug(f"Updated note {record_id}: {sorted(changes)}")
        # Read back through the same conversion used by get_modification_timestamp
        return from_core_data(stamp)

    def _get_or_create_tag(self, session: Session, tag_name: str) -> DBTag:
        """Get or create a tag, tolerating concurrent creation."""
        session.execute(
            text("INSERT OR IGNORE INTO ZSFNOTETAG (ZTITLE) VALUES (:title)"),
            {"title": tag_name},
        )
        return session.scalar(select(DBTag).where(DBTag.title == tag_name))

    def _replace_tags(
        self, session: Session, record_id: int, tag_names: Sequence[str]
    ) -> None:
        """Attach exactly these tags to a note, keeping their order."""
        tag_ids = [self._get_or_create_tag(session, name).id for name in tag_names]
        session.execute(delete(note_tags).where(note_tags.c.Z_5NOTES == record_id))
        if tag_ids:
            session.execute(
                insert(note_tags),
                [
                    {"Z_5NOTES": record_id, "Z_13TAGS": tag_id}
                    for tag_id in dict.fromkeys(tag_ids)
                ],
            )

    @staticmethod
    def _tags_in_display_order(
        session: Session, note_ids: Sequence[int]
    ) -> Dict[int, List[str]]:
        """Tag names per note, in the order the tags were attached."""
        tags: Dict[int, List[str]] = defaultdict(list)
        if not note_ids:
            return tags
        stmt = (
            select(note_tags.c.Z_5NOTES, DBTag.title)
            .select_from(note_tags)
            .join(DBTag, DBTag.id == note_tags.c.Z_13TAGS)
            .where(note_tags.c.Z_5NOTES.in_(note_ids))
            .order_by(note_tags.c.Z_5NOTES, literal_column("Z_5TAGS.rowid"))
        )
        for note_id, title in session.execute(stmt):
            tags[note_id].append(title)
        return tags

    @staticmethod
    def _db_note_to_record(db_note: DBNote, tags: Sequence[str] = ()) -> Record:
        return Record(
            id=db_note.id,
            title=db_note.title,
            body=db_note.text or "",
            created_at=from_core_data(db_note.creation_date),
            modified_at=from_core_data(db_note.modification_date),
            trashed=bool(db_note.trashed),
            archived=bool(db_note.archived),
            pinned=bool(db_note.pinned),
            encrypted=bool(db_note.encrypted),
            tags=tuple(tags),
            unique_identifier=db_note.unique_identifier,
        )
