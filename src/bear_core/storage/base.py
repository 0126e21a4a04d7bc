"""Store protocol consumed by the search core."""

import datetime
from typing import Any, Dict, Protocol, Sequence, runtime_checkable

from bear_core.models.schema import Record, StoreFilter


@runtime_checkable
class NoteStore(Protocol):
    """Read/write note source, treated as opaque by the core.

    Implementations return records in a stable order (ascending id) so that
    offset-based batches are consistent. Missing records raise
    RecordNotFoundError; backend failures raise StoreUnavailableError.
    """

    def fetch_batch(
        self, store_filter: StoreFilter, offset: int, limit: int
    ) -> Sequence[Record]:
        """Return up to ``limit`` records starting at ``offset``.

        ``store_filter`` may be pushed down; callers re-check it.
        """
        ...

    def get_modification_timestamp(self, record_id: int) -> datetime.datetime:
        """Return the current modification timestamp of a record."""
        ...

    def apply_mutation(
        self, record_id: int, changes: Dict[str, Any]
    ) -> datetime.datetime:
        """Apply field changes to a record and return its new timestamp."""
        ...
