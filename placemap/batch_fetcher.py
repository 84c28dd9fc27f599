"""Sequential keyset batching over the geometry store.

Batches are strictly sequential: batch N+1 resumes after the last row of batch N.
A batch shorter than the batch size is the last one; no further store call is
made after it.
"""

import logging
from collections.abc import AsyncGenerator

from placemap.api.queries import RangeQuery
from placemap.cursor import CursorKey, key_int
from placemap.geometry_store import Row, StoreProtocol

logger = logging.getLogger(__name__)


def row_key(row: Row) -> CursorKey | None:
    """Sort key of a raw store row, or None if any key field is unusable."""
    place_id = row.get("place_id")
    if place_id is None:
        return None
    try:
        return CursorKey(
            str(place_id), key_int(row.get("category")), key_int(row.get("sequence_id"))
        )
    except ValueError:
        return None


def last_row_key(rows: list[Row]) -> CursorKey | None:
    """Key of the last row in the batch that has one.

    Rows without a usable key are passed over here and dropped later by
    validation; the scan resumes after the last keyed row.
    """
    for row in reversed(rows):
        key = row_key(row)
        if key is not None:
            return key
    return None


class BatchFetcher:
    """Iterates raw batches for one request.

    Args:
        store: Anything with ``async fetch(RangeQuery) -> list[Row]``
        batch_size: Rows per fetch (N)
        place_id: Optional equality filter
        category: Optional equality filter
        after: Optional decoded cursor to resume from

    Example:
        >>> fetcher = BatchFetcher(store, batch_size=500, place_id="A")
        >>> async for batch in fetcher.batches():
        ...     handle(batch)
    """

    def __init__(
        self,
        store: StoreProtocol,
        batch_size: int,
        place_id: str | None = None,
        category: int | None = None,
        after: CursorKey | None = None,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")

        self.store = store
        self.batch_size = batch_size
        self.query = RangeQuery(
            limit=batch_size, place_id=place_id, category=category, after=after
        )
        self.last_key: CursorKey | None = after
        self.fetches = 0

    async def batches(self) -> AsyncGenerator[list[Row], None]:
        """Yield raw batches until the store is exhausted.

        Raises:
            StoreFetchError: If any fetch fails; nothing is retried
        """
        query = self.query
        while True:
            rows = await self.store.fetch(query)
            self.fetches += 1

            if not rows:
                logger.debug(f"Batch {self.fetches}: empty, scan complete")
                return

            # Advance before yielding: the consumer may drop rows but the scan must not
            # revisit them.
            key = last_row_key(rows)
            if key is not None:
                self.last_key = key
            logger.debug(f"Batch {self.fetches}: {len(rows)} rows, last key {self.last_key}")
            yield rows

            if len(rows) < self.batch_size:
                return

            if key is None:
                logger.warning(
                    f"Batch {self.fetches}: no row with a usable key, cannot resume; "
                    f"ending scan after {len(rows)} unkeyed rows"
                )
                return

            query = query.advance(key)
