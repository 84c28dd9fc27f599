"""Buffered (non-streaming) trade-area pages.

Two paging modes share one envelope:

- cursor mode (preferred): keyset scan resuming after the cursor, constant cost
  per page regardless of depth;
- offset mode: LIMIT/OFFSET, kept for small-page convenience only, since the
  store still walks every skipped row and cost grows with the offset.

has_more is an approximation: a full page reports more even if it happened to be
the last one. Only a short page proves the end of the data.
"""

import logging

from placemap.api.queries import RangeQuery
from placemap.api.schemas import Pagination, TradeAreaFeature, TradeAreasEnvelope
from placemap.batch_fetcher import last_row_key
from placemap.cursor import decode_cursor, encode_cursor
from placemap.framing import record_to_dict
from placemap.geometry_store import GeometryStore
from placemap.validation import GeometryRecord, filter_valid

logger = logging.getLogger(__name__)


def build_envelope(
    records: list[GeometryRecord],
    limit: int,
    offset: int | None,
    fetched: int,
    cursor: str | None = None,
    next_cursor: str | None = None,
) -> TradeAreasEnvelope:
    """Wrap a validated page with pagination metadata.

    Args:
        records: Valid records on this page
        limit: Requested page size
        offset: Row offset, or None in cursor mode
        fetched: Raw rows the store returned (before validation)
        cursor: Cursor the page resumed from, if any
        next_cursor: Cursor for the following page

    Returns:
        Envelope with hasMore = (fetched == limit)
    """
    features = [TradeAreaFeature(**record_to_dict(record)) for record in records]
    return TradeAreasEnvelope(
        features=features,
        pagination=Pagination(
            limit=limit,
            offset=offset,
            has_more=fetched == limit,
            total=len(features),
            cursor=cursor,
            next_cursor=next_cursor,
        ),
    )


async def fetch_envelope(
    store: GeometryStore,
    limit: int,
    place_id: str | None = None,
    category: int | None = None,
    offset: int = 0,
    cursor: str | None = None,
) -> TradeAreasEnvelope:
    """Fetch one buffered page.

    If ``cursor`` decodes to a key the page is keyset-paged and ``offset`` is
    ignored; a malformed cursor falls back to offset mode from the beginning.

    Raises:
        StoreFetchError: If the page cannot be fetched
    """
    key = decode_cursor(cursor)
    query = RangeQuery(limit=limit, place_id=place_id, category=category, after=key)

    if key is not None:
        rows = await store.fetch(query)
        page_offset = None
    else:
        rows = await store.fetch_page(query, offset)
        page_offset = offset

    records = filter_valid(rows)
    last_key = last_row_key(rows)
    next_cursor = encode_cursor(last_key) if last_key is not None else None
    logger.debug(f"Page fetched: {len(rows)} rows, {len(records)} valid")

    return build_envelope(
        records,
        limit=limit,
        offset=page_offset,
        fetched=len(rows),
        cursor=cursor if key is not None else None,
        next_cursor=next_cursor,
    )
