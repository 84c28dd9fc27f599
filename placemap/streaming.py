"""Incremental emission of trade-area records.

stream_records drives one request's stream through its lifecycle:

    idle -> fetching -> validating -> emitting -> (fetching | closing) -> closed

with ``aborted`` as the other terminal state (store failure or consumer gone).
Each record is written as soon as it is validated, in fetch order, so memory use
is bounded by one batch rather than the result set.

Usage:
    fetcher = BatchFetcher(store, batch_size=500, place_id="A")
    async for chunk in stream_records(fetcher, Framing.ndjson):
        send(chunk)
"""

import asyncio
import logging
from collections.abc import AsyncGenerator, Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from placemap.batch_fetcher import BatchFetcher
from placemap.cursor import encode_cursor
from placemap.framing import Framing, FramingWriter, get_framing
from placemap.geometry_store import StoreFetchError
from placemap.validation import ValidationStats, filter_valid

logger = logging.getLogger(__name__)


class StreamState(str, Enum):
    idle = "idle"
    fetching = "fetching"
    validating = "validating"
    emitting = "emitting"
    closing = "closing"
    closed = "closed"
    aborted = "aborted"


@dataclass
class StreamStats:
    """Progress of one stream; local to its request."""

    state: StreamState = StreamState.idle
    emitted: int = 0
    batches: int = 0
    last_cursor: str | None = None
    error: str | None = None
    validation: ValidationStats = field(default_factory=ValidationStats)

    @property
    def rejected(self) -> int:
        return self.validation.rejected

    def metadata(self) -> dict[str, Any]:
        return {
            "count": self.emitted,
            "rejected": self.rejected,
            "batches": self.batches,
            "next_cursor": self.last_cursor,
        }


async def stream_records(
    fetcher: BatchFetcher,
    framing: Framing | str | FramingWriter = Framing.ndjson,
    is_disconnected: Callable[[], Awaitable[bool]] | None = None,
    diagnostics: logging.Logger | None = None,
    stats: StreamStats | None = None,
) -> AsyncGenerator[bytes, None]:
    """Stream validated records as framed byte chunks.

    Args:
        fetcher: Batch source for this request
        framing: Framing name or writer
        is_disconnected: Awaitable check polled after every batch; when it
            returns True no further batch is fetched
        diagnostics: Logger for rejected rows and lifecycle events
        stats: Optional stats object, updated in place for the caller

    Yields:
        One chunk for the framing preamble (if any), one per record, one for the
        closing bytes (if any)

    Raises:
        StoreFetchError: After yielding everything emitted so far; the framing is
            left unterminated
    """
    log = diagnostics or logger
    stats = stats if stats is not None else StreamStats()
    writer = framing if not isinstance(framing, (str, Framing)) else get_framing(framing)
    batches = fetcher.batches()
    first = True

    try:
        head = writer.open()
        if head:
            yield head

        stats.state = StreamState.fetching
        async for rows in batches:
            stats.batches += 1

            stats.state = StreamState.validating
            records = filter_valid(rows, stats.validation, log)

            stats.state = StreamState.emitting
            for record in records:
                yield writer.record(record, first)
                first = False
                stats.emitted += 1
                stats.last_cursor = encode_cursor(record)

            if is_disconnected is not None and await is_disconnected():
                stats.state = StreamState.aborted
                log.info(
                    f"Consumer disconnected after {stats.emitted} records "
                    f"({stats.batches} batches); stopping"
                )
                return

            stats.state = StreamState.fetching

        stats.state = StreamState.closing
        tail = writer.close(stats.metadata())
        if tail:
            yield tail

        stats.state = StreamState.closed
        log.info(
            f"Stream closed: {stats.emitted} records, {stats.rejected} rejected, "
            f"{stats.batches} batches"
        )

    except StoreFetchError as e:
        stats.state = StreamState.aborted
        stats.error = str(e)
        log.error(
            f"Stream aborted after {stats.emitted} records "
            f"(last cursor {stats.last_cursor!r}): {e}"
        )
        raise
    except (asyncio.CancelledError, GeneratorExit):
        stats.state = StreamState.aborted
        log.info(f"Stream cancelled by consumer after {stats.emitted} records")
        raise
    finally:
        await batches.aclose()
