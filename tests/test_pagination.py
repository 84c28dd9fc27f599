"""Tests for buffered trade-area pages and the pagination envelope."""

import asyncio

import pytest
from conftest import FakeStore, fake_row, square

from placemap.geometry_store import GeometryStore, StoreFetchError
from placemap.pagination import build_envelope, fetch_envelope


@pytest.fixture
def fake_store() -> FakeStore:
    return FakeStore(
        [
            fake_row("A", 30, 1, square(0)),
            fake_row("A", 30, 2, square(1)),
            fake_row("A", 50, 3, square(2)),
        ]
    )


class TestFetchEnvelope:
    """Tests for fetch_envelope in offset and cursor modes."""

    def test_full_page_reports_more(self, fake_store: FakeStore) -> None:
        envelope = asyncio.run(fetch_envelope(fake_store, limit=2))

        assert [f.sequence_id for f in envelope.features] == [1, 2]
        assert envelope.pagination.has_more is True
        assert envelope.pagination.next_cursor == "A,30,2"
        assert envelope.pagination.offset == 0
        assert envelope.pagination.total == 2

    def test_short_page_reports_end(self, fake_store: FakeStore) -> None:
        envelope = asyncio.run(fetch_envelope(fake_store, limit=5))
        assert envelope.pagination.has_more is False
        assert envelope.pagination.next_cursor == "A,50,3"

    def test_exact_fit_is_approximate(self, fake_store: FakeStore) -> None:
        """A page that happens to end the data still claims more."""
        envelope = asyncio.run(fetch_envelope(fake_store, limit=3))
        assert envelope.pagination.has_more is True

    def test_cursor_mode_ignores_offset(self, fake_store: FakeStore) -> None:
        envelope = asyncio.run(fetch_envelope(fake_store, limit=2, offset=99, cursor="A,30,2"))

        assert [f.sequence_id for f in envelope.features] == [3]
        assert envelope.pagination.offset is None
        assert envelope.pagination.cursor == "A,30,2"
        assert envelope.pagination.has_more is False

    def test_malformed_cursor_falls_back_to_offset(self, fake_store: FakeStore) -> None:
        envelope = asyncio.run(fetch_envelope(fake_store, limit=2, offset=1, cursor="garbage"))

        assert [f.sequence_id for f in envelope.features] == [2, 3]
        assert envelope.pagination.offset == 1
        assert envelope.pagination.cursor is None

    def test_offset_mode(self, fake_store: FakeStore) -> None:
        envelope = asyncio.run(fetch_envelope(fake_store, limit=2, offset=2))
        assert [f.sequence_id for f in envelope.features] == [3]

    def test_has_more_counts_rejected_rows(self) -> None:
        """Dropped rows still count toward the fetched total."""
        store = FakeStore([fake_row("A", 30, 1, square(0)), fake_row("A", 30, 2, None)])
        envelope = asyncio.run(fetch_envelope(store, limit=2))

        assert len(envelope.features) == 1
        assert envelope.pagination.has_more is True
        assert envelope.pagination.next_cursor == "A,30,2"

    def test_next_cursor_from_last_keyed_row(self) -> None:
        """A trailing row without a category is dropped, not fatal."""
        store = FakeStore([fake_row("A", 30, 1, square(0)), fake_row("A", None, 2, square(1))])
        envelope = asyncio.run(fetch_envelope(store, limit=2))

        assert [f.sequence_id for f in envelope.features] == [1]
        assert envelope.pagination.next_cursor == "A,30,1"
        assert envelope.pagination.has_more is True

    def test_empty_page(self) -> None:
        envelope = asyncio.run(fetch_envelope(FakeStore([]), limit=2))
        assert envelope.features == []
        assert envelope.pagination.has_more is False
        assert envelope.pagination.next_cursor is None

    def test_store_error_propagates(self, fake_store: FakeStore) -> None:
        fake_store.fail_on = 1
        with pytest.raises(StoreFetchError):
            asyncio.run(fetch_envelope(fake_store, limit=2))

    def test_following_next_cursor_walks_everything(self, store: GeometryStore) -> None:
        """Chaining nextCursor over the real store visits every row once."""
        seen: list[int] = []
        cursor = None
        while True:
            envelope = asyncio.run(fetch_envelope(store, limit=3, cursor=cursor))
            seen.extend(f.sequence_id for f in envelope.features)
            if not envelope.pagination.has_more:
                break
            cursor = envelope.pagination.next_cursor

        assert seen == [1, 2, 3, 4, 5, 6, 7]


def test_envelope_serializes_camel_case_keys() -> None:
    envelope = build_envelope([], limit=10, offset=0, fetched=0)
    payload = envelope.model_dump(by_alias=True)

    assert set(payload["pagination"]) == {
        "limit",
        "offset",
        "hasMore",
        "total",
        "cursor",
        "nextCursor",
    }
