"""Tests for sequential keyset batching."""

import asyncio
import logging

import pytest
from conftest import FakeStore, fake_row, square

from placemap.batch_fetcher import BatchFetcher, last_row_key, row_key
from placemap.cursor import CursorKey
from placemap.geometry_store import GeometryStore, StoreFetchError


def collect(fetcher: BatchFetcher) -> list[list[dict]]:
    async def run() -> list[list[dict]]:
        return [batch async for batch in fetcher.batches()]

    return asyncio.run(run())


def seq_ids(batches: list[list[dict]]) -> list[list[int]]:
    return [[row["sequence_id"] for row in batch] for batch in batches]


@pytest.fixture
def place_a_rows() -> list[dict]:
    """Place A: two polygons in category 30, one in 50."""
    return [
        fake_row("A", 30, 1, square(0)),
        fake_row("A", 30, 2, square(1)),
        fake_row("A", 50, 3, square(2)),
    ]


class TestBatches:
    """Tests for BatchFetcher.batches."""

    def test_two_batches_for_three_rows(self, place_a_rows: list[dict]) -> None:
        """Batch size 2 over 3 rows: [1, 2] then [3], two store calls."""
        store = FakeStore(place_a_rows)
        fetcher = BatchFetcher(store, batch_size=2, place_id="A")

        assert seq_ids(collect(fetcher)) == [[1, 2], [3]]
        assert len(store.calls) == 2
        assert store.calls[0].after is None
        assert store.calls[1].after == CursorKey("A", 30, 2)

    def test_short_batch_ends_scan(self, place_a_rows: list[dict]) -> None:
        """No fetch is made after a batch shorter than the batch size."""
        store = FakeStore(place_a_rows)
        collect(BatchFetcher(store, batch_size=5))
        assert len(store.calls) == 1

    def test_full_last_batch_costs_one_empty_fetch(self, place_a_rows: list[dict]) -> None:
        """An exact multiple needs one more fetch to see the end."""
        store = FakeStore(place_a_rows)
        fetcher = BatchFetcher(store, batch_size=3)

        assert seq_ids(collect(fetcher)) == [[1, 2, 3]]
        assert len(store.calls) == 2

    def test_empty_store(self) -> None:
        store = FakeStore([])
        assert collect(BatchFetcher(store, batch_size=2)) == []
        assert len(store.calls) == 1

    def test_no_duplicates_or_gaps(self) -> None:
        """Concatenated batches equal the full ordered result."""
        rows = [fake_row(pid, cat, i, square(i)) for i, (pid, cat) in enumerate(
            [("A", 30), ("A", 30), ("A", 50), ("B", 30), ("B", 30), ("B", 70), ("C", 30)],
            start=1,
        )]
        store = FakeStore(rows)
        batches = collect(BatchFetcher(store, batch_size=2))

        keys = [row_key(row) for batch in batches for row in batch]
        assert keys == sorted(keys)
        assert [k.sequence_id for k in keys] == [1, 2, 3, 4, 5, 6, 7]

    def test_resume_from_cursor(self, place_a_rows: list[dict]) -> None:
        """A decoded cursor picks up strictly after the key."""
        store = FakeStore(place_a_rows)
        fetcher = BatchFetcher(store, batch_size=2, after=CursorKey("A", 30, 1))
        assert seq_ids(collect(fetcher)) == [[2, 3]]

    def test_category_filter_combined_with_cursor(self, place_a_rows: list[dict]) -> None:
        """Filters stay in force on every resumed fetch."""
        rows = place_a_rows + [fake_row("A", 30, 4, square(3))]
        store = FakeStore(rows)
        fetcher = BatchFetcher(store, batch_size=1, place_id="A", category=30)

        assert seq_ids(collect(fetcher)) == [[1], [2], [4]]
        assert all(call.category == 30 and call.place_id == "A" for call in store.calls)

    def test_last_key_advances_before_yield(self, place_a_rows: list[dict]) -> None:
        fetcher = BatchFetcher(FakeStore(place_a_rows), batch_size=2)

        async def first_batch() -> CursorKey | None:
            gen = fetcher.batches()
            await gen.__anext__()
            key = fetcher.last_key
            await gen.aclose()
            return key

        assert asyncio.run(first_batch()) == CursorKey("A", 30, 2)

    def test_fetch_error_propagates(self, place_a_rows: list[dict]) -> None:
        """A failed fetch is not retried."""
        store = FakeStore(place_a_rows, fail_on=2)
        fetcher = BatchFetcher(store, batch_size=2)
        received: list[list[dict]] = []

        async def run() -> None:
            async for batch in fetcher.batches():
                received.append(batch)

        with pytest.raises(StoreFetchError):
            asyncio.run(run())
        assert seq_ids(received) == [[1, 2]]
        assert len(store.calls) == 2

    def test_resumes_after_last_keyed_row(self, place_a_rows: list[dict]) -> None:
        """An unkeyed row at the end of a full batch does not stop the scan."""
        store = FakeStore([place_a_rows[0], fake_row(None, 30, 9, square(9))])
        fetcher = BatchFetcher(store, batch_size=2)

        batches = collect(fetcher)

        assert seq_ids(batches) == [[1, 9]]
        assert len(store.calls) == 2
        assert store.calls[1].after == CursorKey("A", 30, 1)
        assert fetcher.last_key == CursorKey("A", 30, 1)

    def test_unkeyed_full_batch_ends_scan(self, caplog: pytest.LogCaptureFixture) -> None:
        rows = [fake_row("A", None, 1, square(0)), fake_row("A", None, 2, square(1))]
        store = FakeStore(rows)

        with caplog.at_level(logging.WARNING, logger="placemap.batch_fetcher"):
            batches = collect(BatchFetcher(store, batch_size=2))

        assert seq_ids(batches) == [[1, 2]]
        assert len(store.calls) == 1
        assert "cannot resume" in caplog.text

    @pytest.mark.parametrize(
        "row",
        [
            fake_row(None, 30, 1, square(0)),
            fake_row("A", None, 1, square(0)),
            fake_row("A", 30.5, 1, square(0)),
            fake_row("A", 30, "1_0", square(0)),
        ],
    )
    def test_row_key_rejects_unusable_keys(self, row: dict) -> None:
        assert row_key(row) is None

    def test_last_row_key_skips_trailing_unkeyed_rows(self) -> None:
        rows = [fake_row("A", 30, 1, square(0)), fake_row("A", None, 2, square(1))]
        assert last_row_key(rows) == CursorKey("A", 30, 1)
        assert last_row_key(rows[1:]) is None

    def test_rejects_non_positive_batch_size(self) -> None:
        with pytest.raises(ValueError, match="batch_size"):
            BatchFetcher(FakeStore([]), batch_size=0)


def test_batches_against_duckdb(store: GeometryStore) -> None:
    """Same contract over the real store: ordered, complete, no repeats."""
    fetcher = BatchFetcher(store, batch_size=3)
    batches = collect(fetcher)

    assert seq_ids(batches) == [[1, 2, 3], [4, 5, 6], [7]]
    assert fetcher.fetches == 3
