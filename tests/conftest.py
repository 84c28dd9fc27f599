"""Shared pytest fixtures for PlaceMap tests."""

from collections.abc import Generator
from typing import Any

import pytest

from placemap.api.queries import RangeQuery
from placemap.config import Config
from placemap.batch_fetcher import row_key
from placemap.data_access import ConnectionPool
from placemap.geometry_store import GeometryStore, StoreFetchError
from placemap.seeding import init_schema, seed_trade_areas


def square(x: float, y: float = 0.0) -> dict[str, Any]:
    """Unit-square GeoJSON Polygon with its corner at (x, y)."""
    return {
        "type": "Polygon",
        "coordinates": [[[x, y], [x + 1, y], [x + 1, y + 1], [x, y + 1], [x, y]]],
    }


# Seeded in this order, so the store assigns ids 1..7 in the same order.
TRADE_AREAS: list[dict[str, Any]] = [
    {"pid": "A", "trade_area": 30, "polygon": square(0)},
    {"pid": "A", "trade_area": 30, "polygon": square(1)},
    {"pid": "A", "trade_area": 50, "polygon": square(2)},
    {"pid": "B", "trade_area": 30, "polygon": square(3)},
    {"pid": "B", "trade_area": 50, "polygon": square(4)},
    {"pid": "B", "trade_area": 70, "polygon": square(5)},
    {"pid": "C", "trade_area": 70, "polygon": square(6)},
]


MY_PLACE: dict[str, Any] = {
    "id": "A",
    "name": "Home Base Coffee",
    "street_address": "1 Main St",
    "city": "Austin",
    "state": "TX",
    "logo": None,
    "longitude": -97.74,
    "latitude": 30.27,
    "industry": "Coffee Shops",
    "isTradeAreaAvailable": True,
    "isHomeZipcodesAvailable": True,
}

# Competitor export shape: pid/region/sub_category naming.
COMPETITORS: list[dict[str, Any]] = [
    {
        "pid": "C",
        "name": "Corner Roasters",
        "street_address": "9 Oak Ave",
        "city": "Austin",
        "region": "TX",
        "logo": "https://example.com/c.png",
        "longitude": -97.70,
        "latitude": 30.30,
        "sub_category": "Coffee Shops",
        "trade_area_activity": True,
        "home_locations_activity": False,
        "distance": 1.2,
    },
    {
        "pid": "B",
        "name": "Bagel Barn",
        "street_address": "4 Elm St",
        "city": "Round Rock",
        "region": "TX",
        "logo": None,
        "longitude": -97.68,
        "latitude": 30.51,
        "sub_category": "Bakeries",
        "trade_area_activity": False,
        "home_locations_activity": True,
        "distance": 15.0,
    },
    {
        "pid": "D",
        "name": "Daily Grind",
        "street_address": "77 River Rd",
        "city": "Austin",
        "region": "TX",
        "logo": None,
        "longitude": -97.76,
        "latitude": 30.25,
        "sub_category": "Coffee Shops",
        "trade_area_activity": True,
        "home_locations_activity": True,
        "distance": 0.8,
    },
]


class FakeStore:
    """In-memory stand-in for GeometryStore.

    Rows are dicts shaped like GeometryStore rows. Every fetch is recorded;
    ``fail_on`` makes the Nth fetch (1-based) raise StoreFetchError.
    """

    def __init__(self, rows: list[dict[str, Any]], fail_on: int | None = None) -> None:
        # Rows without a usable key sort last and never satisfy a filter or a
        # resume key, as with NULLs in SQL.
        self.rows = [r for r in rows if row_key(r) is not None]
        self.rows.sort(key=row_key)
        self.rows += [r for r in rows if row_key(r) is None]
        self.fail_on = fail_on
        self.calls: list[RangeQuery] = []

    def _select(self, query: RangeQuery) -> list[dict[str, Any]]:
        selected = []
        for row in self.rows:
            key = row_key(row)
            if key is None:
                if query.place_id is None and query.category is None and query.after is None:
                    selected.append(row)
                continue
            if query.place_id is not None and key.place_id != query.place_id:
                continue
            if query.category is not None and key.category != query.category:
                continue
            if query.after is not None and not key > query.after:
                continue
            selected.append(row)
        return selected

    async def fetch(self, query: RangeQuery) -> list[dict[str, Any]]:
        self.calls.append(query)
        if self.fail_on is not None and len(self.calls) == self.fail_on:
            raise StoreFetchError("simulated connection reset")
        return self._select(query)[: query.limit]

    async def fetch_page(self, query: RangeQuery, offset: int) -> list[dict[str, Any]]:
        self.calls.append(query)
        if self.fail_on is not None and len(self.calls) == self.fail_on:
            raise StoreFetchError("simulated connection reset")
        return self._select(query)[offset : offset + query.limit]


def fake_row(
    place_id: str | None, category: int | None, sequence_id: int, geometry: Any
) -> dict[str, Any]:
    return {
        "place_id": place_id,
        "category": category,
        "sequence_id": sequence_id,
        "geometry": geometry,
    }


@pytest.fixture
def test_config() -> Config:
    """Create test configuration with small pools and pages.

    Returns:
        Config object with test-specific settings
    """
    config = Config()
    # Override for tests
    config.database.memory_limit = "512MB"
    config.database.threads = 1
    config.pool.size = 2
    config.pool.checkout_timeout = 0.2
    config.pool.statement_timeout = 5.0
    config.streaming.default_batch_size = 2
    config.streaming.max_batch_size = 10
    config.pagination.default_limit = 3
    config.pagination.max_limit = 10
    return config


@pytest.fixture
def pool(test_config: Config) -> Generator[ConnectionPool]:
    """Open in-memory pool with the schema created.

    Yields:
        Open ConnectionPool

    Note:
        Pool is automatically closed after test
    """
    pool = ConnectionPool(test_config, database=":memory:")
    pool.open()
    with pool.connection() as conn:
        init_schema(conn)
    yield pool
    pool.close()


@pytest.fixture
def seeded_pool(pool: ConnectionPool) -> ConnectionPool:
    """Pool whose trade_areas table holds TRADE_AREAS (ids 1..7)."""
    with pool.connection() as conn:
        seed_trade_areas(conn, TRADE_AREAS)
    return pool


@pytest.fixture
def store(seeded_pool: ConnectionPool, test_config: Config) -> GeometryStore:
    """GeometryStore over the seeded pool."""
    return GeometryStore(seeded_pool, test_config.pool.statement_timeout)
