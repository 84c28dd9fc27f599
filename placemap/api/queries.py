"""Database query functions for the trade-area API.

Range scans over trade_areas are composed from structured predicates joined with
AND, then ordered by the canonical key (pid, trade_area, id). Filters and the
resume cursor are independent clauses, so combining them never requires editing
an already-built SQL string.
"""

import json
from dataclasses import dataclass
from typing import Any

import duckdb

from placemap.cursor import CursorKey

TRADE_AREAS_TABLE = "trade_areas"

# Store column -> record field
TRADE_AREA_COLUMNS = {
    "pid": "place_id",
    "trade_area": "category",
    "id": "sequence_id",
    "polygon": "geometry",
}


@dataclass(frozen=True)
class Predicate:
    """One WHERE clause with its positional parameters."""

    sql: str
    params: tuple[Any, ...] = ()


def after_key(key: CursorKey) -> Predicate:
    """Composite predicate (pid, trade_area, id) > key, lexicographically.

    Written out as nested OR/AND rather than a row-value comparison so the
    semantics do not depend on the engine's struct comparison rules. The leading
    ``pid >= ?`` lets the planner range-scan the composite index.
    """
    return Predicate(
        "pid >= ? AND (pid > ? OR (pid = ? AND (trade_area > ? "
        "OR (trade_area = ? AND id > ?))))",
        (
            key.place_id,
            key.place_id,
            key.place_id,
            key.category,
            key.category,
            key.sequence_id,
        ),
    )


@dataclass(frozen=True)
class RangeQuery:
    """Bounded, ordered scan of trade-area rows.

    Attributes:
        limit: Maximum rows to return (the batch size)
        place_id: Optional equality filter on pid
        category: Optional equality filter on trade_area
        after: Optional resume key; only rows strictly after it are returned
    """

    limit: int
    place_id: str | None = None
    category: int | None = None
    after: CursorKey | None = None

    def advance(self, key: CursorKey) -> "RangeQuery":
        """Same filters, resuming after key."""
        return RangeQuery(
            limit=self.limit, place_id=self.place_id, category=self.category, after=key
        )

    def predicates(self) -> list[Predicate]:
        predicates: list[Predicate] = []
        if self.place_id is not None:
            predicates.append(Predicate("pid = ?", (self.place_id,)))
        if self.category is not None:
            predicates.append(Predicate("trade_area = ?", (self.category,)))
        if self.after is not None:
            predicates.append(after_key(self.after))
        return predicates

    def to_sql(self, table: str = TRADE_AREAS_TABLE, offset: int | None = None) -> tuple[str, list[Any]]:
        """Render the query.

        Args:
            table: Source table name (trusted, not user input)
            offset: Optional row offset for offset-paged callers

        Returns:
            Tuple of (sql, params)
        """
        columns = ", ".join(f"{col} AS {name}" for col, name in TRADE_AREA_COLUMNS.items())
        sql = f"SELECT {columns} FROM {table}"
        params: list[Any] = []

        predicates = self.predicates()
        if predicates:
            sql += " WHERE " + " AND ".join(f"({p.sql})" for p in predicates)
            for p in predicates:
                params.extend(p.params)

        sql += " ORDER BY pid ASC, trade_area ASC, id ASC LIMIT ?"
        params.append(self.limit)

        if offset:
            sql += " OFFSET ?"
            params.append(offset)

        return sql, params


def get_trade_area_count(conn: duckdb.DuckDBPyConnection) -> int:
    """Get total trade-area row count.

    Args:
        conn: DuckDB connection with trade_areas table

    Returns:
        Total number of trade-area polygons
    """
    result = conn.execute(f"SELECT COUNT(*) FROM {TRADE_AREAS_TABLE}").fetchone()
    return result[0] if result else 0


def query_zipcodes(conn: duckdb.DuckDBPyConnection) -> list[dict[str, Any]]:
    """Get all zipcode polygons ordered by id.

    Polygons are returned as stored (usually serialized JSON); callers normalize.
    """
    rows = conn.execute("SELECT id, polygon FROM zipcodes ORDER BY id ASC").fetchall()
    return [{"id": row[0], "polygon": row[1]} for row in rows]


def query_home_zipcodes(conn: duckdb.DuckDBPyConnection) -> list[dict[str, Any]]:
    """Get home-zipcode percentages grouped by place.

    Returns:
        One entry per place, in pid order:
        ``{"place_id": pid, "locations": [{zipcode_id: percentage}, ...]}``
    """
    rows = conn.execute("""
        SELECT pid, zipcode_id, percentage
        FROM home_zipcodes
        ORDER BY pid ASC, zipcode_id ASC
    """).fetchall()

    grouped: dict[str, list[dict[str, float]]] = {}
    for pid, zipcode_id, percentage in rows:
        grouped.setdefault(pid, []).append({zipcode_id: float(percentage)})

    return [{"place_id": pid, "locations": locations} for pid, locations in grouped.items()]


def load_polygon(raw: Any) -> dict[str, Any] | None:
    """Best-effort parse of a stored polygon for the simple read routes."""
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, (str, bytes)):
        try:
            value = json.loads(raw)
        except ValueError:
            return None
        return value if isinstance(value, dict) else None
    return None


PLACE_COLUMNS = """
    id, name, street_address, city, state, logo, longitude, latitude, industry,
    is_trade_area_available, is_home_zipcodes_available, category
"""


@dataclass(frozen=True)
class Bounds:
    """Longitude/latitude box, inclusive on every edge."""

    min_lng: float
    min_lat: float
    max_lng: float
    max_lat: float

    @classmethod
    def parse(cls, raw: str) -> "Bounds":
        """Parse ``"minLng,minLat,maxLng,maxLat"``.

        Raises:
            ValueError: If there are not four numbers or a minimum exceeds its maximum
        """
        parts = raw.split(",")
        if len(parts) != 4:
            raise ValueError(f"bounds needs 4 comma-separated numbers, got {len(parts)}")

        try:
            min_lng, min_lat, max_lng, max_lat = (float(p) for p in parts)
        except ValueError as e:
            raise ValueError(f"bounds must be numeric: {raw!r}") from e

        if min_lng > max_lng or min_lat > max_lat:
            raise ValueError(f"bounds minimum exceeds maximum: {raw!r}")
        return cls(min_lng, min_lat, max_lng, max_lat)


def _place_dict(columns: list[str], row: tuple[Any, ...]) -> dict[str, Any]:
    return dict(zip(columns, row))


def query_places(
    conn: duckdb.DuckDBPyConnection,
    limit: int,
    cursor: str | None = None,
    industry: str | None = None,
    bounds: Bounds | None = None,
) -> list[dict[str, Any]]:
    """Get one page of places, keyset-paged on id.

    Args:
        conn: DuckDB connection with places table
        limit: Maximum places to return
        cursor: Id of the last place already received
        industry: Exact industry filter; "all" means no filter
        bounds: Optional bounding box on the place's coordinates

    Returns:
        Places ordered by id, each a dict of the places columns
    """
    conditions = ["longitude IS NOT NULL", "latitude IS NOT NULL"]
    params: list[Any] = []

    if cursor:
        conditions.append("id > ?")
        params.append(cursor)

    if industry and industry != "all":
        conditions.append("industry = ?")
        params.append(industry)

    if bounds is not None:
        conditions.append("longitude BETWEEN ? AND ? AND latitude BETWEEN ? AND ?")
        params.extend([bounds.min_lng, bounds.max_lng, bounds.min_lat, bounds.max_lat])

    where = " AND ".join(f"({c})" for c in conditions)
    params.append(limit)

    cursor_result = conn.execute(
        f"SELECT {PLACE_COLUMNS} FROM places WHERE {where} ORDER BY id ASC LIMIT ?",
        params,
    )
    columns = [d[0] for d in cursor_result.description]
    return [_place_dict(columns, row) for row in cursor_result.fetchall()]


def query_competitors(conn: duckdb.DuckDBPyConnection) -> list[dict[str, Any]]:
    """Get every competitor place ordered by name."""
    result = conn.execute(f"""
        SELECT {PLACE_COLUMNS}
        FROM places
        WHERE category = 'competitor'
        ORDER BY name ASC, id ASC
    """)
    columns = [d[0] for d in result.description]
    return [_place_dict(columns, row) for row in result.fetchall()]


def query_my_place(conn: duckdb.DuckDBPyConnection) -> dict[str, Any] | None:
    """Get the operator's own place, or None if it was never seeded."""
    result = conn.execute(f"""
        SELECT {PLACE_COLUMNS}
        FROM places
        WHERE category = 'user_place'
        ORDER BY id ASC
        LIMIT 1
    """)
    columns = [d[0] for d in result.description]
    row = result.fetchone()
    return _place_dict(columns, row) if row else None
