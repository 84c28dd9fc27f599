"""Schema creation and JSON seeding for the trade-area store.

Seed files follow the shapes exported by the upstream analytics tool:

- my_place.json: one place object (the operator's own place)
- competitors.json: list of {"pid": str, "name": str, "longitude": float, ...}
- trade_areas.json: list (or {"features": [...]}) of
  {"pid": str, "polygon": str | object, "trade_area": int}
- zipcodes.json: list of {"id": str, "polygon": str | object}
- home_zipcodes.json: list of {"pid": str, "locations": [{zipcode_id: percentage}, ...]}

Usage:
    python -m placemap.seeding --data-dir data --database data/placemap.duckdb
"""

import argparse
import json
import logging
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import Any

import duckdb
from qck import qck  # type: ignore[import-untyped]

from placemap.api.queries import PLACE_COLUMNS, TRADE_AREAS_TABLE
from placemap.config import Config
from placemap.data_access import create_configured_connection

logger = logging.getLogger(__name__)


def init_schema(conn: duckdb.DuckDBPyConnection, trade_areas_table: str = TRADE_AREAS_TABLE) -> None:
    """Create tables, sequences and indexes if they don't exist.

    Idempotent: running it against an initialized database is a no-op.

    Args:
        conn: DuckDB connection
        trade_areas_table: Name for the trade-area table
    """
    sql_path = Path(__file__).parent / "sql" / "schema.sql"
    qck(str(sql_path), params={"trade_areas_table": trade_areas_table}, connection=conn)


def _serialize_polygon(polygon: Any) -> str | None:
    if polygon is None or isinstance(polygon, str):
        return polygon
    return json.dumps(polygon, separators=(",", ":"))


def load_json_file(path: Path) -> list[dict[str, Any]]:
    """Load a seed file, unwrapping a {"features": [...]} container.

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If the file is not a JSON list of objects
    """
    if not path.exists():
        raise FileNotFoundError(f"Seed file not found: {path}")

    with open(path, encoding="utf-8") as f:
        data = json.load(f)

    if isinstance(data, dict):
        data = data.get("features", [])
    if not isinstance(data, list):
        raise ValueError(f"Expected a JSON list in {path}")
    return data


def load_json_object(path: Path) -> dict[str, Any]:
    """Load a seed file holding a single JSON object.

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If the file is not a JSON object
    """
    if not path.exists():
        raise FileNotFoundError(f"Seed file not found: {path}")

    with open(path, encoding="utf-8") as f:
        data = json.load(f)

    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object in {path}")
    return data


def _insert_places(conn: duckdb.DuckDBPyConnection, rows: list[tuple[Any, ...]]) -> int:
    if rows:
        conn.executemany(
            f"INSERT OR IGNORE INTO places ({PLACE_COLUMNS}) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            rows,
        )
    return len(rows)


def seed_my_place(conn: duckdb.DuckDBPyConnection, record: dict[str, Any]) -> int:
    """Insert the operator's own place (category 'user_place').

    Args:
        record: my_place.json object (camelCase availability flags)

    Returns:
        Number of rows inserted
    """
    row = (
        str(record["id"]),
        record["name"],
        record.get("street_address"),
        record.get("city"),
        record.get("state"),
        record.get("logo"),
        float(record["longitude"]),
        float(record["latitude"]),
        record.get("industry"),
        bool(record.get("isTradeAreaAvailable", False)),
        bool(record.get("isHomeZipcodesAvailable", False)),
        "user_place",
    )
    count = _insert_places(conn, [row])
    logger.info(f"Seeded my place {row[0]!r}")
    return count


def seed_competitors(conn: duckdb.DuckDBPyConnection, records: Iterable[dict[str, Any]]) -> int:
    """Insert competitor places (category 'competitor').

    Competitor exports name the fields differently from my_place.json:
    pid/region/sub_category and snake_case availability flags.

    Returns:
        Number of rows inserted
    """
    rows = [
        (
            str(r["pid"]),
            r["name"],
            r.get("street_address"),
            r.get("city"),
            r.get("region"),
            r.get("logo"),
            float(r["longitude"]),
            float(r["latitude"]),
            r.get("sub_category"),
            bool(r.get("trade_area_activity", False)),
            bool(r.get("home_locations_activity", False)),
            "competitor",
        )
        for r in records
    ]
    count = _insert_places(conn, rows)
    logger.info(f"Seeded {count:,} competitors")
    return count


def seed_trade_areas(conn: duckdb.DuckDBPyConnection, records: Iterable[dict[str, Any]]) -> int:
    """Insert trade-area polygons; ids are assigned by the store in insert order.

    Returns:
        Number of rows inserted
    """
    rows = [
        (str(r["pid"]), _serialize_polygon(r.get("polygon")), int(r["trade_area"]))
        for r in records
    ]
    if rows:
        conn.executemany(
            f"INSERT INTO {TRADE_AREAS_TABLE} (pid, polygon, trade_area) VALUES (?, ?, ?)",
            rows,
        )
    logger.info(f"Seeded {len(rows):,} trade areas")
    return len(rows)


def seed_zipcodes(conn: duckdb.DuckDBPyConnection, records: Iterable[dict[str, Any]]) -> int:
    """Insert zipcode boundaries.

    Returns:
        Number of rows inserted
    """
    rows = [(str(r["id"]), _serialize_polygon(r["polygon"])) for r in records]
    if rows:
        conn.executemany("INSERT INTO zipcodes (id, polygon) VALUES (?, ?)", rows)
    logger.info(f"Seeded {len(rows):,} zipcodes")
    return len(rows)


def seed_home_zipcodes(conn: duckdb.DuckDBPyConnection, entries: Iterable[dict[str, Any]]) -> int:
    """Insert home-zipcode percentages, one row per (place, zipcode).

    Percentages may be numbers or numeric strings.

    Returns:
        Number of rows inserted
    """
    rows: list[tuple[str, str, float]] = []
    for entry in entries:
        pid = str(entry.get("pid") or entry.get("place_id"))
        locations = entry.get("locations") or []
        # Older exports use one {zip: pct, ...} object instead of a list
        if isinstance(locations, dict):
            locations = [locations]
        for location in locations:
            for zipcode_id, percentage in location.items():
                rows.append((pid, str(zipcode_id), float(percentage)))

    if rows:
        conn.executemany(
            "INSERT INTO home_zipcodes (pid, zipcode_id, percentage) VALUES (?, ?, ?)",
            rows,
        )
    logger.info(f"Seeded {len(rows):,} home-zipcode rows")
    return len(rows)


def seed_from_directory(conn: duckdb.DuckDBPyConnection, data_dir: Path) -> dict[str, int]:
    """Create the schema and load every seed file present in data_dir.

    Missing files are skipped with a warning.

    Returns:
        Rows inserted per seed file (keyed by file stem)
    """
    init_schema(conn)

    loaders: dict[str, tuple[str, Callable[[Path], Any], Callable[[Any, Any], int]]] = {
        "my_place": ("my_place.json", load_json_object, seed_my_place),
        "competitors": ("competitors.json", load_json_file, seed_competitors),
        "trade_areas": ("trade_areas.json", load_json_file, seed_trade_areas),
        "zipcodes": ("zipcodes.json", load_json_file, seed_zipcodes),
        "home_zipcodes": ("home_zipcodes.json", load_json_file, seed_home_zipcodes),
    }

    counts: dict[str, int] = {}
    for name, (filename, read, loader) in loaders.items():
        path = data_dir / filename
        if not path.exists():
            logger.warning(f"Skipping {name}: {path} not found")
            counts[name] = 0
            continue
        counts[name] = loader(conn, read(path))

    return counts


def main() -> None:
    """Seed a DuckDB database from JSON files."""
    parser = argparse.ArgumentParser(description="Seed the PlaceMap trade-area store")
    parser.add_argument("--data-dir", type=Path, default=Path("data"), help="Seed file directory")
    parser.add_argument("--database", type=str, default=None, help="DuckDB file to write")
    parser.add_argument("--config", type=Path, default=Path("config.toml"), help="Config file")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO)

    config = Config.from_file(args.config) if args.config.exists() else Config()
    conn = create_configured_connection(config, args.database)
    try:
        counts = seed_from_directory(conn, args.data_dir)
    finally:
        conn.close()

    for table, count in counts.items():
        print(f"✓ {table}: {count:,} rows")


if __name__ == "__main__":
    main()
