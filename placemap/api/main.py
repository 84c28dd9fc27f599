"""FastAPI application for the PlaceMap trade-area API.

Provides:
- /api/trade-areas: Buffered, paginated trade areas (or streamed with stream=true)
- /api/trade-areas/stream: Cursor-resumable streaming of trade-area polygons
- /api/places: Keyset-paginated places, filterable by industry and bounds
- /api/competitors: Competitor places
- /api/my-place: The operator's own place
- /api/zipcodes: Zipcode boundaries
- /api/home-zipcodes: Home-zipcode percentages per place
- /health: Health check endpoint
- Static file serving for the map frontend

Usage:
    python -m placemap.api.main [--port 8080] [--config config.toml]
    # Or via the console script:
    placemap-serve
"""

import argparse
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Annotated

import duckdb
from fastapi import FastAPI, HTTPException, Query, Request, Response
from fastapi.responses import JSONResponse, StreamingResponse
from fastapi.staticfiles import StaticFiles

from placemap.api.http import json_with_etag
from placemap.api.queries import (
    Bounds,
    get_trade_area_count,
    load_polygon,
    query_competitors,
    query_home_zipcodes,
    query_my_place,
    query_places,
    query_zipcodes,
)
from placemap.api.schemas import (
    Competitor,
    ErrorResponse,
    HealthResponse,
    HomeZipcodesResponse,
    ListedPlace,
    Pagination,
    Place,
    PlacesResponse,
    TradeAreasEnvelope,
    ZipcodeResponse,
)
from placemap.batch_fetcher import BatchFetcher
from placemap.config import Config
from placemap.cursor import decode_cursor
from placemap.data_access import ConnectionPool, PoolClosedError, PoolTimeoutError
from placemap.framing import MEDIA_TYPES, Framing
from placemap.geometry_store import GeometryStore, StoreFetchError
from placemap.pagination import fetch_envelope
from placemap.seeding import init_schema
from placemap.streaming import stream_records

logger = logging.getLogger(__name__)

STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "X-Accel-Buffering": "no",
}


def load_config(root_dir: Path) -> Config:
    """Load root_dir/config.toml, falling back to defaults if absent."""
    config_path = root_dir / "config.toml"
    if config_path.exists():
        return Config.from_file(config_path)
    logger.info(f"No config at {config_path}, using defaults")
    return Config()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Manage application lifespan - open and close the connection pool.

    A pool already placed on app.state (e.g. by tests) is used as-is and left
    open on shutdown.
    """
    root_dir: Path = getattr(app.state, "root_dir", Path(__file__).parent.parent.parent)
    config: Config = getattr(app.state, "config", None) or load_config(root_dir)
    app.state.config = config

    pool: ConnectionPool | None = getattr(app.state, "pool", None)
    owns_pool = pool is None
    if pool is None:
        pool = ConnectionPool(config)
        pool.open()
        with pool.connection() as conn:
            init_schema(conn)
            count = get_trade_area_count(conn)
        logger.info(f"Database ready with {count:,} trade areas")
        app.state.pool = pool

    if getattr(app.state, "store", None) is None:
        app.state.store = GeometryStore(pool, config.pool.statement_timeout)

    yield

    if owns_pool:
        pool.close()
        app.state.pool = None
        app.state.store = None


# API metadata for OpenAPI docs
app = FastAPI(
    title="PlaceMap API",
    description="Places, trade-area polygons and home-zipcode demographics for map layers",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)


def get_config(request: Request) -> Config:
    config: Config | None = getattr(request.app.state, "config", None)
    return config if config is not None else Config()


def get_store(request: Request) -> GeometryStore:
    """Get the geometry store from app state.

    Raises:
        HTTPException: If the store is not initialized
    """
    store: GeometryStore | None = getattr(request.app.state, "store", None)
    if store is None:
        raise HTTPException(status_code=503, detail="Database not initialized")
    return store


def get_pool(request: Request) -> ConnectionPool:
    """Get the connection pool from app state.

    Raises:
        HTTPException: If the pool is not initialized
    """
    pool: ConnectionPool | None = getattr(request.app.state, "pool", None)
    if pool is None or not pool.is_open:
        raise HTTPException(status_code=503, detail="Database not initialized")
    return pool


def resolve_category(trade_area: int | None, category: int | None) -> int | None:
    """Merge the two spellings of the category filter.

    Raises:
        HTTPException: If both are given and disagree
    """
    if trade_area is not None and category is not None and trade_area != category:
        raise HTTPException(status_code=400, detail="trade_area and category disagree")
    return trade_area if trade_area is not None else category


# Failures a buffered route reports as a structured 500 body
QUERY_ERRORS = (PoolTimeoutError, PoolClosedError, StoreFetchError, duckdb.Error)


def error_response(error: str, e: Exception) -> JSONResponse:
    """Log a failed buffered request and build its ErrorResponse body."""
    logger.error(f"{error}: {e}")
    return JSONResponse(ErrorResponse(error=error, detail=str(e)).model_dump(), status_code=500)


def stream_response(
    request: Request,
    store: GeometryStore,
    config: Config,
    pid: str | None,
    category: int | None,
    cursor: str | None,
    batch_size: int | None,
    framing: Framing,
) -> StreamingResponse:
    """Build the streaming response for one request.

    Batch size defaults to the configured default and is capped at the
    configured maximum.
    """
    size = min(batch_size or config.streaming.default_batch_size, config.streaming.max_batch_size)
    fetcher = BatchFetcher(
        store,
        batch_size=size,
        place_id=pid,
        category=category,
        after=decode_cursor(cursor),
    )
    logger.info(
        f"Streaming trade areas (pid={pid}, category={category}, "
        f"cursor={cursor!r}, batch_size={size}, format={framing.value})"
    )
    return StreamingResponse(
        stream_records(fetcher, framing, is_disconnected=request.is_disconnected),
        media_type=MEDIA_TYPES[framing],
        headers=STREAM_HEADERS,
    )


@app.get("/health", response_model=HealthResponse, tags=["System"])
def health_check(request: Request) -> HealthResponse:
    """Check API health and return basic stats."""
    try:
        pool = get_pool(request)
        with pool.connection() as conn:
            count = get_trade_area_count(conn)
        return HealthResponse(status="healthy", trade_areas_count=count)
    except HTTPException:
        # Database not initialized - still healthy but no data
        return HealthResponse(status="healthy", trade_areas_count=0)


@app.get(
    "/api/trade-areas",
    response_model=TradeAreasEnvelope,
    responses={500: {"model": ErrorResponse}},
    tags=["Trade areas"],
)
async def get_trade_areas(
    request: Request,
    pid: Annotated[str | None, Query(description="Filter by place id")] = None,
    trade_area: Annotated[int | None, Query(description="Filter by percentile tier")] = None,
    category: Annotated[int | None, Query(description="Alias of trade_area")] = None,
    limit: Annotated[int | None, Query(ge=1, description="Page size (capped by config)")] = None,
    offset: Annotated[int, Query(ge=0, description="Row offset; slow at depth")] = 0,
    cursor: Annotated[str | None, Query(description="Resume after this cursor")] = None,
    stream: Annotated[bool, Query(description="Stream instead of buffering")] = False,
    batch_size: Annotated[int | None, Query(ge=1, description="Rows per fetch when streaming")] = None,
    format: Annotated[Framing, Query(description="Stream framing")] = Framing.ndjson,
) -> Response:
    """Get one page of trade areas, or stream them all.

    Buffered pages carry pagination metadata and an ETag; pass the page's
    nextCursor back as ``cursor`` to continue. hasMore is true whenever the page
    is full, so the final page may need one extra request to confirm the end.
    Offset paging is retained for small pages; prefer cursors for deep scans.
    """
    store = get_store(request)
    config = get_config(request)
    category_filter = resolve_category(trade_area, category)

    if stream:
        return stream_response(
            request, store, config, pid, category_filter, cursor, batch_size, format
        )

    page_size = min(limit or config.pagination.default_limit, config.pagination.max_limit)

    try:
        envelope = await fetch_envelope(
            store,
            limit=page_size,
            place_id=pid,
            category=category_filter,
            offset=offset,
            cursor=cursor,
        )
    except StoreFetchError as e:
        return error_response("Failed to fetch trade areas", e)

    return json_with_etag(
        request,
        envelope.model_dump(by_alias=True),
        headers={
            "Cache-Control": config.http.cache_control,
            "X-Total-Features": str(envelope.pagination.total),
        },
    )


@app.get("/api/trade-areas/stream", tags=["Trade areas"])
async def stream_trade_areas(
    request: Request,
    pid: Annotated[str | None, Query(description="Filter by place id")] = None,
    trade_area: Annotated[int | None, Query(description="Filter by percentile tier")] = None,
    category: Annotated[int | None, Query(description="Alias of trade_area")] = None,
    cursor: Annotated[str | None, Query(description="Resume after this cursor")] = None,
    batch_size: Annotated[int | None, Query(ge=1, description="Rows per fetch (capped by config)")] = None,
    format: Annotated[
        Framing, Query(description="ndjson (default); json and geojson are deprecated")
    ] = Framing.ndjson,
) -> StreamingResponse:
    """Stream trade areas in (place_id, category, sequence_id) order.

    Records are written as they are read, one batch at a time. Each NDJSON line
    carries its own ``cursor``; after a dropped connection, resume by passing the
    last cursor received. A stream that ends without its closing bytes (json,
    geojson) or without a clean chunked terminator must be treated as failed.
    """
    store = get_store(request)
    config = get_config(request)
    return stream_response(
        request,
        store,
        config,
        pid,
        resolve_category(trade_area, category),
        cursor,
        batch_size,
        format,
    )


@app.get(
    "/api/places",
    response_model=PlacesResponse,
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
    tags=["Places"],
)
def get_places(
    request: Request,
    limit: Annotated[int | None, Query(ge=1, description="Page size (capped by config)")] = None,
    cursor: Annotated[str | None, Query(description="Id of the last place received")] = None,
    industry: Annotated[str | None, Query(description="Industry filter; 'all' for none")] = None,
    bounds: Annotated[
        str | None, Query(description="Bounding box as minLng,minLat,maxLng,maxLat")
    ] = None,
) -> Response:
    """Get one page of places with coordinates, ordered by id.

    Pass the page's nextCursor back as ``cursor`` to continue. As with trade
    areas, hasMore is true whenever the page is full.
    """
    pool = get_pool(request)
    config = get_config(request)
    page_size = min(limit or config.pagination.default_limit, config.pagination.max_limit)

    try:
        box = Bounds.parse(bounds) if bounds else None
    except ValueError as e:
        return JSONResponse(
            ErrorResponse(error="Invalid bounds", detail=str(e)).model_dump(), status_code=400
        )

    try:
        with pool.connection() as conn:
            rows = query_places(conn, page_size, cursor=cursor, industry=industry, bounds=box)
    except QUERY_ERRORS as e:
        return error_response("Failed to fetch places", e)

    places = [ListedPlace(**row) for row in rows]
    response = PlacesResponse(
        places=places,
        pagination=Pagination(
            limit=page_size,
            offset=None,
            has_more=len(places) == page_size,
            total=len(places),
            cursor=cursor,
            next_cursor=places[-1].id if places else None,
        ),
    )
    return json_with_etag(
        request,
        response.model_dump(by_alias=True),
        headers={"Cache-Control": config.http.cache_control},
    )


@app.get(
    "/api/competitors",
    response_model=list[Competitor],
    responses={500: {"model": ErrorResponse}},
    tags=["Places"],
)
def get_competitors(request: Request) -> list[Competitor] | JSONResponse:
    """Get every competitor place, ordered by name."""
    pool = get_pool(request)
    try:
        with pool.connection() as conn:
            rows = query_competitors(conn)
    except QUERY_ERRORS as e:
        return error_response("Failed to fetch competitors", e)

    return [
        Competitor(
            pid=row["id"],
            name=row["name"],
            street_address=row["street_address"],
            city=row["city"],
            region=row["state"],
            logo=row["logo"],
            latitude=row["latitude"],
            longitude=row["longitude"],
            sub_category=row["industry"],
            trade_area_activity=bool(row["is_trade_area_available"]),
            home_locations_activity=bool(row["is_home_zipcodes_available"]),
        )
        for row in rows
    ]


@app.get(
    "/api/my-place",
    response_model=Place,
    response_model_by_alias=True,
    responses={404: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
    tags=["Places"],
)
def get_my_place(request: Request) -> Place | JSONResponse:
    """Get the operator's own place."""
    pool = get_pool(request)
    try:
        with pool.connection() as conn:
            row = query_my_place(conn)
    except QUERY_ERRORS as e:
        return error_response("Failed to fetch my place", e)

    if row is None:
        return JSONResponse(ErrorResponse(error="My place not found").model_dump(), status_code=404)
    return Place(**row)


@app.get(
    "/api/zipcodes",
    response_model=list[ZipcodeResponse],
    responses={500: {"model": ErrorResponse}},
    tags=["Zipcodes"],
)
def get_zipcodes(request: Request) -> list[ZipcodeResponse] | JSONResponse:
    """Get all zipcode boundaries. Rows with unparsable polygons are skipped."""
    pool = get_pool(request)
    try:
        with pool.connection() as conn:
            rows = query_zipcodes(conn)
    except QUERY_ERRORS as e:
        return error_response("Failed to fetch zipcodes", e)

    zipcodes = []
    for row in rows:
        polygon = load_polygon(row["polygon"])
        if polygon is None:
            logger.warning(f"Skipping zipcode {row['id']!r}: unparsable polygon")
            continue
        zipcodes.append(ZipcodeResponse(id=row["id"], polygon=polygon))
    return zipcodes


@app.get(
    "/api/home-zipcodes",
    response_model=list[HomeZipcodesResponse],
    responses={500: {"model": ErrorResponse}},
    tags=["Zipcodes"],
)
def get_home_zipcodes(request: Request) -> list[HomeZipcodesResponse] | JSONResponse:
    """Get home-zipcode percentages grouped by place."""
    pool = get_pool(request)
    try:
        with pool.connection() as conn:
            grouped = query_home_zipcodes(conn)
    except QUERY_ERRORS as e:
        return error_response("Failed to fetch home zipcodes", e)

    return [HomeZipcodesResponse(**entry) for entry in grouped]


def create_app(
    root_dir: Path | None = None,
    config: Config | None = None,
) -> FastAPI:
    """Create configured FastAPI app with the frontend static mount.

    Args:
        root_dir: Directory containing config.toml and static/. Defaults to project root.
        config: Explicit configuration; overrides root_dir/config.toml

    Returns:
        Configured FastAPI application
    """
    if root_dir is None:
        root_dir = Path(__file__).parent.parent.parent

    app.state.root_dir = root_dir
    if config is not None:
        app.state.config = config

    static_dir = root_dir / "static"
    if static_dir.exists():
        app.mount("/static", StaticFiles(directory=static_dir), name="static")

    return app


def main() -> None:
    """Run the API server."""
    import uvicorn

    parser = argparse.ArgumentParser(description="PlaceMap API server")
    parser.add_argument(
        "--port", "-p", type=int, default=8080, help="Port to serve on (default: 8080)"
    )
    parser.add_argument(
        "--host",
        "-H",
        type=str,
        default="127.0.0.1",
        help="Host to bind to (default: 127.0.0.1)",
    )
    parser.add_argument(
        "--config", "-c", type=Path, default=None, help="Config file (default: ./config.toml)"
    )
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO)

    config = Config.from_file(args.config) if args.config else None

    print("Starting PlaceMap API server...")
    print(f"API docs: http://{args.host}:{args.port}/docs")
    print("Press Ctrl+C to stop\n")

    create_app(root_dir=Path.cwd(), config=config)
    uvicorn.run(app, host=args.host, port=args.port, log_level="info")


if __name__ == "__main__":
    main()
