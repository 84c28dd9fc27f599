"""Pydantic schemas for API request/response models.

Defines the contract for the place, trade-area, zipcode and health endpoints, enabling
automatic OpenAPI documentation and response validation.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class TradeAreaFeature(BaseModel):
    """Single trade-area polygon in a buffered response."""

    place_id: str = Field(description="Place identifier")
    category: int = Field(description="Trade-area percentile tier (e.g., 30, 50, 70)")
    sequence_id: int = Field(description="Store-assigned row id, the scan tie-breaker")
    cursor: str = Field(description="Resume token pointing just after this record")
    geometry: dict[str, Any] = Field(description="GeoJSON Polygon or MultiPolygon")


class Pagination(BaseModel):
    """Page metadata.

    has_more is true whenever the page came back full, so an exact-limit final
    page still reports more; total counts this page only, not the dataset.
    """

    model_config = ConfigDict(populate_by_name=True)

    limit: int = Field(description="Requested page size")
    offset: int | None = Field(description="Row offset (null in cursor mode)")
    has_more: bool = Field(
        serialization_alias="hasMore",
        validation_alias="hasMore",
        description="Page was full; another request may return more",
    )
    total: int = Field(description="Records in this page")
    cursor: str | None = Field(default=None, description="Cursor this page resumed from")
    next_cursor: str | None = Field(
        default=None,
        serialization_alias="nextCursor",
        validation_alias="nextCursor",
        description="Cursor for the next page",
    )


class TradeAreasEnvelope(BaseModel):
    """Buffered page of trade areas."""

    features: list[TradeAreaFeature] = Field(description="Trade areas on this page")
    pagination: Pagination


class Place(BaseModel):
    """A place on the map; availability flags serialize in camelCase."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(description="Place identifier")
    name: str = Field(description="Display name")
    street_address: str | None = Field(default=None, description="Street address")
    city: str | None = Field(default=None, description="City")
    state: str | None = Field(default=None, description="State or region")
    logo: str | None = Field(default=None, description="Logo URL")
    longitude: float = Field(description="WGS84 longitude")
    latitude: float = Field(description="WGS84 latitude")
    industry: str | None = Field(default=None, description="Industry / sub-category")
    is_trade_area_available: bool = Field(
        default=False,
        serialization_alias="isTradeAreaAvailable",
        validation_alias="isTradeAreaAvailable",
        description="Trade-area polygons exist for this place",
    )
    is_home_zipcodes_available: bool = Field(
        default=False,
        serialization_alias="isHomeZipcodesAvailable",
        validation_alias="isHomeZipcodesAvailable",
        description="Home-zipcode percentages exist for this place",
    )


class ListedPlace(Place):
    """Place as returned by the places listing."""

    category: str = Field(description="'user_place' or 'competitor'")


class PlacesResponse(BaseModel):
    """One keyset page of places, ordered by id."""

    places: list[ListedPlace] = Field(description="Places on this page")
    pagination: Pagination


class Competitor(BaseModel):
    """Competitor place, in the competitor export's field names."""

    pid: str = Field(description="Place identifier")
    name: str
    street_address: str | None = None
    city: str | None = None
    region: str | None = None
    logo: str | None = None
    latitude: float
    longitude: float
    sub_category: str | None = None
    trade_area_activity: bool = False
    home_locations_activity: bool = False
    distance: float = Field(default=0, description="Not computed; always 0")


class ZipcodeResponse(BaseModel):
    """Zipcode boundary."""

    id: str = Field(description="Zipcode identifier")
    polygon: dict[str, Any] = Field(description="GeoJSON geometry")


class HomeZipcodesResponse(BaseModel):
    """Share of a place's visitors by home zipcode."""

    place_id: str = Field(description="Place identifier")
    locations: list[dict[str, float]] = Field(
        description="One {zipcode_id: percentage} object per zipcode"
    )


class ErrorResponse(BaseModel):
    """Error body for failed buffered requests."""

    error: str = Field(description="Short error summary")
    detail: str | None = Field(default=None, description="Underlying cause")


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(description="Service status")
    trade_areas_count: int = Field(description="Total trade areas in database")
