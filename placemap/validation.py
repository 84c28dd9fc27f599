"""Row validation and geometry normalization.

Rows coming back from the store carry the polygon either as serialized JSON or as
an already-parsed object. Validation parses it once into one of two pydantic
models (a tagged union on the GeoJSON ``type`` field); nothing downstream has to
care how the row was stored.

A row that fails validation is dropped with a warning. It never aborts the batch.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from placemap.cursor import CursorKey, key_int

logger = logging.getLogger(__name__)

Position = list[float]
Ring = list[Position]


class PolygonGeometry(BaseModel):
    """GeoJSON Polygon: a list of rings, the first being the outer ring."""

    type: Literal["Polygon"]
    coordinates: Annotated[list[Ring], Field(min_length=1)]

    def outer_ring(self) -> Ring:
        return self.coordinates[0]


class MultiPolygonGeometry(BaseModel):
    """GeoJSON MultiPolygon. Only the first polygon's outer ring is rendered."""

    type: Literal["MultiPolygon"]
    coordinates: Annotated[
        list[Annotated[list[Ring], Field(min_length=1)]], Field(min_length=1)
    ]

    def outer_ring(self) -> Ring:
        return self.coordinates[0][0]


Geometry = Annotated[PolygonGeometry | MultiPolygonGeometry, Field(discriminator="type")]

_geometry_adapter: TypeAdapter[PolygonGeometry | MultiPolygonGeometry] = TypeAdapter(Geometry)


@dataclass(frozen=True, slots=True)
class GeometryRecord:
    """One validated polygon for one place and category."""

    place_id: str
    category: int
    sequence_id: int
    geometry: PolygonGeometry | MultiPolygonGeometry

    @property
    def key(self) -> CursorKey:
        return CursorKey(self.place_id, self.category, self.sequence_id)


@dataclass
class ValidationStats:
    """Counters for rows seen by filter_valid."""

    accepted: int = 0
    rejected: int = 0
    reasons: dict[str, int] = field(default_factory=dict)

    def reject(self, reason: str) -> None:
        self.rejected += 1
        self.reasons[reason] = self.reasons.get(reason, 0) + 1


class InvalidRecordError(ValueError):
    """A store row is missing required fields or carries unusable geometry."""

    def __init__(self, reason: str, detail: str = "") -> None:
        super().__init__(f"{reason}: {detail}" if detail else reason)
        self.reason = reason


def parse_geometry(raw: Any) -> PolygonGeometry | MultiPolygonGeometry:
    """Parse a stored polygon value into its canonical model.

    Args:
        raw: JSON string, bytes, or already-structured mapping

    Raises:
        InvalidRecordError: If the value does not parse or is not a (Multi)Polygon
    """
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except ValueError as e:
            raise InvalidRecordError("unparsable_geometry", str(e)) from e

    if not isinstance(raw, dict):
        raise InvalidRecordError("unparsable_geometry", f"expected object, got {type(raw).__name__}")

    if raw.get("type") not in ("Polygon", "MultiPolygon"):
        raise InvalidRecordError("unsupported_geometry_type", repr(raw.get("type")))

    try:
        return _geometry_adapter.validate_python(raw)
    except ValidationError as e:
        raise InvalidRecordError("malformed_coordinates", f"{e.error_count()} errors") from e


def validate_row(row: dict[str, Any]) -> GeometryRecord:
    """Validate one raw store row.

    Checks, in order: place id, category, geometry present, geometry parses to a
    Polygon or MultiPolygon.

    Raises:
        InvalidRecordError: On the first failed check
    """
    place_id = row.get("place_id")
    if place_id is None or place_id == "":
        raise InvalidRecordError("missing_place_id")

    category = row.get("category")
    if category is None:
        raise InvalidRecordError("missing_category")

    raw_geometry = row.get("geometry")
    if raw_geometry is None or raw_geometry == "":
        raise InvalidRecordError("missing_geometry")

    sequence_id = row.get("sequence_id")
    if sequence_id is None:
        raise InvalidRecordError("missing_sequence_id")

    try:
        category = key_int(category)
        sequence_id = key_int(sequence_id)
    except ValueError as e:
        raise InvalidRecordError("non_integer_key", str(e)) from e

    return GeometryRecord(
        place_id=str(place_id),
        category=category,
        sequence_id=sequence_id,
        geometry=parse_geometry(raw_geometry),
    )


def filter_valid(
    rows: list[dict[str, Any]],
    stats: ValidationStats | None = None,
    diagnostics: logging.Logger | None = None,
) -> list[GeometryRecord]:
    """Validate a batch, dropping rows that fail.

    Args:
        rows: Raw rows in fetch order
        stats: Optional counters updated in place
        diagnostics: Logger receiving one warning per rejected row

    Returns:
        Valid records, in the same order as the input rows
    """
    log = diagnostics or logger
    records: list[GeometryRecord] = []

    for row in rows:
        try:
            record = validate_row(row)
        except InvalidRecordError as e:
            if stats is not None:
                stats.reject(e.reason)
            log.warning(
                f"Skipping invalid row (place_id={row.get('place_id')!r}, "
                f"sequence_id={row.get('sequence_id')!r}): {e}"
            )
            continue

        if stats is not None:
            stats.accepted += 1
        records.append(record)

    return records
