"""Wire framings for streamed trade-area responses.

NDJSON is the canonical framing: one self-contained JSON object per line, so a
truncated body still yields every complete line as valid data.

The JSON array and GeoJSON FeatureCollection framings are kept for older clients
and are deprecated. Both only become valid JSON once the closing bytes are
written; a stream that aborts mid-way leaves them unterminated, and clients must
treat a dropped connection as failure regardless of the bytes received.
"""

import json
from enum import Enum
from typing import Any

from placemap.cursor import encode_cursor
from placemap.validation import GeometryRecord


class Framing(str, Enum):
    ndjson = "ndjson"
    json = "json"
    geojson = "geojson"


MEDIA_TYPES = {
    Framing.ndjson: "application/x-ndjson",
    Framing.json: "application/json",
    Framing.geojson: "application/json",
}


def _dumps(value: Any) -> bytes:
    return json.dumps(value, separators=(",", ":")).encode()


def record_to_dict(record: GeometryRecord) -> dict[str, Any]:
    """Wire form of one record for the NDJSON and array framings."""
    return {
        "place_id": record.place_id,
        "category": record.category,
        "sequence_id": record.sequence_id,
        "cursor": encode_cursor(record),
        "geometry": record.geometry.model_dump(),
    }


def record_to_feature(record: GeometryRecord) -> dict[str, Any]:
    """GeoJSON Feature with the renderable outer ring as a Polygon."""
    return {
        "type": "Feature",
        "geometry": {"type": "Polygon", "coordinates": [record.geometry.outer_ring()]},
        "properties": {"place_id": record.place_id, "category": record.category},
    }


class NdjsonFraming:
    media_type = MEDIA_TYPES[Framing.ndjson]

    def open(self) -> bytes:
        return b""

    def record(self, record: GeometryRecord, first: bool) -> bytes:
        return _dumps(record_to_dict(record)) + b"\n"

    def close(self, metadata: dict[str, Any]) -> bytes:
        return b""


class JsonArrayFraming:
    media_type = MEDIA_TYPES[Framing.json]

    def open(self) -> bytes:
        return b"["

    def record(self, record: GeometryRecord, first: bool) -> bytes:
        body = _dumps(record_to_dict(record))
        return body if first else b"," + body

    def close(self, metadata: dict[str, Any]) -> bytes:
        return b"]"


class FeatureCollectionFraming:
    media_type = MEDIA_TYPES[Framing.geojson]

    def open(self) -> bytes:
        return b'{"type":"FeatureCollection","features":['

    def record(self, record: GeometryRecord, first: bool) -> bytes:
        body = _dumps(record_to_feature(record))
        return body if first else b"," + body

    def close(self, metadata: dict[str, Any]) -> bytes:
        return b'],"metadata":' + _dumps(metadata) + b"}"


FramingWriter = NdjsonFraming | JsonArrayFraming | FeatureCollectionFraming


def get_framing(framing: Framing | str) -> FramingWriter:
    """Get the writer for a framing name.

    Raises:
        ValueError: If the framing is unknown
    """
    kind = Framing(framing)
    if kind is Framing.json:
        return JsonArrayFraming()
    if kind is Framing.geojson:
        return FeatureCollectionFraming()
    return NdjsonFraming()
