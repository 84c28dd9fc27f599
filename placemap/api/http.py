"""Conditional-GET helpers for cacheable JSON responses.

The ETag is a weak validator over the canonical JSON body: identical query
parameters over identical data hash to the same tag.
"""

import hashlib
import json
from typing import Any

from fastapi import Request, Response
from fastapi.responses import JSONResponse


def canonical_json(payload: Any) -> str:
    return json.dumps(payload, sort_keys=True, separators=(",", ":"))


def compute_etag(payload: Any) -> str:
    """Weak ETag (sha1 of the canonical JSON) of a JSON-serializable payload."""
    body = payload if isinstance(payload, str) else canonical_json(payload)
    digest = hashlib.sha1(body.encode()).hexdigest()
    return f'W/"{digest}"'


def json_with_etag(
    request: Request,
    payload: Any,
    headers: dict[str, str] | None = None,
) -> Response:
    """Respond with payload, or 304 if the client already holds it.

    Args:
        request: Incoming request (read for If-None-Match)
        payload: JSON-serializable body
        headers: Extra headers sent on both the 200 and the 304

    Returns:
        304 with no body when If-None-Match matches, else a JSONResponse
    """
    etag = compute_etag(payload)
    response_headers = {"ETag": etag, **(headers or {})}

    if request.headers.get("if-none-match") == etag:
        return Response(status_code=304, headers=response_headers)

    return JSONResponse(payload, headers=response_headers)
