"""JSON utilities using orjson.

Usage:
    from arena.utils.json_utils import json_dumps, json_loads, ORJSONResponse

    data = json_loads('{"key": "value"}')
    json_str = json_dumps({"key": "value"})

    return ORJSONResponse(content={"status": "ok"})
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

import orjson
from fastapi.responses import JSONResponse


def _default_serializer(obj: Any) -> Any:
    """Custom serializer for types not natively supported by orjson."""
    if isinstance(obj, Decimal):
        return float(obj)
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, bytes):
        return obj.decode("utf-8")
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def json_dumps(data: Any) -> str:
    """Serialize data to a JSON string."""
    return orjson.dumps(
        data,
        default=_default_serializer,
        option=orjson.OPT_UTC_Z | orjson.OPT_NON_STR_KEYS,
    ).decode("utf-8")


def json_loads(data: str | bytes) -> Any:
    """Deserialize a JSON string/bytes to a Python object."""
    return orjson.loads(data)


class ORJSONResponse(JSONResponse):
    """FastAPI response class rendered with orjson."""

    media_type = "application/json"

    def render(self, content: Any) -> bytes:
        return orjson.dumps(
            content,
            default=_default_serializer,
            option=orjson.OPT_UTC_Z | orjson.OPT_NON_STR_KEYS,
        )
