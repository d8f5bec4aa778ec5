"""JSON utilities using orjson.

Usage:
    from pokerleague.utils.json_utils import json_dumps, json_loads

    data = json_loads('{"key": "value"}')
    json_str = json_dumps({"prize": Decimal("1920")})
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

import orjson


def _default_serializer(obj: Any) -> Any:
    """Custom serializer for types not natively supported by orjson."""
    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def json_dumps(data: Any, *, pretty: bool = False) -> str:
    """Serialize data to JSON string using orjson."""
    options = orjson.OPT_UTC_Z
    if pretty:
        options |= orjson.OPT_INDENT_2

    return orjson.dumps(data, default=_default_serializer, option=options).decode("utf-8")


def json_loads(data: str | bytes) -> Any:
    """Deserialize JSON string/bytes to Python object.

    Raises:
        orjson.JSONDecodeError: If data is not valid JSON
    """
    return orjson.loads(data)
