"""
JSON sanitization for sandbox responses
=======================================
Backend drivers return Decimal, datetime, bytes, UUID, interval and NaN values
that FastAPI's JSON encoder either rejects or renders inconsistently. Every
response payload passes through sanitize_json_data before it leaves the API.
"""

import base64
import math
import logging
from datetime import timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID

logger = logging.getLogger(__name__)


def sanitize_json_data(data: Any, seen: Optional[set] = None) -> Any:
    """Comprehensive JSON sanitization for FastAPI responses with UTF-8 safety"""
    if seen is None:
        seen = set()

    # Cycle detection for nested structures
    data_id = id(data)
    if data_id in seen:
        return None

    if data is None:
        return None

    # Handle basic JSON-safe types
    if isinstance(data, Enum):
        return sanitize_json_data(data.value, seen)
    if isinstance(data, (bool, int)):
        return data
    if isinstance(data, str):
        # Ensure string is UTF-8 safe
        try:
            data.encode('utf-8')
            return data
        except UnicodeEncodeError:
            return data.encode('utf-8', errors='replace').decode('utf-8')

    # Handle float with NaN/Infinity
    if isinstance(data, float):
        if math.isnan(data):
            return None
        if math.isinf(data):
            return "Infinity" if data > 0 else "-Infinity"
        return data

    if isinstance(data, Decimal):
        if not data.is_finite():
            return str(data)
        # Whole numbers stay integers (NUMBER columns come back as Decimal)
        if data == data.to_integral_value():
            return int(data)
        return float(data)

    # Add to seen set for complex types
    seen.add(data_id)
    try:
        # Handle bytes/bytearray/memoryview - convert to UTF-8 string or base64
        if isinstance(data, (bytes, bytearray, memoryview)):
            raw = bytes(data)
            try:
                return raw.decode('utf-8')
            except UnicodeDecodeError:
                return f"base64:{base64.b64encode(raw).decode('ascii')}"

        # Handle dict - sanitize keys and values
        if isinstance(data, dict):
            return {str(k): sanitize_json_data(v, seen) for k, v in data.items()}

        # Handle list/tuple/set - convert to list with sanitized elements
        if isinstance(data, (list, tuple, set, frozenset)):
            return [sanitize_json_data(item, seen) for item in data]

        if isinstance(data, timedelta):
            return str(data)

        # Handle datetime objects
        if hasattr(data, 'isoformat'):  # datetime, date, time
            return data.isoformat()

        if isinstance(data, UUID):
            return str(data)

        # Driver specific objects (LOB locators, intervals, ...)
        return str(data)
    finally:
        seen.discard(data_id)
