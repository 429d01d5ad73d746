"""
Row Serialization
Converts domain values into JSON-compatible column values
"""
from datetime import date, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel


def to_row_value(value: Any) -> Any:
    """Recursively convert models, enums and datetimes for storage."""
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: to_row_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_row_value(v) for v in value]
    return value


def to_row(fields: dict) -> dict:
    return {k: to_row_value(v) for k, v in fields.items()}


def parse_timestamp(value: Any) -> datetime | None:
    """Parse a stored timestamp (ISO string or datetime)."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
