"""Inbound payload validation.

Every mutating request body passes through ``validate_payload`` before any
ownership check or store access. Only the first violation is reported.
"""
import re
from datetime import datetime, timezone
from typing import Any, Optional, Type, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from errors import ValidationError

ModelT = TypeVar("ModelT", bound=BaseModel)

CALENDAR_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
TIMESTAMP_PREFIX = re.compile(r"^\d{4}-\d{2}-\d{2}[T ]\d{2}:\d{2}")


def parse_iso_to_utc(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt.astimezone(timezone.utc)
    except ValueError:
        return None


def parse_date_input(value: Any) -> datetime:
    """Accept ``YYYY-MM-DD`` or an ISO-8601 timestamp; return an aware UTC datetime."""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if not isinstance(value, str):
        raise ValueError("Expected a date string")
    text = value.strip()
    if CALENDAR_DATE.match(text):
        try:
            return datetime.strptime(text, "%Y-%m-%d").replace(tzinfo=timezone.utc)
        except ValueError:
            raise ValueError(f"Invalid calendar date '{text}'")
    parsed = parse_iso_to_utc(text) if TIMESTAMP_PREFIX.match(text) else None
    if parsed is None:
        raise ValueError("Invalid date, expected YYYY-MM-DD or an ISO-8601 timestamp")
    return parsed


def error_location(loc) -> str:
    parts = [str(p) for p in loc]
    if parts and parts[0] in ("body", "query", "path", "header", "cookie"):
        parts = parts[1:]
    return ".".join(parts) or "body"


def first_error(exc) -> ValidationError:
    """Reduce a pydantic or FastAPI validation failure to its first violation."""
    errors = exc.errors()
    if not errors:
        return ValidationError("body", "Invalid input")
    err = errors[0]
    return ValidationError(error_location(err.get("loc", ())), err.get("msg", "Invalid value"))


def validate_payload(schema: Type[ModelT], raw: Any) -> ModelT:
    """Validate ``raw`` against ``schema`` and return the canonical instance.

    Defaults for optional fields are applied by the schema itself, so the
    returned object is fully populated.
    """
    if not isinstance(raw, dict):
        raise ValidationError("body", "Expected a JSON object")
    try:
        return schema.model_validate(raw)
    except PydanticValidationError as exc:
        raise first_error(exc) from None
