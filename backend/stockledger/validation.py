# Overview: Input coercion for JSON payloads: strict integers, cents, choices and header patches.

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import Boolean, DateTime, Integer, String, Text

from .errors import ValidationError
from .time_utils import parse_iso_datetime


# Upper bound for any single money field, in cents (9,999,999.99)
MAX_PRICE_CENTS = 999_999_999


def coerce_int(value: Any, field: str) -> int:
    """
    Strict integer coercion for client input.

    Accepts ints and plain digit strings. Rejects bools, floats and
    anything with a decimal point or exponent, so "2.5" units never
    silently become 2.
    """
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be an integer")

    text = value.strip()
    if "." in text or "e" in text.lower():
        raise ValidationError(f"{field} must be a whole number")
    try:
        return int(text)
    except ValueError:
        raise ValidationError(f"{field} must be an integer")


def check_int(value: Any, field: str, *, min_value: int | None = None) -> int:
    number = coerce_int(value, field)
    if min_value is not None and number < min_value:
        raise ValidationError(f"{field} must be >= {min_value}")
    return number


def require_int(payload: dict, field: str, *, min_value: int | None = None) -> int:
    if payload.get(field) is None:
        raise ValidationError(f"Missing required field: {field}")
    return check_int(payload[field], field, min_value=min_value)


def optional_int(payload, field: str, default: int | None = None, *, min_value: int | None = None) -> int | None:
    """Same as require_int, but a missing key yields default. Works on request.args too."""
    raw = payload.get(field)
    if raw is None:
        return default
    return check_int(raw, field, min_value=min_value)


def check_price_cents(value: Any, field: str) -> int:
    cents = check_int(value, field, min_value=0)
    if cents > MAX_PRICE_CENTS:
        raise ValidationError(f"{field} cannot exceed {MAX_PRICE_CENTS}")
    return cents


def check_choice(value: Any, field: str, choices) -> str:
    if value not in choices:
        raise ValidationError(f"{field} must be one of: {', '.join(sorted(choices))}")
    return value


def _parse_datetime(raw: Any, field: str) -> datetime:
    if isinstance(raw, datetime):
        return raw
    try:
        parsed = parse_iso_datetime(str(raw))
    except ValueError:
        parsed = None
    if parsed is None:
        raise ValidationError(f"{field} must be an ISO-8601 datetime")
    return parsed


def optional_datetime(payload: dict, field: str) -> datetime | None:
    raw = payload.get(field)
    if raw is None or raw == "":
        return None
    return _parse_datetime(raw, field)


# --------------------------------------------------------------------------
# Header patches
# --------------------------------------------------------------------------

@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Which columns a client may write on a document header.

    writable_fields is the allowlist; anything else in the payload is
    refused. required_on_create only applies to full (non-partial) payloads.
    """
    writable_fields: frozenset
    required_on_create: frozenset = frozenset()


def _coerce_column(col, value: Any):
    coltype = col.type

    if isinstance(coltype, Boolean):
        if not isinstance(value, bool):
            raise ValidationError(f"{col.key} must be a boolean")
        return value
    if isinstance(coltype, Integer):
        return coerce_int(value, col.key)
    if isinstance(coltype, DateTime):
        return _parse_datetime(value, col.key)
    if isinstance(coltype, (String, Text)):
        text = str(value).strip()
        if not text and not col.nullable:
            raise ValidationError(f"{col.key} cannot be blank")
        if isinstance(coltype, String) and coltype.length and len(text) > coltype.length:
            raise ValidationError(f"{col.key} exceeds max length {coltype.length}")
        return text
    return value


def validate_payload(*, model, payload: dict | None, policy: ModelValidationPolicy, partial: bool) -> dict:
    """
    Turn a JSON header payload into a column -> value patch.

    Keys outside policy.writable_fields (or not mapped on the model) are
    rejected rather than ignored. Values are coerced by column type; null is
    accepted only for nullable columns.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    if not partial:
        missing = sorted(policy.required_on_create - payload.keys())
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    columns = {c.key: c for c in model.__mapper__.columns}
    patch: dict = {}
    for key, raw in payload.items():
        if key not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {key}")
        col = columns.get(key)
        if col is None:
            raise ValidationError(f"Unknown field: {key}")

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{key} cannot be null")
            patch[key] = None
        else:
            patch[key] = _coerce_column(col, raw)

    return patch
