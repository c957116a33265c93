from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from .money import to_decimal
from .time_utils import parse_iso_datetime


class ValidationError(ValueError):
    """400-level input problem, optionally itemised per field."""

    def __init__(self, message: str, fields: dict[str, str] | None = None):
        super().__init__(message)
        self.fields = fields or {}


class ConflictError(ValueError):
    """409-level business rule conflict."""


def require_object(payload: Any, name: str = "body") -> dict:
    if not isinstance(payload, dict):
        raise ValidationError(f"{name} must be a JSON object", {name: "must be an object"})
    return payload


def require_list(payload: dict, key: str) -> list:
    """Return payload[key] as a list; absent or null means empty."""
    value = payload.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValidationError(f"{key} must be a list", {key: "must be a list"})
    return value


def require_fields(payload: dict, *names: str) -> None:
    missing = {
        name: "required"
        for name in names
        if payload.get(name) is None or (isinstance(payload.get(name), str) and not payload[name].strip())
    }
    if missing:
        raise ValidationError(
            "Missing required fields: " + ", ".join(sorted(missing)),
            missing,
        )


def require_decimal(payload: dict, name: str, *, positive: bool = False, allow_negative: bool = False) -> Decimal:
    value = to_decimal(payload.get(name))
    if value is None:
        raise ValidationError(f"{name} must be a number", {name: "must be a number"})
    if positive and value <= 0:
        raise ValidationError(f"{name} must be greater than 0", {name: "must be greater than 0"})
    if not allow_negative and value < 0:
        raise ValidationError(f"{name} must not be negative", {name: "must not be negative"})
    return value


def optional_decimal(payload: dict, name: str) -> Decimal | None:
    raw = payload.get(name)
    if raw is None or raw == "":
        return None
    value = to_decimal(raw)
    if value is None:
        raise ValidationError(f"{name} must be a number", {name: "must be a number"})
    return value


def optional_int(payload: dict, name: str) -> int | None:
    raw = payload.get(name)
    if raw is None or raw == "":
        return None
    if isinstance(raw, bool):
        raise ValidationError(f"{name} must be an integer", {name: "must be an integer"})
    if isinstance(raw, float):
        if not raw.is_integer():
            raise ValidationError(f"{name} must be an integer", {name: "must be an integer"})
        return int(raw)
    try:
        return int(str(raw).strip())
    except ValueError:
        raise ValidationError(f"{name} must be an integer", {name: "must be an integer"})


def require_choice(payload: dict, name: str, choices, default: str | None = None) -> str:
    value = payload.get(name, default)
    if value not in choices:
        raise ValidationError(
            f"{name} must be one of: {', '.join(choices)}",
            {name: "invalid value"},
        )
    return value


def optional_datetime(payload: dict, name: str) -> datetime | None:
    """Device timestamp as UTC-naive datetime; None when absent."""
    try:
        return parse_iso_datetime(payload.get(name))
    except (ValueError, OverflowError, OSError):
        raise ValidationError(f"{name} must be an ISO-8601 datetime", {name: "invalid datetime"})
