from __future__ import annotations

from typing import Any

from flask import request

from .errors import ValidationError


def json_body() -> dict:
    """
    The request's JSON object, or {} when there is no body.

    A body that is present but not a JSON object is a 400.
    """
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def optional_str(data: dict, key: str) -> str | None:
    value: Any = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{key} must be a string")
    value = value.strip()
    return value or None


def require_str(data: dict, key: str) -> str:
    value = optional_str(data, key)
    if value is None:
        raise ValidationError(f"{key} is required")
    return value
