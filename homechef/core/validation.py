"""Shared validation helpers: pydantic errors flattened to {field: reason}."""

from __future__ import annotations

from typing import Any, Iterable, TypeVar

from pydantic import BaseModel, ValidationError

ModelT = TypeVar("ModelT", bound=BaseModel)

# Location prefixes FastAPI adds in front of the field path.
_LOCATION_ROOTS = {"body", "query", "path", "header", "cookie"}


def _field_name(loc: Iterable[Any]) -> str:
    parts = [str(p) for p in loc]
    if parts and parts[0] in _LOCATION_ROOTS:
        parts = parts[1:]
    return ".".join(parts) or "body"


def field_errors(errors: Iterable[dict[str, Any]]) -> dict[str, str]:
    """Map each failing field to its first reason."""
    result: dict[str, str] = {}
    for error in errors:
        name = _field_name(error.get("loc", ()))
        if name not in result:
            result[name] = error.get("msg", "invalid")
    return result


def validate_payload(model: type[ModelT], payload: Any) -> ModelT:
    """
    Validate an arbitrary payload against a schema.

    Raises InvalidRequest carrying the field map.
    """
    from homechef.core.errors import InvalidRequest

    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise InvalidRequest("Request validation failed", field_errors(exc.errors()))
