"""Field schema engine.

Turns the raw field map a processor extracted into the validated ``fields``
of a record. ``title`` and ``description`` are always declared; pipeline
fields are layered on top and may override them. Raw keys without a
declaration pass through untouched.
"""

from __future__ import annotations

import datetime as dt
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from contented.core.errors import FieldValidationError

Resolver = Callable[[Any], Any]


@dataclass(frozen=True)
class FieldSpec:
    """Declared type tag, required flag and optional resolve function."""

    type: str = "string"
    required: bool = False
    resolve: Resolver | None = None


DEFAULT_FIELDS: dict[str, FieldSpec] = {
    "title": FieldSpec(type="string"),
    "description": FieldSpec(type="string"),
}


def default_resolver(default: Any) -> Resolver:
    """Resolve function that supplies ``default`` when the raw value is absent."""

    def resolve(value: Any) -> Any:
        return default if value is None else value

    resolve.__name__ = "default_resolver"
    return resolve


def merge_schema(declared: Mapping[str, FieldSpec] | None) -> dict[str, FieldSpec]:
    """Default fields beneath pipeline-declared fields."""
    return {**DEFAULT_FIELDS, **(declared or {})}


def _check_string(value: Any) -> Any:
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float, dt.date)) and not isinstance(value, bool):
        return value.isoformat() if isinstance(value, dt.date) else str(value)
    raise TypeError("expected a string")


def _check_number(value: Any) -> Any:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeError("expected a number")
    return value


def _check_boolean(value: Any) -> Any:
    if not isinstance(value, bool):
        raise TypeError("expected a boolean")
    return value


def _check_date(value: Any) -> Any:
    if isinstance(value, dt.date):
        return value.isoformat()
    if isinstance(value, str):
        try:
            dt.datetime.fromisoformat(value)
        except ValueError:
            raise TypeError("expected an ISO-8601 date") from None
        return value
    raise TypeError("expected a date")


def _check_array(value: Any) -> Any:
    if not isinstance(value, (list, tuple)):
        raise TypeError("expected an array")
    return list(value)


def _check_object(value: Any) -> Any:
    if not isinstance(value, Mapping):
        raise TypeError("expected an object")
    return dict(value)


# Type tags outside this table are descriptive only.
TYPE_CHECKS: dict[str, Callable[[Any], Any]] = {
    "string": _check_string,
    "number": _check_number,
    "boolean": _check_boolean,
    "date": _check_date,
    "array": _check_array,
    "object": _check_object,
}


def resolve_fields(
    schema: Mapping[str, FieldSpec],
    raw: Mapping[str, Any] | None,
    file: str,
) -> dict[str, Any]:
    """Validate and resolve ``raw`` against ``schema`` for ``file``.

    Absent means missing or ``None``. Absent optional fields are omitted
    from the result.

    Raises:
        FieldValidationError: a required field is still absent after
            resolution, a resolve function raised, or a present value does
            not match its declared type tag.
    """
    raw = dict(raw or {})
    resolved: dict[str, Any] = {k: v for k, v in raw.items() if k not in schema}

    for name, spec in schema.items():
        value = raw.get(name)
        if spec.resolve is not None:
            try:
                value = spec.resolve(value)
            except Exception as e:
                raise FieldValidationError(
                    name, file, f"Field '{name}' could not be resolved in {file}: {e}", cause=e
                ) from e

        if value is None:
            if spec.required:
                raise FieldValidationError(name, file)
            continue

        check = TYPE_CHECKS.get(spec.type)
        if check is not None:
            try:
                value = check(value)
            except TypeError as e:
                raise FieldValidationError(
                    name,
                    file,
                    f"Field '{name}' in {file} is not of type '{spec.type}': {e}",
                    value=value,
                ) from e
        resolved[name] = value

    return resolved
