"""Query string encoding for raw strings and structured values."""

from __future__ import annotations

import dataclasses
from datetime import date, datetime
from typing import Any, Iterator, Mapping
from urllib.parse import urlencode

from pydantic import BaseModel

from .exceptions import RayConfigurationError


QUERY_TAG = "query"


def _coerce_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (str, int, float)):
        return str(value)
    raise RayConfigurationError(
        f"unsupported query value type {type(value).__name__}",
        site="rayhttp.query.encode",
    )


def _dataclass_items(value: Any) -> Iterator[tuple[str, Any]]:
    for item in dataclasses.fields(value):
        key = item.metadata.get(QUERY_TAG, item.name)
        if key == "-":
            continue
        yield key, getattr(value, item.name)


def _items(value: Any) -> Iterator[tuple[str, Any]]:
    if isinstance(value, BaseModel):
        yield from value.model_dump(mode="json", by_alias=True, exclude_none=True).items()
    elif dataclasses.is_dataclass(value) and not isinstance(value, type):
        yield from _dataclass_items(value)
    elif isinstance(value, Mapping):
        for key, item in value.items():
            yield str(key), item
    else:
        raise RayConfigurationError(
            f"cannot encode {type(value).__name__} as a query",
            site="rayhttp.query.encode",
        )


def encode(value: Any) -> str:
    """Encode ``value`` into a ``key=value&...`` query string.

    Strings pass through untouched. Mappings, pydantic models (keyed by field
    alias) and dataclasses (keyed by ``field(metadata={"query": ...})``) are
    flattened with keys in alphabetical order. ``None`` values are dropped and
    lists repeat their key.
    """
    if value is None:
        return ""
    if isinstance(value, str):
        return value

    pairs: list[tuple[str, str]] = []
    for key, item in _items(value):
        if item is None:
            continue
        if isinstance(item, (list, tuple)):
            pairs.extend((key, _coerce_value(v)) for v in item if v is not None)
            continue
        pairs.append((key, _coerce_value(item)))

    pairs.sort(key=lambda pair: pair[0])
    return urlencode(pairs)
