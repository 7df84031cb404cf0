"""Canonical user/format identifiers as used by the Showdown server."""

from __future__ import annotations

import re
from typing import Any, Mapping, Protocol, Union, runtime_checkable

_NON_ID = re.compile(r"[^a-z0-9]+")


@runtime_checkable
class NamedRecord(Protocol):
    """Anything carrying a user id, e.g. a ladder row or a user payload."""

    userid: str


IdSource = Union[str, int, float, NamedRecord, Mapping[str, Any], None]


def _unwrap(value: Any) -> Any:
    if isinstance(value, Mapping):
        return value.get("id") or value.get("userid")
    for attr in ("id", "userid"):
        inner = getattr(value, attr, None)
        if inner:
            return inner
    return value


def to_id(value: IdSource) -> str:
    """Return the lowercase alphanumeric identifier for ``value``.

    Strings and numbers are normalised directly; records expose ``id`` or
    ``userid``. Anything else maps to the empty identifier.
    """

    if value is not None and not isinstance(value, (str, int, float)):
        value = _unwrap(value)
    if isinstance(value, bool) or not isinstance(value, (str, int, float)):
        return ""
    if isinstance(value, float) and value.is_integer():
        text = str(int(value))
    else:
        text = str(value)
    return _NON_ID.sub("", text.lower())


__all__ = ["IdSource", "NamedRecord", "to_id"]
