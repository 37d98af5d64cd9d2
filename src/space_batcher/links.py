"""
Link discovery in entry field trees.

Entry fields are untyped JSON: ``{field_id: {locale: value}}`` where a value
can be a scalar, a link object, a list, or a nested object (rich text
documents, JSON fields). ``parse_value`` turns that into a small tagged
union and ``iter_links`` walks it, so link discovery can be tested apart
from the partitioner.

A link object looks like::

    {"sys": {"type": "Link", "linkType": "Asset", "id": "abc"}}
"""

from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from typing import Any, Union

ENTRY = "Entry"
ASSET = "Asset"


@dataclass(frozen=True)
class Scalar:
    """A leaf value: string, number, boolean or null."""

    value: Any


@dataclass(frozen=True)
class Link:
    """Typed reference to another entry or asset."""

    kind: str
    id: str


@dataclass(frozen=True)
class ListValue:
    """An ordered list of values."""

    items: tuple["FieldValue", ...]


@dataclass(frozen=True)
class LocaleMap:
    """
    A mapping of keys to values.

    At the top of a field this is locale code -> value; deeper down it is
    any JSON object that is not a link (rich text nodes, JSON fields).
    """

    values: tuple[tuple[str, "FieldValue"], ...]


FieldValue = Union[Scalar, Link, ListValue, LocaleMap]


def _as_link(raw: dict[str, Any]) -> Link | None:
    sys = raw.get("sys")
    if isinstance(sys, dict) and sys.get("type") == "Link" and "id" in sys:
        return Link(kind=str(sys.get("linkType", "")), id=str(sys["id"]))
    return None


def parse_value(raw: Any) -> FieldValue:
    """Convert raw JSON into the FieldValue union."""
    if isinstance(raw, list):
        return ListValue(tuple(parse_value(item) for item in raw))
    if isinstance(raw, dict):
        link = _as_link(raw)
        if link is not None:
            return link
        return LocaleMap(tuple((str(k), parse_value(v)) for k, v in raw.items()))
    return Scalar(raw)


def iter_links(value: FieldValue) -> Iterator[Link]:
    """Yield every link in a value tree, depth first, in document order."""
    if isinstance(value, Link):
        yield value
    elif isinstance(value, ListValue):
        for item in value.items:
            yield from iter_links(item)
    elif isinstance(value, LocaleMap):
        for _, item in value.values:
            yield from iter_links(item)


def iter_field_links(fields: dict[str, Any] | None, kind: str | None = None) -> Iterator[Link]:
    """Yield links found in an entry's fields block, optionally of one kind."""
    for link in iter_links(parse_value(fields or {})):
        if kind is None or link.kind == kind:
            yield link


def asset_references(entry: dict[str, Any]) -> list[str]:
    """Distinct asset ids referenced by an entry, in first-seen order."""
    return _unique(link.id for link in iter_field_links(entry.get("fields"), ASSET))


def _unique(ids: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(ids))
