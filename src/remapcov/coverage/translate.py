"""Translate generated-code ranges into original-source ranges."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Optional, Union

from pydantic import ValidationError

from ..sourcemap.resolver import MappingResolver, OriginalPosition
from .schema import Point, Range

__all__ = [
    "TranslatedRange",
    "Unmappable",
    "UNMAPPABLE",
    "coerce_range",
    "translate",
    "translate_point",
]

LOGGER = logging.getLogger(__name__)


class Unmappable(str, Enum):
    """Outcome for a location without a valid original position."""

    UNMAPPABLE = "unmappable"


UNMAPPABLE = Unmappable.UNMAPPABLE


@dataclass(frozen=True, slots=True)
class TranslatedRange:
    """Original source path plus the range inside it."""

    source: str
    range: Range


def _coerce_point(value: Any) -> Optional[Point]:
    if isinstance(value, Point):
        return value
    if not isinstance(value, Mapping):
        return None
    try:
        return Point.model_validate(dict(value))
    except ValidationError:
        return None


def coerce_range(value: Any) -> Optional[Range]:
    """Validate an arbitrary JSON value as a :class:`Range`.

    Only the start has to be well formed; a malformed end is left as ``None``
    so translation falls back to the start. Returns ``None`` without a usable
    start.
    """

    if isinstance(value, Range):
        return value
    if not isinstance(value, Mapping):
        return None
    start = _coerce_point(value.get("start"))
    if start is None:
        return None
    end = _coerce_point(value.get("end"))
    skip = value.get("skip")
    if skip is not None and not isinstance(skip, bool):
        skip = None
    return Range(start=start, end=end, skip=skip)


def translate_point(resolver: MappingResolver, point: Point) -> Optional[OriginalPosition]:
    """Resolve ``point`` through ``resolver``; illegal input or output yields ``None``."""

    if not point.is_valid():
        return None
    try:
        position = resolver.resolve(point.line, point.column)
    except (ValueError, TypeError, IndexError, KeyError) as error:
        LOGGER.debug("Resolver rejected %s:%s: %s", point.line, point.column, error)
        return None
    if position is None or position.line < 1 or position.column < 0:
        return None
    return position


def translate(resolver: MappingResolver, location: Range) -> Union[TranslatedRange, Unmappable]:
    """Map a generated range to the original source.

    The start must resolve. When the end does not resolve, lands in another
    source, or would precede the start, the resolved start is used for both
    ends.
    """

    start = translate_point(resolver, location.start)
    if start is None:
        return UNMAPPABLE

    end = translate_point(resolver, location.end) if location.end is not None else None
    if (
        end is None
        or end.source != start.source
        or (end.line, end.column) < (start.line, start.column)
    ):
        end = start

    translated = Range(
        start=Point(line=start.line, column=start.column),
        end=Point(line=end.line, column=end.column),
        skip=location.skip,
    )
    return TranslatedRange(source=start.source, range=translated)
