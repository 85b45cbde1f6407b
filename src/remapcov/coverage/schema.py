"""Typed views over Istanbul coverage entries.

Reports travel as plain JSON dictionaries. Individual entries are validated
through these models only while they are being remapped, and extra keys such
as ``name``, ``type`` or ``skip`` are carried along untouched.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

__all__ = [
    "BranchMeta",
    "CoverageModel",
    "FunctionMeta",
    "Point",
    "Range",
    "LOCATION_TABLES",
]

# Location table -> hit count table, as named by the interchange format.
LOCATION_TABLES: Dict[str, str] = {
    "statementMap": "s",
    "fnMap": "f",
    "branchMap": "b",
}


class CoverageModel(BaseModel):
    """Base model that keeps unknown Istanbul fields."""

    model_config = ConfigDict(extra="allow")

    def to_json(self) -> Dict[str, Any]:
        """Serialise back to the interchange format."""
        return self.model_dump(mode="json", exclude_none=True)


class Point(CoverageModel):
    """Position with a 1-based line and a 0-based column."""

    line: int
    column: int

    def is_valid(self) -> bool:
        return self.line >= 1 and self.column >= 0

    def as_tuple(self) -> tuple[int, int]:
        return (self.line, self.column)


class Range(CoverageModel):
    """Start/end pair; branch alternatives may also carry ``skip``.

    ``end`` is ``None`` when the incoming end point was malformed; the start
    then stands in for it.
    """

    start: Point
    end: Optional[Point] = None
    skip: Optional[bool] = None

    def end_or_start(self) -> Point:
        return self.end if self.end is not None else self.start

    def key(self) -> tuple[int, int, int, int]:
        """Return a hashable identity for the covered region."""
        return (*self.start.as_tuple(), *self.end_or_start().as_tuple())

    def max_line(self) -> int:
        return max(self.start.line, self.end_or_start().line)


class FunctionMeta(CoverageModel):
    """Function declaration (``decl``) and body (``loc``) ranges.

    Both ranges stay raw so each can be checked on its own with
    :func:`remapcov.coverage.translate.coerce_range`.
    """

    name: Optional[str] = None
    decl: Optional[Any] = None
    loc: Optional[Any] = None
    line: Optional[int] = None
    skip: Optional[bool] = None


class BranchMeta(CoverageModel):
    """Branch point with one location per alternative.

    Alternatives stay raw here: instrumenters emit empty ``{}`` locations for
    implicit branches, and one bad alternative must not invalidate the rest.
    Use :func:`remapcov.coverage.translate.coerce_range` on each of them.
    """

    type: Optional[str] = None
    loc: Optional[Any] = None
    locations: List[Any] = Field(default_factory=list)
    line: Optional[int] = None
    skip: Optional[bool] = None
