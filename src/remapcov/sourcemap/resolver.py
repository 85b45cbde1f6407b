"""Queryable view over a decoded version 3 source map."""

from __future__ import annotations

import json
import os
import re
from bisect import bisect_right
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Protocol, Set, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .vlq import VLQDecodeError, decode_segment

__all__ = [
    "MalformedMapError",
    "MappingResolver",
    "OriginalPosition",
    "RawSourceMap",
    "SourceMapResolver",
]

_URL_PATTERN = re.compile(r"^[A-Za-z][A-Za-z0-9+.-]*://")
_LINE_BREAK = re.compile(r"\r?\n")


class MalformedMapError(ValueError):
    """Raised when a source map payload cannot be parsed."""


@dataclass(frozen=True, slots=True)
class OriginalPosition:
    """Position in an original source file (1-based line, 0-based column)."""

    source: str
    line: int
    column: int


class MappingResolver(Protocol):
    """Interface the remapper expects from a parsed source map."""

    def resolve(self, line: int, column: int) -> Optional[OriginalPosition]:
        ...

    def listed_sources(self) -> Set[str]:
        ...

    def line_count(self, source: str) -> Optional[int]:
        ...


class RawSourceMap(BaseModel):
    """Subset of the source map document consumed by the resolver."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    version: int
    sources: List[Optional[str]]
    mappings: str
    names: List[Any] = Field(default_factory=list)
    file: Optional[str] = None
    source_root: Optional[str] = Field(default=None, alias="sourceRoot")
    sources_content: Optional[List[Optional[str]]] = Field(default=None, alias="sourcesContent")


# (original source index, original line 0-based, original column) or None for
# segments that carry only a generated column.
_Target = Optional[Tuple[int, int, int]]


class SourceMapResolver:
    """Resolve generated positions to original positions for one generated file."""

    def __init__(self, raw: RawSourceMap, generated_path: str = "") -> None:
        if raw.version != 3:
            raise MalformedMapError(f"Unsupported source map version: {raw.version}")

        self.generated_path = generated_path
        self._sources: List[Optional[str]] = [
            _resolve_source_path(generated_path, raw.source_root, source) if source is not None else None
            for source in raw.sources
        ]
        self._line_counts: Dict[str, int] = {}
        for index, content in enumerate(raw.sources_content or []):
            if index >= len(self._sources) or content is None:
                continue
            resolved = self._sources[index]
            if resolved is not None:
                self._line_counts[resolved] = len(_LINE_BREAK.split(content.rstrip()))

        self._lines = _decode_mappings(raw.mappings, len(self._sources))

    @classmethod
    def from_payload(cls, payload: Any, generated_path: str = "") -> "SourceMapResolver":
        """Parse a mapping, JSON string or JSON bytes into a resolver."""

        if isinstance(payload, (bytes, bytearray)):
            try:
                payload = payload.decode("utf-8")
            except UnicodeDecodeError as error:
                raise MalformedMapError(f"Source map is not valid UTF-8: {error}") from error
        if isinstance(payload, str):
            try:
                payload = json.loads(_strip_xssi_prefix(payload))
            except json.JSONDecodeError as error:
                raise MalformedMapError(f"Source map is not valid JSON: {error}") from error
        if not isinstance(payload, Mapping):
            raise MalformedMapError("Source map must be a JSON object.")
        if "sections" in payload:
            raise MalformedMapError("Indexed source maps (with 'sections') are not supported.")

        try:
            raw = RawSourceMap.model_validate(dict(payload))
        except ValidationError as error:
            raise MalformedMapError(f"Invalid source map: {error}") from error
        return cls(raw, generated_path)

    def resolve(self, line: int, column: int) -> Optional[OriginalPosition]:
        """Return the original position for a generated ``line``/``column``.

        Lookup uses the greatest lower bound on the generated line: the last
        segment starting at or before ``column``. Invalid coordinates resolve
        to ``None``.
        """

        if not isinstance(line, int) or not isinstance(column, int):
            return None
        if line < 1 or column < 0 or line > len(self._lines):
            return None

        columns, targets = self._lines[line - 1]
        index = bisect_right(columns, column) - 1
        if index < 0:
            return None
        target = targets[index]
        if target is None:
            return None

        source_index, original_line, original_column = target
        source = self._sources[source_index]
        if source is None:
            return None
        return OriginalPosition(source=source, line=original_line + 1, column=original_column)

    def listed_sources(self) -> Set[str]:
        """Return the resolved original sources referenced by the map."""

        return {source for source in self._sources if source is not None}

    def line_count(self, source: str) -> Optional[int]:
        """Return the number of lines in ``source`` when its content is embedded."""

        return self._line_counts.get(source)


def _strip_xssi_prefix(text: str) -> str:
    # Some tools prefix maps with ")]}'" to prevent script inclusion.
    if text.startswith(")]}'"):
        _, _, remainder = text.partition("\n")
        return remainder
    return text


def _is_url(value: str) -> bool:
    return bool(_URL_PATTERN.match(value))


def _resolve_source_path(generated_path: str, source_root: Optional[str], source: str) -> str:
    candidate = source
    if source_root and not _is_url(source) and not os.path.isabs(source):
        if _is_url(source_root):
            candidate = source_root.rstrip("/") + "/" + source
        else:
            candidate = os.path.join(source_root, source)

    if candidate.startswith("file://"):
        candidate = candidate[len("file://"):]
    if _is_url(candidate):
        return candidate
    if os.path.isabs(candidate):
        return os.path.normpath(candidate)

    base = os.path.dirname(generated_path)
    if base:
        return os.path.normpath(os.path.join(base, candidate))
    return os.path.normpath(candidate)


def _decode_mappings(mappings: str, source_count: int) -> List[Tuple[List[int], List[_Target]]]:
    """Decode ``mappings`` into per-line sorted columns and their targets."""

    lines: List[Tuple[List[int], List[_Target]]] = []
    source_index = 0
    original_line = 0
    original_column = 0

    for line_number, line_text in enumerate(mappings.split(";"), start=1):
        generated_column = 0
        segments: List[Tuple[int, _Target]] = []
        for segment in line_text.split(","):
            if not segment:
                continue
            try:
                fields = decode_segment(segment)
            except VLQDecodeError as error:
                raise MalformedMapError(f"Line {line_number}: {error}") from error

            if len(fields) not in (1, 4, 5):
                raise MalformedMapError(
                    f"Line {line_number}: segment {segment!r} has {len(fields)} fields; expected 1, 4 or 5."
                )

            generated_column += fields[0]
            if generated_column < 0:
                raise MalformedMapError(f"Line {line_number}: negative generated column in {segment!r}.")
            if len(fields) == 1:
                segments.append((generated_column, None))
                continue

            source_index += fields[1]
            original_line += fields[2]
            original_column += fields[3]
            if not 0 <= source_index < source_count:
                raise MalformedMapError(f"Line {line_number}: source index {source_index} is out of range.")
            if original_line < 0 or original_column < 0:
                raise MalformedMapError(f"Line {line_number}: negative original position in {segment!r}.")
            segments.append((generated_column, (source_index, original_line, original_column)))

        segments.sort(key=lambda item: item[0])
        lines.append(([column for column, _ in segments], [target for _, target in segments]))

    return lines
