from __future__ import annotations

import copy
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from remapcov.sourcemap.store import MapStore  # noqa: E402

_BASE64 = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789+/"

# (generated column,) or (generated column, source index, original line (1-based), original column)
Segment = Tuple[int, ...]


def _encode_vlq(value: int) -> str:
    vlq = ((-value) << 1) | 1 if value < 0 else value << 1
    encoded = ""
    while True:
        digit = vlq & 0b11111
        vlq >>= 5
        if vlq:
            digit |= 0b100000
        encoded += _BASE64[digit]
        if not vlq:
            return encoded


def encode_mappings(lines: Sequence[Sequence[Segment]]) -> str:
    """Encode per-line segments into a ``mappings`` string (test-only)."""

    previous = [0, 0, 0]
    rendered: List[str] = []
    for segments in lines:
        generated_column = 0
        parts: List[str] = []
        for segment in segments:
            fields = [segment[0] - generated_column]
            generated_column = segment[0]
            if len(segment) == 4:
                current = [segment[1], segment[2] - 1, segment[3]]
                fields.extend(now - before for now, before in zip(current, previous))
                previous = current
            parts.append("".join(_encode_vlq(value) for value in fields))
        rendered.append(",".join(parts))
    return ";".join(rendered)


def build_map(
    sources: Sequence[str],
    lines: Sequence[Sequence[Segment]],
    *,
    contents: Optional[Sequence[Optional[str]]] = None,
    source_root: Optional[str] = None,
) -> Dict[str, Any]:
    """Return a version 3 source map document."""

    payload: Dict[str, Any] = {
        "version": 3,
        "sources": list(sources),
        "names": [],
        "mappings": encode_mappings(lines),
    }
    if contents is not None:
        payload["sourcesContent"] = list(contents)
    if source_root is not None:
        payload["sourceRoot"] = source_root
    return payload


def _range(start_line: int, start_column: int, end_line: int, end_column: int, **extra: Any) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "start": {"line": start_line, "column": start_column},
        "end": {"line": end_line, "column": end_column},
    }
    payload.update(extra)
    return payload


INLINE_ORIG_CONTENT = (
    "function alpha (x) {\n"
    "  if (x) return 1\n"
    "  return beta()\n"
    "  gamma()\n"
    "}\n"
    "function gamma () {}\n"
)

INLINE_MAP = build_map(
    ["../src/inline.orig"],
    [
        [(0, 0, 1, 0), (10, 0, 1, 10)],
        [(0, 0, 2, 2), (4, 0, 2, 6)],
        [],
        [(0,), (6, 0, 4, 0)],
        [(0, 0, 5, 0)],
        [(0, 0, 6, 0)],
        [(0, 0, 9, 0)],
    ],
    contents=[INLINE_ORIG_CONTENT],
)

BUNDLE_MAP = build_map(
    ["a.orig", "b.orig"],
    [
        [(0, 0, 1, 0)],
        [(0, 1, 1, 0)],
    ],
)

_BASE_REPORT: Dict[str, Any] = {
    "/project/dist/none.js": {
        "path": "/project/dist/none.js",
        "statementMap": {"0": _range(1, 0, 1, 12), "1": _range(2, 0, 2, 8)},
        "fnMap": {"0": {"name": "noop", "decl": _range(1, 9, 1, 13), "loc": _range(1, 0, 3, 1), "line": 1}},
        "branchMap": {
            "0": {"type": "if", "line": 2, "loc": _range(2, 0, 2, 8), "locations": [_range(2, 0, 2, 8), _range(2, 0, 2, 8)]},
        },
        "s": {"0": 1, "1": 0},
        "f": {"0": 1},
        "b": {"0": [0, 1]},
    },
    "/project/dist/inline.js": {
        "path": "/project/dist/inline.js",
        "statementMap": {
            "0": _range(1, 0, 1, 14),
            "1": _range(2, 0, 2, 8),
            "2": _range(3, 0, 3, 5),
            "3": _range(4, 2, 4, 9),
            "4": _range(4, 6, 4, 12),
            "5": _range(5, 0, 5, 10, skip=True),
            "6": _range(7, 0, 7, 3),
        },
        "fnMap": {
            "0": {"name": "alpha", "decl": _range(1, 0, 1, 14), "loc": _range(1, 0, 2, 8), "line": 1},
            "1": {"name": "beta", "decl": _range(3, 0, 3, 4), "loc": _range(3, 0, 5, 1), "line": 3},
            "2": {"name": "gamma", "decl": _range(5, 0, 5, 5), "loc": _range(5, 0, 6, 1), "line": 5, "skip": True},
        },
        "branchMap": {
            "0": {
                "type": "if",
                "line": 2,
                "loc": _range(2, 0, 2, 8),
                "locations": [_range(2, 0, 2, 8), _range(3, 0, 3, 5)],
            },
            "1": {
                "type": "cond-expr",
                "line": 3,
                "locations": [_range(3, 0, 3, 2), _range(3, 3, 3, 5)],
            },
            "2": {
                "type": "if",
                "line": 6,
                "locations": [_range(6, 0, 6, 4), _range(7, 0, 7, 2, skip=True)],
            },
        },
        "s": {"0": 1, "1": 2, "2": 3, "3": 0, "4": 5, "5": 0, "6": 1},
        "f": {"0": 4, "1": 0, "2": 0},
        "b": {"0": [1, 0], "1": [2, 2], "2": [0, 3]},
    },
    "/project/dist/bundle.js": {
        "path": "/project/dist/bundle.js",
        "statementMap": {"0": _range(1, 0, 1, 5), "1": _range(2, 0, 2, 5)},
        "fnMap": {},
        "branchMap": {},
        "s": {"0": 1, "1": 1},
        "f": {},
        "b": {},
    },
}


@dataclass(slots=True)
class CoverageFixtures:
    """Report and source maps shared by the remapping tests."""

    store: MapStore = field(default_factory=MapStore)
    none_js: str = "/project/dist/none.js"
    inline_js: str = "/project/dist/inline.js"
    inline_orig: str = "/project/src/inline.orig"
    inline_max_line: int = len(INLINE_ORIG_CONTENT.rstrip().split("\n"))
    bundle_js: str = "/project/dist/bundle.js"

    def report(self) -> Dict[str, Any]:
        """Return a fresh deep copy of the sample report."""
        return copy.deepcopy(_BASE_REPORT)


@pytest.fixture()
def coverage_fixtures() -> CoverageFixtures:
    fixtures = CoverageFixtures()
    fixtures.store.register(fixtures.inline_js, copy.deepcopy(INLINE_MAP))
    fixtures.store.register(fixtures.bundle_js, copy.deepcopy(BUNDLE_MAP))
    return fixtures


@pytest.fixture()
def map_builder() -> Callable[..., Dict[str, Any]]:
    return build_map


@pytest.fixture()
def inline_map() -> Dict[str, Any]:
    return copy.deepcopy(INLINE_MAP)
