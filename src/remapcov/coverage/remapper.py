"""Rewrite coverage reports from generated-code to original-source coordinates."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Hashable, Iterable, List, Mapping, MutableMapping, Optional, Set, Tuple

from pydantic import ValidationError

from ..sourcemap.resolver import MappingResolver
from ..sourcemap.store import MapStore
from .schema import LOCATION_TABLES, BranchMeta, FunctionMeta, Range
from .translate import UNMAPPABLE, coerce_range, translate

__all__ = ["ReportRemapper", "apply_source_maps"]

LOGGER = logging.getLogger(__name__)

CoverageReport = MutableMapping[str, Any]


@dataclass(slots=True)
class _Entry:
    """Translated location payload plus the identity used for merging."""

    location: Dict[str, Any]
    identity: Hashable


def _is_hit_count(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_branch_counts(value: Any) -> bool:
    return isinstance(value, list) and all(_is_hit_count(item) for item in value)


def _sum_counts(left: Any, right: Any) -> Any:
    if _is_hit_count(left) and _is_hit_count(right):
        return left + right
    if _is_branch_counts(left) and _is_branch_counts(right) and len(left) == len(right):
        return [a + b for a, b in zip(left, right)]
    LOGGER.debug("Cannot sum mismatched hit counts %r and %r; keeping the first", left, right)
    return left


def _with_range(raw: Any, location: Range) -> Dict[str, Any]:
    """Copy ``raw`` with its start/end replaced, keeping ``skip`` and other keys."""
    payload = dict(raw) if isinstance(raw, Mapping) else {}
    payload["start"] = location.start.to_json()
    payload["end"] = location.end_or_start().to_json()
    return payload


@dataclass(slots=True)
class _Table:
    """Id arena for one location table and its hit count table."""

    locations: Dict[str, Any] = field(default_factory=dict)
    counts: Dict[str, Any] = field(default_factory=dict)
    _owners: Dict[Hashable, Tuple[str, int]] = field(default_factory=dict)
    _claimed: Set[str] = field(default_factory=set)
    _next_id: int = 0

    def _allocate(self, reserved: Set[str]) -> str:
        while True:
            candidate = str(self._next_id)
            if candidate not in self.locations and candidate not in self._claimed and candidate not in reserved:
                return candidate
            self._next_id += 1

    def merge(
        self,
        contributor: int,
        raw_ids: Iterable[str],
        entries: Mapping[str, _Entry],
        counts: Mapping[str, Any],
    ) -> Dict[str, str]:
        """Add one contributor's entries and return the old id -> new id map.

        ``raw_ids`` are every id the contributor listed, dropped ones
        included. Those ids stay claimed by it, so which of its entries
        survive never changes the ids handed to later contributors. An entry
        whose location identity was already added by a different contributor
        is folded into that entry and its hits are summed.
        """

        reserved = set(raw_ids)
        id_map: Dict[str, str] = {}
        folded: Set[str] = set()
        for entry_id, entry in entries.items():
            owner = self._owners.get(entry.identity)
            if owner is not None and owner[1] != contributor:
                id_map[entry_id] = owner[0]
                folded.add(entry_id)
                continue
            if entry_id in self._claimed or entry_id in self.locations:
                target = self._allocate(reserved)
                reserved.add(target)
            else:
                target = entry_id
            self.locations[target] = entry.location
            id_map[entry_id] = target
            if owner is None:
                self._owners[entry.identity] = (target, contributor)
        self._claimed.update(reserved)

        for entry_id, target in id_map.items():
            if entry_id in folded:
                self.counts[target] = _sum_counts(self.counts[target], counts[entry_id])
            else:
                self.counts[target] = counts[entry_id]
        return id_map


class ReportRemapper:
    """Apply registered source maps to Istanbul-style coverage reports.

    Files whose map lists exactly one original source move to that source's
    path; entries without a valid original position are dropped. Files with
    no map, or whose map lists several sources, are left as they are.
    """

    def __init__(self, store: MapStore, *, enforce_line_bounds: bool = True) -> None:
        self.store = store
        self.enforce_line_bounds = enforce_line_bounds

    def apply(self, report: CoverageReport) -> CoverageReport:
        """Remap ``report`` in place and return it."""

        pending: Dict[str, List[Tuple[str, Mapping[str, Any], MappingResolver]]] = {}
        for generated_path in list(report):
            file_coverage = report[generated_path]
            resolver = self.store.lookup(generated_path)
            if resolver is None or not isinstance(file_coverage, Mapping):
                continue

            sources = resolver.listed_sources()
            if len(sources) != 1:
                LOGGER.debug(
                    "Keeping %s at its generated path; its map lists %d sources",
                    generated_path,
                    len(sources),
                )
                continue

            (destination,) = sources
            pending.setdefault(destination, []).append((generated_path, file_coverage, resolver))
            del report[generated_path]

        for destination, contributors in pending.items():
            seed = report.get(destination)
            merged = self._build_destination(
                destination,
                seed if isinstance(seed, Mapping) else None,
                contributors,
            )
            if merged is None:
                LOGGER.debug("No coverage entries of %s survived remapping", destination)
                report.pop(destination, None)
                continue
            report[destination] = merged

        return report

    def _build_destination(
        self,
        destination: str,
        seed: Optional[Mapping[str, Any]],
        contributors: List[Tuple[str, Mapping[str, Any], MappingResolver]],
    ) -> Optional[Dict[str, Any]]:
        tables = {name: _Table() for name in LOCATION_TABLES}

        if seed is not None:
            for name, count_name in LOCATION_TABLES.items():
                entries = self._seed_entries(_table(seed, name), _table(seed, count_name))
                tables[name].merge(0, _table(seed, name).keys(), entries, _table(seed, count_name))

        for contributor, (generated_path, file_coverage, resolver) in enumerate(contributors, start=1):
            bound = resolver.line_count(destination) if self.enforce_line_bounds else None

            def remap_range(location: Range) -> Optional[Range]:
                result = translate(resolver, location)
                if result is UNMAPPABLE or result.source != destination:
                    return None
                if bound is not None and result.range.max_line() > bound:
                    return None
                return result.range

            translators: Dict[str, Callable[[Any], Optional[_Entry]]] = {
                "statementMap": lambda raw: self._statement_entry(raw, remap_range),
                "fnMap": lambda raw: self._function_entry(raw, remap_range),
                "branchMap": lambda raw: self._branch_entry(raw, remap_range),
            }
            for name, count_name in LOCATION_TABLES.items():
                locations = _table(file_coverage, name)
                counts = _table(file_coverage, count_name)
                entries: Dict[str, _Entry] = {}
                for entry_id, raw in locations.items():
                    if not _has_valid_count(name, counts, entry_id):
                        continue
                    entry = translators[name](raw)
                    if entry is not None:
                        entries[entry_id] = entry
                dropped = len(locations) - len(entries)
                if dropped:
                    LOGGER.debug("Dropped %d of %d %s entries from %s", dropped, len(locations), name, generated_path)
                id_map = tables[name].merge(contributor, locations.keys(), entries, counts)
                renumbered = {old: new for old, new in id_map.items() if old != new}
                if renumbered:
                    LOGGER.debug("Renumbered %s ids from %s: %s", name, generated_path, renumbered)

        if seed is None and not any(table.locations for table in tables.values()):
            return None

        base = seed if seed is not None else contributors[0][1]
        merged: Dict[str, Any] = dict(base)
        merged.pop("inputSourceMap", None)
        merged["path"] = destination
        for name, count_name in LOCATION_TABLES.items():
            merged[name] = tables[name].locations
            merged[count_name] = tables[name].counts
        return merged

    @staticmethod
    def _seed_entries(locations: Mapping[str, Any], counts: Mapping[str, Any]) -> Dict[str, _Entry]:
        entries: Dict[str, _Entry] = {}
        for entry_id, raw in locations.items():
            if entry_id not in counts:
                continue
            entries[entry_id] = _Entry(location=raw, identity=_seed_identity(entry_id, raw))
        return entries

    @staticmethod
    def _statement_entry(raw: Any, remap_range: Callable[[Range], Optional[Range]]) -> Optional[_Entry]:
        location = coerce_range(raw)
        if location is None:
            return None
        translated = remap_range(location)
        if translated is None:
            return None
        return _Entry(location=_with_range(raw, translated), identity=("statement", translated.key()))

    @staticmethod
    def _function_entry(raw: Any, remap_range: Callable[[Range], Optional[Range]]) -> Optional[_Entry]:
        if not isinstance(raw, Mapping):
            return None
        try:
            meta = FunctionMeta.model_validate(dict(raw))
        except ValidationError:
            return None

        decl_range = coerce_range(meta.decl) if meta.decl is not None else None
        loc_range = coerce_range(meta.loc) if meta.loc is not None else None
        declared = decl_range if meta.decl is not None else loc_range
        if declared is None:
            return None
        declaration = remap_range(declared)
        if declaration is None:
            return None
        body = None
        if meta.decl is not None and loc_range is not None:
            body = remap_range(loc_range)
        if body is None:
            body = declaration

        payload = dict(raw)
        if meta.decl is not None:
            payload["decl"] = _with_range(meta.decl, declaration)
        payload["loc"] = _with_range(meta.loc, body)
        if "line" in payload:
            payload["line"] = declaration.start.line
        return _Entry(location=payload, identity=("function", declaration.key(), body.key()))

    @staticmethod
    def _branch_entry(raw: Any, remap_range: Callable[[Range], Optional[Range]]) -> Optional[_Entry]:
        if not isinstance(raw, Mapping):
            return None
        try:
            meta = BranchMeta.model_validate(dict(raw))
        except ValidationError:
            return None

        alternatives: List[Optional[Range]] = []
        for alternative in meta.locations:
            location = coerce_range(alternative)
            alternatives.append(remap_range(location) if location is not None else None)

        loc_range = coerce_range(meta.loc) if meta.loc is not None else None
        translated_loc = remap_range(loc_range) if loc_range is not None else None
        anchor = next((item for item in alternatives if item is not None), translated_loc)
        if anchor is None:
            return None

        resolved = [item if item is not None else anchor for item in alternatives]
        payload = dict(raw)
        payload["locations"] = [
            _with_range(alternative, location) for alternative, location in zip(meta.locations, resolved)
        ]
        if "loc" in payload:
            payload["loc"] = _with_range(raw["loc"], translated_loc or anchor)
        if "line" in payload:
            payload["line"] = (translated_loc or anchor).start.line
        identity = ("branch", meta.type, tuple(location.key() for location in resolved))
        return _Entry(location=payload, identity=identity)


def _table(file_coverage: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    value = file_coverage.get(name)
    return value if isinstance(value, Mapping) else {}


def _has_valid_count(table_name: str, counts: Mapping[str, Any], entry_id: str) -> bool:
    if entry_id not in counts:
        return False
    if table_name == "branchMap":
        return _is_branch_counts(counts[entry_id])
    return _is_hit_count(counts[entry_id])


def _seed_identity(entry_id: str, raw: Any) -> Hashable:
    """Identity of an entry already expressed in original coordinates."""
    location = coerce_range(raw)
    if location is not None:
        return ("statement", location.key())
    if isinstance(raw, Mapping):
        loc = coerce_range(raw.get("loc"))
        if "locations" in raw and isinstance(raw["locations"], list):
            keys = []
            for alternative in raw["locations"]:
                alt_range = coerce_range(alternative)
                if alt_range is None:
                    break
                keys.append(alt_range.key())
            else:
                return ("branch", raw.get("type"), tuple(keys))
        elif loc is not None:
            decl = coerce_range(raw.get("decl")) or loc
            return ("function", decl.key(), loc.key())
    return ("opaque", entry_id)


def apply_source_maps(report: CoverageReport, store: MapStore, *, enforce_line_bounds: bool = True) -> CoverageReport:
    """Remap ``report`` in place using the maps registered in ``store``."""

    return ReportRemapper(store, enforce_line_bounds=enforce_line_bounds).apply(report)
