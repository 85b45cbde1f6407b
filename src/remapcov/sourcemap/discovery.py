"""Locate source maps for generated files.

Maps are looked up in three places, mirroring what bundlers and Istanbul emit:
the ``inputSourceMap`` embedded in a coverage entry, a ``sourceMappingURL``
comment carrying an inline ``data:`` URL, and a ``.map`` file referenced by
that comment (or sitting next to the generated file).
"""

from __future__ import annotations

import base64
import binascii
import logging
import re
from pathlib import Path
from typing import Any, List, Mapping, MutableMapping, Optional
from urllib.parse import unquote

from .resolver import MalformedMapError
from .store import MapStore

__all__ = ["extract_source_map", "load_source_map", "register_report_maps"]

LOGGER = logging.getLogger(__name__)

_MAP_COMMENT = re.compile(
    r"(?://[@#][ \t]+sourceMappingURL=([^\s'\"`]+)[ \t]*$)"
    r"|(?:/\*[@#][ \t]+sourceMappingURL=([^*\s]+)[ \t]*\*/[ \t]*$)",
    re.MULTILINE,
)
_URL_PATTERN = re.compile(r"^[A-Za-z][A-Za-z0-9+.-]*://")


def _decode_data_url(url: str) -> Optional[str]:
    header, separator, body = url[len("data:"):].partition(",")
    if not separator:
        return None
    if header.endswith(";base64"):
        try:
            return base64.b64decode(body, validate=False).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as error:
            LOGGER.warning("Ignoring undecodable inline source map: %s", error)
            return None
    return unquote(body)


def _read_map_file(path: Path) -> Optional[str]:
    if not path.is_file():
        return None
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as error:
        LOGGER.warning("Failed to read source map %s: %s", path, error)
        return None


def extract_source_map(
    text: str,
    generated_path: str | Path,
    *,
    inline: bool = True,
    sibling: bool = True,
) -> Optional[str]:
    """Return the raw source map referenced by ``text``, if one can be found.

    The last ``sourceMappingURL`` comment wins. Remote URLs are never fetched.
    """

    generated = Path(generated_path)
    matches = list(_MAP_COMMENT.finditer(text))
    if matches:
        url = (matches[-1].group(1) or matches[-1].group(2) or "").strip()
        if url.startswith("data:"):
            return _decode_data_url(url) if inline else None
        if not sibling or _URL_PATTERN.match(url):
            return None
        return _read_map_file(generated.parent / unquote(url))

    if sibling:
        return _read_map_file(generated.with_name(generated.name + ".map"))
    return None


def load_source_map(
    generated_path: str | Path,
    *,
    inline: bool = True,
    sibling: bool = True,
) -> Optional[str]:
    """Read ``generated_path`` from disk and extract its source map."""

    path = Path(generated_path)
    try:
        text = path.read_text(encoding="utf-8", errors="replace")
    except OSError as error:
        LOGGER.debug("Cannot read generated file %s: %s", path, error)
        return None
    return extract_source_map(text, path, inline=inline, sibling=sibling)


def register_report_maps(
    store: MapStore,
    report: Mapping[str, Any] | MutableMapping[str, Any],
    *,
    inline: bool = True,
    sibling: bool = True,
    embedded: bool = True,
) -> List[str]:
    """Register a source map for every report entry that has one.

    Malformed maps are logged and skipped so the affected files simply stay at
    their generated paths. Returns the registered generated paths.
    """

    registered: List[str] = []
    for generated_path, file_coverage in report.items():
        payload: Any = None
        if embedded and isinstance(file_coverage, Mapping):
            payload = file_coverage.get("inputSourceMap") or None
        if payload is None and (inline or sibling):
            payload = load_source_map(generated_path, inline=inline, sibling=sibling)
        if payload is None:
            continue

        try:
            store.register(generated_path, payload)
        except MalformedMapError as error:
            LOGGER.warning("Ignoring malformed source map for %s: %s", generated_path, error)
            continue
        registered.append(generated_path)

    return registered
