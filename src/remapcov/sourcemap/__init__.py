"""Source map decoding, storage and discovery."""

from .discovery import extract_source_map, register_report_maps
from .resolver import MalformedMapError, MappingResolver, OriginalPosition, SourceMapResolver
from .store import MapStore

__all__ = [
    "MalformedMapError",
    "MapStore",
    "MappingResolver",
    "OriginalPosition",
    "SourceMapResolver",
    "extract_source_map",
    "register_report_maps",
]
