"""Remap instrumented code coverage back to original sources through source maps."""

from .coverage import ReportRemapper, TranslatedRange, Unmappable, UNMAPPABLE, apply_source_maps, translate
from .sourcemap import MalformedMapError, MapStore, MappingResolver, SourceMapResolver, register_report_maps

__all__ = [
    "MalformedMapError",
    "MapStore",
    "MappingResolver",
    "ReportRemapper",
    "SourceMapResolver",
    "TranslatedRange",
    "UNMAPPABLE",
    "Unmappable",
    "apply_source_maps",
    "register_report_maps",
    "translate",
]

__version__ = "0.1.0"
