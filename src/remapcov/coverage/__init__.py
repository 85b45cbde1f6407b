"""Coverage report models and the source-map remapper."""

from .remapper import ReportRemapper, apply_source_maps
from .schema import BranchMeta, FunctionMeta, Point, Range
from .translate import UNMAPPABLE, TranslatedRange, Unmappable, coerce_range, translate, translate_point

__all__ = [
    "BranchMeta",
    "FunctionMeta",
    "Point",
    "Range",
    "ReportRemapper",
    "TranslatedRange",
    "UNMAPPABLE",
    "Unmappable",
    "apply_source_maps",
    "coerce_range",
    "translate",
    "translate_point",
]
