"""Die-cut contour engine."""
from cutcontour.types import (
    RasterImage,
    OccupancyMask,
    PhysicalSize,
    Circle,
    Rectangle,
    RoundedRectangle,
    SpotColorEntry,
    SpotChannel,
    ShapeType,
    StrokeSettings,
    ShapeSettings,
    ContourConfig,
    ContourResult,
    CutContourError,
    EncodingError,
)
from cutcontour.pipeline import ContourPipeline, get_contour_path

__all__ = [
    "RasterImage",
    "OccupancyMask",
    "PhysicalSize",
    "Circle",
    "Rectangle",
    "RoundedRectangle",
    "SpotColorEntry",
    "SpotChannel",
    "ShapeType",
    "StrokeSettings",
    "ShapeSettings",
    "ContourConfig",
    "ContourResult",
    "CutContourError",
    "EncodingError",
    "ContourPipeline",
    "get_contour_path",
]
