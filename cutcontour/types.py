"""Core types for the cut-contour pipeline."""
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple, Union

import numpy as np

# Type aliases
Polygon = np.ndarray  # (N, 2) float64, columns x, y
RGB = Tuple[int, int, int]
CMYK = Tuple[float, float, float, float]

TRANSPARENT = "transparent"
HOLOGRAPHIC = "holographic"

SMOOTHING_LEVELS = ("none", "light", "standard", "strong")
GAP_BRIDGES = ("bulge", "midpoint")


@dataclass(frozen=True)
class RasterImage:
    """Decoded RGBA image. Treated as read-only by the engine."""
    pixels: np.ndarray  # (H, W, 4) uint8

    def __post_init__(self):
        if self.pixels.ndim != 3 or self.pixels.shape[2] != 4:
            raise ValueError(f"Expected (H, W, 4) pixels, got {self.pixels.shape}")
        if self.pixels.dtype != np.uint8:
            raise ValueError(f"Expected uint8 pixels, got {self.pixels.dtype}")

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def alpha(self) -> np.ndarray:
        return self.pixels[..., 3]

    @property
    def rgb(self) -> np.ndarray:
        return self.pixels[..., :3]


@dataclass
class OccupancyMask:
    """Binary occupancy grid.

    ``offset`` counts the padding pixels between the mask origin and the
    source image origin; dilation adds to it and erosion subtracts from it.
    """
    data: np.ndarray  # (H, W) bool
    dpi: float = 0.0
    offset: int = 0

    def __post_init__(self):
        self.data = np.asarray(self.data, dtype=bool)
        if self.data.ndim != 2:
            raise ValueError(f"Expected 2D mask, got {self.data.ndim}D")

    @property
    def width(self) -> int:
        return int(self.data.shape[1])

    @property
    def height(self) -> int:
        return int(self.data.shape[0])

    @property
    def count(self) -> int:
        return int(np.count_nonzero(self.data))

    @property
    def is_empty(self) -> bool:
        return not self.data.any()

    def with_data(self, data: np.ndarray, offset: Optional[int] = None) -> "OccupancyMask":
        """Copy of this mask with new data (and optionally a new offset)."""
        return OccupancyMask(
            data=data,
            dpi=self.dpi,
            offset=self.offset if offset is None else offset,
        )


@dataclass(frozen=True)
class PhysicalSize:
    """Target physical size of the artwork in inches."""
    width_inches: float
    height_inches: float

    def __post_init__(self):
        if self.width_inches <= 0 or self.height_inches <= 0:
            raise ValueError(
                f"Physical size must be positive, got "
                f"{self.width_inches}x{self.height_inches}"
            )

    def effective_dpi(self, image: RasterImage) -> float:
        """Pixels per inch implied by the image width and the target width."""
        return image.width / self.width_inches


@dataclass(frozen=True)
class Circle:
    """Exact circle primitive."""
    cx: float
    cy: float
    radius: float


@dataclass(frozen=True, eq=False)
class Rectangle:
    """Exact rectangle primitive given by 4 ordered corners."""
    corners: np.ndarray  # (4, 2)


@dataclass(frozen=True, eq=False)
class RoundedRectangle:
    """Rectangle with circular corner arcs of a common radius."""
    corners: np.ndarray  # (4, 2), corners of the enclosing box
    radius: float


# None means "use the raw refined polygon"
SnappedPrimitive = Optional[Union[Circle, Rectangle, RoundedRectangle]]


@dataclass
class SpotColorEntry:
    """One source color and the spot channels it participates in."""
    hex: str
    rgb: Optional[RGB] = None
    spot_white: bool = False
    spot_gloss: bool = False
    white_name: Optional[str] = None
    gloss_name: Optional[str] = None

    def __post_init__(self):
        if self.rgb is None:
            self.rgb = hex_to_rgb(self.hex)


@dataclass
class SpotChannel:
    """A named Separation ink channel and the source colors mapped to it."""
    name: str
    cmyk: CMYK
    colors: List[RGB] = field(default_factory=list)


class ShapeType(Enum):
    """Cut shapes for shape mode."""
    SQUARE = "square"
    RECTANGLE = "rectangle"
    CIRCLE = "circle"
    OVAL = "oval"
    ROUNDED_SQUARE = "rounded-square"
    ROUNDED_RECTANGLE = "rounded-rectangle"


@dataclass
class StrokeSettings:
    """Contour outline settings (physical units are inches)."""
    width: float = 0.0
    color: str = "#FFFFFF"
    background_color: str = "#FFFFFF"
    alpha_threshold: int = 10
    close_small_gaps: bool = False
    close_big_gaps: bool = False
    bleed_enabled: bool = False
    filter_artifacts: bool = False

    def __post_init__(self):
        if self.width < 0:
            raise ValueError(f"Stroke width must be >= 0, got {self.width}")
        if not 0 <= self.alpha_threshold <= 255:
            raise ValueError(f"alpha_threshold must be in [0, 255], got {self.alpha_threshold}")


@dataclass
class ShapeSettings:
    """Shape-mode settings (physical units are inches)."""
    type: ShapeType = ShapeType.SQUARE
    offset: float = 0.125
    fill_color: str = "#FFFFFF"
    stroke_enabled: bool = False
    stroke_width: float = 0.0
    stroke_color: str = "#000000"
    bleed_enabled: bool = False
    bleed_color: str = "#FFFFFF"
    corner_radius: float = 0.25

    def __post_init__(self):
        if isinstance(self.type, str):
            self.type = ShapeType(self.type)
        if self.offset < 0:
            raise ValueError(f"Shape offset must be >= 0, got {self.offset}")


@dataclass
class ContourConfig:
    """Flags for the single parameterized contour pipeline."""
    # Morphology
    unify: bool = True
    unify_radius: float = 0.05  # inches

    # Path refinement
    smoothing: str = "standard"
    remove_spikes: bool = True
    simplify_epsilon: float = 1.0  # pixels
    collinear_tolerance: float = 2.0  # degrees
    gap_bridge: str = "bulge"

    # Primitive snapping
    snap_primitives: bool = True

    # Performance guards
    max_dimension: int = 2000
    preview_max_dimension: int = 800

    def __post_init__(self):
        if self.smoothing not in SMOOTHING_LEVELS:
            raise ValueError(f"Unknown smoothing level: {self.smoothing}")
        if self.gap_bridge not in GAP_BRIDGES:
            raise ValueError(f"Unknown gap bridge variant: {self.gap_bridge}")
        if self.unify_radius < 0:
            raise ValueError(f"unify_radius must be >= 0, got {self.unify_radius}")


@dataclass
class ContourResult:
    """Traced, refined and (optionally) snapped cut-line."""
    polygon: Polygon  # pixels, in the final mask frame
    path_inches: Polygon  # inches, Y measured from the bottom
    primitive: SnappedPrimitive
    primitive_inches: SnappedPrimitive
    width_inches: float
    height_inches: float
    image_offset_x: float
    image_offset_y: float
    effective_dpi: float
    mask: OccupancyMask


def hex_to_rgb(value: str) -> RGB:
    """Parse ``#rrggbb`` into an RGB tuple.

    Raises:
        ValueError: If the string is not a 6-digit hex color
    """
    text = value.lstrip("#")
    if len(text) != 6:
        raise ValueError(f"Invalid hex color: {value!r}")
    return (int(text[0:2], 16), int(text[2:4], 16), int(text[4:6], 16))


def is_transparent_color(value: str) -> bool:
    """True for the sentinels that mean 'paint nothing'."""
    return value in (TRANSPARENT, HOLOGRAPHIC)


class CutContourError(Exception):
    """Base exception for cut-contour errors."""
    pass


class EncodingError(CutContourError):
    """Raised when an image or document cannot be decoded or encoded."""
    pass
