"""Spot-color layers: group source colors into ink channels and trace their regions."""
import logging
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from cutcontour.mask_builder import build_color_mask
from cutcontour.morphology import dilate
from cutcontour.raster_ingest import resample
from cutcontour.refine import douglas_peucker, smooth_path
from cutcontour.tracer import trace_regions
from cutcontour.types import OccupancyMask, Polygon, RasterImage, SpotChannel, SpotColorEntry

logger = logging.getLogger(__name__)

WHITE_CHANNEL = "RDG_WHITE"
GLOSS_CHANNEL = "RDG_GLOSS"

# Stand-in inks recognized by the separation workflow
WHITE_CMYK = (0.0, 0.0, 0.0, 1.0)
GLOSS_CMYK = (0.0, 1.0, 0.0, 0.0)

SPOT_DPI = 150
COLOR_TOLERANCE = 50.0
MIN_ALPHA = 128
MIN_REGION_POINTS = 10
SMOOTH_WINDOW = 3
SIMPLIFY_INCHES = 0.005


def group_channels(entries: Sequence[SpotColorEntry]) -> List[SpotChannel]:
    """
    Group spot-color entries into named ink channels.

    Entries flagged white go to ``RDG_WHITE`` and entries flagged gloss to
    ``RDG_GLOSS`` unless the entry names its own channel. An entry can feed
    both. White channels come first, each in order of first appearance.

    Args:
        entries: Source colors with their spot flags

    Returns:
        List of SpotChannel
    """
    white: Dict[str, SpotChannel] = {}
    gloss: Dict[str, SpotChannel] = {}

    for entry in entries:
        if entry.spot_white:
            name = entry.white_name or WHITE_CHANNEL
            white.setdefault(name, SpotChannel(name=name, cmyk=WHITE_CMYK)).colors.append(entry.rgb)
        if entry.spot_gloss:
            name = entry.gloss_name or GLOSS_CHANNEL
            gloss.setdefault(name, SpotChannel(name=name, cmyk=GLOSS_CMYK)).colors.append(entry.rgb)

    return list(white.values()) + list(gloss.values())


def _channel_regions(image: RasterImage, channel: SpotChannel, dpi: float) -> List[Polygon]:
    matched = build_color_mask(image, channel.colors, tolerance=COLOR_TOLERANCE, min_alpha=MIN_ALPHA)
    if not matched.any():
        return []

    grown = dilate(OccupancyMask(data=matched, dpi=dpi), 1)
    epsilon = SIMPLIFY_INCHES * dpi

    regions = []
    for path in trace_regions(grown, min_points=MIN_REGION_POINTS, holes=True):
        path = douglas_peucker(smooth_path(path, SMOOTH_WINDOW), epsilon)
        if len(path) < 3:
            continue
        regions.append((path - grown.offset) / dpi)
    return regions


def trace_spot_regions(
    image: RasterImage,
    entries: Sequence[SpotColorEntry],
    width_inches: float,
    height_inches: float,
    dpi: float = SPOT_DPI,
    channels: Optional[List[SpotChannel]] = None,
) -> List[Tuple[SpotChannel, List[Polygon]]]:
    """
    Trace the closed regions covered by each spot channel's colors.

    The image is resampled to ``dpi`` over the physical size, matched
    against each channel's colors, grown by one pixel, traced per region
    (outer boundary plus holes, for even-odd filling), smoothed and
    simplified at 0.005".

    Args:
        image: Source image
        entries: Spot-color entries
        width_inches: Physical width of the image
        height_inches: Physical height of the image
        dpi: Tracing resolution
        channels: Pre-grouped channels (grouped from ``entries`` if None)

    Returns:
        List of (channel, regions) with region coordinates in inches,
        y measured downward from the image top. Channels with no matching
        pixels are omitted.
    """
    channels = channels if channels is not None else group_channels(entries)
    if not channels:
        return []

    width = max(1, int(round(width_inches * dpi)))
    height = max(1, int(round(height_inches * dpi)))
    scaled = resample(image, width, height)
    # Actual pixels per inch after rounding
    dpi_x = width / width_inches
    dpi_y = height / height_inches

    layers = []
    for channel in channels:
        regions = _channel_regions(scaled, channel, dpi_x)
        if dpi_y != dpi_x:
            regions = [r * np.array([1.0, dpi_x / dpi_y]) for r in regions]
        if regions:
            layers.append((channel, regions))
        logger.debug(f"Spot channel {channel.name}: {len(regions)} region(s)")

    return layers
