"""Raster previews of masks and cut lines."""
import numpy as np
from PIL import Image, ImageDraw

from cutcontour.morphology import round_px
from cutcontour.path_builder import from_primitive
from cutcontour.pdf_export import CONTOUR_BLEED_INCHES
from cutcontour.raster_ingest import to_pil
from cutcontour.refine import expand_path_outward
from cutcontour.types import (
    ContourResult,
    OccupancyMask,
    Polygon,
    RasterImage,
    StrokeSettings,
    hex_to_rgb,
    is_transparent_color,
)

OUTLINE_WIDTH = 2


def render_mask(mask: OccupancyMask, color: str = "#000000") -> np.ndarray:
    """
    Paint occupied cells in ``color`` on a transparent canvas.

    Returns:
        (H, W, 4) uint8 RGBA array
    """
    out = np.zeros((mask.height, mask.width, 4), dtype=np.uint8)
    out[mask.data] = (*hex_to_rgb(color), 255)
    return out


def outline_points(result: ContourResult) -> Polygon:
    """The cut line in pixels: the snapped primitive sampled, or the refined polygon."""
    builder = from_primitive(result.primitive)
    if builder is None:
        return result.polygon
    return builder.flatten(steps=32)[0]


def _draw_polygon(draw: ImageDraw.ImageDraw, points: Polygon, shift: float, **kwargs):
    coords = [(float(x) + shift, float(y) + shift) for x, y in points]
    if len(coords) >= 3:
        draw.polygon(coords, **kwargs)


def render_contour_preview(image: RasterImage, result: ContourResult, stroke: StrokeSettings) -> np.ndarray:
    """
    Composite the design over its background and cut line.

    The canvas is the contour frame padded by the bleed margin. Layers from
    bottom to top: background (bleed-expanded when bleed is on), the
    outline in ``stroke.color``, then the source image at its offset.

    Args:
        image: Image the contour was traced from
        result: Traced contour (pixel frame)
        stroke: Stroke settings

    Returns:
        (H, W, 4) uint8 RGBA array
    """
    pad = round_px(CONTOUR_BLEED_INCHES * result.effective_dpi)
    width = result.mask.width + 2 * pad
    height = result.mask.height + 2 * pad
    canvas = Image.new("RGBA", (width, height), (0, 0, 0, 0))
    draw = ImageDraw.Draw(canvas)

    outline = outline_points(result)

    if not is_transparent_color(stroke.background_color):
        background = expand_path_outward(outline, pad) if stroke.bleed_enabled else outline
        _draw_polygon(draw, background, pad, fill=(*hex_to_rgb(stroke.background_color), 255))

    if not is_transparent_color(stroke.color):
        coords = [(float(x) + pad, float(y) + pad) for x, y in outline]
        if len(coords) >= 2:
            draw.line(coords + coords[:1], fill=(*hex_to_rgb(stroke.color), 255), width=OUTLINE_WIDTH)

    offset = result.mask.offset + pad
    layer = Image.new("RGBA", (width, height), (0, 0, 0, 0))
    layer.paste(to_pil(image), (offset, offset))
    canvas = Image.alpha_composite(canvas, layer)

    return np.array(canvas, dtype=np.uint8)
