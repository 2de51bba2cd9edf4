"""Vector PDF export with Separation (spot) color channels.

Pages are built with reportlab. Every spot channel (CutContour, white,
gloss) is registered as a Separation color space whose tint transform is
a linear Type 2 function from no ink to a fixed CMYK target, so RIP
software can pick the channel out by name.
"""
import base64
import io
import logging
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
from PIL import Image, ImageChops, ImageDraw
from reportlab.lib.colors import CMYKColorSep
from reportlab.lib.utils import ImageReader
from reportlab.pdfbase.pdfdoc import PDFArrayCompact, PDFExponentialFunction, PDFName
from reportlab.pdfgen import canvas as pdf_canvas
from reportlab.pdfgen.canvas import FILL_EVEN_ODD, FILL_NON_ZERO

from cutcontour import path_builder
from cutcontour.path_builder import PathBuilder
from cutcontour.raster_ingest import to_pil
from cutcontour.refine import expand_path_outward
from cutcontour.spot_colors import trace_spot_regions
from cutcontour.types import (
    CMYK,
    Circle,
    ContourResult,
    EncodingError,
    PhysicalSize,
    Polygon,
    RasterImage,
    Rectangle,
    RoundedRectangle,
    ShapeSettings,
    ShapeType,
    SnappedPrimitive,
    SpotChannel,
    SpotColorEntry,
    StrokeSettings,
    hex_to_rgb,
    is_transparent_color,
)

logger = logging.getLogger(__name__)

POINTS_PER_INCH = 72.0
CONTOUR_BLEED_INCHES = 0.04
SHAPE_BLEED_INCHES = 0.10
CUT_LINE_WIDTH = 0.5  # points

CUT_CONTOUR = "CutContour"
CUT_CONTOUR_CMYK = (0.0, 1.0, 0.0, 0.0)

MIN_SHAPE_ASPECT = 1.2

SpotLayers = List[Tuple[SpotChannel, List[Polygon]]]


def register_separation(canvas: pdf_canvas.Canvas, name: str, cmyk: CMYK) -> CMYKColorSep:
    """
    Register a Separation color space on the canvas's document.

    The color space is
    ``[/Separation /name /DeviceCMYK << /FunctionType 2 /Domain [0 1] /C0 [0 0 0 0] /C1 [c m y k] /N 1 >>]``.
    reportlab reuses the registered entry when the returned color is set,
    emitting ``/name CS 1 SCN`` for strokes and ``/name cs 1 scn`` for fills.

    Args:
        canvas: Target canvas
        name: Channel (ink) name
        cmyk: CMYK target at full tint

    Returns:
        Color to pass to setStrokeColor / setFillColor
    """
    color = CMYKColorSep(*cmyk, spotName=name, density=1)
    doc = canvas._doc
    key = PDFName(name)[1:]
    if key not in doc.idToObject:
        tint = PDFExponentialFunction(
            C0=[0, 0, 0, 0],
            C1=[float(v) for v in cmyk],
            N=1,
            Domain=PDFArrayCompact((0, 1)),
        )
        doc.Reference(
            PDFArrayCompact((PDFName("Separation"), PDFName(name), PDFName("DeviceCMYK"), tint)),
            key,
        )
    return color


def to_base64(data: bytes) -> str:
    """Base64 text of a document, for transport."""
    return base64.b64encode(data).decode("ascii")


def _rgb_fill(canvas: pdf_canvas.Canvas, hex_color: str):
    r, g, b = hex_to_rgb(hex_color)
    canvas.setFillColorRGB(r / 255.0, g / 255.0, b / 255.0)


def _draw(canvas: pdf_canvas.Canvas, builder: PathBuilder, stroke: bool = False, fill: bool = False,
          even_odd: bool = False):
    path = builder.replay(canvas.beginPath())
    canvas.drawPath(path, stroke=int(stroke), fill=int(fill), fillMode=FILL_EVEN_ODD if even_odd else FILL_NON_ZERO)


def _new_canvas(buffer: io.BytesIO, page_size: Tuple[float, float], compress: bool,
                metadata: Optional[Dict[str, str]]) -> pdf_canvas.Canvas:
    canvas = pdf_canvas.Canvas(buffer, pagesize=page_size, pageCompression=1 if compress else 0)
    metadata = metadata or {}
    canvas.setTitle(metadata.get("title", "Cut contour"))
    if "author" in metadata:
        canvas.setAuthor(metadata["author"])
    if "subject" in metadata:
        canvas.setSubject(metadata["subject"])
    if "keywords" in metadata:
        canvas.setKeywords(metadata["keywords"])
    canvas.setCreator(metadata.get("creator", "cutcontour"))
    return canvas


def _expand_corners(corners: np.ndarray, distance: float) -> np.ndarray:
    """Push every corner outward so each edge moves by ``distance``."""
    corners = np.asarray(corners, dtype=np.float64)
    out = []
    for k in range(len(corners)):
        here = corners[k]
        away_prev = here - corners[k - 1]
        away_next = here - corners[(k + 1) % len(corners)]
        away_prev /= np.hypot(*away_prev) or 1.0
        away_next /= np.hypot(*away_next) or 1.0
        out.append(here + distance * (away_prev + away_next))
    return np.asarray(out)


def _contour_builder(result: ContourResult, expand: float = 0.0) -> PathBuilder:
    """Cut path in inches (y up), optionally offset outward by ``expand`` inches."""
    primitive: SnappedPrimitive = result.primitive_inches
    if isinstance(primitive, Circle):
        return path_builder.circle(primitive.cx, primitive.cy, primitive.radius + expand)
    if isinstance(primitive, RoundedRectangle):
        return path_builder.from_primitive(
            RoundedRectangle(_expand_corners(primitive.corners, expand), primitive.radius + expand)
        )
    if isinstance(primitive, Rectangle):
        return path_builder.polygon_rectangle(_expand_corners(primitive.corners, expand))

    polygon = result.path_inches
    if expand:
        polygon = expand_path_outward(polygon, expand)
    return path_builder.from_polygon(polygon)


def _spot_builder(regions: Sequence[Polygon], x: float, top: float, scale: float = 1.0) -> PathBuilder:
    """Regions in image inches (y down) placed with their top-left at (x, top) in points."""
    builder = PathBuilder()
    for region in regions:
        placed = np.column_stack([
            x + region[:, 0] * scale * POINTS_PER_INCH,
            top - region[:, 1] * scale * POINTS_PER_INCH,
        ])
        builder.extend(path_builder.from_polyline(placed))
    return builder


def _draw_spot_layers(canvas: pdf_canvas.Canvas, layers: SpotLayers, x: float, top: float,
                      scale: float, single_artboard: bool):
    for channel, regions in layers:
        if not single_artboard:
            canvas.showPage()
        color = register_separation(canvas, channel.name, channel.cmyk)
        canvas.setFillColor(color)
        _draw(canvas, _spot_builder(regions, x, top, scale), fill=True, even_odd=True)


def _draw_cut_line(canvas: pdf_canvas.Canvas, builder: PathBuilder):
    canvas.setStrokeColor(register_separation(canvas, CUT_CONTOUR, CUT_CONTOUR_CMYK))
    canvas.setLineWidth(CUT_LINE_WIDTH)
    _draw(canvas, builder, stroke=True)


def _spot_layers(image: RasterImage, spot_colors: Optional[Sequence[SpotColorEntry]],
                 width_inches: float, height_inches: float) -> SpotLayers:
    if not spot_colors:
        return []
    return trace_spot_regions(image, spot_colors, width_inches, height_inches)


def contour_pdf(
    image: RasterImage,
    result: ContourResult,
    size: PhysicalSize,
    stroke: StrokeSettings,
    spot_colors: Optional[Sequence[SpotColorEntry]] = None,
    single_artboard: bool = True,
    metadata: Optional[Dict[str, str]] = None,
    compress: bool = True,
) -> bytes:
    """
    Render a contour-mode document.

    Paint order: optional background (bleed-expanded when bleed is on),
    the image at its offset, the CutContour stroke, then spot layers filled
    even-odd (on the same page, or one extra page per layer).

    Args:
        image: Source image
        result: Traced contour
        size: Physical size of the image
        stroke: Stroke settings (background color, bleed)
        spot_colors: Spot-color entries
        single_artboard: Put spot layers on the main page
        metadata: Optional title/author/subject/keywords/creator
        compress: Compress page streams

    Returns:
        PDF bytes

    Raises:
        EncodingError: If the document cannot be produced
    """
    bleed = CONTOUR_BLEED_INCHES
    page = (
        (result.width_inches + 2 * bleed) * POINTS_PER_INCH,
        (result.height_inches + 2 * bleed) * POINTS_PER_INCH,
    )
    origin = bleed * POINTS_PER_INCH

    image_w = size.width_inches
    image_h = image.height / result.effective_dpi
    image_x = origin + result.image_offset_x * POINTS_PER_INCH
    image_top = origin + (result.height_inches - result.image_offset_y) * POINTS_PER_INCH

    layers = _spot_layers(image, spot_colors, image_w, image_h)

    buffer = io.BytesIO()
    try:
        canvas = _new_canvas(buffer, page, compress, metadata)

        if not is_transparent_color(stroke.background_color):
            background = _contour_builder(result, bleed if stroke.bleed_enabled else 0.0)
            _rgb_fill(canvas, stroke.background_color)
            _draw(canvas, background.transform(POINTS_PER_INCH, origin, origin), fill=True)

        canvas.drawImage(
            ImageReader(to_pil(image)),
            image_x,
            image_top - image_h * POINTS_PER_INCH,
            width=image_w * POINTS_PER_INCH,
            height=image_h * POINTS_PER_INCH,
            mask="auto",
        )

        _draw_cut_line(canvas, _contour_builder(result).transform(POINTS_PER_INCH, origin, origin))
        _draw_spot_layers(canvas, layers, image_x, image_top, 1.0, single_artboard)

        canvas.showPage()
        canvas.save()
    except (ValueError, TypeError, OSError) as e:
        raise EncodingError(f"Failed to render contour PDF: {e}") from e

    data = buffer.getvalue()
    logger.info(f"Contour PDF: {page[0]:.1f}x{page[1]:.1f} pt, {len(layers)} spot layer(s), {len(data)} bytes")
    return data


def calculate_shape_dimensions(
    width_inches: float,
    height_inches: float,
    shape_type: ShapeType,
    offset: float,
) -> Tuple[float, float]:
    """
    Physical size of a cut shape around a design.

    Circles and ovals use half the offset on each side for a tighter fit;
    squares use the longer side. Ovals and rectangles are stretched to at
    least a 1.2 aspect ratio.

    Returns:
        (width, height) in inches, rounded to 3 decimals
    """
    shape_type = ShapeType(shape_type)
    total = 2 * offset

    if shape_type == ShapeType.CIRCLE:
        d = max(width_inches, height_inches) + total * 0.5
        return round(d, 3), round(d, 3)
    if shape_type in (ShapeType.SQUARE, ShapeType.ROUNDED_SQUARE):
        d = max(width_inches, height_inches) + total
        return round(d, 3), round(d, 3)

    pad = total * 0.5 if shape_type == ShapeType.OVAL else total
    width = width_inches + pad
    height = height_inches + pad
    if max(width, height) / min(width, height) < MIN_SHAPE_ASPECT:
        if width >= height:
            width = height * MIN_SHAPE_ASPECT
        else:
            height = width * MIN_SHAPE_ASPECT
    return round(width, 3), round(height, 3)


def _shape_builder(shape: ShapeSettings, x: float, y: float, w: float, h: float) -> PathBuilder:
    if shape.type in (ShapeType.CIRCLE, ShapeType.OVAL):
        return path_builder.ellipse(x + w / 2, y + h / 2, w / 2, h / 2)
    if shape.type in (ShapeType.ROUNDED_SQUARE, ShapeType.ROUNDED_RECTANGLE):
        return path_builder.rounded_rectangle(x, y, w, h, shape.corner_radius * POINTS_PER_INCH)
    return path_builder.rectangle(x, y, w, h)


def _ellipse_fit_scale(image_w: float, image_h: float, shape_w: float, shape_h: float) -> float:
    """Largest scale (at most 1) that keeps the image's corners inside the ellipse."""
    check = (image_w / shape_w) ** 2 + (image_h / shape_h) ** 2
    if check <= 1:
        return 1.0
    return 1.0 / float(np.sqrt(check))


def clip_to_ellipse(img: Image.Image, shape_w: float, shape_h: float, drawn_w: float, drawn_h: float) -> Image.Image:
    """
    Pre-clip an RGBA image to the shape ellipse centered on it.

    Args:
        img: RGBA image
        shape_w: Ellipse width in the same units as ``drawn_w``
        shape_h: Ellipse height
        drawn_w: Width the image is drawn at
        drawn_h: Height the image is drawn at

    Returns:
        Copy of the image with alpha outside the ellipse cleared
    """
    px_w = img.width * shape_w / drawn_w
    px_h = img.height * shape_h / drawn_h
    cx, cy = img.width / 2, img.height / 2

    mask = Image.new("L", img.size, 0)
    ImageDraw.Draw(mask).ellipse(
        (cx - px_w / 2, cy - px_h / 2, cx + px_w / 2, cy + px_h / 2),
        fill=255,
    )
    clipped = img.copy()
    clipped.putalpha(ImageChops.multiply(img.getchannel("A"), mask))
    return clipped


def shape_pdf(
    image: RasterImage,
    shape: ShapeSettings,
    size: PhysicalSize,
    spot_colors: Optional[Sequence[SpotColorEntry]] = None,
    single_artboard: bool = True,
    metadata: Optional[Dict[str, str]] = None,
    compress: bool = True,
) -> bytes:
    """
    Render a shape-mode document: the design centered inside a cut shape.

    Paint order: bleed color of the expanded shape, fill color of the shape,
    the image (fitted and pre-clipped inside circles and ovals), the optional
    RGB stroke, the CutContour outline, then spot layers.

    Args:
        image: Source image
        shape: Shape settings
        size: Physical size of the design
        spot_colors: Spot-color entries
        single_artboard: Put spot layers on the main page
        metadata: Optional title/author/subject/keywords/creator
        compress: Compress page streams

    Returns:
        PDF bytes

    Raises:
        EncodingError: If the document cannot be produced
    """
    shape_w_in, shape_h_in = calculate_shape_dimensions(
        size.width_inches, size.height_inches, shape.type, shape.offset
    )
    bleed = SHAPE_BLEED_INCHES if shape.bleed_enabled else 0.0
    origin = bleed * POINTS_PER_INCH
    shape_w = shape_w_in * POINTS_PER_INCH
    shape_h = shape_h_in * POINTS_PER_INCH
    page = (shape_w + 2 * origin, shape_h + 2 * origin)

    image_w = size.width_inches * POINTS_PER_INCH
    image_h = size.height_inches * POINTS_PER_INCH
    pil_image = to_pil(image)
    scale = 1.0
    if shape.type in (ShapeType.CIRCLE, ShapeType.OVAL):
        scale = _ellipse_fit_scale(image_w, image_h, shape_w, shape_h)
        image_w *= scale
        image_h *= scale
        pil_image = clip_to_ellipse(pil_image, shape_w, shape_h, image_w, image_h)

    image_x = origin + (shape_w - image_w) / 2
    image_y = origin + (shape_h - image_h) / 2

    layers = _spot_layers(image, spot_colors, size.width_inches, size.height_inches)

    buffer = io.BytesIO()
    try:
        canvas = _new_canvas(buffer, page, compress, metadata)

        if shape.bleed_enabled and not is_transparent_color(shape.bleed_color):
            _rgb_fill(canvas, shape.bleed_color)
            _draw(canvas, _shape_builder(shape, 0, 0, page[0], page[1]), fill=True)

        outline = _shape_builder(shape, origin, origin, shape_w, shape_h)
        if not is_transparent_color(shape.fill_color):
            _rgb_fill(canvas, shape.fill_color)
            _draw(canvas, outline, fill=True)

        canvas.drawImage(ImageReader(pil_image), image_x, image_y, width=image_w, height=image_h, mask="auto")

        if shape.stroke_enabled and shape.stroke_width > 0 and not is_transparent_color(shape.stroke_color):
            r, g, b = hex_to_rgb(shape.stroke_color)
            canvas.setStrokeColorRGB(r / 255.0, g / 255.0, b / 255.0)
            canvas.setLineWidth(shape.stroke_width * POINTS_PER_INCH)
            _draw(canvas, outline, stroke=True)

        _draw_cut_line(canvas, outline)
        _draw_spot_layers(canvas, layers, image_x, image_y + image_h, scale, single_artboard)

        canvas.showPage()
        canvas.save()
    except (ValueError, TypeError, OSError) as e:
        raise EncodingError(f"Failed to render shape PDF: {e}") from e

    data = buffer.getvalue()
    logger.info(f"Shape PDF ({shape.type.value}): {shape_w_in}x{shape_h_in} in, {len(data)} bytes")
    return data
