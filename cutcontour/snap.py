"""Primitive snapping: replace near-perfect circles and rectangles with exact shapes.

All thresholds scale with the image, so the same shape snaps the same way
at any resolution. ``L`` below is the longer image side in pixels.
"""
import logging
import math
from typing import List, Optional, Tuple

import cv2
import numpy as np

from cutcontour.refine import as_polygon, douglas_peucker_indices, signed_area
from cutcontour.types import Circle, Polygon, Rectangle, RoundedRectangle, SnappedPrimitive

logger = logging.getLogger(__name__)

MIN_AREA_FRACTION = 0.02

# Circle
CIRCLE_MIN_POINTS = 40
CIRCLE_ASPECT_RANGE = (0.88, 1.12)
CIRCLE_MIN_CIRCULARITY = 0.90
CIRCLE_MIN_RADIUS_FRACTION = 0.05
CIRCLE_MAX_RADIAL_STD = 0.006
CIRCLE_MIN_COVERAGE = 330.0

# Rectangle
RECT_MIN_POINTS = 20
RECT_DP_FRACTION = 0.0014
RECT_RUN_FRACTION = 0.04
RECT_ANGLE_RANGE = (70.0, 110.0)
RECT_MIN_SEPARATION = 0.1
RECT_EDGE_MARGIN = 0.05

# Rounded rectangle
ROUNDED_RADIUS_RANGE = (0.02, 0.45)


def polygon_area(points: Polygon) -> float:
    """Unsigned shoelace area."""
    return abs(signed_area(points))


def polygon_perimeter(points: Polygon) -> float:
    """Closed perimeter."""
    pts = as_polygon(points)
    if len(pts) < 2:
        return 0.0
    seg = np.roll(pts, -1, axis=0) - pts
    return float(np.hypot(seg[:, 0], seg[:, 1]).sum())


def fit_circle_kasa(points: Polygon) -> Optional[Tuple[float, float, float]]:
    """
    Algebraic (Kasa) least-squares circle fit.

    Solves ``x^2 + y^2 + D x + E y + F = 0`` in the least-squares sense.

    Returns:
        (cx, cy, r), or None if the fit is degenerate
    """
    pts = as_polygon(points)
    if len(pts) < 3:
        return None

    x, y = pts[:, 0], pts[:, 1]
    a = np.column_stack([x, y, np.ones_like(x)])
    b = -(x * x + y * y)
    (d, e, f), *_ = np.linalg.lstsq(a, b, rcond=None)

    cx, cy = -d / 2, -e / 2
    r_sq = cx * cx + cy * cy - f
    if not np.isfinite(r_sq) or r_sq <= 0:
        return None
    return float(cx), float(cy), float(math.sqrt(r_sq))


def angular_coverage(points: Polygon, cx: float, cy: float) -> float:
    """Degrees of the circle around (cx, cy) swept by the points (360 minus the largest gap)."""
    pts = as_polygon(points)
    if len(pts) < 2:
        return 0.0
    angles = np.sort(np.degrees(np.arctan2(pts[:, 1] - cy, pts[:, 0] - cx)))
    gaps = np.diff(np.concatenate([angles, [angles[0] + 360.0]]))
    return float(360.0 - gaps.max())


def _area_ok(pts: Polygon, width: int, height: int) -> bool:
    return polygon_area(pts) >= MIN_AREA_FRACTION * width * height


def snap_circle(points: Polygon, width: int, height: int) -> Optional[Circle]:
    """
    Classify a polygon as a circle.

    Args:
        points: Dense refined polygon
        width: Image width in pixels
        height: Image height in pixels

    Returns:
        Circle, or None if any test fails
    """
    pts = as_polygon(points)
    if len(pts) < CIRCLE_MIN_POINTS or not _area_ok(pts, width, height):
        return None

    span = pts.max(axis=0) - pts.min(axis=0)
    if span[1] <= 0:
        return None
    aspect = span[0] / span[1]
    if not CIRCLE_ASPECT_RANGE[0] <= aspect <= CIRCLE_ASPECT_RANGE[1]:
        return None

    area = polygon_area(pts)
    perimeter = polygon_perimeter(pts)
    circularity = 4 * math.pi * area / (perimeter * perimeter)
    if circularity < CIRCLE_MIN_CIRCULARITY:
        return None

    fit = fit_circle_kasa(pts)
    if fit is None:
        return None
    cx, cy, r = fit
    if r < CIRCLE_MIN_RADIUS_FRACTION * min(width, height):
        return None

    scale = max(width, height)
    radial = np.hypot(pts[:, 0] - cx, pts[:, 1] - cy)
    residual = np.abs(radial - r)
    p95 = float(np.percentile(residual, 95))
    rmse = float(np.sqrt(np.mean(residual ** 2)))
    if p95 > max(0.001 * scale, 0.004 * r) or rmse > max(0.00046 * scale, 0.002 * r):
        return None
    if float(np.std(radial)) / r > CIRCLE_MAX_RADIAL_STD:
        return None

    coverage = angular_coverage(pts, cx, cy)
    if coverage < CIRCLE_MIN_COVERAGE:
        return None

    logger.debug(f"Snapped circle c=({cx:.1f}, {cy:.1f}) r={r:.1f}, rmse={rmse:.3f}")
    return Circle(cx=cx, cy=cy, radius=r)


def _merge_short_runs(pts: Polygon, indices: np.ndarray, min_edge: float) -> List[Tuple[np.ndarray, int]]:
    """Collapse runs of vertices joined by short edges into one vertex at their mean."""
    verts = pts[indices]
    m = len(verts)
    edges = np.hypot(*(np.roll(verts, -1, axis=0) - verts).T)
    long_edges = np.flatnonzero(edges >= min_edge)
    if long_edges.size == 0:
        return []

    # Start right after a long edge so no run wraps around
    start = (int(long_edges[0]) + 1) % m
    order = [(start + k) % m for k in range(m)]

    n = len(pts)
    groups = []
    current = [order[0]]
    for k in order[1:]:
        if edges[current[-1]] < min_edge:
            current.append(k)
        else:
            groups.append(current)
            current = [k]
    groups.append(current)

    merged = []
    for group in groups:
        idx = indices[group].astype(np.float64)
        # Unwrap indices that cross the end of the path
        idx[1:] += n * (np.cumsum(np.diff(idx) < 0))
        merged.append((verts[group].mean(axis=0), int(round(idx.mean())) % n))
    merged.sort(key=lambda item: item[1])
    return merged


def _interior_angles(quad: np.ndarray) -> np.ndarray:
    prev = np.roll(quad, 1, axis=0) - quad
    nxt = np.roll(quad, -1, axis=0) - quad
    cos = np.sum(prev * nxt, axis=1) / (np.hypot(*prev.T) * np.hypot(*nxt.T))
    return np.degrees(np.arccos(np.clip(cos, -1.0, 1.0)))


def _edges_straight(pts: Polygon, corner_idx: List[int], quad: np.ndarray, scale: float) -> bool:
    n = len(pts)
    for k in range(4):
        a, b = quad[k], quad[(k + 1) % 4]
        side = float(np.hypot(*(b - a)))
        if side == 0:
            return False
        start, end = corner_idx[k], corner_idx[(k + 1) % 4]
        span = np.arange(start, end + (n if end <= start else 0)) % n
        seg = pts[span]
        d = (b - a) / side
        t = (seg - a) @ d / side
        middle = seg[(t > RECT_EDGE_MARGIN) & (t < 1 - RECT_EDGE_MARGIN)]
        if len(middle) == 0:
            continue
        rel = middle - a
        dist = np.abs(rel[:, 0] * d[1] - rel[:, 1] * d[0])
        if float(dist.max()) > max(0.001 * scale, 0.003 * side):
            return False
    return True


def _min_area_box(pts: Polygon) -> Tuple[np.ndarray, float, float]:
    rect = cv2.minAreaRect(pts.astype(np.float32))
    box = cv2.boxPoints(rect).astype(np.float64)
    w, h = rect[1]
    return box, float(w), float(h)


def _order_like(box: np.ndarray, reference: np.ndarray) -> np.ndarray:
    """Cyclic rotation (either direction) of ``box`` closest to ``reference``."""
    best, best_cost = box, math.inf
    for candidate in (box, box[::-1]):
        for shift in range(4):
            rolled = np.roll(candidate, shift, axis=0)
            cost = float(np.hypot(*(rolled - reference).T).sum())
            if cost < best_cost:
                best, best_cost = rolled, cost
    return best


def snap_rectangle(points: Polygon, width: int, height: int) -> Optional[Rectangle]:
    """
    Classify a polygon as a rectangle.

    Douglas-Peucker at ``0.0014 L``, short runs (< ``0.04 L``) merged,
    then exactly 4 well-separated corners with 70-110 degree angles and
    straight sides are required. Corners come from the minimum-area box.

    Args:
        points: Dense refined polygon
        width: Image width in pixels
        height: Image height in pixels

    Returns:
        Rectangle, or None if any test fails
    """
    pts = as_polygon(points)
    n = len(pts)
    if n < RECT_MIN_POINTS or not _area_ok(pts, width, height):
        return None

    scale = max(width, height)
    indices = douglas_peucker_indices(pts, RECT_DP_FRACTION * scale)
    corners = _merge_short_runs(pts, indices, RECT_RUN_FRACTION * scale)
    if len(corners) != 4:
        return None

    quad = np.array([point for point, _ in corners])
    corner_idx = [index for _, index in corners]

    separations = np.diff(corner_idx + [corner_idx[0] + n])
    if separations.min() < RECT_MIN_SEPARATION * n:
        return None

    angles = _interior_angles(quad)
    if angles.min() < RECT_ANGLE_RANGE[0] or angles.max() > RECT_ANGLE_RANGE[1]:
        return None

    if not _edges_straight(pts, corner_idx, quad, scale):
        return None

    box, _, _ = _min_area_box(pts)
    logger.debug(f"Snapped rectangle, corner angles {np.round(angles, 1).tolist()}")
    return Rectangle(corners=_order_like(box, quad))


def _rounded_box_distance(pts: Polygon, box: np.ndarray, radius: float) -> np.ndarray:
    """Signed distance from each point to the rounded box outline."""
    center = box.mean(axis=0)
    u = box[1] - box[0]
    v = box[3] - box[0]
    half = np.array([np.hypot(*u), np.hypot(*v)]) / 2
    u_hat = u / (2 * half[0])
    v_hat = v / (2 * half[1])

    rel = pts - center
    local = np.abs(np.column_stack([rel @ u_hat, rel @ v_hat]))
    q = local - half + radius
    outside = np.hypot(np.maximum(q[:, 0], 0), np.maximum(q[:, 1], 0))
    inside = np.minimum(np.maximum(q[:, 0], q[:, 1]), 0)
    return outside + inside - radius


def snap_rounded_rectangle(points: Polygon, width: int, height: int) -> Optional[RoundedRectangle]:
    """
    Classify a polygon as a rectangle with rounded corners.

    The corner radius comes from the area the corners cut off the
    minimum-area box: ``r = sqrt((w * h - A) / (4 - pi))``.

    Returns:
        RoundedRectangle, or None
    """
    pts = as_polygon(points)
    if len(pts) < RECT_MIN_POINTS or not _area_ok(pts, width, height):
        return None

    box, bw, bh = _min_area_box(pts)
    short = min(bw, bh)
    if short <= 0:
        return None

    cut_off = bw * bh - polygon_area(pts)
    if cut_off <= 0:
        return None
    radius = math.sqrt(cut_off / (4 - math.pi))
    if not ROUNDED_RADIUS_RANGE[0] * short <= radius <= ROUNDED_RADIUS_RANGE[1] * short:
        return None

    residual = _rounded_box_distance(pts, box, radius)
    rms = float(np.sqrt(np.mean(residual ** 2)))
    if rms > max(0.001 * max(width, height), 0.004 * short):
        return None

    logger.debug(f"Snapped rounded rectangle {bw:.1f}x{bh:.1f}, r={radius:.1f}")
    return RoundedRectangle(corners=box, radius=float(radius))


def snap_primitive(points: Polygon, width: int, height: int) -> SnappedPrimitive:
    """
    Try circle, then rectangle, then rounded rectangle.

    Args:
        points: Dense refined polygon in pixels
        width: Image width in pixels
        height: Image height in pixels

    Returns:
        The first primitive that matches, or None to keep the polygon
    """
    for snapper in (snap_circle, snap_rectangle, snap_rounded_rectangle):
        primitive = snapper(points, width, height)
        if primitive is not None:
            return primitive
    return None


def primitive_to_inches(primitive: SnappedPrimitive, dpi: float, height_inches: float) -> SnappedPrimitive:
    """
    Convert a pixel-frame primitive (y down) to inches with y measured from the bottom.

    Args:
        primitive: Primitive in pixels
        dpi: Pixels per inch
        height_inches: Height of the frame in inches

    Returns:
        Primitive in inches
    """
    if primitive is None:
        return None

    def to_inches(corners: np.ndarray) -> np.ndarray:
        out = np.asarray(corners, dtype=np.float64) / dpi
        out[:, 1] = height_inches - out[:, 1]
        return out

    if isinstance(primitive, Circle):
        return Circle(
            cx=primitive.cx / dpi,
            cy=height_inches - primitive.cy / dpi,
            radius=primitive.radius / dpi,
        )
    if isinstance(primitive, RoundedRectangle):
        return RoundedRectangle(corners=to_inches(primitive.corners), radius=primitive.radius / dpi)
    if isinstance(primitive, Rectangle):
        return Rectangle(corners=to_inches(primitive.corners))
    raise TypeError(f"Unknown primitive: {type(primitive).__name__}")
