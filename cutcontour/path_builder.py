"""Vector path construction: polygons and primitives to Bezier operator lists."""
import re
from collections import namedtuple
from typing import Callable, List, Optional, Tuple

import numpy as np

from cutcontour.types import Circle, Polygon, Rectangle, RoundedRectangle, SnappedPrimitive

# Control-point distance for a quarter-circle cubic Bezier
KAPPA = 0.5522847498307936

MoveTo = namedtuple("MoveTo", "x y")
LineTo = namedtuple("LineTo", "x y")
CurveTo = namedtuple("CurveTo", "x1 y1 x2 y2 x y")
ClosePath = namedtuple("ClosePath", "")


def _fmt(value: float, precision: int) -> str:
    text = f"{value:.{precision}f}".rstrip("0").rstrip(".")
    if text in ("-0", ""):
        return "0"
    return text


class PathBuilder:
    """
    Ordered list of path operations in a single coordinate frame.

    Methods return ``self`` so calls can be chained.
    """

    def __init__(self, ops: Optional[List] = None):
        self.ops = list(ops) if ops else []

    def __len__(self) -> int:
        return len(self.ops)

    def __iter__(self):
        return iter(self.ops)

    def move_to(self, x: float, y: float) -> "PathBuilder":
        self.ops.append(MoveTo(float(x), float(y)))
        return self

    def line_to(self, x: float, y: float) -> "PathBuilder":
        self.ops.append(LineTo(float(x), float(y)))
        return self

    def curve_to(self, x1: float, y1: float, x2: float, y2: float, x: float, y: float) -> "PathBuilder":
        self.ops.append(CurveTo(float(x1), float(y1), float(x2), float(y2), float(x), float(y)))
        return self

    def close(self) -> "PathBuilder":
        self.ops.append(ClosePath())
        return self

    def extend(self, other: "PathBuilder") -> "PathBuilder":
        """Append another builder's subpaths."""
        self.ops.extend(other.ops)
        return self

    def map_points(self, fn: Callable[[float, float], Tuple[float, float]]) -> "PathBuilder":
        """New builder with every point (control points included) passed through ``fn``."""
        out = PathBuilder()
        for op in self.ops:
            if isinstance(op, ClosePath):
                out.ops.append(op)
                continue
            coords = list(op)
            mapped = []
            for k in range(0, len(coords), 2):
                mapped.extend(fn(coords[k], coords[k + 1]))
            out.ops.append(type(op)(*(float(v) for v in mapped)))
        return out

    def transform(self, scale: float = 1.0, dx: float = 0.0, dy: float = 0.0) -> "PathBuilder":
        """Uniform scale followed by a translation."""
        return self.map_points(lambda x, y: (x * scale + dx, y * scale + dy))

    def points(self) -> np.ndarray:
        """Every on-curve and control point, as an (N, 2) array."""
        coords = [c for op in self.ops for c in op]
        if not coords:
            return np.empty((0, 2), dtype=np.float64)
        return np.asarray(coords, dtype=np.float64).reshape(-1, 2)

    def bounds(self) -> Optional[Tuple[float, float, float, float]]:
        """(min_x, min_y, max_x, max_y) of the control hull, or None when empty."""
        pts = self.points()
        if len(pts) == 0:
            return None
        lo = pts.min(axis=0)
        hi = pts.max(axis=0)
        return float(lo[0]), float(lo[1]), float(hi[0]), float(hi[1])

    def flatten(self, steps: int = 16) -> List[np.ndarray]:
        """
        Sample every subpath into a polyline.

        Args:
            steps: Samples per curve segment

        Returns:
            One (N, 2) array per subpath
        """
        subpaths = []
        current = []
        pen = (0.0, 0.0)
        t = np.linspace(0.0, 1.0, steps + 1)[1:, None]

        for op in self.ops:
            if isinstance(op, MoveTo):
                if len(current) > 1:
                    subpaths.append(np.asarray(current))
                current = [(op.x, op.y)]
                pen = (op.x, op.y)
            elif isinstance(op, LineTo):
                current.append((op.x, op.y))
                pen = (op.x, op.y)
            elif isinstance(op, CurveTo):
                p0 = np.asarray(pen)
                p1 = np.array([op.x1, op.y1])
                p2 = np.array([op.x2, op.y2])
                p3 = np.array([op.x, op.y])
                u = 1 - t
                samples = u ** 3 * p0 + 3 * u ** 2 * t * p1 + 3 * u * t ** 2 * p2 + t ** 3 * p3
                current.extend(map(tuple, samples))
                pen = (op.x, op.y)

        if len(current) > 1:
            subpaths.append(np.asarray(current))
        return subpaths

    def to_pdf_operators(self, precision: int = 4) -> str:
        """Render as PDF path construction operators (m, l, c, h), one per line."""
        lines = []
        for op in self.ops:
            if isinstance(op, ClosePath):
                lines.append("h")
                continue
            coords = " ".join(_fmt(v, precision) for v in op)
            suffix = {MoveTo: "m", LineTo: "l", CurveTo: "c"}[type(op)]
            lines.append(f"{coords} {suffix}")
        return "\n".join(lines)

    def replay(self, pdf_path):
        """
        Replay onto any object with ``moveTo``, ``lineTo``, ``curveTo`` and ``close``
        (e.g. a reportlab path from ``canvas.beginPath()``).
        """
        for op in self.ops:
            if isinstance(op, MoveTo):
                pdf_path.moveTo(op.x, op.y)
            elif isinstance(op, LineTo):
                pdf_path.lineTo(op.x, op.y)
            elif isinstance(op, CurveTo):
                pdf_path.curveTo(op.x1, op.y1, op.x2, op.y2, op.x, op.y)
            else:
                pdf_path.close()
        return pdf_path


_OPERAND_COUNT = {"m": 2, "l": 2, "c": 6, "h": 0}
_TOKEN = re.compile(r"[-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?|[A-Za-z*'\"]+")


def parse_pdf_operators(text: str) -> PathBuilder:
    """
    Read m/l/c/h path operators back into a PathBuilder.

    Any other operator (painting, color, state) is skipped along with its
    operands.
    """
    builder = PathBuilder()
    operands: List[float] = []
    for token in _TOKEN.findall(text):
        if token not in _OPERAND_COUNT:
            try:
                operands.append(float(token))
            except ValueError:
                operands = []
            continue

        needed = _OPERAND_COUNT[token]
        args = operands[-needed:] if needed else []
        operands = []
        if len(args) != needed:
            continue
        if token == "m":
            builder.move_to(*args)
        elif token == "l":
            builder.line_to(*args)
        elif token == "c":
            builder.curve_to(*args)
        else:
            builder.close()
    return builder


def from_polygon(points: Polygon, tension: float = 0.5) -> PathBuilder:
    """
    Closed Catmull-Rom spline through every vertex, as cubic Beziers.

    For the segment p1 -> p2 the control points are
    ``p1 + (p2 - p0) * tension / 3`` and ``p2 - (p3 - p1) * tension / 3``.
    """
    pts = np.asarray(points, dtype=np.float64).reshape(-1, 2)
    builder = PathBuilder()
    n = len(pts)
    if n == 0:
        return builder
    if n < 3:
        return from_polyline(pts)

    k = tension / 3
    builder.move_to(*pts[0])
    for i in range(n):
        p0 = pts[i - 1]
        p1 = pts[i]
        p2 = pts[(i + 1) % n]
        p3 = pts[(i + 2) % n]
        c1 = p1 + (p2 - p0) * k
        c2 = p2 - (p3 - p1) * k
        builder.curve_to(c1[0], c1[1], c2[0], c2[1], p2[0], p2[1])
    return builder.close()


def from_polyline(points: Polygon, closed: bool = True) -> PathBuilder:
    """Straight segments through every vertex."""
    pts = np.asarray(points, dtype=np.float64).reshape(-1, 2)
    builder = PathBuilder()
    if len(pts) == 0:
        return builder
    builder.move_to(*pts[0])
    for x, y in pts[1:]:
        builder.line_to(x, y)
    if closed:
        builder.close()
    return builder


def ellipse(cx: float, cy: float, rx: float, ry: float) -> PathBuilder:
    """Four-arc Bezier ellipse, counter-clockwise from the +x extreme."""
    kx, ky = rx * KAPPA, ry * KAPPA
    return (
        PathBuilder()
        .move_to(cx + rx, cy)
        .curve_to(cx + rx, cy + ky, cx + kx, cy + ry, cx, cy + ry)
        .curve_to(cx - kx, cy + ry, cx - rx, cy + ky, cx - rx, cy)
        .curve_to(cx - rx, cy - ky, cx - kx, cy - ry, cx, cy - ry)
        .curve_to(cx + kx, cy - ry, cx + rx, cy - ky, cx + rx, cy)
        .close()
    )


def circle(cx: float, cy: float, r: float) -> PathBuilder:
    return ellipse(cx, cy, r, r)


def rectangle(x: float, y: float, w: float, h: float) -> PathBuilder:
    return (
        PathBuilder()
        .move_to(x, y)
        .line_to(x + w, y)
        .line_to(x + w, y + h)
        .line_to(x, y + h)
        .close()
    )


def polygon_rectangle(corners: np.ndarray) -> PathBuilder:
    """Rectangle through 4 ordered (possibly rotated) corners."""
    return from_polyline(corners)


def rounded_rectangle(x: float, y: float, w: float, h: float, r: float) -> PathBuilder:
    """Axis-aligned rectangle with quarter-circle corners (radius clamped to half the short side)."""
    r = max(0.0, min(r, w / 2, h / 2))
    if r == 0:
        return rectangle(x, y, w, h)
    k = r * KAPPA
    return (
        PathBuilder()
        .move_to(x + r, y)
        .line_to(x + w - r, y)
        .curve_to(x + w - r + k, y, x + w, y + r - k, x + w, y + r)
        .line_to(x + w, y + h - r)
        .curve_to(x + w, y + h - r + k, x + w - r + k, y + h, x + w - r, y + h)
        .line_to(x + r, y + h)
        .curve_to(x + r - k, y + h, x, y + h - r + k, x, y + h - r)
        .line_to(x, y + r)
        .curve_to(x, y + r - k, x + r - k, y, x + r, y)
        .close()
    )


def _rounded_box(corners: np.ndarray, radius: float) -> PathBuilder:
    corners = np.asarray(corners, dtype=np.float64)
    origin = corners[0]
    u = corners[1] - origin
    v = corners[3] - origin
    w = float(np.hypot(*u))
    h = float(np.hypot(*v))
    if w == 0 or h == 0:
        return polygon_rectangle(corners)
    u_hat, v_hat = u / w, v / h
    local = rounded_rectangle(0.0, 0.0, w, h, radius)
    return local.map_points(lambda a, b: tuple(origin + a * u_hat + b * v_hat))


def from_primitive(primitive: SnappedPrimitive) -> Optional[PathBuilder]:
    """Exact path for a snapped primitive (None passes through)."""
    if primitive is None:
        return None
    if isinstance(primitive, Circle):
        return circle(primitive.cx, primitive.cy, primitive.radius)
    if isinstance(primitive, RoundedRectangle):
        return _rounded_box(primitive.corners, primitive.radius)
    if isinstance(primitive, Rectangle):
        return polygon_rectangle(primitive.corners)
    raise TypeError(f"Unknown primitive: {type(primitive).__name__}")

