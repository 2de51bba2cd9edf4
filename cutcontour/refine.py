"""Path refinement: smoothing, crossing removal, spike bridges, simplification and gap closing.

Stages run in that order on a traced polygon. Polygons are implicitly
closed ``(N, 2)`` float arrays; every stage returns its input unchanged
rather than emitting a degenerate (< 3 point) polygon.
"""
import logging
import math
from typing import List, Optional, Tuple

import cv2
import numpy as np

from cutcontour.types import ContourConfig, Polygon

logger = logging.getLogger(__name__)

SMOOTHING_WINDOWS = {
    "none": (),
    "light": (1,),
    "standard": (2,),
    "strong": (4, 2),
}
SMOOTHING_CHAIKIN = {
    "strong": 1,
}

# Segment intersection
PARALLEL_EPS = 1e-4
PARAM_EPS = 1e-9

# Spike bridges
SHARP_TURN_COS = 0.3
SPIKE_MIN_EDGE = 0.5
SPIKE_MAX_EDGE = 4.0
U_SHAPE = (0.5, 1.0, 0.5)  # convex turns, bulge outward
N_SHAPE = (0.3, 0.5, 0.3)  # concave turns, gentle inward bridge

# Gap closing (arc lengths in pixels)
GAP_MIN_ARC = 50.0
GAP_MAX_ARC = 500.0
GAP_MIN_RETURN_ARC = 10.0
PROTRUSION_RATIO = 3.0

# Rounds of stages 3-5 before giving up on a settled path
FINISH_MAX_ROUNDS = 12
SETTLED_TOLERANCE = 1e-6


def as_polygon(points) -> Polygon:
    """Coerce a point sequence to an (N, 2) float64 array."""
    arr = np.asarray(points, dtype=np.float64)
    if arr.size == 0:
        return np.empty((0, 2), dtype=np.float64)
    return arr.reshape(-1, 2)


def signed_area(points: Polygon) -> float:
    """Shoelace signed area (positive when the interior is on the left)."""
    pts = as_polygon(points)
    if len(pts) < 3:
        return 0.0
    x, y = pts[:, 0], pts[:, 1]
    return 0.5 * float(np.sum(x * np.roll(y, -1) - np.roll(x, -1) * y))


def _orientation(points: Polygon) -> float:
    return 1.0 if signed_area(points) >= 0 else -1.0


def path_length(points: Polygon, closed: bool = True) -> float:
    """Perimeter (closed) or polyline length (open)."""
    pts = as_polygon(points)
    if len(pts) < 2:
        return 0.0
    seg = (np.roll(pts, -1, axis=0) - pts) if closed else np.diff(pts, axis=0)
    return float(np.hypot(seg[:, 0], seg[:, 1]).sum())


# ---------------------------------------------------------------------------
# 1. Smoothing
# ---------------------------------------------------------------------------

def smooth_path(points: Polygon, window: int) -> Polygon:
    """
    Circular moving average over ``2 * window + 1`` samples.

    Paths shorter than the window are returned unchanged.
    """
    pts = as_polygon(points)
    span = 2 * window + 1
    if window <= 0 or len(pts) < span:
        return pts.copy()

    acc = np.zeros_like(pts)
    for k in range(-window, window + 1):
        acc += np.roll(pts, -k, axis=0)
    return acc / span


def chaikin(points: Polygon, iterations: int = 1) -> Polygon:
    """Chaikin corner cutting on a closed polygon."""
    pts = as_polygon(points)
    for _ in range(iterations):
        if len(pts) < 3:
            break
        nxt = np.roll(pts, -1, axis=0)
        q = 0.75 * pts + 0.25 * nxt
        r = 0.25 * pts + 0.75 * nxt
        pts = np.empty((2 * len(q), 2), dtype=np.float64)
        pts[0::2] = q
        pts[1::2] = r
    return pts


def is_lattice_path(points: Polygon) -> bool:
    """True for raw boundary walks: integer points joined by unit (8-neighbor) steps."""
    pts = as_polygon(points)
    if len(pts) < 3:
        return False
    if not np.array_equal(pts, np.round(pts)):
        return False
    steps = np.abs(np.roll(pts, -1, axis=0) - pts).max(axis=1)
    return bool(np.all(steps == 1))


def smooth(points: Polygon, level: str = "standard") -> Polygon:
    """
    Remove pixel-level jaggedness from a traced boundary.

    Only raw lattice walks are smoothed; anything else is returned as is,
    which makes the stage idempotent.

    Args:
        points: Traced polygon
        level: One of "none", "light", "standard", "strong"

    Returns:
        Smoothed polygon
    """
    if level not in SMOOTHING_WINDOWS:
        raise ValueError(f"Unknown smoothing level: {level}")

    pts = as_polygon(points)
    if not is_lattice_path(pts):
        return pts.copy()

    for window in SMOOTHING_WINDOWS[level]:
        pts = smooth_path(pts, window)
    return chaikin(pts, SMOOTHING_CHAIKIN.get(level, 0))


# ---------------------------------------------------------------------------
# 2. Self-intersection removal
# ---------------------------------------------------------------------------

def _cross(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    return a[..., 0] * b[..., 1] - a[..., 1] * b[..., 0]


def segment_intersection(p1, p2, p3, p4) -> Optional[np.ndarray]:
    """
    Parametric segment intersection test.

    Returns:
        The crossing point if segments p1-p2 and p3-p4 cross strictly inside
        both, None if they don't or are (near) parallel.
    """
    p1, p2, p3, p4 = (np.asarray(p, dtype=np.float64) for p in (p1, p2, p3, p4))
    d1 = p2 - p1
    d2 = p4 - p3
    denom = float(_cross(d1, d2))
    if abs(denom) < PARALLEL_EPS:
        return None
    w = p3 - p1
    t = float(_cross(w, d2)) / denom
    u = float(_cross(w, d1)) / denom
    if PARAM_EPS < t < 1 - PARAM_EPS and PARAM_EPS < u < 1 - PARAM_EPS:
        return p1 + t * d1
    return None


def _crossings_from(pts: Polygon, i: int) -> Tuple[np.ndarray, np.ndarray]:
    """Indices j > i + 1 whose segment crosses segment i, and the t along segment i."""
    n = len(pts)
    starts = pts
    ends = np.roll(pts, -1, axis=0)

    js = np.arange(i + 2, n)
    if i == 0:
        js = js[js != n - 1]  # closing segment is adjacent to segment 0
    if js.size == 0:
        return js, np.empty(0)

    p1, d1 = starts[i], ends[i] - starts[i]
    p3 = starts[js]
    d2 = ends[js] - p3

    denom = _cross(d1[None, :], d2)
    valid = np.abs(denom) >= PARALLEL_EPS
    safe = np.where(valid, denom, 1.0)
    w = p3 - p1
    t = _cross(w, d2) / safe
    u = _cross(w, d1[None, :]) / safe

    hit = valid & (t > PARAM_EPS) & (t < 1 - PARAM_EPS) & (u > PARAM_EPS) & (u < 1 - PARAM_EPS)
    return js[hit], t[hit]


def find_self_intersections(points: Polygon) -> List[Tuple[int, int, np.ndarray]]:
    """
    Every pair of non-adjacent segments that cross.

    Returns:
        List of (i, j, point) with segment i = points[i] -> points[i + 1]
    """
    pts = as_polygon(points)
    n = len(pts)
    found = []
    if n < 4:
        return found
    for i in range(n - 2):
        js, ts = _crossings_from(pts, i)
        d1 = pts[(i + 1) % n] - pts[i]
        for j, t in zip(js, ts):
            found.append((i, int(j), pts[i] + t * d1))
    return found


def _first_crossing(pts: Polygon) -> Optional[Tuple[int, int, np.ndarray]]:
    n = len(pts)
    for i in range(n - 2):
        js, ts = _crossings_from(pts, i)
        if js.size:
            d1 = pts[(i + 1) % n] - pts[i]
            return i, int(js[0]), pts[i] + ts[0] * d1
    return None


def _cut_loop(pts: Polygon, i: int, j: int, point: np.ndarray) -> Polygon:
    """Replace the shorter loop formed by crossing segments i and j with ``point``."""
    inner = np.vstack([point, pts[i + 1:j + 1], point])
    outer = np.vstack([point, pts[j + 1:], pts[:i + 1], point])
    if path_length(inner, closed=False) <= path_length(outer, closed=False):
        return np.vstack([pts[:i + 1], point, pts[j + 1:]])
    return np.vstack([point, pts[i + 1:j + 1]])


def remove_self_intersections(points: Polygon, max_passes: int = 200) -> Polygon:
    """
    Remove every self-crossing of a closed polygon.

    Each crossing splits the path into two loops; the shorter one (by arc
    length) is replaced with the intersection point. Repeats until no
    crossings remain or ``max_passes`` fixes have been made.

    Args:
        points: Closed polygon
        max_passes: Ceiling on the number of loop removals

    Returns:
        Polygon without crossings (best effort at the ceiling)
    """
    pts = as_polygon(points)
    if len(pts) < 4:
        return pts.copy()

    for _ in range(max_passes):
        hit = _first_crossing(pts)
        if hit is None:
            return pts
        i, j, point = hit
        cut = _cut_loop(pts, i, j, point)
        if len(cut) < 3:
            return pts
        pts = cut

    logger.warning(f"Self-intersection removal stopped after {max_passes} passes")
    return pts


# ---------------------------------------------------------------------------
# 3. Spike bridges
# ---------------------------------------------------------------------------

def _bridge_points(prev, curr, nxt, depth: float, factors) -> Optional[np.ndarray]:
    chord = nxt - prev
    length = float(np.hypot(*chord))
    if length < 1e-9:
        return None

    normal = np.array([-chord[1], chord[0]]) / length
    height = float(np.dot(curr - prev, normal))
    if abs(height) < 1e-9:
        return None
    # Bulge toward the replaced vertex, never past it
    normal *= math.copysign(1.0, height)
    depth = min(depth, abs(height) / factors[1])

    mid = (prev + nxt) / 2
    quarter = (prev + mid) / 2
    three_quarter = (mid + nxt) / 2
    return np.array([
        quarter + normal * depth * factors[0],
        mid + normal * depth * factors[1],
        three_quarter + normal * depth * factors[2],
    ])


def _spike_pass(pts: Polygon) -> Tuple[Polygon, bool]:
    n = len(pts)
    orientation = _orientation(pts)
    out = []
    changed = False
    replaced_first = False
    skip = False

    for i in range(n):
        curr = pts[i]
        if skip or (i == n - 1 and replaced_first):
            out.append(curr[None, :])
            skip = False
            continue

        prev = pts[i - 1]
        nxt = pts[(i + 1) % n]
        v1 = curr - prev
        v2 = nxt - curr
        len1 = float(np.hypot(*v1))
        len2 = float(np.hypot(*v2))

        bridge = None
        if SPIKE_MIN_EDGE <= len1 <= SPIKE_MAX_EDGE and SPIKE_MIN_EDGE <= len2 <= SPIKE_MAX_EDGE:
            cos_turn = float(np.dot(v1, v2)) / (len1 * len2)
            if cos_turn < SHARP_TURN_COS:
                angle = math.acos(max(-1.0, min(1.0, cos_turn)))
                depth = max(1.0, min(len1, len2) * 0.4 * (0.3 + 0.7 * angle / math.pi))
                convex = float(_cross(v1, v2)) * orientation > 0
                bridge = _bridge_points(prev, curr, nxt, depth, U_SHAPE if convex else N_SHAPE)

        if bridge is None:
            out.append(curr[None, :])
            continue

        out.append(bridge)
        changed = True
        skip = True
        if i == 0:
            replaced_first = True

    return np.vstack(out), changed


def remove_spikes(points: Polygon, max_passes: int = 20) -> Polygon:
    """
    Replace sharp cusps with gentle U (convex) or N (concave) bridges.

    A vertex is sharp when the cosine of its turn is below 0.3 and both of
    its edges are short (pixel scale); long straight edges meeting at a
    corner are left alone. Depth follows the turn sharpness:
    ``min(len1, len2) * 0.4 * (0.3 + 0.7 * angle / pi)``.

    Args:
        points: Closed polygon
        max_passes: Ceiling on repeated passes

    Returns:
        Polygon without short sharp cusps
    """
    pts = as_polygon(points)
    if len(pts) < 6:
        return pts.copy()

    for _ in range(max_passes):
        pts, changed = _spike_pass(pts)
        if not changed:
            break
    return pts


# ---------------------------------------------------------------------------
# 4. Simplification
# ---------------------------------------------------------------------------

def _segment_distances(pts: np.ndarray, a: np.ndarray, b: np.ndarray) -> np.ndarray:
    d = b - a
    len_sq = float(np.dot(d, d))
    if len_sq == 0.0:
        return np.hypot(pts[:, 0] - a[0], pts[:, 1] - a[1])
    t = np.clip(((pts - a) @ d) / len_sq, 0.0, 1.0)
    proj = a + t[:, None] * d
    return np.hypot(pts[:, 0] - proj[:, 0], pts[:, 1] - proj[:, 1])


def _dp_keep(pts: np.ndarray, epsilon: float) -> np.ndarray:
    """Douglas-Peucker on an open polyline; returns the kept indices."""
    curve = pts.astype(np.float32)
    kept = cv2.approxPolyDP(curve.reshape(-1, 1, 2), epsilon, closed=False).reshape(-1, 2)

    # approxPolyDP returns a subset of the input points, in order
    indices = []
    j = 0
    for point in kept:
        while not np.array_equal(curve[j], point):
            j += 1
        indices.append(j)
        j += 1
    return np.asarray(indices, dtype=np.intp)


def douglas_peucker_indices(points: Polygon, epsilon: float) -> np.ndarray:
    """
    Indices kept by Douglas-Peucker on a closed polygon, in path order.

    The polygon is split at point 0 and the point farthest from it, so the
    anchors are deterministic and the reduction is idempotent.
    """
    pts = as_polygon(points)
    n = len(pts)
    if n <= 3:
        return np.arange(n)

    dist = np.hypot(pts[:, 0] - pts[0, 0], pts[:, 1] - pts[0, 1])
    far = int(np.argmax(dist))
    if far == 0:
        return np.array([0])

    first = pts[:far + 1]
    second = np.vstack([pts[far:], pts[:1]])
    keep_first = _dp_keep(first, epsilon)
    keep_second = _dp_keep(second, epsilon)[1:-1] + far
    return np.concatenate([keep_first, keep_second])


def douglas_peucker(points: Polygon, epsilon: float, closed: bool = True) -> Polygon:
    """Douglas-Peucker polyline reduction (see ``douglas_peucker_indices``)."""
    pts = as_polygon(points)
    if len(pts) <= 3:
        return pts.copy()
    if not closed:
        return pts[_dp_keep(pts, epsilon)]
    return pts[douglas_peucker_indices(pts, epsilon)]


def remove_collinear(points: Polygon, tolerance_degrees: float = 2.0) -> Polygon:
    """Drop points whose turn angle is below the tolerance (and duplicate points)."""
    pts = as_polygon(points)
    n = len(pts)
    if n <= 3:
        return pts.copy()

    tolerance = math.radians(tolerance_degrees)
    kept = []
    for i in range(n):
        prev = kept[-1] if kept else pts[-1]
        curr = pts[i]
        nxt = pts[(i + 1) % n]
        v1 = curr - prev
        v2 = nxt - curr
        if np.hypot(*v1) < 1e-9:
            continue
        turn = math.atan2(abs(float(_cross(v1, v2))), float(np.dot(v1, v2)))
        if turn < tolerance and np.hypot(*v2) >= 1e-9:
            continue
        kept.append(curr)

    if len(kept) < 3:
        return pts.copy()
    return np.asarray(kept)


def simplify(
    points: Polygon,
    epsilon: float = 1.0,
    tolerance_degrees: float = 2.0,
    max_iterations: int = 10,
) -> Polygon:
    """
    Douglas-Peucker followed by near-collinear removal, to a fixpoint.

    Args:
        points: Closed polygon
        epsilon: Douglas-Peucker perpendicular tolerance in pixels
        tolerance_degrees: Collinearity angle tolerance
        max_iterations: Ceiling on alternating passes

    Returns:
        Simplified polygon (the latest result if the ceiling is hit)
    """
    current = as_polygon(points)
    if len(current) <= 3:
        return current.copy()

    for _ in range(max_iterations):
        reduced = douglas_peucker(current, epsilon)
        if len(reduced) < 3:
            reduced = current
        nxt = remove_collinear(reduced, tolerance_degrees)
        if len(nxt) == len(current):
            return nxt
        current = nxt

    logger.warning(f"Simplification did not settle in {max_iterations} iterations")
    return current


# ---------------------------------------------------------------------------
# 5. Gap closing
# ---------------------------------------------------------------------------

def _max_deviation(excursion: np.ndarray, a: np.ndarray, b: np.ndarray) -> float:
    if len(excursion) == 0:
        return 0.0
    return float(_segment_distances(excursion, a, b).max())


def _find_gaps(pts: Polygon, threshold: float) -> List[Tuple[int, int, float]]:
    n = len(pts)
    seg = np.hypot(*(np.roll(pts, -1, axis=0) - pts).T)
    arc = np.concatenate([[0.0], np.cumsum(seg)[:-1]])
    total = float(seg.sum())

    stride = 5 if n > 500 else 3 if n > 200 else 1
    threshold_sq = threshold * threshold
    gaps = []

    for i in range(0, n, stride):
        js = np.arange(i + 1, n, stride)
        along = arc[js] - arc[i]
        window = (along >= GAP_MIN_ARC) & (along <= GAP_MAX_ARC) & (total - along >= GAP_MIN_RETURN_ARC)
        js = js[window]
        if js.size == 0:
            continue
        dist_sq = np.sum((pts[js] - pts[i]) ** 2, axis=1)
        hit = np.flatnonzero(dist_sq < threshold_sq)
        if hit.size:
            j = int(js[hit[0]])
            gaps.append((i, j, math.sqrt(float(dist_sq[hit[0]]))))
    return gaps


def _is_protrusion(pts: Polygon, i: int, j: int, gap: float, orientation: float) -> bool:
    """An outward excursion much longer than the gap is real geometry, not a gap."""
    loop = pts[i:j + 1]
    outward = signed_area(loop) * orientation > 0
    if not outward:
        return False
    return _max_deviation(pts[i + 1:j], pts[i], pts[j]) > PROTRUSION_RATIO * gap


def _gap_bridge(p1, p2, gap: float, threshold: float, orientation: float, variant: str) -> np.ndarray:
    mid = (p1 + p2) / 2
    if variant == "midpoint":
        return mid[None, :]

    chord = p2 - p1
    left = np.array([-chord[1], chord[0]]) / gap
    exterior = -orientation * left
    bulge = min(gap * 0.3, threshold * 0.4)
    return np.array([
        p1 + exterior * bulge,
        mid + exterior * bulge * 1.5,
        p2 + exterior * bulge,
    ])


def close_gaps(points: Polygon, threshold: float, variant: str = "bulge") -> Polygon:
    """
    Bridge narrow gaps between parts of the path that nearly touch.

    A gap is a pair of positions closer than ``threshold`` but between 50
    and 500 px apart along the path. Inward excursions (notches) are always
    bridged; outward excursions are left alone when their maximum deviation
    exceeds 3x the gap distance. The excursion is deleted and replaced by a
    bulge on the exterior side (or just the midpoint).

    Args:
        points: Closed polygon
        threshold: Gap distance threshold in pixels
        variant: "bulge" or "midpoint"

    Returns:
        Bridged polygon without self-intersections
    """
    pts = as_polygon(points)
    if threshold <= 0 or len(pts) < 4:
        return pts.copy()

    orientation = _orientation(pts)
    gaps = [
        (i, j, gap) for i, j, gap in _find_gaps(pts, threshold)
        if not _is_protrusion(pts, i, j, gap, orientation)
    ]
    if not gaps:
        return pts.copy()

    pieces = []
    current = 0
    for i, j, gap in gaps:
        if i < current:
            continue
        pieces.append(pts[current:i + 1])
        if gap > 0.5:
            pieces.append(_gap_bridge(pts[i], pts[j], gap, threshold, orientation, variant))
        current = j
    pieces.append(pts[current:])

    bridged = np.vstack(pieces)
    if len(bridged) < 3:
        return pts.copy()

    logger.debug(f"Closed {len(gaps)} gap(s), {len(pts)} -> {len(bridged)} points")
    return remove_self_intersections(bridged)


# ---------------------------------------------------------------------------
# Offsetting and composition
# ---------------------------------------------------------------------------

def expand_path_outward(points: Polygon, distance: float) -> Polygon:
    """Offset every vertex along its averaged outward normal."""
    pts = as_polygon(points)
    if len(pts) < 3 or distance == 0:
        return pts.copy()

    outward = -_orientation(pts)

    e1 = pts - np.roll(pts, 1, axis=0)
    e2 = np.roll(pts, -1, axis=0) - pts
    len1 = np.hypot(e1[:, 0], e1[:, 1])
    len2 = np.hypot(e2[:, 0], e2[:, 1])
    len1[len1 == 0] = 1.0
    len2[len2 == 0] = 1.0

    n1 = np.stack([-e1[:, 1] / len1, e1[:, 0] / len1], axis=1)
    n2 = np.stack([-e2[:, 1] / len2, e2[:, 0] / len2], axis=1)
    normal = (n1 + n2) / 2
    norm = np.hypot(normal[:, 0], normal[:, 1])
    norm[norm == 0] = 1.0
    normal /= norm[:, None]

    return pts + normal * distance * outward


def prepare_path(points: Polygon, smoothing: str = "standard") -> Polygon:
    """Stages 1-2: smoothing and self-intersection removal (the dense path)."""
    return remove_self_intersections(smooth(points, smoothing))


def _finish_pass(pts: Polygon, config: ContourConfig, gap_threshold: float) -> Polygon:
    if config.remove_spikes:
        pts = remove_spikes(pts)
    pts = simplify(pts, config.simplify_epsilon, config.collinear_tolerance)
    if gap_threshold > 0:
        pts = close_gaps(pts, gap_threshold, config.gap_bridge)
    # Simplification can cut across narrow necks
    return remove_self_intersections(pts)


def finish_path(
    points: Polygon,
    config: Optional[ContourConfig] = None,
    gap_threshold: float = 0.0,
    max_rounds: int = FINISH_MAX_ROUNDS,
) -> Polygon:
    """
    Stages 3-5: spike bridges, simplification and optional gap closing.

    Simplifying a bridge can leave a new short sharp vertex behind, so the
    stages repeat until a round no longer moves any point. The settled path
    is returned as is, which makes the stage idempotent.

    Args:
        points: Dense polygon from ``prepare_path``
        config: Pipeline flags
        gap_threshold: Gap-closing distance in pixels (0 disables)
        max_rounds: Ceiling on repeated rounds

    Returns:
        Refined polygon (the latest round if the ceiling is hit)
    """
    config = config or ContourConfig()
    pts = as_polygon(points)

    for _ in range(max_rounds):
        nxt = _finish_pass(pts, config, gap_threshold)
        if nxt.shape == pts.shape and np.allclose(nxt, pts, rtol=0.0, atol=SETTLED_TOLERANCE):
            return pts
        pts = nxt

    logger.warning(f"Path refinement did not settle in {max_rounds} rounds")
    return pts


def refine_path(
    points: Polygon,
    config: Optional[ContourConfig] = None,
    gap_threshold: float = 0.0,
) -> Polygon:
    """
    Run every refinement stage on a traced polygon.

    Args:
        points: Traced boundary
        config: Pipeline flags (smoothing level, epsilon, gap bridge variant)
        gap_threshold: Gap-closing distance in pixels (0 disables)

    Returns:
        Refined polygon, or the input when it has fewer than 3 points
    """
    config = config or ContourConfig()
    pts = as_polygon(points)
    if len(pts) < 3:
        return pts.copy()

    dense = prepare_path(pts, config.smoothing)
    refined = finish_path(dense, config, gap_threshold)
    logger.debug(f"Refined path {len(pts)} -> {len(refined)} points")
    return refined
