"""Binary morphology on occupancy masks.

Every operator is a pure function of its inputs. Dilation never clips:
the output buffer grows by ``2 * radius`` in each axis and the mask
``offset`` records the extra padding so callers can map back to the
source image. Erosion is the exact geometric inverse.
"""
import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np
from scipy import ndimage
from skimage.morphology import disk

from cutcontour.types import OccupancyMask, StrokeSettings, ContourConfig

logger = logging.getLogger(__name__)

# Physical offsets, in inches
BASE_OFFSET_INCHES = 0.015
AUTO_BRIDGE_INCHES = 0.02
SMALL_GAP_INCHES = 0.07
BIG_GAP_INCHES = 0.19
BRIDGE_TOUCHING_INCHES = 0.03

# 8-connectivity for component labelling
EIGHT_CONNECTED = np.ones((3, 3), dtype=bool)

AXIS_DIRECTIONS = {
    "left": (-1, 0),
    "right": (1, 0),
    "up": (0, -1),
    "down": (0, 1),
}
DIAGONAL_DIRECTIONS = {
    "up_left": (-1, -1),
    "down_right": (1, 1),
    "up_right": (1, -1),
    "down_left": (-1, 1),
}


def round_px(value: float) -> int:
    """Round half up, so 0.5 px becomes 1 px."""
    return int(np.floor(value + 0.5))


def _disk(radius: int) -> np.ndarray:
    return disk(radius).astype(bool)


def dilate(mask: OccupancyMask, radius: int) -> OccupancyMask:
    """
    Grow the mask by a disc of the given pixel radius.

    The output is ``2 * radius`` larger in both axes and its offset grows
    by ``radius``; nothing is clipped at the edges.

    Args:
        mask: Input mask
        radius: Disc radius in pixels

    Returns:
        Dilated mask
    """
    radius = int(radius)
    if radius <= 0:
        return mask.with_data(mask.data.copy())

    padded = np.pad(mask.data, radius, mode='constant', constant_values=False)
    grown = ndimage.binary_dilation(padded, structure=_disk(radius))
    return mask.with_data(grown, offset=mask.offset + radius)


def fill(mask: OccupancyMask) -> OccupancyMask:
    """
    Fill every empty cell not reachable from the image edges.

    Exterior cells are found by a 4-connected flood from the border, the
    same neighborhood ``binary_fill_holes`` uses for background by default.
    """
    return mask.with_data(ndimage.binary_fill_holes(mask.data))


def erode(mask: OccupancyMask, radius: int) -> OccupancyMask:
    """
    Shrink the mask: a cell survives only if its whole disc is occupied.

    Cells outside the buffer count as empty. The result is cropped by
    ``radius`` on every side, undoing the padding added by ``dilate``.
    """
    radius = int(radius)
    if radius <= 0:
        return mask.with_data(mask.data.copy())

    h, w = mask.data.shape
    if h <= 2 * radius or w <= 2 * radius:
        empty = np.zeros((max(h - 2 * radius, 0), max(w - 2 * radius, 0)), dtype=bool)
        return mask.with_data(empty, offset=mask.offset - radius)

    shrunk = ndimage.binary_erosion(mask.data, structure=_disk(radius), border_value=0)
    cropped = shrunk[radius:-radius, radius:-radius]
    return mask.with_data(cropped, offset=mask.offset - radius)


def close(mask: OccupancyMask, radius: int) -> OccupancyMask:
    """Morphological closing with hole filling: erode(fill(dilate(m, r)), r)."""
    if radius <= 0:
        return mask.with_data(mask.data.copy())
    return erode(fill(dilate(mask, radius)), radius)


def _shift(data: np.ndarray, dx: int, dy: int) -> np.ndarray:
    """out[y, x] = data[y + dy, x + dx], False outside the buffer."""
    h, w = data.shape
    out = np.zeros_like(data)
    if abs(dx) >= w or abs(dy) >= h:
        return out
    src_y = slice(max(dy, 0), h + min(dy, 0))
    src_x = slice(max(dx, 0), w + min(dx, 0))
    dst_y = slice(max(-dy, 0), h + min(-dy, 0))
    dst_x = slice(max(-dx, 0), w + min(-dx, 0))
    out[dst_y, dst_x] = data[src_y, src_x]
    return out


def _reach(data: np.ndarray, dx: int, dy: int, distance: int) -> np.ndarray:
    """True where an occupied cell lies within ``distance`` steps along (dx, dy)."""
    hit = np.zeros_like(data)
    for step in range(1, distance + 1):
        hit |= _shift(data, dx * step, dy * step)
    return hit


def bridge_touching(mask: OccupancyMask, distance: int) -> OccupancyMask:
    """
    Seal near-touching parts without a full closing pass.

    An empty cell is filled when occupied cells lie on opposing sides of it
    (left/right, up/down or either diagonal pair) or in 3 or more of the 4
    axis directions, all within ``distance`` steps. Holes are filled after.
    """
    if distance <= 0 or mask.is_empty:
        return mask.with_data(mask.data.copy())

    data = mask.data
    hits = {name: _reach(data, dx, dy, distance) for name, (dx, dy) in AXIS_DIRECTIONS.items()}
    diag = {name: _reach(data, dx, dy, distance) for name, (dx, dy) in DIAGONAL_DIRECTIONS.items()}

    opposing = (
        (hits["left"] & hits["right"])
        | (hits["up"] & hits["down"])
        | (diag["up_left"] & diag["down_right"])
        | (diag["up_right"] & diag["down_left"])
    )
    axis_count = sum(hit.astype(np.uint8) for hit in hits.values())
    bridged = data | (~data & (opposing | (axis_count >= 3)))

    return mask.with_data(ndimage.binary_fill_holes(bridged))


def _crop(data: np.ndarray, amount: int) -> np.ndarray:
    if amount <= 0:
        return data
    return data[amount:-amount, amount:-amount]


def auto_bridge(mask: OccupancyMask, radius: int) -> OccupancyMask:
    """
    Merge hairline separations with a half-radius dilate and fill.

    The filled result is cropped back to the input extent, so dimensions
    and offset are unchanged.
    """
    half = round_px(radius / 2)
    if half <= 0:
        return mask.with_data(mask.data.copy())
    filled = fill(dilate(mask, half))
    return mask.with_data(_crop(filled.data, half).copy())


def gap_close(mask: OccupancyMask, gap: int) -> OccupancyMask:
    """
    Fill narrow interior gaps of width up to ``gap`` pixels.

    A cell is filled when it is empty, lies inside the half-gap
    dilated-and-filled silhouette, is not on the buffer border, and the
    original mask has content within half the gap both above and below or
    both left and right of it.
    """
    half = round_px(gap / 2)
    if half <= 0 or mask.is_empty:
        return mask.with_data(mask.data.copy())

    data = mask.data
    inside = _crop(fill(dilate(mask, half)).data, half)

    candidates = ~data & inside
    candidates[0, :] = False
    candidates[-1, :] = False
    candidates[:, 0] = False
    candidates[:, -1] = False

    hits = {name: _reach(data, dx, dy, half) for name, (dx, dy) in AXIS_DIRECTIONS.items()}
    spans = (hits["up"] & hits["down"]) | (hits["left"] & hits["right"])

    return mask.with_data(data | (candidates & spans))


def unify(mask: OccupancyMask, radius: int) -> OccupancyMask:
    """Merge disconnected pieces lying within ``2 * radius`` of each other."""
    return close(mask, radius)


def is_connected(mask: OccupancyMask) -> bool:
    """True if the occupied cells form exactly one 8-connected component."""
    _, count = ndimage.label(mask.data, structure=EIGHT_CONNECTED)
    return count == 1


@dataclass
class OffsetPlan:
    """Physical offsets of the silhouette pipeline, resolved to pixels."""
    base: int
    auto_bridge: int
    gap_close: int
    user: int
    unify: int
    bridge_distance: int

    @property
    def total_offset(self) -> int:
        """Padding between the final silhouette and the source image."""
        return self.base + self.user

    @classmethod
    def from_settings(
        cls,
        dpi: float,
        stroke: StrokeSettings,
        config: Optional[ContourConfig] = None,
    ) -> "OffsetPlan":
        """
        Resolve the physical offsets at an effective DPI.

        Args:
            dpi: Effective pixels per inch
            stroke: Stroke settings (outline width, gap flags)
            config: Pipeline flags (unify radius)

        Returns:
            OffsetPlan in whole pixels
        """
        config = config or ContourConfig()

        if stroke.close_big_gaps:
            gap = round_px(BIG_GAP_INCHES * dpi)
        elif stroke.close_small_gaps:
            gap = round_px(SMALL_GAP_INCHES * dpi)
        else:
            gap = 0

        return cls(
            base=round_px(BASE_OFFSET_INCHES * dpi),
            auto_bridge=round_px(AUTO_BRIDGE_INCHES * dpi),
            gap_close=gap,
            user=round_px(stroke.width * dpi),
            unify=round_px(config.unify_radius * dpi) if config.unify else 0,
            bridge_distance=max(2, round_px(BRIDGE_TOUCHING_INCHES * dpi)),
        )


def build_silhouette(mask: OccupancyMask, plan: OffsetPlan, unify_objects: bool = True) -> OccupancyMask:
    """
    Turn a raw occupancy mask into the offset, hole-free cut silhouette.

    Order: auto-bridge, gap-close, unify, base dilate, fill, user dilate,
    bridge-touching.

    Args:
        mask: Occupancy mask at source resolution
        plan: Offsets in pixels
        unify_objects: Merge disconnected objects before offsetting

    Returns:
        Silhouette mask, padded by ``plan.total_offset`` on every side
    """
    result = auto_bridge(mask, plan.auto_bridge)
    result = gap_close(result, plan.gap_close)
    if unify_objects and plan.unify > 0:
        result = unify(result, plan.unify)

    result = fill(dilate(result, plan.base))
    result = dilate(result, plan.user)
    result = bridge_touching(result, plan.bridge_distance)

    logger.debug(
        f"Silhouette {mask.width}x{mask.height} -> {result.width}x{result.height}, "
        f"{result.count} px occupied"
    )
    return result
