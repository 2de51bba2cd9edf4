"""Boundary tracing of occupancy masks (Moore-neighbor following)."""
import logging
from typing import List, Optional, Union

import numpy as np
from scipy import ndimage

from cutcontour.types import OccupancyMask, Polygon

logger = logging.getLogger(__name__)

# Clockwise in screen coordinates (y down), starting east
DIRECTIONS = [(1, 0), (1, 1), (0, 1), (-1, 1), (-1, 0), (-1, -1), (0, -1), (1, -1)]

# Search resumes 90 degrees counter-clockwise of the arrival direction
BACKTRACK = 6

EIGHT_CONNECTED = np.ones((3, 3), dtype=bool)


def _as_array(mask: Union[OccupancyMask, np.ndarray]) -> np.ndarray:
    if isinstance(mask, OccupancyMask):
        return mask.data
    return np.asarray(mask, dtype=bool)


def trace_boundary(
    mask: Union[OccupancyMask, np.ndarray],
    max_steps: Optional[int] = None,
) -> Polygon:
    """
    Walk the outer boundary of the occupied region.

    Starts at the topmost-then-leftmost occupied pixel and follows the
    boundary with Moore-neighbor tracing until the start pixel is revisited
    or the step budget is exhausted. Only the component containing the
    start pixel is traced.

    Args:
        mask: Occupancy mask
        max_steps: Step budget (default ``2 * width * height``)

    Returns:
        (N, 2) float array of pixel centers (x = column, y = row), or an
        empty (0, 2) array if nothing is occupied. If the budget runs out
        the partial walk is returned.
    """
    data = _as_array(mask)
    h, w = data.shape

    occupied = np.flatnonzero(data)
    if occupied.size == 0:
        return np.empty((0, 2), dtype=np.float64)

    start_y, start_x = divmod(int(occupied[0]), w)
    budget = max_steps if max_steps is not None else 2 * w * h

    # Pad by one so neighbor lookups never leave the buffer
    grid = np.pad(data, 1, mode='constant', constant_values=False)

    path = [(start_x, start_y)]
    x, y = start_x, start_y
    direction = 0
    steps = 0

    while steps < budget:
        moved = False
        for i in range(8):
            d = (direction + BACKTRACK + i) % 8
            dx, dy = DIRECTIONS[d]
            nx, ny = x + dx, y + dy
            if grid[ny + 1, nx + 1]:
                x, y = nx, ny
                direction = d
                moved = True
                break

        if not moved:
            # Isolated pixel
            break

        if x == start_x and y == start_y:
            break

        path.append((x, y))
        steps += 1
    else:
        logger.warning(f"Boundary trace hit its step budget ({budget}), returning partial path")

    return np.asarray(path, dtype=np.float64)


def trace_holes(component: np.ndarray, min_points: int = 10) -> List[Polygon]:
    """
    Trace the boundary of every hole enclosed by a single component.

    Holes are the 4-connected empty areas that do not reach the buffer
    edge. Each is walked along its own empty pixels, so the returned
    polygons sit just inside the hole.

    Args:
        component: (H, W) bool mask of one 8-connected component
        min_points: Holes whose boundary has this many points or fewer
            are dropped

    Returns:
        List of hole polygons in the component's coordinates
    """
    # Pad so the exterior is one connected empty area
    padded = np.pad(np.asarray(component, dtype=bool), 1, mode='constant', constant_values=False)
    labels, count = ndimage.label(~padded)
    exterior = labels[0, 0]

    holes = []
    for index, bbox in enumerate(ndimage.find_objects(labels), start=1):
        if bbox is None or index == exterior:
            continue
        path = trace_boundary(labels[bbox] == index)
        if len(path) <= min_points:
            continue
        path[:, 0] += bbox[1].start - 1
        path[:, 1] += bbox[0].start - 1
        holes.append(path)
    return holes


def trace_regions(
    mask: Union[OccupancyMask, np.ndarray],
    min_points: int = 10,
    holes: bool = False,
) -> List[Polygon]:
    """
    Trace every 8-connected component separately.

    Args:
        mask: Occupancy mask
        min_points: Components (and holes) whose boundary has this many
            points or fewer are dropped
        holes: Also trace the holes of each component, listed right after
            its outer boundary (for even-odd filling)

    Returns:
        List of boundary polygons, ordered by each component's first pixel
        in raster order
    """
    data = _as_array(mask)
    labels, count = ndimage.label(data, structure=EIGHT_CONNECTED)
    if count == 0:
        return []

    regions = []
    for index, bbox in enumerate(ndimage.find_objects(labels), start=1):
        if bbox is None:
            continue
        component = labels[bbox] == index
        path = trace_boundary(component)
        if len(path) <= min_points:
            continue
        path[:, 0] += bbox[1].start
        path[:, 1] += bbox[0].start
        regions.append(path)

        if holes:
            for hole in trace_holes(component, min_points):
                hole[:, 0] += bbox[1].start
                hole[:, 1] += bbox[0].start
                regions.append(hole)

    logger.debug(f"Traced {len(regions)} of {count} regions")
    return regions
