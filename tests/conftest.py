"""Shared fixtures: synthetic RGBA images and polygons."""
import numpy as np
import pytest

from cutcontour.types import RasterImage


def rgba_from_mask(mask: np.ndarray, color=(200, 40, 40)) -> RasterImage:
    """Opaque ``color`` where ``mask`` is True, fully transparent elsewhere."""
    h, w = mask.shape
    pixels = np.zeros((h, w, 4), dtype=np.uint8)
    pixels[mask, :3] = color
    pixels[mask, 3] = 255
    return RasterImage(pixels=pixels)


def disc(height: int, width: int, cx: float, cy: float, r: float) -> np.ndarray:
    yy, xx = np.mgrid[0:height, 0:width]
    return (xx - cx) ** 2 + (yy - cy) ** 2 <= r * r


def circle_polygon(cx: float, cy: float, r: float, n: int = 256) -> np.ndarray:
    t = np.linspace(0, 2 * np.pi, n, endpoint=False)
    return np.column_stack([cx + r * np.cos(t), cy + r * np.sin(t)])


def dense_rectangle(x0: float, y0: float, x1: float, y1: float, step: float = 1.0) -> np.ndarray:
    """Rectangle outline sampled every ``step`` along each edge."""
    top = [(x, y0) for x in np.arange(x0, x1, step)]
    right = [(x1, y) for y in np.arange(y0, y1, step)]
    bottom = [(x, y1) for x in np.arange(x1, x0, -step)]
    left = [(x0, y) for y in np.arange(y1, y0, -step)]
    return np.asarray(top + right + bottom + left, dtype=np.float64)


def dense_rounded_rectangle(x0: float, y0: float, x1: float, y1: float, r: float) -> np.ndarray:
    """Rounded rectangle outline: 1 px steps on edges, 2 degree steps on arcs."""
    pts = []
    corners = [
        (x1 - r, y0 + r, -90),
        (x1 - r, y1 - r, 0),
        (x0 + r, y1 - r, 90),
        (x0 + r, y0 + r, 180),
    ]
    for k, (cx, cy, start) in enumerate(corners):
        for a in np.arange(start, start + 90, 2.0):
            rad = np.radians(a)
            pts.append((cx + r * np.cos(rad), cy + r * np.sin(rad)))
        end = np.radians(start + 90)
        ex, ey = cx + r * np.cos(end), cy + r * np.sin(end)
        nx, ny, _ = corners[(k + 1) % 4]
        nstart = np.radians(corners[(k + 1) % 4][2])
        tx, ty = nx + r * np.cos(nstart), ny + r * np.sin(nstart)
        length = np.hypot(tx - ex, ty - ey)
        for s in np.arange(0, length, 1.0):
            pts.append((ex + (tx - ex) * s / length, ey + (ty - ey) * s / length))
    return np.asarray(pts, dtype=np.float64)


@pytest.fixture
def opaque_square_image():
    """1000x1000 fully opaque image."""
    pixels = np.full((1000, 1000, 4), 255, dtype=np.uint8)
    return RasterImage(pixels=pixels)


@pytest.fixture
def disc_image():
    """400x400 image with an opaque disc of radius 150."""
    return rgba_from_mask(disc(400, 400, 199.5, 199.5, 150))


@pytest.fixture
def empty_image():
    return RasterImage(pixels=np.zeros((50, 50, 4), dtype=np.uint8))
