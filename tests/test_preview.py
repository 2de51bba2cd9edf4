"""Tests for raster previews."""
import numpy as np
import pytest

from cutcontour import ContourPipeline
from cutcontour.preview import outline_points, render_mask
from cutcontour.types import OccupancyMask, PhysicalSize, StrokeSettings


class TestRenderMask:
    """Test painting masks back into pixels."""

    def test_occupied_cells_painted(self):
        """Test occupied cells get the color, everything else stays clear."""
        data = np.zeros((4, 6), dtype=bool)
        data[1:3, 2:5] = True

        out = render_mask(OccupancyMask(data=data), "#FF8000")

        assert out.shape == (4, 6, 4)
        assert out.dtype == np.uint8
        assert out[1, 2].tolist() == [255, 128, 0, 255]
        assert np.array_equal(out[..., 3] == 255, data)
        assert not out[~data].any()

    def test_default_black(self):
        """Test the default color is opaque black."""
        out = render_mask(OccupancyMask(data=np.ones((2, 2), dtype=bool)))
        assert out.reshape(-1, 4).tolist() == [[0, 0, 0, 255]] * 4

    def test_silhouette_round_trip(self, disc_image):
        """Test a traced silhouette renders with its own frame size."""
        result = ContourPipeline().trace(disc_image, StrokeSettings(), PhysicalSize(2, 2))

        out = render_mask(result.mask)

        assert out.shape[:2] == result.mask.data.shape
        assert np.count_nonzero(out[..., 3]) == result.mask.count


class TestOutlinePoints:
    """Test sampling of the cut line used by previews."""

    def test_snapped_circle_sampled(self, disc_image):
        """Test a snapped circle is sampled on its radius."""
        result = ContourPipeline().trace(disc_image, StrokeSettings(), PhysicalSize(2, 2))
        circle = result.primitive

        points = outline_points(result)

        radius = np.hypot(points[:, 0] - circle.cx, points[:, 1] - circle.cy)
        assert radius == pytest.approx(circle.radius, rel=1e-3)

    def test_polygon_without_primitive(self, disc_image):
        """Test the refined polygon is used when nothing was snapped."""
        result = ContourPipeline().trace(disc_image, StrokeSettings(), PhysicalSize(2, 2))
        result.primitive = None

        assert outline_points(result) is result.polygon
