"""Integration tests for the contour pipeline."""
import cv2
import numpy as np
import pytest

from cutcontour import ContourPipeline, get_contour_path
from cutcontour.cache import MaskCache
from cutcontour.refine import find_self_intersections
from cutcontour.snap import angular_coverage, fit_circle_kasa
from cutcontour.types import (
    Circle,
    ContourConfig,
    PhysicalSize,
    Rectangle,
    ShapeSettings,
    StrokeSettings,
)

from conftest import disc, rgba_from_mask


def _inside(polygon, point):
    contour = polygon.astype(np.float32).reshape(-1, 1, 2)
    return cv2.pointPolygonTest(contour, point, False) >= 0


class TestContourPipeline:
    """Test end-to-end contour tracing."""

    def test_opaque_square_snaps_to_rectangle(self, opaque_square_image):
        """Test a fully opaque image yields its offset bounding rectangle."""
        result = ContourPipeline().trace(opaque_square_image, StrokeSettings(), PhysicalSize(5, 5))

        assert result is not None
        assert result.effective_dpi == pytest.approx(200)
        assert isinstance(result.primitive, Rectangle)
        corners = {tuple(p) for p in np.round(result.primitive.corners).astype(int).tolist()}
        assert corners == {(0, 0), (1005, 0), (1005, 1005), (0, 1005)}
        assert result.width_inches == pytest.approx(1006 / 200)
        assert result.image_offset_x == pytest.approx(3 / 200)

    def test_disc_with_slit_is_healed(self):
        """Test a 2 px radial slit is closed and the outline stays round."""
        mask = disc(400, 400, 199.5, 199.5, 150)
        mask[199:201, 200:] = False
        image = rgba_from_mask(mask)

        result = ContourPipeline().trace(image, StrokeSettings(close_small_gaps=True), PhysicalSize(2, 2))

        assert result is not None
        assert find_self_intersections(result.polygon) == []
        cx, cy, r = fit_circle_kasa(result.polygon)
        assert angular_coverage(result.polygon, cx, cy) >= 330
        assert r == pytest.approx(153, abs=3)
        # No deep notch left where the slit was
        radial = np.hypot(result.polygon[:, 0] - cx, result.polygon[:, 1] - cy)
        assert radial.min() > 140

    def test_nearby_objects_unified(self):
        """Test two squares 10 px apart share one outline."""
        data = np.zeros((80, 130), dtype=bool)
        data[15:65, 10:60] = True
        data[15:65, 70:120] = True
        config = ContourConfig(unify_radius=0.2, snap_primitives=False)

        result = ContourPipeline(config).trace(rgba_from_mask(data), StrokeSettings(), PhysicalSize(1.3, 0.8))

        assert result is not None
        assert result.effective_dpi == pytest.approx(100)
        assert result.mask.offset == 2
        for point in [(13.0, 18.0), (60.0, 65.0), (73.0, 18.0), (120.0, 65.0), (66.5, 42.0)]:
            assert _inside(result.polygon, point)

    def test_path_inches_flipped(self, disc_image):
        """Test the physical path has y measured from the bottom."""
        result = ContourPipeline().trace(disc_image, StrokeSettings(), PhysicalSize(2, 2))

        expected = result.polygon / result.effective_dpi
        assert np.allclose(result.path_inches[:, 0], expected[:, 0])
        assert np.allclose(result.path_inches[:, 1], result.height_inches - expected[:, 1])

    def test_disc_snaps_to_circle(self, disc_image):
        """Test a clean disc becomes an exact circle in both frames."""
        result = ContourPipeline().trace(disc_image, StrokeSettings(), PhysicalSize(2, 2))

        assert isinstance(result.primitive, Circle)
        assert isinstance(result.primitive_inches, Circle)
        assert result.primitive_inches.radius == pytest.approx(result.primitive.radius / 200)

    def test_empty_image(self, empty_image):
        """Test nothing to trace returns None."""
        assert ContourPipeline().trace(empty_image, StrokeSettings(), PhysicalSize(1, 1)) is None
        assert get_contour_path(empty_image, StrokeSettings(), PhysicalSize(1, 1)) is None

    def test_stroke_width_grows_frame(self, disc_image):
        """Test the user offset pads the frame on every side."""
        plain = ContourPipeline().trace(disc_image, StrokeSettings(), PhysicalSize(2, 2))
        wide = ContourPipeline().trace(disc_image, StrokeSettings(width=0.1), PhysicalSize(2, 2))

        assert wide.mask.width == plain.mask.width + 2 * 20
        assert wide.image_offset_x == pytest.approx(plain.image_offset_x + 0.1)


class TestPreviewAndExport:
    """Test previews, documents and caching."""

    def test_preview_is_downsampled(self, disc_image):
        """Test the preview runs at the preview cap and pads for bleed."""
        config = ContourConfig(preview_max_dimension=200)

        preview = ContourPipeline(config).preview(disc_image, StrokeSettings(), PhysicalSize(2, 2))

        # 200 px at 100 dpi, 2 px base offset, 4 px bleed margin
        assert preview.shape == (212, 212, 4)
        assert preview[106, 106, 3] == 255
        assert preview[0, 0, 3] == 0

    def test_preview_empty(self, empty_image):
        """Test an empty image has no preview."""
        assert ContourPipeline().preview(empty_image, StrokeSettings(), PhysicalSize(1, 1)) is None

    def test_export_pdf(self, disc_image):
        """Test the contour document is produced."""
        data = ContourPipeline().export_pdf(disc_image, StrokeSettings(), PhysicalSize(2, 2))
        assert data.startswith(b"%PDF")

    def test_export_empty(self, empty_image):
        """Test no document for an empty image."""
        assert ContourPipeline().export_pdf(empty_image, StrokeSettings(), PhysicalSize(1, 1)) is None

    def test_export_shape_pdf(self, disc_image):
        """Test shape mode needs no tracing."""
        data = ContourPipeline().export_shape_pdf(disc_image, ShapeSettings(type="oval"), PhysicalSize(2, 2))
        assert data.startswith(b"%PDF")

    def test_silhouette_cache(self, disc_image):
        """Test a repeated trace reuses the cached silhouette."""
        cache = MaskCache()
        pipeline = ContourPipeline(cache=cache)

        first = pipeline.trace(disc_image, StrokeSettings(), PhysicalSize(2, 2))
        second = pipeline.trace(disc_image, StrokeSettings(), PhysicalSize(2, 2))

        assert (cache.misses, cache.hits) == (1, 1)
        assert len(cache) == 1
        assert np.array_equal(first.polygon, second.polygon)

        pipeline.trace(disc_image, StrokeSettings(width=0.05), PhysicalSize(2, 2))
        assert len(cache) == 2
