"""Tests for occupancy mask construction and image ingestion."""
import io

import numpy as np
import pytest
from PIL import Image

from cutcontour.mask_builder import build_occupancy_mask, build_color_mask, classify_artifacts
from cutcontour.raster_ingest import ingest, ingest_bytes, ingest_from_array, resample
from cutcontour.types import RasterImage, EncodingError


def _pixels(rows):
    return np.asarray(rows, dtype=np.uint8).reshape(1, -1, 4)


class TestOccupancyMask:
    """Test alpha thresholding."""

    def test_threshold_is_inclusive(self):
        """Test a pixel is occupied iff alpha >= threshold."""
        image = RasterImage(pixels=_pixels([
            [255, 0, 0, 0],
            [255, 0, 0, 9],
            [255, 0, 0, 10],
            [255, 0, 0, 255],
        ]))

        mask = build_occupancy_mask(image, alpha_threshold=10)

        assert mask.data.tolist() == [[False, False, True, True]]
        assert mask.offset == 0

    def test_artifact_filter(self):
        """Test faint dark/grey pixels are dropped only when filtering is on."""
        image = RasterImage(pixels=_pixels([
            [10, 10, 10, 50],     # faint dark: artifact
            [120, 120, 125, 50],  # faint grey: artifact
            [255, 0, 0, 50],      # faint but saturated: kept
            [10, 10, 10, 200],    # dark but solid: kept
        ]))

        plain = build_occupancy_mask(image, alpha_threshold=10)
        filtered = build_occupancy_mask(image, alpha_threshold=10, filter_artifacts=True)

        assert plain.data.all()
        assert filtered.data.tolist() == [[False, False, True, True]]

    def test_classify_artifacts(self):
        """Test the artifact classifier on its own."""
        pixels = _pixels([[0, 0, 0, 127], [0, 0, 0, 128]])
        flags = classify_artifacts(pixels)
        assert flags.tolist() == [[True, False]]

    def test_large_image_keeps_native_resolution(self):
        """Test the downsampled path still returns a native-size mask."""
        pixels = np.zeros((200, 300, 4), dtype=np.uint8)
        pixels[50:150, 100:200, 3] = 255
        image = RasterImage(pixels=pixels)

        mask = build_occupancy_mask(image, max_dimension=100)

        assert mask.data.shape == (200, 300)
        assert mask.data[100, 150]
        assert not mask.data[10, 10]
        # Nearest-neighbor round trip stays within a few pixels of the edge
        assert abs(mask.count - 100 * 100) < 100 * 4 * 4

    def test_dpi_recorded(self):
        """Test the effective DPI is carried on the mask."""
        image = RasterImage(pixels=np.full((4, 4, 4), 255, dtype=np.uint8))
        mask = build_occupancy_mask(image, dpi=150.0)
        assert mask.dpi == 150.0

    def test_empty_image(self, empty_image):
        """Test a fully transparent image gives an empty mask."""
        mask = build_occupancy_mask(empty_image)
        assert mask.is_empty
        assert mask.count == 0


class TestColorMask:
    """Test color matching for spot layers."""

    def test_matches_within_tolerance(self):
        """Test colors within the Euclidean tolerance match."""
        image = RasterImage(pixels=_pixels([
            [250, 10, 10, 255],
            [10, 250, 10, 255],
            [250, 10, 10, 50],
        ]))

        mask = build_color_mask(image, [(255, 0, 0)], tolerance=50)

        assert mask.tolist() == [[True, False, False]]


class TestRasterIngest:
    """Test image decoding."""

    def test_ingest_png(self, tmp_path):
        """Test a PNG file is decoded to RGBA."""
        path = tmp_path / "art.png"
        Image.new("RGB", (12, 8), (10, 20, 30)).save(path)

        image = ingest(path)

        assert (image.width, image.height) == (12, 8)
        assert image.pixels.shape == (8, 12, 4)
        assert (image.alpha == 255).all()

    def test_missing_file(self, tmp_path):
        """Test a missing file raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            ingest(tmp_path / "missing.png")

    def test_undecodable_bytes(self):
        """Test garbage bytes raise EncodingError."""
        with pytest.raises(EncodingError):
            ingest_bytes(b"not an image")

    def test_ingest_bytes_keeps_alpha(self):
        """Test alpha survives decoding from memory."""
        buf = io.BytesIO()
        Image.new("RGBA", (5, 5), (0, 0, 0, 0)).save(buf, format="PNG")

        image = ingest_bytes(buf.getvalue())

        assert (image.alpha == 0).all()

    def test_from_float_array(self):
        """Test float RGB arrays in [0, 1] are scaled and given opaque alpha."""
        image = ingest_from_array(np.ones((3, 4, 3), dtype=np.float32))

        assert image.pixels.dtype == np.uint8
        assert (image.pixels == 255).all()

    def test_resample(self):
        """Test resampling to an explicit size."""
        image = RasterImage(pixels=np.full((10, 20, 4), 255, dtype=np.uint8))

        small = resample(image, 10, 5, nearest=True)

        assert (small.width, small.height) == (10, 5)
