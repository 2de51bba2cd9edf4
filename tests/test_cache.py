"""Tests for content-addressed caching."""
import numpy as np
import pytest

from cutcontour.cache import MaskCache, image_hash, settings_hash
from cutcontour.types import ContourConfig, PhysicalSize, RasterImage, StrokeSettings


class TestHashes:
    """Test image and settings digests."""

    def test_image_hash_stable(self):
        """Test equal pixels give equal digests."""
        a = RasterImage(pixels=np.zeros((4, 4, 4), dtype=np.uint8))
        b = RasterImage(pixels=np.zeros((4, 4, 4), dtype=np.uint8))
        assert image_hash(a) == image_hash(b)
        assert len(image_hash(a)) == 64

    def test_image_hash_changes(self):
        """Test one changed pixel or a different shape changes the digest."""
        pixels = np.zeros((4, 4, 4), dtype=np.uint8)
        base = image_hash(RasterImage(pixels=pixels))

        changed = pixels.copy()
        changed[1, 2, 3] = 1

        assert image_hash(RasterImage(pixels=changed)) != base
        assert image_hash(RasterImage(pixels=np.zeros((2, 8, 4), dtype=np.uint8))) != base

    def test_settings_hash(self):
        """Test any setting change produces a new key."""
        base = settings_hash(StrokeSettings(), PhysicalSize(1, 1), ContourConfig())

        assert base == settings_hash(StrokeSettings(), PhysicalSize(1, 1), ContourConfig())
        assert base != settings_hash(StrokeSettings(width=0.1), PhysicalSize(1, 1), ContourConfig())
        assert base != settings_hash(StrokeSettings(), PhysicalSize(1, 2), ContourConfig())
        assert base != settings_hash(StrokeSettings(), PhysicalSize(1, 1), ContourConfig(unify=False))

    def test_none_skipped(self):
        """Test None records do not affect the key."""
        assert settings_hash(StrokeSettings(), None) == settings_hash(StrokeSettings())


class TestMaskCache:
    """Test LRU behavior."""

    def test_eviction_order(self):
        """Test the least recently used entry is evicted first."""
        cache = MaskCache(max_entries=2)
        cache.put("a", 1)
        cache.put("b", 2)
        assert cache.get("a") == 1

        cache.put("c", 3)

        assert "a" in cache
        assert "b" not in cache
        assert "c" in cache
        assert len(cache) == 2

    def test_counters(self):
        """Test hit and miss counting and clearing."""
        cache = MaskCache()
        assert cache.get("missing") is None
        cache.put("k", "v")
        assert cache.get("k") == "v"
        assert (cache.hits, cache.misses) == (1, 1)

        cache.clear()

        assert len(cache) == 0
        assert (cache.hits, cache.misses) == (0, 0)

    def test_invalid_size(self):
        """Test a cache must hold at least one entry."""
        with pytest.raises(ValueError):
            MaskCache(max_entries=0)
