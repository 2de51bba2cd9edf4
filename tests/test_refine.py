"""Tests for path refinement stages."""
import numpy as np
import pytest

from cutcontour.morphology import dilate, fill
from cutcontour.refine import (
    chaikin,
    close_gaps,
    douglas_peucker,
    douglas_peucker_indices,
    expand_path_outward,
    find_self_intersections,
    is_lattice_path,
    path_length,
    refine_path,
    remove_collinear,
    remove_self_intersections,
    remove_spikes,
    segment_intersection,
    signed_area,
    simplify,
    smooth,
    smooth_path,
)
from cutcontour.tracer import trace_boundary
from cutcontour.types import ContourConfig, OccupancyMask

from conftest import dense_rectangle, disc

NOTCHED_SQUARE = [
    (0, 0), (98, 0), (98, 150), (102, 150), (102, 0), (200, 0), (200, 200), (0, 200),
]
PROTRUDING_SQUARE = [
    (0, 0), (98, 0), (98, -150), (102, -150), (102, 0), (200, 0), (200, 200), (0, 200),
]


def _random_silhouette(seed: int) -> OccupancyMask:
    """Union of a few random boxes and discs, grown and filled like a cut silhouette."""
    rng = np.random.default_rng(seed)
    data = np.zeros((100, 100), dtype=bool)
    for _ in range(int(rng.integers(2, 6))):
        x0, y0 = (int(v) for v in rng.integers(5, 65, size=2))
        w, h = (int(v) for v in rng.integers(3, 30, size=2))
        if rng.random() < 0.5:
            data[y0:y0 + h, x0:x0 + w] = True
        else:
            data |= disc(100, 100, x0 + w / 2, y0 + w / 2, w / 2)
    return fill(dilate(OccupancyMask(data=data), 3))


class TestSmoothing:
    """Test moving-average smoothing of lattice paths."""

    def test_unknown_level(self):
        """Test an unknown smoothing level is rejected."""
        with pytest.raises(ValueError):
            smooth([(0, 0), (1, 0), (1, 1)], "extra")

    def test_smoothing_is_idempotent(self):
        """Test an already smoothed path passes through unchanged."""
        path = trace_boundary(disc(40, 40, 19.5, 19.5, 12))
        assert is_lattice_path(path)

        once = smooth(path, "standard")
        twice = smooth(once, "standard")

        assert not is_lattice_path(once)
        assert np.array_equal(once, twice)

    def test_strong_doubles_points(self):
        """Test the strong level adds one Chaikin pass."""
        path = trace_boundary(disc(40, 40, 19.5, 19.5, 12))
        assert len(smooth(path, "strong")) == 2 * len(path)

    def test_short_path_unchanged(self):
        """Test paths shorter than the window are copied."""
        pts = np.array([(0.0, 0.0), (1.0, 0.0), (1.0, 1.0)])
        assert np.array_equal(smooth_path(pts, 2), pts)

    def test_chaikin_stays_inside_hull(self):
        """Test corner cutting keeps points inside the original square."""
        square = np.array([(0, 0), (10, 0), (10, 10), (0, 10)], dtype=float)
        cut = chaikin(square, 2)
        assert len(cut) == 16
        assert cut.min() >= 0 and cut.max() <= 10


class TestSelfIntersections:
    """Test crossing detection and loop removal."""

    def test_segment_crossing(self):
        """Test the crossing point of an X."""
        point = segment_intersection((0, 0), (2, 2), (0, 2), (2, 0))
        assert point is not None
        assert np.allclose(point, (1, 1))

    def test_parallel_segments(self):
        """Test parallel segments never cross."""
        assert segment_intersection((0, 0), (1, 0), (0, 1), (1, 1)) is None

    def test_touching_endpoints(self):
        """Test shared endpoints do not count as crossings."""
        assert segment_intersection((0, 0), (1, 0), (1, 0), (1, 1)) is None

    def test_bowtie(self):
        """Test the smaller loop of a bowtie is cut at the crossing."""
        bowtie = [(0, 0), (10, 10), (10, 0), (0, 10)]
        assert len(find_self_intersections(bowtie)) == 1

        fixed = remove_self_intersections(bowtie)

        assert fixed.tolist() == [[0, 0], [5, 5], [0, 10]]
        assert find_self_intersections(fixed) == []
        assert np.array_equal(remove_self_intersections(fixed), fixed)

    def test_simple_polygon_untouched(self):
        """Test a polygon without crossings is returned as is."""
        square = np.array(NOTCHED_SQUARE, dtype=float)
        assert np.array_equal(remove_self_intersections(square), square)


class TestSpikes:
    """Test spike bridging."""

    def test_spike_bridged(self):
        """Test a 3 px cusp is replaced by a shallow three-point bridge."""
        square = [(0, 0), (50, 0), (50, 50), (27, 50), (25, 53), (23, 50), (0, 50)]

        out = remove_spikes(square)

        assert len(out) == len(square) + 2
        assert out[:, 1].max() < 53
        assert out[:, 1].max() > 50
        assert find_self_intersections(out) == []

    def test_long_corners_kept(self):
        """Test right-angle corners with long edges are not spikes."""
        square = dense_rectangle(0, 0, 40, 40, step=10)
        assert np.array_equal(remove_spikes(square), square)


class TestSimplify:
    """Test Douglas-Peucker and collinear removal."""

    def test_dense_square_to_corners(self):
        """Test a densely sampled square reduces to its four corners."""
        out = simplify(dense_rectangle(0, 0, 20, 20))

        assert len(out) == 4
        assert {tuple(p) for p in out.tolist()} == {(0, 0), (20, 0), (20, 20), (0, 20)}

    def test_simplify_idempotent(self):
        """Test simplifying a simplified path changes nothing."""
        path = smooth(trace_boundary(disc(80, 80, 39.5, 39.5, 30)), "standard")
        once = simplify(path)
        assert np.array_equal(simplify(once), once)

    def test_open_polyline(self):
        """Test the open variant keeps both endpoints."""
        line = [(0, 0), (1, 0.1), (2, 0), (3, 5)]
        out = douglas_peucker(line, 0.5, closed=False)
        assert out[0].tolist() == [0, 0]
        assert out[-1].tolist() == [3, 5]
        assert len(out) == 3

    def test_indices_map_to_input(self):
        """Test kept indices point back at the input corners in path order."""
        square = dense_rectangle(0, 0, 20, 20)

        indices = douglas_peucker_indices(square, 1.0)

        assert np.all(np.diff(indices) > 0)
        assert indices[0] == 0
        assert square[indices].tolist() == [[0, 0], [20, 0], [20, 20], [0, 20]]
        assert np.array_equal(douglas_peucker_indices(square[indices], 1.0), np.arange(4))

    def test_collinear_points_removed(self):
        """Test midpoints of straight edges are dropped."""
        square = [(0, 0), (5, 0), (10, 0), (10, 10), (0, 10)]
        assert len(remove_collinear(square)) == 4


class TestGapClosing:
    """Test narrow gap bridging."""

    def test_notch_bridged(self):
        """Test an inward notch 4 px wide is replaced by an exterior bulge."""
        out = close_gaps(NOTCHED_SQUARE, threshold=6)

        assert len(out) == 9
        near_notch = out[(out[:, 0] > 90) & (out[:, 0] < 110)]
        assert near_notch[:, 1].max() <= 0
        assert near_notch[:, 1].min() < 0
        assert find_self_intersections(out) == []

    def test_midpoint_variant(self):
        """Test the midpoint bridge emits a single point."""
        out = close_gaps(NOTCHED_SQUARE, threshold=6, variant="midpoint")
        assert len(out) == 7
        assert [100, 0] in out.tolist()

    def test_protrusion_kept(self):
        """Test a long outward excursion is real geometry and stays."""
        pts = np.array(PROTRUDING_SQUARE, dtype=float)
        out = close_gaps(pts, threshold=6)
        assert np.array_equal(out, pts)

    def test_disabled(self):
        """Test a zero threshold leaves the polygon alone."""
        pts = np.array(NOTCHED_SQUARE, dtype=float)
        assert np.array_equal(close_gaps(pts, threshold=0), pts)


class TestComposition:
    """Test offsetting and the full refinement chain."""

    def test_expand_outward_grows_area(self):
        """Test offsetting outward grows the polygon regardless of winding."""
        square = np.array([(0, 0), (10, 0), (10, 10), (0, 10)], dtype=float)
        for pts in (square, square[::-1]):
            grown = expand_path_outward(pts, 1.0)
            assert abs(signed_area(grown)) > 100

    def test_path_length(self):
        """Test closed and open lengths."""
        square = [(0, 0), (10, 0), (10, 10), (0, 10)]
        assert path_length(square) == pytest.approx(40)
        assert path_length(square, closed=False) == pytest.approx(30)

    def test_degenerate_input(self):
        """Test fewer than three points come back unchanged."""
        assert refine_path([(1, 1), (2, 2)]).tolist() == [[1, 1], [2, 2]]

    def test_refined_disc_is_compact(self):
        """Test a traced disc refines to far fewer points."""
        path = trace_boundary(disc(120, 120, 59.5, 59.5, 50))
        refined = refine_path(path)
        assert 8 < len(refined) < len(path) / 2
        assert find_self_intersections(refined) == []

    @pytest.mark.parametrize("seed", range(40))
    def test_refine_is_idempotent(self, seed):
        """Test refining a refined silhouette changes nothing."""
        path = trace_boundary(_random_silhouette(seed))

        once = refine_path(path)

        assert np.array_equal(refine_path(once), once)

    @pytest.mark.parametrize("seed", range(10))
    def test_refine_with_gaps_is_idempotent(self, seed):
        """Test the settled path also holds with gap closing on."""
        config = ContourConfig()
        path = trace_boundary(_random_silhouette(seed))

        once = refine_path(path, config, gap_threshold=6)

        assert np.array_equal(refine_path(once, config, gap_threshold=6), once)

    def test_spike_left_by_simplify_settles(self):
        """Test a cusp reshaped by simplification is not bridged again."""
        square = np.array(
            [(0, 0), (50, 0), (50, 50), (27, 50), (25, 53), (23, 50), (0, 50)], dtype=float
        )

        once = refine_path(square)

        assert np.array_equal(refine_path(once), once)
        assert once[:, 1].max() < 53
