"""
Tests for affine fitting and application.
"""

import math

import numpy as np
import pytest
from numpy.testing import assert_allclose

from mapmigrate.algorithms.linalg import solve_affine_least_squares
from mapmigrate.algorithms.transform_engine import (
    apply,
    apply_to_markers,
    apply_to_points,
    clamp_to_bounds,
    find_out_of_bounds,
    fit,
    invert,
    migrate_collection,
)
from mapmigrate.core.affine import AffineTransform, TransformQuality
from mapmigrate.core.collection import MarkerCollection
from mapmigrate.core.exceptions import DegenerateInputError, InsufficientPointsError
from mapmigrate.core.marker import Marker
from mapmigrate.core.reference_pair import Point, ReferencePointPair


def make_pairs(source, target):
    return [ReferencePointPair(s, t) for s, t in zip(source, target)]


def pairs_through(transform, sources):
    return [ReferencePointPair(s, apply(transform, s)) for s in sources]


TRIANGLE = [(0, 0), (100, 0), (0, 100)]


class TestFit:
    """Tests for least-squares fitting."""

    def test_identity(self):
        """Identical source and target points give the identity."""
        result = fit(make_pairs(TRIANGLE, TRIANGLE))

        assert_allclose(result.coefficients, (1, 0, 0, 1, 0, 0), atol=1e-9)
        assert result.determinant == pytest.approx(1.0)
        assert result.rmse == pytest.approx(0.0, abs=1e-9)

    def test_pure_translation(self):
        result = fit(make_pairs(TRIANGLE, [(10, 20), (110, 20), (10, 120)]))

        assert_allclose(result.coefficients, (1, 0, 0, 1, 10, 20), atol=1e-9)

    def test_non_uniform_scaling(self):
        result = fit(make_pairs(TRIANGLE, [(0, 0), (300, 0), (0, 50)]))

        assert result.a == pytest.approx(3.0)
        assert result.d == pytest.approx(0.5)
        assert result.scale_x == pytest.approx(3.0)
        assert result.scale_y == pytest.approx(0.5)

    def test_rotation_90(self):
        """Counterclockwise quarter turn maps (1, 0) to (0, 1)."""
        result = fit(make_pairs([(1, 0), (0, 0), (0, 1)], [(0, 1), (0, 0), (-1, 0)]))

        assert_allclose(apply(result, (1, 0)), (0, 1), atol=1e-9)
        assert result.rotation == pytest.approx(90.0)

    def test_rotation_180_is_positive(self):
        """A half turn is reported as +180, never -180."""
        result = fit(make_pairs([(1, 0), (0, 0), (0, 1)], [(-1, 0), (0, 0), (0, -1)]))

        assert result.rotation == pytest.approx(180.0)

    def test_three_pairs_exact_recovery(self):
        """Three non-collinear noiseless pairs reproduce every target point."""
        truth = AffineTransform(a=1.2, b=-0.3, c=0.4, d=0.9, e=15.0, f=-7.5)
        pairs = pairs_through(truth, [(12, 40), (250, 18), (90, 310)])

        result = fit(pairs)

        assert_allclose(result.coefficients, truth.coefficients, atol=1e-9)
        for pair in pairs:
            assert_allclose(apply(result, pair.source), pair.target, atol=1e-9)
        assert result.rmse == pytest.approx(0.0, abs=1e-9)

    def test_overdetermined_exact(self):
        truth = AffineTransform(a=1.5, b=0, c=0, d=2, e=10, f=-5)
        sources = [(i * 10, i * i * 3) for i in range(10)]

        result = fit(pairs_through(truth, sources))

        assert_allclose(result.coefficients, truth.coefficients, atol=1e-6)

    def test_least_squares_beats_exact_subset(self):
        """RMSE over all pairs is no worse than an exact fit to three of them."""
        pairs = make_pairs(
            [(0, 0), (100, 0), (0, 100), (50, 50)],
            [(10, 20), (110, 20), (10, 120), (62, 68)],
        )
        exact = solve_affine_least_squares(pairs[:3])
        squared = []
        for pair in pairs:
            p = apply(exact, pair.source)
            squared.append((pair.target.x - p.x) ** 2 + (pair.target.y - p.y) ** 2)

        result = fit(pairs)

        assert result.rmse <= math.sqrt(sum(squared) / 4) + 1e-9
        assert result.rmse > 0
        assert len(result.residuals) == 4

    def test_residuals_are_target_minus_prediction(self):
        pairs = make_pairs(
            [(0, 0), (100, 0), (0, 100), (100, 100)],
            [(0, 0), (100, 0), (0, 100), (104, 103)],
        )
        result = fit(pairs)

        for pair, residual in zip(pairs, result.residuals):
            predicted = apply(result, pair.source)
            assert_allclose(residual, (pair.target.x - predicted.x, pair.target.y - predicted.y))
        squared = [r.x ** 2 + r.y ** 2 for r in result.residuals]
        assert result.rmse == pytest.approx(math.sqrt(np.mean(squared)))

    def test_rmse_grows_with_noise(self):
        """RMSE does not decrease as the same noise pattern is scaled up."""
        rng = np.random.default_rng(7)
        truth = AffineTransform(a=0.8, b=0.1, c=-0.1, d=0.8, e=40, f=25)
        sources = [(0, 0), (500, 0), (500, 400), (0, 400), (250, 200), (120, 330)]
        pattern = rng.normal(size=(len(sources), 2))

        rmses = []
        for magnitude in (0.0, 0.5, 1.0, 2.0, 5.0):
            pairs = []
            for source, offset in zip(sources, pattern):
                target = apply(truth, source)
                pairs.append(ReferencePointPair(
                    source, (target.x + magnitude * offset[0], target.y + magnitude * offset[1])
                ))
            rmses.append(fit(pairs).rmse)

        assert all(later >= earlier - 1e-9 for earlier, later in zip(rmses, rmses[1:]))
        assert rmses[0] == pytest.approx(0.0, abs=1e-9)
        assert rmses[-1] > 0

    def test_pair_order_does_not_matter(self):
        pairs = make_pairs(
            [(0, 0), (100, 0), (0, 100), (70, 80)],
            [(3, 1), (98, 4), (1, 103), (72, 79)],
        )
        forward = fit(pairs)
        backward = fit(list(reversed(pairs)))

        assert_allclose(forward.coefficients, backward.coefficients, atol=1e-9)

    def test_quality_verdict(self):
        result = fit(make_pairs(TRIANGLE, TRIANGLE))
        assert result.quality is TransformQuality.GOOD
        assert AffineTransform().quality is TransformQuality.UNKNOWN


class TestFitErrors:
    """Tests for rejected reference sets."""

    def test_two_pairs(self):
        with pytest.raises(InsufficientPointsError) as excinfo:
            fit(make_pairs([(0, 0), (1, 1)], [(0, 0), (2, 2)]))
        assert excinfo.value.details["provided"] == 2

    def test_empty(self):
        with pytest.raises(InsufficientPointsError):
            fit([])

    def test_collinear_sources(self):
        with pytest.raises(DegenerateInputError):
            fit(make_pairs([(0, 0), (100, 100), (200, 200)], TRIANGLE))

    def test_collinear_many_points(self):
        sources = [(x, 3 * x + 7) for x in range(0, 1000, 50)]
        with pytest.raises(DegenerateInputError):
            fit(make_pairs(sources, sources))

    def test_duplicate_sources(self):
        with pytest.raises(DegenerateInputError):
            fit(make_pairs([(5, 5), (5, 5), (5, 5), (9, 1)], [(0, 0), (1, 1), (2, 2), (3, 3)]))

    def test_non_finite_input(self):
        with pytest.raises(DegenerateInputError):
            fit(make_pairs([(0, 0), (100, 0), (math.nan, 100)], TRIANGLE))

    def test_solver_rejects_fewer_than_three(self):
        with pytest.raises(DegenerateInputError):
            solve_affine_least_squares(make_pairs([(0, 0), (1, 0)], [(0, 0), (1, 0)]))

    def test_large_coordinates_are_not_degenerate(self):
        """The conditioning check does not depend on the coordinate scale."""
        sources = [(1e6, 1e6), (1e6 + 50, 1e6), (1e6, 1e6 + 50)]
        result = fit(make_pairs(sources, sources))
        assert_allclose(result.coefficients[:4], (1, 0, 0, 1), atol=1e-6)


class TestApply:
    """Tests for point and marker mapping."""

    def test_translation(self):
        t = AffineTransform(e=10, f=20)
        assert apply(t, (5, 8)) == Point(15, 28)

    def test_accepts_mapping(self):
        t = AffineTransform(a=2, d=3)
        assert apply(t, {'x': 10, 'y': 20}) == Point(20, 60)

    def test_linear_part_is_additive(self):
        t = AffineTransform(a=1.3, b=-0.4, c=0.2, d=0.7, e=11, f=-4)
        p1, p2 = Point(12.5, -3.0), Point(-40.0, 77.25)

        total = apply(t, (p1.x + p2.x, p1.y + p2.y))
        a1, a2, origin = apply(t, p1), apply(t, p2), apply(t, (0, 0))

        assert total.x - a1.x - a2.x + origin.x == pytest.approx(0.0, abs=1e-9)
        assert total.y - a1.y - a2.y + origin.y == pytest.approx(0.0, abs=1e-9)

    def test_nan_propagates(self):
        result = apply(AffineTransform(a=2, d=2), (math.nan, 1.0))
        assert math.isnan(result.x)
        assert math.isnan(result.y)

    def test_infinity_does_not_raise(self):
        result = apply(AffineTransform(a=2, b=1, c=1, d=2), (math.inf, 1.0))
        assert not math.isfinite(result.x)
        assert not math.isfinite(result.y)

    def test_apply_to_points_matches_apply(self):
        t = AffineTransform(a=2, b=0.5, c=-0.5, d=2, e=10, f=20)
        points = [(0, 0), (10, 20), (-5, 15)]

        batch = apply_to_points(t, points)

        assert batch.shape == (3, 2)
        for row, point in zip(batch, points):
            assert_allclose(row, apply(t, point), atol=1e-9)

    def test_apply_to_markers_returns_new_records(self):
        t = AffineTransform(e=5, f=-5)
        original = Marker(
            id="m1", x=10, y=10, label="Gate", photo_ids=("p1",),
            created_date="2024-01-01T00:00:00.000Z", extra={"color": "red"},
        )

        (moved,) = apply_to_markers(t, [original])

        assert (moved.x, moved.y) == (15, 5)
        assert moved.id == "m1"
        assert moved.label == "Gate"
        assert moved.photo_ids == ("p1",)
        assert moved.extra == {"color": "red"}
        assert (original.x, original.y) == (10, 10)

    def test_batch_never_partially_fails(self):
        t = AffineTransform(a=2, d=2)
        markers = [Marker(id="a", x=1, y=1), Marker(id="b", x=math.nan, y=2), Marker(id="c", x=3, y=3)]

        moved = apply_to_markers(t, markers)

        assert [m.id for m in moved] == ["a", "b", "c"]
        assert (moved[2].x, moved[2].y) == (6, 6)


class TestInvert:

    def test_round_trip(self):
        pairs = make_pairs([(10, 20), (100, 50), (30, 150)], [(25, 45), (215, 105), (65, 305)])
        forward = fit(pairs)
        inverse = invert(forward)

        back = apply(inverse, apply(forward, (50, 75)))

        assert_allclose(back, (50, 75), atol=1e-6)

    def test_reverses_scaling(self):
        inverse = invert(AffineTransform(a=2, d=3))
        assert inverse.a == pytest.approx(0.5)
        assert inverse.d == pytest.approx(1 / 3)

    def test_singular(self):
        with pytest.raises(DegenerateInputError):
            invert(AffineTransform(a=1, b=2, c=2, d=4))


class TestBoundsAndMigration:

    def test_out_of_bounds_and_clamp(self):
        markers = [Marker(id="in", x=10, y=10), Marker(id="out", x=-5, y=120)]

        outside = find_out_of_bounds(markers, 100, 100)
        clamped = clamp_to_bounds(markers, 100, 100)

        assert [m.id for m in outside] == ["out"]
        assert (clamped[1].x, clamped[1].y) == (0, 100)
        assert clamped[0] is markers[0]

    def test_migrate_collection(self):
        collection = MarkerCollection(markers=[Marker(id="m", x=1, y=2)])

        migrated = migrate_collection(AffineTransform(a=10, d=10), collection)

        assert (migrated.markers[0].x, migrated.markers[0].y) == (10, 20)
        assert (collection.markers[0].x, collection.markers[0].y) == (1, 2)
