"""Tests for the geometry primitives.

Validates Möller-Trumbore intersection accuracy, the no-backface-culling
rule, ray-sphere intersection and the angle helpers.
"""

from __future__ import annotations

import numpy as np
import pytest

from shape_engine.geometry import (
    NO_SPHERE_HIT,
    NO_TRIANGLE_HIT,
    Ray,
    angle_deg,
    angle_rad,
    intersect_ray_sphere,
    intersect_ray_triangle,
    moller_trumbore,
    solar_elongation_angle,
    solar_phase_angle,
)


# ===================================================================
# FIXTURES
# ===================================================================


@pytest.fixture
def simple_triangle() -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """A triangle in the XY plane at z=0."""
    v0 = np.array([0.0, 0.0, 0.0], dtype=np.float64)
    v1 = np.array([1.0, 0.0, 0.0], dtype=np.float64)
    v2 = np.array([0.0, 1.0, 0.0], dtype=np.float64)
    return v0, v1, v2


@pytest.fixture
def epsilon() -> float:
    """Default intersection epsilon."""
    return 1e-8


# ===================================================================
# RAY
# ===================================================================


class TestRay:
    """Ray value type."""

    def test_direction_normalized(self) -> None:
        ray = Ray([1.0, 2.0, 3.0], [0.0, 0.0, 5.0])
        np.testing.assert_allclose(ray.direction, [0.0, 0.0, 1.0])

    def test_zero_direction_kept(self) -> None:
        ray = Ray([0.0, 0.0, 0.0], [0.0, 0.0, 0.0])
        np.testing.assert_array_equal(ray.direction, np.zeros(3))

    def test_immutable(self) -> None:
        ray = Ray([0.0, 0.0, 0.0], [1.0, 0.0, 0.0])
        with pytest.raises(ValueError):
            ray.origin[0] = 1.0

    def test_at(self) -> None:
        ray = Ray([1.0, 0.0, 0.0], [0.0, 2.0, 0.0])
        np.testing.assert_allclose(ray.at(3.0), [1.0, 3.0, 0.0])


# ===================================================================
# MÖLLER-TRUMBORE INTERSECTION TESTS
# ===================================================================


class TestMollerTrumbore:
    """Unit tests for the Möller-Trumbore ray-triangle intersection."""

    def test_direct_hit_center(self, simple_triangle, epsilon) -> None:
        """Ray pointing straight down at triangle center should hit."""
        v0, v1, v2 = simple_triangle
        origin = np.array([0.25, 0.25, 1.0])
        direction = np.array([0.0, 0.0, -1.0])

        t = moller_trumbore(origin, direction, v0, v1, v2, epsilon)
        assert t == pytest.approx(1.0, abs=1e-12), f"Expected t=1.0, got t={t}"

    def test_miss_outside(self, simple_triangle, epsilon) -> None:
        """Ray pointing at a point outside the triangle should miss."""
        v0, v1, v2 = simple_triangle
        origin = np.array([2.0, 2.0, 1.0])
        direction = np.array([0.0, 0.0, -1.0])

        assert moller_trumbore(origin, direction, v0, v1, v2, epsilon) < 0

    def test_parallel_ray(self, simple_triangle, epsilon) -> None:
        """Ray parallel to triangle plane should miss."""
        v0, v1, v2 = simple_triangle
        origin = np.array([0.25, 0.25, 1.0])
        direction = np.array([1.0, 0.0, 0.0])

        assert moller_trumbore(origin, direction, v0, v1, v2, epsilon) < 0

    def test_behind_ray(self, simple_triangle, epsilon) -> None:
        """Ray pointing away from triangle should miss (t < 0)."""
        v0, v1, v2 = simple_triangle
        origin = np.array([0.25, 0.25, 1.0])
        direction = np.array([0.0, 0.0, 1.0])

        assert moller_trumbore(origin, direction, v0, v1, v2, epsilon) < 0

    def test_origin_on_triangle_is_miss(self, simple_triangle, epsilon) -> None:
        """A ray starting on the triangle does not hit it (t must be > 0)."""
        v0, v1, v2 = simple_triangle
        origin = np.array([0.25, 0.25, 0.0])
        direction = np.array([0.0, 0.0, 1.0])

        assert moller_trumbore(origin, direction, v0, v1, v2, epsilon) < 0

    def test_edge_hit(self, simple_triangle, epsilon) -> None:
        """Ray hitting exactly on an edge should register (u + v = 1)."""
        v0, v1, v2 = simple_triangle
        origin = np.array([0.5, 0.5, 1.0])
        direction = np.array([0.0, 0.0, -1.0])

        t = moller_trumbore(origin, direction, v0, v1, v2, epsilon)
        assert t == pytest.approx(1.0, abs=1e-12)

    def test_degenerate_triangle(self, epsilon) -> None:
        """Collinear vertices give a zero determinant and never hit."""
        v0 = np.array([0.0, 0.0, 0.0])
        v1 = np.array([1.0, 0.0, 0.0])
        v2 = np.array([2.0, 0.0, 0.0])
        origin = np.array([0.5, 0.0, 1.0])
        direction = np.array([0.0, 0.0, -1.0])

        assert moller_trumbore(origin, direction, v0, v1, v2, epsilon) < 0


class TestIntersectRayTriangle:
    """Hit records from the Python-level wrapper."""

    @pytest.mark.parametrize(
        "vertices",
        [
            ([0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [0.0, 1.0, 0.0]),
            ([1.0, 2.0, 3.0], [4.0, -1.0, 2.0], [0.5, 0.5, 6.0]),
            ([-3.0, 0.2, 1.0], [2.0, 5.0, -1.0], [1.0, -4.0, 0.0]),
        ],
    )
    def test_hit_at_centroid_distance(self, vertices) -> None:
        """A ray aimed at the centroid from off-plane hits at the analytic distance."""
        v0, v1, v2 = (np.array(v) for v in vertices)
        centroid = (v0 + v1 + v2) / 3.0
        normal = np.cross(v1 - v0, v2 - v0)
        normal /= np.linalg.norm(normal)

        origin = centroid + 2.5 * normal + np.array([0.3, -0.2, 0.1])
        expected = np.linalg.norm(centroid - origin)

        hit = intersect_ray_triangle(Ray(origin, centroid - origin), v0, v1, v2)
        assert hit.hit
        assert hit.distance == pytest.approx(expected, rel=1e-10)
        np.testing.assert_allclose(hit.point, centroid, atol=1e-10)

    def test_no_backface_culling(self, simple_triangle) -> None:
        """Approaching from either side hits; pointing away misses."""
        v0, v1, v2 = simple_triangle
        target = np.array([0.2, 0.3, 0.0])

        front = intersect_ray_triangle(Ray([0.2, 0.3, 2.0], [0.0, 0.0, -1.0]), v0, v1, v2)
        back = intersect_ray_triangle(Ray([0.2, 0.3, -2.0], [0.0, 0.0, 1.0]), v0, v1, v2)
        away = intersect_ray_triangle(Ray([0.2, 0.3, 2.0], [0.0, 0.0, 1.0]), v0, v1, v2)

        assert front.hit and back.hit
        assert front.distance == pytest.approx(2.0)
        assert back.distance == pytest.approx(2.0)
        np.testing.assert_allclose(front.point, target)
        np.testing.assert_allclose(back.point, target)
        assert away is NO_TRIANGLE_HIT

    def test_zero_direction_is_miss(self, simple_triangle) -> None:
        v0, v1, v2 = simple_triangle
        hit = intersect_ray_triangle(Ray([0.2, 0.2, 1.0], [0.0, 0.0, 0.0]), v0, v1, v2)
        assert hit is NO_TRIANGLE_HIT

    def test_miss_sentinel_fields(self) -> None:
        assert not NO_TRIANGLE_HIT.hit
        assert np.isnan(NO_TRIANGLE_HIT.distance)
        assert np.all(np.isnan(NO_TRIANGLE_HIT.point))


# ===================================================================
# RAY-SPHERE INTERSECTION TESTS
# ===================================================================


class TestRaySphere:
    """Quadratic ray-sphere intersection."""

    def test_through_center(self) -> None:
        hit = intersect_ray_sphere([-5.0, 0.0, 0.0], [2.0, 0.0, 0.0], [0.0, 0.0, 0.0], 1.0)
        assert hit.hit
        assert hit.distance1 == pytest.approx(4.0)
        assert hit.distance2 == pytest.approx(6.0)
        np.testing.assert_allclose(hit.point1, [-1.0, 0.0, 0.0])
        np.testing.assert_allclose(hit.point2, [1.0, 0.0, 0.0])

    def test_origin_inside(self) -> None:
        hit = intersect_ray_sphere([0.0, 0.0, 0.0], [0.0, 1.0, 0.0], [0.0, 0.0, 0.0], 2.0)
        assert hit.hit
        assert hit.distance1 < 0.0 <= hit.distance2
        assert hit.distance2 == pytest.approx(2.0)

    def test_lateral_miss(self) -> None:
        hit = intersect_ray_sphere([-5.0, 1.5, 0.0], [1.0, 0.0, 0.0], [0.0, 0.0, 0.0], 1.0)
        assert hit is NO_SPHERE_HIT

    def test_sphere_behind(self) -> None:
        hit = intersect_ray_sphere([5.0, 0.0, 0.0], [1.0, 0.0, 0.0], [0.0, 0.0, 0.0], 1.0)
        assert hit is NO_SPHERE_HIT

    @pytest.mark.parametrize("radius", [0.0, -1.0])
    def test_degenerate_radius(self, radius: float) -> None:
        hit = intersect_ray_sphere([-5.0, 0.0, 0.0], [1.0, 0.0, 0.0], [0.0, 0.0, 0.0], radius)
        assert hit is NO_SPHERE_HIT

    def test_zero_direction(self) -> None:
        hit = intersect_ray_sphere([-5.0, 0.0, 0.0], [0.0, 0.0, 0.0], [0.0, 0.0, 0.0], 1.0)
        assert hit is NO_SPHERE_HIT


# ===================================================================
# ANGLE HELPERS
# ===================================================================


class TestAngles:
    def test_right_angle(self) -> None:
        assert angle_rad([1.0, 0.0, 0.0], [0.0, 3.0, 0.0]) == pytest.approx(np.pi / 2)
        assert angle_deg([1.0, 0.0, 0.0], [0.0, 3.0, 0.0]) == pytest.approx(90.0)

    def test_parallel_clamped(self) -> None:
        v = np.array([0.1, 0.2, 0.3])
        assert angle_rad(v, 7.0 * v) == pytest.approx(0.0, abs=1e-7)
        assert angle_deg(v, -v) == pytest.approx(180.0)

    def test_phase_angle_opposition(self) -> None:
        """Observer between sun and target: phase angle 0."""
        sun = np.array([10.0, 0.0, 0.0])
        observer = np.array([5.0, 0.0, 0.0])
        target = np.zeros(3)
        assert solar_phase_angle(sun, target, observer) == pytest.approx(0.0, abs=1e-7)

    def test_phase_and_elongation_quadrature(self) -> None:
        sun = np.array([1.0, 0.0, 0.0])
        target = np.zeros(3)
        observer = np.array([0.0, 1.0, 0.0])
        assert solar_phase_angle(sun, target, observer) == pytest.approx(np.pi / 2)
        assert solar_elongation_angle(sun, observer, target) == pytest.approx(np.pi / 4)
