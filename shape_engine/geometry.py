"""Geometry primitives: rays, Möller-Trumbore, ray-sphere, angle helpers.

Every ray cast in the engine bottoms out in the two Numba kernels defined
here (``moller_trumbore`` and ``ray_sphere_distances``). The Python-level
wrappers build the immutable result records used at the package boundary.

Design Notes
------------
- **No backface culling**: triangles are hit from either winding.
- **Forward rays only**: intersections at distance <= 0 are misses, so a
  ray starting exactly on a triangle does not hit that triangle.
- **Sentinels, not exceptions**: parallel rays, degenerate triangles,
  zero-length directions and zero-radius spheres all resolve to the
  canonical no-hit records.
- **Precision**: float64 throughout; ``fastmath=False`` keeps the epsilon
  comparisons in the order written.

References
----------
- Möller, T. & Trumbore, B. (1997). "Fast, Minimum Storage Ray-Triangle
  Intersection." J. Graphics Tools, 2(1), 21-28.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np
from numba import njit

logger = logging.getLogger(__name__)

_DEFAULT_EPSILON: float = 1e-8

_NAN3 = np.full(3, np.nan, dtype=np.float64)
_NAN3.setflags(write=False)


# ===================================================================
# VALUE TYPES
# ===================================================================


@dataclass(frozen=True, eq=False)
class Ray:
    """A ray in 3D space.

    Attributes
    ----------
    origin : np.ndarray
        Ray origin. Shape: (3,), dtype: float64.
    direction : np.ndarray
        Unit ray direction. Shape: (3,), dtype: float64. A zero-length
        input direction is kept as the zero vector; it never hits anything.
    """

    origin: np.ndarray
    direction: np.ndarray

    def __post_init__(self) -> None:
        origin = np.array(self.origin, dtype=np.float64).reshape(3)
        direction = np.array(self.direction, dtype=np.float64).reshape(3)
        norm = float(np.linalg.norm(direction))
        if norm > 0.0:
            direction = direction / norm
        origin.setflags(write=False)
        direction.setflags(write=False)
        object.__setattr__(self, "origin", origin)
        object.__setattr__(self, "direction", direction)

    def at(self, distance: float) -> np.ndarray:
        """Point on the ray at the given distance from the origin."""
        return self.origin + distance * self.direction


@dataclass(frozen=True, eq=False)
class RayTriangleHit:
    """Result of a ray-triangle intersection test.

    Attributes
    ----------
    hit : bool
        True if the ray strikes the triangle in front of its origin.
    distance : float
        Distance from the ray origin to the intersection (NaN on miss).
    point : np.ndarray
        World-space intersection point (NaN on miss). Shape: (3,).
    """

    hit: bool
    distance: float
    point: np.ndarray


NO_TRIANGLE_HIT = RayTriangleHit(False, float("nan"), _NAN3)


@dataclass(frozen=True, eq=False)
class RaySphereHit:
    """Result of a ray-sphere intersection test.

    Attributes
    ----------
    hit : bool
        True if the ray meets the sphere at any point ahead of its origin.
    distance1, distance2 : float
        Entry and exit distances along the ray. ``distance1`` is negative
        when the origin lies inside the sphere.
    point1, point2 : np.ndarray
        Entry and exit points. Shape: (3,).
    """

    hit: bool
    distance1: float
    distance2: float
    point1: np.ndarray
    point2: np.ndarray


NO_SPHERE_HIT = RaySphereHit(False, float("nan"), float("nan"), _NAN3, _NAN3)


# ===================================================================
# MÖLLER-TRUMBORE RAY-TRIANGLE INTERSECTION: Numba JIT
# ===================================================================


@njit(cache=True, fastmath=False)
def moller_trumbore(
    ray_origin: np.ndarray,
    ray_dir: np.ndarray,
    v0: np.ndarray,
    v1: np.ndarray,
    v2: np.ndarray,
    epsilon: float,
) -> float:
    """Möller-Trumbore ray-triangle intersection test.

    Tests if a ray R(t) = origin + t * dir intersects the triangle
    (v0, v1, v2). Returns the parametric distance t if hit, or -1.0 if miss.

    Parameters
    ----------
    ray_origin : np.ndarray
        Ray origin point [x, y, z]. Shape: (3,).
    ray_dir : np.ndarray
        Ray direction vector. Shape: (3,). For t to be a Euclidean
        distance the direction must be normalized.
    v0, v1, v2 : np.ndarray
        Triangle vertex positions. Shape: (3,) each.
    epsilon : float
        Determinant zero-test tolerance (parallel-ray rejection).

    Returns
    -------
    float
        Parametric distance t > 0 if hit, -1.0 if no intersection.
    """
    # Edge vectors
    e1_x = v1[0] - v0[0]
    e1_y = v1[1] - v0[1]
    e1_z = v1[2] - v0[2]

    e2_x = v2[0] - v0[0]
    e2_y = v2[1] - v0[1]
    e2_z = v2[2] - v0[2]

    # P = ray_dir × e2
    p_x = ray_dir[1] * e2_z - ray_dir[2] * e2_y
    p_y = ray_dir[2] * e2_x - ray_dir[0] * e2_z
    p_z = ray_dir[0] * e2_y - ray_dir[1] * e2_x

    # Determinant = e1 · P
    det = e1_x * p_x + e1_y * p_y + e1_z * p_z

    # Ray parallel to the triangle plane (or degenerate triangle/direction)
    if det > -epsilon and det < epsilon:
        return -1.0

    inv_det = 1.0 / det

    # T = ray_origin - v0
    t_x = ray_origin[0] - v0[0]
    t_y = ray_origin[1] - v0[1]
    t_z = ray_origin[2] - v0[2]

    u = (t_x * p_x + t_y * p_y + t_z * p_z) * inv_det

    if u < 0.0 or u > 1.0:
        return -1.0

    # Q = T × e1
    q_x = t_y * e1_z - t_z * e1_y
    q_y = t_z * e1_x - t_x * e1_z
    q_z = t_x * e1_y - t_y * e1_x

    v = (ray_dir[0] * q_x + ray_dir[1] * q_y + ray_dir[2] * q_z) * inv_det

    if v < 0.0 or u + v > 1.0:
        return -1.0

    t_dist = (e2_x * q_x + e2_y * q_y + e2_z * q_z) * inv_det

    if t_dist > 0.0:
        return t_dist

    return -1.0


def intersect_ray_triangle(
    ray: Ray,
    v0: np.ndarray,
    v1: np.ndarray,
    v2: np.ndarray,
    epsilon: float = _DEFAULT_EPSILON,
) -> RayTriangleHit:
    """Intersect a ray with a single triangle.

    Parameters
    ----------
    ray : Ray
        Ray with normalized direction.
    v0, v1, v2 : array_like
        Triangle vertices. Shape: (3,) each.
    epsilon : float
        Determinant zero-test tolerance.

    Returns
    -------
    RayTriangleHit
        Hit record, or ``NO_TRIANGLE_HIT``.
    """
    t_hit = moller_trumbore(
        ray.origin,
        ray.direction,
        np.asarray(v0, dtype=np.float64),
        np.asarray(v1, dtype=np.float64),
        np.asarray(v2, dtype=np.float64),
        epsilon,
    )
    if t_hit < 0.0:
        return NO_TRIANGLE_HIT
    return RayTriangleHit(True, float(t_hit), ray.at(t_hit))


# ===================================================================
# RAY-SPHERE INTERSECTION: Numba JIT
# ===================================================================


@njit(cache=True, fastmath=False)
def ray_sphere_distances(
    ray_origin: np.ndarray,
    ray_dir: np.ndarray,
    center: np.ndarray,
    radius: float,
) -> tuple[float, float]:
    """Solve |o + t·d - c|² = r² for the two ray parameters.

    Parameters
    ----------
    ray_origin : np.ndarray
        Ray origin. Shape: (3,).
    ray_dir : np.ndarray
        Ray direction, normalized internally. Shape: (3,).
    center : np.ndarray
        Sphere center. Shape: (3,).
    radius : float
        Sphere radius.

    Returns
    -------
    (t1, t2) : tuple of float
        Entry and exit distances with t1 <= t2, or (NaN, NaN) when the ray
        misses, the sphere lies entirely behind the origin, the radius is
        non-positive or the direction has zero length.
    """
    if radius <= 0.0:
        return np.nan, np.nan

    norm = np.sqrt(ray_dir[0] ** 2 + ray_dir[1] ** 2 + ray_dir[2] ** 2)
    if norm == 0.0:
        return np.nan, np.nan

    d_x = ray_dir[0] / norm
    d_y = ray_dir[1] / norm
    d_z = ray_dir[2] / norm

    co_x = ray_origin[0] - center[0]
    co_y = ray_origin[1] - center[1]
    co_z = ray_origin[2] - center[2]

    # a = 1 for a unit direction
    b = 2.0 * (co_x * d_x + co_y * d_y + co_z * d_z)
    c = co_x * co_x + co_y * co_y + co_z * co_z - radius * radius

    disc = b * b - 4.0 * c
    if disc < 0.0:
        return np.nan, np.nan

    sqrt_disc = np.sqrt(disc)
    t1 = 0.5 * (-b - sqrt_disc)
    t2 = 0.5 * (-b + sqrt_disc)

    if t2 < 0.0:
        return np.nan, np.nan

    return t1, t2


def intersect_ray_sphere(
    ray_origin: np.ndarray,
    ray_direction: np.ndarray,
    sphere_center: np.ndarray,
    sphere_radius: float,
) -> RaySphereHit:
    """Intersect a ray with a sphere.

    Parameters
    ----------
    ray_origin, ray_direction : array_like
        Ray origin and direction (need not be normalized). Shape: (3,).
    sphere_center : array_like
        Sphere center. Shape: (3,).
    sphere_radius : float
        Sphere radius.

    Returns
    -------
    RaySphereHit
        Entry/exit record, or ``NO_SPHERE_HIT``.
    """
    origin = np.asarray(ray_origin, dtype=np.float64)
    direction = np.asarray(ray_direction, dtype=np.float64)
    t1, t2 = ray_sphere_distances(
        origin, direction, np.asarray(sphere_center, dtype=np.float64), float(sphere_radius)
    )
    if np.isnan(t1):
        return NO_SPHERE_HIT

    unit_dir = direction / np.linalg.norm(direction)
    return RaySphereHit(
        True,
        float(t1),
        float(t2),
        origin + t1 * unit_dir,
        origin + t2 * unit_dir,
    )


# ===================================================================
# ANGLE HELPERS
# ===================================================================


def angle_rad(v1: np.ndarray, v2: np.ndarray) -> float:
    """Angle between two vectors in radians, in [0, π]."""
    a = np.asarray(v1, dtype=np.float64)
    b = np.asarray(v2, dtype=np.float64)
    cos_angle = np.dot(a, b) / (np.linalg.norm(a) * np.linalg.norm(b))
    return float(np.arccos(np.clip(cos_angle, -1.0, 1.0)))


def angle_deg(v1: np.ndarray, v2: np.ndarray) -> float:
    """Angle between two vectors in degrees, in [0, 180]."""
    return float(np.degrees(angle_rad(v1, v2)))


def solar_phase_angle(
    sun: np.ndarray, target: np.ndarray, observer: np.ndarray
) -> float:
    """Sun-target-observer angle [rad].

    0 at opposition (sun behind the observer), π at conjunction.
    """
    target = np.asarray(target, dtype=np.float64)
    return angle_rad(np.asarray(sun) - target, np.asarray(observer) - target)


def solar_elongation_angle(
    sun: np.ndarray, observer: np.ndarray, target: np.ndarray
) -> float:
    """Sun-observer-target angle [rad]."""
    observer = np.asarray(observer, dtype=np.float64)
    return angle_rad(np.asarray(sun) - observer, np.asarray(target) - observer)
