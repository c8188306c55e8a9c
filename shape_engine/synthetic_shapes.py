"""Synthetic closed shape models for validation.

Generates parametric polyhedra (box, icosahedron, icosphere and a cratered
icosphere) with outward winding, for exercising the ray casting, visibility
and illumination kernels without external shape files.

Notes
-----
The cratered icosphere carves a parabolic bowl into a sphere of radius R
around the +z axis. For a vertex at angular distance φ from the crater axis:

    r(φ) = R - D * (1 - (φ/α)^2)     for φ <= α  (inside crater)
    r(φ) = R                         for φ >  α

where D = crater depth and α = crater angular radius. The body stays
star-shaped about its origin, so it can serve as either eclipse body, while
the crater walls occlude each other at low sun elevations.

References
----------
- Pike, R.J. (1977). "Size-dependence in the shape of fresh impact craters
  on the Moon." In: Impact and Explosion Cratering, pp. 489-509.
"""

from __future__ import annotations

import logging

import numpy as np

from shape_engine.mesh import ShapeModel

logger = logging.getLogger(__name__)

_GOLDEN = (1.0 + np.sqrt(5.0)) / 2.0

_ICOSAHEDRON_VERTICES = np.array(
    [
        [-1.0, _GOLDEN, 0.0],
        [1.0, _GOLDEN, 0.0],
        [-1.0, -_GOLDEN, 0.0],
        [1.0, -_GOLDEN, 0.0],
        [0.0, -1.0, _GOLDEN],
        [0.0, 1.0, _GOLDEN],
        [0.0, -1.0, -_GOLDEN],
        [0.0, 1.0, -_GOLDEN],
        [_GOLDEN, 0.0, -1.0],
        [_GOLDEN, 0.0, 1.0],
        [-_GOLDEN, 0.0, -1.0],
        [-_GOLDEN, 0.0, 1.0],
    ],
    dtype=np.float64,
)

_ICOSAHEDRON_FACES = np.array(
    [
        [0, 11, 5], [0, 5, 1], [0, 1, 7], [0, 7, 10], [0, 10, 11],
        [1, 5, 9], [5, 11, 4], [11, 10, 2], [10, 7, 6], [7, 1, 8],
        [3, 9, 4], [3, 4, 2], [3, 2, 6], [3, 6, 8], [3, 8, 9],
        [4, 9, 5], [2, 4, 11], [6, 2, 10], [8, 6, 7], [9, 8, 1],
    ],
    dtype=np.int64,
)


def _orient_outward(vertices: np.ndarray, faces: np.ndarray) -> np.ndarray:
    """Flip faces whose normal points towards the origin.

    Only valid for shapes that are convex about the origin at the time of
    the call; the crater is carved after orientation.
    """
    v0 = vertices[faces[:, 0]]
    v1 = vertices[faces[:, 1]]
    v2 = vertices[faces[:, 2]]
    cross = np.cross(v1 - v0, v2 - v0)
    centroids = (v0 + v1 + v2) / 3.0
    inward = np.einsum("ij,ij->i", cross, centroids) < 0.0

    oriented = faces.copy()
    oriented[inward, 1] = faces[inward, 2]
    oriented[inward, 2] = faces[inward, 1]
    return oriented


def _subdivide(
    vertices: np.ndarray, faces: np.ndarray
) -> tuple[np.ndarray, np.ndarray]:
    """Split every triangle into four, projecting new vertices onto the unit sphere."""
    vertex_list = [v for v in vertices]
    midpoint_cache: dict[tuple[int, int], int] = {}

    def midpoint(a: int, b: int) -> int:
        key = (a, b) if a < b else (b, a)
        if key not in midpoint_cache:
            m = 0.5 * (vertex_list[a] + vertex_list[b])
            vertex_list.append(m / np.linalg.norm(m))
            midpoint_cache[key] = len(vertex_list) - 1
        return midpoint_cache[key]

    new_faces = []
    for a, b, c in faces:
        ab = midpoint(a, b)
        bc = midpoint(b, c)
        ca = midpoint(c, a)
        new_faces.extend([[a, ab, ca], [b, bc, ab], [c, ca, bc], [ab, bc, ca]])

    return np.array(vertex_list, dtype=np.float64), np.array(new_faces, dtype=np.int64)


def _unit_icosphere(subdivisions: int) -> tuple[np.ndarray, np.ndarray]:
    if subdivisions < 0:
        raise ValueError(f"subdivisions must be >= 0, got {subdivisions}")

    vertices = _ICOSAHEDRON_VERTICES / np.linalg.norm(
        _ICOSAHEDRON_VERTICES, axis=1, keepdims=True
    )
    faces = _orient_outward(vertices, _ICOSAHEDRON_FACES)
    for _ in range(subdivisions):
        vertices, faces = _subdivide(vertices, faces)
    return vertices, faces


def icosahedron(radius: float = 1.0) -> ShapeModel:
    """Regular icosahedron with circumradius ``radius`` centred on the origin."""
    return icosphere(radius, subdivisions=0)


def icosphere(radius: float = 1.0, subdivisions: int = 2) -> ShapeModel:
    """Geodesic sphere built by recursive subdivision of an icosahedron.

    Parameters
    ----------
    radius : float
        Circumradius (every vertex lies at this distance from the origin).
    subdivisions : int
        Number of 1-to-4 subdivision passes. Face count is 20 * 4**subdivisions.

    Returns
    -------
    ShapeModel
        Closed, outward-wound sphere approximation.
    """
    if radius <= 0:
        raise ValueError(f"radius must be positive, got {radius}")

    vertices, faces = _unit_icosphere(subdivisions)
    logger.info(
        "Generating icosphere: radius=%.4g, subdivisions=%d, faces=%d",
        radius,
        subdivisions,
        faces.shape[0],
    )
    return ShapeModel.from_arrays(
        radius * vertices,
        faces,
        metadata={"type": "icosphere", "radius": radius, "subdivisions": subdivisions},
    )


def box(half_extents: tuple[float, float, float] = (0.5, 0.5, 0.5)) -> ShapeModel:
    """Axis-aligned box centred on the origin, two triangles per side.

    The default is the unit cube.
    """
    hx, hy, hz = (float(h) for h in half_extents)
    if min(hx, hy, hz) <= 0:
        raise ValueError(f"half extents must be positive, got {half_extents}")

    vertices = np.array(
        [
            [-hx, -hy, -hz],
            [hx, -hy, -hz],
            [hx, hy, -hz],
            [-hx, hy, -hz],
            [-hx, -hy, hz],
            [hx, -hy, hz],
            [hx, hy, hz],
            [-hx, hy, hz],
        ],
        dtype=np.float64,
    )
    faces = np.array(
        [
            [0, 2, 1], [0, 3, 2],  # -z
            [4, 5, 6], [4, 6, 7],  # +z
            [0, 1, 5], [0, 5, 4],  # -y
            [3, 7, 6], [3, 6, 2],  # +y
            [0, 4, 7], [0, 7, 3],  # -x
            [1, 2, 6], [1, 6, 5],  # +x
        ],
        dtype=np.int64,
    )
    faces = _orient_outward(vertices, faces)
    return ShapeModel.from_arrays(
        vertices, faces, metadata={"type": "box", "half_extents": (hx, hy, hz)}
    )


def cratered_icosphere(
    radius: float = 1.0,
    subdivisions: int = 3,
    crater_angle_deg: float = 40.0,
    crater_depth: float = 0.4,
) -> ShapeModel:
    """Icosphere with a parabolic bowl crater centred on the +z axis.

    Parameters
    ----------
    radius : float
        Radius of the undisturbed sphere.
    subdivisions : int
        Icosphere subdivision passes.
    crater_angle_deg : float
        Angular radius α of the crater rim, seen from the body centre [deg].
    crater_depth : float
        Radial depth D of the crater floor below the sphere. Must be < radius.

    Returns
    -------
    ShapeModel
        Closed, non-convex, star-shaped shape model.
    """
    if radius <= 0:
        raise ValueError(f"radius must be positive, got {radius}")
    if not 0.0 < crater_depth < radius:
        raise ValueError(
            f"crater depth must lie in (0, radius), got {crater_depth}"
        )
    if not 0.0 < crater_angle_deg < 90.0:
        raise ValueError(
            f"crater angle must lie in (0, 90) deg, got {crater_angle_deg}"
        )

    vertices, faces = _unit_icosphere(subdivisions)

    alpha = np.radians(crater_angle_deg)
    phi = np.arccos(np.clip(vertices[:, 2], -1.0, 1.0))
    r = np.full(vertices.shape[0], radius, dtype=np.float64)
    inside = phi <= alpha
    r[inside] = radius - crater_depth * (1.0 - (phi[inside] / alpha) ** 2)

    logger.info(
        "Generating cratered icosphere: radius=%.4g, crater=%.1f deg, "
        "depth=%.4g, faces=%d, crater vertices=%d",
        radius,
        crater_angle_deg,
        crater_depth,
        faces.shape[0],
        int(inside.sum()),
    )

    return ShapeModel.from_arrays(
        vertices * r[:, None],
        faces,
        metadata={
            "type": "cratered_icosphere",
            "radius": radius,
            "subdivisions": subdivisions,
            "crater_angle_deg": crater_angle_deg,
            "crater_depth": crater_depth,
        },
    )
