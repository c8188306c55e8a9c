"""Per-face maximum occluder elevation.

For each face, the highest elevation angle (above the face's horizon
plane, seen from its centroid) reached by any face in its visibility
list. A sun higher than this cannot be blocked by the surface, which lets
the self-shadowing test skip ray casting entirely.

Notes
-----
The elevation of a point p seen from o with normal n is
θ = asin(n · (p - o) / |p - o|). Over a planar triangle the maximum of θ
lies on an edge unless the normal direction itself pierces the triangle,
in which case it is π/2. Along an edge d(t) = a + t·e, with a = A - o and
e = B - A, the stationary point of n · d̂(t) is t* = -γ / β where

    β = (n·e)(a·e) - (n·a)(e·e)
    γ = (n·e)(a·a) - (n·a)(a·e)

The edge maximum is taken over both endpoints and t* when it lies in
[0, 1].
"""

from __future__ import annotations

import logging

import numpy as np
from numba import njit, prange

from shape_engine.errors import PreconditionError
from shape_engine.geometry import moller_trumbore
from shape_engine.mesh import ShapeModel
from shape_engine.visibility import FaceVisibilityGraph

logger = logging.getLogger(__name__)

_BETA_EPSILON: float = 1e-10
_DEFAULT_EPSILON: float = 1e-8


@njit(cache=True, fastmath=False)
def _elevation_sin(obs: np.ndarray, n: np.ndarray, p: np.ndarray) -> float:
    dx = p[0] - obs[0]
    dy = p[1] - obs[1]
    dz = p[2] - obs[2]
    norm = np.sqrt(dx * dx + dy * dy + dz * dz)
    if norm == 0.0:
        return -1.0
    s = (n[0] * dx + n[1] * dy + n[2] * dz) / norm
    return min(1.0, max(-1.0, s))


@njit(cache=True, fastmath=False)
def _edge_max_elevation(
    obs: np.ndarray,
    n: np.ndarray,
    a_pt: np.ndarray,
    b_pt: np.ndarray,
) -> tuple[float, float]:
    """Return (t_max, sin θ_max) for the segment A→B."""
    a = a_pt - obs
    e = b_pt - a_pt

    n_a = n[0] * a[0] + n[1] * a[1] + n[2] * a[2]
    n_e = n[0] * e[0] + n[1] * e[1] + n[2] * e[2]
    a_a = a[0] * a[0] + a[1] * a[1] + a[2] * a[2]
    a_e = a[0] * e[0] + a[1] * e[1] + a[2] * e[2]
    e_e = e[0] * e[0] + e[1] * e[1] + e[2] * e[2]

    beta = n_e * a_e - n_a * e_e
    gamma = n_e * a_a - n_a * a_e

    best_t = 0.0
    best_s = _elevation_sin(obs, n, a_pt)
    s_b = _elevation_sin(obs, n, b_pt)
    if s_b > best_s:
        best_t = 1.0
        best_s = s_b

    if abs(beta) >= _BETA_EPSILON:
        t_crit = -gamma / beta
        if t_crit > 0.0 and t_crit < 1.0:
            p = a_pt + t_crit * e
            s_c = _elevation_sin(obs, n, p)
            if s_c > best_s:
                best_t = t_crit
                best_s = s_c

    return best_t, best_s


def compute_edge_max_elevation(
    obs: np.ndarray,
    n: np.ndarray,
    a_pt: np.ndarray,
    b_pt: np.ndarray,
) -> tuple[np.ndarray, float]:
    """Maximum elevation angle of a line segment seen from a point.

    Parameters
    ----------
    obs : array_like
        Observer position. Shape: (3,).
    n : array_like
        Unit normal of the observer's horizon plane. Shape: (3,).
    a_pt, b_pt : array_like
        Segment endpoints. Shape: (3,).

    Returns
    -------
    p_max : np.ndarray
        Point of the segment with the highest elevation. Shape: (3,).
    theta_max : float
        Its elevation angle [rad], in [-π/2, π/2].
    """
    obs = np.asarray(obs, dtype=np.float64)
    n = np.asarray(n, dtype=np.float64)
    a_pt = np.asarray(a_pt, dtype=np.float64)
    b_pt = np.asarray(b_pt, dtype=np.float64)

    t_max, s_max = _edge_max_elevation(obs, n, a_pt, b_pt)
    return a_pt + t_max * (b_pt - a_pt), float(np.arcsin(s_max))


@njit(cache=True, parallel=True, fastmath=False)
def _face_max_elevations_kernel(
    centroids: np.ndarray,
    normals: np.ndarray,
    tri_verts: np.ndarray,
    row_ptr: np.ndarray,
    col_idx: np.ndarray,
    epsilon: float,
) -> np.ndarray:
    nfaces = centroids.shape[0]
    max_elev = np.zeros(nfaces, dtype=np.float64)

    for i in prange(nfaces):
        obs = centroids[i]
        n = normals[i]
        best_s = 0.0
        zenith_blocked = False

        for e in range(row_ptr[i], row_ptr[i + 1]):
            j = col_idx[e]
            v0 = tri_verts[j, 0]
            v1 = tri_verts[j, 1]
            v2 = tri_verts[j, 2]

            # Normal ray pierces face j: its maximum is the zenith
            if moller_trumbore(obs, n, v0, v1, v2, epsilon) > 0.0:
                zenith_blocked = True
                break

            _, s = _edge_max_elevation(obs, n, v0, v1)
            if s > best_s:
                best_s = s
            _, s = _edge_max_elevation(obs, n, v1, v2)
            if s > best_s:
                best_s = s
            _, s = _edge_max_elevation(obs, n, v2, v0)
            if s > best_s:
                best_s = s

        if zenith_blocked:
            max_elev[i] = 0.5 * np.pi
        else:
            max_elev[i] = np.arcsin(best_s)

    return max_elev


def compute_face_max_elevations(
    mesh: ShapeModel,
    graph: FaceVisibilityGraph,
    epsilon: float = _DEFAULT_EPSILON,
) -> np.ndarray:
    """Maximum occluder elevation of every face.

    Parameters
    ----------
    mesh : ShapeModel
        Shape model the graph was built from.
    graph : FaceVisibilityGraph
        Visibility graph of ``mesh``.
    epsilon : float
        Determinant tolerance of the zenith ray test.

    Returns
    -------
    np.ndarray
        Elevation [rad] per face, in [0, π/2]. Faces with no visible faces
        get 0. Shape: (num_faces,), read-only.

    Raises
    ------
    PreconditionError
        If the graph is missing or describes a different number of faces.
    """
    if graph is None:
        raise PreconditionError(
            "Visibility graph is not built; call build_face_visibility_graph(mesh) first."
        )
    if graph.nfaces != mesh.num_faces:
        raise PreconditionError(
            f"Graph has {graph.nfaces} faces but the mesh has {mesh.num_faces}"
        )

    max_elev = _face_max_elevations_kernel(
        np.ascontiguousarray(mesh.face_centroids),
        np.ascontiguousarray(mesh.face_normals),
        mesh.triangle_vertices(),
        graph.row_ptr,
        graph.col_idx,
        epsilon,
    )
    max_elev.setflags(write=False)

    if max_elev.size:
        logger.info(
            "Face max elevations computed: %d faces, mean=%.2f deg, max=%.2f deg, "
            "%d faces with no occluders",
            max_elev.size,
            np.degrees(max_elev.mean()),
            np.degrees(max_elev.max()),
            int(np.count_nonzero(graph.row_ptr[1:] == graph.row_ptr[:-1])),
        )
    return max_elev
