"""BVH-accelerated ray casting against a shape model.

Implements a flattened (linear) Bounding Volume Hierarchy for closest-hit
and any-hit ray queries on polyhedral shape models. All inner-loop
functions are compiled with Numba ``@njit(cache=True)`` for performance.

The BVH is a derived structure: ``build_bvh`` returns a ``MeshBVH`` that
callers hold and pass alongside the ``ShapeModel``. Nothing outside this
module depends on the node layout.

Design Notes
------------
- **Flattened BVH**: Nodes are stored in contiguous 1D float64 arrays
  (no Python objects, no recursion in traversal) for Numba compatibility
  and cache locality.
- **Node layout** (8 doubles per node):
  ``[bbox_min_x, min_y, min_z, bbox_max_x, max_y, max_z, child_or_start, count_or_right]``
  - If ``count_or_right < 0``: leaf node → ``child_or_start`` = first slot in
    ``ordered_indices``, ``-count_or_right - 1`` = number of triangles
    (an empty leaf stores -1).
  - If ``count_or_right >= 0``: internal node → ``child_or_start`` = left child node index,
    ``count_or_right`` = right child node index.
- **Closest hit**: traversal shrinks the ray interval to the best distance
  found so far, so boxes beyond the current hit are culled.
- **Precision**: float64 throughout; the Möller-Trumbore kernel is shared
  with ``shape_engine.geometry``.

References
----------
- Wald, I. (2007). "On fast Construction of SAH-based Bounding Volume
  Hierarchies." Proc. IEEE Symp. Interactive Ray Tracing, pp. 33-40.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np
from numba import njit, prange, boolean

from shape_engine.errors import PreconditionError
from shape_engine.geometry import Ray, moller_trumbore
from shape_engine.mesh import ShapeModel

logger = logging.getLogger(__name__)

# ===================================================================
# Constants (compile-time defaults mirroring default_config.yaml;
# build_bvh stores the effective epsilon on the MeshBVH.)
# ===================================================================

_DEFAULT_EPSILON: float = 1e-8
_DEFAULT_MAX_LEAF: int = 4
_DEFAULT_SAH_BINS: int = 16
_INF: float = 1e30

# ===================================================================
# NODE LAYOUT: indices into the flat node array
# ===================================================================
_BBOX_MIN_X = 0
_BBOX_MIN_Y = 1
_BBOX_MIN_Z = 2
_BBOX_MAX_X = 3
_BBOX_MAX_Y = 4
_BBOX_MAX_Z = 5
_CHILD_OR_START = 6
_COUNT_OR_RIGHT = 7
_NODE_SIZE = 8  # floats per node


# ===================================================================
# DATA TYPES
# ===================================================================


@dataclass(frozen=True, eq=False)
class MeshBVH:
    """Flattened bounding volume hierarchy over the faces of a shape model.

    Attributes
    ----------
    nodes : np.ndarray
        Flattened node array. Shape: (num_nodes * 8,), dtype: float64.
    tri_verts : np.ndarray
        Triangle vertex positions indexed by face. Shape: (num_faces, 3, 3).
    ordered_indices : np.ndarray
        Face indices in BVH leaf order. Shape: (num_faces,), dtype: int64.
    epsilon : float
        Determinant tolerance used by every query against this BVH.
    max_depth : int
        Depth of the deepest leaf (root = 0).
    """

    nodes: np.ndarray
    tri_verts: np.ndarray
    ordered_indices: np.ndarray
    epsilon: float = _DEFAULT_EPSILON
    max_depth: int = 0

    @property
    def num_faces(self) -> int:
        return int(self.tri_verts.shape[0])

    @property
    def num_nodes(self) -> int:
        return int(self.nodes.shape[0] // _NODE_SIZE)

    @property
    def stack_size(self) -> int:
        """Traversal stack slots needed: one pending sibling per level plus the root."""
        return self.max_depth + 2


@dataclass(frozen=True, eq=False)
class RayMeshHit:
    """Closest intersection of a ray with a shape model.

    Attributes
    ----------
    hit : bool
        True if the ray strikes any face in front of its origin.
    distance : float
        Distance to the closest intersection (NaN on miss).
    point : np.ndarray
        Closest intersection point (NaN on miss). Shape: (3,).
    face_index : int
        0-based index of the face hit, or -1 on miss.
    """

    hit: bool
    distance: float
    point: np.ndarray
    face_index: int


_NAN3 = np.full(3, np.nan, dtype=np.float64)
_NAN3.setflags(write=False)

NO_MESH_HIT = RayMeshHit(False, float("nan"), _NAN3, -1)


# ===================================================================
# RAY-AABB INTERSECTION: Slab Method (Numba JIT)
# ===================================================================


@njit(cache=True, fastmath=False)
def ray_aabb_intersect(
    ray_origin: np.ndarray,
    inv_dir: np.ndarray,
    bbox_min: np.ndarray,
    bbox_max: np.ndarray,
    t_max_limit: float,
) -> boolean:
    """Test if a ray intersects an axis-aligned bounding box.

    Uses the slab method with precomputed inverse direction to avoid
    division. Rays parallel to a slab use a large finite inverse.

    Parameters
    ----------
    ray_origin : np.ndarray
        Ray origin [x, y, z]. Shape: (3,).
    inv_dir : np.ndarray
        Precomputed 1.0 / ray_dir for each axis. Shape: (3,).
    bbox_min : np.ndarray
        AABB minimum corner. Shape: (3,).
    bbox_max : np.ndarray
        AABB maximum corner. Shape: (3,).
    t_max_limit : float
        Maximum parametric distance (for early culling).

    Returns
    -------
    bool
        True if the ray intersects the AABB within [0, t_max_limit].
    """
    t_min = 0.0
    t_max = t_max_limit

    for axis in range(3):
        t1 = (bbox_min[axis] - ray_origin[axis]) * inv_dir[axis]
        t2 = (bbox_max[axis] - ray_origin[axis]) * inv_dir[axis]

        # Swap so t1 <= t2
        if t1 > t2:
            t1, t2 = t2, t1

        if t1 > t_min:
            t_min = t1
        if t2 < t_max:
            t_max = t2

        if t_min > t_max:
            return False

    return True


@njit(cache=True, fastmath=False)
def _inverse_direction(ray_dir: np.ndarray) -> np.ndarray:
    inv_dir = np.empty(3, dtype=np.float64)
    for axis in range(3):
        if ray_dir[axis] == 0.0:
            inv_dir[axis] = _INF
        else:
            inv_dir[axis] = 1.0 / ray_dir[axis]
    return inv_dir


# ===================================================================
# BVH TRAVERSAL: Stack-based, No Recursion (Numba JIT)
# ===================================================================


@njit(cache=True, fastmath=False)
def closest_hit_bvh(
    ray_origin: np.ndarray,
    ray_dir: np.ndarray,
    bvh_nodes: np.ndarray,
    tri_verts: np.ndarray,
    ordered_tri_indices: np.ndarray,
    epsilon: float,
    stack_size: int,
) -> tuple[float, int]:
    """Find the closest triangle hit by a ray.

    Parameters
    ----------
    ray_origin : np.ndarray
        Ray origin. Shape: (3,).
    ray_dir : np.ndarray
        Unit ray direction. Shape: (3,).
    bvh_nodes : np.ndarray
        Flattened BVH node array. Shape: (num_nodes * 8,).
    tri_verts : np.ndarray
        Triangle vertices. Shape: (num_triangles, 3, 3).
    ordered_tri_indices : np.ndarray
        Triangle indices ordered by BVH leaf assignment. Shape: (num_triangles,).
    epsilon : float
        Möller-Trumbore determinant tolerance.
    stack_size : int
        Traversal stack capacity, ``MeshBVH.stack_size``.

    Returns
    -------
    (t, face) : tuple
        Distance to and index of the closest triangle, or (-1.0, -1) on miss.
    """
    best_t = _INF
    best_face = -1

    if ray_dir[0] == 0.0 and ray_dir[1] == 0.0 and ray_dir[2] == 0.0:
        return -1.0, -1

    inv_dir = _inverse_direction(ray_dir)

    stack = np.empty(stack_size, dtype=np.int64)
    stack_ptr = 0
    stack[stack_ptr] = 0  # Push root node index
    stack_ptr += 1

    bbox_min_tmp = np.empty(3, dtype=np.float64)
    bbox_max_tmp = np.empty(3, dtype=np.float64)

    while stack_ptr > 0:
        stack_ptr -= 1
        node_idx = stack[stack_ptr]
        base = node_idx * _NODE_SIZE

        bbox_min_tmp[0] = bvh_nodes[base + _BBOX_MIN_X]
        bbox_min_tmp[1] = bvh_nodes[base + _BBOX_MIN_Y]
        bbox_min_tmp[2] = bvh_nodes[base + _BBOX_MIN_Z]
        bbox_max_tmp[0] = bvh_nodes[base + _BBOX_MAX_X]
        bbox_max_tmp[1] = bvh_nodes[base + _BBOX_MAX_Y]
        bbox_max_tmp[2] = bvh_nodes[base + _BBOX_MAX_Z]

        # Cull boxes that start beyond the current closest hit
        if not ray_aabb_intersect(ray_origin, inv_dir, bbox_min_tmp, bbox_max_tmp, best_t):
            continue

        count_or_right = bvh_nodes[base + _COUNT_OR_RIGHT]

        if count_or_right < 0:
            # LEAF NODE: test triangles
            start = int(bvh_nodes[base + _CHILD_OR_START])
            count = int(-count_or_right) - 1
            for i in range(start, start + count):
                tri_idx = ordered_tri_indices[i]
                t_hit = moller_trumbore(
                    ray_origin, ray_dir,
                    tri_verts[tri_idx, 0], tri_verts[tri_idx, 1], tri_verts[tri_idx, 2],
                    epsilon,
                )
                if t_hit > 0.0 and t_hit < best_t:
                    best_t = t_hit
                    best_face = tri_idx
        else:
            # INTERNAL NODE: push children
            stack[stack_ptr] = int(bvh_nodes[base + _CHILD_OR_START])
            stack_ptr += 1
            stack[stack_ptr] = int(count_or_right)
            stack_ptr += 1

    if best_face < 0:
        return -1.0, -1
    return best_t, best_face


@njit(cache=True, fastmath=False)
def any_hit_bvh(
    ray_origin: np.ndarray,
    ray_dir: np.ndarray,
    bvh_nodes: np.ndarray,
    tri_verts: np.ndarray,
    ordered_tri_indices: np.ndarray,
    epsilon: float,
    stack_size: int,
) -> boolean:
    """Test if a ray is blocked by ANY triangle in the BVH.

    Returns True on the first hit (early exit) since only occlusion
    matters, not which face is closest.

    Parameters
    ----------
    ray_origin : np.ndarray
        Ray origin. Shape: (3,).
    ray_dir : np.ndarray
        Ray direction. Shape: (3,).
    bvh_nodes : np.ndarray
        Flattened BVH node array. Shape: (num_nodes * 8,).
    tri_verts : np.ndarray
        Triangle vertices. Shape: (num_triangles, 3, 3).
    ordered_tri_indices : np.ndarray
        Triangle indices ordered by BVH leaf assignment. Shape: (num_triangles,).
    epsilon : float
        Möller-Trumbore determinant tolerance.
    stack_size : int
        Traversal stack capacity, ``MeshBVH.stack_size``.

    Returns
    -------
    bool
        True if the ray hits any triangle in front of its origin.
    """
    if ray_dir[0] == 0.0 and ray_dir[1] == 0.0 and ray_dir[2] == 0.0:
        return False

    inv_dir = _inverse_direction(ray_dir)

    stack = np.empty(stack_size, dtype=np.int64)
    stack_ptr = 0
    stack[stack_ptr] = 0
    stack_ptr += 1

    bbox_min_tmp = np.empty(3, dtype=np.float64)
    bbox_max_tmp = np.empty(3, dtype=np.float64)

    while stack_ptr > 0:
        stack_ptr -= 1
        node_idx = stack[stack_ptr]
        base = node_idx * _NODE_SIZE

        bbox_min_tmp[0] = bvh_nodes[base + _BBOX_MIN_X]
        bbox_min_tmp[1] = bvh_nodes[base + _BBOX_MIN_Y]
        bbox_min_tmp[2] = bvh_nodes[base + _BBOX_MIN_Z]
        bbox_max_tmp[0] = bvh_nodes[base + _BBOX_MAX_X]
        bbox_max_tmp[1] = bvh_nodes[base + _BBOX_MAX_Y]
        bbox_max_tmp[2] = bvh_nodes[base + _BBOX_MAX_Z]

        if not ray_aabb_intersect(ray_origin, inv_dir, bbox_min_tmp, bbox_max_tmp, _INF):
            continue

        count_or_right = bvh_nodes[base + _COUNT_OR_RIGHT]

        if count_or_right < 0:
            start = int(bvh_nodes[base + _CHILD_OR_START])
            count = int(-count_or_right) - 1
            for i in range(start, start + count):
                tri_idx = ordered_tri_indices[i]
                t_hit = moller_trumbore(
                    ray_origin, ray_dir,
                    tri_verts[tri_idx, 0], tri_verts[tri_idx, 1], tri_verts[tri_idx, 2],
                    epsilon,
                )
                if t_hit > 0.0:
                    return True  # Early exit, occlusion confirmed
        else:
            stack[stack_ptr] = int(bvh_nodes[base + _CHILD_OR_START])
            stack_ptr += 1
            stack[stack_ptr] = int(count_or_right)
            stack_ptr += 1

    return False


@njit(cache=True, parallel=True, fastmath=False)
def _closest_hits_batch(
    origins: np.ndarray,
    directions: np.ndarray,
    bvh_nodes: np.ndarray,
    tri_verts: np.ndarray,
    ordered_tri_indices: np.ndarray,
    epsilon: float,
    stack_size: int,
) -> tuple[np.ndarray, np.ndarray]:
    """Closest hit for every ray. Rows of ``directions`` must be unit or zero."""
    num_rays = origins.shape[0]
    distances = np.full(num_rays, -1.0, dtype=np.float64)
    faces = np.full(num_rays, -1, dtype=np.int64)

    for r in prange(num_rays):
        t_hit, face = closest_hit_bvh(
            origins[r], directions[r], bvh_nodes, tri_verts, ordered_tri_indices, epsilon,
            stack_size,
        )
        distances[r] = t_hit
        faces[r] = face

    return distances, faces


# ===================================================================
# BVH CONSTRUCTION: Binned SAH (Python, runs once)
# ===================================================================


def build_bvh(
    mesh: ShapeModel,
    max_leaf_triangles: int = _DEFAULT_MAX_LEAF,
    sah_num_bins: int = _DEFAULT_SAH_BINS,
    epsilon: float = _DEFAULT_EPSILON,
) -> MeshBVH:
    """Build a flattened BVH from a shape model using binned SAH.

    Parameters
    ----------
    mesh : ShapeModel
        Shape model with vertices and faces.
    max_leaf_triangles : int
        Maximum number of triangles per leaf node. Default: 4.
    sah_num_bins : int
        Number of bins for SAH cost evaluation. Default: 16.
    epsilon : float
        Determinant tolerance stored for queries. Default: 1e-8.

    Returns
    -------
    MeshBVH
        Read-only spatial index over the mesh faces.
    """
    num_triangles = mesh.num_faces
    logger.info(
        "Building BVH for %d triangles (max_leaf=%d, sah_bins=%d)...",
        num_triangles,
        max_leaf_triangles,
        sah_num_bins,
    )

    tri_verts = mesh.triangle_vertices()

    # Compute per-triangle AABBs and centroids
    tri_bboxes_min = np.minimum(
        np.minimum(tri_verts[:, 0, :], tri_verts[:, 1, :]), tri_verts[:, 2, :]
    )
    tri_bboxes_max = np.maximum(
        np.maximum(tri_verts[:, 0, :], tri_verts[:, 1, :]), tri_verts[:, 2, :]
    )
    tri_centroids = (tri_verts[:, 0, :] + tri_verts[:, 1, :] + tri_verts[:, 2, :]) / 3.0

    # Working index array (reordered during construction)
    indices = np.arange(num_triangles, dtype=np.int64)

    # Worst case: 2*N - 1 nodes for N triangles (one empty leaf for N = 0)
    max_nodes = max(2 * num_triangles, 1)
    nodes_flat = np.zeros(max_nodes * _NODE_SIZE, dtype=np.float64)

    node_count = [0]
    leaf_count = [0]
    max_depth = [0]

    def _allocate_node() -> int:
        idx = node_count[0]
        node_count[0] += 1
        return idx

    def _make_leaf(base: int, start: int, count: int, depth: int) -> None:
        # Stored as -(count + 1) so an empty leaf is still negative
        nodes_flat[base + _CHILD_OR_START] = float(start)
        nodes_flat[base + _COUNT_OR_RIGHT] = float(-(count + 1))
        leaf_count[0] += 1
        max_depth[0] = max(max_depth[0], depth)

    def _build_recursive(start: int, end: int, depth: int) -> int:
        """Recursively build BVH. Returns node index."""
        node_idx = _allocate_node()
        base = node_idx * _NODE_SIZE
        count = end - start

        if count == 0:
            # Empty mesh: inverted box that no ray can enter
            nodes_flat[base + _BBOX_MIN_X: base + _BBOX_MAX_X] = _INF
            nodes_flat[base + _BBOX_MAX_X: base + _CHILD_OR_START] = -_INF
            _make_leaf(base, start, 0, depth)
            return node_idx

        bbox_min = tri_bboxes_min[indices[start:end]].min(axis=0)
        bbox_max = tri_bboxes_max[indices[start:end]].max(axis=0)

        nodes_flat[base + _BBOX_MIN_X] = bbox_min[0]
        nodes_flat[base + _BBOX_MIN_Y] = bbox_min[1]
        nodes_flat[base + _BBOX_MIN_Z] = bbox_min[2]
        nodes_flat[base + _BBOX_MAX_X] = bbox_max[0]
        nodes_flat[base + _BBOX_MAX_Y] = bbox_max[1]
        nodes_flat[base + _BBOX_MAX_Z] = bbox_max[2]

        if count <= max_leaf_triangles:
            _make_leaf(base, start, count, depth)
            return node_idx

        best_axis, best_split = _find_best_split_sah(
            indices, start, end, tri_centroids, tri_bboxes_min, tri_bboxes_max,
            bbox_min, bbox_max, sah_num_bins,
        )

        if best_axis < 0:
            # No beneficial split found
            _make_leaf(base, start, count, depth)
            return node_idx

        mid = _partition_indices(
            indices, start, end, best_axis, best_split, tri_centroids
        )

        # Fallback: if partition didn't split, use median along the axis
        if mid == start or mid == end:
            sub_indices = indices[start:end].copy()
            order = np.argsort(tri_centroids[sub_indices, best_axis], kind="stable")
            indices[start:end] = sub_indices[order]
            mid = (start + end) // 2

        left_idx = _build_recursive(start, mid, depth + 1)
        right_idx = _build_recursive(mid, end, depth + 1)

        nodes_flat[base + _CHILD_OR_START] = float(left_idx)
        nodes_flat[base + _COUNT_OR_RIGHT] = float(right_idx)

        return node_idx

    _build_recursive(0, num_triangles, 0)

    actual_nodes = node_count[0]
    bvh_nodes = nodes_flat[: actual_nodes * _NODE_SIZE].copy()
    ordered = indices.copy()

    for arr in (bvh_nodes, tri_verts, ordered):
        arr.setflags(write=False)

    logger.info(
        "BVH built: %d nodes (%d internal, %d leaves, depth %d), %.3f MB node memory",
        actual_nodes,
        actual_nodes - leaf_count[0],
        leaf_count[0],
        max_depth[0],
        bvh_nodes.nbytes / 1e6,
    )

    return MeshBVH(
        nodes=bvh_nodes,
        tri_verts=tri_verts,
        ordered_indices=ordered,
        epsilon=float(epsilon),
        max_depth=max_depth[0],
    )


def _find_best_split_sah(
    indices: np.ndarray,
    start: int,
    end: int,
    centroids: np.ndarray,
    bboxes_min: np.ndarray,
    bboxes_max: np.ndarray,
    parent_bbox_min: np.ndarray,
    parent_bbox_max: np.ndarray,
    num_bins: int,
) -> tuple[int, float]:
    """Find the best split axis and position using binned SAH.

    Returns
    -------
    best_axis : int
        Best split axis (0, 1, 2) or -1 if no split beats a leaf.
    best_split : float
        Best split position along the axis.
    """
    count = end - start
    sub_idx = indices[start:end]

    # cost = C_trav + (SA_L*N_L + SA_R*N_R) * C_isect / SA_P
    c_trav = 1.0
    c_isect = 1.0
    parent_sa = _surface_area(parent_bbox_min, parent_bbox_max)
    if parent_sa < 1e-30:
        return -1, 0.0

    best_cost = count * c_isect
    best_axis = -1
    best_split = 0.0

    for axis in range(3):
        axis_min = parent_bbox_min[axis]
        axis_range = parent_bbox_max[axis] - axis_min
        if axis_range < 1e-12:
            continue

        bin_width = axis_range / num_bins
        bins = np.minimum(
            ((centroids[sub_idx, axis] - axis_min) / bin_width).astype(np.int64),
            num_bins - 1,
        )
        bins = np.maximum(bins, 0)

        bin_counts = np.bincount(bins, minlength=num_bins)
        bin_bbox_min = np.full((num_bins, 3), _INF, dtype=np.float64)
        bin_bbox_max = np.full((num_bins, 3), -_INF, dtype=np.float64)
        np.minimum.at(bin_bbox_min, bins, bboxes_min[sub_idx])
        np.maximum.at(bin_bbox_max, bins, bboxes_max[sub_idx])

        for split_bin in range(1, num_bins):
            left_count = int(bin_counts[:split_bin].sum())
            right_count = count - left_count
            if left_count == 0 or right_count == 0:
                continue

            left_valid = bin_counts[:split_bin] > 0
            right_valid = bin_counts[split_bin:] > 0

            sa_left = _surface_area(
                bin_bbox_min[:split_bin][left_valid].min(axis=0),
                bin_bbox_max[:split_bin][left_valid].max(axis=0),
            )
            sa_right = _surface_area(
                bin_bbox_min[split_bin:][right_valid].min(axis=0),
                bin_bbox_max[split_bin:][right_valid].max(axis=0),
            )

            cost = c_trav + (sa_left * left_count + sa_right * right_count) * c_isect / parent_sa

            if cost < best_cost:
                best_cost = cost
                best_axis = axis
                best_split = axis_min + split_bin * bin_width

    return best_axis, best_split


def _surface_area(bbox_min: np.ndarray, bbox_max: np.ndarray) -> float:
    """Surface area of an AABB."""
    d = bbox_max - bbox_min
    return 2.0 * (d[0] * d[1] + d[1] * d[2] + d[2] * d[0])


def _partition_indices(
    indices: np.ndarray,
    start: int,
    end: int,
    axis: int,
    split: float,
    centroids: np.ndarray,
) -> int:
    """Partition indices in-place around a split plane.

    Indices with centroid[axis] < split go to the left partition.

    Returns
    -------
    int
        Partition point (first index of right partition).
    """
    left = start
    right = end - 1

    while left <= right:
        if centroids[indices[left], axis] < split:
            left += 1
        else:
            indices[left], indices[right] = indices[right], indices[left]
            right -= 1

    return left


# ===================================================================
# HIGH-LEVEL API
# ===================================================================


def _normalize_rows(directions: np.ndarray) -> np.ndarray:
    """Normalize each row; zero rows stay zero."""
    norms = np.linalg.norm(directions, axis=1, keepdims=True)
    safe = np.where(norms > 0.0, norms, 1.0)
    return directions / safe


def intersect_ray_mesh_batch(
    bvh: MeshBVH | None,
    origins: np.ndarray,
    directions: np.ndarray,
) -> list[RayMeshHit]:
    """Closest intersection for each of N rays.

    Parameters
    ----------
    bvh : MeshBVH
        Spatial index built by ``build_bvh``.
    origins : array_like
        Ray origins, one per column. Shape: (3, N).
    directions : array_like
        Ray directions, one per column. Shape: (3, N). Normalized per ray;
        zero-length directions miss.

    Returns
    -------
    list of RayMeshHit
        One record per ray, in input order. Misses are ``NO_MESH_HIT``.

    Raises
    ------
    PreconditionError
        If the BVH is missing, either array does not have 3 rows, or the
        column counts differ.
    """
    if bvh is None:
        raise PreconditionError("BVH is not built; call build_bvh(mesh) first.")

    origins = np.asarray(origins, dtype=np.float64)
    directions = np.asarray(directions, dtype=np.float64)

    if origins.ndim != 2 or origins.shape[0] != 3:
        raise PreconditionError(f"origins must have shape (3, N), got {origins.shape}")
    if directions.ndim != 2 or directions.shape[0] != 3:
        raise PreconditionError(
            f"directions must have shape (3, N), got {directions.shape}"
        )
    if origins.shape[1] != directions.shape[1]:
        raise PreconditionError(
            f"origins and directions must have the same number of rays, "
            f"got {origins.shape[1]} and {directions.shape[1]}"
        )

    num_rays = origins.shape[1]
    if num_rays == 0:
        return []

    origins_rows = np.ascontiguousarray(origins.T)
    dirs_rows = np.ascontiguousarray(_normalize_rows(directions.T))

    distances, faces = _closest_hits_batch(
        origins_rows, dirs_rows, bvh.nodes, bvh.tri_verts, bvh.ordered_indices, bvh.epsilon,
        bvh.stack_size,
    )

    results: list[RayMeshHit] = []
    for r in range(num_rays):
        if faces[r] < 0:
            results.append(NO_MESH_HIT)
            continue
        t_hit = float(distances[r])
        results.append(
            RayMeshHit(True, t_hit, origins_rows[r] + t_hit * dirs_rows[r], int(faces[r]))
        )

    logger.debug(
        "Batch ray query: %d rays, %d hits",
        num_rays,
        int(np.count_nonzero(faces >= 0)),
    )
    return results


def intersect_ray_mesh(bvh: MeshBVH | None, ray: Ray) -> RayMeshHit:
    """Closest intersection of a single ray with the mesh."""
    return intersect_ray_mesh_batch(
        bvh, ray.origin.reshape(3, 1), ray.direction.reshape(3, 1)
    )[0]


def intersect_rays_mesh(bvh: MeshBVH | None, rays) -> np.ndarray:
    """Closest intersection for a vector or matrix of rays.

    Parameters
    ----------
    bvh : MeshBVH
        Spatial index built by ``build_bvh``.
    rays : array_like of Ray
        Rays arranged in any (nested) shape.

    Returns
    -------
    np.ndarray
        Object array of ``RayMeshHit`` with the same shape as ``rays``.
    """
    ray_array = np.empty(np.shape(rays), dtype=object)
    ray_array[...] = rays
    flat = ray_array.ravel()

    if flat.size == 0:
        if bvh is None:
            raise PreconditionError("BVH is not built; call build_bvh(mesh) first.")
        return np.empty(ray_array.shape, dtype=object)

    origins = np.stack([ray.origin for ray in flat], axis=1)
    directions = np.stack([ray.direction for ray in flat], axis=1)

    hits = np.empty(flat.size, dtype=object)
    hits[:] = intersect_ray_mesh_batch(bvh, origins, directions)
    return hits.reshape(ray_array.shape)


def is_occluded(
    bvh: MeshBVH | None,
    origin: np.ndarray,
    direction: np.ndarray,
) -> bool:
    """Test whether a ray hits any face in front of its origin.

    Any-hit query with early exit; cheaper than ``intersect_ray_mesh``
    when only occlusion matters.
    """
    if bvh is None:
        raise PreconditionError("BVH is not built; call build_bvh(mesh) first.")

    origin = np.asarray(origin, dtype=np.float64).reshape(3)
    direction = np.asarray(direction, dtype=np.float64).reshape(3)
    norm = float(np.linalg.norm(direction))
    if norm == 0.0:
        return False

    return bool(
        any_hit_bvh(
            origin, direction / norm,
            bvh.nodes, bvh.tri_verts, bvh.ordered_indices, bvh.epsilon,
            bvh.stack_size,
        )
    )
