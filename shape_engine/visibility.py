"""Face-to-face visibility graph with occlusion culling.

For every face of a shape model, finds the other faces it has an
unobstructed line of sight to, together with the Lambertian view factor,
centroid distance and unit direction of each pair. The result is stored
as a compressed sparse row (CSR) graph, 0-based.

Design Notes
------------
- **Mutual-facing pre-filter**: with R = c_j - c_i, face j is a candidate
  of face i only if R · n_i > 0 and R · n_j < 0. No rays are cast for
  rejected pairs.
- **Two-pass candidate lists**: candidates are counted per face, then
  filled into pre-sized arrays and sorted by distance.
- **Distance-ordered occlusion**: the ray c_i → c_j is tested only against
  candidates of i strictly nearer than j. This does not use the BVH; the
  candidate sets are small and local, so linear testing wins.
- **Symmetric insertion**: a visible pair is recorded in both directions
  at once and skipped when its second face is processed.
- **Row order**: within a row, targets are sorted by ascending distance.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np
from numba import njit, prange

from shape_engine.constants import hash_array
from shape_engine.geometry import moller_trumbore
from shape_engine.mesh import ShapeModel

logger = logging.getLogger(__name__)

_DEFAULT_EPSILON: float = 1e-8


# ===================================================================
# VIEW FACTOR
# ===================================================================


@njit(cache=True, fastmath=False)
def _lambertian_view_factor(
    n_i: np.ndarray,
    n_j: np.ndarray,
    d_hat: np.ndarray,
    dist: float,
    area_j: float,
) -> float:
    cos_i = n_i[0] * d_hat[0] + n_i[1] * d_hat[1] + n_i[2] * d_hat[2]
    cos_j = -(n_j[0] * d_hat[0] + n_j[1] * d_hat[1] + n_j[2] * d_hat[2])
    if cos_i <= 0.0 or cos_j <= 0.0:
        return 0.0
    return cos_i * cos_j * area_j / (np.pi * dist * dist)


def view_factor(
    c_i: np.ndarray,
    c_j: np.ndarray,
    n_i: np.ndarray,
    n_j: np.ndarray,
    area_j: float,
) -> tuple[float, float, np.ndarray]:
    """Lambertian view factor from face i to face j.

    f_ij = max(0, n_i · d̂) · max(0, -n_j · d̂) · A_j / (π d²)

    Parameters
    ----------
    c_i, c_j : array_like
        Face centroids. Shape: (3,).
    n_i, n_j : array_like
        Unit face normals. Shape: (3,).
    area_j : float
        Area of face j.

    Returns
    -------
    f_ij : float
        View factor (0 when the faces do not face each other).
    dist : float
        Centroid distance d.
    d_hat : np.ndarray
        Unit direction from c_i to c_j. Shape: (3,).
    """
    r = np.asarray(c_j, dtype=np.float64) - np.asarray(c_i, dtype=np.float64)
    dist = float(np.linalg.norm(r))
    if dist == 0.0:
        return 0.0, 0.0, np.zeros(3)
    d_hat = r / dist
    f_ij = _lambertian_view_factor(
        np.asarray(n_i, dtype=np.float64),
        np.asarray(n_j, dtype=np.float64),
        d_hat,
        dist,
        float(area_j),
    )
    return float(f_ij), dist, d_hat


# ===================================================================
# CSR GRAPH
# ===================================================================


@dataclass(frozen=True, eq=False)
class FaceVisibilityGraph:
    """Sparse face-to-face visibility graph in CSR form (0-based).

    Row i spans ``row_ptr[i]:row_ptr[i + 1]`` of the parallel arrays.

    Attributes
    ----------
    row_ptr : np.ndarray
        Row offsets. Shape: (nfaces + 1,), dtype: int64.
    col_idx : np.ndarray
        Visible face indices. Shape: (nnz,), dtype: int64.
    view_factors : np.ndarray
        View factor of each pair. Shape: (nnz,), dtype: float64.
    distances : np.ndarray
        Centroid distance of each pair. Shape: (nnz,), dtype: float64.
    directions : np.ndarray
        Unit direction from source to target centroid. Shape: (nnz, 3).
    """

    row_ptr: np.ndarray
    col_idx: np.ndarray
    view_factors: np.ndarray
    distances: np.ndarray
    directions: np.ndarray

    def __post_init__(self) -> None:
        row_ptr = np.asarray(self.row_ptr, dtype=np.int64)
        col_idx = np.asarray(self.col_idx, dtype=np.int64)
        view_factors = np.asarray(self.view_factors, dtype=np.float64)
        distances = np.asarray(self.distances, dtype=np.float64)
        directions = np.asarray(self.directions, dtype=np.float64).reshape(-1, 3)

        if row_ptr.ndim != 1 or row_ptr.size < 1:
            raise ValueError("row_ptr must be a 1-D array of length nfaces + 1")
        if row_ptr[0] != 0:
            raise ValueError(f"row_ptr[0] must be 0, got {row_ptr[0]}")
        if np.any(np.diff(row_ptr) < 0):
            raise ValueError("row_ptr must be non-decreasing")

        nnz = col_idx.size
        if row_ptr[-1] != nnz:
            raise ValueError(f"row_ptr[-1] = {row_ptr[-1]} does not match nnz = {nnz}")
        for name, arr in (
            ("view_factors", view_factors),
            ("distances", distances),
            ("directions", directions),
        ):
            if arr.shape[0] != nnz:
                raise ValueError(f"{name} has length {arr.shape[0]}, expected {nnz}")

        nfaces = row_ptr.size - 1
        if nnz > 0 and (col_idx.min() < 0 or col_idx.max() >= nfaces):
            raise ValueError(f"col_idx entries must lie in [0, {nfaces - 1}]")

        for name, arr in (
            ("row_ptr", row_ptr),
            ("col_idx", col_idx),
            ("view_factors", view_factors),
            ("distances", distances),
            ("directions", directions),
        ):
            if arr.flags.writeable:
                arr = arr.copy()
                arr.setflags(write=False)
            object.__setattr__(self, name, arr)

    @classmethod
    def empty(cls, nfaces: int) -> FaceVisibilityGraph:
        """Graph over ``nfaces`` faces with no visible pairs."""
        return cls(
            row_ptr=np.zeros(nfaces + 1, dtype=np.int64),
            col_idx=np.zeros(0, dtype=np.int64),
            view_factors=np.zeros(0, dtype=np.float64),
            distances=np.zeros(0, dtype=np.float64),
            directions=np.zeros((0, 3), dtype=np.float64),
        )

    @property
    def nfaces(self) -> int:
        return int(self.row_ptr.size - 1)

    @property
    def nnz(self) -> int:
        return int(self.col_idx.size)

    def _row(self, face_index: int) -> slice:
        if not 0 <= face_index < self.nfaces:
            raise IndexError(
                f"face index {face_index} out of range for graph with {self.nfaces} faces"
            )
        return slice(int(self.row_ptr[face_index]), int(self.row_ptr[face_index + 1]))

    def visible_face_indices(self, face_index: int) -> np.ndarray:
        return self.col_idx[self._row(face_index)]

    def view_factors_of(self, face_index: int) -> np.ndarray:
        return self.view_factors[self._row(face_index)]

    def distances_of(self, face_index: int) -> np.ndarray:
        return self.distances[self._row(face_index)]

    def directions_of(self, face_index: int) -> np.ndarray:
        return self.directions[self._row(face_index)]

    def num_visible_faces(self, face_index: int) -> int:
        row = self._row(face_index)
        return row.stop - row.start

    def visible_face_data(
        self, face_index: int, k: int
    ) -> tuple[int, float, float, np.ndarray]:
        """The k-th visible face of ``face_index``.

        Returns
        -------
        (j, f_ij, d_ij, d̂_ij) : tuple
            Target face index, view factor, distance and unit direction.

        Raises
        ------
        IndexError
            If ``face_index`` or ``k`` is out of range.
        """
        row = self._row(face_index)
        if not 0 <= k < row.stop - row.start:
            raise IndexError(
                f"entry {k} out of range for face {face_index} with "
                f"{row.stop - row.start} visible faces"
            )
        e = row.start + k
        return (
            int(self.col_idx[e]),
            float(self.view_factors[e]),
            float(self.distances[e]),
            self.directions[e],
        )

    def memory_usage(self) -> int:
        """Bytes held by the CSR arrays."""
        return int(
            self.row_ptr.nbytes + self.col_idx.nbytes + self.view_factors.nbytes
            + self.distances.nbytes + self.directions.nbytes
        )

    def checksum(self) -> str:
        """SHA-256 of the pair structure (row offsets and columns).

        Equal for two builds of the same mesh, so runs can be compared for
        reproducibility without storing the graph.
        """
        return hash_array(
            np.concatenate((self.row_ptr.astype(np.int64), self.col_idx.astype(np.int64)))
        )


# ===================================================================
# GRAPH CONSTRUCTION KERNELS: Numba JIT
# ===================================================================


@njit(cache=True, parallel=True, fastmath=False)
def _count_candidates(centroids: np.ndarray, normals: np.ndarray) -> np.ndarray:
    """Pass 1a: number of mutually facing faces for each source face."""
    nfaces = centroids.shape[0]
    counts = np.zeros(nfaces, dtype=np.int64)

    for i in prange(nfaces):
        c = 0
        for j in range(nfaces):
            if j == i:
                continue
            rx = centroids[j, 0] - centroids[i, 0]
            ry = centroids[j, 1] - centroids[i, 1]
            rz = centroids[j, 2] - centroids[i, 2]
            if (rx * normals[i, 0] + ry * normals[i, 1] + rz * normals[i, 2] > 0.0
                    and rx * normals[j, 0] + ry * normals[j, 1] + rz * normals[j, 2] < 0.0):
                c += 1
        counts[i] = c

    return counts


@njit(cache=True, parallel=True, fastmath=False)
def _fill_candidates(
    centroids: np.ndarray,
    normals: np.ndarray,
    cand_ptr: np.ndarray,
) -> tuple[np.ndarray, np.ndarray]:
    """Pass 1b: fill candidate lists and sort each by distance, ascending."""
    nfaces = centroids.shape[0]
    total = cand_ptr[nfaces]
    cand_idx = np.empty(total, dtype=np.int64)
    cand_dist = np.empty(total, dtype=np.float64)

    for i in prange(nfaces):
        start = cand_ptr[i]
        pos = start
        for j in range(nfaces):
            if j == i:
                continue
            rx = centroids[j, 0] - centroids[i, 0]
            ry = centroids[j, 1] - centroids[i, 1]
            rz = centroids[j, 2] - centroids[i, 2]
            if (rx * normals[i, 0] + ry * normals[i, 1] + rz * normals[i, 2] > 0.0
                    and rx * normals[j, 0] + ry * normals[j, 1] + rz * normals[j, 2] < 0.0):
                cand_idx[pos] = j
                cand_dist[pos] = np.sqrt(rx * rx + ry * ry + rz * rz)
                pos += 1

        end = cand_ptr[i + 1]
        if end - start > 1:
            order = np.argsort(cand_dist[start:end], kind="mergesort")
            cand_idx[start:end] = cand_idx[start:end][order]
            cand_dist[start:end] = cand_dist[start:end][order]

    return cand_idx, cand_dist


@njit(cache=True, fastmath=False)
def _find_entry(
    cand_ptr: np.ndarray,
    cand_idx: np.ndarray,
    cand_dist: np.ndarray,
    row: int,
    target: int,
    dist: float,
) -> int:
    """Position of ``target`` in candidate row ``row``, located by its distance."""
    start = cand_ptr[row]
    end = cand_ptr[row + 1]
    e = start + np.searchsorted(cand_dist[start:end], dist)
    while e < end and cand_dist[e] == dist:
        if cand_idx[e] == target:
            return e
        e += 1
    for e in range(start, end):
        if cand_idx[e] == target:
            return e
    return -1


@njit(cache=True, fastmath=False)
def _occlusion_pass(
    cand_ptr: np.ndarray,
    cand_idx: np.ndarray,
    cand_dist: np.ndarray,
    centroids: np.ndarray,
    tri_verts: np.ndarray,
    epsilon: float,
) -> np.ndarray:
    """Pass 2: mark visible candidate entries, inserting pairs symmetrically."""
    nfaces = centroids.shape[0]
    visible = np.zeros(cand_idx.shape[0], dtype=np.bool_)
    ray_dir = np.empty(3, dtype=np.float64)

    for i in range(nfaces):
        start = cand_ptr[i]
        end = cand_ptr[i + 1]
        origin = centroids[i]

        for e in range(start, end):
            if visible[e]:
                continue  # recorded from the other face already

            j = cand_idx[e]
            d_ij = cand_dist[e]
            for ax in range(3):
                ray_dir[ax] = (centroids[j, ax] - origin[ax]) / d_ij

            occluded = False
            for e_k in range(start, end):
                if cand_dist[e_k] >= d_ij:
                    break
                k = cand_idx[e_k]
                t_hit = moller_trumbore(
                    origin, ray_dir, tri_verts[k, 0], tri_verts[k, 1], tri_verts[k, 2], epsilon
                )
                if t_hit > 0.0:
                    occluded = True
                    break

            if not occluded:
                visible[e] = True
                e_rev = _find_entry(cand_ptr, cand_idx, cand_dist, j, i, d_ij)
                if e_rev >= 0:
                    visible[e_rev] = True

    return visible


@njit(cache=True, parallel=True, fastmath=False)
def _assemble_csr(
    cand_ptr: np.ndarray,
    cand_idx: np.ndarray,
    cand_dist: np.ndarray,
    visible: np.ndarray,
    row_ptr: np.ndarray,
    centroids: np.ndarray,
    normals: np.ndarray,
    areas: np.ndarray,
) -> tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
    """Pass 3: pack visible entries into CSR arrays with per-pair view factors."""
    nfaces = centroids.shape[0]
    nnz = row_ptr[nfaces]
    col_idx = np.empty(nnz, dtype=np.int64)
    view_factors = np.empty(nnz, dtype=np.float64)
    distances = np.empty(nnz, dtype=np.float64)
    directions = np.empty((nnz, 3), dtype=np.float64)

    for i in prange(nfaces):
        pos = row_ptr[i]
        for e in range(cand_ptr[i], cand_ptr[i + 1]):
            if not visible[e]:
                continue
            j = cand_idx[e]
            d = cand_dist[e]
            for ax in range(3):
                directions[pos, ax] = (centroids[j, ax] - centroids[i, ax]) / d
            col_idx[pos] = j
            distances[pos] = d
            view_factors[pos] = _lambertian_view_factor(
                normals[i], normals[j], directions[pos], d, areas[j]
            )
            pos += 1

    return col_idx, view_factors, distances, directions


# ===================================================================
# HIGH-LEVEL API
# ===================================================================


def build_face_visibility_graph(
    mesh: ShapeModel,
    epsilon: float = _DEFAULT_EPSILON,
) -> FaceVisibilityGraph:
    """Build the face-to-face visibility graph of a shape model.

    Parameters
    ----------
    mesh : ShapeModel
        Shape model with face centroids, normals and areas.
    epsilon : float
        Möller-Trumbore determinant tolerance for occlusion rays.

    Returns
    -------
    FaceVisibilityGraph
        Symmetric CSR graph: j is listed for i exactly when i is listed for j.
    """
    nfaces = mesh.num_faces
    logger.info("Building face visibility graph for %d faces...", nfaces)

    if nfaces == 0:
        return FaceVisibilityGraph.empty(0)

    centroids = np.ascontiguousarray(mesh.face_centroids)
    normals = np.ascontiguousarray(mesh.face_normals)
    tri_verts = mesh.triangle_vertices()

    counts = _count_candidates(centroids, normals)
    cand_ptr = np.zeros(nfaces + 1, dtype=np.int64)
    np.cumsum(counts, out=cand_ptr[1:])
    cand_idx, cand_dist = _fill_candidates(centroids, normals, cand_ptr)

    logger.info(
        "  Candidate pairs after mutual-facing filter: %d (%.2f%% of all pairs)",
        int(cand_ptr[-1]),
        100.0 * cand_ptr[-1] / max(nfaces * (nfaces - 1), 1),
    )

    visible = _occlusion_pass(cand_ptr, cand_idx, cand_dist, centroids, tri_verts, epsilon)

    entry_rows = np.repeat(np.arange(nfaces, dtype=np.int64), counts)
    row_counts = np.bincount(entry_rows[visible], minlength=nfaces)
    row_ptr = np.zeros(nfaces + 1, dtype=np.int64)
    np.cumsum(row_counts, out=row_ptr[1:])

    col_idx, view_factors, distances, directions = _assemble_csr(
        cand_ptr, cand_idx, cand_dist, visible, row_ptr,
        centroids, normals, np.ascontiguousarray(mesh.face_areas),
    )

    graph = FaceVisibilityGraph(
        row_ptr=row_ptr,
        col_idx=col_idx,
        view_factors=view_factors,
        distances=distances,
        directions=directions,
    )

    logger.info(
        "Visibility graph built: %d visible pairs, %.1f avg per face, %.3f MB, sha256=%s",
        graph.nnz,
        graph.nnz / nfaces,
        graph.memory_usage() / 1e6,
        graph.checksum()[:16],
    )
    return graph
