"""Polyhedral shape model with precomputed face properties.

Holds the vertex/face arrays of an asteroid shape model together with the
per-face centroid, outward unit normal and area consumed by every other
component. Face properties are computed once at construction and the
arrays are frozen afterwards; derived structures (BVH, visibility graph,
max elevations) are built separately and passed alongside the model.

Notes
-----
Normals follow the right-hand rule of each face's vertex order
(v0 → v1 → v2). Unlike terrain meshes, an asteroid model is a closed
surface, so normals are never re-oriented here: outward winding is the
responsibility of the mesh producer.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import numpy as np

logger = logging.getLogger(__name__)


@dataclass
class ShapeModel:
    """Triangulated polyhedral shape model.

    Attributes
    ----------
    vertices : np.ndarray
        Vertex positions. Shape: (num_vertices, 3), dtype: float64.
    faces : np.ndarray
        Triangle vertex indices (0-based). Shape: (num_faces, 3), dtype: int64.
    face_normals : np.ndarray
        Unit outward normal of each face. Shape: (num_faces, 3), dtype: float64.
    face_areas : np.ndarray
        Area of each face. Shape: (num_faces,), dtype: float64.
    face_centroids : np.ndarray
        Centroid of each face. Shape: (num_faces, 3), dtype: float64.
    metadata : dict
        Mesh statistics and provenance information.
    """

    vertices: np.ndarray
    faces: np.ndarray
    face_normals: np.ndarray
    face_areas: np.ndarray
    face_centroids: np.ndarray
    metadata: dict = field(default_factory=dict)
    _triangles: np.ndarray | None = field(default=None, init=False, repr=False, compare=False)

    @classmethod
    def from_arrays(
        cls,
        vertices: np.ndarray,
        faces: np.ndarray,
        metadata: dict | None = None,
    ) -> ShapeModel:
        """Build a shape model from raw vertex and face arrays.

        Parameters
        ----------
        vertices : array_like
            Vertex positions, shape (num_vertices, 3).
        faces : array_like
            Triangle vertex indices (0-based), shape (num_faces, 3).
        metadata : dict, optional
            Extra provenance information merged into ``metadata``.

        Returns
        -------
        ShapeModel
            Model with face centroids, normals and areas.

        Raises
        ------
        ValueError
            If the arrays are not (N, 3) or a face references a missing vertex.
        """
        vertices = np.array(vertices, dtype=np.float64)
        faces = np.array(faces, dtype=np.int64)

        if vertices.ndim != 2 or vertices.shape[1] != 3:
            raise ValueError(f"vertices must have shape (N, 3), got {vertices.shape}")
        if faces.ndim != 2 or faces.shape[1] != 3:
            raise ValueError(f"faces must have shape (M, 3), got {faces.shape}")
        if faces.size > 0 and (faces.min() < 0 or faces.max() >= vertices.shape[0]):
            raise ValueError(
                f"face indices must lie in [0, {vertices.shape[0] - 1}], "
                f"got [{faces.min()}, {faces.max()}]"
            )

        face_normals, face_areas, face_centroids = compute_face_properties(
            vertices, faces
        )

        degenerate_count = int(np.sum(face_areas < 1e-20))
        if degenerate_count > 0:
            logger.warning(
                "  %d degenerate faces detected (area < 1e-20)", degenerate_count
            )

        info = {
            "num_vertices": vertices.shape[0],
            "num_faces": faces.shape[0],
            "degenerate_faces": degenerate_count,
            "total_surface_area": float(face_areas.sum()),
            "memory_estimate_MB": (
                vertices.nbytes + faces.nbytes + face_normals.nbytes
                + face_areas.nbytes + face_centroids.nbytes
            ) / 1e6,
        }
        if metadata:
            info.update(metadata)

        for arr in (vertices, faces, face_normals, face_areas, face_centroids):
            arr.setflags(write=False)

        logger.info(
            "Shape model created: %d vertices, %d faces, %.4g surface area",
            info["num_vertices"],
            info["num_faces"],
            info["total_surface_area"],
        )

        return cls(
            vertices=vertices,
            faces=faces,
            face_normals=face_normals,
            face_areas=face_areas,
            face_centroids=face_centroids,
            metadata=info,
        )

    @property
    def num_faces(self) -> int:
        return int(self.faces.shape[0])

    @property
    def num_vertices(self) -> int:
        return int(self.vertices.shape[0])

    def face_vertices(self, face_index: int) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Return the three vertex positions of one face."""
        i0, i1, i2 = self.faces[face_index]
        return self.vertices[i0], self.vertices[i1], self.vertices[i2]

    def triangle_vertices(self) -> np.ndarray:
        """All face vertex positions. Shape: (num_faces, 3, 3).

        Gathered on first use and shared afterwards; the array is read-only.
        """
        if self._triangles is None:
            tri_verts = np.empty((self.num_faces, 3, 3), dtype=np.float64)
            for k in range(3):
                tri_verts[:, k, :] = self.vertices[self.faces[:, k]]
            tri_verts.setflags(write=False)
            self._triangles = tri_verts
        return self._triangles


def compute_face_properties(
    vertices: np.ndarray,
    faces: np.ndarray,
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Compute face normals, areas, and centroids for all triangles.

    Parameters
    ----------
    vertices : np.ndarray
        Vertex positions, shape (num_vertices, 3).
    faces : np.ndarray
        Triangle vertex indices, shape (num_faces, 3).

    Returns
    -------
    normals : np.ndarray
        Unit normals, shape (num_faces, 3). Degenerate faces get (0, 0, 0).
    areas : np.ndarray
        Triangle areas, shape (num_faces,).
    centroids : np.ndarray
        Triangle centroids, shape (num_faces, 3).
    """
    v0 = vertices[faces[:, 0]]  # (N, 3)
    v1 = vertices[faces[:, 1]]  # (N, 3)
    v2 = vertices[faces[:, 2]]  # (N, 3)

    # Cross product gives normal direction with magnitude = 2 * area
    cross = np.cross(v1 - v0, v2 - v0)  # (N, 3)
    norms = np.linalg.norm(cross, axis=1, keepdims=True)  # (N, 1)

    safe_norms = np.where(norms > 1e-30, norms, 1.0)
    normals = cross / safe_norms
    normals[norms.ravel() <= 1e-30] = 0.0

    areas = 0.5 * norms.ravel()
    centroids = (v0 + v1 + v2) / 3.0

    return normals, areas, centroids


# ---------------------------------------------------------------------------
# Shape properties
# ---------------------------------------------------------------------------


def polyhedron_volume(mesh: ShapeModel) -> float:
    """Volume of a closed, consistently oriented polyhedron.

    Uses the divergence theorem: V = (1/6) Σ (A × B) · C over all faces.
    """
    tri = mesh.triangle_vertices()
    return float(np.einsum("ij,ij->i", np.cross(tri[:, 0], tri[:, 1]), tri[:, 2]).sum() / 6.0)


def equivalent_radius(mesh: ShapeModel) -> float:
    """Radius of the sphere with the same volume as the shape."""
    return float((3.0 * polyhedron_volume(mesh) / (4.0 * np.pi)) ** (1.0 / 3.0))


def maximum_radius(mesh: ShapeModel) -> float:
    """Largest vertex distance from the body origin (bounding sphere)."""
    return float(np.linalg.norm(mesh.vertices, axis=1).max())


def minimum_radius(mesh: ShapeModel) -> float:
    """Smallest vertex distance from the body origin."""
    return float(np.linalg.norm(mesh.vertices, axis=1).min())


def inscribed_radius(mesh: ShapeModel) -> float:
    """Radius of an origin-centred sphere contained in the body.

    The minimum distance from the origin to any face plane. Each face lies
    in its plane, so no face comes closer to the origin than this; for a
    closed body enclosing its origin the sphere is therefore inside the body.
    """
    v0 = mesh.vertices[mesh.faces[:, 0]]
    plane_dist = np.abs(np.einsum("ij,ij->i", mesh.face_normals, v0))
    valid = mesh.face_areas > 1e-20
    if not np.any(valid):
        return 0.0
    return float(plane_dist[valid].min())
