"""Direct solar illumination of shape model faces.

Evaluates whether each face of a shape model receives direct sunlight,
with the sun treated as a point at infinity along ``sun_position``.

Modes
-----
- ``PseudoConvex``: a face is lit when its normal points towards the sun
  (n · ŝ > 0). Terrain occlusion is ignored.
- ``SelfShadowing``: a face must face the sun (n · ŝ > 0, as above) and
  its sunward ray must miss every face in its visibility list. When the
  sun's elevation above the face's horizon exceeds the face's maximum
  occluder elevation plus a margin, the ray test is skipped (fast path).
  The fast path never changes a result, only the cost.

Notes
-----
The mode is a value passed per call, so self-shadowing without a graph
is rejected when the mode is constructed rather than deep inside a batch.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import numpy as np
from numba import njit, prange

from shape_engine.constants import IlluminationConfig
from shape_engine.errors import PreconditionError
from shape_engine.geometry import moller_trumbore
from shape_engine.mesh import ShapeModel
from shape_engine.visibility import FaceVisibilityGraph

logger = logging.getLogger(__name__)

_DEFAULT_EPSILON: float = 1e-8
_DEFAULT_ELEVATION_MARGIN: float = 1e-3


# ---------------------------------------------------------------------------
# Illumination Modes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PseudoConvex:
    """Orientation-only illumination (no occlusion)."""


@dataclass(frozen=True, eq=False)
class SelfShadowing:
    """Illumination with occlusion by the body's own surface.

    Attributes
    ----------
    graph : FaceVisibilityGraph
        Visibility graph of the mesh being evaluated.
    max_elevations : np.ndarray
        Per-face maximum occluder elevation [rad]. Shape: (num_faces,).
    use_elevation_optimization : bool
        Enable the max-elevation fast path.
    elevation_margin : float
        Margin [rad] the sun must clear above the maximum elevation.
    epsilon : float
        Determinant tolerance of the occlusion ray test.
    """

    graph: FaceVisibilityGraph
    max_elevations: np.ndarray
    use_elevation_optimization: bool = True
    elevation_margin: float = _DEFAULT_ELEVATION_MARGIN
    epsilon: float = _DEFAULT_EPSILON

    def __post_init__(self) -> None:
        if self.graph is None:
            raise PreconditionError(
                "Self-shadowing requires a visibility graph; "
                "call build_face_visibility_graph(mesh) first."
            )
        if self.max_elevations is None:
            raise PreconditionError(
                "Self-shadowing requires face max elevations; "
                "call compute_face_max_elevations(mesh, graph) first."
            )
        max_elevations = np.asarray(self.max_elevations, dtype=np.float64)
        if max_elevations.shape != (self.graph.nfaces,):
            raise PreconditionError(
                f"max_elevations has shape {max_elevations.shape}, "
                f"expected ({self.graph.nfaces},)"
            )
        if self.elevation_margin < 0:
            raise PreconditionError(
                f"Elevation margin cannot be negative, got {self.elevation_margin}"
            )
        object.__setattr__(self, "max_elevations", max_elevations)

    @classmethod
    def from_config(
        cls,
        graph: FaceVisibilityGraph,
        max_elevations: np.ndarray,
        config: IlluminationConfig,
        epsilon: float = _DEFAULT_EPSILON,
    ) -> SelfShadowing:
        """Build the mode from the ``illumination`` section of the config."""
        return cls(
            graph=graph,
            max_elevations=max_elevations,
            use_elevation_optimization=config.use_elevation_optimization,
            elevation_margin=config.elevation_margin_rad,
            epsilon=epsilon,
        )


IlluminationMode = PseudoConvex | SelfShadowing


# ---------------------------------------------------------------------------
# Kernels
# ---------------------------------------------------------------------------


@njit(cache=True, fastmath=False)
def _self_shadowing_face(
    i: int,
    centroids: np.ndarray,
    normals: np.ndarray,
    sun_dir: np.ndarray,
    row_ptr: np.ndarray,
    col_idx: np.ndarray,
    tri_verts: np.ndarray,
    max_elevations: np.ndarray,
    use_optimization: bool,
    margin: float,
    epsilon: float,
) -> tuple[bool, bool]:
    """Return (illuminated, decided_by_fast_path) for face i."""
    sin_elev = (
        normals[i, 0] * sun_dir[0]
        + normals[i, 1] * sun_dir[1]
        + normals[i, 2] * sun_dir[2]
    )
    if sin_elev <= 0.0:
        return False, False

    if use_optimization:
        elev = np.arcsin(min(1.0, sin_elev))
        if elev > max_elevations[i] + margin:
            return True, True

    origin = centroids[i]
    for e in range(row_ptr[i], row_ptr[i + 1]):
        j = col_idx[e]
        t_hit = moller_trumbore(
            origin, sun_dir, tri_verts[j, 0], tri_verts[j, 1], tri_verts[j, 2], epsilon
        )
        if t_hit > 0.0:
            return False, False

    return True, False


@njit(cache=True, parallel=True, fastmath=False)
def _self_shadowing_batch(
    out: np.ndarray,
    fast_path: np.ndarray,
    centroids: np.ndarray,
    normals: np.ndarray,
    sun_dir: np.ndarray,
    row_ptr: np.ndarray,
    col_idx: np.ndarray,
    tri_verts: np.ndarray,
    max_elevations: np.ndarray,
    use_optimization: bool,
    margin: float,
    epsilon: float,
) -> None:
    for i in prange(centroids.shape[0]):
        lit, fast = _self_shadowing_face(
            i, centroids, normals, sun_dir, row_ptr, col_idx, tri_verts,
            max_elevations, use_optimization, margin, epsilon,
        )
        out[i] = lit
        fast_path[i] = fast


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def _unit_sun_direction(sun_position: np.ndarray) -> np.ndarray:
    sun = np.asarray(sun_position, dtype=np.float64).reshape(3)
    norm = float(np.linalg.norm(sun))
    if norm == 0.0 or not np.isfinite(norm):
        raise PreconditionError(f"Sun position must be a finite non-zero vector, got {sun}")
    return sun / norm


def _check_mode(mesh: ShapeModel, mode: IlluminationMode) -> None:
    if isinstance(mode, SelfShadowing):
        if mode.graph.nfaces != mesh.num_faces:
            raise PreconditionError(
                f"Visibility graph has {mode.graph.nfaces} faces "
                f"but the mesh has {mesh.num_faces}"
            )
    elif not isinstance(mode, PseudoConvex):
        raise PreconditionError(f"Unknown illumination mode: {mode!r}")


def is_illuminated(
    mesh: ShapeModel,
    sun_position: np.ndarray,
    face_index: int,
    mode: IlluminationMode,
) -> bool:
    """Whether one face receives direct sunlight.

    Parameters
    ----------
    mesh : ShapeModel
        Shape model.
    sun_position : array_like
        Direction (or position, sun at infinity) of the sun in the body
        frame. Shape: (3,).
    face_index : int
        0-based face index.
    mode : PseudoConvex or SelfShadowing
        Illumination mode.

    Returns
    -------
    bool
        True if the face is sunlit.
    """
    _check_mode(mesh, mode)
    if not 0 <= face_index < mesh.num_faces:
        raise IndexError(
            f"face index {face_index} out of range for mesh with {mesh.num_faces} faces"
        )
    sun_dir = _unit_sun_direction(sun_position)

    if isinstance(mode, PseudoConvex):
        return bool(np.dot(mesh.face_normals[face_index], sun_dir) > 0.0)

    lit, _ = _self_shadowing_face(
        face_index,
        np.ascontiguousarray(mesh.face_centroids),
        np.ascontiguousarray(mesh.face_normals),
        sun_dir,
        mode.graph.row_ptr,
        mode.graph.col_idx,
        mesh.triangle_vertices(),
        mode.max_elevations,
        mode.use_elevation_optimization,
        mode.elevation_margin,
        mode.epsilon,
    )
    return bool(lit)


def update_illumination(
    out: np.ndarray,
    mesh: ShapeModel,
    sun_position: np.ndarray,
    mode: IlluminationMode,
) -> int:
    """Evaluate every face into a caller-supplied boolean buffer.

    Parameters
    ----------
    out : np.ndarray
        Output buffer, overwritten in place. Shape: (num_faces,), dtype: bool.
    mesh : ShapeModel
        Shape model.
    sun_position : array_like
        Sun direction or position in the body frame. Shape: (3,).
    mode : PseudoConvex or SelfShadowing
        Illumination mode.

    Returns
    -------
    int
        Number of faces decided by the elevation fast path (0 in
        pseudo-convex mode).

    Raises
    ------
    PreconditionError
        If ``out`` does not hold one boolean per face, or the mode's graph
        does not match the mesh.
    """
    if not isinstance(out, np.ndarray) or out.dtype != np.bool_ or out.ndim != 1:
        raise PreconditionError("Illumination buffer must be a 1-D boolean array")
    if out.shape[0] != mesh.num_faces:
        raise PreconditionError(
            f"Illumination buffer has length {out.shape[0]}, "
            f"expected {mesh.num_faces} (one per face)"
        )
    _check_mode(mesh, mode)
    sun_dir = _unit_sun_direction(sun_position)

    if isinstance(mode, PseudoConvex):
        np.greater(mesh.face_normals @ sun_dir, 0.0, out=out)
        return 0

    fast_path = np.zeros(mesh.num_faces, dtype=np.bool_)
    _self_shadowing_batch(
        out,
        fast_path,
        np.ascontiguousarray(mesh.face_centroids),
        np.ascontiguousarray(mesh.face_normals),
        sun_dir,
        mode.graph.row_ptr,
        mode.graph.col_idx,
        mesh.triangle_vertices(),
        mode.max_elevations,
        mode.use_elevation_optimization,
        mode.elevation_margin,
        mode.epsilon,
    )
    fast_count = int(fast_path.sum())
    logger.debug(
        "Self-shadowing batch: %d faces lit, %d decided by fast path",
        int(out.sum()),
        fast_count,
    )
    return fast_count


# ---------------------------------------------------------------------------
# Result Container
# ---------------------------------------------------------------------------


@dataclass
class IlluminationResult:
    """Result of an illumination computation.

    Attributes
    ----------
    illuminated : np.ndarray
        Per-face sunlit flag. Shape: (num_faces,), dtype: bool.
    sun_dir : np.ndarray
        Unit sun direction in the body frame. Shape: (3,).
    mode : str
        'pseudo_convex' or 'self_shadowing'.
    stats : dict[str, float]
        Summary statistics: illuminated fraction, fast-path fraction, etc.
    """

    illuminated: np.ndarray
    sun_dir: np.ndarray
    mode: str
    stats: dict[str, float] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Illumination Engine
# ---------------------------------------------------------------------------


class IlluminationEngine:
    """Evaluates illumination of one shape model for successive sun directions.

    Parameters
    ----------
    mesh : ShapeModel
        Shape model.
    mode : PseudoConvex or SelfShadowing, optional
        Illumination mode. Defaults to ``PseudoConvex()``.
    """

    def __init__(self, mesh: ShapeModel, mode: IlluminationMode | None = None) -> None:
        self._mesh = mesh
        self._mode = mode if mode is not None else PseudoConvex()
        _check_mode(mesh, self._mode)
        self._buffer = np.zeros(mesh.num_faces, dtype=np.bool_)

        logger.info(
            "IlluminationEngine initialized: %d faces, mode=%s",
            mesh.num_faces,
            self.mode_name,
        )

    @property
    def mode_name(self) -> str:
        return "self_shadowing" if isinstance(self._mode, SelfShadowing) else "pseudo_convex"

    def compute(self, sun_position: np.ndarray) -> IlluminationResult:
        """Compute illumination for a given sun direction.

        Parameters
        ----------
        sun_position : np.ndarray
            Sun direction or position in the body frame. Shape: (3,).

        Returns
        -------
        IlluminationResult
            Per-face flags and summary statistics. The flags array is a
            fresh copy owned by the result.
        """
        sun_dir = _unit_sun_direction(sun_position)
        fast_count = update_illumination(self._buffer, self._mesh, sun_dir, self._mode)
        illuminated = self._buffer.copy()

        stats = self._compute_stats(illuminated, fast_count)

        logger.info(
            "Illumination computed: mode=%s, lit=%.1f%%, fast path=%.1f%%",
            self.mode_name,
            stats["illuminated_fraction"] * 100.0,
            stats["fast_path_fraction"] * 100.0,
        )

        return IlluminationResult(
            illuminated=illuminated,
            sun_dir=sun_dir,
            mode=self.mode_name,
            stats=stats,
        )

    def _compute_stats(self, illuminated: np.ndarray, fast_count: int) -> dict[str, float]:
        """Compute summary statistics for an illumination map."""
        n = len(illuminated)
        if n == 0:
            return {
                "illuminated_fraction": 0.0,
                "illuminated_area_fraction": 0.0,
                "fast_path_fraction": 0.0,
            }

        areas = self._mesh.face_areas
        total_area = float(areas.sum())
        return {
            "illuminated_fraction": float(np.count_nonzero(illuminated)) / n,
            "illuminated_area_fraction": (
                float(areas[illuminated].sum()) / total_area if total_area > 0 else 0.0
            ),
            "fast_path_fraction": fast_count / n,
        }
