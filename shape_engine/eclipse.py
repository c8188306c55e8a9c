"""Mutual shadowing of a binary pair.

Demotes sunlit faces of body A to shadowed wherever body B blocks the
sun. Faces are only ever switched off, never on, so the pass composes
with a prior self-shadowing evaluation of A.

Frames
------
Body A's frame is the working frame: ``sun_position_a`` and
``position_b_in_a`` are expressed in it. A point of A maps into B's body
frame as ``p_b = R · (p_a - r_ab)``; the sun is at infinity, so its
direction maps as ``ŝ_b = R · ŝ_a``.

Early-outs
----------
With ρ_A, ρ_B the bounding-sphere radii and ρ_B,in the inscribed radius
of B, splitting r_ab into its sun-line component r·ŝ and perpendicular
part r⊥:

1. Behind:   r·ŝ < -(ρ_A + ρ_B)        → NO_ECLIPSE
2. Lateral:  |r⊥| > ρ_A + ρ_B          → NO_ECLIPSE
3. Total:    r·ŝ > 0 and |r⊥| + ρ_A < ρ_B,in → every face shadowed

Per lit face the sunward ray is tested against B's bounding sphere (miss
→ skip), its inscribed sphere (hit → shadowed) and finally B's BVH.
"""

from __future__ import annotations

import logging
from enum import Enum

import numpy as np
from numba import njit, prange

from shape_engine.errors import PreconditionError
from shape_engine.geometry import ray_sphere_distances
from shape_engine.mesh import ShapeModel, inscribed_radius, maximum_radius
from shape_engine.raytracer import MeshBVH, any_hit_bvh

logger = logging.getLogger(__name__)


class EclipseStatus(Enum):
    NO_ECLIPSE = "no_eclipse"
    PARTIAL_ECLIPSE = "partial_eclipse"
    TOTAL_ECLIPSE = "total_eclipse"


@njit(cache=True, parallel=True, fastmath=False)
def _shadow_faces(
    illuminated: np.ndarray,
    centroids_a: np.ndarray,
    rotation: np.ndarray,
    position_b: np.ndarray,
    sun_dir_b: np.ndarray,
    outer_radius: float,
    inner_radius: float,
    bvh_nodes: np.ndarray,
    tri_verts: np.ndarray,
    ordered_tri_indices: np.ndarray,
    epsilon: float,
    stack_size: int,
) -> None:
    center = np.zeros(3, dtype=np.float64)

    for i in prange(centroids_a.shape[0]):
        if not illuminated[i]:
            continue

        # Face centroid in B's body frame
        rel = centroids_a[i] - position_b
        origin = np.empty(3, dtype=np.float64)
        for row in range(3):
            origin[row] = (
                rotation[row, 0] * rel[0]
                + rotation[row, 1] * rel[1]
                + rotation[row, 2] * rel[2]
            )

        t1, _ = ray_sphere_distances(origin, sun_dir_b, center, outer_radius)
        if np.isnan(t1):
            continue

        t1, _ = ray_sphere_distances(origin, sun_dir_b, center, inner_radius)
        if not np.isnan(t1):
            illuminated[i] = False
            continue

        if any_hit_bvh(
            origin, sun_dir_b, bvh_nodes, tri_verts, ordered_tri_indices, epsilon, stack_size
        ):
            illuminated[i] = False


def apply_eclipse_shadowing(
    illuminated: np.ndarray,
    mesh_a: ShapeModel,
    mesh_b: ShapeModel,
    bvh_b: MeshBVH | None,
    sun_position_a: np.ndarray,
    position_b_in_a: np.ndarray,
    rotation_a_to_b: np.ndarray,
) -> EclipseStatus:
    """Shadow faces of body A that body B hides from the sun.

    Parameters
    ----------
    illuminated : np.ndarray
        Per-face sunlit flags of body A, updated in place (only True → False).
        Shape: (num_faces_a,), dtype: bool.
    mesh_a : ShapeModel
        Shadowed body.
    mesh_b : ShapeModel
        Occluding body, in its own body frame.
    bvh_b : MeshBVH
        Spatial index of ``mesh_b``.
    sun_position_a : array_like
        Sun direction (or position, sun at infinity) in A's frame. Shape: (3,).
    position_b_in_a : array_like
        Centre of B in A's frame. Shape: (3,).
    rotation_a_to_b : array_like
        Rotation matrix from A's frame to B's frame. Shape: (3, 3).

    Returns
    -------
    EclipseStatus
        NO_ECLIPSE if no face changed, TOTAL_ECLIPSE if every previously lit
        face is now shadowed, PARTIAL_ECLIPSE otherwise.

    Raises
    ------
    PreconditionError
        If ``bvh_b`` is missing, the buffer does not hold one boolean per
        face of A, the rotation is not 3×3 or the sun vector is zero.
    """
    if bvh_b is None:
        raise PreconditionError(
            "Occluding body has no BVH; call build_bvh(mesh_b) first."
        )
    if not isinstance(illuminated, np.ndarray) or illuminated.dtype != np.bool_:
        raise PreconditionError("Illumination buffer must be a boolean array")
    if illuminated.shape != (mesh_a.num_faces,):
        raise PreconditionError(
            f"Illumination buffer has shape {illuminated.shape}, "
            f"expected ({mesh_a.num_faces},)"
        )
    if bvh_b.num_faces != mesh_b.num_faces:
        raise PreconditionError(
            f"BVH covers {bvh_b.num_faces} faces but mesh_b has {mesh_b.num_faces}"
        )

    rotation = np.asarray(rotation_a_to_b, dtype=np.float64)
    if rotation.shape != (3, 3):
        raise PreconditionError(f"Rotation must be 3x3, got shape {rotation.shape}")

    sun = np.asarray(sun_position_a, dtype=np.float64).reshape(3)
    sun_norm = float(np.linalg.norm(sun))
    if sun_norm == 0.0:
        raise PreconditionError("Sun position must be a non-zero vector")
    sun_dir = sun / sun_norm

    r_ab = np.asarray(position_b_in_a, dtype=np.float64).reshape(3)

    lit_before = int(np.count_nonzero(illuminated))
    if lit_before == 0 or mesh_b.num_faces == 0:
        return EclipseStatus.NO_ECLIPSE

    rho_a = maximum_radius(mesh_a)
    rho_b = maximum_radius(mesh_b)
    rho_b_inner = inscribed_radius(mesh_b)

    along = float(np.dot(r_ab, sun_dir))
    lateral = float(np.linalg.norm(r_ab - along * sun_dir))

    if along < -(rho_a + rho_b):
        logger.debug("Eclipse early-out: occluder behind target (r.s = %.4g)", along)
        return EclipseStatus.NO_ECLIPSE

    if lateral > rho_a + rho_b:
        logger.debug("Eclipse early-out: lateral separation %.4g", lateral)
        return EclipseStatus.NO_ECLIPSE

    if along > 0.0 and lateral + rho_a < rho_b_inner:
        illuminated[:] = False
        logger.debug("Eclipse early-out: target inside inscribed-sphere shadow")
        return EclipseStatus.TOTAL_ECLIPSE

    _shadow_faces(
        illuminated,
        np.ascontiguousarray(mesh_a.face_centroids),
        np.ascontiguousarray(rotation),
        r_ab,
        rotation @ sun_dir,
        rho_b,
        rho_b_inner,
        bvh_b.nodes,
        bvh_b.tri_verts,
        bvh_b.ordered_indices,
        bvh_b.epsilon,
        bvh_b.stack_size,
    )

    lit_after = int(np.count_nonzero(illuminated))
    logger.debug(
        "Eclipse shadowing: %d of %d lit faces shadowed", lit_before - lit_after, lit_before
    )

    if lit_after == lit_before:
        return EclipseStatus.NO_ECLIPSE
    if lit_after == 0:
        return EclipseStatus.TOTAL_ECLIPSE
    return EclipseStatus.PARTIAL_ECLIPSE


def apply_eclipse_shadowing_transform(
    illuminated: np.ndarray,
    mesh_a: ShapeModel,
    sun_position_a: np.ndarray,
    rotation_a_to_b: np.ndarray,
    translation_a_to_b: np.ndarray,
    mesh_b: ShapeModel,
    bvh_b: MeshBVH | None,
) -> EclipseStatus:
    """``apply_eclipse_shadowing`` with the pose given as p_b = R · p_a + t.

    The centre of B in A's frame is r_ab = -Rᵀ · t.
    """
    rotation = np.asarray(rotation_a_to_b, dtype=np.float64)
    if rotation.shape != (3, 3):
        raise PreconditionError(f"Rotation must be 3x3, got shape {rotation.shape}")
    translation = np.asarray(translation_a_to_b, dtype=np.float64).reshape(3)

    return apply_eclipse_shadowing(
        illuminated,
        mesh_a,
        mesh_b,
        bvh_b,
        sun_position_a,
        -rotation.T @ translation,
        rotation,
    )
