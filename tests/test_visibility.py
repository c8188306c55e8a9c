"""Tests for the face visibility graph."""

from __future__ import annotations

import numpy as np
import pytest

from shape_engine.mesh import ShapeModel
from shape_engine.visibility import (
    FaceVisibilityGraph,
    build_face_visibility_graph,
    view_factor,
)


# ===================================================================
# FIXTURES
# ===================================================================

_FLOOR = [[-1.0, -1.0, 0.0], [1.0, -1.0, 0.0], [0.0, 1.0, 0.0]]  # faces +z
_CEILING = [[-1.0, -1.0, 2.0], [0.0, 1.0, 2.0], [1.0, -1.0, 2.0]]  # faces -z
# Two-sided slab between floor and ceiling
_SLAB_BOTTOM = [[-5.0, -5.0, 0.9], [0.0, 5.0, 0.9], [5.0, -5.0, 0.9]]  # faces -z
_SLAB_TOP = [[-5.0, -5.0, 1.1], [5.0, -5.0, 1.1], [0.0, 5.0, 1.1]]  # faces +z


def _triangle_soup(*triangles) -> ShapeModel:
    vertices = np.array([v for tri in triangles for v in tri], dtype=np.float64)
    faces = np.arange(vertices.shape[0], dtype=np.int64).reshape(-1, 3)
    return ShapeModel.from_arrays(vertices, faces)


@pytest.fixture
def facing_pair() -> ShapeModel:
    return _triangle_soup(_FLOOR, _CEILING)


@pytest.fixture
def blocked_pair() -> ShapeModel:
    return _triangle_soup(_FLOOR, _CEILING, _SLAB_BOTTOM, _SLAB_TOP)


def _assert_csr_invariants(graph: FaceVisibilityGraph, nfaces: int) -> None:
    assert graph.nfaces == nfaces
    assert graph.row_ptr[0] == 0
    assert np.all(np.diff(graph.row_ptr) >= 0)
    assert graph.row_ptr[-1] == graph.nnz
    assert graph.view_factors.shape == (graph.nnz,)
    assert graph.distances.shape == (graph.nnz,)
    assert graph.directions.shape == (graph.nnz, 3)
    if graph.nnz:
        assert graph.col_idx.min() >= 0
        assert graph.col_idx.max() < nfaces


# ===================================================================
# VIEW FACTOR
# ===================================================================


class TestViewFactor:
    def test_facing_faces(self) -> None:
        f, d, d_hat = view_factor(
            [0.0, 0.0, 0.0], [0.0, 0.0, 2.0], [0.0, 0.0, 1.0], [0.0, 0.0, -1.0], 3.0
        )
        assert d == pytest.approx(2.0)
        np.testing.assert_allclose(d_hat, [0.0, 0.0, 1.0])
        assert f == pytest.approx(3.0 / (4.0 * np.pi))

    def test_oblique(self) -> None:
        n_i = np.array([0.0, 0.0, 1.0])
        n_j = -np.array([1.0, 0.0, 1.0]) / np.sqrt(2.0)
        f, d, _ = view_factor([0.0, 0.0, 0.0], [1.0, 0.0, 1.0], n_i, n_j, 1.0)
        cos_i = 1.0 / np.sqrt(2.0)
        assert d == pytest.approx(np.sqrt(2.0))
        assert f == pytest.approx(cos_i * 1.0 / (np.pi * 2.0))

    @pytest.mark.parametrize(
        "n_i, n_j",
        [
            ([0.0, 0.0, -1.0], [0.0, 0.0, -1.0]),  # i faces away
            ([0.0, 0.0, 1.0], [0.0, 0.0, 1.0]),  # j faces away
        ],
    )
    def test_not_facing_is_zero(self, n_i, n_j) -> None:
        f, _, _ = view_factor([0.0, 0.0, 0.0], [0.0, 0.0, 1.0], n_i, n_j, 1.0)
        assert f == 0.0


# ===================================================================
# GRAPH CONSTRUCTION
# ===================================================================


class TestBuildGraph:
    def test_facing_pair_visible(self, facing_pair: ShapeModel) -> None:
        graph = build_face_visibility_graph(facing_pair)

        _assert_csr_invariants(graph, 2)
        np.testing.assert_array_equal(graph.visible_face_indices(0), [1])
        np.testing.assert_array_equal(graph.visible_face_indices(1), [0])
        assert graph.distances_of(0)[0] == pytest.approx(2.0)
        np.testing.assert_allclose(graph.directions_of(0)[0], [0.0, 0.0, 1.0])
        np.testing.assert_allclose(graph.directions_of(1)[0], [0.0, 0.0, -1.0])
        # Equal areas: the pair has the same view factor both ways
        assert graph.view_factors_of(0)[0] == pytest.approx(1.0 / (2.0 * np.pi))
        assert graph.view_factors_of(1)[0] == pytest.approx(1.0 / (2.0 * np.pi))

    def test_blocker_occludes(self, blocked_pair: ShapeModel) -> None:
        """The slab hides the ceiling from the floor; each sees one slab side."""
        graph = build_face_visibility_graph(blocked_pair)

        _assert_csr_invariants(graph, 4)
        np.testing.assert_array_equal(graph.visible_face_indices(0), [2])
        np.testing.assert_array_equal(graph.visible_face_indices(1), [3])
        np.testing.assert_array_equal(graph.visible_face_indices(2), [0])
        np.testing.assert_array_equal(graph.visible_face_indices(3), [1])

    def test_convex_shapes_have_no_pairs(self, unit_cube: ShapeModel, sphere_320: ShapeModel) -> None:
        for mesh in (unit_cube, sphere_320):
            graph = build_face_visibility_graph(mesh)
            _assert_csr_invariants(graph, mesh.num_faces)
            assert graph.nnz == 0

    def test_crater_graph_invariants(
        self, crater_model: ShapeModel, crater_graph: FaceVisibilityGraph
    ) -> None:
        _assert_csr_invariants(crater_graph, crater_model.num_faces)
        assert crater_graph.nnz > 0

    def test_checksum_reproducible(
        self, crater_model: ShapeModel, crater_graph: FaceVisibilityGraph, blocked_pair: ShapeModel
    ) -> None:
        """Rebuilding the same mesh gives the same pair structure hash."""
        rebuilt = build_face_visibility_graph(crater_model)
        assert rebuilt.checksum() == crater_graph.checksum()
        assert len(crater_graph.checksum()) == 64
        assert build_face_visibility_graph(blocked_pair).checksum() != crater_graph.checksum()

    def test_crater_graph_symmetric(self, crater_graph: FaceVisibilityGraph) -> None:
        pairs = set()
        for i in range(crater_graph.nfaces):
            for j in crater_graph.visible_face_indices(i):
                pairs.add((i, int(j)))
        assert all((j, i) in pairs for i, j in pairs)
        assert all(i != j for i, j in pairs)

    def test_crater_pair_data(
        self, crater_model: ShapeModel, crater_graph: FaceVisibilityGraph
    ) -> None:
        c = crater_model.face_centroids
        n = crater_model.face_normals
        for i in range(0, crater_graph.nfaces, 7):
            distances = crater_graph.distances_of(i)
            assert np.all(np.diff(distances) >= 0.0), "rows are sorted by distance"
            for k in range(crater_graph.num_visible_faces(i)):
                j, f_ij, d_ij, d_hat = crater_graph.visible_face_data(i, k)
                assert d_ij == pytest.approx(np.linalg.norm(c[j] - c[i]))
                np.testing.assert_allclose(d_hat, (c[j] - c[i]) / d_ij, atol=1e-12)
                assert np.dot(d_hat, n[i]) > 0.0 and np.dot(d_hat, n[j]) < 0.0
                expected, _, _ = view_factor(c[i], c[j], n[i], n[j], crater_model.face_areas[j])
                assert f_ij == pytest.approx(expected)

    def test_visible_faces_lie_in_crater(
        self, crater_model: ShapeModel, crater_graph: FaceVisibilityGraph
    ) -> None:
        """Only faces inside the crater bowl can see each other."""
        has_pairs = np.diff(crater_graph.row_ptr) > 0
        c = crater_model.face_centroids[has_pairs]
        polar_deg = np.degrees(np.arccos(c[:, 2] / np.linalg.norm(c, axis=1)))
        # 45° crater plus a margin of two face rings at the rim
        assert np.all(polar_deg < 61.0)


# ===================================================================
# CSR CONTAINER
# ===================================================================


class TestFaceVisibilityGraph:
    def _graph(self) -> FaceVisibilityGraph:
        return FaceVisibilityGraph(
            row_ptr=np.array([0, 1, 1, 2]),
            col_idx=np.array([2, 0]),
            view_factors=np.array([0.1, 0.2]),
            distances=np.array([1.0, 1.0]),
            directions=np.array([[0.0, 0.0, 1.0], [0.0, 0.0, -1.0]]),
        )

    def test_accessors(self) -> None:
        graph = self._graph()
        assert graph.nfaces == 3
        assert graph.nnz == 2
        assert graph.num_visible_faces(0) == 1
        assert graph.num_visible_faces(1) == 0
        j, f, d, d_hat = graph.visible_face_data(2, 0)
        assert (j, f, d) == (0, 0.2, 1.0)
        np.testing.assert_array_equal(d_hat, [0.0, 0.0, -1.0])
        assert graph.memory_usage() > 0

    @pytest.mark.parametrize("face", [-1, 3, 100])
    def test_face_out_of_range(self, face: int) -> None:
        graph = self._graph()
        for accessor in (
            graph.visible_face_indices,
            graph.view_factors_of,
            graph.distances_of,
            graph.directions_of,
            graph.num_visible_faces,
        ):
            with pytest.raises(IndexError):
                accessor(face)

    def test_entry_out_of_range(self) -> None:
        with pytest.raises(IndexError):
            self._graph().visible_face_data(1, 0)

    def test_arrays_read_only(self) -> None:
        graph = self._graph()
        with pytest.raises(ValueError):
            graph.col_idx[0] = 1

    def test_empty(self) -> None:
        graph = FaceVisibilityGraph.empty(4)
        _assert_csr_invariants(graph, 4)
        assert graph.nnz == 0
        assert graph.num_visible_faces(3) == 0

    @pytest.mark.parametrize(
        "row_ptr, col_idx",
        [
            ([1, 1, 2], [0]),  # first offset not 0
            ([0, 2, 1], [0]),  # decreasing
            ([0, 1, 1], [0, 1]),  # last offset != nnz
            ([0, 1, 1], [5]),  # column out of range
        ],
    )
    def test_invalid_csr(self, row_ptr, col_idx) -> None:
        nnz = len(col_idx)
        with pytest.raises(ValueError):
            FaceVisibilityGraph(
                row_ptr=np.array(row_ptr),
                col_idx=np.array(col_idx),
                view_factors=np.zeros(nnz),
                distances=np.ones(nnz),
                directions=np.zeros((nnz, 3)),
            )

    def test_length_mismatch(self) -> None:
        with pytest.raises(ValueError):
            FaceVisibilityGraph(
                row_ptr=np.array([0, 1]),
                col_idx=np.array([0]),
                view_factors=np.zeros(2),
                distances=np.ones(1),
                directions=np.zeros((1, 3)),
            )
