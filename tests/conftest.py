"""Pytest configuration and shared fixtures for the shape engine tests."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import numpy as np
import pytest


# Add project root to path so imports work without installation
PROJECT_ROOT = Path(__file__).parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from shape_engine.constants import log_platform_info  # noqa: E402
from shape_engine.face_max_elevations import compute_face_max_elevations  # noqa: E402
from shape_engine.mesh import ShapeModel  # noqa: E402
from shape_engine.synthetic_shapes import box, cratered_icosphere, icosphere  # noqa: E402
from shape_engine.visibility import FaceVisibilityGraph, build_face_visibility_graph  # noqa: E402


def pytest_configure(config: pytest.Config) -> None:
    """Configure logging for tests."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(name)s [%(levelname)s] %(message)s",
    )
    log_platform_info()


# ===================================================================
# SHARED SHAPE FIXTURES
# ===================================================================


@pytest.fixture(scope="session")
def unit_cube() -> ShapeModel:
    """Axis-aligned unit cube centred on the origin (12 faces)."""
    return box((0.5, 0.5, 0.5))


@pytest.fixture(scope="session")
def sphere_320() -> ShapeModel:
    """Unit icosphere, 2 subdivisions (320 faces, convex)."""
    return icosphere(1.0, subdivisions=2)


@pytest.fixture(scope="session")
def crater_model() -> ShapeModel:
    """Unit sphere with a deep 45° crater around +z (1280 faces)."""
    return cratered_icosphere(
        radius=1.0, subdivisions=3, crater_angle_deg=45.0, crater_depth=0.5
    )


@pytest.fixture(scope="session")
def crater_graph(crater_model: ShapeModel) -> FaceVisibilityGraph:
    return build_face_visibility_graph(crater_model)


@pytest.fixture(scope="session")
def crater_max_elevations(
    crater_model: ShapeModel, crater_graph: FaceVisibilityGraph
) -> np.ndarray:
    return compute_face_max_elevations(crater_model, crater_graph)
