"""Numerical tolerances, tuning parameters, and configuration loader.

Tolerances and tuning constants are loaded from a YAML configuration file
(``shape_engine/config/default_config.yaml`` by default). This module
provides a typed, validated interface to that configuration. The kernel
modules keep compile-time defaults for Numba that mirror the shipped YAML.

References
----------
- Möller, T. & Trumbore, B. (1997). J. Graphics Tools, 2(1), 21-28.
- Wald, I. (2007). Proc. IEEE Symp. Interactive Ray Tracing, pp. 33-40.
"""

from __future__ import annotations

import hashlib
import logging
import platform
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import numba
import numpy as np
import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH: Path = Path(__file__).parent / "config" / "default_config.yaml"

# ---------------------------------------------------------------------------
# Configuration Data Classes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RaytracerConfig:
    """BVH raytracer configuration.

    Attributes
    ----------
    epsilon : float
        Determinant zero-test tolerance for Möller-Trumbore.
    max_leaf_triangles : int
        Maximum triangles per BVH leaf node.
    sah_num_bins : int
        Number of bins for the SAH cost sweep.
    """

    epsilon: float
    max_leaf_triangles: int
    sah_num_bins: int


@dataclass(frozen=True)
class VisibilityConfig:
    """Face visibility graph configuration.

    Attributes
    ----------
    epsilon : float
        Determinant tolerance used by occlusion ray tests.
    """

    epsilon: float


@dataclass(frozen=True)
class IlluminationConfig:
    """Illumination evaluation configuration.

    Attributes
    ----------
    use_elevation_optimization : bool
        Enable the max-elevation fast path in self-shadowing mode.
    elevation_margin_rad : float
        Angular margin [rad] the sun must clear above a face's maximum
        occluder elevation before the fast path is trusted.
    """

    use_elevation_optimization: bool
    elevation_margin_rad: float


@dataclass
class EngineConfig:
    """Top-level engine configuration loaded from YAML.

    Attributes
    ----------
    raytracer : RaytracerConfig
        Raytracer configuration.
    visibility : VisibilityConfig
        Visibility graph configuration.
    illumination : IlluminationConfig
        Illumination configuration.
    """

    raytracer: RaytracerConfig
    visibility: VisibilityConfig
    illumination: IlluminationConfig


# ---------------------------------------------------------------------------
# Configuration Loader
# ---------------------------------------------------------------------------


def load_config(config_path: str | Path | None = None) -> EngineConfig:
    """Load and validate an engine configuration from a YAML file.

    Parameters
    ----------
    config_path : str or Path, optional
        Path to the YAML configuration file. Defaults to the packaged
        ``default_config.yaml``.

    Returns
    -------
    EngineConfig
        Fully populated, typed configuration object.

    Raises
    ------
    FileNotFoundError
        If the configuration file does not exist.
    ValueError
        If required configuration keys are missing or values are invalid.
    """
    config_path = Path(config_path) if config_path is not None else DEFAULT_CONFIG_PATH
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, "r", encoding="utf-8") as f:
        raw: dict[str, Any] = yaml.safe_load(f)

    logger.info("Loading configuration from: %s", config_path)

    try:
        rt = raw["raytracer"]
        bvh_cfg = rt["bvh"]
        raytracer = RaytracerConfig(
            epsilon=float(rt["epsilon"]),
            max_leaf_triangles=int(bvh_cfg["max_leaf_triangles"]),
            sah_num_bins=int(bvh_cfg["sah_num_bins"]),
        )

        vis = raw["visibility"]
        visibility = VisibilityConfig(epsilon=float(vis["epsilon"]))

        ill = raw["illumination"]
        illumination = IlluminationConfig(
            use_elevation_optimization=bool(ill["use_elevation_optimization"]),
            elevation_margin_rad=float(ill["elevation_margin_rad"]),
        )
    except (KeyError, TypeError) as exc:
        raise ValueError(f"Malformed configuration in {config_path}: missing {exc}") from exc

    config = EngineConfig(
        raytracer=raytracer,
        visibility=visibility,
        illumination=illumination,
    )

    _validate_config(config)
    logger.info("Configuration loaded successfully.")

    return config


def _validate_config(config: EngineConfig) -> None:
    """Validate numerical constraints on configuration values.

    Parameters
    ----------
    config : EngineConfig
        Configuration to validate.

    Raises
    ------
    ValueError
        If any value is invalid.
    """
    if config.raytracer.epsilon <= 0:
        raise ValueError("Raytracer epsilon must be positive.")
    if config.raytracer.max_leaf_triangles < 1:
        raise ValueError(
            f"BVH leaf size must be >= 1, got {config.raytracer.max_leaf_triangles}"
        )
    if config.raytracer.sah_num_bins < 2:
        raise ValueError(
            f"SAH bin count must be >= 2, got {config.raytracer.sah_num_bins}"
        )
    if config.visibility.epsilon <= 0:
        raise ValueError("Visibility epsilon must be positive.")
    if config.illumination.elevation_margin_rad < 0:
        raise ValueError(
            "Elevation margin cannot be negative, got "
            f"{config.illumination.elevation_margin_rad}"
        )

    logger.debug("Configuration validation passed.")


def log_platform_info() -> None:
    """Log platform and library version information for reproducibility."""
    logger.info("=" * 70)
    logger.info("PLATFORM INFORMATION (for reproducibility)")
    logger.info("=" * 70)
    logger.info("  Python:    %s", sys.version)
    logger.info("  Platform:  %s", platform.platform())
    logger.info("  Processor: %s", platform.processor())
    logger.info("  NumPy:     %s", np.__version__)
    logger.info("  Numba:     %s", numba.__version__)
    logger.info("  Float64 eps: %e", np.finfo(np.float64).eps)
    logger.info("=" * 70)


def hash_array(arr: np.ndarray) -> str:
    """Compute SHA-256 hash of a NumPy array for reproducibility verification.

    Parameters
    ----------
    arr : np.ndarray
        Array to hash.

    Returns
    -------
    str
        Hex digest of the SHA-256 hash.
    """
    return hashlib.sha256(np.ascontiguousarray(arr).tobytes()).hexdigest()
