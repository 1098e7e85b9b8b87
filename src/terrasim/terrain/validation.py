"""Post-generation output checks."""

from typing import TYPE_CHECKING

import numpy as np
import structlog
from numpy.typing import NDArray

from .config import RiverConfig
from .hydrology import River

if TYPE_CHECKING:
    from .generator import GenerationResult

logger = structlog.get_logger()

# Tolerance on per-cell biome weight sums
WEIGHT_SUM_TOLERANCE = 1e-5


class ValidationResult:
    """Result of output validation."""

    def __init__(self) -> None:
        self.errors: list[str] = []
        self.warnings: list[str] = []
        self.passed = True

    def add_error(self, message: str) -> None:
        """Add validation error."""
        self.errors.append(message)
        self.passed = False

    def add_warning(self, message: str) -> None:
        """Add validation warning."""
        self.warnings.append(message)

    def merge(self, other: "ValidationResult") -> None:
        """Fold another result's findings into this one."""
        for error in other.errors:
            self.add_error(error)
        self.warnings.extend(other.warnings)


def validate_heightfield(heights: NDArray[np.float32]) -> ValidationResult:
    """Check a heightfield is 2D, finite and within [0, 1]."""
    result = ValidationResult()

    if heights.ndim != 2:
        result.add_error(f"Heightfield must be 2D, got shape {heights.shape}")
        return result

    non_finite = int(np.count_nonzero(~np.isfinite(heights)))
    if non_finite > 0:
        result.add_error(f"Heightfield has {non_finite} non-finite cells")

    out_of_range = int(np.count_nonzero((heights < 0.0) | (heights > 1.0)))
    if out_of_range > 0:
        result.add_error(f"Heightfield has {out_of_range} cells outside [0, 1]")

    if np.all(heights == heights.flat[0]):
        result.add_warning("Heightfield is completely flat")

    return result


def validate_biome_weights(
    weights: NDArray[np.float32], heights_shape: tuple[int, ...] | None = None
) -> ValidationResult:
    """Check every cell's weights sum to 1, or are all zero.

    Args:
        weights: Weights of shape (H, W, B).
        heights_shape: Expected (H, W), if known.

    Returns:
        ValidationResult; uncovered cells are reported as a warning.
    """
    result = ValidationResult()

    if weights.ndim != 3:
        result.add_error(f"Biome weights must be 3D, got shape {weights.shape}")
        return result
    if heights_shape is not None and weights.shape[:2] != tuple(heights_shape):
        result.add_error(
            f"Biome weights {weights.shape[:2]} do not match heightfield {heights_shape}"
        )

    if np.any(weights < 0.0):
        result.add_error("Biome weights contain negative values")

    totals = weights.sum(axis=-1, dtype=np.float64)
    covered = totals > 0
    bad = int(np.count_nonzero(np.abs(totals[covered] - 1.0) > WEIGHT_SUM_TOLERANCE))
    if bad > 0:
        result.add_error(f"{bad} cells have biome weights not summing to 1")

    uncovered = int(np.count_nonzero(~covered))
    if uncovered > 0:
        result.add_warning(f"{uncovered} cells have no qualifying biome")

    return result


def validate_rivers(
    rivers: list[River],
    shape: tuple[int, int],
    config: RiverConfig | None = None,
) -> ValidationResult:
    """Check river courses are in bounds, connected, and lose flow monotonically."""
    if config is None:
        config = RiverConfig()
    result = ValidationResult()
    rows, cols = shape
    max_points = int(config.max_river_length / config.cell_size) + 1

    for i, river in enumerate(rivers):
        if not river.points:
            result.add_error(f"River {i} has no points")
            continue

        if len(river.points) > max_points:
            result.add_error(
                f"River {i} has {len(river.points)} points, limit is {max_points}"
            )

        for a, b in zip(river.points[:-1], river.points[1:]):
            if b.flow > a.flow:
                result.add_error(f"River {i} flow increases at ({b.x}, {b.y})")
                break
            if max(abs(b.x - a.x), abs(b.y - a.y)) != 1:
                result.add_error(f"River {i} is not contiguous at ({b.x}, {b.y})")
                break

        for p in river.points:
            if not (0 <= p.x < cols and 0 <= p.y < rows):
                result.add_error(f"River {i} leaves the grid at ({p.x}, {p.y})")
                break

    return result


def validate_generation(generation: "GenerationResult") -> ValidationResult:
    """Validate every output of a generation run.

    Args:
        generation: Result of ``generate_world``.

    Returns:
        Combined ValidationResult.
    """
    result = ValidationResult()
    heights = generation.heights

    result.merge(validate_heightfield(heights))
    result.merge(validate_biome_weights(generation.biome_weights, heights.shape))
    result.merge(validate_rivers(generation.rivers, heights.shape, generation.config.rivers))

    if result.passed:
        logger.info("validation_passed", warnings=len(result.warnings))
    else:
        logger.warning("validation_failed", errors=len(result.errors))
        for error in result.errors:
            logger.error("validation_error", message=error)

    for warning in result.warnings:
        logger.warning("validation_warning", message=warning)

    return result
