"""Per-cell biome weights from height, moisture, temperature and season."""

import numpy as np
import structlog
from numpy.typing import ArrayLike, NDArray

from ..exceptions import InvalidDimensionError, InvalidParameterError
from .config import BiomeDefinition, BiomeTransitionConfig
from .noise import CELLULAR_MAX_DISTANCE, cellular, evaluate_curve, smoothstep

logger = structlog.get_logger()


def height_influence(biome: BiomeDefinition, heights: ArrayLike) -> NDArray[np.float64]:
    """Height response of a biome.

    The biome's curve applies inside [min_height, max_height]; outside the
    band the influence ramps to zero over ``blend_distance``, or drops
    straight to zero when the blend distance is zero.
    """
    h = np.asarray(heights, dtype=np.float64)
    blend = biome.blend_distance
    if blend > 0:
        lower = smoothstep(biome.min_height - blend, biome.min_height, h)
        upper = 1.0 - smoothstep(biome.max_height, biome.max_height + blend, h)
    else:
        lower = (h >= biome.min_height).astype(np.float64)
        upper = (h <= biome.max_height).astype(np.float64)
    curve = evaluate_curve(biome.height_curve, np.clip(h, biome.min_height, biome.max_height))
    return curve * lower * upper


def match_weight(
    values: ArrayLike, optimum: float, tolerance: float, adaptability: float
) -> NDArray[np.float64]:
    """exp(-|value - optimum| / tolerance * (1 - adaptability))"""
    v = np.asarray(values, dtype=np.float64)
    return np.exp(-np.abs(v - optimum) / tolerance * (1.0 - adaptability))


def seasonal_weight(season: float, variation: float) -> float:
    """1 + sin(2*pi*season) * variation, floored at zero."""
    return max(0.0, 1.0 + float(np.sin(season * 2.0 * np.pi)) * variation)


def transition_noise(
    shape: tuple[int, int], config: BiomeTransitionConfig, index: int
) -> NDArray[np.float64]:
    """Normalized cellular noise for one biome's boundary perturbation."""
    rows, cols = shape
    ys, xs = np.mgrid[0:rows, 0:cols].astype(np.float64)
    distance = np.asarray(
        cellular(
            xs * config.coordinate_scale,
            ys * config.coordinate_scale,
            config.blend_scale,
            config.seed + index,
        )
    )
    return np.clip(distance / CELLULAR_MAX_DISTANCE, 0.0, 1.0)


def compute_biome_weights(
    heights: NDArray[np.float32],
    moisture: NDArray[np.float32],
    temperature: NDArray[np.float32] | float,
    season: float,
    biomes: list[BiomeDefinition],
    transitions: BiomeTransitionConfig | None = None,
) -> NDArray[np.float32]:
    """Compute normalized biome weights for every cell.

    Each biome's raw weight is the product of its height influence,
    moisture and temperature match, and seasonal weight. When transitions
    are enabled, cellular noise (a different field per biome) pulls each
    weight toward ``weight * noise`` by the response curve. Weights are
    then normalized per cell; cells where no biome qualifies stay zero.

    Args:
        heights: Heightfield.
        moisture: Moisture grid.
        temperature: Temperature grid or scalar (degrees C).
        season: Year progress in [0, 1).
        biomes: Biome definitions; output channel order follows this list.
        transitions: Boundary perturbation; none if omitted.

    Returns:
        Weights of shape (H, W, len(biomes)).

    Raises:
        InvalidDimensionError: If a grid does not match the heightfield.
        InvalidParameterError: If no biomes are given.
    """
    if heights.ndim != 2:
        raise InvalidDimensionError(f"Heightfield must be 2D, got shape {heights.shape}")
    if moisture.shape != heights.shape:
        raise InvalidDimensionError(
            f"Moisture grid {moisture.shape} does not match heightfield {heights.shape}"
        )
    if np.ndim(temperature) != 0 and np.shape(temperature) != heights.shape:
        raise InvalidDimensionError(
            f"Temperature grid {np.shape(temperature)} does not match heightfield {heights.shape}"
        )
    if not biomes:
        raise InvalidParameterError("At least one biome definition is required")

    weights = np.zeros(heights.shape + (len(biomes),), dtype=np.float64)

    for i, biome in enumerate(biomes):
        w = height_influence(biome, heights)
        w = w * match_weight(
            moisture, biome.moisture_optimum, biome.moisture_range, biome.adaptability
        )
        w = w * match_weight(
            temperature, biome.temperature_optimum, biome.temperature_range,
            biome.adaptability,
        )
        w = w * seasonal_weight(season, biome.seasonal_variation)

        if transitions is not None and transitions.enabled:
            noise = transition_noise(heights.shape, transitions, i)
            blend = np.clip(evaluate_curve(transitions.response_curve, noise), 0.0, 1.0)
            w = w + (w * noise - w) * blend

        weights[..., i] = w

    total = weights.sum(axis=-1, keepdims=True)
    np.divide(weights, total, out=weights, where=total > 0)
    weights[np.broadcast_to(total <= 0, weights.shape)] = 0.0

    logger.debug(
        "biome_weights_computed",
        biomes=len(biomes),
        uncovered=int((total[..., 0] <= 0).sum()),
    )
    return weights.astype(np.float32)


def dominant_biome(weights: NDArray[np.float32]) -> NDArray[np.int32]:
    """Index of the strongest biome per cell, -1 where every weight is zero."""
    dominant = np.argmax(weights, axis=-1).astype(np.int32)
    dominant[weights.max(axis=-1) <= 0] = -1
    return dominant
