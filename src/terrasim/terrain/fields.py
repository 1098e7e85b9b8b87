"""Heightfield synthesis and derived helper fields."""

import numpy as np
import structlog
from numpy.typing import NDArray

from ..exceptions import InvalidParameterError
from .config import NoiseLayerConfig, SynthesisConfig
from .noise import inverse_lerp, ridged, sample_layer

logger = structlog.get_logger()

# Order in which per-layer seeds are drawn from the world seed
LAYER_ORDER = (
    "continents",
    "details",
    "mountains",
    "canyons",
    "temperature",
    "humidity",
    "micro",
)


def derive_layer_seeds(seed: int) -> dict[str, int]:
    """Draw decorrelated per-layer seeds from a world seed.

    Args:
        seed: World seed.

    Returns:
        Mapping of layer name to seed, stable for a given world seed.
    """
    rng = np.random.default_rng(seed % (2**32))
    values = rng.integers(0, 2**31 - 1, size=len(LAYER_ORDER))
    return {name: int(value) for name, value in zip(LAYER_ORDER, values)}


def world_coordinates(
    resolution: int, world_size: float
) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
    """World-space sample coordinates for a square grid.

    Args:
        resolution: Cells per side.
        world_size: World extent covered by the grid.

    Returns:
        (xs, ys) arrays of shape (resolution, resolution).
    """
    axis = np.linspace(0.0, world_size, resolution, dtype=np.float64)
    xs, ys = np.meshgrid(axis, axis)
    return xs, ys


def _layer(
    layer: NoiseLayerConfig,
    xs: NDArray[np.float64],
    ys: NDArray[np.float64],
    seed: int,
) -> NDArray[np.float64]:
    return sample_layer(layer, xs, ys, seed)


def make_micro_detail(
    xs: NDArray[np.float64],
    ys: NDArray[np.float64],
    seed: int,
    config: SynthesisConfig,
) -> NDArray[np.float64]:
    """Sum of decreasing-amplitude ridged octaves for surface roughness.

    Args:
        xs: World X coordinates.
        ys: World Y coordinates.
        seed: Micro detail seed.
        config: Synthesis parameters.

    Returns:
        Micro detail field (unscaled, roughly [0, 2]).
    """
    layer = config.micro
    detail = np.zeros(xs.shape, dtype=np.float64)
    amplitude = 1.0
    frequency = 1.0

    for i in range(config.micro_octaves):
        detail += amplitude * np.asarray(
            ridged(
                xs * frequency,
                ys * frequency,
                layer.octaves,
                layer.persistence,
                layer.lacunarity,
                layer.scale,
                seed + i,
                layer.gain,
            )
        )
        amplitude *= 0.5
        frequency *= 2.0

    return detail


def synthesize(
    resolution: int,
    world_size: float,
    seed: int,
    config: SynthesisConfig | None = None,
) -> NDArray[np.float32]:
    """Compose noise layers into a base heightfield.

    Continents form the base; ridged mountains are masked to high
    continent elevations; hills and fine detail add mid and small scale
    variation; canyons are carved where the base sits mid-range. Each
    layer after the continents is modulated by temperature and humidity
    proxy noise so that relief varies across the map.

    Args:
        resolution: Cells per side (at least 2).
        world_size: World extent in world units (positive).
        seed: World seed.
        config: Layer parameters and weights.

    Returns:
        Heightfield of shape (resolution, resolution), values in [0, 1].

    Raises:
        InvalidParameterError: If resolution or world size is unusable.
    """
    if config is None:
        config = SynthesisConfig()
    if resolution < 2:
        raise InvalidParameterError(f"Resolution must be at least 2, got {resolution}")
    if world_size <= 0:
        raise InvalidParameterError(f"World size must be positive, got {world_size}")

    seeds = derive_layer_seeds(seed)
    xs, ys = world_coordinates(resolution, world_size)

    logger.debug("synthesis_started", resolution=resolution, seed=seed)

    continents = _layer(config.continents, xs, ys, seeds["continents"])
    continents = np.power(continents, 1.0 - config.continent_separation)

    temperature = _layer(config.temperature, xs, ys, seeds["temperature"])
    humidity = _layer(config.humidity, xs, ys, seeds["humidity"])
    climate = (1.0 + (temperature - 0.5) * config.temperature_modulation) * (
        1.0 + (humidity - 0.5) * config.humidity_modulation
    )

    height = continents * config.continent_weight

    mountains = _layer(config.mountains, xs, ys, seeds["mountains"])
    mountain_mask = inverse_lerp(config.mountain_threshold, 1.0, continents)
    height += mountains * mountain_mask * config.mountain_weight * climate

    hills = _layer(config.hills, xs, ys, seeds["details"])
    height += hills * config.hill_weight * climate

    details = _layer(config.details, xs, ys, seeds["details"] + 1)
    height += details * config.detail_weight * climate

    # Canyons cut deepest where the base is mid-range
    canyons = _layer(config.canyons, xs, ys, seeds["canyons"])
    canyon_mask = np.clip(1.0 - np.abs(height - 0.5) * 2.0, 0.0, 1.0)
    height -= canyons * config.canyon_depth * canyon_mask * climate

    if config.micro_detail and config.micro_octaves > 0:
        micro = make_micro_detail(xs, ys, seeds["micro"], config)
        height += micro * config.micro_scale

    result = np.clip(height, 0.0, 1.0).astype(np.float32)

    logger.debug(
        "synthesis_complete",
        min=float(result.min()),
        max=float(result.max()),
        mean=float(result.mean()),
    )
    return result


def compute_sea_level(heights: NDArray[np.float32], ocean_coverage: float) -> float:
    """Height below which the given fraction of cells lies.

    Args:
        heights: Heightfield.
        ocean_coverage: Target underwater fraction (0-1).

    Returns:
        Sea level height.
    """
    coverage = float(np.clip(ocean_coverage, 0.0, 1.0))
    return float(np.quantile(heights, coverage))
