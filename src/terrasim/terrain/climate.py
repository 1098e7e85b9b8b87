"""Climate inputs consumed by erosion, rivers and biomes.

The core never owns climate state: a provider hands it moisture,
temperature, wind and rainfall each time a stage runs. ``derive_climate``
is the stand-in provider used when a whole world is generated offline.
"""

from dataclasses import dataclass

import numpy as np
import structlog
from numpy.typing import NDArray

from ..exceptions import InvalidDimensionError, InvalidParameterError
from .config import ClimateConfig
from .fields import world_coordinates
from .noise import sample_layer

logger = structlog.get_logger()


@dataclass(frozen=True)
class ClimateInputs:
    """Read-only climate fields for one stage invocation.

    Attributes:
        moisture: Moisture grid in [0, 1], same shape as the heightfield.
        temperature: Temperature in degrees C, a scalar or a grid.
        wind_speed: Wind speed (world units per second).
        rainfall: Rainfall intensity.
        wind_direction: Wind bearing in degrees. Unused by the erosion passes.
    """

    moisture: NDArray[np.float32]
    temperature: float | NDArray[np.float32]
    wind_speed: float = 0.0
    rainfall: float = 0.0
    wind_direction: float = 0.0

    def validate(self, shape: tuple[int, ...]) -> None:
        """Check the grids match a heightfield shape.

        Raises:
            InvalidDimensionError: If a grid does not match ``shape``.
        """
        if self.moisture.shape != shape:
            raise InvalidDimensionError(
                f"Moisture grid {self.moisture.shape} does not match heightfield {shape}"
            )
        if np.ndim(self.temperature) != 0 and np.shape(self.temperature) != shape:
            raise InvalidDimensionError(
                f"Temperature grid {np.shape(self.temperature)} "
                f"does not match heightfield {shape}"
            )

    def temperature_grid(self, shape: tuple[int, ...]) -> NDArray[np.float32]:
        """Temperature as a full grid, broadcasting a scalar."""
        return np.broadcast_to(
            np.asarray(self.temperature, dtype=np.float32), shape
        ).copy()


def latitude_factor(rows: int) -> NDArray[np.float64]:
    """Per-row warmth factor, 1 at the equator row and 0 at the edges."""
    lat = np.linspace(0.0, 1.0, rows, dtype=np.float64)
    offset = lat - 0.5
    return np.cos(offset * np.pi) ** 2 * (1.0 - np.abs(offset) * 0.5)


def derive_climate(
    heights: NDArray[np.float32],
    seed: int,
    config: ClimateConfig | None = None,
    world_size: float | None = None,
) -> ClimateInputs:
    """Derive default climate fields from a heightfield.

    Moisture is fractal noise dried out with altitude. Temperature falls
    with altitude by the lapse rate and, optionally, toward the top and
    bottom rows of the map.

    Args:
        heights: Heightfield in [0, 1].
        seed: Climate seed.
        config: Climate parameters.
        world_size: World extent for noise coordinates (defaults to grid size).

    Returns:
        ClimateInputs for the heightfield.
    """
    if config is None:
        config = ClimateConfig()
    rows, cols = heights.shape
    if world_size is None:
        world_size = float(max(rows, cols))

    xs, ys = world_coordinates(max(rows, cols), world_size)
    xs, ys = xs[:rows, :cols], ys[:rows, :cols]

    noise = sample_layer(config.moisture, xs, ys, seed)
    moisture = np.clip(noise * (1.0 - config.altitude_drying * heights), 0.0, 1.0)

    altitude_m = heights.astype(np.float64) * config.terrain_height_m
    temperature = np.full((rows, cols), config.base_temperature, dtype=np.float64)
    if config.use_latitude:
        temperature *= latitude_factor(rows)[:, np.newaxis]
    temperature -= config.lapse_rate * altitude_m / 100.0

    logger.debug(
        "climate_derived",
        moisture_mean=float(moisture.mean()),
        temperature_min=float(temperature.min()),
        temperature_max=float(temperature.max()),
    )

    return ClimateInputs(
        moisture=moisture.astype(np.float32),
        temperature=temperature.astype(np.float32),
        wind_speed=config.wind_speed,
        rainfall=config.rainfall,
        wind_direction=config.wind_direction,
    )


def season_progress(tick: int, ticks_per_year: int) -> float:
    """Fraction of the year elapsed at a tick, in [0, 1).

    Raises:
        InvalidParameterError: If ticks_per_year is not positive.
    """
    if ticks_per_year <= 0:
        raise InvalidParameterError(
            f"ticks_per_year must be positive, got {ticks_per_year}"
        )
    return (tick % ticks_per_year) / ticks_per_year
