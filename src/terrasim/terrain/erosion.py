"""Grid-pass erosion and the erosion stage driver.

The grid passes (hydraulic, thermal, wind, chemical) each add into shared
erosion and sediment accumulators of an ErosionWorkingSet. Passes never
read each other's output, so they can run in any order and over row bands
in parallel. The result is committed once, after which particle erosion
runs on the committed heightfield.
"""

from concurrent import futures
from dataclasses import dataclass

import numpy as np
import structlog
from numpy.typing import NDArray

from ..exceptions import InvalidDimensionError, ResourceExhaustionError
from .climate import ClimateInputs
from .config import ErosionConfig, GridErosionConfig, HardnessConfig
from .noise import sample_layer
from .particles import run_particle_erosion, select_particle_backend

logger = structlog.get_logger()

# 4-connected neighbour offsets (dy, dx) for slope relaxation
_RELAX_OFFSETS = ((-1, 0), (0, 1), (1, 0), (0, -1))


@dataclass
class ErosionWorkingSet:
    """Stage-local buffers for one grid erosion run."""

    height: NDArray[np.float32]
    erosion: NDArray[np.float32]
    sediment: NDArray[np.float32]
    hardness: NDArray[np.float32]
    moisture: NDArray[np.float32]

    @classmethod
    def allocate(
        cls,
        heights: NDArray[np.float32],
        moisture: NDArray[np.float32],
        hardness: NDArray[np.float32],
    ) -> "ErosionWorkingSet":
        """Allocate zeroed accumulators for a heightfield.

        Args:
            heights: Heightfield to erode. Copied, never modified.
            moisture: Moisture grid, same shape.
            hardness: Rock hardness grid in [0, 1], same shape.

        Returns:
            A fresh working set.

        Raises:
            InvalidDimensionError: If the grids are not 2D or disagree in shape.
            ResourceExhaustionError: If the buffers cannot be allocated.
        """
        if heights.ndim != 2:
            raise InvalidDimensionError(f"Heightfield must be 2D, got shape {heights.shape}")
        for name, grid in (("moisture", moisture), ("hardness", hardness)):
            if grid.shape != heights.shape:
                raise InvalidDimensionError(
                    f"{name} grid {grid.shape} does not match heightfield {heights.shape}"
                )

        try:
            return cls(
                height=heights.astype(np.float32, copy=True),
                erosion=np.zeros(heights.shape, dtype=np.float32),
                sediment=np.zeros(heights.shape, dtype=np.float32),
                hardness=hardness.astype(np.float32, copy=True),
                moisture=moisture.astype(np.float32, copy=True),
            )
        except MemoryError as e:
            raise ResourceExhaustionError(
                f"Cannot allocate erosion buffers for grid {heights.shape}"
            ) from e

    @property
    def shape(self) -> tuple[int, int]:
        return self.height.shape

    def commit(self) -> NDArray[np.float32]:
        """Final heights: original - erosion + sediment, clamped to [0, 1]."""
        return np.clip(self.height - self.erosion + self.sediment, 0.0, 1.0).astype(
            np.float32
        )

    def release(self) -> None:
        """Drop the buffers."""
        empty = np.empty((0, 0), dtype=np.float32)
        self.height = empty
        self.erosion = empty
        self.sediment = empty
        self.hardness = empty
        self.moisture = empty


def hydraulic_pass(
    ws: ErosionWorkingSet, band: slice, rainfall: float, config: GridErosionConfig
) -> None:
    """Rainfall erosion; part of the removed material is redeposited."""
    amount = rainfall * ws.moisture[band] * config.hydraulic_rate * config.dt
    ws.erosion[band] += amount
    ws.sediment[band] += amount * config.sediment_ratio


def thermal_pass(
    ws: ErosionWorkingSet,
    band: slice,
    temperature: NDArray[np.float32],
    config: GridErosionConfig,
) -> None:
    """Temperature-driven weathering, weaker on hard rock."""
    ws.erosion[band] += (
        temperature[band] * (1.0 - ws.hardness[band]) * config.thermal_rate * config.dt
    )


def wind_pass(
    ws: ErosionWorkingSet, band: slice, wind_speed: float, config: GridErosionConfig
) -> None:
    """Uniform wind abrasion. Wind direction does not affect it."""
    ws.erosion[band] += wind_speed * config.wind_rate * config.dt


def chemical_pass(ws: ErosionWorkingSet, band: slice, config: GridErosionConfig) -> None:
    """Dissolution of soft rock by moisture."""
    ws.erosion[band] += (
        ws.moisture[band] * (1.0 - ws.hardness[band]) * config.chemical_rate * config.dt
    )


def row_bands(rows: int, parts: int) -> list[slice]:
    """Split rows into at most ``parts`` contiguous, non-empty bands."""
    parts = max(1, min(parts, rows))
    edges = np.linspace(0, rows, parts + 1).astype(int)
    return [slice(int(a), int(b)) for a, b in zip(edges[:-1], edges[1:]) if b > a]


def run_grid_passes(
    ws: ErosionWorkingSet,
    climate: ClimateInputs,
    config: GridErosionConfig,
    workers: int = 1,
) -> None:
    """Run all four grid passes over the working set.

    Each row band is processed by one task which writes only that band's
    accumulator rows.

    Args:
        ws: Working set to accumulate into.
        climate: Climate inputs for this run.
        config: Grid erosion coefficients.
        workers: Thread count; 1 runs inline.
    """
    temperature = climate.temperature_grid(ws.shape)

    def run_band(band: slice) -> None:
        hydraulic_pass(ws, band, climate.rainfall, config)
        thermal_pass(ws, band, temperature, config)
        wind_pass(ws, band, climate.wind_speed, config)
        chemical_pass(ws, band, config)

    bands = row_bands(ws.shape[0], workers)
    if workers > 1 and len(bands) > 1:
        with futures.ThreadPoolExecutor(max_workers=workers) as executor:
            # Consume results so band failures propagate
            list(executor.map(run_band, bands))
    else:
        for band in bands:
            run_band(band)


def relax_slopes(
    heights: NDArray[np.float32],
    iterations: int,
    strength: float,
    sediment_factor: float,
) -> NDArray[np.float32]:
    """Move material from each cell toward its lower 4-neighbours.

    Every sweep reads the heights from the end of the previous sweep. A
    cell loses ``strength * drop`` toward each lower neighbour, and the
    neighbour gains ``sediment_factor`` of that. With a factor of 1 total
    mass is conserved.

    Args:
        heights: Input heightfield.
        iterations: Number of sweeps.
        strength: Fraction of each drop moved per sweep.
        sediment_factor: Fraction of moved material that settles.

    Returns:
        Relaxed heightfield, clamped to [0, 1].
    """
    result = heights.astype(np.float64, copy=True)
    rows, cols = result.shape

    for _ in range(iterations):
        padded = np.pad(result, 1, mode="edge")
        removed = np.zeros_like(result)
        gained = np.zeros((rows + 2, cols + 2), dtype=np.float64)

        for dy, dx in _RELAX_OFFSETS:
            neighbour = padded[1 + dy : 1 + dy + rows, 1 + dx : 1 + dx + cols]
            moved = strength * np.maximum(result - neighbour, 0.0)
            removed += moved
            gained[1 + dy : 1 + dy + rows, 1 + dx : 1 + dx + cols] += (
                moved * sediment_factor
            )

        result = result - removed + gained[1:-1, 1:-1]

    return np.clip(result, 0.0, 1.0).astype(np.float32)


def derive_hardness(
    heights: NDArray[np.float32],
    seed: int,
    config: HardnessConfig | None = None,
) -> NDArray[np.float32]:
    """Rock hardness from noise, harder toward the summits.

    Args:
        heights: Heightfield.
        seed: Hardness noise seed.
        config: Hardness parameters.

    Returns:
        Hardness grid in [0, 1].
    """
    if config is None:
        config = HardnessConfig()
    rows, cols = heights.shape
    ys, xs = np.mgrid[0:rows, 0:cols].astype(np.float64)
    noise = sample_layer(config.noise, xs, ys, seed)
    hardness = (
        config.base
        + (noise - 0.5) * 2.0 * config.variation
        + config.altitude_bias * heights
    )
    return np.clip(hardness, 0.0, 1.0).astype(np.float32)


def run_erosion(
    heights: NDArray[np.float32],
    config: ErosionConfig,
    climate: ClimateInputs,
    rng: np.random.Generator | None = None,
    hardness: NDArray[np.float32] | None = None,
) -> NDArray[np.float32]:
    """Erode a heightfield: grid passes, then particles.

    The grid phase is committed in full before the particle phase reads
    the heightfield. The input array is never modified.

    Args:
        heights: Heightfield in [0, 1].
        config: Erosion configuration.
        climate: Climate inputs, treated as read-only.
        rng: Random source for particle spawning (defaults to one seeded
            from ``config.seed``).
        hardness: Rock hardness grid; derived from noise if omitted.

    Returns:
        Eroded heightfield in [0, 1].

    Raises:
        InvalidDimensionError: If any grid disagrees with the heightfield.
        InvalidParameterError: If the particle backend name is unknown.
        ResourceExhaustionError: If working buffers cannot be allocated.
    """
    if heights.ndim != 2:
        raise InvalidDimensionError(f"Heightfield must be 2D, got shape {heights.shape}")
    climate.validate(heights.shape)
    backend = select_particle_backend(config.particles)

    if hardness is None:
        hardness = derive_hardness(heights, config.seed, config.hardness)

    ws = ErosionWorkingSet.allocate(heights, climate.moisture, hardness)
    try:
        run_grid_passes(ws, climate, config.grid, workers=config.workers)
        eroded = float(ws.erosion.sum())
        result = ws.commit()
    finally:
        ws.release()

    if config.grid.talus_iterations > 0:
        result = relax_slopes(
            result,
            config.grid.talus_iterations,
            config.grid.talus_strength,
            config.grid.talus_sediment_factor,
        )

    logger.debug("grid_erosion_committed", erosion_total=eroded)

    if config.particles.particle_count > 0:
        if rng is None:
            rng = np.random.default_rng(config.seed % (2**32))
        result = run_particle_erosion(result, config.particles, climate, rng, backend)

    logger.info(
        "erosion_complete",
        particles=config.particles.particle_count,
        mean_change=float(np.abs(result - heights).mean()),
    )
    return result
