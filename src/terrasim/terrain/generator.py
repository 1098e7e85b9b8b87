"""Terrain generation pipeline and public entry points."""

import numpy as np
import structlog
from numpy.typing import NDArray

from .biomes import compute_biome_weights
from .climate import ClimateInputs, derive_climate
from .config import BiomeDefinition, TerrainConfig
from .erosion import derive_hardness, run_erosion
from .fields import compute_sea_level, synthesize
from .geology import apply_geology
from .hydrology import River, build_rivers, carve_rivers

logger = structlog.get_logger()

__all__ = [
    "GenerationResult",
    "build_rivers",
    "compute_biome_weights",
    "derive_stage_seeds",
    "generate_terrain",
    "generate_world",
    "run_erosion",
]

# Order in which per-stage seeds are drawn from the world seed
STAGE_ORDER = ("geology", "climate", "erosion")


class GenerationResult:
    """Result of a full world generation with all stage outputs."""

    def __init__(
        self,
        heights: NDArray[np.float32],
        biome_weights: NDArray[np.float32],
        rivers: list[River],
        climate: ClimateInputs,
        biomes: list[BiomeDefinition],
        config: TerrainConfig,
        hardness: NDArray[np.float32] | None = None,
    ):
        self.heights = heights
        self.biome_weights = biome_weights
        self.rivers = rivers
        self.climate = climate
        self.biomes = biomes
        self.config = config
        self.hardness = hardness

    def flat_heights(self) -> NDArray[np.float32]:
        """Heights as a flat row-major array."""
        return np.ascontiguousarray(self.heights).ravel()

    def flat_biome_weights(self) -> NDArray[np.float32]:
        """Biome weights flattened row-major, biomes innermost."""
        return np.ascontiguousarray(self.biome_weights).ravel()


def derive_stage_seeds(seed: int) -> dict[str, int]:
    """Per-stage seeds drawn from the world seed in a fixed order."""
    rng = np.random.default_rng((seed + 1) % (2**32))
    values = rng.integers(0, 2**31 - 1, size=len(STAGE_ORDER))
    return {name: int(value) for name, value in zip(STAGE_ORDER, values)}


def generate_terrain(
    seed: int,
    resolution: int,
    world_size: float,
    config: TerrainConfig | None = None,
) -> NDArray[np.float32]:
    """Generate a heightfield: noise synthesis followed by geology.

    Deterministic: identical arguments give bit-identical output.

    Args:
        seed: World seed.
        resolution: Cells per side.
        world_size: World extent in world units.
        config: Synthesis and geology parameters (other sections unused).

    Returns:
        Heightfield of shape (resolution, resolution) in [0, 1].

    Raises:
        InvalidParameterError: If resolution or world size is unusable.
    """
    if config is None:
        config = TerrainConfig()
    seeds = derive_stage_seeds(seed)

    heights = synthesize(resolution, world_size, seed, config.synthesis)
    logger.info("stage_complete", stage="synthesis", resolution=resolution)

    heights = apply_geology(heights, seeds["geology"], config.geology)
    logger.info("stage_complete", stage="geology")

    return heights


def generate_world(config: TerrainConfig) -> GenerationResult:
    """Run every stage: terrain, erosion, rivers, climate and biomes.

    Each ``stage_complete`` log event marks a boundary at which all stage
    output is committed.

    Args:
        config: Complete configuration.

    Returns:
        GenerationResult with all stage outputs.
    """
    logger.info(
        "generation_started",
        seed=config.seed,
        resolution=config.resolution,
        world_size=config.world_size,
    )
    seeds = derive_stage_seeds(config.seed)

    heights = generate_terrain(config.seed, config.resolution, config.world_size, config)

    climate = derive_climate(heights, seeds["climate"], config.climate, config.world_size)
    erosion_rng = np.random.default_rng(seeds["erosion"])
    hardness = derive_hardness(heights, seeds["erosion"], config.erosion.hardness)
    heights = run_erosion(
        heights, config.erosion, climate, rng=erosion_rng, hardness=hardness
    )
    logger.info("stage_complete", stage="erosion")

    rivers: list[River] = []
    if config.rivers.enabled:
        river_config = config.rivers
        if river_config.ocean_coverage is not None:
            sea_level = compute_sea_level(heights, river_config.ocean_coverage)
            river_config = river_config.model_copy(update={"water_level": sea_level})
        rivers = build_rivers(heights, river_config, climate.moisture)
        heights = carve_rivers(heights, rivers, river_config)
    logger.info("stage_complete", stage="rivers", rivers=len(rivers))

    # Temperature follows the final terrain
    climate = derive_climate(heights, seeds["climate"], config.climate, config.world_size)
    biome_weights = compute_biome_weights(
        heights,
        climate.moisture,
        climate.temperature,
        config.climate.season,
        config.biomes,
        config.transitions,
    )
    logger.info("stage_complete", stage="biomes", biomes=len(config.biomes))

    return GenerationResult(
        heights=heights,
        biome_weights=biome_weights,
        rivers=rivers,
        climate=climate,
        biomes=list(config.biomes),
        config=config,
        hardness=hardness,
    )
