"""Shared test fixtures for terrain tests."""

import numpy as np
import pytest
from numpy.typing import NDArray

from terrasim.terrain.climate import ClimateInputs
from terrasim.terrain.config import (
    ErosionConfig,
    ParticleErosionConfig,
    RiverConfig,
    TerrainConfig,
)


def make_cone(size: int = 64, peak: tuple[int, int] = (32, 32)) -> NDArray[np.float64]:
    """Single-peaked heightfield: 0.8 at the peak, falling 0.05 per cell."""
    ys, xs = np.mgrid[0:size, 0:size].astype(np.float64)
    r = np.hypot(xs - peak[0], ys - peak[1])
    return np.maximum(0.0, 0.8 - 0.05 * r)


@pytest.fixture
def cone() -> NDArray[np.float64]:
    """64x64 cone peaking at (32, 32)."""
    return make_cone()


@pytest.fixture
def calm_climate():
    """Factory for uniform climate inputs matching a grid shape."""

    def _make(
        shape: tuple[int, int],
        moisture: float = 0.0,
        temperature: float = 0.0,
        wind_speed: float = 0.0,
        rainfall: float = 0.0,
    ) -> ClimateInputs:
        return ClimateInputs(
            moisture=np.full(shape, moisture, dtype=np.float32),
            temperature=temperature,
            wind_speed=wind_speed,
            rainfall=rainfall,
        )

    return _make


@pytest.fixture
def small_config() -> TerrainConfig:
    """Small, fast configuration exercising every stage."""
    return TerrainConfig(
        seed=7,
        resolution=33,
        world_size=300.0,
        erosion=ErosionConfig(
            seed=3,
            particles=ParticleErosionConfig(particle_count=16, batch_size=8, max_steps=30),
        ),
        rivers=RiverConfig(
            source_count=3,
            min_source_spacing=5.0,
            min_source_height=0.3,
            max_river_length=60.0,
        ),
    )
