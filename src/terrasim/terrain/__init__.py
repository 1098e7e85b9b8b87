"""Procedural terrain simulation package.

This package synthesizes heightfields from layered noise, adds faults and
volcanoes, erodes them with grid passes and droplet particles, traces and
carves rivers, and computes per-cell biome weights.
"""

from .biomes import compute_biome_weights, dominant_biome
from .climate import ClimateInputs, derive_climate
from .config import BiomeDefinition, TerrainConfig, load_config
from .erosion import run_erosion
from .generator import GenerationResult, generate_terrain, generate_world
from .hydrology import River, RiverPoint, build_rivers
from .persistence import load_heights, save_result
from .validation import ValidationResult, validate_generation

__all__ = [
    "BiomeDefinition",
    "ClimateInputs",
    "GenerationResult",
    "River",
    "RiverPoint",
    "TerrainConfig",
    "ValidationResult",
    "build_rivers",
    "compute_biome_weights",
    "derive_climate",
    "dominant_biome",
    "generate_terrain",
    "generate_world",
    "load_config",
    "load_heights",
    "run_erosion",
    "save_result",
    "validate_generation",
]
