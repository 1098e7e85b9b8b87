"""Terrain simulation configuration models."""

import tomllib
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field


class NoiseKind(str, Enum):
    """Noise families available to a layer."""

    FRACTAL = "fractal"
    RIDGED = "ridged"
    CELLULAR = "cellular"


class NoiseLayerConfig(BaseModel, frozen=True):
    """Noise parameters for a single synthesis layer."""

    kind: NoiseKind = Field(default=NoiseKind.FRACTAL, description="Noise family")
    octaves: int = Field(default=4, ge=1, description="Number of octaves")
    persistence: float = Field(default=0.5, description="Amplitude multiplier per octave")
    lacunarity: float = Field(default=2.0, description="Frequency multiplier per octave")
    scale: float = Field(default=200.0, description="Feature size in world units")
    gain: float = Field(default=2.0, description="Ridge weighting gain (ridged only)")
    seed_offset: int = Field(default=0, description="Added to the layer's derived seed")


class SynthesisConfig(BaseModel):
    """Base heightfield layer composition."""

    continents: NoiseLayerConfig = Field(
        default_factory=lambda: NoiseLayerConfig(octaves=3, scale=1200.0)
    )
    mountains: NoiseLayerConfig = Field(
        default_factory=lambda: NoiseLayerConfig(
            kind=NoiseKind.RIDGED, octaves=6, persistence=0.6, lacunarity=2.2,
            scale=400.0, gain=2.5,
        )
    )
    hills: NoiseLayerConfig = Field(
        default_factory=lambda: NoiseLayerConfig(octaves=4, scale=200.0)
    )
    details: NoiseLayerConfig = Field(
        default_factory=lambda: NoiseLayerConfig(octaves=3, scale=50.0)
    )
    canyons: NoiseLayerConfig = Field(
        default_factory=lambda: NoiseLayerConfig(octaves=2, scale=200.0)
    )
    temperature: NoiseLayerConfig = Field(
        default_factory=lambda: NoiseLayerConfig(octaves=2, scale=800.0)
    )
    humidity: NoiseLayerConfig = Field(
        default_factory=lambda: NoiseLayerConfig(octaves=2, scale=600.0)
    )
    micro: NoiseLayerConfig = Field(
        default_factory=lambda: NoiseLayerConfig(
            kind=NoiseKind.RIDGED, octaves=2, scale=50.0, gain=2.0
        )
    )

    continent_weight: float = Field(default=0.7, description="Continent contribution")
    continent_separation: float = Field(
        default=0.3, ge=0.0, lt=1.0, description="Sharpness of continent edges"
    )
    mountain_weight: float = Field(default=0.35, description="Mountain contribution")
    mountain_threshold: float = Field(
        default=0.5, description="Continent level where mountains start"
    )
    hill_weight: float = Field(default=0.15, description="Hill contribution")
    detail_weight: float = Field(default=0.05, description="Fine detail contribution")
    canyon_depth: float = Field(default=0.2, description="Canyon carve depth")
    temperature_modulation: float = Field(
        default=0.2, description="Relative height change from the temperature proxy"
    )
    humidity_modulation: float = Field(
        default=0.1, description="Relative height change from the humidity proxy"
    )
    micro_detail: bool = Field(default=True, description="Add ridged micro detail")
    micro_octaves: int = Field(default=3, ge=0, description="Micro detail octaves")
    micro_scale: float = Field(default=0.03, description="Micro detail amplitude")


class GeologyConfig(BaseModel):
    """Tectonic and volcanic feature parameters."""

    enabled: bool = Field(default=True, description="Run the geology stage")
    fault_count: int = Field(default=4, ge=0, description="Number of fault lines")
    fault_strength: float = Field(default=0.05, description="Peak fault displacement")
    fault_band_width: float = Field(
        default=12.0, gt=0.0, description="Half-width of the displacement band in cells"
    )
    fault_jitter: float = Field(
        default=3.0, description="Noise perturbation of the fault trace in cells"
    )
    fault_jitter_scale: float = Field(default=40.0, description="Fault jitter wavelength")
    hotspot_threshold: float = Field(
        default=0.6, description="Minimum height for a volcanic hotspot"
    )
    max_hotspots: int = Field(default=3, ge=0, description="Maximum volcanoes")
    hotspot_window: int = Field(
        default=7, ge=3, description="Local maximum search window in cells"
    )
    hotspot_min_spacing: float = Field(
        default=16.0, description="Minimum distance between hotspots in cells"
    )
    volcanic_strength: float = Field(default=0.15, description="Peak volcanic uplift")
    volcano_radius: float = Field(default=6.0, gt=0.0, description="Cone sigma in cells")
    crater_depth: float = Field(
        default=0.3, ge=0.0, le=1.0, description="Crater depth as a fraction of uplift"
    )
    crater_radius: float = Field(
        default=0.25, gt=0.0, description="Crater sigma as a fraction of cone sigma"
    )


class GridErosionConfig(BaseModel):
    """Grid-pass erosion coefficients."""

    dt: float = Field(default=0.02, ge=0.0, description="Simulation step size")
    hydraulic_rate: float = Field(default=0.1, description="k1: rainfall erosion rate")
    thermal_rate: float = Field(default=0.01, description="k2: thermal erosion rate")
    wind_rate: float = Field(default=0.02, description="k3: wind erosion rate")
    chemical_rate: float = Field(default=0.05, description="k4: chemical erosion rate")
    sediment_ratio: float = Field(
        default=0.5, description="Fraction of hydraulic erosion redeposited"
    )
    talus_iterations: int = Field(
        default=0, ge=0, description="Slope relaxation sweeps after the grid passes"
    )
    talus_strength: float = Field(default=0.02, description="Material moved per sweep")
    talus_sediment_factor: float = Field(
        default=0.5, description="Fraction of moved material that settles downslope"
    )


class ParticleErosionConfig(BaseModel):
    """Particle (droplet) erosion parameters."""

    particle_count: int = Field(default=500, ge=0, description="Particles per run")
    batch_size: int = Field(
        default=64, ge=1, description="Particles simulated against one snapshot"
    )
    max_steps: int = Field(default=150, ge=1, description="Step budget per particle")
    dt: float = Field(default=0.5, gt=0.0, description="Particle step size")
    gravity: float = Field(default=9.81, description="Gravitational acceleration")
    inertia: float = Field(default=0.7, ge=0.0, description="Viscosity damping")
    sediment_capacity: float = Field(default=0.3, description="Capacity factor")
    critical_velocity: float = Field(
        default=0.25, gt=0.0, description="Speed below which nothing is carried"
    )
    deposition_rate: float = Field(default=0.2, description="Excess sediment dropped per step")
    evaporation_rate: float = Field(
        default=0.02, ge=0.0, lt=1.0, description="Water fraction lost per step"
    )
    min_water: float = Field(default=0.01, gt=0.0, description="Termination threshold")
    radius_min: float = Field(default=2.0, gt=0.0, description="Minimum erosion radius")
    radius_max: float = Field(default=4.0, gt=0.0, description="Maximum erosion radius")
    strength_min: float = Field(default=0.002, description="Minimum erosion strength")
    strength_max: float = Field(default=0.006, description="Maximum erosion strength")
    temperature_jitter: float = Field(
        default=5.0, ge=0.0, description="Spread of particle temperature around climate"
    )
    mineral_min: float = Field(default=0.1, description="Minimum mineral content")
    mineral_max: float = Field(default=1.0, description="Maximum mineral content")
    frost_threshold: float = Field(
        default=0.1, description="Water needed for frost weathering"
    )
    frost_rate: float = Field(default=0.002, ge=0.0, description="Frost damage scale")
    chemical_rate: float = Field(default=0.01, ge=0.0, description="Dissolution scale")
    restitution: float = Field(
        default=0.5, ge=0.0, le=1.0, description="Energy kept on terrain collision"
    )
    min_slope: float = Field(
        default=1e-4, ge=0.0, description="Gradients below this count as flat"
    )
    backend: str = Field(
        default="auto", description="Particle backend: auto, serial or threaded"
    )
    workers: int = Field(default=1, ge=1, description="Worker threads for particles")


class HardnessConfig(BaseModel):
    """Derived rock hardness field parameters."""

    base: float = Field(default=0.4, description="Mean rock hardness")
    variation: float = Field(default=0.3, description="Noise amplitude around the mean")
    altitude_bias: float = Field(default=0.2, description="Extra hardness at height 1")
    noise: NoiseLayerConfig = Field(
        default_factory=lambda: NoiseLayerConfig(octaves=3, scale=150.0)
    )


class ErosionConfig(BaseModel):
    """Complete erosion run configuration."""

    seed: int = Field(
        default=0, description="Seed for particle spawning and hardness in standalone runs"
    )
    grid: GridErosionConfig = Field(default_factory=GridErosionConfig)
    particles: ParticleErosionConfig = Field(default_factory=ParticleErosionConfig)
    hardness: HardnessConfig = Field(default_factory=HardnessConfig)
    workers: int = Field(default=1, ge=1, description="Worker threads for grid passes")


class ClimateConfig(BaseModel):
    """Default climate field derivation."""

    base_temperature: float = Field(default=25.0, description="Sea level temperature (C)")
    lapse_rate: float = Field(default=6.0, description="Temperature drop per 100 m")
    terrain_height_m: float = Field(default=200.0, gt=0.0, description="Height 1.0 in metres")
    use_latitude: bool = Field(default=True, description="Cool toward the map's top and bottom")
    moisture: NoiseLayerConfig = Field(
        default_factory=lambda: NoiseLayerConfig(octaves=3, scale=500.0)
    )
    altitude_drying: float = Field(
        default=0.7, ge=0.0, le=1.0, description="Moisture lost at height 1"
    )
    rainfall: float = Field(default=0.5, ge=0.0, description="Rainfall intensity")
    wind_speed: float = Field(default=1.0, ge=0.0, description="Wind speed")
    wind_direction: float = Field(default=0.0, description="Wind bearing in degrees")
    season: float = Field(default=0.25, description="Season progress 0..1")


class RiverConfig(BaseModel):
    """River network parameters."""

    enabled: bool = Field(default=True, description="Run the river stage")
    source_count: int = Field(default=10, ge=0, description="River sources to seed")
    min_source_height: float = Field(default=0.55, description="Minimum source height")
    min_source_spacing: float = Field(
        default=20.0, description="Minimum distance between sources in cells"
    )
    source_window: int = Field(
        default=5, ge=3, description="Local maximum search window in cells"
    )
    min_river_flow: float = Field(default=0.1, gt=0.0, description="Termination flow")
    max_river_length: float = Field(
        default=500.0, gt=0.0, description="Maximum river length in world units"
    )
    cell_size: float = Field(default=1.0, gt=0.0, description="World units per cell")
    evaporation_rate: float = Field(
        default=0.002, ge=0.0, description="Flow lost per unit distance"
    )
    infiltration_rate: float = Field(
        default=0.005, ge=0.0, le=1.0, description="Flow lost per step at moisture 0"
    )
    water_level: float = Field(
        default=0.2, description="Heights at or below this are existing water"
    )
    ocean_coverage: float | None = Field(
        default=None,
        ge=0.0,
        le=1.0,
        description="Underwater fraction; when set, water_level is derived from the terrain",
    )
    channel_depth: float = Field(default=0.025, description="Depth carved at the centreline")
    bank_factor: float = Field(
        default=0.4, description="Bank carve depth as a fraction of channel depth"
    )
    channel_radius: int = Field(default=1, ge=0, description="Channel half-width in cells")
    delta_radius: int = Field(default=2, ge=0, description="Delta half-width in cells")
    delta_deposit: float = Field(default=0.02, description="Sediment added per delta cell")


class BiomeDefinition(BaseModel, frozen=True):
    """Static description of one biome's preferred conditions."""

    name: str
    min_height: float = Field(default=0.0, description="Lowest height the biome occupies")
    max_height: float = Field(default=1.0, description="Highest height the biome occupies")
    height_curve: tuple[tuple[float, float], ...] = Field(
        default=(), description="(height, influence) control points; empty means flat 1"
    )
    temperature_optimum: float = Field(default=15.0, description="Preferred temperature")
    temperature_range: float = Field(default=1.0, gt=0.0, description="Temperature tolerance")
    moisture_optimum: float = Field(default=0.5, description="Preferred moisture")
    moisture_range: float = Field(default=1.0, gt=0.0, description="Moisture tolerance")
    adaptability: float = Field(
        default=0.5, ge=0.0, le=1.0, description="Tolerance of suboptimal conditions"
    )
    seasonal_variation: float = Field(default=0.0, description="Seasonal weight swing")
    blend_distance: float = Field(
        default=0.0, ge=0.0, description="Soft edge width around the height band"
    )


class BiomeTransitionConfig(BaseModel):
    """Cellular noise perturbation of biome boundaries."""

    enabled: bool = Field(default=True, description="Perturb biome boundaries")
    blend_scale: float = Field(default=10.0, description="Cellular noise cell size")
    coordinate_scale: float = Field(default=0.1, description="Grid to noise coordinate factor")
    seed: int = Field(default=12345, description="Transition noise seed")
    response_curve: tuple[tuple[float, float], ...] = Field(
        default=((0.0, 0.0), (1.0, 1.0)), description="Noise to blend-factor curve"
    )


def default_biomes() -> list[BiomeDefinition]:
    """Biome set of the reference world, temperatures in degrees C."""
    return [
        BiomeDefinition(
            name="underwater", min_height=0.0, max_height=0.2,
            temperature_optimum=15.0, temperature_range=20.0,
            moisture_optimum=1.0, moisture_range=1.0, adaptability=0.9,
            blend_distance=0.02,
        ),
        BiomeDefinition(
            name="beach", min_height=0.18, max_height=0.28,
            height_curve=((0.18, 0.5), (0.22, 1.0), (0.28, 0.5)),
            temperature_optimum=20.0, temperature_range=10.0,
            moisture_optimum=0.5, moisture_range=0.5, adaptability=0.7,
            blend_distance=0.02,
        ),
        BiomeDefinition(
            name="desert", min_height=0.25, max_height=0.6,
            temperature_optimum=24.0, temperature_range=6.0,
            moisture_optimum=0.1, moisture_range=0.3, adaptability=0.3,
            blend_distance=0.05,
        ),
        BiomeDefinition(
            name="grassland", min_height=0.25, max_height=0.65,
            temperature_optimum=15.0, temperature_range=10.0,
            moisture_optimum=0.5, moisture_range=0.4, adaptability=0.5,
            seasonal_variation=0.2, blend_distance=0.05,
        ),
        BiomeDefinition(
            name="jungle", min_height=0.25, max_height=0.55,
            temperature_optimum=24.0, temperature_range=5.0,
            moisture_optimum=0.9, moisture_range=0.25, adaptability=0.3,
            seasonal_variation=0.1, blend_distance=0.05,
        ),
        BiomeDefinition(
            name="canyon", min_height=0.35, max_height=0.7,
            temperature_optimum=18.0, temperature_range=10.0,
            moisture_optimum=0.2, moisture_range=0.4, adaptability=0.4,
            blend_distance=0.05,
        ),
        BiomeDefinition(
            name="rock", min_height=0.6, max_height=0.9,
            temperature_optimum=5.0, temperature_range=15.0,
            moisture_optimum=0.4, moisture_range=0.6, adaptability=0.6,
            blend_distance=0.05,
        ),
        BiomeDefinition(
            name="snow", min_height=0.8, max_height=1.0,
            height_curve=((0.8, 0.3), (0.9, 1.0), (1.0, 1.0)),
            temperature_optimum=-5.0, temperature_range=8.0,
            moisture_optimum=0.5, moisture_range=0.8, adaptability=0.6,
            seasonal_variation=0.3, blend_distance=0.05,
        ),
        BiomeDefinition(
            name="arctic", min_height=0.2, max_height=1.0,
            temperature_optimum=-10.0, temperature_range=6.0,
            moisture_optimum=0.3, moisture_range=0.6, adaptability=0.4,
            blend_distance=0.02,
        ),
    ]


class TerrainConfig(BaseModel):
    """Complete terrain simulation configuration."""

    seed: int = Field(default=12345, description="World seed for reproducibility")
    resolution: int = Field(default=257, description="Grid cells per side")
    world_size: float = Field(default=1000.0, description="World extent in world units")

    synthesis: SynthesisConfig = Field(default_factory=SynthesisConfig)
    geology: GeologyConfig = Field(default_factory=GeologyConfig)
    erosion: ErosionConfig = Field(default_factory=ErosionConfig)
    climate: ClimateConfig = Field(default_factory=ClimateConfig)
    rivers: RiverConfig = Field(default_factory=RiverConfig)
    biomes: list[BiomeDefinition] = Field(default_factory=default_biomes)
    transitions: BiomeTransitionConfig = Field(default_factory=BiomeTransitionConfig)


def load_config(config_path: Path) -> TerrainConfig:
    """Load configuration from a TOML file.

    Args:
        config_path: Path to the TOML config file.

    Returns:
        Parsed TerrainConfig object.

    Raises:
        FileNotFoundError: If config file doesn't exist.
        tomllib.TOMLDecodeError: If TOML is malformed.
    """
    with open(config_path, "rb") as f:
        data = tomllib.load(f)
    return TerrainConfig.model_validate(data)
