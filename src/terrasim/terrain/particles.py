"""Particle (droplet) erosion.

Each particle runs ACTIVE -> TERMINATED against a read-only snapshot of
the heightfield. A particle sees the snapshot plus its own footprint (the
height changes it has made so far) and never another particle's. Batches
of particles are reduced into the heightfield in particle-index order, so
results are identical whichever backend executes the batch.
"""

import os
from abc import ABC, abstractmethod
from concurrent import futures
from dataclasses import dataclass, field
from enum import Enum

import numpy as np
import structlog
from numpy.typing import NDArray

from ..exceptions import InvalidParameterError
from .climate import ClimateInputs
from .config import ParticleErosionConfig

logger = structlog.get_logger()

# Neutral pH and the most acidic rain the chemical model produces
NEUTRAL_PH = 7.0
ACID_PH = 4.0


class ParticleState(str, Enum):
    """Lifecycle of a particle."""

    ACTIVE = "active"
    TERMINATED = "terminated"


class Termination(str, Enum):
    """Why a particle stopped."""

    EVAPORATED = "evaporated"
    STEP_LIMIT = "step_limit"
    OUT_OF_BOUNDS = "out_of_bounds"


@dataclass
class ErosionParticle:
    """Mutable state of one droplet.

    Position is in grid coordinates (x is the column, y the row). The
    vertical axis is height in heightfield units.
    """

    x: float
    y: float
    altitude: float
    erosion_radius: float
    erosion_strength: float
    temperature: float
    mineral_content: float
    vx: float = 0.0
    vy: float = 0.0
    mx: float = 0.0
    my: float = 0.0
    mz: float = 0.0
    water: float = 1.0
    sediment: float = 0.0
    dissolved: float = 0.0
    state: ParticleState = ParticleState.ACTIVE

    @property
    def position(self) -> tuple[float, float]:
        return (self.x, self.y)

    @property
    def velocity(self) -> tuple[float, float]:
        return (self.vx, self.vy)

    @property
    def momentum(self) -> tuple[float, float, float]:
        return (self.mx, self.my, self.mz)

    @property
    def speed(self) -> float:
        return float(np.hypot(self.vx, self.vy))


@dataclass
class ParticleOutcome:
    """Result of simulating one particle.

    ``footprint`` maps flat (row-major) cell indices to the particle's net
    height change there. Mass balance holds as
    ``sum(footprint) == -(sediment + dissolved)``.
    """

    footprint: dict[int, float]
    steps: int
    termination: Termination
    water_trace: list[float] = field(default_factory=list)
    eroded: float = 0.0
    deposited: float = 0.0
    sediment: float = 0.0
    dissolved: float = 0.0

    @property
    def net_change(self) -> float:
        return float(sum(self.footprint.values()))


def in_bounds(x: float, y: float, rows: int, cols: int) -> bool:
    """True where the particle's 2x2 interpolation cell lies inside the grid."""
    return 0.0 <= x < cols - 1 and 0.0 <= y < rows - 1


class _Surface:
    """Read-only snapshot overlaid with one particle's own footprint."""

    def __init__(self, snapshot: NDArray[np.float64], footprint: dict[int, float]):
        self.rows, self.cols = snapshot.shape
        self.flat = snapshot.ravel()
        self.footprint = footprint

    def heights(self, indices: NDArray[np.int64]) -> NDArray[np.float64]:
        values = self.flat[indices].copy()
        if self.footprint:
            for i, idx in enumerate(indices):
                values[i] += self.footprint.get(int(idx), 0.0)
        return values

    def add(self, indices: NDArray[np.int64], amounts: NDArray[np.float64]) -> None:
        for idx, amount in zip(indices, amounts):
            key = int(idx)
            self.footprint[key] = self.footprint.get(key, 0.0) + float(amount)

    def height_at(self, x: float, y: float) -> float:
        """Bilinear height; (x, y) must satisfy ``in_bounds``."""
        x0, y0 = int(x), int(y)
        fx, fy = x - x0, y - y0
        base = y0 * self.cols + x0
        h = self.heights(
            np.array([base, base + 1, base + self.cols, base + self.cols + 1])
        )
        top = h[0] + (h[1] - h[0]) * fx
        bottom = h[2] + (h[3] - h[2]) * fx
        return float(top + (bottom - top) * fy)

    def kernel(
        self, x: float, y: float, radius: float
    ) -> tuple[NDArray[np.int64], NDArray[np.float64], NDArray[np.float64], NDArray[np.float64]]:
        """Cells within ``radius`` of (x, y) with Gaussian weights.

        Returns:
            (flat indices, x offsets, y offsets, weights); weights use sigma
            of half the radius.
        """
        reach = int(np.ceil(radius))
        cx, cy = int(np.floor(x)), int(np.floor(y))
        xs = np.arange(max(cx - reach, 0), min(cx + reach + 1, self.cols))
        ys = np.arange(max(cy - reach, 0), min(cy + reach + 1, self.rows))
        gx, gy = np.meshgrid(xs, ys)

        dx = gx - x
        dy = gy - y
        dist_sq = dx * dx + dy * dy
        mask = dist_sq <= radius * radius
        if not mask.any():
            mask = dist_sq == dist_sq.min()

        sigma = 0.5 * radius
        weights = np.exp(-dist_sq[mask] / (2.0 * sigma * sigma))
        if weights.sum() <= 0.0:
            # Radius far below the cell spacing underflows every weight
            weights = np.ones_like(weights)
        indices = (gy * self.cols + gx)[mask].astype(np.int64)
        return indices, dx[mask], dy[mask], weights

    def remove(
        self, indices: NDArray[np.int64], weights: NDArray[np.float64], amount: float
    ) -> float:
        """Take up to ``amount`` by kernel weight, never below zero height.

        Returns:
            Material actually removed.
        """
        if amount <= 0.0:
            return 0.0
        share = amount * weights / weights.sum()
        available = np.maximum(self.heights(indices), 0.0)
        taken = np.minimum(share, available)
        self.add(indices, -taken)
        return float(taken.sum())

    def deposit(
        self, indices: NDArray[np.int64], weights: NDArray[np.float64], amount: float
    ) -> None:
        if amount <= 0.0:
            return
        self.add(indices, amount * weights / weights.sum())


def fit_gradient(
    dx: NDArray[np.float64], dy: NDArray[np.float64], heights: NDArray[np.float64],
    weights: NDArray[np.float64],
) -> tuple[float, float]:
    """Uphill gradient of the weighted least-squares plane through samples.

    Returns (0, 0) when the samples do not determine a plane.
    """
    total = weights.sum()
    if total <= 0.0 or len(heights) < 3:
        return 0.0, 0.0
    ox = dx - (weights * dx).sum() / total
    oy = dy - (weights * dy).sum() / total
    dh = heights - (weights * heights).sum() / total

    sxx = (weights * ox * ox).sum()
    syy = (weights * oy * oy).sum()
    sxy = (weights * ox * oy).sum()
    det = sxx * syy - sxy * sxy
    if abs(det) < 1e-12:
        return 0.0, 0.0

    bx = (weights * ox * dh).sum()
    by = (weights * oy * dh).sum()
    gx = (syy * bx - sxy * by) / det
    gy = (sxx * by - sxy * bx) / det
    return float(gx), float(gy)


def sediment_capacity(speed: float, water: float, config: ParticleErosionConfig) -> float:
    """Carrying capacity: zero below the critical speed, then ~speed^2."""
    critical = config.critical_velocity
    if speed < critical:
        return 0.0
    return config.sediment_capacity * speed * speed * water * (
        1.0 - np.exp(-speed / critical)
    )


def acidity(rainfall: float, mineral_content: float) -> float:
    """pH of the water, more acidic with heavy rain over mineral-rich rock."""
    t = float(np.clip(rainfall * mineral_content, 0.0, 1.0))
    return NEUTRAL_PH + (ACID_PH - NEUTRAL_PH) * t


def spawn_particle(
    rng: np.random.Generator,
    snapshot: NDArray[np.float64],
    temperature: NDArray[np.float32],
    config: ParticleErosionConfig,
) -> ErosionParticle:
    """Spawn a particle at a random valid position resting on the terrain."""
    rows, cols = snapshot.shape
    x = rng.uniform(0.0, cols - 1)
    y = rng.uniform(0.0, rows - 1)
    # uniform's upper bound may be hit through rounding
    x = min(x, np.nextafter(cols - 1, 0))
    y = min(y, np.nextafter(rows - 1, 0))

    radius = rng.uniform(config.radius_min, config.radius_max)
    strength = rng.uniform(config.strength_min, config.strength_max)
    jitter = rng.uniform(-config.temperature_jitter, config.temperature_jitter)
    mineral = rng.uniform(config.mineral_min, config.mineral_max)

    surface = _Surface(snapshot, {})
    return ErosionParticle(
        x=float(x),
        y=float(y),
        altitude=surface.height_at(float(x), float(y)),
        erosion_radius=float(radius),
        erosion_strength=float(strength),
        temperature=float(temperature[int(y), int(x)] + jitter),
        mineral_content=float(mineral),
    )


def simulate_particle(
    particle: ErosionParticle,
    snapshot: NDArray[np.float64],
    rainfall: float,
    config: ParticleErosionConfig,
) -> ParticleOutcome:
    """Run one particle to termination.

    The particle mutates only its own state and footprint. Each step it
    accelerates along the downhill direction of the local height plane,
    is damped, moves, collides with the terrain, weathers rock by frost
    and acid, and then erodes or deposits depending on its capacity.

    Args:
        particle: Particle to simulate (mutated in place).
        snapshot: Read-only heightfield the particle runs on.
        rainfall: Rainfall intensity for the acidity model.
        config: Particle parameters.

    Returns:
        The particle's outcome.
    """
    rows, cols = snapshot.shape
    footprint: dict[int, float] = {}
    surface = _Surface(snapshot, footprint)
    outcome = ParticleOutcome(
        footprint=footprint,
        steps=0,
        termination=Termination.STEP_LIMIT,
        water_trace=[particle.water],
    )

    if not in_bounds(particle.x, particle.y, rows, cols):
        particle.state = ParticleState.TERMINATED
        outcome.termination = Termination.OUT_OF_BOUNDS
        return outcome

    dt = config.dt
    damping = max(0.0, 1.0 - config.inertia * dt)
    radius = particle.erosion_radius

    while particle.state == ParticleState.ACTIVE:
        # Physics
        idx, ox, oy, w = surface.kernel(particle.x, particle.y, radius)
        gx, gy = fit_gradient(ox, oy, surface.heights(idx), w)
        slope = float(np.hypot(gx, gy))
        if slope > config.min_slope:
            ax, ay = -gx / slope * config.gravity, -gy / slope * config.gravity
        else:
            ax, ay = 0.0, 0.0

        particle.mx += ax * dt
        particle.my += ay * dt
        particle.mz -= config.gravity * dt
        particle.vx = particle.mx * damping
        particle.vy = particle.my * damping
        particle.mx, particle.my = particle.vx, particle.vy

        new_x = particle.x + particle.vx * dt
        new_y = particle.y + particle.vy * dt
        if not in_bounds(new_x, new_y, rows, cols):
            particle.state = ParticleState.TERMINATED
            outcome.termination = Termination.OUT_OF_BOUNDS
            break
        particle.x, particle.y = new_x, new_y
        particle.altitude += particle.mz * dt

        ground = surface.height_at(particle.x, particle.y)
        if particle.altitude < ground:
            particle.altitude = ground
            particle.mz = -particle.mz * config.restitution
            particle.vx *= config.restitution
            particle.vy *= config.restitution
            particle.mx, particle.my = particle.vx, particle.vy

        idx, _, _, w = surface.kernel(particle.x, particle.y, radius)

        # Frost shatters rock into the sediment load
        if particle.temperature < 0.0 and particle.water > config.frost_threshold:
            damage = abs(particle.temperature) * particle.water * config.frost_rate
            loosened = surface.remove(idx, w, damage)
            particle.sediment += loosened
            outcome.eroded += loosened

        # Acid rain dissolves minerals, carried away in solution
        ph = acidity(rainfall, particle.mineral_content)
        dissolve = abs(NEUTRAL_PH - ph) * particle.mineral_content * config.chemical_rate
        particle.dissolved += surface.remove(idx, w, dissolve * particle.water)

        # Sediment transport
        capacity = sediment_capacity(particle.speed, particle.water, config)
        if particle.sediment > capacity:
            amount = (particle.sediment - capacity) * config.deposition_rate
            surface.deposit(idx, w, amount)
            particle.sediment -= amount
            outcome.deposited += amount
        else:
            wanted = min(capacity - particle.sediment, particle.erosion_strength * particle.water)
            taken = surface.remove(idx, w, wanted)
            particle.sediment += taken
            outcome.eroded += taken

        particle.water *= 1.0 - config.evaporation_rate
        outcome.steps += 1
        outcome.water_trace.append(particle.water)

        if particle.water < config.min_water:
            particle.state = ParticleState.TERMINATED
            outcome.termination = Termination.EVAPORATED
        elif outcome.steps >= config.max_steps:
            particle.state = ParticleState.TERMINATED
            outcome.termination = Termination.STEP_LIMIT

    particle.state = ParticleState.TERMINATED
    outcome.sediment = particle.sediment
    outcome.dissolved = particle.dissolved
    return outcome


class ParticleBackend(ABC):
    """Executes a batch of particles against a shared snapshot.

    Implementations must return outcomes in the order of ``particles``.
    """

    name: str = "base"

    def __enter__(self) -> "ParticleBackend":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        """Release execution resources."""

    @abstractmethod
    def run_batch(
        self,
        particles: list[ErosionParticle],
        snapshot: NDArray[np.float64],
        rainfall: float,
        config: ParticleErosionConfig,
    ) -> list[ParticleOutcome]:
        """Simulate every particle and return their outcomes in order."""


class SerialParticleBackend(ParticleBackend):
    """Runs particles one after another on the calling thread."""

    name = "serial"

    def run_batch(self, particles, snapshot, rainfall, config):
        return [simulate_particle(p, snapshot, rainfall, config) for p in particles]


class ThreadPoolParticleBackend(ParticleBackend):
    """Runs particles on a thread pool."""

    name = "threaded"

    def __init__(self, workers: int):
        if workers < 1:
            raise InvalidParameterError(f"workers must be at least 1, got {workers}")
        self.workers = workers
        self._executor: futures.ThreadPoolExecutor | None = None

    def run_batch(self, particles, snapshot, rainfall, config):
        if self._executor is None:
            self._executor = futures.ThreadPoolExecutor(max_workers=self.workers)
        return list(
            self._executor.map(
                lambda p: simulate_particle(p, snapshot, rainfall, config), particles
            )
        )

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None


def select_particle_backend(
    config: ParticleErosionConfig, cpu_count: int | None = None
) -> ParticleBackend:
    """Pick a backend from configuration and machine capability.

    ``auto`` selects the thread pool only when more than one worker is
    configured and more than one CPU is available.

    Raises:
        InvalidParameterError: If the backend name is unknown.
    """
    if cpu_count is None:
        cpu_count = os.cpu_count() or 1

    if config.backend == "serial":
        return SerialParticleBackend()
    if config.backend == "threaded":
        return ThreadPoolParticleBackend(config.workers)
    if config.backend == "auto":
        if config.workers > 1 and cpu_count > 1:
            return ThreadPoolParticleBackend(min(config.workers, cpu_count))
        return SerialParticleBackend()
    raise InvalidParameterError(f"Unknown particle backend: {config.backend!r}")


def merge_outcomes(
    heights: NDArray[np.float64], outcomes: list[ParticleOutcome]
) -> NDArray[np.float64]:
    """Reduce footprints into the heightfield in outcome order, clamped to [0, 1]."""
    delta = np.zeros(heights.size, dtype=np.float64)
    for outcome in outcomes:
        if not outcome.footprint:
            continue
        indices = np.fromiter(outcome.footprint.keys(), dtype=np.int64)
        values = np.fromiter(outcome.footprint.values(), dtype=np.float64)
        np.add.at(delta, indices, values)
    return np.clip(heights + delta.reshape(heights.shape), 0.0, 1.0)


def run_particle_erosion(
    heights: NDArray[np.float32],
    config: ParticleErosionConfig,
    climate: ClimateInputs,
    rng: np.random.Generator,
    backend: ParticleBackend | None = None,
) -> NDArray[np.float32]:
    """Erode with ``config.particle_count`` particles in batches.

    Particles are spawned serially from ``rng``. Each batch runs against a
    snapshot of the heightfield and is merged before the next batch
    spawns.

    Args:
        heights: Heightfield in [0, 1].
        config: Particle parameters.
        climate: Climate inputs (temperature and rainfall are used).
        rng: Random source for spawning.
        backend: Execution backend; selected from ``config`` if omitted.

    Returns:
        Eroded heightfield.
    """
    if backend is None:
        backend = select_particle_backend(config)
    temperature = climate.temperature_grid(heights.shape)
    current = heights.astype(np.float64)

    terminations = {reason: 0 for reason in Termination}
    steps = 0
    spawned = 0

    with backend:
        while spawned < config.particle_count:
            count = min(config.batch_size, config.particle_count - spawned)
            snapshot = current.copy()
            snapshot.flags.writeable = False

            batch = [spawn_particle(rng, snapshot, temperature, config) for _ in range(count)]
            outcomes = backend.run_batch(batch, snapshot, climate.rainfall, config)
            current = merge_outcomes(current, outcomes)

            for outcome in outcomes:
                terminations[outcome.termination] += 1
                steps += outcome.steps
            spawned += count

    logger.debug(
        "particle_erosion_complete",
        backend=backend.name,
        particles=spawned,
        steps=steps,
        evaporated=terminations[Termination.EVAPORATED],
        step_limit=terminations[Termination.STEP_LIMIT],
        out_of_bounds=terminations[Termination.OUT_OF_BOUNDS],
    )
    return current.astype(np.float32)
