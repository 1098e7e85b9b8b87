"""Geological features: fault-line displacement and volcanic uplift."""

from dataclasses import dataclass

import numpy as np
import structlog
from numpy.typing import NDArray
from scipy import ndimage

from .config import GeologyConfig
from .noise import fractal

logger = structlog.get_logger()


@dataclass(frozen=True)
class FaultLine:
    """A straight fault trace between two grid points.

    Cells on the left of start->end are raised and cells on the right are
    lowered for positive strength.
    """

    start: tuple[float, float]  # (x, y)
    end: tuple[float, float]  # (x, y)
    strength: float


@dataclass(frozen=True)
class VolcanicHotspot:
    """A volcano centre and its peak uplift."""

    position: tuple[int, int]  # (x, y)
    strength: float


def generate_fault_lines(
    seed: int,
    count: int,
    width: int,
    height: int,
    config: GeologyConfig | None = None,
) -> list[FaultLine]:
    """Generate fault lines crossing the grid.

    Each fault runs between two random points on opposite halves of the
    map so that it crosses the interior.

    Args:
        seed: Geology seed.
        count: Number of faults.
        width: Grid width.
        height: Grid height.
        config: Geology parameters.

    Returns:
        List of fault lines.
    """
    if config is None:
        config = GeologyConfig()
    rng = np.random.default_rng(seed % (2**32))
    faults: list[FaultLine] = []

    for _ in range(count):
        angle = rng.uniform(0.0, np.pi)
        cx = rng.uniform(0.25, 0.75) * (width - 1)
        cy = rng.uniform(0.25, 0.75) * (height - 1)
        half = 0.5 * max(width, height)
        dx, dy = np.cos(angle) * half, np.sin(angle) * half

        strength = rng.uniform(-1.0, 1.0) * config.fault_strength
        faults.append(
            FaultLine(
                start=(float(cx - dx), float(cy - dy)),
                end=(float(cx + dx), float(cy + dy)),
                strength=float(strength),
            )
        )

    return faults


def _signed_distance(
    fault: FaultLine, xs: NDArray[np.float64], ys: NDArray[np.float64]
) -> NDArray[np.float64]:
    """Signed perpendicular distance from each cell to the fault's line."""
    (x0, y0), (x1, y1) = fault.start, fault.end
    dx, dy = x1 - x0, y1 - y0
    length = np.hypot(dx, dy)
    if length == 0:
        return np.hypot(xs - x0, ys - y0)
    return ((xs - x0) * dy - (ys - y0) * dx) / length


def apply_fault_displacement(
    heights: NDArray[np.float32],
    fault: FaultLine,
    config: GeologyConfig | None = None,
    seed: int = 0,
) -> NDArray[np.float32]:
    """Displace terrain across a fault.

    Cells within the falloff band are raised on one side and lowered on
    the other, strongest at the fault trace and fading linearly to zero
    at the band edge. The trace is perturbed with fractal noise.

    Args:
        heights: Input heightfield.
        fault: Fault to apply.
        config: Geology parameters.
        seed: Seed for the trace perturbation noise.

    Returns:
        Displaced heightfield, clamped to [0, 1].
    """
    if config is None:
        config = GeologyConfig()
    rows, cols = heights.shape
    ys, xs = np.mgrid[0:rows, 0:cols].astype(np.float64)

    distance = _signed_distance(fault, xs, ys)
    if config.fault_jitter > 0:
        jitter = np.asarray(
            fractal(xs, ys, 3, 0.5, 2.0, config.fault_jitter_scale, seed)
        )
        distance = distance + (jitter - 0.5) * 2.0 * config.fault_jitter

    band = config.fault_band_width
    falloff = np.clip(1.0 - np.abs(distance) / band, 0.0, 1.0)
    displacement = np.sign(distance) * fault.strength * falloff

    return np.clip(heights + displacement, 0.0, 1.0).astype(np.float32)


def find_volcanic_hotspots(
    heights: NDArray[np.float32],
    threshold: float,
    config: GeologyConfig | None = None,
    seed: int = 0,
) -> list[VolcanicHotspot]:
    """Find volcanic hotspots at prominent local maxima.

    Candidates are local maxima above the threshold, taken highest first;
    a candidate within the minimum spacing of an already claimed hotspot
    is skipped. Uplift strength is modulated by low-frequency noise.

    Args:
        heights: Heightfield.
        threshold: Minimum height for a hotspot.
        config: Geology parameters.
        seed: Seed for strength modulation noise.

    Returns:
        Hotspots, highest first.
    """
    if config is None:
        config = GeologyConfig()

    local_max = ndimage.maximum_filter(
        heights, size=config.hotspot_window, mode="nearest"
    )
    candidates = (heights >= local_max) & (heights > threshold)
    cand_y, cand_x = np.nonzero(candidates)
    if len(cand_y) == 0:
        return []

    order = np.argsort(-heights[cand_y, cand_x], kind="stable")
    hotspots: list[VolcanicHotspot] = []
    min_spacing_sq = config.hotspot_min_spacing**2

    for idx in order:
        if len(hotspots) >= config.max_hotspots:
            break
        y, x = int(cand_y[idx]), int(cand_x[idx])

        claimed = False
        for other in hotspots:
            ox, oy = other.position
            if (x - ox) ** 2 + (y - oy) ** 2 < min_spacing_sq:
                claimed = True
                break
        if claimed:
            continue

        activity = float(fractal(float(x), float(y), 2, 0.5, 2.0, 64.0, seed))
        strength = config.volcanic_strength * (0.5 + activity)
        hotspots.append(VolcanicHotspot(position=(x, y), strength=strength))

    return hotspots


def apply_volcanic_formation(
    heights: NDArray[np.float32],
    hotspot: VolcanicHotspot,
    config: GeologyConfig | None = None,
) -> NDArray[np.float32]:
    """Raise a volcanic cone around a hotspot.

    Uplift decays as a Gaussian of distance from the hotspot; a narrower
    Gaussian crater is subtracted at the summit.

    Args:
        heights: Input heightfield.
        hotspot: Hotspot to build.
        config: Geology parameters.

    Returns:
        Heightfield with the volcano added, clamped to [0, 1].
    """
    if config is None:
        config = GeologyConfig()
    rows, cols = heights.shape
    ys, xs = np.mgrid[0:rows, 0:cols].astype(np.float64)
    hx, hy = hotspot.position

    dist_sq = (xs - hx) ** 2 + (ys - hy) ** 2
    sigma = config.volcano_radius
    cone = np.exp(-dist_sq / (2.0 * sigma * sigma))

    crater_sigma = sigma * config.crater_radius
    crater = np.exp(-dist_sq / (2.0 * crater_sigma * crater_sigma))

    uplift = hotspot.strength * (cone - config.crater_depth * crater)
    return np.clip(heights + uplift, 0.0, 1.0).astype(np.float32)


def apply_geology(
    heights: NDArray[np.float32],
    seed: int,
    config: GeologyConfig | None = None,
) -> NDArray[np.float32]:
    """Run the geology stage: faults first, then volcanoes.

    Args:
        heights: Base heightfield.
        seed: Geology seed.
        config: Geology parameters.

    Returns:
        New heightfield with geological features applied.
    """
    if config is None:
        config = GeologyConfig()
    result = heights.copy()
    if not config.enabled:
        return result

    rows, cols = heights.shape
    faults = generate_fault_lines(seed, config.fault_count, cols, rows, config)
    for i, fault in enumerate(faults):
        result = apply_fault_displacement(result, fault, config, seed=seed + 17 * (i + 1))

    hotspots = find_volcanic_hotspots(
        result, config.hotspot_threshold, config, seed=seed + 1
    )
    for hotspot in hotspots:
        result = apply_volcanic_formation(result, hotspot, config)

    logger.info("geology_applied", faults=len(faults), volcanoes=len(hotspots))
    return result
