"""Hydrology: river sources, steepest-descent flow, channel carving, deltas."""

from dataclasses import dataclass, field
from enum import Enum

import numpy as np
import structlog
from numpy.typing import NDArray
from scipy import ndimage

from ..exceptions import InvalidDimensionError
from .config import RiverConfig

logger = structlog.get_logger()

# D8 directions: N, NE, E, SE, S, SW, W, NW (clockwise from north)
D8_DY = np.array([-1, -1, 0, 1, 1, 1, 0, -1], dtype=np.int32)
D8_DX = np.array([0, 1, 1, 1, 0, -1, -1, -1], dtype=np.int32)
D8_DIST = np.array([1.0, np.sqrt(2.0)] * 4, dtype=np.float64)


class RiverState(str, Enum):
    """Lifecycle of a river during tracing."""

    SEEDED = "seeded"
    FLOWING = "flowing"
    TERMINATED = "terminated"


class RiverTermination(str, Enum):
    """Why a river stopped."""

    MIN_FLOW = "min_flow"
    LOCAL_MINIMUM = "local_minimum"
    WATER_BODY = "water_body"
    MAX_LENGTH = "max_length"
    BOUNDARY = "boundary"


@dataclass(frozen=True)
class RiverPoint:
    """A cell on a river's course and the flow through it."""

    x: int
    y: int
    flow: float


@dataclass(frozen=True)
class River:
    """A traced river, source first."""

    source: tuple[int, int]  # (x, y)
    points: tuple[RiverPoint, ...]
    termination: RiverTermination

    @property
    def mouth(self) -> RiverPoint:
        return self.points[-1]

    def length(self, cell_size: float = 1.0) -> float:
        """Course length in world units."""
        total = 0.0
        for a, b in zip(self.points[:-1], self.points[1:]):
            total += float(np.hypot(b.x - a.x, b.y - a.y))
        return total * cell_size


@dataclass
class _RiverTracer:
    """Mutable tracing state for one river."""

    x: int
    y: int
    flow: float = 1.0
    distance: float = 0.0
    state: RiverState = RiverState.SEEDED
    points: list[RiverPoint] = field(default_factory=list)


def find_sources(
    heights: NDArray[np.float32],
    count: int,
    config: RiverConfig | None = None,
) -> list[tuple[int, int]]:
    """Select river sources at the highest qualifying local maxima.

    Candidates are taken highest first and skipped when closer than the
    minimum spacing to an already selected source.

    Args:
        heights: Heightfield.
        count: Maximum number of sources.
        config: River parameters.

    Returns:
        List of (x, y) source coordinates, highest first.
    """
    if config is None:
        config = RiverConfig()
    if count <= 0:
        return []

    local_max = ndimage.maximum_filter(
        heights, size=config.source_window, mode="nearest"
    )
    candidates = (heights >= local_max) & (heights >= config.min_source_height)
    cand_y, cand_x = np.nonzero(candidates)
    order = np.argsort(-heights[cand_y, cand_x], kind="stable")

    selected: list[tuple[int, int]] = []
    min_spacing = config.min_source_spacing

    for idx in order:
        if len(selected) >= count:
            break
        cx, cy = int(cand_x[idx]), int(cand_y[idx])

        too_close = False
        for sx, sy in selected:
            if np.hypot(cx - sx, cy - sy) < min_spacing:
                too_close = True
                break

        if not too_close:
            selected.append((cx, cy))

    return selected


def _steepest_descent(
    heights: NDArray[np.float32], x: int, y: int
) -> int | None:
    """Direction of steepest drop per unit distance, first wins ties."""
    rows, cols = heights.shape
    here = float(heights[y, x])
    best_dir = None
    best_slope = 0.0

    for d in range(8):
        ny = y + int(D8_DY[d])
        nx = x + int(D8_DX[d])
        if not (0 <= ny < rows and 0 <= nx < cols):
            continue
        slope = (here - float(heights[ny, nx])) / D8_DIST[d]
        if slope > best_slope:
            best_slope = slope
            best_dir = d

    return best_dir


def simulate_flow(
    heights: NDArray[np.float32],
    source: tuple[int, int],
    config: RiverConfig | None = None,
    moisture: NDArray[np.float32] | None = None,
) -> River:
    """Trace a river downhill from a source.

    Flow starts at 1.0 and decays with distance travelled (evaporation)
    and with the moisture of each entered cell (infiltration). Tracing
    stops at existing water, a local minimum, the grid edge, the length
    limit, or when flow would drop below the minimum.

    Args:
        heights: Heightfield.
        source: (x, y) start cell.
        config: River parameters.
        moisture: Moisture grid; no infiltration if omitted.

    Returns:
        The traced river.
    """
    if config is None:
        config = RiverConfig()
    rows, cols = heights.shape

    tracer = _RiverTracer(x=source[0], y=source[1])
    tracer.points.append(RiverPoint(tracer.x, tracer.y, tracer.flow))
    tracer.state = RiverState.FLOWING
    termination = RiverTermination.MAX_LENGTH

    while tracer.state == RiverState.FLOWING:
        x, y = tracer.x, tracer.y

        if heights[y, x] <= config.water_level:
            termination = RiverTermination.WATER_BODY
            break
        if x == 0 or y == 0 or x == cols - 1 or y == rows - 1:
            termination = RiverTermination.BOUNDARY
            break

        d = _steepest_descent(heights, x, y)
        if d is None:
            termination = RiverTermination.LOCAL_MINIMUM
            break

        step = float(D8_DIST[d]) * config.cell_size
        if tracer.distance + step > config.max_river_length:
            termination = RiverTermination.MAX_LENGTH
            break

        nx = x + int(D8_DX[d])
        ny = y + int(D8_DY[d])
        wetness = 0.0 if moisture is None else float(moisture[ny, nx])
        decay = max(0.0, 1.0 - config.evaporation_rate * step) * max(
            0.0, 1.0 - config.infiltration_rate * wetness
        )
        flow = tracer.flow * decay
        if flow < config.min_river_flow:
            termination = RiverTermination.MIN_FLOW
            break

        tracer.x, tracer.y = nx, ny
        tracer.flow = flow
        tracer.distance += step
        tracer.points.append(RiverPoint(nx, ny, flow))

    tracer.state = RiverState.TERMINATED
    return River(source=source, points=tuple(tracer.points), termination=termination)


def apply_river_erosion(
    heights: NDArray[np.float32],
    rivers: list[River],
    config: RiverConfig | None = None,
) -> NDArray[np.float32]:
    """Carve river channels.

    The centreline is lowered by ``channel_depth * flow`` and cells within
    ``channel_radius`` by ``bank_factor`` of that. Where courses overlap
    the deepest cut wins.

    Args:
        heights: Heightfield.
        rivers: Rivers to carve.
        config: River parameters.

    Returns:
        Carved heightfield, clamped to [0, 1].
    """
    if config is None:
        config = RiverConfig()
    rows, cols = heights.shape
    carve = np.zeros((rows, cols), dtype=np.float64)
    r = config.channel_radius

    for river in rivers:
        for point in river.points:
            depth = config.channel_depth * point.flow
            y0, y1 = max(point.y - r, 0), min(point.y + r + 1, rows)
            x0, x1 = max(point.x - r, 0), min(point.x + r + 1, cols)
            bank = carve[y0:y1, x0:x1]
            np.maximum(bank, depth * config.bank_factor, out=bank)
            carve[point.y, point.x] = max(carve[point.y, point.x], depth)

    return np.clip(heights - carve, 0.0, 1.0).astype(np.float32)


def generate_deltas(
    heights: NDArray[np.float32],
    rivers: list[River],
    config: RiverConfig | None = None,
) -> NDArray[np.float32]:
    """Deposit sediment in a disc around each river's mouth.

    Args:
        heights: Heightfield.
        rivers: Rivers whose mouths receive deltas.
        config: River parameters.

    Returns:
        Heightfield with deltas, clamped to [0, 1].
    """
    if config is None:
        config = RiverConfig()
    rows, cols = heights.shape
    result = heights.astype(np.float64, copy=True)
    r = config.delta_radius

    for river in rivers:
        mouth = river.mouth
        for dy in range(-r, r + 1):
            for dx in range(-r, r + 1):
                if dx * dx + dy * dy > r * r:
                    continue
                ny, nx = mouth.y + dy, mouth.x + dx
                if 0 <= ny < rows and 0 <= nx < cols:
                    result[ny, nx] += config.delta_deposit

    return np.clip(result, 0.0, 1.0).astype(np.float32)


def carve_rivers(
    heights: NDArray[np.float32],
    rivers: list[River],
    config: RiverConfig | None = None,
) -> NDArray[np.float32]:
    """Carve channels, then build deltas."""
    carved = apply_river_erosion(heights, rivers, config)
    return generate_deltas(carved, rivers, config)


def build_rivers(
    heights: NDArray[np.float32],
    config: RiverConfig | None = None,
    moisture: NDArray[np.float32] | None = None,
) -> list[River]:
    """Find sources and trace a river from each.

    Args:
        heights: Heightfield.
        config: River parameters.
        moisture: Optional moisture grid for infiltration.

    Returns:
        Rivers in source order (highest source first).

    Raises:
        InvalidDimensionError: If moisture does not match the heightfield.
    """
    if config is None:
        config = RiverConfig()
    if heights.ndim != 2:
        raise InvalidDimensionError(f"Heightfield must be 2D, got shape {heights.shape}")
    if moisture is not None and moisture.shape != heights.shape:
        raise InvalidDimensionError(
            f"Moisture grid {moisture.shape} does not match heightfield {heights.shape}"
        )

    sources = find_sources(heights, config.source_count, config)
    rivers = [simulate_flow(heights, s, config, moisture) for s in sources]

    logger.info(
        "rivers_built",
        count=len(rivers),
        points=sum(len(r.points) for r in rivers),
    )
    return rivers
