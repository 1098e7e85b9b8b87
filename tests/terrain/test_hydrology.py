"""Tests for river sources, flow tracing and carving."""

import numpy as np
import pytest

from terrasim.exceptions import InvalidDimensionError
from terrasim.terrain.config import RiverConfig
from terrasim.terrain.hydrology import (
    D8_DX,
    D8_DY,
    River,
    RiverPoint,
    RiverTermination,
    apply_river_erosion,
    build_rivers,
    carve_rivers,
    find_sources,
    generate_deltas,
    simulate_flow,
)


def make_cone(size: int, peak: tuple[int, int]) -> np.ndarray:
    """Cone of height 0.8 at peak (x, y), falling 0.05 per cell."""
    ys, xs = np.mgrid[0:size, 0:size].astype(np.float32)
    return np.maximum(0.0, 0.8 - 0.05 * np.hypot(xs - peak[0], ys - peak[1]))


def east_ramp(rows: int = 10, cols: int = 30) -> np.ndarray:
    """Heights falling 0.01 per cell toward the east."""
    return np.tile(0.9 - 0.01 * np.arange(cols, dtype=np.float32), (rows, 1))


class TestD8:
    """Tests for the direction tables."""

    def test_clockwise_from_north(self) -> None:
        """Directions run N, NE, E, SE, S, SW, W, NW."""
        assert list(zip(D8_DX, D8_DY)) == [
            (0, -1), (1, -1), (1, 0), (1, 1), (0, 1), (-1, 1), (-1, 0), (-1, -1)
        ]


class TestFindSources:
    """Tests for source selection."""

    def test_highest_peaks_first(self) -> None:
        """Sources are the highest qualifying local maxima."""
        heights = np.maximum(make_cone(64, (15, 15)), make_cone(64, (45, 40)) - 0.1).astype(np.float32)
        sources = find_sources(heights, 5, RiverConfig(min_source_height=0.5))
        assert sources == [(15, 15), (45, 40)]

    def test_count_limit(self) -> None:
        """No more than the requested number of sources."""
        heights = np.maximum(make_cone(64, (15, 15)), make_cone(64, (45, 40))).astype(np.float32)
        assert len(find_sources(heights, 1, RiverConfig(min_source_height=0.5))) == 1

    def test_spacing(self) -> None:
        """A peak closer than the spacing to a chosen source is skipped."""
        heights = np.maximum(make_cone(64, (20, 20)), make_cone(64, (26, 20)) - 0.05).astype(np.float32)
        config = RiverConfig(min_source_height=0.5, min_source_spacing=10.0, source_window=3)
        assert find_sources(heights, 5, config) == [(20, 20)]

    def test_min_height(self) -> None:
        """Peaks below the minimum source height are ignored."""
        heights = (make_cone(32, (16, 16)) * 0.5).astype(np.float32)
        assert find_sources(heights, 3, RiverConfig(min_source_height=0.55)) == []


class TestSimulateFlow:
    """Tests for river tracing."""

    def test_follows_steepest_descent_to_boundary(self) -> None:
        """A river on an eastward ramp runs due east to the grid edge."""
        heights = east_ramp()
        river = simulate_flow(heights, (2, 5), RiverConfig(water_level=0.0))

        assert river.termination == RiverTermination.BOUNDARY
        assert [p.y for p in river.points] == [5] * len(river.points)
        assert [p.x for p in river.points] == list(range(2, 30))

    def test_flow_non_increasing(self) -> None:
        """Flow never increases along the river."""
        heights = east_ramp()
        moisture = np.random.default_rng(0).uniform(size=heights.shape).astype(np.float32)
        river = simulate_flow(heights, (1, 5), RiverConfig(water_level=0.0), moisture)
        flows = [p.flow for p in river.points]
        assert flows[0] == 1.0
        assert all(b <= a for a, b in zip(flows, flows[1:]))

    def test_length_bounded(self) -> None:
        """Point count is bounded by max length over step size."""
        config = RiverConfig(water_level=0.0, max_river_length=5.0, cell_size=1.0)
        river = simulate_flow(east_ramp(), (2, 5), config)
        assert river.termination == RiverTermination.MAX_LENGTH
        assert len(river.points) <= int(config.max_river_length / config.cell_size) + 1
        assert river.length(config.cell_size) <= config.max_river_length

    def test_local_minimum(self) -> None:
        """A river ends in the pit of a bowl."""
        ys, xs = np.mgrid[0:21, 0:21].astype(np.float32)
        heights = 0.3 + 0.02 * np.hypot(xs - 10, ys - 10)
        river = simulate_flow(heights, (15, 10), RiverConfig(water_level=0.0))
        assert river.termination == RiverTermination.LOCAL_MINIMUM
        assert (river.mouth.x, river.mouth.y) == (10, 10)

    def test_water_body(self) -> None:
        """A river stops on reaching existing water."""
        heights = east_ramp()
        heights[:, 20:] = 0.1
        river = simulate_flow(heights, (2, 5), RiverConfig(water_level=0.2))
        assert river.termination == RiverTermination.WATER_BODY
        assert river.mouth.x == 20

    def test_min_flow(self) -> None:
        """Strong evaporation ends the river when flow drops too low."""
        config = RiverConfig(water_level=0.0, evaporation_rate=0.5, min_river_flow=0.6)
        river = simulate_flow(east_ramp(), (2, 5), config)
        assert river.termination == RiverTermination.MIN_FLOW
        assert len(river.points) == 1

    def test_infiltration_reduces_flow(self) -> None:
        """Wet ground absorbs more flow than dry ground."""
        heights = east_ramp()
        config = RiverConfig(water_level=0.0, infiltration_rate=0.05)
        dry = simulate_flow(heights, (2, 5), config)
        wet = simulate_flow(heights, (2, 5), config, np.ones_like(heights))
        assert wet.points[5].flow < dry.points[5].flow

    def test_tie_break_first_direction(self) -> None:
        """Equal drops resolve to the first direction in N..NW order."""
        heights = np.full((5, 5), 0.5, dtype=np.float32)
        heights[1, 2] = 0.4  # north of (2, 2)
        heights[2, 3] = 0.4  # east of (2, 2)
        river = simulate_flow(heights, (2, 2), RiverConfig(water_level=0.0))
        assert (river.points[1].x, river.points[1].y) == (2, 1)


class TestCarving:
    """Tests for channel carving and deltas."""

    def make_river(self) -> River:
        points = tuple(RiverPoint(x, 10, 1.0 - 0.01 * (x - 5)) for x in range(5, 15))
        return River(source=(5, 10), points=points, termination=RiverTermination.LOCAL_MINIMUM)

    def test_channel_and_banks(self) -> None:
        """The centreline is cut deepest, banks less, far cells not at all."""
        heights = np.full((21, 21), 0.5, dtype=np.float32)
        config = RiverConfig(channel_depth=0.05, bank_factor=0.4, channel_radius=1)
        result = apply_river_erosion(heights, [self.make_river()], config)

        assert result[10, 5] == pytest.approx(0.45, abs=1e-6)
        assert result[11, 5] == pytest.approx(0.5 - 0.05 * 0.4, abs=1e-6)
        assert result[15, 5] == pytest.approx(0.5)
        assert np.all(heights == 0.5)

    def test_overlap_does_not_compound(self) -> None:
        """Carving the same river twice in one call cuts no deeper."""
        heights = np.full((21, 21), 0.5, dtype=np.float32)
        river = self.make_river()
        once = apply_river_erosion(heights, [river])
        twice = apply_river_erosion(heights, [river, river])
        assert np.array_equal(once, twice)

    def test_delta_at_mouth(self) -> None:
        """Sediment is deposited around the mouth only."""
        heights = np.full((21, 21), 0.5, dtype=np.float32)
        config = RiverConfig(delta_radius=2, delta_deposit=0.02)
        result = generate_deltas(heights, [self.make_river()], config)

        assert result[10, 14] == pytest.approx(0.52, abs=1e-6)
        assert result[12, 14] == pytest.approx(0.52, abs=1e-6)
        assert result[10, 17] == pytest.approx(0.5)

    def test_carve_rivers_range(self) -> None:
        """Carving keeps heights in [0, 1]."""
        heights = np.full((21, 21), 0.99, dtype=np.float32)
        heights[10, 14] = 0.01
        result = carve_rivers(heights, [self.make_river()], RiverConfig(delta_deposit=0.5))
        assert result.min() >= 0.0
        assert result.max() <= 1.0


class TestBuildRivers:
    """Tests for the river stage."""

    def test_builds_from_sources(self) -> None:
        """One river is traced per source."""
        heights = np.maximum(make_cone(64, (15, 15)), make_cone(64, (45, 40))).astype(np.float32)
        rivers = build_rivers(heights, RiverConfig(source_count=5, min_source_height=0.5))
        assert [r.source for r in rivers] == [(15, 15), (45, 40)]
        for river in rivers:
            assert river.points[0].flow == 1.0

    def test_moisture_shape_mismatch(self) -> None:
        """Moisture of another shape is rejected."""
        with pytest.raises(InvalidDimensionError):
            build_rivers(np.zeros((8, 8), dtype=np.float32), moisture=np.zeros((8, 7)))
