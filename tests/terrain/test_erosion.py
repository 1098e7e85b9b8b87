"""Tests for grid-pass erosion and the erosion stage driver."""

import numpy as np
import pytest

from terrasim.exceptions import InvalidDimensionError, ResourceExhaustionError
from terrasim.terrain.climate import ClimateInputs
from terrasim.terrain.config import (
    ErosionConfig,
    GridErosionConfig,
    ParticleErosionConfig,
)
from terrasim.terrain.erosion import (
    ErosionWorkingSet,
    chemical_pass,
    derive_hardness,
    hydraulic_pass,
    relax_slopes,
    row_bands,
    run_erosion,
    run_grid_passes,
    thermal_pass,
    wind_pass,
)
from terrasim.terrain.fields import synthesize


def zero_erosion_config() -> ErosionConfig:
    return ErosionConfig(
        grid=GridErosionConfig(
            hydraulic_rate=0.0, thermal_rate=0.0, wind_rate=0.0, chemical_rate=0.0
        ),
        particles=ParticleErosionConfig(particle_count=0),
    )


class TestWorkingSet:
    """Tests for ErosionWorkingSet allocation and commit."""

    def test_allocate_zeroed(self) -> None:
        """Accumulators start at zero and heights are copied."""
        heights = np.full((4, 6), 0.5, dtype=np.float32)
        ws = ErosionWorkingSet.allocate(heights, np.zeros_like(heights), np.zeros_like(heights))
        assert ws.shape == (4, 6)
        assert np.all(ws.erosion == 0)
        assert np.all(ws.sediment == 0)
        ws.height[0, 0] = 0.0
        assert heights[0, 0] == 0.5

    def test_mismatched_grids_rejected(self) -> None:
        """Moisture or hardness of another shape is rejected."""
        heights = np.zeros((4, 4), dtype=np.float32)
        with pytest.raises(InvalidDimensionError):
            ErosionWorkingSet.allocate(heights, np.zeros((4, 5)), np.zeros((4, 4)))
        with pytest.raises(InvalidDimensionError):
            ErosionWorkingSet.allocate(heights, np.zeros((4, 4)), np.zeros((3, 4)))

    def test_allocation_failure(self, monkeypatch) -> None:
        """Allocation failure surfaces as ResourceExhaustionError."""
        heights = np.zeros((4, 4), dtype=np.float32)

        def fail(*args, **kwargs):
            raise MemoryError

        monkeypatch.setattr(np, "zeros", fail)
        with pytest.raises(ResourceExhaustionError):
            ErosionWorkingSet.allocate(heights, heights, heights)

    def test_commit_clamps(self) -> None:
        """Commit is height - erosion + sediment clamped to [0, 1]."""
        heights = np.array([[0.5, 0.1, 0.9]], dtype=np.float32)
        ws = ErosionWorkingSet.allocate(heights, np.zeros_like(heights), np.zeros_like(heights))
        ws.erosion[:] = [0.2, 0.5, 0.0]
        ws.sediment[:] = [0.1, 0.0, 0.5]
        np.testing.assert_allclose(ws.commit(), [[0.4, 0.0, 1.0]], atol=1e-6)

    def test_release(self) -> None:
        """Release drops the buffers."""
        heights = np.zeros((4, 4), dtype=np.float32)
        ws = ErosionWorkingSet.allocate(heights, heights, heights)
        ws.release()
        assert ws.erosion.size == 0


class TestGridPasses:
    """Tests for the four grid passes."""

    def test_flat_hydraulic_scenario(self) -> None:
        """Uniform input gives a uniform moisture * k1 erosion accumulator."""
        heights = np.full((4, 4), 0.5, dtype=np.float32)
        moisture = np.full((4, 4), 0.6, dtype=np.float32)
        ws = ErosionWorkingSet.allocate(heights, moisture, np.zeros_like(heights))
        config = GridErosionConfig(dt=1.0)

        hydraulic_pass(ws, slice(None), rainfall=1.0, config=config)

        np.testing.assert_allclose(ws.erosion, 0.6 * config.hydraulic_rate, rtol=1e-6)
        np.testing.assert_allclose(ws.sediment, 0.6 * config.hydraulic_rate * 0.5, rtol=1e-6)
        committed = ws.commit()
        assert np.all(committed == committed[0, 0])

    def test_thermal_softer_rock_erodes_more(self) -> None:
        """Thermal erosion scales with temperature and (1 - hardness)."""
        heights = np.full((2, 2), 0.5, dtype=np.float32)
        hardness = np.array([[0.0, 0.5], [1.0, 0.0]], dtype=np.float32)
        ws = ErosionWorkingSet.allocate(heights, np.zeros_like(heights), hardness)
        config = GridErosionConfig(dt=1.0)

        thermal_pass(ws, slice(None), np.full((2, 2), 10.0, dtype=np.float32), config)

        expected = 10.0 * (1.0 - hardness) * config.thermal_rate
        np.testing.assert_allclose(ws.erosion, expected, rtol=1e-6)

    def test_wind_is_uniform(self) -> None:
        """Wind erosion is the same for every cell."""
        heights = np.random.default_rng(1).uniform(size=(5, 5)).astype(np.float32)
        ws = ErosionWorkingSet.allocate(heights, np.zeros_like(heights), np.zeros_like(heights))
        config = GridErosionConfig(dt=0.5)
        wind_pass(ws, slice(None), 2.0, config)
        np.testing.assert_allclose(ws.erosion, 2.0 * config.wind_rate * 0.5, rtol=1e-6)

    def test_chemical(self) -> None:
        """Chemical erosion is moisture * (1 - hardness) * k4 * dt."""
        heights = np.full((1, 3), 0.5, dtype=np.float32)
        moisture = np.array([[0.0, 0.5, 1.0]], dtype=np.float32)
        hardness = np.array([[0.0, 0.2, 0.5]], dtype=np.float32)
        ws = ErosionWorkingSet.allocate(heights, moisture, hardness)
        config = GridErosionConfig(dt=1.0)
        chemical_pass(ws, slice(None), config)
        np.testing.assert_allclose(
            ws.erosion, moisture * (1.0 - hardness) * config.chemical_rate, rtol=1e-6
        )

    def test_row_bands_cover_rows(self) -> None:
        """Bands are contiguous, non-empty and cover every row."""
        bands = row_bands(10, 4)
        rows = [r for band in bands for r in range(10)[band]]
        assert rows == list(range(10))
        assert row_bands(3, 8) == [slice(0, 1), slice(1, 2), slice(2, 3)]

    def test_threaded_matches_serial(self) -> None:
        """Row-band threading gives identical accumulators."""
        rng = np.random.default_rng(4)
        heights = rng.uniform(size=(37, 23)).astype(np.float32)
        moisture = rng.uniform(size=(37, 23)).astype(np.float32)
        hardness = rng.uniform(size=(37, 23)).astype(np.float32)
        climate = ClimateInputs(
            moisture=moisture, temperature=12.0, wind_speed=1.5, rainfall=0.8
        )

        serial = ErosionWorkingSet.allocate(heights, moisture, hardness)
        threaded = ErosionWorkingSet.allocate(heights, moisture, hardness)
        run_grid_passes(serial, climate, GridErosionConfig(), workers=1)
        run_grid_passes(threaded, climate, GridErosionConfig(), workers=4)

        assert np.array_equal(serial.erosion, threaded.erosion)
        assert np.array_equal(serial.sediment, threaded.sediment)


class TestRelaxSlopes:
    """Tests for slope relaxation."""

    def test_flat_unchanged(self) -> None:
        """Flat terrain has nothing to relax."""
        heights = np.full((6, 6), 0.5, dtype=np.float32)
        np.testing.assert_array_equal(relax_slopes(heights, 5, 0.1, 0.5), heights)

    def test_mass_conserved_with_full_settling(self) -> None:
        """With a sediment factor of 1 total height is conserved."""
        heights = np.zeros((9, 9), dtype=np.float32)
        heights[4, 4] = 0.8
        result = relax_slopes(heights, 3, 0.1, 1.0)
        assert result.sum() == pytest.approx(heights.sum(), rel=1e-5)
        assert result[4, 4] < 0.8
        assert result[4, 5] > 0.0

    def test_zero_iterations_identity(self) -> None:
        """Zero sweeps return the input values."""
        heights = np.random.default_rng(2).uniform(size=(5, 5)).astype(np.float32)
        np.testing.assert_array_equal(relax_slopes(heights, 0, 0.1, 0.5), heights)


class TestHardness:
    """Tests for derived hardness."""

    def test_range_and_shape(self) -> None:
        """Hardness is a [0, 1] grid matching the heightfield."""
        heights = synthesize(33, 400.0, 2)
        hardness = derive_hardness(heights, 9)
        assert hardness.shape == heights.shape
        assert hardness.min() >= 0.0
        assert hardness.max() <= 1.0


class TestRunErosion:
    """Tests for the erosion stage."""

    def test_zero_config_is_identity(self, calm_climate) -> None:
        """Zero-strength passes and zero particles leave heights unchanged."""
        heights = synthesize(33, 400.0, 6)
        climate = calm_climate(heights.shape, moisture=0.7, temperature=20.0, wind_speed=3.0, rainfall=1.0)
        result = run_erosion(heights, zero_erosion_config(), climate)
        assert np.array_equal(result, heights)

    def test_range_and_input_untouched(self, calm_climate) -> None:
        """Erosion output stays in [0, 1] and the input is not modified."""
        heights = synthesize(33, 400.0, 8)
        original = heights.copy()
        climate = calm_climate(heights.shape, moisture=0.5, temperature=15.0, wind_speed=1.0, rainfall=0.5)
        config = ErosionConfig(
            particles=ParticleErosionConfig(particle_count=12, batch_size=4, max_steps=25),
        )
        result = run_erosion(heights, config, climate, rng=np.random.default_rng(1))
        assert result.min() >= 0.0
        assert result.max() <= 1.0
        assert np.array_equal(heights, original)
        assert not np.array_equal(result, heights)

    def test_deterministic(self, calm_climate) -> None:
        """Same seed and inputs give identical output."""
        heights = synthesize(33, 400.0, 10)
        climate = calm_climate(heights.shape, moisture=0.5, temperature=15.0, rainfall=0.5)
        config = ErosionConfig(seed=4, particles=ParticleErosionConfig(particle_count=10, max_steps=20))
        assert np.array_equal(run_erosion(heights, config, climate), run_erosion(heights, config, climate))

    def test_climate_shape_mismatch(self, calm_climate) -> None:
        """Climate grids of another shape are rejected before any work."""
        heights = np.zeros((8, 8), dtype=np.float32)
        with pytest.raises(InvalidDimensionError):
            run_erosion(heights, ErosionConfig(), calm_climate((8, 9)))

    def test_hardness_shape_mismatch(self, calm_climate) -> None:
        """A hardness grid of another shape is rejected."""
        heights = np.zeros((8, 8), dtype=np.float32)
        with pytest.raises(InvalidDimensionError):
            run_erosion(heights, ErosionConfig(), calm_climate((8, 8)), hardness=np.zeros((4, 4)))
