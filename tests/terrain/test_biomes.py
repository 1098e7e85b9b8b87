"""Tests for biome weighting."""

import math

import numpy as np
import pytest

from terrasim.exceptions import InvalidDimensionError, InvalidParameterError
from terrasim.terrain.biomes import (
    compute_biome_weights,
    dominant_biome,
    height_influence,
    match_weight,
    seasonal_weight,
    transition_noise,
)
from terrasim.terrain.config import BiomeDefinition, BiomeTransitionConfig, default_biomes


def uniform(shape: tuple[int, int], value: float) -> np.ndarray:
    return np.full(shape, value, dtype=np.float32)


class TestComponents:
    """Tests for the per-biome weight factors."""

    def test_match_weight(self) -> None:
        """Match falls off exponentially, softened by adaptability."""
        assert match_weight(0.5, 0.5, 1.0, 0.5) == pytest.approx(1.0)
        assert match_weight(0.0, 0.5, 1.0, 0.5) == pytest.approx(math.exp(-0.25))
        assert match_weight(0.0, 0.5, 1.0, 1.0) == pytest.approx(1.0)

    def test_seasonal_weight_floor(self) -> None:
        """Seasonal weight never goes negative."""
        assert seasonal_weight(0.25, 0.5) == pytest.approx(1.5)
        assert seasonal_weight(0.75, 0.5) == pytest.approx(0.5)
        assert seasonal_weight(0.75, 2.0) == 0.0

    def test_height_influence_hard_edges(self) -> None:
        """With no blend distance the band edges are sharp."""
        biome = BiomeDefinition(name="band", min_height=0.3, max_height=0.6)
        influence = height_influence(biome, [0.2, 0.3, 0.45, 0.6, 0.7])
        np.testing.assert_allclose(influence, [0.0, 1.0, 1.0, 1.0, 0.0])

    def test_height_influence_soft_edges(self) -> None:
        """A blend distance ramps influence outside the band."""
        biome = BiomeDefinition(name="band", min_height=0.3, max_height=0.6, blend_distance=0.1)
        influence = height_influence(biome, [0.15, 0.25, 0.45, 0.65, 0.75])
        assert influence[0] == 0.0
        assert 0.0 < influence[1] < 1.0
        assert influence[2] == pytest.approx(1.0)
        assert 0.0 < influence[3] < 1.0
        assert influence[4] == 0.0

    def test_height_curve(self) -> None:
        """The height curve shapes influence inside the band."""
        biome = BiomeDefinition(
            name="peak", min_height=0.0, max_height=1.0,
            height_curve=((0.0, 0.0), (0.5, 1.0), (1.0, 0.0)),
        )
        np.testing.assert_allclose(height_influence(biome, [0.25, 0.5, 0.75]), [0.5, 1.0, 0.5])

    def test_transition_noise_differs_per_biome(self) -> None:
        """Each biome gets its own noise field in [0, 1]."""
        config = BiomeTransitionConfig()
        a = transition_noise((24, 24), config, 0)
        b = transition_noise((24, 24), config, 1)
        assert a.min() >= 0.0 and a.max() <= 1.0
        assert not np.array_equal(a, b)


class TestComputeBiomeWeights:
    """Tests for normalized biome weights."""

    def test_normalized_ratio(self) -> None:
        """Weights are the raw products normalized per cell."""
        shape = (3, 4)
        biomes = [
            BiomeDefinition(name="a", moisture_optimum=0.5, temperature_optimum=20.0),
            BiomeDefinition(name="b", moisture_optimum=0.0, temperature_optimum=20.0),
        ]
        weights = compute_biome_weights(
            uniform(shape, 0.5), uniform(shape, 0.5), 20.0, 0.0, biomes
        )

        raw_b = math.exp(-0.25)
        assert weights.shape == (3, 4, 2)
        assert weights.dtype == np.float32
        np.testing.assert_allclose(weights[..., 0], 1.0 / (1.0 + raw_b), rtol=1e-6)
        np.testing.assert_allclose(weights[..., 1], raw_b / (1.0 + raw_b), rtol=1e-6)

    def test_default_biomes_sum_to_one(self) -> None:
        """Default biomes cover every cell and weights sum to one."""
        rng = np.random.default_rng(0)
        heights = rng.uniform(size=(20, 20)).astype(np.float32)
        moisture = rng.uniform(size=(20, 20)).astype(np.float32)
        temperature = rng.uniform(-10.0, 35.0, size=(20, 20)).astype(np.float32)

        weights = compute_biome_weights(heights, moisture, temperature, 0.3, default_biomes())

        np.testing.assert_allclose(weights.sum(axis=-1), 1.0, atol=1e-5)
        assert weights.min() >= 0.0

    def test_uncovered_cells_zero(self) -> None:
        """Cells no biome accepts have all-zero weights and no dominant biome."""
        heights = np.array([[0.1, 0.5]], dtype=np.float32)
        biomes = [BiomeDefinition(name="upland", min_height=0.4, max_height=1.0)]

        weights = compute_biome_weights(heights, uniform((1, 2), 0.5), 15.0, 0.0, biomes)

        np.testing.assert_array_equal(weights[0, 0], [0.0])
        np.testing.assert_allclose(weights[0, 1], [1.0])
        np.testing.assert_array_equal(dominant_biome(weights), [[-1, 0]])

    def test_season_shifts_balance(self) -> None:
        """A seasonal biome gains share at the height of its season."""
        shape = (2, 2)
        biomes = [
            BiomeDefinition(name="steady"),
            BiomeDefinition(name="seasonal", seasonal_variation=0.5),
        ]
        args = (uniform(shape, 0.5), uniform(shape, 0.5), 15.0)
        summer = compute_biome_weights(*args, 0.25, biomes)
        winter = compute_biome_weights(*args, 0.75, biomes)
        assert summer[0, 0, 1] > winter[0, 0, 1]

    def test_transitions_perturb_but_normalize(self) -> None:
        """Transition noise changes weights while keeping them normalized."""
        rng = np.random.default_rng(2)
        heights = rng.uniform(0.3, 0.6, size=(16, 16)).astype(np.float32)
        moisture = uniform((16, 16), 0.4)
        biomes = default_biomes()

        plain = compute_biome_weights(heights, moisture, 18.0, 0.0, biomes)
        noisy = compute_biome_weights(
            heights, moisture, 18.0, 0.0, biomes, BiomeTransitionConfig()
        )

        assert not np.allclose(plain, noisy)
        covered = noisy.sum(axis=-1) > 0
        np.testing.assert_allclose(noisy.sum(axis=-1)[covered], 1.0, atol=1e-5)

    def test_steep_response_curve_keeps_coverage(self) -> None:
        """A curve above one cannot turn qualifying cells uncovered."""
        shape = (12, 12)
        biomes = [
            BiomeDefinition(name="a", moisture_optimum=0.5, temperature_optimum=20.0),
            BiomeDefinition(name="b", moisture_optimum=0.3, temperature_optimum=20.0),
        ]
        transitions = BiomeTransitionConfig(response_curve=((0.0, 2.0), (1.0, 2.0)))

        weights = compute_biome_weights(
            uniform(shape, 0.5), uniform(shape, 0.5), 20.0, 0.0, biomes, transitions
        )

        assert weights.min() >= 0.0
        np.testing.assert_allclose(weights.sum(axis=-1), 1.0, atol=1e-5)

    def test_dominant_biome(self) -> None:
        """The dominant biome is the per-cell argmax."""
        weights = np.array([[[0.2, 0.8], [0.6, 0.4]]], dtype=np.float32)
        np.testing.assert_array_equal(dominant_biome(weights), [[1, 0]])

    def test_shape_mismatch(self) -> None:
        """Grids of another shape are rejected."""
        heights = uniform((4, 4), 0.5)
        with pytest.raises(InvalidDimensionError):
            compute_biome_weights(heights, uniform((4, 5), 0.5), 10.0, 0.0, default_biomes())
        with pytest.raises(InvalidDimensionError):
            compute_biome_weights(heights, heights, uniform((2, 2), 10.0), 0.0, default_biomes())

    def test_no_biomes(self) -> None:
        """An empty biome list is invalid."""
        heights = uniform((4, 4), 0.5)
        with pytest.raises(InvalidParameterError):
            compute_biome_weights(heights, heights, 10.0, 0.0, [])
