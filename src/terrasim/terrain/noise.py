"""Noise functions for terrain synthesis.

Provides coordinate-based gradient noise, fractal (fBm) and ridged
multifractal sums, and cellular (Voronoi) distance noise. Every function
is pure: the output depends only on the arguments, and coordinates may be
scalars or numpy arrays of any broadcastable shape.
"""

from functools import lru_cache
from typing import Sequence

import numpy as np
from numpy.typing import ArrayLike, NDArray

from .config import NoiseKind, NoiseLayerConfig

# Smallest usable feature scale; smaller values are clamped rather than rejected
MIN_SCALE = 1e-4
_SCALE_EPSILON = 1e-5

# Gradient directions for 2D Perlin noise
_GRADIENTS = np.array(
    [[1, 1], [-1, 1], [1, -1], [-1, -1], [1, 0], [-1, 0], [0, 1], [0, -1]],
    dtype=np.float64,
)

# Per-octave coordinate offsets, keeps octaves from sharing lattice points
_OCTAVE_OFFSET_X = 13.13
_OCTAVE_OFFSET_Y = 17.17

# Largest nearest-point distance the 3x3 cell search can produce
CELLULAR_MAX_DISTANCE = float(np.sqrt(2.0))


def _safe_scale(scale: float) -> float:
    if scale <= _SCALE_EPSILON:
        return MIN_SCALE
    return float(scale)


def _as_output(values: NDArray[np.float64]) -> NDArray[np.float64] | float:
    if values.ndim == 0:
        return float(values)
    return values


@lru_cache(maxsize=128)
def _permutation(seed: int) -> NDArray[np.int64]:
    """Doubled permutation table for a seed (read-only, cached)."""
    rng = np.random.default_rng(seed % (2**32))
    perm = rng.permutation(256).astype(np.int64)
    table = np.concatenate([perm, perm])
    table.flags.writeable = False
    return table


def _fade(t: NDArray[np.float64]) -> NDArray[np.float64]:
    """6t^5 - 15t^4 + 10t^3"""
    return t * t * t * (t * (t * 6.0 - 15.0) + 10.0)


def _gradient_dot(
    h: NDArray[np.int64], x: NDArray[np.float64], y: NDArray[np.float64]
) -> NDArray[np.float64]:
    g = _GRADIENTS[h & 7]
    return g[..., 0] * x + g[..., 1] * y


def perlin(x: ArrayLike, y: ArrayLike, seed: int) -> NDArray[np.float64] | float:
    """Single-octave 2D gradient noise.

    Args:
        x: X coordinates (noise space).
        y: Y coordinates (noise space).
        seed: Seed selecting the permutation table.

    Returns:
        Noise values in [0, 1], same shape as the broadcast inputs.
    """
    x, y = np.broadcast_arrays(
        np.asarray(x, dtype=np.float64), np.asarray(y, dtype=np.float64)
    )
    perm = _permutation(seed)

    x0 = np.floor(x)
    y0 = np.floor(y)
    xf = x - x0
    yf = y - y0
    xi = x0.astype(np.int64) & 255
    yi = y0.astype(np.int64) & 255

    u = _fade(xf)
    v = _fade(yf)

    aa = perm[perm[xi] + yi]
    ab = perm[perm[xi] + yi + 1]
    ba = perm[perm[xi + 1] + yi]
    bb = perm[perm[xi + 1] + yi + 1]

    n00 = _gradient_dot(aa, xf, yf)
    n10 = _gradient_dot(ba, xf - 1.0, yf)
    n01 = _gradient_dot(ab, xf, yf - 1.0)
    n11 = _gradient_dot(bb, xf - 1.0, yf - 1.0)

    nx0 = n00 + u * (n10 - n00)
    nx1 = n01 + u * (n11 - n01)
    value = nx0 + v * (nx1 - nx0)

    return _as_output(np.clip(value * 0.5 + 0.5, 0.0, 1.0))


def fractal(
    x: ArrayLike,
    y: ArrayLike,
    octaves: int,
    persistence: float,
    lacunarity: float,
    scale: float,
    seed: int,
) -> NDArray[np.float64] | float:
    """Multi-octave fractal (fBm) noise.

    Sums octaves of gradient noise at increasing frequencies and
    decreasing amplitudes, normalized by the accumulated amplitude.

    Args:
        x: X coordinates in world units.
        y: Y coordinates in world units.
        octaves: Number of noise layers to sum.
        persistence: Amplitude multiplier between octaves.
        lacunarity: Frequency multiplier between octaves.
        scale: Feature size in world units (clamped to a small positive value).
        seed: Noise seed.

    Returns:
        Noise values in [0, 1].
    """
    scale = _safe_scale(scale)
    x = np.asarray(x, dtype=np.float64)
    y = np.asarray(y, dtype=np.float64)

    total = np.zeros(np.broadcast_shapes(x.shape, y.shape), dtype=np.float64)
    amplitude = 1.0
    frequency = 1.0
    max_amplitude = 0.0

    for i in range(octaves):
        sx = (x + i * _OCTAVE_OFFSET_X) / scale * frequency
        sy = (y + i * _OCTAVE_OFFSET_Y) / scale * frequency
        total += np.asarray(perlin(sx, sy, seed)) * amplitude
        max_amplitude += amplitude
        amplitude *= persistence
        frequency *= lacunarity

    if max_amplitude > 0:
        total /= max_amplitude
    return _as_output(total)


def ridged(
    x: ArrayLike,
    y: ArrayLike,
    octaves: int,
    persistence: float,
    lacunarity: float,
    scale: float,
    seed: int,
    gain: float = 2.0,
) -> NDArray[np.float64] | float:
    """Ridged multifractal noise.

    Each octave folds the noise into a ridge ``(1 - |2v - 1|)^2`` and is
    weighted by the previous octave's signal scaled by ``gain`` (clamped
    to [0, 1]), so detail concentrates along ridge lines.

    Args:
        x: X coordinates in world units.
        y: Y coordinates in world units.
        octaves: Number of noise layers.
        persistence: Amplitude multiplier between octaves.
        lacunarity: Frequency multiplier between octaves.
        scale: Feature size in world units.
        seed: Noise seed.
        gain: Weight multiplier carried from one octave to the next.

    Returns:
        Noise values in [0, 1].
    """
    scale = _safe_scale(scale)
    x = np.asarray(x, dtype=np.float64)
    y = np.asarray(y, dtype=np.float64)
    shape = np.broadcast_shapes(x.shape, y.shape)

    total = np.zeros(shape, dtype=np.float64)
    weight = np.ones(shape, dtype=np.float64)
    amplitude = 1.0
    frequency = 1.0
    max_amplitude = 0.0

    for i in range(octaves):
        sx = (x + i * _OCTAVE_OFFSET_X) / scale * frequency
        sy = (y + i * _OCTAVE_OFFSET_Y) / scale * frequency
        value = np.asarray(perlin(sx, sy, seed))

        signal = 1.0 - np.abs(value * 2.0 - 1.0)
        signal = signal * signal
        signal *= weight

        total += signal * amplitude
        max_amplitude += amplitude

        weight = np.clip(signal * gain, 0.0, 1.0)
        amplitude *= persistence
        frequency *= lacunarity

    if max_amplitude > 0:
        total /= max_amplitude
    return _as_output(total)


def _hash01(
    ix: NDArray[np.int64], iy: NDArray[np.int64], seed: int
) -> NDArray[np.float64]:
    """Integer lattice hash to [0, 1)."""
    with np.errstate(over="ignore"):
        h = ix.astype(np.uint32) * np.uint32(0x27D4EB2D)
        h ^= iy.astype(np.uint32) * np.uint32(0x165667B1)
        h ^= np.uint32(seed % (2**32))
        h ^= h >> np.uint32(15)
        h *= np.uint32(0x2C1B3C6D)
        h ^= h >> np.uint32(12)
        h *= np.uint32(0x297A2D39)
        h ^= h >> np.uint32(15)
    return h.astype(np.float64) / 2.0**32


def cellular(
    x: ArrayLike, y: ArrayLike, scale: float, seed: int
) -> NDArray[np.float64] | float:
    """Cellular (Voronoi) distance noise.

    Each unit cell at the given scale holds one hashed feature point; the
    result is the distance from the query point to the nearest feature
    point in the surrounding 3x3 cells.

    Args:
        x: X coordinates in world units.
        y: Y coordinates in world units.
        scale: Cell size in world units.
        seed: Hash seed.

    Returns:
        Unnormalized distances in cell units (at most ``CELLULAR_MAX_DISTANCE``).
    """
    scale = _safe_scale(scale)
    sx, sy = np.broadcast_arrays(
        np.atleast_1d(np.asarray(x, dtype=np.float64)) / scale,
        np.atleast_1d(np.asarray(y, dtype=np.float64)) / scale,
    )
    scalar = np.ndim(x) == 0 and np.ndim(y) == 0

    xi = np.floor(sx).astype(np.int64)
    yi = np.floor(sy).astype(np.int64)
    nearest = np.full(sx.shape, np.inf, dtype=np.float64)

    for oy in (-1, 0, 1):
        for ox in (-1, 0, 1):
            cx = xi + ox
            cy = yi + oy
            px = cx + _hash01(cx, cy, seed)
            py = cy + _hash01(cy, cx, seed)
            nearest = np.minimum(nearest, np.hypot(sx - px, sy - py))

    if scalar:
        return float(nearest[0])
    return nearest


def sample_layer(
    layer: NoiseLayerConfig, x: ArrayLike, y: ArrayLike, seed: int
) -> NDArray[np.float64]:
    """Evaluate a configured noise layer, normalized to [0, 1].

    Args:
        layer: Layer configuration.
        x: X coordinates in world units.
        y: Y coordinates in world units.
        seed: Layer seed (the layer's ``seed_offset`` is added).

    Returns:
        Array of noise values in [0, 1].
    """
    layer_seed = seed + layer.seed_offset

    if layer.kind == NoiseKind.RIDGED:
        values = ridged(
            x, y, layer.octaves, layer.persistence, layer.lacunarity,
            layer.scale, layer_seed, layer.gain,
        )
    elif layer.kind == NoiseKind.CELLULAR:
        distance = np.asarray(cellular(x, y, layer.scale, layer_seed))
        values = np.clip(distance / CELLULAR_MAX_DISTANCE, 0.0, 1.0)
    else:
        values = fractal(
            x, y, layer.octaves, layer.persistence, layer.lacunarity,
            layer.scale, layer_seed,
        )

    return np.asarray(values, dtype=np.float64)


def smoothstep(edge0: float, edge1: float, x: ArrayLike) -> NDArray[np.float64]:
    """Smooth Hermite interpolation between 0 and 1.

    Args:
        edge0: Lower edge of transition.
        edge1: Upper edge of transition.
        x: Input values.

    Returns:
        Smoothly interpolated values in [0, 1]. A zero-width transition
        degenerates to a step at ``edge0``.
    """
    x = np.asarray(x, dtype=np.float64)
    if edge1 == edge0:
        return (x >= edge0).astype(np.float64)
    t = np.clip((x - edge0) / (edge1 - edge0), 0.0, 1.0)
    return t * t * (3.0 - 2.0 * t)


def inverse_lerp(a: float, b: float, x: ArrayLike) -> NDArray[np.float64]:
    """Position of ``x`` between ``a`` and ``b``, clamped to [0, 1]."""
    x = np.asarray(x, dtype=np.float64)
    if b == a:
        return (x >= a).astype(np.float64)
    return np.clip((x - a) / (b - a), 0.0, 1.0)


def evaluate_curve(
    points: Sequence[tuple[float, float]], x: ArrayLike
) -> NDArray[np.float64]:
    """Evaluate a piecewise-linear response curve.

    Args:
        points: (input, output) control points; an empty curve is constant 1.
        x: Input values.

    Returns:
        Curve outputs, held constant beyond the first and last control points.
    """
    x = np.asarray(x, dtype=np.float64)
    if not points:
        return np.ones_like(x)
    ordered = sorted(points)
    xs = np.array([p[0] for p in ordered], dtype=np.float64)
    ys = np.array([p[1] for p in ordered], dtype=np.float64)
    return np.interp(x, xs, ys)
