"""Result persistence: flat row-major float arrays in a compressed .npz."""

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING

import numpy as np
import structlog
from numpy.typing import NDArray

if TYPE_CHECKING:
    from .generator import GenerationResult

logger = structlog.get_logger()

FORMAT_VERSION = 1


def save_result(path: Path, result: "GenerationResult") -> None:
    """Save a generation result.

    Heights and biome weights are stored flat in row-major order alongside
    their shapes; rivers and metadata are stored as JSON.

    Args:
        path: Output path (should end with .npz).
        result: Generation result to save.
    """
    rivers_data = [
        {
            "source": list(river.source),
            "termination": river.termination.value,
            "points": [[p.x, p.y, p.flow] for p in river.points],
        }
        for river in result.rivers
    ]

    metadata = {
        "version": FORMAT_VERSION,
        "seed": result.config.seed,
        "resolution": result.config.resolution,
        "world_size": result.config.world_size,
        "biomes": [b.name for b in result.biomes],
        "generated_at": datetime.now(timezone.utc).isoformat(),
    }

    np.savez_compressed(
        path,
        heights=result.flat_heights(),
        heights_shape=np.array(result.heights.shape, dtype=np.int64),
        biome_weights=result.flat_biome_weights(),
        biome_weights_shape=np.array(result.biome_weights.shape, dtype=np.int64),
        rivers=json.dumps(rivers_data).encode("utf-8"),
        metadata=json.dumps(metadata).encode("utf-8"),
    )

    file_size = path.stat().st_size / (1024 * 1024)
    logger.info("result_saved", path=str(path), size_mb=round(file_size, 2))


def load_heights(path: Path) -> tuple[NDArray[np.float32], dict]:
    """Load the heightfield and metadata from a saved result.

    Args:
        path: Path to .npz file.

    Returns:
        Tuple of (heightfield, metadata dict).

    Raises:
        FileNotFoundError: If file doesn't exist.
        ValueError: If file format is invalid.
    """
    if not path.exists():
        raise FileNotFoundError(f"Result file not found: {path}")

    with np.load(path) as data:
        if "heights" not in data or "heights_shape" not in data:
            raise ValueError(f"Invalid result file: missing heights in {path}")
        shape = tuple(int(v) for v in data["heights_shape"])
        heights = data["heights"].astype(np.float32).reshape(shape)
        metadata = json.loads(data["metadata"].item().decode("utf-8"))

    if metadata.get("version") != FORMAT_VERSION:
        raise ValueError(f"Unsupported result version: {metadata.get('version')}")

    return heights, metadata
