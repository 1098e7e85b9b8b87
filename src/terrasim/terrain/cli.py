"""Command-line interface for terrain generation."""

import argparse
import logging
import time
from pathlib import Path

import structlog


def configure_logging(verbose: bool) -> None:
    """Configure structlog with a level filter and console output."""
    level = logging.DEBUG if verbose else logging.INFO
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Generate a procedural heightfield with erosion, rivers and biomes"
    )
    parser.add_argument(
        "--config", type=str, default=None, help="Path to a TOML config file"
    )
    parser.add_argument(
        "--seed", type=int, default=None, help="World seed (overrides config)"
    )
    parser.add_argument(
        "--resolution",
        type=int,
        default=None,
        help="Grid cells per side (overrides config)",
    )
    parser.add_argument(
        "--world-size",
        type=float,
        default=None,
        help="World extent in world units (overrides config)",
    )
    parser.add_argument(
        "--output",
        "-o",
        type=str,
        default=None,
        help="Save the result to this .npz path (optional)",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Verbose logging"
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    """CLI entry point for terrain generation."""
    args = build_parser().parse_args(argv)
    configure_logging(args.verbose)
    logger = structlog.get_logger()

    # Import here to avoid slow startup for --help
    from ..exceptions import TerrainError
    from .config import TerrainConfig, load_config
    from .generator import generate_world
    from .persistence import save_result
    from .validation import validate_generation

    config = load_config(Path(args.config)) if args.config else TerrainConfig()
    overrides = {
        key: value
        for key, value in (
            ("seed", args.seed),
            ("resolution", args.resolution),
            ("world_size", args.world_size),
        )
        if value is not None
    }
    if overrides:
        config = config.model_copy(update=overrides)

    start_time = time.time()
    try:
        result = generate_world(config)
    except TerrainError as e:
        logger.error("generation_failed", error=str(e))
        return 1
    gen_time = time.time() - start_time

    logger.info("generation_complete", seconds=round(gen_time, 2))
    validation = validate_generation(result)

    if args.output:
        output_path = Path(args.output)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        save_result(output_path, result)

    return 0 if validation.passed else 2


if __name__ == "__main__":
    raise SystemExit(main())
