"""Custom exceptions for terrain simulation."""


class TerrainError(Exception):
    """Base exception for terrain simulation errors."""

    pass


class InvalidDimensionError(TerrainError):
    """Raised when input grids do not share the same dimensions."""

    pass


class InvalidParameterError(TerrainError):
    """Raised when a stage parameter is out of its valid range."""

    pass


class ResourceExhaustionError(TerrainError):
    """Raised when working buffers cannot be allocated."""

    pass
