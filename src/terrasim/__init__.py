"""Procedural terrain simulation: noise, geology, erosion, rivers and biomes."""

__version__ = "0.1.0"
