"""
Error types raised by the species map component.
"""


class SpeciesMapError(Exception):
    """Base class for species map errors."""


class DataError(SpeciesMapError):
    """Query or transport failure from the backing database."""


class ConfigError(SpeciesMapError):
    """Required startup configuration is missing or unusable."""


class GeometryError(SpeciesMapError):
    """Polygon input the centroid helper cannot work with."""
