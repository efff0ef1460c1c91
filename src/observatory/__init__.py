"""Observatory: bounded observation streaming with indexed, debounced filtering."""

__version__ = "0.1.0"
