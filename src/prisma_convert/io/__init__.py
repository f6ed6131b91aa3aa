"""I/O helpers for PRISMA HDF5 products."""

from .source import ArraySource, H5ArraySource, MappingArraySource

__all__ = ["ArraySource", "H5ArraySource", "MappingArraySource"]
