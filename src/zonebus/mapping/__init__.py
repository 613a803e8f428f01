"""Mapping context resolution."""

from .resolver import (
    MappingResolver,
    NullMappingResolver,
    ProfileMappingResolver,
    select_mapping,
)

__all__ = [
    "MappingResolver",
    "NullMappingResolver",
    "ProfileMappingResolver",
    "select_mapping",
]
