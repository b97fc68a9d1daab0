"""Core primitives: errors, hashing, logging, settings and path resolution."""

from contented.core.errors import (
    ConfigError,
    ContentedError,
    ContentParseError,
    ErrorCategory,
    FieldValidationError,
    PathCollisionError,
    ProcessorResolutionError,
    SortError,
    SourceIOError,
    TransformError,
)
from contented.core.hashing import compute_file_id
from contented.core.paths import PathResolver, StripPattern, slugify

__all__ = [
    "ConfigError",
    "ContentedError",
    "ContentParseError",
    "ErrorCategory",
    "FieldValidationError",
    "PathCollisionError",
    "ProcessorResolutionError",
    "SortError",
    "SourceIOError",
    "TransformError",
    "compute_file_id",
    "PathResolver",
    "StripPattern",
    "slugify",
]
