"""
Structured error types for the contented pipeline engine.

Every failure the engine can report is a ``ContentedError`` carrying a
category, a structured ``ErrorContext`` (pipeline, file, file id, field) and
an optional chained cause. Build code captures per-file errors instead of
letting them escape, so the category tells the reporter whether the failure
was scoped to one file or to a whole pipeline.

Manifesto:
    - **Typed hierarchy:** one class per failure domain, no bare ``Exception``
    - **Rich context:** errors carry the pipeline and file they belong to
    - **Error chaining:** the original ``OSError``/``yaml`` error stays as cause
    - **Scope is explicit:** config and resolution errors abort a pipeline,
      file errors are reported and skipped

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────┐
        │                      ContentedError                          │
        │            (category, context, cause)                        │
        ├─────────────────────────────────────────────────────────────┤
        │  Pipeline scope               │  File scope                  │
        │  ──────────────               │  ──────────                  │
        │  ConfigError                  │  FieldValidationError        │
        │    MissingConfigError         │  SourceIOError               │
        │    InvalidConfigError         │  ContentParseError           │
        │  ProcessorResolutionError     │  TransformError              │
        │  SortError                    │  PathCollisionError          │
        └─────────────────────────────────────────────────────────────┘

Examples:
    >>> error = FieldValidationError("title", "docs/index.md")
    >>> error.category
    <ErrorCategory.VALIDATION: 'VALIDATION'>
    >>> error.to_dict()["context"]["field"]
    'title'

Tags:
    error-handling, exception-hierarchy, error-context, contented
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and reporting."""

    CONFIG = "CONFIG"
    PROCESSOR = "PROCESSOR"
    VALIDATION = "VALIDATION"
    IO = "IO"
    PARSE = "PARSE"
    TRANSFORM = "TRANSFORM"
    COLLISION = "COLLISION"
    SORT = "SORT"
    INTERNAL = "INTERNAL"


# Categories whose errors are scoped to a single source file.
FILE_SCOPED = frozenset(
    {
        ErrorCategory.VALIDATION,
        ErrorCategory.IO,
        ErrorCategory.PARSE,
        ErrorCategory.TRANSFORM,
        ErrorCategory.COLLISION,
    }
)


@dataclass
class ErrorContext:
    """Structured metadata attached to an error."""

    pipeline: str | None = None
    file: str | None = None
    file_id: str | None = None
    field: str | None = None
    metadata: dict[str, Any] = dataclasses.field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["pipeline", "file", "file_id", "field"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class ContentedError(Exception):
    """
    Base exception for all contented errors.

    Subclasses set ``default_category``; callers may override it per instance.
    ``with_context()`` attaches pipeline/file metadata after creation, which is
    how the engine stamps the owning pipeline onto errors raised deep inside a
    processor.
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    @property
    def file_scoped(self) -> bool:
        """True if the error concerns one file rather than the pipeline."""
        return self.category in FILE_SCOPED

    def with_context(self, **kwargs: Any) -> ContentedError:
        """
        Add context to this error (fluent API).

        Usage:
            raise SourceIOError("stat failed").with_context(pipeline="Doc")
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# PIPELINE-SCOPED ERRORS
# =============================================================================


class ConfigError(ContentedError):
    """Malformed pipeline declaration. Fatal at load."""

    default_category = ErrorCategory.CONFIG


class MissingConfigError(ConfigError):
    """A required configuration key is missing."""

    def __init__(self, key: str, message: str | None = None, **kwargs: Any):
        self.key = key
        super().__init__(message or f"Missing required configuration: {key}", **kwargs)


class InvalidConfigError(ConfigError):
    """A configuration value has the wrong shape."""

    def __init__(self, key: str, value: Any, message: str | None = None, **kwargs: Any):
        self.key = key
        self.value = value
        super().__init__(message or f"Invalid configuration for {key}: {value!r}", **kwargs)


class ProcessorResolutionError(ContentedError):
    """Unknown processor identifier or plugin load failure.

    Fatal for the owning pipeline only.
    """

    default_category = ErrorCategory.PROCESSOR

    def __init__(self, identifier: str, message: str | None = None, **kwargs: Any):
        self.identifier = identifier
        super().__init__(message or f"Processor '{identifier}' could not be resolved", **kwargs)


class SortError(ContentedError):
    """The pipeline comparator raised while ordering the aggregate.

    Nothing is committed; fatal for the owning pipeline only.
    """

    default_category = ErrorCategory.SORT

    def __init__(self, pipeline: str, message: str | None = None, **kwargs: Any):
        super().__init__(message or f"Pipeline '{pipeline}' failed to sort its records", **kwargs)
        self.context.pipeline = pipeline


# =============================================================================
# FILE-SCOPED ERRORS
# =============================================================================


class FieldValidationError(ContentedError):
    """A declared field failed validation for one file."""

    default_category = ErrorCategory.VALIDATION

    def __init__(
        self,
        field: str,
        file: str,
        message: str | None = None,
        *,
        value: Any = None,
        **kwargs: Any,
    ):
        super().__init__(message or f"Field '{field}' is required in {file}", **kwargs)
        self.field = field
        self.file = file
        self.value = value
        self.context.field = field
        self.context.file = file

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.value is not None:
            result["value"] = repr(self.value)
        return result


class SourceIOError(ContentedError):
    """Stat or read failure on a source file."""

    default_category = ErrorCategory.IO

    def __init__(self, file: str, message: str | None = None, **kwargs: Any):
        super().__init__(message or f"Unable to read {file}", **kwargs)
        self.file = file
        self.context.file = file


class ContentParseError(ContentedError):
    """A processor could not parse a source file (e.g. bad front matter)."""

    default_category = ErrorCategory.PARSE

    def __init__(self, file: str, message: str | None = None, **kwargs: Any):
        super().__init__(message or f"Unable to parse {file}", **kwargs)
        self.file = file
        self.context.file = file


class TransformError(ContentedError):
    """A pipeline transform hook raised or returned an invalid record."""

    default_category = ErrorCategory.TRANSFORM

    def __init__(self, file: str, message: str | None = None, **kwargs: Any):
        super().__init__(message or f"Transform failed for {file}", **kwargs)
        self.file = file
        self.context.file = file


class PathCollisionError(ContentedError):
    """Two records map to the same canonical path within one pipeline."""

    default_category = ErrorCategory.COLLISION

    def __init__(self, path: str, file: str, other_file: str, **kwargs: Any):
        super().__init__(
            f"Path '{path}' from {file} collides with {other_file}",
            **kwargs,
        )
        self.path = path
        self.file = file
        self.other_file = other_file
        self.context.file = file
        self.context.metadata["path"] = path
        self.context.metadata["other_file"] = other_file


def categorize_error(error: Exception) -> ErrorCategory:
    """Map any exception to an ErrorCategory for reporting."""
    if isinstance(error, ContentedError):
        return error.category
    if isinstance(error, OSError):
        return ErrorCategory.IO
    if isinstance(error, (ValueError, TypeError)):
        return ErrorCategory.VALIDATION
    return ErrorCategory.INTERNAL


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "ContentedError",
    "ConfigError",
    "MissingConfigError",
    "InvalidConfigError",
    "ProcessorResolutionError",
    "SortError",
    "FieldValidationError",
    "SourceIOError",
    "ContentParseError",
    "TransformError",
    "PathCollisionError",
    "categorize_error",
]
