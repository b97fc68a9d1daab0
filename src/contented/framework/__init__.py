"""Pipeline framework: records, field schemas, processors and config."""

from contented.framework.fields import DEFAULT_FIELDS, FieldSpec, resolve_fields
from contented.framework.models import FileContent, FileIndex
from contented.framework.pipeline import ContentedPipeline, PipelineConfig
from contented.framework.registry import ProcessorRegistry

__all__ = [
    "DEFAULT_FIELDS",
    "FieldSpec",
    "resolve_fields",
    "FileContent",
    "FileIndex",
    "ContentedPipeline",
    "PipelineConfig",
    "ProcessorRegistry",
]
