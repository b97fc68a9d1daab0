"""
Pipeline configuration loading.

Reads ``contented.yaml`` into immutable ``PipelineConfig`` objects and a
``ProcessorRegistry`` populated with any declared plugins.

Example config::

    outDir: .contented
    processor:
      stripPatterns:
        chapter: '^ch\\d+_(?P<name>.+)$'
      plugins:
        api-docs: my_site.processors:ApiDocsPipeline
      pipelines:
        - type: Doc
          root: docs
          pattern: "**/*.md"
          processor: md
          fields:
            title: {type: string, required: true, default: Contented}
          transform: my_site.hooks:strip_docs_prefix
          sort: my_site.hooks:by_order
          stripPatterns:
            draft: '^_(?P<name>.+)$'

Strip patterns are tried before the built-in ordering markers, pipeline
patterns first. Each must define a ``(?P<name>...)`` group.

Malformed declarations raise ``ConfigError`` at load. Processor identifiers
are not resolved here; that happens when each pipeline starts.
"""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from contented.core.errors import ConfigError, InvalidConfigError, MissingConfigError
from contented.core.logging import get_logger
from contented.core.paths import StripPattern
from contented.framework.fields import FieldSpec, default_resolver
from contented.framework.pipeline import PipelineConfig
from contented.framework.registry import ProcessorRegistry, resolve_callable_ref

logger = get_logger(__name__)

PIPELINE_KEYS = {"type", "pattern", "processor", "fields", "transform", "sort", "root", "stripPatterns"}
FIELD_KEYS = {"type", "required", "resolve", "default"}


@dataclass
class ContentedConfig:
    """Loaded configuration: where things are and which pipelines to run."""

    root_dir: Path
    out_dir: Path
    pipelines: list[PipelineConfig] = field(default_factory=list)
    registry: ProcessorRegistry = field(default_factory=ProcessorRegistry)

    def get_pipeline(self, type_name: str) -> PipelineConfig:
        for pipeline in self.pipelines:
            if pipeline.type == type_name:
                return pipeline
        available = ", ".join(p.type for p in self.pipelines)
        raise KeyError(f"Pipeline '{type_name}' not found. Available: {available}")


def _resolve_hook(ref: Any, key: str, pipeline: str) -> Any:
    if ref is None:
        return None
    if callable(ref):
        return ref
    if not isinstance(ref, str):
        raise InvalidConfigError(key, ref).with_context(pipeline=pipeline)
    try:
        return resolve_callable_ref(ref)
    except Exception as e:
        raise ConfigError(
            f"Pipeline '{pipeline}': cannot import {key} '{ref}': {e}", cause=e
        ).with_context(pipeline=pipeline) from e


def parse_field(name: str, data: Any, pipeline: str) -> FieldSpec:
    """Build a FieldSpec from its declaration (``{type, required, default, resolve}``)."""
    key = f"fields.{name}"
    if isinstance(data, FieldSpec):
        return data
    if isinstance(data, str):
        return FieldSpec(type=data)
    if not isinstance(data, Mapping):
        raise InvalidConfigError(key, data).with_context(pipeline=pipeline)

    unknown = set(data) - FIELD_KEYS
    if unknown:
        raise InvalidConfigError(
            key, data, f"Pipeline '{pipeline}': unknown keys for {key}: {sorted(unknown)}"
        ).with_context(pipeline=pipeline)
    if "resolve" in data and "default" in data:
        raise InvalidConfigError(
            key, data, f"Pipeline '{pipeline}': {key} declares both 'resolve' and 'default'"
        ).with_context(pipeline=pipeline)

    type_tag = data.get("type", "string")
    required = data.get("required", False)
    if not isinstance(type_tag, str):
        raise InvalidConfigError(f"{key}.type", type_tag).with_context(pipeline=pipeline)
    if not isinstance(required, bool):
        raise InvalidConfigError(f"{key}.required", required).with_context(pipeline=pipeline)

    if "default" in data:
        resolve = default_resolver(data["default"])
    else:
        resolve = _resolve_hook(data.get("resolve"), f"{key}.resolve", pipeline)
    return FieldSpec(type=type_tag, required=required, resolve=resolve)


def parse_strip_patterns(data: Any, key: str = "stripPatterns") -> list[StripPattern]:
    """Compile a ``label: regex`` mapping, keeping declaration order."""
    if data is None:
        return []
    if not isinstance(data, Mapping):
        raise InvalidConfigError(key, data, f"{key} must map labels to regular expressions")
    patterns = []
    for label, expression in data.items():
        if not isinstance(expression, str):
            raise InvalidConfigError(f"{key}.{label}", expression)
        try:
            patterns.append(StripPattern.compile(str(label), expression))
        except (re.error, ValueError) as e:
            raise InvalidConfigError(f"{key}.{label}", expression, f"Invalid {key}.{label}: {e}", cause=e) from e
    return patterns


def parse_pipeline(
    data: Any, index: int = 0, strip_patterns: Sequence[StripPattern] = ()
) -> PipelineConfig:
    """Validate one pipeline declaration.

    Raises:
        ConfigError: missing/unknown keys or values of the wrong shape.
    """
    if not isinstance(data, Mapping):
        raise InvalidConfigError(f"pipelines[{index}]", data)

    type_name = data.get("type")
    if not isinstance(type_name, str) or not type_name.strip():
        raise MissingConfigError(f"pipelines[{index}].type")
    if type_name in (".", "..") or "/" in type_name or "\\" in type_name:
        # The type names the output directory.
        raise InvalidConfigError(
            f"pipelines[{index}].type", type_name,
            f"Pipeline type '{type_name}' cannot be used as a directory name",
        ).with_context(pipeline=type_name)
    unknown = set(data) - PIPELINE_KEYS
    if unknown:
        raise InvalidConfigError(
            type_name, data, f"Pipeline '{type_name}': unknown keys {sorted(unknown)}"
        ).with_context(pipeline=type_name)

    pattern = data.get("pattern")
    if isinstance(pattern, str):
        pattern = [pattern]
    if (
        not isinstance(pattern, (list, tuple))
        or not pattern
        or not all(isinstance(p, str) and p for p in pattern)
    ):
        raise InvalidConfigError(
            "pattern", data.get("pattern"),
            f"Pipeline '{type_name}': pattern must be a glob or a list of globs",
        ).with_context(pipeline=type_name)

    processor = data.get("processor")
    if processor is None:
        raise MissingConfigError("processor", f"Pipeline '{type_name}': processor is required").with_context(
            pipeline=type_name
        )
    if not isinstance(processor, str) and not callable(processor):
        raise InvalidConfigError("processor", processor).with_context(pipeline=type_name)

    root = data.get("root", ".")
    if not isinstance(root, str):
        raise InvalidConfigError("root", root).with_context(pipeline=type_name)

    try:
        own_patterns = parse_strip_patterns(data.get("stripPatterns"))
    except InvalidConfigError as e:
        raise e.with_context(pipeline=type_name)

    raw_fields = data.get("fields") or {}
    if not isinstance(raw_fields, Mapping):
        raise InvalidConfigError("fields", raw_fields).with_context(pipeline=type_name)

    return PipelineConfig(
        type=type_name,
        pattern=list(pattern),
        processor=processor,
        fields={str(name): parse_field(str(name), spec, type_name) for name, spec in raw_fields.items()},
        transform=_resolve_hook(data.get("transform"), "transform", type_name),
        sort=_resolve_hook(data.get("sort"), "sort", type_name),
        root=root,
        strip_patterns=[*own_patterns, *strip_patterns],
    )


def config_from_dict(
    data: Mapping[str, Any],
    base_dir: str | Path = ".",
    registry: ProcessorRegistry | None = None,
) -> ContentedConfig:
    """Build a ContentedConfig from an already-parsed mapping."""
    if not isinstance(data, Mapping):
        raise ConfigError("Configuration must be a mapping")

    section = data.get("processor", data)
    if not isinstance(section, Mapping):
        raise InvalidConfigError("processor", section)

    pipelines_data = section.get("pipelines")
    if pipelines_data is None:
        raise MissingConfigError("pipelines")
    if not isinstance(pipelines_data, list):
        raise InvalidConfigError("pipelines", pipelines_data)

    registry = registry or ProcessorRegistry()
    plugins = section.get("plugins") or {}
    if not isinstance(plugins, Mapping):
        raise InvalidConfigError("plugins", plugins)
    for name, ref in plugins.items():
        if callable(ref):
            registry.register(str(name), ref)
        elif isinstance(ref, str):
            registry.register_ref(str(name), ref)
        else:
            raise InvalidConfigError(f"plugins.{name}", ref)

    strip_patterns = parse_strip_patterns(section.get("stripPatterns"))
    pipelines = [parse_pipeline(item, i, strip_patterns) for i, item in enumerate(pipelines_data)]
    seen: set[str] = set()
    for pipeline in pipelines:
        if pipeline.type in seen:
            raise ConfigError(f"Duplicate pipeline type '{pipeline.type}'").with_context(pipeline=pipeline.type)
        seen.add(pipeline.type)

    base_dir = Path(base_dir)
    root_dir = (base_dir / str(data.get("rootDir", "."))).resolve()
    out_dir = (base_dir / str(data.get("outDir", ".contented"))).resolve()

    logger.debug("config_loaded", pipelines=[p.type for p in pipelines], root_dir=str(root_dir))
    return ContentedConfig(root_dir=root_dir, out_dir=out_dir, pipelines=pipelines, registry=registry)


def load_config(path: str | Path, registry: ProcessorRegistry | None = None) -> ContentedConfig:
    """Load configuration from a YAML file.

    Relative ``rootDir``/``outDir``/pipeline roots resolve against the
    file's directory.

    Raises:
        ConfigError: unreadable file, invalid YAML, or malformed pipelines.
    """
    path = Path(path)
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"Unable to read configuration {path}: {e}", cause=e) from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}", cause=e) from e

    return config_from_dict(data or {}, base_dir=path.parent, registry=registry)
