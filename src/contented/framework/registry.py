"""Processor registry for resolving pipeline processors by identifier.

Manifesto:
    Processor identifiers in config are resolved through one explicit
    mapping, populated at config-load time. A name that cannot be resolved
    fails when its pipeline starts, before any file is read, and takes down
    only that pipeline.

Tags:
    contented, framework, registry, plugins, processor-discovery

Doc-Types:
    api-reference
"""

from __future__ import annotations

import importlib
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from contented.core.errors import ProcessorResolutionError
from contented.core.logging import get_logger

if TYPE_CHECKING:
    from contented.framework.pipeline import ContentedPipeline, ProcessorFactory

logger = get_logger(__name__)


def resolve_callable_ref(ref: str) -> Callable[..., Any]:
    """Import and return the callable identified by ``'module:qualname'``.

    Raises:
        ImportError: If the module cannot be found.
        AttributeError: If the qualname path is invalid.
        ValueError: If ``ref`` has no ``:`` separator.
        TypeError: If the target is not callable.
    """
    module_path, _, attr_path = ref.partition(":")
    if not module_path or not attr_path:
        raise ValueError(f"Invalid callable ref (expected 'module:attr'): {ref!r}")
    mod = importlib.import_module(module_path)
    obj: Any = mod
    for part in attr_path.split("."):
        obj = getattr(obj, part)
    if not callable(obj):
        raise TypeError(f"{ref!r} resolved to non-callable: {type(obj)}")
    return obj


class ProcessorRegistry:
    """Identifier → processor factory mapping.

    Built-in processors are registered on construction. Plugins are added
    with :meth:`register` (a factory) or :meth:`register_ref` (a
    ``module:attr`` string imported immediately). A plugin whose import
    fails is remembered, so pipelines naming it fail with the original
    cause while other pipelines are unaffected.
    """

    def __init__(self, builtins: bool = True):
        self._factories: dict[str, ProcessorFactory] = {}
        self._failures: dict[str, Exception] = {}
        if builtins:
            self._register_builtins()

    def _register_builtins(self) -> None:
        from contented.framework.processors import BUILTIN_PROCESSORS

        for name, factory in BUILTIN_PROCESSORS.items():
            self._factories[name] = factory

    def register(self, name: str, factory: ProcessorFactory) -> ProcessorFactory:
        if name in self._factories:
            raise ValueError(f"Processor '{name}' is already registered")
        if not callable(factory):
            raise TypeError(f"Processor '{name}' factory is not callable")
        self._factories[name] = factory
        self._failures.pop(name, None)
        logger.debug("processor_registered", name=name, factory=getattr(factory, "__name__", repr(factory)))
        return factory

    def register_ref(self, name: str, ref: str) -> None:
        """Register a plugin by ``module:attr`` reference, importing it now."""
        try:
            factory = resolve_callable_ref(ref)
        except Exception as e:
            self._failures[name] = e
            logger.warning("processor_plugin_failed", name=name, ref=ref, error=str(e))
            return
        self.register(name, factory)

    def resolve(self, identifier: str | ProcessorFactory) -> ProcessorFactory:
        """Return the factory for ``identifier``.

        A callable identifier (a processor class passed directly in Python
        config) is returned as-is.

        Raises:
            ProcessorResolutionError: unknown identifier or failed plugin.
        """
        if not isinstance(identifier, str):
            if callable(identifier):
                return identifier
            raise ProcessorResolutionError(repr(identifier), f"Processor {identifier!r} is not callable")

        if identifier in self._factories:
            return self._factories[identifier]

        if identifier in self._failures:
            cause = self._failures[identifier]
            raise ProcessorResolutionError(
                identifier,
                f"Processor plugin '{identifier}' failed to load: {cause}",
                cause=cause,
            ) from cause

        available = ", ".join(self.names())
        raise ProcessorResolutionError(
            identifier, f"Processor '{identifier}' not found. Available: {available}"
        )

    def create(
        self, identifier: str | ProcessorFactory, root_path: Any, pipeline: Any
    ) -> ContentedPipeline:
        """Resolve and construct a processor for one pipeline."""
        factory = self.resolve(identifier)
        try:
            return factory(root_path, pipeline)
        except Exception as e:
            name = identifier if isinstance(identifier, str) else repr(identifier)
            raise ProcessorResolutionError(
                name, f"Processor '{name}' could not be constructed: {e}", cause=e
            ) from e

    def names(self) -> list[str]:
        return sorted(self._factories)

    def __contains__(self, name: object) -> bool:
        return name in self._factories
