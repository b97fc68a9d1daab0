"""
Shared pytest fixtures for contented tests.

This module provides:
- A small docs tree with ordering-marker directories
- Builders for pipeline configs and coordinators
- A fast-polling settings object for watch tests
"""

from __future__ import annotations

import textwrap
from pathlib import Path

import pytest

from contented.core.settings import ContentedSettings
from contented.execution.coordinator import RebuildCoordinator
from contented.execution.store import IndexStore
from contented.framework.pipeline import PipelineConfig


def write(root: Path, relative: str, text: str) -> Path:
    """Write a dedented file under ``root``, creating parent directories."""
    path = root / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(textwrap.dedent(text).lstrip("\n"), encoding="utf-8")
    return path


@pytest.fixture
def site(tmp_path: Path) -> Path:
    """A site root with a ``docs`` pipeline root.

    docs/
      index.md               → /
      01-guide/index.md      → /guide
      01-guide/(2)-intro.md  → /guide/intro
      [3]notes.md            → /notes
    """
    docs = tmp_path / "docs"
    write(docs, "index.md", """
        ---
        title: Home
        ---
        # Welcome
    """)
    write(docs, "01-guide/index.md", """
        ---
        title: Guide
        description: How to use it
        ---
        Start here.
    """)
    write(docs, "01-guide/(2)-intro.md", """
        # Introduction

        Some text.
    """)
    write(docs, "[3]notes.md", """
        ---
        title: Notes
        ---
        Notes body.
    """)
    return tmp_path


@pytest.fixture
def settings() -> ContentedSettings:
    return ContentedSettings(max_concurrency=4, poll_interval=0.05, debounce=0.01)


@pytest.fixture
def store(tmp_path: Path) -> IndexStore:
    return IndexStore(tmp_path / "out")


@pytest.fixture
def doc_pipeline() -> PipelineConfig:
    return PipelineConfig(type="Doc", pattern="**/*.md", processor="md", root="docs")


@pytest.fixture
def make_coordinator(site: Path, store: IndexStore, settings: ContentedSettings):
    """Factory: ``make_coordinator(**pipeline_overrides)``."""

    def _make(**overrides) -> RebuildCoordinator:
        options = {"type": "Doc", "pattern": "**/*.md", "processor": "md", "root": "docs"}
        options.update(overrides)
        return RebuildCoordinator(
            PipelineConfig(**options), root_dir=site, store=store, settings=settings
        )

    return _make


@pytest.fixture
def write_file():
    """The ``write(root, relative, text)`` helper as a fixture."""
    return write
