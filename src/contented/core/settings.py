"""Process-level settings for contented.

Pipeline declarations live in the YAML config file; everything about *how*
the process runs (where output goes, how many files are read at once, how
often the watcher polls) comes from ``CONTENTED_*`` environment variables or
a ``.env`` file.

Examples:
    >>> settings = ContentedSettings(out_dir=".build")
    >>> settings.max_concurrency
    16

Tags:
    settings, configuration, pydantic, environment, contented
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ContentedSettings(BaseSettings):
    """Runtime settings.

    Fields
    ──────
    config_file     : YAML file declaring pipelines
    root_dir        : Overrides the config file's rootDir
    out_dir         : Overrides the config file's outDir
    max_concurrency : Files processed at once per build batch
    poll_interval   : Seconds between watcher snapshots
    debounce        : Coalescing window after the first change event
    log_level       : Structlog log level
    json_logs       : Force JSON (True) or console (False) logs; None = auto
    """

    model_config = SettingsConfigDict(
        env_prefix="CONTENTED_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Inputs ───────────────────────────────────────────────────
    config_file: Path = Path("contented.yaml")
    root_dir: Path | None = None

    # ── Output ───────────────────────────────────────────────────
    out_dir: Path | None = None

    # ── Execution ────────────────────────────────────────────────
    max_concurrency: int = Field(default=16, ge=1)
    poll_interval: float = Field(default=0.5, gt=0)
    debounce: float = Field(default=0.1, ge=0)

    # ── Observability ────────────────────────────────────────────
    log_level: str = "INFO"
    json_logs: bool | None = None


def get_settings(**overrides) -> ContentedSettings:
    """Build settings from the environment, with explicit overrides on top."""
    return ContentedSettings(**{k: v for k, v in overrides.items() if v is not None})
