"""Multi-pipeline runner.

Manifesto:
    Pipelines are independent. Each gets its own coordinator; they build
    and watch concurrently. A pipeline whose processor cannot be resolved,
    or whose build fails outright, is reported and left out without
    touching its siblings. The manifest is rewritten after every commit.

Tags:
    contented, execution, runner, lifecycle

Doc-Types:
    api-reference
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

from contented.core.errors import ContentedError
from contented.core.logging import get_logger
from contented.core.settings import ContentedSettings
from contented.execution.coordinator import BuildResult, RebuildCoordinator
from contented.execution.store import IndexStore
from contented.framework.config import ContentedConfig

log = get_logger(__name__)


@dataclass
class RunReport:
    """Per-pipeline results of starting every configured pipeline."""

    results: dict[str, BuildResult] = field(default_factory=dict)
    failures: dict[str, ContentedError] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failures and all(r.ok for r in self.results.values())


class ContentRunner:
    """
    Runs every pipeline of a loaded configuration.

    ``build()`` performs one full build per pipeline and writes the
    manifest. ``watch()`` builds, then keeps every started pipeline
    watching until ``stop()`` or cancellation.
    """

    def __init__(self, config: ContentedConfig, settings: ContentedSettings | None = None):
        self.config = config
        self.settings = settings or ContentedSettings()
        self.store = IndexStore(config.out_dir)
        self.coordinators: dict[str, RebuildCoordinator] = {
            pipeline.type: RebuildCoordinator(
                pipeline,
                root_dir=config.root_dir,
                store=self.store,
                registry=config.registry,
                settings=self.settings,
                on_commit=self._on_commit,
            )
            for pipeline in config.pipelines
        }
        self._counts: dict[str, int] = {}

    async def build(self) -> RunReport:
        log.info("runner.start", pipelines=list(self.coordinators))
        outcomes = await asyncio.gather(
            *[self._start(c) for c in self.coordinators.values()]
        )

        report = RunReport()
        for type_name, outcome in zip(self.coordinators, outcomes):
            if isinstance(outcome, ContentedError):
                report.failures[type_name] = outcome
            else:
                report.results[type_name] = outcome

        self._counts = {t: r.records for t, r in report.results.items()}
        await asyncio.to_thread(self.store.write_manifest, dict(self._counts))
        log.info(
            "runner.completed",
            pipelines=len(report.results),
            failed=sorted(report.failures),
            errors=sum(len(r.errors) for r in report.results.values()),
        )
        return report

    async def watch(self) -> RunReport:
        report = await self.build()
        started = [self.coordinators[t] for t in report.results]
        if not started:
            log.warning("runner.nothing_to_watch")
            return report
        await asyncio.gather(*[c.watch() for c in started])
        return report

    def stop(self) -> None:
        for coordinator in self.coordinators.values():
            coordinator.stop()

    async def _start(self, coordinator: RebuildCoordinator) -> BuildResult | ContentedError:
        try:
            return await coordinator.start()
        except ContentedError as e:
            return e.with_context(pipeline=coordinator.type)
        except Exception as e:
            return ContentedError(
                f"Pipeline '{coordinator.type}' failed to build: {e}", cause=e
            ).with_context(pipeline=coordinator.type)

    async def _on_commit(self, coordinator: RebuildCoordinator, result: BuildResult) -> None:
        # Full builds are written together by build() once every pipeline has started.
        if result.kind == "full":
            return
        self._counts[coordinator.type] = result.records
        await asyncio.to_thread(self.store.write_manifest, dict(self._counts))
