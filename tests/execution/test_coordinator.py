"""
Tests for RebuildCoordinator: full builds, incremental rebuilds, watching.

Tests cover:
- Full build output, ordering and idempotence
- Processor resolution failures scoped to one pipeline
- Incremental modify / delete / rename propagation
- Skip-and-report error policy and path collisions
- Single-flight builds and collision losers retried after a delete
- Event coalescing and the watch loop
"""

from __future__ import annotations

import asyncio
import json
import os

import pytest

from contented.core.errors import (
    ContentParseError,
    FieldValidationError,
    PathCollisionError,
    ProcessorResolutionError,
    SortError,
)
from contented.execution.coordinator import (
    PipelineState,
    RebuildCoordinator,
    WatchState,
    coalesce_kind,
)
from contented.execution.watcher import ChangeEvent, ChangeKind
from contented.framework.fields import FieldSpec
from contented.framework.processors import MarkdownPipeline


def _paths(coordinator) -> list[str]:
    return sorted(record.path for record in coordinator.index)


def _persisted(coordinator) -> list[dict]:
    return json.loads(coordinator.store.index_path(coordinator.type).read_text(encoding="utf-8"))


async def _eventually(predicate, timeout: float = 3.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.02)


def by_order(a, b) -> int:
    return a.fields.get("order", 0) - b.fields.get("order", 0)


class TestCoalesceKind:
    @pytest.mark.parametrize(
        ("previous", "new", "expected"),
        [
            (None, ChangeKind.MODIFIED, ChangeKind.MODIFIED),
            (ChangeKind.CREATED, ChangeKind.MODIFIED, ChangeKind.CREATED),
            (ChangeKind.DELETED, ChangeKind.CREATED, ChangeKind.MODIFIED),
            (ChangeKind.MODIFIED, ChangeKind.DELETED, ChangeKind.DELETED),
            (ChangeKind.CREATED, ChangeKind.DELETED, ChangeKind.DELETED),
        ],
    )
    def test_coalesce(self, previous, new, expected):
        assert coalesce_kind(previous, new) == expected

    def test_watch_state_drain(self):
        state = WatchState()
        state.coalesce([ChangeEvent(ChangeKind.CREATED, "b.md"), ChangeEvent(ChangeKind.DELETED, "a.md")])
        state.coalesce([ChangeEvent(ChangeKind.MODIFIED, "b.md")])

        assert state.drain() == [
            ChangeEvent(ChangeKind.DELETED, "a.md"),
            ChangeEvent(ChangeKind.CREATED, "b.md"),
        ]
        assert state.pending == {}


class TestStart:
    @pytest.mark.asyncio
    async def test_full_build(self, make_coordinator):
        coordinator = make_coordinator()

        result = await coordinator.start()

        assert result.ok
        assert result.kind == "full"
        assert result.records == 4
        assert _paths(coordinator) == ["/", "/guide", "/guide/intro", "/notes"]
        assert len(_persisted(coordinator)) == 4
        assert coordinator.state == PipelineState.IDLE

    @pytest.mark.asyncio
    async def test_unknown_processor(self, make_coordinator):
        coordinator = make_coordinator(processor="rst")

        with pytest.raises(ProcessorResolutionError) as exc_info:
            await coordinator.start()

        assert exc_info.value.context.pipeline == "Doc"
        assert coordinator.state == PipelineState.FAILED
        assert not coordinator.store.index_path("Doc").exists()

    @pytest.mark.asyncio
    async def test_init_failure(self, make_coordinator):
        class Broken(MarkdownPipeline):
            async def init(self):
                raise RuntimeError("no connection")

        coordinator = make_coordinator(processor=Broken)

        with pytest.raises(ProcessorResolutionError, match="failed to initialize"):
            await coordinator.start()
        assert coordinator.state == PipelineState.FAILED

    @pytest.mark.asyncio
    async def test_init_runs_once_before_processing(self, make_coordinator):
        calls = []

        class Tracking(MarkdownPipeline):
            async def init(self):
                calls.append("init")

            async def process_file_index(self, file_index, root_path, file):
                calls.append(file)
                return await super().process_file_index(file_index, root_path, file)

        coordinator = make_coordinator(processor=Tracking)
        await coordinator.start()
        await coordinator.build()

        assert calls[0] == "init"
        assert calls.count("init") == 1

    @pytest.mark.asyncio
    async def test_watch_requires_start(self, make_coordinator):
        with pytest.raises(RuntimeError):
            await make_coordinator().watch()


class TestOrdering:
    @pytest.mark.asyncio
    async def test_comparator_order_is_persisted(self, make_coordinator, site, write_file):
        docs = site / "docs"
        write_file(docs, "b.md", "---\ntitle: B\norder: 1\n---\n")
        write_file(docs, "a.md", "---\ntitle: A\norder: 1\n---\n")
        write_file(docs, "c.md", "---\ntitle: C\norder: -1\n---\n")
        coordinator = make_coordinator(sort=by_order)

        await coordinator.start()

        titles = [item["fields"]["title"] for item in _persisted(coordinator)]
        # order -1 first; ties keep discovery order (sorted by file name)
        assert titles[0] == "C"
        assert titles.index("A") < titles.index("B")

    @pytest.mark.asyncio
    async def test_full_resort_after_incremental(self, make_coordinator, site, write_file):
        docs = site / "docs"
        write_file(docs, "a.md", "---\ntitle: A\norder: 1\n---\n")
        write_file(docs, "b.md", "---\ntitle: B\norder: 2\n---\n")
        coordinator = make_coordinator(sort=by_order, pattern=["a.md", "b.md"])
        await coordinator.start()

        write_file(docs, "b.md", "---\ntitle: B\norder: 0\n---\n")
        await coordinator.rebuild([ChangeEvent(ChangeKind.MODIFIED, "b.md")])

        assert [item["fields"]["title"] for item in _persisted(coordinator)] == ["B", "A"]

    @pytest.mark.asyncio
    async def test_build_is_idempotent(self, make_coordinator):
        coordinator = make_coordinator()
        await coordinator.start()
        first = coordinator.store.index_path("Doc").read_text(encoding="utf-8")

        await coordinator.build()

        assert coordinator.store.index_path("Doc").read_text(encoding="utf-8") == first


class TestIncremental:
    @pytest.mark.asyncio
    async def test_modify(self, make_coordinator, site, write_file):
        coordinator = make_coordinator()
        await coordinator.start()

        write_file(site / "docs", "[3]notes.md", "---\ntitle: Updated\n---\n")
        result = await coordinator.rebuild([ChangeEvent(ChangeKind.MODIFIED, "[3]notes.md")])

        assert result.kind == "incremental"
        assert result.processed == 1
        notes = [r for r in coordinator.index if r.path == "/notes"]
        assert notes[0].fields["title"] == "Updated"
        assert len(coordinator.index) == 4

    @pytest.mark.asyncio
    async def test_delete(self, make_coordinator, site):
        coordinator = make_coordinator()
        await coordinator.start()

        (site / "docs" / "[3]notes.md").unlink()
        result = await coordinator.rebuild([ChangeEvent(ChangeKind.DELETED, "[3]notes.md")])

        assert result.removed == 1
        assert "/notes" not in _paths(coordinator)
        assert "/notes" not in [item["path"] for item in _persisted(coordinator)]

    @pytest.mark.asyncio
    async def test_rename(self, make_coordinator, site):
        coordinator = make_coordinator()
        await coordinator.start()
        old_ids = {r.id for r in coordinator.index if r.path == "/notes"}

        docs = site / "docs"
        os.rename(docs / "[3]notes.md", docs / "(1)-notes.md")
        await coordinator.rebuild(
            [
                ChangeEvent(ChangeKind.DELETED, "[3]notes.md"),
                ChangeEvent(ChangeKind.CREATED, "(1)-notes.md"),
            ]
        )

        renamed = [r for r in coordinator.index if r.path == "/notes"]
        assert len(renamed) == 1
        assert renamed[0].file == "(1)-notes.md"
        assert renamed[0].id not in old_ids

    @pytest.mark.asyncio
    async def test_vanished_file_is_removed(self, make_coordinator, site):
        coordinator = make_coordinator()
        await coordinator.start()

        (site / "docs" / "[3]notes.md").unlink()
        result = await coordinator.rebuild([ChangeEvent(ChangeKind.MODIFIED, "[3]notes.md")])

        assert result.ok
        assert "/notes" not in _paths(coordinator)


class TestErrorPolicy:
    @pytest.mark.asyncio
    async def test_failing_file_is_absent_from_full_build(self, make_coordinator, site, write_file):
        write_file(site / "docs", "broken.md", "---\ntitle: [\n---\n")
        coordinator = make_coordinator()

        result = await coordinator.start()

        assert not result.ok
        [error] = result.errors
        assert error.file == "broken.md"
        assert isinstance(error.error, ContentParseError)
        assert error.error.context.pipeline == "Doc"
        assert _paths(coordinator) == ["/", "/guide", "/guide/intro", "/notes"]

    @pytest.mark.asyncio
    async def test_failing_edit_keeps_previous_records(self, make_coordinator, site, write_file):
        coordinator = make_coordinator()
        await coordinator.start()

        write_file(site / "docs", "[3]notes.md", "---\ntitle: [\n---\n")
        result = await coordinator.rebuild([ChangeEvent(ChangeKind.MODIFIED, "[3]notes.md")])

        assert len(result.errors) == 1
        notes = [r for r in coordinator.index if r.path == "/notes"]
        assert notes[0].fields["title"] == "Notes"

    @pytest.mark.asyncio
    async def test_required_field_failure(self, make_coordinator, site, write_file):
        write_file(site / "docs", "untitled.md", "No heading here.\n")
        coordinator = make_coordinator(fields={"title": FieldSpec(required=True)})

        result = await coordinator.start()

        [error] = result.errors
        assert isinstance(error.error, FieldValidationError)
        assert error.error.field == "title"
        assert "/untitled" not in _paths(coordinator)

    @pytest.mark.asyncio
    async def test_path_collision(self, make_coordinator, site, write_file):
        write_file(site / "docs", "guide.md", "---\ntitle: Other guide\n---\n")
        coordinator = make_coordinator()

        result = await coordinator.start()

        [error] = result.errors
        assert isinstance(error.error, PathCollisionError)
        assert error.file == "guide.md"
        guide = [r for r in coordinator.index if r.path == "/guide"]
        assert [r.file for r in guide] == ["01-guide/index.md"]

    @pytest.mark.asyncio
    async def test_collision_loser_takes_path_once_owner_is_deleted(
        self, make_coordinator, site, write_file
    ):
        write_file(site / "docs", "guide.md", "---\ntitle: Other guide\n---\n")
        coordinator = make_coordinator()
        await coordinator.start()
        assert coordinator.watch_state.rejected == {"guide.md"}

        (site / "docs" / "01-guide" / "index.md").unlink()
        result = await coordinator.rebuild([ChangeEvent(ChangeKind.DELETED, "01-guide/index.md")])

        assert result.ok
        assert coordinator.watch_state.rejected == set()
        assert _paths(coordinator) == ["/", "/guide", "/guide/intro", "/notes"]
        guide = [r for r in coordinator.index if r.path == "/guide"]
        assert [r.file for r in guide] == ["guide.md"]

    @pytest.mark.asyncio
    async def test_collision_loser_stays_rejected_while_owner_exists(
        self, make_coordinator, site, write_file
    ):
        write_file(site / "docs", "guide.md", "---\ntitle: Other guide\n---\n")
        coordinator = make_coordinator()
        await coordinator.start()

        result = await coordinator.rebuild([ChangeEvent(ChangeKind.MODIFIED, "[3]notes.md")])

        [error] = result.errors
        assert error.file == "guide.md"
        assert coordinator.watch_state.rejected == {"guide.md"}

    @pytest.mark.asyncio
    async def test_failing_comparator_fails_the_pipeline(self, make_coordinator):
        def broken(a, b):
            raise TypeError("cannot compare")

        coordinator = make_coordinator(sort=broken)

        with pytest.raises(SortError, match="cannot compare"):
            await coordinator.start()

        assert coordinator.state == PipelineState.FAILED
        assert not coordinator.store.index_path("Doc").exists()
        assert len(coordinator.index) == 0


class TestSingleFlight:
    @pytest.mark.asyncio
    async def test_overlapping_rebuilds_keep_both_changes(self, make_coordinator, site, write_file):
        coordinator = make_coordinator()
        await coordinator.start()

        write_file(site / "docs", "a.md", "# A\n")
        write_file(site / "docs", "b.md", "# B\n")
        await asyncio.gather(
            coordinator.rebuild([ChangeEvent(ChangeKind.CREATED, "a.md")]),
            coordinator.rebuild([ChangeEvent(ChangeKind.CREATED, "b.md")]),
        )

        expected = ["/", "/a", "/b", "/guide", "/guide/intro", "/notes"]
        assert _paths(coordinator) == expected
        assert sorted(item["path"] for item in _persisted(coordinator)) == expected
        assert not coordinator.watch_state.in_flight

    @pytest.mark.asyncio
    async def test_rebuild_during_full_build_waits_for_it(self, make_coordinator, site, write_file):
        coordinator = make_coordinator()
        await coordinator.start()

        write_file(site / "docs", "a.md", "# A\n")
        await asyncio.gather(
            coordinator.build(),
            coordinator.rebuild([ChangeEvent(ChangeKind.CREATED, "a.md")]),
        )

        assert "/a" in _paths(coordinator)
        assert coordinator.watch_state.builds == 3

    @pytest.mark.asyncio
    async def test_commit_hook_sees_every_commit(self, site, store, settings, doc_pipeline):
        seen = []

        async def on_commit(coordinator, result):
            seen.append((coordinator.type, result.kind, result.records))

        coordinator = RebuildCoordinator(
            doc_pipeline, root_dir=site, store=store, settings=settings, on_commit=on_commit
        )
        await coordinator.start()
        (site / "docs" / "[3]notes.md").unlink()
        await coordinator.rebuild([ChangeEvent(ChangeKind.DELETED, "[3]notes.md")])

        assert seen == [("Doc", "full", 4), ("Doc", "incremental", 3)]


class TestWatch:
    @pytest.mark.asyncio
    async def test_changes_are_picked_up(self, make_coordinator, site, write_file):
        coordinator = make_coordinator()
        await coordinator.start()
        task = asyncio.create_task(coordinator.watch())
        await _eventually(lambda: coordinator.state == PipelineState.WATCHING)

        write_file(site / "docs", "new.md", "# Brand new\n")
        await _eventually(lambda: "/new" in _paths(coordinator))

        (site / "docs" / "new.md").unlink()
        await _eventually(lambda: "/new" not in _paths(coordinator))

        coordinator.stop()
        await asyncio.wait_for(task, timeout=2)
        assert coordinator.state == PipelineState.STOPPED

    @pytest.mark.asyncio
    async def test_notify_triggers_rebuild(self, make_coordinator, site, write_file):
        coordinator = make_coordinator()
        await coordinator.start()
        task = asyncio.create_task(coordinator.watch())

        write_file(site / "docs", "[3]notes.md", "---\ntitle: Notified\n---\n")
        coordinator.notify([ChangeEvent(ChangeKind.MODIFIED, "[3]notes.md")])
        await _eventually(
            lambda: any(r.fields.get("title") == "Notified" for r in coordinator.index)
        )

        coordinator.stop()
        await asyncio.wait_for(task, timeout=2)
