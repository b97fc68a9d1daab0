"""
Tests for ContentIndex: the copy-on-write aggregate.

Tests cover:
- Upserts replacing by source-file id
- Removals
- Path collision rejection (new vs. existing, new vs. new)
"""

from contented.core.errors import PathCollisionError
from contented.execution.index import ContentIndex
from contented.framework.models import FileContent


def _record(file_id: str, path: str, file: str | None = None) -> FileContent:
    return FileContent(
        id=file_id, type="Doc", path=path, file=file or f"{file_id}.md", modified_date=0
    )


class TestContentIndex:
    def test_empty(self):
        index = ContentIndex("Doc")

        assert len(index) == 0
        assert index.records() == []

    def test_records_grouped_by_file(self):
        index = ContentIndex(
            "Doc",
            {"a": [_record("a", "/a/1"), _record("a", "/a/2")], "b": [_record("b", "/b")]},
        )

        assert len(index) == 3
        assert index.file_ids() == ["a", "b"]
        assert [r.path for r in index.get("a")] == ["/a/1", "/a/2"]
        assert index.files() == {"a.md": "a", "b.md": "b"}


class TestPatched:
    def test_original_is_untouched(self):
        index = ContentIndex("Doc", {"a": [_record("a", "/a")]})

        patched, errors = index.patched({"b": [_record("b", "/b")]})

        assert errors == []
        assert index.file_ids() == ["a"]
        assert patched.file_ids() == ["a", "b"]

    def test_upsert_replaces_all_records_of_a_file(self):
        index = ContentIndex("Doc", {"a": [_record("a", "/a/1"), _record("a", "/a/2")]})

        patched, _ = index.patched({"a": [_record("a", "/a/3")]})

        assert [r.path for r in patched] == ["/a/3"]

    def test_empty_upsert_removes(self):
        index = ContentIndex("Doc", {"a": [_record("a", "/a")]})

        patched, _ = index.patched({"a": []})

        assert "a" not in patched

    def test_removal(self):
        index = ContentIndex("Doc", {"a": [_record("a", "/a")], "b": [_record("b", "/b")]})

        patched, _ = index.patched({}, removals=["a", "missing"])

        assert patched.file_ids() == ["b"]

    def test_collision_with_existing_keeps_previous(self):
        index = ContentIndex("Doc", {"a": [_record("a", "/a")], "b": [_record("b", "/b")]})

        patched, errors = index.patched({"b": [_record("b", "/a")]})

        assert len(errors) == 1
        assert isinstance(errors[0], PathCollisionError)
        assert errors[0].path == "/a"
        assert errors[0].other_file == "a.md"
        assert [r.path for r in patched.get("b")] == ["/b"]

    def test_first_new_file_wins(self):
        index = ContentIndex("Doc")

        patched, errors = index.patched(
            {"x": [_record("x", "/guide")], "y": [_record("y", "/guide")]}
        )

        assert patched.file_ids() == ["x"]
        assert [e.file for e in errors] == ["y.md"]

    def test_path_freed_by_removal_can_be_taken(self):
        """A rename: old file removed, new file takes the same path."""
        index = ContentIndex("Doc", {"old": [_record("old", "/guide")]})

        patched, errors = index.patched({"new": [_record("new", "/guide")]}, removals=["old"])

        assert errors == []
        assert patched.file_ids() == ["new"]

    def test_path_freed_by_moving_upsert(self):
        """File a moves off /x while b moves onto it, in the same batch."""
        index = ContentIndex("Doc", {"a": [_record("a", "/x")], "b": [_record("b", "/y")]})

        patched, errors = index.patched({"a": [_record("a", "/z")], "b": [_record("b", "/x")]})

        assert errors == []
        assert sorted(r.path for r in patched) == ["/x", "/z"]

    def test_rejection_cascades(self):
        """If a's move is rejected, a keeps /x and b cannot take it."""
        index = ContentIndex(
            "Doc",
            {"a": [_record("a", "/x")], "b": [_record("b", "/y")], "c": [_record("c", "/z")]},
        )

        patched, errors = index.patched({"a": [_record("a", "/z")], "b": [_record("b", "/x")]})

        assert {e.file for e in errors} == {"a.md", "b.md"}
        assert sorted(r.path for r in patched) == ["/x", "/y", "/z"]
