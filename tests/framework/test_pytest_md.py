"""Tests for the built-in ``pytest-md`` processor."""

import pytest

from contented.core.errors import ContentParseError
from contented.framework.pipeline import PipelineConfig
from contented.framework.processors.pytest_md import PytestMarkdownPipeline

DOCUMENTED = '''
"""Configuration loading

How contented reads its YAML file.

Relative paths resolve against the file.
"""


class TestPipelines:
    """Each entry declares one pipeline."""

    def test_type_is_required(self):
        """A pipeline without a type is rejected."""

    def test_helper(self):
        pass


async def test_async_loading():
    """Loading never blocks."""


def helper():
    """Not a test."""
'''


@pytest.fixture
def processor(tmp_path):
    config = PipelineConfig(type="Spec", pattern="**/test_*.py", processor="pytest-md")
    return PytestMarkdownPipeline(tmp_path, config)


class TestPytestMarkdownPipeline:
    @pytest.mark.asyncio
    async def test_documented_module(self, tmp_path, processor, write_file):
        write_file(tmp_path, "config/test_loading.py", DOCUMENTED)

        [record] = await processor.process(tmp_path, "config/test_loading.py")

        assert record.path == "/config/test-loading"
        assert record.fields == {
            "title": "Configuration loading",
            "description": "How contented reads its YAML file.",
        }
        assert record.data == {"language": "python"}
        assert record.content == (
            "How contented reads its YAML file.\n\n"
            "Relative paths resolve against the file.\n\n"
            "## TestPipelines\n\n"
            "Each entry declares one pipeline.\n\n"
            "### type is required\n\n"
            "A pipeline without a type is rejected.\n\n"
            "## async loading\n\n"
            "Loading never blocks."
        )

    @pytest.mark.asyncio
    async def test_undocumented_module_is_skipped(self, tmp_path, processor, write_file):
        write_file(tmp_path, "test_plain.py", "def test_x():\n    assert True\n")

        assert await processor.process(tmp_path, "test_plain.py") == []

    @pytest.mark.asyncio
    async def test_syntax_error(self, tmp_path, processor, write_file):
        write_file(tmp_path, "test_broken.py", "def test_x(:\n")

        with pytest.raises(ContentParseError, match="not valid Python"):
            await processor.process(tmp_path, "test_broken.py")
