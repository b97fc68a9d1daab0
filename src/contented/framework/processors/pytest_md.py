"""Built-in ``pytest-md`` processor: documentation written as test docstrings.

A test module's docstring introduces the page; every ``Test*`` class and
``test_*`` function contributes a section headed by its name with its
docstring as body. Modules without any docstring are skipped.
"""

from __future__ import annotations

import ast
import inspect
from pathlib import Path

from contented.core.errors import ContentParseError
from contented.framework.models import FileContent, FileIndex
from contented.framework.pipeline import ContentedPipeline


def _test_name(name: str) -> str:
    return name.removeprefix("test_").replace("_", " ").strip() or name


def _sections(body: list[ast.stmt], depth: int) -> list[str]:
    parts: list[str] = []
    for node in body:
        if isinstance(node, ast.ClassDef) and node.name.startswith("Test"):
            docstring = ast.get_docstring(node)
            nested = _sections(node.body, depth + 1)
            if docstring or nested:
                parts.append(f"{'#' * depth} {node.name}")
                if docstring:
                    parts.append(inspect.cleandoc(docstring))
                parts.extend(nested)
        elif isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)) and node.name.startswith("test"):
            docstring = ast.get_docstring(node)
            if docstring:
                parts.append(f"{'#' * depth} {_test_name(node.name)}")
                parts.append(inspect.cleandoc(docstring))
    return parts


class PytestMarkdownPipeline(ContentedPipeline):
    """One record per documented pytest module."""

    async def process_file_index(
        self, file_index: FileIndex, root_path: Path, file: str
    ) -> list[FileContent] | None:
        source = await self.read_text(root_path, file)
        try:
            tree = ast.parse(source, filename=file)
        except SyntaxError as e:
            raise ContentParseError(file, f"{file} is not valid Python: {e}", cause=e) from e

        module_doc = ast.get_docstring(tree)
        sections = _sections(tree.body, depth=2)
        if not module_doc and not sections:
            return None

        fields = {}
        parts: list[str] = []
        if module_doc:
            lines = inspect.cleandoc(module_doc).splitlines()
            fields["title"] = lines[0].strip()
            rest = "\n".join(lines[1:]).strip()
            if rest:
                fields["description"] = rest.split("\n\n", 1)[0].replace("\n", " ")
                parts.append(rest)
        parts.extend(sections)

        return [
            FileContent.from_index(
                file_index,
                fields=fields,
                content="\n\n".join(parts),
                data={"language": "python"},
            )
        ]
