"""Built-in ``md`` processor: YAML front matter + markdown body.

Rendering markdown to HTML is left to the presentation layer; this
processor only separates front matter from body and records the heading
outline.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any

import yaml

from contented.core.errors import ContentParseError
from contented.core.paths import slugify
from contented.framework.models import FileContent, FileIndex
from contented.framework.pipeline import ContentedPipeline

FRONT_MATTER_RE = re.compile(
    r"\A---[ \t]*\r?\n(?:(.*?)\r?\n)??(?:---|\.\.\.)[ \t]*(?:\r?\n|\Z)", re.DOTALL
)
HEADING_RE = re.compile(r"^(#{1,6})[ \t]+(.+?)(?:[ \t]+#+)?[ \t]*$")
FENCE_RE = re.compile(r"^[ \t]*(```|~~~)")


def split_front_matter(text: str, file: str) -> tuple[dict[str, Any], str]:
    """Return ``(front matter mapping, body)``.

    Raises:
        ContentParseError: front matter is not valid YAML or not a mapping.
    """
    matched = FRONT_MATTER_RE.match(text)
    if matched is None:
        return {}, text

    try:
        data = yaml.safe_load(matched.group(1) or "")
    except yaml.YAMLError as e:
        raise ContentParseError(file, f"Invalid front matter in {file}: {e}", cause=e) from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ContentParseError(file, f"Front matter in {file} must be a mapping")
    return {str(k): v for k, v in data.items()}, text[matched.end():]


def extract_headings(body: str) -> list[dict[str, Any]]:
    """ATX headings outside fenced code, with unique slug ids."""
    headings: list[dict[str, Any]] = []
    used: dict[str, int] = {}
    fence: str | None = None

    for line in body.splitlines():
        fence_match = FENCE_RE.match(line)
        if fence_match:
            marker = fence_match.group(1)
            if fence is None:
                fence = marker
            elif fence == marker:
                fence = None
            continue
        if fence is not None:
            continue

        matched = HEADING_RE.match(line)
        if matched is None:
            continue
        title = matched.group(2).strip()
        base = slugify(title) or "section"
        count = used.get(base, 0)
        used[base] = count + 1
        headings.append(
            {
                "depth": len(matched.group(1)),
                "title": title,
                "id": base if count == 0 else f"{base}-{count}",
            }
        )
    return headings


class MarkdownPipeline(ContentedPipeline):
    """One record per markdown file.

    Front matter keys become raw fields. ``title`` falls back to the first
    level-1 heading. Files with ``draft: true`` are skipped.
    """

    async def process_file_index(
        self, file_index: FileIndex, root_path: Path, file: str
    ) -> list[FileContent] | None:
        text = await self.read_text(root_path, file)
        front_matter, body = split_front_matter(text, file)
        if front_matter.get("draft") is True:
            return None

        headings = extract_headings(body)
        if front_matter.get("title") is None:
            h1 = next((h for h in headings if h["depth"] == 1), None)
            if h1 is not None:
                front_matter["title"] = h1["title"]

        return [
            FileContent.from_index(
                file_index,
                fields=front_matter,
                content=body.strip("\n"),
                data={"headings": headings},
            )
        ]
