"""
Canonical path and slug derivation.

Maps a file path relative to a pipeline root to ``(sections, path)``:

    ``01-guide/(2)-setup/index.md``  →  sections ``["guide", "setup"]``,
                                        path ``/guide/setup``

Manifesto:
    Public URLs must survive reorganizing the source tree for ordering
    purposes. Authors prefix directories with ordering markers (``01-``,
    ``(2)``, ``[3]``, ``:4:``) so the file system sorts the way the site
    should; those markers never reach the URL.

    - **Total:** every input string has a slug (possibly empty)
    - **Idempotent:** canonicalizing a canonical segment is a no-op
    - **Extensible:** marker forms are an ordered list of patterns, not
      one hardcoded expression

Architecture:
    ::

        segment ──► strip markers (to fixpoint) ──► section name
                                                        │
                                                   slugify (".." kept)
                                                        ▼
        base name ──► strip ──► slugify ──► "index"? ──► join ──► "/" + path

Examples:
    >>> resolver = PathResolver()
    >>> resolver.compute("guide/index.md")
    (['guide'], '/guide')
    >>> resolver.compute("index.md")
    ([], '/')
    >>> slugify("Hello World & Friends")
    'hello-world-and-friends'

Tags:
    paths, slugs, url, canonicalization, contented
"""

from __future__ import annotations

import re
import unicodedata
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from pathlib import PurePosixPath

PARENT_SEGMENT = ".."
INDEX_NAME = "index"


@dataclass(frozen=True)
class StripPattern:
    """An ordering-marker pattern; the ``name`` group is what survives."""

    label: str
    pattern: re.Pattern[str]

    @classmethod
    def compile(cls, label: str, expression: str) -> StripPattern:
        compiled = re.compile(expression)
        if "name" not in compiled.groupindex:
            raise ValueError(f"Strip pattern '{label}' must define a (?P<name>...) group")
        return cls(label=label, pattern=compiled)

    def strip(self, segment: str) -> str | None:
        matched = self.pattern.match(segment)
        if matched is None:
            return None
        return matched.group("name")


DEFAULT_STRIP_PATTERNS: tuple[StripPattern, ...] = (
    StripPattern.compile("colon", r"^:\d+:[-_\s]?(?P<name>.+)$"),
    StripPattern.compile("paren", r"^\(\d+\)[-_\s]?(?P<name>.+)$"),
    StripPattern.compile("bracket", r"^\[\d+\][-_\s]?(?P<name>.+)$"),
    StripPattern.compile("dash", r"^\d+-(?P<name>.+)$"),
)

_REPLACEMENTS = (("&", " and "), ("'", ""), ("’", ""))
_CAMEL_ACRONYM = re.compile(r"([a-z\d]+)([A-Z]{2,})")
_CAMEL = re.compile(r"([a-z\d])([A-Z])")
_ACRONYM_WORD = re.compile(r"([A-Z]+)([A-Z][a-z\d]+)")
_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def slugify(text: str) -> str:
    """Convert any string into a lowercase, dash-separated, URL-safe slug.

    Transliterates to ASCII, spells out ``&``, drops apostrophes, splits
    camelCase, then collapses everything that is not ``[a-z0-9]`` into
    single dashes. Output only contains ``[a-z0-9-]`` with no leading or
    trailing dash, so re-slugifying a slug returns it unchanged.
    """
    for old, new in _REPLACEMENTS:
        text = text.replace(old, new)
    text = unicodedata.normalize("NFKD", text).encode("ascii", "ignore").decode("ascii")
    text = _CAMEL_ACRONYM.sub(r"\1 \2", text)
    text = _CAMEL.sub(r"\1 \2", text)
    text = _ACRONYM_WORD.sub(r"\1 \2", text)
    return _NON_ALNUM.sub("-", text.lower()).strip("-")


class PathResolver:
    """Derives section names and canonical paths from relative file paths.

    Args:
        strip_patterns: Ordered marker patterns; the first match wins on each
            pass and passes repeat until no pattern matches.
    """

    def __init__(self, strip_patterns: Sequence[StripPattern] = DEFAULT_STRIP_PATTERNS):
        self.strip_patterns = tuple(strip_patterns)

    def strip_marker(self, segment: str) -> str:
        if segment == PARENT_SEGMENT:
            return segment
        while True:
            for strip_pattern in self.strip_patterns:
                stripped = strip_pattern.strip(segment)
                if stripped is not None:
                    segment = stripped
                    break
            else:
                return segment

    def canonical_segment(self, segment: str) -> str:
        """Slugified, marker-free form of one directory segment or base name.

        Applied until stable: slugifying can expose a new marker
        (``"1 - guide"`` → ``"1-guide"``), which is stripped on the next pass.
        """
        if segment == PARENT_SEGMENT:
            return segment
        current = segment
        while True:
            following = slugify(self.strip_marker(current))
            if following == current:
                return current
            current = following

    def compute_sections(self, file: str) -> list[str]:
        """Marker-stripped directory names between the root and the file."""
        parent = PurePosixPath(_posix(file)).parent.as_posix()
        if parent in ("", "."):
            return []
        return [self.strip_marker(segment) for segment in parent.split("/")]

    def compute_path(self, sections: Iterable[str], file: str) -> str:
        """Canonical path for ``file`` without the leading slash.

        An ``index`` base name maps to its directory; a root ``index`` maps
        to the empty string (the pipeline root).
        """
        directory = "/".join(
            slug for slug in (self.canonical_segment(s) for s in sections) if slug
        )
        name = self.canonical_segment(PurePosixPath(_posix(file)).stem)
        if name == INDEX_NAME or not name:
            return directory
        if directory == "":
            return name
        return f"{directory}/{name}"

    def compute(self, file: str) -> tuple[list[str], str]:
        """Return ``(sections, "/" + canonical path)`` for a relative file."""
        sections = self.compute_sections(file)
        return sections, "/" + self.compute_path(sections, file)

    def sanitized_path(self, file: str) -> str:
        """Canonical path without the leading slash."""
        return self.compute_path(self.compute_sections(file), file)


def _posix(file: str) -> str:
    return file.replace("\\", "/")


__all__ = [
    "StripPattern",
    "DEFAULT_STRIP_PATTERNS",
    "PathResolver",
    "slugify",
]
