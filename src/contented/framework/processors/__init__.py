"""Built-in processors."""

from contented.framework.processors.markdown import MarkdownPipeline
from contented.framework.processors.pytest_md import PytestMarkdownPipeline

BUILTIN_PROCESSORS = {
    "md": MarkdownPipeline,
    "pytest-md": PytestMarkdownPipeline,
}

__all__ = [
    "BUILTIN_PROCESSORS",
    "MarkdownPipeline",
    "PytestMarkdownPipeline",
]
