"""
Deterministic hashing for content addressing.

A record's id is bound to its location, not its body: the SHA-256 of the
source file's absolute path. Editing a file never changes its id; moving or
renaming it always does, which is what lets the rebuild coordinator treat a
rename as delete + create.

Examples:
    >>> compute_file_id("/site/docs/index.md") == compute_file_id("/site/docs/index.md")
    True
    >>> len(compute_file_id("/site/docs/index.md"))
    64

Tags:
    hashing, content-addressing, idempotency, contented
"""

import hashlib
import os
from pathlib import Path
from typing import Any


def compute_hash(*values: Any, length: int = 32) -> str:
    """
    Compute deterministic hash from values.

    Values are stringified and joined with '|' before SHA-256, so the hash
    is order-dependent and type-agnostic.

    Args:
        *values: Values to hash (converted to strings)
        length: Hex digest length (default 32 = 128 bits, max 64)

    Returns:
        Hex string of specified length
    """
    content = "|".join(str(v) for v in values)
    return hashlib.sha256(content.encode()).hexdigest()[:length]


def absolute_file_path(root_path: str | Path, file: str) -> str:
    """Join a pipeline root and a relative file into a normalized absolute path."""
    return os.path.abspath(os.path.join(os.fspath(root_path), file))


def compute_file_id(file_path: str | Path) -> str:
    """
    Compute the content-address of a source file.

    The full 64-char SHA-256 digest of the absolute path string. Callers pass
    an absolute path (see ``absolute_file_path``); the same path always yields
    the same id across runs and processes.
    """
    return compute_hash(os.fspath(file_path), length=64)
