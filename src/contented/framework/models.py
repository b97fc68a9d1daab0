"""Content records produced by pipelines.

``FileIndex`` is the identity/location of one source file; ``FileContent``
adds the extracted body. Both serialize to the keys the presentation layer
reads (``modifiedDate`` in epoch milliseconds).
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field, fields, replace
from typing import Any


@dataclass
class FileIndex:
    """Identity and location record for one source file."""

    id: str
    type: str
    path: str
    file: str
    modified_date: int
    sections: list[str] = field(default_factory=list)
    fields: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "path": self.path,
            "file": self.file,
            "modifiedDate": self.modified_date,
            "sections": list(self.sections),
            "fields": dict(self.fields),
        }


@dataclass
class FileContent(FileIndex):
    """A FileIndex plus extracted body; the unit persisted in the index."""

    content: str = ""
    data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_index(cls, index: FileIndex, **kwargs: Any) -> FileContent:
        """Start a content record from a FileIndex (copies mutable members)."""
        base = {f.name: copy.deepcopy(getattr(index, f.name)) for f in fields(FileIndex)}
        base.update(kwargs)
        return cls(**base)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FileContent:
        return cls(
            id=data["id"],
            type=data["type"],
            path=data["path"],
            file=data["file"],
            modified_date=data["modifiedDate"],
            sections=list(data.get("sections", [])),
            fields=dict(data.get("fields", {})),
            content=data.get("content", ""),
            data=dict(data.get("data", {})),
        )

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["content"] = self.content
        result["data"] = dict(self.data)
        return result

    def copy(self, **changes: Any) -> FileContent:
        """Deep copy, so hooks never observe or share another record's state."""
        return replace(copy.deepcopy(self), **changes)
