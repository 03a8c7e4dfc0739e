"""Data models for the work hierarchy.

This module contains the core data structures shared by the hierarchy
manager, the node store and the service layer: the ordered work type
enumeration and the recursive work node.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Mapping, Optional, Union

from .errors import InvalidWorkTypeError

MetadataValue = Union[str, int, float, bool, Dict[str, "MetadataValue"]]
Metadata = Dict[str, MetadataValue]


class WorkType(str, Enum):
    """Work item levels, ordered from the root of a tree downwards."""

    PRODUCT = "Product"
    VISION = "Vision"
    GOAL = "Goal"
    EPIC = "Epic"
    STORY = "Story"
    TASK = "Task"

    @property
    def depth(self) -> int:
        """0-based depth this type conventionally sits at."""
        return list(WorkType).index(self)

    def child_type(self) -> Optional["WorkType"]:
        """Type one level below this one, or None for the last level."""
        return WorkType.for_depth(self.depth + 1)

    @classmethod
    def for_depth(cls, depth: int) -> Optional["WorkType"]:
        """Type for a 0-based depth, or None when the depth is out of range."""
        members = list(cls)
        if 0 <= depth < len(members):
            return members[depth]
        return None

    @classmethod
    def from_value(cls, value: Union[str, "WorkType"]) -> "WorkType":
        """Parse a type name, raising InvalidWorkTypeError when unknown."""
        if isinstance(value, WorkType):
            return value
        try:
            return cls(value)
        except ValueError:
            raise InvalidWorkTypeError(
                f"Invalid node type '{value}'. Expected one of: {', '.join(WORK_TYPES)}"
            ) from None


WORK_TYPES: List[str] = [work_type.value for work_type in WorkType]


def validate_metadata(metadata: Any, path: str = "metadata") -> List[str]:
    """Return issues for metadata values outside str/number/bool/mapping."""
    issues: List[str] = []
    if not isinstance(metadata, Mapping):
        return [f"{path} must be a mapping, got {type(metadata).__name__}"]

    for key, value in metadata.items():
        key_path = f"{path}.{key}"
        if not isinstance(key, str):
            issues.append(f"{path} keys must be strings, got {type(key).__name__}")
        elif isinstance(value, Mapping):
            issues.extend(validate_metadata(value, key_path))
        elif not isinstance(value, (str, int, float, bool)):
            issues.append(f"{key_path} has unsupported type {type(value).__name__}")
    return issues


def copy_metadata(metadata: Optional[Mapping[str, Any]]) -> Optional[Metadata]:
    """Deep copy of a metadata mapping; None stays None."""
    if metadata is None:
        return None
    return {
        key: copy_metadata(value) if isinstance(value, Mapping) else value
        for key, value in metadata.items()
    }


@dataclass(slots=True)
class WorkNode:
    """A single work item and the subtree it owns."""

    id: str
    title: str
    team_id: str
    type: str
    parent_id: Optional[str] = None
    children: List["WorkNode"] = field(default_factory=list)
    metadata: Optional[Metadata] = None

    @property
    def is_leaf(self) -> bool:
        return not self.children

    def iter_subtree(self) -> Iterator["WorkNode"]:
        """Yield this node and all descendants in pre-order."""
        yield self
        for child in self.children:
            yield from child.iter_subtree()

    def subtree_ids(self) -> List[str]:
        return [node.id for node in self.iter_subtree()]

    def copy(self) -> "WorkNode":
        """Deep copy of this node and its subtree."""
        return WorkNode(
            id=self.id,
            title=self.title,
            team_id=self.team_id,
            type=self.type,
            parent_id=self.parent_id,
            children=[child.copy() for child in self.children],
            metadata=copy_metadata(self.metadata),
        )

    def to_record(self) -> Dict[str, Any]:
        """Flat representation without children, as kept by the node store."""
        record: Dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "teamId": self.team_id,
            "type": self.type,
            "parentId": self.parent_id,
        }
        if self.metadata is not None:
            record["metadata"] = copy_metadata(self.metadata)
        return record

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a nested dictionary representation."""
        data = self.to_record()
        data["children"] = [child.to_dict() for child in self.children]
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "WorkNode":
        """Create from a nested dictionary; accepts camelCase or snake_case keys."""
        team_id = data.get("teamId", data.get("team_id"))
        parent_id = data.get("parentId", data.get("parent_id"))
        return cls(
            id=str(data["id"]),
            title=data.get("title", ""),
            team_id=team_id or "",
            type=data.get("type", WorkType.PRODUCT.value),
            parent_id=str(parent_id) if parent_id is not None else None,
            children=[cls.from_dict(child) for child in data.get("children") or []],
            metadata=copy_metadata(data.get("metadata")),
        )

    def validate(self) -> List[str]:
        """Validate this node (not its children) and return any issues."""
        issues = []

        if not self.id:
            issues.append("Node ID is required")
        if not self.title:
            issues.append(f"Node '{self.id}' has no title")
        if not self.team_id:
            issues.append(f"Node '{self.id}' has no team")
        if self.type not in WORK_TYPES:
            issues.append(f"Node '{self.id}' has invalid type: {self.type}")
        if self.metadata is not None:
            issues.extend(
                f"Node '{self.id}': {issue}" for issue in validate_metadata(self.metadata)
            )

        return issues
