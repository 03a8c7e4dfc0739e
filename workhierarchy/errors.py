"""Exception types for the work hierarchy.

The hierarchy manager only raises these in strict mode (or for malformed
patches); the node store raises them for missing references.
"""

from __future__ import annotations


class HierarchyError(Exception):
    """Base class for work hierarchy errors."""


class NodeNotFoundError(HierarchyError, KeyError):
    """Raised when a node or parent id does not exist."""

    def __init__(self, node_id: str, role: str = "node"):
        self.node_id = node_id
        self.role = role
        super().__init__(f"{role.capitalize()} '{node_id}' not found")

    def __str__(self) -> str:
        # KeyError quotes its argument; keep the plain message.
        return self.args[0]


class DuplicateNodeError(HierarchyError):
    """Raised when inserting a node whose id already exists in the forest."""

    def __init__(self, node_id: str):
        self.node_id = node_id
        super().__init__(f"Node '{node_id}' already exists in the hierarchy")


class TeamScopeError(HierarchyError):
    """Raised when a node from another team is inserted."""

    def __init__(self, node_id: str, expected: str, actual: str):
        self.node_id = node_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Node '{node_id}' belongs to team '{actual}', expected team '{expected}'"
        )


class CyclicMoveError(HierarchyError):
    """Raised when a node would be moved beneath itself or a descendant."""

    def __init__(self, node_id: str, new_parent_id: str):
        self.node_id = node_id
        self.new_parent_id = new_parent_id
        super().__init__(
            f"Cannot move '{node_id}' under '{new_parent_id}': target is inside its own subtree"
        )


class TypeDepthError(HierarchyError):
    """Raised when a node's type does not match its depth in the tree."""

    def __init__(self, node_id: str, node_type: str, expected: str | None):
        self.node_id = node_id
        self.node_type = node_type
        self.expected = expected
        super().__init__(
            f"Node '{node_id}' has type '{node_type}' but its depth expects '{expected or 'nothing'}'"
        )


class InvalidWorkTypeError(HierarchyError, ValueError):
    """Raised for a work type name or level outside the known types."""


class StoreError(HierarchyError):
    """Raised when the node store cannot be initialized or written."""
