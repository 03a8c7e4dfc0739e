"""In-memory manager for one team's work item forest.

The forest is held as a snapshot list of root nodes. Every write builds a
new snapshot by copying only the nodes on the path from a root to the
changed node; untouched subtrees are shared with the previous snapshot and
no snapshot is ever mutated after it has been published. Callers can detect
a change with ``old_nodes is not manager.nodes``.

All lookups are pre-order depth-first searches over the forest. Unknown ids
are absorbed as no-ops (mutations return ``False``, lookups return ``None``
or ``[]``) unless the manager is created with ``strict=True``.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Set, Tuple

from .errors import (
    CyclicMoveError,
    DuplicateNodeError,
    HierarchyError,
    NodeNotFoundError,
    TeamScopeError,
    TypeDepthError,
)
from .models import WORK_TYPES, WorkNode, WorkType, copy_metadata, validate_metadata

logger = logging.getLogger("workhierarchy.hierarchy")

UPDATABLE_FIELDS = frozenset({"title", "type", "metadata"})


def _find_path(nodes: Sequence[WorkNode], node_id: str) -> List[WorkNode]:
    """Pre-order search returning the chain from a root down to the match."""
    for node in nodes:
        if node.id == node_id:
            return [node]
        if node.children:
            path = _find_path(node.children, node_id)
            if path:
                return [node] + path
    return []


def _splice(siblings: Sequence[WorkNode], target: WorkNode, replacement: List[WorkNode]) -> List[WorkNode]:
    spliced: List[WorkNode] = []
    for node in siblings:
        if node is target:
            spliced.extend(replacement)
        else:
            spliced.append(node)
    return spliced


def _rewrite(forest: Sequence[WorkNode], path: List[WorkNode], replacement: List[WorkNode]) -> List[WorkNode]:
    """Replace the last node of ``path`` and copy every ancestor above it."""
    current = path[-1]
    for ancestor in reversed(path[:-1]):
        replacement = [replace(ancestor, children=_splice(ancestor.children, current, replacement))]
        current = ancestor
    return _splice(forest, current, replacement)


def _splice_move(
    nodes: List[WorkNode], moving: WorkNode, new_parent_id: str
) -> Tuple[List[WorkNode], bool]:
    """Detach ``moving`` and append it under ``new_parent_id`` in one pass."""
    changed = False
    rebuilt: List[WorkNode] = []
    for node in nodes:
        if node is moving:
            changed = True
            continue
        children, children_changed = (
            _splice_move(node.children, moving, new_parent_id) if node.children else (node.children, False)
        )
        if node.id == new_parent_id:
            children = [*children, replace(moving, parent_id=node.id)]
            children_changed = True
        if children_changed:
            node = replace(node, children=children)
            changed = True
        rebuilt.append(node)
    return (rebuilt if changed else nodes), changed


def _walk(nodes: Sequence[WorkNode], depth: int = 0) -> Iterator[Tuple[WorkNode, int]]:
    for node in nodes:
        yield node, depth
        yield from _walk(node.children, depth + 1)


class HierarchyManager:
    """Owns one forest snapshot and the operations that replace it.

    ``strict`` turns unknown ids and rejected inserts into exceptions.
    ``enforce_type_depth`` rejects inserts and moves that would put a node
    of one work type at a depth conventionally held by another.
    """

    def __init__(
        self,
        initial_nodes: Optional[Iterable[WorkNode]] = None,
        *,
        team_id: Optional[str] = None,
        strict: bool = False,
        enforce_type_depth: bool = False,
    ):
        self.team_id = team_id
        self.strict = strict
        self.enforce_type_depth = enforce_type_depth
        self._nodes: List[WorkNode] = self._scoped(initial_nodes or [])

    def __repr__(self) -> str:
        return f"HierarchyManager(team_id={self.team_id!r}, roots={len(self._nodes)}, strict={self.strict})"

    @property
    def nodes(self) -> List[WorkNode]:
        """Current snapshot of root nodes. Treat it as read-only."""
        return self._nodes

    def set_nodes(self, nodes: Iterable[WorkNode]) -> None:
        """Replace the whole forest, e.g. after refetching from the store."""
        self._nodes = self._scoped(nodes)

    # ------------------------------------------------------------------
    # Failure handling
    # ------------------------------------------------------------------

    def _not_found(self, node_id: str, role: str = "node") -> None:
        if self.strict:
            raise NodeNotFoundError(node_id, role)
        logger.debug(f"{role.capitalize()} '{node_id}' not found; ignoring")

    def _reject(self, error: HierarchyError) -> bool:
        if self.strict:
            raise error
        logger.warning(f"Skipped hierarchy change: {error}")
        return False

    def _scoped(self, nodes: Iterable[WorkNode]) -> List[WorkNode]:
        """Deep copies of the roots that belong to this manager's team."""
        copies = [node.copy() for node in nodes]
        if self.team_id is None and copies:
            self.team_id = copies[0].team_id
        kept = []
        for node in copies:
            if node.team_id != self.team_id:
                self._reject(TeamScopeError(node.id, self.team_id, node.team_id))
                continue
            kept.append(node)
        return kept

    def _commit(self, nodes: List[WorkNode], operation: str, **fields: Any) -> None:
        self._nodes = nodes
        logger.debug(f"{operation}: {fields}")

    def _admissible(self, node: WorkNode, depth: int) -> bool:
        """Check team scope, forest-wide id uniqueness and type/depth for an insert."""
        if self.team_id is not None and node.team_id != self.team_id:
            return self._reject(TeamScopeError(node.id, self.team_id, node.team_id))

        existing = self._all_ids()
        for incoming in node.iter_subtree():
            if incoming.id in existing:
                return self._reject(DuplicateNodeError(incoming.id))

        if self.enforce_type_depth:
            expected = WorkType.for_depth(depth)
            if expected is None or node.type != expected.value:
                return self._reject(
                    TypeDepthError(node.id, node.type, expected.value if expected else None)
                )
        return True

    def _all_ids(self) -> Set[str]:
        return {node.id for node, _ in _walk(self._nodes)}

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def add_child(self, parent_id: str, child: WorkNode) -> bool:
        """Append ``child`` (and its subtree) under the node ``parent_id``."""
        path = _find_path(self._nodes, parent_id)
        if not path:
            self._not_found(parent_id, "parent")
            return False

        parent = path[-1]
        if any(existing.id == child.id for existing in parent.children):
            return self._reject(DuplicateNodeError(child.id))
        if not self._admissible(child, depth=len(path)):
            return False

        if self.team_id is None:
            self.team_id = child.team_id
        attached = replace(child.copy(), parent_id=parent.id)
        updated_parent = replace(parent, children=[*parent.children, attached])
        self._commit(_rewrite(self._nodes, path, [updated_parent]), "add_child",
                     parent_id=parent_id, node_id=child.id)
        return True

    def add_root(self, node: WorkNode) -> bool:
        """Append ``node`` as a new root tree."""
        if not self._admissible(node, depth=0):
            return False

        if self.team_id is None:
            self.team_id = node.team_id
        self._commit([*self._nodes, replace(node.copy(), parent_id=None)], "add_root", node_id=node.id)
        return True

    def remove_child(self, node_id: str) -> bool:
        """Remove a node and its whole subtree, wherever it sits."""
        path = _find_path(self._nodes, node_id)
        if not path:
            self._not_found(node_id)
            return False

        if len(path) > 1:
            nodes = _rewrite(self._nodes, path, [])
        else:
            nodes = [node for node in self._nodes if node.id != node_id]
        self._commit(nodes, "remove_child", node_id=node_id, removed=len(path[-1].subtree_ids()))
        return True

    def update_node(self, node_id: str, patch: Mapping[str, Any]) -> bool:
        """Overwrite the given fields of a node.

        This is narrower than a plain shallow overwrite: only ``title``,
        ``type`` and ``metadata`` may be patched. Patching ``id``, ``team_id``,
        ``parent_id`` or ``children`` (or any unknown key) raises
        ``ValueError``; those change only through insert, remove and move.
        Passing ``metadata=None`` removes the node's metadata; ``{}`` keeps an
        empty mapping.
        """
        unknown = set(patch) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(
                f"Cannot update field(s) {', '.join(sorted(unknown))}; "
                f"updatable fields are {', '.join(sorted(UPDATABLE_FIELDS))}"
            )

        changes: Dict[str, Any] = dict(patch)
        if "type" in changes:
            changes["type"] = WorkType.from_value(changes["type"]).value
        if changes.get("metadata") is not None:
            issues = validate_metadata(changes["metadata"])
            if issues:
                raise ValueError("; ".join(issues))
            changes["metadata"] = copy_metadata(changes["metadata"])

        path = _find_path(self._nodes, node_id)
        if not path:
            self._not_found(node_id)
            return False

        if self.enforce_type_depth and "type" in changes:
            expected = WorkType.for_depth(len(path) - 1)
            if expected is None or changes["type"] != expected.value:
                return self._reject(
                    TypeDepthError(node_id, changes["type"], expected.value if expected else None)
                )

        updated = replace(path[-1], **changes)
        self._commit(_rewrite(self._nodes, path, [updated]), "update_node",
                     node_id=node_id, fields=sorted(changes))
        return True

    def move_node(self, node_id: str, new_parent_id: str) -> bool:
        """Re-parent a node, keeping its own subtree intact.

        The node is detached and re-attached while building a single new
        snapshot, so it is never missing from a published forest. Moves to
        an unknown parent or into the node's own subtree leave the forest
        unchanged.
        """
        path = _find_path(self._nodes, node_id)
        if not path:
            self._not_found(node_id)
            return False

        node = path[-1]
        if new_parent_id in node.subtree_ids():
            return self._reject(CyclicMoveError(node_id, new_parent_id))

        parent_path = _find_path(self._nodes, new_parent_id)
        if not parent_path:
            self._not_found(new_parent_id, "parent")
            return False

        if self.enforce_type_depth:
            expected = WorkType.for_depth(len(parent_path))
            if expected is None or node.type != expected.value:
                return self._reject(
                    TypeDepthError(node_id, node.type, expected.value if expected else None)
                )

        nodes, _ = _splice_move(self._nodes, node, new_parent_id)
        self._commit(nodes, "move_node", node_id=node_id, new_parent_id=new_parent_id)
        return True

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_node(self, node_id: str) -> Optional[WorkNode]:
        path = _find_path(self._nodes, node_id)
        if not path:
            self._not_found(node_id)
            return None
        return path[-1]

    def get_all_nodes(self) -> List[WorkNode]:
        """Root nodes of the forest (not flattened)."""
        return self._nodes

    def get_parent(self, node_id: str) -> Optional[WorkNode]:
        """Parent of a node; None for roots and unknown ids."""
        path = _find_path(self._nodes, node_id)
        if not path:
            self._not_found(node_id)
            return None
        return path[-2] if len(path) > 1 else None

    def get_ancestors(self, node_id: str) -> List[WorkNode]:
        """Ancestors ordered from the immediate parent up to the root."""
        path = _find_path(self._nodes, node_id)
        if not path:
            self._not_found(node_id)
            return []
        return list(reversed(path[:-1]))

    def get_path(self, node_id: str) -> List[WorkNode]:
        """The node followed by its ancestors."""
        path = _find_path(self._nodes, node_id)
        if not path:
            self._not_found(node_id)
            return []
        return list(reversed(path))

    def depth_of(self, node_id: str) -> Optional[int]:
        path = _find_path(self._nodes, node_id)
        if not path:
            self._not_found(node_id)
            return None
        return len(path) - 1

    def next_child_type(self, node_id: str) -> Optional[str]:
        """Work type for a new child one level below ``node_id``."""
        depth = self.depth_of(node_id)
        if depth is None:
            return None
        work_type = WorkType.for_depth(depth + 1)
        return work_type.value if work_type else None

    def walk(self) -> Iterator[Tuple[WorkNode, int]]:
        """Every node with its depth, in pre-order."""
        return _walk(self._nodes)

    def count(self) -> int:
        return sum(1 for _ in _walk(self._nodes))

    def to_dicts(self) -> List[Dict[str, Any]]:
        return [node.to_dict() for node in self._nodes]

    def validate(self) -> List[str]:
        """Report invariant issues; type/depth mismatches are advisory."""
        issues: List[str] = []
        seen: Set[str] = set()

        for node, depth in _walk(self._nodes):
            issues.extend(node.validate())
            if node.id in seen:
                issues.append(f"Duplicate node id: {node.id}")
            seen.add(node.id)
            if self.team_id is not None and node.team_id != self.team_id:
                issues.append(f"Node '{node.id}' belongs to team '{node.team_id}', expected '{self.team_id}'")
            expected = WorkType.for_depth(depth)
            if node.type in WORK_TYPES and (expected is None or node.type != expected.value):
                issues.append(
                    f"Advisory: node '{node.id}' is a {node.type} at depth {depth}"
                    f" (expected {expected.value if expected else 'no type'})"
                )
            for child in node.children:
                if child.parent_id is not None and child.parent_id != node.id:
                    issues.append(f"Node '{child.id}' has parentId '{child.parent_id}' but sits under '{node.id}'")

        return issues
