"""JSON-file node store for team work hierarchies.

This module provides the persistence side of the work hierarchy: it keeps
one flat list of node records per team, assigns node ids on creation, and
rebuilds the nested forest that the hierarchy manager works on.
"""

from __future__ import annotations

import json
import logging
import os
import uuid
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional
from urllib.parse import quote, unquote

from .errors import CyclicMoveError, InvalidWorkTypeError, NodeNotFoundError, StoreError
from .hierarchy_logging import (
    log_error_with_context,
    log_node_event,
    log_operation,
    log_performance,
    observability_hooks,
)
from .models import WORK_TYPES, WorkNode, WorkType, copy_metadata, validate_metadata

logger = logging.getLogger("workhierarchy.store")

UNSET: Any = object()


def _generate_node_id() -> str:
    """Generate a unique node ID."""
    return f"WI-{uuid.uuid4().hex[:8].upper()}"


def build_forest(nodes: Iterable[WorkNode]) -> List[WorkNode]:
    """Nest flat nodes under their parents; nodes without a known parent become roots."""
    node_map: Dict[str, WorkNode] = {}
    ordered: List[WorkNode] = []
    for node in nodes:
        copy = WorkNode(
            id=node.id,
            title=node.title,
            team_id=node.team_id,
            type=node.type,
            parent_id=node.parent_id,
            metadata=copy_metadata(node.metadata),
        )
        node_map[copy.id] = copy
        ordered.append(copy)

    roots: List[WorkNode] = []
    for node in ordered:
        parent = node_map.get(node.parent_id) if node.parent_id else None
        if parent is not None and parent is not node:
            parent.children.append(node)
        else:
            roots.append(node)
    return roots


class NodeStore:
    """Persist team work items as flat JSON records."""

    STORAGE_DIR_ENV = "WORKHIERARCHY_STORAGE_DIR"
    DEFAULT_STORAGE_DIR = ".work-hierarchy"

    def __init__(self, root: Path | str):
        """Initialize the store under the given project root."""
        self.root = Path(root).resolve()
        self.base_dir = self.root / (os.getenv(self.STORAGE_DIR_ENV) or self.DEFAULT_STORAGE_DIR)
        self.teams_dir = self.base_dir / "teams"

        try:
            self.teams_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error(f"Failed to create store directories: {e}")
            log_error_with_context(e, "store_init", root=str(root))
            raise StoreError(f"Could not initialize node store at {self.root}: {e}") from e

        logger.info(f"Node store initialized at {self.base_dir}")
        observability_hooks.emit("store_initialized", root=str(self.base_dir))

    # ------------------------------------------------------------------
    # Record files
    # ------------------------------------------------------------------

    def _team_path(self, team_id: str) -> Path:
        if not team_id or not team_id.strip():
            raise ValueError("Team ID cannot be empty")
        # Percent-encoding keeps distinct team ids in distinct files.
        return self.teams_dir / f"{quote(team_id.strip(), safe='')}.json"

    def _load_records(self, team_id: str, *, for_write: bool = False) -> List[WorkNode]:
        """Load the flat node list for a team.

        An unreadable file loads as empty for reads. Writes refuse to
        continue instead, since saving would replace the records on disk.
        Records belonging to another team are dropped on read and refused on
        write for the same reason.
        """
        path = self._team_path(team_id)
        if not path.exists():
            return []

        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            nodes = [WorkNode.from_dict(record) for record in data]
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            if for_write:
                raise StoreError(
                    f"Node records for team '{team_id}' in {path} are unreadable; refusing to overwrite them: {e}"
                ) from e
            logger.error(f"Could not read node records for team '{team_id}' from {path}: {e}")
            return []

        owned = [node for node in nodes if str(node.team_id).strip() == team_id.strip()]
        if len(owned) != len(nodes):
            foreign = sorted({node.team_id for node in nodes} - {node.team_id for node in owned})
            if for_write:
                raise StoreError(
                    f"{path} holds records of other teams ({', '.join(foreign)}); refusing to overwrite them"
                )
            logger.warning(f"Ignoring {len(nodes) - len(owned)} record(s) of team(s) {foreign} in {path}")
        return owned

    def _save_records(self, team_id: str, nodes: List[WorkNode]) -> None:
        """Save the flat node list for a team, replacing the file in one step."""
        path = self._team_path(team_id)
        temp_path = path.with_name(f".{path.name}.{uuid.uuid4().hex[:8]}.tmp")
        try:
            temp_path.write_text(
                json.dumps([node.to_record() for node in nodes], indent=2),
                encoding="utf-8",
            )
            os.replace(temp_path, path)
        except OSError as e:
            temp_path.unlink(missing_ok=True)
            raise StoreError(f"Could not write node records to {path}: {e}") from e

    def _require(self, nodes: List[WorkNode], node_id: str, role: str = "node") -> WorkNode:
        for node in nodes:
            if node.id == node_id:
                return node
        raise NodeNotFoundError(node_id, role)

    @staticmethod
    def _descendant_ids(nodes: List[WorkNode], node_id: str) -> List[str]:
        """The node id and every descendant id, breadth first."""
        children: Dict[str, List[str]] = {}
        for node in nodes:
            if node.parent_id:
                children.setdefault(node.parent_id, []).append(node.id)

        collected = [node_id]
        seen = {node_id}
        index = 0
        while index < len(collected):
            for child_id in children.get(collected[index], []):
                if child_id not in seen:
                    seen.add(child_id)
                    collected.append(child_id)
            index += 1
        return collected

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_teams(self) -> List[str]:
        """Team ids that have a record file, decoded from their file names."""
        return sorted(unquote(path.stem) for path in self.teams_dir.glob("*.json"))

    def list_records(self, team_id: str) -> List[WorkNode]:
        """Flat node list for a team, in creation order."""
        return self._load_records(team_id)

    def fetch_nodes(self, team_id: str) -> List[WorkNode]:
        """Nested forest for a team."""
        return build_forest(self._load_records(team_id))

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    @log_performance("store_create_node")
    def create_node(
        self,
        team_id: str,
        title: str,
        *,
        parent_id: Optional[str] = None,
        level: int = 0,
        node_type: Optional[str] = None,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> WorkNode:
        """Create a work item, optionally under a parent, and assign its id."""
        if not title or not title.strip():
            raise ValueError("Title cannot be empty")

        if node_type is not None:
            work_type = WorkType.from_value(node_type)
        else:
            work_type = WorkType.for_depth(level)
            if work_type is None:
                raise InvalidWorkTypeError(
                    f"Invalid level {level}. Expected 0-{len(WORK_TYPES) - 1}"
                )

        if metadata is not None:
            issues = validate_metadata(metadata)
            if issues:
                raise ValueError("; ".join(issues))

        with log_operation("create_node", team_id=team_id, parent_id=parent_id, type=work_type.value) as operation:
            nodes = self._load_records(team_id, for_write=True)
            if parent_id is not None:
                self._require(nodes, parent_id, "parent")

            node = WorkNode(
                id=_generate_node_id(),
                title=title.strip(),
                team_id=team_id,
                type=work_type.value,
                parent_id=parent_id,
                metadata=copy_metadata(metadata),
            )
            nodes.append(node)
            operation["node_id"] = node.id
            self._save_records(team_id, nodes)

        log_node_event("created", node.id, team_id=team_id, parent_id=parent_id, type=node.type)
        return node

    def update_node(
        self,
        team_id: str,
        node_id: str,
        *,
        title: Optional[str] = None,
        node_type: Optional[str] = None,
        metadata: Any = UNSET,
    ) -> WorkNode:
        """Update a work item's title, type or metadata.

        ``metadata=None`` clears the metadata; leaving it out keeps it.
        """
        if title is not None and not title.strip():
            raise ValueError("Title cannot be empty")
        if metadata is not UNSET and metadata is not None:
            issues = validate_metadata(metadata)
            if issues:
                raise ValueError("; ".join(issues))
        work_type = WorkType.from_value(node_type) if node_type is not None else None

        nodes = self._load_records(team_id, for_write=True)
        node = self._require(nodes, node_id)
        if title is not None:
            node.title = title.strip()
        if work_type is not None:
            node.type = work_type.value
        if metadata is not UNSET:
            node.metadata = copy_metadata(metadata)
        self._save_records(team_id, nodes)

        log_node_event("updated", node_id, team_id=team_id)
        return node

    @log_performance("store_delete_node")
    def delete_node(self, team_id: str, node_id: str) -> List[str]:
        """Delete a work item and all of its descendants; returns the deleted ids."""
        with log_operation("delete_node", team_id=team_id, node_id=node_id) as operation:
            nodes = self._load_records(team_id, for_write=True)
            self._require(nodes, node_id)

            doomed = set(self._descendant_ids(nodes, node_id))
            operation["deleted_count"] = len(doomed)
            self._save_records(team_id, [node for node in nodes if node.id not in doomed])

        deleted = [node.id for node in nodes if node.id in doomed]
        log_node_event("deleted", node_id, team_id=team_id, deleted_count=len(deleted))
        return deleted

    def move_node(self, team_id: str, node_id: str, new_parent_id: str) -> WorkNode:
        """Re-parent a work item; its descendants follow."""
        nodes = self._load_records(team_id, for_write=True)
        node = self._require(nodes, node_id)
        self._require(nodes, new_parent_id, "parent")
        if new_parent_id in self._descendant_ids(nodes, node_id):
            raise CyclicMoveError(node_id, new_parent_id)

        # Moved nodes go last among their new siblings.
        nodes.remove(node)
        node.parent_id = new_parent_id
        nodes.append(node)
        self._save_records(team_id, nodes)

        log_node_event("moved", node_id, team_id=team_id, new_parent_id=new_parent_id)
        return node
