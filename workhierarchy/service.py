"""Team hierarchy sessions.

This module ties one team's node store and in-memory hierarchy together.
Every write goes to the store first, is mirrored into the hierarchy
manager, and the session then refetches from the store so both sides
converge. Results are plain dictionaries suitable for tool responses.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Optional

from .errors import HierarchyError, NodeNotFoundError, StoreError
from .hierarchy import HierarchyManager
from .hierarchy_logging import log_error_with_context, log_performance, observability_hooks
from .models import WORK_TYPES, WorkType
from .store import UNSET, NodeStore

logger = logging.getLogger("workhierarchy.service")

INPUT_SUGGESTION = "Titles must not be blank; metadata values may be strings, numbers, booleans or nested mappings"


# Global registry for team project roots
_TEAM_ROOT_REGISTRY: Dict[str, Path] = {}


def register_team_root(team_id: str, root: Path | str) -> Path:
    """Record the project root holding a team's work items."""
    resolved = Path(root).resolve()
    _TEAM_ROOT_REGISTRY[team_id.lower()] = resolved
    return resolved


def lookup_team_root(team_id: str) -> Optional[Path]:
    """Return the registered project root for the team, if any."""
    return _TEAM_ROOT_REGISTRY.get(team_id.lower())


def _not_found_response(error: NodeNotFoundError, **extra: Any) -> Dict[str, Any]:
    return {
        "found": False,
        "error": str(error),
        "suggestion": "Call list_work_items to see the ids that exist for this team",
        **extra,
    }


def _store_error_response(error: StoreError, **extra: Any) -> Dict[str, Any]:
    logger.error(f"Node store failure: {error}")
    return {
        "error": str(error),
        "suggestion": "Restore the team's record file under the storage directory; nothing was written",
        **extra,
    }


class HierarchyService:
    """One team's work hierarchy session."""

    def __init__(self, root: Path | str, team_id: str, *, strict: bool = False):
        if not team_id or not team_id.strip():
            raise ValueError("Team ID cannot be empty")

        self.team_id = team_id
        self.store = NodeStore(root)
        self.manager = HierarchyManager(
            self.store.fetch_nodes(team_id),
            team_id=team_id,
            strict=strict,
        )
        register_team_root(team_id, self.store.root)
        logger.info(f"Loaded {self.manager.count()} work items for team {team_id}")

    def _find(self, node_id: str):
        try:
            return self.manager.get_node(node_id)
        except NodeNotFoundError:
            return None

    def refresh(self) -> None:
        """Reload the forest from the store."""
        self.manager.set_nodes(self.store.fetch_nodes(self.team_id))

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list_nodes(self) -> Dict[str, Any]:
        nodes = self.manager.get_all_nodes()
        return {
            "team_id": self.team_id,
            "nodes": [node.to_dict() for node in nodes],
            "root_count": len(nodes),
            "total_count": self.manager.count(),
        }

    def get_node(self, node_id: str) -> Dict[str, Any]:
        node = self._find(node_id)
        if node is None:
            return _not_found_response(NodeNotFoundError(node_id), node=None)

        parent = self.manager.get_parent(node_id)
        return {
            "found": True,
            "node": node.to_dict(),
            "parent_id": parent.id if parent else None,
            "depth": self.manager.depth_of(node_id),
            "next_child_type": self.manager.next_child_type(node_id),
        }

    def get_ancestors(self, node_id: str) -> Dict[str, Any]:
        if self._find(node_id) is None:
            return _not_found_response(NodeNotFoundError(node_id), ancestors=[])

        ancestors = self.manager.get_ancestors(node_id)
        return {
            "found": True,
            "node_id": node_id,
            "ancestors": [node.to_record() for node in ancestors],
            "path": [node.id for node in self.manager.get_path(node_id)],
            "breadcrumb": [node.title for node in reversed(ancestors)],
        }

    def summary(self) -> Dict[str, Any]:
        by_type = {work_type: 0 for work_type in WORK_TYPES}
        max_depth = -1
        for node, depth in self.manager.walk():
            by_type[node.type] = by_type.get(node.type, 0) + 1
            max_depth = max(max_depth, depth)

        issues = self.manager.validate()
        return {
            "team_id": self.team_id,
            "total_count": self.manager.count(),
            "root_count": len(self.manager.nodes),
            "by_type": by_type,
            "max_depth": max_depth,
            "issues": issues,
            "healthy": not [issue for issue in issues if not issue.startswith("Advisory")],
        }

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    @log_performance("service_create_node")
    def create_node(
        self,
        title: str,
        parent_id: Optional[str] = None,
        level: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Create a work item; the level defaults to one below the parent."""
        if level is None:
            if parent_id is None:
                level = 0
            elif self._find(parent_id) is not None:
                level = self.manager.depth_of(parent_id) + 1
            else:
                level = 0

        try:
            node = self.store.create_node(
                self.team_id, title, parent_id=parent_id, level=level, metadata=metadata
            )
        except NodeNotFoundError as e:
            return _not_found_response(e, node=None)
        except StoreError as e:
            return _store_error_response(e, node=None)
        except HierarchyError as e:
            return {
                "error": str(e),
                "suggestion": f"Use one of the work types {', '.join(WORK_TYPES)} (levels 0-{len(WORK_TYPES) - 1})",
                "node": None,
            }
        except ValueError as e:
            return {"error": str(e), "suggestion": INPUT_SUGGESTION, "node": None}

        if parent_id is None:
            self.manager.add_root(node)
        else:
            self.manager.add_child(parent_id, node)
        self.refresh()

        created = self._find(node.id) or node
        child_type = WorkType.from_value(created.type).child_type()
        return {
            "found": True,
            "node": created.to_dict(),
            "level": level,
            "next_child_type": child_type.value if child_type else None,
            "message": f"Created {created.type} '{created.title}'",
        }

    def update_node(
        self,
        node_id: str,
        title: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        clear_metadata: bool = False,
    ) -> Dict[str, Any]:
        """Update a work item's title and/or metadata."""
        patch: Dict[str, Any] = {}
        if title is not None:
            patch["title"] = title
        if clear_metadata:
            patch["metadata"] = None
        elif metadata is not None:
            patch["metadata"] = metadata

        try:
            self.store.update_node(
                self.team_id,
                node_id,
                title=title,
                metadata=patch["metadata"] if "metadata" in patch else UNSET,
            )
        except NodeNotFoundError as e:
            return _not_found_response(e, node=None)
        except StoreError as e:
            return _store_error_response(e, node=None)
        except ValueError as e:
            return {"error": str(e), "suggestion": INPUT_SUGGESTION, "node": None}

        if patch:
            self.manager.update_node(node_id, patch)
        self.refresh()
        node = self._find(node_id)
        return {"found": True, "node": node.to_dict() if node else None, "updated_fields": sorted(patch)}

    @log_performance("service_delete_node")
    def delete_node(self, node_id: str) -> Dict[str, Any]:
        """Delete a work item and its whole subtree."""
        try:
            deleted = self.store.delete_node(self.team_id, node_id)
        except NodeNotFoundError as e:
            return _not_found_response(e, deleted_ids=[])
        except StoreError as e:
            return _store_error_response(e, deleted_ids=[])

        self.manager.remove_child(node_id)
        self.refresh()
        return {
            "found": True,
            "deleted_ids": deleted,
            "deleted_count": len(deleted),
            "message": f"Deleted {node_id} and {len(deleted) - 1} descendant(s)",
        }

    def move_node(self, node_id: str, new_parent_id: str) -> Dict[str, Any]:
        """Re-parent a work item under another one."""
        try:
            self.store.move_node(self.team_id, node_id, new_parent_id)
        except NodeNotFoundError as e:
            return _not_found_response(e, node=None)
        except StoreError as e:
            return _store_error_response(e, node=None)
        except HierarchyError as e:
            logger.warning(f"Rejected move of {node_id} under {new_parent_id}: {e}")
            return {
                "error": str(e),
                "suggestion": "Pick a new parent outside the item's own subtree",
                "node": None,
            }

        try:
            self.manager.move_node(node_id, new_parent_id)
        except Exception as e:
            log_error_with_context(
                e, "move_node", team_id=self.team_id, node_id=node_id, new_parent_id=new_parent_id
            )
            raise
        self.refresh()

        observability_hooks.emit(
            "hierarchy_reparented",
            team_id=self.team_id,
            node_id=node_id,
            new_parent_id=new_parent_id,
        )
        node = self._find(node_id)
        return {
            "found": True,
            "node": node.to_dict() if node else None,
            "parent_id": new_parent_id,
            "depth": self.manager.depth_of(node_id),
        }
