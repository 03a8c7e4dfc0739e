"""MCP server exposing team work hierarchy tools."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, List, Optional

from mcp.server.fastmcp import FastMCP

from workhierarchy.hierarchy_logging import setup_logging
from workhierarchy.models import WORK_TYPES, WorkType
from workhierarchy.service import HierarchyService, lookup_team_root
from workhierarchy.store import NodeStore

mcp = FastMCP("work-hierarchy")


PROJECT_MARKER_DIRECTORIES = (NodeStore.DEFAULT_STORAGE_DIR,)
SERVER_ROOT = Path(__file__).resolve().parent
TRUTHY = {"1", "true", "yes", "on"}


def _candidate_bases() -> List[Path]:
    cwd = Path.cwd().resolve()
    bases: List[Path] = [cwd]
    bases.extend(cwd.parents)
    if SERVER_ROOT not in bases:
        bases.append(SERVER_ROOT)
    seen: set[Path] = set()
    ordered: List[Path] = []
    for base in bases:
        if base not in seen:
            seen.add(base)
            ordered.append(base)
    return ordered


def _locate_workspace_root() -> Optional[Path]:
    markers = [os.getenv(NodeStore.STORAGE_DIR_ENV) or "", *PROJECT_MARKER_DIRECTORIES]
    for base in _candidate_bases():
        for marker in markers:
            if marker and (base / marker).is_dir():
                return base
    return None


def _resolve_root(root: Optional[str], *, team_id: Optional[str] = None) -> Path:
    if root:
        resolved = Path(root).expanduser().resolve()
        if not resolved.exists():
            raise ValueError(f"Provided root '{root}' does not exist.")
        return resolved

    env_root = os.getenv("WORKHIERARCHY_PROJECT_ROOT")
    if env_root:
        env_path = Path(env_root).expanduser().resolve()
        if not env_path.exists():
            raise ValueError(
                f"Environment variable WORKHIERARCHY_PROJECT_ROOT points to '{env_root}', which does not exist."
            )
        return env_path

    if team_id:
        registered = lookup_team_root(team_id)
        if registered and registered.exists():
            return registered

    detected_root = _locate_workspace_root()
    if detected_root:
        return detected_root

    raise ValueError(
        "Unable to determine project root automatically. Provide the 'root' argument when calling the tool "
        "or set the WORKHIERARCHY_PROJECT_ROOT environment variable."
    )


def _strict_mode() -> bool:
    return os.getenv("WORKHIERARCHY_STRICT", "").strip().lower() in TRUTHY


def _service(team_id: str, root: Optional[str]) -> HierarchyService:
    resolved = _resolve_root(root, team_id=team_id)
    return HierarchyService(resolved, team_id, strict=_strict_mode())


@mcp.tool()
def get_work_types() -> Dict[str, Any]:
    """List the ordered work item types. A child is normally one level below its parent."""
    return {
        "types": list(WORK_TYPES),
        "levels": [
            {
                "level": work_type.depth,
                "type": work_type.value,
                "child_type": work_type.child_type().value if work_type.child_type() else None,
            }
            for work_type in WorkType
        ],
    }


@mcp.resource("work-hierarchy://types")
def resource_work_types():
    """Resource view of the work item levels."""

    lines = ["Work Item Levels"]
    for work_type in WorkType:
        lines.append(f"{work_type.depth}. {work_type.value}")
    return "\n".join(lines)


@mcp.tool()
def list_work_teams(root: Optional[str] = None) -> Dict[str, Any]:
    """List the teams that have work items stored under the project root."""

    store = NodeStore(_resolve_root(root))
    teams = store.list_teams()
    return {"teams": teams, "count": len(teams), "storage_dir": str(store.base_dir)}


@mcp.tool()
def list_work_items(team_id: str, root: Optional[str] = None) -> Dict[str, Any]:
    """Return the team's work item forest as nested root nodes."""

    return _service(team_id, root).list_nodes()


@mcp.tool()
def get_work_item(team_id: str, node_id: str, root: Optional[str] = None) -> Dict[str, Any]:
    """Fetch a single work item with its subtree, depth and parent id."""

    return _service(team_id, root).get_node(node_id)


@mcp.tool()
def get_work_path(team_id: str, node_id: str, root: Optional[str] = None) -> Dict[str, Any]:
    """Ancestors of a work item, from its immediate parent up to the root."""

    return _service(team_id, root).get_ancestors(node_id)


@mcp.tool()
def create_work_item(
    team_id: str,
    title: str,
    parent_id: Optional[str] = None,
    level: Optional[int] = None,
    metadata: Optional[Dict[str, Any]] = None,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """Create a work item. Without a parent it becomes a new root (level 0, Product);
    with a parent the level defaults to one below the parent."""

    return _service(team_id, root).create_node(title, parent_id=parent_id, level=level, metadata=metadata)


@mcp.tool()
def update_work_item(
    team_id: str,
    node_id: str,
    title: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
    clear_metadata: bool = False,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """Rename a work item and/or replace its metadata. Set clear_metadata to remove metadata entirely."""

    return _service(team_id, root).update_node(
        node_id, title=title, metadata=metadata, clear_metadata=clear_metadata
    )


@mcp.tool()
def delete_work_item(team_id: str, node_id: str, root: Optional[str] = None) -> Dict[str, Any]:
    """Delete a work item together with all of its descendants."""

    return _service(team_id, root).delete_node(node_id)


@mcp.tool()
def move_work_item(team_id: str, node_id: str, new_parent_id: str, root: Optional[str] = None) -> Dict[str, Any]:
    """Move a work item (and its subtree) under a new parent."""

    return _service(team_id, root).move_node(node_id, new_parent_id)


@mcp.tool()
def hierarchy_summary(team_id: str, root: Optional[str] = None) -> Dict[str, Any]:
    """Counts per work type, depth, and any consistency issues for the team's hierarchy."""

    return _service(team_id, root).summary()


if __name__ == "__main__":
    setup_logging(
        os.getenv("WORKHIERARCHY_LOG_LEVEL", "INFO").upper(),
        Path(os.getenv("WORKHIERARCHY_LOG_FILE")) if os.getenv("WORKHIERARCHY_LOG_FILE") else None,
    )
    mcp.run(transport="stdio")
