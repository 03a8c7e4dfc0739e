"""Unit tests for work hierarchy models.

This module tests the work type enumeration and the work node
serialization and validation helpers.
"""

import pytest

from workhierarchy.errors import InvalidWorkTypeError
from workhierarchy.models import (
    WORK_TYPES,
    WorkNode,
    WorkType,
    copy_metadata,
    validate_metadata,
)


class TestWorkType:
    """Test cases for the WorkType enumeration."""

    def test_work_types_order(self):
        """Test the shared type list is ordered from root to leaf."""
        assert WORK_TYPES == ["Product", "Vision", "Goal", "Epic", "Story", "Task"]

    def test_depth_and_child_type(self):
        """Test each type knows its depth and the next level down."""
        assert WorkType.PRODUCT.depth == 0
        assert WorkType.TASK.depth == 5
        assert WorkType.EPIC.child_type() is WorkType.STORY
        assert WorkType.TASK.child_type() is None

    def test_for_depth(self):
        """Test looking up a type by depth."""
        assert WorkType.for_depth(0) is WorkType.PRODUCT
        assert WorkType.for_depth(2) is WorkType.GOAL
        assert WorkType.for_depth(6) is None
        assert WorkType.for_depth(-1) is None

    def test_from_value(self):
        """Test parsing type names."""
        assert WorkType.from_value("Story") is WorkType.STORY
        assert WorkType.from_value(WorkType.TASK) is WorkType.TASK

    def test_from_value_invalid(self):
        """Test unknown type names are rejected."""
        with pytest.raises(InvalidWorkTypeError) as excinfo:
            WorkType.from_value("Initiative")

        assert "Invalid node type" in str(excinfo.value)
        assert isinstance(excinfo.value, ValueError)


class TestMetadata:
    """Test cases for metadata helpers."""

    def test_valid_metadata(self):
        """Test scalar and nested mapping values are accepted."""
        metadata = {"points": 3, "ratio": 0.5, "done": False, "owner": "sam", "extra": {"labels": {"a": "b"}}}
        assert validate_metadata(metadata) == []

    def test_invalid_metadata_values(self):
        """Test lists and None values are reported with their path."""
        issues = validate_metadata({"tags": ["a"], "nested": {"empty": None}})

        assert "metadata.tags has unsupported type list" in issues
        assert "metadata.nested.empty has unsupported type NoneType" in issues

    def test_metadata_must_be_mapping(self):
        """Test a non-mapping metadata value is reported."""
        assert validate_metadata("text") == ["metadata must be a mapping, got str"]

    def test_copy_metadata_is_deep(self):
        """Test copies do not share nested mappings."""
        original = {"outer": {"inner": 1}}
        copied = copy_metadata(original)

        copied["outer"]["inner"] = 2
        assert original["outer"]["inner"] == 1
        assert copy_metadata(None) is None


class TestWorkNode:
    """Test cases for the WorkNode model."""

    @pytest.fixture
    def tree(self):
        """A three-level tree."""
        return WorkNode(
            id="1", title="Node 1", team_id="team1", type="Product", metadata={"key": "value"},
            children=[
                WorkNode(id="2", title="Node 2", team_id="team1", type="Vision", parent_id="1", children=[
                    WorkNode(id="3", title="Node 3", team_id="team1", type="Goal", parent_id="2"),
                ]),
                WorkNode(id="4", title="Node 4", team_id="team1", type="Vision", parent_id="1"),
            ],
        )

    def test_defaults(self):
        """Test a new node is a leaf root without metadata."""
        node = WorkNode(id="1", title="Node 1", team_id="team1", type="Product")

        assert node.parent_id is None
        assert node.children == []
        assert node.metadata is None
        assert node.is_leaf

    def test_iter_subtree_is_pre_order(self, tree):
        """Test subtree iteration visits parents before children, left to right."""
        assert tree.subtree_ids() == ["1", "2", "3", "4"]

    def test_to_dict(self, tree):
        """Test nested serialization uses camelCase keys."""
        data = tree.to_dict()

        assert data["teamId"] == "team1"
        assert data["parentId"] is None
        assert data["metadata"] == {"key": "value"}
        assert data["children"][0]["children"][0]["id"] == "3"
        assert "metadata" not in data["children"][1]

    def test_to_record_has_no_children(self, tree):
        """Test the flat store record omits children."""
        record = tree.children[0].to_record()

        assert record == {"id": "2", "title": "Node 2", "teamId": "team1", "type": "Vision", "parentId": "1"}

    def test_from_dict_accepts_both_key_styles(self):
        """Test camelCase and snake_case input."""
        camel = WorkNode.from_dict({"id": "1", "title": "A", "teamId": "t", "type": "Goal", "parentId": "0"})
        snake = WorkNode.from_dict({"id": "1", "title": "A", "team_id": "t", "type": "Goal", "parent_id": "0"})

        assert camel == snake
        assert camel.parent_id == "0"

    def test_from_dict_round_trip(self, tree):
        """Test from_dict rebuilds the same tree."""
        assert WorkNode.from_dict(tree.to_dict()) == tree

    def test_copy_is_independent(self, tree):
        """Test a deep copy does not share children or metadata."""
        copied = tree.copy()
        copied.children.append(WorkNode(id="5", title="Node 5", team_id="team1", type="Vision"))
        copied.metadata["key"] = "changed"

        assert tree.subtree_ids() == ["1", "2", "3", "4"]
        assert tree.metadata == {"key": "value"}

    def test_validate_success(self, tree):
        """Test a well-formed node has no issues."""
        assert tree.validate() == []

    def test_validate_failures(self):
        """Test validation reports each missing or invalid field."""
        node = WorkNode(id="", title="", team_id="", type="Initiative", metadata={"bad": [1]})

        issues = node.validate()

        assert "Node ID is required" in issues
        assert "Node '' has no title" in issues
        assert "Node '' has no team" in issues
        assert "Node '' has invalid type: Initiative" in issues
        assert any("metadata.bad" in issue for issue in issues)
