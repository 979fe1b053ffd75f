"""
Tests for sort specifications and in-memory node ordering.

Tests cover:
- Parsing comma separated sort strings with the descending marker
- Default sort when none is given
- Unknown fields rejected
- Configurable field sets, default field and descending marker
- Multi-key ordering with id as the final tie breaker
"""

from datetime import datetime, timedelta

import pytest

from folderserver.exceptions import InvalidSortFieldError
from folderserver.models import Node, NodeType, SortKey
from folderserver.sorting import SortOptions, sort_nodes

BASE_TIME = datetime(2024, 1, 1, 12, 0, 0)


def make_node(node_id, name, node_type=NodeType.TEMPLATE, minutes=0):
    when = BASE_TIME + timedelta(minutes=minutes)
    return Node(
        id=node_id,
        node_type=node_type,
        name=name,
        owner_id=None,
        created_on=when,
        modified_on=when,
        parent_id="root",
    )


class TestSortParsing:
    """Test turning sort strings into sort keys."""

    def test_default_when_missing(self):
        options = SortOptions()
        assert options.parse(None) == (SortKey("name"),)
        assert options.parse("") == (SortKey("name"),)
        assert options.parse(" , ") == (SortKey("name"),)

    def test_single_ascending_field(self):
        assert SortOptions().parse("createdOn") == (SortKey("createdOn"),)

    def test_descending_marker(self):
        assert SortOptions().parse("-modifiedOn") == (SortKey("modifiedOn", descending=True),)

    def test_multiple_fields_keep_priority_order(self):
        keys = SortOptions().parse("nodeType, -createdOn ,name")
        assert keys == (
            SortKey("nodeType"),
            SortKey("createdOn", descending=True),
            SortKey("name"),
        )

    @pytest.mark.parametrize("sort", ["title", "name,bogus", "-size", "Name"])
    def test_unknown_field_rejected(self, sort):
        """Test that anything outside the closed field set is rejected."""
        with pytest.raises(InvalidSortFieldError):
            SortOptions().parse(sort)

    def test_format_round_trips_the_marker(self):
        options = SortOptions()
        keys = options.parse("-createdOn,name")
        assert options.format(keys) == "-createdOn,name"


class TestSortConfiguration:
    """Test configurable sort options."""

    def test_custom_descending_marker(self):
        options = SortOptions(descending_marker="!")
        assert options.parse("!name") == (SortKey("name", descending=True),)
        assert options.format((SortKey("name", descending=True),)) == "!name"

    def test_restricted_field_set(self):
        options = SortOptions(fields=["name", "createdOn"])
        assert options.is_known_field("createdOn")
        assert not options.is_known_field("nodeType")
        with pytest.raises(InvalidSortFieldError):
            options.parse("nodeType")

    def test_custom_default_field(self):
        options = SortOptions(default_field="createdOn")
        assert options.parse(None) == (SortKey("createdOn"),)

    def test_unsupported_configured_field(self):
        with pytest.raises(ValueError):
            SortOptions(fields=["name", "size"])

    def test_default_field_must_be_allowed(self):
        with pytest.raises(ValueError):
            SortOptions(fields=["name"], default_field="createdOn")

    def test_empty_marker_rejected(self):
        with pytest.raises(ValueError):
            SortOptions(descending_marker="")


class TestSortNodes:
    """Test ordering of nodes by sort keys."""

    def test_name_is_case_insensitive(self):
        nodes = [make_node("1", "beta"), make_node("2", "Alpha"), make_node("3", "gamma")]
        ordered = sort_nodes(nodes, (SortKey("name"),))
        assert [n.name for n in ordered] == ["Alpha", "beta", "gamma"]

    def test_descending(self):
        nodes = [make_node("1", "a", minutes=1), make_node("2", "b", minutes=3), make_node("3", "c", minutes=2)]
        ordered = sort_nodes(nodes, (SortKey("createdOn", descending=True),))
        assert [n.id for n in ordered] == ["2", "3", "1"]

    def test_ties_broken_by_id(self):
        """Test that equal sort values always come out in id order."""
        nodes = [make_node("c", "same"), make_node("a", "same"), make_node("b", "same")]
        assert [n.id for n in sort_nodes(nodes, (SortKey("name"),))] == ["a", "b", "c"]
        assert [n.id for n in sort_nodes(nodes, (SortKey("name", descending=True),))] == ["a", "b", "c"]

    def test_multi_key(self):
        nodes = [
            make_node("1", "zeta", NodeType.TEMPLATE),
            make_node("2", "alpha", NodeType.TEMPLATE),
            make_node("3", "beta", NodeType.FOLDER),
            make_node("4", "omega", NodeType.ELEMENT),
        ]
        ordered = sort_nodes(nodes, (SortKey("nodeType"), SortKey("name")))
        assert [n.id for n in ordered] == ["4", "3", "2", "1"]

    def test_does_not_modify_input(self):
        nodes = [make_node("2", "b"), make_node("1", "a")]
        sort_nodes(nodes, (SortKey("name"),))
        assert [n.id for n in nodes] == ["2", "1"]
