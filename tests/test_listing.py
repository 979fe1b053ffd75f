"""
Tests for ContentLister - validated, paged folder listings.

Tests cover:
- Defaults for limit, offset and sort
- Limit, offset, type filter and sort validation
- Validation happening before any repository access
- Paging through a folder with the total reported on every page
- Visibility restriction passed down to the repository
"""

from unittest.mock import Mock

import pytest

from folderserver.exceptions import (
    InvalidLimitError,
    InvalidNodeTypeError,
    InvalidOffsetError,
    InvalidSortFieldError,
    ValidationError,
)
from folderserver.listing import DEFAULT_LIMIT, MAX_LIMIT, ContentLister
from folderserver.models import ContentPage, NodeType, SortKey
from folderserver.repository import InMemoryNodeRepository
from folderserver.repository.base import NodeRepository
from folderserver.sorting import SortOptions


@pytest.fixture
def repo():
    repository = InMemoryNodeRepository()
    root = repository.create_root()
    studies = repository.create_folder(root.id, "studies")
    for i in range(12):
        repository.create_resource(studies.id, NodeType.TEMPLATE, f"template-{i:02d}")
    for i in range(3):
        repository.create_folder(studies.id, f"folder-{i}")
    return repository


@pytest.fixture
def lister(repo):
    return ContentLister(repo)


@pytest.fixture
def studies(repo):
    return repo.find_folder_by_path("/studies")


class TestParseRequest:
    """Test building requests from transport values."""

    def test_defaults(self, lister):
        request = lister.parse_request("template")
        assert request.limit == DEFAULT_LIMIT == 50
        assert request.offset == 0
        assert request.sort == (SortKey("name"),)
        assert request.node_types == frozenset({NodeType.TEMPLATE})

    def test_type_list_is_trimmed_and_case_insensitive(self, lister):
        request = lister.parse_request(" Template , FOLDER,,instance ")
        assert request.node_types == frozenset({NodeType.TEMPLATE, NodeType.FOLDER, NodeType.INSTANCE})

    @pytest.mark.parametrize("resource_types", [None, "", "  ", ","])
    def test_missing_types(self, lister, resource_types):
        with pytest.raises(InvalidNodeTypeError):
            lister.parse_request(resource_types)

    def test_unknown_type(self, lister):
        with pytest.raises(InvalidNodeTypeError):
            lister.parse_request("template,dataset")

    @pytest.mark.parametrize("limit", [0, -1, MAX_LIMIT + 1])
    def test_limit_out_of_range(self, lister, limit):
        with pytest.raises(InvalidLimitError):
            lister.parse_request("template", limit=limit)

    @pytest.mark.parametrize("limit", [1, MAX_LIMIT])
    def test_limit_bounds_accepted(self, lister, limit):
        assert lister.parse_request("template", limit=limit).limit == limit

    @pytest.mark.parametrize("limit", [True, "10", 2.5])
    def test_limit_must_be_integer(self, lister, limit):
        with pytest.raises(InvalidLimitError):
            lister.parse_request("template", limit=limit)

    def test_negative_offset(self, lister):
        with pytest.raises(InvalidOffsetError):
            lister.parse_request("template", offset=-1)

    def test_unknown_sort(self, lister):
        with pytest.raises(InvalidSortFieldError):
            lister.parse_request("template", sort="size")

    def test_errors_are_validation_errors(self, lister):
        for kwargs in ({"limit": 0}, {"offset": -5}, {"sort": "bogus"}):
            with pytest.raises(ValidationError):
                lister.parse_request("template", **kwargs)


class TestBuildRequest:
    """Test building requests from typed values."""

    def test_accepts_sort_keys(self, lister):
        request = lister.build_request([NodeType.FOLDER], [SortKey("createdOn", True)], 10, 0)
        assert request.sort == (SortKey("createdOn", True),)

    def test_rejects_unknown_sort_key(self, lister):
        with pytest.raises(InvalidSortFieldError):
            lister.build_request([NodeType.FOLDER], [SortKey("size")], 10, 0)

    def test_empty_types(self, lister):
        with pytest.raises(InvalidNodeTypeError):
            lister.build_request([], None, 10, 0)

    def test_configured_limits(self, repo):
        lister = ContentLister(repo, default_limit=5, max_limit=20)
        assert lister.parse_request("folder").limit == 5
        with pytest.raises(InvalidLimitError):
            lister.parse_request("folder", limit=21)

    def test_invalid_configuration(self, repo):
        with pytest.raises(ValueError):
            ContentLister(repo, default_limit=200, max_limit=100)


class TestNoReadOnInvalidInput:
    """Test that rejected requests never reach the repository."""

    @pytest.fixture
    def spy_repo(self):
        return Mock(spec=NodeRepository)

    @pytest.mark.parametrize("kwargs", [
        {"resource_types": None},
        {"resource_types": "template", "limit": 0},
        {"resource_types": "template", "offset": -1},
        {"resource_types": "template", "sort": "bogus"},
    ])
    def test_list_contents_validates_first(self, spy_repo, studies, kwargs):
        """
        Given: a lister over a spy repository
        When: list_contents is called with an invalid parameter
        Then: a validation error is raised and the repository is never called
        """
        lister = ContentLister(spy_repo)
        types = [kwargs["resource_types"]] if kwargs["resource_types"] else []
        with pytest.raises(ValidationError):
            lister.list_contents(studies, types, kwargs.get("sort"), kwargs.get("limit", 10),
                                 kwargs.get("offset", 0))
        assert spy_repo.mock_calls == []


class TestList:
    """Test listing folder contents."""

    def test_first_page(self, lister, studies):
        request = lister.parse_request("template", limit=5)
        page = lister.list(studies, request)
        assert [n.name for n in page.nodes] == [f"template-{i:02d}" for i in range(5)]
        assert page.total_count == 12

    def test_walk_all_pages(self, lister, studies):
        """Test that paging visits every child exactly once."""
        names = []
        offset = 0
        while True:
            page = lister.list(studies, lister.parse_request("template,folder", limit=4, offset=offset))
            assert page.total_count == 15
            names.extend(n.name for n in page.nodes)
            offset += 4
            if offset >= page.total_count:
                break
        assert len(names) == 15
        assert len(set(names)) == 15

    def test_offset_past_end(self, lister, studies):
        page = lister.list(studies, lister.parse_request("template", offset=100))
        assert page.nodes == ()
        assert page.total_count == 12

    def test_descending_sort(self, lister, studies):
        page = lister.list(studies, lister.parse_request("template", sort="-name", limit=2))
        assert [n.name for n in page.nodes] == ["template-11", "template-10"]

    def test_visible_ids_passed_through(self, studies):
        spy_repo = Mock(spec=NodeRepository)
        spy_repo.find_children_page.return_value = ContentPage(nodes=(), total_count=0)
        lister = ContentLister(spy_repo)
        request = lister.parse_request("template")

        lister.list(studies, request, visible_ids={"a"})

        spy_repo.find_children_page.assert_called_once_with(
            studies.id, request.node_types, request.sort, 50, 0, {"a"})

    def test_custom_sort_options(self, repo, studies):
        lister = ContentLister(repo, SortOptions(descending_marker="~"))
        page = lister.list(studies, lister.parse_request("template", sort="~name", limit=1))
        assert page.nodes[0].name == "template-11"

    def test_custom_marker_echoed_in_request(self, repo):
        lister = ContentLister(repo, SortOptions(descending_marker="~"))
        request = lister.parse_request("template", sort="~name,createdOn")
        assert request.to_dict()["sort"] == ["~name", "createdOn"]
