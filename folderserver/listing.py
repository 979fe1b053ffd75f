"""Folder content listing: type filter, sort, limit/offset.

All validation happens in ``build_request``/``parse_request`` before the
repository is touched. Page and total come from one repository read.
"""

import logging
from typing import Collection, Iterable, Optional, Sequence, Union

from folderserver.exceptions import (
    InvalidLimitError,
    InvalidNodeTypeError,
    InvalidOffsetError,
    InvalidSortFieldError,
)
from folderserver.models import ContentPage, Folder, NodeListRequest, NodeType, SortKey
from folderserver.repository.base import NodeRepository
from folderserver.sorting import SortOptions

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 50
MAX_LIMIT = 100

SortSpec = Union[str, Sequence[SortKey], Sequence[str], None]


class ContentLister:
    """Lists the direct children of a folder.

    Args:
        repository: Node repository to read from
        sort_options: Allowed sort fields and descending marker
        default_limit: Page size when the caller gives none
        max_limit: Largest accepted page size
    """

    def __init__(
        self,
        repository: NodeRepository,
        sort_options: Optional[SortOptions] = None,
        default_limit: int = DEFAULT_LIMIT,
        max_limit: int = MAX_LIMIT,
    ):
        if not 1 <= default_limit <= max_limit:
            raise ValueError(f"default_limit {default_limit} must be between 1 and {max_limit}")
        self.repository = repository
        self.sort_options = sort_options or SortOptions()
        self.default_limit = default_limit
        self.max_limit = max_limit

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _check_limit(self, limit) -> int:
        if isinstance(limit, bool) or not isinstance(limit, int):
            raise InvalidLimitError(f"Limit must be an integer, got {limit!r}")
        if limit <= 0:
            raise InvalidLimitError("You should specify a positive limit!")
        if limit > self.max_limit:
            raise InvalidLimitError(f"You should specify a limit smaller than or equal to {self.max_limit}!")
        return limit

    def _check_offset(self, offset) -> int:
        if isinstance(offset, bool) or not isinstance(offset, int):
            raise InvalidOffsetError(f"Offset must be an integer, got {offset!r}")
        if offset < 0:
            raise InvalidOffsetError("You should specify a positive or zero offset!")
        return offset

    def _check_types(self, node_types: Iterable[Union[NodeType, str]]) -> frozenset:
        types = frozenset(
            t if isinstance(t, NodeType) else NodeType.for_value(t)
            for t in node_types
        )
        if not types:
            raise InvalidNodeTypeError("You must pass in resource_types as a comma separated list!")
        return types

    def _check_sort(self, sort: SortSpec) -> tuple:
        if sort is None or isinstance(sort, str):
            return self.sort_options.parse(sort)
        keys = []
        for entry in sort:
            if isinstance(entry, SortKey):
                if not self.sort_options.is_known_field(entry.field):
                    raise InvalidSortFieldError(
                        f"You passed an illegal sort type: '{entry.field}'. "
                        f"The allowed values are: {', '.join(self.sort_options.fields)}"
                    )
                keys.append(entry)
            else:
                keys.extend(self.sort_options.parse(entry))
        return tuple(keys) if keys else self.sort_options.parse(None)

    def build_request(
        self,
        node_types: Iterable[Union[NodeType, str]],
        sort: SortSpec,
        limit: int,
        offset: int,
    ) -> NodeListRequest:
        """Validate listing parameters into an immutable request.

        Raises:
            InvalidLimitError: limit outside ``1..max_limit``
            InvalidOffsetError: negative offset
            InvalidSortFieldError: unknown sort field
            InvalidNodeTypeError: empty or unknown type filter
        """
        return NodeListRequest(
            node_types=self._check_types(node_types),
            sort=self._check_sort(sort),
            limit=self._check_limit(limit),
            offset=self._check_offset(offset),
            descending_marker=self.sort_options.descending_marker,
        )

    def parse_request(
        self,
        resource_types: Optional[str],
        sort: Optional[str] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> NodeListRequest:
        """Build a request from transport values, applying defaults.

        Args:
            resource_types: Comma separated type names (required)
            sort: Comma separated sort fields, default field if absent
            limit: Page size, ``default_limit`` if absent
            offset: Start offset, 0 if absent
        """
        text = (resource_types or "").strip()
        if not text:
            raise InvalidNodeTypeError("You must pass in resource_types as a comma separated list!")
        names = [name for name in (part.strip() for part in text.split(",")) if name]
        return self.build_request(
            names,
            sort,
            self.default_limit if limit is None else limit,
            0 if offset is None else offset,
        )

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    def list(self, folder: Folder, request: NodeListRequest,
             visible_ids: Optional[Collection[str]] = None) -> ContentPage:
        """Fetch one page of ``folder``'s children and the total match count.

        Args:
            folder: Folder whose direct children are listed
            request: Validated listing request
            visible_ids: Restrict to these ids (permission scoping)

        Returns:
            The page and the total count under the same filter; the page is
            empty when the offset is past the end
        """
        page = self.repository.find_children_page(
            folder.id,
            request.node_types,
            request.sort,
            request.limit,
            request.offset,
            visible_ids,
        )
        logger.debug(
            f"Listed {len(page.nodes)} of {page.total_count} children of {folder.id} "
            f"(offset={request.offset}, limit={request.limit})"
        )
        return page

    def list_contents(self, folder: Folder, type_filter, sort_spec: SortSpec, limit: int, offset: int,
                      visible_ids: Optional[Collection[str]] = None) -> ContentPage:
        """Validate and list in one call."""
        request = self.build_request(type_filter, sort_spec, limit, offset)
        return self.list(folder, request, visible_ids)
