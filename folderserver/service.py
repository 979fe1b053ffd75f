"""Folder contents engine.

Ties the resolver, lister, permission resolver and link builder together
into the two entry shapes the transport exposes: contents by path and
contents by id. The service keeps no state between calls.

Outcomes:
    - validation problems raise a ``ValidationError`` before any read
    - a folder that does not exist, or that the principal cannot see,
      yields ``None``
    - repository and hierarchy failures propagate unchanged
"""

import logging
from typing import Dict, List, Optional
from urllib.parse import quote, urlencode

from folderserver.exceptions import InvalidIdError, InvalidPathError, PathNotNormalizedError
from folderserver.listing import DEFAULT_LIMIT, MAX_LIMIT, ContentLister
from folderserver.models import AccessLevel, Folder, NodeListRequest, NodeListResponse, Principal
from folderserver.paging import build_links
from folderserver.permissions import PermissionResolver, PolicyEvaluator, restrict
from folderserver.repository.base import NodeRepository
from folderserver.resolver import TreeResolver
from folderserver.sorting import SortOptions

logger = logging.getLogger(__name__)

CONTENTS_BY_PATH_URL = "/folders/contents"
CONTENTS_BY_ID_URL = "/folders/{id}/contents"


class FolderContentsService:
    """Resolves folders and lists their contents on behalf of a principal.

    Args:
        repository: Node repository
        policy: Grant source for permission scoping
        sort_options: Allowed sort fields, default field, descending marker
        default_limit: Page size when none is given
        max_limit: Largest accepted page size
    """

    def __init__(
        self,
        repository: NodeRepository,
        policy: PolicyEvaluator,
        sort_options: Optional[SortOptions] = None,
        default_limit: int = DEFAULT_LIMIT,
        max_limit: int = MAX_LIMIT,
    ):
        self.repository = repository
        self.resolver = TreeResolver(repository)
        self.lister = ContentLister(repository, sort_options, default_limit, max_limit)
        self.permissions = PermissionResolver(repository, policy)

    @property
    def path_policy(self):
        return self.repository.path_policy

    def parse_list_request(self, resource_types: Optional[str], sort: Optional[str] = None,
                           limit: Optional[int] = None, offset: Optional[int] = None) -> NodeListRequest:
        """Validate transport parameters. See ``ContentLister.parse_request``."""
        return self.lister.parse_request(resource_types, sort, limit, offset)

    def check_path(self, path: Optional[str]) -> str:
        """Trim a transport path and require it to be normalized already.

        Raises:
            InvalidPathError: Missing, blank or malformed path
            PathNotNormalizedError: Path would change under normalization
        """
        trimmed = (path or "").strip()
        if not trimmed:
            raise InvalidPathError("You need to specify path as a request parameter!")
        normalized = self.path_policy.normalize(trimmed)
        if normalized != trimmed:
            raise PathNotNormalizedError(trimmed, normalized)
        return trimmed

    def contents_by_path(
        self,
        principal: Principal,
        path: Optional[str],
        resource_types: Optional[str],
        sort: Optional[str] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
        base_url: Optional[str] = None,
    ) -> Optional[NodeListResponse]:
        """List the folder at ``path``.

        Args:
            principal: Caller
            path: Folder path; must already be normalized
            resource_types: Comma separated node types (required)
            sort: Comma separated sort fields
            limit: Page size
            offset: Page offset
            base_url: Absolute URL of the request, used for paging links

        Returns:
            The listing, or None if the folder is not found
        """
        path = self.check_path(path)
        request = self.parse_list_request(resource_types, sort, limit, offset)
        if base_url is None:
            base_url = self._default_url(CONTENTS_BY_PATH_URL, request, path=path)

        folder = self.resolver.resolve_by_path(path)
        return self._contents(principal, folder, request, base_url)

    def contents_by_id(
        self,
        principal: Principal,
        folder_id: Optional[str],
        resource_types: Optional[str],
        sort: Optional[str] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
        base_url: Optional[str] = None,
    ) -> Optional[NodeListResponse]:
        """List the folder with id ``folder_id``. Same contract as ``contents_by_path``."""
        folder_id = (folder_id or "").strip()
        if not folder_id:
            raise InvalidIdError("You need to specify id as a request parameter!")
        request = self.parse_list_request(resource_types, sort, limit, offset)
        if base_url is None:
            base_url = self._default_url(CONTENTS_BY_ID_URL.format(id=quote(folder_id, safe="")), request)

        folder = self.resolver.resolve_by_id(folder_id)
        return self._contents(principal, folder, request, base_url)

    def _default_url(self, route: str, request: NodeListRequest, **params) -> str:
        params["resource_types"] = ",".join(sorted(t.value for t in request.node_types))
        params["sort"] = self.lister.sort_options.format(request.sort)
        return f"{route}?{urlencode(params)}"

    def _visible_set(self, principal: Principal) -> Optional[Dict[str, AccessLevel]]:
        if principal.is_admin:
            return None
        return self.permissions.accessible_node_ids(principal)

    def _contents(self, principal: Principal, folder: Optional[Folder],
                  request: NodeListRequest, base_url: str) -> Optional[NodeListResponse]:
        if folder is None:
            return None

        accessible = self._visible_set(principal)
        if accessible is not None and folder.id not in accessible:
            logger.debug(f"Principal {principal.id} cannot see folder {folder.id}")
            return None

        path_info = self.resolver.ancestor_chain(folder)
        if accessible is not None:
            path_info = restrict(path_info, accessible)

        page = self.lister.list(folder, request, visible_ids=accessible)
        return NodeListResponse(
            request=request,
            total_count=page.total_count,
            current_offset=request.offset,
            resources=list(page.nodes),
            path_info=path_info,
            paging=build_links(base_url, page.total_count, request.limit, request.offset),
        )

    def path_info(self, principal: Principal, path: Optional[str]) -> Optional[List[Folder]]:
        """Ancestor chain of the folder at ``path`` as seen by ``principal``."""
        path = self.check_path(path)
        folder = self.resolver.resolve_by_path(path)
        if folder is None:
            return None
        accessible = self._visible_set(principal)
        if accessible is not None and folder.id not in accessible:
            return None
        chain = self.resolver.ancestor_chain(folder)
        return chain if accessible is None else restrict(chain, accessible)

    def accessible_node_ids(self, principal: Principal) -> Dict[str, AccessLevel]:
        """Node id → access level for everything ``principal`` may access."""
        return self.permissions.accessible_node_ids(principal)
