"""Abstract node repository.

The repository is the only owner of persisted node state. The engine reads
through the methods below and never caches what it gets back.

Read methods return ``None`` for a missing node; they never raise for
absence. Write methods keep the tree invariants: every non-root node has
exactly one parent folder, folder paths are unique, and the parent
relation stays acyclic.
"""

import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Callable, Collection, List, Optional, Sequence, Set

from folderserver.exceptions import CorruptHierarchyError
from folderserver.models import ContentPage, Folder, Node, NodeType, SortKey
from folderserver.paths import PathPolicy

logger = logging.getLogger(__name__)

# Deeper than any real tree; a walk that goes further is looping.
MAX_TREE_DEPTH = 1024


def utcnow() -> datetime:
    """Naive UTC timestamp, matching what SQLite hands back."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class NodeRepository(ABC):
    """Store of nodes and parent/child edges.

    Args:
        path_policy: Delimiter and case rules for folder paths
        id_prefix: Prefix prepended to generated node identifiers
    """

    def __init__(self, path_policy: Optional[PathPolicy] = None, id_prefix: str = ""):
        self.path_policy = path_policy or PathPolicy()
        self.id_prefix = id_prefix

    def new_id(self) -> str:
        return f"{self.id_prefix}{uuid.uuid4()}"

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    @abstractmethod
    def find_folder_by_path(self, path: str) -> Optional[Folder]:
        """Folder whose canonical path equals ``path`` (already normalized)."""
        pass

    @abstractmethod
    def find_folder_by_id(self, folder_id: str) -> Optional[Folder]:
        """Folder with this id, or None if absent or not a folder."""
        pass

    @abstractmethod
    def find_node_by_id(self, node_id: str) -> Optional[Node]:
        """Any node with this id."""
        pass

    def find_root(self) -> Optional[Folder]:
        return self.find_folder_by_path(self.path_policy.root)

    def find_ancestor_chain(self, folder_id: str) -> List[Folder]:
        """Folders from the root down to ``folder_id`` inclusive.

        Returns:
            Root-first chain, empty if the folder does not exist

        Raises:
            CorruptHierarchyError: If the parent walk loops or runs away
        """
        return walk_ancestors(folder_id, self.find_folder_by_id)

    @abstractmethod
    def find_children(
        self,
        folder_id: str,
        node_types: Collection[NodeType],
        sort: Sequence[SortKey],
        limit: int,
        offset: int,
        visible_ids: Optional[Collection[str]] = None,
    ) -> List[Node]:
        """One sorted page of direct children whose type is in ``node_types``.

        Args:
            folder_id: Parent folder id
            node_types: Types to include
            sort: Sort keys, id ascending is appended as tie breaker
            limit: Page size
            offset: Number of matching children to skip
            visible_ids: If given, only children with these ids count
        """
        pass

    @abstractmethod
    def count_children(
        self,
        folder_id: str,
        node_types: Collection[NodeType],
        visible_ids: Optional[Collection[str]] = None,
    ) -> int:
        """Number of direct children matching the same filter as ``find_children``."""
        pass

    def find_children_page(
        self,
        folder_id: str,
        node_types: Collection[NodeType],
        sort: Sequence[SortKey],
        limit: int,
        offset: int,
        visible_ids: Optional[Collection[str]] = None,
    ) -> ContentPage:
        """Page and total count from one logical read.

        Adapters that can read a snapshot override this. The fallback
        counts before it pages, so a concurrent insert shows up as an
        undercount rather than a duplicate.
        """
        total = self.count_children(folder_id, node_types, visible_ids)
        nodes = self.find_children(folder_id, node_types, sort, limit, offset, visible_ids)
        return ContentPage(nodes=tuple(nodes), total_count=total)

    @abstractmethod
    def find_subtree_ids(self, node_id: str) -> List[str]:
        """``node_id`` plus the ids of all its descendants."""
        pass

    def find_subtree_ids_many(self, node_ids: Collection[str]) -> Set[str]:
        """Union of the subtrees of ``node_ids``; missing ids contribute nothing."""
        found: Set[str] = set()
        for node_id in node_ids:
            if node_id not in found:
                found.update(self.find_subtree_ids(node_id))
        return found

    @abstractmethod
    def iter_node_ids(self) -> List[str]:
        """Ids of every node in the store."""
        pass

    # ------------------------------------------------------------------
    # Write side
    # ------------------------------------------------------------------

    @abstractmethod
    def create_root(self, owner_id: Optional[str] = None) -> Folder:
        """Create the root folder, or return it if it already exists."""
        pass

    @abstractmethod
    def create_folder(self, parent_id: str, name: str, owner_id: Optional[str] = None,
                      description: Optional[str] = None) -> Folder:
        """Create a folder under ``parent_id``.

        Raises:
            HierarchyViolationError: Parent missing or not a folder
            DuplicatePathError: A folder already has the resulting path
            InvalidPathError: Name is not a valid path segment
        """
        pass

    @abstractmethod
    def create_resource(self, parent_id: str, node_type: NodeType, name: str,
                        owner_id: Optional[str] = None, description: Optional[str] = None) -> Node:
        """Create a leaf node (template, element, ...) under ``parent_id``."""
        pass

    @abstractmethod
    def rename_node(self, node_id: str, new_name: str) -> Node:
        """Rename a node; renaming a folder rewrites the paths below it."""
        pass

    @abstractmethod
    def move_node(self, node_id: str, new_parent_id: str) -> Node:
        """Re-parent a node.

        Raises:
            HierarchyViolationError: Moving the root, moving a folder into
                its own subtree, or moving under a non-folder
        """
        pass

    @abstractmethod
    def delete_node(self, node_id: str, recursive: bool = False) -> bool:
        """Delete a node. Returns False if it did not exist.

        Raises:
            HierarchyViolationError: Deleting the root, or a non-empty
                folder without ``recursive``
        """
        pass


def walk_ancestors(folder_id: str, lookup: Callable[[str], Optional[Folder]]) -> List[Folder]:
    """Walk parent references up to the root.

    Args:
        folder_id: Starting folder
        lookup: Fetches a folder by id

    Returns:
        Root-first chain ending with the starting folder, or [] if the
        starting folder does not exist

    Raises:
        CorruptHierarchyError: On a cycle, a dangling parent reference or a
            walk deeper than ``MAX_TREE_DEPTH``
    """
    folder = lookup(folder_id)
    if folder is None:
        return []

    chain = [folder]
    seen = {folder.id}
    while folder.parent_id is not None:
        if len(chain) > MAX_TREE_DEPTH:
            logger.error(f"Invariant violation: ancestor walk from {folder_id} exceeded depth {MAX_TREE_DEPTH}")
            raise CorruptHierarchyError(f"Ancestor chain of {folder_id} is deeper than {MAX_TREE_DEPTH}")
        if folder.parent_id in seen:
            logger.error(f"Invariant violation: cycle through {folder.parent_id} above folder {folder_id}")
            raise CorruptHierarchyError(f"Cycle detected above folder {folder_id} at {folder.parent_id}")
        parent = lookup(folder.parent_id)
        if parent is None:
            logger.error(f"Invariant violation: folder {folder.id} points at missing parent {folder.parent_id}")
            raise CorruptHierarchyError(f"Folder {folder.id} has a missing parent {folder.parent_id}")
        chain.append(parent)
        seen.add(parent.id)
        folder = parent

    chain.reverse()
    return chain
