"""Folder resolution by path or id, and ancestor-chain reconstruction.

Absence is a normal outcome here: the resolve methods return ``None``
rather than raising, and callers decide what "not found" means for them.
"""

import logging
from typing import List, Optional

from folderserver.exceptions import CorruptHierarchyError
from folderserver.models import Folder
from folderserver.repository.base import NodeRepository

logger = logging.getLogger(__name__)


class TreeResolver:
    """Locates folders and their ancestor chains in a repository.

    Args:
        repository: Node repository to read from
    """

    def __init__(self, repository: NodeRepository):
        self.repository = repository

    @property
    def path_policy(self):
        return self.repository.path_policy

    def resolve_by_path(self, path: str) -> Optional[Folder]:
        """Resolve a folder by its normalized path.

        Args:
            path: Already-normalized path

        Returns:
            The folder, or None if no folder has this path
        """
        return self.repository.find_folder_by_path(path)

    def resolve_by_id(self, folder_id: str) -> Optional[Folder]:
        """Resolve a folder by identifier.

        Returns:
            The folder, or None if the id is unknown or names a non-folder
        """
        return self.repository.find_folder_by_id(folder_id)

    def ancestor_chain(self, folder: Folder) -> List[Folder]:
        """Folders from the root down to ``folder`` inclusive.

        The repository does the walk; the result is checked here so a
        broken tree is reported instead of silently truncated.

        Raises:
            CorruptHierarchyError: If the chain does not run root → folder
                through consecutive parent links without repeats
        """
        chain = self.repository.find_ancestor_chain(folder.id)
        self._verify_chain(folder, chain)
        return chain

    def _verify_chain(self, folder: Folder, chain: List[Folder]) -> None:
        if not chain:
            self._corrupt(f"Folder {folder.id} vanished while reading its ancestors")
        if chain[-1].id != folder.id:
            self._corrupt(f"Ancestor chain of {folder.id} ends at {chain[-1].id}")
        if chain[0].parent_id is not None:
            self._corrupt(f"Ancestor chain of {folder.id} does not start at the root")

        seen = set()
        previous = None
        for link in chain:
            if link.id in seen:
                self._corrupt(f"Cycle detected at {link.id} above folder {folder.id}")
            seen.add(link.id)
            if previous is not None and link.parent_id != previous.id:
                self._corrupt(f"Folder {link.id} is not a child of {previous.id}")
            previous = link

    def _corrupt(self, message: str) -> None:
        logger.error(f"Invariant violation: {message}")
        raise CorruptHierarchyError(message)

    def ancestor_chain_by_path(self, path: str) -> List[Folder]:
        """Ancestor chain for the folder at ``path``, or [] if there is none."""
        folder = self.resolve_by_path(path)
        if folder is None:
            return []
        return self.ancestor_chain(folder)
