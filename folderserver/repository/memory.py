"""Dict-backed node repository.

Useful for tests and for embedding the engine without a database. A single
re-entrant lock makes every public call see one consistent snapshot.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Collection, Dict, List, Optional, Set

from folderserver.exceptions import DuplicatePathError, HierarchyViolationError
from folderserver.models import ContentPage, Folder, Node, NodeType
from folderserver.paths import PathPolicy
from folderserver.repository.base import NodeRepository, utcnow
from folderserver.sorting import sort_nodes

logger = logging.getLogger(__name__)


@dataclass
class _Record:
    id: str
    node_type: NodeType
    name: str
    owner_id: Optional[str]
    created_on: datetime
    modified_on: datetime
    parent_id: Optional[str] = None
    description: Optional[str] = None
    path: Optional[str] = None

    def to_node(self) -> Node:
        if self.node_type is NodeType.FOLDER:
            return Folder(
                id=self.id,
                node_type=self.node_type,
                name=self.name,
                owner_id=self.owner_id,
                created_on=self.created_on,
                modified_on=self.modified_on,
                parent_id=self.parent_id,
                description=self.description,
                path=self.path,
                is_root=self.parent_id is None,
            )
        return Node(
            id=self.id,
            node_type=self.node_type,
            name=self.name,
            owner_id=self.owner_id,
            created_on=self.created_on,
            modified_on=self.modified_on,
            parent_id=self.parent_id,
            description=self.description,
        )


class InMemoryNodeRepository(NodeRepository):
    """Node repository kept entirely in process memory."""

    def __init__(self, path_policy: Optional[PathPolicy] = None, id_prefix: str = ""):
        super().__init__(path_policy, id_prefix)
        self._lock = threading.RLock()
        self._records: Dict[str, _Record] = {}
        self._children: Dict[str, Set[str]] = {}
        self._folder_paths: Dict[str, str] = {}

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    def find_folder_by_path(self, path: str) -> Optional[Folder]:
        with self._lock:
            folder_id = self._folder_paths.get(self.path_policy.key(path))
            if folder_id is None:
                return None
            return self._records[folder_id].to_node()

    def find_folder_by_id(self, folder_id: str) -> Optional[Folder]:
        with self._lock:
            record = self._records.get(folder_id)
            if record is None or record.node_type is not NodeType.FOLDER:
                return None
            return record.to_node()

    def find_node_by_id(self, node_id: str) -> Optional[Node]:
        with self._lock:
            record = self._records.get(node_id)
            return record.to_node() if record else None

    def find_ancestor_chain(self, folder_id: str) -> List[Folder]:
        with self._lock:
            return super().find_ancestor_chain(folder_id)

    def _matching_children(self, folder_id, node_types, visible_ids) -> List[Node]:
        types = set(node_types)
        matches = []
        for child_id in self._children.get(folder_id, ()):
            record = self._records[child_id]
            if record.node_type not in types:
                continue
            if visible_ids is not None and child_id not in visible_ids:
                continue
            matches.append(record.to_node())
        return matches

    def find_children(self, folder_id, node_types, sort, limit, offset, visible_ids=None) -> List[Node]:
        with self._lock:
            ordered = sort_nodes(self._matching_children(folder_id, node_types, visible_ids), sort)
        return ordered[offset:offset + limit]

    def count_children(self, folder_id, node_types, visible_ids=None) -> int:
        with self._lock:
            return len(self._matching_children(folder_id, node_types, visible_ids))

    def find_children_page(self, folder_id, node_types, sort, limit, offset, visible_ids=None) -> ContentPage:
        with self._lock:
            matches = self._matching_children(folder_id, node_types, visible_ids)
        ordered = sort_nodes(matches, sort)
        return ContentPage(nodes=tuple(ordered[offset:offset + limit]), total_count=len(ordered))

    def find_subtree_ids(self, node_id: str) -> List[str]:
        with self._lock:
            return self._subtree_ids(node_id)

    def _subtree_ids(self, node_id: str) -> List[str]:
        if node_id not in self._records:
            return []
        result = []
        pending = [node_id]
        while pending:
            current = pending.pop()
            result.append(current)
            pending.extend(self._children.get(current, ()))
        return result

    def find_subtree_ids_many(self, node_ids: Collection[str]) -> Set[str]:
        with self._lock:
            found: Set[str] = set()
            pending = [node_id for node_id in node_ids if node_id in self._records]
            while pending:
                current = pending.pop()
                if current in found:
                    continue
                found.add(current)
                pending.extend(self._children.get(current, ()))
            return found

    def iter_node_ids(self) -> List[str]:
        with self._lock:
            return list(self._records)

    # ------------------------------------------------------------------
    # Write side
    # ------------------------------------------------------------------

    def create_root(self, owner_id: Optional[str] = None) -> Folder:
        with self._lock:
            root_key = self.path_policy.key(self.path_policy.root)
            existing = self._folder_paths.get(root_key)
            if existing is not None:
                return self._records[existing].to_node()

            now = utcnow()
            record = _Record(
                id=self.new_id(),
                node_type=NodeType.FOLDER,
                name=self.path_policy.root,
                owner_id=owner_id,
                created_on=now,
                modified_on=now,
                path=self.path_policy.root,
            )
            self._records[record.id] = record
            self._children[record.id] = set()
            self._folder_paths[root_key] = record.id
            logger.info(f"Created root folder {record.id}")
            return record.to_node()

    def _parent_folder(self, parent_id: str) -> _Record:
        parent = self._records.get(parent_id)
        if parent is None:
            raise HierarchyViolationError(f"Parent folder {parent_id} does not exist")
        if parent.node_type is not NodeType.FOLDER:
            raise HierarchyViolationError(f"Parent {parent_id} is a {parent.node_type.value}, not a folder")
        return parent

    def _check_free_path(self, path: str, moving_id: Optional[str] = None) -> None:
        owner = self._folder_paths.get(self.path_policy.key(path))
        if owner is not None and owner != moving_id:
            raise DuplicatePathError(f"A folder already exists at '{path}'")

    def _insert(self, parent: _Record, node_type: NodeType, name: str,
                owner_id: Optional[str], description: Optional[str]) -> _Record:
        name = self.path_policy.validate_name(name)
        path = None
        if node_type is NodeType.FOLDER:
            path = self.path_policy.child_path(parent.path, name)
            self._check_free_path(path)

        now = utcnow()
        record = _Record(
            id=self.new_id(),
            node_type=node_type,
            name=name,
            owner_id=owner_id,
            created_on=now,
            modified_on=now,
            parent_id=parent.id,
            description=description,
            path=path,
        )
        self._records[record.id] = record
        self._children[parent.id].add(record.id)
        if path is not None:
            self._children[record.id] = set()
            self._folder_paths[self.path_policy.key(path)] = record.id
        return record

    def create_folder(self, parent_id, name, owner_id=None, description=None) -> Folder:
        with self._lock:
            record = self._insert(self._parent_folder(parent_id), NodeType.FOLDER, name, owner_id, description)
            logger.info(f"Created folder {record.path} ({record.id})")
            return record.to_node()

    def create_resource(self, parent_id, node_type, name, owner_id=None, description=None) -> Node:
        if node_type is NodeType.FOLDER:
            return self.create_folder(parent_id, name, owner_id, description)
        with self._lock:
            record = self._insert(self._parent_folder(parent_id), node_type, name, owner_id, description)
            logger.info(f"Created {node_type.value} '{name}' ({record.id}) in {parent_id}")
            return record.to_node()

    def _rewrite_paths(self, folder: _Record, new_path: str) -> None:
        old_path = folder.path
        for node_id in self._subtree_ids(folder.id):
            record = self._records[node_id]
            if record.path is None:
                continue
            del self._folder_paths[self.path_policy.key(record.path)]
            record.path = new_path + record.path[len(old_path):]
        for node_id in self._subtree_ids(folder.id):
            record = self._records[node_id]
            if record.path is not None:
                self._folder_paths[self.path_policy.key(record.path)] = node_id

    def rename_node(self, node_id: str, new_name: str) -> Node:
        with self._lock:
            record = self._records.get(node_id)
            if record is None:
                raise HierarchyViolationError(f"Node {node_id} does not exist")
            if record.parent_id is None:
                raise HierarchyViolationError("The root folder cannot be renamed")
            new_name = self.path_policy.validate_name(new_name)
            if record.path is not None:
                parent = self._records[record.parent_id]
                new_path = self.path_policy.child_path(parent.path, new_name)
                self._check_free_path(new_path, moving_id=record.id)
                self._rewrite_paths(record, new_path)
            record.name = new_name
            record.modified_on = utcnow()
            logger.info(f"Renamed node {node_id} to '{new_name}'")
            return record.to_node()

    def move_node(self, node_id: str, new_parent_id: str) -> Node:
        with self._lock:
            record = self._records.get(node_id)
            if record is None:
                raise HierarchyViolationError(f"Node {node_id} does not exist")
            if record.parent_id is None:
                raise HierarchyViolationError("The root folder cannot be moved")
            parent = self._parent_folder(new_parent_id)
            if record.path is not None:
                if new_parent_id in self._subtree_ids(record.id):
                    raise HierarchyViolationError(
                        f"Cannot move folder {record.path} into its own subtree"
                    )
                new_path = self.path_policy.child_path(parent.path, record.name)
                self._check_free_path(new_path, moving_id=record.id)
                self._rewrite_paths(record, new_path)

            self._children[record.parent_id].discard(record.id)
            self._children[parent.id].add(record.id)
            record.parent_id = parent.id
            record.modified_on = utcnow()
            logger.info(f"Moved node {node_id} under {new_parent_id}")
            return record.to_node()

    def delete_node(self, node_id: str, recursive: bool = False) -> bool:
        with self._lock:
            record = self._records.get(node_id)
            if record is None:
                return False
            if record.parent_id is None:
                raise HierarchyViolationError("The root folder cannot be deleted")
            if self._children.get(node_id) and not recursive:
                raise HierarchyViolationError(
                    f"Folder {record.path} is not empty. Use recursive=True to delete its contents too."
                )

            for descendant_id in self._subtree_ids(node_id):
                descendant = self._records.pop(descendant_id)
                self._children.pop(descendant_id, None)
                if descendant.path is not None:
                    self._folder_paths.pop(self.path_policy.key(descendant.path), None)
            self._children[record.parent_id].discard(node_id)
            logger.info(f"Deleted node {node_id}")
            return True
