"""SQLAlchemy-backed node repository.

One session per call. Listings fetch the page and the total in a single
SELECT (``count(*) OVER ()``), so both come from the same snapshot. Only an
empty page needs a second statement to learn the total.
"""

import logging
from contextlib import contextmanager
from typing import Callable, Collection, List, Optional, Sequence, Set

from sqlalchemy import delete, false, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from folderserver.db.models import NodeGrant, NodeRecord
from folderserver.exceptions import (
    DuplicatePathError,
    FolderServerError,
    HierarchyViolationError,
    RepositoryError,
)
from folderserver.models import ContentPage, Folder, Node, NodeType, SortKey
from folderserver.paths import PathPolicy
from folderserver.repository.base import NodeRepository, utcnow, walk_ancestors

logger = logging.getLogger(__name__)

# Seed ids per recursive subtree query, below SQLite's bound-parameter limit
_SEED_BATCH = 500

_SORT_COLUMNS = {
    'name': lambda: NodeRecord.name_key,
    'createdOn': lambda: NodeRecord.created_at,
    'modifiedOn': lambda: NodeRecord.updated_at,
    'nodeType': lambda: NodeRecord.node_type,
}


def record_to_node(record: NodeRecord) -> Node:
    """Convert a row into the matching domain object."""
    node_type = NodeType(record.node_type)
    if node_type is NodeType.FOLDER:
        return Folder(
            id=record.id,
            node_type=node_type,
            name=record.name,
            owner_id=record.owner_id,
            created_on=record.created_at,
            modified_on=record.updated_at,
            parent_id=record.parent_id,
            description=record.description,
            path=record.path,
            is_root=record.parent_id is None,
        )
    return Node(
        id=record.id,
        node_type=node_type,
        name=record.name,
        owner_id=record.owner_id,
        created_on=record.created_at,
        modified_on=record.updated_at,
        parent_id=record.parent_id,
        description=record.description,
    )


class SqlNodeRepository(NodeRepository):
    """Node repository over a relational database.

    Args:
        session_factory: Callable returning a new SQLAlchemy session
        path_policy: Delimiter and case rules for folder paths
        id_prefix: Prefix prepended to generated node identifiers
    """

    def __init__(self, session_factory: Callable[[], Session],
                 path_policy: Optional[PathPolicy] = None, id_prefix: str = ""):
        super().__init__(path_policy, id_prefix)
        self.session_factory = session_factory

    @contextmanager
    def _read(self):
        session = self.session_factory()
        try:
            yield session
        except SQLAlchemyError as e:
            logger.exception(f"Node repository read failed: {e}")
            raise RepositoryError(f"Node repository read failed: {e}") from e
        finally:
            session.close()

    @contextmanager
    def _write(self):
        session = self.session_factory()
        try:
            yield session
            session.commit()
        except IntegrityError as e:
            session.rollback()
            if 'path_key' in str(e.orig):
                raise DuplicatePathError(f"A folder already exists at this path: {e.orig}") from e
            logger.exception(f"Node repository write failed: {e}")
            raise RepositoryError(f"Node repository write failed: {e}") from e
        except SQLAlchemyError as e:
            session.rollback()
            logger.exception(f"Node repository write failed: {e}")
            raise RepositoryError(f"Node repository write failed: {e}") from e
        except FolderServerError:
            session.rollback()
            raise
        finally:
            session.close()

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    def _folder_by_key(self, session: Session, path: str) -> Optional[NodeRecord]:
        return session.scalars(
            select(NodeRecord).where(NodeRecord.path_key == self.path_policy.key(path))
        ).first()

    def find_folder_by_path(self, path: str) -> Optional[Folder]:
        with self._read() as session:
            record = self._folder_by_key(session, path)
            return record_to_node(record) if record else None

    def _folder_lookup(self, session: Session) -> Callable[[str], Optional[Folder]]:
        def lookup(folder_id: str) -> Optional[Folder]:
            record = session.get(NodeRecord, folder_id)
            if record is None or record.node_type != NodeType.FOLDER.value:
                return None
            return record_to_node(record)
        return lookup

    def find_folder_by_id(self, folder_id: str) -> Optional[Folder]:
        with self._read() as session:
            return self._folder_lookup(session)(folder_id)

    def find_node_by_id(self, node_id: str) -> Optional[Node]:
        with self._read() as session:
            record = session.get(NodeRecord, node_id)
            return record_to_node(record) if record else None

    def find_ancestor_chain(self, folder_id: str) -> List[Folder]:
        with self._read() as session:
            return walk_ancestors(folder_id, self._folder_lookup(session))

    def _children_filter(self, folder_id, node_types, visible_ids):
        criteria = [
            NodeRecord.parent_id == folder_id,
            NodeRecord.node_type.in_(sorted(t.value for t in node_types)),
        ]
        if visible_ids is not None:
            if visible_ids:
                criteria.append(NodeRecord.id.in_(list(visible_ids)))
            else:
                criteria.append(false())
        return criteria

    def _ordering(self, sort: Sequence[SortKey]) -> list:
        order = []
        for key in sort:
            column = _SORT_COLUMNS[key.field]()
            order.append(column.desc() if key.descending else column.asc())
        order.append(NodeRecord.id.asc())
        return order

    def _count(self, session, folder_id, node_types, visible_ids) -> int:
        stmt = select(func.count()).select_from(NodeRecord).where(
            *self._children_filter(folder_id, node_types, visible_ids)
        )
        return session.scalar(stmt) or 0

    def find_children(self, folder_id, node_types, sort, limit, offset, visible_ids=None) -> List[Node]:
        stmt = (
            select(NodeRecord)
            .where(*self._children_filter(folder_id, node_types, visible_ids))
            .order_by(*self._ordering(sort))
            .limit(limit)
            .offset(offset)
        )
        with self._read() as session:
            return [record_to_node(r) for r in session.scalars(stmt)]

    def count_children(self, folder_id, node_types, visible_ids=None) -> int:
        with self._read() as session:
            return self._count(session, folder_id, node_types, visible_ids)

    def find_children_page(self, folder_id, node_types, sort, limit, offset, visible_ids=None) -> ContentPage:
        total_column = func.count().over().label('total_count')
        stmt = (
            select(NodeRecord, total_column)
            .where(*self._children_filter(folder_id, node_types, visible_ids))
            .order_by(*self._ordering(sort))
            .limit(limit)
            .offset(offset)
        )
        with self._read() as session:
            rows = session.execute(stmt).all()
            if rows:
                return ContentPage(
                    nodes=tuple(record_to_node(row[0]) for row in rows),
                    total_count=rows[0].total_count,
                )
            # Past the end: the window column has nothing to report
            total = self._count(session, folder_id, node_types, visible_ids)
            return ContentPage(nodes=(), total_count=total)

    def _subtree_select(self, seed):
        subtree = select(NodeRecord.id).where(seed).cte(name='subtree', recursive=True)
        # UNION (not UNION ALL) so a corrupt cycle cannot recurse forever
        subtree = subtree.union(
            select(NodeRecord.id).where(NodeRecord.parent_id == subtree.c.id)
        )
        return select(subtree.c.id)

    def _subtree_ids(self, session: Session, node_id: str) -> List[str]:
        return list(session.scalars(self._subtree_select(NodeRecord.id == node_id)))

    def find_subtree_ids(self, node_id: str) -> List[str]:
        with self._read() as session:
            return self._subtree_ids(session, node_id)

    def find_subtree_ids_many(self, node_ids: Collection[str]) -> Set[str]:
        roots = sorted(set(node_ids))
        found: Set[str] = set()
        if not roots:
            return found
        with self._read() as session:
            for start in range(0, len(roots), _SEED_BATCH):
                batch = roots[start:start + _SEED_BATCH]
                found.update(session.scalars(self._subtree_select(NodeRecord.id.in_(batch))))
        return found

    def iter_node_ids(self) -> List[str]:
        with self._read() as session:
            return list(session.scalars(select(NodeRecord.id)))

    # ------------------------------------------------------------------
    # Write side
    # ------------------------------------------------------------------

    def create_root(self, owner_id: Optional[str] = None) -> Folder:
        root = self.path_policy.root
        with self._write() as session:
            existing = self._folder_by_key(session, root)
            if existing is not None:
                return record_to_node(existing)

            now = utcnow()
            record = NodeRecord(
                id=self.new_id(),
                node_type=NodeType.FOLDER.value,
                name=root,
                name_key=root.casefold(),
                owner_id=owner_id,
                path=root,
                path_key=self.path_policy.key(root),
                created_at=now,
                updated_at=now,
            )
            session.add(record)
            session.flush()
            logger.info(f"Created root folder {record.id}")
            return record_to_node(record)

    def _parent_folder(self, session: Session, parent_id: str) -> NodeRecord:
        parent = session.get(NodeRecord, parent_id)
        if parent is None:
            raise HierarchyViolationError(f"Parent folder {parent_id} does not exist")
        if parent.node_type != NodeType.FOLDER.value:
            raise HierarchyViolationError(f"Parent {parent_id} is a {parent.node_type}, not a folder")
        return parent

    def _check_free_path(self, session: Session, path: str, moving_id: Optional[str] = None) -> None:
        existing = self._folder_by_key(session, path)
        if existing is not None and existing.id != moving_id:
            raise DuplicatePathError(f"A folder already exists at '{path}'")

    def _insert(self, session, parent_id, node_type, name, owner_id, description) -> NodeRecord:
        name = self.path_policy.validate_name(name)
        parent = self._parent_folder(session, parent_id)
        path = None
        if node_type is NodeType.FOLDER:
            path = self.path_policy.child_path(parent.path, name)
            self._check_free_path(session, path)

        now = utcnow()
        record = NodeRecord(
            id=self.new_id(),
            node_type=node_type.value,
            name=name,
            name_key=name.casefold(),
            description=description,
            owner_id=owner_id,
            parent_id=parent.id,
            path=path,
            path_key=self.path_policy.key(path) if path is not None else None,
            created_at=now,
            updated_at=now,
        )
        session.add(record)
        session.flush()
        return record

    def create_folder(self, parent_id, name, owner_id=None, description=None) -> Folder:
        with self._write() as session:
            record = self._insert(session, parent_id, NodeType.FOLDER, name, owner_id, description)
            logger.info(f"Created folder {record.path} ({record.id})")
            return record_to_node(record)

    def create_resource(self, parent_id, node_type, name, owner_id=None, description=None) -> Node:
        with self._write() as session:
            record = self._insert(session, parent_id, node_type, name, owner_id, description)
            logger.info(f"Created {node_type.value} '{name}' ({record.id}) in {parent_id}")
            return record_to_node(record)

    def _rewrite_paths(self, session: Session, folder: NodeRecord, new_path: str) -> None:
        old_path = folder.path
        ids = self._subtree_ids(session, folder.id)
        folders = session.scalars(
            select(NodeRecord).where(NodeRecord.id.in_(ids), NodeRecord.path.isnot(None))
        ).all()
        for record in folders:
            record.path = new_path + record.path[len(old_path):]
            record.path_key = self.path_policy.key(record.path)

    def _existing(self, session: Session, node_id: str) -> NodeRecord:
        record = session.get(NodeRecord, node_id)
        if record is None:
            raise HierarchyViolationError(f"Node {node_id} does not exist")
        return record

    def rename_node(self, node_id: str, new_name: str) -> Node:
        with self._write() as session:
            record = self._existing(session, node_id)
            if record.parent_id is None:
                raise HierarchyViolationError("The root folder cannot be renamed")
            new_name = self.path_policy.validate_name(new_name)
            if record.path is not None:
                parent = session.get(NodeRecord, record.parent_id)
                new_path = self.path_policy.child_path(parent.path, new_name)
                self._check_free_path(session, new_path, moving_id=record.id)
                self._rewrite_paths(session, record, new_path)
            record.name = new_name
            record.name_key = new_name.casefold()
            record.updated_at = utcnow()
            session.flush()
            logger.info(f"Renamed node {node_id} to '{new_name}'")
            return record_to_node(record)

    def move_node(self, node_id: str, new_parent_id: str) -> Node:
        with self._write() as session:
            record = self._existing(session, node_id)
            if record.parent_id is None:
                raise HierarchyViolationError("The root folder cannot be moved")
            parent = self._parent_folder(session, new_parent_id)
            if record.path is not None:
                if new_parent_id in self._subtree_ids(session, record.id):
                    raise HierarchyViolationError(
                        f"Cannot move folder {record.path} into its own subtree"
                    )
                new_path = self.path_policy.child_path(parent.path, record.name)
                self._check_free_path(session, new_path, moving_id=record.id)
                self._rewrite_paths(session, record, new_path)
            record.parent_id = parent.id
            record.updated_at = utcnow()
            session.flush()
            logger.info(f"Moved node {node_id} under {new_parent_id}")
            return record_to_node(record)

    def delete_node(self, node_id: str, recursive: bool = False) -> bool:
        with self._write() as session:
            record = session.get(NodeRecord, node_id)
            if record is None:
                return False
            if record.parent_id is None:
                raise HierarchyViolationError("The root folder cannot be deleted")

            ids = self._subtree_ids(session, node_id)
            if len(ids) > 1 and not recursive:
                raise HierarchyViolationError(
                    f"Folder {record.path} is not empty. Use recursive=True to delete its contents too."
                )

            session.execute(delete(NodeGrant).where(NodeGrant.node_id.in_(ids)))
            session.execute(delete(NodeRecord).where(NodeRecord.id.in_(ids)))
            logger.info(f"Deleted node {node_id} ({len(ids)} nodes)")
            return True
