"""
YAML import/export of a folder tree.

Document shape:

    users:
      - {id: alice, display_name: Alice, admin: false, groups: [lab]}
    groups:
      - {id: lab, name: Lab members}
    tree:
      - folder: studies
        owner: alice
        grants:
          - {user: bob, level: read}
          - {group: lab, level: write}
        children:
          - template: Demographics
          - instance: Patient 1

Every node entry has exactly one node-type key whose value is the node
name. Entries at the top of ``tree`` are created under the root. Nodes that
already exist (same parent, type and name) are reused, so importing the
same document twice creates nothing new.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .exceptions import ValidationError
from .models import AccessLevel, Folder, Node, NodeType, SortKey
from .permissions import PRINCIPAL_GROUP, PRINCIPAL_USER
from .store import FolderStore

logger = logging.getLogger(__name__)

_ALL_TYPES = frozenset(NodeType)
_BY_NAME = (SortKey("nodeType"), SortKey("name"))
_EXPORT_PAGE = 100


class TreeSeeder:
    """
    Imports and exports folder trees as YAML.

    Provides:
    - Users and groups
    - Folders and resources, created under the root
    - Grants and ownership per node
    """

    def __init__(self, store: FolderStore):
        self.store = store
        self.repository = store.repository

    # =========================================================================
    # Import
    # =========================================================================

    def import_data(self, data: Dict[str, Any]) -> int:
        """
        Create everything described by a parsed seed document.

        Args:
            data: Parsed document

        Returns:
            Number of nodes created
        """
        if not isinstance(data, dict):
            raise ValidationError("Seed document must be a mapping")

        with self.store.users() as users:
            for group in data.get('groups') or []:
                users.add_group(group['id'], group.get('name', group['id']), group.get('description'))
            for user in data.get('users') or []:
                users.add_user(
                    user['id'],
                    user.get('display_name', user['id']),
                    email=user.get('email'),
                    is_admin=bool(user.get('admin', False)),
                )
                for group_id in user.get('groups') or []:
                    users.add_member(group_id, user['id'])

        created = 0
        for entry in data.get('tree') or []:
            created += self._import_entry(self.store.root, entry)

        logger.info(f"Seeded {created} nodes")
        return created

    def import_yaml(self, yaml_content: str) -> int:
        """Import a YAML seed document from a string."""
        return self.import_data(yaml.safe_load(yaml_content) or {})

    def import_file(self, path: Path) -> int:
        """Import a YAML seed document from a file."""
        with open(path) as f:
            return self.import_yaml(f.read())

    def _entry_type(self, entry: Dict[str, Any]) -> NodeType:
        keys = [key for key in entry if key in {t.value for t in NodeType}]
        if len(keys) != 1:
            raise ValidationError(f"Seed entry needs exactly one node type key, got {sorted(entry)}")
        return NodeType(keys[0])

    def _import_entry(self, parent: Folder, entry: Dict[str, Any]) -> int:
        node_type = self._entry_type(entry)
        name = str(entry[node_type.value])
        owner = entry.get('owner')
        created = 0

        if node_type is NodeType.FOLDER:
            path = self.repository.path_policy.child_path(parent.path, name)
            node = self.repository.find_folder_by_path(path)
            if node is None:
                node = self.repository.create_folder(parent.id, name, owner, entry.get('description'))
                created += 1
            for child in entry.get('children') or []:
                created += self._import_entry(node, child)
        else:
            if entry.get('children'):
                raise ValidationError(f"Only folders can have children ('{name}' is a {node_type.value})")
            node = self._find_child(parent, node_type, name)
            if node is None:
                node = self.repository.create_resource(parent.id, node_type, name, owner, entry.get('description'))
                created += 1

        for grant in entry.get('grants') or []:
            self._import_grant(node.id, grant)
        return created

    def _find_child(self, parent: Folder, node_type: NodeType, name: str) -> Optional[Node]:
        offset = 0
        while True:
            page = self.repository.find_children_page(parent.id, {node_type}, _BY_NAME, _EXPORT_PAGE, offset)
            for node in page.nodes:
                if node.name == name:
                    return node
            offset += _EXPORT_PAGE
            if offset >= page.total_count:
                return None

    def _import_grant(self, node_id: str, grant: Dict[str, Any]) -> None:
        level = AccessLevel(grant.get('level', AccessLevel.READ.value))
        if 'user' in grant:
            self.store.grant(node_id, grant['user'], level, PRINCIPAL_USER)
        elif 'group' in grant:
            self.store.grant(node_id, grant['group'], level, PRINCIPAL_GROUP)
        else:
            raise ValidationError(f"Grant needs a 'user' or 'group' key: {grant}")

    # =========================================================================
    # Export
    # =========================================================================

    def export_data(self, folder: Optional[Folder] = None) -> List[Dict[str, Any]]:
        """
        Describe the subtree below ``folder`` (default: root) as seed entries.

        Grants and users are not exported.
        """
        folder = folder or self.store.root
        entries = []
        offset = 0
        while True:
            page = self.repository.find_children_page(folder.id, _ALL_TYPES, _BY_NAME, _EXPORT_PAGE, offset)
            for node in page.nodes:
                entry: Dict[str, Any] = {node.node_type.value: node.name}
                if node.owner_id:
                    entry['owner'] = node.owner_id
                if node.description:
                    entry['description'] = node.description
                if isinstance(node, Folder):
                    children = self.export_data(node)
                    if children:
                        entry['children'] = children
                entries.append(entry)
            offset += _EXPORT_PAGE
            if offset >= page.total_count:
                break
        return entries

    def export_yaml(self, folder: Optional[Folder] = None) -> str:
        """Export the subtree below ``folder`` as a YAML seed document."""
        data = {'tree': self.export_data(folder)}
        return yaml.dump(data, default_flow_style=False, allow_unicode=True, sort_keys=False)

    def export_file(self, path: Path, folder: Optional[Folder] = None) -> None:
        """Export the subtree below ``folder`` to a YAML file."""
        with open(path, 'w') as f:
            f.write(self.export_yaml(folder))
