"""Domain types for the folder hierarchy.

These are transient, request-scoped views. Persisted state lives in the
repository (see ``folderserver.repository``); nothing here is mutable once
built.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from functools import total_ordering
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from folderserver.exceptions import InvalidNodeTypeError


class NodeType(Enum):
    """Kinds of node in the hierarchy."""
    FOLDER = "folder"
    FIELD = "field"
    ELEMENT = "element"
    TEMPLATE = "template"
    INSTANCE = "instance"

    @classmethod
    def for_value(cls, value: str) -> 'NodeType':
        """Look up a node type by its wire value (case-insensitive).

        Raises:
            InvalidNodeTypeError: If ``value`` names no node type
        """
        wanted = (value or "").strip().lower()
        for node_type in cls:
            if node_type.value == wanted:
                return node_type
        raise InvalidNodeTypeError(
            f"You passed an illegal resource type: '{value}'. "
            f"The allowed values are: {', '.join(t.value for t in cls)}"
        )


@total_ordering
class AccessLevel(Enum):
    """Permission level a principal holds over a node."""
    READ = "read"
    WRITE = "write"

    @property
    def rank(self) -> int:
        return _ACCESS_RANK[self]

    def __lt__(self, other):
        if not isinstance(other, AccessLevel):
            return NotImplemented
        return self.rank < other.rank


_ACCESS_RANK = {AccessLevel.READ: 1, AccessLevel.WRITE: 2}


@dataclass(frozen=True)
class Node:
    """Any addressable entity in the hierarchy."""
    id: str
    node_type: NodeType
    name: str
    owner_id: Optional[str]
    created_on: datetime
    modified_on: datetime
    parent_id: Optional[str] = None
    description: Optional[str] = None

    @property
    def is_folder(self) -> bool:
        return self.node_type is NodeType.FOLDER

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "node_type": self.node_type.value,
            "name": self.name,
            "description": self.description,
            "owner_id": self.owner_id,
            "parent_id": self.parent_id,
            "created_on": self.created_on.isoformat(),
            "modified_on": self.modified_on.isoformat(),
        }


@dataclass(frozen=True)
class Folder(Node):
    """A node that owns children and takes part in path construction."""
    path: str = "/"
    is_root: bool = False

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["path"] = self.path
        data["is_root"] = self.is_root
        return data


@dataclass(frozen=True)
class SortKey:
    """One ``(field, direction)`` entry of a sort specification."""
    field: str
    descending: bool = False

    def to_param(self, descending_marker: str = "-") -> str:
        return f"{descending_marker}{self.field}" if self.descending else self.field


@dataclass(frozen=True)
class NodeListRequest:
    """Validated listing parameters. Built only by the content lister."""
    node_types: FrozenSet[NodeType]
    sort: Tuple[SortKey, ...]
    limit: int
    offset: int
    descending_marker: str = field(default="-", compare=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "node_types": sorted(t.value for t in self.node_types),
            "sort": [key.to_param(self.descending_marker) for key in self.sort],
            "limit": self.limit,
            "offset": self.offset,
        }


@dataclass(frozen=True)
class PagingLinks:
    """Navigation links for one page of results. Absent links are None."""
    first: Optional[str] = None
    prev: Optional[str] = None
    next: Optional[str] = None
    last: Optional[str] = None

    def to_dict(self) -> Dict[str, str]:
        return {
            name: url
            for name, url in (("first", self.first), ("prev", self.prev),
                              ("next", self.next), ("last", self.last))
            if url is not None
        }


@dataclass(frozen=True)
class ContentPage:
    """A page of children plus the total matching count from the same read."""
    nodes: Tuple[Node, ...]
    total_count: int


@dataclass(frozen=True)
class NodeListResponse:
    """Assembled result of a folder contents call."""
    request: NodeListRequest
    total_count: int
    current_offset: int
    resources: List[Node]
    path_info: List[Folder]
    paging: PagingLinks

    def to_dict(self) -> Dict[str, Any]:
        return {
            "request": self.request.to_dict(),
            "total_count": self.total_count,
            "current_offset": self.current_offset,
            "resources": [node.to_dict() for node in self.resources],
            "path_info": [folder.to_dict() for folder in self.path_info],
            "paging": self.paging.to_dict(),
        }


@dataclass(frozen=True)
class Principal:
    """The authenticated actor on whose behalf access is evaluated."""
    id: str
    is_admin: bool = False
    group_ids: FrozenSet[str] = field(default_factory=frozenset)


@dataclass(frozen=True)
class User:
    """Entry of the users directory."""
    id: str
    display_name: str
    email: Optional[str] = None
    is_admin: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "display_name": self.display_name,
            "email": self.email,
            "is_admin": self.is_admin,
        }
